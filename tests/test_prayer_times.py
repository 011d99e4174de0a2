from datetime import date

import pytest
import responses

from errors import LocationUnavailable, ProviderComputationFailure
from prayer_times import (
    ALADHAN_TIMINGS_BY_CITY_URL,
    ALADHAN_TIMINGS_URL,
    IPINFO_URL,
    NOMINATIM_REVERSE_URL,
    PRAYER_ORDER,
    UNKNOWN_LOCATION,
    CalculationMethod,
    LocationInfo,
    Madhab,
    PrayerTimesService,
    build_location_from_config,
    compute_daily_times,
    detect_location_from_ip,
    reverse_geocode,
)


def build_payload(timezone: str, latitude: float, longitude: float, timings=None) -> dict:
    return {
        "code": 200,
        "data": {
            "timings": timings
            or {
                "Fajr": "05:10",
                "Sunrise": "06:35",
                "Dhuhr": "12:30",
                "Asr": "15:45",
                "Maghrib": "18:12",
                "Isha": "19:30 (+01)",
            },
            "date": {
                "hijri": {
                    "day": "27",
                    "month": {"en": "Rabi al-Thani"},
                    "year": "1447",
                    "date": "27-04-1447",
                },
                "gregorian": {
                    "date": "09-11-2025",
                },
            },
            "meta": {
                "timezone": timezone,
                "latitude": latitude,
                "longitude": longitude,
            },
        },
    }


def tangier() -> LocationInfo:
    return LocationInfo(
        city="Tangier",
        country="MA",
        latitude=35.7673,
        longitude=-5.7998,
        timezone="Africa/Casablanca",
    )


@responses.activate
def test_compute_daily_times_with_coordinates():
    service = PrayerTimesService(method=CalculationMethod.MUSLIM_WORLD_LEAGUE, madhab=Madhab.SHAFI)
    responses.add(responses.GET, ALADHAN_TIMINGS_URL, json=build_payload("Africa/Casablanca", 35.7673, -5.7998))

    prayer_day = service.compute_daily_times(tangier(), target_date=date(2025, 11, 9))

    assert len(responses.calls) == 1
    request_url = responses.calls[0].request.url
    assert request_url.startswith(ALADHAN_TIMINGS_URL)
    assert "method=3" in request_url
    assert "school=0" in request_url
    assert "date=09-11-2025" in request_url

    assert [info.name for info in prayer_day.instants] == PRAYER_ORDER
    assert prayer_day.location.timezone == "Africa/Casablanca"
    assert prayer_day.hijri_date == "27 Rabi al-Thani 1447 AH"
    assert prayer_day.day_key == "2025-11-9"
    assert prayer_day.location_name == "Tangier"

    fajr_time = prayer_day.instants[0].time
    assert getattr(fajr_time.tzinfo, "zone", None) == "Africa/Casablanca"
    assert prayer_day.instants[-1].time.strftime("%H:%M") == "19:30"


@responses.activate
def test_compute_daily_times_by_city_only():
    service = PrayerTimesService()
    location = LocationInfo(city="Casablanca", country="MA", latitude=None, longitude=None, timezone=None)
    responses.add(responses.GET, ALADHAN_TIMINGS_BY_CITY_URL, json=build_payload("Africa/Casablanca", 33.5731, -7.5898))

    prayer_day = service.compute_daily_times(location, target_date=date(2025, 11, 9))

    assert responses.calls[0].request.url.startswith(ALADHAN_TIMINGS_BY_CITY_URL)
    assert "method=2" in responses.calls[0].request.url
    assert "school=1" in responses.calls[0].request.url
    assert prayer_day.location.latitude == 33.5731
    assert prayer_day.location.longitude == -7.5898
    assert prayer_day.location.timezone == "Africa/Casablanca"


@responses.activate
def test_unknown_timezone_falls_back_to_utc():
    responses.add(responses.GET, ALADHAN_TIMINGS_URL, json=build_payload("Mars/Olympus", 35.7673, -5.7998))
    location = tangier()
    location.timezone = None

    prayer_day = PrayerTimesService().compute_daily_times(location, date(2025, 11, 9))

    assert prayer_day.location.timezone == "UTC"


@pytest.mark.parametrize("latitude,longitude", [(91.0, 0.0), (-91.0, 0.0), (0.0, 181.0), (0.0, -180.5)])
@responses.activate
def test_out_of_range_coordinates_fail_without_a_request(latitude, longitude):
    location = LocationInfo(city="", country="", latitude=latitude, longitude=longitude, timezone="UTC")

    with pytest.raises(ProviderComputationFailure):
        PrayerTimesService().compute_daily_times(location, date(2025, 11, 9))
    assert len(responses.calls) == 0


@responses.activate
def test_http_error_is_a_computation_failure():
    responses.add(responses.GET, ALADHAN_TIMINGS_URL, status=500)

    with pytest.raises(ProviderComputationFailure):
        PrayerTimesService().compute_daily_times(tangier(), date(2025, 11, 9))


@responses.activate
def test_non_ok_payload_is_a_computation_failure():
    responses.add(responses.GET, ALADHAN_TIMINGS_URL, json={"code": 400, "status": "Bad Request", "data": "oops"})

    with pytest.raises(ProviderComputationFailure):
        PrayerTimesService().compute_daily_times(tangier(), date(2025, 11, 9))


@responses.activate
def test_missing_or_unordered_timings_are_rejected():
    timings = {"Fajr": "05:10", "Dhuhr": "12:30", "Asr": "15:45", "Maghrib": "18:12"}
    responses.add(responses.GET, ALADHAN_TIMINGS_URL, json=build_payload("Africa/Casablanca", 35.7, -5.8, timings))
    with pytest.raises(ProviderComputationFailure):
        PrayerTimesService().compute_daily_times(tangier(), date(2025, 11, 9))

    responses.reset()
    timings = {"Fajr": "05:10", "Dhuhr": "12:30", "Asr": "11:45", "Maghrib": "18:12", "Isha": "19:30"}
    responses.add(responses.GET, ALADHAN_TIMINGS_URL, json=build_payload("Africa/Casablanca", 35.7, -5.8, timings))
    with pytest.raises(ProviderComputationFailure):
        PrayerTimesService().compute_daily_times(tangier(), date(2025, 11, 9))


@responses.activate
def test_module_level_compute_daily_times_returns_ordered_instants():
    responses.add(responses.GET, ALADHAN_TIMINGS_URL, json=build_payload("Africa/Casablanca", 35.7673, -5.7998))

    instants = compute_daily_times(35.7673, -5.7998, date(2025, 11, 9), CalculationMethod.EGYPTIAN, Madhab.SHAFI)

    assert [info.name for info in instants] == PRAYER_ORDER
    assert all(earlier.time < later.time for earlier, later in zip(instants, instants[1:]))
    assert "method=5" in responses.calls[0].request.url


def test_method_and_madhab_names():
    assert CalculationMethod.from_name("UmmAlQura") is CalculationMethod.UMM_AL_QURA
    assert CalculationMethod.from_name("Muslim World League") is CalculationMethod.MUSLIM_WORLD_LEAGUE
    assert CalculationMethod.from_name("bogus") is CalculationMethod.NORTH_AMERICA
    assert Madhab.from_name("Shafi") is Madhab.SHAFI
    assert Madhab.from_name(None) is Madhab.HANAFI


@responses.activate
def test_detect_location_from_ip():
    responses.add(
        responses.GET,
        IPINFO_URL,
        json={"city": "Dallas", "country": "US", "loc": "32.7767,-96.7970", "timezone": "America/Chicago"},
    )

    location = detect_location_from_ip()

    assert location.city == "Dallas"
    assert location.latitude == pytest.approx(32.7767)
    assert location.longitude == pytest.approx(-96.797)
    assert location.timezone == "America/Chicago"


@responses.activate
def test_detect_location_failures_raise_location_unavailable():
    responses.add(responses.GET, IPINFO_URL, json={"city": "Nowhere"})
    with pytest.raises(LocationUnavailable):
        detect_location_from_ip()

    responses.reset()
    responses.add(responses.GET, IPINFO_URL, status=503)
    with pytest.raises(LocationUnavailable):
        detect_location_from_ip()


@responses.activate
def test_reverse_geocode_prefers_city_then_smaller_places():
    responses.add(responses.GET, NOMINATIM_REVERSE_URL, json={"address": {"town": "Asilah", "county": "Tangier"}})
    assert reverse_geocode(35.46, -6.03) == "Asilah"

    responses.reset()
    responses.add(responses.GET, NOMINATIM_REVERSE_URL, json={"address": {}})
    assert reverse_geocode(0.0, 0.0) == UNKNOWN_LOCATION


def test_build_location_from_config():
    assert build_location_from_config({"location": {"city": "", "latitude": None}}) is None

    location = build_location_from_config(
        {"location": {"city": "Tangier", "country": "MA", "latitude": "35.7", "longitude": -5.8, "timezone": "Africa/Casablanca"}}
    )
    assert location is not None
    assert location.has_coordinates
    assert location.latitude == 35.7


def test_prayer_set_lookup(make_prayer_day):
    prayer_day = make_prayer_day()

    assert prayer_day.instant("Asr").time.strftime("%H:%M") == "15:30"
    assert prayer_day.instant("Sunrise") is None
    assert prayer_day.with_location_name("Irving").location_name == "Irving"
