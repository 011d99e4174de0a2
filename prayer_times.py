"""Location lookup and daily prayer time retrieval."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, date
from typing import Dict, List, Optional, Sequence

import pytz
import requests
from tzlocal import get_localzone_name

from day_keys import day_key
from errors import LocationUnavailable, ProviderComputationFailure

LOGGER = logging.getLogger(__name__)

ALADHAN_TIMINGS_URL = "https://api.aladhan.com/v1/timings"
ALADHAN_TIMINGS_BY_CITY_URL = "https://api.aladhan.com/v1/timingsByCity"
IPINFO_URL = "https://ipinfo.io/json"
NOMINATIM_REVERSE_URL = "https://nominatim.openstreetmap.org/reverse"
PRAYER_ORDER = ["Fajr", "Dhuhr", "Asr", "Maghrib", "Isha"]
UNKNOWN_LOCATION = "Unknown Location"


class CalculationMethod(enum.Enum):
    """Supported calculation conventions, valued by their AlAdhan method id."""

    MUSLIM_WORLD_LEAGUE = 3
    EGYPTIAN = 5
    UMM_AL_QURA = 4
    DUBAI = 16
    KUWAIT = 9
    NORTH_AMERICA = 2

    @classmethod
    def from_name(cls, name: Optional[str]) -> "CalculationMethod":
        lookup = {
            "muslimworldleague": cls.MUSLIM_WORLD_LEAGUE,
            "egyptian": cls.EGYPTIAN,
            "ummalqura": cls.UMM_AL_QURA,
            "dubai": cls.DUBAI,
            "kuwait": cls.KUWAIT,
            "northamerica": cls.NORTH_AMERICA,
        }
        key = "".join(ch for ch in str(name or "") if ch.isalnum()).lower()
        if key not in lookup:
            LOGGER.warning("Unknown calculation method %r; using NorthAmerica", name)
            return cls.NORTH_AMERICA
        return lookup[key]


class Madhab(enum.Enum):
    """Asr juristic school, valued by the AlAdhan ``school`` parameter."""

    SHAFI = 0
    HANAFI = 1

    @classmethod
    def from_name(cls, name: Optional[str]) -> "Madhab":
        if str(name or "").strip().lower() == "shafi":
            return cls.SHAFI
        return cls.HANAFI


@dataclass
class LocationInfo:
    city: str
    country: str
    latitude: Optional[float]
    longitude: Optional[float]
    timezone: Optional[str]

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class PrayerInstant:
    name: str
    time: datetime


@dataclass(frozen=True)
class DailyPrayerSet:
    """The five ordered prayer instants of one calendar day at one location."""

    location: LocationInfo
    gregorian_date: date
    instants: Sequence[PrayerInstant]
    hijri_date: str = ""
    location_name: str = field(default=UNKNOWN_LOCATION, compare=False)

    def __post_init__(self) -> None:
        names = [info.name for info in self.instants]
        if names != PRAYER_ORDER:
            raise ProviderComputationFailure(f"Expected prayers {PRAYER_ORDER}, got {names}")
        for earlier, later in zip(self.instants, self.instants[1:]):
            if not earlier.time < later.time:
                raise ProviderComputationFailure(
                    f"{later.name} ({later.time}) does not follow {earlier.name} ({earlier.time})"
                )
        object.__setattr__(self, "instants", tuple(self.instants))

    @property
    def day_key(self) -> str:
        return day_key(self.gregorian_date)

    @property
    def tzinfo(self):
        return self.instants[0].time.tzinfo

    def instant(self, name: str) -> Optional[PrayerInstant]:
        for info in self.instants:
            if info.name == name:
                return info
        return None

    def with_location_name(self, name: str) -> "DailyPrayerSet":
        return replace(self, location_name=name)


class PrayerTimesService:
    """Fetches prayer times from the AlAdhan API."""

    def __init__(
        self,
        method: CalculationMethod = CalculationMethod.NORTH_AMERICA,
        madhab: Madhab = Madhab.HANAFI,
        timeout: float = 10,
    ) -> None:
        self.method = method
        self.madhab = madhab
        self.timeout = timeout

    def compute_daily_times(
        self,
        location: LocationInfo,
        target_date: Optional[date] = None,
    ) -> DailyPrayerSet:
        """Return the day's prayer set, raising ``ProviderComputationFailure`` on any failure."""
        target_date = target_date or date.today()
        if location.has_coordinates:
            _validate_coordinates(location.latitude, location.longitude)
        elif not location.city:
            raise ProviderComputationFailure("Location has neither coordinates nor a city")

        try:
            payload = self._request(location, target_date)
        except requests.RequestException as exc:
            raise ProviderComputationFailure(f"Prayer time request failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderComputationFailure("Prayer time response was not JSON") from exc

        if payload.get("code") != 200:
            raise ProviderComputationFailure(f"Invalid response from AlAdhan API: {payload.get('status')}")
        return self._build_prayer_set(location, target_date, payload.get("data") or {})

    def _request(self, location: LocationInfo, target_date: date) -> Dict:
        params = {
            "method": self.method.value,
            "school": self.madhab.value,
            "date": target_date.strftime("%d-%m-%Y"),
        }
        if location.has_coordinates:
            url = ALADHAN_TIMINGS_URL
            params.update(latitude=location.latitude, longitude=location.longitude)
        else:
            url = ALADHAN_TIMINGS_BY_CITY_URL
            params.update(city=location.city, country=location.country)
        LOGGER.debug("Requesting prayer times from %s with params=%s", url, params)
        response = requests.get(url, params=params, timeout=self.timeout)
        LOGGER.debug("Prayer times response status: %s", response.status_code)
        response.raise_for_status()
        return response.json()

    def _build_prayer_set(self, location: LocationInfo, target_date: date, data: Dict) -> DailyPrayerSet:
        timings: Dict[str, str] = data.get("timings", {})
        missing = [name for name in PRAYER_ORDER if name not in timings]
        if missing:
            raise ProviderComputationFailure(f"Response is missing timings for {missing}")

        timezone_name = self._resolve_timezone(location, data)
        tzinfo = pytz.timezone(timezone_name)
        instants = [
            PrayerInstant(name=name, time=self._parse_time_string(timings[name], tzinfo, target_date))
            for name in PRAYER_ORDER
        ]

        hijri = (data.get("date") or {}).get("hijri") or {}
        hijri_date_text = hijri.get("date", "")
        hijri_month_en = (hijri.get("month") or {}).get("en", "")
        if hijri.get("day") and hijri_month_en and hijri.get("year"):
            hijri_date_text = f"{hijri['day']} {hijri_month_en} {hijri['year']} AH"

        meta = data.get("meta") or {}
        updated_location = replace(
            location,
            latitude=_safe_float(meta.get("latitude")) or location.latitude,
            longitude=_safe_float(meta.get("longitude")) or location.longitude,
            timezone=timezone_name,
        )
        return DailyPrayerSet(
            location=updated_location,
            gregorian_date=target_date,
            instants=instants,
            hijri_date=hijri_date_text,
            location_name=location.city or UNKNOWN_LOCATION,
        )

    @staticmethod
    def _parse_time_string(time_str: str, tzinfo: pytz.BaseTzInfo, target_date: date) -> datetime:
        clean = "".join(ch for ch in str(time_str) if ch.isdigit() or ch == ":")[:5]
        if len(clean) != 5:
            raise ProviderComputationFailure(f"Unparseable prayer time {time_str!r}")
        hour, minute = map(int, clean.split(":"))
        try:
            naive = datetime(target_date.year, target_date.month, target_date.day, hour=hour, minute=minute)
        except ValueError as exc:
            raise ProviderComputationFailure(f"Invalid prayer time {time_str!r}") from exc
        return tzinfo.localize(naive)

    @staticmethod
    def _resolve_timezone(location: LocationInfo, data: Dict[str, Dict]) -> str:
        timezone_name = (data.get("meta", {}) or {}).get("timezone") or location.timezone
        if not timezone_name:
            LOGGER.warning("Timezone missing from response; defaulting to UTC")
            timezone_name = "UTC"
        try:
            pytz.timezone(timezone_name)
        except pytz.UnknownTimeZoneError:
            LOGGER.warning("Unknown timezone '%s'; falling back to UTC", timezone_name)
            timezone_name = "UTC"
        return timezone_name


def compute_daily_times(
    latitude: float,
    longitude: float,
    target_date: date,
    method: CalculationMethod = CalculationMethod.NORTH_AMERICA,
    madhab: Madhab = Madhab.HANAFI,
    timezone: Optional[str] = None,
) -> List[PrayerInstant]:
    """Return the five ordered prayer instants for a coordinate pair and date."""
    location = LocationInfo(city="", country="", latitude=latitude, longitude=longitude, timezone=timezone)
    prayer_set = PrayerTimesService(method=method, madhab=madhab).compute_daily_times(location, target_date)
    return list(prayer_set.instants)


def detect_location_from_ip(timeout: float = 5) -> LocationInfo:
    """Approximate the current location using the ipinfo.io service."""
    LOGGER.debug("Requesting IP-based location from ipinfo.io (timeout=%s)", timeout)
    try:
        response = requests.get(IPINFO_URL, timeout=timeout)
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as exc:
        raise LocationUnavailable(f"IP location lookup failed: {exc}") from exc

    try:
        latitude, longitude = map(float, str(payload["loc"]).split(","))
    except (KeyError, ValueError) as exc:
        raise LocationUnavailable("IP location lookup returned no coordinates") from exc
    LOGGER.debug("Parsed coordinates from ipinfo.io: lat=%s lon=%s", latitude, longitude)

    timezone = payload.get("timezone") or local_timezone_name()
    try:
        pytz.timezone(timezone)
    except pytz.UnknownTimeZoneError:
        LOGGER.warning("Falling back to UTC for unknown timezone %s", timezone)
        timezone = "UTC"

    return LocationInfo(
        city=payload.get("city", ""),
        country=payload.get("country", ""),
        latitude=latitude,
        longitude=longitude,
        timezone=timezone,
    )


def reverse_geocode(latitude: float, longitude: float, timeout: float = 10) -> str:
    """Return a locality name for the coordinates via OpenStreetMap Nominatim."""
    params = {"lat": latitude, "lon": longitude, "format": "json", "zoom": 10}
    headers = {"User-Agent": "prayer-companion"}
    LOGGER.debug("Reverse geocoding lat=%s lon=%s", latitude, longitude)
    response = requests.get(NOMINATIM_REVERSE_URL, params=params, headers=headers, timeout=timeout)
    response.raise_for_status()
    address = (response.json() or {}).get("address") or {}
    for field_name in ("city", "town", "village", "municipality", "county"):
        if address.get(field_name):
            return str(address[field_name])
    return UNKNOWN_LOCATION


def build_location_from_config(config: Dict[str, object]) -> Optional[LocationInfo]:
    """Create a LocationInfo instance if the config contains the required data."""
    location_cfg = config.get("location") if isinstance(config, dict) else None
    if not isinstance(location_cfg, dict):
        return None

    location = LocationInfo(
        city=str(location_cfg.get("city") or ""),
        country=str(location_cfg.get("country") or ""),
        latitude=_safe_float(location_cfg.get("latitude")),
        longitude=_safe_float(location_cfg.get("longitude")),
        timezone=str(location_cfg.get("timezone")) if location_cfg.get("timezone") else None,
    )
    if not location.has_coordinates and not location.city:
        return None
    return location


def _validate_coordinates(latitude: Optional[float], longitude: Optional[float]) -> None:
    if latitude is None or not -90 <= latitude <= 90:
        raise ProviderComputationFailure(f"Latitude out of range: {latitude}")
    if longitude is None or not -180 <= longitude <= 180:
        raise ProviderComputationFailure(f"Longitude out of range: {longitude}")


def local_timezone_name() -> str:
    try:
        return get_localzone_name() or "UTC"
    except Exception:  # pragma: no cover - platform dependent
        LOGGER.warning("Could not determine local timezone; using UTC", exc_info=True)
        return "UTC"


def _safe_float(value: Optional[object]) -> Optional[float]:
    try:
        if value in (None, ""):
            return None
        return float(value)
    except (TypeError, ValueError):
        return None
