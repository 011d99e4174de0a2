import os
from datetime import date, datetime
from typing import Dict, List

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from PyQt5 import QtCore

import pytest
import pytz

from prayer_times import DailyPrayerSet, LocationInfo, PrayerInstant
from storage import KeyValueStore

TIMEZONE = pytz.timezone("America/Chicago")
DEFAULT_TIMES = ["04:55", "12:10", "15:30", "17:45", "19:05"]
NAMES = ["Fajr", "Dhuhr", "Asr", "Maghrib", "Isha"]


@pytest.fixture(scope="session")
def qt_app():
    app = QtCore.QCoreApplication.instance()
    if app is None:
        app = QtCore.QCoreApplication([])
    yield app


def at(day: date, hhmm: str) -> datetime:
    hour, minute = map(int, hhmm.split(":"))
    return TIMEZONE.localize(datetime(day.year, day.month, day.day, hour, minute))


@pytest.fixture
def make_prayer_day():
    def factory(day: date = date(2025, 1, 4), times: List[str] = DEFAULT_TIMES) -> DailyPrayerSet:
        location = LocationInfo(
            city="Dallas",
            country="US",
            latitude=32.7767,
            longitude=-96.797,
            timezone="America/Chicago",
        )
        instants = [PrayerInstant(name=name, time=at(day, hhmm)) for name, hhmm in zip(NAMES, times)]
        return DailyPrayerSet(location=location, gregorian_date=day, instants=instants, location_name="Dallas")

    return factory


@pytest.fixture
def memory_store() -> KeyValueStore:
    return KeyValueStore()


class FakeAlertScheduler:
    def __init__(self) -> None:
        self.pending: Dict[str, object] = {}
        self.cancelled: List[str] = []
        self.started = False
        self.fail_with = None

    def start(self) -> None:
        self.started = True

    def shutdown(self) -> None:
        self.started = False

    def schedule_alert(self, alert) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.pending[alert.identifier] = alert

    def cancel_alert(self, identifier: str) -> bool:
        self.cancelled.append(identifier)
        return self.pending.pop(identifier, None) is not None


@pytest.fixture
def fake_scheduler() -> FakeAlertScheduler:
    return FakeAlertScheduler()
