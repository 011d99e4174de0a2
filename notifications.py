"""Notification preferences and prayer alert arming."""
from __future__ import annotations

import enum
import logging
from datetime import datetime, time as time_module
from typing import Callable, Dict, Iterable, List, Optional

from day_keys import parse_day_key, shift_day_key
from errors import NotificationSchedulingFailure
from prayer_times import DailyPrayerSet, PrayerInstant
from scheduler import AlertScheduler, PrayerAlert
from storage import KeyValueStore

LOGGER = logging.getLogger(__name__)

DEFAULT_SOUND = "default"


class NotificationOption(enum.Enum):
    SILENT = "Silent"
    STANDARD = "Standard"
    SPECIAL_SOUND = "Adhan"


def preference_key(day_key: str, prayer_name: str) -> str:
    return f"{day_key}-{prayer_name}-notification"


def default_preference_key(prayer_name: str) -> str:
    return f"notification-default-{prayer_name}"


def one_shot_identifier(prayer_name: str, day_key: str) -> str:
    return f"{prayer_name}-{day_key}"


def recurring_identifier(prayer_name: str, start_of_day: datetime) -> str:
    return f"{prayer_name}-{int(start_of_day.timestamp())}"


RearmCallback = Callable[[str, str, NotificationOption], None]


class NotificationPreferenceStore:
    """Per-day alert mode for each prayer, with an optional per-prayer default."""

    def __init__(self, store: KeyValueStore, rearm: Optional[RearmCallback] = None) -> None:
        self._store = store
        self._rearm_callbacks: List[RearmCallback] = [rearm] if rearm else []

    def on_change(self, callback: RearmCallback) -> None:
        self._rearm_callbacks.append(callback)

    def get(self, day_key: str, prayer_name: str) -> NotificationOption:
        return self._read(preference_key(day_key, prayer_name)) or NotificationOption.STANDARD

    def set(self, day_key: str, prayer_name: str, option: NotificationOption) -> None:
        """Persist *option* and re-arm that prayer's alert for the day."""
        self._store.set(preference_key(day_key, prayer_name), option.value)
        LOGGER.debug("Notification for %s on %s set to %s", prayer_name, day_key, option.value)
        for callback in self._rearm_callbacks:
            callback(day_key, prayer_name, option)

    def get_default(self, prayer_name: str) -> NotificationOption:
        return self._read(default_preference_key(prayer_name)) or NotificationOption.STANDARD

    def set_default(self, prayer_name: str, option: NotificationOption) -> None:
        self._store.set(default_preference_key(prayer_name), option.value)

    def resolve(self, day_key: str, prayer_name: str) -> NotificationOption:
        """Per-day override, else the prayer's default, else standard."""
        return (
            self._read(preference_key(day_key, prayer_name))
            or self._read(default_preference_key(prayer_name))
            or NotificationOption.STANDARD
        )

    def bulk_load(self, day_key: str, prayer_names: Iterable[str]) -> Dict[str, NotificationOption]:
        return {name: self.get(day_key, name) for name in prayer_names}

    def _read(self, key: str) -> Optional[NotificationOption]:
        raw = self._store.get(key)
        if raw is None:
            return None
        try:
            return NotificationOption(raw)
        except ValueError:
            LOGGER.warning("Ignoring corrupt notification option %r under %s", raw, key)
            return None


class PrayerNotifier:
    """Arms device alerts for prayer instants according to stored preferences."""

    def __init__(
        self,
        scheduler: AlertScheduler,
        preferences: NotificationPreferenceStore,
        special_sound: str = "adhan.mp3",
        clock: Optional[Callable[[Optional[object]], datetime]] = None,
    ) -> None:
        self._scheduler = scheduler
        self._preferences = preferences
        self._special_sound = special_sound
        self._clock = clock or datetime.now
        self._days: Dict[str, DailyPrayerSet] = {}

    def start(self) -> None:
        self._scheduler.start()

    def shutdown(self) -> None:
        self._scheduler.shutdown()

    def schedule_day(self, prayer_day: DailyPrayerSet) -> List[str]:
        """Arm one-shot alerts for the day's remaining prayers; returns armed ids."""
        self._remember(prayer_day)
        now = self._clock(prayer_day.tzinfo)
        armed: List[str] = []
        for instant in prayer_day.instants:
            option = self._preferences.resolve(prayer_day.day_key, instant.name)
            if self._arm(prayer_day.day_key, instant, option, now):
                armed.append(one_shot_identifier(instant.name, prayer_day.day_key))
        LOGGER.info("Armed %d alerts for %s", len(armed), prayer_day.day_key)
        return armed

    def schedule_next_day(self, today: DailyPrayerSet, tomorrow: DailyPrayerSet) -> List[str]:
        if tomorrow.day_key != shift_day_key(today.day_key, 1):
            LOGGER.warning("Expected consecutive days, got %s and %s", today.day_key, tomorrow.day_key)
        return self.schedule_day(today) + self.schedule_day(tomorrow)

    def schedule_daily(self, prayer_day: DailyPrayerSet) -> List[str]:
        """Arm the recurring time-of-day variant using each prayer's default mode."""
        start_of_day = _start_of_day(prayer_day)
        armed: List[str] = []
        for instant in prayer_day.instants:
            identifier = recurring_identifier(instant.name, start_of_day)
            self._scheduler.cancel_alert(identifier)
            option = self._preferences.get_default(instant.name)
            if option is NotificationOption.SILENT:
                continue
            alert = self._build_alert(identifier, instant, option, recurring=True)
            if self._submit(alert):
                armed.append(identifier)
        return armed

    def rearm(self, day_key: str, prayer_name: str, option: NotificationOption) -> None:
        """Cancel and recreate the alert for one prayer on one day."""
        identifier = one_shot_identifier(prayer_name, day_key)
        self._scheduler.cancel_alert(identifier)
        if option is NotificationOption.SILENT:
            LOGGER.debug("Alert %s silenced", identifier)
            return

        prayer_day = self._days.get(day_key)
        instant = prayer_day.instant(prayer_name) if prayer_day else None
        if prayer_day is None or instant is None:
            LOGGER.debug("No prayer times held for %s; %s will be armed on next schedule", day_key, identifier)
            return
        self._arm(day_key, instant, option, self._clock(prayer_day.tzinfo))

    def _arm(self, day_key: str, instant: PrayerInstant, option: NotificationOption, now: datetime) -> bool:
        identifier = one_shot_identifier(instant.name, day_key)
        self._scheduler.cancel_alert(identifier)
        if option is NotificationOption.SILENT or instant.time <= now:
            return False
        return self._submit(self._build_alert(identifier, instant, option, recurring=False))

    def _build_alert(
        self, identifier: str, instant: PrayerInstant, option: NotificationOption, recurring: bool
    ) -> PrayerAlert:
        sound = self._special_sound if option is NotificationOption.SPECIAL_SOUND else DEFAULT_SOUND
        return PrayerAlert(
            identifier=identifier,
            prayer=instant.name,
            fire_at=instant.time,
            title=instant.name,
            body=f"It's time for {instant.name}",
            sound=sound,
            recurring=recurring,
        )

    def _submit(self, alert: PrayerAlert) -> bool:
        try:
            self._scheduler.schedule_alert(alert)
        except NotificationSchedulingFailure:
            LOGGER.warning("Failed to schedule %s notification", alert.prayer, exc_info=True)
            return False
        return True

    def _remember(self, prayer_day: DailyPrayerSet) -> None:
        self._days[prayer_day.day_key] = prayer_day
        # Only today and tomorrow are ever re-armed.
        for key in sorted(self._days, key=parse_day_key)[:-2]:
            del self._days[key]


def _start_of_day(prayer_day: DailyPrayerSet) -> datetime:
    naive = datetime.combine(prayer_day.gregorian_date, time_module.min)
    tzinfo = prayer_day.tzinfo
    if hasattr(tzinfo, "localize"):
        return tzinfo.localize(naive)
    return naive.replace(tzinfo=tzinfo)
