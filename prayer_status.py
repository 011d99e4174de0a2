"""Per-day prayer completion tracking."""
from __future__ import annotations

import enum
import logging
from typing import Dict, Iterable

from storage import KeyValueStore

LOGGER = logging.getLogger(__name__)


class PrayerStatus(enum.Enum):
    UNSET = "none"
    COMPLETED = "prayed"
    MISSED = "missed"

    def next_status(self) -> "PrayerStatus":
        return _CYCLE[self]


_CYCLE = {
    PrayerStatus.UNSET: PrayerStatus.COMPLETED,
    PrayerStatus.COMPLETED: PrayerStatus.MISSED,
    PrayerStatus.MISSED: PrayerStatus.UNSET,
}


def status_key(day_key: str, prayer_name: str) -> str:
    return f"{day_key}-{prayer_name}"


class PrayerStatusStore:
    """Tri-state prayed/missed marks keyed by day and prayer.

    Records are created on first write and never removed.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def get(self, day_key: str, prayer_name: str) -> PrayerStatus:
        raw = self._store.get(status_key(day_key, prayer_name))
        if raw is None:
            return PrayerStatus.UNSET
        try:
            return PrayerStatus(raw)
        except ValueError:
            LOGGER.warning("Ignoring corrupt status %r for %s on %s", raw, prayer_name, day_key)
            return PrayerStatus.UNSET

    def set(self, day_key: str, prayer_name: str, status: PrayerStatus) -> None:
        self._store.set(status_key(day_key, prayer_name), status.value)

    def cycle(self, day_key: str, prayer_name: str) -> PrayerStatus:
        """Advance unset -> completed -> missed -> unset and persist the result."""
        status = self.get(day_key, prayer_name).next_status()
        self.set(day_key, prayer_name, status)
        LOGGER.debug("Status for %s on %s is now %s", prayer_name, day_key, status.value)
        return status

    def bulk_load(self, day_key: str, prayer_names: Iterable[str]) -> Dict[str, PrayerStatus]:
        return {name: self.get(day_key, name) for name in prayer_names}
