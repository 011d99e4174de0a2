"""Current-prayer window evaluation and the 1 Hz countdown clock."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

try:  # Prefer PyQt5, fall back to Qt for Python if available
    from PyQt5 import QtCore  # type: ignore
except Exception:  # pragma: no cover - fallback only used when PyQt5 missing
    try:
        from PySide2 import QtCore  # type: ignore
    except Exception:
        from PySide6 import QtCore  # type: ignore

try:  # Compatibility alias for Qt signals
    Signal = QtCore.pyqtSignal  # type: ignore[attr-defined]
except AttributeError:  # pragma: no cover - PySide compatibility
    Signal = QtCore.Signal  # type: ignore[attr-defined]

from day_keys import day_key
from prayer_times import DailyPrayerSet, PrayerInstant

LOGGER = logging.getLogger(__name__)

TICK_INTERVAL_MS = 1000
ONE_DAY = timedelta(hours=24)


@dataclass(frozen=True)
class CountdownState:
    current_prayer: str
    next_prayer: str
    next_time: datetime
    remaining_label: str
    progress: float


def evaluate(instants: Sequence[PrayerInstant], now: datetime) -> CountdownState:
    """Locate *now* between two prayer instants.

    Before Fajr the window opens at yesterday's Isha; after Isha it closes at
    tomorrow's Fajr. Both neighbours are extrapolated from today's times with a
    fixed 24 hour offset rather than recomputed for the adjacent day.
    """
    if not instants:
        raise ValueError("Cannot evaluate an empty prayer list")

    upcoming = next((index for index, info in enumerate(instants) if info.time > now), None)
    if upcoming is None:
        current_name, current_time = instants[-1].name, instants[-1].time
        next_name, next_time = instants[0].name, instants[0].time + ONE_DAY
    elif upcoming == 0:
        current_name, current_time = instants[-1].name, instants[-1].time - ONE_DAY
        next_name, next_time = instants[0].name, instants[0].time
    else:
        current_name, current_time = instants[upcoming - 1].name, instants[upcoming - 1].time
        next_name, next_time = instants[upcoming].name, instants[upcoming].time

    total = (next_time - current_time).total_seconds()
    if total <= 0:
        progress = 1.0
    else:
        progress = max(0.0, min(1.0, (now - current_time).total_seconds() / total))

    return CountdownState(
        current_prayer=current_name,
        next_prayer=next_name,
        next_time=next_time,
        remaining_label=remaining_label(next_time - now, next_name),
        progress=progress,
    )


def remaining_label(remaining: timedelta, next_name: str) -> str:
    """Render *remaining* with its two largest non-zero units, e.g. ``1 hr 45 mins``."""
    total_seconds = int(remaining.total_seconds())
    if total_seconds <= 0:
        return f"0 secs until {next_name}"

    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    parts: List[str] = []
    for value, unit in ((hours, "hr"), (minutes, "min"), (seconds, "sec")):
        if value:
            parts.append(f"{value} {unit}" if value == 1 else f"{value} {unit}s")
    return f"{' '.join(parts[:2])} until {next_name}"


class CountdownPhase(enum.Enum):
    WAITING_FOR_LOCATION = "waiting_for_location"
    TICKING = "ticking"


class PrayerCountdown(QtCore.QObject):
    """Re-evaluates the held prayer set once per second on the Qt thread.

    Only one timer is ever live: each new prayer set or ``stop()`` invalidates the
    previous timer and bumps a generation counter, so a tick queued by a stale
    timer is discarded.
    """

    updated = Signal(object)
    day_changed = Signal(str)

    def __init__(
        self,
        clock: Optional[Callable[[Optional[object]], datetime]] = None,
        parent: Optional[QtCore.QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._clock = clock or datetime.now
        self._timer: Optional[QtCore.QTimer] = None
        self._generation = 0
        self._prayer_day: Optional[DailyPrayerSet] = None
        self._day_change_reported = False
        self.phase = CountdownPhase.WAITING_FOR_LOCATION
        self.state: Optional[CountdownState] = None

    @property
    def prayer_day(self) -> Optional[DailyPrayerSet]:
        return self._prayer_day

    @property
    def is_running(self) -> bool:
        return self._timer is not None and self._timer.isActive()

    def set_prayer_day(self, prayer_day: DailyPrayerSet) -> None:
        """Swap in a freshly computed set and restart the clock."""
        self._cancel_timer()
        self._prayer_day = prayer_day
        self._day_change_reported = False
        self.phase = CountdownPhase.TICKING
        LOGGER.debug("Countdown armed for %s (%s)", prayer_day.day_key, prayer_day.location_name)

        generation = self._generation
        self._tick(generation)

        timer = QtCore.QTimer(self)
        timer.setInterval(TICK_INTERVAL_MS)
        timer.timeout.connect(lambda: self._tick(generation))  # type: ignore
        timer.start()
        self._timer = timer

    def stop(self) -> None:
        """Cancel the clock; the last prayer set is kept for display."""
        if self._timer is not None:
            LOGGER.debug("Stopping countdown timer")
        self._cancel_timer()

    def now(self, tzinfo=None) -> datetime:
        """Current time in *tzinfo*, else in the held prayer set's zone."""
        if tzinfo is None and self._prayer_day is not None:
            tzinfo = self._prayer_day.tzinfo
        return self._clock(tzinfo)

    def _cancel_timer(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.stop()
            self._timer.deleteLater()
            self._timer = None

    def _tick(self, generation: int) -> None:
        if generation != self._generation or self._prayer_day is None:
            return

        now = self.now()
        self.state = evaluate(self._prayer_day.instants, now)
        self.updated.emit(self.state)

        today = day_key(now)
        if today != self._prayer_day.day_key and not self._day_change_reported:
            self._day_change_reported = True
            LOGGER.info("Day rolled over from %s to %s", self._prayer_day.day_key, today)
            self.day_changed.emit(today)
