"""Entry point and coordinator for the prayer companion."""
from __future__ import annotations

import logging
import sys
from concurrent.futures import Executor, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import pytz

try:  # Prefer PyQt5, fall back to Qt for Python if available
    from PyQt5 import QtCore  # type: ignore
except Exception:  # pragma: no cover - fallback only used when PyQt5 missing
    try:
        from PySide2 import QtCore  # type: ignore
    except Exception:
        from PySide6 import QtCore  # type: ignore

try:  # Compatibility alias for Qt signal and slot decorators
    Signal = QtCore.pyqtSignal  # type: ignore[attr-defined]
    Slot = QtCore.pyqtSlot  # type: ignore[attr-defined]
except AttributeError:  # pragma: no cover - PySide compatibility
    Signal = QtCore.Signal  # type: ignore[attr-defined]
    Slot = QtCore.Slot  # type: ignore[attr-defined]

from achievements import AchievementTracker
from cloud_sync import ProgressSync
from config import config_path, load_config, resolve_storage_path
from countdown import CountdownState, PrayerCountdown
from day_keys import day_key
from errors import LocationUnavailable, ProviderComputationFailure
from notifications import NotificationOption, NotificationPreferenceStore, PrayerNotifier
from prayer_status import PrayerStatus, PrayerStatusStore
from prayer_times import (
    PRAYER_ORDER,
    UNKNOWN_LOCATION,
    CalculationMethod,
    DailyPrayerSet,
    LocationInfo,
    Madhab,
    PrayerTimesService,
    build_location_from_config,
    detect_location_from_ip,
    local_timezone_name,
    reverse_geocode,
)
from progress import ProgressLedger
from scheduler import AlertScheduler, PrayerAlert
from storage import KeyValueStore

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOGGER = logging.getLogger(__name__)

STATUS_UPDATING = "Updating prayer times..."
STATUS_UPDATED = "Prayer times updated."
STATUS_LOCATION_ERROR = "Unable to detect location. Please set it manually."
STATUS_COMPUTE_ERROR = "Unable to compute prayer times."

RETRY_INTERVAL_MS = 60 * 1000
MAX_RETRY_INTERVAL_MS = 30 * 60 * 1000


@dataclass(frozen=True)
class PrayerRow:
    name: str
    time: datetime
    status: PrayerStatus
    notification: NotificationOption


class _AsyncDispatcher(QtCore.QObject):
    """Provide main-thread delivery for background task callbacks."""

    success = Signal(object)
    error = Signal(object)

    def __init__(
        self,
        owner: "PrayerCompanion",
        on_success: Callable[[Any], None],
        on_error: Callable[[Exception], None],
    ) -> None:
        super().__init__()
        self._owner = owner
        self._on_success = on_success
        self._on_error = on_error
        self.success.connect(self._handle_success)  # type: ignore[attr-defined]
        self.error.connect(self._handle_error)  # type: ignore[attr-defined]

    @Slot(object)
    def _handle_success(self, result: Any) -> None:
        LOGGER.debug("Dispatcher invoking success handler %s", getattr(self._on_success, "__name__", self._on_success))
        try:
            self._on_success(result)
        finally:
            self._owner._async_dispatchers.discard(self)
            self.deleteLater()

    @Slot(object)
    def _handle_error(self, exc: Exception) -> None:
        LOGGER.debug("Dispatcher invoking error handler %s", getattr(self._on_error, "__name__", self._on_error))
        try:
            self._on_error(exc)
        finally:
            self._owner._async_dispatchers.discard(self)
            self.deleteLater()


class PrayerCompanion(QtCore.QObject):
    """Coordinates location, prayer times, countdown, alerts and progress.

    Every collaborator is passed in. All state changes happen on the Qt thread;
    worker results arrive through :class:`_AsyncDispatcher` signals.
    """

    status_changed = Signal(str)
    prayer_day_changed = Signal(object)
    location_name_changed = Signal(str)
    achievement_unlocked = Signal(object)
    alert_fired = Signal(object)

    def __init__(
        self,
        config: Dict[str, Any],
        prayer_service: PrayerTimesService,
        statuses: PrayerStatusStore,
        preferences: NotificationPreferenceStore,
        notifier: PrayerNotifier,
        ledger: ProgressLedger,
        sync: ProgressSync,
        countdown: PrayerCountdown,
        executor: Optional[Executor] = None,
        location_executor: Optional[Executor] = None,
        locator: Callable[[float], LocationInfo] = detect_location_from_ip,
        geocoder: Callable[[float, float], str] = reverse_geocode,
        retry_interval_ms: int = RETRY_INTERVAL_MS,
        parent: Optional[QtCore.QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._config = config
        self.prayer_service = prayer_service
        self.statuses = statuses
        self.preferences = preferences
        self.notifier = notifier
        self.ledger = ledger
        self.sync = sync
        self.countdown = countdown
        self._executor = executor or ThreadPoolExecutor(max_workers=2)
        self._location_executor = location_executor or ThreadPoolExecutor(max_workers=1)
        self._locator = locator
        self._geocoder = geocoder
        self._async_dispatchers: Set[_AsyncDispatcher] = set()

        self.current_prayer_day: Optional[DailyPrayerSet] = None
        self.current_location: Optional[LocationInfo] = build_location_from_config(config)
        self.location_name = UNKNOWN_LOCATION
        self.status_message = ""
        self._last_current_prayer: Optional[str] = None
        self._tracking_today = False
        self._retry_interval_ms = retry_interval_ms
        self._retry_attempts = 0
        self._retry_timer = QtCore.QTimer(self)
        self._retry_timer.setSingleShot(True)
        self._retry_timer.timeout.connect(self._retry_refresh)  # type: ignore

        location_cfg = config.get("location") if isinstance(config.get("location"), dict) else {}
        self.location_timeout = float(location_cfg.get("timeout_seconds") or 15)
        notifications_cfg = config.get("notifications") if isinstance(config.get("notifications"), dict) else {}
        self.recurring_alerts = bool(notifications_cfg.get("recurring", False))

        self.countdown.day_changed.connect(self._on_day_changed)  # type: ignore
        self.countdown.updated.connect(self._on_countdown_updated)  # type: ignore
        self.ledger.achievements.on_unlock(self.achievement_unlocked.emit)

    # ------------------------------------------------------------------
    def refresh(self, target_date: Optional[date] = None) -> None:
        """Recompute today's (or *target_date*'s) prayer set in the background."""
        self._set_status(STATUS_UPDATING)
        LOGGER.debug("Refreshing prayer times (auto_location=%s)", self._config.get("auto_location", True))

        def task() -> Tuple[DailyPrayerSet, Optional[DailyPrayerSet]]:
            location = self._resolve_location()
            LOGGER.debug(
                "Resolved location for refresh: city=%s country=%s lat=%s lon=%s tz=%s",
                location.city,
                location.country,
                location.latitude,
                location.longitude,
                location.timezone,
            )
            today = self._location_today(location)
            requested = target_date or today
            prayer_day = self.prayer_service.compute_daily_times(location, requested)
            if requested != today:
                return prayer_day, None
            try:
                tomorrow = self.prayer_service.compute_daily_times(location, today + timedelta(days=1))
            except ProviderComputationFailure:
                LOGGER.warning("Could not compute next day's prayer times; arming today only", exc_info=True)
                tomorrow = None
            return prayer_day, tomorrow

        self._run_async(task, self._handle_refresh_success, self._handle_refresh_error)

    def _resolve_location(self) -> LocationInfo:
        auto_location = bool(self._config.get("auto_location", True))
        if auto_location:
            future = self._location_executor.submit(self._locator, self.location_timeout)
            try:
                return future.result(timeout=self.location_timeout)
            except FutureTimeout:
                future.cancel()
                LOGGER.warning("Location fix timed out after %.0fs", self.location_timeout)
                failure: Exception = LocationUnavailable(f"No location fix within {self.location_timeout:.0f}s")
            except LocationUnavailable as exc:
                LOGGER.warning("Automatic location detection failed: %s", exc)
                failure = exc

            if self.current_location:
                LOGGER.debug("Using previously stored location: %s", self.current_location)
                return self.current_location
            raise failure

        if self.current_location:
            LOGGER.debug("Using configured manual location: %s", self.current_location)
            return self.current_location
        raise LocationUnavailable("Manual location not configured")

    def _location_today(self, location: LocationInfo) -> date:
        """Today's date at *location*, which may differ from the machine's."""
        tzinfo = None
        if location.timezone:
            try:
                tzinfo = pytz.timezone(location.timezone)
            except pytz.UnknownTimeZoneError:
                LOGGER.warning("Unknown timezone %s; using the current zone for today's date", location.timezone)
        return self.countdown.now(tzinfo).date()

    def _handle_refresh_success(self, result: Tuple[DailyPrayerSet, Optional[DailyPrayerSet]]) -> None:
        prayer_day, tomorrow = result
        self._retry_timer.stop()
        self._retry_attempts = 0
        self.current_prayer_day = prayer_day
        self.current_location = prayer_day.location
        LOGGER.info("Prayer times refreshed for %s (%s)", prayer_day.location_name, prayer_day.day_key)

        # The countdown only runs for the set covering today in its own zone.
        self._tracking_today = prayer_day.day_key == day_key(self.countdown.now(prayer_day.tzinfo))
        if self._tracking_today:
            self.countdown.set_prayer_day(prayer_day)
            if tomorrow is not None:
                self.notifier.schedule_next_day(prayer_day, tomorrow)
            else:
                self.notifier.schedule_day(prayer_day)
            if self.recurring_alerts:
                self.notifier.schedule_daily(prayer_day)
        else:
            LOGGER.debug("Showing %s without a countdown", prayer_day.day_key)
            self.countdown.stop()

        self.prayer_day_changed.emit(prayer_day)
        self._set_status(STATUS_UPDATED)
        self._refresh_location_name(prayer_day)

    def _handle_refresh_error(self, error: Exception) -> None:
        LOGGER.error("Failed to refresh prayer times", exc_info=error)
        if isinstance(error, LocationUnavailable):
            self.countdown.stop()
            self._set_status(STATUS_LOCATION_ERROR)
        else:
            if self.current_prayer_day is not None:
                LOGGER.info("Keeping last good prayer times for %s", self.current_prayer_day.day_key)
            self._set_status(STATUS_COMPUTE_ERROR)
        if self._held_day_is_stale():
            self._schedule_retry()

    def _held_day_is_stale(self) -> bool:
        prayer_day = self.current_prayer_day
        if prayer_day is None or not self._tracking_today:
            return False
        return prayer_day.day_key != day_key(self.countdown.now(prayer_day.tzinfo))

    def _schedule_retry(self) -> None:
        delay = min(self._retry_interval_ms * 2 ** self._retry_attempts, MAX_RETRY_INTERVAL_MS)
        self._retry_attempts += 1
        LOGGER.info("Retrying prayer time refresh in %.0fs", delay / 1000)
        self._retry_timer.start(delay)

    def _retry_refresh(self) -> None:
        self.refresh()

    def _refresh_location_name(self, prayer_day: DailyPrayerSet) -> None:
        location = prayer_day.location
        self.location_name = prayer_day.location_name
        if not location.has_coordinates:
            self.location_name_changed.emit(self.location_name)
            return

        def task() -> str:
            return self._geocoder(location.latitude, location.longitude)

        def on_success(name: str) -> None:
            self._apply_location_name(prayer_day, name or UNKNOWN_LOCATION)

        def on_error(exc: Exception) -> None:
            LOGGER.warning("Reverse geocoding failed: %s", exc)
            self._apply_location_name(prayer_day, prayer_day.location_name)

        self._run_async(task, on_success, on_error)

    def _apply_location_name(self, prayer_day: DailyPrayerSet, name: str) -> None:
        if self.current_prayer_day is not prayer_day:
            LOGGER.debug("Discarding location name for superseded prayer set")
            return
        self.location_name = name
        self.current_prayer_day = prayer_day.with_location_name(name)
        self.location_name_changed.emit(name)

    # -- prayer list -----------------------------------------------------
    def prayer_rows(self, key: Optional[str] = None) -> List[PrayerRow]:
        """Rows for the held prayer set; empty when none has been computed."""
        prayer_day = self.current_prayer_day
        if prayer_day is None:
            return []
        key = key or prayer_day.day_key
        statuses = self.statuses.bulk_load(key, PRAYER_ORDER)
        options = self.preferences.bulk_load(key, PRAYER_ORDER)
        return [
            PrayerRow(name=info.name, time=info.time, status=statuses[info.name], notification=options[info.name])
            for info in prayer_day.instants
        ]

    def cycle_status(self, prayer_name: str, key: Optional[str] = None) -> PrayerStatus:
        return self.statuses.cycle(key or self._selected_day_key(), prayer_name)

    def set_notification(self, prayer_name: str, option: NotificationOption, key: Optional[str] = None) -> None:
        self.preferences.set(key or self._selected_day_key(), prayer_name, option)

    def _selected_day_key(self) -> str:
        if self.current_prayer_day is not None:
            return self.current_prayer_day.day_key
        return day_key(self.countdown.now())

    # -- lifecycle -------------------------------------------------------
    def foreground(self) -> None:
        """App came to the foreground: age the streak and retry pending sync."""
        self.ledger.touch_study_day(day_key(self.countdown.now()))
        if self.sync.pending is not None and not self.sync.flush():
            return
        self.sync.push(self.ledger.snapshot())

    def deliver_alert(self, alert: PrayerAlert) -> None:
        """Alert callback; runs on the scheduler thread, so only emit."""
        self.alert_fired.emit(alert)

    def shutdown(self) -> None:
        self._retry_timer.stop()
        self.countdown.stop()
        self.notifier.shutdown()
        self._executor.shutdown(wait=False)
        self._location_executor.shutdown(wait=False)

    def _on_day_changed(self, new_day_key: str) -> None:
        if self.current_prayer_day is not None and self.current_prayer_day.day_key == new_day_key:
            LOGGER.debug("Already holding prayer times for %s", new_day_key)
            return
        LOGGER.info("New day %s; recomputing prayer times", new_day_key)
        self.refresh()

    def _on_countdown_updated(self, state: CountdownState) -> None:
        if state.current_prayer != self._last_current_prayer:
            self._last_current_prayer = state.current_prayer
            LOGGER.info("Current prayer: %s (%s)", state.current_prayer, state.remaining_label)

    def _set_status(self, message: str) -> None:
        self.status_message = message
        self.status_changed.emit(message)

    def _run_async(self, func, on_success, on_error) -> None:
        LOGGER.debug("Submitting background task %s", getattr(func, "__name__", func))
        dispatcher = _AsyncDispatcher(self, on_success, on_error)
        self._async_dispatchers.add(dispatcher)
        future = self._executor.submit(func)

        def _done(future_result) -> None:
            try:
                result = future_result.result()
                LOGGER.debug("Background task %s completed successfully", getattr(func, "__name__", func))
            except Exception as exc:  # pragma: no cover - UI glue
                LOGGER.debug("Background task %s raised %r", getattr(func, "__name__", func), exc)
                dispatcher.error.emit(exc)
            else:
                dispatcher.success.emit(result)

        future.add_done_callback(_done)


def build_companion(config: Dict[str, Any], base_path: Optional[Path] = None) -> PrayerCompanion:
    """Construct every collaborator once and wire them together."""
    store = KeyValueStore(resolve_storage_path(config, base_path))

    calc_cfg = config.get("calculation", {}) if isinstance(config.get("calculation"), dict) else {}
    prayer_service = PrayerTimesService(
        method=CalculationMethod.from_name(calc_cfg.get("method")),
        madhab=Madhab.from_name(calc_cfg.get("madhab")),
    )

    notifications_cfg = config.get("notifications", {}) if isinstance(config.get("notifications"), dict) else {}
    sync_cfg = config.get("sync", {}) if isinstance(config.get("sync"), dict) else {}

    companion: Optional[PrayerCompanion] = None
    scheduler = AlertScheduler(local_timezone_name(), lambda alert: companion.deliver_alert(alert))
    preferences = NotificationPreferenceStore(store)
    notifier = PrayerNotifier(
        scheduler,
        preferences,
        special_sound=str(notifications_cfg.get("adhan_sound") or "adhan.mp3"),
    )
    preferences.on_change(notifier.rearm)

    companion = PrayerCompanion(
        config=config,
        prayer_service=prayer_service,
        statuses=PrayerStatusStore(store),
        preferences=preferences,
        notifier=notifier,
        ledger=ProgressLedger(store, AchievementTracker(store)),
        sync=ProgressSync(sync_cfg.get("endpoint"), timeout=float(sync_cfg.get("timeout") or 10)),
        countdown=PrayerCountdown(),
    )
    notifier.start()
    return companion


def _log_alert(alert: PrayerAlert) -> None:
    LOGGER.info("%s: %s (sound=%s)", alert.title, alert.body, alert.sound)


def main() -> int:
    config = load_config()
    logging.basicConfig(level=str(config.get("log_level", "INFO")).upper(), format=LOG_FORMAT)
    app = QtCore.QCoreApplication(sys.argv)
    app.setApplicationName("Prayer Companion")

    companion = build_companion(config, config_path().parent)
    companion.status_changed.connect(lambda message: LOGGER.info("%s", message))  # type: ignore
    companion.alert_fired.connect(_log_alert)  # type: ignore
    app.aboutToQuit.connect(companion.shutdown)  # type: ignore

    companion.foreground()
    QtCore.QTimer.singleShot(0, companion.refresh)
    return app.exec_()


if __name__ == "__main__":
    sys.exit(main())
