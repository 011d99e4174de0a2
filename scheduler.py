"""Local alert scheduling on top of APScheduler."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from errors import NotificationSchedulingFailure

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrayerAlert:
    identifier: str
    prayer: str
    fire_at: datetime
    title: str
    body: str
    sound: Optional[str]
    recurring: bool = False


class AlertScheduler:
    """Wrap APScheduler so every alert is one job whose id is the alert identifier."""

    def __init__(self, timezone: str, deliver: Callable[[PrayerAlert], None]) -> None:
        self._scheduler = BackgroundScheduler(timezone=timezone)
        self._deliver = deliver

    def start(self) -> None:
        if not self._scheduler.running:
            LOGGER.info("Starting alert scheduler")
            self._scheduler.start()

    def shutdown(self) -> None:
        if self._scheduler.running:
            LOGGER.info("Stopping alert scheduler")
            self._scheduler.shutdown(wait=False)

    @property
    def timezone(self) -> str:
        tzinfo = self._scheduler.timezone
        zone = getattr(tzinfo, "zone", None) or getattr(tzinfo, "key", None)
        return str(zone or tzinfo)

    def schedule_alert(self, alert: PrayerAlert) -> None:
        """Arm *alert*, replacing any pending alert with the same identifier."""
        try:
            trigger = self._trigger_for(alert)
            self._scheduler.add_job(
                self._deliver,
                trigger=trigger,
                args=[alert],
                id=alert.identifier,
                name=alert.title,
                replace_existing=True,
            )
        except (ValueError, TypeError) as exc:
            raise NotificationSchedulingFailure(f"Could not schedule {alert.identifier}: {exc}") from exc
        LOGGER.debug("Scheduled alert %s at %s (recurring=%s)", alert.identifier, alert.fire_at, alert.recurring)

    def _trigger_for(self, alert: PrayerAlert):
        if alert.recurring:
            return CronTrigger(
                hour=alert.fire_at.hour,
                minute=alert.fire_at.minute,
                second=0,
                timezone=alert.fire_at.tzinfo or self._scheduler.timezone,
            )
        return DateTrigger(run_date=alert.fire_at)

    def cancel_alert(self, identifier: str) -> bool:
        """Remove a pending alert; returns False if none was pending."""
        with suppress_not_found() as outcome:
            self._scheduler.remove_job(identifier)
            LOGGER.debug("Cancelled alert %s", identifier)
            return True
        return not outcome.suppressed

    def pending_ids(self) -> List[str]:
        return [job.id for job in self._scheduler.get_jobs()]

    def next_fire_time(self, identifier: str) -> Optional[datetime]:
        job = self._scheduler.get_job(identifier)
        if job is None:
            return None
        return getattr(job, "next_run_time", None)


class suppress_not_found:
    """Context manager that suppresses APScheduler job lookup errors."""

    def __init__(self) -> None:
        self.suppressed = False

    def __enter__(self) -> "suppress_not_found":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            return False
        self.suppressed = isinstance(exc, JobLookupError)
        return self.suppressed
