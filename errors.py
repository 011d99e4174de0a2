"""Error types shared by the prayer companion modules."""
from __future__ import annotations


class PrayerCompanionError(Exception):
    """Base class for recoverable prayer companion failures."""


class LocationUnavailable(PrayerCompanionError):
    """No location fix: permission denied, lookup failed, or the wait timed out."""


class ProviderComputationFailure(PrayerCompanionError):
    """Prayer times could not be computed for the requested date and location."""


class NotificationSchedulingFailure(PrayerCompanionError):
    """An alert could not be armed or cancelled."""
