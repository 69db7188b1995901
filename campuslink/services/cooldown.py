"""Re-entry cooldown after a member is removed from a project team."""

from datetime import datetime, timedelta, timezone

from campuslink.config import settings

REENTRY_COOLDOWN = timedelta(minutes=settings.REENTRY_COOLDOWN_MINUTES)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat those as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_reentry_allowed(
    removal_time: datetime, now: datetime, window: timedelta = REENTRY_COOLDOWN
) -> bool:
    return as_utc(now) - as_utc(removal_time) >= window


def remaining_cooldown(
    removal_time: datetime, now: datetime, window: timedelta = REENTRY_COOLDOWN
) -> timedelta:
    """Time left before re-entry is allowed; zero once the window has elapsed."""
    remaining = window - (as_utc(now) - as_utc(removal_time))
    return max(remaining, timedelta(0))
