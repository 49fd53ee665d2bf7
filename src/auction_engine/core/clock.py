"""Time sources for auction scheduling decisions."""

from datetime import datetime, timedelta, timezone


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime.

    The database stores TIMESTAMP WITHOUT TIME ZONE, so values read back are
    naive and are interpreted as UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock:
    """Supplies the current instant to the bidding path and the scheduler."""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self._now = ensure_utc(start) if start else datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = ensure_utc(value)

    def advance(self, delta: timedelta) -> datetime:
        self._now = self._now + delta
        return self._now
