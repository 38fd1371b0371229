"""
Time provider.

Every "today" in the engine (completion buckets, streak windows, daily
scores, health decay) is derived from one injected clock, so tests can pin
dates and production can cut days in the user's zone.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from core.config import settings


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock:
    """Wall-clock reads in a fixed zone."""

    def __init__(self, tz: Optional[str] = None):
        self.tz = ZoneInfo(tz or settings.TIMEZONE)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def utcnow(self) -> datetime:
        """Current instant in UTC, the form instants are stored in."""
        return as_utc(self.now())

    def today(self) -> date:
        return self.now().date()

    def local_date(self, instant: datetime) -> date:
        """Calendar date of an instant in this clock's zone."""
        return as_utc(instant).astimezone(self.tz).date()

    def day_bounds(self, day: Optional[date] = None) -> Tuple[datetime, datetime]:
        """Half-open [start, next_start) for a calendar day."""
        day = day or self.today()
        start = datetime.combine(day, time.min, tzinfo=self.tz)
        return start, datetime.combine(day + timedelta(days=1), time.min, tzinfo=self.tz)

    def hours_remaining_today(self) -> float:
        now = self.now()
        _, midnight = self.day_bounds(now.date())
        remaining = (midnight - now).total_seconds() / 3600
        return max(0.0, round(remaining, 1))


class SystemClock(Clock):
    pass


class FixedClock(Clock):
    """Pinned clock for tests and replays."""

    def __init__(self, instant: datetime, tz: Optional[str] = None):
        super().__init__(tz)
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self.tz)
        self._instant = instant.astimezone(self.tz)

    def now(self) -> datetime:
        return self._instant

    def advance(self, **delta) -> "FixedClock":
        self._instant = self._instant + timedelta(**delta)
        return self

    def set(self, instant: datetime) -> "FixedClock":
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self.tz)
        self._instant = instant.astimezone(self.tz)
        return self


_default_clock: Optional[Clock] = None


def get_clock() -> Clock:
    global _default_clock
    if _default_clock is None:
        _default_clock = SystemClock()
    return _default_clock


def set_clock(clock: Optional[Clock]) -> None:
    """Replace the process-wide clock (None restores the system clock)."""
    global _default_clock
    _default_clock = clock
