"""
Clock / calendar oracle.

Every date rule in the reading-event engine is evaluated against an explicit
``today`` value. Services accept ``today`` as a parameter; the HTTP layer
obtains it from the clock registered on the app (``app.extensions["clock"]``),
which tests replace with a ``FixedClock``.

Usage:
    from bookclub.core.clock import SystemClock, FixedClock, day_offset

    clock = FixedClock(date(2026, 3, 1))
    clock.today()                          # date(2026, 3, 1)
    clock.advance(days=2)
    day_offset(schedule.date, clock.today())   # -1 → one day before D
"""

from datetime import date, datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def today(self) -> date: ...

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def today(self) -> date:
        return self.now().date()

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Deterministic clock for tests and replay; mutable via ``set``/``advance``."""

    def __init__(self, current: date):
        self._current = current

    def today(self) -> date:
        return self._current

    def now(self) -> datetime:
        return datetime(self._current.year, self._current.month, self._current.day,
                        12, 0, tzinfo=timezone.utc)

    def set(self, current: date) -> None:
        self._current = current

    def advance(self, days: int = 1) -> date:
        self._current = self._current + timedelta(days=days)
        return self._current

    def __repr__(self):
        return f"<FixedClock {self._current.isoformat()}>"


# ── Date helpers ─────────────────────────────────────────────────────────────


def days_between(start: date, end: date) -> list[date]:
    """Inclusive list of calendar days from ``start`` to ``end``."""
    if end < start:
        return []
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def day_offset(day: date, today: date) -> int:
    """Signed distance of ``today`` from ``day`` (0 on the day itself)."""
    return (today - day).days


def in_window(day: date, today: date, lo: int, hi: int) -> bool:
    """True when ``today`` lies in ``[day + lo, day + hi]``."""
    return lo <= day_offset(day, today) <= hi


def end_of_day(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, 23, 59, 59, tzinfo=timezone.utc)
