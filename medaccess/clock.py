"""
Wall-clock sources.

Components take a clock instead of calling datetime.now() so that code
windows, token lifetimes and grant expiry can be driven in tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(tz=timezone.utc)


class FrozenClock:
    """Clock pinned to an instant until moved explicitly."""

    def __init__(self, at: Optional[datetime] = None) -> None:
        self._now = as_utc(at) if at else datetime.now(tz=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, at: datetime) -> None:
        self._now = as_utc(at)

    def advance(self, **delta: float) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now


def as_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
