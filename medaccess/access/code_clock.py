"""
Rotating one-time codes (RFC 6238 TOTP) derived from a patient seed.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime
from typing import Tuple

import pyotp

from ..clock import as_utc


@dataclass(frozen=True)
class CurrentCode:
    code: str
    remaining_seconds: int
    step_seconds: int


class CodeClock:
    def __init__(self, step_seconds: int = 30, digits: int = 6):
        self.step_seconds = step_seconds
        self.digits = digits

    def _totp(self, seed: str) -> pyotp.TOTP:
        return pyotp.TOTP(seed, digits=self.digits, interval=self.step_seconds)

    def remaining_seconds(self, now: datetime) -> int:
        ts = calendar.timegm(as_utc(now).utctimetuple())
        return self.step_seconds - (ts % self.step_seconds)

    def current_code(self, seed: str, now: datetime) -> Tuple[str, int]:
        """Return (code, seconds until the code rotates). Pure."""
        now = as_utc(now)
        return self._totp(seed).at(now), self.remaining_seconds(now)

    def describe(self, seed: str, now: datetime) -> CurrentCode:
        code, remaining = self.current_code(seed, now)
        return CurrentCode(code=code, remaining_seconds=remaining, step_seconds=self.step_seconds)

    def matches(self, seed: str, code: str, now: datetime, drift_steps: int = 1) -> bool:
        """Constant-time check against the codes for now ± drift_steps steps."""
        return self._totp(seed).verify(code, for_time=as_utc(now), valid_window=drift_steps)

    @staticmethod
    def new_seed() -> str:
        return pyotp.random_base32()
