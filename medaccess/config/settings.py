"""
Tunables for the delegation protocol.

Code length and drift window are configurable because the redemption scan
is population-wide: as the number of registered patients grows, a longer
code or a narrower drift window keeps the collision rate down.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Tuple

from .provider import ConfigProvider, EnvConfigProvider

logger = logging.getLogger(__name__)

WEAK_SECRETS = {"", "change-this-secret", "changeme"}


@dataclass(frozen=True)
class AccessSettings:
    code_step_seconds: int = 30
    code_digits: int = 6
    code_drift_steps: int = 1
    exchange_ttl_seconds: int = 300
    grant_ttl_hours: int = 24
    exchange_secret: str = "change-this-secret"
    seed_key: Optional[str] = None
    redeem_rate_limit: int = 10
    redeem_rate_window_seconds: int = 60
    # None keeps the directory's default encounter states
    relationship_statuses: Optional[Tuple[str, ...]] = None

    @property
    def exchange_ttl(self) -> timedelta:
        return timedelta(seconds=self.exchange_ttl_seconds)

    @property
    def grant_ttl(self) -> timedelta:
        return timedelta(hours=self.grant_ttl_hours)

    @classmethod
    def from_provider(cls, provider: Optional[ConfigProvider] = None) -> "AccessSettings":
        p = provider or EnvConfigProvider()
        # Secrets are read verbatim: "000123" must not become 123
        settings = cls(
            code_step_seconds=p.get_int("MEDACCESS_CODE_STEP_SECONDS", 30),
            code_digits=p.get_int("MEDACCESS_CODE_DIGITS", 6),
            code_drift_steps=p.get_int("MEDACCESS_CODE_DRIFT_STEPS", 1),
            exchange_ttl_seconds=p.get_int("MEDACCESS_EXCHANGE_TTL_SECONDS", 300),
            grant_ttl_hours=p.get_int("MEDACCESS_GRANT_TTL_HOURS", 24),
            exchange_secret=p.get_str("MEDACCESS_EXCHANGE_SECRET", "change-this-secret") or "",
            seed_key=p.get_str("MEDACCESS_SEED_KEY", None) or None,
            redeem_rate_limit=p.get_int("MEDACCESS_REDEEM_RATE_LIMIT", 10),
            redeem_rate_window_seconds=p.get_int("MEDACCESS_REDEEM_RATE_WINDOW", 60),
            relationship_statuses=_status_list(p.get_str("MEDACCESS_RELATIONSHIP_STATUSES", None)),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.code_step_seconds <= 0:
            raise ValueError("code_step_seconds must be positive")
        if not 6 <= self.code_digits <= 10:
            raise ValueError("code_digits must be between 6 and 10")
        if self.code_drift_steps < 0:
            raise ValueError("code_drift_steps must not be negative")
        if self.exchange_ttl_seconds <= 0 or self.grant_ttl_hours <= 0:
            raise ValueError("token and grant lifetimes must be positive")
        if self.redeem_rate_limit <= 0 or self.redeem_rate_window_seconds <= 0:
            raise ValueError("redeem rate limit and window must be positive")
        if self.relationship_statuses is not None and not self.relationship_statuses:
            raise ValueError("relationship_statuses must name at least one encounter status")
        if self.exchange_secret in WEAK_SECRETS:
            logger.warning(
                "Using default/weak exchange token secret. Set MEDACCESS_EXCHANGE_SECRET in production."
            )


def _status_list(value: Optional[str]) -> Optional[Tuple[str, ...]]:
    if value is None or not value.strip():
        return None
    return tuple(s.strip().upper() for s in value.split(",") if s.strip())
