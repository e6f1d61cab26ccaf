"""
Exchange tokens: the short-lived proof that a patient's code was redeemed.

Tokens are HS256 JWTs signed with a server-held key, so neither the bound
patient nor the expiry can be edited by whoever holds the token. Expiry is
checked against the injected clock rather than inside PyJWT so the window
is testable and shares a time source with code redemption.
"""

from __future__ import annotations

import hmac
import logging
import math
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from ..clock import Clock, SystemClock
from .errors import TokenExpired, TokenMalformed, TokenPatientMismatch

logger = logging.getLogger(__name__)

EXCHANGE_TOKEN_TYPE = "medical_access_exchange"
EXCHANGE_AUDIENCE = "medaccess:grant"
_ALGORITHM = "HS256"


@dataclass(frozen=True)
class IssuedExchangeToken:
    token: str
    patient_id: str
    expires_at: datetime
    expires_in: int


@dataclass(frozen=True)
class ExchangeClaims:
    patient_id: str
    jti: str
    issued_at: datetime
    expires_at: datetime


class ExchangeTokenService:
    def __init__(
        self,
        secret: str,
        ttl: timedelta = timedelta(minutes=5),
        clock: Optional[Clock] = None,
    ):
        if not secret:
            raise ValueError("exchange token secret must not be empty")
        self.secret = secret
        self.ttl = ttl
        self.clock = clock or SystemClock()

    def issue(self, patient_id: str) -> IssuedExchangeToken:
        """Mint a token for `patient_id`.

        JWT times are whole seconds; `exp` is rounded up so the token lives at
        least `ttl` (and under one second more).
        """
        issued = self.clock.now().timestamp()
        ttl_seconds = int(self.ttl.total_seconds())
        iat = int(issued)
        exp = math.ceil(issued) + ttl_seconds
        payload = {
            "sub": patient_id,
            "typ": EXCHANGE_TOKEN_TYPE,
            "aud": EXCHANGE_AUDIENCE,
            "iat": iat,
            "exp": exp,
            "jti": os.urandom(16).hex(),
        }
        token = jwt.encode(payload, self.secret, algorithm=_ALGORITHM)
        return IssuedExchangeToken(
            token=token,
            patient_id=patient_id,
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
            expires_in=ttl_seconds,
        )

    def verify(self, token: str, expected_patient_id: str) -> ExchangeClaims:
        """Return the claims or raise TokenMalformed, TokenExpired or TokenPatientMismatch."""
        if not isinstance(token, str) or not token.strip():
            raise TokenMalformed()
        try:
            claims = jwt.decode(
                token.strip(),
                self.secret,
                algorithms=[_ALGORITHM],
                audience=EXCHANGE_AUDIENCE,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": ["sub", "typ", "iat", "exp", "jti"],
                },
            )
        except jwt.InvalidTokenError as e:
            logger.info("Rejected exchange token: %s", e.__class__.__name__)
            raise TokenMalformed() from None

        exp = claims.get("exp")
        iat = claims.get("iat")
        if (
            claims.get("typ") != EXCHANGE_TOKEN_TYPE
            or not isinstance(exp, int)
            or not isinstance(iat, int)
            or not isinstance(claims.get("sub"), str)
        ):
            raise TokenMalformed()

        if self.clock.now().timestamp() >= exp:
            raise TokenExpired()

        if not hmac.compare_digest(claims["sub"].encode(), str(expected_patient_id).encode()):
            raise TokenPatientMismatch()

        return ExchangeClaims(
            patient_id=claims["sub"],
            jti=str(claims["jti"]),
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )
