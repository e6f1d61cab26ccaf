"""
Code redemption: find which patient a submitted code belongs to.

There is no index from code to patient; codes are short and shared across
the population, so every stored seed is checked. The scan is linear in the
number of registered patients and the chance of two seeds producing the same
code in the accepted window grows with it. Keep codes short enough to read
aloud and tune `code_digits` / `code_drift_steps` instead of adding a
reverse index.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..audit.models import AuditCategory
from ..audit.service import AuditService
from ..clock import Clock, SystemClock
from .code_clock import CodeClock
from .errors import InvalidInputFormat, NoMatchingSecret
from .secret_store import SecretStore
from .tokens import ExchangeTokenService, IssuedExchangeToken


class CodeRedeemer:
    def __init__(
        self,
        store: SecretStore,
        code_clock: CodeClock,
        tokens: ExchangeTokenService,
        clock: Optional[Clock] = None,
        drift_steps: int = 1,
        audit: Optional[AuditService] = None,
    ):
        self.store = store
        self.code_clock = code_clock
        self.tokens = tokens
        self.clock = clock or SystemClock()
        self.drift_steps = drift_steps
        self.audit = audit
        self.logger = logging.getLogger(__name__)

    def validate_format(self, submitted: Optional[str]) -> str:
        code = (submitted or "").strip() if isinstance(submitted, str) else ""
        # isdigit() accepts non-ASCII digits; only 0-9 are valid here
        if len(code) != self.code_clock.digits or not all("0" <= c <= "9" for c in code):
            raise InvalidInputFormat(f"Code must be exactly {self.code_clock.digits} digits")
        return code

    async def find_patient(self, submitted: str) -> Optional[str]:
        """First patient whose seed accepts the code at now ± drift, else None."""
        code = self.validate_format(submitted)
        now = self.clock.now()
        for patient_id, seed in await self.store.all_seeds():
            if self.code_clock.matches(seed, code, now, self.drift_steps):
                return patient_id
        return None

    async def redeem(self, submitted: str, clinician_id: Optional[str] = None) -> IssuedExchangeToken:
        patient_id = await self.find_patient(submitted)
        if patient_id is None:
            self.logger.info("Code redemption failed", extra={"trace_id": clinician_id or "unknown"})
            await self._audit("code_rejected", "failure", None, clinician_id)
            raise NoMatchingSecret()

        issued = self.tokens.issue(patient_id)
        await self._audit("code_redeemed", "success", patient_id, clinician_id)
        return issued

    async def _audit(
        self, event_type: str, result: str, patient_id: Optional[str], clinician_id: Optional[str]
    ) -> None:
        if self.audit is None:
            return
        await self.audit.log_event(
            event_type=event_type,
            category=AuditCategory.SECURITY,
            action="redeem_code",
            result=result,
            description=f"Access code redemption {result}",
            resource_type="patient_secret",
            resource_id=patient_id,
            user_id=clinician_id,
        )
