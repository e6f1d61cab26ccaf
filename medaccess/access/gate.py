"""
The authorization decision consulted by every record-access path.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from ..audit.models import AuditCategory
from ..audit.service import AuditLevel, AuditService
from ..directory.service import RelationshipChecker
from .ledger import GrantLedger
from .models import MedicalAccessGrant


@dataclass
class AccessDecision:
    has_full_access: bool
    basis: str
    grant: Optional[MedicalAccessGrant] = None

    def to_dict(self) -> dict:
        return {
            "has_full_access": self.has_full_access,
            "basis": self.basis,
            "grant": self.grant.to_dict() if self.grant is not None else None,
        }


class AuthorizationGate:
    """Grant OR clinical relationship OR admin trait; read-only."""

    def __init__(
        self,
        ledger: GrantLedger,
        relationships: Optional[RelationshipChecker] = None,
        audit: Optional[AuditService] = None,
    ):
        self.ledger = ledger
        self.relationships = relationships
        self.audit = audit
        self.logger = logging.getLogger(__name__)

    async def check(
        self, patient_id: str, doctor_id: str, traits: Iterable[str] = ()
    ) -> AccessDecision:
        if "admin" in set(traits):
            decision = AccessDecision(True, "admin")
        else:
            grant = await self.ledger.get_active(patient_id, doctor_id)
            if grant is not None:
                decision = AccessDecision(True, "grant", grant)
            elif self.relationships is not None and await self.relationships.has_clinical_relationship(
                patient_id, doctor_id
            ):
                decision = AccessDecision(True, "clinical_relationship")
            else:
                decision = AccessDecision(False, "none")
        await self._audit(patient_id, doctor_id, decision)
        return decision

    async def is_authorized(self, patient_id: str, doctor_id: str) -> bool:
        return (await self.check(patient_id, doctor_id)).has_full_access

    async def _audit(self, patient_id: str, doctor_id: str, decision: AccessDecision) -> None:
        self.logger.debug(
            "Access check basis=%s allowed=%s", decision.basis, decision.has_full_access,
            extra={"trace_id": doctor_id},
        )
        if self.audit is None:
            return
        await self.audit.log_event(
            event_type="access_checked",
            category=AuditCategory.ACCESS,
            action="check",
            result="allow" if decision.has_full_access else "deny",
            description="Full record access check",
            resource_type="patient_record",
            resource_id=patient_id,
            user_id=doctor_id,
            level=AuditLevel.MINIMAL,
            phi_involved=decision.has_full_access,
            details={"basis": decision.basis},
        )
