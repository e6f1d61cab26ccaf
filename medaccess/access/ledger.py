"""
Grant ledger: create-or-renew, list and revoke medical access grants.

A pair (patient, doctor) has at most one row with is_active=true, enforced
by a partial unique index. A repeat grant renews that row in place. When two
requests race to create the first grant for a pair, the loser's insert hits
the index; its unit of work is retried once and becomes a renewal of the
winner's row.

Each exchange token is spent in the grant transaction by recording its jti.
Records of tokens that have since expired are purged by later grant writes.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..audit.models import AuditCategory
from ..audit.service import AuditService
from ..clock import Clock, SystemClock
from .errors import (
    GrantNotFound,
    InvalidInputFormat,
    StoreUnavailable,
    TokenAlreadyUsed,
    TokenExpired,
)
from .models import ConsumedExchangeToken, MedicalAccessGrant
from .predicates import effectively_active_clause, is_effectively_active
from .storage import SessionFactory, session_scope
from .tokens import ExchangeClaims, ExchangeTokenService


class _ActivePairConflict(Exception):
    """Another writer inserted the active grant for this pair first."""


class GrantLedger:
    def __init__(
        self,
        session_factory: SessionFactory,
        tokens: ExchangeTokenService,
        clock: Optional[Clock] = None,
        grant_ttl: timedelta = timedelta(hours=24),
        audit: Optional[AuditService] = None,
    ):
        self.session_factory = session_factory
        self.tokens = tokens
        self.clock = clock or SystemClock()
        self.grant_ttl = grant_ttl
        self.audit = audit
        self.logger = logging.getLogger(__name__)

    async def create_or_renew(
        self, patient_id: str, doctor_id: str, token: str
    ) -> MedicalAccessGrant:
        if not patient_id or not doctor_id:
            raise InvalidInputFormat("patient_id and doctor_id are required")
        claims = self.tokens.verify(token, patient_id)

        for attempt in range(2):
            try:
                grant, renewed = await self._consume_and_upsert(claims, doctor_id)
            except _ActivePairConflict:
                self.logger.info(
                    "Concurrent grant creation for pair, retrying as renewal",
                    extra={"trace_id": doctor_id},
                )
                if attempt == 0:
                    continue
                raise StoreUnavailable()
            await self._audit(
                "grant_renewed" if renewed else "grant_created",
                grant,
                doctor_id,
            )
            return grant
        raise StoreUnavailable()

    async def _consume_and_upsert(
        self, claims: ExchangeClaims, doctor_id: str
    ) -> Tuple[MedicalAccessGrant, bool]:
        now = self.clock.now()
        if claims.expires_at <= now:
            # Expired between verification and this write; its jti may be purged below
            raise TokenExpired()
        async with session_scope(self.session_factory) as session:
            # Spent jtis are only needed until their token would have expired anyway
            await session.execute(
                delete(ConsumedExchangeToken).where(ConsumedExchangeToken.expires_at <= now)
            )
            # Consumed in the same transaction as the grant write
            session.add(
                ConsumedExchangeToken(
                    jti=claims.jti,
                    patient_id=claims.patient_id,
                    doctor_id=doctor_id,
                    consumed_at=now,
                    expires_at=claims.expires_at,
                )
            )
            try:
                await session.flush()
            except IntegrityError:
                await session.rollback()
                raise TokenAlreadyUsed() from None

            grant = await self._find_active(session, claims.patient_id, doctor_id)
            renewed = grant is not None
            if grant is None:
                grant = MedicalAccessGrant(
                    patient_id=claims.patient_id,
                    doctor_id=doctor_id,
                    granted_at=now,
                    expires_at=now + self.grant_ttl,
                    revoked_at=None,
                    is_active=True,
                )
                session.add(grant)
            else:
                grant.granted_at = now
                grant.expires_at = now + self.grant_ttl
                grant.revoked_at = None
                grant.is_active = True

            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise _ActivePairConflict() from None
            return grant, renewed

    async def _find_active(
        self, session: AsyncSession, patient_id: str, doctor_id: str
    ) -> Optional[MedicalAccessGrant]:
        """The pair's is_active row, expired or not."""
        return await session.scalar(
            select(MedicalAccessGrant)
            .where(
                MedicalAccessGrant.patient_id == patient_id,
                MedicalAccessGrant.doctor_id == doctor_id,
                MedicalAccessGrant.is_active.is_(True),
            )
            .with_for_update()
        )

    async def get_active(self, patient_id: str, doctor_id: str) -> Optional[MedicalAccessGrant]:
        now = self.clock.now()
        async with session_scope(self.session_factory) as session:
            grant = await session.scalar(
                select(MedicalAccessGrant).where(
                    MedicalAccessGrant.patient_id == patient_id,
                    MedicalAccessGrant.doctor_id == doctor_id,
                    effectively_active_clause(now),
                )
            )
        return grant if is_effectively_active(grant, now) else None

    async def list_active(self, patient_id: str) -> List[MedicalAccessGrant]:
        now = self.clock.now()
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(MedicalAccessGrant)
                .where(
                    MedicalAccessGrant.patient_id == patient_id,
                    effectively_active_clause(now),
                )
                .order_by(MedicalAccessGrant.granted_at.desc())
            )
            grants = list(result.scalars().all())
        return [g for g in grants if is_effectively_active(g, now)]

    async def list_for_doctor(self, doctor_id: str) -> List[MedicalAccessGrant]:
        now = self.clock.now()
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(MedicalAccessGrant)
                .where(
                    MedicalAccessGrant.doctor_id == doctor_id,
                    effectively_active_clause(now),
                )
                .order_by(MedicalAccessGrant.expires_at)
            )
            grants = list(result.scalars().all())
        return [g for g in grants if is_effectively_active(g, now)]

    async def revoke(self, patient_id: str, doctor_id: str) -> MedicalAccessGrant:
        now = self.clock.now()
        async with session_scope(self.session_factory) as session:
            grant = await self._find_active(session, patient_id, doctor_id)
            if not is_effectively_active(grant, now):
                raise GrantNotFound()
            grant.is_active = False
            grant.revoked_at = now
            await session.commit()
        await self._audit("grant_revoked", grant, patient_id)
        return grant

    async def _audit(self, event_type: str, grant: MedicalAccessGrant, actor_id: str) -> None:
        self.logger.info(
            "Grant %s: %s", event_type, grant.id, extra={"trace_id": actor_id}
        )
        if self.audit is None:
            return
        await self.audit.log_event(
            event_type=event_type,
            category=AuditCategory.ACCESS,
            action=event_type.split("_", 1)[1],
            result="success",
            description=f"Medical access {event_type.replace('_', ' ')}",
            resource_type="medical_access_grant",
            resource_id=grant.id,
            user_id=actor_id,
            phi_involved=True,
            details={"doctor_id": grant.doctor_id, "expires_at": grant.expires_at},
        )
