from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..audit.models import AuditCategory
from ..audit.service import AuditService
from ..clock import Clock, SystemClock
from .code_clock import CodeClock
from .models import PatientSecret
from .seed_cipher import SeedCipher
from .storage import SessionFactory, session_scope


class SecretStore:
    """Durable per-patient seeds: one row per patient, created on first use."""

    def __init__(
        self,
        session_factory: SessionFactory,
        cipher: Optional[SeedCipher] = None,
        clock: Optional[Clock] = None,
        audit: Optional[AuditService] = None,
    ):
        self.session_factory = session_factory
        self.cipher = cipher or SeedCipher()
        self.clock = clock or SystemClock()
        self.audit = audit
        self.logger = logging.getLogger(__name__)

    async def get_seed(self, patient_id: str) -> Optional[str]:
        async with session_scope(self.session_factory) as session:
            row = await session.scalar(
                select(PatientSecret).where(PatientSecret.patient_id == patient_id)
            )
            if row is None:
                return None
            return self.cipher.reveal(row.seed, row.is_encrypted)

    async def get_or_create(self, patient_id: str) -> str:
        seed = await self.get_seed(patient_id)
        if seed is not None:
            return seed
        seed = CodeClock.new_seed()
        stored, encrypted = self.cipher.protect(seed)
        try:
            async with session_scope(self.session_factory) as session:
                session.add(
                    PatientSecret(
                        patient_id=patient_id,
                        seed=stored,
                        is_encrypted=encrypted,
                        created_at=self.clock.now(),
                    )
                )
                await session.commit()
        except IntegrityError:
            # A concurrent first request created the row; use theirs
            existing = await self.get_seed(patient_id)
            if existing is None:
                raise
            return existing
        await self._audit(patient_id, "secret_created", "Access code seed created")
        return seed

    async def regenerate(self, patient_id: str) -> str:
        """Replace the seed wholesale; codes from the old seed stop matching at once."""
        seed = CodeClock.new_seed()
        stored, encrypted = self.cipher.protect(seed)
        try:
            await self._replace(patient_id, stored, encrypted)
        except IntegrityError:
            # A concurrent first request inserted the row; overwrite it
            await self._replace(patient_id, stored, encrypted)
        await self._audit(patient_id, "secret_regenerated", "Access code seed regenerated")
        return seed

    async def _replace(self, patient_id: str, stored: str, encrypted: bool) -> None:
        now = self.clock.now()
        async with session_scope(self.session_factory) as session:
            row = await self._find_row(session, patient_id)
            if row is None:
                session.add(
                    PatientSecret(
                        patient_id=patient_id, seed=stored, is_encrypted=encrypted, created_at=now
                    )
                )
            else:
                row.seed = stored
                row.is_encrypted = encrypted
                row.created_at = now
            await session.commit()

    async def _find_row(self, session: AsyncSession, patient_id: str) -> Optional[PatientSecret]:
        return await session.scalar(
            select(PatientSecret).where(PatientSecret.patient_id == patient_id)
        )

    async def all_seeds(self) -> List[Tuple[str, str]]:
        """(patient_id, seed) for every registered patient, oldest first."""
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(PatientSecret.patient_id, PatientSecret.seed, PatientSecret.is_encrypted)
                .order_by(PatientSecret.created_at, PatientSecret.id)
            )
            rows = result.all()
        seeds: List[Tuple[str, str]] = []
        for patient_id, stored, encrypted in rows:
            seed = self.cipher.reveal(stored, encrypted)
            if seed is not None:
                seeds.append((patient_id, seed))
        return seeds

    async def _audit(self, patient_id: str, event_type: str, description: str) -> None:
        self.logger.info(description, extra={"trace_id": patient_id})
        if self.audit is None:
            return
        await self.audit.log_event(
            event_type=event_type,
            category=AuditCategory.SECURITY,
            action=event_type,
            result="success",
            description=description,
            resource_type="patient_secret",
            resource_id=patient_id,
            user_id=patient_id,
        )
