from __future__ import annotations

from typing import Dict, Iterable, Optional, Protocol

from sqlalchemy import select

from ..access.storage import SessionFactory, session_scope
from .models import Clinician, Encounter

# Encounter states that establish a treating relationship
RELATIONSHIP_STATUSES = ("SCHEDULED", "CONFIRMED", "IN_PROGRESS", "COMPLETED")


class RelationshipChecker(Protocol):
    async def has_clinical_relationship(self, patient_id: str, doctor_id: str) -> bool: ...


class EncounterRelationshipChecker:
    """Baseline access: the doctor has a live or completed encounter with the patient."""

    def __init__(self, session_factory: SessionFactory, statuses: Iterable[str] = RELATIONSHIP_STATUSES):
        self.session_factory = session_factory
        self.statuses = tuple(s.upper() for s in statuses)

    async def has_clinical_relationship(self, patient_id: str, doctor_id: str) -> bool:
        async with session_scope(self.session_factory) as session:
            found = await session.scalar(
                select(Encounter.id)
                .where(
                    Encounter.patient_id == patient_id,
                    Encounter.doctor_id == doctor_id,
                    Encounter.status.in_(self.statuses),
                )
                .limit(1)
            )
        return found is not None


class ClinicianDirectory:
    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def summaries(self, clinician_ids: Iterable[str]) -> Dict[str, Dict[str, Optional[str]]]:
        ids = sorted(set(clinician_ids))
        if not ids:
            return {}
        async with session_scope(self.session_factory) as session:
            result = await session.execute(select(Clinician).where(Clinician.id.in_(ids)))
            rows = result.scalars().all()
        found = {
            c.id: {"id": c.id, "name": c.name, "email": c.email, "specialty": c.specialty}
            for c in rows
        }
        # Grants may outlive a directory entry
        for cid in ids:
            found.setdefault(cid, {"id": cid, "name": None, "email": None, "specialty": None})
        return found
