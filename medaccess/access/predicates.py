"""
Single definition of "effectively active" for grants.

Nothing ever flips is_active when a grant runs out; expiry is detected at
read time. Every reader, in Python or in SQL, goes through these helpers
so the flag is never trusted without the timestamp.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement

from ..clock import as_utc
from .models import MedicalAccessGrant


def is_effectively_active(grant: Optional[MedicalAccessGrant], now: datetime) -> bool:
    if grant is None or not grant.is_active:
        return False
    if grant.expires_at is None:
        return True
    return as_utc(grant.expires_at) > as_utc(now)


def effectively_active_clause(now: datetime) -> ColumnElement[bool]:
    return and_(
        MedicalAccessGrant.is_active.is_(True),
        or_(
            MedicalAccessGrant.expires_at.is_(None),
            MedicalAccessGrant.expires_at > as_utc(now),
        ),
    )


def grant_status(grant: MedicalAccessGrant, now: datetime) -> str:
    """Lifecycle label: active, expired or revoked."""
    if not grant.is_active:
        return "revoked"
    return "active" if is_effectively_active(grant, now) else "expired"
