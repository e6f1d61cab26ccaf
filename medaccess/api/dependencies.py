from __future__ import annotations

from typing import Optional

from fastapi import HTTPException

from ..identity.auth import get_current_user, require_auth, require_trait
from ..services import AccessServices

_services: Optional[AccessServices] = None


def configure_access_api(*, services: Optional[AccessServices]) -> None:
    global _services
    _services = services


def get_services() -> AccessServices:
    if _services is None:
        raise HTTPException(status_code=503, detail="Medical access service unavailable")
    return _services


current_patient = require_trait("patient")
current_clinician = require_trait("clinician")

__all__ = [
    "configure_access_api",
    "get_services",
    "get_current_user",
    "require_auth",
    "current_patient",
    "current_clinician",
]
