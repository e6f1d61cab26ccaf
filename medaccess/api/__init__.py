"""
HTTP surface of the delegation protocol.

- Patient routes: current code, regenerate, list and revoke grants
- Clinician routes: redeem code, create/renew grant, list own grants
- Record-service route: full-access check
"""

from .auth import auth_router
from .clinician import clinician_router
from .patient import patient_router
from .dependencies import configure_access_api, get_services  # re-export

__all__ = [
    "auth_router",
    "clinician_router",
    "patient_router",
    "configure_access_api",
    "get_services",
]
