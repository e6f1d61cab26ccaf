from typing import Dict, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query

from .dependencies import current_clinician, get_services, require_auth
from .models import (
    AccessCheckResponse,
    CreateGrantRequest,
    GrantList,
    GrantOut,
    GrantResponse,
    RedeemCodeRequest,
    RedeemCodeResponse,
)
from ..identity.auth import rate_limit
from ..services import AccessServices


clinician_router = APIRouter(prefix="/medical-access", tags=["medical-access"])


def _redeem_key(**kwargs) -> str:
    return f"redeem_code:{kwargs['clinician']['id']}"


def _redeem_limits(**kwargs) -> Tuple[int, int]:
    settings = kwargs["services"].settings
    return settings.redeem_rate_limit, settings.redeem_rate_window_seconds


@clinician_router.post("/redeem", response_model=RedeemCodeResponse)
@rate_limit(key_fn=_redeem_key, limits_fn=_redeem_limits)
async def redeem_code(
    payload: RedeemCodeRequest,
    clinician: Dict = Depends(current_clinician),
    services: AccessServices = Depends(get_services),
):
    issued = await services.redeemer.redeem(payload.code, clinician_id=clinician["id"])
    return RedeemCodeResponse(
        exchange_token=issued.token,
        bound_patient_id=issued.patient_id,
        expires_in_seconds=issued.expires_in,
    )


@clinician_router.post("/grants", response_model=GrantResponse)
async def create_or_renew_grant(
    payload: CreateGrantRequest,
    clinician: Dict = Depends(current_clinician),
    services: AccessServices = Depends(get_services),
):
    grant = await services.ledger.create_or_renew(
        payload.patient_id, clinician["id"], payload.exchange_token
    )
    return GrantResponse(grant=GrantOut(**grant.to_dict()))


@clinician_router.get("/grants", response_model=GrantList)
async def list_my_grants(
    clinician: Dict = Depends(current_clinician),
    services: AccessServices = Depends(get_services),
):
    grants = await services.ledger.list_for_doctor(clinician["id"])
    return GrantList(items=[GrantOut(**g.to_dict()) for g in grants])


@clinician_router.get("/check", response_model=AccessCheckResponse)
async def check_access(
    patient_id: str = Query(..., min_length=1, max_length=36),
    doctor_id: Optional[str] = Query(None, max_length=36),
    caller: Dict = Depends(require_auth(["record_service", "clinician"])),
    services: AccessServices = Depends(get_services),
):
    """Full-history decision for (patient, doctor).

    Record services and admins may ask about any doctor; a clinician only
    about themselves.
    """
    traits = set(caller.get("traits", []))
    trusted = bool(traits & {"record_service", "admin"})
    target = doctor_id or caller["id"]
    if not trusted and target != caller["id"]:
        raise HTTPException(status_code=403, detail="Forbidden: clinicians may only check their own access")
    # The admin bypass applies to the admin's own session, not to checks on others
    decision = await services.gate.check(
        patient_id, target, traits=traits if target == caller["id"] else ()
    )
    return AccessCheckResponse(
        has_full_access=decision.has_full_access,
        basis=decision.basis,
        grant=GrantOut(**decision.grant.to_dict()) if decision.grant is not None else None,
    )
