from __future__ import annotations

from typing import Dict

from fastapi import APIRouter, Depends

from .dependencies import current_patient, get_services
from .models import (
    ActiveGrantItem,
    ActiveGrantList,
    ClinicianSummary,
    CurrentCodeResponse,
    GrantOut,
    OkResponse,
)
from ..services import AccessServices


patient_router = APIRouter(prefix="/patient", tags=["patient"])


@patient_router.get("/access-code", response_model=CurrentCodeResponse)
async def get_current_code(
    patient: Dict = Depends(current_patient),
    services: AccessServices = Depends(get_services),
):
    """Current rotating code; the seed is created on the first call."""
    seed = await services.secrets.get_or_create(patient["id"])
    current = services.code_clock.describe(seed, services.clock.now())
    return CurrentCodeResponse(
        code=current.code,
        remaining_seconds=current.remaining_seconds,
        step_seconds=current.step_seconds,
    )


@patient_router.post("/access-code/regenerate", response_model=OkResponse)
async def regenerate_secret(
    patient: Dict = Depends(current_patient),
    services: AccessServices = Depends(get_services),
):
    await services.secrets.regenerate(patient["id"])
    return OkResponse(message="code regenerated")


@patient_router.get("/grants", response_model=ActiveGrantList)
async def list_active_grants(
    patient: Dict = Depends(current_patient),
    services: AccessServices = Depends(get_services),
):
    grants = await services.ledger.list_active(patient["id"])
    summaries = await services.clinicians.summaries(g.doctor_id for g in grants)
    return ActiveGrantList(
        items=[
            ActiveGrantItem(
                grant=GrantOut(**g.to_dict()),
                clinician_summary=ClinicianSummary(**summaries[g.doctor_id]),
            )
            for g in grants
        ]
    )


@patient_router.delete("/grants/{doctor_id}", response_model=OkResponse)
async def revoke_grant(
    doctor_id: str,
    patient: Dict = Depends(current_patient),
    services: AccessServices = Depends(get_services),
):
    await services.ledger.revoke(patient["id"], doctor_id)
    return OkResponse(message="access revoked")
