from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class CurrentCodeResponse(BaseModel):
    code: str
    remaining_seconds: int
    step_seconds: int


class OkResponse(BaseModel):
    ok: bool = True
    message: Optional[str] = None


class RedeemCodeRequest(BaseModel):
    code: Optional[str] = Field(default=None, max_length=32)


class RedeemCodeResponse(BaseModel):
    exchange_token: str
    bound_patient_id: str
    expires_in_seconds: int


class CreateGrantRequest(BaseModel):
    patient_id: str = Field(..., min_length=1, max_length=36)
    exchange_token: str = Field(..., min_length=1, max_length=4096)


class GrantOut(BaseModel):
    id: str
    patient_id: str
    doctor_id: str
    granted_at: datetime
    expires_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    is_active: bool


class GrantResponse(BaseModel):
    grant: GrantOut


class ClinicianSummary(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    specialty: Optional[str] = None


class ActiveGrantItem(BaseModel):
    grant: GrantOut
    clinician_summary: ClinicianSummary


class ActiveGrantList(BaseModel):
    items: List[ActiveGrantItem]


class GrantList(BaseModel):
    items: List[GrantOut]


class AccessCheckResponse(BaseModel):
    has_full_access: bool
    basis: str
    grant: Optional[GrantOut] = None


class DevLoginRequest(BaseModel):
    subject: str = Field(..., min_length=1, max_length=36)
    traits: List[str] = Field(default_factory=list)
