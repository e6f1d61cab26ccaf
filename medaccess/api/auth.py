from typing import Dict

from fastapi import APIRouter, Depends, HTTPException

from .models import DevLoginRequest
from ..identity.auth import DEV_SESSION_MINUTES, dev_issue_token, get_current_user, rate_limit


auth_router = APIRouter(prefix="/auth", tags=["auth"])


@auth_router.post("/dev-login")
@rate_limit(limit=30, window_seconds=60, key="dev_login")
async def dev_login(payload: DevLoginRequest):
    """Issue a short-lived session token for development when DEV_MODE is enabled."""
    try:
        token = dev_issue_token(payload.subject, payload.traits)
    except PermissionError:
        raise HTTPException(status_code=403, detail="Dev login disabled")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"token": token, "expires_in": DEV_SESSION_MINUTES * 60}


@auth_router.get("/me")
async def me(user: Dict = Depends(get_current_user)):
    return {"id": user.get("id"), "traits": user.get("traits", [])}
