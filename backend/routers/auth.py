from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.config import DEVICE_ROLES
from backend.logging import get_logger
from backend.security import DeviceSession, issue_session_token, require_session, verify_device_secret

router = APIRouter()
log = get_logger(__name__)


class DevicePairing(BaseModel):
    device_id: str
    device_secret: str
    role: str = "classroom"


@router.post("/auth/device")
def pair_device(payload: DevicePairing):
    device_id = payload.device_id.strip()
    if not device_id:
        raise HTTPException(status_code=400, detail="Device ID is required.")
    if payload.role not in DEVICE_ROLES:
        raise HTTPException(status_code=400, detail=f"Role must be one of: {', '.join(DEVICE_ROLES)}.")
    if not verify_device_secret(payload.device_secret):
        log.warning("device_pairing_rejected", device_id=device_id)
        raise HTTPException(status_code=401, detail="Invalid device secret.")

    token, claims = issue_session_token(device_id, role=payload.role)
    log.info("device_paired", device_id=device_id, role=payload.role)
    return {
        "access_token": token,
        "token_type": "bearer",
        "device_id": claims["sub"],
        "role": claims["role"],
        "expires_at": claims["exp"],
        "expires_in": claims["exp"] - claims["iat"],
    }


@router.get("/auth/me")
def auth_me(session: DeviceSession = Depends(require_session)):
    return {
        "device_id": session["sub"],
        "role": session["role"],
        "expires_at": session["exp"],
        "issued_at": session["iat"],
    }
