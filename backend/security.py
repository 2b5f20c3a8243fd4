"""
Device sessions.

A classroom console or a check-in kiosk pairs once with the shared device
secret and gets back a bearer token of the form::

    <claims segment>.<HMAC-SHA256 of the claims segment>

both base64url without padding. Claims carry the device id (``sub``), its
``role`` and ``iat``/``exp``. Kiosks drive the student-facing flows only;
settings, resets, cancellations, rosters and reports need a classroom session.
"""

import base64
import hashlib
import hmac
import json
import time
from collections.abc import Callable
from typing import TypedDict

from fastapi import Depends, Header, HTTPException

from backend.config import AUTH_TOKEN_TTL_SECONDS, DEVICE_ROLES, DEVICE_SECRET, SIGNING_KEY


class DeviceSession(TypedDict):
    sub: str
    role: str
    iat: int
    exp: int


def _encode_segment(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _decode_segment(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def _mac(claims_segment: str) -> bytes:
    digest = hmac.new(SIGNING_KEY.encode("utf-8"), claims_segment.encode("utf-8"), hashlib.sha256)
    return _encode_segment(digest.digest()).encode("ascii")


def verify_device_secret(candidate: str) -> bool:
    expected = DEVICE_SECRET.strip()
    if not expected:
        return False
    return hmac.compare_digest((candidate or "").strip().encode("utf-8"), expected.encode("utf-8"))


def issue_session_token(
    device_id: str,
    *,
    role: str = "classroom",
    now: int | None = None,
) -> tuple[str, DeviceSession]:
    """Sign a session for a paired device. Raises ValueError for an unknown role."""
    if role not in DEVICE_ROLES:
        raise ValueError(f"Unknown device role: {role}")

    issued_at = int(time.time()) if now is None else now
    claims: DeviceSession = {
        "sub": device_id.strip(),
        "role": role,
        "iat": issued_at,
        "exp": issued_at + AUTH_TOKEN_TTL_SECONDS,
    }
    segment = _encode_segment(json.dumps(claims, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    return f"{segment}.{_mac(segment).decode('ascii')}", claims


def decode_session_token(token: str, *, now: int | None = None) -> DeviceSession | None:
    """None for anything forged, malformed, expired or carrying an unknown role."""
    segment, dot, signature = (token or "").partition(".")
    if not dot or not hmac.compare_digest(signature.encode("utf-8"), _mac(segment)):
        return None

    try:
        claims = json.loads(_decode_segment(segment))
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(claims, dict):
        return None

    sub = claims.get("sub")
    role = claims.get("role")
    exp = claims.get("exp")
    current = int(time.time()) if now is None else now
    if not isinstance(sub, str) or not sub.strip():
        return None
    if role not in DEVICE_ROLES:
        return None
    if not isinstance(exp, int) or exp < current:
        return None

    return {"sub": sub, "role": role, "iat": int(claims.get("iat") or 0), "exp": exp}


def require_session(authorization: str | None = Header(default=None)) -> DeviceSession:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing bearer token.")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid authorization scheme.")

    session = decode_session_token(token.strip())
    if session is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session token.")
    return session


def require_role(*roles: str) -> Callable[..., DeviceSession]:
    """Dependency factory: a valid session whose device role is one of ``roles``."""
    allowed = frozenset(roles)

    def dependency(session: DeviceSession = Depends(require_session)) -> DeviceSession:
        if session["role"] not in allowed:
            wanted = " or ".join(sorted(allowed))
            raise HTTPException(status_code=403, detail=f"This action needs a {wanted} device.")
        return session

    return dependency


require_classroom = require_role("classroom")
