from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request

from app.core.config import settings

STAFF_ROLES = {"admin", "staff"}


def create_access_token(user_id: UUID, role: str = "customer", expires_minutes: int = 60) -> str:
    """Issue a bearer token for a user. Used by the auth service and tests."""
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def _decode_bearer(request: Request) -> dict[str, Any]:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(status_code=401, detail="Not authenticated")

    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = auth_header[7:]
    if not token:
        raise HTTPException(status_code=401, detail="Token is required")

    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired") from None
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token") from None


def get_current_claims(request: Request) -> dict[str, Any]:
    claims = _decode_bearer(request)
    if "sub" not in claims:
        raise HTTPException(status_code=401, detail="Invalid token")
    return claims


def get_current_user_id(claims: dict[str, Any] = Depends(get_current_claims)) -> UUID:
    """Return the authenticated user's id from the bearer token."""
    try:
        return UUID(str(claims["sub"]))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token subject") from None


def require_staff(claims: dict[str, Any] = Depends(get_current_claims)) -> UUID:
    """Allow only admin or staff tokens; returns the staff user's id."""
    if str(claims.get("role", "")).lower() not in STAFF_ROLES:
        raise HTTPException(status_code=403, detail="Admin access required")
    try:
        return UUID(str(claims["sub"]))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token subject") from None
