import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException

from docflow.core.config import get_settings

logger = logging.getLogger(__name__)

ALLOWED_ROLES = {"ADMIN", "ACCOUNTANT", "VIEWER"}


@dataclass
class CurrentUser:
    id: str
    role: str
    tenant_id: Optional[str] = None
    email: Optional[str] = None


def _extract_app_metadata(payload: dict) -> dict:
    # Role and tenant come only from server-managed app_metadata, never user_metadata.
    meta = payload.get("app_metadata") or {}
    return meta if isinstance(meta, dict) else {}


def _extract_role(payload: dict) -> Optional[str]:
    raw = _extract_app_metadata(payload).get("role")
    if raw is None:
        return None
    role = str(raw).strip().upper()
    if role not in ALLOWED_ROLES:
        return None
    return role


def _decode_token(token: str, settings) -> Optional[dict]:
    audience = (settings.auth_jwt_audience or "").strip()
    decode_kwargs = {}
    options = {"verify_aud": bool(audience)}
    if audience:
        decode_kwargs["audience"] = audience
    try:
        return jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=["HS256"],
            options=options,
            **decode_kwargs,
        )
    except jwt.InvalidTokenError as exc:
        logger.debug("JWT verification failed: %s", exc)
        return None


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Missing bearer token")

    settings = get_settings()
    if not settings.auth_jwt_secret:
        raise HTTPException(500, "AUTH_JWT_SECRET is not configured")

    token = authorization.split(" ", 1)[1].strip()
    payload = _decode_token(token, settings)
    if payload is None:
        raise HTTPException(401, "Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(401, "Invalid token")

    role = _extract_role(payload)
    if not role:
        raise HTTPException(403, "Missing role")

    tenant_id = _extract_app_metadata(payload).get("tenant_id")
    return CurrentUser(
        id=user_id,
        role=role,
        tenant_id=str(tenant_id) if tenant_id else None,
        email=payload.get("email"),
    )


def require_roles(*roles: str):
    def _dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(403, "Forbidden")
        if not user.tenant_id:
            raise HTTPException(403, "Missing tenant")
        return user

    return _dependency
