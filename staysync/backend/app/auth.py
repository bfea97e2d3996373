# backend/app/auth.py
from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from .config import settings


@dataclass(frozen=True)
class Principal:
    email: str
    role: str  # viewer | operator | owner


ROLE_ORDER = {"viewer": 1, "operator": 2, "owner": 3}

API_KEY_PRINCIPAL_EMAIL = "service@api-key"


def require_role(principal: Principal, min_role: str) -> None:
    if ROLE_ORDER.get(principal.role, 0) < ROLE_ORDER.get(min_role, 999):
        raise HTTPException(status_code=403, detail=f"Requires role >= {min_role}")


def get_principal(
    request: Request,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
) -> Principal:
    """
    Auth modes:
      api_key) X-API-Key compared against settings.sync_api_key (service-to-service)
      dev)     X-User-Email / X-User-Role headers are trusted as-is
    """
    mode = (settings.auth_mode or "dev").strip().lower()

    if mode == "api_key":
        expected = settings.sync_api_key or ""
        if not expected or not x_api_key:
            raise HTTPException(status_code=401, detail="Missing X-API-Key")
        if not hmac.compare_digest(str(x_api_key).strip().encode(), expected.encode()):
            raise HTTPException(status_code=401, detail="Invalid API key")
        return Principal(email=API_KEY_PRINCIPAL_EMAIL, role="operator")

    if mode == "dev":
        email = (request.headers.get(settings.dev_header_user_email) or "").strip().lower()
        role = (request.headers.get(settings.dev_header_user_role) or "owner").strip().lower()
        if not email:
            raise HTTPException(status_code=401, detail=f"Missing {settings.dev_header_user_email} for dev auth")
        if role not in ROLE_ORDER:
            raise HTTPException(status_code=401, detail=f"Unknown role: {role}")
        return Principal(email=email, role=role)

    raise HTTPException(status_code=401, detail="Not authenticated")


def require_operator(p: Principal = Depends(get_principal)) -> Principal:
    require_role(p, "operator")
    return p
