# bakery_hub/auth.py
"""
Bearer-token role check for the admin API.

Session management lives outside this service; the only contract consumed
here is "is the caller authenticated, and with which role".
"""
from __future__ import annotations
import enum
import hmac
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import HTTPException, Request

from bakery_hub.settings import settings


class Role(str, enum.Enum):
    owner = "owner"
    cook = "cook"


@dataclass(frozen=True)
class AuthResult:
    authenticated: bool
    role: Optional[Role] = None


def check_auth(request: Request) -> AuthResult:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return AuthResult(authenticated=False)

    token = token.strip()
    if hmac.compare_digest(token, settings.OWNER_TOKEN):
        return AuthResult(authenticated=True, role=Role.owner)
    if hmac.compare_digest(token, settings.COOK_TOKEN):
        return AuthResult(authenticated=True, role=Role.cook)
    return AuthResult(authenticated=False)


def require_role(*allowed: Role) -> Callable[[Request], AuthResult]:
    """FastAPI dependency: 401 when unauthenticated, 403 when the role is not allowed."""

    def dependency(request: Request) -> AuthResult:
        auth = check_auth(request)
        if not auth.authenticated:
            raise HTTPException(401, detail="Unauthorized")
        if allowed and auth.role not in allowed:
            raise HTTPException(403, detail="Forbidden")
        return auth

    return dependency


staff_only = require_role(Role.owner, Role.cook)
owner_only = require_role(Role.owner)
