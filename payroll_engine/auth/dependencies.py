"""Auth dependencies — stateless JWT validation, RBAC enforcement.

Tokens are issued by the external identity service; this module only
verifies them and maps the ``role`` claim onto the permission table.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt

from payroll_engine.common.constants import PERMISSIONS, UserRole
from payroll_engine.common.exceptions import ForbiddenException
from payroll_engine.config import settings


@dataclass(frozen=True)
class Principal:
    """The authenticated caller."""

    user_id: uuid.UUID
    role: UserRole

    def has_permission(self, permission: str) -> bool:
        return permission in PERMISSIONS.get(self.role, [])


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_user(request: Request) -> Principal:
    """Validate the bearer JWT and return the caller."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    if payload.get("type", "access") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type.")

    try:
        user_id = uuid.UUID(str(payload["sub"]))
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject.")

    try:
        role = UserRole(payload.get("role", UserRole.employee.value))
    except ValueError:
        role = UserRole.employee

    principal = Principal(user_id=user_id, role=role)
    request.state.principal = principal
    return principal


# ── Permission-based dependency ─────────────────────────────────────

def require_permission(permission: str) -> Callable:
    """Return a FastAPI dependency that enforces a specific permission string."""

    async def _check(principal: Principal = Depends(get_current_user)) -> Principal:
        if not principal.has_permission(permission):
            raise ForbiddenException(
                detail=f"Permission '{permission}' is not granted to role '{principal.role.value}'.",
            )
        return principal

    return _check
