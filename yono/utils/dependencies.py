"""
FastAPI dependencies: the service container and the caller's identity.

Identity comes from a bearer JWT with "sub" and "role" claims; issuing those
tokens (login, OTP, OAuth) happens elsewhere.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request

from .errors import Forbidden, Unauthorized
from .logging_config import user_id_var
from .security import decode_token, verify_internal_token
from ..services.container import Services

ROLES = ("customer", "agent", "admin")


@dataclass
class Identity:
    user_id: str
    role: str


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_current_identity(authorization: Optional[str] = Header(None)) -> Identity:
    """Decode the 'Authorization: Bearer ...' header into {user_id, role}."""
    if not authorization:
        raise Unauthorized("Authentication required")
    try:
        scheme, token = authorization.split()
    except ValueError:
        raise Unauthorized("Malformed Authorization header")
    if scheme.lower() != "bearer":
        raise Unauthorized("Bearer token required")

    payload = decode_token(token)
    if not payload or not payload.get("sub"):
        raise Unauthorized("Invalid or expired token")

    role = str(payload.get("role") or "customer").lower()
    if role not in ROLES:
        raise Forbidden(f"Unknown role: {role}")

    user_id_var.set(str(payload["sub"]))
    return Identity(user_id=str(payload["sub"]), role=role)


def require_roles(*roles: str):
    """Dependency factory: caller must hold one of roles."""
    async def checker(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in roles:
            raise Forbidden("You do not have access to this resource")
        return identity
    return checker


async def require_internal_token(x_internal_token: Optional[str] = Header(None)) -> None:
    if not verify_internal_token(x_internal_token):
        raise Unauthorized("Invalid internal token", code="INVALID_INTERNAL_TOKEN")
