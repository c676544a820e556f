# src/epickup_backend/app/auth/deps.py
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Depends, Header, Request

from epickup_backend.app.auth.internal import ACCESS
from epickup_backend.app.core.context import AppContext, get_context
from epickup_backend.app.core.errors import (
    AccountInactive,
    AccountNotFound,
    Forbidden,
    SessionTokenInvalid,
    Unauthorized,
)
from epickup_backend.app.core.trace import auth_trace
from epickup_backend.app.schemas.identity import Identity
from epickup_backend.app.services.identity import Role, parse_role


def bearer_token(authorization: Optional[str] = Header(None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise Unauthorized(details="Provide a Bearer token in the Authorization header")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise Unauthorized(details="Provide a Bearer token in the Authorization header")
    return token


async def load_session_account(ctx: AppContext, claims: Dict[str, Any]) -> Dict[str, Any]:
    """
    Account behind verified session claims: it must exist, still hold the
    token's role, and be active. Shared by the guards and /auth/refresh.
    """
    account = await ctx.accounts.get(claims["sub"])
    if account is None:
        auth_trace("guard.account_missing", sub=claims["sub"])
        raise AccountNotFound()
    if account.get("userType") != claims.get("role"):
        auth_trace("guard.role_mismatch", sub=claims["sub"], token_role=claims.get("role"))
        raise SessionTokenInvalid("malformed", "Session token does not match account role")
    if not account.get("isActive", True):
        raise AccountInactive()
    return account


async def current_identity(
    request: Request,
    token: str = Depends(bearer_token),
    ctx: AppContext = Depends(get_context),
) -> Identity:
    """
    Session-token path only. Oracle (Firebase) tokens are rejected here:
    they fail the HS256 signature check like any other foreign token.
    Reads the account; never writes.
    """
    claims = await ctx.tokens.verify(token, expected_type=ACCESS)
    account = await load_session_account(ctx, claims)

    identity = Identity(
        identity_key=claims["sub"],
        role=parse_role(claims["role"]),
        phone=claims.get("phone"),
        display_name=account.get("name") or claims.get("name"),
        original_uid=account.get("originalFirebaseUID"),
    )
    request.state.identity = identity
    request.state.account = account
    request.state.token = token
    request.state.token_claims = claims
    return identity


def require_session():
    """
    Route-level dependency: any valid session, any role.

      @router.get("/bookings")
      async def list_bookings(identity: Identity = Depends(require_session())):
          ...
    """
    return current_identity


def require_roles(*roles: Role | str):
    """
    Route-level dependency restricted to ``roles``. A valid session with the
    wrong role is Forbidden (403), never Unauthorized.
    """
    allowed = frozenset(parse_role(r) for r in roles)
    if not allowed:
        raise ValueError("require_roles() needs at least one role")

    async def dep(identity: Identity = Depends(current_identity)) -> Identity:
        if identity.role not in allowed:
            auth_trace("guard.forbidden", sub=identity.identity_key, role=identity.role.value)
            raise Forbidden(
                details=f"This resource requires one of the following roles: "
                f"{', '.join(sorted(r.value for r in allowed))}"
            )
        return identity

    return dep
