# src/epickup_backend/app/api/routes/auth.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, Query, Request

from epickup_backend.app.auth.deps import load_session_account, require_roles, require_session
from epickup_backend.app.auth.internal import REFRESH, SessionSubject, TokenPair
from epickup_backend.app.core.context import AppContext, get_context
from epickup_backend.app.core.errors import (
    AccountInactive,
    Forbidden,
    InvalidPhone,
    InvalidRole,
    success_envelope,
)
from epickup_backend.app.core.logging import mask_phone
from epickup_backend.app.core.trace import auth_trace
from epickup_backend.app.schemas.auth import (
    CheckPhoneBody,
    CheckPhoneOut,
    LogoutBody,
    RefreshBody,
    RefreshOut,
    RolesOut,
    TokenExchangeOut,
    UserOut,
    VerifyTokenBody,
)
from epickup_backend.app.schemas.identity import Identity
from epickup_backend.app.services.identity import APP_TYPES, Role, normalize_phone, parse_role

log = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

# header values: the app name or the bare role
_APP_TYPES = {**{app: role for role, app in APP_TYPES.items()}, **{r.value: r for r in Role}}


def resolve_role(user_type: Optional[str], app_type: Optional[str]) -> Role:
    """
    Role for a token exchange, from the body's userType and/or the
    X-App-Type header. Both absent, either unknown, or the two disagreeing
    is InvalidRole. Nothing is defaulted.
    """
    header_role = None
    raw_header = (app_type or "").strip().lower()
    if raw_header:
        header_role = _APP_TYPES.get(raw_header)
        if header_role is None:
            raise InvalidRole(f"unsupported X-App-Type: {raw_header!r}")

    body_role = parse_role(user_type) if (user_type or "").strip() else None

    if header_role and body_role and header_role is not body_role:
        raise InvalidRole(
            f"X-App-Type ({header_role.value}) and userType ({body_role.value}) disagree"
        )
    role = header_role or body_role
    if role is None:
        raise InvalidRole("userType is required")
    return role


async def _check_admin_signup(ctx: AppContext, phone: str) -> None:
    """Existing admins always pass; new admin accounts need an allowlisted phone."""
    settings = ctx.settings
    if phone in settings.admin_phones:
        return
    if not settings.admin_phones and settings.test_mode:
        return
    if await ctx.accounts.exists_with_role(phone, Role.ADMIN):
        return
    auth_trace("exchange.admin_denied", phone=phone)
    raise Forbidden("Admin accounts cannot be created for this phone number")


def _pair_out(pair: TokenPair) -> dict:
    return RefreshOut(
        token=pair.access_token,
        refreshToken=pair.refresh_token,
        expiresIn=pair.expires_in,
        refreshExpiresIn=pair.refresh_expires_in,
    ).model_dump()


# ------------------------
# POST /auth/firebase/verify-token  (Firebase ID token -> session tokens)
# ------------------------
@router.post("/firebase/verify-token")
async def verify_firebase_token(
    body: VerifyTokenBody,
    x_app_type: Optional[str] = Header(None, alias="X-App-Type"),
    ctx: AppContext = Depends(get_context),
):
    role = resolve_role(body.userType, x_app_type)
    verified = await ctx.oracle.verify(body.idToken)
    if role is Role.ADMIN:
        await _check_admin_signup(ctx, verified.phone)

    display_name = body.name or verified.name or verified.email or verified.phone
    account = await ctx.accounts.get_or_create(verified, role, {"name": display_name})
    if not account.get("isActive", True):
        raise AccountInactive()

    uid = account["id"]
    await ctx.claims.sync(verified.subject, uid, role, verified.phone)

    name = account.get("name") or display_name
    pair = ctx.tokens.issue_pair(
        SessionSubject(
            identity_key=uid,
            role=role,
            phone=verified.phone,
            metadata={"name": name, "email": verified.email, "originalUID": verified.subject},
        )
    )
    log.info("token exchange ok uid=%s role=%s phone=%s", uid, role.value, mask_phone(verified.phone))
    auth_trace("exchange.issued", uid=uid, role=role.value, firebase_uid=verified.subject)

    out = TokenExchangeOut(
        token=pair.access_token,
        refreshToken=pair.refresh_token,
        expiresIn=pair.expires_in,
        refreshExpiresIn=pair.refresh_expires_in,
        user=UserOut(
            uid=uid,
            originalUID=verified.subject,
            phone_number=verified.phone,
            email=verified.email,
            userType=role.value,
            name=name,
        ),
    )
    return success_envelope(out.model_dump(), "Token exchange successful")


# ------------------------
# POST /auth/refresh  (single-use rotation)
# ------------------------
@router.post("/refresh")
async def refresh_tokens(body: RefreshBody, ctx: AppContext = Depends(get_context)):
    claims = await ctx.tokens.verify(body.refreshToken, expected_type=REFRESH)
    await load_session_account(ctx, claims)
    pair = await ctx.tokens.rotate(body.refreshToken, claims)
    return success_envelope(_pair_out(pair), "Token refreshed successfully")


# ------------------------
# POST /auth/logout
# ------------------------
@router.post("/logout")
async def logout(
    request: Request,
    body: Optional[LogoutBody] = Body(None),
    identity: Identity = Depends(require_session()),
    ctx: AppContext = Depends(get_context),
):
    refresh_token = body.refreshToken if body else None
    if refresh_token:
        # validate ownership before revoking anything
        rclaims = ctx.tokens.decode(refresh_token, verify_exp=False)
        if rclaims.get("sub") != identity.identity_key:
            raise Forbidden(details="refresh token belongs to another account")

    await ctx.tokens.revoke(request.state.token)
    if refresh_token:
        await ctx.tokens.revoke(refresh_token)

    log.info("logout uid=%s role=%s", identity.identity_key, identity.role.value)
    return success_envelope({"revokedRefreshToken": bool(refresh_token)}, "Logged out")


# ------------------------
# GET /auth/me
# ------------------------
@router.get("/me")
async def me(request: Request, identity: Identity = Depends(require_session())):
    account = request.state.account
    return success_envelope({
        "user": {
            "uid": identity.identity_key,
            "originalUID": identity.original_uid,
            "phone_number": identity.phone,
            "userType": identity.role.value,
            "name": identity.display_name,
            "email": account.get("email"),
            "isVerified": account.get("isVerified", False),
            "accountStatus": account.get("accountStatus"),
            "createdAt": account.get("createdAt"),
        }
    })


# ------------------------
# POST /auth/check-phone  (is this phone registered, optionally for a role)
# ------------------------
@router.post("/check-phone")
async def check_phone(body: CheckPhoneBody, ctx: AppContext = Depends(get_context)):
    phone = normalize_phone(body.phoneNumber)
    if not phone:
        raise InvalidPhone()

    roles = await ctx.accounts.roles_for_phone(phone)
    if body.userType is not None:
        role = parse_role(body.userType)
        exists = any(e.userType is role for e in roles)
        out = CheckPhoneOut(exists=exists, registered=bool(roles), userType=role.value)
        if exists:
            message = "Phone number registered for this user type"
        elif roles:
            message = "Phone number registered but not for this user type"
        else:
            message = "Phone number available for signup"
    else:
        out = CheckPhoneOut(exists=bool(roles), registered=bool(roles))
        message = "Phone number is registered" if roles else "Phone number available for signup"

    return success_envelope(out.model_dump(), message)


# ------------------------
# GET /auth/roles?phone=  (admin: every role-scoped account held by a phone)
# ------------------------
@router.get("/roles")
async def roles_for_phone(
    phone: str = Query(..., min_length=1),
    _admin: Identity = Depends(require_roles(Role.ADMIN)),
    ctx: AppContext = Depends(get_context),
):
    normalized = normalize_phone(phone)
    if not normalized:
        raise InvalidPhone()
    roles = await ctx.accounts.roles_for_phone(normalized)
    return success_envelope(RolesOut(phone=normalized, roles=roles).model_dump(mode="json"))
