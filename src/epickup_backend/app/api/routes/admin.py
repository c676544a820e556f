# src/epickup_backend/app/api/routes/admin.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Path

from epickup_backend.app.auth.deps import require_roles
from epickup_backend.app.core.context import AppContext, get_context
from epickup_backend.app.core.errors import Forbidden, success_envelope
from epickup_backend.app.schemas.identity import Identity
from epickup_backend.app.services.identity import Role

log = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/users", tags=["admin"])


def _summary(record: dict) -> dict:
    return {
        "uid": record.get("id"),
        "userType": record.get("userType"),
        "isActive": record.get("isActive"),
        "accountStatus": record.get("accountStatus"),
        "updatedAt": record.get("updatedAt"),
    }


@router.post("/{uid}/deactivate")
async def deactivate_user(
    uid: str = Path(..., min_length=1),
    admin: Identity = Depends(require_roles(Role.ADMIN)),
    ctx: AppContext = Depends(get_context),
):
    if uid == admin.identity_key:
        raise Forbidden(details="admins cannot deactivate their own account")
    record = await ctx.accounts.set_active(uid, False)
    log.info("admin %s deactivated %s", admin.identity_key, uid)
    return success_envelope(_summary(record), "Account deactivated")


@router.post("/{uid}/reactivate")
async def reactivate_user(
    uid: str = Path(..., min_length=1),
    admin: Identity = Depends(require_roles(Role.ADMIN)),
    ctx: AppContext = Depends(get_context),
):
    record = await ctx.accounts.set_active(uid, True)
    log.info("admin %s reactivated %s", admin.identity_key, uid)
    return success_envelope(_summary(record), "Account reactivated")
