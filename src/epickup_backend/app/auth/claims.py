# src/epickup_backend/app/auth/claims.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from epickup_backend.app.core.logging import mask_phone
from epickup_backend.app.core.trace import auth_trace
from epickup_backend.app.services.identity import APP_TYPES, Role

log = logging.getLogger(__name__)


class ClaimsSynchronizer:
    """
    Pushes the resolved identity key and role into the Firebase user's custom
    claims, so ID tokens minted later already carry the role.

    Best-effort: ``sync`` never raises. A failure is logged and reported as
    False; the caller carries on issuing the session.
    """

    def __init__(self, app: Any = None, *, timeout: float = 10.0, enabled: bool = True):
        self.app = app
        self.timeout = timeout
        self.enabled = enabled

    def build_claims(self, identity_key: str, role: Role, phone: str) -> Dict[str, Any]:
        return {
            "role": role.value,
            "userType": role.value,
            "roleBasedUID": identity_key,
            "phone": phone,
            "appType": APP_TYPES[role],
            "verified": True,
        }

    async def sync(self, raw_subject: str, identity_key: str, role: Role, phone: str) -> bool:
        if not self.enabled:
            return False
        claims = self.build_claims(identity_key, role, phone)
        try:
            await asyncio.wait_for(asyncio.to_thread(self._push, raw_subject, claims), timeout=self.timeout)
        except Exception as ex:
            log.warning(
                "custom claims sync failed for firebase uid=%s role=%s phone=%s: %s",
                raw_subject, role.value, mask_phone(phone), str(ex) or type(ex).__name__,
            )
            return False
        auth_trace("claims.synced", firebase_uid=raw_subject, uid=identity_key, role=role.value)
        return True

    def _push(self, raw_subject: str, claims: Dict[str, Any]) -> None:
        from firebase_admin import auth as fb_auth

        fb_auth.set_custom_user_claims(raw_subject, claims, app=self.app)
