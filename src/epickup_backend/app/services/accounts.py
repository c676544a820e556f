# src/epickup_backend/app/services/accounts.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from epickup_backend.app.core.errors import InvalidPhone, UserNotFound
from epickup_backend.app.core.logging import mask_phone
from epickup_backend.app.core.trace import auth_trace
from epickup_backend.app.schemas.identity import RoleEntry, VerifiedIdentity
from epickup_backend.app.services.identity import Role, derive_identity_key, normalize_phone, parse_role
from epickup_backend.app.services.store import Record, RecordStore

log = logging.getLogger(__name__)

_ROLE_VALUES = frozenset(r.value for r in Role)

# Fields callers may not override through ``extra``.
_PROTECTED = frozenset({
    "id", "uid", "originalFirebaseUID", "phone", "userType",
    "createdAt", "updatedAt", "lastLoginAt", "driver", "customer", "admin",
})


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _wallet(now: str) -> Dict[str, Any]:
    return {"balance": 0, "currency": "INR", "lastUpdated": now, "transactions": []}


def default_payload(role: Role, now: str, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Initial role-specific payload. No counters start above zero."""
    extra = extra or {}
    if role is Role.DRIVER:
        return {
            "vehicleDetails": {"type": "motorcycle", "model": "", "number": "", "color": ""},
            "verificationStatus": "pending",
            "isOnline": False,
            "isAvailable": False,
            "rating": 0,
            "totalTrips": 0,
            "earnings": {"total": 0, "thisMonth": 0, "thisWeek": 0},
            "wallet": _wallet(now),
            "currentLocation": None,
            "welcomeBonusGiven": False,
            "welcomeBonusAmount": 0,
            "welcomeBonusGivenAt": None,
            "documents": {},
            "verificationRequests": [],
        }
    if role is Role.CUSTOMER:
        return {
            "totalBookings": 0,
            "totalSpent": 0,
            "preferences": {"vehicleType": "motorcycle", "notifications": True},
            "wallet": _wallet(now),
        }
    return {
        "adminRole": extra.get("adminRole") or "super_admin",
        "permissions": list(extra.get("permissions") or ["all"]),
    }


class AccountStore:
    """
    Role-scoped accounts keyed by identity key.

    ``get_or_create`` is the only writer on the login path; a repeat call for
    the same (phone, role) touches timestamps and leaves the role payload alone.
    A deactivated account is returned as stored, untouched.
    """

    def __init__(self, users: RecordStore):
        self.users = users

    async def get(self, identity_key: str) -> Optional[Record]:
        return await self.users.get(identity_key)

    async def get_or_create(
        self,
        verified: VerifiedIdentity,
        role: Role | str | None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Record:
        role = parse_role(role)
        key = derive_identity_key(verified.phone, role)
        auth_trace("accounts.resolve", uid=key, role=role.value, phone=verified.phone)

        existing = await self.users.get(key)
        if existing is not None:
            if not existing.get("isActive", True):
                # refused login; last-seen stays as it was
                auth_trace("accounts.inactive", uid=key, role=role.value)
                return existing
            return await self._touch(key, existing)

        record = self._new_record(key, verified, role, extra)
        if await self.users.create(key, record):
            log.info("created %s account %s for %s", role.value, key, mask_phone(verified.phone))
            return record

        # Lost a creation race on the same key; the stored record is the account.
        log.info("concurrent create for %s; using stored record", key)
        stored = await self.users.get(key)
        return stored if stored is not None else record

    async def _touch(self, key: str, record: Record) -> Record:
        now = _now_iso()
        stamp = {"lastLoginAt": now, "updatedAt": now}
        await self.users.update(key, stamp)
        record.update(stamp)
        return record

    def _new_record(
        self,
        key: str,
        verified: VerifiedIdentity,
        role: Role,
        extra: Optional[Dict[str, Any]],
    ) -> Record:
        now = _now_iso()
        extra = dict(extra or {})
        record: Record = {
            "id": key,
            "uid": key,
            "originalFirebaseUID": verified.subject,
            "email": verified.email,
            "phone": normalize_phone(verified.phone),
            "name": extra.pop("name", None) or verified.name,
            "photoURL": verified.picture,
            "userType": role.value,
            "isVerified": True,
            "isActive": True,
            "accountStatus": "active",
            "createdAt": now,
            "updatedAt": now,
            "lastLoginAt": now,
        }
        record[role.value] = default_payload(role, now, extra)
        for field, value in extra.items():
            if field not in _PROTECTED and field not in ("permissions", "adminRole"):
                record[field] = value
        return record

    async def exists_with_role(self, phone: str, role: Role | str) -> bool:
        return await self.users.get(derive_identity_key(phone, role)) is not None

    async def roles_for_phone(self, phone: str) -> List[RoleEntry]:
        p = normalize_phone(phone)
        if not p:
            raise InvalidPhone()
        rows = await self.users.query("phone", p)
        entries = [
            RoleEntry(uid=uid, userType=doc["userType"], name=doc.get("name"), createdAt=doc.get("createdAt"))
            for uid, doc in rows
            if doc.get("userType") in _ROLE_VALUES
        ]
        entries.sort(key=lambda e: (e.createdAt or "", e.userType.value))
        return entries

    async def set_active(self, identity_key: str, active: bool) -> Record:
        """Deactivation is a flag; accounts are never deleted here."""
        record = await self.users.get(identity_key)
        if record is None:
            raise UserNotFound()
        stamp = {
            "isActive": active,
            "accountStatus": "active" if active else "deactivated",
            "updatedAt": _now_iso(),
        }
        await self.users.update(identity_key, stamp)
        record.update(stamp)
        log.info("account %s %s", identity_key, "reactivated" if active else "deactivated")
        return record
