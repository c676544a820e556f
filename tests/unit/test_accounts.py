"""AccountStore: get-or-create per (phone, role), payload defaults, lookups."""

import asyncio

import pytest

from epickup_backend.app.core.errors import InvalidPhone, InvalidRole, UserNotFound
from epickup_backend.app.schemas.identity import VerifiedIdentity
from epickup_backend.app.services.accounts import AccountStore, default_payload
from epickup_backend.app.services.identity import Role, derive_identity_key
from epickup_backend.app.services.store import MemoryRecordStore

PHONE = "+919876543210"


def _verified(phone: str = PHONE, subject: str = "fb-uid-123", **kw) -> VerifiedIdentity:
    return VerifiedIdentity(subject=subject, phone=phone, **kw)


@pytest.fixture
def store():
    return AccountStore(MemoryRecordStore("users"))


def test_creates_role_scoped_account(store):
    rec = asyncio.run(store.get_or_create(_verified(name="Asha"), "customer"))

    assert rec["id"] == derive_identity_key(PHONE, Role.CUSTOMER)
    assert rec["uid"] == rec["id"]
    assert rec["userType"] == "customer"
    assert rec["phone"] == PHONE
    assert rec["originalFirebaseUID"] == "fb-uid-123"
    assert rec["name"] == "Asha"
    assert rec["isActive"] is True
    assert rec["accountStatus"] == "active"
    assert rec["customer"]["wallet"]["balance"] == 0
    assert rec["customer"]["totalBookings"] == 0
    assert "driver" not in rec


def test_driver_payload_defaults():
    p = default_payload(Role.DRIVER, "2026-01-01T00:00:00+00:00")
    assert p["verificationStatus"] == "pending"
    assert p["isOnline"] is False and p["isAvailable"] is False
    assert p["vehicleDetails"]["type"] == "motorcycle"
    assert p["wallet"]["currency"] == "INR"
    assert p["earnings"] == {"total": 0, "thisMonth": 0, "thisWeek": 0}


def test_admin_payload_defaults_and_overrides():
    now = "2026-01-01T00:00:00+00:00"
    assert default_payload(Role.ADMIN, now) == {"adminRole": "super_admin", "permissions": ["all"]}
    custom = default_payload(Role.ADMIN, now, {"adminRole": "support", "permissions": ["users:read"]})
    assert custom == {"adminRole": "support", "permissions": ["users:read"]}


def test_second_login_does_not_reset_payload(store):
    first = asyncio.run(store.get_or_create(_verified(), Role.DRIVER))
    key = first["id"]

    # the driver earns something between logins
    async def _credit():
        await store.users.update(key, {"driver": {**first["driver"], "wallet": {**first["driver"]["wallet"], "balance": 250}}})

    asyncio.run(_credit())

    again = asyncio.run(store.get_or_create(_verified(), Role.DRIVER))
    assert again["id"] == key
    assert again["driver"]["wallet"]["balance"] == 250
    assert again["createdAt"] == first["createdAt"]
    assert len(store.users) == 1


def test_same_phone_two_roles_two_accounts(store):
    c = asyncio.run(store.get_or_create(_verified(), Role.CUSTOMER))
    d = asyncio.run(store.get_or_create(_verified(), Role.DRIVER))
    assert c["id"] != d["id"]
    assert len(store.users) == 2


@pytest.mark.parametrize("role", [None, "", "rider"])
def test_no_default_role(store, role):
    with pytest.raises(InvalidRole):
        asyncio.run(store.get_or_create(_verified(), role))
    assert len(store.users) == 0


def test_protected_fields_cannot_be_overridden(store):
    rec = asyncio.run(
        store.get_or_create(_verified(), Role.CUSTOMER, {"userType": "admin", "id": "x", "city": "Pune"})
    )
    assert rec["userType"] == "customer"
    assert rec["id"] != "x"
    assert rec["city"] == "Pune"


def test_lost_create_race_returns_stored_record(store, monkeypatch):
    winner = {"id": "already-there", "userType": "customer", "name": "Winner"}

    async def _create(key, record):
        await store.users.set(key, {**winner, "id": key})
        return False

    monkeypatch.setattr(store.users, "create", _create)
    rec = asyncio.run(store.get_or_create(_verified(), Role.CUSTOMER))
    assert rec["name"] == "Winner"
    assert len(store.users) == 1


def test_concurrent_first_logins_create_one_account(store):
    async def _both():
        return await asyncio.gather(
            store.get_or_create(_verified(), Role.CUSTOMER),
            store.get_or_create(_verified(), Role.CUSTOMER),
        )

    a, b = asyncio.run(_both())
    assert a["id"] == b["id"]
    assert len(store.users) == 1


def test_roles_for_phone(store):
    asyncio.run(store.get_or_create(_verified(), Role.CUSTOMER))
    asyncio.run(store.get_or_create(_verified(), Role.DRIVER))
    asyncio.run(store.get_or_create(_verified("+919999999999"), Role.CUSTOMER))

    entries = asyncio.run(store.roles_for_phone("98765 43210"))
    assert {e.userType for e in entries} == {Role.CUSTOMER, Role.DRIVER}
    assert {e.uid for e in entries} == {
        derive_identity_key(PHONE, Role.CUSTOMER),
        derive_identity_key(PHONE, Role.DRIVER),
    }


def test_roles_for_unknown_phone_is_empty(store):
    assert asyncio.run(store.roles_for_phone("+14155550100")) == []


def test_roles_for_bad_phone(store):
    with pytest.raises(InvalidPhone):
        asyncio.run(store.roles_for_phone("not-a-phone"))


def test_exists_with_role(store):
    asyncio.run(store.get_or_create(_verified(), Role.DRIVER))
    assert asyncio.run(store.exists_with_role(PHONE, "driver")) is True
    assert asyncio.run(store.exists_with_role(PHONE, "customer")) is False


def test_set_active_toggles_flag(store):
    rec = asyncio.run(store.get_or_create(_verified(), Role.CUSTOMER))
    off = asyncio.run(store.set_active(rec["id"], False))
    assert off["isActive"] is False and off["accountStatus"] == "deactivated"

    stored = asyncio.run(store.get(rec["id"]))
    assert stored["isActive"] is False

    on = asyncio.run(store.set_active(rec["id"], True))
    assert on["isActive"] is True and on["accountStatus"] == "active"


def test_set_active_unknown_user(store):
    with pytest.raises(UserNotFound):
        asyncio.run(store.set_active("Unope", False))


def test_inactive_account_login_is_not_stamped(store):
    rec = asyncio.run(store.get_or_create(_verified(), Role.CUSTOMER))
    asyncio.run(store.set_active(rec["id"], False))
    before = asyncio.run(store.get(rec["id"]))

    again = asyncio.run(store.get_or_create(_verified(), Role.CUSTOMER))
    assert again["isActive"] is False
    after = asyncio.run(store.get(rec["id"]))
    assert after["lastLoginAt"] == before["lastLoginAt"]
    assert after["updatedAt"] == before["updatedAt"]
