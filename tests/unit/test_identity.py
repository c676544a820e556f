"""Identity key derivation, role parsing and phone normalization."""

import hashlib

import pytest

from epickup_backend.app.core.errors import InvalidPhone, InvalidRole
from epickup_backend.app.services.identity import (
    KEY_LENGTH,
    Role,
    derive_identity_key,
    normalize_phone,
    parse_role,
)

PHONE = "+919876543210"


def test_key_is_deterministic():
    assert derive_identity_key(PHONE, Role.CUSTOMER) == derive_identity_key(PHONE, "customer")


def test_key_differs_per_role():
    keys = {derive_identity_key(PHONE, r) for r in Role}
    assert len(keys) == 3


def test_key_shape():
    for role in Role:
        key = derive_identity_key(PHONE, role)
        assert len(key) == KEY_LENGTH
        assert key[0].isalpha()


def test_key_matches_hash_prefix():
    digest = hashlib.sha256(f"{PHONE}_driver".encode("utf-8")).hexdigest()[:KEY_LENGTH]
    key = derive_identity_key(PHONE, Role.DRIVER)
    if digest[0].isalpha():
        assert key == digest
    else:
        assert key == "U" + digest[1:]


def test_leading_digit_is_replaced(monkeypatch):
    import epickup_backend.app.services.identity as identity

    class _Digest:
        def hexdigest(self):
            return "0" * 64

    monkeypatch.setattr(identity.hashlib, "sha256", lambda _b: _Digest())
    assert derive_identity_key(PHONE, Role.CUSTOMER) == "U" + "0" * (KEY_LENGTH - 1)


def test_key_uses_normalized_phone():
    assert derive_identity_key("98765 43210", "customer") == derive_identity_key(PHONE, "customer")


@pytest.mark.parametrize("role", [None, "", "  ", "rider", "ADMINISTRATOR"])
def test_key_rejects_bad_role(role):
    with pytest.raises(InvalidRole):
        derive_identity_key(PHONE, role)


@pytest.mark.parametrize("phone", [None, "", "abc", "12345", "+0123456789"])
def test_key_rejects_bad_phone(phone):
    with pytest.raises(InvalidPhone):
        derive_identity_key(phone, Role.CUSTOMER)


def test_parse_role_trims_and_lowercases():
    assert parse_role("  Driver ") is Role.DRIVER
    assert parse_role(Role.ADMIN) is Role.ADMIN


def test_parse_role_has_no_default():
    with pytest.raises(InvalidRole):
        parse_role(None)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("+919876543210", "+919876543210"),
        ("9876543210", "+919876543210"),
        ("919876543210", "+919876543210"),
        ("09876543210", "+919876543210"),
        ("0091 98765-43210", "+919876543210"),
        ("+1 (415) 555-0100", "+14155550100"),
        ("555", None),
        (None, None),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected
