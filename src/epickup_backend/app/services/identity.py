# src/epickup_backend/app/services/identity.py
# Maps (phone, role) -> role-scoped identity key. One phone can hold one
# account per role; the key is what every other service stores and looks up.
from __future__ import annotations

import hashlib
import re
from enum import Enum
from typing import Optional, Union

from epickup_backend.app.core.errors import InvalidPhone, InvalidRole

KEY_LENGTH = 28
KEY_SENTINEL = "U"


class Role(str, Enum):
    CUSTOMER = "customer"
    DRIVER = "driver"
    ADMIN = "admin"


# Client app that signs in each role (X-App-Type header, appType claim).
APP_TYPES = {
    Role.CUSTOMER: "customer_app",
    Role.DRIVER: "driver_app",
    Role.ADMIN: "admin_dashboard",
}


def parse_role(value: Union[Role, str, None]) -> Role:
    """
    Strict role parsing: trims and lower-cases, then requires a member of Role.
    Missing or unknown values raise InvalidRole; there is no default.
    """
    if isinstance(value, Role):
        return value
    raw = (value or "").strip().lower() if isinstance(value, str) else ""
    if not raw:
        raise InvalidRole("userType is required")
    try:
        return Role(raw)
    except ValueError:
        raise InvalidRole(f"unsupported userType: {raw!r}") from None


_STRIP = re.compile(r"[\s\-().]")
_E164 = re.compile(r"^\+[1-9]\d{7,14}$")


def normalize_phone(phone: Optional[str], default_country: str = "91") -> Optional[str]:
    """
    Normalize to E.164. Bare 10-digit numbers and '91XXXXXXXXXX' get the
    default country code. Returns None when the input cannot be a phone number.
    """
    if not phone or not isinstance(phone, str):
        return None
    s = _STRIP.sub("", phone)
    if s.startswith("00"):
        s = "+" + s[2:]
    if not s.startswith("+"):
        s = s.lstrip("0")
        if len(s) == 10:
            s = f"+{default_country}{s}"
        elif s.startswith(default_country) and len(s) == 10 + len(default_country):
            s = "+" + s
        else:
            return None
    return s if _E164.match(s) else None


def derive_identity_key(phone: str, role: Union[Role, str]) -> str:
    """
    sha256("<phone>_<role>") -> first 28 hex chars; a leading digit is
    replaced with 'U' so the key always starts with a letter.

    The key is deterministic and unsalted: it identifies, it does not
    authorize.
    """
    r = parse_role(role)
    p = normalize_phone(phone)
    if not p:
        raise InvalidPhone("phone number is missing or malformed")

    digest = hashlib.sha256(f"{p}_{r.value}".encode("utf-8")).hexdigest()
    key = digest[:KEY_LENGTH]
    if not key[0].isalpha():
        key = KEY_SENTINEL + key[1:]
    return key
