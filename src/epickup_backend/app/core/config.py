# src/epickup_backend/app/core/config.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from epickup_backend.app.services.identity import normalize_phone

log = logging.getLogger(__name__)

DEV_JWT_SECRET = "dev_secret_do_not_use_in_prod"

_TRUTHY = ("1", "true", "yes", "on")


def _flag(var: str, default: str = "") -> bool:
    return (os.getenv(var, default) or "").strip().lower() in _TRUTHY


def _int(var: str, default: int) -> int:
    raw = (os.getenv(var) or "").strip()
    return int(raw) if raw else default


def _float(var: str, default: float) -> float:
    raw = (os.getenv(var) or "").strip()
    return float(raw) if raw else default


def _phones(var: str) -> Tuple[str, ...]:
    out = []
    for raw in (os.getenv(var) or "").split(","):
        if not raw.strip():
            continue
        phone = normalize_phone(raw)
        if not phone:
            raise RuntimeError(f"{var}: not a phone number: {raw.strip()!r}")
        out.append(phone)
    return tuple(out)


@dataclass(frozen=True)
class Settings:
    # Internal HS256 session tokens
    jwt_secret: str = DEV_JWT_SECRET
    jwt_issuer: str = "epickup-app"
    jwt_audience: str = "epickup-users"
    access_ttl: int = 604800        # 7d
    refresh_ttl: int = 7776000      # 90d

    # Record store
    store_backend: str = "memory"   # memory | firestore
    users_collection: str = "users"
    revoked_tokens_collection: str = "revoked_tokens"
    store_timeout: float = 10.0

    # Firebase (verification oracle + claims)
    firebase_project_id: Optional[str] = None
    firebase_credentials: Optional[str] = None
    oracle_timeout: float = 10.0
    claims_sync_enabled: bool = True

    # Phones allowed to create an admin account (E.164). Empty + test_mode = open.
    admin_phones: Tuple[str, ...] = ()

    # Dev switches
    test_mode: bool = False


def load_settings() -> Settings:
    """
    Read Settings from the environment. Call after load_dotenv().
    """
    settings = Settings(
        jwt_secret=os.getenv("JWT_SECRET", DEV_JWT_SECRET),
        jwt_issuer=os.getenv("JWT_ISS", "epickup-app"),
        jwt_audience=os.getenv("JWT_AUD", "epickup-users"),
        access_ttl=_int("JWT_ACCESS_TTL_SEC", 604800),
        refresh_ttl=_int("JWT_REFRESH_TTL_SEC", 7776000),
        store_backend=(os.getenv("STORE_BACKEND", "memory") or "memory").strip().lower(),
        users_collection=os.getenv("USERS_COLLECTION", "users"),
        revoked_tokens_collection=os.getenv("REVOKED_TOKENS_COLLECTION", "revoked_tokens"),
        store_timeout=_float("STORE_TIMEOUT_SEC", 10.0),
        firebase_project_id=(os.getenv("FIREBASE_PROJECT_ID") or "").strip() or None,
        firebase_credentials=(os.getenv("GOOGLE_APPLICATION_CREDENTIALS") or "").strip() or None,
        oracle_timeout=_float("ORACLE_TIMEOUT_SEC", 10.0),
        claims_sync_enabled=_flag("CLAIMS_SYNC_ENABLED", "true"),
        admin_phones=_phones("ADMIN_PHONES"),
        test_mode=_flag("TEST_MODE"),
    )
    if settings.store_backend not in ("memory", "firestore"):
        raise RuntimeError(f"Unsupported STORE_BACKEND: {settings.store_backend}")
    if settings.access_ttl >= settings.refresh_ttl:
        raise RuntimeError("JWT_ACCESS_TTL_SEC must be shorter than JWT_REFRESH_TTL_SEC")
    if settings.jwt_secret == DEV_JWT_SECRET:
        log.warning("JWT_SECRET not set; using the development secret")
    return settings
