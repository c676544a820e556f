# src/epickup_backend/app/core/context.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from epickup_backend.app.auth.claims import ClaimsSynchronizer
from epickup_backend.app.auth.firebase import FirebaseOracle, VerificationOracle, init_firebase
from epickup_backend.app.auth.internal import SessionTokenIssuer
from epickup_backend.app.core.config import Settings, load_settings
from epickup_backend.app.services.accounts import AccountStore
from epickup_backend.app.services.store import FirestoreRecordStore, MemoryRecordStore, RecordStore

log = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything the identity core needs, built once per process."""

    settings: Settings
    accounts: AccountStore
    oracle: VerificationOracle
    claims: ClaimsSynchronizer
    tokens: SessionTokenIssuer


def build_context(settings: Settings) -> AppContext:
    """
    Wire stores, oracle, claims sync and token issuer from Settings.
    firebase_admin is initialized here and only here, and only when a
    component actually needs it.
    """
    needs_firebase = settings.store_backend == "firestore" or not settings.test_mode
    fb_app = init_firebase(settings.firebase_project_id, settings.firebase_credentials) if needs_firebase else None

    if settings.store_backend == "firestore":
        from firebase_admin import firestore

        client = firestore.client(app=fb_app)
        users: RecordStore = FirestoreRecordStore(client, settings.users_collection, timeout=settings.store_timeout)
        revoked: RecordStore = FirestoreRecordStore(
            client, settings.revoked_tokens_collection, timeout=settings.store_timeout
        )
    else:
        users = MemoryRecordStore(settings.users_collection)
        revoked = MemoryRecordStore(settings.revoked_tokens_collection)

    ctx = AppContext(
        settings=settings,
        accounts=AccountStore(users),
        oracle=FirebaseOracle(fb_app, timeout=settings.oracle_timeout, test_mode=settings.test_mode),
        claims=ClaimsSynchronizer(
            fb_app,
            timeout=settings.oracle_timeout,
            enabled=settings.claims_sync_enabled and fb_app is not None,
        ),
        tokens=SessionTokenIssuer(
            secret=settings.jwt_secret,
            revoked=revoked,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_ttl=settings.access_ttl,
            refresh_ttl=settings.refresh_ttl,
        ),
    )
    log.info(
        "context ready store=%s test_mode=%s claims_sync=%s",
        settings.store_backend, settings.test_mode, ctx.claims.enabled,
    )
    return ctx


_context: Optional[AppContext] = None


def get_context() -> AppContext:
    """Construct on first use, then reuse. Also the FastAPI dependency."""
    global _context
    if _context is None:
        _context = build_context(load_settings())
    return _context


def set_context(ctx: Optional[AppContext]) -> None:
    """Install a prebuilt context (tests, custom wiring). None resets."""
    global _context
    _context = ctx
