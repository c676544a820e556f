# tests/conftest.py
from __future__ import annotations

import base64
import json
import os
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest
from dotenv import load_dotenv
from fastapi.testclient import TestClient

# ---------- Paths & .env ----------
ROOT = Path(__file__).resolve().parents[1]  # repo root
env_path = ROOT / ".env"
if env_path.exists():
    load_dotenv(dotenv_path=env_path, override=False)

from epickup_backend.app.auth.claims import ClaimsSynchronizer  # noqa: E402
from epickup_backend.app.auth.firebase import FirebaseOracle  # noqa: E402
from epickup_backend.app.auth.internal import SessionTokenIssuer  # noqa: E402
from epickup_backend.app.core.config import Settings  # noqa: E402
from epickup_backend.app.core.context import AppContext, set_context  # noqa: E402
from epickup_backend.app.main import create_app  # noqa: E402
from epickup_backend.app.services.accounts import AccountStore  # noqa: E402
from epickup_backend.app.services.store import MemoryRecordStore  # noqa: E402

TEST_SECRET = "test-secret-0123456789abcdef0123456789"

# Opt-in switch for tests against a real Firebase project
ENABLE_FIREBASE_TESTS = (os.getenv("ENABLE_FIREBASE_TESTS", "")).lower() in ("1", "true", "yes", "on")


def _b64(o: Dict) -> str:
    raw = json.dumps(o, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def mock_id_token(
    phone: Optional[str] = "+919876543210",
    *,
    uid: str = "fb-uid-123",
    ttl: int = 3600,
    **extra,
) -> str:
    """
    Minimal Firebase-shaped ID token (header.payload.signature).
    The signature is not checked by the oracle in test_mode.
    """
    now = int(time.time())
    claims = {
        "iss": "https://securetoken.google.com/epickup-test",
        "aud": "epickup-test",
        "sub": uid,
        "user_id": uid,
        "iat": now,
        "exp": now + ttl,
    }
    if phone is not None:
        claims["phone_number"] = phone
    claims.update(extra)
    return f"{_b64({'alg': 'RS256', 'kid': 'mock'})}.{_b64(claims)}.{_b64({'sig': 'mock'})}"


# ---------- Pytest controls ----------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--enable-firebase-tests",
        action="store_true",
        default=False,
        help="Run tests marked with @pytest.mark.firebase (otherwise auto-skip).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: List[pytest.Item]) -> None:
    """Gate @firebase tests unless explicitly enabled."""
    if config.getoption("--enable-firebase-tests") or ENABLE_FIREBASE_TESTS:
        return
    skip_firebase = pytest.mark.skip(
        reason=("Skipping @firebase tests. Enable with --enable-firebase-tests or set "
                "ENABLE_FIREBASE_TESTS=true. Requires GOOGLE_APPLICATION_CREDENTIALS "
                "and FIREBASE_TEST_ID_TOKEN.")
    )
    for item in items:
        if "firebase" in item.keywords:
            item.add_marker(skip_firebase)


# ---------- Fixtures ----------
@pytest.fixture
def settings() -> Settings:
    return Settings(jwt_secret=TEST_SECRET, test_mode=True, claims_sync_enabled=False)


@pytest.fixture
def ctx(settings: Settings) -> AppContext:
    """
    In-memory context: memory stores, test-mode oracle, claims sync off.
    Installed as the process context for the duration of the test.
    """
    users = MemoryRecordStore(settings.users_collection)
    revoked = MemoryRecordStore(settings.revoked_tokens_collection)
    context = AppContext(
        settings=settings,
        accounts=AccountStore(users),
        oracle=FirebaseOracle(test_mode=True),
        claims=ClaimsSynchronizer(enabled=False),
        tokens=SessionTokenIssuer(
            secret=settings.jwt_secret,
            revoked=revoked,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_ttl=settings.access_ttl,
            refresh_ttl=settings.refresh_ttl,
        ),
    )
    set_context(context)
    yield context
    set_context(None)


@pytest.fixture
def client(ctx: AppContext) -> TestClient:
    return TestClient(create_app(debug_errors=True))


@pytest.fixture
def login(client: TestClient) -> Callable[..., Dict]:
    """
    Exchange a mock ID token for a session; returns the envelope's data.

      data = login("+919876543210", "driver")
    """

    def _login(phone: str = "+919876543210", user_type: str = "customer", **kw) -> Dict:
        r = client.post(
            "/auth/firebase/verify-token",
            json={"idToken": mock_id_token(phone, **kw), "userType": user_type},
        )
        assert r.status_code == 200, f"exchange failed: {r.status_code} {r.text}"
        return r.json()["data"]

    return _login


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
