# src/epickup_backend/app/main.py
import os
from typing import Optional

from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi
from dotenv import load_dotenv

# Load .env before any module reads environment variables
load_dotenv()

from epickup_backend.app.core.logging import setup_logging
setup_logging()

from epickup_backend.app.api.routes.admin import router as admin_router
from epickup_backend.app.api.routes.auth import router as auth_router
from epickup_backend.app.core.errors import register_error_handlers


def _debug_errors() -> bool:
    return (os.getenv("DEBUG_ERRORS", "")).lower() in ("1", "true", "yes", "on")


def create_app(debug_errors: Optional[bool] = None) -> FastAPI:
    app = FastAPI(title="EPickup Identity API", version="1.0.0")
    register_error_handlers(app, debug=_debug_errors() if debug_errors is None else debug_errors)

    # Health check (open)
    @app.get("/healthz")
    def health():
        return {"status": "ok"}

    app.include_router(auth_router)
    app.include_router(admin_router)

    _document_session_auth(app)
    return app


# Reachable without a session token; every other operation needs BearerAuth.
PUBLIC_PATHS = frozenset({
    "/healthz",
    "/auth/firebase/verify-token",
    "/auth/refresh",
    "/auth/check-phone",
})

_BEARER_SCHEME = {
    "type": "http",
    "scheme": "bearer",
    "bearerFormat": "JWT",
    "description": "Session access token from POST /auth/firebase/verify-token (without the 'Bearer ' prefix).",
}


def _document_session_auth(app: FastAPI) -> None:
    """Swagger "Authorize" support: session-guarded operations list BearerAuth, public ones list none."""

    def session_openapi():
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title=app.title, version=app.version, routes=app.routes)
        schema.setdefault("components", {}).setdefault("securitySchemes", {})["BearerAuth"] = _BEARER_SCHEME

        for path, item in schema.get("paths", {}).items():
            security = [] if path in PUBLIC_PATHS else [{"BearerAuth": []}]
            for op in item.values():
                if isinstance(op, dict):
                    op["security"] = security

        app.openapi_schema = schema
        return schema

    app.openapi = session_openapi


app = create_app()
