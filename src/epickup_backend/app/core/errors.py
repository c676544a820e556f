# src/epickup_backend/app/core/errors.py
"""
Error taxonomy for the identity core.

Every failure the auth flow can produce is one of these classes. Each carries
the HTTP status and the stable machine-readable ``code`` it is rendered with,
so the mapping happens once, in the FastAPI handlers registered by
``register_error_handlers``.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

log = logging.getLogger(__name__)


class AuthError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"
    message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, *, details: Any = None):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)


class Unauthorized(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"
    message = "Access token required"


class InvalidCredential(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "INVALID_TOKEN"
    message = "Invalid Firebase ID token"


class CredentialExpired(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "TOKEN_EXPIRED"
    message = "Firebase ID token has expired. Please sign in again."


class CredentialRevoked(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "TOKEN_REVOKED"
    message = "Firebase ID token has been revoked. Please sign in again."


class InvalidRole(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_USER_TYPE"
    message = "userType must be one of: customer, driver, admin"


class InvalidPhone(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_PHONE"
    message = "A valid phone number is required"


class AccountNotFound(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "ACCOUNT_NOT_FOUND"
    message = "Account does not exist"


class UserNotFound(AuthError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "USER_NOT_FOUND"
    message = "User not found"


class AccountInactive(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "ACCOUNT_INACTIVE"
    message = "Account deactivated. Please contact support."


class SessionTokenInvalid(AuthError):
    """
    Backend-issued token failed verification. ``kind`` is one of
    expired | malformed | wrong-type | blacklisted | consumed and only shows
    up in the outward code suffix; the HTTP status is always 401.
    """
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid session token"

    KINDS = ("expired", "malformed", "wrong-type", "blacklisted", "consumed")

    def __init__(self, kind: str, message: Optional[str] = None, *, details: Any = None):
        if kind not in self.KINDS:
            raise ValueError(f"unknown session token failure kind: {kind}")
        self.kind = kind
        super().__init__(message, details=details)

    @property
    def code(self) -> str:  # type: ignore[override]
        return "SESSION_TOKEN_" + self.kind.replace("-", "_").upper()


class Forbidden(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "ACCESS_DENIED"
    message = "Access denied"


class UpstreamUnavailable(AuthError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SERVICE_UNAVAILABLE"
    message = "Authentication service is temporarily unavailable. Please try again in a moment."


# -------------------------
# Response envelope
# -------------------------
def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def success_envelope(data: Any, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "data": data, "timestamp": _now_iso()}
    if message:
        body["message"] = message
    return body


def error_envelope(code: str, message: str, details: Any = None) -> Dict[str, Any]:
    err: Dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        err["details"] = details
    return {"success": False, "error": err, "timestamp": _now_iso()}


def register_error_handlers(app: FastAPI, *, debug: bool = False) -> None:
    """
    Render every failure with the standard envelope.
    ``details`` are only exposed when debug is on.
    """

    @app.exception_handler(AuthError)
    async def _auth_error(request: Request, exc: AuthError):
        if exc.status_code >= 500:
            log.warning("%s %s -> %s %s", request.method, request.url.path, exc.code, exc.message)
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(exc.code, exc.message, exc.details if debug else None),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(p) for p in e.get("loc", ())[1:]), "message": e.get("msg")}
            for e in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_envelope("VALIDATION_ERROR", "Request validation failed", details),
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        log.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_envelope("INTERNAL_ERROR", "Internal server error", str(exc) if debug else None),
        )
