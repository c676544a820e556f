# src/epickup_backend/app/auth/firebase.py
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional

import jwt

from epickup_backend.app.core.errors import (
    CredentialExpired,
    CredentialRevoked,
    InvalidCredential,
    UpstreamUnavailable,
)
from epickup_backend.app.core.trace import auth_trace
from epickup_backend.app.schemas.identity import VerifiedIdentity
from epickup_backend.app.services.identity import normalize_phone

log = logging.getLogger(__name__)


def init_firebase(project_id: Optional[str] = None, credentials_path: Optional[str] = None):
    """
    Initialize (or reuse) the default firebase_admin app. Called once from
    build_context(); nothing else touches firebase_admin initialization.
    """
    import firebase_admin
    from firebase_admin import credentials

    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    cred = credentials.Certificate(credentials_path) if credentials_path else credentials.ApplicationDefault()
    options = {"projectId": project_id} if project_id else None
    app = firebase_admin.initialize_app(cred, options)
    log.info("firebase_admin initialized project=%s", project_id or "<from credentials>")
    return app


class VerificationOracle:
    """Verifies an externally-issued ID token and returns who it vouches for."""

    async def verify(self, id_token: str) -> VerifiedIdentity:
        raise NotImplementedError


def _identity_from_claims(claims: Dict[str, Any]) -> VerifiedIdentity:
    subject = claims.get("uid") or claims.get("sub")
    if not subject:
        raise InvalidCredential("ID token has no subject")
    phone = normalize_phone(claims.get("phone_number"))
    if not phone:
        raise InvalidCredential("ID token carries no verified phone_number")
    return VerifiedIdentity(
        subject=subject,
        phone=phone,
        email=claims.get("email"),
        name=claims.get("name"),
        picture=claims.get("picture"),
        claims=dict(claims),
    )


class FirebaseOracle(VerificationOracle):
    """
    Firebase Auth ID-token verification via firebase_admin.

    The SDK call is blocking (it may fetch Google's signing certificates and,
    with check_revoked, the user record), so it runs in a worker thread bounded
    by ``timeout``. A timeout is an UpstreamUnavailable, never "no identity".

    In test_mode the token is decoded without signature verification, the
    way local builds mock the IdP; exp is still enforced.
    """

    def __init__(
        self,
        app: Any = None,
        *,
        timeout: float = 10.0,
        check_revoked: bool = True,
        test_mode: bool = False,
    ):
        self.app = app
        self.timeout = timeout
        self.check_revoked = check_revoked
        self.test_mode = test_mode

    async def verify(self, id_token: str) -> VerifiedIdentity:
        if not id_token or not isinstance(id_token, str) or id_token.count(".") != 2:
            raise InvalidCredential("Firebase ID token is missing or malformed")

        mode = "TEST" if self.test_mode else "LIVE"
        auth_trace("oracle.verify.begin", mode=mode)

        claims = self._decode_unverified(id_token) if self.test_mode else await self._verify_live(id_token)
        identity = _identity_from_claims(claims)
        auth_trace("oracle.verify.ok", mode=mode, sub=identity.subject, phone=identity.phone)
        return identity

    async def _verify_live(self, id_token: str) -> Dict[str, Any]:
        from firebase_admin import auth as fb_auth
        from firebase_admin import exceptions as fb_exc

        try:
            return await asyncio.wait_for(
                asyncio.to_thread(
                    fb_auth.verify_id_token, id_token, app=self.app, check_revoked=self.check_revoked
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            log.error("firebase verify_id_token timed out after %.1fs", self.timeout)
            raise UpstreamUnavailable(details="identity provider timeout") from None
        # Expired/Revoked subclass InvalidIdTokenError: order matters.
        except fb_auth.ExpiredIdTokenError as ex:
            auth_trace("oracle.verify.expired")
            raise CredentialExpired(details=str(ex)) from ex
        except (fb_auth.RevokedIdTokenError, fb_auth.UserDisabledError, fb_auth.UserNotFoundError) as ex:
            auth_trace("oracle.verify.revoked", err=type(ex).__name__)
            raise CredentialRevoked(details=str(ex)) from ex
        except fb_auth.CertificateFetchError as ex:
            log.error("firebase certificate fetch failed: %s", ex)
            raise UpstreamUnavailable(details="certificate fetch failed") from ex
        except (fb_auth.InvalidIdTokenError, ValueError) as ex:
            auth_trace("oracle.verify.invalid", err=str(ex))
            raise InvalidCredential(details=str(ex)) from ex
        except fb_exc.FirebaseError as ex:
            log.error("firebase verify_id_token failed: %s", ex)
            raise UpstreamUnavailable(details="identity provider error") from ex

    def _decode_unverified(self, id_token: str) -> Dict[str, Any]:
        try:
            claims = jwt.decode(id_token, options={"verify_signature": False, "verify_aud": False})
        except jwt.PyJWTError as ex:
            raise InvalidCredential(details=f"test decode failed: {ex}") from ex

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or exp < time.time():
            auth_trace("oracle.verify.test_expired", exp=exp)
            raise CredentialExpired()
        if claims.get("firebase_revoked"):
            raise CredentialRevoked()
        claims.setdefault("uid", claims.get("sub") or claims.get("user_id"))
        return claims
