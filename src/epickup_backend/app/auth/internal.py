# src/epickup_backend/app/auth/internal.py
from __future__ import annotations

import hashlib
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import jwt

from epickup_backend.app.core.errors import InvalidRole, SessionTokenInvalid
from epickup_backend.app.core.trace import auth_trace
from epickup_backend.app.services.identity import Role, parse_role
from epickup_backend.app.services.store import RecordStore

ALGO = "HS256"
ACCESS = "access"
REFRESH = "refresh"

# metadata keys copied into tokens; everything else is dropped
_METADATA_KEYS = ("name", "email", "originalUID")

_JWT_SHAPE = re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*$")


@dataclass(frozen=True)
class SessionSubject:
    identity_key: str
    role: Role
    phone: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "SessionSubject":
        return cls(
            identity_key=claims["sub"],
            role=parse_role(claims.get("role")),
            phone=claims.get("phone"),
            metadata={k: claims[k] for k in _METADATA_KEYS if claims.get(k) is not None},
        )


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_in: int


def token_digest(token: str) -> str:
    """Store key for blacklist/consumption entries. Raw tokens are never persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def is_valid_token_format(token: Any) -> bool:
    return isinstance(token, str) and bool(_JWT_SHAPE.match(token))


class SessionTokenIssuer:
    """
    Backend-issued HS256 access/refresh tokens bound to a role-scoped identity key.

    Refresh tokens are single-use: ``refresh``/``rotate`` record the spent
    token with a create-if-absent write before minting the next pair, so a
    replay (or a concurrent second refresh) fails with kind="consumed".
    Access tokens are blacklisted on logout through ``revoke``.
    """

    def __init__(
        self,
        *,
        secret: str,
        revoked: RecordStore,
        issuer: str = "epickup-app",
        audience: str = "epickup-users",
        access_ttl: int = 604800,
        refresh_ttl: int = 7776000,
        clock: Callable[[], float] = time.time,
    ):
        self.secret = secret
        self.revoked = revoked
        self.issuer = issuer
        self.audience = audience
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    # -------------------------
    # Issuers
    # -------------------------
    def _encode(self, subject: SessionSubject, typ: str, ttl: int) -> str:
        now = self._now()
        payload: Dict[str, Any] = {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": subject.identity_key,
            "role": subject.role.value,
            "phone": subject.phone,
            "type": typ,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "nbf": now,
            "exp": now + ttl,
        }
        for k in _METADATA_KEYS:
            v = subject.metadata.get(k)
            if v is not None:
                payload[k] = v

        tok = jwt.encode(payload, self.secret, algorithm=ALGO)
        auth_trace(
            f"session.issue_{typ}",
            sub=subject.identity_key,
            role=subject.role.value,
            exp=payload["exp"],
            exp_human=time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime(payload["exp"])),
        )
        return tok

    def issue_access_token(self, subject: SessionSubject) -> str:
        return self._encode(subject, ACCESS, self.access_ttl)

    def issue_refresh_token(self, subject: SessionSubject) -> str:
        return self._encode(subject, REFRESH, self.refresh_ttl)

    def issue_pair(self, subject: SessionSubject) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(subject),
            refresh_token=self.issue_refresh_token(subject),
            expires_in=self.access_ttl,
            refresh_expires_in=self.refresh_ttl,
        )

    # -------------------------
    # Verifiers
    # -------------------------
    def decode(self, token: str, *, verify_exp: bool = True) -> Dict[str, Any]:
        """Signature/issuer/audience/expiry check only. No blacklist, no type."""
        try:
            return jwt.decode(
                token,
                self.secret,
                algorithms=[ALGO],
                audience=self.audience,
                issuer=self.issuer,
                options={
                    "require": ["exp", "iss", "aud", "sub", "jti"],
                    "verify_exp": verify_exp,
                },
            )
        except jwt.ExpiredSignatureError:
            auth_trace("session.verify.expired")
            raise SessionTokenInvalid("expired", "Session token expired. Please refresh.") from None
        except jwt.PyJWTError as ex:
            auth_trace("session.verify.malformed", err=str(ex))
            raise SessionTokenInvalid("malformed", "Invalid session token", details=str(ex)) from ex

    async def verify(self, token: str, expected_type: str = ACCESS) -> Dict[str, Any]:
        """
        Full check, in order: format, blacklist, signature/expiry, type.
        Each failure raises SessionTokenInvalid with its own kind.
        """
        if not is_valid_token_format(token):
            raise SessionTokenInvalid("malformed", "Invalid token format")

        entry = await self.revoked.get(token_digest(token))
        if entry is not None:
            kind = entry.get("kind", "blacklisted")
            auth_trace("session.verify.revoked", kind=kind, sub=entry.get("sub"))
            raise SessionTokenInvalid(kind, "Session token is no longer valid. Please login again.")

        claims = self.decode(token)
        if claims.get("type") != expected_type:
            auth_trace("session.verify.wrong_type", want=expected_type, got=claims.get("type"))
            raise SessionTokenInvalid("wrong-type", f"{expected_type.capitalize()} token required")
        try:
            parse_role(claims.get("role"))
        except InvalidRole:
            raise SessionTokenInvalid("malformed", "Session token carries no valid role") from None

        auth_trace("session.verify.ok", sub=claims.get("sub"), role=claims.get("role"), type=expected_type)
        return claims

    # -------------------------
    # Rotation / revocation
    # -------------------------
    async def rotate(self, refresh_token: str, claims: Dict[str, Any]) -> TokenPair:
        """
        Consume an already-verified refresh token and mint a fresh pair.
        issued -> used is one-way; losing the create race means someone else
        already spent it.
        """
        entry = {
            "kind": "consumed",
            "type": REFRESH,
            "sub": claims.get("sub"),
            "jti": claims.get("jti"),
            "exp": claims.get("exp"),
            "revokedAt": self._now(),
        }
        if not await self.revoked.create(token_digest(refresh_token), entry):
            auth_trace("session.refresh.replay", sub=claims.get("sub"))
            raise SessionTokenInvalid("consumed", "Refresh token already used. Please login again.")

        pair = self.issue_pair(SessionSubject.from_claims(claims))
        auth_trace("session.refresh.rotated", sub=claims.get("sub"))
        return pair

    async def refresh(self, refresh_token: str) -> TokenPair:
        claims = await self.verify(refresh_token, expected_type=REFRESH)
        return await self.rotate(refresh_token, claims)

    async def revoke(self, token: str) -> None:
        """
        Blacklist a token (logout). Expired but otherwise genuine tokens are
        accepted so a late logout still succeeds; forged ones are rejected.
        """
        if not is_valid_token_format(token):
            raise SessionTokenInvalid("malformed", "Invalid token format")
        claims = self.decode(token, verify_exp=False)
        await self.revoked.set(
            token_digest(token),
            {
                "kind": "blacklisted",
                "type": claims.get("type"),
                "sub": claims.get("sub"),
                "jti": claims.get("jti"),
                "exp": claims.get("exp"),
                "revokedAt": self._now(),
            },
        )
        auth_trace("session.revoked", sub=claims.get("sub"), type=claims.get("type"))
