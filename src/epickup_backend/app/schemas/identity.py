# src/epickup_backend/app/schemas/identity.py

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from epickup_backend.app.services.identity import Role


class VerifiedIdentity(BaseModel):
    """
    What the verification oracle vouches for after checking a Firebase ID token.

    Fields:
      - subject: Firebase uid. Kept on the account for audit only, never looked up.
      - phone: E.164 phone number from the token's phone_number claim
      - email / name / picture: optional profile claims
      - claims: the full decoded token (custom claims included)
    """

    subject: str
    phone: str
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None
    claims: Dict[str, Any] = Field(default_factory=dict)


class RoleEntry(BaseModel):
    """One role-scoped account held by a phone number."""

    uid: str
    userType: Role
    name: Optional[str] = None
    createdAt: Optional[str] = None


class Identity(BaseModel):
    """Resolved caller attached to request.state by the guard layer."""

    identity_key: str
    role: Role
    phone: Optional[str] = None
    display_name: Optional[str] = None
    original_uid: Optional[str] = None
