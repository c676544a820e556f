# src/epickup_backend/app/schemas/auth.py

from typing import List, Optional

from pydantic import BaseModel, Field

from epickup_backend.app.schemas.identity import RoleEntry


# ------------------------
# Request bodies
# ------------------------
class VerifyTokenBody(BaseModel):
    """
    Firebase ID token exchange. userType may instead come from the
    X-App-Type header; one of the two is required.
    """

    idToken: str = Field(..., min_length=1)
    userType: Optional[str] = None
    name: Optional[str] = Field(None, max_length=120)


class RefreshBody(BaseModel):
    refreshToken: str = Field(..., min_length=1)


class LogoutBody(BaseModel):
    # optional: also revoke the refresh token held by the client
    refreshToken: Optional[str] = None


class CheckPhoneBody(BaseModel):
    phoneNumber: str = Field(..., min_length=1)
    userType: Optional[str] = None


# ------------------------
# Response payloads (the "data" member of the envelope)
# ------------------------
class UserOut(BaseModel):
    uid: str
    originalUID: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None
    userType: str
    name: Optional[str] = None


class TokenExchangeOut(BaseModel):
    token: str
    refreshToken: str
    expiresIn: int
    refreshExpiresIn: int
    user: UserOut


class RefreshOut(BaseModel):
    token: str
    refreshToken: str
    expiresIn: int
    refreshExpiresIn: int


class CheckPhoneOut(BaseModel):
    exists: bool
    registered: bool
    userType: Optional[str] = None


class RolesOut(BaseModel):
    phone: str
    roles: List[RoleEntry]
