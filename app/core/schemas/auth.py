"""
Typed payloads returned by the auth services.

Every payload carries only identifiers, timestamps and opaque token
strings, so the HTTP layer can serialize them directly.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import ApprovalStatus, AuthProvider, IdentityDecision


class ClientMeta(BaseModel):
    """Request context recorded alongside refresh tokens and sessions."""

    user_agent: str | None = Field(default=None, max_length=1024)
    ip_address: str | None = Field(default=None, max_length=45)


class TrainerProfile(BaseModel):
    """Public view of a trainer identity."""

    model_config = ConfigDict(from_attributes=True)

    schema_version: int = 1
    id: UUID
    email: str | None
    phone: str | None
    username: str | None
    is_email_verified: bool
    is_phone_verified: bool
    auth_provider: AuthProvider
    approval_status: ApprovalStatus
    last_login_at: datetime | None


class TokenPair(BaseModel):
    """A signed access/refresh token pair."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "access_token": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...",
                "refresh_token": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...",
                "token_type": "bearer",
                "expires_in": 900,
            }
        }
    )

    access_token: str
    refresh_token: str
    refresh_expires_at: datetime
    token_type: Literal["bearer"] = "bearer"
    expires_in: int = Field(description="Access token lifetime in seconds")


class AuthResult(BaseModel):
    """Outcome of a successful sign-in or token rotation."""

    tokens: TokenPair
    trainer: TrainerProfile
    session_id: str
    identity_decision: IdentityDecision | None = None


class RegistrationResult(BaseModel):
    trainer_id: UUID
    email: str
    otp_sent: bool = True
    message: str = "Verification code sent to email."


class SessionRecord(BaseModel):
    """
    Cache-resident session, stored as JSON under ``session:{session_id}``.

    `schema_version` lets a reader reject records written in a shape it
    does not understand instead of guessing at missing fields.
    """

    model_config = ConfigDict(extra="forbid")

    schema_version: Literal[1] = 1
    session_id: str
    trainer_id: UUID
    role: str
    created_at: datetime
    last_activity_at: datetime
    user_agent: str | None = None
    ip_address: str | None = None


class ActiveSession(BaseModel):
    """A live refresh token as shown in a "signed-in devices" list."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_agent: str | None
    ip_address: str | None
    created_at: datetime
    expires_at: datetime


__all__ = [
    "ActiveSession",
    "AuthResult",
    "ClientMeta",
    "RegistrationResult",
    "SessionRecord",
    "TokenPair",
    "TrainerProfile",
]
