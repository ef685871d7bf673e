"""
Typed payloads for the auth services.

"""

from app.core.schemas.auth import (
    ActiveSession,
    AuthResult,
    ClientMeta,
    RegistrationResult,
    SessionRecord,
    TokenPair,
    TrainerProfile,
)

__all__ = [
    "ActiveSession",
    "AuthResult",
    "ClientMeta",
    "RegistrationResult",
    "SessionRecord",
    "TokenPair",
    "TrainerProfile",
]
