"""
Authentication dependencies for FastAPI endpoints.

- Extracting and validating JWT access tokens from requests
- Loading the current trainer
- Capturing client metadata for issued tokens and sessions

Example usage:
    from app.core.dependencies.auth import CurrentTrainer, ClientMetaDep

    @router.get("/me")
    async def get_profile(trainer: CurrentTrainer):
        return TrainerProfile.model_validate(trainer)
"""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import auth_logger, settings
from app.core.db.crud import trainer_db
from app.core.db.models import Trainer
from app.core.dependencies.db import get_async_session
from app.core.enums import TokenType
from app.core.exceptions.types import AuthenticationException, ForbiddenException
from app.core.schemas.auth import ClientMeta
from app.core.utils import decode_jwt_token

# auto_error=True returns 401 if no token
bearer_scheme = HTTPBearer(auto_error=True)


async def get_current_trainer(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> Trainer:
    """
    Validate the Bearer access token and load its trainer.

    Raises:
        AuthenticationException: Missing, invalid or expired token, a token
            of the wrong type or role, or an unknown trainer.
    """
    payload = decode_jwt_token(
        credentials.credentials,
        settings.JWT_SECRET_KEY,
        expected_type=TokenType.ACCESS.value,
    )
    if payload is None:
        auth_logger.warning("Authentication failed: invalid or expired token")
        raise AuthenticationException("Invalid or expired access token")

    if payload.get("role") != settings.TOKEN_ROLE:
        auth_logger.warning(f"Authentication failed: role '{payload.get('role')}'")
        raise AuthenticationException("Invalid access token")

    try:
        trainer_id = UUID(str(payload.get("sub")))
    except ValueError:
        auth_logger.warning("Authentication failed: malformed 'sub' claim")
        raise AuthenticationException("Invalid access token")

    # Use a transaction so no implicit one is left open
    async with session.begin():
        trainer = await trainer_db.get_by_id(session, trainer_id)

    if trainer is None:
        auth_logger.warning(f"Authentication failed: trainer not found {trainer_id}")
        raise AuthenticationException("Trainer not found")

    return trainer


async def get_current_verified_trainer(
    trainer: Annotated[Trainer, Depends(get_current_trainer)],
) -> Trainer:
    """Like get_current_trainer, but requires a verified email or phone."""
    if not (trainer.is_email_verified or trainer.is_phone_verified):
        auth_logger.warning(f"Access denied: no verified contact for {trainer.id}")
        raise ForbiddenException("Contact verification required")
    return trainer


def get_client_meta(request: Request) -> ClientMeta:
    """User agent and client IP of the current request."""
    user_agent = request.headers.get("user-agent")
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return ClientMeta(
        user_agent=user_agent[:1024] if user_agent else None,
        ip_address=ip_address[:45] if ip_address else None,
    )


CurrentTrainer = Annotated[Trainer, Depends(get_current_trainer)]
CurrentVerifiedTrainer = Annotated[Trainer, Depends(get_current_verified_trainer)]
ClientMetaDep = Annotated[ClientMeta, Depends(get_client_meta)]
