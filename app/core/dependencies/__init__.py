"""
Shared dependencies for FastAPI endpoints.

"""

from app.core.dependencies.auth import (
    ClientMetaDep,
    CurrentTrainer,
    CurrentVerifiedTrainer,
    bearer_scheme,
    get_client_meta,
    get_current_trainer,
    get_current_verified_trainer,
)
from app.core.dependencies.db import get_async_session

__all__ = [
    "get_current_trainer",
    "get_current_verified_trainer",
    "get_client_meta",
    "ClientMetaDep",
    "CurrentTrainer",
    "CurrentVerifiedTrainer",
    "bearer_scheme",
    "get_async_session",
]
