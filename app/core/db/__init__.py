"""
Database engine, session factory and declarative base.

Models register themselves on `Base.metadata` when `app.core.db.models`
is imported; Alembic reads that metadata for autogenerate.
"""

from app.core.db.config import (
    AsyncSessionLocal,
    Base,
    async_engine,
    dispose_db,
    init_db,
)

__all__ = [
    "AsyncSessionLocal",
    "Base",
    "async_engine",
    "dispose_db",
    "init_db",
]
