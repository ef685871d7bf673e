"""
Refresh Token model for persistent session management.

"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.db.models.base import BaseModel

if TYPE_CHECKING:
    from app.core.db.models.trainer import Trainer


class RefreshToken(BaseModel):
    """
    One refresh token in a trainer's token lineage.

    Only the SHA256 of the token is stored. A record is live while
    `revoked_at` is unset and `expires_at` is in the future. Rotation
    inserts the successor before stamping `revoked_at` here, so a trainer
    always has at least one live record mid-rotation.

    Attributes:
        trainer_id: Foreign key to the owning trainer.
        token_hash: SHA256 hex digest of the refresh token.
        expires_at: When this token expires.
        revoked_at: When the token was rotated away or logged out.
        replaced_by_hash: Hash of the successor when rotated away; unset
            for a logout or bulk revocation.
        user_agent: Client user agent at issuance.
        ip_address: Client IP at issuance.
    """

    __tablename__ = "refresh_tokens"

    trainer_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("trainers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    token_hash: Mapped[str] = mapped_column(
        String(64),  # SHA256 produces 64 hex characters
        unique=True,
        index=True,
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    replaced_by_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    user_agent: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    ip_address: Mapped[str | None] = mapped_column(
        String(45),
        nullable=True,
    )

    trainer: Mapped["Trainer"] = relationship(  # noqa: F821
        "Trainer",
        back_populates="refresh_tokens",
    )

    def __repr__(self) -> str:
        return (
            f"<RefreshToken(id={self.id}, trainer_id={self.trainer_id}, "
            f"expires_at={self.expires_at}, revoked={self.revoked_at is not None})>"
        )

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= datetime.now(timezone.utc)

    @property
    def is_live(self) -> bool:
        """Not revoked and not expired."""
        return self.revoked_at is None and not self.is_expired


__all__ = ["RefreshToken"]
