"""
Trainer identity model.

"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Enum, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.db.models.base import BaseModel
from app.core.enums import ApprovalStatus, AuthProvider

if TYPE_CHECKING:
    from app.core.db.models.refresh_token import RefreshToken


class Trainer(BaseModel):
    """
    A trainer identity reachable through email, phone or a Google account.

    Email, phone and google_id are each unique across trainers; a single
    trainer may hold all three. The id is the stable anchor and is never
    reused.

    Attributes:
        email: Lower-cased email address, nullable for phone-only trainers.
        phone: Digits-only phone number.
        username: Optional public handle.
        password_hash: bcrypt hash, None when password auth is unused.
        google_id: Google account subject (`sub` claim).
        is_email_verified: Whether control of the email has been proven.
        is_phone_verified: Whether control of the phone has been proven.
        auth_provider: The channel used for the most recent sign-in.
        approval_status: Application review state.
        application_submitted_at: Set once the trainer submits their
            application. A phone held by a trainer with this set is never
            transferred to another identity.
        last_login_at: Timestamp of the last successful sign-in.
    """

    __tablename__ = "trainers"

    email: Mapped[str | None] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=True,
    )

    phone: Mapped[str | None] = mapped_column(
        String(20),
        unique=True,
        index=True,
        nullable=True,
    )

    username: Mapped[str | None] = mapped_column(
        String(50),
        unique=True,
        nullable=True,
    )

    password_hash: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    google_id: Mapped[str | None] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=True,
    )

    is_email_verified: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    is_phone_verified: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    auth_provider: Mapped[AuthProvider] = mapped_column(
        Enum(AuthProvider, native_enum=False, name="auth_provider"),
        default=AuthProvider.PASSWORD,
        nullable=False,
    )

    approval_status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus, native_enum=False, name="approval_status"),
        default=ApprovalStatus.PENDING,
        nullable=False,
    )

    application_submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    last_login_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    refresh_tokens: Mapped[list["RefreshToken"]] = relationship(
        "RefreshToken",
        back_populates="trainer",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Trainer(id={self.id}, email={self.email}, phone={self.phone})>"

    @property
    def has_submitted_application(self) -> bool:
        return self.application_submitted_at is not None


__all__ = ["Trainer"]
