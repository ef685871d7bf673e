"""create_trainer_identity_tables

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("schema_version", sa.SmallInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create trainers, otp_records and refresh_tokens."""
    op.create_table(
        "trainers",
        *_base_columns(),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("username", sa.String(length=50), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("google_id", sa.String(length=255), nullable=True),
        sa.Column("is_email_verified", sa.Boolean(), nullable=False),
        sa.Column("is_phone_verified", sa.Boolean(), nullable=False),
        sa.Column(
            "auth_provider",
            sa.Enum(
                "PASSWORD",
                "PHONE_OTP",
                "OAUTH_NATIVE",
                "OAUTH_WEB",
                name="auth_provider",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column(
            "approval_status",
            sa.Enum(
                "PENDING",
                "APPROVED",
                "REJECTED",
                name="approval_status",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column(
            "application_submitted_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("username", name="uq_trainers_username"),
    )
    op.create_index("ix_trainers_email", "trainers", ["email"], unique=True)
    op.create_index("ix_trainers_phone", "trainers", ["phone"], unique=True)
    op.create_index("ix_trainers_google_id", "trainers", ["google_id"], unique=True)

    op.create_table(
        "otp_records",
        *_base_columns(),
        sa.Column("subject_id", sa.String(length=64), nullable=False),
        sa.Column(
            "channel",
            sa.Enum("EMAIL", "PHONE", name="otp_channel", native_enum=False),
            nullable=False,
        ),
        sa.Column("code_hash", sa.String(length=64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.UniqueConstraint(
            "subject_id", "channel", name="uq_otp_records_subject_channel"
        ),
    )

    op.create_table(
        "refresh_tokens",
        *_base_columns(),
        sa.Column(
            "trainer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("trainers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("replaced_by_hash", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
    )
    op.create_index(
        "ix_refresh_tokens_trainer_id", "refresh_tokens", ["trainer_id"]
    )
    op.create_index(
        "ix_refresh_tokens_token_hash", "refresh_tokens", ["token_hash"], unique=True
    )
    op.create_index(
        "ix_refresh_tokens_expires_at", "refresh_tokens", ["expires_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_refresh_tokens_expires_at", table_name="refresh_tokens")
    op.drop_index("ix_refresh_tokens_token_hash", table_name="refresh_tokens")
    op.drop_index("ix_refresh_tokens_trainer_id", table_name="refresh_tokens")
    op.drop_table("refresh_tokens")
    op.drop_table("otp_records")
    op.drop_index("ix_trainers_google_id", table_name="trainers")
    op.drop_index("ix_trainers_phone", table_name="trainers")
    op.drop_index("ix_trainers_email", table_name="trainers")
    op.drop_table("trainers")
