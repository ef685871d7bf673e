"""
Cross-channel identity resolution for trainers.

`decide_identity` is a pure function over lookup results; it never
touches storage. `IdentityResolver` performs the lookups, applies the
decision and owns the phone-transfer transaction.

Example usage:
    from app.core.services.identity import IdentityResolver

    trainer, decision = await IdentityResolver.resolve_or_create(
        session,
        email="a@x.com",
        phone="9876543210",
    )
"""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import auth_logger
from app.core.db.crud import refresh_token_db, trainer_db
from app.core.db.models import Trainer
from app.core.enums import IdentityDecision
from app.core.exceptions.types import ConflictException, DatabaseException
from app.core.services.retry import read_with_retry


EMAIL_UNAVAILABLE = "Email is unavailable"
PHONE_UNAVAILABLE = "Phone number is unavailable"


@dataclass(frozen=True)
class IdentityResolution:
    """
    Result of `decide_identity`.

    Attributes:
        decision: What to do.
        anchor: The identity that ends up authoritative, None when one
            must be created.
        phone_owner: Current holder of the requested phone, if another
            identity.
        reason: User-facing message for RejectConflict.
    """

    decision: IdentityDecision
    anchor: Trainer | None = None
    phone_owner: Trainer | None = None
    reason: str | None = None


def decide_identity(
    email_match: Trainer | None,
    subject_match: Trainer | None,
    phone_owner: Trainer | None,
    phone: str | None,
    phone_only: bool = False,
) -> IdentityResolution:
    """
    Decide how (email, phone, external subject) map onto one trainer.

    The anchor is the identity owning the external subject, else the one
    owning the email. A phone held by a different identity moves to the
    anchor unless its holder has submitted an application.

    A request carrying only a phone resolves to that phone's owner.

    Args:
        email_match: Trainer owning the requested email.
        subject_match: Trainer owning the requested external subject.
        phone_owner: Trainer owning the requested phone.
        phone: The requested phone, normalized.
        phone_only: No email or external subject was presented.

    Returns:
        IdentityResolution
    """
    if (
        email_match is not None
        and subject_match is not None
        and email_match.id != subject_match.id
    ):
        return IdentityResolution(
            IdentityDecision.REJECT_CONFLICT, reason=EMAIL_UNAVAILABLE
        )

    anchor = subject_match or email_match

    if anchor is not None:
        if phone is None or phone_owner is None or phone_owner.id == anchor.id:
            return IdentityResolution(IdentityDecision.USE_EXISTING, anchor=anchor)
        if phone_owner.has_submitted_application:
            return IdentityResolution(
                IdentityDecision.REJECT_CONFLICT, reason=PHONE_UNAVAILABLE
            )
        return IdentityResolution(
            IdentityDecision.TRANSFER_PHONE, anchor=anchor, phone_owner=phone_owner
        )

    if phone_owner is None:
        return IdentityResolution(IdentityDecision.CREATE_NEW)

    if phone_only:
        return IdentityResolution(IdentityDecision.USE_EXISTING, anchor=phone_owner)

    if phone_owner.has_submitted_application:
        return IdentityResolution(
            IdentityDecision.REJECT_CONFLICT, reason=PHONE_UNAVAILABLE
        )
    return IdentityResolution(
        IdentityDecision.TRANSFER_PHONE, phone_owner=phone_owner
    )


class IdentityResolver:
    """
    Finds or creates the trainer behind a set of identity channels.

    All trainer lookups go through the store retry policy. Mutations run in
    the caller's session and are committed here unless `commit_self` is
    False.
    """

    @classmethod
    async def _lookup(
        cls,
        session: AsyncSession,
        email: str | None,
        phone: str | None,
        external_subject: str | None,
    ) -> tuple[Trainer | None, Trainer | None, Trainer | None]:
        email_match = subject_match = phone_owner = None
        if email:
            email_match = await read_with_retry(
                session, lambda: trainer_db.get_by_email(session, email)
            )
        if external_subject:
            subject_match = await read_with_retry(
                session, lambda: trainer_db.get_by_google_id(session, external_subject)
            )
        if phone:
            phone_owner = await read_with_retry(
                session, lambda: trainer_db.get_by_phone(session, phone)
            )
        return email_match, subject_match, phone_owner

    @classmethod
    async def resolve_or_create(
        cls,
        session: AsyncSession,
        email: str | None = None,
        phone: str | None = None,
        external_subject: str | None = None,
        defaults: dict[str, Any] | None = None,
        commit_self: bool = True,
    ) -> tuple[Trainer, IdentityDecision]:
        """
        Resolve identity channels to one trainer, creating it if needed.

        Args:
            session: The database session.
            email: Normalized email, if presented.
            phone: Normalized phone, if presented.
            external_subject: Google `sub`, if presented.
            defaults: Extra columns for a newly created trainer
                (password_hash, username, auth_provider, ...).
            commit_self: Commit the resulting writes.

        Returns:
            tuple: (trainer, decision)

        Raises:
            ConflictException: The email or phone is held elsewhere and
                cannot be reassigned.
        """
        email_match, subject_match, phone_owner = await cls._lookup(
            session, email, phone, external_subject
        )
        resolution = decide_identity(
            email_match,
            subject_match,
            phone_owner,
            phone,
            phone_only=not email and not external_subject,
        )

        if resolution.decision == IdentityDecision.REJECT_CONFLICT:
            auth_logger.warning(
                f"Identity conflict: email={email is not None}, "
                f"phone={phone is not None}, subject={external_subject is not None}"
            )
            raise ConflictException(resolution.reason or EMAIL_UNAVAILABLE)

        if resolution.decision == IdentityDecision.CREATE_NEW:
            trainer = await cls._create(
                session,
                {
                    "email": email,
                    "phone": phone,
                    "google_id": external_subject,
                    **(defaults or {}),
                },
            )
        elif resolution.decision == IdentityDecision.TRANSFER_PHONE:
            assert resolution.phone_owner is not None and phone is not None
            anchor = resolution.anchor
            if anchor is None:
                anchor = await cls._create(
                    session,
                    {
                        "email": email,
                        "google_id": external_subject,
                        **(defaults or {}),
                    },
                )
            trainer = await cls.transfer_phone(
                session, resolution.phone_owner.id, anchor.id, phone
            )
        else:
            assert resolution.anchor is not None
            trainer = resolution.anchor
            if phone and trainer.phone != phone:
                trainer = await cls._set_unowned_phone(session, trainer, phone)

        if commit_self:
            await session.commit()

        auth_logger.info(
            f"Identity resolved: trainer={trainer.id}, decision={resolution.decision.value}"
        )
        return trainer, resolution.decision

    @classmethod
    async def _create(cls, session: AsyncSession, data: dict[str, Any]) -> Trainer:
        try:
            return await trainer_db.create(session, data, commit_self=False)
        except DatabaseException as e:
            if isinstance(e.__cause__, IntegrityError):
                await session.rollback()
                auth_logger.warning("Trainer creation lost a uniqueness race")
                raise ConflictException("Account already exists") from e
            raise

    @classmethod
    async def _set_unowned_phone(
        cls, session: AsyncSession, trainer: Trainer, phone: str
    ) -> Trainer:
        """Give a trainer a phone nobody holds. The phone starts unverified."""
        try:
            updated = await trainer_db.update(
                session,
                trainer.id,
                {"phone": phone, "is_phone_verified": False},
                commit_self=False,
            )
        except DatabaseException as e:
            if isinstance(e.__cause__, IntegrityError):
                await session.rollback()
                raise ConflictException(PHONE_UNAVAILABLE) from e
            raise
        return updated or trainer

    @classmethod
    async def transfer_phone(
        cls,
        session: AsyncSession,
        from_trainer_id: UUID,
        to_trainer_id: UUID,
        phone: str,
    ) -> Trainer:
        """
        Move a phone number from one trainer to another.

        Both rows are locked (in id order) for the rest of the transaction
        and the preconditions are re-checked under the lock. The previous
        holder loses the phone first, then the new holder gets it
        unverified, and every refresh token of the previous holder is
        revoked. Nothing is committed here.

        Returns:
            The trainer now holding the phone.

        Raises:
            ConflictException: The previous holder submitted an application,
                or the phone moved elsewhere in the meantime.
        """
        locked = {
            t.id: t
            for t in await trainer_db.lock_many(session, [from_trainer_id, to_trainer_id])
        }
        source = locked.get(from_trainer_id)
        target = locked.get(to_trainer_id)
        if target is None:
            raise ConflictException(PHONE_UNAVAILABLE)

        if source is not None and source.phone == phone:
            if source.has_submitted_application:
                raise ConflictException(PHONE_UNAVAILABLE)
            await trainer_db.update(
                session,
                source.id,
                {"phone": None, "is_phone_verified": False},
                commit_self=False,
            )
            await refresh_token_db.revoke_all_for_trainer(
                session, source.id, commit_self=False
            )
        elif target.phone != phone:
            current = await trainer_db.get_by_phone(session, phone, for_update=True)
            if current is not None and current.id != target.id:
                raise ConflictException(PHONE_UNAVAILABLE)

        updated = await trainer_db.update(
            session,
            target.id,
            {"phone": phone, "is_phone_verified": False},
            commit_self=False,
        )
        auth_logger.info(
            f"Phone transferred: from={from_trainer_id}, to={to_trainer_id}"
        )
        return updated or target

    @classmethod
    async def change_contact(
        cls,
        session: AsyncSession,
        trainer: Trainer,
        email: str | None = None,
        phone: str | None = None,
        commit_self: bool = True,
    ) -> Trainer:
        """
        Change a trainer's email and/or phone.

        A changed channel always starts unverified. An email held by
        another trainer is refused; a phone held by another trainer follows
        the transfer rules of `decide_identity`.

        Raises:
            ConflictException: The new email or phone is unavailable.
        """
        change_email = bool(email) and email != trainer.email
        change_phone = bool(phone) and phone != trainer.phone

        # All reads before the first write: a retried read rolls back
        if change_email:
            email_holder = await read_with_retry(
                session, lambda: trainer_db.get_by_email(session, email)
            )
            if email_holder is not None and email_holder.id != trainer.id:
                raise ConflictException(EMAIL_UNAVAILABLE)

        resolution = None
        phone_holder = None
        if change_phone:
            phone_holder = await read_with_retry(
                session, lambda: trainer_db.get_by_phone(session, phone)
            )
            resolution = decide_identity(None, trainer, phone_holder, phone)
            if resolution.decision == IdentityDecision.REJECT_CONFLICT:
                raise ConflictException(resolution.reason or PHONE_UNAVAILABLE)

        if change_email:
            trainer = (
                await trainer_db.update(
                    session,
                    trainer.id,
                    {"email": email, "is_email_verified": False},
                    commit_self=False,
                )
                or trainer
            )

        if resolution is not None:
            if resolution.decision == IdentityDecision.TRANSFER_PHONE:
                assert phone_holder is not None
                trainer = await cls.transfer_phone(
                    session, phone_holder.id, trainer.id, phone
                )
            else:
                trainer = await cls._set_unowned_phone(session, trainer, phone)

        if commit_self:
            await session.commit()
        return trainer


__all__ = [
    "EMAIL_UNAVAILABLE",
    "IdentityResolution",
    "IdentityResolver",
    "PHONE_UNAVAILABLE",
    "decide_identity",
]
