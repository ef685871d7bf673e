"""
Bounded exponential-backoff retry for transient store failures.

Example:
    >>> policy = RetryPolicy.from_settings()
    >>> trainer = await with_retry(
    ...     lambda: trainer_db.get_by_email(session, email),
    ...     policy,
    ...     on_retry=session.rollback,
    ... )

Only idempotent reads go through here. A mutating transaction must never
be replayed by this helper.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    InterfaceError,
    OperationalError,
)
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import database_logger, settings
from app.core.exceptions.types import (
    AppException,
    DatabaseException,
    ServiceUnavailableException,
)


T = TypeVar("T")

TRANSIENT_ERROR_MARKERS: tuple[str, ...] = (
    "connection terminated",
    "connection reset",
    "connection refused",
    "connection is closed",
    "connection was closed",
    "econnreset",
    "econnrefused",
    "not queryable",
    "server closed the connection",
    "could not connect",
    "timeout expired",
)

_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    ConnectionError,  # includes ConnectionResetError / ConnectionRefusedError
    TimeoutError,
    OperationalError,
    InterfaceError,
    DisconnectionError,
)


def is_transient_error(error: BaseException) -> bool:
    """
    Classify an error as a low-level connectivity failure.

    Walks the `__cause__` / `__context__` chain, since store errors usually
    arrive wrapped (asyncpg inside SQLAlchemy inside DatabaseException).

    Args:
        error: The raised exception.

    Returns:
        bool: True if retrying the same operation may succeed.
    """
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, _TRANSIENT_TYPES):
            return True
        if isinstance(current, DBAPIError) and current.connection_invalidated:
            return True
        message = str(current).lower()
        if any(marker in message for marker in TRANSIENT_ERROR_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times to try an operation and how long to wait in between.

    Attributes:
        max_retries: Total attempts, including the first one.
        backoff_base: Delay before the second attempt, in seconds.
        backoff_cap: Upper bound for any single delay, in seconds.
        classify: Returns True for errors worth retrying.
    """

    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_cap: float = 5.0
    classify: Callable[[BaseException], bool] = field(default=is_transient_error)

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.RETRY_MAX_ATTEMPTS,
            backoff_base=settings.RETRY_BACKOFF_BASE_SECONDS,
            backoff_cap=settings.RETRY_BACKOFF_CAP_SECONDS,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based): base * 2^(n-1), capped."""
        return min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_cap)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    on_retry: Callable[[], Awaitable[object]] | None = None,
) -> T:
    """
    Run `operation`, retrying transient failures with exponential backoff.

    Permanent errors, and the last transient one, propagate unchanged.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        policy: Retry policy. Defaults to the configured policy.
        on_retry: Awaited before each retry, e.g. `session.rollback` to drop
            a transaction that a broken connection left unusable.

    Returns:
        Whatever `operation` returns.
    """
    policy = policy or RetryPolicy.from_settings()
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= policy.max_retries or not policy.classify(e):
                raise
            delay = policy.delay_for(attempt)
            database_logger.warning(
                f"Transient store error (attempt {attempt}/{policy.max_retries}), "
                f"retrying in {delay:.1f}s: {type(e).__name__}: {e}"
            )
            if on_retry is not None:
                await on_retry()
            await asyncio.sleep(delay)
            attempt += 1


def as_service_unavailable(error: BaseException) -> BaseException:
    """
    Map an exhausted transient store failure to ServiceUnavailableException.

    Domain errors pass through untouched; only raw store errors and
    DatabaseException are inspected.

    Returns:
        A new ServiceUnavailableException, or `error` itself when it is
        not a connectivity failure.
    """
    if isinstance(error, AppException) and not isinstance(error, DatabaseException):
        return error
    if is_transient_error(error):
        return ServiceUnavailableException()
    return error


async def read_with_retry(
    session: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
) -> T:
    """
    Run an idempotent read with retries, rolling the session back between tries.

    Raises:
        ServiceUnavailableException: Transient failures outlasted the policy.
    """
    try:
        return await with_retry(operation, policy, on_retry=session.rollback)
    except Exception as e:
        mapped = as_service_unavailable(e)
        if mapped is e:
            raise
        database_logger.error(f"Store unavailable after retries: {e}")
        raise mapped from e


__all__ = [
    "RetryPolicy",
    "TRANSIENT_ERROR_MARKERS",
    "as_service_unavailable",
    "is_transient_error",
    "read_with_retry",
    "with_retry",
]
