from fastapi import Request, status
from fastapi.responses import JSONResponse

from app.core.config import request_logger
from app.core.exceptions.types import (
    AccountLockedException,
    AppException,
    AuthenticationException,
    DatabaseException,
    RateLimitExceededException,
    ServiceUnavailableException,
)


def _error_content(exc: AppException) -> dict:
    content: dict = {"detail": exc.message}
    if exc.details:
        content.update(exc.details)
    return content


def _retry_after_headers(retry_after: int | None) -> dict[str, str]:
    return {"Retry-After": str(retry_after)} if retry_after else {}


async def general_exception_handler(request: Request, exc: AppException):
    """
    Handles any AppException without a more specific handler.

    Client errors are logged as warnings and returned as-is; server errors
    are logged as errors.

    Args:
        request: The request object.
        exc (AppException): The exception instance.

    Returns:
        JSONResponse: The error message, any details, and the exception's status code.
    """
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        request_logger.error(f"{type(exc).__name__}: {exc}")
    else:
        request_logger.warning(f"{type(exc).__name__}: {exc}")
    return JSONResponse(status_code=exc.status_code, content=_error_content(exc))


async def database_exception_handler(request: Request, exc: DatabaseException):
    """
    Handles database exceptions without echoing driver messages to the client.

    Args:
        request: The request object.
        exc (DatabaseException): The database exception instance.

    Returns:
        JSONResponse: A generic error message with status code 500.
    """
    request_logger.error(f"DatabaseException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": "A database error occurred."},
    )


async def authentication_exception_handler(
    request: Request, exc: AuthenticationException
):
    """
    Handles authentication exceptions by returning a JSON response.

    Args:
        request: The request object.
        exc (AuthenticationException): The authentication exception instance.

    Returns:
        JSONResponse: A response containing the error message and status code 401.
    """
    request_logger.warning(f"AuthenticationException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_content(exc),
        headers={"WWW-Authenticate": "Bearer"},
    )


async def account_locked_exception_handler(
    request: Request, exc: AccountLockedException
):
    """
    Handles lockout by returning 423 with the lock expiry and a Retry-After header.
    """
    request_logger.warning(f"AccountLockedException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_content(exc),
        headers=_retry_after_headers(exc.retry_after),
    )


async def rate_limit_exception_handler(
    request: Request, exc: RateLimitExceededException
):
    """
    Handles rate limit exceeded exceptions by returning a JSON response.

    Args:
        request: The request object.
        exc (RateLimitExceededException): The rate limit exception instance.

    Returns:
        JSONResponse: A response with status code 429 and optional Retry-After header.
    """
    request_logger.warning(f"RateLimitExceededException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_content(exc),
        headers=_retry_after_headers(exc.retry_after),
    )


async def service_unavailable_exception_handler(
    request: Request, exc: ServiceUnavailableException
):
    request_logger.error(f"ServiceUnavailableException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_content(exc),
        headers=_retry_after_headers(exc.retry_after),
    )


exception_schema = {
    status.HTTP_401_UNAUTHORIZED: {
        "description": "Authentication Error",
        "content": {
            "application/json": {
                "example": {"detail": "Authentication failed."},
            }
        },
    },
    status.HTTP_409_CONFLICT: {
        "description": "Conflict",
        "content": {
            "application/json": {
                "example": {"detail": "Phone number is unavailable."},
            }
        },
    },
    status.HTTP_423_LOCKED: {
        "description": "Account Locked",
        "content": {
            "application/json": {
                "example": {
                    "detail": "Account is locked. Try again in 15 minute(s).",
                    "locked_until": "2026-01-01T12:15:00+00:00",
                    "retry_after": 900,
                },
            }
        },
    },
    status.HTTP_429_TOO_MANY_REQUESTS: {
        "description": "Rate Limit Exceeded",
        "content": {
            "application/json": {
                "example": {
                    "detail": "Token refresh already in progress. Please retry.",
                    "retry_after": 1,
                },
            }
        },
    },
    status.HTTP_503_SERVICE_UNAVAILABLE: {
        "description": "Service Unavailable",
        "content": {
            "application/json": {
                "example": {
                    "detail": "Service temporarily unavailable. Please try again.",
                    "retry_after": 5,
                },
            }
        },
    },
}


__all__ = [
    "general_exception_handler",
    "database_exception_handler",
    "authentication_exception_handler",
    "account_locked_exception_handler",
    "rate_limit_exception_handler",
    "service_unavailable_exception_handler",
    "exception_schema",
]
