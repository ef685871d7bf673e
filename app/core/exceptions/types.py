from datetime import datetime

from fastapi import status


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code or status.HTTP_500_INTERNAL_SERVER_ERROR
        self.details = details
        super().__init__(message)


class DatabaseException(AppException):
    """Exception raised for database-related errors."""

    def __init__(self, message: str = "A database error occurred."):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class ServiceUnavailableException(AppException):
    """Raised when a backing store stays unreachable after all retries."""

    def __init__(
        self,
        message: str = "Service temporarily unavailable. Please try again.",
        retry_after: int | None = 5,
    ):
        super().__init__(
            message,
            status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"retry_after": retry_after} if retry_after else None,
        )
        self.retry_after = retry_after


class ValidationException(AppException):
    """Exception raised for malformed input."""

    def __init__(self, message: str = "Invalid input."):
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class AuthenticationException(AppException):
    """Exception raised for authentication-related errors."""

    def __init__(
        self,
        message: str = "Authentication failed.",
        details: dict | None = None,
    ):
        super().__init__(message, status.HTTP_401_UNAUTHORIZED, details=details)


class InvalidCredentialsException(AuthenticationException):
    """Exception raised when provided credentials are invalid."""

    def __init__(
        self,
        message: str = "Invalid email or password.",
        remaining_attempts: int | None = None,
    ):
        details = None
        if remaining_attempts is not None:
            details = {"remaining_attempts": remaining_attempts}
        super().__init__(message, details=details)
        self.remaining_attempts = remaining_attempts


class TokenReuseException(AuthenticationException):
    """Raised when a refresh token that was just rotated away is presented again."""

    def __init__(
        self,
        message: str = "Refresh token was already used. Please use the latest refresh token.",
    ):
        super().__init__(message, details={"code": "refresh_token_reused"})


class AccountLockedException(AppException):
    """Exception raised while an account is locked after repeated failures."""

    def __init__(
        self,
        locked_until: datetime,
        retry_after: int,
        message: str | None = None,
    ):
        minutes = max(1, -(-retry_after // 60))
        super().__init__(
            message or f"Account is locked. Try again in {minutes} minute(s).",
            status.HTTP_423_LOCKED,
            details={
                "locked_until": locked_until.isoformat(),
                "retry_after": retry_after,
            },
        )
        self.locked_until = locked_until
        self.retry_after = retry_after


class OAuthException(AppException):
    """Exception raised for OAuth-related errors."""

    def __init__(self, message: str = "OAuth authentication failed."):
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class OTPNotFoundException(AppException):
    """Exception raised when no OTP is pending for the subject."""

    def __init__(self, message: str = "No pending OTP. Please request a new one."):
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class OTPExpiredException(AppException):
    """Exception raised when OTP has expired."""

    def __init__(self, message: str = "OTP has expired. Please request a new one."):
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class OTPInvalidException(AppException):
    """Exception raised when OTP is invalid."""

    def __init__(self, message: str = "Invalid OTP code."):
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class RateLimitExceededException(AppException):
    """Exception raised when rate limit is exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please try again later.",
        retry_after: int | None = None,
    ):
        super().__init__(
            message,
            status.HTTP_429_TOO_MANY_REQUESTS,
            details={"retry_after": retry_after} if retry_after else None,
        )
        self.retry_after = retry_after


class TooManyAttemptsException(RateLimitExceededException):
    """
    The pending OTP used up its attempts.

    Waiting does not help: the client has to request a new code, which the
    details say explicitly.
    """

    def __init__(
        self,
        message: str = "Too many attempts. Please request a new OTP.",
        retry_after: int | None = None,
    ):
        super().__init__(message, retry_after=retry_after)
        self.details = {
            **(self.details or {}),
            "remaining_attempts": 0,
            "resend_required": True,
        }


class NotFoundException(AppException):
    """Exception raised when a resource is not found."""

    def __init__(self, message: str = "Resource not found."):
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ConflictException(AppException):
    """Exception raised when there's a conflict with existing resources."""

    def __init__(self, message: str = "Resource conflict."):
        super().__init__(message, status.HTTP_409_CONFLICT)


class ForbiddenException(AppException):
    """Exception raised when access is forbidden."""

    def __init__(self, message: str = "Access forbidden."):
        super().__init__(message, status.HTTP_403_FORBIDDEN)


__all__ = [
    "AppException",
    "DatabaseException",
    "ServiceUnavailableException",
    "ValidationException",
    "AuthenticationException",
    "InvalidCredentialsException",
    "TokenReuseException",
    "AccountLockedException",
    "OAuthException",
    "OTPNotFoundException",
    "OTPExpiredException",
    "OTPInvalidException",
    "TooManyAttemptsException",
    "RateLimitExceededException",
    "NotFoundException",
    "ConflictException",
    "ForbiddenException",
]
