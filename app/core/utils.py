"""
Stateless helpers shared by the auth services.

Password hashing (bcrypt), JWT signing (PyJWT), one-time code hashing
(HMAC-SHA256), refresh token fingerprinting (SHA256) and input
normalization for the email and phone channels.
"""

from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import re
import secrets
from typing import Any
import uuid

import bcrypt
from email_validator import EmailNotValidError, validate_email
import jwt

from app.core.config import settings, utils_logger


_OTP_INPUT_RE = re.compile(r"^\d{4,8}$")

MIN_PHONE_DIGITS = 10


def hash_password(password: str | None, rounds: int | None = None) -> str:
    """
    Hash a password with bcrypt.

    bcrypt only looks at the first 72 bytes of its input, so longer
    passwords are truncated explicitly instead of relying on the backend.

    Args:
        password: The plain text password. Cannot be None or empty.
        rounds: bcrypt cost factor. Defaults to settings.BCRYPT_ROUNDS,
            which is validated against the environment's floor at startup.

    Returns:
        str: The bcrypt hash.

    Raises:
        ValueError: If password is None or empty.

    Examples:
        >>> hashed = hash_password("correct horse battery staple")
        >>> hashed.startswith("$2b$")
        True
    """
    if not password:
        raise ValueError("Password cannot be None or empty")

    salt = bcrypt.gensalt(rounds=rounds or settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8")[:72], salt).decode("utf-8")


def verify_password(password: str | None, hashed_password: str | None) -> bool:
    """
    Check a plain text password against a bcrypt hash.

    Returns False for missing input or a malformed hash instead of raising.
    """
    if not password or not hashed_password:
        return False

    try:
        return bcrypt.checkpw(
            password.encode("utf-8")[:72], hashed_password.encode("utf-8")
        )
    except ValueError:
        utils_logger.warning("Password verification failed: malformed hash")
        return False


def create_jwt_token(
    data: dict[str, Any],
    secret: str,
    expires_delta: timedelta,
) -> str:
    """
    Sign a JWT carrying `data` plus exp, iat and a random jti.

    The jti makes two tokens minted in the same second for the same
    trainer distinct, which rotation depends on.

    Args:
        data: Claims to encode.
        secret: HMAC signing key.
        expires_delta: Lifetime of the token.

    Returns:
        str: The encoded token.
    """
    now = datetime.now(timezone.utc)
    to_encode = data.copy()
    to_encode["iat"] = now
    to_encode["exp"] = now + expires_delta
    to_encode["jti"] = str(uuid.uuid4())
    return jwt.encode(to_encode, secret, algorithm=settings.JWT_ALGORITHM)


def decode_jwt_token(
    token: str | None,
    secret: str,
    expected_type: str | None = None,
) -> dict[str, Any] | None:
    """
    Decode and validate a JWT.

    Args:
        token: The encoded token.
        secret: HMAC signing key.
        expected_type: When given, the `type` claim must equal it.

    Returns:
        dict[str, Any] | None: The claims, or None if the token is missing,
        expired, tampered with or of the wrong type.
    """
    if not token:
        return None

    try:
        payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        utils_logger.info("JWT rejected: token has expired")
        return None
    except jwt.InvalidTokenError as e:
        utils_logger.warning(f"JWT rejected: {type(e).__name__}")
        return None

    if expected_type is not None and payload.get("type") != expected_type:
        utils_logger.warning(
            f"JWT rejected: expected type {expected_type}, got {payload.get('type')}"
        )
        return None

    return payload


def hash_token(token: str) -> str:
    """SHA256 hex digest used to store refresh tokens."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_otp_code(length: int = 6) -> str:
    """Generate a zero-padded numeric code using a CSPRNG."""
    return str(secrets.randbelow(10**length)).zfill(length)


def mask_otp(otp: str) -> str:
    """
    Mask an OTP code for logging purposes, showing only first and last digit.

    Examples:
        >>> mask_otp("123456")
        '1****6'
        >>> mask_otp("12")
        '12'
    """
    if len(otp) <= 2:
        return otp

    return f"{otp[0]}{'*' * (len(otp) - 2)}{otp[-1]}"


def hmac_hash_otp(otp: str, secret: str | None = None) -> str:
    """
    Hash an OTP with HMAC-SHA256 keyed by OTP_HMAC_SECRET.

    Args:
        otp: The code to hash. Cannot be empty.
        secret: Override for the HMAC key.

    Returns:
        str: 64-character hex digest.

    Raises:
        ValueError: If otp is empty.
    """
    if not otp:
        raise ValueError("OTP cannot be None or empty")

    key = (secret or settings.OTP_HMAC_SECRET).encode("utf-8")
    return hmac.new(key, otp.encode("utf-8"), hashlib.sha256).hexdigest()


def hmac_verify_otp(otp: str, hashed_otp: str, secret: str | None = None) -> bool:
    """Constant-time comparison of a code against its stored HMAC."""
    if not otp or not hashed_otp:
        return False
    return hmac.compare_digest(hmac_hash_otp(otp, secret), hashed_otp)


def normalize_email(email: str | None) -> str | None:
    """
    Validate an email address and return its lower-cased normal form.

    Syntax only; deliverability (DNS) is not checked.

    Returns:
        The normalized address, or None for empty input.

    Raises:
        ValueError: If the value is not a valid email address.
    """
    if email is None:
        return None
    cleaned = email.strip()
    if not cleaned:
        return None
    try:
        result = validate_email(cleaned, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValueError(f"Invalid email address: {e}") from e
    return result.normalized.lower()


def normalize_phone(phone: str | None) -> str | None:
    """
    Strip everything but digits from a phone number.

    Returns:
        The digits, or None for empty input.

    Raises:
        ValueError: If fewer than MIN_PHONE_DIGITS digits remain.

    Examples:
        >>> normalize_phone("+91 98765-43210")
        '919876543210'
    """
    if phone is None:
        return None
    digits = re.sub(r"\D", "", phone)
    if not digits:
        return None
    if len(digits) < MIN_PHONE_DIGITS:
        raise ValueError(f"Phone number must have at least {MIN_PHONE_DIGITS} digits")
    return digits


def sanitize_otp_input(code: str | None) -> str:
    """
    Remove whitespace from a user-typed code and check it is 4-8 digits.

    Raises:
        ValueError: If the code is missing or not numeric.
    """
    cleaned = re.sub(r"\s", "", code or "")
    if not _OTP_INPUT_RE.match(cleaned):
        raise ValueError("OTP must be a 4-8 digit number")
    return cleaned
