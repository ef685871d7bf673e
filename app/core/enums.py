from enum import Enum


class AuthProvider(str, Enum):
    """How a trainer last proved control of their identity."""

    PASSWORD = "password"
    PHONE_OTP = "phone_otp"
    OAUTH_NATIVE = "oauth_native"
    OAUTH_WEB = "oauth_web"


class OTPChannel(str, Enum):
    """Delivery channel of a one-time code."""

    EMAIL = "email"
    PHONE = "phone"


class PhoneOTPRetryType(str, Enum):
    """Provider-side resend mode for phone codes."""

    TEXT = "text"
    VOICE = "voice"


class ApprovalStatus(str, Enum):
    """Review state of a trainer's application."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class IdentityDecision(str, Enum):
    """Outcome of resolving (email, phone, external subject) to one trainer."""

    USE_EXISTING = "use_existing"
    CREATE_NEW = "create_new"
    TRANSFER_PHONE = "transfer_phone"
    REJECT_CONFLICT = "reject_conflict"


class TokenType(str, Enum):
    """Value of the `type` claim on issued JWTs."""

    ACCESS = "access"
    REFRESH = "refresh"
