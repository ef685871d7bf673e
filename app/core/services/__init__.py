from app.core.services.auth import AuthService
from app.core.services.brevo import BrevoService
from app.core.services.credentials import CredentialStore, LockoutStatus
from app.core.services.identity import (
    IdentityResolution,
    IdentityResolver,
    decide_identity,
)
from app.core.services.msg91 import MSG91Service
from app.core.services.otp import OTPService
from app.core.services.redis_service import RedisService
from app.core.services.retry import RetryPolicy, is_transient_error, with_retry
from app.core.services.session import SessionManager
from app.core.services.tokens import TokenRotator

# OAuth providers
from app.core.services.oauth import (
    BaseOAuthProvider,
    GoogleOAuthService,
    OAuthStateManager,
    OAuthTokens,
    OAuthUserInfo,
    generate_pkce_pair,
    generate_state,
)

__all__ = [
    # Core services
    "AuthService",
    "BrevoService",
    "CredentialStore",
    "LockoutStatus",
    "MSG91Service",
    "OTPService",
    "RedisService",
    "SessionManager",
    "TokenRotator",
    # Identity
    "IdentityResolution",
    "IdentityResolver",
    "decide_identity",
    # Retry
    "RetryPolicy",
    "is_transient_error",
    "with_retry",
    # OAuth
    "BaseOAuthProvider",
    "GoogleOAuthService",
    "OAuthStateManager",
    "OAuthTokens",
    "OAuthUserInfo",
    "generate_pkce_pair",
    "generate_state",
]
