"""
OAuth provider services.

- BaseOAuthProvider: Abstract base class for OAuth providers
- GoogleOAuthService: Google sign-in (web code flow and native ID tokens)
- OAuthStateManager: Signs and verifies the OAuth state parameter

Example usage:
    from app.core.services.oauth import GoogleOAuthService

    await GoogleOAuthService.init()
    user_info = await GoogleOAuthService.verify_id_token(id_token)
"""

from app.core.services.oauth.base import (
    BaseOAuthProvider,
    OAuthStateData,
    OAuthStateManager,
    OAuthTokens,
    OAuthUserInfo,
    generate_pkce_pair,
    generate_state,
)
from app.core.services.oauth.google import GoogleOAuthService

__all__ = [
    "BaseOAuthProvider",
    "OAuthTokens",
    "OAuthUserInfo",
    "OAuthStateData",
    "OAuthStateManager",
    "generate_pkce_pair",
    "generate_state",
    "GoogleOAuthService",
]
