"""
Shared pieces of the OAuth/OIDC sign-in flows.

A provider turns an authorization code (web) into an OAuthUserInfo whose
claims have been verified. The web flow carries a signed, short-lived
`state` and a PKCE pair, so a callback can be matched to the request
that started it without any server-side storage.
"""

import base64
import hashlib
import secrets
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.core.config import settings


__all__ = [
    "BaseOAuthProvider",
    "OAuthTokens",
    "OAuthUserInfo",
    "OAuthStateData",
    "OAuthStateManager",
    "generate_pkce_pair",
    "generate_state",
]


def generate_state(length: int = 32) -> str:
    """
    Generate a cryptographically secure random state token.

    Args:
        length: Number of random bytes. The result has length * 2 hex chars.

    Example:
        >>> len(generate_state())
        64
    """
    return secrets.token_hex(length)


def generate_pkce_pair() -> tuple[str, str]:
    """
    Generate a PKCE (code_verifier, code_challenge) pair using S256.

    The verifier stays with the client; the challenge goes in the
    authorization URL.

    Returns:
        tuple: (code_verifier, code_challenge)
    """
    verifier = secrets.token_urlsafe(64)[:128]
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


@dataclass
class OAuthTokens:
    """Token endpoint response. Google's `id_token` is the part that matters."""

    access_token: str
    token_type: str
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None
    id_token: str | None = None


@dataclass
class OAuthUserInfo:
    """
    Verified identity claims, normalized across providers.

    `provider_user_id` is the provider's stable subject (`sub`) and is the
    only field identity resolution keys on; the email is advisory unless
    `email_verified` is set. `raw_data` keeps the whole claim set.
    """

    provider: str
    provider_user_id: str
    email: str | None = None
    email_verified: bool = False
    name: str | None = None
    picture: str | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)


class BaseOAuthProvider(ABC):
    """Contract every sign-in provider implements as classmethods."""

    provider_name: str

    @classmethod
    @abstractmethod
    def get_authorization_url(
        cls, redirect_uri: str, state: str, code_challenge: str | None = None
    ) -> str:
        """Consent-screen URL carrying `state` and, if given, the PKCE challenge."""

    @classmethod
    @abstractmethod
    async def exchange_code_for_tokens(
        cls, code: str, redirect_uri: str, code_verifier: str | None = None
    ) -> OAuthTokens:
        """Trade an authorization code for tokens; OAuthException on failure."""

    @classmethod
    @abstractmethod
    async def get_user_info(cls, tokens: OAuthTokens) -> OAuthUserInfo:
        """Verified identity for exchanged tokens; OAuthException if unprovable."""


_state_serializer = URLSafeTimedSerializer(
    secret_key=settings.OAUTH_STATE_SECRET_KEY,
    salt="oauth-state",
)


@dataclass
class OAuthStateData:
    """Data encoded in OAuth state parameter."""

    redirect_uri: str | None = None
    nonce: str = field(default_factory=lambda: secrets.token_hex(16))


class OAuthStateManager:
    """
    Sign and verify the OAuth ``state`` parameter.

    Uses itsdangerous so a callback can prove the flow was started here
    recently, without any server-side storage.
    """

    # State expires after 10 minutes
    STATE_MAX_AGE_SECONDS: int = 600

    @classmethod
    def encode_state(cls, redirect_uri: str | None = None) -> str:
        return _state_serializer.dumps(asdict(OAuthStateData(redirect_uri=redirect_uri)))

    @classmethod
    def decode_state(cls, state: str) -> OAuthStateData | None:
        """The signed state's payload, or None if tampered with or expired."""
        try:
            data = _state_serializer.loads(state, max_age=cls.STATE_MAX_AGE_SECONDS)
        except (BadSignature, SignatureExpired):
            return None
        return OAuthStateData(
            redirect_uri=data.get("redirect_uri"),
            nonce=data.get("nonce", ""),
        )
