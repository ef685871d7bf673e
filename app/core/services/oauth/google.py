"""
Google sign-in: web authorization-code flow and native ID tokens.

Both flows end in the same place: a Google ID token verified against
Google's published signing keys, whose claims become OAuthUserInfo.

Example usage:
    from app.core.services.oauth.google import GoogleOAuthService

    await GoogleOAuthService.init()

    # Web
    tokens = await GoogleOAuthService.exchange_code_for_tokens(
        code="auth_code_from_callback",
        redirect_uri="https://app.com/callback",
        code_verifier=verifier,
    )
    user_info = await GoogleOAuthService.get_user_info(tokens)

    # Native (ID token from the mobile SDK)
    user_info = await GoogleOAuthService.verify_id_token(id_token)
"""

from urllib.parse import urlencode

import anyio
import httpx
import jwt

from app.core.config import oauth_logger, settings
from app.core.exceptions.types import OAuthException
from app.core.services.oauth.base import (
    BaseOAuthProvider,
    OAuthTokens,
    OAuthUserInfo,
)


__all__ = ["GoogleOAuthService"]


class GoogleOAuthService(BaseOAuthProvider):
    """
    Google OAuth service implementation.

    Attributes:
        provider_name: The provider identifier ("google").
        _client_id: Web OAuth client ID (also the primary ID token audience).
        _client_secret: Web OAuth client secret.
        _native_client_ids: Extra audiences accepted for native ID tokens.
        _client: HTTP client for the token endpoint.
        _jwks_client: Cached fetcher of Google's signing keys.
    """

    provider_name: str = "google"

    _client_id: str = settings.GOOGLE_CLIENT_ID
    _client_secret: str = settings.GOOGLE_CLIENT_SECRET
    _native_client_ids: list[str] = list(settings.GOOGLE_NATIVE_CLIENT_IDS)
    _client: httpx.AsyncClient | None = None
    _jwks_client: jwt.PyJWKClient | None = None

    _AUTHORIZATION_URL: str = "https://accounts.google.com/o/oauth2/v2/auth"
    _TOKEN_URL: str = "https://oauth2.googleapis.com/token"
    _ISSUERS: tuple[str, ...] = ("accounts.google.com", "https://accounts.google.com")
    _SCOPES: list[str] = ["openid", "email", "profile"]

    @classmethod
    async def init(
        cls,
        client_id: str | None = None,
        client_secret: str | None = None,
        native_client_ids: list[str] | None = None,
    ) -> None:
        """
        Initialize the Google OAuth service.

        Args:
            client_id: Optional custom Google client ID.
            client_secret: Optional custom Google client secret.
            native_client_ids: Optional extra ID token audiences.
        """
        if client_id is not None:
            cls._client_id = client_id
        if client_secret is not None:
            cls._client_secret = client_secret
        if native_client_ids is not None:
            cls._native_client_ids = list(native_client_ids)

        await cls.aclose()
        cls._client = httpx.AsyncClient(
            timeout=httpx.Timeout(15.0),
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )
        cls._jwks_client = jwt.PyJWKClient(
            settings.GOOGLE_JWKS_URL, cache_keys=True, lifespan=3600
        )
        oauth_logger.info("GoogleOAuthService initialized")

    @classmethod
    async def aclose(cls) -> None:
        if cls._client is not None:
            try:
                await cls._client.aclose()
            finally:
                cls._client = None
                oauth_logger.info("GoogleOAuthService closed")

    @classmethod
    def get_authorization_url(
        cls, redirect_uri: str, state: str, code_challenge: str | None = None
    ) -> str:
        params = {
            "client_id": cls._client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(cls._SCOPES),
            "state": state,
            "access_type": "online",
            "prompt": "select_account",
        }
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        return f"{cls._AUTHORIZATION_URL}?{urlencode(params)}"

    @classmethod
    async def exchange_code_for_tokens(
        cls, code: str, redirect_uri: str, code_verifier: str | None = None
    ) -> OAuthTokens:
        """
        Exchange an authorization code for Google tokens.

        Args:
            code: The authorization code from the callback.
            redirect_uri: The same redirect URI used in authorization.
            code_verifier: PKCE verifier, when the flow used a challenge.

        Raises:
            OAuthException: On a rejected code, a missing ID token or a
                network error.
        """
        if cls._client is None:
            await cls.init()
            assert cls._client is not None, "Client initialization failed"

        data = {
            "code": code,
            "client_id": cls._client_id,
            "client_secret": cls._client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }
        if code_verifier:
            data["code_verifier"] = code_verifier

        try:
            response = await cls._client.post(
                cls._TOKEN_URL, data=data, headers={"Accept": "application/json"}
            )
        except httpx.RequestError as e:
            oauth_logger.error(f"Google token exchange network error: {e}")
            raise OAuthException(
                message="Google token exchange failed: network error"
            ) from e

        if response.status_code != 200:
            oauth_logger.error(
                f"Google token exchange failed: status={response.status_code}, "
                f"response={response.text}"
            )
            raise OAuthException(message="Google token exchange failed")

        token_data = response.json()
        if not token_data.get("id_token"):
            raise OAuthException(message="Google did not return an ID token")

        oauth_logger.info("Google token exchange successful")
        return OAuthTokens(
            access_token=token_data.get("access_token", ""),
            token_type=token_data.get("token_type", "Bearer"),
            expires_in=token_data.get("expires_in"),
            refresh_token=token_data.get("refresh_token"),
            scope=token_data.get("scope"),
            id_token=token_data["id_token"],
        )

    @classmethod
    async def get_user_info(cls, tokens: OAuthTokens) -> OAuthUserInfo:
        if not tokens.id_token:
            raise OAuthException(message="Google did not return an ID token")
        return await cls.verify_id_token(tokens.id_token)

    @classmethod
    async def _signing_key(cls, id_token: str) -> jwt.PyJWK:
        if cls._jwks_client is None:
            cls._jwks_client = jwt.PyJWKClient(
                settings.GOOGLE_JWKS_URL, cache_keys=True, lifespan=3600
            )
        # PyJWKClient fetches keys with blocking urllib
        return await anyio.to_thread.run_sync(
            cls._jwks_client.get_signing_key_from_jwt, id_token
        )

    @classmethod
    async def verify_id_token(cls, id_token: str) -> OAuthUserInfo:
        """
        Verify a Google ID token and return its identity claims.

        Checks the RS256 signature against Google's JWKS, the expiry, the
        audience (web client id or a native client id) and the issuer.

        Raises:
            OAuthException: The token is malformed, forged, expired, or
                minted for another client.
        """
        audiences = [aud for aud in [cls._client_id, *cls._native_client_ids] if aud]
        if not audiences:
            raise OAuthException(message="Google sign-in is not configured")

        try:
            signing_key = await cls._signing_key(id_token)
            claims = jwt.decode(
                id_token,
                signing_key.key,
                algorithms=["RS256"],
                audience=audiences,
                options={"require": ["exp", "iat", "iss", "sub", "aud"]},
            )
        except jwt.PyJWKClientError as e:
            oauth_logger.error(f"Google signing keys unavailable: {e}")
            raise OAuthException(message="Could not verify Google token") from e
        except jwt.InvalidTokenError as e:
            oauth_logger.warning(f"Google ID token rejected: {e}")
            raise OAuthException(message="Invalid Google token") from e

        if claims.get("iss") not in cls._ISSUERS:
            oauth_logger.warning(f"Google ID token has unexpected issuer {claims.get('iss')}")
            raise OAuthException(message="Invalid Google token")

        email_verified = claims.get("email_verified", False)
        if isinstance(email_verified, str):
            email_verified = email_verified.lower() == "true"

        return OAuthUserInfo(
            provider=cls.provider_name,
            provider_user_id=str(claims["sub"]),
            email=claims.get("email"),
            email_verified=bool(email_verified),
            name=claims.get("name"),
            picture=claims.get("picture"),
            raw_data=claims,
        )
