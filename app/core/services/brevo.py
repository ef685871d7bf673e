"""
Brevo transactional email client used for email one-time codes.

"""

import asyncio
import random
from typing import Any

from fastapi import status as http_status
import httpx
from pydantic import BaseModel

from app.core.config import brevo_logger, settings
from app.core.exceptions.types import AppException


class Contact(BaseModel):
    email: str
    name: str | None = None


class Sender(BaseModel):
    email: str
    name: str | None = None


class TransactionalEmail(BaseModel):
    sender: Sender
    to: list[Contact]
    subject: str
    htmlContent: str
    textContent: str | None = None


class BrevoService:
    _base_url: str = settings.BREVO_BASE_URL
    _api_key: str = settings.BREVO_API_KEY
    _sender_email: str = settings.BREVO_SENDER_EMAIL
    _sender_name: str = settings.BREVO_SENDER_NAME
    _client: httpx.AsyncClient | None = None

    # Bounded retries + backoff; a code is useless if it arrives minutes late
    _MAX_ATTEMPTS: int = 3
    _BACKOFF_BASE: float = 1.0
    _BACKOFF_MAX: float = 8.0
    _JITTER: float = 0.2  # +/-20%

    @classmethod
    def _init_client(cls) -> None:
        if cls._client is None:
            cls._client = httpx.AsyncClient(
                base_url=cls._base_url,
                timeout=httpx.Timeout(15.0),
            )
            brevo_logger.info("Brevo HTTP client initialized")

    @classmethod
    async def aclose(cls) -> None:
        """Close the HTTP client if it is open."""
        if cls._client is not None:
            try:
                await cls._client.aclose()
            finally:
                cls._client = None
                brevo_logger.info("Brevo HTTP client closed")

    @classmethod
    async def init(
        cls,
        api_key: str | None = None,
        sender_email: str | None = None,
        sender_name: str | None = None,
    ) -> None:
        """
        Configure credentials and (re)create the HTTP client.

        Args:
            api_key (str | None): Brevo API key. Unchanged when None.
            sender_email (str | None): From address. Unchanged when None.
            sender_name (str | None): From name. Unchanged when None.
        """
        if api_key is not None:
            cls._api_key = api_key
        if sender_email is not None:
            cls._sender_email = sender_email
        if sender_name is not None:
            cls._sender_name = sender_name

        await cls.aclose()
        cls._init_client()

    @classmethod
    def is_configured(cls) -> bool:
        return bool(cls._api_key)

    @classmethod
    def _compute_backoff(
        cls, attempt: int, err_headers: httpx.Headers | None = None
    ) -> float:
        """
        Delay before the next attempt, in seconds.

        Honors Brevo's ``x-sib-ratelimit-reset`` header when present,
        otherwise exponential backoff with multiplicative jitter.
        """
        if err_headers and "x-sib-ratelimit-reset" in err_headers:
            try:
                return min(
                    float(err_headers.get("x-sib-ratelimit-reset")), cls._BACKOFF_MAX
                )
            except ValueError:
                pass

        base = min(cls._BACKOFF_BASE * (2 ** (attempt - 1)), cls._BACKOFF_MAX)
        return base * random.uniform(1 - cls._JITTER, 1 + cls._JITTER)

    @classmethod
    def _auth_headers(cls) -> dict[str, str]:
        return {
            "api-key": cls._api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @classmethod
    async def _request(
        cls,
        method: str,
        endpoint: str,
        *,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any] | str:
        """
        Call the Brevo API, retrying transient failures.

        5xx, 429 and network errors are retried up to _MAX_ATTEMPTS times.
        Any other 4xx is final: it means the request itself is wrong.

        Raises:
            AppException: 502 for a rejected request, 503 when Brevo stays
                unreachable.
        """
        if cls._client is None:
            cls._init_client()
        assert cls._client is not None

        attempt = 0
        while True:
            attempt += 1
            last_try = attempt >= cls._MAX_ATTEMPTS
            try:
                resp = await cls._client.request(
                    method, endpoint, headers=cls._auth_headers(), json=json
                )
                resp.raise_for_status()
            except httpx.HTTPStatusError as exc:
                code = exc.response.status_code
                if last_try or not (code >= 500 or code == 429):
                    brevo_logger.error(f"Brevo rejected {endpoint} ({code}): {exc.response.text}")
                    raise AppException(
                        message=f"Email provider error: {code}",
                        status_code=http_status.HTTP_502_BAD_GATEWAY,
                    ) from exc
                wait = cls._compute_backoff(attempt, exc.response.headers)
                brevo_logger.warning(
                    f"Brevo {code} on attempt {attempt}/{cls._MAX_ATTEMPTS}, "
                    f"retrying in {wait:.1f}s"
                )
            except httpx.TransportError as exc:
                if last_try:
                    brevo_logger.error(f"Brevo unreachable after {attempt} attempts: {exc}")
                    raise AppException(
                        message="Email provider unreachable",
                        status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
                    ) from exc
                wait = cls._compute_backoff(attempt)
                brevo_logger.warning(
                    f"Brevo network error on attempt {attempt}/{cls._MAX_ATTEMPTS}, "
                    f"retrying in {wait:.1f}s: {exc}"
                )
            else:
                try:
                    return resp.json()
                except ValueError:
                    return resp.text

            await asyncio.sleep(wait)

    @classmethod
    async def send_transactional_email(
        cls,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: str | None = None,
        to_name: str | None = None,
    ) -> dict[str, Any] | str:
        """
        Send one transactional email.

        Args:
            to_email: Recipient address.
            subject: Subject line.
            html_content: HTML body.
            text_content: Optional plain-text body.
            to_name: Optional recipient display name.

        Returns:
            Brevo's response body (contains the messageId).
        """
        message = TransactionalEmail(
            sender=Sender(email=cls._sender_email, name=cls._sender_name),
            to=[Contact(email=to_email, name=to_name)],
            subject=subject,
            htmlContent=html_content,
            textContent=text_content,
        )
        return await cls._request(
            "POST", "/smtp/email", json=message.model_dump(exclude_none=True)
        )


__all__ = ["BrevoService", "Contact", "Sender", "TransactionalEmail"]
