"""
MSG91 OTP gateway for the phone channel.

The code is generated and hashed locally; MSG91 only delivers it. The
same code stays with MSG91 so its retry endpoint can re-deliver it by
text or voice without a new code being issued.
"""

import asyncio
import random
from typing import Any

from fastapi import status as http_status
import httpx

from app.core.config import msg91_logger, settings
from app.core.enums import PhoneOTPRetryType
from app.core.exceptions.types import AppException
from app.core.utils import mask_otp


class MSG91Service:
    _base_url: str = settings.MSG91_BASE_URL
    _auth_key: str = settings.MSG91_AUTH_KEY
    _template_id: str = settings.MSG91_TEMPLATE_ID
    _country_code: str = settings.MSG91_DEFAULT_COUNTRY_CODE
    _client: httpx.AsyncClient | None = None

    _MAX_ATTEMPTS: int = 3
    _BACKOFF_BASE: float = 1.0
    _BACKOFF_MAX: float = 5.0
    _JITTER: float = 0.2

    @classmethod
    def _init_client(cls) -> None:
        if cls._client is None:
            cls._client = httpx.AsyncClient(
                base_url=cls._base_url,
                timeout=httpx.Timeout(10.0),
            )
            msg91_logger.info("MSG91 HTTP client initialized")

    @classmethod
    async def aclose(cls) -> None:
        if cls._client is not None:
            try:
                await cls._client.aclose()
            finally:
                cls._client = None
                msg91_logger.info("MSG91 HTTP client closed")

    @classmethod
    async def init(
        cls,
        auth_key: str | None = None,
        template_id: str | None = None,
    ) -> None:
        """
        Configure credentials and (re)create the HTTP client.

        Args:
            auth_key (str | None): MSG91 auth key. Unchanged when None.
            template_id (str | None): DLT-approved OTP template id.
        """
        if auth_key is not None:
            cls._auth_key = auth_key
        if template_id is not None:
            cls._template_id = template_id

        await cls.aclose()
        cls._init_client()

    @classmethod
    def is_configured(cls) -> bool:
        return bool(cls._auth_key and cls._template_id)

    @classmethod
    def normalize_destination(cls, phone: str) -> str:
        """
        Turn a stored phone number into MSG91's ``mobile`` format.

        A bare 10-digit national number gets the default country code.

        Example:
            >>> MSG91Service.normalize_destination("9876543210")
            '919876543210'
        """
        digits = "".join(ch for ch in phone if ch.isdigit())
        if len(digits) == 10:
            return f"{cls._country_code}{digits}"
        return digits

    @classmethod
    def _compute_backoff(cls, attempt: int) -> float:
        base = min(cls._BACKOFF_BASE * (2 ** (attempt - 1)), cls._BACKOFF_MAX)
        return base * random.uniform(1 - cls._JITTER, 1 + cls._JITTER)

    @classmethod
    async def _request(
        cls,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Call MSG91 with bounded retries on 5xx, 429 and network errors.

        MSG91 reports some failures with a 200 status and
        ``{"type": "error"}`` in the body; those are not retried.

        Raises:
            AppException: When delivery cannot be confirmed.
        """
        if cls._client is None:
            cls._init_client()
        assert cls._client is not None

        headers = {"authkey": cls._auth_key, "Accept": "application/json"}

        for attempt in range(1, cls._MAX_ATTEMPTS + 1):
            try:
                resp = await cls._client.request(
                    method, endpoint, params=params, headers=headers
                )
                resp.raise_for_status()
                body = resp.json()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if (status >= 500 or status == 429) and attempt < cls._MAX_ATTEMPTS:
                    wait = cls._compute_backoff(attempt)
                    msg91_logger.warning(
                        f"MSG91 returned {status}; attempt {attempt}/{cls._MAX_ATTEMPTS}; "
                        f"wait={wait:.1f}s"
                    )
                    await asyncio.sleep(wait)
                    continue

                msg91_logger.error(f"MSG91 error {status}: {exc.response.text}")
                raise AppException(
                    message=f"SMS provider error: {status}",
                    status_code=http_status.HTTP_502_BAD_GATEWAY,
                ) from exc
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                if attempt < cls._MAX_ATTEMPTS:
                    wait = cls._compute_backoff(attempt)
                    msg91_logger.warning(
                        f"MSG91 network error; attempt {attempt}/{cls._MAX_ATTEMPTS}; "
                        f"wait={wait:.1f}s; err={exc}"
                    )
                    await asyncio.sleep(wait)
                    continue

                msg91_logger.error(f"MSG91 network error after retries: {exc}")
                raise AppException(
                    message="SMS provider unreachable",
                    status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
                ) from exc
            except ValueError as exc:
                raise AppException(
                    message="SMS provider returned an unreadable response",
                    status_code=http_status.HTTP_502_BAD_GATEWAY,
                ) from exc

            if body.get("type") == "error":
                msg91_logger.error(f"MSG91 rejected request: {body.get('message')}")
                raise AppException(
                    message="SMS provider rejected the request",
                    status_code=http_status.HTTP_502_BAD_GATEWAY,
                    details={"provider_message": body.get("message")},
                )
            return body

        raise AppException(message="Unexpected state: no response from MSG91")

    @classmethod
    async def send_otp(cls, phone: str, code: str) -> bool:
        """
        Deliver a locally generated code by SMS.

        Args:
            phone: Normalized phone number.
            code: Plaintext code.

        Returns:
            bool: True if handed to MSG91, False if only logged
                (unconfigured gateway outside production).

        Raises:
            AppException: Delivery failed, or the gateway is unconfigured
                in production.
        """
        mobile = cls.normalize_destination(phone)
        if not cls.is_configured():
            if settings.is_production:
                raise AppException(
                    message="SMS provider not configured",
                    status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
                )
            msg91_logger.info(
                f"[dev] MSG91 not configured; OTP {mask_otp(code)} for {mobile}"
            )
            return False

        await cls._request(
            "POST",
            "/otp",
            params={
                "template_id": cls._template_id,
                "mobile": mobile,
                "otp": code,
                "otp_length": len(code),
                "otp_expiry": settings.OTP_EXPIRY_MINUTES,
            },
        )
        msg91_logger.info(f"OTP dispatched to {mobile[:-4]}****")
        return True

    @classmethod
    async def retry_otp(
        cls,
        phone: str,
        retry_type: PhoneOTPRetryType = PhoneOTPRetryType.TEXT,
    ) -> bool:
        """
        Ask MSG91 to re-deliver the last code by text or voice.

        Returns:
            bool: True if MSG91 accepted the retry, False if only logged.
        """
        mobile = cls.normalize_destination(phone)
        if not cls.is_configured():
            if settings.is_production:
                raise AppException(
                    message="SMS provider not configured",
                    status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
                )
            msg91_logger.info(f"[dev] MSG91 not configured; {retry_type} retry for {mobile}")
            return False

        await cls._request(
            "GET",
            "/otp/retry",
            params={"mobile": mobile, "retrytype": retry_type.value},
        )
        msg91_logger.info(f"OTP {retry_type.value} retry requested for {mobile[:-4]}****")
        return True


__all__ = ["MSG91Service"]
