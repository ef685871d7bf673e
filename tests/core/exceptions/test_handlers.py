"""
Tests for the JSON exception handlers.

Run tests:
    pytest tests/core/exceptions/test_handlers.py -v
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from app.core.exceptions.handlers import (
    account_locked_exception_handler,
    authentication_exception_handler,
    database_exception_handler,
    general_exception_handler,
    rate_limit_exception_handler,
    service_unavailable_exception_handler,
)
from app.core.exceptions.types import (
    AccountLockedException,
    ConflictException,
    DatabaseException,
    InvalidCredentialsException,
    RateLimitExceededException,
    ServiceUnavailableException,
    TokenReuseException,
)


def _body(response) -> dict:
    return json.loads(response.body)


class TestExceptionHandlers:
    @pytest.fixture
    def request_stub(self):
        return MagicMock()

    async def test_general_handler_returns_status_and_detail(self, request_stub):
        response = await general_exception_handler(
            request_stub, ConflictException("Phone number is unavailable")
        )
        assert response.status_code == 409
        assert _body(response) == {"detail": "Phone number is unavailable"}

    async def test_database_handler_hides_driver_message(self, request_stub):
        response = await database_exception_handler(
            request_stub, DatabaseException("asyncpg exploded: password=hunter2")
        )
        assert response.status_code == 500
        assert "hunter2" not in response.body.decode()

    async def test_authentication_handler_includes_remaining_attempts(
        self, request_stub
    ):
        response = await authentication_exception_handler(
            request_stub, InvalidCredentialsException(remaining_attempts=3)
        )
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert _body(response)["remaining_attempts"] == 3

    async def test_authentication_handler_token_reuse_code(self, request_stub):
        response = await authentication_exception_handler(
            request_stub, TokenReuseException()
        )
        assert response.status_code == 401
        assert _body(response)["code"] == "refresh_token_reused"

    async def test_account_locked_handler(self, request_stub):
        locked_until = datetime.now(timezone.utc) + timedelta(minutes=15)
        response = await account_locked_exception_handler(
            request_stub, AccountLockedException(locked_until, 900)
        )
        body = _body(response)
        assert response.status_code == 423
        assert response.headers["Retry-After"] == "900"
        assert body["locked_until"] == locked_until.isoformat()
        assert "15 minute" in body["detail"]

    async def test_rate_limit_handler(self, request_stub):
        response = await rate_limit_exception_handler(
            request_stub, RateLimitExceededException("busy", retry_after=1)
        )
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "1"

    async def test_service_unavailable_handler(self, request_stub):
        response = await service_unavailable_exception_handler(
            request_stub, ServiceUnavailableException()
        )
        assert response.status_code == 503
        assert response.headers["Retry-After"] == "5"
        assert _body(response)["retry_after"] == 5
