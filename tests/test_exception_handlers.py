"""Tests for global exception handlers.

Validates that every exception type maps to its HTTP status code with the
shared error body, and that unexpected errors never leak internals.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from quotaguard.core.errors import (
    AppError,
    InvalidPolicyError,
    QuotaExceededError,
    StoreUnavailableError,
    ValidationAppError,
)
from quotaguard.core.exception_handlers import general_exception_handler, setup_exception_handlers
from quotaguard.core.results import QuotaDecision


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    return TestClient(app_with_handlers)


def _denied_decision() -> QuotaDecision:
    return QuotaDecision(
        allowed=False,
        remaining=0,
        current_count=10,
        reset_at=1_700_003_600.0,
        limit=10,
        checked_at=1_700_000_000.0,
    )


class TestAppErrorHandler:
    def test_quota_exceeded_returns_429_with_headers(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-quota")
        async def test_endpoint():
            raise QuotaExceededError(_denied_decision(), "free_diagnosis")

        response = client.get("/test-quota")

        assert response.status_code == 429
        data = response.json()
        assert data["error"]["code"] == "quota_exceeded"
        assert data["error"]["details"]["limit"] == 10
        assert data["error"]["details"]["retry_after"] == 3600
        assert response.headers["Retry-After"] == "3600"
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.headers["X-RateLimit-Reset"] == "1700003600"

    def test_validation_error_returns_400(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-validation")
        async def test_endpoint():
            raise ValidationAppError(code="unknown_operation", message="No policy")

        response = client.get("/test-validation")

        assert response.status_code == 400
        data = response.json()
        assert data["error"]["code"] == "unknown_operation"
        assert data["error"]["message"] == "No policy"
        assert "request_id" in data["error"]
        assert "details" not in data["error"]

    def test_invalid_policy_returns_400_with_details(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-policy")
        async def test_endpoint():
            raise InvalidPolicyError(
                code="invalid_policy",
                message="max_events must be a positive integer",
                details={"field": "max_events", "value": 0},
            )

        response = client.get("/test-policy")

        assert response.status_code == 400
        assert response.json()["error"]["details"] == {"field": "max_events", "value": 0}

    def test_store_error_returns_503(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-store")
        async def test_endpoint():
            raise StoreUnavailableError(code="store_unavailable", message="Event store unreachable")

        response = client.get("/test-store")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "store_unavailable"


class TestGeneralExceptionHandler:
    def test_general_exception_handler_logic(self):
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = RuntimeError("Unexpected error: sqlite database is locked")
        response = asyncio.run(general_exception_handler(request, exc))

        data = json.loads(bytes(response.body).decode())
        assert response.status_code == 500
        assert data["error"]["code"] == "internal_server_error"
        assert "database is locked" not in data["error"]["message"]
        assert "request_id" in data["error"]

    def test_unhandled_exception_returns_500(self, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-crash")
        async def test_endpoint():
            raise ValueError("boom")

        client = TestClient(app_with_handlers, raise_server_exceptions=False)
        response = client.get("/test-crash")

        assert response.status_code == 500
        assert "ValueError" not in response.text
        assert "Traceback" not in response.text


def test_setup_exception_handlers_registers_handlers(app_with_handlers: FastAPI):
    assert AppError in app_with_handlers.exception_handlers
    assert Exception in app_with_handlers.exception_handlers
