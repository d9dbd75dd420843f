"""
בדיקות ל-Middleware - inbox/core/middleware.py

מכסה:
- CorrelationIdMiddleware: הפצת correlation ID בבקשות
- RequestLoggingMiddleware: לוג בקשות עם מיסוך פרמטרים רגישים
- Exception handlers: טיפול ב-AppException ו-Exception גנרי
- SecurityHeadersMiddleware
"""
from unittest.mock import AsyncMock

import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from inbox.core import exceptions
from inbox.core.exceptions import AuthenticityFailure, ErrorCode, TenantNotFoundError
from inbox.core.middleware import (
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    app_exception_handler,
    generic_exception_handler,
    mask_query_params,
)


# ============================================================================
# Helpers
# ============================================================================


def _hello(request: Request) -> PlainTextResponse:
    return PlainTextResponse("ok")


def _webhook(request: Request) -> PlainTextResponse:
    return PlainTextResponse("webhook ok")


def _error(request: Request) -> PlainTextResponse:
    raise ValueError("שגיאת בדיקה")


def _build_app(*, middlewares: list[tuple] | None = None) -> Starlette:
    """בונה אפליקציית Starlette מינימלית עם middleware."""
    app = Starlette(routes=[
        Route("/test", _hello),
        Route("/api/instagram/webhook", _webhook),
        Route("/error", _error),
    ])
    for mw_class, kwargs in middlewares or []:
        app.add_middleware(mw_class, **kwargs)
    return app


# ============================================================================
# מיסוך query params
# ============================================================================


class TestMaskQueryParams:

    @pytest.mark.unit
    def test_masks_verify_token(self) -> None:
        masked = mask_query_params({
            "hub.mode": "subscribe",
            "hub.verify_token": "secret-token",
            "hub.challenge": "123",
        })
        assert masked == {"hub.mode": "subscribe", "hub.verify_token": "****", "hub.challenge": "123"}

    @pytest.mark.unit
    def test_masks_access_token_case_insensitive(self) -> None:
        assert mask_query_params({"Access_Token": "abc"}) == {"Access_Token": "****"}

    @pytest.mark.unit
    def test_empty(self) -> None:
        assert mask_query_params({}) == {}


# ============================================================================
# CorrelationIdMiddleware
# ============================================================================


class TestCorrelationIdMiddleware:

    @pytest.mark.unit
    def test_generates_correlation_id_when_missing(self) -> None:
        app = _build_app(middlewares=[(CorrelationIdMiddleware, {})])
        with TestClient(app) as client:
            response = client.get("/test")
            assert response.status_code == 200
            assert response.headers["x-correlation-id"]

    @pytest.mark.unit
    def test_preserves_existing_correlation_id(self) -> None:
        app = _build_app(middlewares=[(CorrelationIdMiddleware, {})])
        with TestClient(app) as client:
            response = client.get("/test", headers={"X-Correlation-ID": "meta-retry-1"})
            assert response.headers["x-correlation-id"] == "meta-retry-1"

    @pytest.mark.unit
    def test_correlation_id_unique_per_request(self) -> None:
        app = _build_app(middlewares=[(CorrelationIdMiddleware, {})])
        with TestClient(app) as client:
            id1 = client.get("/test").headers["x-correlation-id"]
            id2 = client.get("/test").headers["x-correlation-id"]
            assert id1 != id2


# ============================================================================
# RequestLoggingMiddleware
# ============================================================================


class TestRequestLoggingMiddleware:

    @pytest.mark.unit
    def test_successful_request_logged(self) -> None:
        app = _build_app(middlewares=[(RequestLoggingMiddleware, {})])
        with TestClient(app) as client:
            assert client.get("/test?hub.verify_token=x").status_code == 200

    @pytest.mark.unit
    def test_exception_in_handler_reraised(self) -> None:
        app = _build_app(middlewares=[(RequestLoggingMiddleware, {})])
        with TestClient(app, raise_server_exceptions=False) as client:
            assert client.get("/error").status_code == 500


# ============================================================================
# Exception Handlers
# ============================================================================


class TestAppExceptionHandler:

    @pytest.mark.unit
    async def test_authenticity_failure(self) -> None:
        mock_request = AsyncMock(spec=Request)
        mock_request.url.path = "/api/instagram/webhook"

        response = await app_exception_handler(mock_request, AuthenticityFailure("signature mismatch"))

        assert isinstance(response, JSONResponse)
        assert response.status_code == 401
        assert b"ERR_2001" in response.body
        assert "x-correlation-id" in response.headers

    @pytest.mark.unit
    async def test_tenant_not_found(self) -> None:
        mock_request = AsyncMock(spec=Request)
        mock_request.url.path = "/api/admin/debug/tenants/9/pending-marker"

        response = await app_exception_handler(mock_request, TenantNotFoundError(9))

        assert response.status_code == 404
        assert b"ERR_3001" in response.body

    @pytest.mark.unit
    def test_error_code_catalogue(self) -> None:
        """רק הקודים שהאפליקציה מחזירה בפועל"""
        assert {code.value for code in ErrorCode} == {
            "ERR_1000", "ERR_1002",
            "ERR_2001", "ERR_2002",
            "ERR_3001", "ERR_3002",
            "ERR_5001", "ERR_5002", "ERR_5003", "ERR_5004",
        }
        assert not hasattr(exceptions, "ValidationException")


class TestGenericExceptionHandler:

    @pytest.mark.unit
    async def test_does_not_leak_internal_details(self) -> None:
        mock_request = AsyncMock(spec=Request)
        mock_request.url.path = "/api/test"

        response = await generic_exception_handler(
            mock_request, RuntimeError("database connection failed on host 10.0.0.1")
        )

        body = response.body.decode()
        assert response.status_code == 500
        assert "10.0.0.1" not in body
        assert "ERR_1000" in body


# ============================================================================
# SecurityHeadersMiddleware
# ============================================================================


class TestSecurityHeadersMiddleware:

    @pytest.mark.unit
    def test_headers_in_production(self) -> None:
        app = _build_app(middlewares=[(SecurityHeadersMiddleware, {"debug": False})])
        with TestClient(app) as client:
            response = client.get("/test")
            assert response.headers["x-content-type-options"] == "nosniff"
            assert "includeSubDomains" in response.headers["strict-transport-security"]

    @pytest.mark.unit
    def test_no_hsts_in_debug(self) -> None:
        app = _build_app(middlewares=[(SecurityHeadersMiddleware, {"debug": True})])
        with TestClient(app) as client:
            response = client.get("/test")
            assert "strict-transport-security" not in response.headers


# ============================================================================
# setup_middleware
# ============================================================================


class TestSetupMiddleware:

    @pytest.mark.integration
    async def test_full_middleware_stack(self, test_client) -> None:
        response = await test_client.get("/health")
        assert response.status_code == 200
        assert "x-correlation-id" in response.headers
        assert response.headers.get("x-content-type-options") == "nosniff"

    @pytest.mark.integration
    async def test_rejected_webhook_keeps_stack_headers(self, test_client) -> None:
        response = await test_client.post("/api/instagram/webhook", content=b"{}")
        assert response.status_code == 401
        assert "x-correlation-id" in response.headers
        assert response.headers.get("x-content-type-options") == "nosniff"
