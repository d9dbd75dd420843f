"""
בדיקות ל-Admin Debug Endpoints.

1. אימות API key (אבטחה)
2. המשלוחים האחרונים + recipient אחרון שלא שויך
3. סטטוס circuit breakers
4. הנפקת pending marker
"""
from unittest.mock import patch

import httpx
import pytest

from inbox.core.circuit_breaker import get_graph_api_circuit_breaker
from inbox.core.config import settings
from inbox.domain.services.recent_webhooks import ProcessingRecord

_TEST_API_KEY = "test-admin-api-key-for-tests"
_ADMIN_HEADERS = {"X-Admin-API-Key": _TEST_API_KEY}


@pytest.fixture(autouse=True)
def set_admin_api_key():
    """מגדיר ADMIN_API_KEY לבדיקות"""
    with patch.object(settings, "ADMIN_API_KEY", _TEST_API_KEY):
        yield


# ============================================================================
# אימות API Key
# ============================================================================


class TestAdminAuth:
    """API key נדרש לכל endpoint"""

    @pytest.mark.integration
    async def test_no_api_key_returns_401(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/api/admin/debug/recent-webhooks")
        assert response.status_code == 401

    @pytest.mark.integration
    async def test_wrong_api_key_returns_403(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get(
            "/api/admin/debug/recent-webhooks",
            headers={"X-Admin-API-Key": "wrong-key"},
        )
        assert response.status_code == 403

    @pytest.mark.integration
    async def test_empty_admin_api_key_setting_returns_403(self, test_client: httpx.AsyncClient) -> None:
        """כש-ADMIN_API_KEY ריק בסביבה - הגישה חסומה לחלוטין"""
        with patch.object(settings, "ADMIN_API_KEY", ""):
            response = await test_client.get(
                "/api/admin/debug/circuit-breakers",
                headers={"X-Admin-API-Key": "any-key"},
            )
        assert response.status_code == 403

    @pytest.mark.integration
    async def test_marker_endpoint_requires_key(self, test_client: httpx.AsyncClient, tenant_factory) -> None:
        tenant = await tenant_factory()
        response = await test_client.post(f"/api/admin/debug/tenants/{tenant.id}/pending-marker")
        assert response.status_code == 401


# ============================================================================
# Recent webhooks
# ============================================================================


class TestRecentWebhooks:

    @pytest.mark.integration
    async def test_empty_buffer(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/api/admin/debug/recent-webhooks", headers=_ADMIN_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["capacity"] == settings.RECENT_WEBHOOKS_LIMIT
        assert body["webhooks"] == []
        assert body["last_unmapped_recipient"] is None

    @pytest.mark.integration
    async def test_lists_newest_first_with_results(
        self, test_client: httpx.AsyncClient, recent_webhooks
    ) -> None:
        older = recent_webhooks.start("instagram", 1)
        newer = recent_webhooks.start("instagram", 2)
        recent_webhooks.add_result(
            newer,
            ProcessingRecord(kind="comment", external_id="C1", outcome="processed", tenant_id=4, strategy="direct_primary"),
        )
        recent_webhooks.note_unmapped("R9")

        body = (await test_client.get("/api/admin/debug/recent-webhooks", headers=_ADMIN_HEADERS)).json()

        assert [w["webhook_id"] for w in body["webhooks"]] == [newer, older]
        assert body["webhooks"][0]["results"][0]["strategy"] == "direct_primary"
        assert body["last_unmapped_recipient"]["platform_id"] == "R9"


# ============================================================================
# Circuit Breakers
# ============================================================================


class TestCircuitBreakerStatus:

    @pytest.mark.integration
    async def test_lists_both_breakers(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/api/admin/debug/circuit-breakers", headers=_ADMIN_HEADERS)

        assert response.status_code == 200
        services = {cb["service"]: cb for cb in response.json()}
        assert set(services) == {"graph_api", "reply_pipeline"}
        assert services["graph_api"]["state"] == "closed"

    @pytest.mark.integration
    async def test_reports_open_breaker(self, test_client: httpx.AsyncClient) -> None:
        breaker = get_graph_api_circuit_breaker()
        for _ in range(breaker.config.failure_threshold):
            breaker.record_failure()

        response = await test_client.get("/api/admin/debug/circuit-breakers", headers=_ADMIN_HEADERS)

        graph = next(cb for cb in response.json() if cb["service"] == "graph_api")
        assert graph["state"] == "open"
        assert graph["retry_after_seconds"] > 0


# ============================================================================
# Pending marker
# ============================================================================


class TestIssuePendingMarker:

    @pytest.mark.integration
    async def test_issue_marker(self, test_client: httpx.AsyncClient, tenant_factory, db_session) -> None:
        tenant = await tenant_factory()

        response = await test_client.post(
            f"/api/admin/debug/tenants/{tenant.id}/pending-marker", headers=_ADMIN_HEADERS
        )

        assert response.status_code == 200
        body = response.json()
        assert body["tenant_id"] == tenant.id
        assert body["ttl_hours"] == settings.PENDING_MARKER_TTL_HOURS
        await db_session.refresh(tenant)
        assert tenant.pending_marker_at is not None

    @pytest.mark.integration
    async def test_unknown_tenant_returns_404(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.post(
            "/api/admin/debug/tenants/9999/pending-marker", headers=_ADMIN_HEADERS
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_3001"
