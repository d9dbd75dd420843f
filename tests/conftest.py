"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- Mock external services (Redis, Graph API, reply pipeline hand-off)
- Test data factories (tenants, signed webhook payloads)
"""
# משתני סביבה לפני ייבוא inbox - הולידטור דורש סודות כש-DEBUG=False
import os
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("INSTAGRAM_APP_SECRET", "test-app-secret-for-testing-only")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-for-testing-only")
os.environ.setdefault("WEBHOOK_VERIFY_TOKEN", "test-verify-token")

import json
from datetime import datetime
from typing import Any, AsyncGenerator, Callable
from unittest.mock import MagicMock, patch

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from inbox.api.webhooks.instagram import get_graph_client
from inbox.core.config import settings
from inbox.core.security import CredentialVault
from inbox.db.database import Base, get_db
from inbox.db.models.tenant_account import TenantAccount
from inbox.domain.services.graph_api import GraphAPIClient
from inbox.domain.services.recent_webhooks import RecentWebhookBuffer
from inbox.main import app
from tests.helpers import sign_body


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# הערה: לא מגדירים event_loop fixture מותאם אישית כי pytest-asyncio 0.23+
# מטפל בזה אוטומטית עם asyncio_mode=auto ו-asyncio_default_fixture_loop_scope=function


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


# ============================================================================
# Graph API (httpx.MockTransport)
# ============================================================================


class GraphAPIStub:
    """
    תשובות מוגדרות מראש ל-Graph API לפי (path, access_token).

    ברירת מחדל: 400 עם error body, כמו ש-Graph מחזיר למזהה שהטוקן לא רואה.
    """

    def __init__(self) -> None:
        self.responses: dict[tuple[str, str | None], tuple[int, Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, object_id: str, payload: Any, status_code: int = 200, token: str | None = None) -> None:
        self.responses[(object_id, token)] = (status_code, payload)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        object_id = request.url.path.rstrip("/").rsplit("/", 1)[-1]
        token = request.url.params.get("access_token")
        status_code, payload = self.responses.get(
            (object_id, token),
            self.responses.get(
                (object_id, None),
                (400, {"error": {"message": "Unsupported get request", "code": 100}}),
            ),
        )
        return httpx.Response(status_code, json=payload)

    def client(self) -> GraphAPIClient:
        return GraphAPIClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def graph_stub() -> GraphAPIStub:
    return GraphAPIStub()


@pytest.fixture
def recent_webhooks() -> RecentWebhookBuffer:
    """buffer חדש לכל בדיקה במקום זה של ה-app"""
    buffer = RecentWebhookBuffer(capacity=settings.RECENT_WEBHOOKS_LIMIT)
    original = app.state.recent_webhooks
    app.state.recent_webhooks = buffer
    yield buffer
    app.state.recent_webhooks = original


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, graph_stub: GraphAPIStub, recent_webhooks):
    """Create test client with database and Graph API overrides"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_graph_client] = graph_stub.client

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Test Data Factories
# ============================================================================


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(settings.ENCRYPTION_KEY)


@pytest.fixture
def tenant_factory(db_session: AsyncSession, vault: CredentialVault):
    """Factory for creating test tenants"""
    async def _create_tenant(
        name: str = "Test Tenant",
        primary_platform_id: str | None = None,
        secondary_platform_id: str | None = None,
        platform_username: str | None = None,
        access_token: str | None = "tenant-access-token",
        pending_marker_at: datetime | None = None,
        is_active: bool = True,
    ) -> TenantAccount:
        tenant = TenantAccount(
            name=name,
            primary_platform_id=primary_platform_id,
            secondary_platform_id=secondary_platform_id,
            platform_username=platform_username,
            encrypted_credential=vault.encrypt(access_token) if access_token else None,
            pending_marker_at=pending_marker_at,
            is_active=is_active,
        )
        db_session.add(tenant)
        await db_session.commit()
        await db_session.refresh(tenant)
        return tenant

    return _create_tenant


@pytest.fixture
def signed_post(test_client: httpx.AsyncClient) -> Callable:
    """שליחת payload חתום ל-webhook"""
    async def _post(payload: dict, signature: str | None = None) -> httpx.Response:
        body = json.dumps(payload).encode()
        headers = {
            "Content-Type": "application/json",
            "X-Hub-Signature-256": signature if signature is not None else sign_body(body),
        }
        return await test_client.post("/api/instagram/webhook", content=body, headers=headers)

    return _post


# ============================================================================
# Circuit Breaker Reset
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from inbox.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


class FakeRedis:
    """תחליף ל-Redis לבדיקות - in-memory dict עם ממשק תואם ומעקב TTL."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self._ttls[key] = ex
        return True

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self._store[key] = value
        self._ttls[key] = ttl

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)

    async def aclose(self) -> None:
        self._store.clear()
        self._ttls.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """מחליף את get_redis ב-FakeRedis לכל הבדיקות."""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("inbox.core.redis_client.get_redis", _get_fake_redis), \
         patch("inbox.domain.services.health_service.get_redis", _get_fake_redis):
        yield _fake


@pytest.fixture(autouse=True)
def audit_log_path(tmp_path):
    """קובץ ה-audit של כל בדיקה נכתב לתיקייה זמנית"""
    path = tmp_path / "webhook_audit.log"
    with patch.object(settings, "AUDIT_LOG_PATH", str(path)):
        yield path


@pytest.fixture(autouse=True)
def handed_off():
    """מונע חיבור ל-broker של Celery; מחזיר mock שמתעד את ה-hand-offs"""
    recorder = MagicMock(return_value=True)
    with patch("inbox.domain.services.reply_dispatcher.enqueue_hand_off", recorder):
        yield recorder
