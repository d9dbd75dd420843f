"""
Admin Debug Endpoints - endpoints דיאגנוסטיים למפעילים, ללא גישה ישירה ל-DB.

1. המשלוחים האחרונים (ring buffer) + ה-recipient האחרון שלא זוהה
2. סטטוס circuit breakers (Graph API / reply pipeline)
3. הנפקת pending-association marker ל-tenant (כמו בסיום זרימת ההרשאה)
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.api.dependencies.admin_auth import require_admin_api_key
from inbox.api.dependencies.recent_webhooks import get_recent_webhooks
from inbox.core.circuit_breaker import (
    get_graph_api_circuit_breaker,
    get_reply_pipeline_circuit_breaker,
)
from inbox.core.logging import get_logger
from inbox.db.database import get_db
from inbox.domain.services.marker_store import PendingMarkerStore
from inbox.domain.services.recent_webhooks import RecentWebhookBuffer

logger = get_logger(__name__)

router = APIRouter()

_AUTH_RESPONSES = {
    401: {"description": "חסר מפתח API"},
    403: {"description": "מפתח API שגוי"},
}


# ─── Pydantic models ────────────────────────────────────────────────────────

class ProcessingResultResponse(BaseModel):
    kind: str
    external_id: str
    outcome: str = Field(description="processed | duplicate | unresolved | skipped | error")
    tenant_id: int | None = None
    strategy: str | None = None
    direction: str | None = None
    reason: str | None = None


class RecentWebhookResponse(BaseModel):
    webhook_id: str
    received_at: datetime
    signature_valid: bool
    object_type: str | None
    entry_count: int
    results: list[ProcessingResultResponse]


class UnmappedRecipientResponse(BaseModel):
    platform_id: str
    seen_at: datetime


class RecentWebhooksResponse(BaseModel):
    """המשלוחים האחרונים, מהחדש לישן"""
    capacity: int
    webhooks: list[RecentWebhookResponse]
    last_unmapped_recipient: UnmappedRecipientResponse | None = None


class CircuitBreakerStatusResponse(BaseModel):
    """סטטוס של circuit breaker בודד"""
    service: str
    state: str = Field(description="closed | open | half_open")
    failure_count: int
    success_count: int
    half_open_calls: int
    retry_after_seconds: float = Field(
        description="שניות עד שניסיון חוזר אפשרי (0 אם לא פתוח)"
    )


class PendingMarkerResponse(BaseModel):
    tenant_id: int
    pending_marker_at: datetime
    ttl_hours: float


# ─── 1. Recent webhooks ─────────────────────────────────────────────────────

@router.get(
    "/recent-webhooks",
    response_model=RecentWebhooksResponse,
    summary="המשלוחים האחרונים",
    description=(
        "סיכום של המשלוחים האחרונים שהתקבלו (חתימה, סוג אובייקט, תוצאה לכל אירוע), "
        "וה-recipient האחרון שלא שויך לאף tenant."
    ),
    responses={200: {"description": "רשימת משלוחים"}, **_AUTH_RESPONSES},
)
async def get_recent_webhooks_status(
    _: None = Depends(require_admin_api_key),
    buffer: RecentWebhookBuffer = Depends(get_recent_webhooks),
) -> RecentWebhooksResponse:
    unmapped = buffer.last_unmapped
    return RecentWebhooksResponse(
        capacity=buffer.capacity,
        webhooks=[RecentWebhookResponse(**record) for record in buffer.snapshot()],
        last_unmapped_recipient=(
            UnmappedRecipientResponse(platform_id=unmapped.platform_id, seen_at=unmapped.seen_at)
            if unmapped
            else None
        ),
    )


# ─── 2. Circuit Breakers ────────────────────────────────────────────────────

@router.get(
    "/circuit-breakers",
    response_model=list[CircuitBreakerStatusResponse],
    summary="סטטוס circuit breakers",
    description="המצב הנוכחי של ה-circuit breakers של Graph API ושל ה-reply pipeline.",
    responses={200: {"description": "רשימת סטטוס כל circuit breakers"}, **_AUTH_RESPONSES},
)
async def get_circuit_breaker_status(
    _: None = Depends(require_admin_api_key),
) -> list[CircuitBreakerStatusResponse]:
    # אתחול ה-breakers הידועים כדי שיופיעו גם לפני הקריאה הראשונה
    breakers = [
        get_graph_api_circuit_breaker(),
        get_reply_pipeline_circuit_breaker(),
    ]
    return [CircuitBreakerStatusResponse(**cb.snapshot()) for cb in breakers]


# ─── 3. Pending-association marker ──────────────────────────────────────────

@router.post(
    "/tenants/{tenant_id}/pending-marker",
    response_model=PendingMarkerResponse,
    summary="הנפקת pending-association marker",
    description=(
        "מסמן tenant כמי שסיים הרשאה זה עתה, כך שאירוע ממזהה לא מוכר "
        "ישויך אליו אוטומטית בתוך חלון ה-TTL. marker קיים נדרס."
    ),
    responses={
        200: {"description": "ה-marker הונפק"},
        404: {"description": "tenant לא נמצא"},
        **_AUTH_RESPONSES,
    },
)
async def issue_pending_marker(
    tenant_id: int,
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
) -> PendingMarkerResponse:
    # TenantNotFoundError -> 404 דרך ה-exception handler
    store = PendingMarkerStore(db)
    tenant = await store.issue(tenant_id)
    logger.info("pending marker הונפק ע\"י אדמין", extra_data={"tenant_id": tenant_id})
    return PendingMarkerResponse(
        tenant_id=tenant.id,
        pending_marker_at=tenant.pending_marker_at,
        ttl_hours=store.ttl.total_seconds() / 3600,
    )
