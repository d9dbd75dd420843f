"""
Instagram Webhook Handler

endpoint ציבורי אחד לכל ה-tenants. כל משלוח עובר:
1. אימות חתימה (X-Hub-Signature-256) - 401 בכשל
2. בדיקת סוג האובייקט - 404 אם אינו instagram
3. פירוק לאירועים ועיבוד כל אירוע בנפרד (WebhookProcessor)

מעבר לשני המקרים האלה התשובה היא תמיד 200, כדי ש-Meta לא ישלח שוב
משלוח שכבר טופל (או שנכשל באופן שלא ייפתר ב-retry).
"""
import hmac
import json

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.api.dependencies.recent_webhooks import find_recent_webhooks
from inbox.api.dependencies.webhook_auth import require_valid_signature
from inbox.core.config import settings
from inbox.core.exceptions import UnknownObjectTypeError
from inbox.core.logging import get_logger
from inbox.db.database import get_db
from inbox.domain.services.event_dispatcher import SkippedItem, dispatch_payload
from inbox.domain.services.graph_api import GraphAPIClient
from inbox.domain.services.webhook_processor import WebhookProcessor

logger = get_logger(__name__)

router = APIRouter()


def get_graph_client() -> GraphAPIClient:
    return GraphAPIClient()


# ──────────────────────────────────────────────
#  אימות webhook מול Meta (handshake)
# ──────────────────────────────────────────────


@router.get(
    "/webhook",
    summary="Instagram Webhook Verification",
    description="אימות webhook מול Meta, מחזיר את hub.challenge כטקסט.",
    response_class=PlainTextResponse,
    tags=["Webhooks"],
)
async def instagram_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
) -> PlainTextResponse:
    expected = settings.WEBHOOK_VERIFY_TOKEN
    if (
        hub_mode == "subscribe"
        and hub_challenge
        and hub_verify_token
        and expected
        and hmac.compare_digest(hub_verify_token.encode(), expected.encode())
    ):
        logger.info("Instagram webhook verified successfully")
        return PlainTextResponse(hub_challenge)
    logger.warning(
        "Instagram webhook verification failed",
        extra_data={"hub_mode": hub_mode},
    )
    raise HTTPException(status_code=403, detail="Verification failed")


# ──────────────────────────────────────────────
#  Webhook handler ראשי
# ──────────────────────────────────────────────


@router.post(
    "/webhook",
    summary="Instagram Webhook",
    description="קבלת תגובות, אזכורים והודעות ישירות מ-Instagram (Meta).",
    responses={
        200: {"description": "המשלוח התקבל; תוצאה לכל אירוע"},
        401: {"description": "חתימה לא תקינה"},
        404: {"description": "סוג אובייקט לא צפוי"},
    },
    tags=["Webhooks"],
)
async def instagram_webhook(
    request: Request,
    body: bytes = Depends(require_valid_signature),
    db: AsyncSession = Depends(get_db),
    graph_client: GraphAPIClient = Depends(get_graph_client),
) -> dict:
    try:
        payload = json.loads(body)
    except ValueError:
        logger.warning("Instagram webhook: body אינו JSON תקין")
        return {"status": "ok", "results": []}

    buffer = find_recent_webhooks(request)
    webhook_id = None
    if buffer is not None:
        entries = payload.get("entry") if isinstance(payload, dict) else None
        webhook_id = buffer.start(
            object_type=payload.get("object") if isinstance(payload, dict) else None,
            entry_count=len(entries) if isinstance(entries, list) else 0,
        )

    skipped: list[SkippedItem] = []
    try:
        events = dispatch_payload(payload, settings.WEBHOOK_OBJECT_TYPE, skipped)
    except UnknownObjectTypeError:
        # 404 דרך ה-exception handler
        raise
    except Exception as e:
        logger.error(
            "Instagram webhook dispatch failed",
            extra_data={"error": str(e)},
            exc_info=True,
        )
        return {"status": "ok", "results": []}

    try:
        processor = WebhookProcessor(db, buffer=buffer, graph_client=graph_client)
        results = await processor.process_events(events, webhook_id=webhook_id, skipped=skipped)
    except Exception as e:
        logger.error(
            "Instagram webhook processing aborted",
            extra_data={"events": len(events), "error": str(e)},
            exc_info=True,
        )
        return {"status": "ok", "results": []}

    logger.info(
        "Instagram webhook processed",
        extra_data={
            "events": len(events),
            "outcomes": [r.outcome.value for r in results],
        },
    )
    return {"status": "ok", "results": [r.to_dict() for r in results]}
