"""
Reply Pipeline Hand-off

אירוע נכנס שנשמר (לא כפול, לא outbound) מועבר לשירות יצירת התשובות
החיצוני. ההעברה עצמה רצה ב-Celery מחוץ לבקשת ה-webhook; כאן נמצאים
התזמון (enqueue_hand_off) והשליחה בפועל (post_to_reply_pipeline).
"""
from typing import Any

import httpx
from kombu.exceptions import OperationalError

from inbox.core.circuit_breaker import get_reply_pipeline_circuit_breaker
from inbox.core.config import settings
from inbox.core.exceptions import ReplyPipelineError, ServiceTimeoutError
from inbox.core.logging import get_logger
from inbox.db.models.resolved_event import ResolvedEvent

logger = get_logger(__name__)


def build_hand_off_payload(event_row: ResolvedEvent) -> dict[str, Any]:
    return {
        "event_id": event_row.id,
        "tenant_id": event_row.tenant_id,
        "kind": event_row.kind.value,
    }


def enqueue_hand_off(event_id: int) -> bool:
    """
    תזמון task של hand-off. כשל ב-broker נרשם בלוג ולא מפיל את ה-webhook:
    האירוע כבר נשמר בסטטוס pending ויטופל מחדש ע"י ה-pipeline.
    """
    # import מקומי - tasks מייבא את המודול הזה
    from inbox.workers.tasks import hand_off_inbound_event

    try:
        hand_off_inbound_event.delay(event_id)
        return True
    except OperationalError as e:
        logger.error(
            "Failed to enqueue reply pipeline hand-off",
            extra_data={"event_id": event_id, "error": str(e)},
        )
        return False


async def post_to_reply_pipeline(
    payload: dict[str, Any],
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """
    POST ל-REPLY_PIPELINE_URL דרך circuit breaker.

    Returns:
        False כשאין URL מוגדר (ה-hand-off מדולג), True אחרי שליחה מוצלחת

    Raises:
        ReplyPipelineError / ServiceTimeoutError / CircuitBreakerOpenError
    """
    url = settings.REPLY_PIPELINE_URL
    if not url:
        logger.info(
            "REPLY_PIPELINE_URL לא מוגדר - hand-off דולג",
            extra_data={"event_id": payload.get("event_id")},
        )
        return False

    timeout = settings.DOWNSTREAM_TIMEOUT_SECONDS
    breaker = get_reply_pipeline_circuit_breaker()

    async def _post() -> bool:
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
                response = await client.post(url, json=payload)
        except httpx.TimeoutException as e:
            raise ServiceTimeoutError("reply_pipeline", timeout) from e
        except httpx.HTTPError as e:
            raise ReplyPipelineError(f"transport error: {e}") from e
        if response.status_code >= 300:
            raise ReplyPipelineError(
                f"status {response.status_code}",
                details={"status_code": response.status_code, "response": response.text[:500]},
            )
        return True

    return await breaker.execute(_post)
