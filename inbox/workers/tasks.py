"""
Celery Tasks

- sweep_expired_state: ניקוי שעתי של pending markers ו-OAuth states שפגו
- hand_off_inbound_event: העברת אירוע נכנס שנשמר ל-reply pipeline
"""
import asyncio
from contextlib import contextmanager

from sqlalchemy import select

from inbox.workers.celery_app import celery_app
from inbox.db.database import get_task_session
from inbox.db.models.resolved_event import EventDirection, ResolvedEvent
from inbox.domain.services import maintenance_service
from inbox.domain.services.reply_dispatcher import build_hand_off_payload, post_to_reply_pipeline
from inbox.core.exceptions import ExternalServiceException
from inbox.core.logging import bind_tenant_id, get_logger, set_correlation_id

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # סגירת Redis singleton לפני סגירת ה-loop, כדי שההרצה הבאה
            # לא תשתמש ב-client שמחובר ל-event loop סגור
            from inbox.core.redis_client import close_redis
            loop.run_until_complete(close_redis())
        except Exception as e:
            logger.warning(
                "כשלון בסגירת Redis בסיום task",
                extra_data={"error": str(e)},
            )
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Set correlation ID for task tracking
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


@celery_app.task(name="inbox.workers.tasks.sweep_expired_state")
def sweep_expired_state():
    """ניקוי markers ו-OAuth states שפגו (beat, כל שעה)"""

    async def _sweep():
        async with get_task_session() as db:
            return await maintenance_service.sweep_expired_state(db)

    return run_async(_sweep())


@celery_app.task(name="inbox.workers.tasks.hand_off_inbound_event")
def hand_off_inbound_event(event_id: int):
    """
    העברת אירוע נכנס ל-reply pipeline.

    אירוע outbound או אירוע שנמחק בינתיים לא מועבר. כשל upstream נרשם
    בלוג; האירוע נשאר בסטטוס pending.
    """

    async def _hand_off():
        async with get_task_session() as db:
            result = await db.execute(
                select(ResolvedEvent).where(ResolvedEvent.id == event_id)
            )
            event_row = result.scalar_one_or_none()

            if not event_row:
                logger.warning("Hand-off skipped: event not found", extra_data={"event_id": event_id})
                return {"event_id": event_id, "handed_off": False, "reason": "not_found"}

            if event_row.direction != EventDirection.INBOUND:
                return {"event_id": event_id, "handed_off": False, "reason": "outbound"}

            payload = build_hand_off_payload(event_row)

        with bind_tenant_id(payload["tenant_id"]):
            try:
                sent = await post_to_reply_pipeline(payload)
            except ExternalServiceException as e:
                logger.error(
                    "Reply pipeline hand-off failed",
                    extra_data={"event_id": event_id, "error": e.message},
                )
                return {"event_id": event_id, "handed_off": False, "reason": e.error_code.value}

        return {
            "event_id": event_id,
            "handed_off": sent,
            "reason": None if sent else "not_configured",
        }

    return run_async(_hand_off())
