"""
Maintenance Service - ניקוי מצב שפג ותיקוני startup.

sweep_expired_state רץ כל שעה מ-Celery beat ופעם אחת בעליית האפליקציה.
run_startup_fixes רץ ב-background task בעליית האפליקציה, ללא תיאום
עם בקשות חיות (כל התיקונים הם copy-if-missing ולכן אידמפוטנטיים).
"""
from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.core.clock import as_utc, utcnow
from inbox.core.logging import get_logger, log_async_operation
from inbox.db.models.oauth_state import OAuthState
from inbox.domain.services.marker_store import PendingMarkerStore
from inbox.domain.services.tenant_service import TenantService

logger = get_logger(__name__)


@log_async_operation("sweep_expired_state")
async def sweep_expired_state(db: AsyncSession, now: datetime | None = None) -> dict[str, int]:
    """מחיקת markers שפג תוקפם ו-OAuth states שפגו"""
    now = as_utc(now or utcnow())

    markers_cleared = await PendingMarkerStore(db).sweep_expired(now)

    result = await db.execute(
        delete(OAuthState)
        .where(OAuthState.expires_at <= now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    states_deleted = result.rowcount or 0

    logger.info(
        "Expired state swept",
        extra_data={"markers_cleared": markers_cleared, "oauth_states_deleted": states_deleted},
    )
    return {"markers_cleared": markers_cleared, "oauth_states_deleted": states_deleted}


@log_async_operation("startup_fixes")
async def run_startup_fixes(db: AsyncSession) -> dict[str, int]:
    fixed = await TenantService(db).copy_missing_primary_ids()
    swept = await sweep_expired_state(db)
    return {"primary_ids_copied": fixed, **swept}
