"""
שירות בדיקת בריאות - בדיקות תלויות (DB, Redis).

- liveness: האם התהליך חי (ללא בדיקת תלויות)
- readiness: DB + Redis. broker של Celery הוא אותו Redis ולא נבדק בנפרד.
"""
from typing import Any

from sqlalchemy import text

from inbox.core.logging import get_logger
from inbox.core.redis_client import get_redis
from inbox.db.database import AsyncSessionLocal

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# הודעות שגיאה מסוננות, ללא חשיפת פרטי תשתית
_ERROR_DB = "error: db_unavailable"
_ERROR_REDIS = "error: redis_unavailable"


async def _check_db() -> str:
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("בדיקת בריאות DB נכשלה", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_redis() -> str:
    try:
        client = await get_redis()
        await client.ping()
        return _CHECK_OK
    except Exception as e:
        logger.warning("בדיקת בריאות Redis נכשלה", extra_data={"error": str(e)})
        return _ERROR_REDIS


async def check_readiness() -> dict[str, Any]:
    """
    Returns:
        {"status": "healthy" | "degraded", "db": "ok" | "error: ...", "redis": ...}
    """
    checks = {
        "db": await _check_db(),
        "redis": await _check_redis(),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    if not all_ok:
        logger.warning("בדיקת מוכנות: המערכת במצב degraded", extra_data=checks)

    return {"status": _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED, **checks}
