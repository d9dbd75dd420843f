"""
Redis Client - async singleton, וכן עזרי cache ל-JSON עם TTL.

משמש ל-cache של פרופילי שולחים (profile enrichment) ולבדיקת readiness.
"""
import asyncio
import json
from typing import Any
from urllib.parse import urlparse

import redis.asyncio as aioredis

from inbox.core.config import settings
from inbox.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None
_init_lock = asyncio.Lock()


def _mask_redis_url(url: str) -> str:
    """מסתיר סיסמה מ-REDIS_URL ללוגים (redis://:****@host:6379)."""
    parsed = urlparse(url)
    if parsed.password:
        return url.replace(f":{parsed.password}@", ":****@")
    return url


async def get_redis() -> aioredis.Redis:
    """מחזיר Redis client singleton (async, connection pool)."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    async with _init_lock:
        # ייתכן ש-request מקבילי כבר אתחל בזמן שחיכינו לנעילה
        if _redis_client is not None:
            return _redis_client

        client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
        await client.ping()
        _redis_client = client
        logger.info("Redis client initialized", extra_data={
            "url": _mask_redis_url(settings.REDIS_URL),
        })
    return _redis_client


async def get_cached_json(key: str) -> Any | None:
    """קריאת ערך JSON מ-cache. ערך פגום נמחק ומוחזר None."""
    client = await get_redis()
    raw = await client.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Discarding malformed cache entry", extra_data={"key": key})
        await client.delete(key)
        return None


async def set_cached_json(key: str, value: Any, ttl_seconds: int) -> None:
    client = await get_redis()
    await client.setex(key, ttl_seconds, json.dumps(value, ensure_ascii=False))


async def close_redis() -> None:
    """סגירת חיבור Redis בזמן shutdown של האפליקציה או בסוף Celery task."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
