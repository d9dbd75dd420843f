"""
Instagram Inbox Gateway - Main FastAPI Application
"""
import asyncio

from fastapi import FastAPI
from starlette.responses import JSONResponse

from inbox.core.config import settings
from inbox.core.logging import setup_logging, get_logger
from inbox.core.middleware import setup_middleware, setup_exception_handlers
from inbox.api.routes import router as api_router
from inbox.db.database import engine, Base, get_task_session
from inbox.domain.services.recent_webhooks import RecentWebhookBuffer

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


_OPENAPI_TAGS = [
    {
        "name": "Webhooks",
        "description": "endpoint ציבורי אחד לתגובות, אזכורים והודעות ישירות מ-Instagram, לכל ה-tenants.",
    },
    {
        "name": "Admin Debug",
        "description": "כלי דיאגנוסטיקה למפעילים: משלוחים אחרונים, circuit breakers, pending markers.",
    },
    {"name": "Health", "description": "liveness ו-readiness."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "שער webhooks של Instagram לריבוי tenants: אימות חתימה, זיהוי ה-tenant "
        "של כל אירוע, סינון echo וכפילויות, ו-audit לכל החלטת זיהוי."
    ),
    openapi_tags=_OPENAPI_TAGS,
)

# ring buffer של המשלוחים האחרונים - מופע אחד לאפליקציה
app.state.recent_webhooks = RecentWebhookBuffer(settings.RECENT_WEBHOOKS_LIMIT)

# Setup middleware (correlation ID, request logging, rate limit)
setup_middleware(app)
setup_exception_handlers(app)

app.include_router(api_router, prefix="/api")

_background_tasks: set[asyncio.Task] = set()


async def _run_startup_fixes() -> None:
    """תיקוני מזהים + sweep, ברקע ובלי לעכב את עליית השרת"""
    from inbox.domain.services.maintenance_service import run_startup_fixes

    try:
        async with get_task_session() as db:
            await run_startup_fixes(db)
    except Exception as e:
        # נרשם גם ע"י log_async_operation; השרת ממשיך לקבל webhooks
        logger.error("Startup fixes failed", extra_data={"error": str(e)})


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables on startup"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")

    task = asyncio.create_task(_run_startup_fixes())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    for task in list(_background_tasks):
        task.cancel()
    from inbox.core.redis_client import close_redis
    await close_redis()
    # סגירת חיבורי מסד הנתונים למניעת connection pool exhaustion
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="בדיקת חיוּת (Liveness Probe)",
    description="בדיקה קלה שהתהליך חי ומגיב. לא בודק תלויות חיצוניות.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="בדיקת מוכנות (Readiness Probe)",
    description=(
        "בדיקת DB ו-Redis. מחזיר status=healthy אם הכל תקין, "
        "או status=degraded (503) עם פירוט."
    ),
    responses={
        200: {
            "description": "כל התלויות תקינות",
            "content": {
                "application/json": {
                    "example": {"status": "healthy", "db": "ok", "redis": "ok"}
                }
            },
        },
        503: {
            "description": "לפחות תלות אחת לא זמינה",
            "content": {
                "application/json": {
                    "example": {
                        "status": "degraded",
                        "db": "ok",
                        "redis": "error: redis_unavailable",
                    }
                }
            },
        },
    },
    tags=["Health"],
)
async def readiness_check() -> JSONResponse:
    from inbox.domain.services.health_service import check_readiness

    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
