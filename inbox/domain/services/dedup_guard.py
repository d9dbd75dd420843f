"""
Deduplication Guard - idempotency אחרי זיהוי tenant.

המפתח הוא (tenant_id, external_event_id). הבדיקה רצה רק אחרי שה-tenant
ידוע: בדיקה גלובלית לפי המזהה החיצוני בלבד עלולה לחסום אירוע של tenant
אחד בגלל אירוע של tenant אחר.

Meta מבצע retry על משלוחים, ולכן אותו אירוע מגיע לעיתים פעמיים במקביל.
ההכנסה מתבצעת ב-savepoint, ו-IntegrityError על ה-unique constraint
נחשב כפילות ולא שגיאה.
"""
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.core.logging import get_logger
from inbox.db.models.resolved_event import ResolvedEvent

logger = get_logger(__name__)


class DeduplicationGuard:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def is_duplicate(self, tenant_id: int, external_event_id: str) -> bool:
        result = await self.db.execute(
            select(ResolvedEvent.id).where(
                ResolvedEvent.tenant_id == tenant_id,
                ResolvedEvent.external_event_id == external_event_id,
            )
        )
        if result.first() is None:
            return False
        logger.info(
            "Duplicate event skipped",
            extra_data={"tenant_id": tenant_id, "external_event_id": external_event_id},
        )
        return True

    async def record(self, event_row: ResolvedEvent) -> bool:
        """
        שמירת האירוע. מחזיר False אם אירוע זהה נשמר בינתיים (retry מקבילי).
        """
        try:
            async with self.db.begin_nested():
                self.db.add(event_row)
            await self.db.commit()
            return True
        except IntegrityError:
            # ה-savepoint כבר בוטל; ה-session נשאר שמיש
            logger.info(
                "Concurrent duplicate event skipped",
                extra_data={
                    "tenant_id": event_row.tenant_id,
                    "external_event_id": event_row.external_event_id,
                },
            )
            return False
