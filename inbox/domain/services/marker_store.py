"""
Pending-Association Marker Store

marker הוא חותמת זמן על TenantAccount שנוצרת כשזרימת ההרשאה מסתיימת.
כל עוד הוא טרי (גיל < PENDING_MARKER_TTL_HOURS) הוא מתיר שיוך אוטומטי אחד
של מזהה Instagram לא מוכר ל-tenant. marker נמחק בשיוך מוצלח, או ע"י
ה-sweep השעתי אחרי שפג.
"""
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.core.clock import as_utc, utcnow
from inbox.core.config import settings
from inbox.core.exceptions import TenantNotFoundError
from inbox.core.logging import get_logger
from inbox.db.models.tenant_account import TenantAccount

logger = get_logger(__name__)


class PendingMarkerStore:
    """קריאה, הנפקה, צריכה וניקוי של markers"""

    def __init__(self, db: AsyncSession, ttl_hours: int | None = None) -> None:
        self.db = db
        self.ttl = timedelta(hours=ttl_hours or settings.PENDING_MARKER_TTL_HOURS)

    async def issue(self, tenant_id: int, now: datetime | None = None) -> TenantAccount:
        """
        הנפקת marker עבור tenant שסיים הרשאה (נקרא ע"י זרימת ההרשאה).

        marker קיים נדרס, כך שלכל tenant יש לכל היותר marker אחד.
        """
        result = await self.db.execute(
            select(TenantAccount).where(TenantAccount.id == tenant_id)
        )
        tenant = result.scalar_one_or_none()
        if tenant is None:
            raise TenantNotFoundError(tenant_id)

        tenant.pending_marker_at = now or utcnow()
        await self.db.commit()
        logger.info(
            "Pending association marker issued",
            extra_data={"tenant_id": tenant_id, "issued_at": tenant.pending_marker_at},
        )
        return tenant

    def age(self, tenant: TenantAccount, now: datetime) -> timedelta | None:
        issued_at = as_utc(tenant.pending_marker_at)
        if issued_at is None:
            return None
        return as_utc(now) - issued_at

    def is_fresh(self, tenant: TenantAccount, now: datetime) -> bool:
        age = self.age(tenant, now)
        return age is not None and age < self.ttl

    def consume(self, tenant: TenantAccount) -> None:
        """מחיקת ה-marker אחרי שיוך מוצלח. ה-commit באחריות הקורא."""
        tenant.pending_marker_at = None

    async def sweep_expired(self, now: datetime | None = None) -> int:
        """מחיקת markers שגילם >= TTL. מחזיר את מספר ה-tenants שנוקו."""
        cutoff = as_utc(now or utcnow()) - self.ttl
        result = await self.db.execute(
            update(TenantAccount)
            .where(
                TenantAccount.pending_marker_at.is_not(None),
                TenantAccount.pending_marker_at <= cutoff,
            )
            .values(pending_marker_at=None)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.commit()
        return result.rowcount or 0
