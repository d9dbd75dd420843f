"""
Tenant Account Model - יחידת הבידוד בין לקוחות.

כל אירוע webhook שנשמר שייך ל-tenant אחד בדיוק. המזהים primary/secondary
מתעדכנים רק ע"י ה-identity resolver (self-heal ושיוך אוטומטי), ע"י תיקון
ה-startup, וע"י זרימת ההרשאה החיצונית.
"""
import enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, Integer, String, Text

from inbox.core.clock import utcnow
from inbox.db.database import Base


class OperationMode(str, enum.Enum):
    """אופן הטיפול בתשובות (נצרך ע"י ה-reply pipeline בלבד)"""
    MANUAL = "manual"
    SEMI_AUTO = "semi_auto"
    AUTO = "auto"


class TenantAccount(Base):
    """חשבון Instagram מקושר של tenant"""

    __tablename__ = "tenant_accounts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=True)
    # מזהה החשבון כפי שמגיע ב-entry.id של webhooks
    primary_platform_id = Column(String(64), nullable=True, index=True)
    # מזהה ה-recipient ב-DMs. לעיתים שונה מ-primary (IGSID מול IG user id)
    secondary_platform_id = Column(String(64), nullable=True, index=True)
    platform_username = Column(String(100), nullable=True)
    encrypted_credential = Column(Text, nullable=True)
    # PendingAssociationMarker: מתי הסתיימה ההרשאה. NULL = אין marker
    pending_marker_at = Column(DateTime(timezone=True), nullable=True)
    operation_mode = Column(
        SQLEnum(OperationMode, values_callable=lambda x: [e.value for e in x]),
        default=OperationMode.MANUAL,
        nullable=False,
    )
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def has_credential(self) -> bool:
        return bool(self.encrypted_credential)

    @property
    def platform_ids(self) -> set[str]:
        """המזהים הידועים של החשבון (ללא ערכים ריקים)"""
        return {i for i in (self.primary_platform_id, self.secondary_platform_id) if i}

    def __repr__(self) -> str:
        return (
            f"<TenantAccount id={self.id} primary={self.primary_platform_id} "
            f"secondary={self.secondary_platform_id}>"
        )
