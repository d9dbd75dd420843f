"""
Resolved Event Model - תגובה / אזכור / הודעה ישירה שעברו זיהוי tenant.

המפתח למניעת כפילויות הוא (tenant_id, external_event_id) ולא המזהה החיצוני
לבדו: הבדיקה מתבצעת רק אחרי שה-tenant ידוע.
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from inbox.db.database import Base


class EventKind(str, enum.Enum):
    COMMENT = "comment"
    MENTION = "mention"
    DIRECT_MESSAGE = "direct_message"


class EventDirection(str, enum.Enum):
    """inbound = ממשתמש חיצוני, outbound = תשובה של ה-tenant עצמו (echo)"""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class EventStatus(str, enum.Enum):
    # ממתין לטיפול (נספר בתור הנכנס ומועבר ל-reply pipeline)
    PENDING = "pending"
    # נשמר להיסטוריית שיחה בלבד
    RECORDED = "recorded"


def _values(enum_cls):
    return [e.value for e in enum_cls]


class ResolvedEvent(Base):
    """אירוע webhook שנשמר ל-tenant אחד בדיוק"""

    __tablename__ = "resolved_events"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenant_accounts.id"), nullable=False, index=True)
    kind = Column(SQLEnum(EventKind, values_callable=_values), nullable=False)
    external_event_id = Column(String(200), nullable=False)
    direction = Column(SQLEnum(EventDirection, values_callable=_values), nullable=False)
    status = Column(
        SQLEnum(EventStatus, values_callable=_values),
        nullable=False,
        default=EventStatus.PENDING,
    )

    sender_id = Column(String(64), nullable=True)
    sender_username = Column(String(100), nullable=True)
    sender_name = Column(String(150), nullable=True)
    sender_avatar_url = Column(Text, nullable=True)
    recipient_id = Column(String(64), nullable=True)

    content = Column(Text, nullable=True)
    media_url = Column(Text, nullable=True)
    media_type = Column(String(30), nullable=True)
    post_id = Column(String(64), nullable=True)
    parent_event_id = Column(String(200), nullable=True)
    # recipient שלא תאם לאף מזהה של ה-tenant (ניתוב חשוד, לא חוסם)
    routing_warning = Column(String(200), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_event_id", name="uq_resolved_events_tenant_external"),
        Index("ix_resolved_events_tenant_status", "tenant_id", "direction", "status"),
    )
