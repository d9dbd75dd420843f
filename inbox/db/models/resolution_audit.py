"""
Resolution Audit Model - לוג ביקורת של החלטות זיהוי tenant.

רשומה אחת לכל ניסיון זיהוי, הצלחה או חסימה. הטבלה append-only:
אין בקוד נתיב שמעדכן או מוחק רשומות.
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum as SQLEnum, Integer, String

from inbox.db.database import Base


class ResolutionOutcome(str, enum.Enum):
    MATCHED = "matched"
    BLOCKED = "blocked"


class ResolutionAuditEntry(Base):
    """רשומת audit בלתי-הפיכה של החלטת ניתוב"""

    __tablename__ = "resolution_audit_log"

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )
    event_kind = Column(String(30), nullable=False)
    external_event_id = Column(String(200), nullable=True, index=True)
    page_id = Column(String(64), nullable=True, index=True)
    sender_id = Column(String(64), nullable=True)
    recipient_id = Column(String(64), nullable=True)
    # NULL = לא שויך (NONE / BLOCKED)
    tenant_id = Column(Integer, nullable=True, index=True)
    strategy = Column(String(50), nullable=True)
    outcome = Column(
        SQLEnum(ResolutionOutcome, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
