"""
OAuth State Model - nonce חד-פעמי של זרימת ההרשאה.

נכתב ע"י זרימת ההרשאה (חיצונית) ונמחק ע"י ה-sweep השעתי אחרי שפג.
"""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from inbox.db.database import Base


class OAuthState(Base):
    __tablename__ = "oauth_states"

    state = Column(String(128), primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenant_accounts.id"), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
