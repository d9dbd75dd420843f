"""
Resolution Audit Logger

כל ניסיון זיהוי tenant (הצלחה או חסימה) נרשם פעם אחת בדיוק:
- שורה בטבלת resolution_audit_log (append-only)
- שורה בקובץ AUDIT_LOG_PATH בפורמט שנוח ל-grep:

    [2026-01-05T10:00:00+00:00] TYPE:COMMENT PAGE_ID:178414 SENDER:9912 RECIPIENT:- EVENT_ID:C123 -> MATCH:7 STRATEGY:direct_primary
    [2026-01-05T10:00:01+00:00] TYPE:DIRECT_MESSAGE PAGE_ID:178414 SENDER:9912 RECIPIENT:R9 EVENT_ID:m_1 -> MATCH:NONE (BLOCKED) STRATEGY:-
"""
import asyncio
import threading
from datetime import datetime
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession

from inbox.core.clock import utcnow
from inbox.core.config import settings
from inbox.core.logging import get_logger
from inbox.db.models.resolution_audit import ResolutionAuditEntry, ResolutionOutcome
from inbox.db.models.tenant_account import TenantAccount
from inbox.domain.services.event_dispatcher import InboundEvent

logger = get_logger(__name__)

# כתיבות מקבילות (threads של to_thread) לא משתלבות באמצע שורה
_file_lock = threading.Lock()


def format_audit_line(
    event: InboundEvent,
    tenant_id: int | None,
    strategy: str | None,
    at: datetime,
) -> str:
    match = str(tenant_id) if tenant_id is not None else "NONE (BLOCKED)"
    return (
        f"[{at.isoformat()}] TYPE:{event.kind.value.upper()} "
        f"PAGE_ID:{event.page_id} SENDER:{event.sender_id or '-'} "
        f"RECIPIENT:{event.recipient_id or '-'} EVENT_ID:{event.external_id} "
        f"-> MATCH:{match} STRATEGY:{strategy or '-'}"
    )


def _append_line(path: Path, line: str) -> None:
    with _file_lock:
        with path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")


class ResolutionAuditLogger:
    """כותב רשומת audit אחת לכל החלטת זיהוי"""

    def __init__(self, db: AsyncSession, file_path: str | None = None) -> None:
        self.db = db
        path = settings.AUDIT_LOG_PATH if file_path is None else file_path
        self.file_path = Path(path) if path else None

    async def record(
        self,
        event: InboundEvent,
        tenant: TenantAccount | None,
        strategy: str | None = None,
        at: datetime | None = None,
    ) -> ResolutionAuditEntry:
        at = at or utcnow()
        tenant_id = tenant.id if tenant is not None else None

        entry = ResolutionAuditEntry(
            created_at=at,
            event_kind=event.kind.value,
            external_event_id=event.external_id,
            page_id=event.page_id,
            sender_id=event.sender_id,
            recipient_id=event.recipient_id,
            tenant_id=tenant_id,
            strategy=strategy,
            outcome=ResolutionOutcome.MATCHED if tenant is not None else ResolutionOutcome.BLOCKED,
        )
        self.db.add(entry)
        await self.db.commit()

        if self.file_path is not None:
            line = format_audit_line(event, tenant_id, strategy, at)
            try:
                await asyncio.to_thread(_append_line, self.file_path, line)
            except OSError as e:
                # הטבלה כבר מכילה את הרשומה; קובץ לא זמין לא עוצר עיבוד
                logger.error(
                    "Failed writing audit line to file",
                    extra_data={"path": str(self.file_path), "error": str(e)},
                )

        return entry
