"""
Recent Webhooks Buffer - חלון דיבוג של המשלוחים האחרונים.

מבנה חסום (deque עם maxlen) ומוגן ב-threading.Lock. המופע נוצר פעם אחת
ב-main ונשמר ב-app.state; אין מצב גלובלי ברמת המודול. הרשומה הישנה ביותר
נזרקת כשמגיעה רשומה חדשה מעבר לקיבולת.
"""
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from inbox.core.clock import utcnow


@dataclass
class ProcessingRecord:
    kind: str
    external_id: str
    outcome: str
    tenant_id: int | None = None
    strategy: str | None = None
    direction: str | None = None
    reason: str | None = None


@dataclass
class WebhookRecord:
    webhook_id: str
    received_at: datetime
    signature_valid: bool
    object_type: str | None
    entry_count: int
    results: list[ProcessingRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "webhook_id": self.webhook_id,
            "received_at": self.received_at.isoformat(),
            "signature_valid": self.signature_valid,
            "object_type": self.object_type,
            "entry_count": self.entry_count,
            "results": [vars(r).copy() for r in self.results],
        }


@dataclass
class UnmappedRecipient:
    platform_id: str
    seen_at: datetime


class RecentWebhookBuffer:
    def __init__(self, capacity: int = 50) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._records: deque[WebhookRecord] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._last_unmapped: UnmappedRecipient | None = None

    def start(
        self,
        object_type: str | None,
        entry_count: int,
        signature_valid: bool = True,
    ) -> str:
        """פתיחת רשומה למשלוח חדש. מחזיר מזהה לצירוף תוצאות."""
        record = WebhookRecord(
            webhook_id=uuid.uuid4().hex[:12],
            received_at=utcnow(),
            signature_valid=signature_valid,
            object_type=object_type,
            entry_count=entry_count,
        )
        with self._lock:
            self._records.append(record)
        return record.webhook_id

    def add_result(self, webhook_id: str, result: ProcessingRecord) -> None:
        """צירוף תוצאה. רשומה שכבר נזרקה מה-buffer מתעלמים ממנה."""
        with self._lock:
            for record in reversed(self._records):
                if record.webhook_id == webhook_id:
                    record.results.append(result)
                    return

    def snapshot(self) -> list[dict[str, Any]]:
        """העתק של הרשומות, מהחדשה לישנה"""
        with self._lock:
            return [r.to_dict() for r in reversed(self._records)]

    def note_unmapped(self, platform_id: str) -> None:
        with self._lock:
            self._last_unmapped = UnmappedRecipient(platform_id, utcnow())

    def clear_unmapped(self) -> None:
        with self._lock:
            self._last_unmapped = None

    @property
    def last_unmapped(self) -> UnmappedRecipient | None:
        with self._lock:
            return self._last_unmapped

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
