"""
Direction & Echo Classifier

האם אירוע הגיע ממשתמש חיצוני (inbound) או שהוא תשובה של ה-tenant עצמו
(outbound / echo). כל כלל נבדק בנפרד; מספיק כלל אחד כדי לסווג outbound.
אירועי outbound נשמרים (היסטוריית שיחה) אבל לא נספרים כממתינים ולא
מועברים ל-reply pipeline.
"""
from dataclasses import dataclass, field

from inbox.core.logging import get_logger
from inbox.db.models.resolved_event import EventDirection, EventKind
from inbox.db.models.tenant_account import TenantAccount
from inbox.domain.services.event_dispatcher import InboundEvent

logger = get_logger(__name__)


@dataclass(frozen=True)
class DirectionDecision:
    direction: EventDirection
    reasons: tuple[str, ...] = field(default_factory=tuple)
    routing_warning: str | None = None

    @property
    def is_outbound(self) -> bool:
        return self.direction == EventDirection.OUTBOUND


def classify_direction(tenant: TenantAccount, event: InboundEvent) -> DirectionDecision:
    sender = event.sender_id
    reasons = []

    if event.is_echo:
        reasons.append("echo_flag")
    if sender and event.recipient_id and sender == event.recipient_id:
        reasons.append("self_message")
    if sender and sender == event.page_id:
        reasons.append("sender_is_page")
    if sender and sender in tenant.platform_ids:
        reasons.append("sender_is_tenant")
    # תשובה ידנית מהאפליקציה של Instagram מגיעה עם username של החשבון
    if (
        event.kind != EventKind.DIRECT_MESSAGE
        and event.sender_username
        and tenant.platform_username
        and event.sender_username.lower() == tenant.platform_username.lower()
    ):
        reasons.append("sender_username_is_tenant")

    routing_warning = None
    if event.recipient_id and event.recipient_id not in tenant.platform_ids:
        # ייתכן אחרי החלפת חשבון; לא חוסם
        routing_warning = f"recipient {event.recipient_id} matches neither tenant id"
        logger.warning(
            "Webhook routing looks inconsistent",
            extra_data={
                "tenant_id": tenant.id,
                "recipient_id": event.recipient_id,
                "tenant_ids": sorted(tenant.platform_ids),
            },
        )

    direction = EventDirection.OUTBOUND if reasons else EventDirection.INBOUND
    return DirectionDecision(direction, tuple(reasons), routing_warning)
