"""
Webhook Processor - הצינור של אירוע בודד מתוך משלוח webhook.

לכל אירוע, ברצף:
    זיהוי tenant -> סיווג כיוון (echo) -> בדיקת כפילות -> העשרת פרופיל (נכנס בלבד)
    -> שמירה -> hand-off ל-reply pipeline (נכנס בלבד)

שום דבר לא נשמר לפני שה-tenant זוהה. חריגה באירוע אחד לא עוצרת את
האירועים האחרים של אותו משלוח, וה-endpoint מחזיר 200 בכל מקרה.
"""
import enum
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from inbox.core.logging import bind_tenant_id, get_logger
from inbox.db.models.resolved_event import EventStatus, ResolvedEvent
from inbox.db.models.tenant_account import TenantAccount
from inbox.domain.services import reply_dispatcher
from inbox.domain.services.dedup_guard import DeduplicationGuard
from inbox.domain.services.direction_classifier import DirectionDecision, classify_direction
from inbox.domain.services.event_dispatcher import InboundEvent, SkippedItem
from inbox.domain.services.graph_api import GraphAPIClient
from inbox.domain.services.identity_resolver import IdentityResolver, PendingMarkerAssociation
from inbox.domain.services.profile_enrichment import ProfileEnricher, SenderProfile
from inbox.domain.services.recent_webhooks import ProcessingRecord, RecentWebhookBuffer
from inbox.domain.services.tenant_service import TenantService

logger = get_logger(__name__)


class ProcessingOutcome(str, enum.Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    UNRESOLVED = "unresolved"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class EventResult:
    kind: str
    external_id: str
    outcome: ProcessingOutcome
    tenant_id: int | None = None
    strategy: str | None = None
    direction: str | None = None
    event_id: int | None = None
    reason: str | None = None

    @classmethod
    def skipped(cls, item: SkippedItem) -> "EventResult":
        return cls(
            kind=item.kind.value,
            external_id=item.external_id or "",
            outcome=ProcessingOutcome.SKIPPED,
            reason=item.reason,
        )

    def to_dict(self) -> dict[str, Any]:
        data = {
            "kind": self.kind,
            "external_id": self.external_id,
            "outcome": self.outcome.value,
        }
        for key in ("tenant_id", "strategy", "direction", "event_id", "reason"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    def to_record(self) -> ProcessingRecord:
        return ProcessingRecord(
            kind=self.kind,
            external_id=self.external_id,
            outcome=self.outcome.value,
            tenant_id=self.tenant_id,
            strategy=self.strategy,
            direction=self.direction,
            reason=self.reason,
        )


def build_event_row(
    event: InboundEvent,
    tenant_id: int,
    decision: DirectionDecision,
    profile: SenderProfile | None,
) -> ResolvedEvent:
    media = event.attachments[0] if event.attachments else None
    return ResolvedEvent(
        tenant_id=tenant_id,
        kind=event.kind,
        external_event_id=event.external_id,
        direction=decision.direction,
        # outbound נשמר להיסטוריה בלבד ולא נספר כממתין
        status=EventStatus.RECORDED if decision.is_outbound else EventStatus.PENDING,
        sender_id=event.sender_id,
        sender_username=event.sender_username or (profile.username if profile else None),
        sender_name=profile.name if profile else None,
        sender_avatar_url=profile.avatar_url if profile else None,
        recipient_id=event.recipient_id,
        content=event.text,
        media_url=media.url if media else None,
        media_type=media.media_type if media else None,
        post_id=event.post_id,
        parent_event_id=event.parent_id,
        routing_warning=decision.routing_warning[:200] if decision.routing_warning else None,
    )


class WebhookProcessor:
    def __init__(
        self,
        db: AsyncSession,
        *,
        resolver: IdentityResolver | None = None,
        enricher: ProfileEnricher | None = None,
        buffer: RecentWebhookBuffer | None = None,
        graph_client: GraphAPIClient | None = None,
        hand_off: Callable[[int], bool] | None = None,
    ) -> None:
        self.db = db
        self.tenant_service = TenantService(db)
        graph_client = graph_client or GraphAPIClient()
        self.resolver = resolver or IdentityResolver.build(db, graph_client=graph_client)
        self.enricher = enricher or ProfileEnricher(self.tenant_service, graph_client)
        self.dedup = DeduplicationGuard(db)
        self.buffer = buffer
        self._hand_off = hand_off

    async def process_events(
        self,
        events: list[InboundEvent],
        webhook_id: str | None = None,
        skipped: list[SkippedItem] | None = None,
    ) -> list[EventResult]:
        results = [EventResult.skipped(item) for item in skipped or []]
        for event in events:
            results.append(await self.process_event(event))
        if self.buffer is not None and webhook_id is not None:
            for result in results:
                self.buffer.add_result(webhook_id, result.to_record())
        return results

    async def process_event(self, event: InboundEvent) -> EventResult:
        try:
            return await self._process(event)
        except Exception as e:
            logger.error(
                "Webhook event processing failed",
                extra_data={
                    "kind": event.kind.value,
                    "external_id": event.external_id,
                    "error": str(e),
                },
                exc_info=True,
            )
            # אחרי rollback אובייקטי ORM פגים; האירוע הבא טוען tenants מחדש
            await self.db.rollback()
            return EventResult(
                kind=event.kind.value,
                external_id=event.external_id,
                outcome=ProcessingOutcome.ERROR,
                reason=type(e).__name__,
            )

    async def _process(self, event: InboundEvent) -> EventResult:
        tenants = await self.tenant_service.list_active()
        resolution = await self.resolver.resolve(event, tenants)

        if not resolution.resolved:
            if self.buffer is not None and event.lookup_id:
                self.buffer.note_unmapped(event.lookup_id)
            return EventResult(
                kind=event.kind.value,
                external_id=event.external_id,
                outcome=ProcessingOutcome.UNRESOLVED,
            )

        if self.buffer is not None and resolution.strategy == PendingMarkerAssociation.name:
            self.buffer.clear_unmapped()

        tenant = resolution.tenant
        # ערך Python רגיל - לא תלוי במצב אובייקט ה-ORM
        tenant_id = tenant.id
        with bind_tenant_id(tenant_id):
            return await self._record_for_tenant(event, tenant, tenant_id, tenants, resolution.strategy)

    async def _record_for_tenant(
        self,
        event: InboundEvent,
        tenant: TenantAccount,
        tenant_id: int,
        tenants: list[TenantAccount],
        strategy: str | None,
    ) -> EventResult:
        decision = classify_direction(tenant, event)
        result = EventResult(
            kind=event.kind.value,
            external_id=event.external_id,
            outcome=ProcessingOutcome.DUPLICATE,
            tenant_id=tenant_id,
            strategy=strategy,
            direction=decision.direction.value,
        )

        if await self.dedup.is_duplicate(tenant_id, event.external_id):
            return result

        profile = None
        if not decision.is_outbound:
            profile = await self.enricher.enrich(event, tenant, tenants)

        row = build_event_row(event, tenant_id, decision, profile)
        if not await self.dedup.record(row):
            return result

        result.outcome = ProcessingOutcome.PROCESSED
        result.event_id = row.id
        if decision.is_outbound:
            logger.info(
                "Outbound event recorded",
                extra_data={"event_id": row.id, "reasons": list(decision.reasons)},
            )
        else:
            hand_off = self._hand_off or reply_dispatcher.enqueue_hand_off
            hand_off(row.id)
        return result
