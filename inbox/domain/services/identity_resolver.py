"""
Identity Resolver - מיפוי מזהה חשבון Instagram של אירוע ל-tenant אחד בדיוק.

הזיהוי הוא שרשרת אסטרטגיות מסודרת; הראשונה שמחזירה tenant מנצחת:

1. direct_primary      - tenant.primary_platform_id == lookup id
2. direct_secondary    - tenant.secondary_platform_id == lookup id (+ self-heal של primary)
3. pending_marker      - שיוך אוטומטי ל-tenant שסיים הרשאה לאחרונה (marker טרי)
4. credential_probe    - בדיקת בעלות דרך Graph API עם טוקן המועמד (כבוי כברירת מחדל)

אם אף אסטרטגיה לא הצליחה, האירוע לא משויך ולא נשמר. בכל מקרה נכתבת
רשומת audit אחת בדיוק.

אין נעילה per-tenant סביב self-heal ושיוך אוטומטי: שני אירועים כמעט-מקבילים
עם אותו מזהה לא מוכר יכולים שניהם לבצע את אסטרטגיה 3 (ראו DESIGN.md).
"""
import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from inbox.core.clock import Clock, utcnow
from inbox.core.config import settings
from inbox.core.exceptions import ExternalServiceException
from inbox.core.logging import get_logger
from inbox.db.models.tenant_account import TenantAccount
from inbox.domain.services.audit_logger import ResolutionAuditLogger
from inbox.domain.services.event_dispatcher import InboundEvent
from inbox.domain.services.graph_api import GraphAPIClient
from inbox.domain.services.marker_store import PendingMarkerStore
from inbox.domain.services.tenant_service import TenantService

logger = get_logger(__name__)


class AmbiguityPolicy(str, enum.Enum):
    """
    טיפול בכמה מועמדים לשיוך אוטומטי.

    STRICT: שיוך רק כשיש מועמד יחיד, ורק אם יש לו marker טרי.
    PERMISSIVE: מבין המועמדים עם marker טרי, ה-marker החדש ביותר מנצח.
        תיקו על חותמת הזמן החדשה ביותר נחסם.
    """
    STRICT = "strict"
    PERMISSIVE = "permissive"


class AmbiguousTenantMatch(Exception):
    """יותר מ-tenant אחד מחזיק את אותו מזהה. עוצר את השרשרת וחוסם את האירוע."""

    def __init__(self, platform_id: str, tenant_ids: list[int]):
        super().__init__(f"platform id {platform_id} is held by tenants {tenant_ids}")
        self.platform_id = platform_id
        self.tenant_ids = tenant_ids


@dataclass(frozen=True)
class ResolutionResult:
    tenant: TenantAccount | None
    strategy: str | None = None

    @property
    def resolved(self) -> bool:
        return self.tenant is not None


class ResolutionStrategy(ABC):
    """חוזה משותף לכל אסטרטגיות הזיהוי"""

    name: str = ""

    @abstractmethod
    async def try_resolve(
        self,
        event: InboundEvent,
        tenants: list[TenantAccount],
        clock: Clock,
    ) -> TenantAccount | None:
        """מחזיר tenant אם האסטרטגיה זיהתה אותו, אחרת None"""


def _single_holder(
    tenants: list[TenantAccount], platform_id: str, attribute: str
) -> TenantAccount | None:
    holders = [t for t in tenants if getattr(t, attribute) == platform_id]
    if len(holders) > 1:
        raise AmbiguousTenantMatch(platform_id, [t.id for t in holders])
    return holders[0] if holders else None


def _association_candidates(tenants: list[TenantAccount], lookup_id: str) -> list[TenantAccount]:
    """tenants עם טוקן שמור שה-primary שלהם שונה מהמזהה הנכנס"""
    return [t for t in tenants if t.has_credential and t.primary_platform_id != lookup_id]


# ──────────────────────────────────────────────
#  אסטרטגיות
# ──────────────────────────────────────────────


class DirectPrimaryMatch(ResolutionStrategy):
    name = "direct_primary"

    def __init__(self, tenant_service: TenantService) -> None:
        self.tenant_service = tenant_service

    async def try_resolve(self, event, tenants, clock):
        tenant = _single_holder(tenants, event.lookup_id, "primary_platform_id")
        if tenant is None:
            return None
        # ב-DMs ה-recipient הוא המזהה המשני; נשמר אם עוד לא ידוע
        if event.is_direct_message and not tenant.secondary_platform_id:
            await self.tenant_service.update_platform_ids(
                tenant, secondary=event.lookup_id, reason="fill_missing_secondary"
            )
        return tenant


class DirectSecondaryMatch(ResolutionStrategy):
    name = "direct_secondary"

    def __init__(self, tenant_service: TenantService) -> None:
        self.tenant_service = tenant_service

    async def try_resolve(self, event, tenants, clock):
        tenant = _single_holder(tenants, event.lookup_id, "secondary_platform_id")
        if tenant is None:
            return None
        # self-heal: בפעם הבאה direct_primary יתפוס את האירוע
        await self.tenant_service.update_platform_ids(
            tenant, primary=event.lookup_id, reason="secondary_match_self_heal"
        )
        return tenant


class PendingMarkerAssociation(ResolutionStrategy):
    name = "pending_marker"

    def __init__(
        self,
        tenant_service: TenantService,
        marker_store: PendingMarkerStore,
        policy: AmbiguityPolicy = AmbiguityPolicy.STRICT,
    ) -> None:
        self.tenant_service = tenant_service
        self.marker_store = marker_store
        self.policy = policy

    def select(self, candidates: list[TenantAccount], now) -> TenantAccount | None:
        """בחירת המועמד לפי המדיניות, או None כשהשיוך נחסם"""
        if self.policy == AmbiguityPolicy.STRICT:
            if len(candidates) == 1 and self.marker_store.is_fresh(candidates[0], now):
                return candidates[0]
            return None

        fresh = [c for c in candidates if self.marker_store.is_fresh(c, now)]
        if not fresh:
            return None
        youngest_age = min(self.marker_store.age(c, now) for c in fresh)
        newest = [c for c in fresh if self.marker_store.age(c, now) == youngest_age]
        return newest[0] if len(newest) == 1 else None

    async def try_resolve(self, event, tenants, clock):
        now = clock()
        candidates = _association_candidates(tenants, event.lookup_id)
        chosen = self.select(candidates, now)
        if chosen is None:
            logger.warning(
                "Auto-association blocked",
                extra_data={
                    "lookup_id": event.lookup_id,
                    "policy": self.policy.value,
                    "candidates": [
                        {
                            "tenant_id": c.id,
                            "marker_fresh": self.marker_store.is_fresh(c, now),
                        }
                        for c in candidates
                    ],
                },
            )
            return None

        marker_age = self.marker_store.age(chosen, now)
        self.marker_store.consume(chosen)
        await self.tenant_service.update_platform_ids(
            chosen,
            primary=event.lookup_id,
            secondary=event.lookup_id,
            reason="pending_marker_association",
        )
        logger.info(
            "Auto-associated platform id to tenant",
            extra_data={
                "tenant_id": chosen.id,
                "lookup_id": event.lookup_id,
                "marker_age_seconds": marker_age.total_seconds() if marker_age else None,
            },
        )
        return chosen


class CredentialProbe(ResolutionStrategy):
    """
    בדיקת בעלות דרך Graph API עם הטוקן של כל מועמד.

    משתמש בטוקן של tenant אחד כדי לשאול על מזהה שייתכן ששייך ל-tenant אחר,
    ולכן פעיל רק כש-CREDENTIAL_PROBE_ENABLED=True ורק לתגובות ואזכורים.
    """

    name = "credential_probe"

    def __init__(
        self,
        tenant_service: TenantService,
        graph_client: GraphAPIClient,
        enabled: bool = False,
    ) -> None:
        self.tenant_service = tenant_service
        self.graph_client = graph_client
        self.enabled = enabled

    async def try_resolve(self, event, tenants, clock):
        if not self.enabled or event.is_direct_message:
            return None

        username_match = None
        first_success = None
        for candidate in _association_candidates(tenants, event.lookup_id):
            token = self.tenant_service.try_reveal_credential(candidate)
            if not token:
                continue
            try:
                data = await self.graph_client.lookup_account(token, event.lookup_id)
            except ExternalServiceException as e:
                logger.info(
                    "Credential probe miss",
                    extra_data={"tenant_id": candidate.id, "error": e.message},
                )
                continue

            found_username = (data.get("username") or "").lower()
            if found_username and found_username == (candidate.platform_username or "").lower():
                username_match = candidate
                break
            if first_success is None:
                first_success = candidate

        chosen = username_match or first_success
        if chosen is None:
            return None

        await self.tenant_service.update_platform_ids(
            chosen,
            primary=event.lookup_id,
            secondary=event.lookup_id,
            reason="credential_probe",
        )
        logger.warning(
            "Tenant associated via credential probe",
            extra_data={
                "tenant_id": chosen.id,
                "lookup_id": event.lookup_id,
                "username_confirmed": chosen is username_match,
            },
        )
        return chosen


# ──────────────────────────────────────────────
#  Resolver
# ──────────────────────────────────────────────


class IdentityResolver:
    """מריץ את שרשרת האסטרטגיות וכותב רשומת audit אחת לכל ניסיון"""

    def __init__(
        self,
        strategies: list[ResolutionStrategy],
        audit_logger: ResolutionAuditLogger,
        clock: Clock = utcnow,
    ) -> None:
        self.strategies = strategies
        self.audit_logger = audit_logger
        self.clock = clock

    @classmethod
    def build(
        cls,
        db: AsyncSession,
        *,
        graph_client: GraphAPIClient | None = None,
        policy: AmbiguityPolicy | None = None,
        probe_enabled: bool | None = None,
        clock: Clock = utcnow,
    ) -> "IdentityResolver":
        """השרשרת הקנונית, עם ברירות מחדל מההגדרות"""
        tenant_service = TenantService(db)
        strategies: list[ResolutionStrategy] = [
            DirectPrimaryMatch(tenant_service),
            DirectSecondaryMatch(tenant_service),
            PendingMarkerAssociation(
                tenant_service,
                PendingMarkerStore(db),
                policy or AmbiguityPolicy(settings.AMBIGUITY_POLICY),
            ),
            CredentialProbe(
                tenant_service,
                graph_client or GraphAPIClient(),
                enabled=settings.CREDENTIAL_PROBE_ENABLED if probe_enabled is None else probe_enabled,
            ),
        ]
        return cls(strategies, ResolutionAuditLogger(db), clock=clock)

    async def resolve(self, event: InboundEvent, tenants: list[TenantAccount]) -> ResolutionResult:
        result = ResolutionResult(tenant=None)

        if not event.lookup_id:
            logger.warning(
                "Event has no platform id to resolve",
                extra_data={"kind": event.kind.value, "external_id": event.external_id},
            )
        else:
            try:
                result = await self._run_chain(event, tenants)
            except Exception:
                # ניסיון שנקטע (למשל commit שנכשל ב-self-heal) עדיין מתועד כחסום
                await self.audit_logger.db.rollback()
                await self.audit_logger.record(event, None, None, at=self.clock())
                raise

        await self.audit_logger.record(event, result.tenant, result.strategy, at=self.clock())

        if result.resolved:
            logger.info(
                "Tenant resolved",
                extra_data={
                    "tenant_id": result.tenant.id,
                    "strategy": result.strategy,
                    "lookup_id": event.lookup_id,
                    "external_id": event.external_id,
                },
            )
        else:
            logger.warning(
                "Tenant unresolved, event dropped",
                extra_data={
                    "kind": event.kind.value,
                    "lookup_id": event.lookup_id,
                    "external_id": event.external_id,
                },
            )
        return result

    async def _run_chain(self, event: InboundEvent, tenants: list[TenantAccount]) -> ResolutionResult:
        for strategy in self.strategies:
            try:
                tenant = await strategy.try_resolve(event, tenants, self.clock)
            except AmbiguousTenantMatch as e:
                logger.error(
                    "Platform id held by more than one tenant, blocking event",
                    extra_data={"platform_id": e.platform_id, "tenant_ids": e.tenant_ids},
                )
                return ResolutionResult(tenant=None)
            except ExternalServiceException as e:
                logger.warning(
                    "Resolution strategy failed, trying next",
                    extra_data={"strategy": strategy.name, "error": e.message},
                )
                continue
            if tenant is not None:
                return ResolutionResult(tenant=tenant, strategy=strategy.name)
        return ResolutionResult(tenant=None)
