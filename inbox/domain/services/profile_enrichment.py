"""
Sender Profile Enrichment - שם ותמונת פרופיל לשולח של אירוע נכנס.

סדר המקורות (הראשון שמחזיר תוצאה מנצח):
1. cache ב-Redis (profile:<tenant>:<sender>)
2. username מה-payload (תגובות ואזכורים)
3. tenant אחר שהשולח הוא החשבון שלו (הודעה בין שני חשבונות מחוברים)
4. Graph API - פרופיל Instagram ואז פרופיל Facebook, עם הטוקן של ה-tenant
5. placeholder שנוצר מקומית (לא נכשל לעולם)

כשל בשלב כלשהו (Redis, Graph API, טוקן פגום) ממשיך לשלב הבא.
"""
from dataclasses import asdict, dataclass
from urllib.parse import quote

from redis.exceptions import RedisError

from inbox.core.config import settings
from inbox.core.exceptions import ExternalServiceException
from inbox.core.logging import get_logger
from inbox.core.redis_client import get_cached_json, set_cached_json
from inbox.db.models.tenant_account import TenantAccount
from inbox.domain.services.event_dispatcher import InboundEvent
from inbox.domain.services.graph_api import GraphAPIClient
from inbox.domain.services.tenant_service import TenantService

logger = get_logger(__name__)

PLACEHOLDER_COLOURS = (
    "9b59b6", "3498db", "1abc9c", "e74c3c",
    "f39c12", "2ecc71", "e91e63", "00bcd4",
)
_PLACEHOLDER_NAME_MAX = 20
_FALLBACK_NAME = "User"


@dataclass
class SenderProfile:
    name: str
    username: str | None = None
    avatar_url: str | None = None
    source: str = "placeholder"


def placeholder_avatar_url(name: str) -> str:
    """URL של אווטאר עם ראשי תיבות. הצבע נקבע לפי סכום ה-code points של השם."""
    colour = PLACEHOLDER_COLOURS[sum(ord(ch) for ch in name) % len(PLACEHOLDER_COLOURS)]
    return (
        f"https://ui-avatars.com/api/?name={quote(name)}"
        f"&background={colour}&color=fff&size=128"
    )


def placeholder_profile(display_hint: str | None) -> SenderProfile:
    name = (display_hint or "").strip()
    # מזהה מספרי או שם ארוך לא נראים טוב כראשי תיבות
    if not name or name.isdigit() or len(name) > _PLACEHOLDER_NAME_MAX:
        name = _FALLBACK_NAME
    return SenderProfile(name=name, avatar_url=placeholder_avatar_url(name))


def _cache_key(tenant_id: int, sender_id: str) -> str:
    return f"profile:{tenant_id}:{sender_id}"


class ProfileEnricher:
    def __init__(
        self,
        tenant_service: TenantService,
        graph_client: GraphAPIClient | None = None,
        cache_ttl_seconds: int | None = None,
    ) -> None:
        self.tenant_service = tenant_service
        self.graph_client = graph_client or GraphAPIClient()
        self.cache_ttl_seconds = cache_ttl_seconds or settings.PROFILE_CACHE_TTL_SECONDS

    async def enrich(
        self,
        event: InboundEvent,
        tenant: TenantAccount,
        tenants: list[TenantAccount],
    ) -> SenderProfile:
        sender_id = event.sender_id
        if not sender_id:
            return placeholder_profile(event.sender_username)

        cached = await self._read_cache(tenant.id, sender_id)
        if cached is not None:
            return cached

        profile = (
            self._from_payload(event)
            or self._from_connected_tenant(sender_id, tenant, tenants)
            or await self._from_graph_api(sender_id, tenant)
        )
        if profile is None:
            return placeholder_profile(event.sender_username or sender_id)

        await self._write_cache(tenant.id, sender_id, profile)
        return profile

    async def _read_cache(self, tenant_id: int, sender_id: str) -> SenderProfile | None:
        try:
            data = await get_cached_json(_cache_key(tenant_id, sender_id))
        except RedisError as e:
            logger.warning("קריאת cache פרופיל נכשלה", extra_data={"error": str(e)})
            return None
        if not isinstance(data, dict) or not data.get("name"):
            return None
        return SenderProfile(
            name=data["name"],
            username=data.get("username"),
            avatar_url=data.get("avatar_url"),
            source="cache",
        )

    async def _write_cache(self, tenant_id: int, sender_id: str, profile: SenderProfile) -> None:
        try:
            await set_cached_json(
                _cache_key(tenant_id, sender_id), asdict(profile), self.cache_ttl_seconds
            )
        except RedisError as e:
            logger.warning("כתיבת cache פרופיל נכשלה", extra_data={"error": str(e)})

    @staticmethod
    def _from_payload(event: InboundEvent) -> SenderProfile | None:
        if not event.sender_username:
            return None
        return SenderProfile(
            name=event.sender_username,
            username=event.sender_username,
            avatar_url=placeholder_avatar_url(event.sender_username),
            source="payload",
        )

    @staticmethod
    def _from_connected_tenant(
        sender_id: str, tenant: TenantAccount, tenants: list[TenantAccount]
    ) -> SenderProfile | None:
        for other in tenants:
            if other.id == tenant.id or sender_id not in other.platform_ids:
                continue
            name = other.platform_username or other.name
            return SenderProfile(
                name=name,
                username=other.platform_username,
                avatar_url=placeholder_avatar_url(name),
                source="connected_tenant",
            )
        return None

    async def _from_graph_api(self, sender_id: str, tenant: TenantAccount) -> SenderProfile | None:
        token = self.tenant_service.try_reveal_credential(tenant)
        if not token:
            return None

        for source, fetch in (
            ("instagram", self.graph_client.fetch_instagram_profile),
            ("facebook", self.graph_client.fetch_facebook_profile),
        ):
            try:
                data = await fetch(token, sender_id)
            except ExternalServiceException as e:
                logger.info(
                    "Profile lookup failed, trying next source",
                    extra_data={"source": source, "sender_id": sender_id, "error": e.message},
                )
                continue
            name = data.get("name") or data.get("username")
            if not name:
                continue
            return SenderProfile(
                name=name,
                username=data.get("username"),
                avatar_url=data.get("profile_pic") or placeholder_avatar_url(name),
                source=source,
            )
        return None
