"""
Domain Services
"""
from inbox.domain.services.dedup_guard import DeduplicationGuard
from inbox.domain.services.identity_resolver import IdentityResolver
from inbox.domain.services.marker_store import PendingMarkerStore
from inbox.domain.services.tenant_service import TenantService
from inbox.domain.services.webhook_processor import WebhookProcessor

__all__ = [
    "DeduplicationGuard",
    "IdentityResolver",
    "PendingMarkerStore",
    "TenantService",
    "WebhookProcessor",
]
