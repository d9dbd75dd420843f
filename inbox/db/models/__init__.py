"""
Database Models
"""
from inbox.db.models.tenant_account import TenantAccount, OperationMode
from inbox.db.models.resolved_event import (
    ResolvedEvent,
    EventKind,
    EventDirection,
    EventStatus,
)
from inbox.db.models.resolution_audit import ResolutionAuditEntry, ResolutionOutcome
from inbox.db.models.oauth_state import OAuthState

__all__ = [
    "TenantAccount",
    "OperationMode",
    "ResolvedEvent",
    "EventKind",
    "EventDirection",
    "EventStatus",
    "ResolutionAuditEntry",
    "ResolutionOutcome",
    "OAuthState",
]
