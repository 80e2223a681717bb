from auditguard.models.taxonomy import (
    EVENT_REGISTRY,
    DataSensitivity,
    EventCategory,
    EventType,
    RiskLevel,
)
from auditguard.models.identity import CurrentUser
from auditguard.models.snapshots import GeoLocation, RequestSnapshot, ResponseSnapshot, UserAgentInfo
from auditguard.models.audit import AuditRecord, EventClassification
from auditguard.models.security import (
    BruteForceDecision,
    GuardState,
    RateLimitResult,
    SecurityBlock,
)

__all__ = [
    "EVENT_REGISTRY",
    "DataSensitivity",
    "EventCategory",
    "EventType",
    "RiskLevel",
    "CurrentUser",
    "GeoLocation",
    "RequestSnapshot",
    "ResponseSnapshot",
    "UserAgentInfo",
    "AuditRecord",
    "EventClassification",
    "BruteForceDecision",
    "GuardState",
    "RateLimitResult",
    "SecurityBlock",
]
