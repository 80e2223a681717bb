"""Event taxonomy — shared vocabulary for the audit and rate-limit layers.

Pure data: event-type identifiers, their registry metadata, and the two
ordered enums (RiskLevel, DataSensitivity). Adding an event type means adding
an enum member and a registry entry; the classifier dispatch never changes.
"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple


class _OrderedLevel(str, Enum):
    """String enum whose members are totally ordered by declaration order."""

    @property
    def rank(self) -> int:
        return list(type(self)).index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, type(self)):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, type(self)):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, type(self)):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, type(self)):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def max(cls, *levels):  # type: ignore[no-untyped-def]
        """Most severe of the given levels. None entries are ignored."""
        present = [level for level in levels if level is not None]
        if not present:
            raise ValueError(f"{cls.__name__}.max() needs at least one level")
        return max(present, key=lambda level: level.rank)


class RiskLevel(_OrderedLevel):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DataSensitivity(_OrderedLevel):
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"


class EventCategory(str, Enum):
    AUTHENTICATION = "authentication"
    ORGANIZATION = "organization"
    PROJECT = "project"
    TASK = "task"
    SECURITY = "security"
    DATA = "data"
    ADMIN = "admin"
    API = "api"


class EventType(str, Enum):
    # Authentication
    AUTH_LOGIN_SUCCESS = "auth.login.success"
    AUTH_LOGIN_FAILED = "auth.login.failed"
    AUTH_LOGOUT = "auth.logout"
    AUTH_SIGNUP = "auth.signup"
    AUTH_PASSWORD_RESET_REQUEST = "auth.password_reset.request"
    AUTH_PASSWORD_RESET_SUCCESS = "auth.password_reset.success"
    AUTH_PASSWORD_CHANGE = "auth.password.change"
    AUTH_TOKEN_REFRESH = "auth.token.refresh"
    AUTH_SESSION_EXPIRED = "auth.session.expired"

    # Organizations
    ORG_CREATE = "organization.create"
    ORG_UPDATE = "organization.update"
    ORG_DELETE = "organization.delete"
    ORG_MEMBER_ADD = "organization.member.add"
    ORG_MEMBER_REMOVE = "organization.member.remove"
    ORG_MEMBER_ROLE_CHANGE = "organization.member.role_change"
    ORG_INVITATION_SEND = "organization.invitation.send"
    ORG_INVITATION_ACCEPT = "organization.invitation.accept"
    ORG_INVITATION_DECLINE = "organization.invitation.decline"

    # Projects
    PROJECT_CREATE = "project.create"
    PROJECT_UPDATE = "project.update"
    PROJECT_DELETE = "project.delete"
    PROJECT_ACCESS = "project.access"

    # Tasks
    TASK_CREATE = "task.create"
    TASK_UPDATE = "task.update"
    TASK_DELETE = "task.delete"
    TASK_STATUS_CHANGE = "task.status.change"
    TASK_ASSIGN = "task.assign"
    TASK_ACCESS = "task.access"

    # Security
    SECURITY_RATE_LIMIT_EXCEEDED = "security.rate_limit.exceeded"
    SECURITY_SUSPICIOUS_ACTIVITY = "security.suspicious_activity"
    SECURITY_UNAUTHORIZED_ACCESS = "security.unauthorized_access"
    SECURITY_PRIVILEGE_ESCALATION = "security.privilege_escalation"
    SECURITY_DATA_EXPORT = "security.data.export"
    SECURITY_BULK_OPERATION = "security.bulk_operation"
    SECURITY_FAILED_ATTEMPT = "security.brute_force.failed_attempt"
    SECURITY_CAPTCHA_REQUIRED = "security.brute_force.captcha_required"
    SECURITY_PROGRESSIVE_DELAY = "security.brute_force.delay"
    SECURITY_BLOCK_CREATED = "security.block.created"
    SECURITY_BLOCKED_REQUEST = "security.block.rejected"

    # Data access
    DATA_EXPORT = "data.export"
    DATA_IMPORT = "data.import"
    DATA_BULK_DELETE = "data.bulk_delete"
    DATA_SENSITIVE_ACCESS = "data.sensitive_access"

    # Admin
    ADMIN_CONFIG_CHANGE = "admin.config.change"
    ADMIN_USER_IMPERSONATION = "admin.user.impersonation"
    ADMIN_SYSTEM_MAINTENANCE = "admin.system.maintenance"

    # Generic (logged only when every request is audited, or on unhandled errors)
    API_REQUEST = "api.request"
    API_ERROR = "api.error"


class EventInfo(NamedTuple):
    category: EventCategory
    default_risk_level: RiskLevel


def _info(category: EventCategory, risk: RiskLevel) -> EventInfo:
    return EventInfo(category=category, default_risk_level=risk)


_AUTH, _ORG, _PROJECT, _TASK = (
    EventCategory.AUTHENTICATION,
    EventCategory.ORGANIZATION,
    EventCategory.PROJECT,
    EventCategory.TASK,
)
_SEC, _DATA, _ADMIN = EventCategory.SECURITY, EventCategory.DATA, EventCategory.ADMIN

EVENT_REGISTRY: dict[EventType, EventInfo] = {
    EventType.AUTH_LOGIN_SUCCESS: _info(_AUTH, RiskLevel.MEDIUM),
    EventType.AUTH_LOGIN_FAILED: _info(_AUTH, RiskLevel.HIGH),
    EventType.AUTH_LOGOUT: _info(_AUTH, RiskLevel.LOW),
    EventType.AUTH_SIGNUP: _info(_AUTH, RiskLevel.MEDIUM),
    EventType.AUTH_PASSWORD_RESET_REQUEST: _info(_AUTH, RiskLevel.MEDIUM),
    EventType.AUTH_PASSWORD_RESET_SUCCESS: _info(_AUTH, RiskLevel.HIGH),
    EventType.AUTH_PASSWORD_CHANGE: _info(_AUTH, RiskLevel.HIGH),
    EventType.AUTH_TOKEN_REFRESH: _info(_AUTH, RiskLevel.LOW),
    EventType.AUTH_SESSION_EXPIRED: _info(_AUTH, RiskLevel.LOW),
    EventType.ORG_CREATE: _info(_ORG, RiskLevel.MEDIUM),
    EventType.ORG_UPDATE: _info(_ORG, RiskLevel.MEDIUM),
    EventType.ORG_DELETE: _info(_ORG, RiskLevel.HIGH),
    EventType.ORG_MEMBER_ADD: _info(_ORG, RiskLevel.MEDIUM),
    EventType.ORG_MEMBER_REMOVE: _info(_ORG, RiskLevel.MEDIUM),
    EventType.ORG_MEMBER_ROLE_CHANGE: _info(_ORG, RiskLevel.HIGH),
    EventType.ORG_INVITATION_SEND: _info(_ORG, RiskLevel.MEDIUM),
    EventType.ORG_INVITATION_ACCEPT: _info(_ORG, RiskLevel.LOW),
    EventType.ORG_INVITATION_DECLINE: _info(_ORG, RiskLevel.LOW),
    EventType.PROJECT_CREATE: _info(_PROJECT, RiskLevel.LOW),
    EventType.PROJECT_UPDATE: _info(_PROJECT, RiskLevel.LOW),
    EventType.PROJECT_DELETE: _info(_PROJECT, RiskLevel.MEDIUM),
    EventType.PROJECT_ACCESS: _info(_PROJECT, RiskLevel.LOW),
    EventType.TASK_CREATE: _info(_TASK, RiskLevel.LOW),
    EventType.TASK_UPDATE: _info(_TASK, RiskLevel.LOW),
    EventType.TASK_DELETE: _info(_TASK, RiskLevel.LOW),
    EventType.TASK_STATUS_CHANGE: _info(_TASK, RiskLevel.LOW),
    EventType.TASK_ASSIGN: _info(_TASK, RiskLevel.LOW),
    EventType.TASK_ACCESS: _info(_TASK, RiskLevel.LOW),
    EventType.SECURITY_RATE_LIMIT_EXCEEDED: _info(_SEC, RiskLevel.HIGH),
    EventType.SECURITY_SUSPICIOUS_ACTIVITY: _info(_SEC, RiskLevel.HIGH),
    EventType.SECURITY_UNAUTHORIZED_ACCESS: _info(_SEC, RiskLevel.HIGH),
    EventType.SECURITY_PRIVILEGE_ESCALATION: _info(_SEC, RiskLevel.CRITICAL),
    EventType.SECURITY_DATA_EXPORT: _info(_SEC, RiskLevel.MEDIUM),
    EventType.SECURITY_BULK_OPERATION: _info(_SEC, RiskLevel.MEDIUM),
    EventType.SECURITY_FAILED_ATTEMPT: _info(_SEC, RiskLevel.HIGH),
    EventType.SECURITY_CAPTCHA_REQUIRED: _info(_SEC, RiskLevel.HIGH),
    EventType.SECURITY_PROGRESSIVE_DELAY: _info(_SEC, RiskLevel.HIGH),
    EventType.SECURITY_BLOCK_CREATED: _info(_SEC, RiskLevel.HIGH),
    EventType.SECURITY_BLOCKED_REQUEST: _info(_SEC, RiskLevel.HIGH),
    EventType.DATA_EXPORT: _info(_DATA, RiskLevel.MEDIUM),
    EventType.DATA_IMPORT: _info(_DATA, RiskLevel.MEDIUM),
    EventType.DATA_BULK_DELETE: _info(_DATA, RiskLevel.HIGH),
    EventType.DATA_SENSITIVE_ACCESS: _info(_DATA, RiskLevel.MEDIUM),
    EventType.ADMIN_CONFIG_CHANGE: _info(_ADMIN, RiskLevel.HIGH),
    EventType.ADMIN_USER_IMPERSONATION: _info(_ADMIN, RiskLevel.CRITICAL),
    EventType.ADMIN_SYSTEM_MAINTENANCE: _info(_ADMIN, RiskLevel.HIGH),
    EventType.API_REQUEST: _info(EventCategory.API, RiskLevel.LOW),
    EventType.API_ERROR: _info(EventCategory.API, RiskLevel.MEDIUM),
}


def event_info(event_type: EventType) -> EventInfo:
    """Registry lookup. Every EventType member has an entry."""
    return EVENT_REGISTRY[event_type]
