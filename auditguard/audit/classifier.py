"""EventClassifier — maps (method, path, status) to event type, risk and sensitivity.

Rule precedence for the event identity (first match wins):
  1. Exact path match against SENSITIVE_ENDPOINTS
  2. Pattern match (":param" segments match exactly one path segment)
  3. Heuristics: failed auth, then DELETE on org / project / task paths

Risk and sensitivity are NOT first-match: every rule whose predicate matched
contributes, and the most severe level wins. Broad heuristics (bulk, export,
admin) can therefore only ever raise the recorded risk, never lower it.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from auditguard.audit.paths import path_has_marker
from auditguard.models.audit import EventClassification
from auditguard.models.taxonomy import DataSensitivity, EventType, RiskLevel, event_info

# ---------------------------------------------------------------------------
# Endpoint table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EndpointRule:
    event_type: EventType
    risk_level: RiskLevel
    methods: frozenset[str] | None = None  # None = any method
    success_only: bool = False  # status >= 400 falls through to the heuristics

    def accepts(self, method: str, status_code: int) -> bool:
        if self.methods is not None and method not in self.methods:
            return False
        return not (self.success_only and status_code >= 400)


def _rule(
    event_type: EventType,
    *methods: str,
    success_only: bool = False,
) -> EndpointRule:
    return EndpointRule(
        event_type=event_type,
        risk_level=event_info(event_type).default_risk_level,
        methods=frozenset(methods) if methods else None,
        success_only=success_only,
    )


_WRITE = ("PUT", "PATCH")

SENSITIVE_ENDPOINTS: dict[str, EndpointRule] = {
    # Authentication
    "/api/v1/auth/login": _rule(EventType.AUTH_LOGIN_SUCCESS, "POST", success_only=True),
    "/api/v1/auth/logout": _rule(EventType.AUTH_LOGOUT, "POST", success_only=True),
    "/api/v1/auth/signup": _rule(EventType.AUTH_SIGNUP, "POST", success_only=True),
    "/api/v1/auth/refresh": _rule(EventType.AUTH_TOKEN_REFRESH, "POST", success_only=True),
    "/api/v1/auth/forgot-password": _rule(
        EventType.AUTH_PASSWORD_RESET_REQUEST, "POST", success_only=True
    ),
    "/api/v1/auth/reset-password": _rule(
        EventType.AUTH_PASSWORD_RESET_SUCCESS, "POST", success_only=True
    ),
    "/api/v1/auth/change-password": _rule(
        EventType.AUTH_PASSWORD_CHANGE, "POST", success_only=True
    ),
    # Organizations
    "/api/v1/organizations": _rule(EventType.ORG_CREATE, "POST"),
    "/api/v1/organizations/:id": _rule(EventType.ORG_UPDATE, *_WRITE),
    "/api/v1/organizations/:id/members": _rule(EventType.ORG_MEMBER_ADD, "POST"),
    "/api/v1/organizations/:id/members/:userId": _rule(EventType.ORG_MEMBER_REMOVE, "DELETE"),
    "/api/v1/organizations/:id/members/:userId/role": _rule(
        EventType.ORG_MEMBER_ROLE_CHANGE, *_WRITE
    ),
    "/api/v1/organizations/:id/invitations": _rule(EventType.ORG_INVITATION_SEND, "POST"),
    "/api/v1/invitations/:token/accept": _rule(EventType.ORG_INVITATION_ACCEPT, "POST"),
    "/api/v1/invitations/:token/decline": _rule(EventType.ORG_INVITATION_DECLINE, "POST"),
    # Projects
    "/api/v1/projects": _rule(EventType.PROJECT_CREATE, "POST"),
    "/api/v1/projects/:id": _rule(EventType.PROJECT_UPDATE, *_WRITE),
    # Tasks
    "/api/v1/tasks": _rule(EventType.TASK_CREATE, "POST"),
    "/api/v1/tasks/:id": _rule(EventType.TASK_UPDATE, *_WRITE),
    "/api/v1/tasks/:id/status": _rule(EventType.TASK_STATUS_CHANGE, *_WRITE),
    "/api/v1/tasks/:id/assign": _rule(EventType.TASK_ASSIGN, "POST", *_WRITE),
}

BULK_OPERATION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"/api/v1/tasks/bulk"),
    re.compile(r"/api/v1/projects/bulk"),
    re.compile(r"/api/v1/organizations/[^/]+/members/bulk"),
)

DATA_EXPORT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"/api/v1/.*/export"),
    re.compile(r"/api/v1/audit/export"),
    re.compile(r"/api/v1/reports"),
)

# (path marker, event type): checked in order for DELETE requests
_DELETE_HEURISTICS: tuple[tuple[str, EventType], ...] = (
    ("/organizations/", EventType.ORG_DELETE),
    ("/projects/", EventType.PROJECT_DELETE),
    ("/tasks/", EventType.TASK_DELETE),
)

_AUTH_MARKER = "/auth/"
SENSITIVE_OPERATION_MARKERS: tuple[str, ...] = ("password", "secret", "token", "key")


def compile_endpoint_pattern(template: str) -> re.Pattern[str]:
    """'/a/:id/b' -> ^/a/[^/]+/b$ — each parameter matches one non-slash segment."""
    parts = re.split(r"(:[^/]+)", template)
    body = "".join("[^/]+" if part.startswith(":") else re.escape(part) for part in parts)
    return re.compile(f"^{body}$")


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def is_bulk_operation(path: str, body: Any = None) -> bool:
    if any(pattern.search(path) for pattern in BULK_OPERATION_PATTERNS) or "/bulk" in path:
        return True
    if isinstance(body, dict):
        return isinstance(body.get("items"), list) or isinstance(body.get("ids"), list)
    return False


def is_data_export(path: str, query: Mapping[str, Any] | None = None) -> bool:
    if any(pattern.search(path) for pattern in DATA_EXPORT_PATTERNS):
        return True
    query = query or {}
    return query.get("export") == "true" or query.get("format") == "csv"


def is_sensitive_operation(path: str) -> bool:
    return any(path_has_marker(path, marker) for marker in SENSITIVE_OPERATION_MARKERS)


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class EventClassifier:
    def __init__(self, endpoints: Mapping[str, EndpointRule] | None = None) -> None:
        table = dict(endpoints if endpoints is not None else SENSITIVE_ENDPOINTS)
        self._exact: dict[str, EndpointRule] = {
            path: rule for path, rule in table.items() if ":" not in path
        }
        self._patterns: list[tuple[re.Pattern[str], EndpointRule]] = [
            (compile_endpoint_pattern(path), rule) for path, rule in table.items() if ":" in path
        ]

    def classify(
        self,
        method: str,
        path: str,
        status_code: int,
        *,
        is_bulk: bool = False,
        is_export: bool = False,
    ) -> EventClassification:
        method = method.upper()
        event_type: EventType | None = None
        risks: list[RiskLevel] = [RiskLevel.LOW]

        # 1 + 2: table lookup (exact first, then patterns)
        rule = self._match_table(method, path, status_code)
        if rule is not None:
            event_type = rule.event_type
            risks.append(rule.risk_level)

        # 3: heuristics, only when the table named no event
        if event_type is None:
            event_type = self._match_heuristics(method, path, status_code)
            if event_type is not None:
                risks.append(event_info(event_type).default_risk_level)

        # 4: orthogonal escalation; raises only
        if is_bulk:
            risks.append(RiskLevel.MEDIUM)
        if is_export:
            risks.append(RiskLevel.MEDIUM)
        if "/admin/" in path:
            risks.append(RiskLevel.HIGH)
        if method == "DELETE" and rule is None:
            risks.append(RiskLevel.MEDIUM)

        return EventClassification(
            event_type=event_type,
            risk_level=RiskLevel.max(*risks),
            data_sensitivity=self.sensitivity(path, is_export=is_export),
        )

    def _match_table(self, method: str, path: str, status_code: int) -> EndpointRule | None:
        rule = self._exact.get(path)
        if rule is not None and rule.accepts(method, status_code):
            return rule
        for pattern, candidate in self._patterns:
            if pattern.match(path) and candidate.accepts(method, status_code):
                return candidate
        return None

    @staticmethod
    def _match_heuristics(method: str, path: str, status_code: int) -> EventType | None:
        if _AUTH_MARKER in path and status_code >= 400:
            return EventType.AUTH_LOGIN_FAILED
        if method == "DELETE":
            for marker, event_type in _DELETE_HEURISTICS:
                if marker in path:
                    return event_type
        return None

    @staticmethod
    def sensitivity(path: str, *, is_export: bool = False) -> DataSensitivity:
        levels = [DataSensitivity.INTERNAL]
        if _AUTH_MARKER in path:
            levels.append(DataSensitivity.CONFIDENTIAL)
        if "/audit/" in path:
            levels.append(DataSensitivity.RESTRICTED)
        if is_export:
            levels.append(DataSensitivity.CONFIDENTIAL)
        return DataSensitivity.max(*levels)
