"""Assembly of the final AuditRecord from captured + classified data.

Everything here is a pure function of its inputs. Bodies arrive already
sanitized (the snapshots only ever hold sanitized payloads).
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from auditguard.audit.classifier import is_sensitive_operation
from auditguard.models.audit import AuditRecord, EventClassification
from auditguard.models.identity import CurrentUser
from auditguard.models.snapshots import RequestSnapshot, ResponseSnapshot
from auditguard.models.taxonomy import DataSensitivity, EventType, RiskLevel

# (path marker, resource type): first match wins
_RESOURCE_TYPES: tuple[tuple[str, str], ...] = (
    ("/auth/", "authentication"),
    ("/organizations/", "organization"),
    ("/projects/", "project"),
    ("/tasks/", "task"),
    ("/members/", "member"),
    ("/audit/", "audit"),
)

# Collection segment followed by an identifier, e.g. /tasks/42 or /projects/abc-123
_RESOURCE_ID = re.compile(r"/(?:organizations|projects|tasks|members|users|subtasks)/([^/]+)")
_NON_ID_SEGMENTS = frozenset({"bulk", "export", "status", "members", "invitations", "stream"})


def resource_from_path(path: str) -> str:
    parts = [p for p in path.split("/") if p and p not in ("api", "v1")]
    return parts[0] if parts else "unknown"


def resource_type_for(path: str) -> str:
    for marker, resource_type in _RESOURCE_TYPES:
        if marker in path:
            return resource_type
    return "api"


def resource_id_for(path: str, body_resource_id: str | None = None) -> str | None:
    """Last identifier segment in the path, else the body's ``id``."""
    candidates = [m for m in _RESOURCE_ID.findall(path) if m not in _NON_ID_SEGMENTS]
    if candidates:
        return candidates[-1]
    return body_resource_id


def build_description(
    method: str, path: str, status_code: int, event_type: EventType | str | None
) -> str:
    outcome = "failed" if status_code >= 400 or status_code == 0 else "succeeded"
    resource = resource_from_path(path)
    if event_type:
        parts = str(getattr(event_type, "value", event_type)).split(".")
        verb = parts[1] if len(parts) > 1 else method
        noun = parts[2] if len(parts) > 2 else resource
        return f"{verb} {noun} {outcome}"
    return f"{method} {resource} {outcome}"


def build_tags(
    request: RequestSnapshot, response: ResponseSnapshot, role: str | None = None
) -> list[str]:
    tags = [f"method:{request.method.lower()}"]
    if response.status_code:
        tags.append(f"status:{response.status_code}")
    if request.is_bulk:
        tags.append("bulk-operation")
    if request.is_data_export:
        tags.append("data-export")
    if role:
        tags.append(f"role:{role}")
    if not response.completed:
        tags.append("incomplete")
    return tags


def compliance_flags(request: RequestSnapshot) -> list[str]:
    flags = []
    if "/personal-data/" in request.path:
        flags.append("gdpr-relevant")
    if request.is_data_export:
        flags.append("data-export")
    if "/audit/" in request.path:
        flags.append("audit-access")
    if request.is_bulk:
        flags.append("bulk-operation")
    return flags


def compliance_tags(request: RequestSnapshot) -> list[str]:
    tags = []
    if "/auth/" in request.path:
        tags.append("authentication")
    if "/organizations/" in request.path:
        tags.append("organization-data")
    if request.is_data_export:
        tags.append("data-export")
    if "/audit/" in request.path:
        tags.append("audit-log-access")
    return tags


def build_audit_record(
    request: RequestSnapshot,
    response: ResponseSnapshot,
    classification: EventClassification,
    *,
    user: CurrentUser | None = None,
    event_type_override: EventType | None = None,
) -> AuditRecord:
    """Union of both snapshots + classification + derived metadata.

    ``user`` is the late-resolved caller (the host's auth layer may only have
    identified them after the request snapshot was taken).
    """
    event_type = event_type_override or classification.event_type or EventType.API_REQUEST
    role = request.user_role or (user.role if user else None)

    return AuditRecord(
        event_type=event_type.value,
        action=f"{request.method.lower()}_{resource_from_path(request.path)}",
        description=build_description(
            request.method, request.path, response.status_code, classification.event_type
        ),
        user_id=request.user_id or (user.id if user else None),
        session_id=request.session_id,
        organization_id=request.organization_id or (user.organization_id if user else None),
        resource_type=resource_type_for(request.path),
        resource_id=resource_id_for(request.path, request.body_resource_id),
        affected_records=request.affected_records,
        request_id=request.request_id,
        request_method=request.method,
        request_path=request.path,
        request_size=request.content_length,
        request_body=request.body,
        response_status=response.status_code or None,
        response_size=response.content_length,
        response_body=response.body,
        duration_ms=response.duration_ms,
        completed=response.completed,
        ip_address=request.ip_address,
        user_agent=request.user_agent,
        country=request.country,
        region=request.region,
        city=request.city,
        device_type=request.device_type,
        browser=request.browser,
        os=request.os,
        risk_level=classification.risk_level,
        data_sensitivity=classification.data_sensitivity,
        tags=build_tags(request, response, role),
        compliance_tags=compliance_tags(request),
        metadata={
            "request_headers": request.headers,
            "response_headers": response.headers,
            "query_params": request.query,
            "bulk_operation": request.is_bulk,
            "data_export": request.is_data_export,
            "sensitive_operation": is_sensitive_operation(request.path),
            "compliance_flags": compliance_flags(request),
        },
        created_at=datetime.now(timezone.utc),
    )


def build_security_record(
    event_type: EventType,
    *,
    description: str,
    identifier: str,
    request_id: str | None = None,
    ip_address: str | None = None,
    user_id: str | None = None,
    organization_id: str | None = None,
    request_method: str | None = None,
    request_path: str | None = None,
    response_status: int | None = None,
    user_agent: str | None = None,
    metadata: dict[str, Any] | None = None,
    tags: list[str] | None = None,
) -> AuditRecord:
    """Violation / brute-force events: always HIGH risk, CONFIDENTIAL sensitivity."""
    return AuditRecord(
        event_type=event_type.value,
        action=event_type.value.split(".")[-1],
        description=description,
        user_id=user_id,
        organization_id=organization_id,
        resource_type="security",
        resource_id=identifier,
        request_id=request_id,
        request_method=request_method,
        request_path=request_path,
        response_status=response_status,
        ip_address=ip_address,
        user_agent=user_agent,
        risk_level=RiskLevel.HIGH,
        data_sensitivity=DataSensitivity.CONFIDENTIAL,
        tags=tags or ["security-event"],
        compliance_tags=["security"],
        metadata=metadata or {},
        created_at=datetime.now(timezone.utc),
    )
