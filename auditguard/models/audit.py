from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from auditguard.models.taxonomy import DataSensitivity, EventType, RiskLevel


class EventClassification(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: EventType | None
    risk_level: RiskLevel
    data_sensitivity: DataSensitivity


class AuditRecord(BaseModel):
    """Append-only audit entry. Built once per audited request or violation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    action: str
    description: str = ""

    # Caller context
    user_id: str | None = None
    session_id: str | None = None
    organization_id: str | None = None

    # Resource
    resource_type: str | None = None
    resource_id: str | None = None
    affected_records: int = 1

    # Request / response
    request_id: str | None = None
    request_method: str | None = None
    request_path: str | None = None
    request_size: int | None = None
    request_body: Any = None  # sanitized
    response_status: int | None = None
    response_size: int | None = None
    response_body: dict[str, Any] | None = None  # allow-list projection
    duration_ms: int | None = None
    completed: bool = True

    # Network / device
    ip_address: str | None = None
    user_agent: str | None = None
    country: str | None = None
    region: str | None = None
    city: str | None = None
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None

    # Classification
    risk_level: RiskLevel = RiskLevel.LOW
    data_sensitivity: DataSensitivity = DataSensitivity.INTERNAL

    tags: list[str] = Field(default_factory=list)
    compliance_tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    created_at: datetime
