"""Immutable request/response snapshots captured at the two ends of a request."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class GeoLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    country: str | None = None
    region: str | None = None
    city: str | None = None
    timezone: str | None = None


class UserAgentInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    browser: str | None = None
    browser_version: str | None = None
    os: str | None = None
    os_version: str | None = None
    device: str | None = None  # "mobile", "tablet", ... or None when unknown


class RequestSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: str
    method: str
    path: str
    original_url: str
    query: dict[str, Any] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)  # sanitized
    ip_address: str | None = None
    user_agent: str | None = None
    content_length: int | None = None
    referer: str | None = None

    # Device / browser (best-effort)
    device_type: str | None = None
    browser: str | None = None
    browser_version: str | None = None
    os: str | None = None
    os_version: str | None = None

    # Geolocation (best-effort)
    country: str | None = None
    region: str | None = None
    city: str | None = None
    timezone: str | None = None

    # Caller context
    user_id: str | None = None
    session_id: str | None = None
    organization_id: str | None = None
    user_role: str | None = None

    body: Any = None  # sanitized
    is_bulk: bool = False
    is_data_export: bool = False
    affected_records: int = 1
    body_resource_id: str | None = None

    timestamp: datetime


class ResponseSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    status_code: int
    status_message: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)  # sanitized
    content_length: int | None = None
    content_type: str | None = None
    duration_ms: int
    body: dict[str, Any] | None = None  # allow-list projection only
    completed: bool = True  # False when the response never finished
    timestamp: datetime
