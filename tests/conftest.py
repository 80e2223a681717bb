"""
Shared test fixtures.
"""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import pytest
from starlette.requests import Request

from auditguard.audit.capture import RequestCapturer
from auditguard.audit.classifier import EventClassifier
from auditguard.audit.emitter import AuditEmitter
from auditguard.audit.interceptor import AuditInterceptor, InterceptorConfig
from auditguard.audit.sanitizer import FieldSanitizer
from auditguard.config import Settings
from auditguard.models.audit import AuditRecord
from auditguard.models.taxonomy import RiskLevel


class RecordingSink:
    """In-memory AuditSink that keeps every appended record."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    async def append(self, record: AuditRecord) -> None:
        self.records.append(record)

    def of_type(self, event_type: str) -> list[AuditRecord]:
        return [r for r in self.records if r.event_type == event_type]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        admin_api_key="test-admin-key",
    )


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def emitter(sink: RecordingSink) -> AuditEmitter:
    return AuditEmitter(sink)


@pytest.fixture
def interceptor(emitter: AuditEmitter) -> AuditInterceptor:
    return AuditInterceptor(
        emitter,
        RequestCapturer(FieldSanitizer()),
        EventClassifier(),
        InterceptorConfig(),
    )


@pytest.fixture
def make_request() -> Callable[..., Request]:
    """Build a Starlette Request straight from an ASGI scope."""

    def _make(
        method: str = "GET",
        path: str = "/",
        headers: dict[str, str] | None = None,
        query_string: str = "",
        client: tuple[str, int] | None = ("203.0.113.7", 51000),
        state: dict[str, Any] | None = None,
    ) -> Request:
        scope: dict[str, Any] = {
            "type": "http",
            "http_version": "1.1",
            "method": method,
            "scheme": "http",
            "server": ("testserver", 80),
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "query_string": query_string.encode(),
            "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
            "client": client,
            "state": dict(state or {}),
        }
        return Request(scope)

    return _make


@pytest.fixture
def make_record() -> Callable[..., AuditRecord]:
    def _make(**overrides: Any) -> AuditRecord:
        defaults: dict[str, Any] = {
            "event_type": "task.create",
            "action": "post_tasks",
            "description": "create task succeeded",
            "user_id": "user-1",
            "organization_id": "org-1",
            "request_id": "req-test-001",
            "request_method": "POST",
            "request_path": "/api/v1/tasks",
            "response_status": 201,
            "duration_ms": 12,
            "ip_address": "203.0.113.7",
            "risk_level": RiskLevel.LOW,
            "created_at": datetime(2026, 10, 1, 12, 0, 0, tzinfo=timezone.utc),
        }
        defaults.update(overrides)
        return AuditRecord(**defaults)

    return _make
