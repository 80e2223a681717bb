"""Unit tests for auditguard/audit/interceptor.py.

Drives the lifecycle hooks directly, without an ASGI app in front.
"""

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from auditguard.audit.capture import RequestCapturer
from auditguard.audit.classifier import EventClassifier
from auditguard.audit.interceptor import AuditInterceptor, InterceptorConfig
from auditguard.audit.sanitizer import FieldSanitizer
from auditguard.config import Settings
from auditguard.models.identity import CurrentUser
from auditguard.models.security import RateLimitResult
from auditguard.models.taxonomy import EventType, RiskLevel

JSON_HEADERS = {"content-type": "application/json"}


def _respond(interceptor, context, status_code=200, body=None):
    return interceptor.after_response(
        context,
        status_code=status_code,
        headers=JSON_HEADERS,
        body=json.dumps(body or {"success": True}).encode(),
    )


# ---------------------------------------------------------------------------
# Skip rules
# ---------------------------------------------------------------------------


@pytest.mark.unit
@pytest.mark.parametrize(
    ("method", "path"),
    [
        ("GET", "/health"),
        ("GET", "/readyz"),
        ("GET", "/metrics"),
        ("GET", "/favicon.ico"),
        ("OPTIONS", "/api/v1/tasks"),
        ("GET", "/api/v1/projects/p-1/stream"),
    ],
)
def test_should_skip(interceptor, method, path):
    assert interceptor.should_skip(method, path)


@pytest.mark.unit
def test_should_not_skip_api_calls(interceptor):
    assert not interceptor.should_skip("POST", "/api/v1/tasks")


@pytest.mark.unit
def test_config_from_settings():
    config = InterceptorConfig.from_settings(
        Settings(_env_file=None, log_all_requests=True, audit_skip_prefixes=["/internal"])
    )
    assert config.log_all_requests is True
    assert config.skip_prefixes == ("/internal",)


# ---------------------------------------------------------------------------
# before_request
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_request_id_is_taken_from_header(interceptor, make_request):
    request = make_request(headers={"X-Request-ID": "upstream-42"})
    context = interceptor.before_request(request)
    assert context.request_id == "upstream-42"
    assert context.snapshot.request_id == "upstream-42"
    assert request.state.request_id == "upstream-42"


@pytest.mark.unit
def test_request_id_is_generated_when_absent(interceptor, make_request):
    context = interceptor.before_request(make_request())
    assert context.request_id.startswith("req_")


@pytest.mark.unit
def test_capture_failure_disables_auditing_for_the_request(emitter, make_request):
    capturer = MagicMock(spec=RequestCapturer)
    capturer.capture_request.side_effect = RuntimeError("boom")
    interceptor = AuditInterceptor(emitter, capturer)

    context = interceptor.before_request(make_request("DELETE", "/api/v1/organizations/o-1"))

    assert context.snapshot is None
    assert _respond(interceptor, context) is None
    assert interceptor.on_error(context, RuntimeError("x")) is None


# ---------------------------------------------------------------------------
# after_response
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_classified_request_is_emitted(interceptor, emitter, sink, make_request):
    request = make_request("DELETE", "/api/v1/organizations/org-1")
    context = interceptor.before_request(request)

    record = _respond(interceptor, context)
    await emitter.drain()

    assert record is not None
    assert record.event_type == EventType.ORG_DELETE.value
    assert record.risk_level is RiskLevel.HIGH
    assert record.request_id == context.request_id
    assert sink.records == [record]


@pytest.mark.unit
async def test_unclassified_request_is_dropped(interceptor, emitter, sink, make_request):
    context = interceptor.before_request(make_request("GET", "/api/v1/tasks"))
    assert _respond(interceptor, context) is None
    await emitter.drain()
    assert sink.records == []


@pytest.mark.unit
async def test_log_all_requests_records_unclassified_calls(emitter, sink, make_request):
    interceptor = AuditInterceptor(
        emitter,
        RequestCapturer(FieldSanitizer()),
        EventClassifier(),
        InterceptorConfig(log_all_requests=True),
    )
    context = interceptor.before_request(make_request("GET", "/api/v1/tasks"))
    record = _respond(interceptor, context)
    await emitter.drain()

    assert record.event_type == "api.request"
    assert record.risk_level is RiskLevel.LOW
    assert len(sink.records) == 1


@pytest.mark.unit
async def test_user_identified_after_snapshot_is_attached(interceptor, emitter, make_request):
    request = make_request("POST", "/api/v1/projects")
    context = interceptor.before_request(request, {"name": "Roadmap"})
    request.state.user = {"id": "u-5", "organizationId": "org-5", "role": "member"}

    record = _respond(interceptor, context, status_code=201)
    await emitter.drain()

    assert record.user_id == "u-5"
    assert record.organization_id == "org-5"


@pytest.mark.unit
async def test_response_body_is_sanitized(interceptor, emitter, make_request):
    context = interceptor.before_request(make_request("POST", "/api/v1/auth/login"))
    record = _respond(
        interceptor, context, body={"success": True, "accessToken": "jwt", "user": {"id": 1}}
    )
    await emitter.drain()
    assert record.response_body == {"success": True}


# ---------------------------------------------------------------------------
# on_error
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_exception_is_recorded_as_api_error(interceptor, emitter, sink, make_request):
    context = interceptor.before_request(make_request("GET", "/api/v1/tasks"))

    record = interceptor.on_error(context, RuntimeError("handler exploded"))
    await emitter.drain()

    assert record.event_type == "api.error"
    assert record.response_status == 500
    assert record.completed is False
    assert record.risk_level >= RiskLevel.MEDIUM
    assert sink.records == [record]


@pytest.mark.unit
async def test_exception_carrying_auth_status_is_unauthorized_access(
    interceptor, emitter, make_request
):
    class Forbidden(Exception):
        status_code = 403

    context = interceptor.before_request(make_request("GET", "/api/v1/projects/p-1"))
    record = interceptor.on_error(context, Forbidden())
    await emitter.drain()

    assert record.event_type == EventType.SECURITY_UNAUTHORIZED_ACCESS.value
    assert record.risk_level is RiskLevel.HIGH
    assert record.response_status == 403


@pytest.mark.unit
async def test_aborted_classified_request_is_recorded_incomplete(
    interceptor, emitter, make_request
):
    context = interceptor.before_request(make_request("DELETE", "/api/v1/organizations/o-1"))

    record = interceptor.on_error(context, asyncio.CancelledError())
    await emitter.drain()

    assert record.event_type == EventType.ORG_DELETE.value
    assert record.completed is False
    assert record.response_status is None
    assert "incomplete" in record.tags


@pytest.mark.unit
async def test_aborted_unclassified_request_is_dropped(interceptor, emitter, sink, make_request):
    context = interceptor.before_request(make_request("GET", "/api/v1/tasks"))
    assert interceptor.on_error(context, None) is None
    await emitter.drain()
    assert sink.records == []


# ---------------------------------------------------------------------------
# Violations
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_rate_limit_violation_event(interceptor, emitter, sink, make_request):
    request = make_request("POST", "/api/v1/auth/forgot-password")
    result = RateLimitResult(
        policy="password_reset",
        identifier="203.0.113.7",
        allowed=False,
        limit=3,
        remaining=0,
        retry_after_seconds=3540,
    )

    record = interceptor.report_violation(
        request,
        status_code=429,
        identifier="203.0.113.7",
        reason="Rate limit exceeded for password_reset",
        rate_limit=result,
    )
    await emitter.drain()

    assert record.event_type == EventType.SECURITY_RATE_LIMIT_EXCEEDED.value
    assert record.risk_level is RiskLevel.HIGH
    assert record.response_status == 429
    assert record.metadata["policy"] == "password_reset"
    assert record.metadata["retry_after_seconds"] == 3540
    assert sink.records == [record]


@pytest.mark.unit
async def test_forbidden_violation_event(interceptor, emitter, make_request):
    request = make_request("GET", "/api/v1/audit/logs", state={"user": CurrentUser(id="u-1")})
    record = interceptor.report_violation(
        request, status_code=403, identifier="user:u-1", reason="blocked"
    )
    await emitter.drain()

    assert record.event_type == EventType.SECURITY_UNAUTHORIZED_ACCESS.value
    assert record.user_id == "u-1"
    assert record.resource_id == "user:u-1"
