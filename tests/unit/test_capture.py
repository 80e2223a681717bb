"""Unit tests for auditguard/audit/capture.py."""

import json
import time

import pytest

from auditguard.audit.capture import RequestCapturer, parse_json_body
from auditguard.audit.sanitizer import FieldSanitizer
from auditguard.models.identity import CurrentUser
from auditguard.models.snapshots import GeoLocation, UserAgentInfo


class StaticGeoLocator:
    def lookup(self, ip: str) -> GeoLocation | None:
        return GeoLocation(country="NL", region="NH", city="Amsterdam", timezone="Europe/Amsterdam")


class BrokenGeoLocator:
    def lookup(self, ip: str) -> GeoLocation | None:
        raise RuntimeError("geo database missing")


class MobileParser:
    def parse(self, user_agent: str) -> UserAgentInfo | None:
        return UserAgentInfo(browser="Safari", browser_version="17", os="iOS", device="mobile")


@pytest.fixture
def capturer() -> RequestCapturer:
    return RequestCapturer(FieldSanitizer())


# ---------------------------------------------------------------------------
# Request snapshot
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_capture_request_projects_sanitized_request(capturer, make_request):
    request = make_request(
        "POST",
        "/api/v1/tasks/bulk",
        headers={
            "Authorization": "Bearer secret-jwt",
            "User-Agent": "Mozilla/5.0",
            "Content-Length": "64",
            "Referer": "https://app.example.com/board",
        },
        query_string="tag=a&tag=b&page=2",
        state={"session_id": "sess-1"},
    )
    user = CurrentUser(id="u-1", organization_id="org-1", role="admin")
    body = {"ids": ["t1", "t2", "t3"], "password": "nope"}

    snap = capturer.capture_request(request, request_id="req-1", body=body, user=user)

    assert snap.request_id == "req-1"
    assert snap.method == "POST"
    assert snap.path == "/api/v1/tasks/bulk"
    assert snap.query == {"tag": ["a", "b"], "page": "2"}
    assert "authorization" not in snap.headers
    assert snap.headers["user-agent"] == "Mozilla/5.0"
    assert snap.ip_address == "203.0.113.7"
    assert snap.content_length == 64
    assert snap.referer == "https://app.example.com/board"
    assert snap.user_id == "u-1"
    assert snap.organization_id == "org-1"
    assert snap.user_role == "admin"
    assert snap.session_id == "sess-1"
    assert snap.body == {"ids": ["t1", "t2", "t3"]}
    assert snap.is_bulk is True
    assert snap.affected_records == 3


@pytest.mark.unit
def test_organization_falls_back_to_body(capturer, make_request):
    request = make_request("POST", "/api/v1/projects")
    snap = capturer.capture_request(
        request, request_id="r", body={"organizationId": "org-9", "id": 17}
    )
    assert snap.organization_id == "org-9"
    assert snap.body_resource_id == "17"
    assert snap.user_id is None


@pytest.mark.unit
def test_export_query_marks_data_export(capturer, make_request):
    snap = capturer.capture_request(
        make_request("GET", "/api/v1/tasks", query_string="format=csv"), request_id="r"
    )
    assert snap.is_data_export is True


@pytest.mark.unit
def test_enrichment_defaults_to_empty(capturer, make_request):
    snap = capturer.capture_request(
        make_request(headers={"User-Agent": "curl/8"}), request_id="r"
    )
    assert snap.country is None
    assert snap.browser is None
    assert snap.device_type == "desktop"


@pytest.mark.unit
def test_no_user_agent_means_no_device(capturer, make_request):
    snap = capturer.capture_request(make_request(), request_id="r")
    assert snap.device_type is None
    assert snap.user_agent is None


@pytest.mark.unit
def test_enrichment_providers_fill_snapshot(make_request):
    capturer = RequestCapturer(
        FieldSanitizer(), geo_locator=StaticGeoLocator(), user_agent_parser=MobileParser()
    )
    snap = capturer.capture_request(make_request(headers={"User-Agent": "iPhone"}), request_id="r")
    assert snap.city == "Amsterdam"
    assert snap.timezone == "Europe/Amsterdam"
    assert snap.browser == "Safari"
    assert snap.os == "iOS"
    assert snap.device_type == "mobile"


@pytest.mark.unit
def test_failing_geo_provider_leaves_fields_empty(make_request):
    capturer = RequestCapturer(FieldSanitizer(), geo_locator=BrokenGeoLocator())
    snap = capturer.capture_request(make_request(), request_id="r")
    assert snap.country is None
    assert snap.ip_address == "203.0.113.7"


@pytest.mark.unit
def test_missing_client_address(capturer, make_request):
    snap = capturer.capture_request(make_request(client=None), request_id="r")
    assert snap.ip_address is None


# ---------------------------------------------------------------------------
# Response snapshot
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_capture_response_allow_lists_json_body(capturer):
    body = json.dumps({"success": True, "id": "t-1", "token": "jwt", "data": [1, 2]}).encode()
    snap = capturer.capture_response(
        status_code=201,
        headers={"content-type": "application/json", "set-cookie": "x", "cookie": "y"},
        body=body,
        started_at=time.perf_counter(),
    )
    assert snap.status_code == 201
    assert snap.status_message == "Created"
    assert snap.body == {"success": True, "id": "t-1"}
    assert snap.content_length == len(body)
    assert snap.content_type == "application/json"
    assert "cookie" not in snap.headers
    assert snap.duration_ms >= 0
    assert snap.completed is True


@pytest.mark.unit
def test_non_json_response_body_is_not_recorded(capturer):
    snap = capturer.capture_response(
        status_code=200,
        headers={"content-type": "text/csv", "content-length": "999"},
        body=b"a,b\n1,2\n",
        started_at=time.perf_counter(),
    )
    assert snap.body is None
    assert snap.content_length == 999


@pytest.mark.unit
def test_unknown_status_code_has_no_message(capturer):
    snap = capturer.capture_response(
        status_code=599, headers={}, body=None, started_at=time.perf_counter()
    )
    assert snap.status_message is None


@pytest.mark.unit
def test_incomplete_response(capturer):
    snap = capturer.incomplete_response(started_at=time.perf_counter() - 0.05)
    assert snap.completed is False
    assert snap.status_code == 0
    assert snap.duration_ms >= 50


@pytest.mark.unit
def test_parse_json_body():
    assert parse_json_body(b'{"a": 1}') == {"a": 1}
    assert parse_json_body(b"") is None
    assert parse_json_body(None) is None
    assert parse_json_body(b"{truncated") is None
    assert parse_json_body(b"\xff\xfe") is None
