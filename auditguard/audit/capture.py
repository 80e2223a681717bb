"""RequestCapturer — snapshots the two ends of the request lifecycle.

Both captures are pure projections into frozen models. Enrichment
(geolocation, user-agent) is best-effort: a lookup that fails or returns
nothing leaves the corresponding fields as None and the capture proceeds.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any

from starlette.datastructures import Headers
from starlette.requests import Request

from auditguard.audit.classifier import is_bulk_operation, is_data_export
from auditguard.audit.providers import (
    GeoLocator,
    NullGeoLocator,
    NullUserAgentParser,
    UserAgentParser,
)
from auditguard.audit.sanitizer import FieldSanitizer
from auditguard.models.identity import CurrentUser
from auditguard.models.snapshots import (
    GeoLocation,
    RequestSnapshot,
    ResponseSnapshot,
    UserAgentInfo,
)

logger = logging.getLogger(__name__)


def parse_json_body(raw: bytes | None) -> Any | None:
    """Best-effort JSON decode. Returns None for empty, truncated or non-JSON bodies."""
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return None


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _normalize_query(request: Request) -> dict[str, Any]:
    """Single-valued params become scalars, repeated params become lists."""
    normalized: dict[str, Any] = {}
    for key, value in request.query_params.multi_items():
        if key in normalized:
            existing = normalized[key]
            normalized[key] = [*existing, value] if isinstance(existing, list) else [existing, value]
        else:
            normalized[key] = value
    return normalized


def _affected_records(body: Any) -> int:
    if isinstance(body, dict):
        for key in ("items", "ids"):
            if isinstance(body.get(key), list):
                return len(body[key])
    return 1


class RequestCapturer:
    def __init__(
        self,
        sanitizer: FieldSanitizer,
        geo_locator: GeoLocator | None = None,
        user_agent_parser: UserAgentParser | None = None,
    ) -> None:
        self._sanitizer = sanitizer
        self._geo = geo_locator or NullGeoLocator()
        self._ua = user_agent_parser or NullUserAgentParser()

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    def _lookup_geo(self, ip: str | None) -> GeoLocation | None:
        if not ip:
            return None
        try:
            return self._geo.lookup(ip)
        except Exception:
            logger.debug("geolocation lookup failed for ip=%s", ip, exc_info=True)
            return None

    def _parse_user_agent(self, user_agent: str | None) -> UserAgentInfo | None:
        if not user_agent:
            return None
        try:
            return self._ua.parse(user_agent)
        except Exception:
            logger.debug("user-agent parsing failed", exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    def capture_request(
        self,
        request: Request,
        *,
        request_id: str,
        body: Any = None,
        user: CurrentUser | None = None,
    ) -> RequestSnapshot:
        """Snapshot the request at start. ``body`` is the decoded (raw) JSON payload."""
        path = request.url.path
        query = _normalize_query(request)
        ip = request.client.host if request.client else None
        user_agent = request.headers.get("user-agent")

        geo = self._lookup_geo(ip) or GeoLocation()
        ua = self._parse_user_agent(user_agent)
        if ua is None:
            device_type = "desktop" if user_agent else None
            ua = UserAgentInfo()
        else:
            device_type = ua.device or "desktop"

        organization_id = user.organization_id if user else None
        body_resource_id = None
        if isinstance(body, dict):
            organization_id = (
                organization_id or body.get("organizationId") or body.get("organization_id")
            )
            if body.get("id") is not None:
                body_resource_id = str(body["id"])

        return RequestSnapshot(
            request_id=request_id,
            method=request.method,
            path=path,
            original_url=str(request.url),
            query=query,
            headers=self._sanitizer.sanitize_headers(request.headers),
            ip_address=ip,
            user_agent=user_agent,
            content_length=_parse_int(request.headers.get("content-length")),
            referer=request.headers.get("referer"),
            device_type=device_type,
            browser=ua.browser,
            browser_version=ua.browser_version,
            os=ua.os,
            os_version=ua.os_version,
            country=geo.country,
            region=geo.region,
            city=geo.city,
            timezone=geo.timezone,
            user_id=user.id if user else None,
            session_id=getattr(request.state, "session_id", None),
            organization_id=str(organization_id) if organization_id is not None else None,
            user_role=user.role if user else None,
            body=self._sanitizer.sanitize_body(body, path),
            is_bulk=is_bulk_operation(path, body),
            is_data_export=is_data_export(path, query),
            affected_records=_affected_records(body),
            body_resource_id=body_resource_id,
            timestamp=datetime.now(timezone.utc),
        )

    # ------------------------------------------------------------------
    # Response
    # ------------------------------------------------------------------

    def capture_response(
        self,
        *,
        status_code: int,
        headers: Mapping[str, str] | Headers,
        body: bytes | None,
        started_at: float,
    ) -> ResponseSnapshot:
        """Snapshot the finalized response. ``started_at`` is a perf_counter() reading."""
        duration_ms = round((time.perf_counter() - started_at) * 1000)
        content_type = headers.get("content-type")
        content_length = _parse_int(headers.get("content-length"))
        if content_length is None and body is not None:
            content_length = len(body)

        parsed = None
        if content_type and "application/json" in content_type:
            parsed = parse_json_body(body)

        try:
            status_message: str | None = HTTPStatus(status_code).phrase
        except ValueError:
            status_message = None

        return ResponseSnapshot(
            status_code=status_code,
            status_message=status_message,
            headers=self._sanitizer.sanitize_headers(headers),
            content_length=content_length,
            content_type=content_type,
            duration_ms=duration_ms,
            body=self._sanitizer.sanitize_response_body(parsed),
            completed=True,
            timestamp=datetime.now(timezone.utc),
        )

    def incomplete_response(self, *, started_at: float, status_code: int = 0) -> ResponseSnapshot:
        """Terminal snapshot for a response that was never finalized (abort / error)."""
        return ResponseSnapshot(
            status_code=status_code,
            duration_ms=round((time.perf_counter() - started_at) * 1000),
            completed=False,
            timestamp=datetime.now(timezone.utc),
        )
