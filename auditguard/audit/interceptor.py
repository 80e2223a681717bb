"""AuditInterceptor — the request lifecycle hooks driven by AuditMiddleware.

    should_skip()     cheap pre-filter (health, OPTIONS, streaming, ...)
    before_request()  resolve request id + caller, snapshot the request
    after_response()  snapshot the response, classify, build, emit
    on_error()        terminal hook for exceptions and aborted responses

Audit failures never propagate into the host request: every phase that can
fail logs and returns None instead. The only side effect of a successful
phase is a single AuditEmitter.emit() call, which schedules the sink write
and returns immediately.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from starlette.datastructures import Headers
from starlette.requests import Request

from auditguard.audit.capture import RequestCapturer
from auditguard.audit.classifier import EventClassifier
from auditguard.audit.emitter import AuditEmitter
from auditguard.audit.providers import state_user_provider
from auditguard.audit.records import build_audit_record, build_security_record
from auditguard.config import Settings
from auditguard.models.audit import AuditRecord
from auditguard.models.identity import CurrentUser
from auditguard.models.security import RateLimitResult
from auditguard.models.snapshots import RequestSnapshot, ResponseSnapshot
from auditguard.models.taxonomy import EventType, RiskLevel

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"


@dataclass(frozen=True)
class InterceptorConfig:
    log_all_requests: bool = False
    skip_prefixes: tuple[str, ...] = ("/health", "/readyz", "/metrics", "/favicon.ico")
    stream_marker: str = "/stream"

    @classmethod
    def from_settings(cls, settings: Settings) -> "InterceptorConfig":
        return cls(
            log_all_requests=settings.log_all_requests,
            skip_prefixes=tuple(settings.audit_skip_prefixes),
            stream_marker=settings.audit_stream_marker,
        )


@dataclass
class RequestContext:
    """Per-request state carried from before_request() to the terminal hook."""

    request: Request
    request_id: str
    started_at: float
    snapshot: RequestSnapshot | None


class AuditInterceptor:
    def __init__(
        self,
        emitter: AuditEmitter,
        capturer: RequestCapturer,
        classifier: EventClassifier | None = None,
        config: InterceptorConfig | None = None,
        user_provider: Callable[[Request], CurrentUser | None] = state_user_provider,
    ) -> None:
        self._emitter = emitter
        self._capturer = capturer
        self._classifier = classifier or EventClassifier()
        self._config = config or InterceptorConfig()
        self._user_provider = user_provider

    @property
    def emitter(self) -> AuditEmitter:
        return self._emitter

    def should_skip(self, method: str, path: str) -> bool:
        if method.upper() == "OPTIONS":
            return True
        if any(path.startswith(prefix) for prefix in self._config.skip_prefixes):
            return True
        return bool(self._config.stream_marker) and self._config.stream_marker in path

    def resolve_user(self, request: Request) -> CurrentUser | None:
        try:
            return self._user_provider(request)
        except Exception:
            logger.debug("user provider failed for path=%s", request.url.path, exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def before_request(self, request: Request, body: Any = None) -> RequestContext:
        started_at = time.perf_counter()
        request_id = request.headers.get(REQUEST_ID_HEADER) or f"req_{uuid.uuid4().hex}"
        request.state.request_id = request_id

        snapshot: RequestSnapshot | None = None
        try:
            snapshot = self._capturer.capture_request(
                request,
                request_id=request_id,
                body=body,
                user=self.resolve_user(request),
            )
        except Exception:
            logger.exception(
                "Request capture failed — request will not be audited request_id=%s", request_id
            )
        return RequestContext(
            request=request, request_id=request_id, started_at=started_at, snapshot=snapshot
        )

    def after_response(
        self,
        context: RequestContext,
        *,
        status_code: int,
        headers: Mapping[str, str] | Headers,
        body: bytes | None,
    ) -> AuditRecord | None:
        """Called once the final body chunk has been handed to the server."""
        if context.snapshot is None:
            return None
        try:
            response = self._capturer.capture_response(
                status_code=status_code,
                headers=headers,
                body=body,
                started_at=context.started_at,
            )
            return self._finalize(context, context.snapshot, response)
        except Exception:
            logger.exception("Failed to build audit record for request_id=%s", context.request_id)
            return None

    def on_error(self, context: RequestContext, exc: BaseException | None) -> AuditRecord | None:
        """Terminal hook when no complete response was observed.

        ``exc`` is the exception raised by the downstream app, or None when the
        app returned without finishing the response (client abort). Exceptions
        are always recorded as api.error; aborts only when classified.
        """
        if context.snapshot is None:
            return None
        failed = isinstance(exc, Exception)
        try:
            response = self._capturer.incomplete_response(
                started_at=context.started_at,
                status_code=getattr(exc, "status_code", 500) if failed else 0,
            )
            override = None
            if failed:
                override = (
                    EventType.SECURITY_UNAUTHORIZED_ACCESS
                    if response.status_code in (401, 403, 429)
                    else EventType.API_ERROR
                )
                logger.warning(
                    "Request failed before completing request_id=%s error=%s",
                    context.request_id,
                    type(exc).__name__,
                )
            return self._finalize(context, context.snapshot, response, event_type_override=override)
        except Exception:
            logger.exception("Failed to build audit record for request_id=%s", context.request_id)
            return None

    def _finalize(
        self,
        context: RequestContext,
        snapshot: RequestSnapshot,
        response: ResponseSnapshot,
        *,
        event_type_override: EventType | None = None,
    ) -> AuditRecord | None:
        classification = self._classifier.classify(
            snapshot.method,
            snapshot.path,
            response.status_code,
            is_bulk=snapshot.is_bulk,
            is_export=snapshot.is_data_export,
        )
        if (
            classification.event_type is None
            and event_type_override is None
            and not self._config.log_all_requests
        ):
            return None

        if event_type_override is not None:
            floor = (
                RiskLevel.HIGH
                if event_type_override is EventType.SECURITY_UNAUTHORIZED_ACCESS
                else RiskLevel.MEDIUM
            )
            classification = classification.model_copy(
                update={"risk_level": RiskLevel.max(classification.risk_level, floor)}
            )

        # The auth layer may only have identified the caller after the snapshot
        user = self.resolve_user(context.request) if snapshot.user_id is None else None
        record = build_audit_record(
            snapshot,
            response,
            classification,
            user=user,
            event_type_override=event_type_override,
        )
        self._emitter.emit(record)
        return record

    # ------------------------------------------------------------------
    # Violations
    # ------------------------------------------------------------------

    def report_violation(
        self,
        request: Request,
        *,
        status_code: int,
        identifier: str,
        reason: str,
        rate_limit: RateLimitResult | None = None,
    ) -> AuditRecord:
        """Emit a security event for a request rejected with 429 or 403."""
        event_type = (
            EventType.SECURITY_RATE_LIMIT_EXCEEDED
            if status_code == 429
            else EventType.SECURITY_UNAUTHORIZED_ACCESS
        )
        metadata: dict[str, Any] = {"reason": reason}
        if rate_limit is not None:
            metadata.update(
                policy=rate_limit.policy,
                limit=rate_limit.limit,
                retry_after_seconds=rate_limit.retry_after_seconds,
            )
        return self.report_security_event(
            request,
            event_type,
            description=reason,
            identifier=identifier,
            status_code=status_code,
            metadata=metadata,
        )

    def report_security_event(
        self,
        request: Request,
        event_type: EventType,
        *,
        description: str,
        identifier: str | None = None,
        status_code: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditRecord:
        """Emit a HIGH-risk security record tied to the current request."""
        user = self.resolve_user(request)
        ip_address = request.client.host if request.client else None
        tags = ["security-event"]
        if status_code is not None:
            tags.append(f"status:{status_code}")
        record = build_security_record(
            event_type,
            description=description,
            identifier=identifier or (f"user:{user.id}" if user else ip_address or "unknown"),
            request_id=getattr(request.state, "request_id", None),
            ip_address=ip_address,
            user_id=user.id if user else None,
            organization_id=user.organization_id if user else None,
            request_method=request.method,
            request_path=request.url.path,
            response_status=status_code,
            user_agent=request.headers.get("user-agent"),
            metadata=metadata,
            tags=tags,
        )
        self._emitter.emit(record)
        return record
