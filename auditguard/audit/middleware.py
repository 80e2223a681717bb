"""AuditMiddleware — pure ASGI wrapper that feeds AuditInterceptor.

The middleware never changes what the client sees: the request body is
buffered once and replayed to the downstream app unchanged, and response
messages are forwarded as-is while a copy of the status, headers and (capped)
body is kept for the audit record. Record assembly runs only after the final
body chunk has been passed to the server.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from starlette.datastructures import Headers
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from auditguard.audit.capture import parse_json_body
from auditguard.audit.interceptor import AuditInterceptor

logger = logging.getLogger(__name__)


class _ResponseObserver:
    """Keeps a copy of what the downstream app sent."""

    def __init__(self, max_body_bytes: int) -> None:
        self.max_body_bytes = max_body_bytes
        self.status_code = 0
        self.raw_headers: list[tuple[bytes, bytes]] = []
        self.started = False
        self.finished = False
        self.reported = False
        self._chunks: list[bytes] = []
        self._size = 0
        self._overflow = False

    def observe(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.started = True
            self.status_code = message["status"]
            self.raw_headers = list(message.get("headers", []))
        elif message["type"] == "http.response.body":
            chunk = message.get("body", b"")
            self._size += len(chunk)
            if self._size > self.max_body_bytes:
                self._overflow = True
                self._chunks.clear()
            elif not self._overflow:
                self._chunks.append(chunk)
            if not message.get("more_body", False):
                self.finished = True

    @property
    def headers(self) -> Headers:
        return Headers(raw=self.raw_headers)

    @property
    def body(self) -> bytes | None:
        return None if self._overflow else b"".join(self._chunks)


class AuditMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        interceptor: AuditInterceptor,
        max_body_bytes: int = 1_048_576,
    ) -> None:
        self.app = app
        self.interceptor = interceptor
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        if self.interceptor.should_skip(request.method, request.url.path):
            await self.app(scope, receive, send)
            return

        body, receive = await self._buffer_request_body(request, receive)
        context = self.interceptor.before_request(request, body)
        observer = _ResponseObserver(self.max_body_bytes)

        async def send_wrapper(message: Message) -> None:
            observer.observe(message)
            await send(message)
            if observer.finished and not observer.reported:
                observer.reported = True
                self.interceptor.after_response(
                    context,
                    status_code=observer.status_code,
                    headers=observer.headers,
                    body=observer.body,
                )

        try:
            await self.app(scope, receive, send_wrapper)
        except (Exception, asyncio.CancelledError) as exc:
            if not observer.reported:
                observer.reported = True
                self.interceptor.on_error(context, exc)
            raise

        if not observer.reported:
            observer.reported = True
            self.interceptor.on_error(context, None)

    async def _buffer_request_body(
        self, request: Request, receive: Receive
    ) -> tuple[Any, Receive]:
        """Read a JSON body up front and hand back a receive() that replays it."""
        content_type = request.headers.get("content-type", "")
        if "application/json" not in content_type:
            return None, receive

        chunks: list[bytes] = []
        size = 0
        terminal: Message | None = None
        while True:
            message = await receive()
            if message["type"] != "http.request":
                terminal = message  # http.disconnect before the body completed
                break
            chunk = message.get("body", b"")
            chunks.append(chunk)
            size += len(chunk)
            if not message.get("more_body", False):
                break

        raw = b"".join(chunks)
        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                if terminal is not None and not raw:
                    return terminal
                return {"type": "http.request", "body": raw, "more_body": False}
            if terminal is not None:
                return terminal
            return await receive()

        if size > self.max_body_bytes:
            logger.debug("request body of %d bytes not parsed for audit", size)
            return None, replay
        return parse_json_body(raw), replay
