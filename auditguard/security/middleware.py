"""BruteForceMiddleware — pure ASGI gate in front of authentication routes.

For requests under one of the configured auth path prefixes:

    1. active block            -> 403 {error, reason, retryAfter}, nothing counted
    2. CAPTCHA required, none  -> 400 {error, requiresCaptcha}
    3. otherwise               -> progressive delay, then the route
    4. afterwards              -> failure statuses counted, 2xx resets counters

Every other request passes straight through.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from auditguard.audit.providers import state_user_provider
from auditguard.models.identity import CurrentUser
from auditguard.security.brute_force import BruteForceGuard, identifier_for

logger = logging.getLogger(__name__)


class BruteForceMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        guard: BruteForceGuard,
        auth_path_prefixes: Sequence[str] = ("/api/v1/auth/",),
        failed_attempt_statuses: Sequence[int] = (401, 403),
        captcha_header: str = "x-captcha-token",
        user_provider: Callable[[Request], CurrentUser | None] = state_user_provider,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.app = app
        self.guard = guard
        self.auth_path_prefixes = tuple(auth_path_prefixes)
        self.failed_attempt_statuses = frozenset(failed_attempt_statuses)
        self.captcha_header = captcha_header
        self.user_provider = user_provider
        self.sleep = sleep

    def _guards(self, scope: Scope) -> bool:
        if scope["type"] != "http" or scope["method"] == "OPTIONS":
            return False
        return scope["path"].startswith(self.auth_path_prefixes)

    def _resolve_user(self, request: Request) -> CurrentUser | None:
        try:
            return self.user_provider(request)
        except Exception:
            logger.debug("user provider failed for path=%s", request.url.path, exc_info=True)
            return None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if not self._guards(scope):
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        identifier, identifier_type = identifier_for(request, self._resolve_user(request))
        context: dict[str, Any] = {
            "request_id": getattr(request.state, "request_id", None),
            "ip_address": request.client.host if request.client else None,
            "user_agent": request.headers.get("user-agent"),
            "request_method": request.method,
            "request_path": request.url.path,
        }

        decision = await self.guard.evaluate(identifier)

        if decision.block is not None:
            retry_after = decision.block.retry_after_seconds(self.guard.now())
            logger.warning(
                "Rejected request from blocked identifier=%s path=%s",
                identifier,
                request.url.path,
            )
            self.guard.report_blocked_request(decision.block, {**context, "response_status": 403})
            response = JSONResponse(
                {
                    "error": "Access blocked due to security violations",
                    "reason": decision.block.reason,
                    "retryAfter": retry_after,
                    "blockedUntil": decision.block.expires_at.isoformat(),
                },
                status_code=403,
                headers={"Retry-After": str(retry_after)},
            )
            await response(scope, receive, send)
            return

        if decision.requires_captcha and not request.headers.get(self.captcha_header):
            response = JSONResponse(
                {"error": "CAPTCHA verification required", "requiresCaptcha": True},
                status_code=400,
            )
            await response(scope, receive, send)
            return

        if decision.delay_ms > 0:
            logger.info(
                "Delaying attempt by %dms identifier=%s failed_attempts=%d",
                decision.delay_ms,
                identifier,
                decision.failed_attempts,
            )
            await self.sleep(decision.delay_ms / 1000)

        status_code = 0

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        await self.app(scope, receive, send_wrapper)

        if status_code in self.failed_attempt_statuses:
            await self.guard.record_failure(
                identifier, identifier_type, {**context, "response_status": status_code}
            )
        elif 200 <= status_code < 300:
            await self.guard.record_success(identifier)
