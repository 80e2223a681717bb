"""Generic fixed-window rate limiting, keyed per identifier per policy.

A policy is a named group of routes sharing one budget (``auth``,
``password_reset``, ``api``, ``read``). Routes opt in with the
``rate_limit(policy)`` FastAPI dependency:

    @router.get("/logs", dependencies=[Depends(rate_limit("read"))])

Rejections are reported through the audit interceptor's violation hook
before the HTTPException propagates.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping

from fastapi import HTTPException, Request, status

from auditguard.config import RateLimitPolicy
from auditguard.models.security import RateLimitResult
from auditguard.security.brute_force import identifier_for
from auditguard.security.store import CounterStore

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, counters: CounterStore, policies: Mapping[str, RateLimitPolicy]) -> None:
        self._counters = counters
        self._policies = dict(policies)

    @staticmethod
    def key(policy: str, identifier: str) -> str:
        return f"rl:{policy}:{identifier}"

    async def hit(self, policy: str, identifier: str) -> RateLimitResult:
        """Count one request against the policy. Fails open if the store is down."""
        try:
            rule = self._policies[policy]
        except KeyError:
            raise ValueError(f"unknown rate-limit policy {policy!r}") from None

        key = self.key(policy, identifier)
        try:
            count = await self._counters.increment(key, rule.window_seconds)
            ttl = await self._counters.ttl(key)
        except Exception:
            logger.warning(
                "Rate-limit store unavailable, failing open policy=%s identifier=%s",
                policy,
                identifier,
                exc_info=True,
            )
            return RateLimitResult(
                policy=policy,
                identifier=identifier,
                allowed=True,
                limit=rule.limit,
                remaining=rule.limit,
            )

        allowed = count <= rule.limit
        return RateLimitResult(
            policy=policy,
            identifier=identifier,
            allowed=allowed,
            limit=rule.limit,
            remaining=max(0, rule.limit - count),
            retry_after_seconds=0 if allowed else (ttl or rule.window_seconds),
        )


def rate_limit(policy: str) -> Callable[[Request], Awaitable[None]]:
    """FastAPI dependency enforcing ``policy`` for the calling identifier.

    An identifier under an active SecurityBlock gets 403; otherwise an
    exhausted budget gets 429 with Retry-After.
    """

    async def _enforce(request: Request) -> None:
        interceptor = request.app.state.audit_interceptor
        limiter: RateLimiter = request.app.state.rate_limiter
        guard = request.app.state.brute_force_guard

        identifier, _ = identifier_for(request, interceptor.resolve_user(request))
        block = await guard.active_block(identifier)
        if block is not None:
            retry_after = block.retry_after_seconds(guard.now())
            interceptor.report_violation(
                request,
                status_code=status.HTTP_403_FORBIDDEN,
                identifier=identifier,
                reason=block.reason,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "Access blocked due to security violations",
                    "reason": block.reason,
                    "retryAfter": retry_after,
                },
                headers={"Retry-After": str(retry_after)},
            )

        result = await limiter.hit(policy, identifier)
        if result.allowed:
            return

        logger.info(
            "Rate limit exceeded policy=%s identifier=%s limit=%d",
            policy,
            identifier,
            result.limit,
        )
        interceptor.report_violation(
            request,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            identifier=identifier,
            reason=f"Rate limit exceeded for {policy}",
            rate_limit=result,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "Too many requests",
                "policy": policy,
                "retryAfter": result.retry_after_seconds,
            },
            headers={"Retry-After": str(result.retry_after_seconds)},
        )

    return _enforce
