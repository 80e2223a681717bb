"""BruteForceGuard — failed-attempt tracking, progressive delay, CAPTCHA, blocks.

Per identifier (``user:<id>`` for authenticated callers, else the raw IP):

    15-minute counter -> progressive delay + CAPTCHA requirement
    1-hour counter    -> SecurityBlock once it exceeds the block threshold

State precedence is BLOCKED > WARNED > DELAYED > CLEAR. WARNED means the
next attempt must carry a CAPTCHA token; it is reported over DELAYED because
a request without the token is rejected before any delay is applied.

Store failures fail open: the request proceeds undelayed and a WARNING is
logged. An active block is always checked before any counter is touched.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from starlette.requests import Request

from auditguard.audit.emitter import AuditEmitter
from auditguard.audit.records import build_security_record
from auditguard.config import Settings
from auditguard.models.identity import CurrentUser
from auditguard.models.security import (
    BruteForceDecision,
    GuardState,
    IdentifierType,
    SecurityBlock,
)
from auditguard.models.taxonomy import EventType
from auditguard.security.store import BlockStore, CounterStore

logger = logging.getLogger(__name__)

# (attempts below, delay in ms): first match wins
DELAY_SCHEDULE: tuple[tuple[int, int], ...] = (
    (3, 0),
    (5, 2_000),
    (10, 5_000),
    (15, 10_000),
)
MAX_DELAY_MS = 30_000


def calculate_delay(failed_attempts: int) -> int:
    """Progressive delay in milliseconds. Monotonically non-decreasing."""
    for below, delay_ms in DELAY_SCHEDULE:
        if failed_attempts < below:
            return delay_ms
    return MAX_DELAY_MS


def identifier_for(request: Request, user: CurrentUser | None) -> tuple[str, IdentifierType]:
    if user is not None:
        return f"user:{user.id}", "user"
    return (request.client.host if request.client else "unknown"), "ip"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BruteForceGuard:
    def __init__(
        self,
        counters: CounterStore,
        blocks: BlockStore,
        emitter: AuditEmitter | None,
        settings: Settings,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._counters = counters
        self._blocks = blocks
        self._emitter = emitter
        self._settings = settings
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    @staticmethod
    def window_key(identifier: str) -> str:
        return f"bf:15m:{identifier}"

    @staticmethod
    def block_window_key(identifier: str) -> str:
        return f"bf:1h:{identifier}"

    def _state_for(self, failed_attempts: int) -> GuardState:
        if failed_attempts > self._settings.brute_force_captcha_threshold:
            return GuardState.WARNED
        if calculate_delay(failed_attempts) > 0:
            return GuardState.DELAYED
        return GuardState.CLEAR

    def _decision(self, identifier: str, failed_attempts: int) -> BruteForceDecision:
        return BruteForceDecision(
            identifier=identifier,
            state=self._state_for(failed_attempts),
            failed_attempts=failed_attempts,
            delay_ms=calculate_delay(failed_attempts),
            requires_captcha=failed_attempts > self._settings.brute_force_captcha_threshold,
        )

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def evaluate(self, identifier: str) -> BruteForceDecision:
        """Decision for the next attempt. Never raises."""
        block = await self.active_block(identifier)
        if block is not None:
            return BruteForceDecision(identifier=identifier, state=GuardState.BLOCKED, block=block)
        try:
            failed_attempts = await self._counters.get(self.window_key(identifier))
        except Exception:
            logger.warning(
                "Brute-force store unavailable, failing open for identifier=%s",
                identifier,
                exc_info=True,
            )
            return BruteForceDecision(identifier=identifier, state=GuardState.CLEAR, degraded=True)
        return self._decision(identifier, failed_attempts)

    async def record_failure(
        self,
        identifier: str,
        identifier_type: IdentifierType,
        context: dict[str, Any] | None = None,
    ) -> BruteForceDecision:
        """Count a failed attempt; create a block once the hourly threshold is exceeded.

        ``context`` carries request details (ip_address, user_agent,
        request_method, request_path, response_status) for the emitted events.
        """
        context = context or {}
        settings = self._settings
        try:
            failed_attempts = await self._counters.increment(
                self.window_key(identifier), settings.brute_force_window_seconds
            )
            hourly_attempts = await self._counters.increment(
                self.block_window_key(identifier), settings.brute_force_block_window_seconds
            )
        except Exception:
            logger.warning(
                "Brute-force store unavailable, failed attempt not counted for identifier=%s",
                identifier,
                exc_info=True,
            )
            return BruteForceDecision(identifier=identifier, state=GuardState.CLEAR, degraded=True)

        logger.info(
            "Failed attempt identifier=%s count=%d hourly=%d",
            identifier,
            failed_attempts,
            hourly_attempts,
        )
        self._emit(
            EventType.SECURITY_FAILED_ATTEMPT,
            f"Failed authentication attempt {failed_attempts} for {identifier}",
            identifier,
            context,
            failed_attempts=failed_attempts,
            hourly_attempts=hourly_attempts,
        )

        if hourly_attempts > settings.brute_force_block_threshold:
            block = await self.block(
                identifier,
                identifier_type,
                reason="Too many failed authentication attempts",
                duration_seconds=settings.brute_force_block_duration_seconds,
                context=context,
            )
            return BruteForceDecision(
                identifier=identifier,
                state=GuardState.BLOCKED,
                failed_attempts=failed_attempts,
                block=block,
            )

        decision = self._decision(identifier, failed_attempts)
        if decision.state != self._state_for(failed_attempts - 1):
            if decision.state is GuardState.WARNED:
                self._emit(
                    EventType.SECURITY_CAPTCHA_REQUIRED,
                    f"CAPTCHA required for {identifier}",
                    identifier,
                    context,
                    failed_attempts=failed_attempts,
                )
            elif decision.state is GuardState.DELAYED:
                self._emit(
                    EventType.SECURITY_PROGRESSIVE_DELAY,
                    f"Progressive delay of {decision.delay_ms}ms applied to {identifier}",
                    identifier,
                    context,
                    failed_attempts=failed_attempts,
                    delay_ms=decision.delay_ms,
                )
        return decision

    async def record_success(self, identifier: str) -> None:
        """Clear both counters after a successful authentication."""
        try:
            await self._counters.delete(self.window_key(identifier))
            await self._counters.delete(self.block_window_key(identifier))
        except Exception:
            logger.warning(
                "Brute-force store unavailable, counters not reset for identifier=%s",
                identifier,
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    async def block(
        self,
        identifier: str,
        identifier_type: IdentifierType,
        *,
        reason: str,
        duration_seconds: int,
        context: dict[str, Any] | None = None,
    ) -> SecurityBlock:
        now = self._clock()
        block = SecurityBlock(
            identifier=identifier,
            identifier_type=identifier_type,
            reason=reason,
            blocked_at=now,
            expires_at=now + timedelta(seconds=duration_seconds),
        )
        try:
            await self._blocks.put_block(block)
        except Exception:
            logger.warning(
                "Block store unavailable, block for identifier=%s not persisted",
                identifier,
                exc_info=True,
            )
        logger.warning(
            "Security block created identifier=%s until=%s reason=%s",
            identifier,
            block.expires_at.isoformat(),
            reason,
        )
        self._emit(
            EventType.SECURITY_BLOCK_CREATED,
            f"{identifier} blocked: {reason}",
            identifier,
            context or {},
            expires_at=block.expires_at.isoformat(),
            duration_seconds=duration_seconds,
        )
        return block

    async def unblock(self, identifier: str) -> None:
        """Lift a block and reset the identifier's counters. Store errors propagate."""
        await self._blocks.clear_block(identifier)
        await self._counters.delete(self.window_key(identifier))
        await self._counters.delete(self.block_window_key(identifier))
        logger.info("Security block lifted identifier=%s", identifier)

    async def active_block(self, identifier: str) -> SecurityBlock | None:
        try:
            block = await self._blocks.get_block(identifier)
        except Exception:
            logger.warning(
                "Block store unavailable, failing open for identifier=%s",
                identifier,
                exc_info=True,
            )
            return None
        if block is not None and block.is_in_effect(self._clock()):
            return block
        return None

    def report_blocked_request(self, block: SecurityBlock, context: dict[str, Any]) -> None:
        self._emit(
            EventType.SECURITY_BLOCKED_REQUEST,
            f"Request from blocked identifier {block.identifier} rejected",
            block.identifier,
            context,
            reason=block.reason,
            expires_at=block.expires_at.isoformat(),
        )

    def _emit(
        self,
        event_type: EventType,
        description: str,
        identifier: str,
        context: dict[str, Any],
        **metadata: Any,
    ) -> None:
        if self._emitter is None:
            return
        self._emitter.emit(
            build_security_record(
                event_type,
                description=description,
                identifier=identifier,
                metadata=metadata,
                **context,
            )
        )
