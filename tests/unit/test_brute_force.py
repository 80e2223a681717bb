"""Unit tests for auditguard/security/brute_force.py.

Uses the in-memory stores and a recording sink; no Redis required.
"""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from auditguard.config import Settings
from auditguard.errors import CounterStoreError
from auditguard.models.identity import CurrentUser
from auditguard.models.security import GuardState
from auditguard.models.taxonomy import EventType
from auditguard.security.brute_force import BruteForceGuard, calculate_delay, identifier_for
from auditguard.security.store import InMemoryBlockStore, InMemoryCounterStore

IP = "203.0.113.7"


@pytest.fixture
def counters() -> InMemoryCounterStore:
    return InMemoryCounterStore()


@pytest.fixture
def blocks() -> InMemoryBlockStore:
    return InMemoryBlockStore()


@pytest.fixture
def guard(counters, blocks, emitter, settings) -> BruteForceGuard:
    return BruteForceGuard(counters, blocks, emitter, settings)


async def fail(guard: BruteForceGuard, times: int, identifier: str = IP):
    decision = None
    for _ in range(times):
        decision = await guard.record_failure(identifier, "ip", {"ip_address": IP})
    return decision


# ---------------------------------------------------------------------------
# calculate_delay
# ---------------------------------------------------------------------------


@pytest.mark.unit
@pytest.mark.parametrize(
    ("attempts", "delay_ms"),
    [(0, 0), (2, 0), (3, 2_000), (4, 2_000), (9, 5_000), (14, 10_000), (15, 30_000), (20, 30_000)],
)
def test_calculate_delay_schedule(attempts, delay_ms):
    assert calculate_delay(attempts) == delay_ms


@pytest.mark.unit
def test_calculate_delay_is_monotonic():
    delays = [calculate_delay(n) for n in range(100)]
    assert delays == sorted(delays)


# ---------------------------------------------------------------------------
# identifier_for
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_identifier_prefers_authenticated_user(make_request):
    request = make_request()
    assert identifier_for(request, CurrentUser(id="42")) == ("user:42", "user")
    assert identifier_for(request, None) == (IP, "ip")
    assert identifier_for(make_request(client=None), None) == ("unknown", "ip")


# ---------------------------------------------------------------------------
# State progression
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_fresh_identifier_is_clear(guard):
    decision = await guard.evaluate(IP)
    assert decision.state is GuardState.CLEAR
    assert decision.delay_ms == 0
    assert decision.requires_captcha is False
    assert decision.block is None


@pytest.mark.unit
async def test_three_failures_delay_the_next_attempt(guard):
    await fail(guard, 3)
    decision = await guard.evaluate(IP)
    assert decision.state is GuardState.DELAYED
    assert decision.failed_attempts == 3
    assert decision.delay_ms == 2_000
    assert decision.requires_captcha is False


@pytest.mark.unit
async def test_captcha_required_after_threshold(guard):
    await fail(guard, 4)
    decision = await guard.evaluate(IP)
    assert decision.state is GuardState.WARNED
    assert decision.requires_captcha is True
    assert decision.delay_ms == 2_000


@pytest.mark.unit
async def test_transition_events_are_emitted_once(guard, emitter, sink):
    await fail(guard, 6)
    await emitter.drain()

    assert len(sink.of_type(EventType.SECURITY_FAILED_ATTEMPT.value)) == 6
    assert len(sink.of_type(EventType.SECURITY_PROGRESSIVE_DELAY.value)) == 1
    assert len(sink.of_type(EventType.SECURITY_CAPTCHA_REQUIRED.value)) == 1
    assert all(r.ip_address == IP for r in sink.records)


@pytest.mark.unit
async def test_success_resets_counters(guard):
    await fail(guard, 5)
    await guard.record_success(IP)
    decision = await guard.evaluate(IP)
    assert decision.state is GuardState.CLEAR
    assert decision.failed_attempts == 0


@pytest.mark.unit
async def test_counters_are_per_identifier(guard):
    await fail(guard, 5, identifier="user:1")
    assert (await guard.evaluate("user:2")).state is GuardState.CLEAR


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_block_created_when_hourly_threshold_exceeded(counters, blocks, emitter, sink):
    settings = Settings(_env_file=None, brute_force_block_threshold=2)
    guard = BruteForceGuard(counters, blocks, emitter, settings)

    assert (await fail(guard, 2)).state is not GuardState.BLOCKED
    decision = await fail(guard, 1)
    await emitter.drain()

    assert decision.state is GuardState.BLOCKED
    assert decision.block.identifier == IP
    assert decision.block.expires_at - decision.block.blocked_at == timedelta(hours=24)
    assert len(sink.of_type(EventType.SECURITY_BLOCK_CREATED.value)) == 1


@pytest.mark.unit
async def test_block_overrides_delay_and_skips_counters(blocks, emitter, settings):
    counters = AsyncMock()
    guard = BruteForceGuard(counters, blocks, emitter, settings)
    await guard.block(IP, "ip", reason="manual", duration_seconds=600)

    decision = await guard.evaluate(IP)

    assert decision.state is GuardState.BLOCKED
    assert decision.delay_ms == 0
    assert decision.block.reason == "manual"
    counters.get.assert_not_awaited()
    counters.increment.assert_not_awaited()


@pytest.mark.unit
async def test_block_expires_by_timestamp(counters, blocks, emitter, settings):
    clock_now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    guard = BruteForceGuard(counters, blocks, emitter, settings, clock=lambda: clock_now)
    block = await guard.block(IP, "ip", reason="manual", duration_seconds=3_000_000_000)
    assert (await guard.evaluate(IP)).state is GuardState.BLOCKED

    later = BruteForceGuard(
        counters, blocks, emitter, settings, clock=lambda: block.expires_at + timedelta(seconds=1)
    )
    assert (await later.evaluate(IP)).state is GuardState.CLEAR


@pytest.mark.unit
async def test_unblock_clears_block_and_counters(guard):
    await fail(guard, 5)
    await guard.block(IP, "ip", reason="manual", duration_seconds=600)

    await guard.unblock(IP)

    decision = await guard.evaluate(IP)
    assert decision.state is GuardState.CLEAR
    assert decision.failed_attempts == 0


@pytest.mark.unit
async def test_blocked_request_event(guard, emitter, sink):
    block = await guard.block(IP, "ip", reason="manual", duration_seconds=600)
    guard.report_blocked_request(block, {"request_path": "/api/v1/auth/login"})
    await emitter.drain()

    [record] = sink.of_type(EventType.SECURITY_BLOCKED_REQUEST.value)
    assert record.request_path == "/api/v1/auth/login"
    assert record.metadata["reason"] == "manual"


# ---------------------------------------------------------------------------
# Store failure: fail open
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_evaluate_fails_open_when_store_is_down(blocks, emitter, settings, caplog):
    counters = AsyncMock()
    counters.get.side_effect = CounterStoreError("redis down")
    guard = BruteForceGuard(counters, blocks, emitter, settings)

    with caplog.at_level(logging.WARNING, logger="auditguard.security.brute_force"):
        decision = await guard.evaluate(IP)

    assert decision.state is GuardState.CLEAR
    assert decision.delay_ms == 0
    assert decision.degraded is True
    assert "failing open" in caplog.text


@pytest.mark.unit
async def test_block_store_down_still_evaluates_counters(counters, emitter, settings):
    blocks = AsyncMock()
    blocks.get_block.side_effect = CounterStoreError("redis down")
    guard = BruteForceGuard(counters, blocks, emitter, settings)
    await counters.increment(guard.window_key(IP), 900)

    decision = await guard.evaluate(IP)

    assert decision.block is None
    assert decision.failed_attempts == 1


@pytest.mark.unit
async def test_record_failure_fails_open(blocks, emitter, sink, settings):
    counters = AsyncMock()
    counters.increment.side_effect = CounterStoreError("redis down")
    guard = BruteForceGuard(counters, blocks, emitter, settings)

    decision = await guard.record_failure(IP, "ip")
    await emitter.drain()

    assert decision.degraded is True
    assert sink.records == []


@pytest.mark.unit
async def test_record_success_swallows_store_errors(blocks, emitter, settings):
    counters = AsyncMock()
    counters.delete.side_effect = CounterStoreError("redis down")
    guard = BruteForceGuard(counters, blocks, emitter, settings)
    await guard.record_success(IP)
