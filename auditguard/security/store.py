"""Counter and block stores for the brute-force guard and rate limiter.

Counters are fixed-window: the first increment of a key sets its TTL and
later increments leave it alone. Increments must be atomic across workers,
so the Redis store queues INCR and EXPIRE NX in one MULTI/EXEC transaction;
a counter key never exists without a TTL.

Blocks are stored with a mandatory TTL (see cache.redis_client.set_json) equal
to their duration, and are additionally compared against their expires_at
timestamp at read time. The in-memory stores sweep expired entries on write.

All store errors surface as CounterStoreError. Callers fail open on it.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Protocol, TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError

from auditguard.cache import redis_client
from auditguard.errors import CounterStoreError
from auditguard.models.security import SecurityBlock

logger = logging.getLogger(__name__)

T = TypeVar("T")

COUNTER_PREFIX = "counter:"
BLOCK_PREFIX = "block:"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CounterStore(Protocol):
    async def increment(self, key: str, window_seconds: int) -> int: ...

    async def get(self, key: str) -> int: ...

    async def set(self, key: str, value: int, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def ttl(self, key: str) -> int | None: ...


class BlockStore(Protocol):
    async def get_block(self, identifier: str) -> SecurityBlock | None: ...

    async def put_block(self, block: SecurityBlock) -> None: ...

    async def clear_block(self, identifier: str) -> None: ...


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class RedisCounterStore:
    def __init__(self, client: Redis) -> None:
        self._client = client

    async def increment(self, key: str, window_seconds: int) -> int:
        name = COUNTER_PREFIX + key
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.incr(name)
                pipe.expire(name, window_seconds, nx=True)
                count, _ = await pipe.execute()
            return int(count)
        except RedisError as exc:
            raise CounterStoreError(f"increment {key}: {exc}") from exc

    async def get(self, key: str) -> int:
        try:
            raw = await self._client.get(COUNTER_PREFIX + key)
        except RedisError as exc:
            raise CounterStoreError(f"get {key}: {exc}") from exc
        return int(raw) if raw is not None else 0

    async def set(self, key: str, value: int, ttl_seconds: int) -> None:
        try:
            await self._client.set(COUNTER_PREFIX + key, value, ex=ttl_seconds)
        except RedisError as exc:
            raise CounterStoreError(f"set {key}: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await redis_client.delete(self._client, COUNTER_PREFIX + key)
        except RedisError as exc:
            raise CounterStoreError(f"delete {key}: {exc}") from exc

    async def ttl(self, key: str) -> int | None:
        try:
            remaining = await self._client.ttl(COUNTER_PREFIX + key)
        except RedisError as exc:
            raise CounterStoreError(f"ttl {key}: {exc}") from exc
        return remaining if remaining >= 0 else None


class RedisBlockStore:
    def __init__(self, client: Redis) -> None:
        self._client = client

    async def get_block(self, identifier: str) -> SecurityBlock | None:
        try:
            data = await redis_client.get_json(self._client, BLOCK_PREFIX + identifier)
        except RedisError as exc:
            raise CounterStoreError(f"get block {identifier}: {exc}") from exc
        return SecurityBlock.model_validate(data) if data is not None else None

    async def put_block(self, block: SecurityBlock) -> None:
        # Measured from blocked_at so the TTL follows the clock that issued the block
        duration = (block.expires_at - block.blocked_at).total_seconds()
        if duration <= 0:
            return
        try:
            await redis_client.set_json(
                self._client,
                BLOCK_PREFIX + block.identifier,
                block.model_dump(mode="json"),
                ttl=math.ceil(duration),
            )
        except RedisError as exc:
            raise CounterStoreError(f"put block {block.identifier}: {exc}") from exc

    async def clear_block(self, identifier: str) -> None:
        try:
            await redis_client.delete(self._client, BLOCK_PREFIX + identifier)
        except RedisError as exc:
            raise CounterStoreError(f"clear block {identifier}: {exc}") from exc


# ---------------------------------------------------------------------------
# In-process
# ---------------------------------------------------------------------------


class InMemoryCounterStore:
    """Single-process store. Atomic per event loop via one asyncio.Lock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._counters: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> tuple[int, float] | None:
        entry = self._counters.get(key)
        if entry is not None and entry[1] <= self._clock():
            del self._counters[key]
            return None
        return entry

    def _sweep(self) -> None:
        now = self._clock()
        for key in [k for k, (_, expires_at) in self._counters.items() if expires_at <= now]:
            del self._counters[key]

    @property
    def size(self) -> int:
        return len(self._counters)

    async def increment(self, key: str, window_seconds: int) -> int:
        async with self._lock:
            self._sweep()
            entry = self._counters.get(key)
            if entry is None:
                entry = (0, self._clock() + window_seconds)
            count = entry[0] + 1
            self._counters[key] = (count, entry[1])
            return count

    async def get(self, key: str) -> int:
        async with self._lock:
            entry = self._live(key)
            return entry[0] if entry is not None else 0

    async def set(self, key: str, value: int, ttl_seconds: int) -> None:
        async with self._lock:
            self._sweep()
            self._counters[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._counters.pop(key, None)

    async def ttl(self, key: str) -> int | None:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            return math.ceil(entry[1] - self._clock())


class InMemoryBlockStore:
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._blocks: dict[str, SecurityBlock] = {}

    @property
    def size(self) -> int:
        return len(self._blocks)

    async def get_block(self, identifier: str) -> SecurityBlock | None:
        block = self._blocks.get(identifier)
        if block is not None and not block.is_in_effect(self._clock()):
            del self._blocks[identifier]
            return None
        return block

    async def put_block(self, block: SecurityBlock) -> None:
        now = self._clock()
        for identifier in [i for i, b in self._blocks.items() if not b.is_in_effect(now)]:
            del self._blocks[identifier]
        self._blocks[block.identifier] = block

    async def clear_block(self, identifier: str) -> None:
        self._blocks.pop(identifier, None)


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------


class _Fallback:
    """Routes calls to the primary store, or to the fallback while it errors."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._degraded = False

    @property
    def degraded(self) -> bool:
        return self._degraded

    async def _call(
        self, primary: Callable[[], Awaitable[T]], fallback: Callable[[], Awaitable[T]]
    ) -> T:
        try:
            result = await primary()
        except CounterStoreError as exc:
            if not self._degraded:
                logger.warning(
                    "%s unavailable, switching to in-memory fallback: %s", self._name, exc
                )
                self._degraded = True
            return await fallback()
        if self._degraded:
            logger.info("%s recovered, leaving in-memory fallback", self._name)
            self._degraded = False
        return result


class FallbackCounterStore(_Fallback):
    def __init__(self, primary: CounterStore, fallback: CounterStore | None = None) -> None:
        super().__init__("counter store")
        self._primary = primary
        self._fallback = fallback or InMemoryCounterStore()

    async def increment(self, key: str, window_seconds: int) -> int:
        return await self._call(
            lambda: self._primary.increment(key, window_seconds),
            lambda: self._fallback.increment(key, window_seconds),
        )

    async def get(self, key: str) -> int:
        return await self._call(lambda: self._primary.get(key), lambda: self._fallback.get(key))

    async def set(self, key: str, value: int, ttl_seconds: int) -> None:
        await self._call(
            lambda: self._primary.set(key, value, ttl_seconds),
            lambda: self._fallback.set(key, value, ttl_seconds),
        )

    async def delete(self, key: str) -> None:
        await self._call(lambda: self._primary.delete(key), lambda: self._fallback.delete(key))

    async def ttl(self, key: str) -> int | None:
        return await self._call(lambda: self._primary.ttl(key), lambda: self._fallback.ttl(key))


class FallbackBlockStore(_Fallback):
    def __init__(self, primary: BlockStore, fallback: BlockStore | None = None) -> None:
        super().__init__("block store")
        self._primary = primary
        self._fallback = fallback or InMemoryBlockStore()

    async def get_block(self, identifier: str) -> SecurityBlock | None:
        return await self._call(
            lambda: self._primary.get_block(identifier),
            lambda: self._fallback.get_block(identifier),
        )

    async def put_block(self, block: SecurityBlock) -> None:
        await self._call(
            lambda: self._primary.put_block(block), lambda: self._fallback.put_block(block)
        )

    async def clear_block(self, identifier: str) -> None:
        await self._call(
            lambda: self._primary.clear_block(identifier),
            lambda: self._fallback.clear_block(identifier),
        )
