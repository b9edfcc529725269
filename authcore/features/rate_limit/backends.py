"""Counter stores backing the rate limiter.

The limiter only needs ``increment(key, window) -> CounterState``. The
in-process store suits single-instance deployments; the Redis store shares
counters between instances. Neither is a strict distributed limiter.
"""

import hashlib
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

import redis.asyncio as aioredis

from authcore.shared.clock import Clock, utc_now

from .schemas import CounterState


class CounterStore(Protocol):
    async def increment(self, key: str, window_seconds: float) -> CounterState: ...

    async def peek(self, key: str) -> CounterState | None: ...

    async def reset(self, key: str) -> None: ...

    async def sweep(self) -> int: ...


@dataclass
class _Bucket:
    count: int
    window_start: datetime
    window_seconds: float

    @property
    def reset_at(self) -> datetime:
        return self.window_start + timedelta(seconds=self.window_seconds)


class InMemoryCounterStore:
    """Fixed-window counters held in a process-local map."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: dict[str, _Bucket] = {}

    async def increment(self, key: str, window_seconds: float) -> CounterState:
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None or now >= bucket.window_start + timedelta(seconds=window_seconds):
                bucket = _Bucket(count=1, window_start=now, window_seconds=window_seconds)
                self._buckets[key] = bucket
            else:
                bucket.count += 1
                bucket.window_seconds = window_seconds
            return CounterState(count=bucket.count, reset_at=bucket.reset_at)

    async def peek(self, key: str) -> CounterState | None:
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None or now >= bucket.reset_at:
                return None
            return CounterState(count=bucket.count, reset_at=bucket.reset_at)

    async def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    async def sweep(self) -> int:
        """Drop buckets whose window has closed (they are back at full capacity)."""
        now = self._clock()
        with self._lock:
            stale = [key for key, bucket in self._buckets.items() if now >= bucket.reset_at]
            for key in stale:
                del self._buckets[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._buckets)


class RedisCounterStore:
    """Fixed-window counters shared through Redis INCR + PEXPIRE."""

    def __init__(self, client: aioredis.Redis, *, prefix: str = "rate:", clock: Clock = utc_now) -> None:
        self.client = client
        self._prefix = prefix
        self._clock = clock

    @classmethod
    def from_url(cls, redis_url: str, *, socket_timeout: float = 5.0) -> "RedisCounterStore":
        client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    def _key(self, key: str) -> str:
        # Hash the logical key so identifiers cannot inject delimiters.
        digest = hashlib.sha256(key.encode()).hexdigest()
        return f"{self._prefix}{digest}"

    async def increment(self, key: str, window_seconds: float) -> CounterState:
        safe_key = self._key(key)
        window_ms = max(1, int(window_seconds * 1000))

        # INCR and the first-hit expiry commit together
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.incr(safe_key)
            pipe.pexpire(safe_key, window_ms, nx=True)
            pipe.pttl(safe_key)
            count, _, ttl_ms = await pipe.execute()

        ttl_ms = int(ttl_ms)
        if ttl_ms < 0:
            ttl_ms = window_ms
        return CounterState(count=int(count), reset_at=self._clock() + timedelta(milliseconds=ttl_ms))

    async def peek(self, key: str) -> CounterState | None:
        safe_key = self._key(key)
        raw = await self.client.get(safe_key)
        if raw is None:
            return None
        ttl_ms = max(0, int(await self.client.pttl(safe_key)))
        return CounterState(count=int(raw), reset_at=self._clock() + timedelta(milliseconds=ttl_ms))

    async def reset(self, key: str) -> None:
        await self.client.delete(self._key(key))

    async def sweep(self) -> int:
        # Keys expire on their own.
        return 0

    async def close(self) -> None:
        await self.client.aclose()
