from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Protocol

import redis.asyncio as redis


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float

    @property
    def reset_at_ms(self) -> int:
        return int(round(self.reset_at * 1000))

    def retry_after(self, now: float) -> int:
        return max(0, int(self.reset_at - now + 0.999))


class RateLimiter(Protocol):
    @property
    def clock(self) -> Callable[[], float]:
        ...

    async def allow(self, key: str, max_requests: int, window_seconds: float) -> RateDecision:
        ...


@dataclass
class _RateRecord:
    count: int
    reset_at: float


class InMemoryRateLimiter:
    """Fixed-window counter per key, reset lazily by the first request after expiry."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._records: Dict[str, _RateRecord] = {}

    @property
    def clock(self) -> Callable[[], float]:
        return self._clock

    async def allow(self, key: str, max_requests: int, window_seconds: float) -> RateDecision:
        # no await between read and write, so each key is updated atomically on the loop
        now = self._clock()
        record = self._records.get(key)
        if record is None or now >= record.reset_at:
            record = _RateRecord(count=1, reset_at=now + window_seconds)
            self._records[key] = record
            return RateDecision(True, max_requests, max_requests - 1, record.reset_at)
        if record.count >= max_requests:
            return RateDecision(False, max_requests, 0, record.reset_at)
        record.count += 1
        return RateDecision(True, max_requests, max_requests - record.count, record.reset_at)


class RedisRateLimiter:
    """Same fixed-window semantics, shared by every worker pointed at one Redis."""

    _FIXED_WINDOW_SCRIPT = """
    local now_ms = tonumber(ARGV[1])
    local window_ms = tonumber(ARGV[2])
    local max_requests = tonumber(ARGV[3])

    local reset_at = tonumber(redis.call('HGET', KEYS[1], 'reset_at') or '0')
    if reset_at <= now_ms then
      reset_at = now_ms + window_ms
      redis.call('HSET', KEYS[1], 'count', 1, 'reset_at', reset_at)
      redis.call('PEXPIRE', KEYS[1], window_ms)
      return {1, reset_at, 1}
    end

    local count = tonumber(redis.call('HGET', KEYS[1], 'count') or '0')
    if count >= max_requests then
      return {count, reset_at, 0}
    end
    count = redis.call('HINCRBY', KEYS[1], 'count', 1)
    return {count, reset_at, 1}
    """

    def __init__(
        self,
        client: redis.Redis,
        key_prefix: str = "medifindr:rate",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._key_prefix = key_prefix
        self._clock = clock

    @property
    def clock(self) -> Callable[[], float]:
        return self._clock

    async def allow(self, key: str, max_requests: int, window_seconds: float) -> RateDecision:
        now_ms = int(self._clock() * 1000)
        count, reset_at_ms, allowed = await self._client.eval(
            self._FIXED_WINDOW_SCRIPT,
            1,
            f"{self._key_prefix}:{key}",
            now_ms,
            int(window_seconds * 1000),
            max_requests,
        )
        remaining = max(0, max_requests - int(count)) if int(allowed) else 0
        return RateDecision(bool(int(allowed)), max_requests, remaining, int(reset_at_ms) / 1000)
