from __future__ import annotations

import time
from typing import Any, Callable, Dict, NamedTuple

from .observability import observe_cache_lookup


class CacheEntry(NamedTuple):
    value: Any
    expires_at: float


class CacheStore:
    """Process-lifetime cache of upstream responses, namespaced by bucket.

    Stale entries are ignored on read but left in place; the next successful
    fetch for the same key overwrites them. Nothing is evicted by size.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._buckets: Dict[str, Dict[str, CacheEntry]] = {}

    def get(self, bucket: str, key: str) -> Any | None:
        entry = self._buckets.get(bucket, {}).get(key)
        if entry is None or self._clock() >= entry.expires_at:
            observe_cache_lookup(bucket, hit=False)
            return None
        observe_cache_lookup(bucket, hit=True)
        return entry.value

    def put(self, bucket: str, key: str, value: Any, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            return
        # single assignment: readers see either the old entry or the new one
        self._buckets.setdefault(bucket, {})[key] = CacheEntry(
            value=value, expires_at=self._clock() + ttl_seconds
        )

    def size(self) -> int:
        return sum(len(entries) for entries in self._buckets.values())

    def stats(self) -> dict[str, int]:
        return {name: len(entries) for name, entries in sorted(self._buckets.items())}
