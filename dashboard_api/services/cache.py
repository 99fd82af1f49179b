"""
ResponseCache - In-memory cache for read responses with TTL and a size bound.

Features:
- Per-entry TTL; expired entries read as absent even before they are swept
- Substring invalidation so a mutation can drop every read touching a resource
- Deferred, debounced janitor sweep that bounds memory
"""

import asyncio
import copy
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from loguru import logger


@dataclass
class CacheEntry:
    """A single cached response."""

    key: str
    data: Any
    inserted_at: datetime
    ttl: timedelta

    def is_valid(self, now: datetime) -> bool:
        return now - self.inserted_at < self.ttl


def make_cache_key(method: str, path: str, body: Any = None) -> str:
    """
    Build the cache key for a request.

    The key is a JSON array, so no choice of method, path or body can make
    two different requests collide, and the path still appears verbatim
    for substring invalidation.
    """
    serialized_body = (
        "" if body is None else json.dumps(body, sort_keys=True, default=str)
    )
    return json.dumps(
        [method.upper(), path, serialized_body],
        ensure_ascii=False,
        separators=(",", ":"),
    )


class ResponseCache:
    """
    Async-compatible response cache with a debounced janitor.

    Usage:
        cache = ResponseCache(max_size=100, default_ttl=timedelta(minutes=5))

        data = await cache.get(key)
        if data is None:
            data = await fetch()
            await cache.set(key, data)
            cache.schedule_sweep()

        # After a successful mutation of /orders
        await cache.invalidate("/orders")
    """

    def __init__(
        self,
        max_size: int = 100,
        default_ttl: timedelta = timedelta(minutes=5),
        sweep_delay: timedelta | None = None,
        clock: Callable[[], datetime] = datetime.now,
        debug: bool = False,
    ):
        self._memory: dict[str, CacheEntry] = {}
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._sweep_delay = sweep_delay if sweep_delay is not None else default_ttl
        self._clock = clock
        self._debug = debug
        self._lock = asyncio.Lock()
        self._sweep_task: asyncio.Task[int] | None = None
        self._stats = CacheStats()

    def __len__(self) -> int:
        return len(self._memory)

    def keys(self) -> list[str]:
        return list(self._memory)

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def sweep_pending(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def get(self, key: str) -> Any | None:
        """Return cached data, or None when missing or expired."""
        async with self._lock:
            entry = self._memory.get(key)
            if entry is None:
                self._stats.misses += 1
                self._log(f"MISS: {key[:80]}")
                return None

            if not entry.is_valid(self._clock()):
                del self._memory[key]
                self._stats.misses += 1
                self._log(f"EXPIRED: {key[:80]}")
                return None

            self._stats.hits += 1
            self._log(f"HIT: {key[:80]}")
            return copy.deepcopy(entry.data)

    async def set(self, key: str, data: Any, ttl: timedelta | None = None) -> None:
        """Insert or replace an entry. Stored data is a private copy."""
        if ttl is None:
            ttl = self._default_ttl
        entry = CacheEntry(
            key=key, data=copy.deepcopy(data), inserted_at=self._clock(), ttl=ttl
        )

        async with self._lock:
            self._memory[key] = entry
            self._log(f"SET: {key[:80]} (TTL: {ttl.total_seconds()}s)")

    async def invalidate(self, pattern: str | None = None) -> int:
        """
        Drop entries whose key contains pattern, or everything if no pattern.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            if not pattern:
                count = len(self._memory)
                self._memory.clear()
                self._log(f"CLEAR: {count} entries removed")
                return count

            keys_to_delete = [k for k in self._memory if pattern in k]
            for key in keys_to_delete:
                del self._memory[key]

            if keys_to_delete:
                self._log(
                    f"INVALIDATE: {len(keys_to_delete)} entries matching '{pattern}'"
                )
            return len(keys_to_delete)

    async def sweep(self) -> int:
        """
        Remove expired entries, then trim oldest-first to half of max_size
        if still over max_size.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            now = self._clock()
            expired = [k for k, v in self._memory.items() if not v.is_valid(now)]
            for key in expired:
                del self._memory[key]

            evicted = 0
            if len(self._memory) > self._max_size:
                target = self._max_size // 2
                oldest_first = sorted(
                    self._memory.values(), key=lambda e: e.inserted_at
                )
                for entry in oldest_first[: len(self._memory) - target]:
                    del self._memory[entry.key]
                    evicted += 1
                self._stats.evictions += evicted

            if expired or evicted:
                self._log(f"SWEEP: {len(expired)} expired, {evicted} evicted")
            return len(expired) + evicted

    def schedule_sweep(self) -> None:
        """Schedule a deferred sweep unless one is already pending."""
        if self.sweep_pending:
            return
        self._sweep_task = asyncio.get_running_loop().create_task(
            self._deferred_sweep()
        )

    async def _deferred_sweep(self) -> int:
        await asyncio.sleep(self._sweep_delay.total_seconds())
        return await self.sweep()

    async def close(self) -> None:
        """Cancel a pending sweep."""
        if self._sweep_task is not None and not self._sweep_task.done():
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._memory)
        self._stats.max_size = self._max_size
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[ResponseCache] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
