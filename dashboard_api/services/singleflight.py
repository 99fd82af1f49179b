"""
SingleFlight - At most one running call per key.

Whoever asks first becomes the leader and its task is parked under the
key. Later callers await the parked task and receive the leader's return
value or exception. The key is released as soon as the task settles.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class SingleFlight:
    """
    Usage:
        flight = SingleFlight()
        token = await flight.do("session-refresh", renew)
    """

    def __init__(self, debug: bool = False):
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._lock = asyncio.Lock()
        self._debug = debug
        self._stats = SingleFlightStats()

    async def do(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        async with self._lock:
            task = self._tasks.get(key)
            if task is None:
                self._stats.executed += 1
                task = asyncio.create_task(self._lead(key, fn))
                self._tasks[key] = task
                self._log(f"'{key}' leader started")
            else:
                self._log(f"'{key}' waiting on leader")

        return await task

    async def _lead(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fn()
        finally:
            async with self._lock:
                # cancel_all may already have released it, or a new leader taken over
                if self._tasks.get(key) is asyncio.current_task():
                    del self._tasks[key]
            self._log(f"'{key}' released")

    async def cancel_all(self) -> int:
        """Cancel every running call; returns how many were cancelled."""
        async with self._lock:
            tasks = list(self._tasks.values())
            self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            self._log(f"cancelled {len(tasks)} running calls")
        return len(tasks)

    def get_stats(self) -> "SingleFlightStats":
        self._stats.running = len(self._tasks)
        return self._stats

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[SingleFlight] {message}")


@dataclass
class SingleFlightStats:
    executed: int = 0
    running: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"executed": self.executed, "running": self.running}
