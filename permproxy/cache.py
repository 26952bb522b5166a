"""
permproxy.cache
~~~~~~~~~~~~~~~
Time-bounded maps for identities and permits fetched from a remote API,
and the background task that purges expired entries.

Reads are plain dict lookups: on the event loop nothing can interleave
with them, so any number of readers run side by side. Writes and sweeps
hold an ``asyncio.Lock`` for the mutation only; callers perform network
I/O before taking it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Iterable, List, Optional, Protocol, TypeVar

MIN_INTERVAL = 60

log = logging.getLogger("permproxy.cache")


class Expiring(Protocol):
    valid_until: int


V = TypeVar("V", bound=Expiring)


@dataclass(slots=True)
class User:
    username: str
    valid_until: int

    @classmethod
    def create(cls, username: str, cache_time: int, now: Optional[int] = None) -> "User":
        if now is None:
            now = int(time.time())
        return cls(username, now + cache_time)


class TTLCache(Generic[V]):
    """Key -> record map honouring each record's ``valid_until``.

    With ``inclusive`` a record is still served in its expiry second.
    """

    def __init__(self, inclusive: bool = False) -> None:
        self.inclusive = inclusive
        self._data: Dict[str, V] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def peek(self, key: str) -> Optional[V]:
        """Return the stored record regardless of age."""
        return self._data.get(key)

    def get(self, key: str, now: int) -> Optional[V]:
        record = self._data.get(key)
        if record is None:
            return None
        if record.valid_until > now or (self.inclusive and record.valid_until == now):
            return record
        return None

    async def put(self, key: str, record: V) -> None:
        async with self._lock:
            self._data[key] = record

    async def sweep(self, now: int) -> int:
        """Drop every record past its ``valid_until``; return how many."""
        async with self._lock:
            expired = [k for k, r in self._data.items() if r.valid_until < now]
            for key in expired:
                del self._data[key]
        return len(expired)


class Sweeper:
    """Periodically sweeps a set of caches until stopped."""

    def __init__(
        self,
        caches: Iterable[TTLCache],
        interval: int,
        clock: Callable[[], float] = time.time,
        name: str = "cache",
    ) -> None:
        self.caches: List[TTLCache] = list(caches)
        self.interval = max(MIN_INTERVAL, interval)
        self.clock = clock
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def sweep_once(self) -> int:
        now = int(self.clock())
        removed = 0
        for cache in self.caches:
            removed += await cache.sweep(now)
        if removed:
            log.debug({"event": "sweep", "cache": self.name, "removed": removed})
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep_once()
            except Exception:
                log.exception({"event": "sweep_error", "cache": self.name})
