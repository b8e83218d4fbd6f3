# vibe_rooms/single_flight.py

import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, Dict, Hashable, List, TypeVar

logger = logging.getLogger("vibe_rooms")

T = TypeVar("T")


class SingleFlight:
    """
    Keyed single-flight registry.

    - The first caller for a key starts the work and registers its task.
    - Concurrent callers for the same key await that same task (same result,
      same exception).
    - The registration is dropped when the task settles, on every exit path,
      so a failed key can be retried right away.
    - Joined callers cannot cancel the shared work: they await a shielded view
      of it.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._in_flight: Dict[Hashable, asyncio.Task] = {}

    async def acquire_or_join(self, key: Hashable, work: Callable[[], Awaitable[T]]) -> T:
        with self._lock:
            task = self._in_flight.get(key)
            if task is None:
                task = asyncio.ensure_future(self._run(key, work))
                self._in_flight[key] = task
                logger.debug(f"[{self.name}] started work for key={key}")
            else:
                logger.debug(f"[{self.name}] joined in-flight work for key={key}")
        return await asyncio.shield(task)

    async def _run(self, key: Hashable, work: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await work()
        finally:
            self._release(key)

    def _release(self, key: Hashable) -> None:
        with self._lock:
            self._in_flight.pop(key, None)

    def is_in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._in_flight

    def keys(self) -> List[Hashable]:
        with self._lock:
            return list(self._in_flight)
