# vibe_rooms/status_bus.py

import asyncio
import logging
import threading
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Union

from vibe_rooms.models import StatusKind, StatusPhase, StatusUpdate

logger = logging.getLogger("vibe_rooms")

Subscriber = Callable[[str, StatusUpdate], Union[None, Awaitable[None]]]


class StatusBus:
    """
    Best-effort, fire-and-forget broadcast of pipeline status per room.

    - Subscribers may be sync or async callables ``(room_id, update)``.
    - A failing subscriber is logged and skipped; publishing never raises,
      so a broadcast problem can not fail a pipeline stage.
    - Keeps the last ``history_size`` updates per room for polling clients.
    """

    def __init__(self, history_size: int = 50) -> None:
        self.history_size = history_size
        self._lock = threading.Lock()
        self._subscribers: List[Subscriber] = []
        self._history: Dict[str, Deque[StatusUpdate]] = {}

    def subscribe(self, fn: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(fn)

        def _unsubscribe() -> None:
            with self._lock:
                if fn in self._subscribers:
                    self._subscribers.remove(fn)

        return _unsubscribe

    def publish(self, room_id: str, update: StatusUpdate) -> None:
        with self._lock:
            history = self._history.setdefault(room_id, deque(maxlen=self.history_size))
            history.append(update)
            subscribers = list(self._subscribers)

        for fn in subscribers:
            try:
                result = fn(room_id, update)
                if asyncio.iscoroutine(result):
                    task = asyncio.ensure_future(result)
                    task.add_done_callback(self._log_task_failure)
            except Exception as e:
                logger.warning(f"[StatusBus] subscriber failed for room {room_id}: {e}")

    def emit(
        self,
        room_id: str,
        phase: StatusPhase,
        status: StatusKind,
        percent: int = 0,
        message: Optional[str] = None,
    ) -> None:
        self.publish(room_id, StatusUpdate(phase=phase, status=status, percent=percent, message=message))

    def history(self, room_id: str) -> List[StatusUpdate]:
        with self._lock:
            return list(self._history.get(room_id, ()))

    @staticmethod
    def _log_task_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"[StatusBus] async subscriber failed: {exc}")
