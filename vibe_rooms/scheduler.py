# vibe_rooms/scheduler.py
"""
Per-room batching of prompt events before a generation cycle runs.

Policies:

- ``window`` (default): the first event in an idle room opens a window of
  ``window_seconds``. A second event inside the window triggers the cycle
  at once; otherwise the timer does. Events that arrive while the cycle is
  running are counted; when it finishes they open a fresh window, or the
  room goes back to idle if there were none.
- ``debounce``: every event restarts a ``debounce_seconds`` timer; the cycle
  runs when the timer fires. No early trigger, no suppression while a cycle
  is running.

Time only enters through the ``Timer`` object, so the state machine can be
driven by a fake clock.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from vibe_rooms import config

logger = logging.getLogger("vibe_rooms")

IDLE = "idle"
WINDOW_OPEN = "window_open"
TRIGGERING = "triggering"

WINDOW = "window"
DEBOUNCE = "debounce"


class AsyncioTimer:
    """Timer backed by the running event loop."""

    def now(self) -> float:
        return asyncio.get_running_loop().time()

    def schedule(self, delay: float, callback: Callable[[], None]) -> Any:
        return asyncio.get_running_loop().call_later(delay, callback)

    def cancel(self, handle: Any) -> None:
        handle.cancel()


@dataclass
class RoomBatch:
    state: str = IDLE
    event_count: int = 0
    deadline: Optional[float] = None
    timer: Any = None
    pending_during_trigger: int = 0


@dataclass
class _Stats:
    triggers: int = 0
    failures: int = 0
    tasks: Set[asyncio.Task] = field(default_factory=set)


class BatchScheduler:
    def __init__(
        self,
        run_cycle: Callable[[str], Awaitable[Any]],
        timer=None,
        policy: str = config.BATCH_POLICY,
        window_seconds: float = config.BATCH_WINDOW_SECONDS,
        debounce_seconds: float = config.DEBOUNCE_SECONDS,
    ):
        if policy not in (WINDOW, DEBOUNCE):
            raise ValueError(f"Unknown batch policy: {policy}")
        self.run_cycle = run_cycle
        self.timer = timer or AsyncioTimer()
        self.policy = policy
        self.window_seconds = window_seconds
        self.debounce_seconds = debounce_seconds
        self._rooms: Dict[str, RoomBatch] = {}
        self._stats = _Stats()

    # -----------------------
    # Inspection
    # -----------------------

    def room(self, room_id: str) -> RoomBatch:
        return self._rooms.setdefault(room_id, RoomBatch())

    def state(self, room_id: str) -> str:
        return self.room(room_id).state

    @property
    def trigger_count(self) -> int:
        return self._stats.triggers

    async def drain(self) -> None:
        """Wait for every running cycle, including ones those cycles start."""
        while self._stats.tasks:
            await asyncio.gather(*list(self._stats.tasks), return_exceptions=True)

    # -----------------------
    # Events
    # -----------------------

    def on_event(self, room_id: str) -> None:
        if self.policy == DEBOUNCE:
            self._on_event_debounce(room_id)
        else:
            self._on_event_window(room_id)

    def _on_event_window(self, room_id: str) -> None:
        batch = self.room(room_id)

        if batch.state == TRIGGERING:
            batch.pending_during_trigger += 1
            logger.debug(f"[Scheduler] room {room_id}: event counted during running cycle")
            return

        if batch.state == IDLE:
            self._open_window(room_id, batch, event_count=1)
            return

        # window open: a second event triggers right away
        batch.event_count += 1
        if batch.event_count >= 2:
            logger.info(f"[Scheduler] room {room_id}: second event in window, triggering early")
            self._trigger(room_id)

    def _on_event_debounce(self, room_id: str) -> None:
        batch = self.room(room_id)
        if batch.timer is not None:
            self.timer.cancel(batch.timer)
        batch.event_count += 1
        batch.deadline = self.timer.now() + self.debounce_seconds
        batch.timer = self.timer.schedule(self.debounce_seconds, lambda: self._on_debounce_fired(room_id))
        if batch.state == IDLE:
            batch.state = WINDOW_OPEN

    # -----------------------
    # Transitions
    # -----------------------

    def _open_window(self, room_id: str, batch: RoomBatch, event_count: int) -> None:
        batch.state = WINDOW_OPEN
        batch.event_count = event_count
        batch.deadline = self.timer.now() + self.window_seconds
        batch.timer = self.timer.schedule(self.window_seconds, lambda: self._on_window_expired(room_id))
        logger.debug(f"[Scheduler] room {room_id}: window open until {batch.deadline:.2f}")

    def _on_window_expired(self, room_id: str) -> None:
        batch = self.room(room_id)
        batch.timer = None
        if batch.state == WINDOW_OPEN:
            logger.info(f"[Scheduler] room {room_id}: window expired, triggering")
            self._trigger(room_id)

    def _on_debounce_fired(self, room_id: str) -> None:
        batch = self.room(room_id)
        batch.timer = None
        batch.state = IDLE
        batch.event_count = 0
        batch.deadline = None
        self._start_cycle(room_id)

    def _trigger(self, room_id: str) -> None:
        batch = self.room(room_id)
        if batch.timer is not None:
            self.timer.cancel(batch.timer)
            batch.timer = None
        batch.state = TRIGGERING
        batch.event_count = 0
        batch.deadline = None
        batch.pending_during_trigger = 0
        self._start_cycle(room_id)

    def _start_cycle(self, room_id: str) -> None:
        self._stats.triggers += 1
        task = asyncio.ensure_future(self._run(room_id))
        self._stats.tasks.add(task)
        task.add_done_callback(self._stats.tasks.discard)

    async def _run(self, room_id: str) -> None:
        try:
            await self.run_cycle(room_id)
        except Exception as e:
            # the cycle has already broadcast the error; the next event retries
            self._stats.failures += 1
            logger.error(f"[Scheduler] room {room_id}: cycle failed: {e}")
        finally:
            if self.policy == WINDOW:
                self._reset(room_id)

    def _reset(self, room_id: str) -> None:
        batch = self.room(room_id)
        pending = batch.pending_during_trigger
        batch.pending_during_trigger = 0
        if pending > 0:
            logger.info(f"[Scheduler] room {room_id}: {pending} event(s) arrived during the cycle, opening a new window")
            self._open_window(room_id, batch, event_count=pending)
        else:
            batch.state = IDLE
            batch.event_count = 0
            batch.deadline = None
