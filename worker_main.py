# worker_main.py
"""
Prompt insert watcher + batching scheduler

Prompts may be inserted by processes other than the API server (another
service, a realtime gateway, a script). This worker polls prompt_events for
rows created after its watermark and feeds each one to its own
BatchScheduler, which decides when to run the generation cycle for a room.

Run it with SCHEDULE_ON_SUBMIT=false on the API server, otherwise both
processes will batch the same prompts.

Watermark
---------
Starts at process start time: prompts created before the worker came up are
not replayed. The query is inclusive of the watermark timestamp, and the ids
already seen at exactly that timestamp are skipped, so rows sharing a
timestamp are not lost.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Set

from vibe_rooms import config
from vibe_rooms.backend import Backend
from vibe_rooms.models import PromptEvent

logger = logging.getLogger("vibe_rooms")


class PromptWatcher:
    def __init__(
        self,
        backend: Backend,
        poll_interval: float = config.WATCH_POLL_INTERVAL,
        batch_limit: int = 500,
        start_at: Optional[datetime] = None,
    ):
        self.backend = backend
        self.poll_interval = poll_interval
        self.batch_limit = batch_limit
        self.watermark = start_at or datetime.now(timezone.utc)
        self._seen_at_watermark: Set[str] = set()

    async def poll_once(self) -> List[PromptEvent]:
        rows = await asyncio.to_thread(
            self.backend.store.events_inserted_after, self.watermark, self.batch_limit, True
        )
        fresh = [e for e in rows if e.id not in self._seen_at_watermark]

        for event in fresh:
            if event.created_at > self.watermark:
                self.watermark = event.created_at
                self._seen_at_watermark = set()
            self._seen_at_watermark.add(event.id)
            logger.debug(f"[PromptWatcher] new prompt {event.id} in room {event.room_id}")
            self.backend.scheduler.on_event(event.room_id)

        return fresh

    async def run(self) -> None:
        logger.info(
            f"PromptWatcher running - policy={self.backend.scheduler.policy} "
            f"poll_interval={self.poll_interval}s"
        )
        while True:
            try:
                fresh = await self.poll_once()
                if fresh:
                    logger.info(f"[PromptWatcher] {len(fresh)} new prompt(s)")
            except Exception as e:
                # keep polling; the next round retries from the same watermark
                logger.error(f"[PromptWatcher] poll failed: {e}")
            await asyncio.sleep(self.poll_interval)


def main() -> None:
    backend = Backend(schedule_on_submit=False)
    watcher = PromptWatcher(backend)
    asyncio.run(watcher.run())


if __name__ == "__main__":
    main()
