# vibe_rooms/analyzer.py

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from vibe_rooms import config
from vibe_rooms.errors import MalformedResponseError
from vibe_rooms.event_store import EventStore
from vibe_rooms.models import AnalysisResult, PromptEvent, StatusKind, StatusPhase
from vibe_rooms.reasoning_service import AnalysisComplete, ThinkingChunk
from vibe_rooms.single_flight import SingleFlight
from vibe_rooms.status_bus import StatusBus

logger = logging.getLogger("vibe_rooms")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_prioritized(analysis: AnalysisResult, events: List[PromptEvent]) -> AnalysisResult:
    """
    Every analyzed event appears exactly once in the priority list.
    Duplicates and ids outside the batch are dropped; analyzed events the model
    left out are appended in chronological order (all of them, when the model
    gave no list at all).
    """
    analyzed = {e.id for e in events}
    seen = set()
    ordered = []
    for pid in analysis.prioritized_prompts:
        if pid in analyzed and pid not in seen:
            seen.add(pid)
            ordered.append(pid)

    missing = [e.id for e in sorted(events, key=lambda e: e.created_at) if e.id not in seen]
    if missing:
        if ordered:
            logger.warning(
                f"[Analyzer] prioritizedPrompts left out {len(missing)} of {len(events)} event(s); "
                f"appending them in chronological order"
            )
        else:
            logger.warning(
                f"[Analyzer] empty prioritizedPrompts for {len(events)} event(s); "
                f"falling back to chronological order"
            )
        ordered.extend(missing)

    return analysis.model_copy(update={"prioritized_prompts": ordered})


class ConflictAnalyzer:
    """
    Classifies the room's not-yet-analyzed prompts and stores a PromptAnalysis.
    One run per room at a time; concurrent callers join the running one.
    """

    def __init__(
        self,
        store: EventStore,
        reasoning,
        locks: Optional[SingleFlight] = None,
        bus: Optional[StatusBus] = None,
        lookback_seconds: float = config.ANALYZER_LOOKBACK_SECONDS,
        event_limit: int = config.ANALYZER_EVENT_LIMIT,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.reasoning = reasoning
        self.locks = locks or SingleFlight("analyzer")
        self.bus = bus
        self.lookback_seconds = lookback_seconds
        self.event_limit = event_limit
        self.clock = clock

    async def run(self, room_id: str) -> Optional[str]:
        """Returns the new analysis id, or None when there was nothing to analyze."""
        return await self.locks.acquire_or_join(room_id, lambda: self._run(room_id))

    async def _pending_events(self, room_id: str) -> List[PromptEvent]:
        latest = await asyncio.to_thread(self.store.latest_analysis, room_id)
        if latest is not None:
            cutoff = latest.created_at
        else:
            cutoff = self.clock() - timedelta(seconds=self.lookback_seconds)
        return await asyncio.to_thread(self.store.events_after, room_id, cutoff, self.event_limit)

    async def _run(self, room_id: str) -> Optional[str]:
        events = await self._pending_events(room_id)
        if not events:
            logger.info(f"[Analyzer] room {room_id}: no new prompts")
            return None

        logger.info(f"[Analyzer] room {room_id}: analyzing {len(events)} prompt(s)")
        latest_spec = await asyncio.to_thread(self.store.latest_spec, room_id)
        current_spec = latest_spec.spec if latest_spec else None

        result: Optional[AnalysisComplete] = None
        async for message in self.reasoning.analyze(events, current_spec):
            if isinstance(message, ThinkingChunk):
                if self.bus is not None:
                    self.bus.emit(room_id, StatusPhase.ANALYZING, StatusKind.PROGRESS, 25, message.text)
            elif isinstance(message, AnalysisComplete):
                result = message

        if result is None:
            raise MalformedResponseError("Analyzer stream ended without a classification")

        analysis = ensure_prioritized(result.analysis, events)
        stored = await asyncio.to_thread(
            self.store.insert_analysis,
            room_id,
            [e.id for e in events],
            analysis,
            result.thinking_trace,
        )
        logger.info(
            f"[Analyzer] room {room_id}: stored analysis {stored.id} "
            f"({len(analysis.additive)} additive, {len(analysis.conflicts)} conflicts)"
        )
        return stored.id
