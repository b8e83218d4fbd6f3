# vibe_rooms/planner.py

import asyncio
import hashlib
import json
import logging
from typing import Dict, List, Optional

from vibe_rooms.errors import InvalidInputError
from vibe_rooms.event_store import EventStore
from vibe_rooms.models import AnalysisResult, DesignSpec, PromptEvent
from vibe_rooms.single_flight import SingleFlight

logger = logging.getLogger("vibe_rooms")


def spec_hash(spec: DesignSpec) -> str:
    """SHA-256 of the canonical JSON of the spec content (specHash excluded)."""
    canonical = json.dumps(spec.content(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def order_by_priority(events: List[PromptEvent], prioritized_ids: List[str]) -> List[PromptEvent]:
    """
    Events in priority order. Ids that match no analyzed event are dropped;
    if nothing is left, all events in chronological order.
    """
    by_id: Dict[str, PromptEvent] = {e.id: e for e in events}
    ordered = []
    for pid in prioritized_ids:
        event = by_id.pop(pid, None)
        if event is not None:
            ordered.append(event)
    if ordered:
        return ordered
    logger.warning("[Planner] no prioritized prompt matched the analyzed events; using chronological order")
    return sorted(events, key=lambda e: e.created_at)


def build_directive(analysis: AnalysisResult, events: List[PromptEvent]) -> str:
    texts = {e.id: e.display_text() for e in events}
    lines: List[str] = []

    if analysis.conflicts:
        lines.append("CONFLICT RESOLUTION:")
        for conflict in analysis.conflicts:
            losers = [f'"{texts[pid]}"' for pid in conflict.losers() if pid in texts]
            winner = texts.get(conflict.winner, conflict.winner)
            lines.append(f'- "{winner}" WINS over {", ".join(losers) or "(none)"} ({conflict.type.value})')
            if conflict.reasoning:
                lines.append(f"  Reasoning: {conflict.reasoning}")
            lines.append("  Implement the winner's intent, ignore the conflicting aspects of the losers.")
        lines.append("")

    if analysis.additive:
        lines.append("ADDITIVE PROMPTS (implement all of these together):")
        for i, group in enumerate(analysis.additive, start=1):
            lines.append(f"Group {i}: {group.explanation}")
            for pid in group.prompt_ids:
                if pid in texts:
                    lines.append(f'  - "{texts[pid]}"')
        lines.append("")

    lines.append(
        "INSTRUCTIONS: Implement these prompts according to the conflict resolution above. "
        "Winners take precedence. Additive prompts should all be included."
    )
    return "\n".join(lines)


class Planner:
    """
    Turns a stored analysis into a DesignSpec, merged with the room's latest
    spec. Specs are content-addressed: an already-stored hash is returned
    as-is and no second row is written.
    """

    def __init__(self, store: EventStore, reasoning, locks: Optional[SingleFlight] = None):
        self.store = store
        self.reasoning = reasoning
        self.locks = locks or SingleFlight("planner")

    async def run(self, room_id: str, analysis_id: str) -> Optional[str]:
        return await self.locks.acquire_or_join(room_id, lambda: self._run(room_id, analysis_id))

    async def _run(self, room_id: str, analysis_id: str) -> Optional[str]:
        stored = await asyncio.to_thread(self.store.get_analysis, analysis_id)
        if stored is None or stored.room_id != room_id:
            raise InvalidInputError(f"Unknown analysis {analysis_id} for room {room_id}")

        events = await asyncio.to_thread(self.store.events_by_ids, room_id, stored.prompt_event_ids)
        if not events:
            logger.info(f"[Planner] analysis {analysis_id} covers no stored events")
            return None

        prioritized = order_by_priority(events, stored.analysis.prioritized_prompts)
        logger.info(f"[Planner] room {room_id}: planning from {len(prioritized)}/{len(events)} prompt(s)")

        latest = await asyncio.to_thread(self.store.latest_spec, room_id)
        directive = build_directive(stored.analysis, events)

        spec = await self.reasoning.plan(
            directive, prioritized, latest.spec if latest else None, stored.analysis
        )
        spec.spec_hash = spec_hash(spec)

        existing = await asyncio.to_thread(self.store.find_spec_by_hash, room_id, spec.spec_hash)
        if existing is not None:
            logger.info(f"[Planner] room {room_id}: spec {spec.spec_hash[:12]} already stored as {existing.id}")
            return existing.id

        row = await asyncio.to_thread(self.store.insert_spec, room_id, analysis_id, spec.spec_hash, spec)
        logger.info(f"[Planner] room {room_id}: stored spec {row.id} ({spec.spec_hash[:12]})")
        return row.id
