# vibe_rooms/generation_cycle.py

import logging
from dataclasses import dataclass
from typing import Optional

from vibe_rooms.analyzer import ConflictAnalyzer
from vibe_rooms.builder import Builder
from vibe_rooms.models import StatusKind, StatusPhase
from vibe_rooms.planner import Planner
from vibe_rooms.status_bus import StatusBus

logger = logging.getLogger("vibe_rooms")


@dataclass
class CycleResult:
    analysis_id: Optional[str] = None
    spec_id: Optional[str] = None
    patch_id: Optional[str] = None


class GenerationCycle:
    """analyze -> plan -> build for one room."""

    def __init__(self, analyzer: ConflictAnalyzer, planner: Planner, builder: Builder, bus: StatusBus):
        self.analyzer = analyzer
        self.planner = planner
        self.builder = builder
        self.bus = bus

    async def run(self, room_id: str) -> CycleResult:
        result = CycleResult()
        phase = StatusPhase.ANALYZING
        try:
            self.bus.emit(room_id, phase, StatusKind.STARTED, 10, "Analyzing prompts")
            result.analysis_id = await self.analyzer.run(room_id)
            if result.analysis_id is None:
                self.bus.emit(room_id, phase, StatusKind.COMPLETED, 100, "No new prompts")
                return result
            self.bus.emit(room_id, phase, StatusKind.COMPLETED, 40, "Analysis complete")

            phase = StatusPhase.PLANNING
            self.bus.emit(room_id, phase, StatusKind.STARTED, 60, "Planning design")
            result.spec_id = await self.planner.run(room_id, result.analysis_id)
            if result.spec_id is None:
                self.bus.emit(room_id, phase, StatusKind.COMPLETED, 100, "Nothing to plan")
                return result
            self.bus.emit(room_id, phase, StatusKind.COMPLETED, 85, "Design planned")

            phase = StatusPhase.BUILDING
            self.bus.emit(room_id, phase, StatusKind.STARTED, 85, "Building files")
            result.patch_id = await self.builder.run(room_id, result.spec_id)
            self.bus.emit(room_id, phase, StatusKind.COMPLETED, 100, "Build complete")
        except Exception as e:
            logger.error(f"[GenerationCycle] room {room_id} failed during {phase.value}: {e}")
            self.bus.emit(room_id, phase, StatusKind.ERROR, 0, str(e))
            raise

        logger.info(
            f"[GenerationCycle] room {room_id}: analysis={result.analysis_id} "
            f"spec={result.spec_id} patch={result.patch_id}"
        )
        return result
