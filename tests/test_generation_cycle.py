import pytest

from vibe_rooms.analyzer import ConflictAnalyzer
from vibe_rooms.builder import Builder
from vibe_rooms.errors import ReasoningServiceError
from vibe_rooms.generation_cycle import GenerationCycle
from vibe_rooms.models import StatusKind, StatusPhase
from vibe_rooms.planner import Planner
from vibe_rooms.status_bus import StatusBus


def make_cycle(store, reasoning):
    bus = StatusBus()
    cycle = GenerationCycle(
        ConflictAnalyzer(store, reasoning, bus=bus),
        Planner(store, reasoning),
        Builder(store, reasoning),
        bus,
    )
    return cycle, bus


def milestones(bus, room_id):
    return [
        (u.phase, u.status, u.percent)
        for u in bus.history(room_id)
        if u.status != StatusKind.PROGRESS
    ]


class TestGenerationCycle:

    @pytest.mark.asyncio
    async def test_full_cycle_reports_every_phase(self, store, reasoning, room, alice, bob):
        store.insert_prompt_event(room.id, alice.id, "text", "a portfolio page")
        store.insert_prompt_event(room.id, bob.id, "text", "with a hero banner")
        cycle, bus = make_cycle(store, reasoning)

        result = await cycle.run(room.id)

        assert result.analysis_id and result.spec_id and result.patch_id
        assert milestones(bus, room.id) == [
            (StatusPhase.ANALYZING, StatusKind.STARTED, 10),
            (StatusPhase.ANALYZING, StatusKind.COMPLETED, 40),
            (StatusPhase.PLANNING, StatusKind.STARTED, 60),
            (StatusPhase.PLANNING, StatusKind.COMPLETED, 85),
            (StatusPhase.BUILDING, StatusKind.STARTED, 85),
            (StatusPhase.BUILDING, StatusKind.COMPLETED, 100),
        ]
        assert "index.html" in store.list_files(room.id)

    @pytest.mark.asyncio
    async def test_no_new_prompts_stops_after_analysis(self, store, reasoning, room):
        cycle, bus = make_cycle(store, reasoning)

        result = await cycle.run(room.id)

        assert result.analysis_id is None
        assert milestones(bus, room.id)[-1] == (StatusPhase.ANALYZING, StatusKind.COMPLETED, 100)
        assert reasoning.plan_calls == 0

    @pytest.mark.asyncio
    async def test_failure_is_broadcast_and_raised(self, store, reasoning, room, alice):
        store.insert_prompt_event(room.id, alice.id, "text", "something")

        def broken(spec, current):
            raise ReasoningServiceError("builder model unavailable")

        reasoning.patch_fn = broken
        cycle, bus = make_cycle(store, reasoning)

        with pytest.raises(ReasoningServiceError):
            await cycle.run(room.id)

        last = bus.history(room.id)[-1]
        assert last.phase == StatusPhase.BUILDING
        assert last.status == StatusKind.ERROR
        assert "builder model unavailable" in last.message
        # analysis and spec stay stored; only the build is missing
        assert len(store.list_analyses(room.id)) == 1
        assert len(store.list_specs(room.id)) == 1
        assert store.list_patches(room.id) == []
