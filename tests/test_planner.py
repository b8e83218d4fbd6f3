import asyncio

import pytest

from vibe_rooms.analyzer import ConflictAnalyzer
from vibe_rooms.models import (
    AdditiveGroup,
    AnalysisResult,
    Component,
    Conflict,
    ConflictType,
    DesignSpec,
    Palette,
    Tension,
)
from vibe_rooms.planner import Planner, build_directive, order_by_priority, spec_hash


class TestSpecHash:

    def test_hash_ignores_existing_spec_hash(self):
        spec = DesignSpec(palette=Palette(bg="#000", fg="#fff"), components=[Component(type="Hero")])
        stamped = spec.model_copy(update={"spec_hash": "whatever"})

        assert spec_hash(spec) == spec_hash(stamped)
        assert len(spec_hash(spec)) == 64

    def test_hash_is_independent_of_key_order(self):
        a = DesignSpec.model_validate({"palette": {"bg": "#000", "fg": "#fff"}, "themeVars": {"--a": "1", "--b": "2"}})
        b = DesignSpec.model_validate({"themeVars": {"--b": "2", "--a": "1"}, "palette": {"fg": "#fff", "bg": "#000"}})

        assert spec_hash(a) == spec_hash(b)

    def test_hash_changes_with_content(self):
        a = DesignSpec(components=[Component(type="Hero")])
        b = DesignSpec(components=[Component(type="Footer")])

        assert spec_hash(a) != spec_hash(b)


class TestPriorityOrdering:

    def test_unknown_ids_are_dropped(self, store, room, alice):
        e1 = store.insert_prompt_event(room.id, alice.id, "text", "one")
        e2 = store.insert_prompt_event(room.id, alice.id, "text", "two")

        ordered = order_by_priority([e1, e2], [e2.id, "invented", e1.id])

        assert [e.id for e in ordered] == [e2.id, e1.id]

    def test_nothing_matching_falls_back_to_chronological(self, store, room, alice):
        e1 = store.insert_prompt_event(room.id, alice.id, "text", "one")
        e2 = store.insert_prompt_event(room.id, alice.id, "text", "two")

        ordered = order_by_priority([e2, e1], ["invented"])

        assert [e.id for e in ordered] == [e1.id, e2.id]


class TestPlanner:

    @pytest.mark.asyncio
    async def test_identical_spec_is_stored_once(self, store, reasoning, room, alice):
        store.insert_prompt_event(room.id, alice.id, "text", "a landing page")
        analysis_id = await ConflictAnalyzer(store, reasoning).run(room.id)
        planner = Planner(store, reasoning)

        first = await planner.run(room.id, analysis_id)
        second = await planner.run(room.id, analysis_id)

        assert first == second
        assert reasoning.plan_calls == 2
        specs = store.list_specs(room.id)
        assert len(specs) == 1
        assert specs[0].analysis_id == analysis_id
        assert specs[0].spec_hash == spec_hash(specs[0].spec)

    @pytest.mark.asyncio
    async def test_concurrent_runs_share_one_plan(self, store, reasoning, room, alice):
        store.insert_prompt_event(room.id, alice.id, "text", "a gallery")
        analysis_id = await ConflictAnalyzer(store, reasoning).run(room.id)
        reasoning.delay = 0.05
        planner = Planner(store, reasoning)

        ids = await asyncio.gather(*(planner.run(room.id, analysis_id) for _ in range(3)))

        assert len(set(ids)) == 1
        assert reasoning.plan_calls == 1

    @pytest.mark.asyncio
    async def test_blue_button_red_scenario(self, store, reasoning, room, alice, bob):
        """E1(A, blue), E2(A, button), E3(B, red): blue wins over red, blue and button go together."""
        e1 = store.insert_prompt_event(room.id, alice.id, "text", "make it blue")
        e2 = store.insert_prompt_event(room.id, alice.id, "text", "add a button")
        e3 = store.insert_prompt_event(room.id, bob.id, "text", "make it red")

        reasoning.analysis_fn = lambda events: AnalysisResult(
            additive=[AdditiveGroup(prompt_ids=[e1.id, e2.id], explanation="colour plus control")],
            conflicts=[Conflict(
                prompt_ids=[e1.id, e3.id],
                type=ConflictType.CONTRADICTORY,
                winner=e1.id,
                reasoning="blue was asked first",
                confidence=0.9,
            )],
            prioritized_prompts=[e1.id, e3.id, e2.id],
        )
        reasoning.spec_fn = lambda events, current: DesignSpec(
            palette=Palette(bg="#0000ff", fg="#ffffff"),
            components=[Component(path="components/Button", type="Button")],
            tensions=[Tension(participant_id=alice.id, weight=0.8), Tension(participant_id=bob.id, weight=0.2)],
        )
        analysis_id = await ConflictAnalyzer(store, reasoning).run(room.id)
        planner = Planner(store, reasoning)

        spec_id = await planner.run(room.id, analysis_id)
        again = await planner.run(room.id, analysis_id)

        assert again == spec_id
        assert reasoning.last_planned_ids == [e1.id, e3.id, e2.id]
        assert '"make it blue" WINS over "make it red"' in reasoning.last_directive
        assert '  - "add a button"' in reasoning.last_directive
        assert len(store.list_specs(room.id)) == 1

    @pytest.mark.asyncio
    async def test_no_events_for_analysis(self, store, reasoning, room):
        stored = store.insert_analysis(room.id, [], AnalysisResult())

        assert await Planner(store, reasoning).run(room.id, stored.id) is None
        assert reasoning.plan_calls == 0


def test_directive_without_conflicts_or_groups():
    directive = build_directive(AnalysisResult(), [])

    assert "CONFLICT RESOLUTION" not in directive
    assert "ADDITIVE PROMPTS" not in directive
    assert directive.startswith("INSTRUCTIONS:")
