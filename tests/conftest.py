"""
Shared fixtures: a file-backed SQLite EventStore, a scripted reasoning
service and a manual timer for the batching scheduler.
"""
import asyncio
from typing import Callable, List, Optional

import pytest

from vibe_rooms.db_connection import DbConnection
from vibe_rooms.event_store import EventStore
from vibe_rooms.models import (
    AnalysisResult,
    Component,
    DesignSpec,
    FilePatch,
    PromptEvent,
    SetFile,
)
from vibe_rooms.reasoning_service import AnalysisComplete, ThinkingChunk


class StubReasoning:
    """
    Stands in for the LLM-backed ReasoningService. Each operation is a plain
    callable that tests may replace; calls are counted.
    """

    def __init__(self):
        self.analyze_calls = 0
        self.plan_calls = 0
        self.build_calls = 0
        self.delay = 0.0
        self.last_directive: Optional[str] = None
        self.last_planned_ids: List[str] = []

        self.analysis_fn: Callable[[List[PromptEvent]], AnalysisResult] = (
            lambda events: AnalysisResult(prioritized_prompts=[e.id for e in events])
        )
        self.spec_fn: Callable[[List[PromptEvent], Optional[DesignSpec]], DesignSpec] = (
            lambda events, current: DesignSpec(components=[Component(path="components/Hero", type="Hero")])
        )
        self.patch_fn: Callable[[DesignSpec, Optional[str]], FilePatch] = (
            lambda spec, current: FilePatch(
                ops=[SetFile(path="index.html", content='<section class="hero">Hello</section>')]
            )
        )

    async def analyze(self, events, current_spec=None):
        self.analyze_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        yield ThinkingChunk(text="weighing the prompts")
        yield AnalysisComplete(analysis=self.analysis_fn(events), thinking_trace="weighing the prompts")

    async def plan(self, directive, prioritized_events, current_spec, analysis):
        self.plan_calls += 1
        self.last_directive = directive
        self.last_planned_ids = [e.id for e in prioritized_events]
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.spec_fn(prioritized_events, current_spec)

    async def build(self, spec, current_artifact=None):
        self.build_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        patch = self.patch_fn(spec, current_artifact)
        patch.base_spec_hash = spec.spec_hash
        return patch


class _Handle:
    def __init__(self, deadline: float, callback):
        self.deadline = deadline
        self.callback = callback
        self.cancelled = False


class FakeTimer:
    """Manual clock: callbacks fire only from advance()."""

    def __init__(self):
        self.t = 0.0
        self._handles: List[_Handle] = []

    def now(self) -> float:
        return self.t

    def schedule(self, delay: float, callback) -> _Handle:
        handle = _Handle(self.t + delay, callback)
        self._handles.append(handle)
        return handle

    def cancel(self, handle: _Handle) -> None:
        handle.cancelled = True

    def pending(self) -> List[_Handle]:
        return [h for h in self._handles if not h.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.t + seconds
        while True:
            due = sorted(
                (h for h in self._handles if not h.cancelled and h.deadline <= target),
                key=lambda h: h.deadline,
            )
            if not due:
                break
            handle = due[0]
            self._handles.remove(handle)
            self.t = handle.deadline
            handle.callback()
        self.t = target


@pytest.fixture
def store(tmp_path):
    db = DbConnection(f"sqlite:///{tmp_path / 'vibe_rooms_test.db'}")
    return EventStore(db.build_db_session_factory())


@pytest.fixture
def reasoning():
    return StubReasoning()


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def room(store):
    return store.create_room("test room")


@pytest.fixture
def alice(store, room):
    return store.add_participant(room.id, "Alice", "#ff6b6b")


@pytest.fixture
def bob(store, room):
    return store.add_participant(room.id, "Bob", "#4ecdc4")
