# vibe_rooms/backend.py

import asyncio
import io
import logging
import random
import zipfile
from typing import Any, Dict, Optional

from vibe_rooms.analyzer import ConflictAnalyzer
from vibe_rooms.builder import Builder
from vibe_rooms.commands import CodeGenPlatformClient, CommandTickCycle, TickResult
from vibe_rooms.db_connection import DbConnection
from vibe_rooms.errors import InvalidInputError
from vibe_rooms.event_store import EventStore
from vibe_rooms.finish import FinishWorkflow, detect_finish_intent
from vibe_rooms.generation_cycle import CycleResult, GenerationCycle
from vibe_rooms.models import FinishRequest, Participant, PromptEvent, PromptKind, Room, RoomCommand
from vibe_rooms.planner import Planner
from vibe_rooms.reasoning_service import ReasoningService
from vibe_rooms.scheduler import BatchScheduler
from vibe_rooms.single_flight import SingleFlight
from vibe_rooms.status_bus import StatusBus

logger = logging.getLogger("vibe_rooms")

PARTICIPANT_COLORS = ["#ff6b6b", "#4ecdc4", "#45b7d1", "#f9ca24", "#6c5ce7"]


class Backend:
    """
    One object per process: owns the store, the single-flight registries,
    the pipeline stages, the batching scheduler and the finish workflow.
    Every public method maps to one HTTP route in server.py.
    """

    def __init__(
        self,
        store: Optional[EventStore] = None,
        reasoning=None,
        platform: Optional[CodeGenPlatformClient] = None,
        bus: Optional[StatusBus] = None,
        timer=None,
        schedule_on_submit: bool = True,
    ):
        if store is None:
            db = DbConnection()
            store = EventStore(db.build_db_session_factory())
        self.store = store
        self.bus = bus or StatusBus()
        self.reasoning = reasoning or ReasoningService()

        self.analyzer_locks = SingleFlight("analyzer")
        self.planner_locks = SingleFlight("planner")
        self.builder_locks = SingleFlight("builder")

        self.analyzer = ConflictAnalyzer(self.store, self.reasoning, locks=self.analyzer_locks, bus=self.bus)
        self.planner = Planner(self.store, self.reasoning, locks=self.planner_locks)
        self.builder = Builder(self.store, self.reasoning, locks=self.builder_locks)
        self.cycle = GenerationCycle(self.analyzer, self.planner, self.builder, self.bus)
        self.scheduler = BatchScheduler(self.cycle.run, timer=timer)
        self.schedule_on_submit = schedule_on_submit

        self.finish = FinishWorkflow(self.store)
        self.platform = platform or CodeGenPlatformClient()
        self.command_cycle = CommandTickCycle(self.store, self.platform, self.bus)

    # -----------------------
    # Rooms
    # -----------------------

    async def create_room(self, name: str = "") -> Room:
        room = await asyncio.to_thread(self.store.create_room, (name or "").strip())
        logger.info(f"[Backend] created room {room.id}")
        return room

    async def join_room(self, room_id: str, display_name: str) -> Participant:
        display_name = (display_name or "").strip()
        if not display_name:
            raise InvalidInputError("display_name is required")
        await asyncio.to_thread(self.store.require_room, room_id)
        color = random.choice(PARTICIPANT_COLORS)
        participant = await asyncio.to_thread(self.store.add_participant, room_id, display_name, color)
        logger.info(f"[Backend] {display_name} joined room {room_id}")
        return participant

    # -----------------------
    # Prompts and generation
    # -----------------------

    async def submit_prompt(
        self,
        room_id: str,
        participant_id: str,
        kind: str = PromptKind.TEXT.value,
        text: Optional[str] = None,
        payload_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not participant_id:
            raise InvalidInputError("participant_id is required")
        try:
            kind = PromptKind(kind)
        except ValueError:
            raise InvalidInputError(f"Unknown prompt kind: {kind}")
        text = (text or "").strip() or None
        if kind == PromptKind.TEXT and not text:
            raise InvalidInputError("text is required for text prompts")
        if kind != PromptKind.TEXT and not payload_url:
            raise InvalidInputError(f"payload_url is required for {kind.value} prompts")

        await asyncio.to_thread(self.store.require_room, room_id)
        event: PromptEvent = await asyncio.to_thread(
            self.store.insert_prompt_event, room_id, participant_id, kind.value, text, payload_url
        )
        if self.schedule_on_submit:
            self.scheduler.on_event(room_id)

        return {"event": event, "finishIntent": detect_finish_intent(text)}

    async def run_cycle(self, room_id: str) -> CycleResult:
        await asyncio.to_thread(self.store.require_room, room_id)
        return await self.cycle.run(room_id)

    async def room_status(self, room_id: str) -> Dict[str, Any]:
        await asyncio.to_thread(self.store.require_room, room_id)
        return {
            "scheduler": self.scheduler.state(room_id),
            "inFlight": {
                "analyzer": self.analyzer_locks.is_in_flight(room_id),
                "planner": self.planner_locks.is_in_flight(room_id),
            },
            "updates": [u.to_json_dict() for u in self.bus.history(room_id)],
        }

    # -----------------------
    # Command cycle
    # -----------------------

    async def submit_command(self, room_id: str, participant_id: Optional[str], content: str) -> RoomCommand:
        return await self.command_cycle.submit_command(room_id, participant_id, content)

    async def command_tick(self, room_id: str) -> TickResult:
        return await self.command_cycle.tick(room_id)

    # -----------------------
    # Finish
    # -----------------------

    async def request_finish(self, room_id: str, participant_id: str) -> FinishRequest:
        return await self.finish.arequest_finish(room_id, participant_id)

    async def approve_finish(self, room_id: str, participant_id: str) -> FinishRequest:
        return await self.finish.aapprove_finish(room_id, participant_id)

    async def reject_finish(self, room_id: str, request_id: str) -> FinishRequest:
        return await self.finish.areject_finish(room_id, request_id)

    async def finish_status(self, room_id: str) -> Optional[FinishRequest]:
        return await asyncio.to_thread(self.finish.finish_status, room_id)

    # -----------------------
    # Files and archives
    # -----------------------

    async def list_files(self, room_id: str) -> Dict[str, str]:
        await asyncio.to_thread(self.store.require_room, room_id)
        return await asyncio.to_thread(self.store.list_files, room_id)

    async def build_archive(self, room_id: str) -> bytes:
        files = await self.list_files(room_id)
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
            for path, content in sorted(files.items()):
                zf.writestr(path, content)
        return buffer.getvalue()

    async def download_version_archive(self, room_id: str) -> bytes:
        room = await asyncio.to_thread(self.store.require_room, room_id)
        if not room.v0_chat_id or not room.v0_version_id:
            raise InvalidInputError("No version available to download")
        return await self.platform.download_version(room.v0_chat_id, room.v0_version_id)
