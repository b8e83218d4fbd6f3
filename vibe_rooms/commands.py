# vibe_rooms/commands.py
"""
Command-synthesis cycle: instead of analyze/plan/build, the room's recent chat
commands are ranked by frequency and sent as one prompt to a hosted
code-generation platform, which owns the generated project.
"""

import asyncio
import logging
import math
import re
import time
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from vibe_rooms import config
from vibe_rooms.errors import CodeGenPlatformError, InvalidInputError, OperationInProgressError
from vibe_rooms.event_store import EventStore
from vibe_rooms.models import RankedCommand, RoomCommand, StatusKind, StatusPhase, SynthesizedPrompt
from vibe_rooms.reasoning_prompts import PLATFORM_PROMPT
from vibe_rooms.status_bus import StatusBus
from vibe_rooms.utils import Utils

logger = logging.getLogger("vibe_rooms")


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip().lower())


def synthesize_commands(
    commands: List[RoomCommand],
    min_support_ratio: float = config.COMMAND_MIN_SUPPORT_RATIO,
) -> SynthesizedPrompt:
    if not commands:
        return SynthesizedPrompt()

    counts: Dict[str, int] = {}
    first_seen: Dict[str, str] = {}
    for command in commands:
        key = _normalize(command.content)
        counts[key] = counts.get(key, 0) + 1
        first_seen.setdefault(key, command.content.strip())

    # sorted() is stable: ties keep first-seen order
    ranked = sorted(
        (RankedCommand(text=first_seen[k], count=c) for k, c in counts.items()),
        key=lambda r: r.count,
        reverse=True,
    )
    min_support = max(1, math.floor(len(commands) * min_support_ratio))
    top = [r for r in ranked if r.count >= min_support]

    top3 = top[:3]
    if not top3:
        summary = "No clear consensus in recent commands."
    elif len(top3) == 1:
        summary = f'The crowd unanimously requested: "{top3[0].text}"'
    else:
        summary = "Top requests: " + ", ".join(f'"{r.text}" ({r.count}x)' for r in top3)
    summary += (
        f"\n\nTotal commands in this interval: {len(commands)}. Honor the highest-frequency "
        f"commands first; ignore obviously conflicting or low-frequency ones."
    )

    return SynthesizedPrompt(
        summary=summary,
        top_commands=top,
        raw_commands=[c.content for c in commands],
    )


def build_platform_prompt(room_id: str, synthesized: SynthesizedPrompt) -> str:
    commands = "\n".join(
        f"{i + 1}. {r.text} ({r.count} votes)" for i, r in enumerate(synthesized.top_commands)
    )
    return Utils().unsafe_string_format(
        PLATFORM_PROMPT, ROOM_ID=room_id, SUMMARY=synthesized.summary, COMMANDS=commands
    )


@dataclass
class PlatformProject:
    project_id: str
    chat_id: str
    version_id: Optional[str] = None
    deployment_id: Optional[str] = None
    preview_url: Optional[str] = None


def _preview_url(record: Any) -> Optional[str]:
    while isinstance(record, dict):
        for key in ("deployment", "data"):
            if isinstance(record.get(key), dict):
                record = record[key]
                break
        else:
            return record.get("previewUrl") or record.get("preview_url") or record.get("url")
    return None


class CodeGenPlatformClient:
    """Thin async REST client for the hosted code-generation platform."""

    def __init__(
        self,
        api_key: str = config.V0_API_KEY,
        base_url: str = config.V0_API_BASE_URL,
        timeout: float = config.V0_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http_client is None:
            if not self.api_key:
                raise CodeGenPlatformError("V0_API_KEY is required to call the code-generation platform")
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.api_key}"},
                transport=self._transport,
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self.http.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise CodeGenPlatformError(
                f"{method} {path} failed with {e.response.status_code}: {e.response.text[:500]}"
            ) from e
        except httpx.HTTPError as e:
            raise CodeGenPlatformError(f"{method} {path} failed: {e}") from e
        return response

    async def _create_chat(self, project_id: str, room_id: Optional[str]) -> str:
        response = await self._request("POST", "/chats", json={
            "projectId": project_id,
            "message": f"New room {room_id} is controlling this project." if room_id
            else "New room is controlling this project.",
            "system": f"This project powers room {room_id}." if room_id
            else "This project is controlled by a collaborative room.",
        })
        return response.json()["id"]

    async def create_project(self, room_id: str) -> PlatformProject:
        response = await self._request("POST", "/projects", json={
            "name": f"vibe-room-{room_id}",
            "description": f"Collaborative project for room {room_id}",
            "template": "nextjs",
        })
        project_id = response.json()["id"]
        chat_id = await self._create_chat(project_id, room_id)
        logger.info(f"[Platform] room {room_id}: created project {project_id} chat {chat_id}")
        return PlatformProject(project_id=project_id, chat_id=chat_id)

    async def apply_prompt(
        self,
        project_id: str,
        prompt: str,
        chat_id: Optional[str] = None,
        context: Optional[str] = None,
    ) -> PlatformProject:
        chat_id = chat_id or await self._create_chat(project_id, context)
        reply = (await self._request("POST", f"/chats/{chat_id}/messages", json={"message": prompt})).json()

        version = reply.get("latestVersion") or reply.get("version") or {}
        version_id = version.get("id")
        preview_url = reply.get("demo") or _preview_url(version)

        payload = {"projectId": project_id, "chatId": chat_id}
        if version_id:
            payload["versionId"] = version_id
        deployment = (await self._request("POST", "/deployments", json=payload)).json()

        return PlatformProject(
            project_id=project_id,
            chat_id=chat_id,
            version_id=version_id,
            deployment_id=deployment.get("id"),
            preview_url=preview_url or _preview_url(deployment),
        )

    async def download_version(self, chat_id: str, version_id: str) -> bytes:
        response = await self._request(
            "GET", f"/chats/{chat_id}/versions/{version_id}/download", params={"format": "zip"}
        )
        return response.content


@dataclass
class TickResult:
    skipped: bool
    message: str
    synthesized: Optional[SynthesizedPrompt] = None
    preview_url: Optional[str] = None
    project_id: Optional[str] = None


class CommandTickCycle:
    def __init__(
        self,
        store: EventStore,
        platform: CodeGenPlatformClient,
        bus: StatusBus,
        window_seconds: float = config.COMMAND_WINDOW_SECONDS,
        min_interval_seconds: float = config.TICK_MIN_INTERVAL_SECONDS,
        min_support_ratio: float = config.COMMAND_MIN_SUPPORT_RATIO,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.platform = platform
        self.bus = bus
        self.window_seconds = window_seconds
        self.min_interval_seconds = min_interval_seconds
        self.min_support_ratio = min_support_ratio
        self.clock = clock
        self._last_tick: Dict[str, float] = {}
        self._running: Set[str] = set()

    async def submit_command(self, room_id: str, participant_id: Optional[str], content: str) -> RoomCommand:
        if not content or not content.strip():
            raise InvalidInputError("content is required")
        await asyncio.to_thread(self.store.require_room, room_id)
        return await asyncio.to_thread(self.store.insert_command, room_id, participant_id, content.strip())

    async def tick(self, room_id: str) -> TickResult:
        if room_id in self._running:
            raise OperationInProgressError(f"A command tick is already running for room {room_id}")
        self._running.add(room_id)
        try:
            return await self._tick(room_id)
        finally:
            self._running.discard(room_id)

    async def _tick(self, room_id: str) -> TickResult:
        room = await asyncio.to_thread(self.store.require_room, room_id)

        now = self.clock()
        last = self._last_tick.get(room_id)
        if last is not None and now - last < self.min_interval_seconds:
            return TickResult(skipped=True, message="Tick too soon")
        self._last_tick[room_id] = now

        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.window_seconds)
        commands = await asyncio.to_thread(self.store.commands_since, room_id, cutoff)
        synthesized = synthesize_commands(commands, self.min_support_ratio)
        if not synthesized.top_commands:
            return TickResult(skipped=True, message="No commands to process")

        phase = StatusPhase.BUILDING
        try:
            self.bus.emit(room_id, phase, StatusKind.STARTED, 20,
                          f"Sending {len(synthesized.top_commands)} command(s) to the platform")

            project_id, chat_id = room.v0_project_id, room.v0_chat_id
            if not project_id:
                created = await self.platform.create_project(room_id)
                project_id, chat_id = created.project_id, created.chat_id
                await asyncio.to_thread(
                    self.store.update_room, room_id, v0_project_id=project_id, v0_chat_id=chat_id
                )

            self.bus.emit(room_id, phase, StatusKind.PROGRESS, 65, "The platform is updating the project")
            applied = await self.platform.apply_prompt(
                project_id, build_platform_prompt(room_id, synthesized), chat_id=chat_id, context=room_id
            )
            await asyncio.to_thread(
                self.store.update_room,
                room_id,
                v0_project_id=applied.project_id,
                v0_chat_id=applied.chat_id,
                v0_version_id=applied.version_id,
                v0_deployment_id=applied.deployment_id,
                v0_preview_url=applied.preview_url,
            )
            self.bus.emit(room_id, phase, StatusKind.COMPLETED, 100 if applied.preview_url else 90,
                          "Preview refreshed")

            await asyncio.to_thread(self.store.insert_patch, room_id, None, {
                "summary": synthesized.summary,
                "commands": [r.to_json_dict() for r in synthesized.top_commands],
                "commandCount": len(synthesized.top_commands),
            })
        except Exception as e:
            logger.error(f"[CommandTick] room {room_id} failed: {e}")
            self.bus.emit(room_id, phase, StatusKind.ERROR, 0, str(e))
            raise

        logger.info(f"[CommandTick] room {room_id}: applied {len(synthesized.top_commands)} command(s)")
        return TickResult(
            skipped=False,
            message="Tick processed successfully",
            synthesized=synthesized,
            preview_url=applied.preview_url,
            project_id=applied.project_id,
        )
