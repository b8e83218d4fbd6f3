import json
from datetime import datetime, timezone

import httpx
import pytest

from vibe_rooms.commands import CodeGenPlatformClient, CommandTickCycle, synthesize_commands
from vibe_rooms.errors import CodeGenPlatformError, InvalidInputError
from vibe_rooms.models import RoomCommand, StatusKind
from vibe_rooms.status_bus import StatusBus


def commands(*texts):
    now = datetime.now(timezone.utc)
    return [RoomCommand(id=str(i), room_id="r1", content=t, created_at=now) for i, t in enumerate(texts)]


class FakePlatform:
    """Records requests and answers like the hosted platform's REST API."""

    def __init__(self, fail_messages=False):
        self.requests = []
        self.fail_messages = fail_messages

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))
        path = request.url.path

        if path == "/projects":
            return httpx.Response(200, json={"id": "proj-1"})
        if path == "/chats":
            return httpx.Response(200, json={"id": "chat-1"})
        if path.endswith("/messages"):
            if self.fail_messages:
                return httpx.Response(502, text="upstream busy")
            return httpx.Response(200, json={"latestVersion": {"id": "ver-1"}, "demo": "https://preview.example/ver-1"})
        if path == "/deployments":
            return httpx.Response(200, json={"id": "dep-1"})
        if path.endswith("/download"):
            return httpx.Response(200, content=b"PK\x03\x04zip")
        return httpx.Response(404)


def make_client(handler):
    return CodeGenPlatformClient(
        api_key="test-key", base_url="https://platform.test", transport=httpx.MockTransport(handler)
    )


class TestSynthesize:

    def test_commands_are_normalised_and_ranked(self):
        result = synthesize_commands(
            commands("Dark mode", "  dark   MODE ", "bigger logo", "dark mode", "bigger logo", "confetti"),
            min_support_ratio=0.3,
        )

        assert [(r.text, r.count) for r in result.top_commands] == [("Dark mode", 3), ("bigger logo", 2)]
        assert result.summary.startswith('Top requests: "Dark mode" (3x), "bigger logo" (2x)')
        assert len(result.raw_commands) == 6

    def test_single_command_passes_the_threshold(self):
        result = synthesize_commands(commands("add a map"), min_support_ratio=0.3)

        assert [r.text for r in result.top_commands] == ["add a map"]
        assert result.summary.startswith('The crowd unanimously requested: "add a map"')

    def test_ties_keep_first_seen_order(self):
        result = synthesize_commands(commands("b", "a", "c"), min_support_ratio=0.1)

        assert [r.text for r in result.top_commands] == ["b", "a", "c"]

    def test_nothing_reaches_support(self):
        result = synthesize_commands(commands(*[f"idea {i}" for i in range(10)]), min_support_ratio=0.5)

        assert result.top_commands == []
        assert result.summary.startswith("No clear consensus")

    def test_empty_input(self):
        assert synthesize_commands([]).top_commands == []


class TestCommandTick:

    @pytest.mark.asyncio
    async def test_first_tick_creates_the_project(self, store, room, alice):
        platform = FakePlatform()
        client = make_client(platform)
        bus = StatusBus()
        cycle = CommandTickCycle(store, client, bus, min_support_ratio=0.3)
        await cycle.submit_command(room.id, alice.id, "Add a pricing table")
        await cycle.submit_command(room.id, alice.id, "add a pricing table")

        result = await cycle.tick(room.id)
        await client.aclose()

        assert not result.skipped
        assert result.preview_url == "https://preview.example/ver-1"
        assert [(m, p) for m, p, _ in platform.requests] == [
            ("POST", "/projects"),
            ("POST", "/chats"),
            ("POST", "/chats/chat-1/messages"),
            ("POST", "/deployments"),
        ]
        message = platform.requests[2][2]["message"]
        assert "Add a pricing table (2 votes)" in message

        stored = store.get_room(room.id)
        assert stored.v0_project_id == "proj-1"
        assert stored.v0_version_id == "ver-1"
        assert stored.v0_preview_url == "https://preview.example/ver-1"
        log = store.list_patches(room.id)
        assert len(log) == 1 and log[0].base_spec_hash is None
        assert bus.history(room.id)[-1].status == StatusKind.COMPLETED

    @pytest.mark.asyncio
    async def test_tick_too_soon(self, store, room, alice):
        now = [100.0]
        cycle = CommandTickCycle(
            store, make_client(FakePlatform()), StatusBus(), min_interval_seconds=5, clock=lambda: now[0]
        )

        first = await cycle.tick(room.id)
        now[0] += 2
        second = await cycle.tick(room.id)

        assert first.message == "No commands to process"
        assert second.skipped and second.message == "Tick too soon"

    @pytest.mark.asyncio
    async def test_platform_failure_is_broadcast(self, store, room, alice):
        client = make_client(FakePlatform(fail_messages=True))
        bus = StatusBus()
        cycle = CommandTickCycle(store, client, bus)
        await cycle.submit_command(room.id, alice.id, "add a map")

        with pytest.raises(CodeGenPlatformError, match="502"):
            await cycle.tick(room.id)
        await client.aclose()

        assert bus.history(room.id)[-1].status == StatusKind.ERROR
        assert store.list_patches(room.id) == []

    @pytest.mark.asyncio
    async def test_blank_command_is_rejected(self, store, room, alice):
        cycle = CommandTickCycle(store, make_client(FakePlatform()), StatusBus())

        with pytest.raises(InvalidInputError):
            await cycle.submit_command(room.id, alice.id, "   ")


@pytest.mark.asyncio
async def test_download_version():
    platform = FakePlatform()
    client = make_client(platform)

    data = await client.download_version("chat-1", "ver-1")
    await client.aclose()

    assert data.startswith(b"PK")
    method, path, _ = platform.requests[0]
    assert method == "GET" and path.endswith("/chats/chat-1/versions/ver-1/download")


@pytest.mark.asyncio
async def test_missing_api_key():
    client = CodeGenPlatformClient(api_key="", transport=httpx.MockTransport(FakePlatform()))

    with pytest.raises(CodeGenPlatformError):
        await client.create_project("r1")
