import asyncio
import logging

import pytest

from vibe_rooms.analyzer import ConflictAnalyzer
from vibe_rooms.builder import Builder, find_missing_components
from vibe_rooms.errors import InvalidInputError, UnknownPatchOpError
from vibe_rooms.models import Component, DeleteFile, DesignSpec, FilePatch, Mkdir, SetFile
from vibe_rooms.patching import apply_ops, apply_patch, apply_patch_to_room
from vibe_rooms.planner import Planner


class TestApplyPatch:

    def test_ops_apply_in_order(self):
        files = {"a.txt": "old", "b.txt": "keep"}
        patch = FilePatch(ops=[
            Mkdir(path="assets"),
            SetFile(path="a.txt", content="new"),
            SetFile(path="assets/c.css", content="body{}"),
            DeleteFile(path="b.txt"),
            DeleteFile(path="never-existed.txt"),
        ])

        result = apply_patch(files, patch)

        assert result == {"a.txt": "new", "assets/c.css": "body{}"}
        assert files == {"a.txt": "old", "b.txt": "keep"}

    def test_later_op_on_same_path_wins(self):
        result = apply_ops({}, [
            {"op": "setFile", "path": "x", "content": "1"},
            {"op": "deleteFile", "path": "x"},
            {"op": "setFile", "path": "x", "content": "2"},
        ])

        assert result == {"x": "2"}

    def test_patches_on_disjoint_paths_compose(self):
        p1 = {"ops": [{"op": "setFile", "path": "one.html", "content": "1"}]}
        p2 = {"ops": [{"op": "setFile", "path": "two.html", "content": "2"}, {"op": "deleteFile", "path": "z"}]}
        files = {"z": "gone"}

        stepwise = apply_patch(apply_patch(files, p1), p2)
        combined = apply_patch(files, {"ops": p1["ops"] + p2["ops"]})

        assert stepwise == combined == {"one.html": "1", "two.html": "2"}

    def test_unknown_op_is_rejected(self):
        with pytest.raises(UnknownPatchOpError):
            apply_ops({}, [{"op": "renameFile", "path": "a", "to": "b"}])

    def test_unknown_op_leaves_room_files_untouched(self, store, room):
        store.upsert_file(room.id, "index.html", "before")
        patch = {"ops": [
            {"op": "setFile", "path": "index.html", "content": "after"},
            {"op": "chmod", "path": "index.html"},
        ]}

        with pytest.raises(UnknownPatchOpError):
            apply_patch_to_room(store, room.id, patch)

        assert store.list_files(room.id) == {"index.html": "before"}

    def test_room_files_follow_the_patch(self, store, room):
        store.upsert_file(room.id, "old.css", "x")
        touched = apply_patch_to_room(store, room.id, FilePatch(ops=[
            SetFile(path="index.html", content="<main/>"),
            DeleteFile(path="old.css"),
            Mkdir(path="img"),
        ]))

        assert touched == 2
        assert store.list_files(room.id) == {"index.html": "<main/>"}


class TestMissingComponents:

    def test_type_or_path_segment_counts_as_present(self):
        spec = DesignSpec(components=[
            Component(path="components/Hero", type="Hero"),
            Component(path="components/pricing-table", type="PricingGrid"),
            Component(path="components/Footer", type="Footer"),
        ])
        patch = FilePatch(ops=[SetFile(path="index.html", content='<div class="hero"></div><div id="pricing-table"></div>')])

        assert find_missing_components(patch, spec, "index.html") == ["Footer"]

    def test_other_files_are_not_searched(self):
        spec = DesignSpec(components=[Component(type="Navbar")])
        patch = FilePatch(ops=[SetFile(path="nav.html", content="navbar")])

        assert find_missing_components(patch, spec, "index.html") == ["Navbar"]


async def _stored_spec(store, reasoning, room_id):
    analysis_id = await ConflictAnalyzer(store, reasoning).run(room_id)
    return await Planner(store, reasoning).run(room_id, analysis_id)


class TestBuilder:

    @pytest.mark.asyncio
    async def test_build_is_idempotent_per_spec_hash(self, store, reasoning, room, alice):
        store.insert_prompt_event(room.id, alice.id, "text", "a hero section")
        spec_id = await _stored_spec(store, reasoning, room.id)
        builder = Builder(store, reasoning)

        first = await builder.run(room.id, spec_id)
        second = await builder.run(room.id, spec_id)

        assert first == second
        assert reasoning.build_calls == 1
        patches = store.list_patches(room.id)
        assert len(patches) == 1
        assert patches[0].base_spec_hash == store.get_spec(spec_id).spec_hash
        assert store.list_files(room.id) == {"index.html": '<section class="hero">Hello</section>'}

    @pytest.mark.asyncio
    async def test_concurrent_builds_share_one_call(self, store, reasoning, room, alice):
        store.insert_prompt_event(room.id, alice.id, "text", "a hero section")
        spec_id = await _stored_spec(store, reasoning, room.id)
        reasoning.delay = 0.05
        builder = Builder(store, reasoning)

        ids = await asyncio.gather(*(builder.run(room.id, spec_id) for _ in range(3)))

        assert len(set(ids)) == 1
        assert reasoning.build_calls == 1

    @pytest.mark.asyncio
    async def test_rooms_with_identical_specs_build_separately(self, store, reasoning, room, alice):
        other = store.create_room("other room")
        carol = store.add_participant(other.id, "Carol", "#45b7d1")
        store.insert_prompt_event(room.id, alice.id, "text", "a hero section")
        store.insert_prompt_event(other.id, carol.id, "text", "a hero section")
        spec_a = await _stored_spec(store, reasoning, room.id)
        spec_b = await _stored_spec(store, reasoning, other.id)
        assert store.get_spec(spec_a).spec_hash == store.get_spec(spec_b).spec_hash
        reasoning.delay = 0.05
        builder = Builder(store, reasoning)

        patch_a, patch_b = await asyncio.gather(builder.run(room.id, spec_a), builder.run(other.id, spec_b))

        assert patch_a != patch_b
        assert reasoning.build_calls == 2
        for room_id in (room.id, other.id):
            assert len(store.list_patches(room_id)) == 1
            assert "index.html" in store.list_files(room_id)

    @pytest.mark.asyncio
    async def test_current_artifact_is_passed_to_the_build(self, store, reasoning, room, alice):
        store.insert_prompt_event(room.id, alice.id, "text", "a hero section")
        store.upsert_file(room.id, "index.html", "<p>previous</p>")
        spec_id = await _stored_spec(store, reasoning, room.id)
        seen = []

        def patch_fn(spec, current):
            seen.append(current)
            return FilePatch(ops=[SetFile(path="index.html", content="<div>hero</div>")])

        reasoning.patch_fn = patch_fn
        await Builder(store, reasoning).run(room.id, spec_id)

        assert seen == ["<p>previous</p>"]

    @pytest.mark.asyncio
    async def test_missing_components_are_logged(self, store, reasoning, room, alice, caplog):
        store.insert_prompt_event(room.id, alice.id, "text", "a hero and a footer")
        reasoning.spec_fn = lambda events, current: DesignSpec(components=[
            Component(path="components/Hero", type="Hero"),
            Component(path="components/Footer", type="Footer"),
        ])
        spec_id = await _stored_spec(store, reasoning, room.id)

        with caplog.at_level(logging.WARNING, logger="vibe_rooms"):
            patch_id = await Builder(store, reasoning).run(room.id, spec_id)

        assert patch_id is not None
        assert "missing components: Footer" in caplog.text

    @pytest.mark.asyncio
    async def test_unknown_spec_is_rejected(self, store, reasoning, room):
        with pytest.raises(InvalidInputError):
            await Builder(store, reasoning).run(room.id, "no-such-spec")
