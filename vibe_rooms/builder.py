# vibe_rooms/builder.py

import asyncio
import logging
from typing import List, Optional

from vibe_rooms import config
from vibe_rooms.errors import InvalidInputError
from vibe_rooms.event_store import EventStore
from vibe_rooms.models import DesignSpec, FilePatch, SetFile
from vibe_rooms.patching import apply_patch_to_room
from vibe_rooms.single_flight import SingleFlight

logger = logging.getLogger("vibe_rooms")


def find_missing_components(patch: FilePatch, spec: DesignSpec, primary_path: str) -> List[str]:
    """
    Component types that do not show up in the patch's primary artifact.
    A component counts as present when its type, or the last segment of its
    path, appears in the artifact (case-insensitive).
    """
    artifact = ""
    for op in patch.ops:
        if isinstance(op, SetFile) and op.path == primary_path:
            artifact = op.content
    artifact = artifact.lower()

    missing = []
    for component in spec.components:
        type_name = component.type.lower()
        last_segment = component.path.lower().rstrip("/").split("/")[-1]
        if type_name and type_name in artifact:
            continue
        if last_segment and last_segment in artifact:
            continue
        missing.append(component.type)
    return missing


class Builder:
    """
    Builds and applies the FilePatch for a stored spec.
    Keyed by (room, spec hash): a hash that already has a patch in the room is
    never built or applied twice there.
    """

    def __init__(
        self,
        store: EventStore,
        reasoning,
        locks: Optional[SingleFlight] = None,
        primary_path: str = config.PRIMARY_ARTIFACT_PATH,
    ):
        self.store = store
        self.reasoning = reasoning
        self.locks = locks or SingleFlight("builder")
        self.primary_path = primary_path

    async def run(self, room_id: str, spec_id: str) -> str:
        stored = await asyncio.to_thread(self.store.get_spec, spec_id)
        if stored is None or stored.room_id != room_id:
            raise InvalidInputError(f"Unknown spec {spec_id} for room {room_id}")
        return await self.locks.acquire_or_join(
            (room_id, stored.spec_hash), lambda: self._run(room_id, stored.spec_hash, stored.spec)
        )

    async def _run(self, room_id: str, spec_hash: str, spec: DesignSpec) -> str:
        existing = await asyncio.to_thread(self.store.find_patch_by_spec_hash, room_id, spec_hash)
        if existing is not None:
            logger.info(f"[Builder] room {room_id}: spec {spec_hash[:12]} already built as {existing.id}")
            return existing.id

        current = await asyncio.to_thread(self.store.get_file, room_id, self.primary_path)
        patch = await self.reasoning.build(spec, current)
        patch.base_spec_hash = spec_hash

        missing = find_missing_components(patch, spec, self.primary_path)
        if missing:
            logger.warning(
                f"[Builder] room {room_id}: {self.primary_path} is missing components: {', '.join(missing)}"
            )

        row = await asyncio.to_thread(self.store.insert_patch, room_id, spec_hash, patch.to_json_dict())
        touched = await asyncio.to_thread(apply_patch_to_room, self.store, room_id, patch)
        logger.info(f"[Builder] room {room_id}: patch {row.id} applied ({touched} file op(s))")
        return row.id
