# vibe_rooms/patching.py
"""
File-set patching.

A file set is a plain ``{path: content}`` dict. Ops apply in order:
``setFile`` upserts, ``deleteFile`` removes, ``mkdir`` is a no-op (directories
are implicit). Unknown op tags raise UnknownPatchOpError.
"""

import logging
from typing import Any, Dict, Iterable, List, Union

from vibe_rooms.errors import UnknownPatchOpError
from vibe_rooms.models import FilePatch

logger = logging.getLogger("vibe_rooms")

PatchLike = Union[FilePatch, Dict[str, Any]]


def _ops(patch: PatchLike) -> List[Dict[str, Any]]:
    if isinstance(patch, FilePatch):
        return [op.to_json_dict() for op in patch.ops]
    return list(patch.get("ops") or [])


def apply_ops(files: Dict[str, str], ops: Iterable[Dict[str, Any]]) -> Dict[str, str]:
    result = dict(files)
    for op in ops:
        kind = op.get("op")
        if kind == "setFile":
            result[op["path"]] = op.get("content", "")
        elif kind == "deleteFile":
            result.pop(op["path"], None)
        elif kind == "mkdir":
            continue
        else:
            raise UnknownPatchOpError(f"Unknown patch op: {kind!r}")
    return result


def apply_patch(files: Dict[str, str], patch: PatchLike) -> Dict[str, str]:
    """Returns a new file set; the input dict is left untouched."""
    return apply_ops(files, _ops(patch))


def apply_patch_to_room(store, room_id: str, patch: PatchLike) -> int:
    """
    Apply the ops to the room's stored files, row by row.
    Tags are checked up front so an unknown op leaves the files untouched.
    Returns the number of file rows written or deleted.
    """
    ops = _ops(patch)
    for op in ops:
        if op.get("op") not in ("setFile", "deleteFile", "mkdir"):
            raise UnknownPatchOpError(f"Unknown patch op: {op.get('op')!r}")

    touched = 0
    for op in ops:
        if op["op"] == "setFile":
            store.upsert_file(room_id, op["path"], op.get("content", ""))
            touched += 1
        elif op["op"] == "deleteFile":
            store.delete_file(room_id, op["path"])
            touched += 1
    logger.debug(f"[Patching] room {room_id}: {touched} file op(s) applied")
    return touched
