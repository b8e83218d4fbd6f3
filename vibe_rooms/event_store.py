# vibe_rooms/event_store.py
"""
Durable, append-mostly store for everything a room produces.

Every call opens its own short-lived session, so the store is safe to call
from ``asyncio.to_thread`` workers. Rows never leave this module: callers get
the pydantic records from ``vibe_rooms.models``.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vibe_rooms import entities as E
from vibe_rooms import models as M
from vibe_rooms.errors import RoomNotFoundError

logger = logging.getLogger("vibe_rooms")

TABLES = {
    "rooms": E.Room,
    "participants": E.Participant,
    "prompt_events": E.PromptEvent,
    "prompt_analyses": E.PromptAnalysis,
    "design_specs": E.DesignSpec,
    "patches": E.Patch,
    "files": E.RoomFile,
    "room_finishes": E.RoomFinish,
    "room_commands": E.RoomCommand,
}


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything we write is UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_dict(row) -> Dict[str, Any]:
    out = {}
    for col in row.__table__.columns:
        value = getattr(row, col.name)
        out[col.name] = _aware(value) if isinstance(value, datetime) else value
    return out


class EventStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self.SessionFactory = session_factory

    # -----------------------
    # Generic table interface
    # -----------------------

    def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        model = TABLES[table]
        session = self.SessionFactory()
        try:
            row = model(**record)
            session.add(row)
            session.commit()
            return _row_to_dict(row)
        finally:
            session.close()

    def query(
        self,
        table: str,
        filters: Iterable[Tuple[str, str, Any]] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        filters: (column, op, value) with op in eq | gt | gte | lt | in.
        """
        model = TABLES[table]
        stmt = select(model)
        for column, op, value in filters:
            col = getattr(model, column)
            if op == "eq":
                stmt = stmt.where(col == value)
            elif op == "gt":
                stmt = stmt.where(col > value)
            elif op == "gte":
                stmt = stmt.where(col >= value)
            elif op == "lt":
                stmt = stmt.where(col < value)
            elif op == "in":
                stmt = stmt.where(col.in_(list(value)))
            else:
                raise ValueError(f"Unsupported filter op: {op}")
        if order_by:
            col = getattr(model, order_by)
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        session = self.SessionFactory()
        try:
            return [_row_to_dict(r) for r in session.scalars(stmt).all()]
        finally:
            session.close()

    def query_one(self, table: str, filters=(), order_by=None, descending=False) -> Optional[Dict[str, Any]]:
        rows = self.query(table, filters, order_by=order_by, descending=descending, limit=1)
        return rows[0] if rows else None

    def update(self, table: str, row_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        model = TABLES[table]
        session = self.SessionFactory()
        try:
            row = session.get(model, row_id)
            if row is None:
                return None
            for k, v in fields.items():
                setattr(row, k, v)
            session.commit()
            return _row_to_dict(row)
        finally:
            session.close()

    # -----------------------
    # Rooms and participants
    # -----------------------

    def create_room(self, name: str = "") -> M.Room:
        return M.Room(**self.insert("rooms", {"name": name}))

    def get_room(self, room_id: str) -> Optional[M.Room]:
        row = self.query_one("rooms", [("id", "eq", str(room_id))])
        return M.Room(**row) if row else None

    def require_room(self, room_id: str) -> M.Room:
        room = self.get_room(room_id)
        if room is None:
            raise RoomNotFoundError(f"Room not found: {room_id}")
        return room

    def update_room(self, room_id: str, **fields) -> M.Room:
        row = self.update("rooms", str(room_id), fields)
        if row is None:
            raise RoomNotFoundError(f"Room not found: {room_id}")
        return M.Room(**row)

    def add_participant(self, room_id: str, display_name: str, color: str, weight: float = 1.0) -> M.Participant:
        row = self.insert(
            "participants",
            {"room_id": room_id, "display_name": display_name, "color": color, "weight": weight},
        )
        return M.Participant(**row)

    def list_participants(self, room_id: str) -> List[M.Participant]:
        rows = self.query("participants", [("room_id", "eq", room_id)], order_by="created_at")
        return [M.Participant(**r) for r in rows]

    # -----------------------
    # Prompt events
    # -----------------------

    def insert_prompt_event(
        self,
        room_id: str,
        participant_id: str,
        kind: str,
        text: Optional[str] = None,
        payload_url: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> M.PromptEvent:
        record = {
            "room_id": room_id,
            "participant_id": participant_id,
            "kind": kind,
            "text": text or None,
            "payload_url": payload_url or None,
        }
        if created_at is not None:
            record["created_at"] = created_at
        return M.PromptEvent(**self.insert("prompt_events", record))

    def events_after(self, room_id: str, cutoff: datetime, limit: int) -> List[M.PromptEvent]:
        rows = self.query(
            "prompt_events",
            [("room_id", "eq", room_id), ("created_at", "gt", cutoff)],
            order_by="created_at",
            limit=limit,
        )
        return [M.PromptEvent(**r) for r in rows]

    def events_by_ids(self, room_id: str, event_ids: List[str]) -> List[M.PromptEvent]:
        if not event_ids:
            return []
        rows = self.query(
            "prompt_events",
            [("room_id", "eq", room_id), ("id", "in", event_ids)],
            order_by="created_at",
        )
        return [M.PromptEvent(**r) for r in rows]

    def list_prompt_events(self, room_id: str) -> List[M.PromptEvent]:
        rows = self.query("prompt_events", [("room_id", "eq", room_id)], order_by="created_at")
        return [M.PromptEvent(**r) for r in rows]

    def events_inserted_after(
        self, watermark: datetime, limit: int = 500, inclusive: bool = False
    ) -> List[M.PromptEvent]:
        """All rooms; used by the worker's insert watcher."""
        rows = self.query(
            "prompt_events",
            [("created_at", "gte" if inclusive else "gt", watermark)],
            order_by="created_at",
            limit=limit,
        )
        return [M.PromptEvent(**r) for r in rows]

    # -----------------------
    # Analyses
    # -----------------------

    @staticmethod
    def _to_analysis(row: Dict[str, Any]) -> M.PromptAnalysis:
        return M.PromptAnalysis(
            id=row["id"],
            room_id=row["room_id"],
            created_at=row["created_at"],
            prompt_event_ids=list(row["prompt_event_ids"] or []),
            analysis=M.AnalysisResult.model_validate(row["analysis_json"] or {}),
            thinking_trace=row["thinking_trace"] or "",
        )

    def insert_analysis(
        self,
        room_id: str,
        prompt_event_ids: List[str],
        analysis: M.AnalysisResult,
        thinking_trace: str = "",
    ) -> M.PromptAnalysis:
        row = self.insert(
            "prompt_analyses",
            {
                "room_id": room_id,
                "prompt_event_ids": list(prompt_event_ids),
                "analysis_json": analysis.to_json_dict(),
                "thinking_trace": thinking_trace,
            },
        )
        return self._to_analysis(row)

    def latest_analysis(self, room_id: str) -> Optional[M.PromptAnalysis]:
        row = self.query_one("prompt_analyses", [("room_id", "eq", room_id)], order_by="created_at", descending=True)
        return self._to_analysis(row) if row else None

    def get_analysis(self, analysis_id: str) -> Optional[M.PromptAnalysis]:
        row = self.query_one("prompt_analyses", [("id", "eq", analysis_id)])
        return self._to_analysis(row) if row else None

    def list_analyses(self, room_id: str) -> List[M.PromptAnalysis]:
        rows = self.query("prompt_analyses", [("room_id", "eq", room_id)], order_by="created_at")
        return [self._to_analysis(r) for r in rows]

    # -----------------------
    # Design specs
    # -----------------------

    @staticmethod
    def _to_spec(row: Dict[str, Any]) -> M.StoredSpec:
        spec = M.DesignSpec.model_validate(row["spec_json"])
        spec.spec_hash = row["spec_hash"]
        return M.StoredSpec(
            id=row["id"],
            room_id=row["room_id"],
            analysis_id=row["analysis_id"],
            spec_hash=row["spec_hash"],
            spec=spec,
            created_at=row["created_at"],
        )

    def latest_spec(self, room_id: str) -> Optional[M.StoredSpec]:
        row = self.query_one("design_specs", [("room_id", "eq", room_id)], order_by="created_at", descending=True)
        return self._to_spec(row) if row else None

    def get_spec(self, spec_id: str) -> Optional[M.StoredSpec]:
        row = self.query_one("design_specs", [("id", "eq", spec_id)])
        return self._to_spec(row) if row else None

    def find_spec_by_hash(self, room_id: str, spec_hash: str) -> Optional[M.StoredSpec]:
        row = self.query_one("design_specs", [("room_id", "eq", room_id), ("spec_hash", "eq", spec_hash)])
        return self._to_spec(row) if row else None

    def insert_spec(
        self,
        room_id: str,
        analysis_id: Optional[str],
        spec_hash: str,
        spec: M.DesignSpec,
    ) -> M.StoredSpec:
        """
        Insert a spec, or return the existing row when the (room, hash) pair
        is already stored.
        """
        try:
            row = self.insert(
                "design_specs",
                {
                    "room_id": room_id,
                    "analysis_id": analysis_id,
                    "spec_hash": spec_hash,
                    "spec_json": spec.content(),
                },
            )
        except IntegrityError:
            existing = self.find_spec_by_hash(room_id, spec_hash)
            if existing is None:
                raise
            return existing
        return self._to_spec(row)

    def list_specs(self, room_id: str) -> List[M.StoredSpec]:
        rows = self.query("design_specs", [("room_id", "eq", room_id)], order_by="created_at")
        return [self._to_spec(r) for r in rows]

    # -----------------------
    # Patches and files
    # -----------------------

    def find_patch_by_spec_hash(self, room_id: str, spec_hash: str) -> Optional[M.StoredPatch]:
        row = self.query_one("patches", [("room_id", "eq", room_id), ("base_spec_hash", "eq", spec_hash)])
        return self._to_patch(row) if row else None

    def insert_patch(self, room_id: str, base_spec_hash: Optional[str], patch_json: Dict[str, Any]) -> M.StoredPatch:
        row = self.insert(
            "patches",
            {"room_id": room_id, "base_spec_hash": base_spec_hash, "patch_json": patch_json},
        )
        return self._to_patch(row)

    def list_patches(self, room_id: str) -> List[M.StoredPatch]:
        rows = self.query("patches", [("room_id", "eq", room_id)], order_by="created_at")
        return [self._to_patch(r) for r in rows]

    @staticmethod
    def _to_patch(row: Dict[str, Any]) -> M.StoredPatch:
        return M.StoredPatch(
            id=row["id"],
            room_id=row["room_id"],
            base_spec_hash=row["base_spec_hash"],
            patch=row["patch_json"] or {},
            created_at=row["created_at"],
        )

    def get_file(self, room_id: str, path: str) -> Optional[str]:
        row = self.query_one("files", [("room_id", "eq", room_id), ("path", "eq", path)])
        return row["content"] if row else None

    def list_files(self, room_id: str) -> Dict[str, str]:
        rows = self.query("files", [("room_id", "eq", room_id)], order_by="path")
        return {r["path"]: r["content"] for r in rows}

    def upsert_file(self, room_id: str, path: str, content: str) -> None:
        session = self.SessionFactory()
        try:
            row = session.get(E.RoomFile, (room_id, path))
            if row is None:
                session.add(E.RoomFile(room_id=room_id, path=path, content=content))
            else:
                row.content = content
                row.updated_at = datetime.now(timezone.utc)
            session.commit()
        finally:
            session.close()

    def delete_file(self, room_id: str, path: str) -> None:
        session = self.SessionFactory()
        try:
            row = session.get(E.RoomFile, (room_id, path))
            if row is not None:
                session.delete(row)
                session.commit()
        finally:
            session.close()

    # -----------------------
    # Finish requests
    # -----------------------

    @staticmethod
    def _to_finish(row: Dict[str, Any]) -> M.FinishRequest:
        return M.FinishRequest(
            id=row["id"],
            room_id=row["room_id"],
            requester_id=row["requester_id"],
            approver_id=row["approver_id"],
            status=row["status"],
            final_report=row["final_report_json"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def find_finish(self, room_id: str, status: M.FinishStatus) -> Optional[M.FinishRequest]:
        row = self.query_one(
            "room_finishes",
            [("room_id", "eq", room_id), ("status", "eq", status.value)],
            order_by="created_at",
            descending=True,
        )
        return self._to_finish(row) if row else None

    def latest_finish(self, room_id: str) -> Optional[M.FinishRequest]:
        row = self.query_one("room_finishes", [("room_id", "eq", room_id)], order_by="created_at", descending=True)
        return self._to_finish(row) if row else None

    def get_finish(self, request_id: str) -> Optional[M.FinishRequest]:
        row = self.query_one("room_finishes", [("id", "eq", request_id)])
        return self._to_finish(row) if row else None

    def insert_finish(self, room_id: str, requester_id: str) -> M.FinishRequest:
        row = self.insert(
            "room_finishes",
            {"room_id": room_id, "requester_id": requester_id, "status": M.FinishStatus.PENDING.value},
        )
        return self._to_finish(row)

    def update_finish(self, request_id: str, **fields) -> M.FinishRequest:
        fields.setdefault("updated_at", datetime.now(timezone.utc))
        row = self.update("room_finishes", request_id, fields)
        if row is None:
            raise KeyError(f"Finish request not found: {request_id}")
        return self._to_finish(row)

    # -----------------------
    # Commands
    # -----------------------

    def insert_command(
        self,
        room_id: str,
        participant_id: Optional[str],
        content: str,
        created_at: Optional[datetime] = None,
    ) -> M.RoomCommand:
        record = {"room_id": room_id, "participant_id": participant_id, "content": content}
        if created_at is not None:
            record["created_at"] = created_at
        return M.RoomCommand(**self.insert("room_commands", record))

    def commands_since(self, room_id: str, cutoff: datetime) -> List[M.RoomCommand]:
        rows = self.query(
            "room_commands",
            [("room_id", "eq", room_id), ("created_at", "gte", cutoff)],
            order_by="created_at",
        )
        return [M.RoomCommand(**r) for r in rows]
