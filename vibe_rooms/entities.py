# vibe_rooms/entities.py
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

from typing import TypeAlias
UUID: TypeAlias = str

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid4())


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )


class Room(Base, TimestampMixin):
    __tablename__ = "rooms"

    id: Mapped[UUID] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String, nullable=False, default="")

    # code-generation platform context (command cycle variant)
    v0_project_id: Mapped[str | None] = mapped_column(String)
    v0_chat_id: Mapped[str | None] = mapped_column(String)
    v0_version_id: Mapped[str | None] = mapped_column(String)
    v0_deployment_id: Mapped[str | None] = mapped_column(String)
    v0_preview_url: Mapped[str | None] = mapped_column(Text)


class Participant(Base, TimestampMixin):
    __tablename__ = "participants"

    id: Mapped[UUID] = mapped_column(String(36), primary_key=True, default=_uuid)
    room_id: Mapped[UUID] = mapped_column(
        String(36), ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    color: Mapped[str] = mapped_column(String(16), nullable=False)
    weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    avatar_url: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (Index("ix_participants_room_id", "room_id"),)


class PromptEvent(Base, TimestampMixin):
    __tablename__ = "prompt_events"

    id: Mapped[UUID] = mapped_column(String(36), primary_key=True, default=_uuid)
    room_id: Mapped[UUID] = mapped_column(
        String(36), ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    participant_id: Mapped[UUID] = mapped_column(String(36), nullable=False)
    kind: Mapped[str] = mapped_column(String(8), nullable=False, default="text")  # text | image | audio
    text: Mapped[str | None] = mapped_column(Text)
    payload_url: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (Index("ix_prompt_events_room_created", "room_id", "created_at"),)


class PromptAnalysis(Base, TimestampMixin):
    __tablename__ = "prompt_analyses"

    id: Mapped[UUID] = mapped_column(String(36), primary_key=True, default=_uuid)
    room_id: Mapped[UUID] = mapped_column(
        String(36), ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    prompt_event_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    analysis_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    thinking_trace: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (Index("ix_prompt_analyses_room_created", "room_id", "created_at"),)


class DesignSpec(Base, TimestampMixin):
    __tablename__ = "design_specs"

    id: Mapped[UUID] = mapped_column(String(36), primary_key=True, default=_uuid)
    room_id: Mapped[UUID] = mapped_column(
        String(36), ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    analysis_id: Mapped[UUID | None] = mapped_column(
        String(36), ForeignKey("prompt_analyses.id", ondelete="SET NULL")
    )
    spec_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    spec_json: Mapped[dict] = mapped_column(JSON, nullable=False)

    __table_args__ = (
        UniqueConstraint("room_id", "spec_hash", name="uq_design_specs_room_hash"),
        Index("ix_design_specs_room_created", "room_id", "created_at"),
    )


class Patch(Base, TimestampMixin):
    __tablename__ = "patches"

    id: Mapped[UUID] = mapped_column(String(36), primary_key=True, default=_uuid)
    room_id: Mapped[UUID] = mapped_column(
        String(36), ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    # NULL for command-cycle log rows, which are not built from a spec
    base_spec_hash: Mapped[str | None] = mapped_column(String(64))
    patch_json: Mapped[dict] = mapped_column(JSON, nullable=False)

    __table_args__ = (
        UniqueConstraint("room_id", "base_spec_hash", name="uq_patches_room_spec_hash"),
    )


class RoomFile(Base):
    __tablename__ = "files"

    room_id: Mapped[UUID] = mapped_column(
        String(36), ForeignKey("rooms.id", ondelete="CASCADE"), primary_key=True
    )
    path: Mapped[str] = mapped_column(String(512), primary_key=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class RoomFinish(Base, TimestampMixin):
    __tablename__ = "room_finishes"

    id: Mapped[UUID] = mapped_column(String(36), primary_key=True, default=_uuid)
    room_id: Mapped[UUID] = mapped_column(
        String(36), ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    requester_id: Mapped[UUID] = mapped_column(String(36), nullable=False)
    approver_id: Mapped[UUID | None] = mapped_column(String(36))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    final_report_json: Mapped[dict | None] = mapped_column(JSON)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=_utcnow)

    __table_args__ = (Index("ix_room_finishes_room_status", "room_id", "status"),)


class RoomCommand(Base, TimestampMixin):
    __tablename__ = "room_commands"

    id: Mapped[UUID] = mapped_column(String(36), primary_key=True, default=_uuid)
    room_id: Mapped[UUID] = mapped_column(
        String(36), ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    participant_id: Mapped[UUID | None] = mapped_column(String(36))
    content: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (Index("ix_room_commands_room_created", "room_id", "created_at"),)
