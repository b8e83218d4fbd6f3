# vibe_rooms/models.py
"""
Typed domain records.

Everything that crosses the reasoning-service boundary (analysis results,
design specs, file patches) is validated here, so a malformed answer is
rejected at the edge instead of surfacing later in the report logic.
JSON uses camelCase keys (what the prompts ask the model for); Python code
uses snake_case attributes.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self, **kwargs) -> dict:
        return self.model_dump(by_alias=True, mode="json", **kwargs)


# -----------------------
# Rooms
# -----------------------

class Room(CamelModel):
    id: str
    name: str = ""
    v0_project_id: Optional[str] = None
    v0_chat_id: Optional[str] = None
    v0_version_id: Optional[str] = None
    v0_deployment_id: Optional[str] = None
    v0_preview_url: Optional[str] = None
    created_at: Optional[datetime] = None


class Participant(CamelModel):
    id: str
    room_id: str
    display_name: str
    color: str
    weight: float = 1.0
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None


# -----------------------
# Prompts and analysis
# -----------------------

class PromptKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"


class PromptEvent(CamelModel):
    id: str
    room_id: str
    participant_id: str
    kind: PromptKind = PromptKind.TEXT
    text: Optional[str] = None
    payload_url: Optional[str] = None
    created_at: datetime

    def display_text(self) -> str:
        return self.text or f"[{self.kind.value}]"


class AdditiveGroup(CamelModel):
    prompt_ids: List[str] = Field(min_length=2)
    explanation: str = ""


class ConflictType(str, Enum):
    MUTUALLY_EXCLUSIVE = "mutually-exclusive"
    CONTRADICTORY = "contradictory"


class Conflict(CamelModel):
    prompt_ids: List[str] = Field(min_length=1)
    type: ConflictType = ConflictType.CONTRADICTORY
    winner: str
    reasoning: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _winner_is_a_member(self):
        if self.winner not in self.prompt_ids:
            raise ValueError(f"conflict winner {self.winner!r} is not one of {self.prompt_ids}")
        return self

    def losers(self) -> List[str]:
        return [pid for pid in self.prompt_ids if pid != self.winner]


class AnalysisResult(CamelModel):
    additive: List[AdditiveGroup] = Field(default_factory=list)
    conflicts: List[Conflict] = Field(default_factory=list)
    prioritized_prompts: List[str] = Field(default_factory=list)


class PromptAnalysis(CamelModel):
    id: str
    room_id: str
    created_at: datetime
    prompt_event_ids: List[str]
    analysis: AnalysisResult
    thinking_trace: str = ""


# -----------------------
# Design specs
# -----------------------

class Palette(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    bg: str = "#ffffff"
    fg: str = "#111111"
    accent: List[str] = Field(default_factory=list)


class LayoutSection(CamelModel):
    id: str
    type: str
    props: Dict[str, Any] = Field(default_factory=dict)


class Layout(CamelModel):
    kind: str = "landing"
    sections: List[LayoutSection] = Field(default_factory=list)


class Component(CamelModel):
    path: str = ""
    type: str
    props: Dict[str, Any] = Field(default_factory=dict)


class Tension(CamelModel):
    participant_id: str
    weight: float = Field(ge=0.0, le=1.0)
    reason: Optional[str] = None


class DesignSpec(CamelModel):
    spec_hash: Optional[str] = None
    palette: Palette = Field(default_factory=Palette)
    layout: Layout = Field(default_factory=Layout)
    components: List[Component] = Field(default_factory=list)
    tensions: List[Tension] = Field(default_factory=list)
    theme_vars: Dict[str, str] = Field(default_factory=dict)

    def content(self) -> dict:
        """Hashable content: everything except the hash itself."""
        return self.to_json_dict(exclude={"spec_hash"})


class StoredSpec(CamelModel):
    id: str
    room_id: str
    analysis_id: Optional[str] = None
    spec_hash: str
    spec: DesignSpec
    created_at: datetime


# -----------------------
# File patches
# -----------------------

class SetFile(CamelModel):
    op: Literal["setFile"] = "setFile"
    path: str
    content: str


class DeleteFile(CamelModel):
    op: Literal["deleteFile"] = "deleteFile"
    path: str


class Mkdir(CamelModel):
    op: Literal["mkdir"] = "mkdir"
    path: str


PatchOp = Annotated[Union[SetFile, DeleteFile, Mkdir], Field(discriminator="op")]


class FilePatch(CamelModel):
    base_spec_hash: Optional[str] = None
    ops: List[PatchOp] = Field(default_factory=list)


class StoredPatch(CamelModel):
    id: str
    room_id: str
    base_spec_hash: Optional[str] = None
    patch: Dict[str, Any]
    created_at: datetime


# -----------------------
# Finish workflow
# -----------------------

class FinishStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class FinishRequest(CamelModel):
    id: str
    room_id: str
    requester_id: str
    approver_id: Optional[str] = None
    status: FinishStatus
    final_report: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


# -----------------------
# Commands (platform cycle)
# -----------------------

class RoomCommand(CamelModel):
    id: str
    room_id: str
    participant_id: Optional[str] = None
    content: str
    created_at: datetime


class RankedCommand(CamelModel):
    text: str
    count: int


class SynthesizedPrompt(CamelModel):
    summary: str = ""
    top_commands: List[RankedCommand] = Field(default_factory=list)
    raw_commands: List[str] = Field(default_factory=list)


# -----------------------
# Status broadcasts
# -----------------------

class StatusPhase(str, Enum):
    ANALYZING = "analyzing"
    PLANNING = "planning"
    BUILDING = "building"


class StatusKind(str, Enum):
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    ERROR = "error"


class StatusUpdate(CamelModel):
    phase: StatusPhase
    status: StatusKind
    percent: int = 0
    message: Optional[str] = None
