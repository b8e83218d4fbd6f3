# vibe_rooms/reasoning_service.py
"""
Adapter around the LLM for the three pipeline operations.

- ``analyze``: async generator, yields ThinkingChunk* then AnalysisComplete.
  The model answers with 1-based prompt numbers; they are mapped back to
  event ids here.
- ``plan``: DesignSpec for the prioritized prompts, merged into the current spec.
- ``build``: FilePatch for a DesignSpec, given the current primary artifact.

Every answer is parsed with the fault-tolerant JSON loader and validated
against ``vibe_rooms.models``; anything that still does not fit raises
MalformedResponseError. Transport failures propagate as ReasoningServiceError.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, List, Optional, Union

from pydantic import ValidationError

from vibe_rooms import config
from vibe_rooms.errors import MalformedResponseError, ReasoningServiceError
from vibe_rooms.llm_client import LlmClient
from vibe_rooms.models import AnalysisResult, DesignSpec, FilePatch, PromptEvent
from vibe_rooms.reasoning_prompts import (
    ANALYZER_CURRENT_STATE,
    ANALYZER_FRESH_START,
    BUILDER_CURRENT_STATE,
    BUILDER_PROMPT,
    CONFLICT_ANALYZER_PROMPT,
    PLANNER_CURRENT_STATE,
    PLANNER_FRESH_START,
    PLANNER_PROMPT,
)
from vibe_rooms.utils import Utils

logger = logging.getLogger("vibe_rooms")

THINKING_CHUNK_SIZE = 100


@dataclass
class ThinkingChunk:
    text: str


@dataclass
class AnalysisComplete:
    analysis: AnalysisResult
    thinking_trace: str


AnalyzerMessage = Union[ThinkingChunk, AnalysisComplete]


class ReasoningService(Utils):
    def __init__(
        self,
        analyzer_llm=None,
        planner_llm=None,
        builder_llm=None,
        primary_path: str = config.PRIMARY_ARTIFACT_PATH,
    ):
        self._analyzer_llm = analyzer_llm
        self._planner_llm = planner_llm
        self._builder_llm = builder_llm
        self.primary_path = primary_path

    # -----------------------
    # LLM plumbing
    # -----------------------

    def _build_llm(self, model_name: str, max_tokens: int) -> LlmClient:
        return LlmClient(
            model_name=model_name,
            vertex_project=config.PROJECT_ID,
            vertex_region=config.REGION,
            timeout=config.LLM_TIMEOUT_SECONDS,
            max_tokens=max_tokens,
            retries=config.LLM_MAX_ATTEMPTS,
        )

    @property
    def analyzer_llm(self):
        if self._analyzer_llm is None:
            self._analyzer_llm = self._build_llm(config.ANALYZER_MODEL, 4096)
        return self._analyzer_llm

    @property
    def planner_llm(self):
        if self._planner_llm is None:
            self._planner_llm = self._build_llm(config.PLANNER_MODEL, 4096)
        return self._planner_llm

    @property
    def builder_llm(self):
        if self._builder_llm is None:
            self._builder_llm = self._build_llm(config.BUILDER_MODEL, 8192)
        return self._builder_llm

    async def _invoke(self, llm, prompt: str, operation: str) -> str:
        try:
            raw = await asyncio.to_thread(llm.invoke, prompt)
        except Exception as e:
            logger.error(f"[ReasoningService] {operation} call failed: {e}")
            raise ReasoningServiceError(f"{operation} call failed: {e}") from e
        raw = raw if isinstance(raw, str) else getattr(raw, "content", str(raw))
        logger.debug(f"[ReasoningService] {operation} raw response:\n{raw}")
        return raw

    # -----------------------
    # analyze
    # -----------------------

    def _analyzer_prompt(self, events: List[PromptEvent], current_spec: Optional[DesignSpec]) -> str:
        if current_spec is not None:
            current_state = self.unsafe_string_format(
                ANALYZER_CURRENT_STATE, SPEC=self.dump_json(current_spec.content())
            )
        else:
            current_state = ANALYZER_FRESH_START

        events_text = "\n".join(
            f"[{i + 1}] Participant {e.participant_id} at {e.created_at.isoformat()}: {e.display_text()}"
            for i, e in enumerate(events)
        )
        return self.unsafe_string_format(
            CONFLICT_ANALYZER_PROMPT, CURRENT_STATE=current_state, EVENTS=events_text
        )

    def _resolve_prompt_ref(self, ref: Any, events: List[PromptEvent]) -> str:
        """
        1-based prompt number (int or numeric string) -> event id.
        A literal event id is accepted as-is.
        """
        ids = [e.id for e in events]
        if isinstance(ref, str) and ref in ids:
            return ref
        try:
            index = int(ref) - 1
        except (TypeError, ValueError):
            raise MalformedResponseError(f"Unrecognised prompt reference: {ref!r}")
        if index < 0 or index >= len(events):
            raise MalformedResponseError(f"Prompt number {ref!r} out of range 1..{len(events)}")
        return ids[index]

    def map_analysis(self, data: dict, events: List[PromptEvent]) -> AnalysisResult:
        if not isinstance(data, dict):
            raise MalformedResponseError("Analysis must be a JSON object")

        def refs(values) -> List[str]:
            if values is None:
                return []
            if not isinstance(values, list):
                raise MalformedResponseError(f"Expected a list of prompt numbers, got {values!r}")
            return [self._resolve_prompt_ref(v, events) for v in values]

        try:
            additive = [
                {**group, "promptIds": refs(group.get("promptIds"))}
                for group in (data.get("additive") or [])
            ]
            conflicts = [
                {
                    **conflict,
                    "promptIds": refs(conflict.get("promptIds")),
                    "winner": self._resolve_prompt_ref(conflict.get("winner"), events),
                }
                for conflict in (data.get("conflicts") or [])
            ]
            return AnalysisResult.model_validate({
                "additive": additive,
                "conflicts": conflicts,
                "prioritizedPrompts": refs(data.get("prioritizedPrompts")),
            })
        except (ValidationError, AttributeError) as e:
            raise MalformedResponseError(f"Analysis does not match schema: {e}") from e

    async def analyze(
        self,
        events: List[PromptEvent],
        current_spec: Optional[DesignSpec] = None,
    ) -> AsyncIterator[AnalyzerMessage]:
        prompt = self._analyzer_prompt(events, current_spec)
        raw = await self._invoke(self.analyzer_llm, prompt, "analyze")

        reasoning, json_text = self.split_reasoning_and_json(raw)
        for i in range(0, len(reasoning), THINKING_CHUNK_SIZE):
            yield ThinkingChunk(text=reasoning[i:i + THINKING_CHUNK_SIZE])

        analysis = self.map_analysis(self.load_fault_tolerant_json(json_text), events)
        yield AnalysisComplete(analysis=analysis, thinking_trace=reasoning)

    # -----------------------
    # plan
    # -----------------------

    async def plan(
        self,
        directive: str,
        prioritized_events: List[PromptEvent],
        current_spec: Optional[DesignSpec],
        analysis: AnalysisResult,
    ) -> DesignSpec:
        if current_spec is not None:
            current_state = self.unsafe_string_format(
                PLANNER_CURRENT_STATE, SPEC=self.dump_json(current_spec.content())
            )
        else:
            current_state = PLANNER_FRESH_START

        events_text = "\n".join(
            f"{i + 1}. (participant {e.participant_id}) \"{e.display_text()}\""
            for i, e in enumerate(prioritized_events)
        )
        prompt = self.unsafe_string_format(
            PLANNER_PROMPT,
            CURRENT_STATE=current_state,
            ANALYSIS=self.dump_json(analysis.to_json_dict()),
            DIRECTIVE=directive,
            EVENTS=events_text,
        )
        raw = await self._invoke(self.planner_llm, prompt, "plan")
        _, json_text = self.split_reasoning_and_json(raw)
        data = self.load_fault_tolerant_json(json_text)
        try:
            return DesignSpec.model_validate(data)
        except ValidationError as e:
            raise MalformedResponseError(f"DesignSpec does not match schema: {e}") from e

    # -----------------------
    # build
    # -----------------------

    async def build(self, spec: DesignSpec, current_artifact: Optional[str] = None) -> FilePatch:
        if current_artifact:
            current_state = self.unsafe_string_format(
                BUILDER_CURRENT_STATE, PRIMARY_PATH=self.primary_path, CURRENT_ARTIFACT=current_artifact
            )
        else:
            current_state = ""

        components = "\n".join(
            f"{i + 1}. {c.type} (path: {c.path}, props: {json.dumps(c.props)})"
            for i, c in enumerate(spec.components)
        ) or "(none)"
        tensions = "\n".join(
            f"- Participant {t.participant_id}: weight {t.weight} ({t.reason or 'no reason'})"
            for t in spec.tensions
        ) or "(none)"

        prompt = self.unsafe_string_format(
            BUILDER_PROMPT,
            CURRENT_STATE=current_state,
            COMPONENTS=components,
            TENSIONS=tensions,
            PRIMARY_PATH=self.primary_path,
            SPEC=self.dump_json(spec.content()),
        )
        raw = await self._invoke(self.builder_llm, prompt, "build")
        _, json_text = self.split_reasoning_and_json(raw)
        data = self.load_fault_tolerant_json(json_text)
        try:
            patch = FilePatch.model_validate(data)
        except ValidationError as e:
            raise MalformedResponseError(f"FilePatch does not match schema: {e}") from e
        patch.base_spec_hash = spec.spec_hash
        return patch
