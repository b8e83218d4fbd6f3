import asyncio
import threading
import random
import time
import traceback
import logging
from typing import Callable, TypeVar, Any, Dict, Tuple

from langchain_core.messages import HumanMessage

from vibe_rooms.errors import MaxRetryErrorsException

T = TypeVar("T")

logger = logging.getLogger("vibe_rooms")


# Global backoff state (shared across all clients)
_global_backoff_lock = threading.Lock()
_global_wait_until = 0.0
_global_backoff_seconds = 30.0
_GLOBAL_BACKOFF_MAX = 600.0


def call_with_retries_sync(
    fn: Callable[[], T],
    *,
    retries: int = 1,
    log: Callable[[str], None] | None = None,
) -> T:
    """
    Run a sync LLM call with global 429/timeout backoff + retries.
    retries=1 means a single attempt that still honours a backoff window
    opened by another client.
    """
    last_exception: Exception | None = None

    def _is_timeout_error(e: Exception) -> bool:
        if isinstance(e, asyncio.TimeoutError):
            return True
        msg = repr(e)
        return "TimeoutError" in msg or "timed out" in msg.lower()

    def _is_resource_exhausted_error(e: Exception) -> bool:
        msg = str(e)
        return (
            "429" in msg
            and (
                "RESOURCE_EXHAUSTED" in msg
                or "Resource has been exhausted" in msg
                or "Too Many Requests" in msg
            )
        )

    def _respect_global_backoff() -> None:
        while True:
            with _global_backoff_lock:
                now = time.monotonic()
                wait = _global_wait_until - now
            if wait <= 0:
                return
            time.sleep(min(wait, 1.0))

    def _register_429_and_get_delay() -> float:
        global _global_wait_until, _global_backoff_seconds

        with _global_backoff_lock:
            now = time.monotonic()
            base = _global_backoff_seconds
            delay = random.uniform(base * 0.95, base * 1.35)
            _global_backoff_seconds = min(_global_backoff_seconds * 2, _GLOBAL_BACKOFF_MAX)
            _global_wait_until = max(_global_wait_until, now + delay)
            return delay

    def _reset_backoff_on_success() -> None:
        global _global_backoff_seconds
        with _global_backoff_lock:
            _global_backoff_seconds = max(1.0, _global_backoff_seconds * 0.5)

    for attempt in range(max(1, retries)):
        _respect_global_backoff()
        start_time = time.time()
        try:
            result = fn()
            _reset_backoff_on_success()
            return result
        except Exception as e:
            elapsed = time.time() - start_time
            last_exception = e

            if _is_resource_exhausted_error(e) or _is_timeout_error(e):
                delay = _register_429_and_get_delay()
                msg = f"Attempt {attempt+1} got 429/timeout, backing off ~{delay:.1f}s."
            else:
                msg = f"Attempt {attempt+1} failed."

            if log:
                log(f"{msg} (elapsed={elapsed:.2f}s): {e}\n{traceback.format_exc()}")

    raise MaxRetryErrorsException(f"All {max(1, retries)} attempt(s) failed: {last_exception}") from last_exception


def is_openai_model(model_name: str) -> bool:
    prefixes = ("gpt-", "gpt4", "o3", "o4")
    return any(model_name.startswith(p) for p in prefixes)


def is_anthropic_model(model_name: str) -> bool:
    return model_name.startswith("claude-")


def parse_model_name(raw: str) -> Tuple[str, Dict[str, Any]]:
    """Parse 'gpt-5.1_low' style names into (base_model, openai_params).

    The optional suffix is a reasoning effort (none|minimal|low|medium|high).
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("parse_model_name: No Model Name passed. ")

    base, _, suffix = raw.partition("_")
    if not suffix:
        return base, {}

    effort = suffix.strip().lower()
    if effort not in {"none", "minimal", "low", "medium", "high"}:
        raise ValueError(f"parse_model_name: Unknown model suffix token '{effort}' in '{raw}'. ")
    return base, {"reasoning": {"effort": effort}}


class LlmClient:
    """
    Minimal wrapper for "completion-style" use:

        text = llm.invoke("some prompt")

    Under the hood:
    - Gemini on Vertex: VertexAI.invoke(prompt)
    - Claude on Vertex: ChatAnthropicVertex.invoke([HumanMessage])
    - OpenAI: Responses API (client.responses.create)
    """

    def __init__(
        self,
        model_name: str,
        *,
        vertex_project: str,
        vertex_region: str,
        timeout: float | None = None,
        max_tokens: int = 8192,
        retries: int = 1,
    ):
        self.model_name = model_name
        self._timeout = timeout
        self._retries = retries
        self._openai_params: Dict[str, Any] = {}
        self._vertex = None
        self._client = None

        if is_openai_model(model_name):
            from openai import OpenAI

            self.provider = "openai"
            self.model_name, self._openai_params = parse_model_name(model_name)
            client_kwargs: Dict[str, Any] = {"max_retries": 0}
            if timeout is not None:
                client_kwargs["timeout"] = timeout
            self._client = OpenAI(**client_kwargs)
        elif is_anthropic_model(model_name):
            from langchain_google_vertexai.model_garden import ChatAnthropicVertex

            self.provider = "anthropic"
            self._vertex = ChatAnthropicVertex(
                project=vertex_project,
                location=vertex_region,
                model_name=model_name,
                max_output_tokens=max_tokens,
            )
        else:
            from langchain_google_vertexai import VertexAI

            self.provider = "vertex"
            self._vertex = VertexAI(
                project=vertex_project,
                location=vertex_region,
                model_name=model_name,
                max_output_tokens=max_tokens,
                timeout=timeout,
            )

    def _invoke_once(self, prompt: str) -> str:
        """
        Single HTTP call without retries/backoff.
        """
        if self.provider == "vertex":
            resp = self._vertex.invoke(prompt)
            if isinstance(resp, str):
                return resp
            return getattr(resp, "content", str(resp))

        if self.provider == "anthropic":
            resp = self._vertex.invoke([HumanMessage(content=prompt)])
            content = getattr(resp, "content", resp)
            if isinstance(content, list):
                # content blocks: keep the text ones
                return "".join(
                    b.get("text", "") if isinstance(b, dict) else str(b) for b in content
                )
            return str(content)

        resp = self._client.responses.create(
            model=self.model_name,
            input=prompt,
            **self._openai_params,
        )
        text = getattr(resp, "output_text", "") or ""
        return text.strip()

    def invoke(self, prompt: str, *, retries: int | None = None) -> str:
        """
        Synchronous call with global 429/timeout backoff.
        """
        return call_with_retries_sync(
            lambda: self._invoke_once(prompt),
            retries=self._retries if retries is None else retries,
            log=lambda msg: logger.warning(f"[LLM-RETRY] {msg}"),
        )
