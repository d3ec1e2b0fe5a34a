"""Capability contracts and the response helpers shared by the engines."""

from __future__ import annotations

import json
from typing import Any, List, Protocol, Sequence, runtime_checkable

from langchain_core.messages import AIMessage, BaseMessage

from ..llm.transport import ChatTransport
from .errors import CapabilityFailure
from .schema import AnalysisResult, EpisodePlanEntry

__all__ = [
    "AnalysisCapability",
    "PlanningCapability",
    "ScriptCapability",
    "invoke_transport",
    "message_text",
    "strip_code_fence",
    "load_json_payload",
    "truncate_text",
]


@runtime_checkable
class AnalysisCapability(Protocol):
    def analyze(self, text: str) -> AnalysisResult:  # pragma: no cover - interface
        ...


@runtime_checkable
class PlanningCapability(Protocol):
    def plan(self, analysis: AnalysisResult, text: str) -> Sequence[EpisodePlanEntry]:  # pragma: no cover - interface
        ...


@runtime_checkable
class ScriptCapability(Protocol):
    def generate_script(
        self,
        episode: EpisodePlanEntry,
        analysis: AnalysisResult,
        text: str,
    ) -> str:  # pragma: no cover - interface
        ...


def invoke_transport(
    transport: ChatTransport,
    stage: str,
    messages: Sequence[BaseMessage],
) -> AIMessage:
    """Call the transport, reporting any transport error as a capability failure."""

    try:
        return transport.invoke(stage, messages)
    except Exception as exc:
        raise CapabilityFailure(f"{stage} call failed: {exc}", capability=stage) from exc


def truncate_text(text: str, limit: int | None) -> str:
    """Keep the first ``limit`` characters; ``None`` keeps everything."""

    if limit is None or len(text) <= limit:
        return text
    return text[:limit]


def message_text(response: Any) -> str:
    """Flatten an ``AIMessage`` (or plain string) into text."""

    content = response.content if isinstance(response, AIMessage) else getattr(response, "content", response)
    if isinstance(content, list):
        text_chunks: List[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                text_chunks.append(str(item["text"]))
            else:
                text_chunks.append(str(item))
        return "".join(text_chunks)
    return "" if content is None else str(content)


def strip_code_fence(payload: str) -> str:
    stripped = payload.strip()
    if stripped.startswith("```json"):
        inner = stripped[len("```json") :].strip()
        if inner.endswith("```"):
            inner = inner[: -len("```")]
        return inner.strip()
    if stripped.startswith("```") and stripped.endswith("```"):
        inner = stripped[3:-3]
        return inner.strip()
    return stripped


def load_json_payload(response: Any, *, capability: str) -> Any:
    """Parse a JSON reply, raising :class:`CapabilityFailure` when unusable."""

    content = message_text(response).strip()
    if not content:
        raise CapabilityFailure(f"{capability} returned an empty response", capability=capability)
    try:
        return json.loads(strip_code_fence(content))
    except json.JSONDecodeError as exc:
        raise CapabilityFailure(
            f"{capability} response was not valid JSON: {exc}", capability=capability
        ) from exc
