"""Episode planning capability and the plan validation it relies on.

The planning capability breaks the analysed text into an ordered list of
episodes. Its answer is untrusted: :func:`enforce_unique_episodes` is what
the stage controller applies afterwards so the active plan never holds two
entries with the same episode number.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from typing import Any, List, Sequence

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..config import DuplicatePolicy
from ..llm.transport import ChatTransport
from .capabilities import invoke_transport, load_json_payload, truncate_text
from .errors import CapabilityFailure, SchemaViolation
from .schema import AnalysisResult, EpisodePlanEntry

logger = logging.getLogger(__name__)

PLANNING_CHAR_LIMIT = 50_000
STAGE = "planning"
WRAPPER_KEYS = ("episodes", "plan", "items")

_PLAN_ADAPTER = TypeAdapter(List[EpisodePlanEntry])


class PlanningPromptBuilder:
    """Assemble prompts asking for an episode breakdown."""

    SYSTEM_PROMPT = "You are a story editor who structures web novels into comic and animation episodes."

    def __init__(
        self,
        *,
        content_language: str = "Simplified Chinese",
        char_limit: int = PLANNING_CHAR_LIMIT,
        target_episodes: tuple[int, int] = (10, 12),
    ) -> None:
        self.content_language = content_language
        self.char_limit = char_limit
        self.target_episodes = target_episodes

    def build_messages(self, analysis: AnalysisResult, text: str) -> List[BaseMessage]:
        excerpt = truncate_text(text, self.char_limit).strip()
        if not excerpt:
            raise ValueError("Source text is empty; unable to build prompt.")

        analysis_json = json.dumps(analysis.model_dump(mode="json", by_alias=True), ensure_ascii=False, indent=2)
        entry_schema = json.dumps(EpisodePlanEntry.model_json_schema(by_alias=True), ensure_ascii=False, indent=2)
        low, high = self.target_episodes
        prompt_lines = [
            "Based on the following novel analysis and text, break the story down into comic/animation episodes.",
            "Each episode should be fast-paced, with a clear hook and a cliffhanger where possible.",
            f"Target length: {low}-{high} episodes for this segment.",
            "Number episodes consecutively starting at 1, in narrative order.",
            "Respond with a JSON array of objects following this schema. Do not include markdown fences.",
            entry_schema,
            f"All output fields must be written in {self.content_language}.",
            "\nAnalysis:",
            analysis_json,
            "\nNovel text:",
            "```text",
            excerpt,
            "```",
        ]
        return [
            SystemMessage(content=self.SYSTEM_PROMPT),
            HumanMessage(content="\n".join(prompt_lines)),
        ]


class PlanningEngine:
    """Run the planning capability: analysis and text in, ordered plan out."""

    def __init__(
        self,
        transport: ChatTransport,
        *,
        content_language: str = "Simplified Chinese",
        char_limit: int = PLANNING_CHAR_LIMIT,
        target_episodes: tuple[int, int] = (10, 12),
    ) -> None:
        self._transport = transport
        self._prompt_builder = PlanningPromptBuilder(
            content_language=content_language,
            char_limit=char_limit,
            target_episodes=target_episodes,
        )
        self.target_episodes = target_episodes

    def plan(self, analysis: AnalysisResult, text: str) -> List[EpisodePlanEntry]:
        try:
            messages = self._prompt_builder.build_messages(analysis, text)
        except ValueError as exc:
            raise CapabilityFailure(str(exc), capability=STAGE) from exc
        response = invoke_transport(self._transport, STAGE, messages)
        plan = parse_plan(response)

        low, high = self.target_episodes
        if not low <= len(plan) <= high:
            # Advisory only.
            logger.info("Plan has %d episodes, outside the %d-%d target", len(plan), low, high)
        return plan


def parse_plan(response: Any) -> List[EpisodePlanEntry]:
    payload = load_json_payload(response, capability=STAGE)
    if isinstance(payload, dict):
        for key in WRAPPER_KEYS:
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break
    if not isinstance(payload, list):
        raise SchemaViolation("Plan response must be a JSON array of episodes", capability=STAGE)
    try:
        plan = _PLAN_ADAPTER.validate_python(payload)
    except PydanticValidationError as exc:
        raise SchemaViolation(f"Plan response does not match schema: {exc}", capability=STAGE) from exc
    if not plan:
        raise SchemaViolation("Plan response contained no episodes", capability=STAGE)
    return plan


def duplicate_episode_numbers(plan: Sequence[EpisodePlanEntry]) -> list[int]:
    counts = Counter(entry.episode_number for entry in plan)
    return sorted(number for number, count in counts.items() if count > 1)


def enforce_unique_episodes(
    plan: Sequence[EpisodePlanEntry],
    policy: DuplicatePolicy,
) -> tuple[tuple[EpisodePlanEntry, ...], list[int]]:
    """Apply ``policy`` to duplicate episode numbers.

    Returns the validated plan and the duplicated numbers that were found.
    ``reject`` raises :class:`SchemaViolation` on any duplicate; ``renumber``
    renumbers the whole plan 1..N keeping its order.
    """

    if not plan:
        raise SchemaViolation("Plan contains no episodes", capability=STAGE)
    duplicates = duplicate_episode_numbers(plan)
    if not duplicates:
        return tuple(plan), []
    if policy == "reject":
        raise SchemaViolation(
            f"Plan contains duplicate episode numbers: {', '.join(map(str, duplicates))}",
            capability=STAGE,
        )
    if policy == "renumber":
        renumbered = tuple(
            entry.model_copy(update={"episode_number": index})
            for index, entry in enumerate(plan, start=1)
        )
        return renumbered, duplicates
    raise ValueError(f"Unsupported duplicate policy '{policy}'")
