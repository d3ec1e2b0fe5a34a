"""Genre analysis capability backed by a chat model."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import ValidationError as PydanticValidationError

from ..llm.transport import ChatTransport
from .capabilities import invoke_transport, load_json_payload, truncate_text
from .errors import CapabilityFailure, SchemaViolation
from .schema import AnalysisResult, Genre

logger = logging.getLogger(__name__)

ANALYSIS_CHAR_LIMIT = 30_000
STAGE = "analysis"


def _analysis_schema_dict() -> Dict[str, Any]:
    return AnalysisResult.model_json_schema(by_alias=True)


class AnalysisPromptBuilder:
    """Assemble deterministic prompts for the analysis capability."""

    SYSTEM_PROMPT = (
        "You are a precise literary analyst specialised in Chinese web novels and their "
        "comic/animation adaptations."
    )

    def __init__(self, *, content_language: str = "Simplified Chinese", char_limit: int = ANALYSIS_CHAR_LIMIT) -> None:
        self.content_language = content_language
        self.char_limit = char_limit

    def build_messages(self, text: str) -> List[BaseMessage]:
        excerpt = truncate_text(text, self.char_limit).strip()
        if not excerpt:
            raise ValueError("Source text is empty; unable to build prompt.")

        schema_json = json.dumps(_analysis_schema_dict(), ensure_ascii=False, indent=2)
        genres = "、".join(genre.value for genre in Genre)
        prompt_lines = [
            "Analyse the following web novel text for a motion comic adaptation.",
            f"1. Identify its primary genre. Use exactly one of: {genres}.",
            "2. Extract the main characters with role, description and traits.",
            "3. Name the core themes and write a compelling logline.",
            "4. Assess pacing and the target audience.",
            "5. Output must be valid JSON adhering to the provided schema. Do not include markdown fences.",
            f"6. All values in the JSON output must be written in {self.content_language}.",
            "\nJSON schema:",
            schema_json,
            "\nNovel text segment:",
            "```text",
            excerpt,
            "```",
        ]
        if len(text) > self.char_limit:
            prompt_lines.append("(text truncated for analysis)")

        return [
            SystemMessage(content=f"{self.SYSTEM_PROMPT} Always answer in {self.content_language}."),
            HumanMessage(content="\n".join(prompt_lines)),
        ]


class AnalysisEngine:
    """Run the analysis capability: text in, :class:`AnalysisResult` out.

    Only the first ``char_limit`` characters of the text are submitted.
    Empty or non-JSON replies raise :class:`CapabilityFailure`; JSON that
    does not fit the schema raises :class:`SchemaViolation`.
    """

    def __init__(
        self,
        transport: ChatTransport,
        *,
        content_language: str = "Simplified Chinese",
        char_limit: int = ANALYSIS_CHAR_LIMIT,
    ) -> None:
        self._transport = transport
        self._prompt_builder = AnalysisPromptBuilder(content_language=content_language, char_limit=char_limit)

    def analyze(self, text: str) -> AnalysisResult:
        try:
            messages = self._prompt_builder.build_messages(text)
        except ValueError as exc:
            raise CapabilityFailure(str(exc), capability=STAGE) from exc
        response = invoke_transport(self._transport, STAGE, messages)
        return parse_analysis(response)


def parse_analysis(response: Any) -> AnalysisResult:
    payload = load_json_payload(response, capability=STAGE)
    if not isinstance(payload, dict):
        raise SchemaViolation("Analysis response must be a JSON object", capability=STAGE)
    try:
        result = AnalysisResult.model_validate(payload)
    except PydanticValidationError as exc:
        raise SchemaViolation(f"Analysis response does not match schema: {exc}", capability=STAGE) from exc
    logger.debug("Parsed analysis '%s' (%s, %d characters)", result.title, result.genre.value, len(result.characters))
    return result
