"""Per-episode script capability.

Scripts are freeform text. The viewer downstream understands a light line
convention, which the prompt asks for but nothing here parses:

``[SCENE]``
    location and time of a new scene.
``[VISUAL]``
    panel or shot composition, expressions, action, lighting.
``[SFX]``
    sound effects.
``SPEAKER: utterance``
    a line of dialogue.
"""

from __future__ import annotations

import logging
from typing import List

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from ..llm.transport import ChatTransport
from .capabilities import invoke_transport, message_text, truncate_text
from .errors import CapabilityError, CapabilityFailure
from .result import SCRIPT_FAILURE_PLACEHOLDER, is_soft_failure
from .schema import AnalysisResult, EpisodePlanEntry

logger = logging.getLogger(__name__)

STAGE = "script"
SCENE_PREFIX = "[SCENE]"
VISUAL_PREFIX = "[VISUAL]"
SFX_PREFIX = "[SFX]"


class ScriptPromptBuilder:
    """Assemble the creative-writing prompt for one episode."""

    SYSTEM_PROMPT = "You are a screenwriter for vertical-scroll comics and motion comics (manju)."

    def __init__(self, *, content_language: str = "Simplified Chinese", char_limit: int | None = None) -> None:
        self.content_language = content_language
        self.char_limit = char_limit

    def build_messages(self, episode: EpisodePlanEntry, analysis: AnalysisResult, text: str) -> List[BaseMessage]:
        lines = [
            "Write a detailed script for a manju (comic / motion comic) based on the following episode plan.",
            "",
            f"Genre: {analysis.genre.value}",
            f"Work: {analysis.title}",
            f"Episode {episode.episode_number}: {episode.title}",
            f"Synopsis: {episode.synopsis}",
        ]
        if episode.key_events:
            lines.append("Key events:")
            lines.extend(f"- {event}" for event in episode.key_events)
        if episode.characters_involved:
            lines.append(f"Key characters: {', '.join(episode.characters_involved)}")

        lines.extend(
            [
                "",
                "Format requirements:",
                f"- {SCENE_PREFIX} Describe the location and time.",
                f"- {VISUAL_PREFIX} Describe the panel/shot composition, expressions, actions, and lighting.",
                f"- {SFX_PREFIX} Sound effects.",
                "- CHARACTER: Dialogue.",
                "- Focus on visual storytelling suitable for a vertical scroll comic or motion comic.",
                f"The script content MUST be written in {self.content_language}.",
            ]
        )

        source = truncate_text(text, self.char_limit).strip()
        if source:
            lines.extend(["", "Source text:", "```text", source, "```"])

        lines.append(f"\nGenerate the script for Episode {episode.episode_number} now.")
        return [
            SystemMessage(content=self.SYSTEM_PROMPT),
            HumanMessage(content="\n".join(lines)),
        ]


class ScriptEngine:
    """Run the script capability for one episode.

    By default failures raise :class:`CapabilityFailure`. ``soft_failure=True``
    keeps the older contract of returning :data:`SCRIPT_FAILURE_PLACEHOLDER`
    instead; the stage controller accepts either.
    """

    def __init__(
        self,
        transport: ChatTransport,
        *,
        content_language: str = "Simplified Chinese",
        char_limit: int | None = None,
        soft_failure: bool = False,
    ) -> None:
        self._transport = transport
        self._prompt_builder = ScriptPromptBuilder(content_language=content_language, char_limit=char_limit)
        self.soft_failure = soft_failure

    def generate_script(self, episode: EpisodePlanEntry, analysis: AnalysisResult, text: str) -> str:
        try:
            return self._generate(episode, analysis, text)
        except CapabilityError:
            if self.soft_failure:
                logger.warning("Script generation failed for episode %s", episode.episode_number, exc_info=True)
                return SCRIPT_FAILURE_PLACEHOLDER
            raise

    def _generate(self, episode: EpisodePlanEntry, analysis: AnalysisResult, text: str) -> str:
        messages = self._prompt_builder.build_messages(episode, analysis, text)
        response = invoke_transport(self._transport, STAGE, messages)
        content = message_text(response).strip()
        if is_soft_failure(content):
            raise CapabilityFailure(
                f"Script for episode {episode.episode_number} came back empty",
                capability=STAGE,
            )
        return content
