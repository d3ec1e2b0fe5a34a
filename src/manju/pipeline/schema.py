"""Structured schema definitions for analysis and episode-plan outputs."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Annotated, Any, List, Sequence

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

__all__ = [
    "Genre",
    "Character",
    "AnalysisResult",
    "EpisodePlanEntry",
    "plan_to_markdown",
]


class Genre(str, Enum):
    """Closed set of Chinese web-novel genres."""

    XUANHUAN = "玄幻"
    WUXIA = "武侠"
    URBAN = "都市"
    ROMANCE = "言情"
    ANCIENT_ROMANCE = "古言"
    SUSPENSE = "悬疑"
    MYSTERY = "推理"
    SCI_FI = "科幻"
    DOOMSDAY = "末世"
    REBIRTH = "重生"
    TRANSMIGRATION = "穿越"
    OTHER = "其他"

    @classmethod
    def parse(cls, raw: Any) -> "Genre":
        """Accept a genre value (``"玄幻"``) or member name (``"xuanhuan"``)."""

        if isinstance(raw, cls):
            return raw
        candidate = str(raw).strip()
        for member in cls:
            if candidate == member.value or candidate.upper() == member.name:
                return member
        raise ValueError(f"Unknown genre '{raw}'")


class FrozenBaseModel(BaseModel):
    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Iterable) and not isinstance(value, (str, bytes, Mapping))


def _none_as_empty_text(value: Any) -> Any:
    return "" if value is None else value


def _clean_text_items(value: Any, info: ValidationInfo) -> Any:
    """Drop non-string and blank entries; a non-list value is left for pydantic to reject."""

    if value is None:
        return []
    if not _is_sequence(value):
        return value
    kept: list[str] = []
    for item in value:
        if isinstance(item, str) and item.strip():
            kept.append(item)
        else:
            logger.warning("Dropping malformed %s entry: %r", info.field_name, item)
    return kept


def _clean_characters(value: Any) -> Any:
    if value is None:
        return []
    if not _is_sequence(value):
        return value
    kept: list[Any] = []
    for item in value:
        if isinstance(item, Character):
            name: Any = item.name
        elif isinstance(item, Mapping):
            name = item.get("name")
        else:
            name = None
        if isinstance(name, str) and name.strip():
            kept.append(item)
        else:
            logger.warning("Dropping character without a usable name: %r", item)
    return kept


StrList = Annotated[List[str], BeforeValidator(_clean_text_items)]
OptionalText = Annotated[str, BeforeValidator(_none_as_empty_text)]


class Character(FrozenBaseModel):
    """A character extracted from the source text."""

    name: str = Field(..., min_length=1, description="Character name as used in the source.")
    role: OptionalText = Field(default="", description="Narrative role, e.g. 主角, 反派, 导师.")
    description: OptionalText = Field(default="", description="One or two sentence description.")
    traits: StrList = Field(default_factory=list, description="Ordered personality traits.")


class AnalysisResult(FrozenBaseModel):
    """Genre analysis of the source text."""

    genre: Genre = Field(..., description="Primary genre, one of the enumerated values.")
    title: str = Field(..., description="Title of the work.")
    logline: OptionalText = Field(default="", description="One-sentence hook for the adaptation.")
    themes: StrList = Field(default_factory=list, description="Core themes or keywords.")
    pacing: OptionalText = Field(default="", description="Pacing assessment.")
    target_audience: OptionalText = Field(default="", description="Intended audience.")
    characters: Annotated[List[Character], BeforeValidator(_clean_characters)] = Field(
        default_factory=list,
        description="Main characters, most important first.",
    )

    @field_validator("genre", mode="before")
    @classmethod
    def _parse_genre(cls, value: Any) -> Genre:
        return Genre.parse(value)

    @field_validator("themes")
    @classmethod
    def _dedupe_themes(cls, value: List[str]) -> List[str]:
        seen: dict[str, None] = {}
        for theme in value:
            cleaned = theme.strip()
            if cleaned:
                seen.setdefault(cleaned, None)
        return list(seen)

    def to_markdown(self) -> str:
        """Serialize the analysis into a Markdown document."""

        lines: list[str] = [f"# {self.title}", ""]
        lines.append(f"- 题材: {self.genre.value}")
        if self.pacing:
            lines.append(f"- 节奏: {self.pacing}")
        if self.target_audience:
            lines.append(f"- 受众: {self.target_audience}")
        lines.append("")
        if self.logline:
            lines.append(f"> {self.logline.strip()}")
            lines.append("")

        if self.themes:
            lines.append("## 核心主题")
            for theme in self.themes:
                lines.append(f"- {theme}")
            lines.append("")

        if self.characters:
            lines.append("## 人物")
            for character in self.characters:
                heading = f"### {character.name}"
                if character.role:
                    heading += f"（{character.role}）"
                lines.append(heading)
                if character.description:
                    lines.append(character.description.strip())
                if character.traits:
                    lines.append(f"- 特质: {'、'.join(character.traits)}")
                lines.append("")

        return "\n".join(line.rstrip() for line in lines).strip() + "\n"


class EpisodePlanEntry(FrozenBaseModel):
    """One episode of the adaptation plan."""

    episode_number: int = Field(..., gt=0, description="Positive episode number, unique within the plan.")
    title: str = Field(..., description="Episode title.")
    synopsis: OptionalText = Field(default="", description="What happens in the episode.")
    key_events: StrList = Field(default_factory=list, description="Ordered key events.")
    characters_involved: StrList = Field(default_factory=list, description="Names of characters on screen.")


def plan_to_markdown(plan: Sequence[EpisodePlanEntry]) -> str:
    lines: list[str] = ["# 分集大纲", ""]
    for entry in plan:
        lines.append(f"## 第 {entry.episode_number:02d} 集 · {entry.title}")
        if entry.synopsis:
            lines.append(entry.synopsis.strip())
            lines.append("")
        for event in entry.key_events:
            lines.append(f"- {event}")
        if entry.characters_involved:
            lines.append(f"- 出场人物: {'、'.join(entry.characters_involved)}")
        lines.append("")
    return "\n".join(line.rstrip() for line in lines).strip() + "\n"
