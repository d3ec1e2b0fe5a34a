"""Set-once storage for generated episode scripts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Iterator

from .errors import ArtifactExistsError

__all__ = ["ScriptArtifact", "ArtifactStore"]


@dataclass(frozen=True, slots=True)
class ScriptArtifact:
    """Generated script text for a single episode."""

    episode_number: int
    content: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ArtifactStore:
    """Mapping of episode number to :class:`ScriptArtifact`, one write per key."""

    def __init__(self) -> None:
        self._artifacts: dict[int, ScriptArtifact] = {}

    def add(self, artifact: ScriptArtifact) -> ScriptArtifact:
        if artifact.episode_number in self._artifacts:
            raise ArtifactExistsError(f"Episode {artifact.episode_number} already has a script")
        self._artifacts[artifact.episode_number] = artifact
        return artifact

    def get(self, episode_number: int) -> ScriptArtifact | None:
        return self._artifacts.get(episode_number)

    def content(self, episode_number: int) -> str | None:
        artifact = self._artifacts.get(episode_number)
        return artifact.content if artifact else None

    @property
    def episode_numbers(self) -> list[int]:
        return sorted(self._artifacts)

    def as_dict(self) -> dict[int, str]:
        return {number: self._artifacts[number].content for number in self.episode_numbers}

    def retain(self, episode_numbers: Iterable[int]) -> list[int]:
        """Drop artifacts outside ``episode_numbers``; return the dropped keys."""

        keep = set(episode_numbers)
        dropped = [number for number in self._artifacts if number not in keep]
        for number in dropped:
            del self._artifacts[number]
        return sorted(dropped)

    def clear(self) -> list[int]:
        dropped = self.episode_numbers
        self._artifacts.clear()
        return dropped

    def __contains__(self, episode_number: object) -> bool:
        return episode_number in self._artifacts

    def __len__(self) -> int:
        return len(self._artifacts)

    def __iter__(self) -> Iterator[ScriptArtifact]:
        return iter([self._artifacts[number] for number in self.episode_numbers])
