"""Pipeline state and the session object owned by the stage controller."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .errors import CapabilityError, PipelineError
from .events import EventLog
from .schema import AnalysisResult, EpisodePlanEntry
from .store import ArtifactStore

__all__ = [
    "PipelineStage",
    "ErrorRecord",
    "PipelineState",
    "PipelineSession",
]


class PipelineStage(str, Enum):
    IDLE = "IDLE"
    ANALYZING = "ANALYZING"
    PLANNING = "PLANNING"
    WRITING = "WRITING"
    COMPLETE = "COMPLETE"


@dataclass(frozen=True, slots=True)
class ErrorRecord:
    """Structured copy of the most recent failure, kept next to the log."""

    kind: str
    message: str
    stage: PipelineStage
    capability: Optional[str] = None
    episode_number: Optional[int] = None

    @classmethod
    def from_exception(
        cls,
        exc: PipelineError,
        *,
        stage: PipelineStage,
        episode_number: Optional[int] = None,
    ) -> "ErrorRecord":
        capability = exc.capability if isinstance(exc, CapabilityError) else None
        kind = exc.kind if isinstance(exc, CapabilityError) else "validation_error"
        return cls(
            kind=kind,
            message=str(exc),
            stage=stage,
            capability=capability,
            episode_number=episode_number,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "stage": self.stage.value,
            "capability": self.capability,
            "episode_number": self.episode_number,
        }


@dataclass(slots=True)
class PipelineState:
    """Stage, busy flag and the ordered history of stages entered."""

    stage: PipelineStage = PipelineStage.IDLE
    busy: bool = False
    history: list[PipelineStage] = field(default_factory=lambda: [PipelineStage.IDLE])
    last_error: Optional[ErrorRecord] = None

    def enter(self, stage: PipelineStage) -> None:
        if stage is not self.stage:
            self.stage = stage
            self.history.append(stage)


@dataclass(slots=True)
class PipelineSession:
    """Everything one controller knows about the current adaptation run."""

    log: EventLog = field(default_factory=EventLog)
    artifacts: ArtifactStore = field(default_factory=ArtifactStore)
    state: PipelineState = field(default_factory=PipelineState)
    text: str = ""
    analysis: Optional[AnalysisResult] = None
    plan: tuple[EpisodePlanEntry, ...] = ()

    def with_plan(self, *, text: str, analysis: AnalysisResult, plan: tuple[EpisodePlanEntry, ...]) -> "PipelineSession":
        self.text = text
        self.analysis = analysis
        self.plan = plan
        return self

    def discard_run(self) -> "PipelineSession":
        self.text = ""
        self.analysis = None
        self.plan = ()
        return self

    def find_episode(self, episode_number: int) -> Optional[EpisodePlanEntry]:
        for entry in self.plan:
            if entry.episode_number == episode_number:
                return entry
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.state.stage.value,
            "busy": self.state.busy,
            "history": [stage.value for stage in self.state.history],
            "last_error": self.state.last_error.to_dict() if self.state.last_error else None,
            "analysis": self.analysis.model_dump(mode="json", by_alias=True) if self.analysis else None,
            "plan": [entry.model_dump(mode="json", by_alias=True) for entry in self.plan],
            "scripts": {str(number): content for number, content in self.artifacts.as_dict().items()},
            "log": [entry.to_dict() for entry in self.log],
        }
