"""Staged adaptation pipeline: analysis, episode planning and scripts."""

from .analysis_engine import AnalysisEngine, AnalysisPromptBuilder, parse_analysis
from .capabilities import AnalysisCapability, PlanningCapability, ScriptCapability
from .controller import StageController
from .errors import (
    ArtifactExistsError,
    CapabilityError,
    CapabilityFailure,
    ControllerBusyError,
    PipelineError,
    SchemaViolation,
    ValidationError,
)
from .events import EventLog, LogEntry, Messages
from .export import ExportedPackage, PackageExporter
from .factory import build_controller, build_cost_tracker, build_transports
from .mock import MockTransport
from .planning_engine import PlanningEngine, PlanningPromptBuilder, enforce_unique_episodes, parse_plan
from .result import SCRIPT_FAILURE_PLACEHOLDER, CapabilityResult, call_capability, is_soft_failure
from .schema import AnalysisResult, Character, EpisodePlanEntry, Genre, plan_to_markdown
from .script_engine import ScriptEngine, ScriptPromptBuilder
from .state import ErrorRecord, PipelineSession, PipelineStage, PipelineState
from .store import ArtifactStore, ScriptArtifact

__all__ = [
    "AnalysisEngine",
    "AnalysisPromptBuilder",
    "parse_analysis",
    "AnalysisCapability",
    "PlanningCapability",
    "ScriptCapability",
    "StageController",
    "PipelineError",
    "ValidationError",
    "ControllerBusyError",
    "CapabilityError",
    "CapabilityFailure",
    "SchemaViolation",
    "ArtifactExistsError",
    "EventLog",
    "LogEntry",
    "Messages",
    "PackageExporter",
    "ExportedPackage",
    "build_controller",
    "build_cost_tracker",
    "build_transports",
    "MockTransport",
    "PlanningEngine",
    "PlanningPromptBuilder",
    "enforce_unique_episodes",
    "parse_plan",
    "SCRIPT_FAILURE_PLACEHOLDER",
    "CapabilityResult",
    "call_capability",
    "is_soft_failure",
    "AnalysisResult",
    "Character",
    "EpisodePlanEntry",
    "Genre",
    "plan_to_markdown",
    "ScriptEngine",
    "ScriptPromptBuilder",
    "ErrorRecord",
    "PipelineSession",
    "PipelineStage",
    "PipelineState",
    "ArtifactStore",
    "ScriptArtifact",
]
