"""manju package: turn web novels into episode plans and motion comic scripts."""

from .config import BudgetConfig, LLMConfig, ManjuConfig, PipelineConfig
from .io import LoadedDocument, load_input_resource
from .paths import AdaptationPathConfig, resolve_input_path, resolve_output_path
from .pipeline import (
    AnalysisResult,
    EpisodePlanEntry,
    Genre,
    PipelineStage,
    StageController,
    build_controller,
)

__all__ = [
    "BudgetConfig",
    "LLMConfig",
    "ManjuConfig",
    "PipelineConfig",
    "AdaptationPathConfig",
    "resolve_input_path",
    "resolve_output_path",
    "LoadedDocument",
    "load_input_resource",
    "AnalysisResult",
    "EpisodePlanEntry",
    "Genre",
    "PipelineStage",
    "StageController",
    "build_controller",
]
