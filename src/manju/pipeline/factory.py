"""Wire engines, transports and cost tracking into a stage controller."""

from __future__ import annotations

import logging
from typing import Iterable, Literal, Optional

from ..config import ManjuConfig
from ..llm.cost import CostTracker
from ..llm.providers import build_stage_models
from ..llm.transport import ChatTransport, LangChainTransport
from .analysis_engine import AnalysisEngine
from .controller import StageController
from .mock import MockTransport
from .planning_engine import PlanningEngine
from .script_engine import ScriptEngine

logger = logging.getLogger(__name__)

__all__ = ["ProviderName", "PROVIDERS", "build_cost_tracker", "build_transports", "build_controller"]

ProviderName = Literal["mock", "openai"]
PROVIDERS: tuple[str, ...] = ("mock", "openai")


def build_cost_tracker(config: ManjuConfig) -> CostTracker:
    return CostTracker(
        budget_limit=config.budget.enforced_limit(),
        warn_ratio=config.budget.warn_ratio,
    )


def _langchain_transports(config: ManjuConfig, cost_tracker: CostTracker) -> tuple[ChatTransport, ChatTransport]:
    models = build_stage_models(config)
    logger.info("Using model %s for analysis/planning and %s for scripts", models.structured_name, models.script_name)
    structured = LangChainTransport(models.structured, cost_tracker=cost_tracker, name=models.structured_name)
    if models.shared:
        return structured, structured
    return structured, LangChainTransport(models.script, cost_tracker=cost_tracker, name=models.script_name)


def build_transports(
    config: ManjuConfig,
    *,
    provider: ProviderName = "mock",
    cost_tracker: Optional[CostTracker] = None,
    seed: Optional[int] = None,
    mock_episodes: Optional[int] = None,
    fail_stages: Iterable[str] = (),
) -> tuple[ChatTransport, ChatTransport]:
    """Return ``(structured, script)`` transports sharing one cost tracker.

    The structured transport serves analysis and planning; the script
    transport may point at a different, more creative model.
    """

    tracker = cost_tracker or build_cost_tracker(config)
    if provider == "mock":
        episodes = mock_episodes or config.pipeline.target_episodes[0]
        transport = MockTransport(
            seed=seed,
            episodes=episodes,
            fail_stages=fail_stages,
            cost_tracker=tracker,
        )
        return transport, transport
    if provider == "openai":
        return _langchain_transports(config, tracker)
    raise ValueError(f"Unsupported provider '{provider}'. Choose from {PROVIDERS}.")


def build_controller(
    config: Optional[ManjuConfig] = None,
    *,
    provider: ProviderName = "mock",
    cost_tracker: Optional[CostTracker] = None,
    seed: Optional[int] = None,
    mock_episodes: Optional[int] = None,
    fail_stages: Iterable[str] = (),
) -> StageController:
    config = config or ManjuConfig()
    structured, script = build_transports(
        config,
        provider=provider,
        cost_tracker=cost_tracker,
        seed=seed,
        mock_episodes=mock_episodes,
        fail_stages=fail_stages,
    )
    pipeline = config.pipeline
    analysis = AnalysisEngine(
        structured,
        content_language=pipeline.content_language,
        char_limit=pipeline.analysis_char_limit,
    )
    planning = PlanningEngine(
        structured,
        content_language=pipeline.content_language,
        char_limit=pipeline.planning_char_limit,
        target_episodes=pipeline.target_episodes,
    )
    scripts = ScriptEngine(
        script,
        content_language=pipeline.content_language,
        char_limit=pipeline.script_char_limit,
    )
    return StageController(analysis, planning, scripts, config=pipeline)
