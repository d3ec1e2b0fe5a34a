"""Shared fixtures for the test suite."""
from __future__ import annotations

import threading
from typing import Any, Callable, Iterable

import pytest

from manju.config import PipelineConfig
from manju.llm.cost import CostTracker, ModelPricing
from manju.pipeline.controller import StageController
from manju.pipeline.schema import AnalysisResult, EpisodePlanEntry

ENV_VARS = {
    "MANJU_MODEL",
    "OPENAI_MODEL",
    "MANJU_API_KEY",
    "OPENAI_API_KEY",
    "MANJU_BASE_URL",
    "OPENAI_BASE_URL",
    "MANJU_TEMPERATURE",
    "MANJU_MAX_TOKENS",
    "MANJU_SCRIPT_MODEL",
    "MANJU_SCRIPT_TEMPERATURE",
    "MANJU_BUDGET_WARN_RATIO",
}


@pytest.fixture(autouse=True)
def _clear_llm_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure LLM-related environment variables do not leak between tests."""

    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def dummy_chat_model(monkeypatch: pytest.MonkeyPatch):
    """Patch the LangChain chat client used by the provider abstraction."""

    from manju.llm import providers

    class DummyChatModel:
        def __init__(self, **kwargs: Any) -> None:
            self.kwargs = kwargs
            self.invocations: list[tuple[str, tuple[Iterable[Any], dict[str, Any]]]] = []

        def invoke(self, messages: Iterable[Any], **kwargs: Any) -> dict[str, Any]:
            record = ("invoke", (tuple(messages), dict(kwargs)))
            self.invocations.append(record)
            return {"messages": list(messages), **kwargs}

    monkeypatch.setattr(providers, "ChatOpenAI", DummyChatModel)
    return DummyChatModel


@pytest.fixture
def dummy_cost_tracker() -> CostTracker:
    """Provide a cost tracker with deterministic pricing for tests."""

    pricing = {
        "stub-model": ModelPricing(prompt_per_1k=0.001, completion_per_1k=0.002),
        "alt-model": ModelPricing(prompt_per_1k=0.01, completion_per_1k=0.02),
    }
    return CostTracker(pricing=pricing, budget_limit=5.0, warn_ratio=0.5)


# ----------------------------------------------------------------------
# Fake capabilities for controller tests
# ----------------------------------------------------------------------
def make_analysis(**overrides: Any) -> AnalysisResult:
    payload: dict[str, Any] = {
        "genre": "玄幻",
        "title": "逆天剑帝",
        "logline": "废柴少年觉醒剑骨，一路逆袭。",
        "themes": ["逆袭", "成长"],
        "pacing": "快",
        "targetAudience": "男频读者",
        "characters": [{"name": "叶尘", "role": "主角", "traits": ["坚韧"]}],
    }
    payload.update(overrides)
    return AnalysisResult.model_validate(payload)


def make_plan(*numbers: int) -> list[EpisodePlanEntry]:
    return [
        EpisodePlanEntry(episode_number=number, title=f"第{number}集", synopsis=f"剧情{number}")
        for number in numbers
    ]


class FakeAnalysis:
    def __init__(self, result: Any = None, *, error: Exception | None = None) -> None:
        self.result = result if result is not None else make_analysis()
        self.error = error
        self.calls: list[str] = []

    def analyze(self, text: str) -> Any:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.result


class FakePlanning:
    def __init__(self, plan: Any = None, *, error: Exception | None = None) -> None:
        self.plan_result = plan if plan is not None else make_plan(1, 2)
        self.error = error
        self.calls: list[tuple[AnalysisResult, str]] = []

    def plan(self, analysis: AnalysisResult, text: str) -> Any:
        self.calls.append((analysis, text))
        if self.error is not None:
            raise self.error
        return self.plan_result


class FakeScript:
    """Script capability returning ``"SCRIPT <n>"`` unless told to fail.

    ``failures`` maps an episode number to an exception to raise or a value
    (such as a placeholder string) to return instead. ``gate`` blocks every
    call until it is set, for busy-flag tests.
    """

    def __init__(
        self,
        *,
        failures: dict[int, Any] | None = None,
        gate: threading.Event | None = None,
        render: Callable[[EpisodePlanEntry], str] | None = None,
    ) -> None:
        self.failures = dict(failures or {})
        self.gate = gate
        self.render = render or (lambda episode: f"SCRIPT {episode.episode_number}")
        self.calls: list[int] = []
        self.started = threading.Event()

    def generate_script(self, episode: EpisodePlanEntry, analysis: AnalysisResult, text: str) -> Any:
        self.calls.append(episode.episode_number)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        outcome = self.failures.get(episode.episode_number)
        if isinstance(outcome, Exception):
            raise outcome
        if episode.episode_number in self.failures:
            return outcome
        return self.render(episode)


@pytest.fixture
def make_controller():
    def _factory(
        analysis: FakeAnalysis | None = None,
        planning: FakePlanning | None = None,
        script: FakeScript | None = None,
        **config: Any,
    ) -> StageController:
        return StageController(
            analysis or FakeAnalysis(),
            planning or FakePlanning(),
            script or FakeScript(),
            config=PipelineConfig(**config),
        )

    return _factory

