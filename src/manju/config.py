"""Dataclass-driven configuration for the manju adaptation pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable, Literal

from .paths import AdaptationPathConfig, resolve_input_path, resolve_output_path

__all__ = [
    "LLMConfig",
    "BudgetConfig",
    "PipelineConfig",
    "ManjuConfig",
    "DuplicatePolicy",
    "ArtifactPolicy",
    "ScriptConcurrency",
]

DuplicatePolicy = Literal["reject", "renumber"]
ArtifactPolicy = Literal["purge", "reconcile", "keep"]
ScriptConcurrency = Literal["serial", "per_episode"]

DUPLICATE_POLICIES: tuple[str, ...] = ("reject", "renumber")
ARTIFACT_POLICIES: tuple[str, ...] = ("purge", "reconcile", "keep")
SCRIPT_CONCURRENCY_MODES: tuple[str, ...] = ("serial", "per_episode")


def _env_float(name: str, default: float | None = None) -> float | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:  # pragma: no cover - defensive guard
        return default


def _env_float_or(name: str, default: float) -> float:
    # 0 is a valid setting; only a missing variable falls back.
    value = _env_float(name)
    return default if value is None else value


def _env_int(name: str, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:  # pragma: no cover - defensive guard
        return default


@dataclass(slots=True)
class LLMConfig:
    """Configuration for LangChain-backed chat providers."""

    model: str = os.getenv("MANJU_MODEL", "gpt-4o-mini")
    base_url: str | None = os.getenv("MANJU_BASE_URL") or os.getenv("OPENAI_BASE_URL")
    temperature: float = _env_float_or("MANJU_TEMPERATURE", 0.0)
    max_tokens: int | None = _env_int("MANJU_MAX_TOKENS")
    timeout: float | None = _env_float("MANJU_TIMEOUT")
    api_key_env: str = os.getenv("MANJU_API_KEY_ENV", "MANJU_API_KEY")
    fallback_api_key_envs: tuple[str, ...] = ("OPENAI_API_KEY",)

    @classmethod
    def for_scripts(cls) -> "LLMConfig":
        """Creative defaults for the script stage: stronger model, warmer sampling."""

        return cls(
            model=os.getenv("MANJU_SCRIPT_MODEL", "gpt-4o"),
            temperature=_env_float_or("MANJU_SCRIPT_TEMPERATURE", 0.8),
        )

    def resolve_api_key(self, override: str | None = None) -> str | None:
        if override:
            return override
        env_candidates: Iterable[str | None] = (self.api_key_env, *self.fallback_api_key_envs)
        for name in env_candidates:
            if not name:
                continue
            value = os.getenv(name)
            if value:
                return value
        return None

    def provider_kwargs(
        self,
        *,
        model: str | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, object | None]:
        return {
            "model": model or self.model,
            "base_url": base_url or self.base_url,
            "api_key": api_key if api_key is not None else self.resolve_api_key(),
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": self.max_tokens if max_tokens is None else max_tokens,
            "timeout": self.timeout,
        }


@dataclass(slots=True)
class BudgetConfig:
    """Budget guardrails for capability calls."""

    limit_usd: float | None = _env_float("MANJU_BUDGET_USD")
    warn_ratio: float = _env_float_or("MANJU_BUDGET_WARN_RATIO", 0.9)
    hard_limit: bool = os.getenv("MANJU_BUDGET_HARD", "false").lower() == "true"

    def should_warn(self, spent: float) -> bool:
        if self.limit_usd is None:
            return False
        return spent >= self.limit_usd * self.warn_ratio

    def enforced_limit(self) -> float | None:
        """Limit handed to :class:`~manju.llm.cost.CostTracker`; ``None`` unless hard."""

        return self.limit_usd if self.hard_limit else None


@dataclass(slots=True)
class PipelineConfig:
    """Behavioural switches for the stage controller and its engines."""

    analysis_char_limit: int = 30_000
    planning_char_limit: int = 50_000
    # Scripts see the whole source text unless a limit is set explicitly.
    script_char_limit: int | None = None
    target_episodes: tuple[int, int] = (10, 12)
    content_language: str = "Simplified Chinese"
    duplicate_policy: DuplicatePolicy = "reject"
    artifact_policy: ArtifactPolicy = "purge"
    script_concurrency: ScriptConcurrency = "serial"
    max_workers: int = 4
    complete_when_all_scripted: bool = False
    max_log_entries: int | None = None

    def __post_init__(self) -> None:
        if self.analysis_char_limit <= 0 or self.planning_char_limit <= 0:
            raise ValueError("character limits must be positive")
        if self.script_char_limit is not None and self.script_char_limit <= 0:
            raise ValueError("script_char_limit must be positive when set")
        low, high = self.target_episodes
        if low <= 0 or high < low:
            raise ValueError("target_episodes must be a positive (low, high) range")
        if self.duplicate_policy not in DUPLICATE_POLICIES:
            raise ValueError(f"duplicate_policy must be one of {DUPLICATE_POLICIES}")
        if self.artifact_policy not in ARTIFACT_POLICIES:
            raise ValueError(f"artifact_policy must be one of {ARTIFACT_POLICIES}")
        if self.script_concurrency not in SCRIPT_CONCURRENCY_MODES:
            raise ValueError(f"script_concurrency must be one of {SCRIPT_CONCURRENCY_MODES}")
        if self.max_workers <= 0:
            raise ValueError("max_workers must be positive")
        if self.max_log_entries is not None and self.max_log_entries <= 0:
            raise ValueError("max_log_entries must be positive when set")


@dataclass(slots=True)
class ManjuConfig:
    """Primary configuration entry point for the adaptation pipeline."""

    paths: AdaptationPathConfig = field(default_factory=AdaptationPathConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    script_llm: LLMConfig = field(default_factory=LLMConfig.for_scripts)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    def with_paths(self, *, input_path: Path | str | None = None, output_path: Path | str | None = None) -> "ManjuConfig":
        new_paths = replace(
            self.paths,
            input_path=resolve_input_path(input_path or self.paths.input_path, create=self.paths.create_input),
            output_path=resolve_output_path(output_path or self.paths.output_path, create=self.paths.create_output),
        )
        return replace(self, paths=new_paths)

    @property
    def output_path(self) -> Path:
        return resolve_output_path(self.paths.output_path, create=self.paths.create_output)

    def ensure_directories(self) -> "ManjuConfig":
        self.paths = self.paths.ensure()
        return self
