"""Chat models for the adaptation stages, built from :class:`~manju.config.ManjuConfig`.

Analysis and planning share the deterministic ``llm`` settings while scripts
use ``script_llm``. When both resolve to the same client settings a single
``ChatOpenAI`` instance serves every stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..config import LLMConfig, ManjuConfig

try:  # pragma: no cover - import guard for optional dependency
    from langchain_openai import ChatOpenAI
except ImportError:  # pragma: no cover - surfaced as ProviderDependencyError
    ChatOpenAI = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

__all__ = [
    "ProviderError",
    "ProviderDependencyError",
    "StageModels",
    "chat_model_kwargs",
    "build_chat_model",
    "build_stage_models",
]


class ProviderError(RuntimeError):
    """Raised when a chat model cannot be built or invoked."""


class ProviderDependencyError(ProviderError):
    """Raised when ``langchain-openai`` is not installed."""


def chat_model_kwargs(llm_config: LLMConfig, *, role: str = "structured") -> dict[str, Any]:
    """Resolve ``ChatOpenAI`` keyword arguments for one stage role.

    Unset options are left out so the client keeps its own defaults. A
    missing API key fails here, naming every variable that was consulted.
    """

    kwargs = {key: value for key, value in llm_config.provider_kwargs().items() if value is not None}
    if "api_key" not in kwargs:
        names = ", ".join(name for name in (llm_config.api_key_env, *llm_config.fallback_api_key_envs) if name)
        raise ProviderError(f"No API key for the {role} model '{llm_config.model}'; set one of: {names}")
    return kwargs


def build_chat_model(llm_config: LLMConfig, *, role: str = "structured") -> Any:
    if ChatOpenAI is None:
        raise ProviderDependencyError("langchain-openai is required for the 'openai' provider")
    kwargs = chat_model_kwargs(llm_config, role=role)
    try:
        return ChatOpenAI(**kwargs)  # type: ignore[arg-type]
    except Exception as exc:
        raise ProviderError(f"Failed to initialise {role} model '{llm_config.model}': {exc}") from exc


@dataclass(frozen=True, slots=True)
class StageModels:
    """Chat clients for analysis/planning (``structured``) and scripts."""

    structured: Any
    script: Any
    structured_name: str
    script_name: str

    @property
    def shared(self) -> bool:
        return self.structured is self.script


def build_stage_models(config: ManjuConfig) -> StageModels:
    structured = build_chat_model(config.llm, role="structured")
    if chat_model_kwargs(config.script_llm, role="script") == chat_model_kwargs(config.llm):
        logger.info("Script stage shares the %s client with analysis and planning", config.llm.model)
        script = structured
    else:
        script = build_chat_model(config.script_llm, role="script")
    return StageModels(
        structured=structured,
        script=script,
        structured_name=config.llm.model,
        script_name=config.script_llm.model,
    )
