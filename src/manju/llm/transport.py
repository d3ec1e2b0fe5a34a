"""Blocking chat transports that the capability engines talk through."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Protocol, Sequence

from langchain_core.messages import AIMessage, BaseMessage

from .cost import CostTracker
from .providers import ProviderError

logger = logging.getLogger(__name__)

__all__ = [
    "ChatModelLike",
    "ChatTransport",
    "LangChainTransport",
]


class ChatModelLike(Protocol):
    """Anything exposing LangChain's ``invoke(messages)`` contract."""

    def invoke(self, messages: Sequence[BaseMessage], **kwargs: Any) -> AIMessage:  # pragma: no cover - interface
        ...


class ChatTransport(ABC):
    """Abstract interface the engines use to reach the generative capability.

    ``stage`` names the pipeline step issuing the call (``analysis``,
    ``planning`` or ``script``); it is used for cost bucketing and lets
    offline transports answer per stage.
    """

    def __init__(self, *, cost_tracker: Optional[CostTracker] = None) -> None:
        self._cost_tracker = cost_tracker or CostTracker()

    @property
    def cost_tracker(self) -> CostTracker:
        return self._cost_tracker

    @property
    def model_name(self) -> str:  # pragma: no cover - interface default
        return "unknown"

    @abstractmethod
    def invoke(self, stage: str, messages: Sequence[BaseMessage]) -> AIMessage:
        """Invoke the chat model and return the generated message."""

    def _record_usage(
        self,
        *,
        stage: str,
        model: Optional[str],
        prompt_tokens: int,
        completion_tokens: int,
        cost: Optional[float] = None,
    ) -> None:
        self._cost_tracker.record(
            model or self.model_name,
            prompt_tokens,
            completion_tokens,
            stage=stage,
            cost=cost,
        )


class LangChainTransport(ChatTransport):
    """Adapter around a LangChain chat model with usage extraction."""

    def __init__(
        self,
        llm: ChatModelLike,
        *,
        cost_tracker: Optional[CostTracker] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(cost_tracker=cost_tracker)
        self._llm = llm
        self._name = name or getattr(llm, "model", None) or getattr(llm, "model_name", llm.__class__.__name__)

    @property
    def model_name(self) -> str:
        return str(self._name)

    def invoke(self, stage: str, messages: Sequence[BaseMessage]) -> AIMessage:
        logger.debug("Invoking %s for stage %s with %d messages", self.model_name, stage, len(messages))
        try:
            response = self._llm.invoke(list(messages))
        except Exception as exc:
            raise ProviderError(f"Invocation failed for model '{self.model_name}': {exc}") from exc

        usage = _extract_usage_metadata(response)
        self._record_usage(
            stage=stage,
            model=usage.get("model") or self.model_name,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            cost=usage.get("cost"),
        )
        return response


def _extract_usage_metadata(message: Any) -> Dict[str, Any]:
    """Normalise usage metadata reported by different LangChain providers."""

    usage: Dict[str, Any] = {}

    if getattr(message, "usage_metadata", None):
        usage.update(message.usage_metadata)  # type: ignore[arg-type]

    response_meta = getattr(message, "response_metadata", None) or {}
    if isinstance(response_meta, dict):
        if "token_usage" in response_meta and not usage:
            maybe_usage = response_meta.get("token_usage")
            if isinstance(maybe_usage, dict):
                usage.update(maybe_usage)
        if "model_name" in response_meta and "model" not in usage:
            usage["model"] = response_meta.get("model_name")

    normalised: Dict[str, Any] = {
        "prompt_tokens": int(usage.get("input_tokens") or usage.get("prompt_tokens") or 0),
        "completion_tokens": int(usage.get("output_tokens") or usage.get("completion_tokens") or 0),
    }
    cost_value = usage.get("cost") or usage.get("total_cost")
    if cost_value is not None:
        try:
            normalised["cost"] = float(cost_value)
        except (TypeError, ValueError):  # pragma: no cover - defensive
            pass
    if usage.get("model"):
        normalised["model"] = usage.get("model")
    return normalised
