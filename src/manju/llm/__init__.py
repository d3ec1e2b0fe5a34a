"""LLM tooling for the manju adaptation pipeline."""

from .cost import (
    MODEL_PRICING,
    BudgetExceededError,
    CostSnapshot,
    CostTracker,
    ModelPricing,
    TokenUsage,
    register_model_pricing,
)
from .providers import (
    ProviderDependencyError,
    ProviderError,
    StageModels,
    build_chat_model,
    build_stage_models,
    chat_model_kwargs,
)
from .transport import ChatTransport, LangChainTransport

__all__ = [
    "MODEL_PRICING",
    "ModelPricing",
    "TokenUsage",
    "CostSnapshot",
    "BudgetExceededError",
    "CostTracker",
    "register_model_pricing",
    "ProviderError",
    "ProviderDependencyError",
    "StageModels",
    "chat_model_kwargs",
    "build_chat_model",
    "build_stage_models",
    "ChatTransport",
    "LangChainTransport",
]
