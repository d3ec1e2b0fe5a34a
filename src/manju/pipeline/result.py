"""Uniform result type for capability calls.

The three capabilities report failure differently: analysis and planning
raise, while a script capability may hand back a placeholder string instead.
:func:`call_capability` folds all of these into a :class:`CapabilityResult`
so the controller only ever branches on ``result.ok``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from .errors import CapabilityError, CapabilityFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = [
    "CapabilityResult",
    "call_capability",
    "SCRIPT_FAILURE_PLACEHOLDER",
    "SOFT_FAILURE_PLACEHOLDERS",
    "is_soft_failure",
]

SCRIPT_FAILURE_PLACEHOLDER = "Failed to generate script content."
SOFT_FAILURE_PLACEHOLDERS = frozenset(
    {
        SCRIPT_FAILURE_PLACEHOLDER,
        "Error generating script. Please try again.",
    }
)


def is_soft_failure(value: object) -> bool:
    """Return ``True`` for text payloads that stand in for a failure."""

    if not isinstance(value, str):
        return False
    stripped = value.strip()
    return not stripped or stripped in SOFT_FAILURE_PLACEHOLDERS


@dataclass(frozen=True, slots=True)
class CapabilityResult(Generic[T]):
    """Either a value or the :class:`CapabilityError` explaining its absence."""

    value: Optional[T] = None
    error: Optional[CapabilityError] = None

    @classmethod
    def success(cls, value: T) -> "CapabilityResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: CapabilityError) -> "CapabilityResult[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def call_capability(capability: str, func: Callable[..., T], *args: object) -> CapabilityResult[T]:
    """Invoke ``func`` and normalise every failure style into a result."""

    try:
        value = func(*args)
    except CapabilityError as exc:
        return CapabilityResult.failure(exc)
    except Exception as exc:
        logger.debug("Capability %s raised %s", capability, exc, exc_info=True)
        error = CapabilityFailure(f"{capability} failed: {exc}", capability=capability)
        error.__cause__ = exc
        return CapabilityResult.failure(error)

    if value is None or is_soft_failure(value):
        return CapabilityResult.failure(
            CapabilityFailure(f"{capability} returned no usable content", capability=capability)
        )
    return CapabilityResult.success(value)
