"""Exception hierarchy for the staged adaptation pipeline."""

from __future__ import annotations

__all__ = [
    "PipelineError",
    "ValidationError",
    "ControllerBusyError",
    "CapabilityError",
    "CapabilityFailure",
    "SchemaViolation",
    "ArtifactExistsError",
]


class PipelineError(RuntimeError):
    """Base error for everything raised by the pipeline core."""


class ValidationError(PipelineError, ValueError):
    """Raised when an operation's preconditions fail; no capability was contacted."""


class ControllerBusyError(ValidationError):
    """Raised when an operation is requested while a conflicting one is in flight."""


class CapabilityError(PipelineError):
    """Base for failures attributed to a capability call."""

    kind = "capability_error"

    def __init__(self, message: str, *, capability: str = "unknown") -> None:
        super().__init__(message)
        self.capability = capability


class CapabilityFailure(CapabilityError):
    """The capability raised, returned nothing usable, or signalled a soft failure."""

    kind = "capability_failure"


class SchemaViolation(CapabilityError):
    """The capability answered, but its output breaks the expected shape or invariants."""

    kind = "schema_violation"


class ArtifactExistsError(PipelineError, KeyError):
    """Raised when writing a second artifact for an already scripted episode."""

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return str(self.args[0]) if self.args else ""
