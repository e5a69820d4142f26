"""Exception hierarchy shared across the research engine."""
from __future__ import annotations


class DeepDiveError(Exception):
    """Base class for all engine errors."""


class SourceUnavailable(DeepDiveError):
    """A single knowledge source failed or timed out."""

    def __init__(self, source_type: str, reason: str):
        super().__init__(f"{source_type} unavailable: {reason}")
        self.source_type = source_type
        self.reason = reason


class TotalSourceOutage(DeepDiveError):
    """Every source type returned nothing in one round."""

    def __init__(self, round_number: int, failures: dict[str, str]):
        super().__init__(f"Round {round_number}: no source returned results")
        self.round_number = round_number
        self.failures = failures


class EmbeddingFailure(DeepDiveError):
    pass


class GenerationError(DeepDiveError):
    """The text-generation collaborator failed, timed out, or returned nothing."""


class RoutingError(DeepDiveError):
    """The incoming query cannot be routed to any tier."""


class SessionNotFound(DeepDiveError):
    pass


class SessionClosedError(DeepDiveError):
    """Raised when something tries to mutate a completed session."""


class ResearchCancelled(DeepDiveError):
    pass
