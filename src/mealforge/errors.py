"""Error taxonomy for the generation pipeline."""

from __future__ import annotations

from typing import Optional


class PipelineError(RuntimeError):
    """Base class for every error raised by the generation pipeline."""


class InvalidConfiguration(PipelineError):
    """Required input is missing or invalid; raised before any run state exists."""


class InvalidTransition(PipelineError):
    """The requested operation is not allowed from the current phase."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move from phase '{current}' to '{target}'")
        self.current = current
        self.target = target


class QuotaExceeded(PipelineError):
    """The user's remaining usage allowance does not cover the request (HTTP 402)."""

    def __init__(self, message: str = "Insufficient quota", *, service: Optional[str] = None) -> None:
        super().__init__(message)
        self.service = service


class StreamError(PipelineError):
    """A week's plan stream failed; aborts that week only."""

    def __init__(
        self,
        message: str,
        *,
        week_number: Optional[int] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.week_number = week_number
        self.status_code = status_code


class EnrichmentError(PipelineError):
    """A single meal's recipe-detail or image call failed."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(PipelineError):
    """A checkpoint or final save failed; retryable, in-memory state untouched."""


class Cancelled(PipelineError):
    """The run was cancelled cooperatively."""


__all__ = [
    "PipelineError",
    "InvalidConfiguration",
    "InvalidTransition",
    "QuotaExceeded",
    "StreamError",
    "EnrichmentError",
    "PersistenceError",
    "Cancelled",
]
