"""
Exception classes for bookclean.

All bookclean exceptions inherit from BookCleanError,
making it easy to catch all library errors.

Expected detector failures (DetectionError and subclasses) never escape a
pipeline run: step collaborators recover from them with heuristic fallbacks.
Only invariant violations and unexpected collaborator errors are fatal.

Example:
    >>> try:
    ...     result = bookclean.clean_text(text, config)
    ... except bookclean.ConfigurationError as e:
    ...     print(f"Bad configuration: {e}")
    ... except bookclean.BookCleanError as e:
    ...     print(f"bookclean error: {e}")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bookclean.models import CleaningStep


class BookCleanError(Exception):
    """
    Base exception for all bookclean errors.

    Catch this to handle any bookclean-specific error.
    """

    pass


class ConfigurationError(BookCleanError):
    """
    Raised for invalid configuration.

    Example:
        >>> CleaningConfiguration.from_dict({"max_paragraph_words": -1})
        ConfigurationError: max_paragraph_words must be >= 0, got -1
    """

    pass


# =============================================================================
# DETECTION ERRORS (recoverable)
# =============================================================================


class DetectionError(BookCleanError):
    """
    Raised when the external AI detector cannot produce a usable result.

    Always recoverable: callers fall back to deterministic heuristics and
    record the fallback in the accumulated context.
    """

    pass


class DetectorUnavailableError(DetectionError):
    """Raised when no detector is configured or the detector refuses the request."""

    pass


class DetectorTimeoutError(DetectionError):
    """Raised when a detector call exceeds the configured timeout."""

    def __init__(self, kind: str, timeout: float):
        self.kind = kind
        self.timeout = timeout
        super().__init__(f"Detector call '{kind}' timed out after {timeout:.1f}s")


class InvalidDetectionError(DetectionError):
    """Raised when a detector returns a malformed result (bad confidence, bad ranges)."""

    pass


# =============================================================================
# PIPELINE ERRORS
# =============================================================================


class PipelineError(BookCleanError):
    """Base class for errors raised by the pipeline orchestrator."""

    pass


class InvariantViolationError(PipelineError):
    """
    Raised when a ledger or pipeline invariant would be violated.

    This is the only fatal error class: the failing step is marked failed,
    the ledger records the message, and all prior state is preserved.
    """

    pass


class StepFailedError(PipelineError):
    """Raised when a step collaborator fails unexpectedly."""

    def __init__(self, step: CleaningStep, reason: str, cause: Exception | None = None):
        self.step = step
        self.reason = reason
        self.cause = cause
        super().__init__(f"{step.display_name} failed: {reason}")


class PipelineCancelled(PipelineError):
    """Raised inside a run when the user has requested cancellation."""

    pass
