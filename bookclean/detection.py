"""
Contract for the external AI detector.

The pipeline never performs inference itself. It asks an AIDetector for a
DetectionResult and treats every failure (unavailable, slow, malformed) as a
DetectionError that the calling step recovers from with heuristics.

Detector calls run on a worker thread. The caller waits in short slices so a
cancel request is honoured while the call is outstanding.

Example:
    >>> class MyDetector(AIDetector):
    ...     name = "my-model"
    ...     def detect(self, kind, content_window, context_hints):
    ...         return DetectionResult(kind=kind, confidence=0.9)
    >>> result = call_detector(MyDetector(), DetectionKind.INDEX, text, {}, timeout=5.0)
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from threading import Event
from typing import Any, Mapping

from bookclean.exceptions import (
    DetectionError,
    DetectorTimeoutError,
    DetectorUnavailableError,
    InvalidDetectionError,
    PipelineCancelled,
)
from bookclean.hints import DetectedRegion, DetectionEvidence

logger = logging.getLogger(__name__)


class DetectionKind(Enum):
    """What the detector is asked to find."""

    CONTENT_TYPE = "content_type"
    STRUCTURE = "structure"
    METADATA = "metadata"
    PAGE_NUMBERS = "page_numbers"
    HEADERS_FOOTERS = "headers_footers"
    FRONT_MATTER = "front_matter"
    TABLE_OF_CONTENTS = "table_of_contents"
    BACK_MATTER = "back_matter"
    INDEX = "index"
    AUXILIARY_LISTS = "auxiliary_lists"
    CITATIONS = "citations"
    FOOTNOTES = "footnotes"
    PARAGRAPH_REFLOW = "paragraph_reflow"
    PARAGRAPH_OPTIMIZATION = "paragraph_optimization"
    QUALITY_REVIEW = "quality_review"


@dataclass(frozen=True)
class DetectionResult:
    """
    A detector's answer.

    Attributes:
        kind: The request this answers.
        confidence: Overall confidence in [0, 1].
        regions: Proposed regions, 1-indexed against the content window.
        patterns: Proposed pattern-cache fields (e.g. {"citation_style": ...}).
        evidence: Supporting evidence.
        payload: Kind-specific data (ContentTypeFlags, DocumentMetadata,
            rewritten text, review notes).
    """

    kind: DetectionKind
    confidence: float
    regions: tuple[DetectedRegion, ...] = ()
    patterns: Mapping[str, Any] = field(default_factory=dict)
    evidence: tuple[DetectionEvidence, ...] = ()
    payload: Any = None

    def __post_init__(self):
        """Validate confidence."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be between 0.0 and 1.0, got {self.confidence}")


class AIDetector(ABC):
    """Abstract base for detector backends."""

    name: str = "base"

    @abstractmethod
    def detect(
        self,
        kind: DetectionKind,
        content_window: str,
        context_hints: Mapping[str, Any],
    ) -> DetectionResult:
        """Run one detection.

        May raise any exception; callers treat all of them as detector failure.
        """
        pass

    def supports(self, kind: DetectionKind) -> bool:
        """Whether this backend handles a detection kind."""
        return True


class NullDetector(AIDetector):
    """Detector used when none is configured. Always unavailable."""

    name = "null"

    def detect(self, kind, content_window, context_hints):
        raise DetectorUnavailableError("No AI detector configured")

    def supports(self, kind: DetectionKind) -> bool:
        return False


def call_detector(
    detector: AIDetector | None,
    kind: DetectionKind,
    content_window: str,
    context_hints: Mapping[str, Any],
    timeout: float,
    cancel_event: Event | None = None,
    poll_interval: float = 0.05,
) -> DetectionResult:
    """
    Call a detector with a timeout while staying responsive to cancellation.

    Args:
        detector: Backend to call (None means unavailable).
        kind: What to detect.
        content_window: Text the detector should look at.
        context_hints: Read-only hints (content type, known boundaries).
        timeout: Seconds to wait before giving up.
        cancel_event: Set by the orchestrator when the user cancels.
        poll_interval: Seconds between cancel checks.

    Returns:
        The validated DetectionResult.

    Raises:
        DetectorUnavailableError: No detector, or it does not support kind.
        DetectorTimeoutError: The call took longer than timeout.
        InvalidDetectionError: The detector returned something malformed.
        DetectionError: The detector raised.
        PipelineCancelled: Cancellation was requested while waiting.
    """
    if detector is None or not detector.supports(kind):
        raise DetectorUnavailableError(f"No detector available for {kind.value}")

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="bookclean-detector")
    try:
        future = executor.submit(detector.detect, kind, content_window, context_hints)
        deadline = time.monotonic() + timeout
        while True:
            if cancel_event is not None and cancel_event.is_set():
                future.cancel()
                raise PipelineCancelled(f"Cancelled while waiting for {kind.value} detection")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                future.cancel()
                logger.warning("Detector %s timed out on %s", detector.name, kind.value)
                raise DetectorTimeoutError(kind.value, timeout)
            try:
                result = future.result(timeout=min(poll_interval, remaining))
                break
            except FuturesTimeoutError:
                continue
            except DetectionError:
                raise
            except Exception as e:
                logger.warning("Detector %s failed on %s: %s", detector.name, kind.value, e)
                raise DetectionError(f"Detector {detector.name} failed on {kind.value}: {e}") from e
    finally:
        # Never block on a hung detector thread
        executor.shutdown(wait=False)

    _check_result(result, kind)
    logger.debug(
        "Detector %s answered %s with confidence %.2f", detector.name, kind.value, result.confidence
    )
    return result


def _check_result(result: Any, kind: DetectionKind) -> None:
    if not isinstance(result, DetectionResult):
        raise InvalidDetectionError(
            f"Detector returned {type(result).__name__} instead of DetectionResult"
        )
    if result.kind is not kind:
        raise InvalidDetectionError(
            f"Detector answered {result.kind.value} for a {kind.value} request"
        )
