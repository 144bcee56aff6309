"""
Phase checkpoints.

Each checkpoint looks at what a phase did to the text and decides whether the
result is still plausible. A failed checkpoint never stops the run: the
orchestrator records it in the ledger and adds a pipeline warning.

Example:
    >>> metrics = PhaseMetrics(PipelinePhase.SEMANTIC_CLEANING, 1000, 100, 990, 97, 3, 10)
    >>> checkpoint_for(PipelinePhase.SEMANTIC_CLEANING).evaluate(metrics).passed
    True
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from bookclean.hints import StructureHints
from bookclean.models import CheckpointType, PipelinePhase

logger = logging.getLogger(__name__)


@dataclass
class PhaseMetrics:
    """What a phase changed, measured at its start and end."""

    phase: PipelinePhase
    start_words: int
    start_lines: int
    end_words: int
    end_lines: int
    lines_removed: int = 0
    words_removed: int = 0
    hints: StructureHints | None = None
    original_words: int = 0
    review_score: float | None = None


@dataclass(frozen=True)
class CheckpointResult:
    checkpoint: CheckpointType
    passed: bool
    reason: str
    metrics: dict[str, Any] = field(default_factory=dict)


class Checkpoint(ABC):
    """Abstract base for phase checkpoints."""

    checkpoint_type: CheckpointType

    @property
    def name(self) -> str:
        return self.checkpoint_type.value

    @abstractmethod
    def evaluate(self, metrics: PhaseMetrics) -> CheckpointResult:
        """Judge the phase; never raises for a bad result."""
        pass

    def _result(self, passed: bool, reason: str, **values: Any) -> CheckpointResult:
        if passed:
            logger.debug("Checkpoint %s passed: %s", self.name, reason)
        else:
            logger.warning("Checkpoint %s failed: %s", self.name, reason)
        return CheckpointResult(self.checkpoint_type, passed, reason, values)


def _share(part: int, whole: int) -> float:
    return part / whole if whole else 0.0


class ReconnaissanceCheckpoint(Checkpoint):
    """Structure hints must be usable: ready for cleaning with some confidence."""

    checkpoint_type = CheckpointType.RECONNAISSANCE_QUALITY
    min_confidence = 0.3

    def evaluate(self, metrics):
        hints = metrics.hints
        if hints is None:
            return self._result(False, "No structure hints were produced")
        if not hints.ready_for_cleaning:
            critical = "; ".join(w.message for w in hints.critical_warnings) or "not ready"
            return self._result(False, f"Structure analysis not ready: {critical}")
        if hints.overall_confidence < self.min_confidence:
            return self._result(
                False,
                f"Structure confidence {hints.overall_confidence:.2f} below {self.min_confidence}",
                confidence=hints.overall_confidence,
            )
        return self._result(
            True, f"Structure confidence {hints.overall_confidence:.2f}", confidence=hints.overall_confidence
        )


class SemanticCheckpoint(Checkpoint):
    """Page numbers and running heads are a small share of the lines."""

    checkpoint_type = CheckpointType.SEMANTIC_INTEGRITY
    max_line_share = 0.15

    def evaluate(self, metrics):
        share = _share(metrics.lines_removed, metrics.start_lines)
        return self._result(
            share <= self.max_line_share,
            f"{metrics.lines_removed} of {metrics.start_lines} lines removed ({share:.1%})",
            line_share=share,
        )


class _WordShareCheckpoint(Checkpoint):
    max_word_share: float

    def evaluate(self, metrics):
        share = _share(metrics.words_removed, metrics.start_words)
        return self._result(
            share <= self.max_word_share,
            f"{metrics.words_removed} of {metrics.start_words} words removed ({share:.1%}, "
            f"limit {self.max_word_share:.0%})",
            word_share=share,
        )


class StructuralCheckpoint(_WordShareCheckpoint):
    checkpoint_type = CheckpointType.STRUCTURAL_INTEGRITY
    max_word_share = 0.60


class ReferenceCheckpoint(_WordShareCheckpoint):
    checkpoint_type = CheckpointType.REFERENCE_INTEGRITY
    max_word_share = 0.20


class OptimizationCheckpoint(Checkpoint):
    """Reflow and splitting rearrange text; they must not lose or invent words."""

    checkpoint_type = CheckpointType.OPTIMIZATION_INTEGRITY
    tolerance = 0.02

    def evaluate(self, metrics):
        drift = _share(abs(metrics.end_words - metrics.start_words), metrics.start_words)
        return self._result(
            drift <= self.tolerance,
            f"Word count {metrics.start_words} -> {metrics.end_words} ({drift:.1%} drift)",
            drift=drift,
        )


class FinalCheckpoint(Checkpoint):
    checkpoint_type = CheckpointType.FINAL_QUALITY
    max_reduction = 0.70
    min_review_score = 0.5

    def evaluate(self, metrics):
        reduction = 1 - _share(metrics.end_words, metrics.original_words) if metrics.original_words else 0.0
        problems = []
        if reduction > self.max_reduction:
            problems.append(f"reduction {reduction:.0%} exceeds {self.max_reduction:.0%}")
        if metrics.review_score is not None and metrics.review_score < self.min_review_score:
            problems.append(f"quality score {metrics.review_score:.2f} below {self.min_review_score}")
        if problems:
            return self._result(False, "; ".join(problems), reduction=reduction)
        return self._result(True, f"Reduction {reduction:.0%}", reduction=reduction)


CHECKPOINTS: dict[CheckpointType, Checkpoint] = {
    checkpoint.checkpoint_type: checkpoint
    for checkpoint in (
        ReconnaissanceCheckpoint(),
        SemanticCheckpoint(),
        StructuralCheckpoint(),
        ReferenceCheckpoint(),
        OptimizationCheckpoint(),
        FinalCheckpoint(),
    )
}


def checkpoint_for(phase: PipelinePhase) -> Checkpoint | None:
    """The checkpoint guarding a phase, if it has one."""
    checkpoint_type = phase.checkpoint_type
    return CHECKPOINTS[checkpoint_type] if checkpoint_type is not None else None
