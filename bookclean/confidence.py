"""Per-phase confidence tracking for a cleaning run."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum

from bookclean.models import CleaningStep, PipelinePhase

logger = logging.getLogger(__name__)


class ConfidenceRating(Enum):
    VERY_HIGH = "very_high"
    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"
    VERY_LOW = "very_low"

    @classmethod
    def from_score(cls, score: float) -> ConfidenceRating:
        """
        Bucket a confidence score.

        Example:
            >>> ConfidenceRating.from_score(0.8)
            <ConfidenceRating.HIGH: 'high'>
        """
        if score >= 0.9:
            return cls.VERY_HIGH
        if score >= 0.75:
            return cls.HIGH
        if score >= 0.6:
            return cls.MODERATE
        if score >= 0.4:
            return cls.LOW
        return cls.VERY_LOW


@dataclass(frozen=True)
class StepConfidence:
    step: CleaningStep
    confidence: float


class ConfidenceTracker:
    """
    Collects the confidence each step reports and averages it per phase.

    Steps that report no confidence (pure code operations) are not recorded
    and do not pull a phase's average down.
    """

    def __init__(self) -> None:
        self._by_phase: dict[PipelinePhase, list[StepConfidence]] = defaultdict(list)

    def record(self, step: CleaningStep, confidence: float | None) -> None:
        if confidence is None:
            return
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be between 0.0 and 1.0, got {confidence}")
        self._by_phase[step.phase].append(StepConfidence(step, confidence))
        logger.debug("%s confidence %.2f", step.display_name, confidence)

    def phase_confidence(self, phase: PipelinePhase) -> float | None:
        entries = self._by_phase.get(phase)
        if not entries:
            return None
        return sum(e.confidence for e in entries) / len(entries)

    @property
    def phase_confidences(self) -> dict[PipelinePhase, float]:
        """Average confidence of every phase that reported one, in phase order."""
        return {
            phase: score
            for phase in PipelinePhase
            if (score := self.phase_confidence(phase)) is not None
        }

    @property
    def overall_confidence(self) -> float:
        scores = list(self.phase_confidences.values())
        return sum(scores) / len(scores) if scores else 0.0

    @property
    def rating(self) -> ConfidenceRating:
        return ConfidenceRating.from_score(self.overall_confidence)

    @property
    def lowest_phase(self) -> PipelinePhase | None:
        scores = self.phase_confidences
        return min(scores, key=scores.get) if scores else None

    def to_dict(self) -> dict[str, float]:
        return {phase.value: round(score, 4) for phase, score in self.phase_confidences.items()}
