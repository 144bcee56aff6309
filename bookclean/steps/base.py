"""
Step collaborator contract and the shared region-validation flow.

A collaborator receives a frozen StepContext and returns a StepOutcome: the
new working text plus the ledger entries and pattern-cache updates it
proposes. Only the orchestrator applies them.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from threading import Event
from typing import TYPE_CHECKING, Any, Callable, Mapping, Sequence

from bookclean.config import CleaningConfiguration, PipelineOptions, ThresholdCategory, resolve_threshold
from bookclean.content import ContentTypeFlags
from bookclean.context import (
    ConfirmedBoundary,
    ContentTransformation,
    ContextView,
    FlaggedContent,
    RemovalRecord,
    UserNotification,
)
from bookclean.detection import AIDetector, DetectionKind, DetectionResult, call_detector
from bookclean.exceptions import DetectionError
from bookclean.hints import DetectedRegion, RegionType, StructureHints
from bookclean.models import CleaningStep, DocumentMetadata, FlagReason, LineRange
from bookclean.patterns import DetectedPatterns
from bookclean.validation import (
    BoundaryInfo,
    BoundaryValidationResult,
    BoundaryValidator,
    ContentVerificationResult,
    ContentVerifier,
    HeuristicDetectionResult,
    LayerVerdict,
    SectionType,
    ValidationDecision,
    decide,
)
from bookclean.validation.response import SECTION_CONSTRAINTS

if TYPE_CHECKING:
    from bookclean.steps.review import QualityReview

logger = logging.getLogger(__name__)


# =============================================================================
# CONTEXT AND OUTCOME
# =============================================================================


@dataclass(frozen=True)
class StepContext:
    """
    Everything a step may read. Frozen; the pattern cache is a private copy.

    ``detector`` is None when the step is being retried on its heuristic
    path after a detector failure.
    """

    step: CleaningStep
    text: str
    config: CleaningConfiguration
    options: PipelineOptions
    patterns: DetectedPatterns
    view: ContextView
    flags: ContentTypeFlags = ContentTypeFlags.UNKNOWN
    hints: StructureHints | None = None
    metadata: DocumentMetadata | None = None
    detector: AIDetector | None = None
    original_word_count: int = 0
    metadata_block: str | None = None
    cancel_event: Event | None = None
    report_chunk: Callable[[int, int], None] | None = None

    @property
    def lines(self) -> list[str]:
        return self.text.split("\n")

    @property
    def line_count(self) -> int:
        return len(self.lines)

    def threshold(self, category: ThresholdCategory) -> float:
        return resolve_threshold(category, self.config, self.flags)

    def context_hints(self) -> dict[str, Any]:
        """Read-only hints handed to the detector with every request."""
        return {
            "step": self.step.name.lower(),
            "content_type": self.config.content_type.value,
            "content_flags": self.flags.summary,
            "known_patterns": self.patterns.detection_summary(),
        }

    def detect(self, kind: DetectionKind, window: str | None = None) -> DetectionResult:
        """
        Ask the detector, honouring the run's timeout and cancellation.

        Raises:
            DetectionError: On any detector failure (the caller falls back).
            PipelineCancelled: When the run is cancelled while waiting.
        """
        return call_detector(
            self.detector,
            kind,
            self.text if window is None else window,
            self.context_hints(),
            timeout=self.options.detector_timeout,
            cancel_event=self.cancel_event,
            poll_interval=self.options.poll_interval,
        )


@dataclass
class StepOutcome:
    """What a step proposes. The orchestrator applies it to the ledger."""

    text: str
    change_count: int = 0
    confidence: float | None = None
    removals: list[RemovalRecord] = field(default_factory=list)
    boundaries: list[ConfirmedBoundary] = field(default_factory=list)
    transformations: list[ContentTransformation] = field(default_factory=list)
    flags: list[FlaggedContent] = field(default_factory=list)
    notifications: list[UserNotification] = field(default_factory=list)
    fallbacks: dict[CleaningStep, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    pattern_updates: dict[str, Any] = field(default_factory=dict)
    boundary_results: list[BoundaryValidationResult] = field(default_factory=list)
    verification_results: list[ContentVerificationResult] = field(default_factory=list)
    processing_log: list[str] = field(default_factory=list)
    hints: StructureHints | None = None
    metadata: DocumentMetadata | None = None
    metadata_block: str | None = None
    review: QualityReview | None = None
    content_flags: ContentTypeFlags | None = None

    def log(self, message: str) -> None:
        self.processing_log.append(message)

    def fallback(self, step: CleaningStep, reason: str) -> None:
        logger.warning("%s falling back to heuristics: %s", step.display_name, reason)
        self.fallbacks[step] = reason
        self.processing_log.append(f"Fallback: {reason}")


class StepCollaborator(ABC):
    """Abstract base for the per-step workers."""

    step: CleaningStep

    @property
    def name(self) -> str:
        return self.step.name.lower()

    @abstractmethod
    def run(self, ctx: StepContext) -> StepOutcome:
        """Do the step's work on ctx.text.

        DetectionError should be handled inside the step; one that escapes
        makes the orchestrator retry the step without a detector.
        """
        pass


# =============================================================================
# REGION VALIDATION
# =============================================================================

SECTION_REGION_TYPES: dict[SectionType, frozenset[RegionType]] = {
    SectionType.FRONT_MATTER: frozenset(
        {
            RegionType.FRONT_MATTER,
            RegionType.TITLE_PAGE,
            RegionType.COPYRIGHT_PAGE,
            RegionType.DEDICATION,
            RegionType.EPIGRAPH,
        }
    ),
    SectionType.TABLE_OF_CONTENTS: frozenset({RegionType.TABLE_OF_CONTENTS}),
    SectionType.INDEX: frozenset({RegionType.INDEX}),
    SectionType.BACK_MATTER: frozenset(
        {
            RegionType.BACK_MATTER,
            RegionType.APPENDIX,
            RegionType.APPENDICES,
            RegionType.BIBLIOGRAPHY,
            RegionType.GLOSSARY,
            RegionType.COLOPHON,
            RegionType.ABOUT_AUTHOR,
            RegionType.ACKNOWLEDGMENTS,
        }
    ),
    SectionType.AUXILIARY_LISTS: frozenset(
        {
            RegionType.LIST_OF_FIGURES,
            RegionType.LIST_OF_TABLES,
            RegionType.LIST_OF_ABBREVIATIONS,
        }
    ),
    SectionType.FOOTNOTES_ENDNOTES: frozenset({RegionType.FOOTNOTE_SECTION, RegionType.NOTES}),
    SectionType.GENERIC: frozenset(),
}


@dataclass(frozen=True)
class RegionProposal:
    """A candidate section (0-indexed, inclusive) from the detector or a heuristic."""

    section: SectionType
    start_line: int | None
    end_line: int | None
    confidence: float
    from_heuristic: bool = False
    description: str = ""

    @classmethod
    def from_region(cls, section: SectionType, region: DetectedRegion) -> RegionProposal:
        start, end = region.line_range.to_zero_based()
        if SECTION_CONSTRAINTS[section].anchor == "end":
            start = None
        return cls(section, start, end, region.confidence, description=region.type.value)

    @classmethod
    def from_heuristic_result(cls, result: HeuristicDetectionResult) -> RegionProposal:
        anchor = SECTION_CONSTRAINTS[result.section_type].anchor
        start = None if anchor == "end" else result.boundary_line
        end = result.end_line if result.end_line is not None else result.boundary_line
        return cls(
            result.section_type,
            start,
            end,
            result.confidence,
            from_heuristic=True,
            description=result.explanation,
        )


@dataclass
class RegionReview:
    """Outcome of running a proposal through the validation layers."""

    proposal: RegionProposal
    decision: ValidationDecision
    start_line: int | None = None
    end_line: int | None = None
    layer_a: BoundaryValidationResult | None = None
    layer_b: ContentVerificationResult | None = None
    layer_c: HeuristicDetectionResult | None = None

    @property
    def line_range(self) -> LineRange | None:
        if self.start_line is None or self.end_line is None:
            return None
        return LineRange.from_zero_based(self.start_line, self.end_line)


def best_region(result: DetectionResult, section: SectionType) -> DetectedRegion | None:
    """Highest-confidence region of the section's region types."""
    wanted = SECTION_REGION_TYPES[section]
    candidates = [r for r in result.regions if r.type in wanted]
    return max(candidates, key=lambda r: r.confidence) if candidates else None


def agreement_tolerance(line_count: int) -> int:
    return max(5, int(line_count * 0.02))


def clamp_range(start: int | None, end: int | None, line_count: int) -> LineRange:
    """A valid 1-indexed range covering as much of start..end as exists."""
    last = max(line_count - 1, 0)
    lo = min(max(start if start is not None else 0, 0), last)
    hi = min(max(end if end is not None else last, lo), last)
    return LineRange.from_zero_based(lo, hi)


class RegionValidator:
    """
    Runs Layers A, B and C over a proposal and applies the combination policy.

    Detector proposals get Layers A and B; Layer C is consulted when they
    disagree or when corroboration is required. Heuristic proposals are
    guarded by Layer A and otherwise carry Layer C alone.
    """

    def __init__(
        self,
        boundary_validator: BoundaryValidator | None = None,
        content_verifier: ContentVerifier | None = None,
    ):
        self.boundary_validator = boundary_validator or BoundaryValidator()
        self.content_verifier = content_verifier or ContentVerifier()

    def review(
        self,
        text: str,
        proposal: RegionProposal,
        threshold: float,
        heuristic: Callable[[], HeuristicDetectionResult] | None = None,
        confirmed_ranges: Sequence[tuple[int, int]] = (),
        require_corroboration: bool = False,
    ) -> RegionReview:
        n = len(text.split("\n"))
        boundary = BoundaryInfo(
            proposal.start_line, proposal.end_line, proposal.confidence, proposal.description
        )
        layer_a = self.boundary_validator.validate(boundary, proposal.section, n, confirmed_ranges)

        if proposal.from_heuristic:
            if not layer_a.is_valid:
                decision = _flagged(proposal.confidence, threshold, layer_a.explanation)
                return RegionReview(proposal, decision, layer_a=layer_a)
            decision = decide(proposal.confidence, threshold, layer_c=LayerVerdict.APPROVED)
            return RegionReview(
                proposal, decision, layer_a.start_line, layer_a.end_line, layer_a=layer_a
            )

        start, end = self._raw_range(proposal, n)
        layer_b = None
        verdict_b = LayerVerdict.NOT_RUN
        if start is not None and 0 <= start <= end < n:
            layer_b = self.content_verifier.verify(proposal.section, text, start, end)
            verdict_b = (
                LayerVerdict.of(layer_b.is_valid) if layer_b.applicable else LayerVerdict.NOT_APPLICABLE
            )
        verdict_a = LayerVerdict.of(layer_a.is_valid)

        layer_c = None
        verdict_c = LayerVerdict.NOT_RUN
        disagree = verdict_b in (LayerVerdict.APPROVED, LayerVerdict.REJECTED) and verdict_a is not verdict_b
        if heuristic is not None and (require_corroboration or disagree or verdict_b is LayerVerdict.NOT_RUN):
            layer_c = heuristic()
            anchor_line = proposal.end_line if proposal.start_line is None else proposal.start_line
            if anchor_line is not None and layer_c.agrees_with(anchor_line, agreement_tolerance(n)):
                verdict_c = LayerVerdict.APPROVED
            elif layer_c.detected:
                verdict_c = LayerVerdict.REJECTED

        decision = decide(
            proposal.confidence, threshold, verdict_a, verdict_b, verdict_c, require_corroboration
        )
        review = RegionReview(proposal, decision, layer_a=layer_a, layer_b=layer_b, layer_c=layer_c)
        if not decision.apply:
            review.start_line, review.end_line = start, end
            return review

        if layer_a.is_valid:
            review.start_line, review.end_line = layer_a.start_line, layer_a.end_line
            return review

        # Layer C overruled Layer A: remove what the heuristic found, if it is sane
        settled = RegionProposal.from_heuristic_result(layer_c)
        guard = self.boundary_validator.validate(
            BoundaryInfo(settled.start_line, settled.end_line, settled.confidence),
            proposal.section,
            n,
            confirmed_ranges,
        )
        if not guard.has_range:
            review.decision = _flagged(proposal.confidence, threshold, guard.explanation)
            review.start_line, review.end_line = start, end
            return review
        review.start_line, review.end_line = guard.start_line, guard.end_line
        return review

    @staticmethod
    def _raw_range(proposal: RegionProposal, n: int) -> tuple[int | None, int | None]:
        anchor = SECTION_CONSTRAINTS[proposal.section].anchor
        if anchor == "end":
            return (0, proposal.end_line) if proposal.end_line is not None else (None, None)
        if proposal.start_line is None:
            return None, None
        end = proposal.end_line if proposal.end_line is not None else n - 1
        return proposal.start_line, end


def _flagged(confidence: float, threshold: float, explanation: str) -> ValidationDecision:
    logger.info("Removal flagged (ambiguous_removal): %s", explanation)
    return ValidationDecision(
        apply=False,
        confidence=confidence,
        threshold=threshold,
        explanation=explanation,
        flag_reason=FlagReason.AMBIGUOUS_REMOVAL,
    )


def record_review(outcome: StepOutcome, review: RegionReview) -> None:
    """Keep the layer results for the run's validation statistics."""
    if review.layer_a is not None:
        outcome.boundary_results.append(review.layer_a)
    if review.layer_b is not None:
        outcome.verification_results.append(review.layer_b)


def try_detect(
    ctx: StepContext, outcome: StepOutcome, kind: DetectionKind, window: str | None = None
) -> DetectionResult | None:
    """Call the detector; on failure record the fallback and return None."""
    try:
        return ctx.detect(kind, window)
    except DetectionError as e:
        outcome.fallback(ctx.step, str(e))
        return None


def detected_mapping(result: DetectionResult | None) -> Mapping[str, Any]:
    return result.patterns if result is not None else {}
