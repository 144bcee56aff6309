"""
Steps 5-8: front matter, table of contents, back matter and index.

Each step asks the detector for its section, runs the proposal through the
validation layers and removes it only when the combination policy approves.
Anything not approved is flagged for review and left in place. Without a
detector the heuristic boundary finder proposes the section instead.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from bookclean.config import ThresholdCategory
from bookclean.context import ConfirmedBoundary, FlaggedContent, RemovalRecord, UserNotification
from bookclean.detection import DetectionKind
from bookclean.models import BoundaryType, CleaningStep, FlagReason, LineRange, RemovalType
from bookclean.steps.base import (
    RegionProposal,
    RegionReview,
    RegionValidator,
    StepCollaborator,
    StepContext,
    StepOutcome,
    best_region,
    clamp_range,
    record_review,
    try_detect,
)
from bookclean.text import count_words, remove_line_ranges
from bookclean.validation import HeuristicBoundaryDetector, HeuristicDetectionResult, SectionType

logger = logging.getLogger(__name__)


class SectionRemovalStep(StepCollaborator):
    """
    Shared flow for the boundary-based structural removals.

    Subclasses name the section, the detection request, how the section is
    found heuristically and which pattern-cache fields a confirmed removal
    updates.
    """

    section: SectionType
    detection_kind: DetectionKind
    removal_type: RemovalType
    boundary_type: BoundaryType
    require_corroboration: bool = False

    def __init__(
        self,
        validator: RegionValidator | None = None,
        heuristics: HeuristicBoundaryDetector | None = None,
    ):
        self.validator = validator or RegionValidator()
        self.heuristics = heuristics or HeuristicBoundaryDetector()

    def heuristic(self, text: str) -> HeuristicDetectionResult:
        raise NotImplementedError

    def pattern_updates(self, start: int, end: int, confidence: float) -> dict[str, Any]:
        return {}

    def run(self, ctx: StepContext) -> StepOutcome:
        outcome = StepOutcome(text=ctx.text)
        text = ctx.text
        threshold = ctx.threshold(ThresholdCategory.BOUNDARY)
        heuristic: Callable[[], HeuristicDetectionResult] = lambda: self.heuristic(text)

        proposal = self._propose(ctx, outcome, heuristic)
        if proposal is None:
            return outcome

        review = self.validator.review(
            text,
            proposal,
            threshold,
            heuristic=None if proposal.from_heuristic else heuristic,
            require_corroboration=self.require_corroboration,
        )
        record_review(outcome, review)

        line_range = review.line_range
        if review.decision.apply and line_range is not None:
            self._remove(ctx, outcome, review, line_range)
        elif review.decision.apply:
            outcome.log(f"No {self.section.value} boundary to remove")
        else:
            self._flag(ctx, outcome, review)
        return outcome

    def _propose(
        self,
        ctx: StepContext,
        outcome: StepOutcome,
        heuristic: Callable[[], HeuristicDetectionResult],
    ) -> RegionProposal | None:
        result = try_detect(ctx, outcome, self.detection_kind)
        if result is not None:
            region = best_region(result, self.section)
            if region is None:
                outcome.log(f"Detector found no {self.section.value}")
                return None
            return RegionProposal.from_region(self.section, region)

        found = heuristic()
        if not found.detected:
            outcome.log(f"Heuristics found no {self.section.value}: {found.explanation}")
            return None
        return RegionProposal.from_heuristic_result(found)

    def _remove(
        self, ctx: StepContext, outcome: StepOutcome, review: RegionReview, line_range: LineRange
    ) -> None:
        decision = review.decision
        start, end = line_range.to_zero_based()
        words = count_words("\n".join(ctx.lines[start : end + 1]))
        outcome.removals.append(
            RemovalRecord(
                step=self.step,
                removal_type=self.removal_type,
                line_range=line_range,
                word_count=words,
                confidence=decision.confidence,
                validation_method=decision.method,
                description=f"{self.step.display_name}: {review.proposal.description}".rstrip(": "),
            )
        )
        outcome.boundaries.append(
            ConfirmedBoundary(
                step=self.step,
                boundary_type=self.boundary_type,
                line_range=line_range,
                confidence=decision.confidence,
                validation_method=decision.method,
            )
        )
        outcome.text, _ = remove_line_ranges(ctx.text, [(start, end)])
        outcome.change_count = line_range.count
        outcome.confidence = decision.confidence
        outcome.pattern_updates = self.pattern_updates(start, end, decision.confidence)
        outcome.log(
            f"Removed {self.section.value} at lines {line_range} "
            f"({words} words, {decision.method.value})"
        )
        logger.info(
            "Removed %s: lines %s, %d words (%s)",
            self.section.value,
            line_range,
            words,
            decision.method.value,
        )

    def _flag(self, ctx: StepContext, outcome: StepOutcome, review: RegionReview) -> None:
        decision = review.decision
        proposal = review.proposal
        start = review.start_line if review.start_line is not None else proposal.start_line
        end = review.end_line if review.end_line is not None else proposal.end_line
        line_range = clamp_range(start, end, ctx.line_count)
        reason = decision.flag_reason or FlagReason.AMBIGUOUS_REMOVAL
        outcome.flags.append(
            FlaggedContent(
                step=self.step,
                line_range=line_range,
                reason=reason,
                confidence=proposal.confidence,
                description=decision.explanation,
                suggested_action=f"Review the proposed {self.section.value} removal",
            )
        )
        outcome.notifications.append(
            UserNotification(
                message=f"{self.step.display_name} left lines {line_range} in place ({reason.value})",
                step=self.step,
                severity="warning",
            )
        )
        outcome.log(f"Flagged {self.section.value} at lines {line_range}: {decision.explanation}")


class RemoveFrontMatterStep(SectionRemovalStep):
    step = CleaningStep.REMOVE_FRONT_MATTER
    section = SectionType.FRONT_MATTER
    detection_kind = DetectionKind.FRONT_MATTER
    removal_type = RemovalType.FRONT_MATTER
    boundary_type = BoundaryType.FRONT_MATTER_END

    def heuristic(self, text):
        return self.heuristics.detect_front_matter_end(text)

    def pattern_updates(self, start, end, confidence):
        return {"front_matter_end_line": end, "front_matter_confidence": confidence}


class RemoveTableOfContentsStep(SectionRemovalStep):
    step = CleaningStep.REMOVE_TABLE_OF_CONTENTS
    section = SectionType.TABLE_OF_CONTENTS
    detection_kind = DetectionKind.TABLE_OF_CONTENTS
    removal_type = RemovalType.TABLE_OF_CONTENTS
    boundary_type = BoundaryType.TABLE_OF_CONTENTS_START

    def heuristic(self, text):
        return self.heuristics.detect_toc(text)

    def pattern_updates(self, start, end, confidence):
        return {"toc_start_line": start, "toc_end_line": end, "toc_confidence": confidence}


class RemoveBackMatterStep(SectionRemovalStep):
    """Back matter is the riskiest removal: it always needs Layer C to agree."""

    step = CleaningStep.REMOVE_BACK_MATTER
    section = SectionType.BACK_MATTER
    detection_kind = DetectionKind.BACK_MATTER
    removal_type = RemovalType.BACK_MATTER
    boundary_type = BoundaryType.BACK_MATTER_START
    require_corroboration = True

    def heuristic(self, text):
        return self.heuristics.detect_back_matter(text)

    def pattern_updates(self, start, end, confidence):
        return {
            "back_matter_start_line": start,
            "back_matter_end_line": end,
            "back_matter_type": "back_matter",
            "back_matter_confidence": confidence,
        }


class RemoveIndexStep(SectionRemovalStep):
    step = CleaningStep.REMOVE_INDEX
    section = SectionType.INDEX
    detection_kind = DetectionKind.INDEX
    removal_type = RemovalType.INDEX
    boundary_type = BoundaryType.INDEX_START

    def heuristic(self, text):
        return self.heuristics.detect_index(text)

    def pattern_updates(self, start, end, confidence):
        return {"index_start_line": start, "index_end_line": end, "index_confidence": confidence}
