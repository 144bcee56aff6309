"""
Step 16: final quality review.

Scores the assembled document. The detector may review it; the local review
always runs and the lower of the two scores is kept, so a lenient detector
cannot hide a problem the local checks can see.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from bookclean.detection import DetectionKind
from bookclean.models import CleaningStep
from bookclean.patterns import DEFAULT_PAGE_NUMBER_PATTERNS
from bookclean.steps.base import StepCollaborator, StepContext, StepOutcome, try_detect
from bookclean.text import count_cleaned_words, iter_blocks
from bookclean.validation import find_page_number_lines

logger = logging.getLogger(__name__)

MAX_REDUCTION = 0.70
HIGH_REDUCTION = 0.50
_HYPHENATED_END = re.compile(r"[A-Za-z]-$", re.MULTILINE)


@dataclass
class QualityReview:
    """Assessment of the finished document.

    Attributes:
        score: Overall quality in [0, 1].
        issues: Problems found, most serious first.
        recommendations: What the user should check.
        word_reduction: Share of the original words no longer present.
        source: "local" or "detector+local".
    """

    score: float
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    word_reduction: float = 0.0
    source: str = "local"

    def __post_init__(self):
        """Validate score."""
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"score must be between 0.0 and 1.0, got {self.score}")

    @property
    def passed(self) -> bool:
        return self.score >= 0.5 and self.word_reduction <= MAX_REDUCTION


def review_locally(ctx: StepContext) -> QualityReview:
    """Score the document with checks that need no detector."""
    text = ctx.text
    cleaned_words = count_cleaned_words(text, ctx.metadata_block)
    original = ctx.original_word_count
    reduction = 1 - cleaned_words / original if original else 0.0

    score = 1.0
    issues: list[str] = []
    recommendations: list[str] = []

    if cleaned_words == 0:
        return QualityReview(
            score=0.0,
            issues=["Document body is empty"],
            recommendations=["Check the removals; nothing of the body survived"],
            word_reduction=1.0 if original else 0.0,
        )

    if reduction > MAX_REDUCTION:
        score -= 0.5
        issues.append(f"{reduction:.0%} of the words were removed")
        recommendations.append("Review the structural removals for over-removal")
    elif reduction > HIGH_REDUCTION:
        score -= 0.15
        issues.append(f"High word reduction ({reduction:.0%})")

    lines = text.split("\n")
    leftover_pages = find_page_number_lines(lines, list(DEFAULT_PAGE_NUMBER_PATTERNS))
    if len(leftover_pages) >= 3:
        score -= 0.1
        issues.append(f"{len(leftover_pages)} page-number lines remain")

    hyphenated = len(_HYPHENATED_END.findall(text))
    if hyphenated > 5:
        score -= 0.05
        issues.append(f"{hyphenated} lines still end in a hyphen")

    cap = ctx.config.max_paragraph_words
    if cap:
        long_paragraphs = sum(
            1 for block in iter_blocks(text) if block.kind == "prose" and block.word_count > 2 * cap
        )
        if long_paragraphs:
            score -= min(0.1, 0.02 * long_paragraphs)
            issues.append(f"{long_paragraphs} paragraph(s) over {2 * cap} words")

    flagged = len(ctx.view.flagged_content)
    if flagged:
        score -= min(0.1, 0.02 * flagged)
        recommendations.append(f"Review {flagged} flagged region(s) left in place")
    fallbacks = len(ctx.view.fallbacks_used)
    if fallbacks:
        score -= min(0.1, 0.02 * fallbacks)
        recommendations.append(f"{fallbacks} step(s) ran on heuristics only")

    return QualityReview(
        score=round(max(0.0, min(1.0, score)), 4),
        issues=issues,
        recommendations=recommendations,
        word_reduction=reduction,
    )


def review_from_payload(payload: Any) -> QualityReview | None:
    if isinstance(payload, QualityReview):
        return payload
    if isinstance(payload, Mapping) and "score" in payload:
        try:
            return QualityReview(
                score=float(payload["score"]),
                issues=list(payload.get("issues", ())),
                recommendations=list(payload.get("recommendations", ())),
            )
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring malformed quality review: %s", e)
    return None


class FinalReviewStep(StepCollaborator):
    step = CleaningStep.FINAL_QUALITY_REVIEW

    def run(self, ctx: StepContext) -> StepOutcome:
        outcome = StepOutcome(text=ctx.text)
        review = review_locally(ctx)

        result = try_detect(ctx, outcome, DetectionKind.QUALITY_REVIEW)
        detected = review_from_payload(result.payload) if result is not None else None
        if detected is not None:
            review = QualityReview(
                score=min(review.score, detected.score),
                issues=detected.issues + [i for i in review.issues if i not in detected.issues],
                recommendations=detected.recommendations
                + [r for r in review.recommendations if r not in detected.recommendations],
                word_reduction=review.word_reduction,
                source="detector+local",
            )
        elif result is not None:
            outcome.warnings.append("Quality review detection returned no score")

        outcome.review = review
        outcome.confidence = review.score
        for issue in review.issues:
            outcome.warnings.append(f"Quality: {issue}")
        outcome.log(
            f"Quality score {review.score:.2f} ({review.source}), "
            f"{len(review.issues)} issue(s), reduction {review.word_reduction:.0%}"
        )
        logger.info("Final quality score %.2f", review.score)
        return outcome
