"""
Combination policy for the three validation layers.

A region is removed only when its confidence reaches the resolved threshold
and at least one layer approved it without another layer objecting (unless
Layer C settled the disagreement). Everything else is flagged for review.
The returned ValidationMethod records exactly which layers concurred.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from bookclean.models import FlagReason, ValidationMethod

logger = logging.getLogger(__name__)


class LayerVerdict(Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    NOT_RUN = "not_run"
    NOT_APPLICABLE = "not_applicable"

    @classmethod
    def of(cls, passed: bool) -> LayerVerdict:
        return cls.APPROVED if passed else cls.REJECTED


@dataclass(frozen=True)
class ValidationDecision:
    apply: bool
    confidence: float
    threshold: float
    explanation: str
    method: ValidationMethod | None = None
    flag_reason: FlagReason | None = None


def decide(
    confidence: float,
    threshold: float,
    layer_a: LayerVerdict = LayerVerdict.NOT_RUN,
    layer_b: LayerVerdict = LayerVerdict.NOT_RUN,
    layer_c: LayerVerdict = LayerVerdict.NOT_RUN,
    require_corroboration: bool = False,
) -> ValidationDecision:
    """
    Decide whether a proposed removal is applied.

    Args:
        confidence: Confidence of the proposal being judged.
        threshold: Resolved threshold for this kind of removal.
        layer_a: Response validation verdict.
        layer_b: Content verification verdict.
        layer_c: Heuristic verdict.
        require_corroboration: High-risk removals (back matter) also need
            Layer C to agree with A and B.

    Returns:
        The decision; ``apply`` False means the region is flagged with
        ``flag_reason``.

    Example:
        >>> decide(0.95, 0.7, LayerVerdict.APPROVED, LayerVerdict.APPROVED).method
        <ValidationMethod.PHASE_AB: 'phase_ab'>
    """
    verdicts = {"A": layer_a, "B": layer_b, "C": layer_c}
    approved = {name for name, v in verdicts.items() if v is LayerVerdict.APPROVED}
    rejected = {name for name, v in verdicts.items() if v is LayerVerdict.REJECTED}

    def flag(reason: FlagReason, explanation: str) -> ValidationDecision:
        logger.info("Removal flagged (%s): %s", reason.value, explanation)
        return ValidationDecision(
            apply=False,
            confidence=confidence,
            threshold=threshold,
            explanation=explanation,
            flag_reason=reason,
        )

    if confidence < threshold:
        return flag(
            FlagReason.LOW_CONFIDENCE,
            f"Confidence {confidence:.2f} is below threshold {threshold:.2f}",
        )
    if not approved:
        return flag(FlagReason.AMBIGUOUS_REMOVAL, "No validation layer approved the removal")

    if rejected:
        # Layer C may settle an A/B disagreement with its own finding
        if "C" in approved and "C" not in rejected:
            method = ValidationMethod.PHASE_C
        else:
            return flag(
                FlagReason.AMBIGUOUS_REMOVAL,
                f"Validation layers disagree (rejected by {', '.join(sorted(rejected))})",
            )
    elif approved >= {"A", "B", "C"}:
        method = ValidationMethod.PHASE_ABC
    elif require_corroboration and approved >= {"A", "B"}:
        return flag(
            FlagReason.AMBIGUOUS_REMOVAL, "Removal needs heuristic corroboration, none found"
        )
    elif approved >= {"A", "B"}:
        method = ValidationMethod.PHASE_AB
    elif "A" in approved:
        method = ValidationMethod.PHASE_A
    elif "B" in approved:
        method = ValidationMethod.PHASE_B
    else:
        method = ValidationMethod.PHASE_C

    return ValidationDecision(
        apply=True,
        confidence=confidence,
        threshold=threshold,
        explanation=f"Approved by {', '.join(sorted(approved))}",
        method=method,
    )
