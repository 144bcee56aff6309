"""
Layer A: response validation.

Sanity-checks a proposed boundary before anything is removed: the lines must
exist, the section must sit where that kind of section can sit, the removal
must not be implausibly large or small, and the detector must be confident
enough. Nothing here looks at the text itself (that is Layer B).

All line numbers are 0-indexed and inclusive.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

logger = logging.getLogger(__name__)


class SectionType(Enum):
    FRONT_MATTER = "front_matter"
    TABLE_OF_CONTENTS = "table_of_contents"
    INDEX = "index"
    BACK_MATTER = "back_matter"
    AUXILIARY_LISTS = "auxiliary_lists"
    FOOTNOTES_ENDNOTES = "footnotes_endnotes"
    GENERIC = "generic"


class RejectionReason(Enum):
    POSITION_TOO_EARLY = "position_too_early"
    POSITION_TOO_LATE = "position_too_late"
    INVALID_RANGE = "invalid_range"
    OUT_OF_BOUNDS = "out_of_bounds"
    EXCESSIVE_REMOVAL = "excessive_removal"
    SECTION_TOO_SMALL = "section_too_small"
    LOW_CONFIDENCE = "low_confidence"
    OVERLAPS_CONFIRMED = "overlaps_confirmed"


@dataclass(frozen=True)
class BoundaryInfo:
    """A proposed section boundary (0-indexed, inclusive)."""

    start_line: int | None
    end_line: int | None
    confidence: float
    notes: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.start_line is None and self.end_line is None


@dataclass(frozen=True)
class BoundaryValidationResult:
    section_type: SectionType
    boundary: BoundaryInfo
    is_valid: bool
    explanation: str
    rejection_reason: RejectionReason | None = None
    # Resolved range, filled in when the boundary is valid and non-empty
    start_line: int | None = None
    end_line: int | None = None

    @property
    def has_range(self) -> bool:
        return self.is_valid and self.start_line is not None and self.end_line is not None


# =============================================================================
# CONSTRAINTS
# =============================================================================


@dataclass(frozen=True)
class SectionConstraints:
    """Positional limits for one section type (fractions of the document)."""

    anchor: str  # "end" (starts at line 0), "start" (runs to the end), or "both"
    min_confidence: float
    max_removal_percent: float
    min_lines: int = 0
    max_end_percent: float | None = None
    min_start_percent: float | None = None
    early_max_removal_percent: float | None = None  # Applies when starting in the first half


SECTION_CONSTRAINTS: dict[SectionType, SectionConstraints] = {
    SectionType.FRONT_MATTER: SectionConstraints(
        anchor="end",
        max_end_percent=0.40,
        max_removal_percent=0.40,
        min_confidence=0.60,
        min_lines=3,
    ),
    SectionType.TABLE_OF_CONTENTS: SectionConstraints(
        anchor="both",
        max_end_percent=0.35,
        max_removal_percent=0.20,
        min_confidence=0.60,
        min_lines=5,
    ),
    SectionType.INDEX: SectionConstraints(
        anchor="start",
        min_start_percent=0.60,
        max_removal_percent=0.25,
        min_confidence=0.65,
        min_lines=10,
    ),
    SectionType.BACK_MATTER: SectionConstraints(
        anchor="start",
        min_start_percent=0.50,
        max_removal_percent=0.45,
        min_confidence=0.70,
        min_lines=5,
    ),
    SectionType.AUXILIARY_LISTS: SectionConstraints(
        anchor="both",
        max_end_percent=0.40,
        max_removal_percent=0.15,
        min_confidence=0.65,
        min_lines=3,
    ),
    SectionType.FOOTNOTES_ENDNOTES: SectionConstraints(
        anchor="both",
        max_removal_percent=0.12,
        early_max_removal_percent=0.05,
        min_confidence=0.70,
        min_lines=4,
    ),
    SectionType.GENERIC: SectionConstraints(
        anchor="both",
        max_removal_percent=0.50,
        min_confidence=0.50,
    ),
}


# =============================================================================
# VALIDATOR
# =============================================================================


class BoundaryValidator:
    """
    Validates detected boundaries before they are used for removal.

    Example:
        >>> validator = BoundaryValidator()
        >>> result = validator.validate(
        ...     BoundaryInfo(start_line=4, end_line=None, confidence=0.9),
        ...     SectionType.BACK_MATTER,
        ...     document_line_count=414,
        ... )
        >>> result.rejection_reason
        <RejectionReason.POSITION_TOO_EARLY: 'position_too_early'>
    """

    def __init__(self, constraints: dict[SectionType, SectionConstraints] | None = None):
        self.constraints = constraints or SECTION_CONSTRAINTS

    def validate(
        self,
        boundary: BoundaryInfo,
        section_type: SectionType,
        document_line_count: int,
        confirmed_ranges: Sequence[tuple[int, int]] = (),
    ) -> BoundaryValidationResult:
        """
        Validate one boundary.

        Args:
            boundary: Proposed boundary.
            section_type: Which kind of section it bounds.
            document_line_count: Lines in the text the boundary refers to.
            confirmed_ranges: Ranges already accepted in the same text; the
                proposal may not overlap them.

        Returns:
            Validation result; an empty boundary is valid (nothing to remove).
        """
        if boundary.is_empty:
            return self._no_boundary(section_type, boundary)

        rules = self.constraints[section_type]
        n = document_line_count
        start, end = self._resolve_range(boundary, rules, n)
        if start is None or end is None:
            logger.debug("[%s] Incomplete boundary, nothing to remove", section_type.value)
            return self._no_boundary(section_type, boundary)

        def reject(reason: RejectionReason, explanation: str) -> BoundaryValidationResult:
            log = logger.warning if reason is RejectionReason.POSITION_TOO_EARLY else logger.info
            log("[%s] Boundary rejected (%s): %s", section_type.value, reason.value, explanation)
            return BoundaryValidationResult(
                section_type=section_type,
                boundary=boundary,
                is_valid=False,
                explanation=explanation,
                rejection_reason=reason,
            )

        if start > end:
            return reject(
                RejectionReason.INVALID_RANGE, f"Invalid range: start line {start} > end line {end}"
            )
        if start < 0 or end >= n:
            return reject(
                RejectionReason.OUT_OF_BOUNDS,
                f"Lines {start}-{end} out of bounds (document has {n} lines)",
            )

        start_percent = start / n
        end_percent = end / n
        if rules.max_end_percent is not None and end_percent > rules.max_end_percent:
            return reject(
                RejectionReason.POSITION_TOO_LATE,
                f"Section ends at line {end} ({end_percent:.0%}), "
                f"past the maximum {rules.max_end_percent:.0%} of the document",
            )
        if rules.min_start_percent is not None and start_percent < rules.min_start_percent:
            return reject(
                RejectionReason.POSITION_TOO_EARLY,
                f"Section starts at line {start} ({start_percent:.0%}), before the minimum "
                f"{rules.min_start_percent:.0%}; removal would delete "
                f"{1.0 - start_percent:.0%} of the document",
            )

        line_count = end - start + 1
        removal_percent = line_count / n
        max_removal = rules.max_removal_percent
        if rules.early_max_removal_percent is not None and start_percent < 0.5:
            max_removal = rules.early_max_removal_percent
        if removal_percent > max_removal:
            return reject(
                RejectionReason.EXCESSIVE_REMOVAL,
                f"Removing {line_count} lines ({removal_percent:.0%}) exceeds maximum "
                f"{max_removal:.0%}",
            )

        # Front matter counts from line 0, so its size check uses the end line
        size = end if rules.anchor == "end" else line_count
        if size < rules.min_lines:
            return reject(
                RejectionReason.SECTION_TOO_SMALL,
                f"Section ({line_count} lines) is smaller than minimum {rules.min_lines} lines",
            )

        if boundary.confidence < rules.min_confidence:
            return reject(
                RejectionReason.LOW_CONFIDENCE,
                f"Confidence {boundary.confidence:.2f} is below minimum {rules.min_confidence}",
            )

        for other_start, other_end in confirmed_ranges:
            if start <= other_end and other_start <= end:
                return reject(
                    RejectionReason.OVERLAPS_CONFIRMED,
                    f"Lines {start}-{end} overlap confirmed lines {other_start}-{other_end}",
                )

        return BoundaryValidationResult(
            section_type=section_type,
            boundary=boundary,
            is_valid=True,
            explanation="Boundary validation passed",
            start_line=start,
            end_line=end,
        )

    @staticmethod
    def _resolve_range(
        boundary: BoundaryInfo, rules: SectionConstraints, n: int
    ) -> tuple[int | None, int | None]:
        if rules.anchor == "end":
            return (0, boundary.end_line) if boundary.end_line is not None else (None, None)
        if rules.anchor == "start":
            if boundary.start_line is None:
                return None, None
            end = boundary.end_line if boundary.end_line is not None else n - 1
            return boundary.start_line, end
        return boundary.start_line, boundary.end_line

    @staticmethod
    def _no_boundary(section_type: SectionType, boundary: BoundaryInfo) -> BoundaryValidationResult:
        return BoundaryValidationResult(
            section_type=section_type,
            boundary=boundary,
            is_valid=True,
            explanation="No boundary detected - section will be preserved",
        )


@dataclass
class BoundaryValidationStats:
    """Running pass/reject counts across validations."""

    total: int = 0
    passed: int = 0
    rejected: int = 0
    rejections_by_reason: Counter = field(default_factory=Counter)
    rejections_by_section: Counter = field(default_factory=Counter)

    def record(self, result: BoundaryValidationResult) -> None:
        self.total += 1
        if result.is_valid:
            self.passed += 1
            return
        self.rejected += 1
        if result.rejection_reason is not None:
            self.rejections_by_reason[result.rejection_reason] += 1
        self.rejections_by_section[result.section_type] += 1

    @property
    def pass_rate(self) -> float:
        return self.passed / self.total if self.total else 1.0

    def summary(self) -> str:
        return (
            f"Boundary validation: {self.total} total, "
            f"{self.passed} passed ({self.pass_rate:.0%}), {self.rejected} rejected"
        )
