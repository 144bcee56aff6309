"""
Multi-layer validation for removals.

Three independent checks guard every boundary-based removal:
- Layer A (response): is the boundary in a plausible position and size?
- Layer B (content): does the text inside look like the claimed section?
- Layer C (heuristics): can the boundary be found without the AI detector?

policy.decide() combines the verdicts with the resolved confidence threshold
and records which layers concurred.
"""

from bookclean.validation.content import (
    ContentVerificationResult,
    ContentVerifier,
    VerificationFailure,
    VerificationStats,
)
from bookclean.validation.heuristics import (
    HeuristicBoundaryDetector,
    HeuristicDetectionResult,
    detect_citation_style,
    detect_footnote_markers,
    find_page_number_lines,
    find_running_headers,
    header_key,
    running_header_lines,
)
from bookclean.validation.policy import LayerVerdict, ValidationDecision, decide
from bookclean.validation.response import (
    SECTION_CONSTRAINTS,
    BoundaryInfo,
    BoundaryValidationResult,
    BoundaryValidationStats,
    BoundaryValidator,
    RejectionReason,
    SectionConstraints,
    SectionType,
)

__all__ = [
    # Layer A
    "BoundaryValidator",
    "BoundaryInfo",
    "BoundaryValidationResult",
    "BoundaryValidationStats",
    "RejectionReason",
    "SectionConstraints",
    "SectionType",
    "SECTION_CONSTRAINTS",
    # Layer B
    "ContentVerifier",
    "ContentVerificationResult",
    "VerificationFailure",
    "VerificationStats",
    # Layer C
    "HeuristicBoundaryDetector",
    "HeuristicDetectionResult",
    "detect_citation_style",
    "detect_footnote_markers",
    "find_page_number_lines",
    "find_running_headers",
    "header_key",
    "running_header_lines",
    # Policy
    "LayerVerdict",
    "ValidationDecision",
    "decide",
]
