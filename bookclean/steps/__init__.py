"""
Per-step collaborators.

Each of the sixteen steps is a StepCollaborator. The orchestrator looks them
up by CleaningStep; default_collaborators() wires the standard set, and any
entry can be replaced (for example by a test double).
"""

from __future__ import annotations

from bookclean.models import CleaningStep
from bookclean.steps.assembly import AddStructureStep
from bookclean.steps.base import (
    RegionProposal,
    RegionReview,
    RegionValidator,
    StepCollaborator,
    StepContext,
    StepOutcome,
)
from bookclean.steps.finishing import CleanSpecialCharactersStep
from bookclean.steps.metadata import ExtractMetadataStep, extract_metadata_heuristically
from bookclean.steps.optimization import (
    OptimizeParagraphLengthStep,
    ReflowParagraphsStep,
    preserves_word_count,
)
from bookclean.steps.page_elements import RemoveHeadersFootersStep, RemovePageNumbersStep
from bookclean.steps.reconnaissance import AnalyzeStructureStep, measure_characteristics
from bookclean.steps.references import (
    RemoveAuxiliaryListsStep,
    RemoveCitationsStep,
    RemoveFootnotesStep,
)
from bookclean.steps.review import FinalReviewStep, QualityReview, review_locally
from bookclean.steps.sections import (
    RemoveBackMatterStep,
    RemoveFrontMatterStep,
    RemoveIndexStep,
    RemoveTableOfContentsStep,
)
from bookclean.validation import BoundaryValidator, ContentVerifier, HeuristicBoundaryDetector


def default_collaborators(
    boundary_validator: BoundaryValidator | None = None,
    content_verifier: ContentVerifier | None = None,
) -> dict[CleaningStep, StepCollaborator]:
    """The standard collaborator for every step, sharing one set of validators."""
    validator = RegionValidator(boundary_validator, content_verifier)
    heuristics = HeuristicBoundaryDetector()
    collaborators: list[StepCollaborator] = [
        AnalyzeStructureStep(heuristics),
        ExtractMetadataStep(),
        RemovePageNumbersStep(),
        RemoveHeadersFootersStep(),
        RemoveFrontMatterStep(validator, heuristics),
        RemoveTableOfContentsStep(validator, heuristics),
        RemoveBackMatterStep(validator, heuristics),
        RemoveIndexStep(validator, heuristics),
        RemoveAuxiliaryListsStep(validator, heuristics),
        RemoveCitationsStep(),
        RemoveFootnotesStep(validator, heuristics),
        CleanSpecialCharactersStep(),
        ReflowParagraphsStep(),
        OptimizeParagraphLengthStep(),
        AddStructureStep(),
        FinalReviewStep(),
    ]
    return {collaborator.step: collaborator for collaborator in collaborators}


__all__ = [
    # Contract
    "StepCollaborator",
    "StepContext",
    "StepOutcome",
    "RegionProposal",
    "RegionReview",
    "RegionValidator",
    "default_collaborators",
    # Steps
    "AnalyzeStructureStep",
    "ExtractMetadataStep",
    "RemovePageNumbersStep",
    "RemoveHeadersFootersStep",
    "RemoveFrontMatterStep",
    "RemoveTableOfContentsStep",
    "RemoveBackMatterStep",
    "RemoveIndexStep",
    "RemoveAuxiliaryListsStep",
    "RemoveCitationsStep",
    "RemoveFootnotesStep",
    "CleanSpecialCharactersStep",
    "ReflowParagraphsStep",
    "OptimizeParagraphLengthStep",
    "AddStructureStep",
    "FinalReviewStep",
    # Helpers
    "QualityReview",
    "extract_metadata_heuristically",
    "measure_characteristics",
    "preserves_word_count",
    "review_locally",
]
