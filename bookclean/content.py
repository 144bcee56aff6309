"""
Content-type taxonomy and classifier output.

ContentType is what a user declares; ContentTypeFlags is what a classifier
(normally the AI detector) reports. Both feed configuration resolution, which
only ever uses them to restrict the step set.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from bookclean.models import CleaningStep

# =============================================================================
# USER-DECLARED CONTENT TYPE
# =============================================================================


class ContentType(Enum):
    """Content type selected by the user (or auto-detect)."""

    AUTO_DETECT = "auto_detect"
    PROSE_NON_FICTION = "prose_non_fiction"
    PROSE_FICTION = "prose_fiction"
    POETRY = "poetry"
    ACADEMIC = "academic"
    SCIENTIFIC_TECHNICAL = "scientific_technical"
    LEGAL = "legal"
    RELIGIOUS_SACRED = "religious_sacred"
    CHILDRENS = "childrens"
    DRAMA_SCREENPLAY = "drama_screenplay"
    MIXED = "mixed"

    @property
    def disabled_steps(self) -> frozenset[CleaningStep]:
        """Steps that would be destructive for this kind of content."""
        return _DISABLED_STEPS.get(self, frozenset())

    @property
    def max_paragraph_words(self) -> int:
        return _MAX_PARAGRAPH_WORDS.get(self, 250)

    @property
    def line_breaks_are_content(self) -> bool:
        return self in (ContentType.POETRY, ContentType.DRAMA_SCREENPLAY)

    @property
    def has_meaningful_citations(self) -> bool:
        return self in (
            ContentType.ACADEMIC,
            ContentType.SCIENTIFIC_TECHNICAL,
            ContentType.LEGAL,
            ContentType.RELIGIOUS_SACRED,
        )


_DISABLED_STEPS: dict[ContentType, frozenset[CleaningStep]] = {
    ContentType.POETRY: frozenset(
        {CleaningStep.REFLOW_PARAGRAPHS, CleaningStep.OPTIMIZE_PARAGRAPH_LENGTH}
    ),
    ContentType.DRAMA_SCREENPLAY: frozenset({CleaningStep.REFLOW_PARAGRAPHS}),
    ContentType.LEGAL: frozenset(
        {CleaningStep.REMOVE_CITATIONS, CleaningStep.REMOVE_FOOTNOTES_ENDNOTES}
    ),
    ContentType.ACADEMIC: frozenset({CleaningStep.REMOVE_CITATIONS}),
    ContentType.SCIENTIFIC_TECHNICAL: frozenset({CleaningStep.REMOVE_CITATIONS}),
}

_MAX_PARAGRAPH_WORDS: dict[ContentType, int] = {
    ContentType.CHILDRENS: 150,
    ContentType.POETRY: 50,
    ContentType.DRAMA_SCREENPLAY: 50,
    ContentType.LEGAL: 300,
}


# =============================================================================
# CLASSIFIER OUTPUT
# =============================================================================


class ContentPrimaryType(Enum):
    """Dominant content classification of a document."""

    PROSE = "prose"
    POETRY = "poetry"
    DIALOGUE = "dialogue"
    TECHNICAL = "technical"
    ACADEMIC = "academic"
    LEGAL = "legal"
    CHILDRENS = "childrens"
    RELIGIOUS = "religious"
    MIXED = "mixed"


class ConfidenceLevel(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class ContentTypeFlags:
    """
    Content characteristics reported by a classifier.

    The pipeline never classifies text itself; it consumes these flags to
    restrict configuration and to adjust individual steps.

    Example:
        >>> flags = ContentTypeFlags(has_poetry=True, primary_type=ContentPrimaryType.POETRY,
        ...                          confidence=0.9)
        >>> flags.should_skip_reflow
        True
    """

    has_poetry: bool = False
    has_dialogue: bool = False
    has_code: bool = False
    is_academic: bool = False
    is_legal: bool = False
    is_childrens: bool = False
    has_religious_verses: bool = False
    has_tabular_data: bool = False
    has_mathematical: bool = False
    primary_type: ContentPrimaryType = ContentPrimaryType.PROSE
    confidence: float = 0.0
    notes: str | None = None

    def __post_init__(self):
        """Validate confidence."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be between 0.0 and 1.0, got {self.confidence}")

    @property
    def has_special_content(self) -> bool:
        return any(
            (
                self.has_poetry,
                self.has_dialogue,
                self.has_code,
                self.is_academic,
                self.is_legal,
                self.is_childrens,
                self.has_religious_verses,
                self.has_tabular_data,
                self.has_mathematical,
            )
        )

    @property
    def should_skip_reflow(self) -> bool:
        """Poetry, code and tables have intentional line structure."""
        return self.has_poetry or self.has_code or self.has_tabular_data

    @property
    def has_citation_likelihood(self) -> bool:
        return self.is_academic or self.is_legal

    @property
    def has_footnote_likelihood(self) -> bool:
        return self.is_academic

    @property
    def recommended_max_paragraph_words(self) -> int:
        if self.is_childrens:
            return 150
        if self.is_academic:
            return 300
        return 250

    @property
    def confidence_level(self) -> ConfidenceLevel:
        if self.confidence >= 0.8:
            return ConfidenceLevel.HIGH
        if self.confidence >= 0.5:
            return ConfidenceLevel.MEDIUM
        return ConfidenceLevel.LOW

    @property
    def disabled_steps(self) -> frozenset[CleaningStep]:
        """Steps these flags rule out, mirroring the ContentType table."""
        steps: set[CleaningStep] = set()
        if self.has_poetry:
            steps |= ContentType.POETRY.disabled_steps
        if self.primary_type is ContentPrimaryType.DIALOGUE:
            steps |= ContentType.DRAMA_SCREENPLAY.disabled_steps
        if self.should_skip_reflow:
            steps.add(CleaningStep.REFLOW_PARAGRAPHS)
        if self.is_legal:
            steps |= ContentType.LEGAL.disabled_steps
        if self.is_academic:
            steps |= ContentType.ACADEMIC.disabled_steps
        return frozenset(steps)

    @property
    def active_flags(self) -> list[str]:
        names = [
            ("has_poetry", "Poetry"),
            ("has_dialogue", "Dialogue"),
            ("has_code", "Code"),
            ("is_academic", "Academic"),
            ("is_legal", "Legal"),
            ("is_childrens", "Children's"),
            ("has_religious_verses", "Religious Verses"),
            ("has_tabular_data", "Tabular Data"),
            ("has_mathematical", "Mathematical"),
        ]
        return [label for attr, label in names if getattr(self, attr)]

    @property
    def summary(self) -> str:
        return ", ".join(self.active_flags) or "Standard prose content"

    @classmethod
    def from_content_type(cls, content_type: ContentType) -> ContentTypeFlags | None:
        """
        Derive flags from a user-declared content type.

        Returns None for AUTO_DETECT and MIXED, which need a classifier.
        """
        note = f"From declared content type: {content_type.value}"
        presets = {
            ContentType.PROSE_NON_FICTION: {"primary_type": ContentPrimaryType.PROSE},
            ContentType.PROSE_FICTION: {"primary_type": ContentPrimaryType.PROSE},
            ContentType.POETRY: {"has_poetry": True, "primary_type": ContentPrimaryType.POETRY},
            ContentType.ACADEMIC: {"is_academic": True, "primary_type": ContentPrimaryType.ACADEMIC},
            ContentType.SCIENTIFIC_TECHNICAL: {
                "has_code": True,
                "has_mathematical": True,
                "primary_type": ContentPrimaryType.TECHNICAL,
            },
            ContentType.LEGAL: {"is_legal": True, "primary_type": ContentPrimaryType.LEGAL},
            ContentType.RELIGIOUS_SACRED: {
                "has_religious_verses": True,
                "primary_type": ContentPrimaryType.RELIGIOUS,
            },
            ContentType.CHILDRENS: {
                "is_childrens": True,
                "primary_type": ContentPrimaryType.CHILDRENS,
            },
            ContentType.DRAMA_SCREENPLAY: {
                "has_dialogue": True,
                "primary_type": ContentPrimaryType.DIALOGUE,
            },
        }
        kwargs = presets.get(content_type)
        if kwargs is None:
            return None
        return cls(confidence=0.9, notes=note, **kwargs)


ContentTypeFlags.PROSE = ContentTypeFlags(
    primary_type=ContentPrimaryType.PROSE, confidence=1.0, notes="Default prose content"
)
ContentTypeFlags.UNKNOWN = ContentTypeFlags(
    primary_type=ContentPrimaryType.PROSE, confidence=0.0, notes="Content type not detected"
)
