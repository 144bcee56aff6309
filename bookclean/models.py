"""
Core data models for bookclean.

Pipeline vocabulary (steps, phases, statuses), audit enums shared by the
ledger and the validation layers, line ranges, and document metadata.

Catalogue enums carry their data through per-member tables defined next to
them; every table covers every member, so lookups are exhaustive.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from enum import Enum

import yaml

# =============================================================================
# LINE RANGES
# =============================================================================


@dataclass(frozen=True, order=True)
class LineRange:
    """
    Inclusive, 1-indexed range of lines in a text.

    Example:
        >>> r = LineRange(1, 45)
        >>> r.count
        45
        >>> r.contains(45)
        True
    """

    start: int
    end: int

    def __post_init__(self) -> None:
        """Validate range."""
        if self.start < 1:
            raise ValueError(f"LineRange start must be >= 1, got {self.start}")
        if self.start > self.end:
            raise ValueError(f"LineRange start ({self.start}) must be <= end ({self.end})")

    @property
    def count(self) -> int:
        """Number of lines covered."""
        return self.end - self.start + 1

    def contains(self, line: int) -> bool:
        """Check whether a 1-indexed line falls inside the range."""
        return self.start <= line <= self.end

    def overlaps(self, other: LineRange) -> bool:
        """Check whether two ranges share at least one line."""
        return self.start <= other.end and other.start <= self.end

    def intersection(self, other: LineRange) -> LineRange | None:
        """Return the shared lines, or None if the ranges are disjoint."""
        if not self.overlaps(other):
            return None
        return LineRange(max(self.start, other.start), min(self.end, other.end))

    @classmethod
    def from_zero_based(cls, start: int, end: int) -> LineRange:
        """Build from 0-indexed inclusive line numbers."""
        return cls(start + 1, end + 1)

    def to_zero_based(self) -> tuple[int, int]:
        """Return 0-indexed inclusive (start, end)."""
        return self.start - 1, self.end - 1

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


# =============================================================================
# PIPELINE VOCABULARY
# =============================================================================


class ProcessingMethod(Enum):
    """How a step does its work."""

    CLAUDE_ONLY = "claude_only"  # Detector-driven, heuristic fallback
    HYBRID = "hybrid"  # Detector proposals validated by local layers
    CODE_ONLY = "code_only"  # Deterministic text operations
    CLAUDE_CHUNKED = "claude_chunked"  # Chunked, optionally detector-assisted

    @property
    def is_chunked(self) -> bool:
        return self is ProcessingMethod.CLAUDE_CHUNKED

    @property
    def uses_detector(self) -> bool:
        return self is not ProcessingMethod.CODE_ONLY


class CheckpointType(Enum):
    """Phase-level integrity gates."""

    RECONNAISSANCE_QUALITY = "reconnaissance_quality"
    SEMANTIC_INTEGRITY = "semantic_integrity"
    STRUCTURAL_INTEGRITY = "structural_integrity"
    REFERENCE_INTEGRITY = "reference_integrity"
    OPTIMIZATION_INTEGRITY = "optimization_integrity"
    FINAL_QUALITY = "final_quality"


class PipelinePhase(Enum):
    """Ordered groupings of pipeline steps."""

    RECONNAISSANCE = "reconnaissance"
    METADATA_EXTRACTION = "metadata_extraction"
    SEMANTIC_CLEANING = "semantic_cleaning"
    STRUCTURAL_CLEANING = "structural_cleaning"
    REFERENCE_CLEANING = "reference_cleaning"
    FINISHING = "finishing"
    OPTIMIZATION = "optimization"
    ASSEMBLY = "assembly"
    FINAL_REVIEW = "final_review"

    @property
    def phase_number(self) -> int:
        return list(PipelinePhase).index(self)

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()

    @property
    def steps(self) -> tuple[CleaningStep, ...]:
        """Steps belonging to this phase, in execution order."""
        return tuple(step for step in CleaningStep if step.phase is self)

    @property
    def last_step(self) -> CleaningStep:
        return self.steps[-1]

    @property
    def checkpoint_type(self) -> CheckpointType | None:
        return _PHASE_CHECKPOINTS.get(self)


_PHASE_CHECKPOINTS: dict[PipelinePhase, CheckpointType] = {
    PipelinePhase.RECONNAISSANCE: CheckpointType.RECONNAISSANCE_QUALITY,
    PipelinePhase.SEMANTIC_CLEANING: CheckpointType.SEMANTIC_INTEGRITY,
    PipelinePhase.STRUCTURAL_CLEANING: CheckpointType.STRUCTURAL_INTEGRITY,
    PipelinePhase.REFERENCE_CLEANING: CheckpointType.REFERENCE_INTEGRITY,
    PipelinePhase.OPTIMIZATION: CheckpointType.OPTIMIZATION_INTEGRITY,
    PipelinePhase.FINAL_REVIEW: CheckpointType.FINAL_QUALITY,
}


class CleaningStep(Enum):
    """The sixteen pipeline steps, numbered in execution order."""

    ANALYZE_STRUCTURE = 1
    EXTRACT_METADATA = 2
    REMOVE_PAGE_NUMBERS = 3
    REMOVE_HEADERS_FOOTERS = 4
    REMOVE_FRONT_MATTER = 5
    REMOVE_TABLE_OF_CONTENTS = 6
    REMOVE_BACK_MATTER = 7
    REMOVE_INDEX = 8
    REMOVE_AUXILIARY_LISTS = 9
    REMOVE_CITATIONS = 10
    REMOVE_FOOTNOTES_ENDNOTES = 11
    CLEAN_SPECIAL_CHARACTERS = 12
    REFLOW_PARAGRAPHS = 13
    OPTIMIZE_PARAGRAPH_LENGTH = 14
    ADD_STRUCTURE = 15
    FINAL_QUALITY_REVIEW = 16

    @property
    def display_name(self) -> str:
        return _STEP_INFO[self].display_name

    @property
    def phase(self) -> PipelinePhase:
        return _STEP_INFO[self].phase

    @property
    def processing_method(self) -> ProcessingMethod:
        return _STEP_INFO[self].method

    @property
    def estimated_relative_time(self) -> int:
        return _STEP_INFO[self].relative_time

    @property
    def is_always_on(self) -> bool:
        return self in ALWAYS_ON_STEPS

    @property
    def is_toggleable(self) -> bool:
        return self in TOGGLEABLE_STEPS

    @property
    def is_content_type_aware(self) -> bool:
        return self in CONTENT_TYPE_AWARE_STEPS

    @property
    def is_chunked(self) -> bool:
        return self.processing_method.is_chunked

    @property
    def config_key(self) -> str:
        """Name of the CleaningConfiguration flag gating this step."""
        return self.name.lower()


@dataclass(frozen=True)
class _StepInfo:
    display_name: str
    phase: PipelinePhase
    method: ProcessingMethod
    relative_time: int


_STEP_INFO: dict[CleaningStep, _StepInfo] = {
    CleaningStep.ANALYZE_STRUCTURE: _StepInfo(
        "Analyze Structure", PipelinePhase.RECONNAISSANCE, ProcessingMethod.CLAUDE_ONLY, 2
    ),
    CleaningStep.EXTRACT_METADATA: _StepInfo(
        "Extract Metadata", PipelinePhase.METADATA_EXTRACTION, ProcessingMethod.CLAUDE_ONLY, 2
    ),
    CleaningStep.REMOVE_PAGE_NUMBERS: _StepInfo(
        "Remove Page Numbers", PipelinePhase.SEMANTIC_CLEANING, ProcessingMethod.HYBRID, 1
    ),
    CleaningStep.REMOVE_HEADERS_FOOTERS: _StepInfo(
        "Remove Headers & Footers", PipelinePhase.SEMANTIC_CLEANING, ProcessingMethod.HYBRID, 1
    ),
    CleaningStep.REMOVE_FRONT_MATTER: _StepInfo(
        "Remove Front Matter", PipelinePhase.STRUCTURAL_CLEANING, ProcessingMethod.HYBRID, 1
    ),
    CleaningStep.REMOVE_TABLE_OF_CONTENTS: _StepInfo(
        "Remove Table of Contents", PipelinePhase.STRUCTURAL_CLEANING, ProcessingMethod.HYBRID, 1
    ),
    CleaningStep.REMOVE_BACK_MATTER: _StepInfo(
        "Remove Back Matter", PipelinePhase.STRUCTURAL_CLEANING, ProcessingMethod.HYBRID, 1
    ),
    CleaningStep.REMOVE_INDEX: _StepInfo(
        "Remove Index", PipelinePhase.STRUCTURAL_CLEANING, ProcessingMethod.HYBRID, 1
    ),
    CleaningStep.REMOVE_AUXILIARY_LISTS: _StepInfo(
        "Remove Auxiliary Lists", PipelinePhase.REFERENCE_CLEANING, ProcessingMethod.HYBRID, 1
    ),
    CleaningStep.REMOVE_CITATIONS: _StepInfo(
        "Remove Citations", PipelinePhase.REFERENCE_CLEANING, ProcessingMethod.HYBRID, 2
    ),
    CleaningStep.REMOVE_FOOTNOTES_ENDNOTES: _StepInfo(
        "Remove Footnotes & Endnotes", PipelinePhase.REFERENCE_CLEANING, ProcessingMethod.HYBRID, 2
    ),
    CleaningStep.CLEAN_SPECIAL_CHARACTERS: _StepInfo(
        "Clean Special Characters", PipelinePhase.FINISHING, ProcessingMethod.CODE_ONLY, 1
    ),
    CleaningStep.REFLOW_PARAGRAPHS: _StepInfo(
        "Reflow Paragraphs", PipelinePhase.OPTIMIZATION, ProcessingMethod.CLAUDE_CHUNKED, 4
    ),
    CleaningStep.OPTIMIZE_PARAGRAPH_LENGTH: _StepInfo(
        "Optimize Paragraph Length",
        PipelinePhase.OPTIMIZATION,
        ProcessingMethod.CLAUDE_CHUNKED,
        5,
    ),
    CleaningStep.ADD_STRUCTURE: _StepInfo(
        "Add Structure", PipelinePhase.ASSEMBLY, ProcessingMethod.CODE_ONLY, 1
    ),
    CleaningStep.FINAL_QUALITY_REVIEW: _StepInfo(
        "Final Quality Review", PipelinePhase.FINAL_REVIEW, ProcessingMethod.CLAUDE_ONLY, 2
    ),
}

ALWAYS_ON_STEPS = frozenset({CleaningStep.ANALYZE_STRUCTURE, CleaningStep.FINAL_QUALITY_REVIEW})

TOGGLEABLE_STEPS = frozenset(
    {
        CleaningStep.REMOVE_AUXILIARY_LISTS,
        CleaningStep.REMOVE_CITATIONS,
        CleaningStep.REMOVE_FOOTNOTES_ENDNOTES,
    }
)

CONTENT_TYPE_AWARE_STEPS = frozenset(
    {
        CleaningStep.REFLOW_PARAGRAPHS,
        CleaningStep.CLEAN_SPECIAL_CHARACTERS,
        CleaningStep.REMOVE_CITATIONS,
        CleaningStep.REMOVE_FOOTNOTES_ENDNOTES,
        CleaningStep.OPTIMIZE_PARAGRAPH_LENGTH,
    }
)


# =============================================================================
# STEP STATUS
# =============================================================================


class StepState(Enum):
    """Lifecycle state of a single step."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TERMINAL_STATES = frozenset(
    {StepState.COMPLETED, StepState.SKIPPED, StepState.FAILED, StepState.CANCELLED}
)


@dataclass(frozen=True)
class CleaningStepStatus:
    """Status of a step, with the payload its state carries."""

    state: StepState
    word_count: int = 0
    change_count: int = 0
    message: str = ""

    @classmethod
    def pending(cls) -> CleaningStepStatus:
        return cls(StepState.PENDING)

    @classmethod
    def processing(cls) -> CleaningStepStatus:
        return cls(StepState.PROCESSING)

    @classmethod
    def completed(cls, word_count: int, change_count: int) -> CleaningStepStatus:
        return cls(StepState.COMPLETED, word_count=word_count, change_count=change_count)

    @classmethod
    def skipped(cls, reason: str = "") -> CleaningStepStatus:
        return cls(StepState.SKIPPED, message=reason)

    @classmethod
    def failed(cls, message: str) -> CleaningStepStatus:
        return cls(StepState.FAILED, message=message)

    @classmethod
    def cancelled(cls) -> CleaningStepStatus:
        return cls(StepState.CANCELLED)

    @property
    def is_terminal(self) -> bool:
        return self.state in _TERMINAL_STATES

    @property
    def is_success(self) -> bool:
        return self.state is StepState.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.state is StepState.FAILED

    @property
    def is_skipped(self) -> bool:
        return self.state is StepState.SKIPPED


# =============================================================================
# AUDIT VOCABULARY
# =============================================================================


class ValidationLayer(Enum):
    """Independent validation layers."""

    PHASE_A = "phase_a"  # Response validation (position plausibility)
    PHASE_B = "phase_b"  # Content verification (textual signatures)
    PHASE_C = "phase_c"  # Heuristic fallback (detector independent)


class ValidationMethod(Enum):
    """Which validation layers concurred on a recorded change."""

    PHASE_A = "phase_a"
    PHASE_B = "phase_b"
    PHASE_C = "phase_c"
    PHASE_AB = "phase_ab"
    PHASE_ABC = "phase_abc"
    NO_VALIDATION = "no_validation"
    USER_OVERRIDE = "user_override"


class RemovalType(Enum):
    FRONT_MATTER = "front_matter"
    TABLE_OF_CONTENTS = "table_of_contents"
    BACK_MATTER = "back_matter"
    INDEX = "index"
    AUXILIARY_LIST = "auxiliary_list"
    PAGE_NUMBERS = "page_numbers"
    HEADERS = "headers"
    FOOTERS = "footers"
    CITATIONS = "citations"
    FOOTNOTES = "footnotes"
    ENDNOTES = "endnotes"
    SPECIAL_CHARACTERS = "special_characters"
    WHITESPACE = "whitespace"
    OTHER = "other"


class BoundaryType(Enum):
    FRONT_MATTER_END = "front_matter_end"
    TABLE_OF_CONTENTS_START = "table_of_contents_start"
    TABLE_OF_CONTENTS_END = "table_of_contents_end"
    CORE_CONTENT_START = "core_content_start"
    CORE_CONTENT_END = "core_content_end"
    INDEX_START = "index_start"
    BACK_MATTER_START = "back_matter_start"
    CHAPTER_START = "chapter_start"
    SECTION_START = "section_start"


class TransformationType(Enum):
    PARAGRAPH_REFLOW = "paragraph_reflow"
    PARAGRAPH_SPLIT = "paragraph_split"
    SPECIAL_CHAR_REMOVAL = "special_char_removal"
    WHITESPACE_NORMALIZATION = "whitespace_normalization"
    LINE_BREAK_NORMALIZATION = "line_break_normalization"
    STRUCTURE_ADDITION = "structure_addition"
    OTHER = "other"


class FlagReason(Enum):
    AMBIGUOUS_REMOVAL = "ambiguous_removal"
    LOW_CONFIDENCE = "low_confidence"
    UNUSUAL_PATTERN = "unusual_pattern"
    POTENTIAL_DATA_LOSS = "potential_data_loss"
    USER_REVIEW = "user_review"
    PRESERVED_DESPITE_LOW_CONFIDENCE = "preserved_despite_low_confidence"
    FALLBACK_USED = "fallback_used"


# =============================================================================
# OUTPUT STYLES
# =============================================================================


class MetadataFormat(Enum):
    YAML = "yaml"
    JSON = "json"
    MARKDOWN = "markdown"


class ChapterMarkerStyle(Enum):
    """How chapter starts are marked in assembled output."""

    NONE = "none"
    HTML_COMMENTS = "html_comments"
    MARKDOWN_H1 = "markdown_h1"
    MARKDOWN_H2 = "markdown_h2"
    TOKEN_STYLE = "token_style"

    @property
    def inserts_markers(self) -> bool:
        return self is not ChapterMarkerStyle.NONE

    def format_marker(self, title: str, part: str | None = None) -> str:
        """Render the marker for a chapter, optionally within a part."""
        if part:
            return _PART_MARKERS[self].format(part=part, title=title)
        return _CHAPTER_MARKERS[self].format(title=title)

    def format_part_marker(self, part: str) -> str:
        """Render the marker placed at a part heading."""
        return _PART_ONLY_MARKERS[self].format(part=part)


_CHAPTER_MARKERS: dict[ChapterMarkerStyle, str] = {
    ChapterMarkerStyle.NONE: "",
    ChapterMarkerStyle.HTML_COMMENTS: "<!-- CHAPTER: {title} -->",
    ChapterMarkerStyle.MARKDOWN_H1: "# {title}",
    ChapterMarkerStyle.MARKDOWN_H2: "## {title}",
    ChapterMarkerStyle.TOKEN_STYLE: "<CHAPTER>{title}</CHAPTER>",
}

_PART_MARKERS: dict[ChapterMarkerStyle, str] = {
    ChapterMarkerStyle.NONE: "",
    ChapterMarkerStyle.HTML_COMMENTS: "<!-- PART: {part} | CHAPTER: {title} -->",
    ChapterMarkerStyle.MARKDOWN_H1: "# {part}\n\n## {title}",
    ChapterMarkerStyle.MARKDOWN_H2: "## {part}\n\n### {title}",
    ChapterMarkerStyle.TOKEN_STYLE: "<PART>{part}</PART>\n<CHAPTER>{title}</CHAPTER>",
}

_PART_ONLY_MARKERS: dict[ChapterMarkerStyle, str] = {
    ChapterMarkerStyle.NONE: "",
    ChapterMarkerStyle.HTML_COMMENTS: "<!-- PART: {part} -->",
    ChapterMarkerStyle.MARKDOWN_H1: "# {part}",
    ChapterMarkerStyle.MARKDOWN_H2: "## {part}",
    ChapterMarkerStyle.TOKEN_STYLE: "<PART>{part}</PART>",
}


class EndMarkerStyle(Enum):
    """How the end of the document is marked."""

    NONE = "none"
    MINIMAL = "minimal"
    SIMPLE = "simple"
    STANDARD = "standard"
    HTML_COMMENT = "html_comment"
    MARKDOWN_HR = "markdown_hr"
    TOKEN = "token"
    TOKEN_WITH_AUTHOR = "token_with_author"

    def format_marker(self, title: str, author: str | None = None) -> str:
        if self is EndMarkerStyle.TOKEN_WITH_AUTHOR and not author:
            return _END_MARKERS[EndMarkerStyle.TOKEN]
        return _END_MARKERS[self].format(title=title, title_upper=title.upper(), author=author)


_END_MARKERS: dict[EndMarkerStyle, str] = {
    EndMarkerStyle.NONE: "",
    EndMarkerStyle.MINIMAL: "***",
    EndMarkerStyle.SIMPLE: "[END]",
    EndMarkerStyle.STANDARD: "*** <!-- END OF {title_upper} -->",
    EndMarkerStyle.HTML_COMMENT: "<!-- END OF DOCUMENT: {title} -->",
    EndMarkerStyle.MARKDOWN_HR: "---",
    EndMarkerStyle.TOKEN: "<END_DOCUMENT>",
    EndMarkerStyle.TOKEN_WITH_AUTHOR: '<END_DOCUMENT author="{author}">',
}


# =============================================================================
# DOCUMENT METADATA
# =============================================================================


@dataclass
class DocumentMetadata:
    """Bibliographic metadata extracted from the opening pages."""

    title: str = "Untitled"
    subtitle: str | None = None
    author: str | None = None
    translator: str | None = None
    editor: str | None = None
    publisher: str | None = None
    publish_date: str | None = None
    isbn: str | None = None
    language: str | None = None
    genre: str | None = None
    series: str | None = None
    series_number: str | None = None
    edition: str | None = None
    original_title: str | None = None
    original_language: str | None = None
    original_date: str | None = None
    confidence: float = 0.0

    @property
    def is_translation(self) -> bool:
        return bool(self.translator or self.original_language or self.original_title)

    def title_header(self) -> str:
        """Markdown title line (with subtitle when present)."""
        if self.subtitle:
            return f"# {self.title}: {self.subtitle}"
        return f"# {self.title}"

    def to_fields(self) -> dict[str, str]:
        """Non-empty bibliographic fields in display order."""
        data = asdict(self)
        data.pop("confidence")
        if not self.is_translation:
            for key in ("original_title", "original_language", "original_date"):
                data.pop(key)
        if not self.series:
            data.pop("series_number")
        return {key: value for key, value in data.items() if value}

    def format(self, fmt: MetadataFormat) -> str:
        """Render the metadata block in the requested format."""
        fields = self.to_fields()
        if fmt is MetadataFormat.YAML:
            body = yaml.safe_dump(fields, sort_keys=False, allow_unicode=True).rstrip("\n")
            return f"---\n{body}\n---"
        if fmt is MetadataFormat.JSON:
            return json.dumps(fields, indent=2, ensure_ascii=False)
        lines = [f"**{key.replace('_', ' ').title()}:** {value}" for key, value in fields.items()]
        return "\n".join(lines)
