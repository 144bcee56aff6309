"""
Reconnaissance output: detected regions and structure hints.

StructureHints is produced once by the analyze-structure step and read by every
later step. It is frozen; nothing downstream may change it.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

from bookclean.content import ContentType
from bookclean.models import LineRange

if TYPE_CHECKING:
    from bookclean.patterns import DetectedPatterns

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# REGIONS
# =============================================================================


class RegionType(Enum):
    """Kinds of structural region a document may contain."""

    # Front
    FRONT_MATTER = "front_matter"
    TITLE_PAGE = "title_page"
    COPYRIGHT_PAGE = "copyright_page"
    DEDICATION = "dedication"
    EPIGRAPH = "epigraph"
    TABLE_OF_CONTENTS = "table_of_contents"
    LIST_OF_FIGURES = "list_of_figures"
    LIST_OF_TABLES = "list_of_tables"
    LIST_OF_ABBREVIATIONS = "list_of_abbreviations"
    PREFACE = "preface"
    FOREWORD = "foreword"
    INTRODUCTION = "introduction"
    ABSTRACT = "abstract"
    # Core
    CORE_CONTENT = "core_content"
    CHAPTER = "chapter"
    SECTION = "section"
    PART_DIVISION = "part_division"
    # Back
    BACK_MATTER = "back_matter"
    APPENDIX = "appendix"
    APPENDICES = "appendices"
    NOTES = "notes"
    BIBLIOGRAPHY = "bibliography"
    GLOSSARY = "glossary"
    INDEX = "index"
    COLOPHON = "colophon"
    ABOUT_AUTHOR = "about_author"
    ACKNOWLEDGMENTS = "acknowledgments"
    # Special
    FOOTNOTE_SECTION = "footnote_section"
    CODE_BLOCK = "code_block"
    EQUATION = "equation"
    BLOCK_QUOTE = "block_quote"

    @property
    def is_typically_front_matter(self) -> bool:
        return self in _FRONT_REGIONS

    @property
    def is_typically_back_matter(self) -> bool:
        return self in _BACK_REGIONS

    @property
    def is_core_content(self) -> bool:
        return self in _CORE_REGIONS

    @property
    def removed_by_default(self) -> bool:
        return self in _REMOVED_BY_DEFAULT


_FRONT_REGIONS = frozenset(
    {
        RegionType.FRONT_MATTER,
        RegionType.TITLE_PAGE,
        RegionType.COPYRIGHT_PAGE,
        RegionType.DEDICATION,
        RegionType.EPIGRAPH,
        RegionType.TABLE_OF_CONTENTS,
        RegionType.LIST_OF_FIGURES,
        RegionType.LIST_OF_TABLES,
        RegionType.LIST_OF_ABBREVIATIONS,
        RegionType.PREFACE,
        RegionType.FOREWORD,
        RegionType.INTRODUCTION,
        RegionType.ABSTRACT,
    }
)

_BACK_REGIONS = frozenset(
    {
        RegionType.BACK_MATTER,
        RegionType.APPENDIX,
        RegionType.APPENDICES,
        RegionType.NOTES,
        RegionType.BIBLIOGRAPHY,
        RegionType.GLOSSARY,
        RegionType.INDEX,
        RegionType.COLOPHON,
        RegionType.ABOUT_AUTHOR,
        RegionType.ACKNOWLEDGMENTS,
    }
)

_CORE_REGIONS = frozenset(
    {
        RegionType.CORE_CONTENT,
        RegionType.CHAPTER,
        RegionType.SECTION,
        RegionType.PART_DIVISION,
    }
)

_REMOVED_BY_DEFAULT = frozenset(
    {
        RegionType.FRONT_MATTER,
        RegionType.TITLE_PAGE,
        RegionType.COPYRIGHT_PAGE,
        RegionType.DEDICATION,
        RegionType.TABLE_OF_CONTENTS,
        RegionType.LIST_OF_FIGURES,
        RegionType.LIST_OF_TABLES,
        RegionType.LIST_OF_ABBREVIATIONS,
        RegionType.INDEX,
        RegionType.BACK_MATTER,
        RegionType.COLOPHON,
        RegionType.ABOUT_AUTHOR,
    }
)


class DetectionMethod(Enum):
    AI_ANALYSIS = "ai_analysis"
    PATTERN_MATCHING = "pattern_matching"
    HEURISTIC = "heuristic"
    USER_SPECIFIED = "user_specified"
    CONTENT_TYPE_DEFAULT = "content_type_default"


class EvidenceType(Enum):
    HEADER_TEXT = "header_text"
    PAGE_NUMBER_PATTERN = "page_number_pattern"
    CONTENT_DENSITY_CHANGE = "content_density_change"
    FORMATTING_CHANGE = "formatting_change"
    KEYWORD_PRESENCE = "keyword_presence"
    STRUCTURAL_MARKER = "structural_marker"
    POSITION_HEURISTIC = "position_heuristic"
    CONTENT_TYPE_EXPECTATION = "content_type_expectation"


@dataclass(frozen=True)
class DetectionEvidence:
    """A single piece of evidence supporting a detection."""

    type: EvidenceType
    description: str
    strength: float = 0.5
    line_number: int | None = None
    matched_text: str | None = None


@dataclass(frozen=True)
class DetectedRegion:
    """
    A structural region with its confidence and supporting evidence.

    Regions may overlap. Overlaps are flagged by flag_overlaps(), never
    resolved.
    """

    type: RegionType
    line_range: LineRange
    confidence: float
    detection_method: DetectionMethod = DetectionMethod.AI_ANALYSIS
    evidence: tuple[DetectionEvidence, ...] = ()
    has_overlap: bool = False
    overlapping_region_ids: tuple[str, ...] = ()
    id: str = field(default_factory=_new_id)

    def __post_init__(self):
        """Validate confidence."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be between 0.0 and 1.0, got {self.confidence}")

    @property
    def line_count(self) -> int:
        return self.line_range.count


def flag_overlaps(regions: list[DetectedRegion]) -> list[DetectedRegion]:
    """
    Mark every region that overlaps another one.

    Returns new regions in the same order; line ranges are left untouched.
    """
    overlaps: dict[str, list[str]] = {region.id: [] for region in regions}
    for i, first in enumerate(regions):
        for second in regions[i + 1 :]:
            if first.line_range.overlaps(second.line_range):
                overlaps[first.id].append(second.id)
                overlaps[second.id].append(first.id)

    flagged = []
    for region in regions:
        others = tuple(overlaps[region.id])
        if others:
            logger.debug(
                "Region %s (%s) overlaps %d other region(s)",
                region.type.value,
                region.line_range,
                len(others),
            )
            region = replace(region, has_overlap=True, overlapping_region_ids=others)
        flagged.append(region)
    return flagged


# =============================================================================
# CHARACTERISTICS, FACTORS, WARNINGS
# =============================================================================


@dataclass(frozen=True)
class ContentCharacteristics:
    """Measured properties of the document body."""

    average_sentence_length: float = 0.0
    average_paragraph_length: float = 0.0
    has_significant_dialogue: bool = False
    dialogue_percentage: float | None = None
    has_lists: bool = False
    has_tables: bool = False
    has_math_notation: bool = False
    has_verse_structure: bool = False
    primary_language: str | None = None
    has_consistent_paragraph_breaks: bool = True
    median_line_length: int = 0
    line_length_variance: float = 0.0
    appears_to_be_ocr: bool = False


class ConfidenceFactorCategory(Enum):
    STRUCTURE_CLARITY = "structure_clarity"
    PATTERN_CONSISTENCY = "pattern_consistency"
    CONTENT_TYPE_MATCH = "content_type_match"
    DOCUMENT_QUALITY = "document_quality"
    AMBIGUITY = "ambiguity"
    CONFLICTING_SIGNALS = "conflicting_signals"


@dataclass(frozen=True)
class ConfidenceFactor:
    """Something that raised (positive impact) or lowered overall confidence."""

    name: str
    description: str
    impact: float
    category: ConfidenceFactorCategory


class WarningSeverity(Enum):
    INFO = "info"
    CAUTION = "caution"
    WARNING = "warning"
    CRITICAL = "critical"


class WarningCategory(Enum):
    AMBIGUOUS_REGION = "ambiguous_region"
    OVERLAPPING_DETECTION = "overlapping_detection"
    LOW_CONFIDENCE = "low_confidence"
    CONTENT_TYPE_MISMATCH = "content_type_mismatch"
    UNUSUAL_STRUCTURE = "unusual_structure"
    POTENTIAL_DATA_LOSS = "potential_data_loss"
    POOR_OCR_QUALITY = "poor_ocr_quality"


@dataclass(frozen=True)
class StructureWarning:
    severity: WarningSeverity
    category: WarningCategory
    message: str
    suggested_action: str | None = None
    affected_range: LineRange | None = None
    id: str = field(default_factory=_new_id)


# =============================================================================
# STRUCTURE HINTS
# =============================================================================


@dataclass(frozen=True)
class StructureHints:
    """
    One-shot analysis of a document, produced before any cleaning.

    The patterns field holds a private copy of the initial pattern cache;
    the orchestrator's live cache is a separate object.
    """

    document_id: str
    detected_content_type: ContentType
    content_type_confidence: float
    total_lines: int
    total_words: int
    total_characters: int
    patterns: DetectedPatterns
    user_selected_content_type: ContentType | None = None
    regions: tuple[DetectedRegion, ...] = ()
    core_content_range: LineRange | None = None
    content_characteristics: ContentCharacteristics = field(
        default_factory=ContentCharacteristics
    )
    overall_confidence: float = 0.0
    confidence_factors: tuple[ConfidenceFactor, ...] = ()
    ready_for_cleaning: bool = True
    warnings: tuple[StructureWarning, ...] = ()
    id: str = field(default_factory=_new_id)
    analyzed_at: datetime = field(default_factory=_now)

    @property
    def content_type_aligned(self) -> bool:
        """Whether the detected type agrees with what the user declared."""
        if self.user_selected_content_type in (None, ContentType.AUTO_DETECT):
            return True
        return self.user_selected_content_type is self.detected_content_type

    @property
    def average_words_per_line(self) -> float:
        return self.total_words / self.total_lines if self.total_lines else 0.0

    @property
    def average_characters_per_line(self) -> float:
        return self.total_characters / self.total_lines if self.total_lines else 0.0

    @property
    def confidence_level(self) -> str:
        if self.overall_confidence >= 0.8:
            return "high"
        if self.overall_confidence >= 0.5:
            return "medium"
        return "low"

    def regions_of_type(self, region_type: RegionType) -> list[DetectedRegion]:
        return [region for region in self.regions if region.type is region_type]

    def highest_confidence_region(self, region_type: RegionType) -> DetectedRegion | None:
        candidates = self.regions_of_type(region_type)
        if not candidates:
            return None
        return max(candidates, key=lambda region: region.confidence)

    @property
    def critical_warnings(self) -> list[StructureWarning]:
        return [w for w in self.warnings if w.severity is WarningSeverity.CRITICAL]
