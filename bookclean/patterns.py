"""
Pattern catalogues and the per-document pattern cache.

The catalogues (citation styles, footnote marker styles, auxiliary list types)
are closed enums whose members carry their regex or header vocabulary through
per-member tables. Every table covers every member.

DetectedPatterns is the mutable cache that later steps read instead of
re-detecting. Line numbers in it are 0-indexed, relative to the text as it
was when the pattern was detected.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum

from bookclean.content import ContentTypeFlags

logger = logging.getLogger(__name__)

# =============================================================================
# CITATION STYLES
# =============================================================================


class CitationCategory(Enum):
    AUTHOR_YEAR = "author_year"
    NUMERIC = "numeric"
    SUPERSCRIPT = "superscript"
    AUTHOR_PAGE = "author_page"
    LEGAL = "legal"
    MIXED = "mixed"


class CitationStyle(Enum):
    """Inline citation formats."""

    APA = "apa"
    HARVARD = "harvard"
    CHICAGO_AUTHOR_DATE = "chicago_author_date"
    IEEE = "ieee"
    VANCOUVER = "vancouver"
    AMA = "ama"
    CHICAGO_NOTES = "chicago_notes"
    MLA = "mla"
    BLUEBOOK = "bluebook"
    OSCOLA = "oscola"
    NUMERIC_BRACKET = "numeric_bracket"
    GENERIC_AUTHOR_YEAR = "generic_author_year"
    MIXED = "mixed"

    @property
    def category(self) -> CitationCategory:
        return _CITATION_TABLE[self][0]

    @property
    def primary_pattern(self) -> str:
        """Regex that matches one citation in running text."""
        return _CITATION_TABLE[self][1]

    @property
    def is_legal_style(self) -> bool:
        return self.category is CitationCategory.LEGAL

    @property
    def uses_numeric_references(self) -> bool:
        return self.category in (CitationCategory.NUMERIC, CitationCategory.SUPERSCRIPT)

    def compile(self) -> re.Pattern[str]:
        return re.compile(self.primary_pattern)


_AUTHOR = r"[A-Z][a-zA-Z'-]+"
_SUPERSCRIPT_DIGITS = "⁰¹²³⁴⁵⁶⁷⁸⁹"

_CITATION_TABLE: dict[CitationStyle, tuple[CitationCategory, str]] = {
    CitationStyle.APA: (
        CitationCategory.AUTHOR_YEAR,
        rf"\({_AUTHOR}(?:\s*(?:&|and)\s*{_AUTHOR})*(?:\s+et\s+al\.?)?,\s*\d{{4}}[a-z]?"
        r"(?:,\s*p{1,2}\.\s*\d+(?:-\d+)?)?\)",
    ),
    CitationStyle.HARVARD: (
        CitationCategory.AUTHOR_YEAR,
        rf"\({_AUTHOR}(?:\s+and\s+{_AUTHOR})*\s+\d{{4}}[a-z]?\)",
    ),
    CitationStyle.CHICAGO_AUTHOR_DATE: (
        CitationCategory.AUTHOR_YEAR,
        rf"\({_AUTHOR}\s+\d{{4}}(?:,\s*\d+(?:-\d+)?)?\)",
    ),
    CitationStyle.IEEE: (CitationCategory.NUMERIC, r"\[\d+(?:[-,]\s*\d+)*\]"),
    CitationStyle.VANCOUVER: (CitationCategory.NUMERIC, r"\(\d+(?:[-,]\s*\d+)*\)"),
    CitationStyle.AMA: (
        CitationCategory.SUPERSCRIPT,
        rf"[{_SUPERSCRIPT_DIGITS}]+(?:[⁻{_SUPERSCRIPT_DIGITS}]+)?",
    ),
    CitationStyle.CHICAGO_NOTES: (
        CitationCategory.SUPERSCRIPT,
        rf"[{_SUPERSCRIPT_DIGITS}]+(?:[⁻{_SUPERSCRIPT_DIGITS}]+)?",
    ),
    CitationStyle.MLA: (CitationCategory.AUTHOR_PAGE, rf"\({_AUTHOR}\s+\d+(?:-\d+)?\)"),
    CitationStyle.BLUEBOOK: (
        CitationCategory.LEGAL,
        r"\d+\s+[A-Z][a-zA-Z.]+(?:\s+\d+d?)?\s+\d+",
    ),
    CitationStyle.OSCOLA: (CitationCategory.LEGAL, r"\[\d{4}\]\s+[A-Z]+\s+\d+"),
    CitationStyle.NUMERIC_BRACKET: (CitationCategory.NUMERIC, r"\[\d+\]"),
    CitationStyle.GENERIC_AUTHOR_YEAR: (
        CitationCategory.AUTHOR_YEAR,
        rf"\({_AUTHOR},?\s*\d{{4}}\)",
    ),
    CitationStyle.MIXED: (CitationCategory.MIXED, rf"\[\d+\]|\({_AUTHOR},?\s*\d{{4}}\)"),
}


# =============================================================================
# FOOTNOTES
# =============================================================================


class FootnoteMarkerStyle(Enum):
    """How footnote references are marked in the body text."""

    NUMERIC_SUPERSCRIPT = "numeric_superscript"
    SYMBOL_SUPERSCRIPT = "symbol_superscript"
    ALPHABETIC_SUPERSCRIPT = "alphabetic_superscript"
    BRACKETED_NUMERIC = "bracketed_numeric"
    PARENTHETICAL_NUMERIC = "parenthetical_numeric"
    INLINE_NOTE = "inline_note"
    ASTERISK_SERIES = "asterisk_series"
    MIXED = "mixed"

    @property
    def pattern(self) -> str:
        return _FOOTNOTE_MARKERS[self]

    @property
    def is_superscript(self) -> bool:
        return self in (
            FootnoteMarkerStyle.NUMERIC_SUPERSCRIPT,
            FootnoteMarkerStyle.SYMBOL_SUPERSCRIPT,
            FootnoteMarkerStyle.ALPHABETIC_SUPERSCRIPT,
        )


_FOOTNOTE_MARKERS: dict[FootnoteMarkerStyle, str] = {
    FootnoteMarkerStyle.NUMERIC_SUPERSCRIPT: (
        rf"[{_SUPERSCRIPT_DIGITS}]+(?:[⁻,][{_SUPERSCRIPT_DIGITS}]+)*"
    ),
    FootnoteMarkerStyle.SYMBOL_SUPERSCRIPT: r"[*†‡§‖¶]+",
    FootnoteMarkerStyle.ALPHABETIC_SUPERSCRIPT: r"[ᵃᵇᶜᵈᵉᶠᵍʰⁱʲᵏˡᵐⁿᵒᵖʳˢᵗᵘᵛʷˣʸᶻ]+",
    FootnoteMarkerStyle.BRACKETED_NUMERIC: r"\[\d+\]",
    FootnoteMarkerStyle.PARENTHETICAL_NUMERIC: r"\(\d+\)",
    FootnoteMarkerStyle.INLINE_NOTE: r"\[note\s*\d*\]|\[Note:.*?\]",
    FootnoteMarkerStyle.ASTERISK_SERIES: r"\*{1,3}",
    FootnoteMarkerStyle.MIXED: rf"[{_SUPERSCRIPT_DIGITS}]+|\[\d+\]|\(\d+\)|[*†‡§‖¶]+",
}


class FootnoteContentType(Enum):
    """Kinds of collected note sections."""

    FOOTNOTES = "footnotes"
    ENDNOTES = "endnotes"
    CHAPTER_ENDNOTES = "chapter_endnotes"
    NOTES = "notes"

    @property
    def header_labels(self) -> tuple[str, ...]:
        return _FOOTNOTE_HEADERS[self]


_FOOTNOTE_HEADERS: dict[FootnoteContentType, tuple[str, ...]] = {
    FootnoteContentType.FOOTNOTES: (
        "Footnotes",
        "Foot Notes",
        "Fußnoten",
        "Notes de bas de page",
        "Notas al pie",
    ),
    FootnoteContentType.ENDNOTES: (
        "Endnotes",
        "End Notes",
        "Endnoten",
        "Notes de fin",
        "Notas finales",
    ),
    FootnoteContentType.CHAPTER_ENDNOTES: (
        "Notes to Chapter",
        "Notes for Chapter",
        "Chapter Notes",
        "Notes to Part",
    ),
    FootnoteContentType.NOTES: ("Notes", "Annotations", "Anmerkungen", "Notas", "Remarques"),
}


@dataclass(frozen=True)
class FootnoteSectionInfo:
    """A collected footnote/endnote section (0-indexed, inclusive)."""

    content_type: FootnoteContentType
    start_line: int
    end_line: int
    confidence: float
    header_text: str | None = None
    chapter_number: int | None = None

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1


# =============================================================================
# AUXILIARY LISTS
# =============================================================================


class AuxiliaryListCategory(Enum):
    FIGURE_ILLUSTRATION = "figure_illustration"
    TABLE = "table"
    REFERENCE = "reference"


class AuxiliaryListType(Enum):
    """Lists of figures, tables, abbreviations and the like."""

    FIGURES = "figures"
    ILLUSTRATIONS = "illustrations"
    PLATES = "plates"
    MAPS = "maps"
    CHARTS = "charts"
    DIAGRAMS = "diagrams"
    TABLES = "tables"
    EXHIBITS = "exhibits"
    ABBREVIATIONS = "abbreviations"
    ACRONYMS = "acronyms"
    SYMBOLS = "symbols"
    CONTRIBUTORS = "contributors"
    AUTHORS = "authors"

    @property
    def category(self) -> AuxiliaryListCategory:
        return _AUX_TABLE[self][0]

    @property
    def header_labels(self) -> tuple[str, ...]:
        return _AUX_TABLE[self][1]

    @classmethod
    def from_header(cls, header: str) -> AuxiliaryListType | None:
        """Identify a list type from its header line, if it is one."""
        cleaned = header.strip().lstrip("#").strip().rstrip(":").lower()
        for list_type in cls:
            if any(cleaned == label.lower() for label in list_type.header_labels):
                return list_type
        return None


_FIG = AuxiliaryListCategory.FIGURE_ILLUSTRATION
_TAB = AuxiliaryListCategory.TABLE
_REF = AuxiliaryListCategory.REFERENCE

_AUX_TABLE: dict[AuxiliaryListType, tuple[AuxiliaryListCategory, tuple[str, ...]]] = {
    AuxiliaryListType.FIGURES: (
        _FIG,
        ("List of Figures", "Figures", "Figure List", "Abbildungsverzeichnis", "Lista de figuras"),
    ),
    AuxiliaryListType.ILLUSTRATIONS: (
        _FIG,
        ("List of Illustrations", "Illustrations", "Liste des illustrations"),
    ),
    AuxiliaryListType.PLATES: (_FIG, ("List of Plates", "Plates", "Tafelverzeichnis")),
    AuxiliaryListType.MAPS: (_FIG, ("List of Maps", "Maps", "Kartenverzeichnis")),
    AuxiliaryListType.CHARTS: (_FIG, ("List of Charts", "Charts")),
    AuxiliaryListType.DIAGRAMS: (_FIG, ("List of Diagrams", "Diagrams")),
    AuxiliaryListType.TABLES: (
        _TAB,
        ("List of Tables", "Tables", "Table List", "Tabellenverzeichnis", "Liste des tableaux"),
    ),
    AuxiliaryListType.EXHIBITS: (_TAB, ("List of Exhibits", "Exhibits")),
    AuxiliaryListType.ABBREVIATIONS: (
        _REF,
        (
            "List of Abbreviations",
            "Abbreviations",
            "Glossary of Abbreviations",
            "Abkürzungsverzeichnis",
            "Liste des abréviations",
        ),
    ),
    AuxiliaryListType.ACRONYMS: (_REF, ("List of Acronyms", "Acronyms")),
    AuxiliaryListType.SYMBOLS: (
        _REF,
        ("List of Symbols", "Symbols", "Nomenclature", "Notation"),
    ),
    AuxiliaryListType.CONTRIBUTORS: (
        _REF,
        ("List of Contributors", "Contributors", "About the Contributors"),
    ),
    AuxiliaryListType.AUTHORS: (_REF, ("List of Authors", "About the Authors")),
}


@dataclass(frozen=True)
class AuxiliaryListInfo:
    """A detected auxiliary list (0-indexed, inclusive)."""

    type: AuxiliaryListType
    start_line: int
    end_line: int
    confidence: float
    header_text: str | None = None

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1


# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_PAGE_NUMBER_PATTERNS: tuple[str, ...] = (
    r"^\d+$",
    r"^[ivxlcdm]+$",
    r"^[IVXLCDM]+$",
    r"^Page\s+\d+$",
    r"^p\.?\s*\d+$",
    r"^\d+\s+of\s+\d+$",
    r"^-\s*\d+\s*-$",
    r"^-\s*[ivxlcdm]+\s*-$",
    r"^-\s*[IVXLCDM]+\s*-$",
    r"^—\s*\d+\s*—$",
    r"^—\s*[ivxlcdm]+\s*—$",
    r"^—\s*[IVXLCDM]+\s*—$",
    r"^\[\d+\]$",
)

DEFAULT_SPECIAL_CHARACTERS: tuple[str, ...] = ("[", "]", "*", "_")

DEFAULT_LIGATURES: dict[str, str] = {
    "ﬁ": "fi",
    "ﬂ": "fl",
    "ﬀ": "ff",
    "ﬃ": "ffi",
    "ﬄ": "ffl",
    "Ĳ": "IJ",
    "ĳ": "ij",
}

DEFAULT_INVISIBLE_CHARACTERS: tuple[str, ...] = (
    "\u200b",  # zero-width space
    "\u200c",  # zero-width non-joiner
    "\u200d",  # zero-width joiner
    "\ufeff",  # BOM
    "\u00ad",  # soft hyphen
    "\u2060",  # word joiner
    "\u180e",  # mongolian vowel separator
)


# =============================================================================
# PATTERN CACHE
# =============================================================================


@dataclass
class DetectedPatterns:
    """
    Patterns and boundaries accumulated while cleaning one document.

    Owned by the orchestrator. Steps receive a copy and propose changes as a
    dict of field updates, which the orchestrator applies through update().

    Example:
        >>> patterns = DetectedPatterns(document_id="doc-1").with_defaults()
        >>> patterns.update(front_matter_end_line=44, front_matter_confidence=0.95)
        >>> patterns.has_front_matter_boundary
        True
    """

    document_id: str = ""
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Semantic cleaning
    page_number_patterns: list[str] = field(default_factory=list)
    header_patterns: list[str] = field(default_factory=list)
    footer_patterns: list[str] = field(default_factory=list)

    # Structural boundaries
    front_matter_end_line: int | None = None
    front_matter_confidence: float | None = None
    toc_start_line: int | None = None
    toc_end_line: int | None = None
    toc_confidence: float | None = None
    index_start_line: int | None = None
    index_end_line: int | None = None
    index_confidence: float | None = None
    back_matter_start_line: int | None = None
    back_matter_end_line: int | None = None
    back_matter_type: str | None = None
    back_matter_confidence: float | None = None

    # References
    auxiliary_lists: list[AuxiliaryListInfo] = field(default_factory=list)
    auxiliary_list_confidence: float | None = None
    citation_style: CitationStyle | None = None
    citation_patterns: list[str] = field(default_factory=list)
    citation_count: int | None = None
    citation_samples: list[str] = field(default_factory=list)
    citation_confidence: float | None = None
    footnote_marker_style: FootnoteMarkerStyle | None = None
    footnote_marker_pattern: str | None = None
    footnote_marker_count: int | None = None
    footnote_sections: list[FootnoteSectionInfo] = field(default_factory=list)
    footnote_confidence: float | None = None

    # Chapters
    chapter_start_lines: list[int] = field(default_factory=list)
    chapter_titles: list[str] = field(default_factory=list)
    has_parts: bool = False
    part_start_lines: list[int] = field(default_factory=list)
    part_titles: list[str] = field(default_factory=list)
    chapter_confidence: float | None = None

    # Content
    content_type_flags: ContentTypeFlags | None = None
    paragraph_break_indicators: list[str] = field(default_factory=list)
    special_characters_to_remove: list[str] = field(default_factory=list)

    confidence: float = 0.0
    analysis_notes: str | None = None

    def __post_init__(self):
        """Validate confidence fields."""
        self._check_confidences({f.name: getattr(self, f.name) for f in fields(self)})

    @staticmethod
    def _check_confidences(values: dict) -> None:
        for name, value in values.items():
            if not name.endswith("confidence") or value is None:
                continue
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0.0 and 1.0, got {value}")

    def update(self, **changes) -> None:
        """
        Apply field updates after validating them.

        Raises:
            ValueError: If a confidence is outside [0, 1] or a field is unknown.
        """
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown pattern fields: {sorted(unknown)}")
        self._check_confidences(changes)
        for name, value in changes.items():
            setattr(self, name, value)
        logger.debug("Pattern cache updated: %s", ", ".join(sorted(changes)))

    def copy(self) -> DetectedPatterns:
        return copy.deepcopy(self)

    def with_defaults(self) -> DetectedPatterns:
        """Return a copy whose empty pattern lists are filled with built-in defaults."""
        result = self.copy()
        if not result.page_number_patterns:
            result.page_number_patterns = list(DEFAULT_PAGE_NUMBER_PATTERNS)
        if not result.special_characters_to_remove:
            result.special_characters_to_remove = list(DEFAULT_SPECIAL_CHARACTERS)
        return result

    # -------------------------------------------------------------------------
    # Convenience
    # -------------------------------------------------------------------------

    @property
    def has_front_matter_boundary(self) -> bool:
        return self.front_matter_end_line is not None

    @property
    def has_toc_boundaries(self) -> bool:
        return self.toc_start_line is not None and self.toc_end_line is not None

    @property
    def has_index_boundary(self) -> bool:
        return self.index_start_line is not None

    @property
    def has_back_matter_boundary(self) -> bool:
        return self.back_matter_start_line is not None

    @property
    def has_citations(self) -> bool:
        return self.citation_style is not None and bool(self.citation_count)

    @property
    def has_footnotes(self) -> bool:
        return self.footnote_marker_style is not None or bool(self.footnote_sections)

    @property
    def chapter_count(self) -> int:
        return len(self.chapter_start_lines)

    def detection_summary(self) -> list[str]:
        """Human-readable list of what has been detected so far."""
        parts = []
        if self.page_number_patterns:
            parts.append(f"{len(self.page_number_patterns)} page number pattern(s)")
        if self.header_patterns or self.footer_patterns:
            parts.append(
                f"{len(self.header_patterns)} header / {len(self.footer_patterns)} footer pattern(s)"
            )
        if self.has_front_matter_boundary:
            parts.append(f"front matter ends at line {self.front_matter_end_line}")
        if self.has_toc_boundaries:
            parts.append(f"TOC at lines {self.toc_start_line}-{self.toc_end_line}")
        if self.has_index_boundary:
            parts.append(f"index starts at line {self.index_start_line}")
        if self.has_back_matter_boundary:
            parts.append(f"back matter starts at line {self.back_matter_start_line}")
        if self.has_citations:
            parts.append(f"{self.citation_count} {self.citation_style.value} citation(s)")
        if self.chapter_start_lines:
            parts.append(f"{self.chapter_count} chapter(s)")
        return parts
