"""
Unit tests for pattern catalogues and the pattern cache.
"""

import pytest

from bookclean.patterns import (
    DEFAULT_PAGE_NUMBER_PATTERNS,
    AuxiliaryListCategory,
    AuxiliaryListType,
    CitationCategory,
    CitationStyle,
    DetectedPatterns,
    FootnoteContentType,
    FootnoteMarkerStyle,
)


class TestCitationStyle:
    """Test the citation style catalogue."""

    def test_every_style_compiles(self):
        """Each style carries a valid regex."""
        for style in CitationStyle:
            assert style.compile().pattern == style.primary_pattern

    def test_apa_matches_author_year(self):
        """APA matches author-year citations with optional pages."""
        pattern = CitationStyle.APA.compile()
        assert pattern.search("as shown (Ellison, 1994) before")
        assert pattern.search("(Smith & Jones, 2001, p. 12)")
        assert not pattern.search("(see chapter 4)")

    def test_categories(self):
        """Styles report their category."""
        assert CitationStyle.IEEE.category is CitationCategory.NUMERIC
        assert CitationStyle.IEEE.uses_numeric_references
        assert CitationStyle.BLUEBOOK.is_legal_style
        assert not CitationStyle.APA.uses_numeric_references


class TestFootnotes:
    """Test footnote marker and section vocabularies."""

    def test_superscript_styles(self):
        """Superscript styles are identified."""
        assert FootnoteMarkerStyle.NUMERIC_SUPERSCRIPT.is_superscript
        assert not FootnoteMarkerStyle.BRACKETED_NUMERIC.is_superscript
        assert FootnoteMarkerStyle.BRACKETED_NUMERIC.pattern == r"\[\d+\]"

    def test_header_labels(self):
        """Endnote sections have localized headers."""
        assert "Endnotes" in FootnoteContentType.ENDNOTES.header_labels
        assert "Notes" in FootnoteContentType.NOTES.header_labels


class TestAuxiliaryListType:
    """Test auxiliary list identification."""

    def test_from_header(self):
        """Headers are matched case-insensitively without markdown or colons."""
        assert AuxiliaryListType.from_header("## List of Figures") is AuxiliaryListType.FIGURES
        assert AuxiliaryListType.from_header("ABBREVIATIONS:") is AuxiliaryListType.ABBREVIATIONS
        assert AuxiliaryListType.from_header("Chapter 1") is None

    def test_category(self):
        """List types belong to a category."""
        assert AuxiliaryListType.TABLES.category is AuxiliaryListCategory.TABLE
        assert AuxiliaryListType.MAPS.category is AuxiliaryListCategory.FIGURE_ILLUSTRATION


class TestDetectedPatterns:
    """Test the mutable pattern cache."""

    def test_update(self):
        """update() sets known fields."""
        patterns = DetectedPatterns(document_id="orchard")
        patterns.update(front_matter_end_line=44, front_matter_confidence=0.95)
        assert patterns.has_front_matter_boundary
        assert patterns.front_matter_end_line == 44

    def test_update_rejects_unknown_field(self):
        """Unknown fields are rejected."""
        with pytest.raises(ValueError, match="Unknown pattern fields"):
            DetectedPatterns().update(page_count=12)

    def test_update_rejects_bad_confidence(self):
        """Confidence updates are range-checked before anything changes."""
        patterns = DetectedPatterns()
        with pytest.raises(ValueError, match="index_confidence"):
            patterns.update(index_start_line=150, index_confidence=1.5)
        assert patterns.index_start_line is None

    def test_constructor_checks_confidence(self):
        """Confidence fields are validated at construction."""
        with pytest.raises(ValueError, match="citation_confidence"):
            DetectedPatterns(citation_confidence=-0.1)

    def test_copy_is_deep(self):
        """Copies do not share lists with the original."""
        patterns = DetectedPatterns(header_patterns=["^the orchard keeper$"])
        clone = patterns.copy()
        clone.header_patterns.append("^chapter$")
        assert patterns.header_patterns == ["^the orchard keeper$"]

    def test_with_defaults(self):
        """Empty pattern lists are filled from the built-in defaults."""
        patterns = DetectedPatterns().with_defaults()
        assert patterns.page_number_patterns == list(DEFAULT_PAGE_NUMBER_PATTERNS)
        assert patterns.special_characters_to_remove == ["[", "]", "*", "_"]

    def test_with_defaults_keeps_existing(self):
        """Existing patterns are not replaced."""
        patterns = DetectedPatterns(page_number_patterns=[r"^\d+$"]).with_defaults()
        assert patterns.page_number_patterns == [r"^\d+$"]

    def test_detection_summary(self):
        """The summary lists detected boundaries."""
        patterns = DetectedPatterns(
            front_matter_end_line=44,
            index_start_line=176,
            chapter_start_lines=[45, 71, 97],
        )
        summary = patterns.detection_summary()
        assert "front matter ends at line 44" in summary
        assert "index starts at line 176" in summary
        assert "3 chapter(s)" in summary
