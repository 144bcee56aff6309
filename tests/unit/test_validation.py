"""
Unit tests for the three validation layers and the decision policy.

Line numbers here are 0-indexed, as the validation layers use them.
"""

import pytest
from conftest import CITATION, FRONT_MATTER_LINES, RUNNING_HEAD

from bookclean.models import FlagReason, ValidationMethod
from bookclean.patterns import CitationStyle, FootnoteMarkerStyle
from bookclean.validation import (
    BoundaryInfo,
    BoundaryValidationStats,
    BoundaryValidator,
    ContentVerifier,
    HeuristicBoundaryDetector,
    LayerVerdict,
    RejectionReason,
    SectionType,
    VerificationFailure,
    VerificationStats,
    decide,
    detect_citation_style,
    detect_footnote_markers,
    find_page_number_lines,
    find_running_headers,
    header_key,
    running_header_lines,
)

# Plain sample book: chapters start every 22 lines after the front matter
INDEX_HEADER_LINE = 177
CHAPTER_2_LINE = FRONT_MATTER_LINES + 22


# =============================================================================
# LAYER A
# =============================================================================


class TestBoundaryValidator:
    """Test positional and size checks on proposed boundaries."""

    @pytest.fixture
    def validator(self):
        """Return a validator with the default constraints."""
        return BoundaryValidator()

    def test_valid_index(self, validator):
        """A late, moderately sized, confident index passes."""
        result = validator.validate(BoundaryInfo(170, 199, 0.9), SectionType.INDEX, 200)
        assert result.is_valid
        assert result.has_range
        assert (result.start_line, result.end_line) == (170, 199)

    def test_index_runs_to_end_by_default(self, validator):
        """An index without an end line runs to the last line."""
        result = validator.validate(BoundaryInfo(170, None, 0.9), SectionType.INDEX, 200)
        assert result.end_line == 199

    @pytest.mark.parametrize(
        "boundary, reason",
        [
            (BoundaryInfo(100, 119, 0.9), RejectionReason.POSITION_TOO_EARLY),
            (BoundaryInfo(140, 199, 0.9), RejectionReason.EXCESSIVE_REMOVAL),
            (BoundaryInfo(190, 195, 0.9), RejectionReason.SECTION_TOO_SMALL),
            (BoundaryInfo(170, 199, 0.5), RejectionReason.LOW_CONFIDENCE),
            (BoundaryInfo(170, 250, 0.9), RejectionReason.OUT_OF_BOUNDS),
            (BoundaryInfo(180, 170, 0.9), RejectionReason.INVALID_RANGE),
        ],
    )
    def test_index_rejections(self, validator, boundary, reason):
        """Implausible index boundaries are rejected with the right reason."""
        result = validator.validate(boundary, SectionType.INDEX, 200)
        assert not result.is_valid
        assert result.rejection_reason is reason
        assert not result.has_range

    def test_overlap_with_confirmed(self, validator):
        """A proposal may not overlap an already confirmed range."""
        result = validator.validate(
            BoundaryInfo(170, 199, 0.9), SectionType.INDEX, 200, confirmed_ranges=[(160, 175)]
        )
        assert result.rejection_reason is RejectionReason.OVERLAPS_CONFIRMED

    def test_front_matter_anchored_at_start(self, validator):
        """Front matter always starts at line 0."""
        result = validator.validate(BoundaryInfo(None, 44, 0.9), SectionType.FRONT_MATTER, 200)
        assert result.is_valid
        assert (result.start_line, result.end_line) == (0, 44)

    def test_front_matter_too_late(self, validator):
        """Front matter cannot run past 40% of the document."""
        result = validator.validate(BoundaryInfo(None, 100, 0.9), SectionType.FRONT_MATTER, 200)
        assert result.rejection_reason is RejectionReason.POSITION_TOO_LATE

    def test_front_matter_too_small(self, validator):
        """Front matter ending at line 2 is too small to be real."""
        result = validator.validate(BoundaryInfo(None, 2, 0.9), SectionType.FRONT_MATTER, 200)
        assert result.rejection_reason is RejectionReason.SECTION_TOO_SMALL

    def test_empty_boundary_is_valid(self, validator):
        """No boundary means nothing to remove, which is always valid."""
        result = validator.validate(BoundaryInfo(None, None, 0.0), SectionType.INDEX, 200)
        assert result.is_valid
        assert not result.has_range
        assert "preserved" in result.explanation

    def test_stats(self, validator):
        """Stats count passes and rejections by reason and section."""
        stats = BoundaryValidationStats()
        stats.record(validator.validate(BoundaryInfo(170, 199, 0.9), SectionType.INDEX, 200))
        stats.record(validator.validate(BoundaryInfo(100, 119, 0.9), SectionType.INDEX, 200))
        assert stats.total == 2
        assert stats.pass_rate == 0.5
        assert stats.rejections_by_reason[RejectionReason.POSITION_TOO_EARLY] == 1
        assert stats.rejections_by_section[SectionType.INDEX] == 1
        assert "2 total" in stats.summary()

    def test_empty_stats(self):
        """With nothing recorded the pass rate is 1.0."""
        assert BoundaryValidationStats().pass_rate == 1.0


# =============================================================================
# LAYER B
# =============================================================================


class TestContentVerifier:
    """Test textual verification of proposed regions."""

    @pytest.fixture
    def verifier(self):
        """Return a content verifier."""
        return ContentVerifier()

    def test_index_verified(self, verifier, book):
        """The sample index has a header and twenty entries."""
        result = verifier.verify(SectionType.INDEX, book, INDEX_HEADER_LINE)
        assert result.is_valid
        assert result.confidence == 0.95
        assert "Header: INDEX" in result.matched_patterns

    def test_index_in_chapter_text_fails(self, verifier, book):
        """Chapter prose is not an index."""
        result = verifier.verify(SectionType.INDEX, book, CHAPTER_2_LINE - 20, CHAPTER_2_LINE + 3)
        assert not result.is_valid
        assert result.failure_reason is VerificationFailure.CHAPTER_CONTENT_FOUND

    def test_front_matter_verified(self, verifier, book):
        """Copyright and ISBN give high confidence."""
        result = verifier.verify(SectionType.FRONT_MATTER, book, 0, FRONT_MATTER_LINES - 1)
        assert result.is_valid
        assert result.confidence == 0.9
        assert "ISBN found" in result.matched_patterns

    def test_front_matter_with_chapter_fails(self, verifier, book):
        """A front matter range reaching a chapter heading fails."""
        result = verifier.verify(SectionType.FRONT_MATTER, book, 0, FRONT_MATTER_LINES + 5)
        assert not result.is_valid
        assert result.failure_reason is VerificationFailure.CHAPTER_CONTENT_FOUND
        assert "Chapter 1" in result.explanation

    def test_too_few_lines(self, verifier, book):
        """Fewer than five lines cannot be verified."""
        result = verifier.verify(SectionType.INDEX, book, 180, 182)
        assert result.failure_reason is VerificationFailure.INSUFFICIENT_CONTENT

    def test_start_out_of_bounds(self, verifier, book):
        """A start line past the text fails."""
        result = verifier.verify(SectionType.INDEX, book, 5000)
        assert result.failure_reason is VerificationFailure.INSUFFICIENT_CONTENT
        assert "out of bounds" in result.explanation

    def test_generic_not_applicable(self, verifier, book):
        """Generic sections have no verifier."""
        result = verifier.verify(SectionType.GENERIC, book, 0, 20)
        assert result.is_valid
        assert not result.applicable

    def test_footnote_section(self, verifier):
        """A notes header with numbered notes verifies."""
        text = "\n".join(
            ["## Notes", ""] + [f"{n}. See the county archive, p. {n * 3}." for n in range(1, 8)]
        )
        result = verifier.verify(SectionType.FOOTNOTES_ENDNOTES, text, 0)
        assert result.is_valid
        assert result.confidence == 0.9

    def test_stats(self, verifier, book):
        """Verification stats count failures by reason."""
        stats = VerificationStats()
        stats.record(verifier.verify(SectionType.INDEX, book, INDEX_HEADER_LINE))
        stats.record(verifier.verify(SectionType.INDEX, book, 5000))
        assert stats.passed == 1
        assert stats.failures_by_reason[VerificationFailure.INSUFFICIENT_CONTENT] == 1
        assert stats.pass_rate == 0.5


# =============================================================================
# LAYER C
# =============================================================================


class TestHeuristicBoundaryDetector:
    """Test detector-independent boundary finding."""

    @pytest.fixture
    def heuristics(self):
        """Return a heuristic boundary detector."""
        return HeuristicBoundaryDetector()

    def test_index_by_header(self, heuristics, book):
        """The index header is found with strong supporting entries."""
        result = heuristics.detect_index(book)
        assert result.detected
        assert result.boundary_line == INDEX_HEADER_LINE
        assert result.confidence == 1.0
        assert result.end_line == len(book.split("\n")) - 1

    def test_index_by_entry_density(self, heuristics):
        """Without a header, a run of thirty entries is enough."""
        prose = [f"Line {n} of the story goes on and on." for n in range(100)]
        entries = [f"Entry number {chr(65 + n % 26)}, {n + 1}" for n in range(35)]
        result = heuristics.detect_index("\n".join(prose + entries))
        assert result.detected
        assert result.boundary_line == 100
        assert result.confidence == pytest.approx(0.8)

    def test_no_index(self, heuristics):
        """Plain prose has no index."""
        text = "\n".join(f"Line {n} of the story goes on and on." for n in range(120))
        assert not heuristics.detect_index(text).detected

    def test_small_document(self, heuristics):
        """Documents under fifty lines are not analysed."""
        result = heuristics.detect_index("## Index\nApple, 1")
        assert not result.detected
        assert "too small" in result.explanation

    def test_front_matter_end(self, heuristics, book):
        """Front matter ends on the line before the first chapter."""
        result = heuristics.detect_front_matter_end(book)
        assert result.detected
        assert result.boundary_line == FRONT_MATTER_LINES - 1
        assert result.confidence == 1.0

    def test_toc_not_found_in_sample(self, heuristics, book):
        """The sample book has no table of contents."""
        assert not heuristics.detect_toc(book).detected

    def test_toc_by_header(self, heuristics):
        """A contents header with entries is found, and its end located."""
        toc = ["## Contents", ""] + [f"Chapter {n}    {n * 10}" for n in range(1, 11)]
        body = ["", "", "", "# Chapter 1"] + [f"Story line {n}." for n in range(100)]
        result = heuristics.detect_toc("\n".join(toc + body))
        assert result.detected
        assert result.boundary_line == 0
        assert result.end_line == 11

    def test_no_back_matter(self, heuristics, book):
        """The sample book has no back matter headers."""
        assert not heuristics.detect_back_matter(book).detected

    def test_agrees_with(self, heuristics, book):
        """agrees_with() compares boundary lines within a tolerance."""
        result = heuristics.detect_index(book)
        assert result.agrees_with(INDEX_HEADER_LINE + 2, tolerance=3)
        assert not result.agrees_with(INDEX_HEADER_LINE + 10, tolerance=3)


class TestPatternHeuristics:
    """Test page number, running header, citation and footnote heuristics."""

    def test_page_number_lines(self):
        """Lines holding only a page number are found."""
        lines = ["Some prose.", "12", "", "xiv", "Page 7", "In 1994 it rained."]
        patterns = [r"^\d+$", r"^[ivxlcdm]+$", r"^Page\s+\d+$"]
        assert find_page_number_lines(lines, patterns) == [1, 3, 4]

    def test_header_key_strips_page_numbers(self):
        """Edge page numbers do not change the header key."""
        assert header_key("12 THE REPUBLIC") == "the republic"
        assert header_key("THE REPUBLIC 13") == "the republic"

    def test_running_headers(self, noisy_book):
        """The repeated running head is the only header found."""
        lines = noisy_book.split("\n")
        assert find_running_headers(lines) == [RUNNING_HEAD.lower()]
        assert len(running_header_lines(lines, [RUNNING_HEAD.lower()])) == 6

    def test_headings_are_not_running_headers(self):
        """Markdown headings never count as running headers."""
        lines = ["# Part One"] * 5
        assert find_running_headers(lines) == []

    def test_citation_style(self, cited_book):
        """Author-year citations are recognised as APA."""
        style, count, confidence = detect_citation_style(cited_book)
        assert style is CitationStyle.APA
        assert count == 6
        assert confidence == pytest.approx(0.73)
        assert CITATION in cited_book

    def test_too_few_citations(self):
        """Below the minimum no style is reported."""
        assert detect_citation_style("As shown (Ellison, 1994).") == (None, 1, 0.0)

    def test_footnote_markers(self):
        """Superscript digits are footnote markers."""
        style, count = detect_footnote_markers("One¹ two² three³ four.")
        assert style is FootnoteMarkerStyle.NUMERIC_SUPERSCRIPT
        assert count == 3


# =============================================================================
# POLICY
# =============================================================================


class TestDecide:
    """Test how layer verdicts combine into a decision."""

    A = LayerVerdict.APPROVED
    R = LayerVerdict.REJECTED

    def test_below_threshold_is_flagged(self):
        """Low confidence is flagged whatever the layers say."""
        decision = decide(0.5, 0.7, self.A, self.A, self.A)
        assert not decision.apply
        assert decision.flag_reason is FlagReason.LOW_CONFIDENCE

    def test_a_and_b(self):
        """A and B agreeing gives PHASE_AB."""
        decision = decide(0.9, 0.7, self.A, self.A)
        assert decision.apply
        assert decision.method is ValidationMethod.PHASE_AB

    def test_all_layers(self):
        """All three agreeing gives PHASE_ABC."""
        assert decide(0.9, 0.7, self.A, self.A, self.A).method is ValidationMethod.PHASE_ABC

    def test_a_and_c_without_b(self):
        """A and C without B is recorded as PHASE_A."""
        assert decide(0.9, 0.7, self.A, layer_c=self.A).method is ValidationMethod.PHASE_A

    def test_heuristic_only(self):
        """Layer C alone gives PHASE_C."""
        assert decide(0.9, 0.7, layer_c=self.A).method is ValidationMethod.PHASE_C

    def test_c_settles_disagreement(self):
        """When A and B disagree, C approving decides it."""
        decision = decide(0.9, 0.7, self.A, self.R, self.A)
        assert decision.apply
        assert decision.method is ValidationMethod.PHASE_C

    def test_disagreement_without_c(self):
        """A rejection without C's approval is ambiguous."""
        decision = decide(0.9, 0.7, self.A, self.R, self.R)
        assert not decision.apply
        assert decision.flag_reason is FlagReason.AMBIGUOUS_REMOVAL
        assert "rejected by B, C" in decision.explanation

    def test_nothing_approved(self):
        """No approving layer means no removal."""
        decision = decide(0.9, 0.7)
        assert not decision.apply
        assert decision.flag_reason is FlagReason.AMBIGUOUS_REMOVAL

    def test_corroboration_required(self):
        """High-risk removals need C as well as A and B."""
        decision = decide(0.9, 0.7, self.A, self.A, require_corroboration=True)
        assert not decision.apply
        assert "corroboration" in decision.explanation

    def test_layer_verdict_of(self):
        """LayerVerdict.of() maps booleans to verdicts."""
        assert LayerVerdict.of(True) is LayerVerdict.APPROVED
        assert LayerVerdict.of(False) is LayerVerdict.REJECTED
