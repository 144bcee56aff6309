"""
Unit tests for the deterministic text operations.
"""

import pytest

from bookclean.models import ChapterMarkerStyle, DocumentMetadata, EndMarkerStyle
from bookclean.text import (
    AdaptiveDictionary,
    LineBreakRejoiner,
    apply_structure,
    chunk_content,
    clean_special_characters,
    count_changes,
    count_cleaned_words,
    count_lines,
    count_words,
    detect_chapter_headings,
    detect_part_headings,
    group_consecutive,
    insert_chapter_markers,
    iter_blocks,
    merge_chunks,
    normalize_whitespace,
    optimize_paragraph_length,
    reflow_paragraphs,
    remove_line_ranges,
    remove_lines,
    split_long_paragraph,
    split_paragraphs,
)


@pytest.fixture(scope="module")
def dictionary():
    """Loading the base word list is slow; share one per module."""
    return AdaptiveDictionary()


@pytest.fixture
def rejoiner(dictionary):
    return LineBreakRejoiner(dictionary)


# =============================================================================
# WHITESPACE AND CHARACTERS
# =============================================================================


class TestNormalizeWhitespace:
    """Test line-ending and blank-line normalization."""

    def test_normalizes(self):
        """CRLF becomes LF, trailing spaces go, long blank runs shrink."""
        assert normalize_whitespace("a  \r\nb\r\n\n\n\n\nc") == "a\nb\n\n\nc"

    def test_two_blank_lines_survive(self):
        """Up to two blank lines are kept."""
        assert normalize_whitespace("a\n\n\nb") == "a\n\n\nb"


class TestCleanSpecialCharacters:
    """Test OCR artifact cleanup."""

    def test_ligatures_and_characters(self):
        """Ligatures expand and configured characters disappear."""
        text, stats = clean_special_characters("the ﬁrst *word*", ["*"])
        assert text == "the first word"
        assert stats.ligatures_expanded == 1
        assert stats.characters_removed == 2
        assert stats.total == 3

    def test_brackets_become_parentheses(self):
        """Bracket content survives and empty brackets vanish."""
        text, _ = clean_special_characters("see [1] and [ ]", ["[", "]"])
        assert text == "see (1) and"

    def test_invisible_characters(self):
        """Zero-width characters are removed."""
        text, stats = clean_special_characters("or\u200bchard", [])
        assert text == "orchard"
        assert stats.invisible_removed == 1

    def test_code_is_preserved(self):
        """Inline code keeps its characters."""
        text, stats = clean_special_characters("use `a*b` here *now*", ["*"])
        assert text == "use `a*b` here now"
        assert stats.code_blocks_preserved == 1

    def test_code_not_preserved_when_disabled(self):
        """Code is cleaned like prose when preservation is off."""
        text, _ = clean_special_characters("use `a*b`", ["*"], preserve_code_blocks=False)
        assert text == "use `ab`"

    def test_math_symbols_kept(self):
        """Math symbols survive unless preservation is switched off."""
        text, stats = clean_special_characters("2 + 2 = 4", ["+", "="])
        assert text == "2 + 2 = 4"
        assert stats.characters_removed == 0
        text, _ = clean_special_characters("2 + 2 = 4", ["+", "="], preserve_math_symbols=False)
        assert text == "2 2 4"

    def test_em_dash_never_removed(self):
        """The em dash is never stripped."""
        text, _ = clean_special_characters("apples—pears", ["—"])
        assert text == "apples—pears"

    def test_links_unwrapped(self):
        """Markdown links keep their text and images disappear."""
        text, _ = clean_special_characters("read [Walden](http://x.org) ![cover](c.png)", [])
        assert text == "read Walden"


# =============================================================================
# LINE REMOVAL AND CHUNKING
# =============================================================================


class TestLineRemoval:
    """Test range and index removal."""

    def test_remove_ranges_bottom_up(self):
        """Several ranges are removed without shifting each other."""
        text, removed = remove_line_ranges("a\nb\nc\nd\ne", [(0, 1), (3, 10)])
        assert text == "c"
        assert removed == 4

    def test_invalid_range_skipped(self):
        """Reversed ranges are ignored."""
        text, removed = remove_line_ranges("a\nb\nc", [(2, 1)])
        assert text == "a\nb\nc"
        assert removed == 0

    def test_remove_lines(self):
        """Individual lines are dropped by index."""
        assert remove_lines("a\nb\nc", [1]) == "a\nc"

    def test_group_consecutive(self):
        """Indices are grouped into inclusive runs."""
        assert group_consecutive([10, 1, 2, 3, 7, 9]) == [(1, 3), (7, 7), (9, 10)]
        assert group_consecutive([]) == []


class TestChunking:
    """Test splitting long text for chunked steps."""

    def test_small_text_is_one_chunk(self):
        """Text under the target stays whole."""
        chunks = chunk_content("a\nb\nc", target_lines=10)
        assert len(chunks) == 1
        assert chunks[0].start_line == 0
        assert chunks[0].end_line == 2

    def test_cuts_after_blank_lines(self):
        """Chunks end just after a paragraph break and fold a small remainder."""
        lines = ["" if i % 10 == 9 else f"line {i}" for i in range(300)]
        content = "\n".join(lines)
        chunks = chunk_content(content, target_lines=100)
        assert len(chunks) == 2
        assert chunks[0].end_line == 109
        assert chunks[1].start_line == 110
        assert chunks[1].end_line == 299
        assert merge_chunks(c.content for c in chunks) == content


# =============================================================================
# BLOCKS, REFLOW AND PARAGRAPH LENGTH
# =============================================================================


class TestBlocks:
    """Test layout block classification."""

    def test_kinds(self):
        """Headings, prose, lists, code and tables are told apart."""
        content = (
            "# Chapter 1\n\nThe farm was\nquiet that year.\n\n- apples\n- pears\n\n"
            "```\ncode\n```\n\n| a | b |\n| 1 | 2 |"
        )
        kinds = [block.kind for block in iter_blocks(content)]
        assert kinds == [
            "heading", "blank", "prose", "blank", "list", "blank", "code", "blank", "table"
        ]

    def test_verse(self):
        """Short unhyphenated lines form verse."""
        blocks = list(iter_blocks("Roses are red\nViolets are blue\nSugar is sweet"))
        assert [b.kind for b in blocks] == ["verse"]
        assert blocks[0].end_line == 2

    def test_hyphenated_short_lines_are_prose(self):
        """A hyphen at a line end rules out verse."""
        blocks = list(iter_blocks("The orchard was\nbeauti-\nful that year."))
        assert blocks[0].kind == "prose"

    def test_split_paragraphs(self):
        """Paragraphs are the non-blank blocks."""
        assert split_paragraphs("A b.\n\n\nC d.") == ["A b.", "C d."]


class TestReflow:
    """Test paragraph reflow."""

    def test_joins_prose(self, rejoiner):
        """Prose lines join and a split word is rejoined."""
        content = "The orchard was\nbeauti-\nful that year.\n\n- one\n- two"
        text, ranges, stats = reflow_paragraphs(content, rejoiner)
        assert text == "The orchard was beautiful that year.\n\n- one\n- two"
        assert ranges == [(0, 2)]
        assert stats.paragraphs_reflowed == 1
        assert stats.lines_joined == 2
        assert stats.blocks_preserved == 1
        assert stats.line_breaks.candidates_joined == 1

    def test_verse_untouched(self, rejoiner):
        """Verse keeps its lines."""
        content = "Roses are red\nViolets are blue\nSugar is sweet"
        text, ranges, stats = reflow_paragraphs(content, rejoiner)
        assert text == content
        assert ranges == []
        assert stats.blocks_preserved == 1


class TestParagraphLength:
    """Test splitting over-long paragraphs."""

    def test_split_at_sentences(self):
        """Parts stay under the word cap."""
        assert split_long_paragraph("One two. Three four. Five six.", 4) == [
            "One two. Three four.",
            "Five six.",
        ]

    def test_long_sentence_stays_whole(self):
        """A sentence over the cap is not broken."""
        assert split_long_paragraph("one two three four five six", 3) == [
            "one two three four five six"
        ]

    def test_zero_means_no_limit(self):
        """A cap of zero leaves the paragraph alone."""
        assert split_long_paragraph("One two.\nThree four.", 0) == ["One two. Three four."]

    def test_optimize(self):
        """Long prose paragraphs become blank-separated parts."""
        text, ranges = optimize_paragraph_length("One two. Three four. Five six.\n\nShort one.", 4)
        assert text == "One two. Three four.\n\nFive six.\n\nShort one."
        assert ranges == [(0, 0)]

    def test_optimize_disabled(self):
        """A cap of zero returns the input unchanged."""
        assert optimize_paragraph_length("One two. Three four.", 0) == ("One two. Three four.", [])


# =============================================================================
# STRUCTURE
# =============================================================================


class TestHeadingDetection:
    """Test chapter and part heading detection."""

    def test_chapters(self):
        """Chapter headings are found; navigation, notes, parts and code are not."""
        lines = [
            "# Contents",
            "",
            "# Chapter 1",
            "text",
            "",
            "## Notes",
            "# Part One",
            "```",
            "# Chapter 9",
            "```",
            "# Chapter 2: The Farm",
        ]
        headings = detect_chapter_headings(lines)
        assert [(h.line_index, h.title) for h in headings] == [(2, "Chapter 1"), (10, "The Farm")]

    def test_bare_number_heading(self):
        """A numbered heading is titled as a chapter."""
        assert detect_chapter_headings(["# 3"])[0].title == "Chapter 3"

    def test_parts(self):
        """Part headings are found separately."""
        parts = detect_part_headings(["# Part One", "# Chapter 1"])
        assert len(parts) == 1
        assert parts[0].title == "Part One"


class TestChapterMarkers:
    """Test marker insertion."""

    def test_inserts_before_headings(self):
        """Each chapter heading gets a marker line and a blank line."""
        text, count = insert_chapter_markers(
            "# Chapter 1\nText.\n# Chapter 2\nMore.", ChapterMarkerStyle.HTML_COMMENTS
        )
        assert count == 2
        assert text == (
            "<!-- CHAPTER: Chapter 1 -->\n\n# Chapter 1\nText.\n"
            "<!-- CHAPTER: Chapter 2 -->\n\n# Chapter 2\nMore."
        )

    def test_chapter_inside_part(self):
        """A chapter after a part heading names the part."""
        text, count = insert_chapter_markers(
            "# Part One\n\n# Chapter 1\nText.", ChapterMarkerStyle.HTML_COMMENTS
        )
        assert count == 2
        assert "<!-- PART: Part One -->" in text
        assert "<!-- PART: Part One | CHAPTER: Chapter 1 -->" in text

    def test_none_style(self):
        """The NONE style inserts nothing."""
        content = "# Chapter 1\nText."
        assert insert_chapter_markers(content, ChapterMarkerStyle.NONE) == (content, 0)

    def test_no_headings(self):
        """Text without chapters is returned unchanged."""
        assert insert_chapter_markers("Just text.", ChapterMarkerStyle.HTML_COMMENTS) == (
            "Just text.",
            0,
        )


class TestApplyStructure:
    """Test final document layout."""

    @pytest.fixture
    def metadata(self):
        return DocumentMetadata(title="Walden", author="Henry David Thoreau")

    def test_layout(self, metadata):
        """Title, metadata, divider, marked body, divider and end marker."""
        doc = apply_structure("# Chapter 1\nBody text.\n", metadata)
        assert doc.text == (
            "# Walden\n\n"
            "---\ntitle: Walden\nauthor: Henry David Thoreau\n---\n\n"
            "---\n\n"
            "<!-- CHAPTER: Chapter 1 -->\n\n# Chapter 1\nBody text.\n\n"
            "---\n\n"
            "*** <!-- END OF WALDEN -->\n"
        )
        assert doc.markers_inserted == 1
        assert doc.chapter_titles == ["Chapter 1"]

    def test_simple_end_marker(self, metadata):
        """Other end styles render their own marker."""
        doc = apply_structure("Body text.", metadata, end_style=EndMarkerStyle.SIMPLE)
        assert doc.text.endswith("---\n\n[END]\n")

    def test_no_end_marker(self, metadata):
        """The NONE end style leaves the body last."""
        doc = apply_structure("Body text.", metadata, end_style=EndMarkerStyle.NONE)
        assert "END" not in doc.text
        assert doc.text.rstrip().endswith("Body text.")

    def test_cleaned_count_ignores_assembly(self, metadata):
        """Metadata, markers and dividers do not count as words."""
        doc = apply_structure("# Chapter 1\nBody text.", metadata)
        assert count_cleaned_words(doc.text) == count_words("Walden Chapter 1 Body text.")


# =============================================================================
# COUNTING
# =============================================================================


class TestCounting:
    """Test word, line and change counts."""

    def test_count_words_strips_markdown(self):
        """Formatting marks and images are not words."""
        content = "# Title\n\n**Bold** and _it_ [link](http://x.org) ![img](a.png)"
        assert count_words(content) == 5

    def test_count_changes(self):
        """Changed lines are counted from both sides."""
        assert count_changes("a\nb\nc", "a\nc\nd") == 2
        assert count_changes("a\nb", "a\nb") == 0

    def test_count_lines(self):
        """Empty text has no lines."""
        assert count_lines("") == 0
        assert count_lines("a\nb") == 2


# =============================================================================
# HYPHENATION
# =============================================================================


class TestAdaptiveDictionary:
    """Test word validation and vocabulary learning."""

    def test_known_word(self, dictionary):
        """Base dictionary words are known."""
        assert dictionary.is_known_word("philosophy")

    def test_learns_repeated_words(self):
        """Unknown words used twice are learned."""
        ad = AdaptiveDictionary()
        assert ad.learn_from_text("Brambleworth spoke. Brambleworth left.") == 1
        assert ad.is_known_word("brambleworth")
        ad.clear_learned_words()
        assert not ad.is_known_word("brambleworth")

    def test_single_use_not_learned(self):
        """One occurrence is not enough."""
        ad = AdaptiveDictionary()
        assert ad.learn_from_text("Brambleworth spoke.") == 0

    def test_split_words_do_not_vouch(self):
        """Words broken across lines are not counted."""
        ad = AdaptiveDictionary()
        assert ad.learn_from_text("Zarath-\nustra and Zarath-\nustra") == 0

    def test_implausible_word(self, dictionary):
        """A vowel-less string is not a word."""
        valid, confidence = dictionary.is_probably_word("xqzt")
        assert not valid
        assert confidence < 0.5


class TestLineBreakRejoiner:
    """Test end-of-line hyphen decisions."""

    def test_rejoins_split_word(self, rejoiner):
        """Fragments of a dictionary word are joined."""
        candidate = rejoiner.evaluate_join("beauti-", "ful")
        assert candidate.should_join
        assert candidate.joined == "beautiful"

    def test_keeps_compound(self, rejoiner):
        """Two real words keep their hyphen."""
        candidate = rejoiner.evaluate_join("well-", "known")
        assert not candidate.should_join
        assert candidate.joined == "well-known"
        assert candidate.reason == "Hyphenated compound"

    def test_capitalised_continuation(self, rejoiner):
        """A capital after the break keeps the hyphen."""
        assert rejoiner.evaluate_join("New-", "York").reason == "Capitalised continuation"

    def test_too_short(self, rejoiner):
        """Joined words under three letters are rejected."""
        assert rejoiner.evaluate_join("a-", "b").reason == "Invalid length"

    def test_join_lines(self, rejoiner):
        """Lines are joined with spaces and compounds kept."""
        text, stats = rejoiner.join_lines(["a well-", "known fact"])
        assert text == "a well-known fact"
        assert stats.candidates_found == 1
        assert stats.candidates_kept == 1

    def test_dash_joins_without_space(self, rejoiner):
        """A line ending in an em dash joins directly."""
        text, _ = rejoiner.join_lines(["he said—", "nothing"])
        assert text == "he said—nothing"

    def test_empty(self, rejoiner):
        """Blank input gives empty text."""
        text, stats = rejoiner.join_lines(["", "  "])
        assert text == ""
        assert stats.candidates_found == 0
