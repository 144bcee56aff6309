"""
Code-only text operations used by the cleaning steps.

Everything here is deterministic and works on plain strings. Line numbers are
0-indexed and inclusive unless stated otherwise.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from statistics import median
from typing import Iterable, Iterator

from bookclean.patterns import DEFAULT_INVISIBLE_CHARACTERS, DEFAULT_LIGATURES
from bookclean.text.linebreak import LineBreakRejoiner, LineBreakStats

logger = logging.getLogger(__name__)


# =============================================================================
# WHITESPACE
# =============================================================================

_EXCESS_BLANK_LINES = re.compile(r"\n{4,}")
_TRAILING_SPACE = re.compile(r"[ \t]+$", re.MULTILINE)


def normalize_whitespace(content: str) -> str:
    """
    Normalize line endings and blank runs.

    CRLF and CR become LF, trailing whitespace is trimmed from every line and
    runs of more than two blank lines collapse to two.
    """
    text = content.replace("\r\n", "\n").replace("\r", "\n")
    text = _TRAILING_SPACE.sub("", text)
    return _EXCESS_BLANK_LINES.sub("\n\n\n", text)


# =============================================================================
# SPECIAL CHARACTERS
# =============================================================================

_FENCED_CODE = re.compile(r"```[a-zA-Z0-9]*\n[\s\S]*?```")
_INLINE_CODE = re.compile(r"`[^`\n]+`")
_PLACEHOLDER = "⟦CODE_{}⟧"
_IMAGE = re.compile(r"!\[[^\]]*\]\([^)]*\)")
_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_EMPTY_PARENS = re.compile(r"\(\s*\)")
_MULTIPLE_SPACES = re.compile(r"(?<=\S)  +")

MATH_SYMBOLS = frozenset("+-=<>×÷±∑∫√∞≤≥≠^∂∆π")


@dataclass
class SpecialCharacterStats:
    ligatures_expanded: int = 0
    invisible_removed: int = 0
    characters_removed: int = 0
    code_blocks_preserved: int = 0

    @property
    def total(self) -> int:
        return self.ligatures_expanded + self.invisible_removed + self.characters_removed


def extract_code_blocks(content: str) -> tuple[str, dict[str, str]]:
    """Replace fenced and inline code with placeholders."""
    blocks: dict[str, str] = {}

    def stash(match: re.Match[str]) -> str:
        placeholder = _PLACEHOLDER.format(len(blocks))
        blocks[placeholder] = match.group(0)
        return placeholder

    text = _FENCED_CODE.sub(stash, content)
    text = _INLINE_CODE.sub(stash, text)
    if blocks:
        logger.debug("Extracted %d code blocks for preservation", len(blocks))
    return text, blocks


def restore_code_blocks(content: str, blocks: dict[str, str]) -> str:
    for placeholder, code in blocks.items():
        content = content.replace(placeholder, code)
    return content


def clean_special_characters(
    content: str,
    characters: Iterable[str],
    *,
    preserve_code_blocks: bool = True,
    preserve_math_symbols: bool = True,
    ligatures: dict[str, str] | None = None,
    invisible_characters: Iterable[str] = DEFAULT_INVISIBLE_CHARACTERS,
) -> tuple[str, SpecialCharacterStats]:
    """
    Strip OCR and markdown artifacts from prose.

    Order: ligature expansion, invisible-character removal, image and link
    unwrapping, configured-character removal, space cleanup. Square brackets
    in ``characters`` are turned into parentheses so their content survives.

    Args:
        content: Text to clean.
        characters: Literal characters (or strings) to remove.
        preserve_code_blocks: Leave fenced and inline code untouched.
        preserve_math_symbols: Never strip characters in MATH_SYMBOLS.
        ligatures: Ligature expansion table (defaults to DEFAULT_LIGATURES).
        invisible_characters: Zero-width and similar characters to drop.

    Returns:
        Tuple of (cleaned_text, statistics).

    Example:
        >>> text, stats = clean_special_characters("the ﬁrst *word*", ["*"])
        >>> text
        'the first word'
    """
    stats = SpecialCharacterStats()
    blocks: dict[str, str] = {}
    text = content
    if preserve_code_blocks:
        text, blocks = extract_code_blocks(text)
        stats.code_blocks_preserved = len(blocks)

    for ligature, expansion in (ligatures or DEFAULT_LIGATURES).items():
        count = text.count(ligature)
        if count:
            stats.ligatures_expanded += count
            text = text.replace(ligature, expansion)

    for char in invisible_characters:
        count = text.count(char)
        if count:
            stats.invisible_removed += count
            text = text.replace(char, "")

    text = _IMAGE.sub("", text)
    text = _LINK.sub(r"\1", text)

    removable = [c for c in characters if c and c != "—"]
    if preserve_math_symbols:
        removable = [c for c in removable if c not in MATH_SYMBOLS]
    for char in removable:
        count = text.count(char)
        if not count:
            continue
        stats.characters_removed += count
        if char == "[":
            text = text.replace(char, "(")
        elif char == "]":
            text = text.replace(char, ")")
        else:
            text = text.replace(char, "")

    text = _EMPTY_PARENS.sub("", text)
    text = _MULTIPLE_SPACES.sub(" ", text)
    text = _TRAILING_SPACE.sub("", text)

    if blocks:
        text = restore_code_blocks(text, blocks)
    return text, stats


# =============================================================================
# LINE REMOVAL
# =============================================================================


def remove_line_ranges(content: str, ranges: Iterable[tuple[int, int]]) -> tuple[str, int]:
    """
    Remove several inclusive 0-indexed line ranges.

    Ranges are applied from the bottom up so earlier removals never shift
    later ones. Ends past the text are clamped; invalid ranges are skipped.

    Returns:
        Tuple of (new_text, lines_removed).
    """
    lines = content.split("\n")
    removed = 0
    for start, end in sorted(ranges, key=lambda r: r[0], reverse=True):
        end = min(end, len(lines) - 1)
        if start < 0 or start > end:
            logger.warning("Skipping invalid line range %d-%d", start, end)
            continue
        del lines[start : end + 1]
        removed += end - start + 1
    return "\n".join(lines), removed


def remove_lines(content: str, indices: Iterable[int]) -> str:
    """Remove individual 0-indexed lines."""
    drop = set(indices)
    return "\n".join(line for i, line in enumerate(content.split("\n")) if i not in drop)


def group_consecutive(indices: Iterable[int]) -> list[tuple[int, int]]:
    """
    Group sorted line indices into inclusive runs.

    Example:
        >>> group_consecutive([1, 2, 3, 7, 9, 10])
        [(1, 3), (7, 7), (9, 10)]
    """
    runs: list[tuple[int, int]] = []
    for index in sorted(set(indices)):
        if runs and index == runs[-1][1] + 1:
            runs[-1] = (runs[-1][0], index)
        else:
            runs.append((index, index))
    return runs


# =============================================================================
# CHUNKING
# =============================================================================

BOUNDARY_SEARCH_LINES = 50


@dataclass(frozen=True)
class TextChunk:
    """A slice of the text processed independently (lines start..end, inclusive)."""

    index: int
    content: str
    start_line: int
    end_line: int

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1


def _paragraph_boundary(lines: list[str], target: int) -> int:
    """Index just after the blank line nearest to target, or target itself."""
    for offset in range(BOUNDARY_SEARCH_LINES + 1):
        index = target + offset
        if index < len(lines) and not lines[index].strip():
            return index + 1
    for offset in range(1, BOUNDARY_SEARCH_LINES + 1):
        index = target - offset
        if index > 0 and not lines[index].strip():
            return index + 1
    return target


def chunk_content(content: str, target_lines: int = 2500) -> list[TextChunk]:
    """
    Split text into chunks of about target_lines, cut at paragraph boundaries.

    Chunks do not overlap; joining their contents with newlines rebuilds the
    input. A remainder smaller than max(100, target_lines / 5) is folded into
    the last chunk.
    """
    lines = content.split("\n")
    if len(lines) <= target_lines:
        return [TextChunk(0, content, 0, len(lines) - 1)]

    min_chunk = max(100, target_lines // 5)
    chunks: list[TextChunk] = []
    start = 0
    while start < len(lines):
        end = _paragraph_boundary(lines, start + target_lines)
        if end <= start:
            end = start + target_lines
        if len(lines) - end < min_chunk:
            end = len(lines)
        chunks.append(TextChunk(len(chunks), "\n".join(lines[start:end]), start, end - 1))
        start = end
    logger.debug("Split %d lines into %d chunks", len(lines), len(chunks))
    return chunks


def merge_chunks(chunks: Iterable[str]) -> str:
    """Join processed chunk texts (in index order)."""
    return "\n".join(chunks)


# =============================================================================
# PARAGRAPH BLOCKS
# =============================================================================

_HEADING = re.compile(r"^#{1,6}\s+\S")
_LIST_ITEM = re.compile(r"^\s*(?:[-*+•]\s+|\d{1,3}[.)]\s+|[a-z][.)]\s+)")
_TABLE_ROW = re.compile(r"^\s*\|.*\|\s*$")
_FENCE = re.compile(r"^\s*```")
_SENTENCE_BOUNDARY = re.compile(r"(?:(?<=[.!?])|(?<=[.!?][\"'”’)]))\s+(?=[\"'“‘(]?[A-Z0-9])")

VERSE_MAX_MEDIAN_LENGTH = 40
VERSE_MIN_LINES = 3


@dataclass
class TextBlock:
    """A run of lines with one layout kind (prose, heading, list, ...)."""

    kind: str
    start_line: int
    lines: list[str] = field(default_factory=list)

    @property
    def end_line(self) -> int:
        return self.start_line + len(self.lines) - 1

    @property
    def word_count(self) -> int:
        return sum(len(line.split()) for line in self.lines)


def _classify(lines: list[str]) -> str:
    if all(_TABLE_ROW.match(line) for line in lines):
        return "table"
    if any(_LIST_ITEM.match(line) for line in lines):
        return "list"
    if len(lines) >= VERSE_MIN_LINES:
        lengths = [len(line.strip()) for line in lines]
        ends_hyphenated = sum(1 for line in lines if line.rstrip().endswith("-"))
        if median(lengths) < VERSE_MAX_MEDIAN_LENGTH and not ends_hyphenated:
            return "verse"
    return "prose"


def iter_blocks(content: str) -> Iterator[TextBlock]:
    """
    Split text into layout blocks.

    Blank lines and headings are single-line blocks of their own, fenced
    code (fences included) is one "code" block, and the remaining runs of
    non-blank lines are classified as prose, verse, list or table.
    """
    lines = content.split("\n")
    current: TextBlock | None = None
    in_code = False

    def flush() -> Iterator[TextBlock]:
        nonlocal current
        if current is not None:
            if current.kind == "text":
                current.kind = _classify(current.lines)
            yield current
            current = None

    for index, line in enumerate(lines):
        if in_code:
            current.lines.append(line)
            if _FENCE.match(line):
                in_code = False
                yield from flush()
            continue
        if _FENCE.match(line):
            yield from flush()
            current = TextBlock("code", index, [line])
            in_code = True
            continue
        if not line.strip():
            yield from flush()
            yield TextBlock("blank", index, [line])
            continue
        if _HEADING.match(line):
            yield from flush()
            yield TextBlock("heading", index, [line])
            continue
        if current is None:
            current = TextBlock("text", index)
        current.lines.append(line)
    # An unterminated fence keeps its "code" kind
    yield from flush()


def split_paragraphs(content: str) -> list[str]:
    """Non-blank blocks of the text, each joined with newlines."""
    return ["\n".join(b.lines) for b in iter_blocks(content) if b.kind != "blank"]


# =============================================================================
# REFLOW
# =============================================================================


@dataclass
class ReflowStats:
    paragraphs_reflowed: int = 0
    lines_joined: int = 0
    blocks_preserved: int = 0
    line_breaks: LineBreakStats = field(default_factory=LineBreakStats)


def reflow_paragraphs(
    content: str, rejoiner: LineBreakRejoiner
) -> tuple[str, list[tuple[int, int]], ReflowStats]:
    """
    Join each prose paragraph's physical lines into one line.

    Headings, lists, tables, code and verse keep their line structure.

    Returns:
        Tuple of (text, reflowed input line ranges, statistics).
    """
    stats = ReflowStats()
    ranges: list[tuple[int, int]] = []
    out: list[str] = []
    for block in iter_blocks(content):
        if block.kind != "prose" or len(block.lines) < 2:
            if block.kind in ("list", "table", "code", "verse"):
                stats.blocks_preserved += 1
            out.extend(block.lines)
            continue
        joined, line_stats = rejoiner.join_lines(block.lines)
        out.append(joined)
        ranges.append((block.start_line, block.end_line))
        stats.paragraphs_reflowed += 1
        stats.lines_joined += len(block.lines) - 1
        stats.line_breaks.candidates_found += line_stats.candidates_found
        stats.line_breaks.candidates_joined += line_stats.candidates_joined
        stats.line_breaks.candidates_kept += line_stats.candidates_kept
    return "\n".join(out), ranges, stats


# =============================================================================
# PARAGRAPH LENGTH
# =============================================================================


def split_sentences(text: str) -> list[str]:
    return [s for s in _SENTENCE_BOUNDARY.split(text.strip()) if s]


def split_long_paragraph(paragraph: str, max_words: int) -> list[str]:
    """
    Split a paragraph at sentence boundaries so no part exceeds max_words.

    A single sentence longer than the cap stays whole. max_words 0 means no
    limit.

    Example:
        >>> split_long_paragraph("One two. Three four. Five six.", 4)
        ['One two. Three four.', 'Five six.']
    """
    text = " ".join(paragraph.split())
    if max_words <= 0 or len(text.split()) <= max_words:
        return [text]

    parts: list[str] = []
    current: list[str] = []
    words = 0
    for sentence in split_sentences(text):
        count = len(sentence.split())
        if current and words + count > max_words:
            parts.append(" ".join(current))
            current, words = [], 0
        current.append(sentence)
        words += count
    if current:
        parts.append(" ".join(current))
    return parts


def optimize_paragraph_length(
    content: str, max_words: int
) -> tuple[str, list[tuple[int, int]]]:
    """
    Split every prose paragraph longer than max_words.

    Returns:
        Tuple of (text, input line ranges of the paragraphs that were split).
    """
    if max_words <= 0:
        return content, []

    out: list[str] = []
    ranges: list[tuple[int, int]] = []
    for block in iter_blocks(content):
        if block.kind != "prose" or block.word_count <= max_words:
            out.extend(block.lines)
            continue
        parts = split_long_paragraph(" ".join(block.lines), max_words)
        if len(parts) == 1:
            out.extend(block.lines)
            continue
        out.append("\n\n".join(parts))
        ranges.append((block.start_line, block.end_line))
    return "\n".join(out), ranges
