"""
Document assembly: chapter detection, structural markers, final layout.

Chapter headings are detected on the text being assembled, never taken from
line numbers recorded earlier in the run, since removals shift every line.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from bookclean.models import ChapterMarkerStyle, DocumentMetadata, EndMarkerStyle, MetadataFormat

logger = logging.getLogger(__name__)

# =============================================================================
# HEADING DETECTION
# =============================================================================

_NUMBER_WORDS = (
    "One|Two|Three|Four|Five|Six|Seven|Eight|Nine|Ten|Eleven|Twelve|Thirteen|"
    "Fourteen|Fifteen|Sixteen|Seventeen|Eighteen|Nineteen|Twenty"
)
_ORDINAL = rf"(?:\d+|[IVXLC]+|{_NUMBER_WORDS})"

CHAPTER_HEADING_PATTERNS = (
    re.compile(rf"^#{{1,2}}\s*chapter\s+{_ORDINAL}\b[.:\s]?(.*)$", re.IGNORECASE),
    re.compile(r"^#{1,2}\s+(\d{1,3})[.:\s]+(.+)$"),
    re.compile(r"^#{1,2}\s+([IVXLC]+)[.:\s]+(.+)$"),
    re.compile(r"^#{1,2}\s+(\d{1,3})\s*$"),
    # OCR output without markdown: a bare "CHAPTER IV" line
    re.compile(rf"^(?:CHAPTER|Chapter)\s+{_ORDINAL}\b[.:]?(?:\s+(.{{1,70}}))?$"),
)

PART_HEADING_PATTERN = re.compile(
    rf"^(?:#{{1,2}}\s*)?(?:Part|PART|Book|BOOK|Volume|VOLUME)\s+{_ORDINAL}\b[.:]?(?:\s+.{{1,70}})?$"
)

_NON_CHAPTER_HEADINGS = (
    "notes",
    "index",
    "appendix",
    "bibliography",
    "glossary",
    "references",
    "acknowledgment",
    "about the author",
    "contents",
    "table of contents",
)

_FENCE = re.compile(r"^\s*```")


@dataclass(frozen=True)
class DetectedHeading:
    """A chapter or part heading found in the text (0-indexed line)."""

    line_index: int
    title: str
    heading_line: str


def _heading_text(line: str) -> str:
    return line.lstrip("#").strip()


def _chapter_title(line: str) -> str:
    text = _heading_text(line)
    if ":" in text:
        after = text.split(":", 1)[1].strip()
        if after:
            return after
    if re.fullmatch(r"\d{1,3}", text):
        return f"Chapter {text}"
    return text


def code_block_lines(lines: list[str]) -> set[int]:
    """Indices of lines inside fenced code blocks (fences included)."""
    inside: set[int] = set()
    in_code = False
    for index, line in enumerate(lines):
        if _FENCE.match(line):
            inside.add(index)
            in_code = not in_code
        elif in_code:
            inside.add(index)
    return inside


def detect_chapter_headings(lines: list[str]) -> list[DetectedHeading]:
    """
    Find chapter headings heuristically.

    Back-matter and navigation headings (notes, index, contents, ...) are
    never chapters. Lines inside fenced code are ignored.
    """
    skip = code_block_lines(lines)
    headings = []
    for index, line in enumerate(lines):
        trimmed = line.strip()
        if not trimmed or index in skip:
            continue
        lowered = _heading_text(trimmed).lower()
        if any(lowered.startswith(word) for word in _NON_CHAPTER_HEADINGS):
            continue
        if PART_HEADING_PATTERN.match(trimmed):
            continue
        for pattern in CHAPTER_HEADING_PATTERNS:
            if pattern.match(trimmed):
                headings.append(DetectedHeading(index, _chapter_title(trimmed), trimmed))
                break
    return headings


def detect_part_headings(lines: list[str]) -> list[DetectedHeading]:
    skip = code_block_lines(lines)
    return [
        DetectedHeading(index, _heading_text(line.strip()), line.strip())
        for index, line in enumerate(lines)
        if index not in skip and PART_HEADING_PATTERN.match(line.strip())
    ]


# =============================================================================
# MARKERS
# =============================================================================


def insert_chapter_markers(content: str, style: ChapterMarkerStyle) -> tuple[str, int]:
    """
    Insert a marker line (and a blank line) before every chapter and part heading.

    A chapter inside a part carries the part title in its marker. When a line
    is both, the part marker wins.

    Returns:
        Tuple of (text, number of markers inserted).
    """
    if not style.inserts_markers:
        return content, 0

    lines = content.split("\n")
    chapters = detect_chapter_headings(lines)
    if not chapters:
        logger.debug("No chapter headings detected, skipping marker insertion")
        return content, 0
    parts = detect_part_headings(lines)
    part_lines = {part.line_index for part in parts}

    insertions: list[tuple[int, str]] = [
        (part.line_index, style.format_part_marker(part.title)) for part in parts
    ]
    for chapter in chapters:
        if chapter.line_index in part_lines:
            continue
        enclosing = [p for p in parts if p.line_index < chapter.line_index]
        part_title = enclosing[-1].title if enclosing else None
        insertions.append((chapter.line_index, style.format_marker(chapter.title, part_title)))

    for line_index, marker in sorted(insertions, key=lambda item: item[0], reverse=True):
        lines[line_index:line_index] = [marker, ""]

    logger.info("Inserted %d chapter/part markers", len(insertions))
    return "\n".join(lines), len(insertions)


# =============================================================================
# FINAL LAYOUT
# =============================================================================


@dataclass
class AssembledDocument:
    text: str
    metadata_block: str
    markers_inserted: int
    chapter_titles: list[str]


def apply_structure(
    content: str,
    metadata: DocumentMetadata,
    metadata_format: MetadataFormat = MetadataFormat.YAML,
    chapter_style: ChapterMarkerStyle = ChapterMarkerStyle.HTML_COMMENTS,
    end_style: EndMarkerStyle = EndMarkerStyle.STANDARD,
) -> AssembledDocument:
    """
    Lay out the final document.

    Layout: title header, metadata block, ``---`` divider, content with
    chapter markers, then a ``---`` divider and the end marker when the end
    style produces one.

    Example:
        >>> doc = apply_structure("Body text.", DocumentMetadata(title="Walden"),
        ...                       end_style=EndMarkerStyle.SIMPLE)
        >>> doc.text.endswith("---\\n\\n[END]\\n")
        True
    """
    body = content.strip()
    titles = [h.title for h in detect_chapter_headings(body.split("\n"))]
    body, markers = insert_chapter_markers(body, chapter_style)
    metadata_block = metadata.format(metadata_format)

    parts = [metadata.title_header(), "", metadata_block, "", "---", "", body, ""]
    end_marker = end_style.format_marker(metadata.title, metadata.author)
    if end_marker:
        parts += ["---", "", end_marker]
    text = "\n".join(parts) + "\n"
    return AssembledDocument(
        text=text, metadata_block=metadata_block, markers_inserted=markers, chapter_titles=titles
    )
