"""
Layer C: heuristic detection.

Detector-independent rules for finding section boundaries and removable
patterns. Used when the AI detector is unavailable or wrong, and to
corroborate high-risk removals.

Every rule is conservative: it needs a clear signal (a header, or a long run
of entry-shaped lines), respects the same positional limits as Layer A, and
reports "not found" when unsure. Skipping a removal is always safer than
deleting content.

Line numbers are 0-indexed.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass

from bookclean.patterns import (
    AuxiliaryListInfo,
    AuxiliaryListType,
    CitationStyle,
    FootnoteContentType,
    FootnoteMarkerStyle,
    FootnoteSectionInfo,
)
from bookclean.validation.response import SectionType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HeuristicDetectionResult:
    section_type: SectionType
    detected: bool
    confidence: float
    explanation: str
    boundary_line: int | None = None
    end_line: int | None = None
    matched_patterns: tuple[str, ...] = ()

    @classmethod
    def found(
        cls,
        section_type: SectionType,
        boundary_line: int,
        confidence: float,
        matched: list[str],
        explanation: str,
        end_line: int | None = None,
    ) -> HeuristicDetectionResult:
        logger.info("[%s heuristic] %s", section_type.value, explanation)
        return cls(
            section_type=section_type,
            detected=True,
            confidence=confidence,
            explanation=explanation,
            boundary_line=boundary_line,
            end_line=end_line,
            matched_patterns=tuple(matched),
        )

    @classmethod
    def not_found(cls, section_type: SectionType, explanation: str) -> HeuristicDetectionResult:
        logger.debug("[%s heuristic] %s", section_type.value, explanation)
        return cls(section_type=section_type, detected=False, confidence=0.0, explanation=explanation)

    def agrees_with(self, line: int, tolerance: int) -> bool:
        """Whether this detection lands within tolerance lines of another boundary."""
        return self.detected and self.boundary_line is not None and abs(self.boundary_line - line) <= tolerance


# =============================================================================
# PATTERNS (weighted)
# =============================================================================


def _weighted(pairs) -> tuple[tuple[re.Pattern[str], float], ...]:
    return tuple((re.compile(p), w) for p, w in pairs)


BACK_MATTER_HEADERS = _weighted(
    [
        (r"^#{1,3}\s*(NOTES|Notes|ENDNOTES|Endnotes)\s*$", 1.0),
        (r"^#{1,3}\s*(APPENDIX|Appendix)(\s+[A-Z])?\s*$", 0.9),
        (r"^#{1,3}\s*(GLOSSARY|Glossary)\s*$", 0.95),
        (r"^#{1,3}\s*(BIBLIOGRAPHY|Bibliography)\s*$", 0.95),
        (r"^#{1,3}\s*(REFERENCES|References)\s*$", 0.9),
        (r"^#{1,3}\s*(WORKS CITED|Works Cited)\s*$", 0.95),
        (r"^#{1,3}\s*(ACKNOWLEDGE?MENTS|Acknowledge?ments)\s*$", 0.8),
        (r"^#{1,3}\s*(ABOUT THE AUTHORS?|About the Authors?)\s*$", 0.85),
        (r"^#{1,3}\s*(COLOPHON|Colophon)\s*$", 0.9),
        # Afterwords are often authored content
        (r"^#{1,3}\s*(AFTERWORD|Afterword)\s*$", 0.7),
        (r"^#{1,3}\s*(NOTAS|BIBLIOGRAFÍA|GLOSARIO)\s*$", 0.9),
        (r"^#{1,3}\s*(ANNEXE|GLOSSAIRE)\s*$", 0.9),
        (r"^#{1,3}\s*(ANHANG|GLOSSAR)\s*$", 0.9),
        # Plain all-caps headers
        (r"^(NOTES|ENDNOTES|GLOSSARY|BIBLIOGRAPHY|WORKS CITED)$", 0.9),
        (r"^(APPENDIX|APPENDIX [A-Z]|REFERENCES)$", 0.85),
        (r"^ABOUT THE AUTHOR$", 0.8),
        (r"^ACKNOWLEDGE?MENTS$", 0.75),
    ]
)

INDEX_HEADERS = _weighted(
    [
        (r"^#{1,3}\s*(INDEX|Index)\s*$", 1.0),
        (r"^#{1,3}\s*(SUBJECT|Subject|NAME|Name|GENERAL|General)\s+(INDEX|Index)\s*$", 1.0),
        (r"^(SUBJECT )?INDEX$", 0.9),
        (r"^#{1,3}\s*(ÍNDICE|REGISTER)\s*$", 0.9),
    ]
)
INDEX_ENTRY = re.compile(r"^\s*[A-Za-z][A-Za-z\s,'-]*,\s*\d+(-\d+)?(,\s*\d+(-\d+)?)*\s*$")
LETTER_DIVIDER = re.compile(r"^\s*[A-Z]\s*$")

FRONT_MATTER_INDICATORS = tuple(
    (re.compile(p, re.IGNORECASE), w)
    for p, w in [
        (r"©\s*\d{4}", 1.0),
        (r"Copyright\s*©?\s*\d{4}", 1.0),
        (r"All rights reserved", 0.9),
        (r"ISBN\s*[-:\s]?\s*\d", 1.0),
        (r"Library of Congress", 0.95),
        (r"First published", 0.85),
        (r"First edition", 0.85),
        (r"Published by", 0.8),
        (r"Printed in", 0.75),
    ]
)

MAIN_CONTENT_START = _weighted(
    [
        (r"^#{1,2}\s*(Chapter|CHAPTER)\s+(\d|One|ONE)", 1.0),
        (r"^#{1,2}\s*(Part|PART)\s+[IVXLC]+\b", 0.9),
        (r"^#{1,2}\s*1\.\s+[A-Z]", 0.8),
        (r"^#{1,2}\s*(Prologue|PROLOGUE)\s*$", 0.9),
    ]
)

TOC_HEADERS = _weighted(
    [
        (r"^#{1,3}\s*(TABLE OF CONTENTS|Table of Contents|CONTENTS|Contents)\s*$", 1.0),
        (r"^(TABLE OF )?CONTENTS$", 0.9),
        (r"^#{1,3}\s*(TABLA DE CONTENIDOS|TABLE DES MATIÈRES|INHALTSVERZEICHNIS)\s*$", 0.9),
    ]
)
TOC_ENTRY = re.compile(r"^.+\s{2,}\.{2,}\s*\d+\s*$|^.+\s{4,}\d+\s*$|^.+\.{3,}\s*\d+\s*$")
TOC_SIMPLE_ENTRY = re.compile(r"^.{5,}\s+\d{1,4}\s*$")
_TRAILING_NUMBER = re.compile(r"\s+\d+\s*$")
_CONTENT_START_PREFIXES = ("CHAPTER ", "PART ", "PROLOGUE", "INTRODUCTION")

FOOTNOTE_ENTRY = re.compile(r"^\s*(\d{1,3}[.:)]|\[\d{1,3}\]|[¹²³⁴⁵⁶⁷⁸⁹⁰]+)\s+\S")
_HEADING = re.compile(r"^#{1,6}\s+\S")


def _first_match(
    lines: list[str], patterns, start: int = 0, stop: int | None = None, strip: bool = False
) -> tuple[int, str, float] | None:
    """Earliest line in [start, stop) matching any pattern, with its weight."""
    stop = len(lines) if stop is None else min(stop, len(lines))
    for index in range(start, stop):
        line = lines[index].strip() if strip else lines[index]
        for pattern, weight in patterns:
            if pattern.search(line):
                return index, pattern.pattern, weight
    return None


def _count(lines: list[str], pattern: re.Pattern[str], start: int, max_lines: int) -> int:
    return sum(1 for line in lines[start : start + max_lines] if pattern.search(line))


def _longest_run(
    lines: list[str],
    is_entry,
    start: int,
    stop: int,
    max_blank_gap: int | None = None,
) -> tuple[int, int | None]:
    """Longest run of entry lines; blank lines never break it unless max_blank_gap is exceeded."""
    best, best_start = 0, None
    run, run_start, blanks = 0, None, 0
    for index in range(start, min(stop, len(lines))):
        line = lines[index]
        if not line.strip():
            blanks += 1
            if max_blank_gap is not None and blanks > max_blank_gap:
                if run > best:
                    best, best_start = run, run_start
                run, run_start = 0, None
            continue
        blanks = 0
        if is_entry(line):
            if run_start is None:
                run_start = index
            run += 1
        else:
            if run > best:
                best, best_start = run, run_start
            run, run_start = 0, None
    if run > best:
        best, best_start = run, run_start
    return best, best_start


# =============================================================================
# BOUNDARY DETECTOR
# =============================================================================


class HeuristicBoundaryDetector:
    """
    Finds section boundaries without the AI detector.

    Example:
        >>> detector = HeuristicBoundaryDetector()
        >>> result = detector.detect_index(text)
        >>> if result.detected:
        ...     print(result.boundary_line, result.confidence)
    """

    min_confidence = 0.6
    min_document_lines = 50
    supporting_scan_lines = 50

    back_matter_min_start = 0.50
    index_min_start = 0.70
    front_matter_max_end = 0.30
    toc_max_end = 0.30
    auxiliary_lists_max_end = 0.40

    def _too_small(self, section: SectionType, lines: list[str]) -> HeuristicDetectionResult | None:
        if len(lines) < self.min_document_lines:
            return HeuristicDetectionResult.not_found(
                section, f"Document too small for heuristic detection ({len(lines)} lines)"
            )
        return None

    # -------------------------------------------------------------------------
    # Back matter
    # -------------------------------------------------------------------------

    def detect_back_matter(self, content: str) -> HeuristicDetectionResult:
        section = SectionType.BACK_MATTER
        lines = content.split("\n")
        if (small := self._too_small(section, lines)) is not None:
            return small

        first = int(len(lines) * self.back_matter_min_start)
        candidates = []
        for index in range(first, len(lines)):
            stripped = lines[index].strip()
            for pattern, weight in BACK_MATTER_HEADERS:
                if pattern.search(stripped):
                    candidates.append((index, pattern.pattern, weight))
                    break
        if not candidates:
            return HeuristicDetectionResult.not_found(
                section, "No back matter header patterns found in last 50% of document"
            )

        line, _, weight = candidates[0]
        confidence = weight
        if len(candidates) >= 3:
            confidence = min(1.0, confidence + 0.15)
        elif len(candidates) >= 2:
            confidence = min(1.0, confidence + 0.1)
        position = line / len(lines)
        if position < 0.55:
            confidence *= 0.9

        if confidence < self.min_confidence:
            return HeuristicDetectionResult.not_found(
                section, f"Pattern found but confidence ({confidence:.0%}) below threshold"
            )
        return HeuristicDetectionResult.found(
            section,
            line,
            confidence,
            [f"Line {i}: {p}" for i, p, _ in candidates],
            f"Back matter detected at line {line} ({position:.0%} into document) "
            f"with {len(candidates)} supporting pattern(s)",
            end_line=len(lines) - 1,
        )

    # -------------------------------------------------------------------------
    # Index
    # -------------------------------------------------------------------------

    def detect_index(self, content: str) -> HeuristicDetectionResult:
        section = SectionType.INDEX
        lines = content.split("\n")
        if (small := self._too_small(section, lines)) is not None:
            return small

        first = int(len(lines) * self.index_min_start)
        header = _first_match(lines, INDEX_HEADERS, start=first, strip=True)
        if header is not None:
            line, pattern, weight = header
            entries = _count(lines, INDEX_ENTRY, line, self.supporting_scan_lines)
            dividers = _count(lines, LETTER_DIVIDER, line, self.supporting_scan_lines)
            matched = [f"Header: {pattern}"]

            confidence = weight
            for minimum, boost, label in ((20, 0.2, "strong"), (10, 0.15, "moderate"), (5, 0.1, "weak")):
                if entries >= minimum:
                    confidence = min(1.0, confidence + boost)
                    matched.append(f"Index entries: {entries} ({label})")
                    break
            if dividers:
                confidence = min(1.0, confidence + (0.1 if dividers >= 5 else 0.05))
                matched.append(f"Letter dividers: {dividers}")

            if weight < 1.0 and entries < 5:
                return HeuristicDetectionResult.not_found(
                    section, f"Index header found but insufficient supporting entries ({entries} < 5)"
                )
            if confidence < self.min_confidence:
                return HeuristicDetectionResult.not_found(
                    section, f"Index patterns found but confidence ({confidence:.0%}) below threshold"
                )
            return HeuristicDetectionResult.found(
                section,
                line,
                confidence,
                matched,
                f"Index detected at line {line} ({line / len(lines):.0%} into document) "
                f"with {entries} entries, {dividers} dividers",
                end_line=len(lines) - 1,
            )

        # No header: require a long run of entry-shaped lines
        run, start = _longest_run(lines, INDEX_ENTRY.search, first, len(lines))
        if run < 30 or start is None:
            return HeuristicDetectionResult.not_found(
                section, f"Insufficient consecutive index entries ({run} < 30)"
            )
        confidence = min(0.8, 0.5 + run / 100)
        return HeuristicDetectionResult.found(
            section,
            start,
            confidence,
            [f"Consecutive index entries: {run} (no header)"],
            f"Index detected by entry density at line {start} with {run} consecutive entries",
            end_line=len(lines) - 1,
        )

    # -------------------------------------------------------------------------
    # Front matter
    # -------------------------------------------------------------------------

    def detect_front_matter_end(self, content: str) -> HeuristicDetectionResult:
        """Find the last line of front matter (boundary_line is inclusive)."""
        section = SectionType.FRONT_MATTER
        lines = content.split("\n")
        if (small := self._too_small(section, lines)) is not None:
            return small

        limit = int(len(lines) * self.front_matter_max_end)
        start = _first_match(lines, MAIN_CONTENT_START, stop=limit)
        if start is not None and start[0] - 1 >= 3:
            content_line, pattern, weight = start
            boundary = content_line - 1
            indicators = self._count_front_matter_indicators(lines, boundary)
            confidence = weight
            matched = [f"Main content start: {pattern}"]
            if indicators >= 3:
                confidence = min(1.0, confidence + 0.15)
            elif indicators >= 1:
                confidence = min(1.0, confidence + 0.1)
            if indicators:
                matched.append(f"Front matter indicators: {indicators}")
            return HeuristicDetectionResult.found(
                section,
                boundary,
                confidence,
                matched,
                f"Front matter end detected at line {boundary} "
                f"based on main content start at line {content_line}",
                end_line=boundary,
            )

        return self._front_matter_by_indicators(lines, limit)

    @staticmethod
    def _count_front_matter_indicators(lines: list[str], last: int) -> int:
        text = "\n".join(lines[: last + 1])
        return sum(1 for pattern, _ in FRONT_MATTER_INDICATORS if pattern.search(text))

    def _front_matter_by_indicators(self, lines: list[str], limit: int) -> HeuristicDetectionResult:
        section = SectionType.FRONT_MATTER
        hits = [
            (index, pattern.pattern, weight)
            for pattern, weight in FRONT_MATTER_INDICATORS
            for index in range(min(limit, len(lines)))
            if pattern.search(lines[index])
        ]
        if len(hits) < 2:
            return HeuristicDetectionResult.not_found(
                section, f"Insufficient front matter indicators found ({len(hits)} < 2)"
            )

        last = max(index for index, _, _ in hits)
        boundary = last
        for index in range(last + 1, min(last + 20, limit, len(lines))):
            stripped = lines[index].strip()
            if stripped.startswith("#"):
                boundary = index - 1
                break
            if not stripped:
                boundary = index
                for following in range(index + 1, min(index + 5, len(lines))):
                    nxt = lines[following].strip()
                    if nxt:
                        if nxt.startswith("#") or nxt.upper().startswith("CHAPTER"):
                            boundary = following - 1
                        break
                break

        if len(hits) >= 4:
            confidence = 0.85
        elif len(hits) >= 3:
            confidence = 0.75
        else:
            confidence = 0.6
        if any(weight >= 1.0 for _, _, weight in hits):
            confidence = min(1.0, confidence + 0.1)

        return HeuristicDetectionResult.found(
            section,
            boundary,
            confidence,
            [f"Line {i}: {p}" for i, p, _ in hits],
            f"Front matter end detected at line {boundary} based on {len(hits)} indicator(s)",
            end_line=boundary,
        )

    # -------------------------------------------------------------------------
    # Table of contents
    # -------------------------------------------------------------------------

    def detect_toc(self, content: str) -> HeuristicDetectionResult:
        """Find the table of contents; boundary_line is its first line."""
        section = SectionType.TABLE_OF_CONTENTS
        lines = content.split("\n")
        if (small := self._too_small(section, lines)) is not None:
            return small

        limit = int(len(lines) * self.toc_max_end)
        header = _first_match(lines, TOC_HEADERS, stop=limit, strip=True)
        if header is not None:
            line, pattern, weight = header
            entries = self._count_toc_entries(lines, line + 1)
            confidence = weight
            matched = [f"Header: {pattern}", f"TOC entries: {entries}"]
            if entries >= 10:
                confidence = min(1.0, confidence + 0.2)
            elif entries >= 5:
                confidence = min(1.0, confidence + 0.15)
            elif entries >= 3:
                confidence = min(1.0, confidence + 0.1)
            elif entries == 0:
                confidence *= 0.7

            # A weak header needs entries; otherwise fall through to density
            if weight >= 1.0 or entries >= 3:
                if confidence < self.min_confidence:
                    return HeuristicDetectionResult.not_found(
                        section, f"TOC header found but confidence ({confidence:.0%}) below threshold"
                    )
                return HeuristicDetectionResult.found(
                    section,
                    line,
                    confidence,
                    matched,
                    f"TOC detected at line {line} with {entries} entries",
                    end_line=self.find_toc_end_line(content, line),
                )

        def is_entry(text: str) -> bool:
            return bool(TOC_ENTRY.search(text) or TOC_SIMPLE_ENTRY.search(text))

        run, start = _longest_run(lines, is_entry, 0, limit, max_blank_gap=2)
        if run < 8 or start is None:
            return HeuristicDetectionResult.not_found(
                section, f"Insufficient consecutive TOC entries ({run} < 8)"
            )
        confidence = min(0.75, 0.5 + run / 50)
        return HeuristicDetectionResult.found(
            section,
            start,
            confidence,
            [f"Consecutive TOC entries: {run} (no header)"],
            f"TOC detected by entry density at line {start} with {run} consecutive entries",
            end_line=self.find_toc_end_line(content, start),
        )

    def _count_toc_entries(self, lines: list[str], start: int) -> int:
        count = 0
        for line in lines[start : start + self.supporting_scan_lines]:
            stripped = line.strip()
            if not stripped:
                continue
            body_start = stripped.startswith(("# Chapter", "## Chapter")) or stripped.upper().startswith(
                "CHAPTER 1"
            )
            if body_start and not _TRAILING_NUMBER.search(stripped):
                break
            if TOC_ENTRY.search(line) or TOC_SIMPLE_ENTRY.search(line):
                count += 1
        return count

    @staticmethod
    def find_toc_end_line(content: str, toc_start_line: int, max_lines: int = 100) -> int:
        """
        Find the last line of a table of contents.

        Stops at three consecutive blank lines, a top-level heading that is
        not the contents header, or a chapter/part heading with no page
        number.
        """
        lines = content.split("\n")
        if toc_start_line >= len(lines):
            return toc_start_line

        last = toc_start_line
        blanks = 0
        for index in range(toc_start_line + 1, min(toc_start_line + max_lines, len(lines))):
            stripped = lines[index].strip()
            if not stripped:
                blanks += 1
                if blanks >= 3:
                    break
                continue
            blanks = 0
            if stripped.startswith("# ") and "contents" not in stripped.lower():
                break
            if stripped.upper().startswith(_CONTENT_START_PREFIXES) and not _TRAILING_NUMBER.search(
                stripped
            ):
                break
            last = index
        return last

    # -------------------------------------------------------------------------
    # Auxiliary lists
    # -------------------------------------------------------------------------

    def detect_auxiliary_lists(self, content: str) -> list[AuxiliaryListInfo]:
        """Find lists of figures, tables, abbreviations and the like in the front of the book."""
        lines = content.split("\n")
        if len(lines) < self.min_document_lines:
            return []

        limit = int(len(lines) * self.auxiliary_lists_max_end)
        results: list[AuxiliaryListInfo] = []
        index = 0
        while index < limit:
            header = lines[index].strip()
            list_type = AuxiliaryListType.from_header(header) if 0 < len(header) <= 60 else None
            if list_type is None:
                index += 1
                continue

            end = self._auxiliary_list_end(lines, index, limit)
            entries = sum(1 for line in lines[index + 1 : end + 1] if _is_list_entry(line))
            weight = 1.0 if header.lstrip("#").strip().lower().startswith("list of") else 0.85
            confidence = weight
            if entries >= 5:
                confidence = min(1.0, confidence + 0.15)
            elif entries >= 2:
                confidence = min(1.0, confidence + 0.1)
            elif entries == 0:
                confidence *= 0.7

            if confidence >= self.min_confidence:
                results.append(
                    AuxiliaryListInfo(
                        type=list_type,
                        start_line=index,
                        end_line=end,
                        confidence=confidence,
                        header_text=header,
                    )
                )
                logger.info(
                    "[auxiliary_lists heuristic] %s at lines %d-%d (%d entries)",
                    list_type.value,
                    index,
                    end,
                    entries,
                )
            index = end + 1
        return results

    @staticmethod
    def _auxiliary_list_end(lines: list[str], start: int, limit: int) -> int:
        last = start
        blanks = 0
        for index in range(start + 1, min(start + 100, limit, len(lines))):
            stripped = lines[index].strip()
            if not stripped:
                blanks += 1
                if blanks >= 3:
                    break
                continue
            blanks = 0
            if stripped.startswith("#") or AuxiliaryListType.from_header(stripped) is not None:
                break
            if stripped.upper().startswith(_CONTENT_START_PREFIXES):
                break
            last = index
        return last

    # -------------------------------------------------------------------------
    # Footnote sections
    # -------------------------------------------------------------------------

    def detect_footnote_sections(self, content: str) -> list[FootnoteSectionInfo]:
        """Find collected note sections: a notes header followed by numbered entries."""
        lines = content.split("\n")
        labels = {
            label.lower(): content_type
            for content_type in FootnoteContentType
            for label in content_type.header_labels
        }
        sections: list[FootnoteSectionInfo] = []
        index = 0
        while index < len(lines):
            header = lines[index].strip().lstrip("#").strip().rstrip(":")
            content_type = labels.get(header.lower()) if header else None
            if content_type is None:
                index += 1
                continue

            end = index
            entries = 0
            for following in range(index + 1, len(lines)):
                stripped = lines[following].strip()
                if _HEADING.match(stripped) or stripped.upper().startswith(_CONTENT_START_PREFIXES):
                    break
                if stripped:
                    end = following
                    if FOOTNOTE_ENTRY.match(stripped):
                        entries += 1

            if entries >= 2:
                confidence = 0.9 if entries >= 5 else 0.75
                sections.append(
                    FootnoteSectionInfo(
                        content_type=content_type,
                        start_line=index,
                        end_line=end,
                        confidence=confidence,
                        header_text=lines[index].strip(),
                    )
                )
            index = end + 1
        return sections


def _is_list_entry(line: str) -> bool:
    stripped = line.strip()
    return bool(
        re.match(r"(Figure|Fig\.|Table|Tab\.|Illustration|Plate|Map|Chart|Graph)\s*\d+", stripped, re.I)
        or re.match(r"[A-Z]{2,}\s*[-–:]\s*[A-Z]", stripped)
        or re.search(r"\.{3,}\s*\d+$", stripped)
        or TOC_SIMPLE_ENTRY.match(stripped)
    )


# =============================================================================
# PATTERN HEURISTICS
# =============================================================================


def find_page_number_lines(lines: list[str], patterns: list[str]) -> list[int]:
    """Indexes of lines that consist solely of a page number."""
    compiled = [re.compile(p) for p in patterns]
    return [
        index
        for index, line in enumerate(lines)
        if line.strip() and any(p.match(line.strip()) for p in compiled)
    ]


_EDGE_NUMBER = re.compile(r"^\d+\s+|\s+\d+$")


def header_key(line: str) -> str:
    return _EDGE_NUMBER.sub("", line.strip()).strip().lower()


def find_running_headers(lines: list[str], min_repeats: int = 3, max_length: int = 80) -> list[str]:
    """
    Lines repeated often enough to be running headers or footers.

    Leading and trailing page numbers are ignored when comparing lines, so
    "12 THE REPUBLIC" and "THE REPUBLIC 13" count as the same header. Headings
    and lines without letters (scene breaks) are never headers.
    """
    counts: Counter[str] = Counter()
    for line in lines:
        stripped = line.strip()
        if not stripped or len(stripped) > max_length or stripped.startswith("#"):
            continue
        key = header_key(stripped)
        if key and any(ch.isalpha() for ch in key):
            counts[key] += 1
    return [key for key, count in counts.items() if count >= min_repeats]


def running_header_lines(lines: list[str], header_keys: list[str]) -> list[int]:
    keys = set(header_keys)
    return [
        index
        for index, line in enumerate(lines)
        if line.strip() and not line.strip().startswith("#") and header_key(line) in keys
    ]


# Styles the heuristic may pick; the rest are too ambiguous without a detector
_HEURISTIC_CITATION_STYLES = (
    CitationStyle.APA,
    CitationStyle.HARVARD,
    CitationStyle.CHICAGO_AUTHOR_DATE,
    CitationStyle.MLA,
    CitationStyle.IEEE,
    CitationStyle.OSCOLA,
)


def detect_citation_style(text: str, min_matches: int = 3) -> tuple[CitationStyle | None, int, float]:
    """
    Pick the citation style with the most matches.

    Returns:
        (style, match count, confidence); style is None below min_matches.
    """
    best: tuple[CitationStyle | None, int] = (None, 0)
    for style in _HEURISTIC_CITATION_STYLES:
        count = len(style.compile().findall(text))
        if count > best[1]:
            best = (style, count)
    style, count = best
    if count < min_matches:
        return None, count, 0.0
    return style, count, min(0.85, 0.55 + 0.03 * count)


def detect_footnote_markers(text: str, min_matches: int = 3) -> tuple[FootnoteMarkerStyle | None, int]:
    """Detect inline footnote markers (superscript digits only; others are too ambiguous)."""
    style = FootnoteMarkerStyle.NUMERIC_SUPERSCRIPT
    count = len(re.findall(style.pattern, text))
    return (style, count) if count >= min_matches else (None, count)
