"""
Layer B: content verification.

Layer A only checks where a boundary sits. This layer reads the lines inside
the proposed region and confirms they look like the section they claim to be:
an index has alphabetised entries with page numbers, a notes section has
numbered notes, and so on. Chapter headings or long narrative prose inside a
region are the strongest sign that a boundary is wrong.

Header vocabularies cover English, Spanish, French, German and Portuguese.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

from bookclean.validation.response import SectionType

logger = logging.getLogger(__name__)


class VerificationFailure(Enum):
    NO_EXPECTED_HEADERS = "no_expected_headers"
    NO_EXPECTED_STRUCTURE = "no_expected_structure"
    CHAPTER_CONTENT_FOUND = "chapter_content_found"
    NARRATIVE_PROSE_FOUND = "narrative_prose_found"
    MAIN_BODY_CONTENT_FOUND = "main_body_content_found"
    INSUFFICIENT_CONTENT = "insufficient_content"
    AMBIGUOUS_PATTERNS = "ambiguous_patterns"


@dataclass(frozen=True)
class ContentVerificationResult:
    section_type: SectionType
    is_valid: bool
    confidence: float
    explanation: str
    matched_patterns: tuple[str, ...] = ()
    failure_reason: VerificationFailure | None = None
    applicable: bool = True

    @classmethod
    def verified(
        cls,
        section_type: SectionType,
        confidence: float,
        matched: list[str],
        explanation: str,
    ) -> ContentVerificationResult:
        return cls(section_type, True, confidence, explanation, tuple(matched))

    @classmethod
    def failed(
        cls, section_type: SectionType, reason: VerificationFailure, explanation: str
    ) -> ContentVerificationResult:
        return cls(section_type, False, 0.0, explanation, failure_reason=reason)

    @classmethod
    def not_applicable(cls, section_type: SectionType) -> ContentVerificationResult:
        return cls(
            section_type,
            True,
            1.0,
            f"Content verification not implemented for {section_type.value}",
            applicable=False,
        )


# =============================================================================
# VOCABULARIES
# =============================================================================

BACK_MATTER_HEADERS = (
    # English
    "NOTES", "ENDNOTES", "FOOTNOTES", "APPENDIX", "APPENDICES", "GLOSSARY",
    "BIBLIOGRAPHY", "REFERENCES", "WORKS CITED", "SOURCES",
    "ABOUT THE AUTHOR", "ABOUT THE AUTHORS",
    "ACKNOWLEDGMENTS", "ACKNOWLEDGEMENTS", "COLOPHON", "AFTERWORD",
    # Spanish
    "NOTAS", "APÉNDICE", "GLOSARIO", "BIBLIOGRAFÍA", "SOBRE EL AUTOR", "AGRADECIMIENTOS",
    # French
    "ANNEXE", "ANNEXES", "GLOSSAIRE", "BIBLIOGRAPHIE", "À PROPOS DE L'AUTEUR", "REMERCIEMENTS",
    # German
    "ANHANG", "GLOSSAR", "LITERATURVERZEICHNIS", "ÜBER DEN AUTOR", "DANKSAGUNG",
    # Portuguese
    "APÊNDICE", "GLOSSÁRIO", "BIBLIOGRAFIA", "SOBRE O AUTOR", "AGRADECIMENTOS",
)  # fmt: skip

BACK_MATTER_HEADER_PATTERNS = tuple(
    re.compile(p, re.MULTILINE)
    for p in (
        r"^#{1,3}\s*(NOTES|Notes|Endnotes|ENDNOTES)",
        r"^#{1,3}\s*(APPENDIX|Appendix|APPENDICES|Appendices)",
        r"^#{1,3}\s*(GLOSSARY|Glossary)",
        r"^#{1,3}\s*(BIBLIOGRAPHY|Bibliography|REFERENCES|References)",
        r"^#{1,3}\s*(ABOUT THE AUTHOR|About the Author)",
        r"^#{1,3}\s*(ACKNOWLEDGMENTS|Acknowledgments|ACKNOWLEDGEMENTS|Acknowledgements)",
        r"^#{1,3}\s*(COLOPHON|Colophon)",
        r"^#{1,3}\s*(AFTERWORD|Afterword)",
    )
)

# Headings that belong to the main body and must never be inside a removed region
CHAPTER_INDICATOR_PATTERNS = tuple(
    re.compile(p, re.MULTILINE | re.IGNORECASE)
    for p in (
        r"^#{1,2}\s*Chapter\s+\d",
        r"^#{1,2}\s*Chapter\s+[IVXLC]+\b",
        r"^#{1,2}\s*\d+\.\s+[A-Z]",
        r"^CHAPTER\s+(ONE|TWO|THREE|FOUR|FIVE|SIX|SEVEN|EIGHT|NINE|TEN)\b",
        r"^Part\s+[IVXLC]+\b",
    )
)

INDEX_HEADERS = (
    "INDEX", "SUBJECT INDEX", "NAME INDEX", "AUTHOR INDEX", "GENERAL INDEX", "COMBINED INDEX",
    "ÍNDICE", "ÍNDICE ALFABÉTICO", "ÍNDICE ONOMÁSTICO",
    "INDEX ALPHABÉTIQUE",
    "REGISTER", "SACHREGISTER", "NAMENSREGISTER",
)  # fmt: skip

# "Algorithm, 23, 45-67" or an indented sub-entry "  sorting, 45"
INDEX_ENTRY_PATTERN = re.compile(r"^\s*[A-Za-z].+,\s*\d+(-\d+)?(,\s*\d+(-\d+)?)*\s*$")
INDEX_LETTER_DIVIDER_PATTERN = re.compile(r"^\s*[A-Z]\s*$")

FRONT_MATTER_INDICATORS = (
    "©", "Copyright", "All rights reserved", "ISBN", "Library of Congress",
    "First published", "First edition", "Published by", "Printed in",
    "Dedication", "For ", "To my ",
    "PREFACE", "Preface", "FOREWORD", "Foreword", "INTRODUCTION", "Introduction",
    "TABLE OF CONTENTS", "CONTENTS",
)  # fmt: skip

TOC_INDICATORS = (
    "TABLE OF CONTENTS", "CONTENTS",
    "TABLA DE CONTENIDOS", "CONTENIDO",
    "TABLE DES MATIÈRES", "SOMMAIRE",
    "INHALTSVERZEICHNIS",
)  # fmt: skip

# "Chapter 1 ...... 15" or "Chapter 1     15"
TOC_ENTRY_PATTERN = re.compile(r"^.+\s{2,}\.{2,}\s*\d+$|^.+\s{3,}\d+$")
TOC_CHAPTER_LISTING_PATTERN = re.compile(r"^.*(Chapter|CHAPTER|Part|PART|\d+\.).*\d+\s*$")

AUXILIARY_LIST_HEADERS = (
    "LIST OF FIGURES", "FIGURES", "ILLUSTRATIONS", "LIST OF ILLUSTRATIONS", "LIST OF PLATES",
    "LISTA DE FIGURAS", "LISTE DES FIGURES", "ABBILDUNGSVERZEICHNIS",
    "LIST OF TABLES", "TABLES", "LISTA DE TABLAS", "LISTE DES TABLEAUX", "TABELLENVERZEICHNIS",
    "LIST OF MAPS", "MAPS", "LIST OF CHARTS", "CHARTS", "LIST OF GRAPHS", "GRAPHS",
    "LIST OF ABBREVIATIONS", "ABBREVIATIONS", "LIST OF SYMBOLS", "SYMBOLS",
    "LIST OF ACRONYMS", "ACRONYMS", "GLOSSARY OF TERMS",
    "LISTA DE ABREVIATURAS", "ABRÉVIATIONS", "ABKÜRZUNGSVERZEICHNIS",
    "LIST OF APPENDICES", "LIST OF CONTRIBUTORS",
)  # fmt: skip

AUXILIARY_LIST_HEADER_PATTERNS = tuple(
    re.compile(p, re.MULTILINE)
    for p in (
        r"^#{1,3}\s*(LIST OF FIGURES|List of Figures|Figures|FIGURES)",
        r"^#{1,3}\s*(LIST OF TABLES|List of Tables|Tables|TABLES)",
        r"^#{1,3}\s*(LIST OF ILLUSTRATIONS|List of Illustrations|Illustrations)",
        r"^#{1,3}\s*(LIST OF MAPS|List of Maps|Maps)",
        r"^#{1,3}\s*(LIST OF ABBREVIATIONS|List of Abbreviations|Abbreviations)",
        r"^#{1,3}\s*(LIST OF SYMBOLS|List of Symbols|Symbols)",
    )
)

AUXILIARY_LIST_ENTRY_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^\s*(Figure|Fig\.)\s*\d+",
        r"^\s*(Table|Tab\.)\s*\d+",
        r"^\s*(Illustration|Plate|Map|Chart|Graph)\s*\d+",
        r"^\s*[A-Z]{2,}\s*[-–:]\s*[A-Z]",
        r"^.+\.{3,}\s*\d+\s*$",
    )
)

FOOTNOTE_HEADERS = (
    "NOTES", "ENDNOTES", "FOOTNOTES", "CHAPTER NOTES", "NOTES TO CHAPTER",
    "NOTES AND REFERENCES", "NOTES AND SOURCES",
    "NOTAS", "NOTAS FINALES", "NOTAS AL PIE",
    "NOTES DE FIN", "NOTES DE BAS DE PAGE",
    "ANMERKUNGEN", "ENDNOTEN", "FUSSNOTEN",
    "NOTAS DE RODAPÉ", "NOTAS FINAIS",
)  # fmt: skip

FOOTNOTE_HEADER_PATTERNS = tuple(
    re.compile(p, re.MULTILINE)
    for p in (
        r"^#{1,3}\s*(NOTES|Notes|Endnotes|ENDNOTES|Footnotes|FOOTNOTES)",
        r"^#{1,3}\s*(Chapter\s+\d+\s+Notes|Notes\s+to\s+Chapter)",
        r"^#{1,3}\s*(Notes\s+and\s+References|Notes\s+and\s+Sources)",
    )
)

FOOTNOTE_ENTRY_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^\s*\d{1,3}[.:]\s+[A-Z]",
        r"^\s*[\[(]\d{1,3}[\])]\s+",
        r"^\s*(Chapter|Ch\.)\s*\d+.*note\s*\d+",
        r"\bp{1,2}\.\s*\d+",
        r"^\s*(See|Cf\.|Compare|Note|Ibid|Op\.\s*cit)",
    )
)

NARRATIVE_PROSE_PATTERNS = (
    re.compile(r"\"[A-Z][^\"]{20,}\""),
    re.compile(r"[A-Z][^.!?]{100,}[.!?]"),
)


def _find_headers(text: str, headers: tuple[str, ...], first_only: bool = False) -> list[str]:
    upper = text.upper()
    found = []
    for header in headers:
        if header.upper() in upper:
            found.append(header)
            if first_only:
                break
    return found


def _has_chapter_content(text: str) -> bool:
    return any(p.search(text) for p in CHAPTER_INDICATOR_PATTERNS)


def _count_matching_lines(lines: list[str], patterns) -> int:
    return sum(1 for pattern in patterns for line in lines if pattern.search(line))


# =============================================================================
# VERIFIER
# =============================================================================


class ContentVerifier:
    """
    Verifies that the text inside a proposed boundary matches its section type.

    Example:
        >>> verifier = ContentVerifier()
        >>> result = verifier.verify(SectionType.INDEX, text, start_line=400)
        >>> result.is_valid, result.confidence
        (True, 0.95)
    """

    min_lines_to_examine = 5
    max_lines_to_examine = 100
    min_matches_for_high_confidence = 3

    def verify(
        self,
        section_type: SectionType,
        content: str,
        start_line: int,
        end_line: int | None = None,
    ) -> ContentVerificationResult:
        """
        Verify one region.

        Args:
            section_type: Expected section type.
            content: The full text the line numbers refer to.
            start_line: First line of the region (0-indexed).
            end_line: Last line (inclusive); defaults to the end of the text.

        Returns:
            Verification result. Section types without a verifier report
            ``applicable=False``.
        """
        lines = content.split("\n")
        last = len(lines) - 1 if end_line is None else min(end_line, len(lines) - 1)

        if not 0 <= start_line < len(lines):
            return ContentVerificationResult.failed(
                section_type,
                VerificationFailure.INSUFFICIENT_CONTENT,
                f"Start line {start_line} is out of bounds",
            )

        examined = min(self.max_lines_to_examine, last - start_line + 1)
        if examined < self.min_lines_to_examine:
            return ContentVerificationResult.failed(
                section_type,
                VerificationFailure.INSUFFICIENT_CONTENT,
                f"Only {examined} lines available, need at least {self.min_lines_to_examine}",
            )

        section_lines = lines[start_line : start_line + examined]

        if section_type is SectionType.BACK_MATTER:
            return self._verify_back_matter(section_lines, start_line)
        if section_type is SectionType.INDEX:
            return self._verify_index(section_lines, start_line)
        if section_type is SectionType.FRONT_MATTER:
            # Chapter headings are searched across the whole range, not just
            # the examined window
            return self._verify_front_matter(section_lines, lines[start_line : last + 1])
        if section_type is SectionType.TABLE_OF_CONTENTS:
            return self._verify_toc(section_lines)
        if section_type is SectionType.AUXILIARY_LISTS:
            return self._verify_auxiliary_lists(section_lines, start_line)
        if section_type is SectionType.FOOTNOTES_ENDNOTES:
            return self._verify_footnotes(section_lines, start_line)
        return ContentVerificationResult.not_applicable(section_type)

    # -------------------------------------------------------------------------
    # Per-section checks
    # -------------------------------------------------------------------------

    def _verify_back_matter(self, lines: list[str], start_line: int) -> ContentVerificationResult:
        section = SectionType.BACK_MATTER
        text = "\n".join(lines)
        headers = _find_headers("\n".join(lines[:30]), BACK_MATTER_HEADERS)
        matched = [f"Markdown header: {p.pattern}" for p in BACK_MATTER_HEADER_PATTERNS if p.search(text)]
        matched.extend(f"Header: {h}" for h in headers)
        chapter_hits = [p.pattern for p in CHAPTER_INDICATOR_PATTERNS if p.search(text)]

        if chapter_hits and not headers:
            return self._fail(
                section,
                start_line,
                VerificationFailure.CHAPTER_CONTENT_FOUND,
                f"Chapter indicators found ({len(chapter_hits)}) but no back matter headers; "
                "this appears to be main body content",
            )
        if not headers and not matched:
            return self._fail(
                section,
                start_line,
                VerificationFailure.NO_EXPECTED_HEADERS,
                "No back matter headers or patterns found in first 30 lines",
            )

        total = len(headers) + len(matched)
        if total >= self.min_matches_for_high_confidence:
            confidence = 0.9
        elif total >= 2:
            confidence = 0.75
        else:
            confidence = 0.6
        if chapter_hits:
            confidence *= 0.7
            matched.append(f"Warning: {len(chapter_hits)} chapter indicator(s) also found")

        return self._pass(
            section,
            start_line,
            confidence,
            matched,
            f"Back matter verified: {len(headers)} header(s), {len(matched)} pattern match(es)",
        )

    def _verify_index(self, lines: list[str], start_line: int) -> ContentVerificationResult:
        section = SectionType.INDEX
        matched = []
        header = _find_headers("\n".join(lines[:10]), INDEX_HEADERS, first_only=True)
        if header:
            matched.append(f"Header: {header[0]}")
        entries = sum(1 for line in lines if INDEX_ENTRY_PATTERN.match(line))
        dividers = sum(1 for line in lines if INDEX_LETTER_DIVIDER_PATTERN.match(line))
        if entries:
            matched.append(f"Index entries: {entries}")
        if dividers:
            matched.append(f"Letter dividers: {dividers}")

        if _has_chapter_content("\n".join(lines)) and not header and entries < 5:
            return self._fail(
                section,
                start_line,
                VerificationFailure.CHAPTER_CONTENT_FOUND,
                "Chapter content found but index patterns are weak",
            )
        if not header and entries < 10:
            return self._fail(
                section,
                start_line,
                VerificationFailure.NO_EXPECTED_HEADERS,
                "No INDEX header and fewer than 10 index-style entries found",
            )

        if header and entries >= 20:
            confidence = 0.95
        elif header and entries >= 10:
            confidence = 0.85
        elif entries >= 30:
            confidence = 0.75
        else:
            confidence = 0.65

        return self._pass(
            section,
            start_line,
            confidence,
            matched,
            f"Index verified: header={bool(header)}, entries={entries}, dividers={dividers}",
        )

    def _verify_front_matter(
        self, lines: list[str], full_range: list[str]
    ) -> ContentVerificationResult:
        section = SectionType.FRONT_MATTER
        text = "\n".join(lines)
        lowered = text.lower()
        matched = [f"Indicator: {i}" for i in FRONT_MATTER_INDICATORS if i in text]
        indicator_count = len(matched)

        has_copyright = "©" in text or "copyright" in lowered or "all rights reserved" in lowered
        has_isbn = "ISBN" in text
        if has_copyright:
            matched.append("Copyright notice found")
        if has_isbn:
            matched.append("ISBN found")

        full_text = "\n".join(full_range)
        chapters = [m.group(0) for p in CHAPTER_INDICATOR_PATTERNS for m in p.finditer(full_text)]
        if chapters:
            return self._fail(
                section,
                0,
                VerificationFailure.CHAPTER_CONTENT_FOUND,
                f"Chapter content found in front matter section: [{', '.join(chapters[:3])}]; "
                "removal would delete core content",
            )

        if has_copyright and has_isbn:
            confidence = 0.9
        elif has_copyright or indicator_count >= 3:
            confidence = 0.8
        elif indicator_count >= 1:
            confidence = 0.6
        else:
            confidence = 0.4

        return self._pass(
            section,
            0,
            confidence,
            matched,
            f"Front matter verified: {indicator_count} indicators, "
            f"copyright={has_copyright}, ISBN={has_isbn}",
        )

    def _verify_toc(self, lines: list[str]) -> ContentVerificationResult:
        section = SectionType.TABLE_OF_CONTENTS
        matched = []
        header = _find_headers("\n".join(lines), TOC_INDICATORS, first_only=True)
        if header:
            matched.append(f"Header: {header[0]}")
        entries = _count_matching_lines(lines, (TOC_ENTRY_PATTERN, TOC_CHAPTER_LISTING_PATTERN))
        if entries:
            matched.append(f"TOC entries: {entries}")

        if not header and entries < 5:
            return self._fail(
                section,
                0,
                VerificationFailure.NO_EXPECTED_HEADERS,
                "No TOC header and fewer than 5 TOC-style entries found",
            )

        if header and entries >= 10:
            confidence = 0.95
        elif header and entries >= 5:
            confidence = 0.85
        elif entries >= 10:
            confidence = 0.7
        else:
            confidence = 0.6

        return self._pass(
            section, 0, confidence, matched, f"TOC verified: header={bool(header)}, entries={entries}"
        )

    def _verify_auxiliary_lists(
        self, lines: list[str], start_line: int
    ) -> ContentVerificationResult:
        section = SectionType.AUXILIARY_LISTS
        text = "\n".join(lines)
        matched = []
        found = _find_headers("\n".join(lines[:10]), AUXILIARY_LIST_HEADERS, first_only=True)
        header = found[0] if found else None
        if header:
            matched.append(f"Header: {header}")
        for pattern in AUXILIARY_LIST_HEADER_PATTERNS:
            if pattern.search(text):
                matched.append(f"Markdown header: {pattern.pattern}")
                header = header or "Markdown pattern"

        entries = _count_matching_lines(lines, AUXILIARY_LIST_ENTRY_PATTERNS)
        if entries:
            matched.append(f"List entries: {entries}")
        has_chapters = _has_chapter_content(text)
        narrative_lines = sum(
            1
            for line in lines
            if len(line.strip()) > 100 and "..." not in line and "\t" not in line
        )

        if has_chapters and header is None and entries < 3:
            return self._fail(
                section,
                start_line,
                VerificationFailure.CHAPTER_CONTENT_FOUND,
                "Chapter indicators found but no auxiliary list headers or entries",
            )
        if narrative_lines > 5 and header is None:
            return self._fail(
                section,
                start_line,
                VerificationFailure.NARRATIVE_PROSE_FOUND,
                f"Found {narrative_lines} lines of narrative prose but no auxiliary list header",
            )
        if header is None and entries < 5:
            return self._fail(
                section,
                start_line,
                VerificationFailure.NO_EXPECTED_HEADERS,
                f"No auxiliary list header found and only {entries} list-style entries",
            )

        confidence = self._list_confidence(header is not None, entries)
        if has_chapters:
            confidence *= 0.7
            matched.append("Warning: Chapter indicators also found")
        return self._pass(
            section,
            start_line,
            confidence,
            matched,
            f"Auxiliary list verified: header={header or 'none'}, entries={entries}",
        )

    def _verify_footnotes(self, lines: list[str], start_line: int) -> ContentVerificationResult:
        section = SectionType.FOOTNOTES_ENDNOTES
        text = "\n".join(lines)
        matched = []
        found = _find_headers("\n".join(lines[:10]), FOOTNOTE_HEADERS, first_only=True)
        header = found[0] if found else None
        if header:
            matched.append(f"Header: {header}")
        for pattern in FOOTNOTE_HEADER_PATTERNS:
            if pattern.search(text):
                matched.append(f"Markdown header: {pattern.pattern}")
                header = header or "Markdown pattern"

        entries = _count_matching_lines(lines, FOOTNOTE_ENTRY_PATTERNS)
        if entries:
            matched.append(f"Footnote entries: {entries}")
        has_chapters = _has_chapter_content(text)
        narrative = sum(len(p.findall(text)) for p in NARRATIVE_PROSE_PATTERNS)

        if has_chapters and header is None:
            return self._fail(
                section,
                start_line,
                VerificationFailure.CHAPTER_CONTENT_FOUND,
                "Chapter indicators found but no footnote/endnote headers",
            )
        if narrative > 3 and header is None and entries < 5:
            return self._fail(
                section,
                start_line,
                VerificationFailure.NARRATIVE_PROSE_FOUND,
                f"Found {narrative} narrative prose indicators but insufficient footnote patterns",
            )
        if header is None and entries < 5:
            return self._fail(
                section,
                start_line,
                VerificationFailure.NO_EXPECTED_HEADERS,
                f"No footnote/endnote header found and only {entries} footnote-style entries",
            )

        confidence = self._list_confidence(header is not None, entries)
        if has_chapters:
            confidence *= 0.7
            matched.append("Warning: Chapter indicators also found")
        return self._pass(
            section,
            start_line,
            confidence,
            matched,
            f"Footnotes/endnotes verified: header={header or 'none'}, entries={entries}",
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _list_confidence(has_header: bool, entries: int) -> float:
        if has_header and entries >= 5:
            return 0.9
        if has_header and entries >= 2:
            return 0.8
        if entries >= 10:
            return 0.7
        if has_header:
            return 0.65
        return 0.5

    @staticmethod
    def _fail(
        section: SectionType, start_line: int, reason: VerificationFailure, explanation: str
    ) -> ContentVerificationResult:
        logger.warning(
            "[%s verification] FAILED at line %d: %s", section.value, start_line, explanation
        )
        return ContentVerificationResult.failed(section, reason, explanation)

    @staticmethod
    def _pass(
        section: SectionType,
        start_line: int,
        confidence: float,
        matched: list[str],
        explanation: str,
    ) -> ContentVerificationResult:
        logger.info("[%s verification] PASSED at line %d: %s", section.value, start_line, explanation)
        return ContentVerificationResult.verified(section, confidence, matched, explanation)


@dataclass
class VerificationStats:
    total: int = 0
    passed: int = 0
    failed: int = 0
    failures_by_reason: Counter = field(default_factory=Counter)
    failures_by_section: Counter = field(default_factory=Counter)

    def record(self, result: ContentVerificationResult) -> None:
        self.total += 1
        if result.is_valid:
            self.passed += 1
            return
        self.failed += 1
        if result.failure_reason is not None:
            self.failures_by_reason[result.failure_reason] += 1
        self.failures_by_section[result.section_type] += 1

    @property
    def pass_rate(self) -> float:
        return self.passed / self.total if self.total else 1.0

    def summary(self) -> str:
        return (
            f"Content verification: {self.total} total, "
            f"{self.passed} passed ({self.pass_rate:.0%}), {self.failed} failed"
        )
