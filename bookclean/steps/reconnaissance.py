"""
Step 1: analyze structure.

Measures the document, classifies its content (through the detector, or
from the declared content type), locates structural regions and seeds the
pattern cache. The resulting StructureHints are frozen and shared by every
later step.
"""

from __future__ import annotations

import logging
import re
from dataclasses import fields
from statistics import median, pvariance
from typing import Any

from bookclean.content import ContentPrimaryType, ContentType, ContentTypeFlags
from bookclean.detection import DetectionKind
from bookclean.hints import (
    ConfidenceFactor,
    ConfidenceFactorCategory,
    ContentCharacteristics,
    DetectedRegion,
    DetectionEvidence,
    DetectionMethod,
    EvidenceType,
    RegionType,
    StructureHints,
    StructureWarning,
    WarningCategory,
    WarningSeverity,
    flag_overlaps,
)
from bookclean.models import CleaningStep, LineRange
from bookclean.patterns import DEFAULT_PAGE_NUMBER_PATTERNS, DetectedPatterns
from bookclean.steps.base import StepCollaborator, StepContext, StepOutcome, try_detect
from bookclean.text import count_words, detect_chapter_headings, detect_part_headings, iter_blocks
from bookclean.validation import (
    HeuristicBoundaryDetector,
    HeuristicDetectionResult,
    detect_citation_style,
    detect_footnote_markers,
    find_page_number_lines,
    find_running_headers,
)

logger = logging.getLogger(__name__)

_PRIMARY_TO_CONTENT_TYPE: dict[ContentPrimaryType, ContentType] = {
    ContentPrimaryType.PROSE: ContentType.PROSE_NON_FICTION,
    ContentPrimaryType.POETRY: ContentType.POETRY,
    ContentPrimaryType.DIALOGUE: ContentType.DRAMA_SCREENPLAY,
    ContentPrimaryType.TECHNICAL: ContentType.SCIENTIFIC_TECHNICAL,
    ContentPrimaryType.ACADEMIC: ContentType.ACADEMIC,
    ContentPrimaryType.LEGAL: ContentType.LEGAL,
    ContentPrimaryType.CHILDRENS: ContentType.CHILDRENS,
    ContentPrimaryType.RELIGIOUS: ContentType.RELIGIOUS_SACRED,
    ContentPrimaryType.MIXED: ContentType.MIXED,
}

_SENTENCE_END = re.compile(r"[.!?][\"'”’)]?(?:\s|$)")
_DIALOGUE_LINE = re.compile(r"^\s*[\"“‘'—]|[\"”]\s*(?:said|asked|replied|cried)\b", re.IGNORECASE)
_MATH = re.compile(r"[∑∫√∞≤≥≠∂∆]|\$[^$\n]+\$|\\frac|\\sum")

_PATTERN_FIELDS = frozenset(f.name for f in fields(DetectedPatterns))

MIN_PAGE_NUMBER_LINES = 3


def measure_characteristics(text: str) -> ContentCharacteristics:
    """Compute the measured properties of a text."""
    lines = text.split("\n")
    nonblank = [line for line in lines if line.strip()]
    lengths = [len(line.strip()) for line in nonblank]
    words = count_words(text)
    sentences = len(_SENTENCE_END.findall(text)) or 1

    blocks = [b for b in iter_blocks(text) if b.kind not in ("blank", "heading")]
    kinds = {b.kind for b in blocks}
    paragraph_words = [b.word_count for b in blocks if b.kind == "prose"]

    dialogue = sum(1 for line in nonblank if _DIALOGUE_LINE.search(line))
    dialogue_percentage = dialogue / len(nonblank) if nonblank else 0.0
    hyphenated = sum(1 for line in nonblank if re.search(r"\w-$", line.rstrip()))

    return ContentCharacteristics(
        average_sentence_length=words / sentences,
        average_paragraph_length=(
            sum(paragraph_words) / len(paragraph_words) if paragraph_words else 0.0
        ),
        has_significant_dialogue=dialogue_percentage >= 0.2,
        dialogue_percentage=dialogue_percentage,
        has_lists="list" in kinds,
        has_tables="table" in kinds,
        has_math_notation=bool(_MATH.search(text)),
        has_verse_structure="verse" in kinds,
        has_consistent_paragraph_breaks=any(not line.strip() for line in lines),
        median_line_length=int(median(lengths)) if lengths else 0,
        line_length_variance=pvariance(lengths) if len(lengths) > 1 else 0.0,
        appears_to_be_ocr=bool(nonblank) and hyphenated / len(nonblank) > 0.01,
    )


class AnalyzeStructureStep(StepCollaborator):
    """Reconnaissance: one-shot analysis producing StructureHints."""

    step = CleaningStep.ANALYZE_STRUCTURE

    def __init__(self, heuristics: HeuristicBoundaryDetector | None = None):
        self.heuristics = heuristics or HeuristicBoundaryDetector()

    def run(self, ctx: StepContext) -> StepOutcome:
        text = ctx.text
        lines = ctx.lines
        outcome = StepOutcome(text=text)

        flags, flags_from_detector = self._classify(ctx, outcome)
        outcome.content_flags = flags

        structure = try_detect(ctx, outcome, DetectionKind.STRUCTURE)
        if structure is not None:
            regions = list(structure.regions)
            detector_patterns = self._known_patterns(structure.patterns, outcome)
            outcome.log(f"Detector found {len(regions)} region(s)")
        else:
            regions = self._heuristic_regions(text)
            detector_patterns = {}
            outcome.log(f"Heuristics found {len(regions)} region(s)")
        regions = flag_overlaps(regions)

        updates = self._local_patterns(text, lines)
        updates.update(self._boundary_patterns(regions))
        updates.update(detector_patterns)
        updates["content_type_flags"] = flags
        updates["document_id"] = ctx.view.document_id
        outcome.pattern_updates = updates

        patterns = ctx.patterns.copy()
        patterns.update(**updates)

        characteristics = measure_characteristics(text)
        user_type = ctx.config.content_type
        if flags.confidence == 0:
            detected_type = ContentType.AUTO_DETECT
        elif flags_from_detector:
            detected_type = _PRIMARY_TO_CONTENT_TYPE[flags.primary_type]
        else:
            detected_type = user_type
        factors = self._confidence_factors(
            regions, patterns, flags, characteristics, user_type, detected_type
        )
        overall = min(1.0, max(0.0, 0.5 + sum(f.impact for f in factors)))
        if structure is not None:
            overall = (overall + structure.confidence) / 2
        patterns.confidence = overall
        outcome.pattern_updates["confidence"] = overall

        warnings = self._warnings(lines, regions, overall, user_type, detected_type, characteristics)
        hints = StructureHints(
            document_id=ctx.view.document_id,
            detected_content_type=detected_type,
            content_type_confidence=flags.confidence,
            total_lines=len(lines),
            total_words=count_words(text),
            total_characters=len(text),
            patterns=patterns,
            user_selected_content_type=user_type,
            regions=tuple(regions),
            core_content_range=self._core_range(regions, len(lines)),
            content_characteristics=characteristics,
            overall_confidence=overall,
            confidence_factors=tuple(factors),
            ready_for_cleaning=not any(w.severity is WarningSeverity.CRITICAL for w in warnings),
            warnings=tuple(warnings),
        )
        outcome.hints = hints
        outcome.confidence = overall
        outcome.warnings.extend(w.message for w in warnings if w.severity is not WarningSeverity.INFO)
        outcome.log(
            f"Structure analysed: {hints.total_lines} lines, {hints.total_words} words, "
            f"confidence {overall:.2f} ({'detector' if flags_from_detector else 'local'} content type)"
        )
        logger.info(
            "Analysed %d lines, %d regions, overall confidence %.2f",
            hints.total_lines,
            len(regions),
            overall,
        )
        return outcome

    # -------------------------------------------------------------------------
    # Content type
    # -------------------------------------------------------------------------

    def _classify(self, ctx: StepContext, outcome: StepOutcome) -> tuple[ContentTypeFlags, bool]:
        result = try_detect(ctx, outcome, DetectionKind.CONTENT_TYPE)
        if result is not None and isinstance(result.payload, ContentTypeFlags):
            return result.payload, True
        if result is not None:
            outcome.warnings.append("Content-type detection returned no flags")

        declared = ContentTypeFlags.from_content_type(ctx.config.content_type)
        if declared is not None:
            outcome.log(f"Using declared content type {ctx.config.content_type.value}")
            return declared, False
        return ContentTypeFlags.UNKNOWN, False

    # -------------------------------------------------------------------------
    # Regions
    # -------------------------------------------------------------------------

    def _heuristic_regions(self, text: str) -> list[DetectedRegion]:
        n = len(text.split("\n"))
        found: list[tuple[RegionType, HeuristicDetectionResult]] = [
            (RegionType.FRONT_MATTER, self.heuristics.detect_front_matter_end(text)),
            (RegionType.TABLE_OF_CONTENTS, self.heuristics.detect_toc(text)),
            (RegionType.INDEX, self.heuristics.detect_index(text)),
            (RegionType.BACK_MATTER, self.heuristics.detect_back_matter(text)),
        ]
        regions = []
        for region_type, result in found:
            if not result.detected or result.boundary_line is None:
                continue
            if region_type is RegionType.FRONT_MATTER:
                start, end = 0, result.boundary_line
            else:
                start = result.boundary_line
                end = result.end_line if result.end_line is not None else n - 1
            if start > end:
                continue
            regions.append(
                DetectedRegion(
                    type=region_type,
                    line_range=LineRange.from_zero_based(start, end),
                    confidence=result.confidence,
                    detection_method=DetectionMethod.HEURISTIC,
                    evidence=tuple(
                        DetectionEvidence(EvidenceType.HEADER_TEXT, matched, result.confidence)
                        for matched in result.matched_patterns
                    ),
                )
            )
        for info in self.heuristics.detect_auxiliary_lists(text):
            region_type = {
                "table": RegionType.LIST_OF_TABLES,
                "reference": RegionType.LIST_OF_ABBREVIATIONS,
            }.get(info.type.category.value, RegionType.LIST_OF_FIGURES)
            regions.append(
                DetectedRegion(
                    type=region_type,
                    line_range=LineRange.from_zero_based(info.start_line, info.end_line),
                    confidence=info.confidence,
                    detection_method=DetectionMethod.HEURISTIC,
                )
            )
        return regions

    @staticmethod
    def _boundary_patterns(regions: list[DetectedRegion]) -> dict[str, Any]:
        updates: dict[str, Any] = {}

        def best(*types: RegionType) -> DetectedRegion | None:
            candidates = [r for r in regions if r.type in types]
            return max(candidates, key=lambda r: r.confidence) if candidates else None

        front = best(RegionType.FRONT_MATTER, RegionType.TITLE_PAGE, RegionType.COPYRIGHT_PAGE)
        if front is not None:
            updates["front_matter_end_line"] = front.line_range.end - 1
            updates["front_matter_confidence"] = front.confidence
        toc = best(RegionType.TABLE_OF_CONTENTS)
        if toc is not None:
            updates["toc_start_line"], updates["toc_end_line"] = toc.line_range.to_zero_based()
            updates["toc_confidence"] = toc.confidence
        index = best(RegionType.INDEX)
        if index is not None:
            updates["index_start_line"], updates["index_end_line"] = index.line_range.to_zero_based()
            updates["index_confidence"] = index.confidence
        back = best(RegionType.BACK_MATTER, RegionType.APPENDIX, RegionType.BIBLIOGRAPHY)
        if back is not None:
            start, end = back.line_range.to_zero_based()
            updates.update(
                back_matter_start_line=start,
                back_matter_end_line=end,
                back_matter_type=back.type.value,
                back_matter_confidence=back.confidence,
            )
        return updates

    @staticmethod
    def _known_patterns(proposed: Any, outcome: StepOutcome) -> dict[str, Any]:
        known = {key: value for key, value in dict(proposed).items() if key in _PATTERN_FIELDS}
        ignored = set(proposed) - set(known)
        if ignored:
            outcome.warnings.append(f"Ignored unknown pattern fields: {sorted(ignored)}")
        return known

    def _local_patterns(self, text: str, lines: list[str]) -> dict[str, Any]:
        """Patterns any later step can reuse, found without the detector."""
        updates: dict[str, Any] = {}

        page_patterns = [
            p
            for p in DEFAULT_PAGE_NUMBER_PATTERNS
            if len(find_page_number_lines(lines, [p])) >= MIN_PAGE_NUMBER_LINES
        ]
        if page_patterns:
            updates["page_number_patterns"] = page_patterns
        headers = find_running_headers(lines)
        if headers:
            updates["header_patterns"] = [re.escape(key) for key in headers]

        style, count, confidence = detect_citation_style(text)
        if style is not None:
            updates.update(
                citation_style=style,
                citation_patterns=[style.primary_pattern],
                citation_count=count,
                citation_samples=[m.group(0) for m in style.compile().finditer(text)][:5],
                citation_confidence=confidence,
            )
        marker_style, marker_count = detect_footnote_markers(text)
        if marker_style is not None:
            updates.update(
                footnote_marker_style=marker_style,
                footnote_marker_pattern=marker_style.pattern,
                footnote_marker_count=marker_count,
            )
        sections = self.heuristics.detect_footnote_sections(text)
        if sections:
            updates["footnote_sections"] = sections
            updates["footnote_confidence"] = max(s.confidence for s in sections)
        auxiliary = self.heuristics.detect_auxiliary_lists(text)
        if auxiliary:
            updates["auxiliary_lists"] = auxiliary
            updates["auxiliary_list_confidence"] = max(a.confidence for a in auxiliary)

        chapters = detect_chapter_headings(lines)
        if chapters:
            updates["chapter_start_lines"] = [c.line_index for c in chapters]
            updates["chapter_titles"] = [c.title for c in chapters]
            updates["chapter_confidence"] = 0.7
        parts = detect_part_headings(lines)
        if parts:
            updates.update(
                has_parts=True,
                part_start_lines=[p.line_index for p in parts],
                part_titles=[p.title for p in parts],
            )
        return updates

    # -------------------------------------------------------------------------
    # Confidence and warnings
    # -------------------------------------------------------------------------

    @staticmethod
    def _confidence_factors(
        regions: list[DetectedRegion],
        patterns: DetectedPatterns,
        flags: ContentTypeFlags,
        characteristics: ContentCharacteristics,
        user_type: ContentType,
        detected_type: ContentType,
    ) -> list[ConfidenceFactor]:
        factors = []
        if regions:
            factors.append(
                ConfidenceFactor(
                    "regions_found",
                    f"{len(regions)} structural region(s) identified",
                    min(0.2, 0.05 * len(regions)),
                    ConfidenceFactorCategory.STRUCTURE_CLARITY,
                )
            )
        if patterns.chapter_count >= 2:
            factors.append(
                ConfidenceFactor(
                    "chapters_found",
                    f"{patterns.chapter_count} chapter headings",
                    0.1,
                    ConfidenceFactorCategory.PATTERN_CONSISTENCY,
                )
            )
        if flags.confidence >= 0.7:
            factors.append(
                ConfidenceFactor(
                    "content_type_known",
                    f"Content classified as {flags.summary}",
                    0.1,
                    ConfidenceFactorCategory.CONTENT_TYPE_MATCH,
                )
            )
        if user_type not in (ContentType.AUTO_DETECT, detected_type) and detected_type is not ContentType.AUTO_DETECT:
            factors.append(
                ConfidenceFactor(
                    "content_type_mismatch",
                    f"Declared {user_type.value}, detected {detected_type.value}",
                    -0.1,
                    ConfidenceFactorCategory.CONFLICTING_SIGNALS,
                )
            )
        overlaps = sum(1 for r in regions if r.has_overlap)
        if overlaps:
            factors.append(
                ConfidenceFactor(
                    "overlapping_regions",
                    f"{overlaps} region(s) overlap another",
                    -0.05 * min(overlaps, 4),
                    ConfidenceFactorCategory.AMBIGUITY,
                )
            )
        if characteristics.appears_to_be_ocr:
            factors.append(
                ConfidenceFactor(
                    "ocr_artifacts",
                    "Frequent end-of-line hyphenation suggests raw OCR",
                    -0.05,
                    ConfidenceFactorCategory.DOCUMENT_QUALITY,
                )
            )
        return factors

    @staticmethod
    def _warnings(
        lines: list[str],
        regions: list[DetectedRegion],
        overall: float,
        user_type: ContentType,
        detected_type: ContentType,
        characteristics: ContentCharacteristics,
    ) -> list[StructureWarning]:
        warnings = []
        if not any(line.strip() for line in lines):
            warnings.append(
                StructureWarning(
                    WarningSeverity.CRITICAL,
                    WarningCategory.UNUSUAL_STRUCTURE,
                    "Document is empty",
                    suggested_action="Check the OCR output",
                )
            )
        for region in regions:
            if region.has_overlap:
                warnings.append(
                    StructureWarning(
                        WarningSeverity.WARNING,
                        WarningCategory.OVERLAPPING_DETECTION,
                        f"{region.type.value} at lines {region.line_range} overlaps another region",
                        affected_range=region.line_range,
                    )
                )
        if overall < 0.5:
            warnings.append(
                StructureWarning(
                    WarningSeverity.CAUTION,
                    WarningCategory.LOW_CONFIDENCE,
                    f"Low structure confidence ({overall:.2f})",
                    suggested_action="Review removals before use",
                )
            )
        if user_type not in (ContentType.AUTO_DETECT, detected_type) and detected_type is not ContentType.AUTO_DETECT:
            warnings.append(
                StructureWarning(
                    WarningSeverity.CAUTION,
                    WarningCategory.CONTENT_TYPE_MISMATCH,
                    f"Declared content type {user_type.value} but detected {detected_type.value}",
                )
            )
        if characteristics.appears_to_be_ocr:
            warnings.append(
                StructureWarning(
                    WarningSeverity.INFO,
                    WarningCategory.POOR_OCR_QUALITY,
                    "Text shows raw OCR line breaks",
                )
            )
        return warnings

    @staticmethod
    def _core_range(regions: list[DetectedRegion], line_count: int) -> LineRange | None:
        if line_count == 0:
            return None
        start, end = 1, line_count
        for region in regions:
            if region.type.is_typically_front_matter:
                start = max(start, region.line_range.end + 1)
            elif region.type.is_typically_back_matter:
                end = min(end, region.line_range.start - 1)
        return LineRange(start, end) if start <= end else None
