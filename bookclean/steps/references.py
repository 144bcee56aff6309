"""
Steps 9-11: auxiliary lists, citations, footnotes and endnotes.

Auxiliary lists and note sections are whole-line regions and go through the
same region validation as the structural steps. Citations and footnote
markers are inline: their patterns are validated as a whole (well-formed and
bounded, matching often enough, agreeing with the local heuristic) and each
run of affected lines is recorded as one inline removal, which counts the
stripped words but no removed lines.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from bookclean.config import ThresholdCategory
from bookclean.context import FlaggedContent, RemovalRecord
from bookclean.detection import DetectionKind
from bookclean.models import CleaningStep, FlagReason, LineRange, RemovalType
from bookclean.patterns import (
    AuxiliaryListInfo,
    CitationStyle,
    FootnoteContentType,
    FootnoteMarkerStyle,
    FootnoteSectionInfo,
)
from bookclean.steps.base import (
    SECTION_REGION_TYPES,
    RegionProposal,
    RegionReview,
    RegionValidator,
    StepCollaborator,
    StepContext,
    StepOutcome,
    clamp_range,
    record_review,
    try_detect,
)
from bookclean.steps.page_elements import compile_line_patterns
from bookclean.text import count_words, group_consecutive, remove_line_ranges
from bookclean.text.structure import code_block_lines
from bookclean.validation import (
    HeuristicBoundaryDetector,
    HeuristicDetectionResult,
    LayerVerdict,
    SectionType,
    ValidationDecision,
    decide,
    detect_citation_style,
    detect_footnote_markers,
)

logger = logging.getLogger(__name__)

MIN_INLINE_MATCHES = 3
# Inline patterns removing more than this share of the words are rejected
MAX_INLINE_WORD_SHARE = 0.10

_SPACE_BEFORE_PUNCTUATION = re.compile(r"[ \t]+([.,;:!?])")
_MULTIPLE_SPACES = re.compile(r"(?<=\S)[ \t]{2,}")


# =============================================================================
# INLINE PATTERN REMOVAL
# =============================================================================


@dataclass
class InlineRemoval:
    """Result of stripping inline patterns from a text, line by line."""

    lines: list[str]
    match_count: int = 0
    words_removed: dict[int, int] = field(default_factory=dict)

    @property
    def affected_lines(self) -> list[int]:
        return sorted(self.words_removed)

    @property
    def total_words_removed(self) -> int:
        return sum(self.words_removed.values())


def strip_inline_patterns(
    lines: list[str], compiled: list[re.Pattern[str]], skip: Iterable[int] = ()
) -> InlineRemoval:
    """
    Remove every match of the patterns, leaving line structure intact.

    Lines in ``skip`` (code, regions removed by the same step) are untouched.
    """
    skipped = set(skip)
    result = InlineRemoval(lines=list(lines))
    for index, line in enumerate(lines):
        if index in skipped or not line.strip():
            continue
        cleaned = line
        for pattern in compiled:
            cleaned, count = pattern.subn("", cleaned)
            result.match_count += count
        if cleaned == line:
            continue
        cleaned = _SPACE_BEFORE_PUNCTUATION.sub(r"\1", cleaned)
        cleaned = _MULTIPLE_SPACES.sub(" ", cleaned)
        result.lines[index] = cleaned
        result.words_removed[index] = count_words(line) - count_words(cleaned)
    return result


def inline_layer_a(
    removal: InlineRemoval, compiled: list[re.Pattern[str]], total_words: int
) -> LayerVerdict:
    """Well-formed patterns whose removal stays bounded."""
    if not compiled:
        return LayerVerdict.REJECTED
    limit = max(MIN_INLINE_MATCHES, int(total_words * MAX_INLINE_WORD_SHARE))
    return LayerVerdict.of(removal.total_words_removed <= limit)


def inline_layer_b(removal: InlineRemoval) -> LayerVerdict:
    """The patterns actually occur in the text often enough."""
    return LayerVerdict.of(removal.match_count >= MIN_INLINE_MATCHES)


def record_inline(
    ctx: StepContext,
    outcome: StepOutcome,
    removal: InlineRemoval,
    removal_type: RemovalType,
    decision: ValidationDecision,
    description: str,
) -> None:
    for start, end in group_consecutive(removal.affected_lines):
        outcome.removals.append(
            RemovalRecord(
                step=ctx.step,
                removal_type=removal_type,
                line_range=LineRange.from_zero_based(start, end),
                word_count=sum(removal.words_removed.get(i, 0) for i in range(start, end + 1)),
                confidence=decision.confidence,
                validation_method=decision.method,
                description=description,
                inline=True,
            )
        )


def flag_inline(
    ctx: StepContext,
    outcome: StepOutcome,
    removal: InlineRemoval,
    decision: ValidationDecision,
    what: str,
) -> None:
    affected = removal.affected_lines
    first, last = (affected[0], affected[-1]) if affected else (0, None)
    line_range = clamp_range(first, last, ctx.line_count)
    outcome.flags.append(
        FlaggedContent(
            step=ctx.step,
            line_range=line_range,
            reason=decision.flag_reason or FlagReason.AMBIGUOUS_REMOVAL,
            confidence=decision.confidence,
            description=f"{what}: {decision.explanation}",
            suggested_action=f"Review the {removal.match_count} {what.lower()} match(es)",
        )
    )
    outcome.log(f"Flagged {what.lower()} ({removal.match_count} matches): {decision.explanation}")


# =============================================================================
# STEP 9: AUXILIARY LISTS
# =============================================================================


def _nearest_heuristic(
    section: SectionType,
    found: list[AuxiliaryListInfo] | list[FootnoteSectionInfo],
    anchor: int | None,
) -> HeuristicDetectionResult:
    """Layer C answer for one proposal: the heuristic region closest to it."""
    if not found or anchor is None:
        return HeuristicDetectionResult.not_found(section, f"No {section.value} found heuristically")
    info = min(found, key=lambda item: abs(item.start_line - anchor))
    return HeuristicDetectionResult.found(
        section,
        info.start_line,
        info.confidence,
        [info.header_text],
        f"{info.header_text!r} at lines {info.start_line}-{info.end_line}",
        end_line=info.end_line,
    )


def _heuristic_proposal(section: SectionType, info, description: str) -> RegionProposal:
    return RegionProposal(
        section,
        info.start_line,
        info.end_line,
        info.confidence,
        from_heuristic=True,
        description=description,
    )


class RegionSetReviewer:
    """Reviews several regions of one kind in the same text, without overlaps."""

    def __init__(self, validator: RegionValidator):
        self.validator = validator

    def review_all(
        self,
        ctx: StepContext,
        outcome: StepOutcome,
        proposals: list[RegionProposal],
        threshold: float,
        heuristic_for,
    ) -> tuple[list[RegionReview], list[RegionReview]]:
        accepted: list[RegionReview] = []
        rejected: list[RegionReview] = []
        confirmed: list[tuple[int, int]] = []
        for proposal in sorted(proposals, key=lambda p: p.start_line or 0):
            review = self.validator.review(
                ctx.text,
                proposal,
                threshold,
                heuristic=None if proposal.from_heuristic else heuristic_for(proposal),
                confirmed_ranges=confirmed,
            )
            record_review(outcome, review)
            if review.decision.apply and review.line_range is not None:
                accepted.append(review)
                confirmed.append((review.start_line, review.end_line))
            elif not review.decision.apply:
                rejected.append(review)
        return accepted, rejected


def flag_region(ctx: StepContext, outcome: StepOutcome, review: RegionReview) -> None:
    proposal = review.proposal
    start = review.start_line if review.start_line is not None else proposal.start_line
    end = review.end_line if review.end_line is not None else proposal.end_line
    outcome.flags.append(
        FlaggedContent(
            step=ctx.step,
            line_range=clamp_range(start, end, ctx.line_count),
            reason=review.decision.flag_reason or FlagReason.AMBIGUOUS_REMOVAL,
            confidence=proposal.confidence,
            description=review.decision.explanation,
            suggested_action=f"Review the proposed {proposal.section.value} removal",
        )
    )


def region_removal(
    ctx: StepContext, review: RegionReview, removal_type: RemovalType
) -> RemovalRecord:
    start, end = review.start_line, review.end_line
    return RemovalRecord(
        step=ctx.step,
        removal_type=removal_type,
        line_range=review.line_range,
        word_count=count_words("\n".join(ctx.lines[start : end + 1])),
        confidence=review.decision.confidence,
        validation_method=review.decision.method,
        description=review.proposal.description,
    )


class RemoveAuxiliaryListsStep(StepCollaborator):
    step = CleaningStep.REMOVE_AUXILIARY_LISTS
    section = SectionType.AUXILIARY_LISTS

    def __init__(
        self,
        validator: RegionValidator | None = None,
        heuristics: HeuristicBoundaryDetector | None = None,
    ):
        self.reviewer = RegionSetReviewer(validator or RegionValidator())
        self.heuristics = heuristics or HeuristicBoundaryDetector()

    def run(self, ctx: StepContext) -> StepOutcome:
        outcome = StepOutcome(text=ctx.text)
        found = self.heuristics.detect_auxiliary_lists(ctx.text)
        result = try_detect(ctx, outcome, DetectionKind.AUXILIARY_LISTS)

        if result is not None:
            wanted = SECTION_REGION_TYPES[self.section]
            proposals = [
                RegionProposal.from_region(self.section, region)
                for region in result.regions
                if region.type in wanted
            ]
        else:
            proposals = [
                _heuristic_proposal(self.section, info, f"{info.type.value}: {info.header_text}")
                for info in found
            ]
        if not proposals:
            outcome.log("No auxiliary lists found")
            return outcome

        accepted, rejected = self.reviewer.review_all(
            ctx,
            outcome,
            proposals,
            ctx.threshold(ThresholdCategory.BOUNDARY),
            lambda proposal: (lambda: _nearest_heuristic(self.section, found, proposal.start_line)),
        )
        for review in rejected:
            flag_region(ctx, outcome, review)
        if not accepted:
            return outcome

        ranges = []
        for review in accepted:
            outcome.removals.append(region_removal(ctx, review, RemovalType.AUXILIARY_LIST))
            ranges.append((review.start_line, review.end_line))
        outcome.text, removed = remove_line_ranges(ctx.text, ranges)
        outcome.change_count = removed
        outcome.confidence = min(r.decision.confidence for r in accepted)
        kept = [
            info
            for info in found
            if any(r.start_line <= info.start_line <= r.end_line for r in accepted)
        ]
        outcome.pattern_updates = {
            "auxiliary_lists": kept,
            "auxiliary_list_confidence": outcome.confidence,
        }
        outcome.log(f"Removed {len(accepted)} auxiliary list(s), {removed} lines")
        logger.info("Removed %d auxiliary lists (%d lines)", len(accepted), removed)
        return outcome


# =============================================================================
# STEP 10: CITATIONS
# =============================================================================


def _as_citation_style(value: Any) -> CitationStyle | None:
    if value is None or isinstance(value, CitationStyle):
        return value
    try:
        return CitationStyle(str(value))
    except ValueError:
        return None


class RemoveCitationsStep(StepCollaborator):
    step = CleaningStep.REMOVE_CITATIONS

    def run(self, ctx: StepContext) -> StepOutcome:
        outcome = StepOutcome(text=ctx.text)
        lines = ctx.lines
        skip = code_block_lines(lines)
        threshold = ctx.threshold(ThresholdCategory.CITATION)
        heuristic_style, _, heuristic_confidence = detect_citation_style(ctx.text, MIN_INLINE_MATCHES)

        result = try_detect(ctx, outcome, DetectionKind.CITATIONS)
        if result is not None:
            style = _as_citation_style(result.patterns.get("citation_style"))
            patterns = list(result.patterns.get("citation_patterns", ()))
            if not patterns and style is not None:
                patterns = [style.primary_pattern]
            if not patterns:
                outcome.log("Detector found no citations")
                return outcome
            confidence = result.confidence
        else:
            style = ctx.patterns.citation_style or heuristic_style
            if style is None:
                outcome.log("No citation style detected")
                return outcome
            patterns = list(ctx.patterns.citation_patterns) or [style.primary_pattern]
            confidence = ctx.patterns.citation_confidence or heuristic_confidence

        compiled = compile_line_patterns(patterns, outcome)
        removal = strip_inline_patterns(lines, compiled, skip)
        layer_a = inline_layer_a(removal, compiled, count_words(ctx.text))

        if result is None:
            if layer_a is LayerVerdict.REJECTED or removal.match_count == 0:
                decision = decide(confidence, threshold, layer_a=LayerVerdict.REJECTED)
            else:
                decision = decide(confidence, threshold, layer_c=LayerVerdict.APPROVED)
        else:
            layer_c = self._layer_c(heuristic_style, compiled, ctx.text)
            decision = decide(confidence, threshold, layer_a, inline_layer_b(removal), layer_c)

        if removal.match_count == 0:
            outcome.log("Citation patterns matched nothing")
            return outcome
        if not decision.apply:
            flag_inline(ctx, outcome, removal, decision, "Citations")
            return outcome

        record_inline(ctx, outcome, removal, RemovalType.CITATIONS, decision, "Inline citations")
        outcome.text = "\n".join(removal.lines)
        outcome.change_count = removal.match_count
        outcome.confidence = decision.confidence
        outcome.pattern_updates = {
            "citation_style": style,
            "citation_patterns": patterns,
            "citation_count": removal.match_count,
            "citation_confidence": confidence,
        }
        outcome.log(
            f"Removed {removal.match_count} citation(s), {removal.total_words_removed} words "
            f"({decision.method.value})"
        )
        logger.info("Removed %d inline citations", removal.match_count)
        return outcome

    @staticmethod
    def _layer_c(
        heuristic_style: CitationStyle | None, compiled: list[re.Pattern[str]], text: str
    ) -> LayerVerdict:
        """Approve when the local style finds mostly the same citations."""
        if heuristic_style is None:
            return LayerVerdict.NOT_RUN
        local = {m.span() for m in heuristic_style.compile().finditer(text)}
        proposed = {m.span() for p in compiled for m in p.finditer(text)}
        return LayerVerdict.of(len(local & proposed) * 2 >= len(local))


# =============================================================================
# STEP 11: FOOTNOTES AND ENDNOTES
# =============================================================================


def _as_marker_style(value: Any) -> FootnoteMarkerStyle | None:
    if value is None or isinstance(value, FootnoteMarkerStyle):
        return value
    try:
        return FootnoteMarkerStyle(str(value))
    except ValueError:
        return None


def _note_removal_type(section: FootnoteSectionInfo | None) -> RemovalType:
    if section is not None and section.content_type in (
        FootnoteContentType.ENDNOTES,
        FootnoteContentType.CHAPTER_ENDNOTES,
    ):
        return RemovalType.ENDNOTES
    return RemovalType.FOOTNOTES


class RemoveFootnotesStep(StepCollaborator):
    """
    Removes collected note sections first, then inline markers elsewhere.

    Marker lines inside a removed section are left out of the marker pass so
    the step never records two removals over the same lines.
    """

    step = CleaningStep.REMOVE_FOOTNOTES_ENDNOTES
    section = SectionType.FOOTNOTES_ENDNOTES

    def __init__(
        self,
        validator: RegionValidator | None = None,
        heuristics: HeuristicBoundaryDetector | None = None,
    ):
        self.reviewer = RegionSetReviewer(validator or RegionValidator())
        self.heuristics = heuristics or HeuristicBoundaryDetector()

    def run(self, ctx: StepContext) -> StepOutcome:
        outcome = StepOutcome(text=ctx.text)
        threshold = ctx.threshold(ThresholdCategory.FOOTNOTE)
        found = self.heuristics.detect_footnote_sections(ctx.text)
        result = try_detect(ctx, outcome, DetectionKind.FOOTNOTES)

        accepted = self._sections(ctx, outcome, result, found, threshold)
        removed_lines = {i for r in accepted for i in range(r.start_line, r.end_line + 1)}
        lines = self._markers(ctx, outcome, result, threshold, removed_lines)

        ranges = [(r.start_line, r.end_line) for r in accepted]
        for review in accepted:
            info = next((s for s in found if s.start_line == review.start_line), None)
            outcome.removals.append(region_removal(ctx, review, _note_removal_type(info)))
        outcome.text, removed = remove_line_ranges("\n".join(lines), ranges)
        outcome.change_count += removed

        if accepted:
            kept = [s for s in found if s.start_line in {r.start_line for r in accepted}]
            outcome.pattern_updates.update(
                footnote_sections=kept,
                footnote_confidence=min(r.decision.confidence for r in accepted),
            )
            outcome.log(f"Removed {len(accepted)} note section(s), {removed} lines")
        if outcome.removals:
            outcome.confidence = min(r.confidence for r in outcome.removals)
        return outcome

    def _sections(self, ctx, outcome, result, found, threshold) -> list[RegionReview]:
        if result is not None:
            wanted = SECTION_REGION_TYPES[self.section]
            proposals = [
                RegionProposal.from_region(self.section, region)
                for region in result.regions
                if region.type in wanted
            ]
        else:
            proposals = [
                _heuristic_proposal(self.section, info, info.header_text) for info in found
            ]
        if not proposals:
            return []
        accepted, rejected = self.reviewer.review_all(
            ctx,
            outcome,
            proposals,
            threshold,
            lambda proposal: (lambda: _nearest_heuristic(self.section, found, proposal.start_line)),
        )
        for review in rejected:
            flag_region(ctx, outcome, review)
        return accepted

    def _markers(self, ctx, outcome, result, threshold, removed_lines: set[int]) -> list[str]:
        """Strip inline markers; returns the (possibly) updated lines."""
        lines = ctx.lines
        local_style, _ = detect_footnote_markers(ctx.text, MIN_INLINE_MATCHES)

        if result is not None:
            style = _as_marker_style(result.patterns.get("footnote_marker_style"))
            pattern = result.patterns.get("footnote_marker_pattern") or (style.pattern if style else None)
            confidence = result.confidence
        else:
            style = ctx.patterns.footnote_marker_style or local_style
            pattern = ctx.patterns.footnote_marker_pattern or (style.pattern if style else None)
            confidence = ctx.patterns.footnote_confidence or 0.75
        if not pattern:
            outcome.log("No footnote markers detected")
            return lines

        compiled = compile_line_patterns([pattern], outcome)
        removal = strip_inline_patterns(lines, compiled, removed_lines | code_block_lines(lines))
        if removal.match_count == 0:
            return lines

        layer_a = inline_layer_a(removal, compiled, count_words(ctx.text))
        if result is None:
            verdict_c = LayerVerdict.APPROVED if layer_a is LayerVerdict.APPROVED else LayerVerdict.NOT_RUN
            decision = decide(confidence, threshold, layer_a=LayerVerdict.NOT_RUN, layer_c=verdict_c)
        else:
            if local_style is None:
                verdict_c = LayerVerdict.NOT_RUN
            else:
                verdict_c = LayerVerdict.of(local_style is style or local_style.pattern == pattern)
            decision = decide(confidence, threshold, layer_a, inline_layer_b(removal), verdict_c)

        if not decision.apply:
            flag_inline(ctx, outcome, removal, decision, "Footnote markers")
            return lines

        record_inline(ctx, outcome, removal, RemovalType.FOOTNOTES, decision, "Footnote markers")
        outcome.change_count += removal.match_count
        outcome.pattern_updates.update(
            footnote_marker_style=style,
            footnote_marker_pattern=pattern,
            footnote_marker_count=removal.match_count,
        )
        outcome.log(f"Removed {removal.match_count} footnote marker(s) ({decision.method.value})")
        return removal.lines
