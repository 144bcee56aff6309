"""
Steps 3 and 4: page numbers, running headers and footers.

Both remove whole lines matching cached line patterns. Patterns proposed by
the detector must match the text often enough (Layer B) and reach the
boundary threshold before they are used. Otherwise the step falls back to the
locally found patterns (Layer C), flagging a low-confidence proposal.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

from bookclean.config import ThresholdCategory
from bookclean.context import FlaggedContent, RemovalRecord
from bookclean.detection import DetectionKind
from bookclean.models import CleaningStep, FlagReason, LineRange, RemovalType, ValidationMethod
from bookclean.patterns import DEFAULT_PAGE_NUMBER_PATTERNS
from bookclean.steps.base import StepCollaborator, StepContext, StepOutcome, try_detect
from bookclean.text import count_words, group_consecutive, remove_lines
from bookclean.validation import (
    LayerVerdict,
    ValidationDecision,
    decide,
    find_running_headers,
    header_key,
)

logger = logging.getLogger(__name__)

MIN_PATTERN_MATCHES = 3
# A line pattern that hits more than this share of lines is not a page element
MAX_LINE_SHARE = 0.10


def compile_line_patterns(
    patterns: Iterable[str], outcome: StepOutcome, flags: int = 0
) -> list[re.Pattern[str]]:
    """Compile patterns, dropping (and reporting) the malformed ones."""
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern, flags))
        except re.error as e:
            outcome.warnings.append(f"Ignored malformed pattern {pattern!r}: {e}")
    return compiled


def record_line_removals(
    ctx: StepContext,
    outcome: StepOutcome,
    indices: list[int],
    removal_type: RemovalType,
    confidence: float,
    method: ValidationMethod,
    description: str,
) -> None:
    """Remove whole lines and record one removal per run of consecutive lines."""
    lines = ctx.lines
    for start, end in group_consecutive(indices):
        outcome.removals.append(
            RemovalRecord(
                step=ctx.step,
                removal_type=removal_type,
                line_range=LineRange.from_zero_based(start, end),
                word_count=count_words("\n".join(lines[start : end + 1])),
                confidence=confidence,
                validation_method=method,
                description=description,
            )
        )
    outcome.text = remove_lines(ctx.text, indices)
    outcome.change_count = len(indices)


def too_many_lines(ctx: StepContext, outcome: StepOutcome, indices: list[int], what: str) -> bool:
    """Flag instead of removing when a pattern claims too much of the text."""
    if len(indices) <= max(MIN_PATTERN_MATCHES, int(ctx.line_count * MAX_LINE_SHARE)):
        return False
    outcome.flags.append(
        FlaggedContent(
            step=ctx.step,
            line_range=LineRange(1, ctx.line_count),
            reason=FlagReason.POTENTIAL_DATA_LOSS,
            confidence=0.0,
            description=f"{what} patterns matched {len(indices)} of {ctx.line_count} lines",
            suggested_action="Check the detected patterns before removing",
        )
    )
    outcome.log(f"Skipped removal: {what} patterns matched too many lines")
    return True


def judge_detector_lines(
    ctx: StepContext, outcome: StepOutcome, indices: list[int], confidence: float, what: str
) -> ValidationDecision:
    """
    Layer B and the boundary threshold for detector line patterns.

    Patterns that matched enough lines but fall short of the threshold are
    flagged over the lines they matched. The caller falls back to the local
    patterns whenever the decision does not apply.
    """
    layer_b = LayerVerdict.of(len(indices) >= MIN_PATTERN_MATCHES)
    decision = decide(confidence, ctx.threshold(ThresholdCategory.BOUNDARY), layer_b=layer_b)
    if decision.apply:
        return decision
    if layer_b is LayerVerdict.REJECTED:
        outcome.log(f"Detector {what} patterns matched only {len(indices)} line(s)")
        return decision
    outcome.flags.append(
        FlaggedContent(
            step=ctx.step,
            line_range=LineRange.from_zero_based(indices[0], indices[-1]),
            reason=decision.flag_reason or FlagReason.LOW_CONFIDENCE,
            confidence=confidence,
            description=f"Detector {what} patterns: {decision.explanation}",
            suggested_action=f"Review the {len(indices)} line(s) the detector patterns matched",
        )
    )
    outcome.log(f"Flagged detector {what} patterns: {decision.explanation}")
    return decision


class RemovePageNumbersStep(StepCollaborator):
    step = CleaningStep.REMOVE_PAGE_NUMBERS

    def run(self, ctx: StepContext) -> StepOutcome:
        outcome = StepOutcome(text=ctx.text)
        lines = ctx.lines

        indices: list[int] = []
        patterns: list[str] = []
        method = ValidationMethod.PHASE_C
        confidence = 0.8

        result = try_detect(ctx, outcome, DetectionKind.PAGE_NUMBERS)
        proposed = list(result.patterns.get("page_number_patterns", ())) if result else []
        if proposed:
            matched = _matching_lines(lines, compile_line_patterns(proposed, outcome))
            decision = judge_detector_lines(ctx, outcome, matched, result.confidence, "page number")
            if decision.apply:
                indices, patterns = matched, proposed
                method, confidence = decision.method, result.confidence

        if not patterns:
            patterns = list(ctx.patterns.page_number_patterns) or list(DEFAULT_PAGE_NUMBER_PATTERNS)
            indices = _matching_lines(lines, compile_line_patterns(patterns, outcome))
            if len(indices) < MIN_PATTERN_MATCHES:
                outcome.log(f"Only {len(indices)} page-number line(s) found; nothing removed")
                return outcome

        if too_many_lines(ctx, outcome, indices, "Page number"):
            return outcome

        record_line_removals(
            ctx, outcome, indices, RemovalType.PAGE_NUMBERS, confidence, method, "Page numbers"
        )
        outcome.confidence = confidence
        outcome.pattern_updates["page_number_patterns"] = patterns
        outcome.log(f"Removed {len(indices)} page-number line(s) ({method.value})")
        logger.info("Removed %d page-number lines", len(indices))
        return outcome


class RemoveHeadersFootersStep(StepCollaborator):
    step = CleaningStep.REMOVE_HEADERS_FOOTERS

    def run(self, ctx: StepContext) -> StepOutcome:
        outcome = StepOutcome(text=ctx.text)
        lines = ctx.lines

        header_patterns: list[str] = []
        footer_patterns: list[str] = []
        method = ValidationMethod.PHASE_C
        confidence = 0.75

        result = try_detect(ctx, outcome, DetectionKind.HEADERS_FOOTERS)
        if result is not None:
            proposed_headers = list(result.patterns.get("header_patterns", ()))
            proposed_footers = list(result.patterns.get("footer_patterns", ()))
            compiled = compile_line_patterns(proposed_headers + proposed_footers, outcome, re.IGNORECASE)
            if compiled:
                matched = _header_lines(lines, compiled)
                decision = judge_detector_lines(ctx, outcome, matched, result.confidence, "header/footer")
                if decision.apply:
                    header_patterns, footer_patterns = proposed_headers, proposed_footers
                    method, confidence = decision.method, result.confidence

        if not header_patterns and not footer_patterns:
            header_patterns = list(ctx.patterns.header_patterns) or [
                re.escape(key) for key in find_running_headers(lines)
            ]
            footer_patterns = list(ctx.patterns.footer_patterns)
            if not header_patterns and not footer_patterns:
                outcome.log("No running headers or footers found")
                return outcome

        compiled_headers = compile_line_patterns(header_patterns, outcome, re.IGNORECASE)
        compiled_footers = compile_line_patterns(footer_patterns, outcome, re.IGNORECASE)
        header_indices = _header_lines(lines, compiled_headers)
        footer_indices = sorted(set(_header_lines(lines, compiled_footers)) - set(header_indices))
        if len(header_indices) + len(footer_indices) < MIN_PATTERN_MATCHES:
            outcome.log("Running header patterns matched too few lines")
            return outcome
        if too_many_lines(ctx, outcome, header_indices + footer_indices, "Header/footer"):
            return outcome

        # Headers and footers are removed together but recorded by kind
        for start, end in group_consecutive(header_indices):
            outcome.removals.append(self._record(ctx, start, end, RemovalType.HEADERS, confidence, method))
        for start, end in group_consecutive(footer_indices):
            outcome.removals.append(self._record(ctx, start, end, RemovalType.FOOTERS, confidence, method))
        all_indices = sorted(header_indices + footer_indices)
        outcome.text = remove_lines(ctx.text, all_indices)
        outcome.change_count = len(all_indices)
        outcome.confidence = confidence
        outcome.pattern_updates.update(header_patterns=header_patterns, footer_patterns=footer_patterns)
        outcome.log(f"Removed {len(all_indices)} header/footer line(s) ({method.value})")
        logger.info("Removed %d running header/footer lines", len(all_indices))
        return outcome

    def _record(self, ctx, start, end, removal_type, confidence, method) -> RemovalRecord:
        return RemovalRecord(
            step=self.step,
            removal_type=removal_type,
            line_range=LineRange.from_zero_based(start, end),
            word_count=count_words("\n".join(ctx.lines[start : end + 1])),
            confidence=confidence,
            validation_method=method,
            description=f"Running {removal_type.value}",
        )


def _matching_lines(lines: list[str], compiled: list[re.Pattern[str]]) -> list[int]:
    return [
        index
        for index, line in enumerate(lines)
        if line.strip() and any(p.fullmatch(line.strip()) for p in compiled)
    ]


def _header_lines(lines: list[str], compiled: list[re.Pattern[str]]) -> list[int]:
    """Lines matching a header pattern, with or without their page number."""
    found = []
    for index, line in enumerate(lines):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key = header_key(stripped)
        if any(p.fullmatch(stripped) or (key and p.fullmatch(key)) for p in compiled):
            found.append(index)
    return found
