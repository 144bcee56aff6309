"""Step 12: special characters and whitespace (code only, no detector)."""

from __future__ import annotations

import logging

from bookclean.context import ContentTransformation, RemovalRecord
from bookclean.models import CleaningStep, LineRange, RemovalType, TransformationType, ValidationMethod
from bookclean.patterns import DEFAULT_SPECIAL_CHARACTERS
from bookclean.steps.base import StepCollaborator, StepContext, StepOutcome
from bookclean.text import clean_special_characters, count_changes, normalize_whitespace

logger = logging.getLogger(__name__)

MAX_BLANK_LINES = 2


def excess_blank_runs(lines: list[str], keep: int = MAX_BLANK_LINES) -> list[tuple[int, int]]:
    """
    Inclusive 0-indexed ranges of blank lines beyond ``keep`` in a row.

    Example:
        >>> excess_blank_runs(["a", "", "", "", "", "b"])
        [(3, 4)]
    """
    runs = []
    start = None
    for index, line in enumerate(lines + ["x"]):
        if not line.strip():
            if start is None:
                start = index
            continue
        if start is not None and index - start > keep:
            runs.append((start + keep, index - 1))
        start = None
    return runs


class CleanSpecialCharactersStep(StepCollaborator):
    step = CleaningStep.CLEAN_SPECIAL_CHARACTERS

    def run(self, ctx: StepContext) -> StepOutcome:
        outcome = StepOutcome(text=ctx.text, confidence=1.0)

        # Line endings first so blank runs are counted on real lines
        unified = ctx.text.replace("\r\n", "\n")
        lines = unified.split("\n")
        for start, end in excess_blank_runs(lines):
            outcome.removals.append(
                RemovalRecord(
                    step=self.step,
                    removal_type=RemovalType.WHITESPACE,
                    line_range=LineRange.from_zero_based(start, end),
                    word_count=0,
                    confidence=1.0,
                    validation_method=ValidationMethod.NO_VALIDATION,
                    description="Excess blank lines",
                )
            )
        normalized = normalize_whitespace(unified)
        if normalized != ctx.text:
            outcome.transformations.append(
                ContentTransformation(
                    step=self.step,
                    transformation_type=TransformationType.WHITESPACE_NORMALIZATION,
                    description="Normalized line endings, trailing spaces and blank runs",
                    change_count=count_changes(ctx.text, normalized),
                )
            )

        characters = ctx.patterns.special_characters_to_remove or list(DEFAULT_SPECIAL_CHARACTERS)
        cleaned, stats = clean_special_characters(
            normalized,
            characters,
            preserve_code_blocks=ctx.config.preserve_code_blocks,
            preserve_math_symbols=ctx.config.preserve_math_symbols,
        )
        if stats.total:
            outcome.transformations.append(
                ContentTransformation(
                    step=self.step,
                    transformation_type=TransformationType.SPECIAL_CHAR_REMOVAL,
                    description=(
                        f"Expanded {stats.ligatures_expanded} ligature(s), removed "
                        f"{stats.invisible_removed} invisible and {stats.characters_removed} "
                        f"special character(s)"
                    ),
                    change_count=stats.total,
                )
            )

        outcome.text = cleaned
        outcome.change_count = count_changes(ctx.text, cleaned)
        outcome.pattern_updates["special_characters_to_remove"] = list(characters)
        outcome.log(
            f"Special characters: {stats.total} change(s), "
            f"{sum(r.line_range.count for r in outcome.removals)} excess blank line(s), "
            f"{stats.code_blocks_preserved} code block(s) preserved"
        )
        logger.info("Cleaned %d special characters", stats.total)
        return outcome
