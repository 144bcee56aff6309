"""Step 15: assemble the final document (title, metadata, chapter markers, end marker)."""

from __future__ import annotations

import logging

from bookclean.context import ContentTransformation
from bookclean.models import ChapterMarkerStyle, CleaningStep, DocumentMetadata, TransformationType
from bookclean.steps.base import StepCollaborator, StepContext, StepOutcome
from bookclean.text import apply_structure, detect_chapter_headings, detect_part_headings

logger = logging.getLogger(__name__)


class AddStructureStep(StepCollaborator):
    """
    Lays out the cleaned body as the final document.

    Chapter headings are found again on the current text; line numbers cached
    during reconnaissance no longer hold after the removals.
    """

    step = CleaningStep.ADD_STRUCTURE

    def run(self, ctx: StepContext) -> StepOutcome:
        config = ctx.config
        metadata = ctx.metadata or DocumentMetadata()
        chapter_style = (
            config.chapter_marker_style if config.enable_chapter_segmentation else ChapterMarkerStyle.NONE
        )

        lines = ctx.text.strip().split("\n")
        chapters = detect_chapter_headings(lines)
        parts = detect_part_headings(lines)

        document = apply_structure(
            ctx.text,
            metadata,
            metadata_format=config.metadata_format,
            chapter_style=chapter_style,
            end_style=config.end_marker_style,
        )

        outcome = StepOutcome(text=document.text, confidence=1.0)
        outcome.metadata_block = document.metadata_block
        outcome.change_count = document.markers_inserted
        outcome.transformations.append(
            ContentTransformation(
                step=self.step,
                transformation_type=TransformationType.STRUCTURE_ADDITION,
                description=(
                    f"Added title, {config.metadata_format.value} metadata, "
                    f"{document.markers_inserted} chapter/part marker(s) and "
                    f"{config.end_marker_style.value} end marker"
                ),
                change_count=document.markers_inserted,
            )
        )
        if chapters:
            outcome.pattern_updates.update(
                chapter_start_lines=[c.line_index for c in chapters],
                chapter_titles=[c.title for c in chapters],
                chapter_confidence=0.8,
            )
        if parts:
            outcome.pattern_updates.update(
                has_parts=True,
                part_start_lines=[p.line_index for p in parts],
                part_titles=[p.title for p in parts],
            )
        outcome.log(
            f"Assembled document: {len(chapters)} chapter(s), {len(parts)} part(s), "
            f"{document.markers_inserted} marker(s) ({chapter_style.value})"
        )
        logger.info("Assembled %r with %d chapter markers", metadata.title, document.markers_inserted)
        return outcome
