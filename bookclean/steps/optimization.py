"""
Steps 13-14: paragraph reflow and paragraph-length optimization.

Both steps split the text into chunks at paragraph boundaries and process the
chunks in parallel. A chunk is offered to the detector first; its rewrite is
kept only when it preserves the chunk's word count within tolerance.
Otherwise the chunk is processed locally. Chunks are merged back in index
order, whatever order they finish in.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from bookclean.context import ContentTransformation
from bookclean.detection import DetectionKind
from bookclean.exceptions import DetectionError, PipelineCancelled
from bookclean.models import CleaningStep, LineRange, TransformationType, ValidationMethod
from bookclean.steps.base import StepCollaborator, StepContext, StepOutcome
from bookclean.text import (
    AdaptiveDictionary,
    LineBreakRejoiner,
    TextChunk,
    chunk_content,
    count_changes,
    count_words,
    merge_chunks,
    optimize_paragraph_length,
    reflow_paragraphs,
)

logger = logging.getLogger(__name__)

WORD_COUNT_TOLERANCE = 0.02


def preserves_word_count(original: str, rewritten: str, tolerance: float = WORD_COUNT_TOLERANCE) -> bool:
    """
    Whether a rewrite kept the word count within tolerance.

    Example:
        >>> preserves_word_count("one two three", "one two three")
        True
        >>> preserves_word_count("one two three four", "one two")
        False
    """
    before = count_words(original)
    after = count_words(rewritten)
    if before == 0:
        return after == 0
    return abs(after - before) / before <= tolerance


@dataclass
class ChunkResult:
    """One processed chunk. ``ranges`` are 0-indexed lines of the whole text."""

    index: int
    text: str
    ranges: list[tuple[int, int]] = field(default_factory=list)
    method: ValidationMethod = ValidationMethod.NO_VALIDATION
    confidence: float = 1.0
    fallback: str | None = None
    rejected: str | None = None
    detail: str = ""


class ChunkedStep(StepCollaborator):
    """Runs a chunk processor over the text on a worker pool."""

    detection_kind: DetectionKind
    transformation_type: TransformationType

    def prepare(self, ctx: StepContext) -> None:
        """Per-run setup shared by all chunks (called before the pool starts)."""

    def process_locally(self, ctx: StepContext, chunk: TextChunk) -> ChunkResult:
        raise NotImplementedError

    def run(self, ctx: StepContext) -> StepOutcome:
        outcome = StepOutcome(text=ctx.text)
        self.prepare(ctx)
        chunks = chunk_content(ctx.text, ctx.options.chunk_target_lines)
        results = self._process_all(ctx, chunks)

        merged = merge_chunks(results[i].text for i in range(len(chunks)))
        for result in (results[i] for i in range(len(chunks))):
            if result.fallback is not None:
                outcome.fallback(self.step, f"chunk {result.index}: {result.fallback}")
            if result.rejected is not None:
                outcome.warnings.append(f"Chunk {result.index}: {result.rejected}")
            chunk = chunks[result.index]
            changes = count_changes(chunk.content, result.text)
            if not changes:
                continue
            spans = result.ranges or [(chunk.start_line, chunk.end_line)]
            outcome.transformations.append(
                ContentTransformation(
                    step=self.step,
                    transformation_type=self.transformation_type,
                    description=f"Chunk {result.index}: {result.detail}".strip(),
                    change_count=changes,
                    line_range=LineRange.from_zero_based(
                        min(s for s, _ in spans), max(e for _, e in spans)
                    ),
                    confidence=result.confidence,
                    validation_method=result.method,
                )
            )

        outcome.text = merged
        outcome.change_count = sum(t.change_count for t in outcome.transformations)
        outcome.confidence = min((r.confidence for r in results.values()), default=1.0)
        outcome.log(
            f"{self.step.display_name}: {len(chunks)} chunk(s), "
            f"{len(outcome.transformations)} changed"
        )
        return outcome

    def _process_all(self, ctx: StepContext, chunks: list[TextChunk]) -> dict[int, ChunkResult]:
        results: dict[int, ChunkResult] = {}
        workers = max(1, min(ctx.options.max_workers, len(chunks)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bookclean-chunk") as pool:
            futures = {pool.submit(self._process, ctx, chunk): chunk for chunk in chunks}
            try:
                for future in as_completed(futures):
                    if ctx.cancel_event is not None and ctx.cancel_event.is_set():
                        raise PipelineCancelled(f"Cancelled during {self.step.display_name}")
                    result = future.result()
                    results[result.index] = result
                    if ctx.report_chunk is not None:
                        ctx.report_chunk(len(results), len(chunks))
            except Exception:
                pool.shutdown(wait=False, cancel_futures=True)
                raise
        logger.debug("%s processed %d chunks", self.step.display_name, len(chunks))
        return results

    def _process(self, ctx: StepContext, chunk: TextChunk) -> ChunkResult:
        if ctx.detector is None:
            result = self.process_locally(ctx, chunk)
            result.fallback = "No detector available"
            return result

        try:
            detected = ctx.detect(self.detection_kind, window=chunk.content)
        except DetectionError as e:
            result = self.process_locally(ctx, chunk)
            result.fallback = str(e)
            return result

        rewritten = detected.payload
        if not isinstance(rewritten, str):
            result = self.process_locally(ctx, chunk)
            result.rejected = "Detector returned no rewritten text"
            return result
        if not preserves_word_count(chunk.content, rewritten):
            result = self.process_locally(ctx, chunk)
            result.rejected = (
                f"Detector rewrite changed the word count ({count_words(chunk.content)} -> "
                f"{count_words(rewritten)})"
            )
            return result
        return ChunkResult(
            index=chunk.index,
            text=rewritten,
            method=ValidationMethod.PHASE_B,
            confidence=detected.confidence,
            detail="detector rewrite",
        )


class ReflowParagraphsStep(ChunkedStep):
    step = CleaningStep.REFLOW_PARAGRAPHS
    detection_kind = DetectionKind.PARAGRAPH_REFLOW
    transformation_type = TransformationType.PARAGRAPH_REFLOW

    def __init__(self, dictionary: AdaptiveDictionary | None = None):
        self.dictionary = dictionary
        self._rejoiner: LineBreakRejoiner | None = None

    def prepare(self, ctx):
        dictionary = self.dictionary or AdaptiveDictionary()
        learned = dictionary.learn_from_text(ctx.text)
        logger.debug("Learned %d words from the document", learned)
        self._rejoiner = LineBreakRejoiner(dictionary)

    def process_locally(self, ctx, chunk):
        text, ranges, stats = reflow_paragraphs(chunk.content, self._rejoiner)
        return ChunkResult(
            index=chunk.index,
            text=text,
            ranges=[(chunk.start_line + s, chunk.start_line + e) for s, e in ranges],
            detail=(
                f"reflowed {stats.paragraphs_reflowed} paragraph(s), joined "
                f"{stats.line_breaks.candidates_joined} hyphenated word(s)"
            ),
        )


class OptimizeParagraphLengthStep(ChunkedStep):
    step = CleaningStep.OPTIMIZE_PARAGRAPH_LENGTH
    detection_kind = DetectionKind.PARAGRAPH_OPTIMIZATION
    transformation_type = TransformationType.PARAGRAPH_SPLIT

    def process_locally(self, ctx, chunk):
        max_words = ctx.config.max_paragraph_words
        text, ranges = optimize_paragraph_length(chunk.content, max_words)
        return ChunkResult(
            index=chunk.index,
            text=text,
            ranges=[(chunk.start_line + s, chunk.start_line + e) for s, e in ranges],
            detail=f"split {len(ranges)} paragraph(s) over {max_words} words",
        )
