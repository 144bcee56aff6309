"""
Cleaning pipeline orchestrator.

Runs the sixteen steps phase by phase:
1. Reconnaissance (structure hints, content type)
2. Metadata extraction
3. Semantic cleaning (page numbers, running heads)
4. Structural cleaning (front matter, contents, back matter, index)
5. Reference cleaning (auxiliary lists, citations, notes)
6. Finishing (special characters)
7. Optimization (reflow, paragraph length)
8. Assembly (title, metadata block, markers)
9. Final review

The orchestrator is the only writer of the ledger and the pattern cache.
Each step receives a frozen StepContext, returns a StepOutcome, and the
orchestrator applies what it proposes.

Example:
    >>> from bookclean import clean_text
    >>> result = clean_text(raw_text)
    >>> result.status
    <RunStatus.COMPLETED: 'completed'>
    >>> result.context.total_lines_removed
    128
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable

from bookclean.checkpoints import CheckpointResult, PhaseMetrics, checkpoint_for
from bookclean.confidence import ConfidenceRating, ConfidenceTracker
from bookclean.config import (
    CleaningConfiguration,
    PipelineOptions,
    PresetType,
    resolve_configuration,
)
from bookclean.content import ContentTypeFlags
from bookclean.context import (
    AccumulatedContext,
    BoundaryConfirmed,
    ContentFlagged,
    ContextEvent,
    FallbackRecorded,
    NotificationQueued,
    RemovalRecorded,
    StructureHintsAttached,
    TransformationRecorded,
    UserNotification,
)
from bookclean.detection import AIDetector
from bookclean.exceptions import (
    DetectionError,
    InvariantViolationError,
    PipelineCancelled,
    StepFailedError,
)
from bookclean.hints import StructureHints
from bookclean.models import CleaningStep, DocumentMetadata, PipelinePhase
from bookclean.patterns import DetectedPatterns
from bookclean.progress import CleaningProgress, ProgressSnapshot
from bookclean.steps import StepCollaborator, StepContext, StepOutcome, default_collaborators
from bookclean.steps.review import QualityReview
from bookclean.text import count_cleaned_words, count_lines, count_words
from bookclean.validation import BoundaryValidationStats, VerificationStats

logger = logging.getLogger(__name__)


# =============================================================================
# DATA STRUCTURES
# =============================================================================


class RunStatus(Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"  # A step failed; later steps ran on the partial text
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class PipelineResult:
    """
    Result of one cleaning run.

    The ledger (context) is always returned, whatever the status: it is the
    record of everything that was removed, changed or flagged before the run
    ended.
    """

    status: RunStatus
    text: str
    context: AccumulatedContext
    configuration: CleaningConfiguration
    patterns: DetectedPatterns
    progress: ProgressSnapshot
    hints: StructureHints | None = None
    metadata: DocumentMetadata | None = None
    review: QualityReview | None = None
    phase_confidence: dict[PipelinePhase, float] = field(default_factory=dict)
    confidence_rating: ConfidenceRating = ConfidenceRating.VERY_LOW
    checkpoint_results: list[CheckpointResult] = field(default_factory=list)
    failed_steps: dict[CleaningStep, str] = field(default_factory=dict)
    original_word_count: int = 0
    cleaned_word_count: int = 0
    boundary_stats: BoundaryValidationStats = field(default_factory=BoundaryValidationStats)
    verification_stats: VerificationStats = field(default_factory=VerificationStats)
    warnings: list[str] = field(default_factory=list)
    processing_log: list[str] = field(default_factory=list)
    processing_time_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.COMPLETED

    @property
    def word_reduction(self) -> float:
        """Share of the original words no longer in the output."""
        if not self.original_word_count:
            return 0.0
        return 1 - self.cleaned_word_count / self.original_word_count

    @property
    def reduction_percentage(self) -> float:
        return round(self.word_reduction * 100, 1)

    def validation_summary(self) -> str:
        return f"{self.boundary_stats.summary()}; {self.verification_stats.summary()}"


@dataclass
class _RunState:
    """Mutable working state of a run. Private to the orchestrator."""

    text: str
    config: CleaningConfiguration
    ledger: AccumulatedContext
    patterns: DetectedPatterns
    progress: CleaningProgress
    original_word_count: int
    flags: ContentTypeFlags = ContentTypeFlags.UNKNOWN
    hints: StructureHints | None = None
    metadata: DocumentMetadata | None = None
    metadata_block: str | None = None
    review: QualityReview | None = None
    confidence: ConfidenceTracker = field(default_factory=ConfidenceTracker)
    checkpoints: list[CheckpointResult] = field(default_factory=list)
    failed_steps: dict[CleaningStep, str] = field(default_factory=dict)
    boundary_stats: BoundaryValidationStats = field(default_factory=BoundaryValidationStats)
    verification_stats: VerificationStats = field(default_factory=VerificationStats)
    warnings: list[str] = field(default_factory=list)
    processing_log: list[str] = field(default_factory=list)
    stopped: bool = False

    @property
    def word_count(self) -> int:
        if self.metadata_block is not None:
            return count_cleaned_words(self.text, self.metadata_block)
        return count_words(self.text)


# =============================================================================
# ORCHESTRATOR
# =============================================================================


class CleaningPipeline:
    """
    Runs the cleaning steps over one document.

    Attributes:
        config: User configuration (preset plus overrides). Content-type
            adjustments are applied per run and never written back.
        options: Execution options (timeouts, workers, failure policy).
        detector: External AI detector, or None to run on heuristics only.
        collaborators: Step implementations by step; defaults are used for
            any step not supplied.

    Example:
        >>> pipeline = CleaningPipeline(CleaningConfiguration.for_preset("training"))
        >>> pipeline.add_progress_listener(lambda snap: print(snap.summary()))
        >>> result = pipeline.run(text)
    """

    def __init__(
        self,
        config: CleaningConfiguration | None = None,
        options: PipelineOptions | None = None,
        detector: AIDetector | None = None,
        collaborators: dict[CleaningStep, StepCollaborator] | None = None,
    ) -> None:
        self.config = config or CleaningConfiguration()
        self.options = options or PipelineOptions()
        self.detector = detector
        self.collaborators = default_collaborators()
        if collaborators:
            self.collaborators.update(collaborators)
        self._cancel_event = threading.Event()
        self._listeners: list[Callable[[ProgressSnapshot], None]] = []
        self._progress: CleaningProgress | None = None

    def add_progress_listener(self, listener: Callable[[ProgressSnapshot], None]) -> None:
        self._listeners.append(listener)
        if self._progress is not None:
            self._progress.add_listener(listener)

    def progress(self) -> ProgressSnapshot | None:
        """Poll the progress of the current (or last) run."""
        return self._progress.snapshot() if self._progress is not None else None

    def cancel(self) -> None:
        """Request cancellation of the run in progress. Safe from any thread."""
        logger.info("Cancellation requested")
        self._cancel_event.set()

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self, text: str) -> PipelineResult:
        """
        Clean one document.

        Args:
            text: Raw OCR text of the whole book.

        Returns:
            PipelineResult. Failures and cancellation are reported through
            its status; only programming errors escape.
        """
        start_time = time.time()
        self._cancel_event.clear()

        config = resolve_configuration(self.config)
        document_id = self.options.document_id or uuid.uuid4().hex
        progress = CleaningProgress(config.enabled_steps)
        for listener in self._listeners:
            progress.add_listener(listener)
        self._progress = progress

        state = _RunState(
            text=text,
            config=config,
            ledger=AccumulatedContext.create(document_id),
            patterns=DetectedPatterns(document_id=document_id),
            progress=progress,
            original_word_count=count_words(text),
            flags=ContentTypeFlags.from_content_type(config.content_type) or ContentTypeFlags.UNKNOWN,
        )
        state.processing_log.append(
            f"Starting run {document_id}: {state.original_word_count} words, "
            f"{len(config.enabled_steps)} step(s) enabled"
        )
        logger.info("Cleaning document %s (%d words)", document_id, state.original_word_count)

        cancelled = False
        try:
            for phase in PipelinePhase:
                if state.stopped:
                    self._skip_remaining(state, phase.steps, "Run stopped after a fatal error")
                    continue
                self._run_phase(phase, state)
        except PipelineCancelled as e:
            cancelled = True
            self._handle_cancel(state, str(e))

        if not cancelled:
            progress.finish()

        if cancelled:
            status = RunStatus.CANCELLED
        elif state.stopped:
            status = RunStatus.FAILED
        elif state.failed_steps:
            status = RunStatus.PARTIAL
        else:
            status = RunStatus.COMPLETED

        result = PipelineResult(
            status=status,
            text=state.text,
            context=state.ledger,
            configuration=state.config,
            patterns=state.patterns,
            progress=progress.snapshot(),
            hints=state.hints,
            metadata=state.metadata,
            review=state.review,
            phase_confidence=state.confidence.phase_confidences,
            confidence_rating=state.confidence.rating,
            checkpoint_results=state.checkpoints,
            failed_steps=state.failed_steps,
            original_word_count=state.original_word_count,
            cleaned_word_count=state.word_count,
            boundary_stats=state.boundary_stats,
            verification_stats=state.verification_stats,
            warnings=state.warnings,
            processing_log=state.processing_log,
            processing_time_ms=(time.time() - start_time) * 1000,
        )
        logger.info(
            "Run %s %s: %d -> %d words (%.1f%% reduction)",
            document_id,
            status.value,
            result.original_word_count,
            result.cleaned_word_count,
            result.reduction_percentage,
        )
        return result

    def _run_phase(self, phase: PipelinePhase, state: _RunState) -> None:
        ledger = state.ledger
        enabled = [step for step in phase.steps if state.config.is_step_enabled(step)]
        if not enabled:
            for step in phase.steps:
                self._skip_step(state, step, "Disabled in configuration")
            ledger.skip_phase(phase, "Every step disabled")
            ledger.create_snapshot(f"after_{phase.value}")
            return

        ledger.start_phase(phase)
        start_words = state.word_count
        start_lines = count_lines(state.text)
        logger.info("Phase %d: %s", phase.phase_number + 1, phase.display_name)

        for step in phase.steps:
            if self._cancel_event.is_set():
                raise PipelineCancelled(f"Cancelled before {step.display_name}")
            if state.stopped:
                self._skip_remaining(state, [step], "Run stopped after a fatal error")
                continue
            # Content-type adjustments after reconnaissance can disable later steps
            if not state.config.is_step_enabled(step):
                self._skip_step(state, step, "Disabled in configuration")
                continue
            self._execute(step, state)

        if state.stopped and phase is PipelinePhase.RECONNAISSANCE:
            ledger.create_snapshot(f"after_{phase.value}")
            return

        self._check_phase(phase, state, start_words, start_lines)
        ledger.complete_phase(phase)
        ledger.create_snapshot(f"after_{phase.value}")

    def _execute(self, step: CleaningStep, state: _RunState) -> None:
        progress = state.progress
        progress.start(step)
        try:
            outcome = self._invoke(step, state)
            self._apply(step, outcome, state)
        except (StepFailedError, InvariantViolationError) as e:
            self._handle_failure(step, state, e)
            return

        progress.complete(step, state.word_count, outcome.change_count)
        logger.info(
            "Step %d %s completed (%d changes)", step.value, step.display_name, outcome.change_count
        )

    def _invoke(self, step: CleaningStep, state: _RunState) -> StepOutcome:
        """Run the step; one retry on the heuristic path if detection fails."""
        collaborator = self.collaborators[step]
        ctx = self._context(step, state)
        try:
            return self._call(collaborator, ctx)
        except DetectionError as e:
            logger.warning("%s: detector failed (%s), retrying on heuristics", step.display_name, e)
            state.ledger.record_fallback(step, str(e))
        try:
            return self._call(collaborator, replace(ctx, detector=None))
        except DetectionError as e:
            raise StepFailedError(step, f"heuristic retry failed: {e}", e) from e

    @staticmethod
    def _call(collaborator: StepCollaborator, ctx: StepContext) -> StepOutcome:
        try:
            return collaborator.run(ctx)
        except (DetectionError, PipelineCancelled, InvariantViolationError):
            raise
        except Exception as e:
            raise StepFailedError(ctx.step, str(e), e) from e

    def _context(self, step: CleaningStep, state: _RunState) -> StepContext:
        return StepContext(
            step=step,
            text=state.text,
            config=state.config,
            options=self.options,
            patterns=state.patterns.copy(),
            view=state.ledger.view(),
            flags=state.flags,
            hints=state.hints,
            metadata=state.metadata,
            detector=self.detector,
            original_word_count=state.original_word_count,
            metadata_block=state.metadata_block,
            cancel_event=self._cancel_event,
            report_chunk=state.progress.update_chunk,
        )

    # -------------------------------------------------------------------------
    # Applying outcomes
    # -------------------------------------------------------------------------

    def _apply(self, step: CleaningStep, outcome: StepOutcome, state: _RunState) -> None:
        """
        Write a step's proposals to the ledger, then adopt its text.

        The pattern update and the ledger events are checked before anything
        is kept: a rejected event or pattern leaves the ledger, the pattern
        cache and the text exactly as the previous step left them.
        """
        patterns = state.patterns
        if outcome.pattern_updates:
            patterns = state.patterns.copy()
            try:
                patterns.update(**outcome.pattern_updates)
            except ValueError as e:
                raise StepFailedError(step, f"invalid pattern update: {e}", e) from e

        events: list[ContextEvent] = [
            FallbackRecorded(step=fallback_step, reason=reason)
            for fallback_step, reason in outcome.fallbacks.items()
        ]
        events += [RemovalRecorded(record=removal) for removal in outcome.removals]
        events += [BoundaryConfirmed(boundary=boundary) for boundary in outcome.boundaries]
        events += [TransformationRecorded(transformation=t) for t in outcome.transformations]
        events += [ContentFlagged(flag=flag) for flag in outcome.flags]
        events += [NotificationQueued(notification=n) for n in outcome.notifications]
        if outcome.hints is not None:
            events.append(StructureHintsAttached(structure_hints_id=outcome.hints.id))
        state.ledger.apply_all(events)
        state.patterns = patterns

        if outcome.hints is not None:
            state.hints = outcome.hints
        if outcome.content_flags is not None:
            state.flags = outcome.content_flags
            state.config = resolve_configuration(state.config, outcome.content_flags)
        if outcome.metadata is not None:
            state.metadata = outcome.metadata
        if outcome.metadata_block is not None:
            state.metadata_block = outcome.metadata_block
        if outcome.review is not None:
            state.review = outcome.review

        for result in outcome.boundary_results:
            state.boundary_stats.record(result)
        for result in outcome.verification_results:
            state.verification_stats.record(result)

        state.confidence.record(step, outcome.confidence)
        for warning in outcome.warnings:
            state.warnings.append(f"{step.display_name}: {warning}")
        state.processing_log.extend(f"[{step.config_key}] {line}" for line in outcome.processing_log)
        state.text = outcome.text

    def _check_phase(
        self, phase: PipelinePhase, state: _RunState, start_words: int, start_lines: int
    ) -> None:
        checkpoint = checkpoint_for(phase)
        if checkpoint is None:
            return
        ledger = state.ledger
        metrics = PhaseMetrics(
            phase=phase,
            start_words=start_words,
            start_lines=start_lines,
            end_words=state.word_count,
            end_lines=count_lines(state.text),
            lines_removed=ledger.lines_removed_in(phase),
            words_removed=ledger.words_removed_in(phase),
            hints=state.hints,
            original_words=state.original_word_count,
            review_score=state.review.score if state.review is not None else None,
        )
        result = checkpoint.evaluate(metrics)
        state.checkpoints.append(result)
        ledger.record_checkpoint(result.checkpoint, result.passed, result.reason)
        if not result.passed:
            state.warnings.append(f"Checkpoint {result.checkpoint.value} failed: {result.reason}")
        state.processing_log.append(
            f"Checkpoint {checkpoint.name}: {'passed' if result.passed else 'FAILED'} ({result.reason})"
        )

    # -------------------------------------------------------------------------
    # Skips, failures, cancellation
    # -------------------------------------------------------------------------

    def _skip_step(self, state: _RunState, step: CleaningStep, reason: str) -> None:
        state.ledger.skip_step(step, reason)
        state.progress.skip(step, reason)
        logger.debug("Step %d %s skipped: %s", step.value, step.display_name, reason)

    def _skip_remaining(self, state: _RunState, steps, reason: str) -> None:
        for step in steps:
            if not state.progress.status(step).is_terminal:
                self._skip_step(state, step, reason)

    def _handle_failure(self, step: CleaningStep, state: _RunState, error: Exception) -> None:
        message = str(error)
        logger.error("Step %d %s failed: %s", step.value, step.display_name, message)
        state.ledger.record_error(message, step)
        state.ledger.queue_notification(UserNotification(message, step=step, severity="error"))
        state.progress.fail(step, message)
        state.failed_steps[step] = message
        state.processing_log.append(f"[{step.config_key}] FAILED: {message}")
        if step is CleaningStep.ANALYZE_STRUCTURE or not self.options.continue_on_failure:
            state.stopped = True

    def _handle_cancel(self, state: _RunState, reason: str) -> None:
        cancelled = state.progress.cancel()
        state.ledger.queue_notification(UserNotification(f"Run cancelled: {reason}", severity="warning"))
        state.ledger.create_snapshot("cancelled")
        state.processing_log.append(f"Cancelled ({len(cancelled)} step(s) not run): {reason}")
        logger.warning("Run cancelled: %s", reason)


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================


def create_pipeline(
    preset: PresetType | str | None = None,
    config: CleaningConfiguration | None = None,
    detector: AIDetector | None = None,
    **options,
) -> CleaningPipeline:
    """
    Create a pipeline from a preset or an explicit configuration.

    Args:
        preset: Preset to start from (ignored when config is given).
        config: Full configuration.
        detector: External AI detector (None for heuristics only).
        **options: PipelineOptions fields (detector_timeout, max_workers, ...).

    Example:
        >>> pipeline = create_pipeline("scholarly", max_workers=2)
    """
    if config is None:
        config = CleaningConfiguration.for_preset(preset) if preset else CleaningConfiguration()
    return CleaningPipeline(config, PipelineOptions(**options), detector)


def clean_text(
    text: str,
    config: CleaningConfiguration | None = None,
    detector: AIDetector | None = None,
    options: PipelineOptions | None = None,
) -> PipelineResult:
    """Clean one document with a fresh pipeline."""
    return CleaningPipeline(config, options, detector).run(text)
