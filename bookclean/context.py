"""
Accumulated context: the audit ledger of a cleaning run.

The ledger is event-sourced. Every public operation builds an immutable event
and passes it to apply(), which is the only code path that changes state. The
event log can be replayed to rebuild an identical ledger.

Only the orchestrator holds an AccumulatedContext. Steps see a frozen
ContextView and return proposed events instead of writing to the ledger.

Example:
    >>> ctx = AccumulatedContext.create(document_id="book-1")
    >>> ctx.start_phase(PipelinePhase.STRUCTURAL_CLEANING)
    >>> ctx.record_removal(RemovalRecord(...))
    >>> ctx.total_lines_removed
    45
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

from bookclean.exceptions import InvariantViolationError
from bookclean.models import (
    BoundaryType,
    CheckpointType,
    CleaningStep,
    FlagReason,
    LineRange,
    PipelinePhase,
    ProcessingMethod,
    RemovalType,
    TransformationType,
    ValidationMethod,
)

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# AUDIT RECORDS
# =============================================================================


@dataclass(frozen=True)
class RemovalRecord:
    """A block of lines removed by a step.

    Line ranges refer to the text as it was when the step ran. Inline removals
    strip words from lines that stay in the text and remove no lines.
    """

    step: CleaningStep
    removal_type: RemovalType
    line_range: LineRange
    word_count: int
    confidence: float
    validation_method: ValidationMethod
    description: str = ""
    inline: bool = False
    id: str = field(default_factory=_new_id)
    timestamp: datetime = field(default_factory=_now)

    @property
    def phase(self) -> PipelinePhase:
        return self.step.phase

    @property
    def lines_removed(self) -> int:
        return 0 if self.inline else self.line_range.count


@dataclass(frozen=True)
class ContentTransformation:
    """A change that rewrote text rather than removing it."""

    step: CleaningStep
    transformation_type: TransformationType
    description: str
    change_count: int = 0
    line_range: LineRange | None = None
    confidence: float = 1.0
    validation_method: ValidationMethod = ValidationMethod.NO_VALIDATION
    id: str = field(default_factory=_new_id)
    timestamp: datetime = field(default_factory=_now)

    @property
    def phase(self) -> PipelinePhase:
        return self.step.phase


@dataclass(frozen=True)
class ConfirmedBoundary:
    """A structural boundary accepted by validation."""

    step: CleaningStep
    boundary_type: BoundaryType
    line_range: LineRange
    confidence: float
    validation_method: ValidationMethod
    id: str = field(default_factory=_new_id)
    timestamp: datetime = field(default_factory=_now)

    @property
    def phase(self) -> PipelinePhase:
        return self.step.phase


@dataclass(frozen=True)
class FlaggedContent:
    """Content left in place and deferred to user review."""

    step: CleaningStep
    line_range: LineRange
    reason: FlagReason
    confidence: float
    description: str = ""
    suggested_action: str | None = None
    id: str = field(default_factory=_new_id)
    timestamp: datetime = field(default_factory=_now)

    @property
    def phase(self) -> PipelinePhase:
        return self.step.phase


@dataclass(frozen=True)
class UserNotification:
    message: str
    step: CleaningStep | None = None
    severity: str = "info"
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class ContextSnapshot:
    """
    Point-in-time summary of the ledger.

    Holds counts, never removed content; enough to explain what changed
    since the snapshot was taken.
    """

    label: str
    phase: PipelinePhase | None
    completed_phases: tuple[PipelinePhase, ...]
    total_lines_removed: int
    total_words_removed: int
    removal_count: int
    transformation_count: int
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_now)


# =============================================================================
# EVENTS
# =============================================================================


@dataclass(frozen=True)
class ContextEvent:
    """Base class for ledger events."""

    at: datetime = field(default_factory=_now, kw_only=True)


@dataclass(frozen=True)
class ContextCreated(ContextEvent):
    context_id: str
    document_id: str


@dataclass(frozen=True)
class StructureHintsAttached(ContextEvent):
    structure_hints_id: str


@dataclass(frozen=True)
class PhaseStarted(ContextEvent):
    phase: PipelinePhase


@dataclass(frozen=True)
class PhaseCompleted(ContextEvent):
    phase: PipelinePhase


@dataclass(frozen=True)
class PhaseSkipped(ContextEvent):
    phase: PipelinePhase
    reason: str


@dataclass(frozen=True)
class StepSkipped(ContextEvent):
    step: CleaningStep
    reason: str


@dataclass(frozen=True)
class RemovalRecorded(ContextEvent):
    record: RemovalRecord


@dataclass(frozen=True)
class BoundaryConfirmed(ContextEvent):
    boundary: ConfirmedBoundary


@dataclass(frozen=True)
class TransformationRecorded(ContextEvent):
    transformation: ContentTransformation


@dataclass(frozen=True)
class CheckpointRecorded(ContextEvent):
    checkpoint: CheckpointType
    passed: bool
    reason: str = ""


@dataclass(frozen=True)
class ContentFlagged(ContextEvent):
    flag: FlaggedContent


@dataclass(frozen=True)
class NotificationQueued(ContextEvent):
    notification: UserNotification


@dataclass(frozen=True)
class FallbackRecorded(ContextEvent):
    step: CleaningStep
    reason: str


@dataclass(frozen=True)
class SnapshotCreated(ContextEvent):
    snapshot: ContextSnapshot


@dataclass(frozen=True)
class ErrorRecorded(ContextEvent):
    message: str
    step: CleaningStep | None = None


@dataclass(frozen=True)
class WarningRecorded(ContextEvent):
    message: str


# =============================================================================
# READ-ONLY VIEW
# =============================================================================


@dataclass(frozen=True)
class ContextView:
    """What a step may know about the ledger. Frozen; never the ledger itself."""

    document_id: str
    current_phase: PipelinePhase | None
    completed_phases: tuple[PipelinePhase, ...]
    removals: tuple[RemovalRecord, ...]
    confirmed_boundaries: tuple[ConfirmedBoundary, ...]
    transformations: tuple[ContentTransformation, ...]
    flagged_content: tuple[FlaggedContent, ...]
    fallbacks_used: Mapping[CleaningStep, str]
    total_lines_removed: int
    total_words_removed: int

    def removals_for(self, step: CleaningStep) -> list[RemovalRecord]:
        return [r for r in self.removals if r.step is step]


# =============================================================================
# LEDGER
# =============================================================================


class AccumulatedContext:
    """
    Append-only memory of a cleaning run.

    State only changes through apply(). Running totals always equal the sums
    over the removal list, completed phases only grow, and every event moves
    last_updated_at forward.
    """

    def __init__(self) -> None:
        self.id: str = ""
        self.document_id: str = ""
        self.structure_hints_id: str | None = None
        self.created_at: datetime | None = None
        self.last_updated_at: datetime | None = None

        # Phase progress
        self.current_phase: PipelinePhase | None = None
        self.completed_phases: list[PipelinePhase] = []
        self.skipped_phases: dict[PipelinePhase, str] = {}
        self.skipped_steps: dict[CleaningStep, str] = {}
        self.phase_completion_times: dict[PipelinePhase, datetime] = {}

        # Removals and changes
        self.removals: list[RemovalRecord] = []
        self.confirmed_boundaries: list[ConfirmedBoundary] = []
        self.total_lines_removed: int = 0
        self.total_words_removed: int = 0
        self.transformations: list[ContentTransformation] = []
        self.reflowed_paragraph_ranges: list[LineRange] = []
        self.optimized_paragraph_ranges: list[LineRange] = []

        # Checkpoints, flags, notifications
        self.passed_checkpoints: list[CheckpointType] = []
        self.failed_checkpoints: dict[CheckpointType, str] = {}
        self.validation_warnings: list[str] = []
        self.flagged_content_ranges: list[FlaggedContent] = []
        self.user_notifications: list[UserNotification] = []
        self.fallbacks_used: dict[CleaningStep, str] = {}

        # Recovery
        self.snapshots: list[ContextSnapshot] = []
        self.has_recovery_errors: bool = False
        self.error_messages: list[str] = []

        self._events: list[ContextEvent] = []
        self._listeners: list[Callable[[ContextEvent], None]] = []
        self._handlers: dict[type, Callable[[Any], None]] = {
            ContextCreated: self._on_created,
            StructureHintsAttached: self._on_hints_attached,
            PhaseStarted: self._on_phase_started,
            PhaseCompleted: self._on_phase_completed,
            PhaseSkipped: self._on_phase_skipped,
            StepSkipped: self._on_step_skipped,
            RemovalRecorded: self._on_removal,
            BoundaryConfirmed: self._on_boundary,
            TransformationRecorded: self._on_transformation,
            CheckpointRecorded: self._on_checkpoint,
            ContentFlagged: self._on_flag,
            NotificationQueued: self._on_notification,
            FallbackRecorded: self._on_fallback,
            SnapshotCreated: self._on_snapshot,
            ErrorRecorded: self._on_error,
            WarningRecorded: self._on_warning,
        }

    @classmethod
    def create(cls, document_id: str) -> AccumulatedContext:
        context = cls()
        context.apply(ContextCreated(context_id=_new_id(), document_id=document_id))
        return context

    @classmethod
    def replay(cls, events: Iterable[ContextEvent]) -> AccumulatedContext:
        """Rebuild a ledger from an event log."""
        context = cls()
        for event in events:
            context.apply(event)
        return context

    @property
    def events(self) -> tuple[ContextEvent, ...]:
        return tuple(self._events)

    def subscribe(self, listener: Callable[[ContextEvent], None]) -> None:
        """Register a callback invoked after each applied event."""
        self._listeners.append(listener)

    # -------------------------------------------------------------------------
    # The single mutation path
    # -------------------------------------------------------------------------

    def apply(self, event: ContextEvent) -> None:
        """
        Apply one event to the ledger and append it to the log.

        Raises:
            InvariantViolationError: If the event would break a ledger
                invariant. The ledger is left unchanged in that case.
        """
        handler = self._handlers.get(type(event))
        if handler is None:
            raise InvariantViolationError(f"Unknown ledger event {type(event).__name__}")
        if not self._events and not isinstance(event, ContextCreated):
            raise InvariantViolationError("Ledger must start with a ContextCreated event")

        handler(event)
        self._events.append(event)
        self._advance_clock(event.at)
        self._check_totals()

        for listener in self._listeners:
            listener(event)

    def apply_all(self, events: Iterable[ContextEvent]) -> None:
        """
        Apply a batch of events: all of them or none.

        The batch is first applied to a replayed copy of the ledger, so an
        event that breaks an invariant leaves this ledger untouched.

        Raises:
            InvariantViolationError: If any event in the batch is rejected.
        """
        batch = list(events)
        trial = AccumulatedContext.replay(self._events)
        for event in batch:
            trial.apply(event)
        for event in batch:
            self.apply(event)

    def _advance_clock(self, at: datetime) -> None:
        if self.last_updated_at is not None and at <= self.last_updated_at:
            at = self.last_updated_at + timedelta(microseconds=1)
        self.last_updated_at = at

    def _check_totals(self) -> None:
        lines = sum(r.lines_removed for r in self.removals)
        words = sum(r.word_count for r in self.removals)
        if lines != self.total_lines_removed or words != self.total_words_removed:
            raise InvariantViolationError(
                f"Running totals out of sync: {self.total_lines_removed}/{lines} lines, "
                f"{self.total_words_removed}/{words} words"
            )

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _on_created(self, event: ContextCreated) -> None:
        if self._events:
            raise InvariantViolationError("Ledger already created")
        self.id = event.context_id
        self.document_id = event.document_id
        self.created_at = event.at

    def _on_hints_attached(self, event: StructureHintsAttached) -> None:
        self.structure_hints_id = event.structure_hints_id

    def _on_phase_started(self, event: PhaseStarted) -> None:
        self.current_phase = event.phase

    def _on_phase_completed(self, event: PhaseCompleted) -> None:
        if event.phase in self.completed_phases:
            raise InvariantViolationError(f"Phase {event.phase.value} already completed")
        self.completed_phases.append(event.phase)
        self.phase_completion_times[event.phase] = event.at

    def _on_phase_skipped(self, event: PhaseSkipped) -> None:
        self.skipped_phases[event.phase] = event.reason

    def _on_step_skipped(self, event: StepSkipped) -> None:
        self.skipped_steps[event.step] = event.reason

    def _on_removal(self, event: RemovalRecorded) -> None:
        record = event.record
        if (
            record.validation_method is ValidationMethod.NO_VALIDATION
            and record.step.processing_method is not ProcessingMethod.CODE_ONLY
        ):
            raise InvariantViolationError(
                f"Unvalidated removal from {record.step.display_name}, "
                "which is not a code-only step"
            )
        for existing in self.removals:
            if existing.step is record.step and existing.line_range.overlaps(record.line_range):
                raise InvariantViolationError(
                    f"Overlapping removals in {record.step.display_name}: "
                    f"{existing.line_range} and {record.line_range}"
                )
        self.removals.append(record)
        self.total_lines_removed += record.lines_removed
        self.total_words_removed += record.word_count

    def _on_boundary(self, event: BoundaryConfirmed) -> None:
        boundary = event.boundary
        for existing in self.confirmed_boundaries:
            if existing.step is boundary.step and existing.line_range.overlaps(
                boundary.line_range
            ):
                raise InvariantViolationError(
                    f"Overlapping confirmed boundaries in {boundary.step.display_name}: "
                    f"{existing.line_range} and {boundary.line_range}"
                )
        self.confirmed_boundaries.append(boundary)

    def _on_transformation(self, event: TransformationRecorded) -> None:
        transformation = event.transformation
        self.transformations.append(transformation)
        if transformation.line_range is not None:
            if transformation.transformation_type is TransformationType.PARAGRAPH_REFLOW:
                self.reflowed_paragraph_ranges.append(transformation.line_range)
            elif transformation.transformation_type is TransformationType.PARAGRAPH_SPLIT:
                self.optimized_paragraph_ranges.append(transformation.line_range)

    def _on_checkpoint(self, event: CheckpointRecorded) -> None:
        if event.passed:
            self.passed_checkpoints.append(event.checkpoint)
            self.failed_checkpoints.pop(event.checkpoint, None)
        else:
            self.failed_checkpoints[event.checkpoint] = event.reason
            self.validation_warnings.append(
                f"Checkpoint {event.checkpoint.value} failed: {event.reason}"
            )

    def _on_flag(self, event: ContentFlagged) -> None:
        self.flagged_content_ranges.append(event.flag)

    def _on_notification(self, event: NotificationQueued) -> None:
        self.user_notifications.append(event.notification)

    def _on_fallback(self, event: FallbackRecorded) -> None:
        self.fallbacks_used[event.step] = event.reason

    def _on_snapshot(self, event: SnapshotCreated) -> None:
        self.snapshots.append(event.snapshot)

    def _on_error(self, event: ErrorRecorded) -> None:
        self.has_recovery_errors = True
        self.error_messages.append(event.message)

    def _on_warning(self, event: WarningRecorded) -> None:
        self.validation_warnings.append(event.message)

    # -------------------------------------------------------------------------
    # Append / mark operations
    # -------------------------------------------------------------------------

    def attach_structure_hints(self, hints_id: str) -> None:
        self.apply(StructureHintsAttached(structure_hints_id=hints_id))

    def start_phase(self, phase: PipelinePhase) -> None:
        self.apply(PhaseStarted(phase=phase))

    def complete_phase(self, phase: PipelinePhase) -> None:
        self.apply(PhaseCompleted(phase=phase))

    def skip_phase(self, phase: PipelinePhase, reason: str) -> None:
        self.apply(PhaseSkipped(phase=phase, reason=reason))

    def skip_step(self, step: CleaningStep, reason: str) -> None:
        self.apply(StepSkipped(step=step, reason=reason))

    def record_removal(self, record: RemovalRecord) -> None:
        self.apply(RemovalRecorded(record=record))

    def record_boundary(self, boundary: ConfirmedBoundary) -> None:
        self.apply(BoundaryConfirmed(boundary=boundary))

    def record_transformation(self, transformation: ContentTransformation) -> None:
        self.apply(TransformationRecorded(transformation=transformation))

    def record_checkpoint(self, checkpoint: CheckpointType, passed: bool, reason: str = "") -> None:
        self.apply(CheckpointRecorded(checkpoint=checkpoint, passed=passed, reason=reason))

    def flag_content(self, flag: FlaggedContent) -> None:
        self.apply(ContentFlagged(flag=flag))

    def queue_notification(self, notification: UserNotification) -> None:
        self.apply(NotificationQueued(notification=notification))

    def record_fallback(self, step: CleaningStep, reason: str) -> None:
        self.apply(FallbackRecorded(step=step, reason=reason))

    def record_error(self, message: str, step: CleaningStep | None = None) -> None:
        self.apply(ErrorRecorded(message=message, step=step))

    def record_warning(self, message: str) -> None:
        self.apply(WarningRecorded(message=message))

    def create_snapshot(self, label: str) -> ContextSnapshot:
        snapshot = ContextSnapshot(
            label=label,
            phase=self.current_phase,
            completed_phases=tuple(self.completed_phases),
            total_lines_removed=self.total_lines_removed,
            total_words_removed=self.total_words_removed,
            removal_count=len(self.removals),
            transformation_count=len(self.transformations),
        )
        self.apply(SnapshotCreated(snapshot=snapshot))
        return snapshot

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def view(self) -> ContextView:
        return ContextView(
            document_id=self.document_id,
            current_phase=self.current_phase,
            completed_phases=tuple(self.completed_phases),
            removals=tuple(self.removals),
            confirmed_boundaries=tuple(self.confirmed_boundaries),
            transformations=tuple(self.transformations),
            flagged_content=tuple(self.flagged_content_ranges),
            fallbacks_used=MappingProxyType(dict(self.fallbacks_used)),
            total_lines_removed=self.total_lines_removed,
            total_words_removed=self.total_words_removed,
        )

    def removals_for(self, step: CleaningStep) -> list[RemovalRecord]:
        return [r for r in self.removals if r.step is step]

    def removals_since(self, snapshot: ContextSnapshot) -> list[RemovalRecord]:
        return self.removals[snapshot.removal_count :]

    def words_removed_in(self, phase: PipelinePhase) -> int:
        return sum(r.word_count for r in self.removals if r.phase is phase)

    def lines_removed_in(self, phase: PipelinePhase) -> int:
        return sum(r.lines_removed for r in self.removals if r.phase is phase)

    def to_dict(self) -> dict[str, Any]:
        """Plain-data summary for reports."""

        def _range(line_range: LineRange | None) -> list[int] | None:
            return [line_range.start, line_range.end] if line_range else None

        return {
            "id": self.id,
            "document_id": self.document_id,
            "structure_hints_id": self.structure_hints_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_updated_at": self.last_updated_at.isoformat() if self.last_updated_at else None,
            "completed_phases": [p.value for p in self.completed_phases],
            "skipped_phases": {p.value: r for p, r in self.skipped_phases.items()},
            "skipped_steps": {s.name.lower(): r for s, r in self.skipped_steps.items()},
            "total_lines_removed": self.total_lines_removed,
            "total_words_removed": self.total_words_removed,
            "removals": [
                {
                    "step": r.step.name.lower(),
                    "type": r.removal_type.value,
                    "lines": _range(r.line_range),
                    "words": r.word_count,
                    "inline": r.inline,
                    "confidence": r.confidence,
                    "validation": r.validation_method.value,
                    "description": r.description,
                }
                for r in self.removals
            ],
            "transformations": [
                {
                    "step": t.step.name.lower(),
                    "type": t.transformation_type.value,
                    "changes": t.change_count,
                    "description": t.description,
                }
                for t in self.transformations
            ],
            "flagged": [
                {
                    "step": f.step.name.lower(),
                    "lines": _range(f.line_range),
                    "reason": f.reason.value,
                    "confidence": f.confidence,
                    "description": f.description,
                }
                for f in self.flagged_content_ranges
            ],
            "passed_checkpoints": [c.value for c in self.passed_checkpoints],
            "failed_checkpoints": {c.value: r for c, r in self.failed_checkpoints.items()},
            "fallbacks_used": {s.name.lower(): r for s, r in self.fallbacks_used.items()},
            "validation_warnings": list(self.validation_warnings),
            "has_recovery_errors": self.has_recovery_errors,
            "error_messages": list(self.error_messages),
            "snapshots": [s.label for s in self.snapshots],
        }
