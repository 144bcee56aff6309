"""
Unit tests for the accumulated-context ledger.
"""

import pytest

from bookclean.context import (
    AccumulatedContext,
    ConfirmedBoundary,
    ContentTransformation,
    ContextCreated,
    ContextEvent,
    FlaggedContent,
    PhaseStarted,
    RemovalRecord,
    RemovalRecorded,
    UserNotification,
)
from bookclean.exceptions import InvariantViolationError
from bookclean.models import (
    BoundaryType,
    CheckpointType,
    CleaningStep,
    FlagReason,
    LineRange,
    PipelinePhase,
    RemovalType,
    TransformationType,
    ValidationMethod,
)


def removal(step=CleaningStep.REMOVE_FRONT_MATTER, start=1, end=45, words=300,
            method=ValidationMethod.PHASE_AB, removal_type=RemovalType.FRONT_MATTER):
    return RemovalRecord(
        step=step,
        removal_type=removal_type,
        line_range=LineRange(start, end),
        word_count=words,
        confidence=0.9,
        validation_method=method,
    )


@pytest.fixture
def ledger():
    """Return a freshly created ledger."""
    return AccumulatedContext.create(document_id="orchard")


class TestCreation:
    """Test ledger creation and event-log rules."""

    def test_create(self, ledger):
        """A new ledger has an id, a document id and no removals."""
        assert ledger.id
        assert ledger.document_id == "orchard"
        assert ledger.created_at is not None
        assert ledger.total_lines_removed == 0
        assert len(ledger.events) == 1

    def test_first_event_must_be_created(self):
        """A ledger cannot start with anything but ContextCreated."""
        with pytest.raises(InvariantViolationError, match="must start with"):
            AccumulatedContext().apply(PhaseStarted(phase=PipelinePhase.RECONNAISSANCE))

    def test_cannot_create_twice(self, ledger):
        """A second ContextCreated event is rejected."""
        with pytest.raises(InvariantViolationError, match="already created"):
            ledger.apply(ContextCreated(context_id="x", document_id="y"))
        assert ledger.document_id == "orchard"

    def test_unknown_event(self, ledger):
        """Events without a handler are rejected."""
        with pytest.raises(InvariantViolationError, match="Unknown ledger event"):
            ledger.apply(ContextEvent())

    def test_listeners_see_applied_events(self, ledger):
        """Subscribers are called after each event."""
        seen = []
        ledger.subscribe(seen.append)
        ledger.start_phase(PipelinePhase.RECONNAISSANCE)
        assert len(seen) == 1
        assert isinstance(seen[0], PhaseStarted)

    def test_last_updated_moves_forward(self, ledger):
        """Every event strictly advances last_updated_at."""
        stamps = [ledger.last_updated_at]
        for phase in (PipelinePhase.RECONNAISSANCE, PipelinePhase.METADATA_EXTRACTION):
            ledger.start_phase(phase)
            stamps.append(ledger.last_updated_at)
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)


class TestPhases:
    """Test phase progress tracking."""

    def test_complete_phase(self, ledger):
        """Completing a phase records it once."""
        ledger.start_phase(PipelinePhase.RECONNAISSANCE)
        ledger.complete_phase(PipelinePhase.RECONNAISSANCE)
        assert ledger.current_phase is PipelinePhase.RECONNAISSANCE
        assert ledger.completed_phases == [PipelinePhase.RECONNAISSANCE]

    def test_complete_phase_twice(self, ledger):
        """A phase cannot complete twice."""
        ledger.complete_phase(PipelinePhase.RECONNAISSANCE)
        with pytest.raises(InvariantViolationError, match="already completed"):
            ledger.complete_phase(PipelinePhase.RECONNAISSANCE)
        assert ledger.completed_phases == [PipelinePhase.RECONNAISSANCE]

    def test_skips(self, ledger):
        """Skipped phases and steps keep their reasons."""
        ledger.skip_phase(PipelinePhase.REFERENCE_CLEANING, "No steps enabled")
        ledger.skip_step(CleaningStep.REMOVE_CITATIONS, "Disabled in configuration")
        assert ledger.skipped_phases[PipelinePhase.REFERENCE_CLEANING] == "No steps enabled"
        assert ledger.skipped_steps[CleaningStep.REMOVE_CITATIONS] == "Disabled in configuration"


class TestRemovals:
    """Test removal recording and its invariants."""

    def test_totals_track_removals(self, ledger):
        """Running totals equal the sums over recorded removals."""
        ledger.record_removal(removal())
        ledger.record_removal(
            removal(CleaningStep.REMOVE_INDEX, 150, 182, 120, removal_type=RemovalType.INDEX)
        )
        assert ledger.total_lines_removed == 45 + 33
        assert ledger.total_words_removed == 420
        assert ledger.lines_removed_in(PipelinePhase.STRUCTURAL_CLEANING) == 78
        assert ledger.words_removed_in(PipelinePhase.SEMANTIC_CLEANING) == 0

    def test_unvalidated_removal_from_hybrid_step(self, ledger):
        """Only code-only steps may record unvalidated removals."""
        with pytest.raises(InvariantViolationError, match="Unvalidated removal"):
            ledger.record_removal(removal(method=ValidationMethod.NO_VALIDATION))
        assert ledger.removals == []
        assert ledger.total_lines_removed == 0

    def test_unvalidated_removal_from_code_only_step(self, ledger):
        """Special-character cleanup may record unvalidated removals."""
        ledger.record_removal(
            removal(
                CleaningStep.CLEAN_SPECIAL_CHARACTERS,
                10,
                10,
                1,
                method=ValidationMethod.NO_VALIDATION,
                removal_type=RemovalType.SPECIAL_CHARACTERS,
            )
        )
        assert len(ledger.removals) == 1

    def test_overlap_within_step(self, ledger):
        """One step cannot remove overlapping ranges."""
        ledger.record_removal(removal(start=1, end=20))
        with pytest.raises(InvariantViolationError, match="Overlapping removals"):
            ledger.record_removal(removal(start=20, end=30))
        assert ledger.total_lines_removed == 20

    def test_overlap_across_steps_allowed(self, ledger):
        """Different steps may refer to the same line numbers."""
        ledger.record_removal(removal(start=1, end=20))
        ledger.record_removal(
            removal(CleaningStep.REMOVE_INDEX, 10, 15, 30, removal_type=RemovalType.INDEX)
        )
        assert len(ledger.removals) == 2

    def test_inline_removal_counts_words_only(self, ledger):
        """Stripping words from lines that stay removes no lines."""
        ledger.record_removal(
            RemovalRecord(
                step=CleaningStep.REMOVE_CITATIONS,
                removal_type=RemovalType.CITATIONS,
                line_range=LineRange(60, 62),
                word_count=6,
                confidence=0.9,
                validation_method=ValidationMethod.PHASE_ABC,
                inline=True,
            )
        )
        assert ledger.removals[0].lines_removed == 0
        assert ledger.total_lines_removed == 0
        assert ledger.total_words_removed == 6
        assert ledger.lines_removed_in(PipelinePhase.REFERENCE_CLEANING) == 0
        assert AccumulatedContext.replay(ledger.events).total_words_removed == 6

    def test_removals_for(self, ledger):
        """Removals can be listed per step on the ledger and its view."""
        ledger.record_removal(removal())
        ledger.record_removal(
            removal(CleaningStep.REMOVE_INDEX, 150, 182, 120, removal_type=RemovalType.INDEX)
        )
        assert [r.line_range for r in ledger.removals_for(CleaningStep.REMOVE_INDEX)] == [
            LineRange(150, 182)
        ]
        assert ledger.view().removals_for(CleaningStep.REMOVE_INDEX) == ledger.removals_for(
            CleaningStep.REMOVE_INDEX
        )

    def test_overlapping_boundaries(self, ledger):
        """Confirmed boundaries from one step cannot overlap."""
        boundary = ConfirmedBoundary(
            step=CleaningStep.REMOVE_FRONT_MATTER,
            boundary_type=BoundaryType.FRONT_MATTER_END,
            line_range=LineRange(1, 45),
            confidence=0.9,
            validation_method=ValidationMethod.PHASE_AB,
        )
        ledger.record_boundary(boundary)
        with pytest.raises(InvariantViolationError, match="Overlapping confirmed boundaries"):
            ledger.record_boundary(boundary)
        assert len(ledger.confirmed_boundaries) == 1


class TestRecords:
    """Test transformations, checkpoints, flags and recovery records."""

    def test_transformation_ranges(self, ledger):
        """Reflow and split transformations record their ranges."""
        ledger.record_transformation(
            ContentTransformation(
                step=CleaningStep.REFLOW_PARAGRAPHS,
                transformation_type=TransformationType.PARAGRAPH_REFLOW,
                description="Joined 4 lines",
                line_range=LineRange(3, 6),
            )
        )
        ledger.record_transformation(
            ContentTransformation(
                step=CleaningStep.OPTIMIZE_PARAGRAPH_LENGTH,
                transformation_type=TransformationType.PARAGRAPH_SPLIT,
                description="Split paragraph",
                line_range=LineRange(8, 8),
            )
        )
        assert ledger.reflowed_paragraph_ranges == [LineRange(3, 6)]
        assert ledger.optimized_paragraph_ranges == [LineRange(8, 8)]

    def test_failed_checkpoint_warns(self, ledger):
        """A failed checkpoint is stored with a warning."""
        ledger.record_checkpoint(CheckpointType.SEMANTIC_INTEGRITY, False, "Too many lines")
        assert ledger.failed_checkpoints[CheckpointType.SEMANTIC_INTEGRITY] == "Too many lines"
        assert "semantic_integrity" in ledger.validation_warnings[0]

    def test_passing_clears_failure(self, ledger):
        """A later pass removes the earlier failure."""
        ledger.record_checkpoint(CheckpointType.SEMANTIC_INTEGRITY, False, "Too many lines")
        ledger.record_checkpoint(CheckpointType.SEMANTIC_INTEGRITY, True)
        assert CheckpointType.SEMANTIC_INTEGRITY not in ledger.failed_checkpoints
        assert ledger.passed_checkpoints == [CheckpointType.SEMANTIC_INTEGRITY]

    def test_flags_and_notifications(self, ledger):
        """Flags and notifications are appended in order."""
        ledger.flag_content(
            FlaggedContent(
                step=CleaningStep.REMOVE_INDEX,
                line_range=LineRange(150, 180),
                reason=FlagReason.LOW_CONFIDENCE,
                confidence=0.4,
            )
        )
        ledger.queue_notification(UserNotification("Index kept", CleaningStep.REMOVE_INDEX))
        assert ledger.flagged_content_ranges[0].reason is FlagReason.LOW_CONFIDENCE
        assert ledger.user_notifications[0].message == "Index kept"

    def test_fallback_error_and_warning(self, ledger):
        """Fallbacks, errors and warnings are recorded."""
        ledger.record_fallback(CleaningStep.REMOVE_INDEX, "Detector call 'index' timed out")
        ledger.record_error("boom", CleaningStep.REMOVE_PAGE_NUMBERS)
        ledger.record_warning("Chunk 2: rejected")
        assert "timed out" in ledger.fallbacks_used[CleaningStep.REMOVE_INDEX]
        assert ledger.has_recovery_errors
        assert ledger.error_messages == ["boom"]
        assert ledger.validation_warnings == ["Chunk 2: rejected"]


class TestSnapshotsAndReplay:
    """Test snapshots, views and event replay."""

    def test_snapshot_and_removals_since(self, ledger):
        """removals_since() returns removals recorded after a snapshot."""
        ledger.record_removal(removal())
        snapshot = ledger.create_snapshot("after front matter")
        ledger.record_removal(
            removal(CleaningStep.REMOVE_INDEX, 150, 182, 120, removal_type=RemovalType.INDEX)
        )
        assert snapshot.removal_count == 1
        assert snapshot.total_lines_removed == 45
        assert [r.step for r in ledger.removals_since(snapshot)] == [CleaningStep.REMOVE_INDEX]
        assert ledger.snapshots == [snapshot]

    def test_view_is_detached(self, ledger):
        """A view does not change when the ledger does."""
        view = ledger.view()
        ledger.record_removal(removal())
        assert view.removals == ()
        assert ledger.view().removals_for(CleaningStep.REMOVE_FRONT_MATTER)[0].word_count == 300

    def test_replay_rebuilds_identical_ledger(self, ledger):
        """Replaying the event log reproduces the ledger state."""
        ledger.start_phase(PipelinePhase.STRUCTURAL_CLEANING)
        ledger.record_removal(removal())
        ledger.record_checkpoint(CheckpointType.STRUCTURAL_INTEGRITY, True)
        ledger.complete_phase(PipelinePhase.STRUCTURAL_CLEANING)

        copy = AccumulatedContext.replay(ledger.events)
        assert copy.id == ledger.id
        assert copy.removals == ledger.removals
        assert copy.total_lines_removed == ledger.total_lines_removed
        assert copy.completed_phases == ledger.completed_phases
        assert copy.last_updated_at == ledger.last_updated_at

    def test_to_dict(self, ledger):
        """to_dict() summarizes removals with their validation method."""
        ledger.record_removal(removal())
        data = ledger.to_dict()
        assert data["document_id"] == "orchard"
        assert data["total_lines_removed"] == 45
        assert data["removals"][0]["validation"] == "phase_ab"
        assert data["removals"][0]["lines"] == [1, 45]


class TestBatches:
    """Test applying several events at once."""

    def test_batch_applied(self, ledger):
        """A valid batch is applied in order."""
        ledger.apply_all(
            [
                RemovalRecorded(record=removal(start=1, end=10, words=50)),
                RemovalRecorded(record=removal(start=11, end=20, words=40)),
            ]
        )
        assert ledger.total_lines_removed == 20
        assert ledger.total_words_removed == 90
        assert len(ledger.events) == 3

    def test_rejected_batch_leaves_ledger_untouched(self, ledger):
        """One bad event in a batch keeps every event of the batch out."""
        ledger.record_removal(
            removal(CleaningStep.REMOVE_INDEX, 150, 182, 120, removal_type=RemovalType.INDEX)
        )
        before = ledger.events
        with pytest.raises(InvariantViolationError, match="Overlapping removals"):
            ledger.apply_all(
                [
                    RemovalRecorded(record=removal(start=1, end=1, words=5)),
                    RemovalRecorded(record=removal(start=1, end=2, words=9)),
                ]
            )
        assert ledger.events == before
        assert ledger.removals_for(CleaningStep.REMOVE_FRONT_MATTER) == []
        assert ledger.total_lines_removed == 33
        assert ledger.total_words_removed == 120
