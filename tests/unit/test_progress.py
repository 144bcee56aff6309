"""
Unit tests for run progress tracking.
"""

import pytest

from bookclean.models import CleaningStep, PipelinePhase, StepState
from bookclean.progress import CleaningProgress

STEPS = (
    CleaningStep.ANALYZE_STRUCTURE,
    CleaningStep.REMOVE_FRONT_MATTER,
    CleaningStep.REFLOW_PARAGRAPHS,
    CleaningStep.FINAL_QUALITY_REVIEW,
)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    """Return a manually advanced clock."""
    return FakeClock()


@pytest.fixture
def progress(clock):
    """Return progress over four enabled steps."""
    return CleaningProgress(STEPS, clock=clock)


class TestTransitions:
    """Test step status transitions."""

    def test_all_steps_start_pending(self, progress):
        """Every step, enabled or not, starts pending."""
        snap = progress.snapshot()
        assert len(snap.statuses) == 16
        assert all(s.state is StepState.PENDING for s in snap.statuses.values())
        assert snap.overall_progress == 0.0
        assert snap.elapsed_seconds == 0.0

    def test_start_sets_current_step(self, progress):
        """Starting a step makes it current and processing."""
        progress.start(CleaningStep.REMOVE_FRONT_MATTER)
        snap = progress.snapshot()
        assert snap.current_step is CleaningStep.REMOVE_FRONT_MATTER
        assert snap.current_phase is PipelinePhase.STRUCTURAL_CLEANING
        assert snap.statuses[CleaningStep.REMOVE_FRONT_MATTER].state is StepState.PROCESSING

    def test_complete(self, progress):
        """Completing a step records counts and clears the current step."""
        progress.start(CleaningStep.ANALYZE_STRUCTURE)
        progress.complete(CleaningStep.ANALYZE_STRUCTURE, 2000, 0)
        snap = progress.snapshot()
        assert snap.current_step is None
        assert snap.completed_count == 1
        assert progress.status(CleaningStep.ANALYZE_STRUCTURE).word_count == 2000

    def test_skip_and_fail(self, progress):
        """Skipped and failed steps are counted separately."""
        progress.skip(CleaningStep.REMOVE_FRONT_MATTER, "Disabled in configuration")
        progress.fail(CleaningStep.REFLOW_PARAGRAPHS, "boom")
        snap = progress.snapshot()
        assert snap.skipped_count == 1
        assert snap.failed_count == 1
        assert progress.status(CleaningStep.REFLOW_PARAGRAPHS).message == "boom"

    def test_cancel_marks_remaining(self, progress):
        """Cancel marks every non-terminal step cancelled."""
        progress.complete(CleaningStep.ANALYZE_STRUCTURE, 10, 0)
        progress.start(CleaningStep.REMOVE_FRONT_MATTER)
        cancelled = progress.cancel()
        assert CleaningStep.REMOVE_FRONT_MATTER in cancelled
        assert CleaningStep.ANALYZE_STRUCTURE not in cancelled
        snap = progress.snapshot()
        assert snap.cancelled
        assert snap.current_step is None
        assert snap.statuses[CleaningStep.ANALYZE_STRUCTURE].state is StepState.COMPLETED
        assert snap.cancelled_count == 15


class TestOverallProgress:
    """Test progress fractions and time estimates."""

    def test_fraction_of_enabled_steps(self, progress):
        """Overall progress counts terminal enabled steps."""
        progress.complete(CleaningStep.ANALYZE_STRUCTURE, 10, 0)
        assert progress.snapshot().overall_progress == pytest.approx(0.25)
        assert progress.snapshot().percentage == 25

    def test_disabled_steps_do_not_count(self, progress):
        """Finishing a step that is not enabled does not move progress."""
        progress.skip(CleaningStep.REMOVE_INDEX, "Disabled in configuration")
        assert progress.snapshot().overall_progress == 0.0

    def test_chunk_progress_counts_within_step(self, progress):
        """Chunk progress of the current step adds a partial share."""
        progress.complete(CleaningStep.ANALYZE_STRUCTURE, 10, 0)
        progress.complete(CleaningStep.REMOVE_FRONT_MATTER, 10, 1)
        progress.start(CleaningStep.REFLOW_PARAGRAPHS)
        progress.update_chunk(1, 2)
        snap = progress.snapshot()
        assert snap.chunk_fraction == 0.5
        assert snap.overall_progress == pytest.approx(2.5 / 4)

    def test_chunk_progress_is_clamped(self, progress):
        """Chunk counts cannot exceed the total."""
        progress.start(CleaningStep.REFLOW_PARAGRAPHS)
        progress.update_chunk(5, 3)
        snap = progress.snapshot()
        assert snap.chunks_done == 3
        assert snap.chunks_total == 3

    def test_no_enabled_steps(self, clock):
        """A run with nothing enabled is complete."""
        assert CleaningProgress((), clock=clock).snapshot().overall_progress == 1.0

    def test_estimate_needs_progress(self, progress, clock):
        """No estimate is given before any step finishes."""
        progress.start(CleaningStep.ANALYZE_STRUCTURE)
        clock.now += 5
        assert progress.snapshot().estimated_remaining_seconds is None

    def test_remaining_time_estimate(self, progress, clock):
        """The estimate scales elapsed time by the remaining share."""
        progress.start(CleaningStep.ANALYZE_STRUCTURE)
        clock.now += 10
        progress.complete(CleaningStep.ANALYZE_STRUCTURE, 10, 0)
        snap = progress.snapshot()
        assert snap.elapsed_seconds == pytest.approx(10)
        assert snap.estimated_remaining_seconds == pytest.approx(30)
        assert "~30s remaining" in snap.summary()

    def test_elapsed_stops_at_finish(self, progress, clock):
        """Elapsed time freezes once the run finishes."""
        progress.start(CleaningStep.ANALYZE_STRUCTURE)
        clock.now += 4
        progress.finish()
        clock.now += 100
        assert progress.snapshot().elapsed_seconds == pytest.approx(4)

    def test_no_estimate_after_cancel(self, progress, clock):
        """A cancelled run gives no estimate."""
        progress.complete(CleaningStep.ANALYZE_STRUCTURE, 10, 0)
        progress.complete(CleaningStep.REMOVE_FRONT_MATTER, 10, 0)
        progress.cancel()
        assert progress.snapshot().estimated_remaining_seconds is None


class TestListeners:
    """Test push notifications."""

    def test_listener_receives_snapshots(self, progress):
        """Listeners get a snapshot after each change."""
        seen = []
        progress.add_listener(seen.append)
        progress.start(CleaningStep.ANALYZE_STRUCTURE)
        progress.complete(CleaningStep.ANALYZE_STRUCTURE, 10, 0)
        assert len(seen) == 2
        assert seen[0].current_step is CleaningStep.ANALYZE_STRUCTURE
        assert seen[1].completed_count == 1

    def test_snapshots_are_immutable(self, progress):
        """Snapshot status maps cannot be modified."""
        snap = progress.snapshot()
        with pytest.raises(TypeError):
            snap.statuses[CleaningStep.ANALYZE_STRUCTURE] = None

    def test_failing_listener_is_ignored(self, progress):
        """A listener that raises does not interrupt progress updates."""
        seen = []

        def broken(snap):
            raise RuntimeError("display gone")

        progress.add_listener(broken)
        progress.add_listener(seen.append)
        progress.start(CleaningStep.ANALYZE_STRUCTURE)
        assert len(seen) == 1
        assert progress.status(CleaningStep.ANALYZE_STRUCTURE).state is StepState.PROCESSING
