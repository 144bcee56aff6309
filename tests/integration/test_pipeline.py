"""
End-to-end tests for the cleaning pipeline on the sample book.
"""

import pytest
from conftest import (
    FRONT_MATTER_LINES,
    RUNNING_HEAD,
    FailingDetector,
    ScriptedDetector,
    SlowDetector,
    citations_result,
    front_matter_result,
    only_steps,
)

from bookclean import (
    AccumulatedContext,
    CleaningConfiguration,
    CleaningPipeline,
    CleaningStep,
    ContentType,
    DetectionKind,
    DetectionResult,
    FlagReason,
    LineRange,
    PipelineOptions,
    ProcessingMethod,
    RunStatus,
    StepState,
    ValidationMethod,
    clean_text,
    create_pipeline,
)
from bookclean.context import RemovalRecord
from bookclean.models import RemovalType
from bookclean.steps import StepCollaborator, StepOutcome


class Boom(StepCollaborator):
    step = CleaningStep.REMOVE_PAGE_NUMBERS

    def run(self, ctx):
        raise RuntimeError("page scan crashed")


class OverlappingRemovals(StepCollaborator):
    """Proposes two removals over the same line, the second one invalid."""

    step = CleaningStep.REMOVE_FRONT_MATTER

    def run(self, ctx):
        outcome = StepOutcome(text="\n".join(ctx.lines[2:]))
        for end in (1, 2):
            outcome.removals.append(
                RemovalRecord(
                    step=self.step,
                    removal_type=RemovalType.FRONT_MATTER,
                    line_range=LineRange(1, end),
                    word_count=4,
                    confidence=0.9,
                    validation_method=ValidationMethod.PHASE_C,
                )
            )
        outcome.pattern_updates = {"citation_count": 99}
        return outcome


def state_of(result, step):
    return result.progress.statuses[step].state


# =============================================================================
# DEFAULT RUN
# =============================================================================


class TestDefaultRun:
    """Test a full run on heuristics alone."""

    @pytest.fixture(scope="class")
    def result(self, noisy_book):
        return clean_text(noisy_book)

    def test_completes(self, result):
        """Every step runs and the run succeeds."""
        assert result.status is RunStatus.COMPLETED
        assert result.succeeded
        assert result.failed_steps == {}
        assert result.progress.overall_progress == 1.0

    def test_page_elements_removed(self, result):
        """Page numbers and running heads go, one removal per line."""
        removals = result.context.removals
        page_numbers = [r for r in removals if r.removal_type is RemovalType.PAGE_NUMBERS]
        headers = [r for r in removals if r.removal_type is RemovalType.HEADERS]
        assert len(page_numbers) == 6
        assert len(headers) == 6
        assert RUNNING_HEAD not in result.text.split("\n")

    def test_sections_removed_heuristically(self, result):
        """Front matter and index are found without a detector."""
        by_type = {r.removal_type: r for r in result.context.removals}
        assert by_type[RemovalType.FRONT_MATTER].validation_method is ValidationMethod.PHASE_C
        assert by_type[RemovalType.INDEX].validation_method is ValidationMethod.PHASE_C
        assert "ISBN" not in result.text
        assert "Apple orchards" not in result.text

    def test_ledger_totals(self, result):
        """Running totals match the removal list and survive replay."""
        ledger = result.context
        assert ledger.total_lines_removed == sum(r.lines_removed for r in ledger.removals)
        assert ledger.total_words_removed == sum(r.word_count for r in ledger.removals)
        replayed = AccumulatedContext.replay(ledger.events)
        assert replayed.total_lines_removed == ledger.total_lines_removed
        assert replayed.total_words_removed == ledger.total_words_removed

    def test_unvalidated_removals_are_code_only(self, result):
        """Only deterministic steps record removals without validation."""
        for removal in result.context.removals:
            if removal.validation_method is ValidationMethod.NO_VALIDATION:
                assert removal.step.processing_method is ProcessingMethod.CODE_ONLY

    def test_assembled_output(self, result):
        """The output carries title, chapter markers and the end marker."""
        assert result.text.startswith("# The Orchard Keeper\n")
        assert "<!-- CHAPTER: Chapter 1 -->" in result.text
        assert result.text.endswith("*** <!-- END OF THE ORCHARD KEEPER -->\n")
        assert result.metadata.author == "Margaret Ellison"

    def test_review_and_counts(self, result):
        """The review runs and the word counts reflect the removals."""
        assert result.review is not None
        assert 0.0 <= result.review.score <= 1.0
        assert 0 < result.cleaned_word_count < result.original_word_count
        assert 0 < result.word_reduction < 0.7

    def test_fallbacks_recorded(self, result):
        """Detector steps record that they ran on heuristics."""
        assert CleaningStep.REMOVE_INDEX in result.context.fallbacks_used
        assert CleaningStep.CLEAN_SPECIAL_CHARACTERS not in result.context.fallbacks_used


# =============================================================================
# DETECTOR-ASSISTED RUNS
# =============================================================================


class TestDetectorRuns:
    """Test runs with scripted detectors."""

    def test_front_matter_from_detector(self, book):
        """A confirmed detector region is removed with Layers A and B."""
        detector = ScriptedDetector({DetectionKind.FRONT_MATTER: front_matter_result()})
        config = only_steps(CleaningStep.REMOVE_FRONT_MATTER)
        result = CleaningPipeline(config, detector=detector).run(book)
        assert result.status is RunStatus.COMPLETED
        removals = result.context.removals_for(CleaningStep.REMOVE_FRONT_MATTER)
        assert len(removals) == 1
        assert removals[0].line_range == LineRange(1, FRONT_MATTER_LINES)
        assert removals[0].validation_method is ValidationMethod.PHASE_AB
        assert result.context.total_lines_removed == FRONT_MATTER_LINES

    def test_low_confidence_citations_are_flagged(self, cited_book):
        """Citations below the threshold stay in place and are flagged."""
        detector = ScriptedDetector({DetectionKind.CITATIONS: citations_result(0.4)})
        config = only_steps(CleaningStep.REMOVE_CITATIONS)
        result = CleaningPipeline(config, detector=detector).run(cited_book)
        assert result.context.removals == []
        flags = result.context.flagged_content_ranges
        assert any(f.reason is FlagReason.LOW_CONFIDENCE for f in flags)
        assert state_of(result, CleaningStep.REMOVE_CITATIONS) is StepState.COMPLETED
        assert "(Ellison, 1994)" in result.text

    def test_confident_citations_removed(self, cited_book):
        """Confident citation patterns confirmed by all layers are removed."""
        detector = ScriptedDetector({DetectionKind.CITATIONS: citations_result(0.9)})
        config = only_steps(CleaningStep.REMOVE_CITATIONS)
        result = CleaningPipeline(config, detector=detector).run(cited_book)
        removals = result.context.removals
        assert len(removals) == 6
        assert all(r.validation_method is ValidationMethod.PHASE_ABC for r in removals)
        assert all(r.word_count == 2 for r in removals)
        assert "(Ellison" not in result.text

    def test_inline_citations_remove_no_lines(self, cited_book):
        """Stripped citations count their words but no removed lines."""
        detector = ScriptedDetector({DetectionKind.CITATIONS: citations_result(0.95)})
        config = only_steps(CleaningStep.REMOVE_CITATIONS)
        result = CleaningPipeline(config, detector=detector).run(cited_book)
        ledger = result.context
        assert len(ledger.removals) == 6
        assert all(r.inline for r in ledger.removals)
        assert ledger.total_lines_removed == 0
        assert ledger.total_words_removed == 12

    def test_low_confidence_page_numbers(self, noisy_book):
        """Detector page patterns below the threshold are flagged, not trusted."""
        answer = DetectionResult(
            DetectionKind.PAGE_NUMBERS, 0.3, patterns={"page_number_patterns": [r"\d+"]}
        )
        detector = ScriptedDetector({DetectionKind.PAGE_NUMBERS: answer})
        config = only_steps(CleaningStep.REMOVE_PAGE_NUMBERS)
        result = CleaningPipeline(config, detector=detector).run(noisy_book)
        removals = result.context.removals_for(CleaningStep.REMOVE_PAGE_NUMBERS)
        assert len(removals) == 6
        assert all(r.validation_method is ValidationMethod.PHASE_C for r in removals)
        flags = [
            f
            for f in result.context.flagged_content_ranges
            if f.step is CleaningStep.REMOVE_PAGE_NUMBERS
        ]
        assert [f.reason for f in flags] == [FlagReason.LOW_CONFIDENCE]


    def test_detector_timeout_falls_back(self, book):
        """A hung detector times out and the heuristic path takes over."""
        detector = SlowDetector({DetectionKind.INDEX}, delay=0.5)
        config = only_steps(CleaningStep.REMOVE_INDEX)
        options = PipelineOptions(detector_timeout=0.1, poll_interval=0.01)
        result = CleaningPipeline(config, options, detector).run(book)
        assert result.status is RunStatus.COMPLETED
        assert "timed out" in result.context.fallbacks_used[CleaningStep.REMOVE_INDEX]
        removals = result.context.removals_for(CleaningStep.REMOVE_INDEX)
        assert removals[0].validation_method is ValidationMethod.PHASE_C

    def test_failing_detector(self, book):
        """A detector that always raises still yields a completed run."""
        result = CleaningPipeline(detector=FailingDetector()).run(book)
        assert result.status is RunStatus.COMPLETED
        assert result.context.fallbacks_used
        assert "backend exploded" in result.context.fallbacks_used[CleaningStep.REMOVE_INDEX]


# =============================================================================
# CONTENT TYPE, FAILURE AND CANCELLATION
# =============================================================================


class TestContentType:
    """Test content-type adjustments."""

    def test_poetry_keeps_line_structure(self, book):
        """Poetry skips reflow and paragraph optimization."""
        config = CleaningConfiguration(content_type=ContentType.POETRY)
        result = CleaningPipeline(config).run(book)
        assert state_of(result, CleaningStep.REFLOW_PARAGRAPHS) is StepState.SKIPPED
        assert state_of(result, CleaningStep.OPTIMIZE_PARAGRAPH_LENGTH) is StepState.SKIPPED
        assert result.configuration.reflow_paragraphs is False


class TestFailures:
    """Test step failure handling."""

    def test_failure_continues(self, noisy_book):
        """A crashing step is recorded and the run goes on."""
        pipeline = CleaningPipeline(collaborators={CleaningStep.REMOVE_PAGE_NUMBERS: Boom()})
        result = pipeline.run(noisy_book)
        assert result.status is RunStatus.PARTIAL
        assert "page scan crashed" in result.failed_steps[CleaningStep.REMOVE_PAGE_NUMBERS]
        assert state_of(result, CleaningStep.REMOVE_PAGE_NUMBERS) is StepState.FAILED
        assert state_of(result, CleaningStep.REMOVE_INDEX) is StepState.COMPLETED

    def test_failure_stops_when_configured(self, noisy_book):
        """Without continue_on_failure the remaining steps are skipped."""
        pipeline = CleaningPipeline(
            options=PipelineOptions(continue_on_failure=False),
            collaborators={CleaningStep.REMOVE_PAGE_NUMBERS: Boom()},
        )
        result = pipeline.run(noisy_book)
        assert result.status is RunStatus.FAILED
        assert state_of(result, CleaningStep.REMOVE_INDEX) is StepState.SKIPPED
        assert state_of(result, CleaningStep.FINAL_QUALITY_REVIEW) is StepState.SKIPPED

    def test_rejected_outcome_leaves_no_trace(self, book):
        """A step whose removals break the ledger keeps nothing of its outcome."""
        pipeline = CleaningPipeline(
            only_steps(CleaningStep.REMOVE_FRONT_MATTER),
            collaborators={CleaningStep.REMOVE_FRONT_MATTER: OverlappingRemovals()},
        )
        result = pipeline.run(book)
        assert result.status is RunStatus.PARTIAL
        assert "Overlapping removals" in result.failed_steps[CleaningStep.REMOVE_FRONT_MATTER]
        assert result.context.removals_for(CleaningStep.REMOVE_FRONT_MATTER) == []
        assert result.context.total_lines_removed == 0
        assert result.patterns.citation_count != 99
        assert "by Margaret Ellison" in result.text



class TestCancellation:
    """Test cooperative cancellation."""

    def test_cancel_between_steps(self, book):
        """Cancelling during a step stops the run before the next one."""
        pipeline = CleaningPipeline()

        def cancel_on_front_matter(snapshot):
            if snapshot.current_step is CleaningStep.REMOVE_FRONT_MATTER:
                pipeline.cancel()

        pipeline.add_progress_listener(cancel_on_front_matter)
        result = pipeline.run(book)
        assert result.status is RunStatus.CANCELLED
        assert state_of(result, CleaningStep.REMOVE_FRONT_MATTER) is StepState.COMPLETED
        assert state_of(result, CleaningStep.REMOVE_TABLE_OF_CONTENTS) is StepState.CANCELLED
        assert state_of(result, CleaningStep.REMOVE_INDEX) is StepState.CANCELLED
        assert any(r.removal_type is RemovalType.FRONT_MATTER for r in result.context.removals)
        assert result.progress.cancelled


class TestFactories:
    """Test the convenience constructors."""

    def test_create_pipeline_from_preset(self):
        """Presets and options are applied."""
        pipeline = create_pipeline("minimal", max_workers=2)
        assert pipeline.options.max_workers == 2
        assert not pipeline.config.is_step_enabled(CleaningStep.REMOVE_FRONT_MATTER)

    def test_explicit_config_wins(self):
        """An explicit configuration is used as given."""
        config = CleaningConfiguration(max_paragraph_words=120)
        pipeline = create_pipeline("minimal", config=config)
        assert pipeline.config is config
