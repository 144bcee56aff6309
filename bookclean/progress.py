"""
Progress and status tracking for a cleaning run.

CleaningProgress is written by the orchestrator and read by the presentation
layer, either by registering a listener (push) or by calling snapshot()
(poll). Snapshots are immutable and safe to hand to another thread.

Example:
    >>> progress = CleaningProgress(config.enabled_steps)
    >>> progress.add_listener(lambda snap: print(f"{snap.percentage}%"))
    >>> progress.start(CleaningStep.ANALYZE_STRUCTURE)
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Iterable, Mapping

from bookclean.models import CleaningStep, CleaningStepStatus, PipelinePhase, StepState

logger = logging.getLogger(__name__)

# Remaining time is only estimated once this share of the work is done
MIN_PROGRESS_FOR_ESTIMATE = 0.1


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time view of a run's progress."""

    current_step: CleaningStep | None
    current_phase: PipelinePhase | None
    statuses: Mapping[CleaningStep, CleaningStepStatus]
    enabled_steps: tuple[CleaningStep, ...]
    chunks_done: int
    chunks_total: int
    overall_progress: float
    elapsed_seconds: float
    estimated_remaining_seconds: float | None
    cancelled: bool = False

    def _count(self, state: StepState) -> int:
        return sum(1 for status in self.statuses.values() if status.state is state)

    @property
    def completed_count(self) -> int:
        return self._count(StepState.COMPLETED)

    @property
    def failed_count(self) -> int:
        return self._count(StepState.FAILED)

    @property
    def skipped_count(self) -> int:
        return self._count(StepState.SKIPPED)

    @property
    def cancelled_count(self) -> int:
        return self._count(StepState.CANCELLED)

    @property
    def percentage(self) -> int:
        return int(round(self.overall_progress * 100))

    @property
    def chunk_fraction(self) -> float:
        return self.chunks_done / self.chunks_total if self.chunks_total else 0.0

    def summary(self) -> str:
        step = self.current_step.display_name if self.current_step else "idle"
        text = (
            f"{self.percentage}% ({step}): {self.completed_count} completed, "
            f"{self.skipped_count} skipped, {self.failed_count} failed"
        )
        if self.estimated_remaining_seconds is not None:
            text += f", ~{self.estimated_remaining_seconds:.0f}s remaining"
        return text


class CleaningProgress:
    """
    Mutable per-step status map plus chunk progress and timing.

    Every step starts pending. Listeners are called after each change with a
    fresh snapshot; a listener that raises is logged and otherwise ignored so
    the run is never interrupted by its observers.
    """

    def __init__(
        self,
        enabled_steps: Iterable[CleaningStep],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.enabled_steps = tuple(enabled_steps)
        self._clock = clock
        self._lock = threading.Lock()
        self._statuses: dict[CleaningStep, CleaningStepStatus] = {
            step: CleaningStepStatus.pending() for step in CleaningStep
        }
        self._listeners: list[Callable[[ProgressSnapshot], None]] = []
        self._started_at: float | None = None
        self._finished_at: float | None = None
        self.current_step: CleaningStep | None = None
        self.chunks_done = 0
        self.chunks_total = 0
        self.cancelled = False

    def add_listener(self, listener: Callable[[ProgressSnapshot], None]) -> None:
        self._listeners.append(listener)

    def status(self, step: CleaningStep) -> CleaningStepStatus:
        return self._statuses[step]

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def start(self, step: CleaningStep) -> None:
        with self._lock:
            if self._started_at is None:
                self._started_at = self._clock()
            self.current_step = step
            self.chunks_done = self.chunks_total = 0
            self._statuses[step] = CleaningStepStatus.processing()
        logger.debug("Step %d started: %s", step.value, step.display_name)
        self._notify()

    def update_chunk(self, done: int, total: int) -> None:
        """Record chunk progress of the current step."""
        with self._lock:
            self.chunks_done = max(0, min(done, total))
            self.chunks_total = max(0, total)
        self._notify()

    def complete(self, step: CleaningStep, word_count: int, change_count: int) -> None:
        self._finish(step, CleaningStepStatus.completed(word_count, change_count))

    def skip(self, step: CleaningStep, reason: str = "") -> None:
        self._finish(step, CleaningStepStatus.skipped(reason))

    def fail(self, step: CleaningStep, message: str) -> None:
        self._finish(step, CleaningStepStatus.failed(message))

    def cancel(self) -> list[CleaningStep]:
        """Mark the current and every remaining non-terminal step cancelled."""
        with self._lock:
            self.cancelled = True
            cancelled = [step for step, status in self._statuses.items() if not status.is_terminal]
            for step in cancelled:
                self._statuses[step] = CleaningStepStatus.cancelled()
            self.current_step = None
            self._finished_at = self._clock()
        logger.info("Run cancelled; %d step(s) marked cancelled", len(cancelled))
        self._notify()
        return cancelled

    def finish(self) -> None:
        with self._lock:
            self.current_step = None
            self.chunks_done = self.chunks_total = 0
            self._finished_at = self._clock()
        self._notify()

    def _finish(self, step: CleaningStep, status: CleaningStepStatus) -> None:
        with self._lock:
            if self._started_at is None:
                self._started_at = self._clock()
            self._statuses[step] = status
            if self.current_step is step:
                self.current_step = None
                self.chunks_done = self.chunks_total = 0
        logger.debug("Step %d %s", step.value, status.state.value)
        self._notify()

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            statuses = dict(self._statuses)
            current = self.current_step
            done, total = self.chunks_done, self.chunks_total
            started, finished = self._started_at, self._finished_at
            cancelled = self.cancelled

        if started is None:
            elapsed = 0.0
        else:
            elapsed = (finished if finished is not None else self._clock()) - started

        enabled = self.enabled_steps
        if enabled:
            finished_steps = sum(1 for step in enabled if statuses[step].is_terminal)
            chunk_share = done / total if total and current is not None else 0.0
            overall = min(1.0, (finished_steps + chunk_share) / len(enabled))
        else:
            overall = 1.0

        remaining = None
        if overall > MIN_PROGRESS_FOR_ESTIMATE and not cancelled:
            remaining = elapsed * (1 - overall) / overall

        return ProgressSnapshot(
            current_step=current,
            current_phase=current.phase if current is not None else None,
            statuses=MappingProxyType(statuses),
            enabled_steps=enabled,
            chunks_done=done,
            chunks_total=total,
            overall_progress=overall,
            elapsed_seconds=elapsed,
            estimated_remaining_seconds=remaining,
            cancelled=cancelled,
        )

    def _notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception as e:
                logger.warning("Progress listener failed: %s", e)
