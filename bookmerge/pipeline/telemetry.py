"""Stage telemetry helper methods for the merge orchestrator.

Responsibilities:
- Track the job state machine position.
- Emit stage start/complete/failure events.
- Wrap stage actions with consistent telemetry hooks.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from ..models.datatypes import JobState

_StageResult = TypeVar("_StageResult")


class MergeTelemetryMixin:
    """Provide stage-telemetry helper methods."""

    _PHASE_SEQUENCE = (
        JobState.LOAD_INPUTS,
        JobState.EXTRACT_COVER,
        JobState.CONVERT,
        JobState.ASSEMBLE,
        JobState.TAG,
        JobState.FINALIZE,
        JobState.CLEANUP,
    )

    def _stage_position(self, state: JobState) -> tuple[int, int] | None:
        """Return 1-based stage index and total stage count for known stages."""

        try:
            index = self._PHASE_SEQUENCE.index(state) + 1
        except ValueError:
            return None
        return index, len(self._PHASE_SEQUENCE)

    def _on_stage_start(self, state: JobState) -> None:
        """Record the new state and notify progress callback and logger."""

        self.state = state
        stage_position = self._stage_position(state)
        if stage_position and self._stage_progress_callback is not None:
            self._stage_progress_callback(state.value, stage_position[0], stage_position[1])
        if self._run_logger is not None:
            self._run_logger.log_stage_start(state.value)

    def _on_stage_complete(self, state: JobState) -> None:
        """Emit stage-complete event to the structured logger."""

        if self._run_logger is not None:
            self._run_logger.log_stage_complete(state.value)

    def _on_stage_failure(self, state: JobState, exc: Exception) -> None:
        """Move to the failed state and emit sanitized exception metadata."""

        self.state = JobState.FAILED
        if self._run_logger is not None:
            self._run_logger.log_stage_failure(state.value, type(exc).__name__)

    def _run_stage(
        self,
        state: JobState,
        action: Callable[[], _StageResult],
    ) -> _StageResult:
        """Run one named stage and emit start/complete/failure telemetry events."""

        self._on_stage_start(state)
        try:
            result = action()
        except Exception as exc:
            self._on_stage_failure(state, exc)
            raise
        self._on_stage_complete(state)
        return result
