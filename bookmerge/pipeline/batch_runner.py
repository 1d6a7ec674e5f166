"""Supervising loop for batch merge runs.

Responsibilities:
- Validate batch-mode configuration before discovery.
- Discover jobs per pattern with one shared processed-directory set.
- Run each job in isolation so one failure never aborts its siblings.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from ..batch.discovery import BatchDiscoverer
from ..config import MergeConfig
from ..errors import MergeStageError
from ..models.datatypes import JobResult, JobSpec
from ..telemetry.logger import RunLogger
from .orchestrator import MergeOrchestrator


@dataclass(frozen=True, slots=True)
class JobFailure:
    """One failed batch job."""

    directory: Path
    stage: str
    detail: str
    diagnostic: str | None = None


@dataclass(frozen=True, slots=True)
class BatchSummary:
    """Outcome of one batch run."""

    results: tuple[JobResult, ...]
    failures: tuple[JobFailure, ...]

    @property
    def job_count(self) -> int:
        """Return the number of executed jobs."""

        return len(self.results) + len(self.failures)

    @property
    def failed(self) -> bool:
        """Return whether at least one job failed."""

        return len(self.failures) > 0

    @property
    def skipped_count(self) -> int:
        """Return the number of jobs skipped because their output already existed."""

        return sum(1 for result in self.results if result.skipped)


def validate_batch_config(config: MergeConfig) -> None:
    """Reject batch runs with a file input, extra inputs or a file output."""

    if not config.input_path.is_dir():
        raise MergeStageError(
            stage="config",
            detail=f"Batch mode requires an existing input directory, got `{config.input_path}`.",
            hint="Pass exactly one directory as input together with `--batch-pattern`.",
        )
    if config.extra_inputs:
        raise MergeStageError(
            stage="config",
            detail="Batch mode accepts exactly one input directory.",
            hint="Remove additional inputs or run them without `--batch-pattern`.",
        )
    if config.output_path is None:
        raise MergeStageError(
            stage="config",
            detail="Output directory is required in batch mode.",
            hint="Pass `--output-file <directory>`.",
        )
    if config.output_path.is_file():
        raise MergeStageError(
            stage="config",
            detail=f"Batch output `{config.output_path}` is a file, expected a directory.",
            hint="Pass an output directory with `--output-file`.",
        )


class BatchRunner:
    """Run all jobs discovered for a batch configuration."""

    def __init__(
        self,
        orchestrator_factory: Callable[[], MergeOrchestrator],
        discoverer: BatchDiscoverer | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        """Initialize with a factory producing one orchestrator per job."""

        self._orchestrator_factory = orchestrator_factory
        self._discoverer = discoverer or BatchDiscoverer(run_logger=run_logger)
        self._run_logger = run_logger

    def run(self, config: MergeConfig) -> BatchSummary:
        """Discover and run jobs pattern by pattern."""

        validate_batch_config(config)
        already_processed: set[Path] = set()
        results: list[JobResult] = []
        failures: list[JobFailure] = []
        for pattern in config.batch_patterns:
            jobs = self._discoverer.discover(config, pattern, already_processed)
            for job in jobs:
                outcome = self._run_job(job)
                if isinstance(outcome, JobFailure):
                    failures.append(outcome)
                else:
                    results.append(outcome)
        return BatchSummary(results=tuple(results), failures=tuple(failures))

    def _run_job(self, job: JobSpec) -> JobResult | JobFailure:
        """Run one job, converting any error into a reported failure."""

        directory = job.source_directory or job.input_path
        try:
            return self._orchestrator_factory().run(job)
        except MergeStageError as exc:
            failure = JobFailure(
                directory=directory,
                stage=exc.stage,
                detail=exc.detail,
                diagnostic=exc.diagnostic,
            )
        except Exception as exc:
            failure = JobFailure(
                directory=directory,
                stage="unknown",
                detail=f"{type(exc).__name__}: {exc}",
            )
        if self._run_logger is not None:
            self._run_logger.error(f"processing failed for {directory}: {failure.detail}")
            if failure.diagnostic:
                self._run_logger.debug(failure.diagnostic)
        return failure
