"""Batch job discovery from placeholder patterns.

Responsibilities:
- Walk a batch root for directories holding eligible media or sidecar files.
- Match each directory against one placeholder pattern.
- Build one immutable `JobSpec` per match, with derived output path and
  tag overrides that never replace explicitly set options.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

from ..config import (
    DEFAULT_DATA_EXTENSIONS,
    DEFAULT_IMAGE_EXTENSIONS,
    DEFAULT_OUTPUT_EXTENSION,
    MergeConfig,
)
from ..errors import MergeStageError
from ..io.file_loader import DirectoryLoader
from ..models.datatypes import JobSpec
from ..telemetry.logger import RunLogger
from .placeholders import (
    PLACEHOLDER_OPTIONS,
    PlaceholderMatch,
    PlaceholderMatcher,
    normalize_path,
)

_SEPARATOR_LINE = "================================"


class BatchDiscoverer:
    """Turn one batch pattern into per-directory merge jobs."""

    def __init__(
        self,
        matcher: PlaceholderMatcher | None = None,
        directory_loader: DirectoryLoader | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        """Initialize collaborators; defaults cover normal CLI runs."""

        self._matcher = matcher or PlaceholderMatcher()
        self._directory_loader = directory_loader or DirectoryLoader()
        self._run_logger = run_logger

    def discover(
        self,
        config: MergeConfig,
        pattern: str,
        already_processed: set[Path],
    ) -> list[JobSpec]:
        """Return jobs for all directories below `config.input_path` matching `pattern`.

        Matched directories are added to `already_processed`, which the caller
        shares across all patterns of one run so that no directory is queued
        twice. Jobs of a dry run are reported but not returned.
        """

        if config.output_path is None:
            raise MergeStageError(
                stage="config",
                detail="Output directory is required in batch mode.",
                hint="Pass `--output-file <directory>`.",
            )

        extensions = (
            *config.include_extensions,
            *DEFAULT_IMAGE_EXTENSIONS,
            *DEFAULT_DATA_EXTENSIONS,
        )
        candidates = self._directory_loader.load(
            config.input_path, extensions, already_processed
        )

        verified: list[tuple[Path, PlaceholderMatch]] = []
        for directory in candidates:
            found = self._matcher.match(pattern, normalize_path(directory))
            if found.matched:
                verified.append((directory, found))
                already_processed.add(directory)

        match_count = len(verified)
        self._notice(
            f"{'1 match' if match_count == 1 else f'{match_count} matches'} "
            f"for pattern {pattern}"
        )
        if match_count > 0:
            self._notice(_SEPARATOR_LINE)

        jobs: list[JobSpec] = []
        for directory, found in verified:
            job = self._build_job(config, config.output_path, pattern, directory, found)
            self._report_job(job)
            if config.dry_run:
                continue
            jobs.append(job)
        return jobs

    def output_path_for(
        self, output_root: Path, pattern: str, found: PlaceholderMatch
    ) -> Path:
        """Derive the output file for one match.

        The pattern without its literal leading directories is formatted with
        the captured values. When a title (or album) was captured and no
        series was, one extra directory named after it is appended.
        """

        trimmed = self._matcher.trim_separator_prefix(normalize_path(pattern))
        file_name_part = self._matcher.format(trimmed, found.values).strip("/")

        name = found.value(PLACEHOLDER_OPTIONS["title"]) or found.value(
            PLACEHOLDER_OPTIONS["album"]
        )
        if name and not found.value(PLACEHOLDER_OPTIONS["series"]):
            file_name_part = f"{file_name_part}/{name}" if file_name_part else name
        return output_root / f"{file_name_part}.{DEFAULT_OUTPUT_EXTENSION}"

    def _build_job(
        self,
        config: MergeConfig,
        output_root: Path,
        pattern: str,
        directory: Path,
        found: PlaceholderMatch,
    ) -> JobSpec:
        """Copy-construct a job-private config for one matched directory."""

        output_path = self.output_path_for(output_root, pattern, found)
        derived = {
            option: value
            for option, value in found.option_values().items()
            if option not in config.tag_options
        }
        job_config = replace(
            config,
            input_path=directory,
            output_path=output_path,
            extra_inputs=tuple(),
            batch_patterns=tuple(),
            tag_options={**derived, **config.tag_options},
            equate=tuple(config.equate),
        )
        return JobSpec(config=job_config, derived_options=derived, source_directory=directory)

    def _report_job(self, job: JobSpec) -> None:
        """Report the resolved output path and derived overrides of one job."""

        self._notice(f"merge {job.input_path}")
        self._notice(f"  =>  {job.output_path}")
        for option, value in job.derived_options.items():
            self._notice(f"- {option}: {value}")
        self._notice("")
        self._notice(_SEPARATOR_LINE)

    def _notice(self, message: str) -> None:
        """Forward one advisory report line to the run logger."""

        if self._run_logger is not None:
            self._run_logger.notice(message)
