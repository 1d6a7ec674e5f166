"""Core datatypes shared across bookmerge modules.

Responsibilities:
- Represent immutable records exchanged between merge stages.
- Keep job, task and sequence state explicit and typed.

Key types:
- `JobSpec`, `ConverterOptions`, `ConversionTask`, `TaskOutcome`,
  `PoolSnapshot`, `SequenceEntry`, `MergeSequence`, `Silence`, `JobResult`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping

from ..config import MergeConfig

SILENCE_INDEX = -1


@dataclass(frozen=True, slots=True)
class JobSpec:
    """One merge job: a group of inputs producing one output artifact.

    Attributes:
        config: Job-private copy of the run configuration. Its `input_path`,
            `output_path` and `tag_options` are already resolved for this job.
        derived_options: Tag options derived from batch placeholders that were
            applied because the caller had not set them explicitly.
        source_directory: Matched batch directory, `None` in single mode.
    """

    config: MergeConfig
    derived_options: Mapping[str, str] = field(default_factory=dict)
    source_directory: Path | None = None

    @property
    def input_path(self) -> Path:
        """Return the job's primary input path."""

        return self.config.input_path

    @property
    def output_path(self) -> Path | None:
        """Return the job's output target."""

        return self.config.output_path

    @property
    def dry_run(self) -> bool:
        """Return whether the job only reports its plan."""

        return self.config.dry_run

    @property
    def is_batch_job(self) -> bool:
        """Return whether the job was produced by batch discovery."""

        return self.source_directory is not None


@dataclass(frozen=True, slots=True)
class ConverterOptions:
    """Encoder options shared by conversion, concatenation and silence tasks.

    Attributes:
        extension: Output container extension without dot.
        codec: Encoder codec name, `None` for stream copy.
        bitrate: Optional bitrate (`64k`).
        samplerate: Optional sample rate in Hz.
        channels: Optional channel count.
        trim_silence_start: Strip leading silence from the item.
        trim_silence_end: Strip trailing silence from the item.
    """

    extension: str
    codec: str | None = None
    bitrate: str | None = None
    samplerate: int | None = None
    channels: int | None = None
    trim_silence_start: bool = False
    trim_silence_end: bool = False


@dataclass(frozen=True, slots=True)
class ConversionTask:
    """One per-item conversion submitted to the task pool.

    Attributes:
        index: 0-based input position, or `SILENCE_INDEX` for the silence task.
        source: Source item path.
        destination: In-progress output path (`*.converting.<ext>`).
        finished_path: Verified output path (`*.finished.<ext>`).
        options: Converter options including trim flags.
    """

    index: int
    source: Path
    destination: Path
    finished_path: Path
    options: ConverterOptions

    @property
    def is_silence(self) -> bool:
        """Return whether this is the reusable silence-segment task."""

        return self.index == SILENCE_INDEX


class TaskStatus(str, Enum):
    """Terminal task states."""

    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    """Terminal result for one conversion task."""

    index: int
    source: Path
    output_path: Path
    status: TaskStatus
    exit_code: int | None = None
    reason: str | None = None

    @property
    def succeeded(self) -> bool:
        """Return whether the task produced a verified artifact."""

        return self.status is TaskStatus.DONE


@dataclass(frozen=True, slots=True)
class PoolSnapshot:
    """Progress snapshot emitted by the task pool."""

    queued: int
    running: int
    total: int

    @property
    def remaining(self) -> int:
        """Return queued plus running task count."""

        return self.queued + self.running


@dataclass(frozen=True, slots=True)
class SequenceEntry:
    """One file reference in the merge sequence."""

    path: Path
    index: int

    @property
    def is_silence(self) -> bool:
        """Return whether the entry references the silence segment."""

        return self.index == SILENCE_INDEX


@dataclass(frozen=True, slots=True)
class MergeSequence:
    """Ordered file list handed to the concatenation step."""

    entries: tuple[SequenceEntry, ...]

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def paths(self) -> list[Path]:
        """Return entry paths in merge order."""

        return [entry.path for entry in self.entries]

    @property
    def item_entries(self) -> list[SequenceEntry]:
        """Return non-silence entries in merge order."""

        return [entry for entry in self.entries if not entry.is_silence]


@dataclass(frozen=True, slots=True)
class Silence:
    """A detected silence gap inside an audio file, in milliseconds."""

    start_ms: int
    end_ms: int

    @property
    def length_ms(self) -> int:
        """Return silence duration."""

        return self.end_ms - self.start_ms

    @property
    def midpoint_ms(self) -> int:
        """Return the silence midpoint, used as a split candidate."""

        return self.start_ms + self.length_ms // 2


class JobState(str, Enum):
    """Merge job state machine states."""

    INIT = "init"
    LOAD_INPUTS = "load_inputs"
    EXTRACT_COVER = "extract_cover"
    CONVERT = "convert"
    ASSEMBLE = "assemble"
    TAG = "tag"
    FINALIZE = "finalize"
    CLEANUP = "cleanup"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class JobResult:
    """Summary of one finished (or dry-run) merge job."""

    output_path: Path
    merged_count: int
    state: JobState
    chapter_count: int = 0
    dry_run: bool = False
    skipped: bool = False
