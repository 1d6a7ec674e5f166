"""Merge job orchestration.

Responsibilities:
- Drive one job through load, cover, convert, assemble, tag, finalize and
  cleanup stages.
- Own the job's temp directory and release it deterministically.
- Convert task failures and rename failures into stage errors.

Key types:
- `MergeOrchestrator`: state machine facade for one job at a time.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
import os
from pathlib import Path

from ..audio.encoder import (
    DEFAULT_CHANNELS,
    DEFAULT_SAMPLERATE,
    AudioEncoder,
    FfmpegEncoder,
    codec_for_extension,
)
from ..audio.sequencer import MergeSequencer, expected_sequence_length, trim_flags
from ..audio.task_pool import ConversionTaskPool, ProgressCallback
from ..config import DEFAULT_OUTPUT_EXTENSION, MergeConfig
from ..errors import MergeStageError
from ..io.file_loader import FileLoader
from ..models.datatypes import (
    SILENCE_INDEX,
    ConversionTask,
    ConverterOptions,
    JobResult,
    JobSpec,
    JobState,
    MergeSequence,
    TaskOutcome,
)
from ..tags import (
    ChapterLengthNormalizer,
    ChaptersFromFileTracks,
    ChaptersFromLookup,
    EquateProvider,
    MusicBrainzClient,
    OptionsTagProvider,
    SidecarTagProvider,
    SourceTagReader,
    TagMergeComposite,
    TagRecord,
    TagWriter,
    chapters_sidecar_path,
    describe_tag,
)
from ..tags import sidecars
from ..telemetry.logger import RunLogger
from .telemetry import MergeTelemetryMixin

COVER_FILENAMES = ("cover.jpg", "cover.jpeg", "cover.png")
SILENCE_BASE_FILENAME = "silence.wav"
TEMP_DIR_SUFFIX = "-tmpfiles"
MERGED_TEMP_PREFIX = "tmp_"
CHAPTERED_TEMP_PREFIX = "chapters_"


@dataclass(frozen=True, slots=True)
class _LoadedInputs:
    """Resolved inputs of one job."""

    files: tuple[Path, ...]
    output_path: Path
    extension: str
    input_directory: Path
    output_exists: bool = False


@dataclass(slots=True)
class _JobWorkspace:
    """Temp directory and the intermediate files created inside it."""

    temp_dir: Path
    created: list[Path] = field(default_factory=list)

    def track(self, path: Path) -> Path:
        if path not in self.created:
            self.created.append(path)
        return path


@dataclass(frozen=True, slots=True)
class _TagStageResult:
    tag: TagRecord
    sidecar_path: Path | None


def temp_dir_for(output_path: Path) -> Path:
    """Return the job temp directory `<outdir>/<stem>-tmpfiles`."""

    return output_path.parent / f"{output_path.stem}{TEMP_DIR_SUFFIX}"


def _extension_of(path: Path) -> str:
    return path.suffix.lower().lstrip(".")


class MergeOrchestrator(MergeTelemetryMixin):
    """Coordinate all stages for one merge job."""

    def __init__(
        self,
        encoder: AudioEncoder | None = None,
        run_logger: RunLogger | None = None,
        stage_progress_callback: Callable[[str, int, int], None] | None = None,
        task_progress_callback: ProgressCallback | None = None,
        *,
        tag_reader: SourceTagReader | None = None,
        tag_writer: TagWriter | None = None,
        lookup_client: MusicBrainzClient | None = None,
        progress_interval_seconds: float = 0.5,
    ) -> None:
        """Initialize collaborators; defaults run ffmpeg, mutagen and MusicBrainz."""

        self._run_logger = run_logger
        self._encoder: AudioEncoder = encoder or FfmpegEncoder(run_logger)
        self._stage_progress_callback = stage_progress_callback
        self._task_progress_callback = task_progress_callback
        self._tag_reader = tag_reader or SourceTagReader(run_logger)
        self._tag_writer = tag_writer or TagWriter(run_logger)
        self._lookup_client = lookup_client
        self._progress_interval_seconds = progress_interval_seconds
        self._sequencer = MergeSequencer()
        self.state = JobState.INIT

    def run(self, job: JobSpec | MergeConfig) -> JobResult:
        """Run one job and return its result; any fatal error is raised."""

        if isinstance(job, MergeConfig):
            job = JobSpec(config=job)
        config = job.config
        self.state = JobState.INIT

        loaded = self._run_stage(
            JobState.LOAD_INPUTS,
            lambda: self._load_inputs(config, skip_existing=job.is_batch_job),
        )
        if loaded.output_exists:
            self._notice(
                f"skipping {loaded.input_directory}: output file {loaded.output_path} already exists"
            )
            self.state = JobState.DONE
            return JobResult(
                output_path=loaded.output_path,
                merged_count=0,
                state=self.state,
                skipped=True,
            )
        if config.dry_run:
            self._notice(f"dry run: would merge {len(loaded.files)} files into {loaded.output_path}")
            self.state = JobState.DONE
            return JobResult(
                output_path=loaded.output_path,
                merged_count=len(loaded.files),
                state=self.state,
                dry_run=True,
            )

        with self._job_workspace(config, loaded.output_path) as workspace:
            cover = self._run_stage(
                JobState.EXTRACT_COVER, lambda: self._extract_cover(config, loaded)
            )
            sequence = self._run_stage(
                JobState.CONVERT, lambda: self._convert(config, loaded, workspace)
            )
            merged_path = self._run_stage(
                JobState.ASSEMBLE, lambda: self._assemble(loaded, sequence, workspace)
            )
            tagged = self._run_stage(
                JobState.TAG,
                lambda: self._tag(config, loaded, sequence, merged_path, cover, workspace),
            )
            self._run_stage(
                JobState.FINALIZE,
                lambda: self._finalize(merged_path, tagged.sidecar_path, loaded.output_path),
            )

        self.state = JobState.DONE
        self._notice(f"successfully merged {len(loaded.files)} files to {loaded.output_path}")
        return JobResult(
            output_path=loaded.output_path,
            merged_count=len(loaded.files),
            state=self.state,
            chapter_count=len(tagged.tag.chapters),
        )

    def _load_inputs(self, config: MergeConfig, *, skip_existing: bool = False) -> _LoadedInputs:
        """Resolve input files and the output target for one job.

        An existing output is an error unless `force` is set. With
        `skip_existing` the job is marked as skippable instead.
        """

        if config.output_path is None:
            raise MergeStageError(
                stage="config",
                detail="Output file is required.",
                hint="Pass `--output-file <path>`.",
            )
        output_path = config.output_path
        if not output_path.suffix:
            output_path = output_path.with_name(f"{output_path.name}.{DEFAULT_OUTPUT_EXTENSION}")
        if output_path.is_dir():
            raise MergeStageError(
                stage="load_inputs",
                detail=f"Output target `{output_path}` is a directory, expected a file.",
                hint="Pass a file path or use `--batch-pattern` for directory output.",
            )

        loader = FileLoader(config.include_extensions)
        for path in (config.input_path, *config.extra_inputs):
            loader.add(path)
        for path, reason in loader.skipped_files.items():
            self._debug(f"skipped {path} ({reason})")
        files = loader.files
        if not files:
            raise MergeStageError(
                stage="load_inputs",
                detail=f"No eligible input files found in `{config.input_path}`.",
                hint="Check the input path and `--include-extensions`.",
            )

        if config.no_conversion:
            extensions = sorted({_extension_of(path) for path in files})
            if len(extensions) > 1 and not config.force:
                raise MergeStageError(
                    stage="load_inputs",
                    detail=(
                        "Inputs have mixed extensions "
                        f"({', '.join(extensions)}) and cannot be merged without conversion."
                    ),
                    hint="Drop `--no-conversion` or pass `--force`.",
                )
            extension = _extension_of(files[0])
            output_path = output_path.with_suffix(f".{extension}")
        else:
            extension = _extension_of(output_path)
            codec_for_extension(extension)

        output_exists = output_path.exists() and not config.force
        if output_exists and not skip_existing:
            raise MergeStageError(
                stage="load_inputs",
                detail=f"Output file `{output_path}` already exists.",
                hint="Pass `--force` to overwrite it.",
            )

        input_directory = config.input_path if config.input_path.is_dir() else files[0].parent
        self._debug(f"merging {len(files)} files into {output_path}")
        return _LoadedInputs(
            files=tuple(files),
            output_path=output_path,
            extension=extension,
            input_directory=input_directory,
            output_exists=output_exists,
        )

    def _extract_cover(self, config: MergeConfig, loaded: _LoadedInputs) -> Path | None:
        """Return the job cover, extracting it from the first input when missing."""

        if config.skip_cover:
            return None
        if config.cover is not None:
            return config.cover

        existing = [
            loaded.input_directory / name
            for name in COVER_FILENAMES
            if (loaded.input_directory / name).is_file()
        ]
        if existing and not config.force:
            return existing[0]

        destination = loaded.input_directory / COVER_FILENAMES[0]
        try:
            exit_code = self._encoder.extract_cover(loaded.files[0], destination)
        except MergeStageError as exc:
            self._warning(f"cover extraction failed: {exc.detail}")
            return existing[0] if existing else None
        if exit_code == 0 and destination.is_file() and destination.stat().st_size > 0:
            self._debug(f"extracted cover to {destination}")
            return destination
        if destination.is_file() and destination.stat().st_size == 0:
            destination.unlink()
        self._debug(f"no cover found in {loaded.files[0]}")
        return existing[0] if existing else None

    def _converter_options(
        self, config: MergeConfig, loaded: _LoadedInputs, *, uniform_layout: bool = False
    ) -> ConverterOptions:
        """Build the job's encoder options.

        With `uniform_layout` every item and the silence segment share one
        sample rate and channel count so the assembled stream can be copied.
        Values not given explicitly come from the first input, then defaults.
        """

        samplerate = config.audio_samplerate
        channels = config.audio_channels
        if uniform_layout and (samplerate is None or channels is None):
            probed = self._encoder.probe_audio_layout(loaded.files[0])
            probed_samplerate, probed_channels = probed if probed is not None else (None, None)
            samplerate = samplerate or probed_samplerate or DEFAULT_SAMPLERATE
            channels = channels or probed_channels or DEFAULT_CHANNELS
            self._debug(f"converting items to {samplerate} Hz, {channels} channels")
        return ConverterOptions(
            extension=loaded.extension,
            codec=None if config.no_conversion else codec_for_extension(loaded.extension),
            bitrate=config.audio_bitrate,
            samplerate=samplerate,
            channels=channels,
        )

    def _convert(
        self,
        config: MergeConfig,
        loaded: _LoadedInputs,
        workspace: _JobWorkspace,
    ) -> MergeSequence:
        """Run conversion tasks and rebuild the merge sequence in input order."""

        try:
            workspace.temp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise MergeStageError(
                stage="convert",
                detail=f"Could not create temp directory `{workspace.temp_dir}`.",
                diagnostic=str(exc),
            ) from exc

        insert_silence = (
            not config.no_conversion and config.silence_ms > 0 and len(loaded.files) > 1
        )
        if config.no_conversion and config.silence_ms > 0:
            self._debug("silence between items is ignored without conversion")
        options = self._converter_options(config, loaded, uniform_layout=insert_silence)
        with ConversionTaskPool(
            self._run_task, progress_interval_seconds=self._progress_interval_seconds
        ) as pool:
            outcomes = self._run_conversion_tasks(
                pool, config, loaded, workspace, options, insert_silence=insert_silence
            )

        silence_outcome = next(
            (outcome for outcome in outcomes if outcome.index == SILENCE_INDEX), None
        )
        if config.no_conversion:
            sequence = self._sequencer.build_sequence(loaded.files, None)
        else:
            sequence = self._sequencer.from_outcomes(outcomes)

        expected = expected_sequence_length(len(loaded.files), silence_outcome is not None)
        if len(sequence) != expected:
            raise MergeStageError(
                stage="convert",
                detail=f"Merge sequence has {len(sequence)} entries, expected {expected}.",
            )
        return sequence

    def _run_conversion_tasks(
        self,
        pool: ConversionTaskPool,
        config: MergeConfig,
        loaded: _LoadedInputs,
        workspace: _JobWorkspace,
        options: ConverterOptions,
        *,
        insert_silence: bool,
    ) -> list[TaskOutcome]:
        """Submit the silence and per-item tasks, run them and check for failures."""

        if insert_silence:
            silence_base = workspace.track(workspace.temp_dir / SILENCE_BASE_FILENAME)
            exit_code = self._encoder.generate_silence(config.silence_ms, silence_base, options)
            if exit_code != 0 or not silence_base.is_file():
                raise MergeStageError(
                    stage="convert",
                    detail=f"Could not generate silence segment `{silence_base}`.",
                    hint="Run with `--verbose` to see the encoder output.",
                )
            pool.submit(
                self._task(workspace, SILENCE_INDEX, silence_base, "silence", options)
            )

        if not config.no_conversion:
            width = max(2, len(str(len(loaded.files))))
            for index, source in enumerate(loaded.files):
                trim_start, trim_end = trim_flags(index, len(loaded.files))
                task_options = ConverterOptions(
                    extension=options.extension,
                    codec=options.codec,
                    bitrate=options.bitrate,
                    samplerate=options.samplerate,
                    channels=options.channels,
                    trim_silence_start=trim_start,
                    trim_silence_end=trim_end,
                )
                prefix = f"{index + 1:0{width}d}-{source.stem}"
                pool.submit(self._task(workspace, index, source, prefix, task_options))

        outcomes = pool.run(config.jobs, on_progress=self._task_progress_callback)
        self._raise_first_failure(pool.tasks, outcomes)
        return outcomes

    def _task(
        self,
        workspace: _JobWorkspace,
        index: int,
        source: Path,
        prefix: str,
        options: ConverterOptions,
    ) -> ConversionTask:
        """Build one conversion task inside the job temp directory."""

        destination = workspace.track(
            workspace.temp_dir / f"{prefix}.converting.{options.extension}"
        )
        finished = workspace.track(workspace.temp_dir / f"{prefix}.finished.{options.extension}")
        return ConversionTask(
            index=index,
            source=source,
            destination=destination,
            finished_path=finished,
            options=options,
        )

    def _run_task(self, task: ConversionTask) -> int:
        return self._encoder.convert(task.source, task.destination, task.options)

    def _raise_first_failure(
        self, tasks: Sequence[ConversionTask], outcomes: Sequence[TaskOutcome]
    ) -> None:
        """Raise a stage error for the first failed task in document order."""

        failures = sorted(
            (outcome for outcome in outcomes if not outcome.succeeded),
            key=lambda outcome: outcome.index,
        )
        if not failures:
            return
        for failure in failures:
            self._debug(f"task {failure.index} failed: {failure.reason}")
        first = failures[0]
        destination = next(
            (task.finished_path for task in tasks if task.index == first.index),
            first.output_path,
        )
        raise MergeStageError(
            stage="convert",
            detail=f"could not convert {first.source} to {destination}",
            hint="Run with `--verbose` to see the encoder output.",
            diagnostic=first.reason,
        )

    def _assemble(
        self,
        loaded: _LoadedInputs,
        sequence: MergeSequence,
        workspace: _JobWorkspace,
    ) -> Path:
        """Concatenate the merge sequence into `tmp_<finalName>`."""

        merged_path = workspace.track(
            workspace.temp_dir / f"{MERGED_TEMP_PREFIX}{loaded.output_path.name}"
        )
        options = ConverterOptions(extension=loaded.extension)
        exit_code = self._encoder.concat(sequence.paths, merged_path, options)
        if exit_code != 0 or not merged_path.is_file() or merged_path.stat().st_size == 0:
            raise MergeStageError(
                stage="assemble",
                detail=f"could not merge {len(sequence)} files into {merged_path}",
                hint="Run with `--verbose` to see the encoder output.",
                diagnostic=f"encoder exited with status {exit_code}",
            )
        return merged_path

    def build_tag_composite(
        self,
        config: MergeConfig,
        input_directory: Path,
        sequence: MergeSequence,
        source_items: Sequence[Path],
        merged_path: Path,
        cover: Path | None,
    ) -> TagMergeComposite:
        """Build the provider chain, lowest precedence first."""

        composite = TagMergeComposite(
            prepend_series_to_longdesc=config.prepend_series_to_longdesc
        )
        composite.add(
            SidecarTagProvider(input_directory / sidecars.FFMETADATA_FILENAME, sidecars.parse_ffmetadata)
        )
        composite.add(
            SidecarTagProvider(input_directory / sidecars.CHAPTERS_FILENAME, sidecars.parse_chapters_txt)
        )
        if config.musicbrainz_id:
            composite.add(
                ChaptersFromLookup(config.musicbrainz_id, self._lookup_client, self._run_logger)
            )
        composite.add(
            ChaptersFromFileTracks(
                sequence,
                source_items,
                self._encoder.probe_duration_ms,
                self._tag_reader.title_of,
                use_filenames=config.use_filenames_as_chapters,
            )
        )
        limits = config.chapter_length_limits()
        if limits is not None:
            composite.add(
                ChapterLengthNormalizer(
                    merged_path,
                    limits,
                    self._encoder.detect_silences,
                    silence_min_length_ms=config.silence_min_length_ms,
                    run_logger=self._run_logger,
                )
            )
        composite.add(SidecarTagProvider(input_directory / sidecars.OPF_FILENAME, sidecars.parse_opf))
        composite.add(
            SidecarTagProvider(input_directory / sidecars.AUDIBLE_FILENAME, sidecars.parse_audible_txt)
        )
        composite.add(
            SidecarTagProvider(
                input_directory / sidecars.DESCRIPTION_FILENAME, sidecars.parse_description_txt
            )
        )
        content_metadata = sidecars.find_content_metadata(input_directory)
        if content_metadata is not None:
            composite.add(
                SidecarTagProvider(content_metadata, sidecars.parse_content_metadata_json)
            )
        composite.add(OptionsTagProvider(config.tag_options, cover))
        if config.equate:
            composite.add(EquateProvider(config.equate))
        return composite

    def _tag(
        self,
        config: MergeConfig,
        loaded: _LoadedInputs,
        sequence: MergeSequence,
        merged_path: Path,
        cover: Path | None,
        workspace: _JobWorkspace,
    ) -> _TagStageResult:
        """Resolve the final tag record and write it into the merged file."""

        composite = self.build_tag_composite(
            config, loaded.input_directory, sequence, loaded.files, merged_path, cover
        )
        fallback = None if config.ignore_source_tags else self._tag_reader.read(loaded.files[0])
        tag = composite.improve(TagRecord(), fallback)
        if tag.chapters:
            self._embed_chapters(merged_path, tag, loaded.extension, workspace)
        sidecar_path = self._tag_writer.write(merged_path, tag)
        if sidecar_path is not None:
            workspace.track(sidecar_path)
        self._notice(f"tagged file {merged_path.name} ({describe_tag(tag)})")
        return _TagStageResult(tag=tag, sidecar_path=sidecar_path)

    def _embed_chapters(
        self,
        merged_path: Path,
        tag: TagRecord,
        extension: str,
        workspace: _JobWorkspace,
    ) -> None:
        """Remux the merged file with chapter markers.

        A failed remux only warns; the chapters still reach the sidecar file.
        """

        metadata_path = workspace.track(
            workspace.temp_dir / f"{merged_path.name}.{sidecars.FFMETADATA_FILENAME}"
        )
        total_ms = self._encoder.probe_duration_ms(merged_path)
        metadata_path.write_text(
            sidecars.format_ffmetadata_chapters(tag.chapters, total_ms), encoding="utf-8"
        )
        chaptered_path = workspace.track(
            workspace.temp_dir / f"{CHAPTERED_TEMP_PREFIX}{merged_path.name}"
        )
        exit_code = self._encoder.embed_chapters(
            merged_path, metadata_path, chaptered_path, ConverterOptions(extension=extension)
        )
        if exit_code != 0 or not chaptered_path.is_file() or chaptered_path.stat().st_size == 0:
            self._warning(
                f"could not embed {len(tag.chapters)} chapters into {merged_path.name}, "
                "writing the chapters file only"
            )
            return
        try:
            chaptered_path.replace(merged_path)
        except OSError as exc:
            raise MergeStageError(
                stage="tag",
                detail=f"could not rename {chaptered_path} to {merged_path}",
                diagnostic=str(exc),
            ) from exc
        self._debug(f"embedded {len(tag.chapters)} chapters into {merged_path.name}")

    def _finalize(self, merged_path: Path, sidecar_path: Path | None, output_path: Path) -> None:
        """Move the merged artifact and its chapters sidecar to the final paths."""

        moves = [(merged_path, output_path)]
        if sidecar_path is not None:
            moves.append((sidecar_path, chapters_sidecar_path(output_path)))
        for source, target in moves:
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                os.replace(source, target)
            except OSError as exc:
                raise MergeStageError(
                    stage="finalize",
                    detail=f"could not rename {source} to {target}",
                    hint="Temporary files were kept for inspection.",
                    diagnostic=str(exc),
                ) from exc

    @contextmanager
    def _job_workspace(self, config: MergeConfig, output_path: Path) -> Iterator[_JobWorkspace]:
        """Scope the job temp directory; it is cleaned only after success."""

        workspace = _JobWorkspace(temp_dir=temp_dir_for(output_path))
        try:
            yield workspace
        except Exception:
            if workspace.temp_dir.exists():
                self._debug(f"temporary files kept in {workspace.temp_dir}")
            raise

        if config.keep_temp_files:
            self._notice(f"keeping temporary files in {workspace.temp_dir}")
            return
        self._run_stage(JobState.CLEANUP, lambda: self._cleanup(workspace))

    def _cleanup(self, workspace: _JobWorkspace) -> None:
        """Delete intermediate files and the temp directory once it is empty."""

        for path in workspace.created:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                self._warning(f"could not delete {path}: {exc}")
        if not workspace.temp_dir.is_dir():
            return
        try:
            if not any(workspace.temp_dir.iterdir()):
                workspace.temp_dir.rmdir()
            else:
                self._debug(f"temp directory {workspace.temp_dir} is not empty, keeping it")
        except OSError as exc:
            self._warning(f"could not delete directory {workspace.temp_dir}: {exc}")

    def _notice(self, message: str) -> None:
        if self._run_logger is not None:
            self._run_logger.notice(message)

    def _debug(self, message: str) -> None:
        if self._run_logger is not None:
            self._run_logger.debug(message)

    def _warning(self, message: str) -> None:
        if self._run_logger is not None:
            self._run_logger.warning(message)
