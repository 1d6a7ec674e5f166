"""Command-line interface for bookmerge.

Responsibilities:
- Expose the `merge` and `version` commands.
- Convert CLI arguments and optional YAML defaults into `MergeConfig`.
- Run single jobs through `MergeOrchestrator` and batches through `BatchRunner`.

Key public functions:
- `app`: Typer application instance.
- `main`: invoke the Typer application.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Annotated, Any

import typer

from . import __version__
from .cli_rendering import echo_batch_summary, echo_job_result, exit_with_command_error
from .config import (
    DEFAULT_AUDIO_EXTENSIONS,
    DEFAULT_SILENCE_MIN_LENGTH_MS,
    ConfigLoader,
    MergeConfig,
)
from .errors import MergeStageError
from .models.datatypes import PoolSnapshot
from .parsing import normalize_optional_string, parse_extension_list
from .pipeline import BatchRunner, MergeOrchestrator
from .telemetry.logger import RunLogger

app = typer.Typer(
    name="bookmerge",
    no_args_is_help=True,
    help="Merge audio files into one tagged, chaptered audiobook.",
)


class MergeProgressIndicator:
    """Render deterministic stage and conversion progress lines."""

    _SPINNER_FRAMES = "|/-\\"

    def __init__(self, command_name: str) -> None:
        """Initialize progress indicator metadata for a command invocation."""

        self._command_name = command_name
        self._frame = 0

    def _spinner(self) -> str:
        frame = self._SPINNER_FRAMES[self._frame % len(self._SPINNER_FRAMES)]
        self._frame += 1
        return frame

    def on_stage_start(self, stage_name: str, stage_index: int, stage_total: int) -> None:
        """Print one progress line for a stage start transition."""

        typer.echo(
            f"[progress] command={self._command_name} "
            f"{self._spinner()} {stage_index}/{stage_total} stage={stage_name}"
        )

    def on_task_progress(self, snapshot: PoolSnapshot) -> None:
        """Print one conversion progress line from a pool snapshot."""

        finished = snapshot.total - snapshot.remaining
        typer.echo(
            f"[progress] command={self._command_name} {self._spinner()} "
            f"converted={finished}/{snapshot.total} running={snapshot.running} "
            f"queued={snapshot.queued}"
        )


def _load_yaml_config(config_path: Path | None) -> MergeConfig | None:
    """Load a YAML config file when requested and map failures to stage errors."""

    if config_path is None:
        return None

    try:
        return ConfigLoader.from_yaml(config_path)
    except FileNotFoundError as exc:
        raise MergeStageError(
            stage="config",
            detail=f"Config file not found: `{config_path}`.",
            hint="Provide an existing path via `--config <path.yaml>`.",
        ) from exc
    except ValueError as exc:
        raise MergeStageError(
            stage="config",
            detail=f"Invalid config file `{config_path}`: {exc}",
            hint="Fix config schema/values and rerun.",
        ) from exc
    except Exception as exc:
        raise MergeStageError(
            stage="config",
            detail=f"Failed to load config file `{config_path}`: {exc}",
            hint="Verify YAML syntax and file permissions.",
        ) from exc


def _resolve_merge_config(
    config_file: Path | None,
    inputs: list[Path],
    overrides: dict[str, Any],
    tag_options: dict[str, str],
) -> MergeConfig:
    """Resolve effective config from YAML defaults and explicit CLI overrides.

    `overrides` only holds options the caller actually passed; unset options
    keep the YAML (or built-in) default.
    """

    loaded_config = _load_yaml_config(config_file)

    if loaded_config is None:
        if not inputs:
            raise MergeStageError(
                stage="config",
                detail="At least one input path is required when `--config` is not provided.",
                hint="Pass `<input>...` or use `--config <path.yaml>` with `input_path`.",
            )
        loaded_config = MergeConfig(input_path=inputs[0])
        if "jobs" not in overrides:
            try:
                env_jobs = ConfigLoader.jobs_from_env()
            except ValueError as exc:
                raise MergeStageError(
                    stage="config",
                    detail=str(exc),
                    hint="Unset `BOOKMERGE_JOBS` or set it to a positive integer.",
                ) from exc
            if env_jobs is not None:
                overrides["jobs"] = env_jobs

    if inputs:
        overrides["input_path"] = inputs[0]
        overrides["extra_inputs"] = tuple(inputs[1:])
    if tag_options:
        overrides["tag_options"] = {**loaded_config.tag_options, **tag_options}

    config = replace(loaded_config, **overrides)
    try:
        config.validate()
    except ValueError as exc:
        raise MergeStageError(
            stage="config",
            detail=str(exc),
            hint="Fix the option value and rerun.",
        ) from exc
    if config.output_path is None:
        raise MergeStageError(
            stage="config",
            detail="Output target is required.",
            hint="Pass `--output-file <path>`.",
        )
    return config


def _collect_overrides(**values: Any) -> dict[str, Any]:
    """Drop options the caller did not pass (`None`, `False`, empty)."""

    return {
        key: value
        for key, value in values.items()
        if value is not None and value is not False and value != ()
    }


@app.command("merge")
def merge_command(
    inputs: Annotated[
        list[Path] | None,
        typer.Argument(
            help="Input files or directories, merged in order. Required unless `--config` sets `input_path`.",
        ),
    ] = None,
    output_file: Annotated[
        Path | None,
        typer.Option(
            "--output-file",
            "-o",
            help="Output file, or output directory in batch mode.",
        ),
    ] = None,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to YAML config file with command defaults."),
    ] = None,
    include_extensions: Annotated[
        str | None,
        typer.Option(
            "--include-extensions",
            help=f"Comma separated audio extensions (default `{','.join(DEFAULT_AUDIO_EXTENSIONS)}`).",
        ),
    ] = None,
    batch_pattern: Annotated[
        list[str] | None,
        typer.Option(
            "--batch-pattern",
            help="Placeholder pattern like `input/%g/%a/%s/%p - %n/`; repeatable.",
        ),
    ] = None,
    jobs: Annotated[
        int | None,
        typer.Option("--jobs", "-j", help="Maximum number of parallel conversions."),
    ] = None,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Report planned jobs without converting.")
    ] = False,
    no_conversion: Annotated[
        bool,
        typer.Option("--no-conversion", help="Concatenate inputs without re-encoding."),
    ] = False,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite outputs and tolerate mixed extensions."),
    ] = False,
    add_silence: Annotated[
        int | None,
        typer.Option("--add-silence", help="Silence between items in milliseconds."),
    ] = None,
    audio_bitrate: Annotated[
        str | None, typer.Option("--audio-bitrate", help="Output bitrate, e.g. `64k`.")
    ] = None,
    audio_samplerate: Annotated[
        int | None, typer.Option("--audio-samplerate", help="Output sample rate in Hz.")
    ] = None,
    audio_channels: Annotated[
        int | None, typer.Option("--audio-channels", help="Output channel count.")
    ] = None,
    name: Annotated[str | None, typer.Option("--name", help="Title tag.")] = None,
    sortname: Annotated[str | None, typer.Option("--sortname", help="Sort title tag.")] = None,
    album: Annotated[str | None, typer.Option("--album", help="Album tag.")] = None,
    sortalbum: Annotated[str | None, typer.Option("--sortalbum", help="Sort album tag.")] = None,
    artist: Annotated[str | None, typer.Option("--artist", help="Artist tag.")] = None,
    sortartist: Annotated[
        str | None, typer.Option("--sortartist", help="Sort artist tag.")
    ] = None,
    albumartist: Annotated[
        str | None, typer.Option("--albumartist", help="Album artist tag.")
    ] = None,
    genre: Annotated[str | None, typer.Option("--genre", help="Genre tag.")] = None,
    writer: Annotated[str | None, typer.Option("--writer", help="Writer/composer tag.")] = None,
    year: Annotated[str | None, typer.Option("--year", help="Release year tag.")] = None,
    description: Annotated[
        str | None, typer.Option("--description", help="Short description tag.")
    ] = None,
    longdesc: Annotated[
        str | None, typer.Option("--longdesc", help="Long description tag.")
    ] = None,
    comment: Annotated[str | None, typer.Option("--comment", help="Comment tag.")] = None,
    copyright_: Annotated[
        str | None, typer.Option("--copyright", help="Copyright tag.")
    ] = None,
    encoded_by: Annotated[
        str | None, typer.Option("--encoded-by", help="Encoded-by tag.")
    ] = None,
    series: Annotated[str | None, typer.Option("--series", help="Series tag.")] = None,
    series_part: Annotated[
        str | None, typer.Option("--series-part", help="Series part tag.")
    ] = None,
    cover: Annotated[
        Path | None, typer.Option("--cover", help="Cover image to embed.")
    ] = None,
    skip_cover: Annotated[
        bool, typer.Option("--skip-cover", help="Do not extract or embed a cover.")
    ] = False,
    equate: Annotated[
        list[str] | None,
        typer.Option(
            "--equate",
            help="Copy the first field into the others, e.g. `artist,albumartist`; repeatable.",
        ),
    ] = None,
    musicbrainz_id: Annotated[
        str | None,
        typer.Option("--musicbrainz-id", help="MusicBrainz release id for chapter lookup."),
    ] = None,
    max_chapter_length: Annotated[
        str | None,
        typer.Option(
            "--max-chapter-length",
            help="Split chapters longer than `desired[,max]` seconds.",
        ),
    ] = None,
    silence_min_length: Annotated[
        int | None,
        typer.Option(
            "--silence-min-length",
            help=(
                "Minimum silence in milliseconds used as chapter split point "
                f"(default {DEFAULT_SILENCE_MIN_LENGTH_MS})."
            ),
        ),
    ] = None,
    ignore_source_tags: Annotated[
        bool,
        typer.Option("--ignore-source-tags", help="Do not fall back to the first file's tags."),
    ] = False,
    prepend_series_to_longdesc: Annotated[
        bool,
        typer.Option(
            "--prepend-series-to-longdesc",
            help="Prefix the long description with series and part.",
        ),
    ] = False,
    use_filenames_as_chapters: Annotated[
        bool,
        typer.Option(
            "--use-filenames-as-chapters",
            help="Name chapters after file names instead of embedded titles.",
        ),
    ] = False,
    keep_temp_files: Annotated[
        bool, typer.Option("--keep-temp-files", help="Keep intermediate files.")
    ] = False,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Show diagnostic output.")
    ] = False,
) -> None:
    """Merge audio files into one audiobook, or many in batch mode."""

    try:
        overrides = _collect_overrides(
            output_path=output_file,
            include_extensions=(
                parse_extension_list(include_extensions)
                if normalize_optional_string(include_extensions) is not None
                else None
            ),
            batch_patterns=tuple(batch_pattern or ()),
            jobs=jobs,
            dry_run=dry_run,
            no_conversion=no_conversion,
            force=force,
            silence_ms=add_silence,
            audio_bitrate=normalize_optional_string(audio_bitrate),
            audio_samplerate=audio_samplerate,
            audio_channels=audio_channels,
            equate=tuple(equate or ()),
            musicbrainz_id=normalize_optional_string(musicbrainz_id),
            max_chapter_length=normalize_optional_string(max_chapter_length),
            silence_min_length_ms=silence_min_length,
            cover=cover,
            ignore_source_tags=ignore_source_tags,
            prepend_series_to_longdesc=prepend_series_to_longdesc,
            use_filenames_as_chapters=use_filenames_as_chapters,
            skip_cover=skip_cover,
            keep_temp_files=keep_temp_files,
            verbose=verbose,
        )
        tag_values = {
            "title": name,
            "sort_title": sortname,
            "album": album,
            "sort_album": sortalbum,
            "artist": artist,
            "sort_artist": sortartist,
            "album_artist": albumartist,
            "genre": genre,
            "writer": writer,
            "year": year,
            "description": description,
            "long_description": longdesc,
            "comment": comment,
            "copyright": copyright_,
            "encoded_by": encoded_by,
            "series": series,
            "series_part": series_part,
        }
        tag_options = {
            field_name: normalized
            for field_name, normalized in (
                (key, normalize_optional_string(value)) for key, value in tag_values.items()
            )
            if normalized is not None
        }
        config = _resolve_merge_config(config_file, list(inputs or ()), overrides, tag_options)

        run_logger = RunLogger(verbose=config.verbose)
        progress = MergeProgressIndicator(command_name="merge")

        def orchestrator_factory() -> MergeOrchestrator:
            return MergeOrchestrator(
                run_logger=run_logger,
                stage_progress_callback=progress.on_stage_start,
                task_progress_callback=progress.on_task_progress,
            )

        if config.is_batch:
            summary = BatchRunner(orchestrator_factory, run_logger=run_logger).run(config)
        else:
            result = orchestrator_factory().run(config)
    except Exception as exc:
        exit_with_command_error("merge", exc, verbose=verbose)

    if config.is_batch:
        echo_batch_summary(summary)
        if summary.failed:
            raise typer.Exit(code=1)
        return
    echo_job_result(result)


@app.command("version")
def version_command() -> None:
    """Print the installed bookmerge version."""

    typer.echo(f"bookmerge {__version__}")


def main() -> None:
    """CLI entrypoint for console scripts."""
    app()


if __name__ == "__main__":
    main()
