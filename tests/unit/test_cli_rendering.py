"""Unit tests for CLI output and error rendering helpers."""

from __future__ import annotations

from pathlib import Path

import pytest
import typer

from bookmerge.cli_rendering import echo_batch_summary, echo_job_result, exit_with_command_error
from bookmerge.errors import MergeStageError
from bookmerge.models.datatypes import JobResult, JobState
from bookmerge.pipeline.batch_runner import BatchSummary, JobFailure


def test_exit_with_command_error_renders_stage_error_with_hint(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Renderer should print stage diagnostics and hint before exiting with code 1."""

    error = MergeStageError(
        stage="convert",
        detail="could not convert a.mp3 to 01-a.finished.m4b",
        hint="Run with `--verbose` to see the encoder output.",
        diagnostic="encoder exited with status 1",
    )

    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("merge", error)

    captured = capsys.readouterr()
    assert exc_info.value.exit_code == 1
    assert "merge failed at stage `convert`: could not convert a.mp3" in captured.err
    assert "Hint: Run with `--verbose` to see the encoder output." in captured.err
    assert "encoder exited" not in captured.err


def test_exit_with_command_error_shows_diagnostic_when_verbose(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Verbose mode should surface the underlying diagnostic detail."""

    error = MergeStageError(stage="assemble", detail="could not merge", diagnostic="stderr text")

    with pytest.raises(typer.Exit):
        exit_with_command_error("merge", error, verbose=True)

    assert "Diagnostic: stderr text" in capsys.readouterr().err


def test_exit_with_command_error_renders_non_stage_fallback(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Renderer should print fallback exception text for non-stage failures."""

    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("merge", RuntimeError("unexpected"))

    assert exc_info.value.exit_code == 1
    assert "merge failed: unexpected" in capsys.readouterr().err


def test_echo_job_result_and_batch_summary(capsys: pytest.CaptureFixture[str]) -> None:
    """Results and batch totals should be printed as plain lines."""

    echo_job_result(
        JobResult(output_path=Path("out/book.m4b"), merged_count=3, state=JobState.DONE, chapter_count=3)
    )
    echo_batch_summary(
        BatchSummary(
            results=(),
            failures=(JobFailure(directory=Path("in/a"), stage="convert", detail="boom"),),
        )
    )

    output = capsys.readouterr().out
    assert "Output: out/book.m4b" in output
    assert "Files merged: 3" in output
    assert "Batch jobs: 1, succeeded: 0, failed: 1" in output


def test_skipped_jobs_are_counted_apart_from_successes(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Skipped batch jobs should not count as merged ones."""

    merged = JobResult(output_path=Path("out/a.m4b"), merged_count=2, state=JobState.DONE)
    skipped = JobResult(
        output_path=Path("out/b.m4b"), merged_count=0, state=JobState.DONE, skipped=True
    )

    echo_job_result(skipped)
    echo_batch_summary(BatchSummary(results=(merged, skipped), failures=()))

    output = capsys.readouterr().out
    assert "Skipped: out/b.m4b already exists" in output
    assert "Batch jobs: 2, succeeded: 1, failed: 0, skipped: 1" in output
