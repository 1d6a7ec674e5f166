"""CLI output and error rendering helpers.

This module centralizes user-facing CLI presentation for command diagnostics,
job results and batch summaries.
"""

from __future__ import annotations

from typing import NoReturn

import typer

from .errors import MergeStageError
from .models.datatypes import JobResult
from .pipeline.batch_runner import BatchSummary


def exit_with_command_error(command_name: str, exc: Exception, *, verbose: bool = False) -> NoReturn:
    """Print concise diagnostics for command failures and exit with code 1."""

    if isinstance(exc, MergeStageError):
        typer.secho(
            f"{command_name} failed at stage `{exc.stage}`: {exc.detail}",
            fg=typer.colors.RED,
            err=True,
        )
        if exc.hint:
            typer.secho(f"Hint: {exc.hint}", fg=typer.colors.YELLOW, err=True)
        if verbose and exc.diagnostic:
            typer.echo(f"Diagnostic: {exc.diagnostic}", err=True)
    else:
        typer.secho(f"{command_name} failed: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


def echo_job_result(result: JobResult) -> None:
    """Print the output path and counts of one finished job."""

    if result.skipped:
        typer.echo(f"Skipped: {result.output_path} already exists")
        return
    if result.dry_run:
        typer.echo(f"Dry run: {result.merged_count} files would be merged into {result.output_path}")
        return
    typer.echo(f"Output: {result.output_path}")
    typer.echo(f"Files merged: {result.merged_count}")
    typer.echo(f"Chapters: {result.chapter_count}")


def echo_batch_summary(summary: BatchSummary) -> None:
    """Print batch totals; per-job failures are reported while the batch runs."""

    skipped = summary.skipped_count
    line = (
        f"Batch jobs: {summary.job_count}, "
        f"succeeded: {len(summary.results) - skipped}, failed: {len(summary.failures)}"
    )
    if skipped:
        line = f"{line}, skipped: {skipped}"
    typer.echo(line)
