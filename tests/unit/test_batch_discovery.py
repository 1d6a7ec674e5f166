"""Unit tests for batch job discovery."""

from __future__ import annotations

import io
from pathlib import Path

import pytest

from bookmerge.batch.discovery import BatchDiscoverer
from bookmerge.batch.placeholders import normalize_path
from bookmerge.config import MergeConfig
from bookmerge.errors import MergeStageError
from bookmerge.telemetry.logger import RunLogger


def _make_book(root: Path, *parts: str, file_name: str = "01.mp3") -> Path:
    """Create one book directory holding a single audio file."""

    directory = root.joinpath(*parts)
    directory.mkdir(parents=True, exist_ok=True)
    (directory / file_name).write_bytes(b"audio")
    return directory


def _batch_config(root: Path, output: Path, **overrides: object) -> MergeConfig:
    """Build a batch config rooted at `root`."""

    return MergeConfig(
        input_path=root,
        output_path=output,
        batch_patterns=("unused",),
        **overrides,
    )


def test_discover_builds_jobs_with_derived_output_and_overrides(tmp_path: Path) -> None:
    """Each matched directory should become a job with its own output and tags."""

    root = tmp_path / "input"
    hobbit = _make_book(root, "Tolkien", "The Hobbit")
    _make_book(root, "Poe", "The Raven")
    pattern = f"{normalize_path(root)}/%a/%n/"
    config = _batch_config(root, tmp_path / "out", tag_options={"genre": "Classic"})

    jobs = BatchDiscoverer().discover(config, pattern, set())

    assert [job.input_path for job in jobs] == [root / "Poe" / "The Raven", hobbit]
    hobbit_job = jobs[1]
    assert hobbit_job.output_path == tmp_path / "out" / "Tolkien" / "The Hobbit" / "The Hobbit.m4b"
    assert hobbit_job.config.tag_options == {
        "title": "The Hobbit",
        "artist": "Tolkien",
        "genre": "Classic",
    }
    assert hobbit_job.derived_options == {"title": "The Hobbit", "artist": "Tolkien"}
    assert hobbit_job.config.batch_patterns == ()
    assert hobbit_job.is_batch_job is True


def test_relative_pattern_matches_below_absolute_input_root(tmp_path: Path) -> None:
    """A pattern without the input root should match the trailing directories."""

    root = tmp_path / "input"
    hobbit = _make_book(root, "Tolkien", "The Hobbit")

    jobs = BatchDiscoverer().discover(_batch_config(root, tmp_path / "out"), "%a/%n/", set())

    assert [job.input_path for job in jobs] == [hobbit]
    assert jobs[0].output_path == tmp_path / "out" / "Tolkien" / "The Hobbit" / "The Hobbit.m4b"
    assert jobs[0].derived_options == {"title": "The Hobbit", "artist": "Tolkien"}


def test_discover_never_overrides_explicit_options(tmp_path: Path) -> None:
    """Explicitly set tag options should win over placeholder-derived values."""

    root = tmp_path / "input"
    _make_book(root, "Tolkien", "The Hobbit")
    config = _batch_config(root, tmp_path / "out", tag_options={"artist": "J. R. R. Tolkien"})

    jobs = BatchDiscoverer().discover(config, f"{normalize_path(root)}/%a/%n/", set())

    assert len(jobs) == 1
    assert jobs[0].config.tag_options["artist"] == "J. R. R. Tolkien"
    assert "artist" not in jobs[0].derived_options
    assert config.tag_options == {"artist": "J. R. R. Tolkien"}


def test_series_placeholder_skips_extra_title_directory(tmp_path: Path) -> None:
    """With a series capture the output should not get an extra title directory."""

    root = tmp_path / "input"
    _make_book(root, "Christie", "Poirot", "3 - Murder")
    pattern = f"{normalize_path(root)}/%a/%s/%p - %n/"
    config = _batch_config(root, tmp_path / "out")

    jobs = BatchDiscoverer().discover(config, pattern, set())

    assert jobs[0].output_path == tmp_path / "out" / "Christie" / "Poirot" / "3 - Murder.m4b"
    assert jobs[0].config.tag_options["series_part"] == "3"


def test_already_processed_set_prevents_double_queueing(tmp_path: Path) -> None:
    """A second pattern in the same run should not queue matched directories again."""

    root = tmp_path / "input"
    _make_book(root, "Tolkien", "The Hobbit")
    config = _batch_config(root, tmp_path / "out")
    already_processed: set[Path] = set()
    discoverer = BatchDiscoverer()

    first = discoverer.discover(config, f"{normalize_path(root)}/%a/%n/", already_processed)
    second = discoverer.discover(config, f"{normalize_path(root)}/%a/%m/", already_processed)
    repeated = discoverer.discover(config, f"{normalize_path(root)}/%a/%n/", already_processed)

    assert len(first) == 1
    assert second == []
    assert repeated == []
    assert already_processed == {root / "Tolkien" / "The Hobbit"}


def test_dry_run_reports_jobs_without_returning_them(tmp_path: Path) -> None:
    """Dry-run discovery should log the plan and return no executable jobs."""

    root = tmp_path / "input"
    _make_book(root, "Tolkien", "The Hobbit")
    sink = io.StringIO()
    discoverer = BatchDiscoverer(run_logger=RunLogger(sink))
    config = _batch_config(root, tmp_path / "out", dry_run=True)

    jobs = discoverer.discover(config, f"{normalize_path(root)}/%a/%n/", set())

    output = sink.getvalue()
    assert jobs == []
    assert "1 match for pattern" in output
    assert "- title: The Hobbit" in output
    assert "The Hobbit.m4b" in output


def test_zero_matches_is_reported_not_raised(tmp_path: Path) -> None:
    """A pattern without matches should report zero matches and return no jobs."""

    root = tmp_path / "input"
    _make_book(root, "flat")
    sink = io.StringIO()
    config = _batch_config(root, tmp_path / "out")

    jobs = BatchDiscoverer(run_logger=RunLogger(sink)).discover(
        config, f"{normalize_path(root)}/%g/%a/%n/", set()
    )

    assert jobs == []
    assert "0 matches for pattern" in sink.getvalue()


def test_discover_requires_output_root(tmp_path: Path) -> None:
    """Batch discovery without output root should fail at the config stage."""

    config = MergeConfig(input_path=tmp_path, batch_patterns=("%n",))

    with pytest.raises(MergeStageError) as error:
        BatchDiscoverer().discover(config, "%n", set())

    assert error.value.stage == "config"
