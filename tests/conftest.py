"""Shared pytest fixtures for the full bookmerge test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.fakes import FakeEncoder, RecordingTagWriter, StaticTagReader


@pytest.fixture
def fake_encoder() -> FakeEncoder:
    """Provide an in-memory encoder that never invokes ffmpeg."""

    return FakeEncoder()


@pytest.fixture
def tag_writer() -> RecordingTagWriter:
    """Provide a tag writer that records tags and writes only the chapters sidecar."""

    return RecordingTagWriter()


@pytest.fixture
def tag_reader() -> StaticTagReader:
    """Provide a source tag reader without embedded tags."""

    return StaticTagReader()


@pytest.fixture
def audio_inputs(tmp_path: Path) -> list[Path]:
    """Create three small `.mp3` inputs in natural order."""

    input_dir = tmp_path / "input"
    input_dir.mkdir()
    paths = []
    for index in (1, 2, 10):
        path = input_dir / f"{index} - part.mp3"
        path.write_bytes(f"audio-{index}".encode("utf-8"))
        paths.append(path)
    return paths
