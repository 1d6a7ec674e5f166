"""Integration-test fixtures for batch directory trees."""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture
def library_root(tmp_path: Path) -> Path:
    """Create an `<artist>/<title>` library with two books."""

    root = tmp_path / "library"
    for artist, title, file_name in (
        ("Tolkien", "The Hobbit", "01.mp3"),
        ("Poe", "The Raven", "broken.mp3"),
    ):
        directory = root / artist / title
        directory.mkdir(parents=True)
        (directory / file_name).write_bytes(f"{artist}-{title}".encode("utf-8"))
    return root
