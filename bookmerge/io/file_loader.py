"""Filesystem scanning for merge inputs and batch directories.

Responsibilities:
- Resolve input files from files/directories with an extension allowlist.
- Report skipped paths with a reason instead of failing.
- List batch candidate directories that contain eligible files.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from ..parsing import natural_sort_key


def _extension_of(path: Path) -> str:
    """Return the lowercase extension without dot."""

    return path.suffix.lower().lstrip(".")


def _sorted_tree(root: Path) -> list[Path]:
    """Return all files below a directory in natural path order."""

    return sorted(
        (path for path in root.rglob("*") if path.is_file()),
        key=lambda path: natural_sort_key(path.relative_to(root).as_posix()),
    )


class FileLoader:
    """Collect eligible input files in document order."""

    def __init__(self, include_extensions: Iterable[str]) -> None:
        """Initialize the loader with an extension allowlist."""

        self._include_extensions = frozenset(
            extension.lower().lstrip(".") for extension in include_extensions
        )
        self._files: list[Path] = []
        self._skipped: dict[Path, str] = {}

    def add(self, path: Path) -> None:
        """Add a file, or every eligible file below a directory."""

        if path.is_dir():
            for child in _sorted_tree(path):
                self._add_file(child)
            return
        if not path.exists():
            self._skipped[path] = "not found"
            return
        if not path.is_file():
            self._skipped[path] = "not a file"
            return
        self._add_file(path)

    def _add_file(self, path: Path) -> None:
        """Add one file when its extension is allowed."""

        if _extension_of(path) not in self._include_extensions:
            self._skipped[path] = "extension not allowed"
            return
        if path in self._files:
            self._skipped[path] = "duplicate"
            return
        self._files.append(path)

    @property
    def files(self) -> list[Path]:
        """Return eligible files in the order they were added."""

        return list(self._files)

    @property
    def skipped_files(self) -> dict[Path, str]:
        """Return skipped paths mapped to their skip reason."""

        return dict(self._skipped)


class DirectoryLoader:
    """List directories that hold at least one eligible media or sidecar file."""

    def load(
        self,
        root: Path,
        include_extensions: Iterable[str],
        already_processed: set[Path],
    ) -> list[Path]:
        """Return candidate directories below `root`, skipping processed ones.

        `root` itself is a candidate as well. Directories are returned in
        natural path order so batch jobs run in a stable sequence.
        """

        extensions = frozenset(extension.lower().lstrip(".") for extension in include_extensions)
        candidates: set[Path] = set()
        for path in root.rglob("*"):
            if path.is_file() and _extension_of(path) in extensions:
                candidates.add(path.parent)

        return sorted(
            (directory for directory in candidates if directory not in already_processed),
            key=lambda directory: natural_sort_key(directory.as_posix()),
        )
