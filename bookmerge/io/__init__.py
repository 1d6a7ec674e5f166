"""Filesystem scanning for merge inputs and batch directories."""

from .file_loader import DirectoryLoader, FileLoader

__all__ = ["DirectoryLoader", "FileLoader"]
