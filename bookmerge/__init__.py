"""Top-level package for bookmerge.

This package merges ordered audio files into one tagged, chaptered
audiobook and can discover many such merge jobs in a directory tree. The
main orchestration entry point is `bookmerge.pipeline.MergeOrchestrator`.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
