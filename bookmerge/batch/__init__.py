"""Batch mode: placeholder patterns and per-directory job discovery."""

from .discovery import BatchDiscoverer
from .placeholders import (
    PLACEHOLDER_OPTIONS,
    PlaceholderMatch,
    PlaceholderMatcher,
    normalize_path,
)

__all__ = [
    "PLACEHOLDER_OPTIONS",
    "BatchDiscoverer",
    "PlaceholderMatch",
    "PlaceholderMatcher",
    "normalize_path",
]
