"""Shared typed data models for bookmerge.

This package contains dataclasses used across merge modules to avoid
cross-module coupling and circular imports.
"""

from .datatypes import (
    SILENCE_INDEX,
    ConversionTask,
    ConverterOptions,
    JobResult,
    JobSpec,
    JobState,
    MergeSequence,
    PoolSnapshot,
    SequenceEntry,
    Silence,
    TaskOutcome,
    TaskStatus,
)

__all__ = [
    "SILENCE_INDEX",
    "ConversionTask",
    "ConverterOptions",
    "JobResult",
    "JobSpec",
    "JobState",
    "MergeSequence",
    "PoolSnapshot",
    "SequenceEntry",
    "Silence",
    "TaskOutcome",
    "TaskStatus",
]
