"""Merge orchestration package."""

from .batch_runner import BatchRunner, BatchSummary, JobFailure, validate_batch_config
from .orchestrator import MergeOrchestrator, temp_dir_for

__all__ = [
    "BatchRunner",
    "BatchSummary",
    "JobFailure",
    "MergeOrchestrator",
    "temp_dir_for",
    "validate_batch_config",
]
