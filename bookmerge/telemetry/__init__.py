"""Run logging for merge jobs."""

from .logger import RunLogger

__all__ = ["RunLogger"]
