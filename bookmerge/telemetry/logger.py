"""Structured run logging utilities.

Responsibilities:
- Emit concise, deterministic phase-level runtime logs through `loguru`.
- Provide human-readable notice/warning/error lines for job reports.
"""

from __future__ import annotations

import sys
from typing import TextIO

from loguru import logger as _loguru_logger


def _sanitize_context_value(value: object) -> str:
    """Convert context values into stable, shell-safe tokens."""

    raw = str(value).strip()
    if not raw:
        return "none"
    return "".join(
        character if character.isalnum() or character in {"-", "_", ".", ":", "/"} else "_"
        for character in raw
    )


def _format_context(context: dict[str, object]) -> str:
    """Serialize context key/value pairs in deterministic key order."""

    if not context:
        return ""
    tokens = [
        f"{key}={_sanitize_context_value(context[key])}"
        for key in sorted(context.keys())
    ]
    return " " + " ".join(tokens)


class RunLogger:
    """Emit phase events and report lines for merge jobs."""

    def __init__(self, sink: TextIO | None = None, *, verbose: bool = False) -> None:
        """Initialize logger sink and configure deterministic formatting."""

        self._sink = sink or sys.stderr
        self.verbose = verbose
        _loguru_logger.remove()
        _loguru_logger.add(
            self._sink,
            format="{message}",
            level="DEBUG" if verbose else "INFO",
            colorize=False,
        )

    def _emit(self, level: str, event: str, stage: str, **context: object) -> None:
        """Emit one structured runtime log line."""

        line = f"[phase] level={level} stage={stage} event={event}{_format_context(context)}"
        _loguru_logger.log(level, line)

    def log_stage_start(self, stage: str, **context: object) -> None:
        """Emit a stage-start runtime event."""

        self._emit("DEBUG", "start", stage, **context)

    def log_stage_complete(self, stage: str, **context: object) -> None:
        """Emit a stage-complete runtime event."""

        self._emit("DEBUG", "complete", stage, **context)

    def log_stage_failure(self, stage: str, error_type: str) -> None:
        """Emit a stage-failure runtime event without sensitive payload details."""

        self._emit("ERROR", "failure", stage, error_type=error_type)

    def notice(self, message: str) -> None:
        """Emit one user-facing report line."""

        _loguru_logger.info(message)

    def debug(self, message: str) -> None:
        """Emit diagnostic detail shown only in verbose mode."""

        _loguru_logger.debug(message)

    def warning(self, message: str) -> None:
        """Emit a non-fatal warning line."""

        _loguru_logger.warning(message)

    def error(self, message: str) -> None:
        """Emit an error line."""

        _loguru_logger.error(message)
