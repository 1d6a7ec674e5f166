"""Domain exceptions for merge jobs and CLI diagnostics."""

from __future__ import annotations


class MergeStageError(RuntimeError):
    """Raised when a specific merge stage fails.

    Attributes:
        stage: Stage identifier (`config`, `load_inputs`, `convert`, ...).
        detail: One-line message naming the failing path or operation.
        hint: Optional actionable follow-up for the user.
        diagnostic: Optional underlying detail (encoder stderr, parser error)
            that is only surfaced in verbose mode.
    """

    def __init__(
        self,
        *,
        stage: str,
        detail: str,
        hint: str | None = None,
        diagnostic: str | None = None,
    ) -> None:
        """Initialize a stage-scoped merge error."""

        super().__init__(detail)
        self.stage = stage
        self.detail = detail
        self.hint = hint
        self.diagnostic = diagnostic
