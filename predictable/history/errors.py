"""Error taxonomy and warning signals for history management.

Configuration errors (``InvalidTokenLimit``, ``MissingToolIdError``) are fatal
to the call. ``CompressionFailed`` and ``InsufficientHistory`` never reach the
caller as failures: the compaction executor records them on its outcome and
the pipeline continues.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class CompressionError(Exception):
    """Base class for history compression errors."""


class InvalidTokenLimit(CompressionError):
    """``max_tokens`` cannot accommodate the system prompt."""

    def __init__(self, system_prompt_tokens: int, max_tokens: int):
        self.system_prompt_tokens = system_prompt_tokens
        self.max_tokens = max_tokens
        super().__init__(str(self))

    def __str__(self) -> str:
        return (
            f"max_tokens ({self.max_tokens}) must be >= "
            f"system prompt tokens ({self.system_prompt_tokens})"
        )


class CompressionFailed(CompressionError):
    """The summarizer raised while compacting with ``strategy``."""

    def __init__(self, strategy: str, cause: BaseException):
        self.strategy = strategy
        self.cause = cause
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"Compression failed with strategy {self.strategy}: {self.cause}"


class InsufficientHistory(CompressionError):
    """Too few compactable messages; compaction was skipped."""

    def __init__(self, count: int, minimum: int):
        self.count = count
        self.minimum = minimum
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"Insufficient history: {self.count} messages (minimum {self.minimum} required)"


class MissingToolIdError(ValueError):
    """An external tool call or tool result has no call id."""

    def __init__(self, item_type: str, name: str | None = None):
        self.item_type = item_type
        self.name = name
        super().__init__(str(self))

    def __str__(self) -> str:
        suffix = f" (tool '{self.name}')" if self.name else ""
        return f"{self.item_type} item is missing a call_id{suffix}"


class HistoryManagementError(Exception):
    """Raised at the pipeline boundary when history management returned an error."""

    def __init__(self, error: CompressionError):
        self.error = error
        super().__init__(str(error))


# -- Warning signals ----------------------------------------------------------


class LowMessageCountWarning(BaseModel):
    """Compaction was requested and the managed history has fewer than 2 messages."""

    model_config = ConfigDict(frozen=True)

    strategy: str
    result_count: int

    def __str__(self) -> str:
        return (
            f"Compression with strategy {self.strategy} resulted in "
            f"{self.result_count} message(s)"
        )


class CompactionFallbackWarning(BaseModel):
    """The summarizer failed and the original history was kept."""

    model_config = ConfigDict(frozen=True)

    strategy: str
    reason: str

    def __str__(self) -> str:
        return (
            f"Compaction with strategy {self.strategy} fell back to "
            f"original history: {self.reason}"
        )


HistoryWarning = LowMessageCountWarning | CompactionFallbackWarning
