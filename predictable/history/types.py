"""Types for conversation history management.

Messages are immutable values: every history operation returns a new list and
never edits a message in place. Compaction strategies are pure descriptions;
running one needs a summarizer supplied by the caller.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import CompressionError, HistoryManagementError


class MessageRole(str, Enum):
    """Role of a message sender."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"


class ToolCallRequest(BaseModel):
    """A single tool invocation requested by the assistant."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: str = "{}"  # JSON string


class Message(BaseModel):
    """A conversation entry.

    An assistant message may carry tool calls; a tool result message answers
    one of them through ``tool_call_id``. ``timestamp`` is optional and only
    read by the ``FromTimestamp`` compaction strategy.
    """

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str = ""
    name: str | None = None
    tool_calls: tuple[ToolCallRequest, ...] = ()
    tool_call_id: str | None = None
    timestamp: datetime | None = None

    @classmethod
    def system(cls, content: str, **kwargs: Any) -> Message:
        return cls(role=MessageRole.SYSTEM, content=content, **kwargs)

    @classmethod
    def user(cls, content: str, **kwargs: Any) -> Message:
        return cls(role=MessageRole.USER, content=content, **kwargs)

    @classmethod
    def assistant(cls, content: str, **kwargs: Any) -> Message:
        return cls(role=MessageRole.ASSISTANT, content=content, **kwargs)

    @classmethod
    def with_tool_calls(
        cls, tool_calls: list[ToolCallRequest], content: str = "", **kwargs: Any
    ) -> Message:
        """Build an assistant message requesting one or more tool calls."""
        return cls(
            role=MessageRole.ASSISTANT, content=content, tool_calls=tuple(tool_calls), **kwargs
        )

    @classmethod
    def tool_result(
        cls, tool_call_id: str, content: str, name: str | None = None, **kwargs: Any
    ) -> Message:
        return cls(
            role=MessageRole.TOOL_RESULT,
            content=content,
            tool_call_id=tool_call_id,
            name=name,
            **kwargs,
        )

    @property
    def is_system(self) -> bool:
        return self.role == MessageRole.SYSTEM


# -- Compaction strategies ----------------------------------------------------


class WholeHistory(BaseModel):
    """Summarize everything except the leading system and first user message."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["whole_history"] = "whole_history"


class LastN(BaseModel):
    """Keep the last ``n`` messages verbatim and summarize everything before them."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["last_n"] = "last_n"
    n: int = Field(ge=0)


class Chunked(BaseModel):
    """Summarize the history in contiguous chunks of ``chunk_size`` messages."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["chunked"] = "chunked"
    chunk_size: int = Field(ge=1)


class FromTimestamp(BaseModel):
    """Summarize messages older than ``timestamp``, keep the rest verbatim."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["from_timestamp"] = "from_timestamp"
    timestamp: datetime


class MultiSystemSections(BaseModel):
    """Split at every system message and summarize each section on its own."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["multi_system_sections"] = "multi_system_sections"


CompactionStrategy = Annotated[
    Union[WholeHistory, LastN, Chunked, FromTimestamp, MultiSystemSections],
    Field(discriminator="kind"),
]


def strategy_name(strategy: Any) -> str:
    """Readable strategy label used in errors and warnings."""
    if isinstance(strategy, LastN):
        return f"LastN({strategy.n})"
    if isinstance(strategy, Chunked):
        return f"Chunked({strategy.chunk_size})"
    if isinstance(strategy, FromTimestamp):
        return f"FromTimestamp({strategy.timestamp.isoformat()})"
    return type(strategy).__name__


# -- Configuration and results ------------------------------------------------

_OPTION_ALIASES = {
    "compactionStrategy": "compaction_strategy",
    "maxTokens": "max_tokens",
    "maxHistorySize": "max_history_size",
    "enableTokenCaching": "enable_token_caching",
}


class HistoryConfig(BaseModel):
    """Per-call history management options.

    Compaction only runs when ``compaction_strategy`` is set; there is no
    default strategy.
    """

    model_config = ConfigDict(frozen=True)

    compaction_strategy: CompactionStrategy | None = None
    max_tokens: int | None = Field(default=None, ge=0)
    max_history_size: int | None = Field(default=None, ge=1)
    enable_token_caching: bool = True

    @property
    def is_active(self) -> bool:
        return (
            self.compaction_strategy is not None
            or self.max_tokens is not None
            or self.max_history_size is not None
        )

    @classmethod
    def from_options(cls, options: Mapping[str, Any] | None) -> HistoryConfig:
        """Build a config from request options, accepting camelCase keys."""
        if not options:
            return cls()
        normalized = {_OPTION_ALIASES.get(key, key): value for key, value in options.items()}
        return cls.model_validate(normalized)


class CompactionOutcome(BaseModel):
    """Result of running one compaction strategy."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    messages: list[Message]
    messages_dropped: int = 0
    used_fallback: bool = False
    # CompressionFailed when the summarizer raised, InsufficientHistory when skipped
    error: CompressionError | None = None


class HistoryResult(BaseModel):
    """Outcome of ``HistoryManager.apply``: managed messages or a typed error."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    messages: list[Message] | None = None
    error: CompressionError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, messages: list[Message]) -> HistoryResult:
        return cls(messages=messages)

    @classmethod
    def failure(cls, error: CompressionError) -> HistoryResult:
        return cls(error=error)

    def unwrap(self) -> list[Message]:
        """Return the managed messages or raise ``HistoryManagementError``."""
        if self.error is not None:
            raise HistoryManagementError(self.error)
        return list(self.messages or [])
