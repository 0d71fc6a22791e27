"""History module - compaction, token budgets and message-count limits for conversations."""

from .bridge import from_external, from_external_messages, to_external, to_external_messages
from .compaction import (
    COMPACTION_PROMPT,
    MIN_COMPACTABLE_MESSAGES,
    SUMMARY_PREFIX,
    LLMSummarizer,
    compress,
    format_messages_for_prompt,
    is_summary_message,
)
from .errors import (
    CompactionFallbackWarning,
    CompressionError,
    CompressionFailed,
    HistoryManagementError,
    InsufficientHistory,
    InvalidTokenLimit,
    LowMessageCountWarning,
    MissingToolIdError,
)
from .manager import HistoryManager, keep_last_messages, trim_to_token_limit
from .tokens import (
    TokenEstimator,
    estimate_message_tokens,
    estimate_messages_tokens,
    estimate_tokens,
    tiktoken_counter,
)
from .types import (
    Chunked,
    CompactionOutcome,
    CompactionStrategy,
    FromTimestamp,
    HistoryConfig,
    HistoryResult,
    LastN,
    Message,
    MessageRole,
    MultiSystemSections,
    ToolCallRequest,
    WholeHistory,
)

__all__ = [
    "Chunked",
    "CompactionFallbackWarning",
    "CompactionOutcome",
    "CompactionStrategy",
    "CompressionError",
    "CompressionFailed",
    "FromTimestamp",
    "HistoryConfig",
    "HistoryManagementError",
    "HistoryManager",
    "HistoryResult",
    "InsufficientHistory",
    "InvalidTokenLimit",
    "LLMSummarizer",
    "LastN",
    "LowMessageCountWarning",
    "Message",
    "MessageRole",
    "MissingToolIdError",
    "MultiSystemSections",
    "ToolCallRequest",
    "TokenEstimator",
    "WholeHistory",
    "COMPACTION_PROMPT",
    "MIN_COMPACTABLE_MESSAGES",
    "SUMMARY_PREFIX",
    "compress",
    "estimate_message_tokens",
    "estimate_messages_tokens",
    "estimate_tokens",
    "format_messages_for_prompt",
    "from_external",
    "from_external_messages",
    "is_summary_message",
    "keep_last_messages",
    "tiktoken_counter",
    "to_external",
    "to_external_messages",
    "trim_to_token_limit",
]
