__version__ = "0.1.0"

import logging

from .agents.agent import Agent, AgentInput
from .history import (
    Chunked,
    CompactionFallbackWarning,
    CompressionError,
    CompressionFailed,
    FromTimestamp,
    HistoryConfig,
    HistoryManagementError,
    HistoryManager,
    HistoryResult,
    InsufficientHistory,
    InvalidTokenLimit,
    LastN,
    LLMSummarizer,
    LowMessageCountWarning,
    Message,
    MessageRole,
    MissingToolIdError,
    MultiSystemSections,
    TokenEstimator,
    ToolCallRequest,
    WholeHistory,
    compress,
    from_external_messages,
    to_external_messages,
)
from .llm.providers.base import LLMProvider, LLMResponse, get_provider, register_provider
from .types.types import AgentConfig, AgentResponse, Usage

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: int = logging.INFO, log_file: str | None = None) -> None:
    """Route ``predictable.*`` logs to stderr, or to ``log_file`` when given."""
    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file, mode="a")
    else:
        handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))

    logger = logging.getLogger("predictable")
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level)


__all__ = [
    "__version__",
    "configure_logging",
    # Agents
    "Agent",
    "AgentInput",
    "AgentConfig",
    "AgentResponse",
    "Usage",
    # History
    "Chunked",
    "CompactionFallbackWarning",
    "CompressionError",
    "CompressionFailed",
    "FromTimestamp",
    "HistoryConfig",
    "HistoryManagementError",
    "HistoryManager",
    "HistoryResult",
    "InsufficientHistory",
    "InvalidTokenLimit",
    "LastN",
    "LLMSummarizer",
    "LowMessageCountWarning",
    "Message",
    "MessageRole",
    "MissingToolIdError",
    "MultiSystemSections",
    "TokenEstimator",
    "ToolCallRequest",
    "WholeHistory",
    "compress",
    "from_external_messages",
    "to_external_messages",
    # LLM
    "LLMProvider",
    "LLMResponse",
    "get_provider",
    "register_provider",
]
