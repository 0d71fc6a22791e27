"""Token estimation for conversation history.

The default counter uses a simple heuristic: ~4 characters per token. Pass a
different ``count`` function (for example ``tiktoken_counter("gpt-4o")``) to
match a provider's tokenizer more closely.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Callable, Iterable

from .types import Message

TokenCounter = Callable[[str], int]

DEFAULT_MAX_CACHE_ENTRIES = 10_000


def estimate_tokens(text: str) -> int:
    """Estimate token count for a string using the ~4 chars/token heuristic."""
    return math.ceil(len(text) / 4)


def estimate_message_tokens(message: Message, count: TokenCounter = estimate_tokens) -> int:
    """Estimate token count for a single message, including its tool calls."""
    total = count(message.content) if message.content else 0
    for call in message.tool_calls:
        total += count(call.name) + count(call.arguments)
    return total


def estimate_messages_tokens(
    messages: Iterable[Message], count: TokenCounter = estimate_tokens
) -> int:
    """Estimate total token count for a list of messages."""
    return sum(estimate_message_tokens(m, count) for m in messages)


def tiktoken_counter(model: str) -> TokenCounter:
    """Build a tiktoken-backed counter for ``model``.

    Unknown models fall back to the ``cl100k_base`` encoding.
    """
    try:
        import tiktoken
    except ImportError:
        raise ImportError(
            "tiktoken not installed. Install it with: pip install 'predictable-agents[tiktoken]'"
        ) from None

    try:
        encoder = tiktoken.encoding_for_model(model)
    except KeyError:
        encoder = tiktoken.get_encoding("cl100k_base")

    def count(text: str) -> int:
        return len(encoder.encode(text))

    return count


class TokenEstimator:
    """Estimates tokens for messages, optionally memoizing per-message counts.

    The cache may be shared across concurrent conversations: messages are
    immutable values, so a cached count never goes stale. Population is
    compute-if-absent under a lock, so a message is counted at most once while
    cached. At most ``max_entries`` counts are kept; the oldest entry is evicted
    first.
    """

    def __init__(
        self,
        count: TokenCounter | None = None,
        enable_caching: bool = True,
        max_entries: int = DEFAULT_MAX_CACHE_ENTRIES,
    ):
        if max_entries < 1:
            raise ValueError(f"max_entries must be at least 1, got {max_entries}")
        self.count = count or estimate_tokens
        self.enable_caching = enable_caching
        self.max_entries = max_entries
        self._cache: dict[Message, int] = {}
        self._lock = threading.Lock()

    def estimate(self, messages: Message | Iterable[Message]) -> int:
        """Estimate one message, or the sum over a list of messages (0 when empty)."""
        if isinstance(messages, Message):
            return self._estimate_one(messages)
        return sum(self._estimate_one(m) for m in messages)

    def _estimate_one(self, message: Message) -> int:
        if not self.enable_caching:
            return estimate_message_tokens(message, self.count)

        cached = self._cache.get(message)
        if cached is not None:
            return cached

        with self._lock:
            cached = self._cache.get(message)
            if cached is None:
                cached = estimate_message_tokens(message, self.count)
                if len(self._cache) >= self.max_entries:
                    del self._cache[next(iter(self._cache))]
                self._cache[message] = cached
            return cached

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
