"""History manager applying the fixed precedence order.

Precedence: compaction_strategy -> max_tokens -> max_history_size
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .compaction import Summarizer, compress
from .errors import (
    CompactionFallbackWarning,
    CompressionFailed,
    HistoryWarning,
    InvalidTokenLimit,
    LowMessageCountWarning,
)
from .tokens import TokenEstimator
from .types import HistoryConfig, HistoryResult, Message, MessageRole, strategy_name

logger = logging.getLogger(__name__)

WarningHandler = Callable[[HistoryWarning], None]


class HistoryManager:
    """Decides which messages are sent to the model before every call.

    Holds no per-conversation state: ``apply`` reads its inputs and returns a
    new list. The only shared state is the estimator's token cache.

    Usage::

        manager = HistoryManager(summarizer=LLMSummarizer(provider, "gpt-4o-mini"))
        result = await manager.apply(messages, HistoryConfig(max_history_size=20))
        messages = result.unwrap()
    """

    def __init__(
        self,
        summarizer: Summarizer | None = None,
        estimator: TokenEstimator | None = None,
        warning_handler: WarningHandler | None = None,
    ):
        self.summarizer = summarizer
        self.estimator = estimator or TokenEstimator()
        self.warning_handler = warning_handler
        self._uncached = TokenEstimator(count=self.estimator.count, enable_caching=False)

    async def apply(
        self,
        messages: list[Message],
        config: HistoryConfig,
        summarizer: Summarizer | None = None,
    ) -> HistoryResult:
        """Apply history management in precedence order.

        1. compaction_strategy - compact if set; fall back to the input on failure
        2. max_tokens - drop the oldest non-system messages until under budget
        3. max_history_size - keep system messages plus the most recent messages

        Returns a failed ``HistoryResult`` with ``InvalidTokenLimit`` when
        ``max_tokens`` cannot hold the system messages; this is checked before
        any compaction runs.
        """
        estimator = self.estimator if config.enable_token_caching else self._uncached
        current = list(messages)

        if config.max_tokens is not None:
            system_tokens = estimator.estimate([m for m in current if m.is_system])
            if config.max_tokens < system_tokens:
                error = InvalidTokenLimit(system_tokens, config.max_tokens)
                logger.warning("History management rejected: %s", error)
                return HistoryResult.failure(error)

        if config.compaction_strategy is not None:
            current = await self._compact(current, config, summarizer or self.summarizer)

        if config.max_tokens is not None:
            current = trim_to_token_limit(current, config.max_tokens, estimator)

        if config.max_history_size is not None:
            current = keep_last_messages(current, config.max_history_size)

        if config.compaction_strategy is not None and len(current) < 2:
            self._emit(
                LowMessageCountWarning(
                    strategy=strategy_name(config.compaction_strategy),
                    result_count=len(current),
                )
            )

        return HistoryResult.success(current)

    async def _compact(
        self,
        messages: list[Message],
        config: HistoryConfig,
        summarizer: Summarizer | None,
    ) -> list[Message]:
        label = strategy_name(config.compaction_strategy)
        if summarizer is None:
            self._emit(CompactionFallbackWarning(strategy=label, reason="no summarizer configured"))
            return messages

        outcome = await compress(config.compaction_strategy, messages, summarizer)
        if outcome.used_fallback:
            reason = (
                str(outcome.error.cause)
                if isinstance(outcome.error, CompressionFailed)
                else str(outcome.error)
            )
            self._emit(CompactionFallbackWarning(strategy=label, reason=reason))
        return outcome.messages

    def _emit(self, warning: HistoryWarning) -> None:
        logger.warning("%s", warning)
        if self.warning_handler is None:
            return
        try:
            self.warning_handler(warning)
        except Exception as err:
            logger.warning("History warning handler failed: %s", err)


def trim_to_token_limit(
    messages: list[Message], max_tokens: int, estimator: TokenEstimator
) -> list[Message]:
    """Drop the oldest non-system messages until the estimate fits ``max_tokens``.

    System messages and the most recent non-system message are always kept,
    together with the call it answers when that message is a tool result. The
    result can exceed the budget only at that floor. Tool results whose call
    was dropped are dropped too.
    """
    counts = [estimator.estimate(m) for m in messages]
    total = sum(counts)
    if total <= max_tokens:
        return messages

    non_system = [i for i, m in enumerate(messages) if not m.is_system]
    floor = set(non_system[-1:])
    if floor and messages[non_system[-1]].role == MessageRole.TOOL_RESULT:
        call_id = messages[non_system[-1]].tool_call_id
        floor.update(i for i in non_system if any(c.id == call_id for c in messages[i].tool_calls))

    droppable = [i for i in non_system if i not in floor]
    dropped: set[int] = set()
    for index in droppable:
        if total <= max_tokens:
            break
        dropped.add(index)
        total -= counts[index]

    logger.debug("Trimmed %d messages to fit max_tokens=%d", len(dropped), max_tokens)
    return drop_orphaned_tool_results([m for i, m in enumerate(messages) if i not in dropped])


def keep_last_messages(messages: list[Message], max_size: int) -> list[Message]:
    """Keep system messages plus the most recent messages, ``max_size`` in total.

    System messages count toward ``max_size`` and keep their positions.
    Tool results whose call falls outside the window are dropped as well.
    """
    if len(messages) <= max_size:
        return messages

    system_count = sum(1 for m in messages if m.is_system)
    keep_recent = max(max_size - system_count, 0)
    others = [i for i, m in enumerate(messages) if not m.is_system]
    kept = set(others[len(others) - keep_recent :]) if keep_recent else set()
    return drop_orphaned_tool_results(
        [m for i, m in enumerate(messages) if m.is_system or i in kept]
    )


def drop_orphaned_tool_results(messages: list[Message]) -> list[Message]:
    """Remove tool results whose call is not in an earlier kept message.

    Providers reject a tool result without its matching call.
    """
    call_ids: set[str] = set()
    result = []
    for message in messages:
        if message.role == MessageRole.TOOL_RESULT and message.tool_call_id not in call_ids:
            continue
        call_ids.update(call.id for call in message.tool_calls)
        result.append(message)
    return result
