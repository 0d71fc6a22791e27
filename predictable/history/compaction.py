"""Compaction strategy executor.

Replaces spans of conversation history with a single synthetic assistant
message (a TL;DR) produced by a caller-supplied summarizer. The leading system
message is never summarized. On summarizer failure the original history is
returned with ``used_fallback=True``; the failure is logged, never raised.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from .errors import CompressionFailed, InsufficientHistory
from .types import (
    Chunked,
    CompactionOutcome,
    FromTimestamp,
    LastN,
    Message,
    MessageRole,
    MultiSystemSections,
    WholeHistory,
    strategy_name,
)

if TYPE_CHECKING:
    from ..llm.providers.base import LLMProvider

logger = logging.getLogger(__name__)

# -- Constants ----------------------------------------------------------------

MIN_COMPACTABLE_MESSAGES = 10

COMPACTION_PROMPT = (
    "You are summarizing part of a conversation between a user and an AI assistant.\n"
    "\n"
    "Your goal: someone reading only this summary should be able to continue "
    "the conversation without the user having to repeat themselves.\n"
    "\n"
    "Capture:\n"
    "- What the user is trying to accomplish (their goal, problem, or question)\n"
    "- Key facts, context, or constraints the user shared\n"
    "- Decisions made or conclusions reached\n"
    "- Tool calls that were made and what they returned\n"
    "- Open threads and where the conversation left off\n"
    "\n"
    "Messages to summarize:\n"
    "{messages_to_fold}\n"
    "\n"
    "Write a concise, factual summary in short paragraphs. "
    "No pleasantries, no meta-commentary."
)

SUMMARY_PREFIX = "[Conversation summary]\n"
SUMMARY_MESSAGE_NAME = "tldr"

Summarizer = Callable[[list[Message]], "Message | Awaitable[Message]"]

# -- Helpers ------------------------------------------------------------------


def is_summary_message(message: Message) -> bool:
    """Detect a synthetic TL;DR message produced by compaction."""
    if message.role != MessageRole.ASSISTANT:
        return False
    return message.name == SUMMARY_MESSAGE_NAME or message.content.startswith(SUMMARY_PREFIX)


def format_messages_for_prompt(messages: list[Message]) -> str:
    """Format messages as text for inclusion in the compaction prompt."""
    parts = []
    for m in messages:
        if m.tool_calls:
            calls = ", ".join(f"{c.name}({c.arguments})" for c in m.tool_calls)
            text = f"{m.content}\n[tool calls: {calls}]" if m.content else f"[tool calls: {calls}]"
            parts.append(f"assistant: {text}")
        elif m.role == MessageRole.TOOL_RESULT:
            label = f"tool_result[{m.name}]" if m.name else "tool_result"
            parts.append(f"{label}: {m.content}")
        else:
            parts.append(f"{m.role.value}: {m.content}")
    return "\n\n".join(parts)


def _split_head(
    messages: list[Message], keep_first_user: bool
) -> tuple[list[Message], list[Message]]:
    """Split off the preserved head: leading system message, optionally the first user."""
    index = 0
    if messages and messages[0].is_system:
        index = 1
    if keep_first_user and index < len(messages) and messages[index].role == MessageRole.USER:
        index += 1
    return messages[:index], messages[index:]


def _split_sections(messages: list[Message]) -> list[list[Message]]:
    """Split at every system message; each system message opens a new section."""
    sections: list[list[Message]] = []
    for message in messages:
        if message.is_system or not sections:
            sections.append([message])
        else:
            sections[-1].append(message)
    return sections


def _align_cut(span: list[Message], cut: int) -> int:
    """Move a cut point back so the verbatim tail never starts with a tool result."""
    while 0 < cut < len(span) and span[cut].role == MessageRole.TOOL_RESULT:
        cut -= 1
    return cut


def _has_new_messages(span: list[Message]) -> bool:
    return any(not is_summary_message(m) for m in span)


def compactable_count(strategy: Any, messages: list[Message]) -> int:
    """Number of messages the strategy could summarize, excluding earlier summaries.

    ``MultiSystemSections`` counts each section without its system message and
    first user message, the same head ``WholeHistory`` keeps.
    """
    if isinstance(strategy, MultiSystemSections):
        span = [
            m
            for section in _split_sections(messages)
            for m in _split_head(section, keep_first_user=True)[1]
        ]
    else:
        _, span = _split_head(messages, keep_first_user=isinstance(strategy, WholeHistory))
    return sum(1 for m in span if not is_summary_message(m))


async def _summarize(summarize: Summarizer, span: list[Message]) -> Message:
    result = summarize(list(span))
    if inspect.isawaitable(result):
        result = await result
    if not isinstance(result, Message):
        raise TypeError(f"Summarizer must return a Message, got {type(result).__name__}")
    if result.name is None:
        result = result.model_copy(update={"name": SUMMARY_MESSAGE_NAME})
    return result


# -- Strategies ---------------------------------------------------------------


async def _whole_history(messages: list[Message], summarize: Summarizer) -> list[Message]:
    head, rest = _split_head(messages, keep_first_user=True)
    if not _has_new_messages(rest):
        return messages
    return head + [await _summarize(summarize, rest)]


async def _last_n(strategy: LastN, messages: list[Message], summarize: Summarizer) -> list[Message]:
    head, rest = _split_head(messages, keep_first_user=False)
    cut = _align_cut(rest, max(len(rest) - strategy.n, 0))
    if not _has_new_messages(rest[:cut]):
        return messages
    return head + [await _summarize(summarize, rest[:cut])] + rest[cut:]


async def _chunked(
    strategy: Chunked, messages: list[Message], summarize: Summarizer
) -> list[Message]:
    head, rest = _split_head(messages, keep_first_user=False)
    size = strategy.chunk_size
    summaries: list[Message] = []
    for start in range(0, len(rest), size):
        chunk = rest[start : start + size]
        if _has_new_messages(chunk):
            summaries.append(await _summarize(summarize, chunk))
        else:
            summaries.extend(chunk)
    return head + summaries


async def _from_timestamp(
    strategy: FromTimestamp, messages: list[Message], summarize: Summarizer
) -> list[Message]:
    head, rest = _split_head(messages, keep_first_user=False)
    cut = 0
    for index, message in enumerate(rest):
        if message.timestamp is not None and message.timestamp < strategy.timestamp:
            cut = index + 1
    cut = _align_cut(rest, cut)
    if not _has_new_messages(rest[:cut]):
        return messages
    return head + [await _summarize(summarize, rest[:cut])] + rest[cut:]


async def _multi_system_sections(messages: list[Message], summarize: Summarizer) -> list[Message]:
    result: list[Message] = []
    for section in _split_sections(messages):
        result.extend(await _whole_history(section, summarize))
    return result


async def _run_strategy(
    strategy: Any, messages: list[Message], summarize: Summarizer
) -> list[Message]:
    if isinstance(strategy, WholeHistory):
        return await _whole_history(messages, summarize)
    if isinstance(strategy, LastN):
        return await _last_n(strategy, messages, summarize)
    if isinstance(strategy, Chunked):
        return await _chunked(strategy, messages, summarize)
    if isinstance(strategy, FromTimestamp):
        return await _from_timestamp(strategy, messages, summarize)
    if isinstance(strategy, MultiSystemSections):
        return await _multi_system_sections(messages, summarize)
    raise TypeError(f"Unknown compaction strategy: {strategy!r}")


# -- Main function ------------------------------------------------------------


async def compress(
    strategy: Any,
    messages: list[Message],
    summarize: Summarizer,
) -> CompactionOutcome:
    """Compact ``messages`` with ``strategy``.

    1. Count the compactable span (history minus the preserved head)
    2. Under MIN_COMPACTABLE_MESSAGES -> return as-is with InsufficientHistory
    3. Otherwise run the strategy, one summarizer call per summarized span
    4. On summarizer failure -> log warning, return the original history
    """
    if not isinstance(
        strategy, (WholeHistory, LastN, Chunked, FromTimestamp, MultiSystemSections)
    ):
        raise TypeError(f"Unknown compaction strategy: {strategy!r}")

    original = list(messages)
    label = strategy_name(strategy)

    count = compactable_count(strategy, original)
    if count < MIN_COMPACTABLE_MESSAGES:
        logger.debug(
            "Skipping compaction with %s: %d compactable messages (minimum %d)",
            label,
            count,
            MIN_COMPACTABLE_MESSAGES,
        )
        return CompactionOutcome(
            messages=original,
            error=InsufficientHistory(count, MIN_COMPACTABLE_MESSAGES),
        )

    try:
        compacted = await _run_strategy(strategy, original, summarize)
    except Exception as err:
        failure = CompressionFailed(label, err)
        logger.warning("Compaction failed, keeping original history: %s", failure)
        return CompactionOutcome(messages=original, used_fallback=True, error=failure)

    if compacted == original:
        logger.debug("Nothing new to compact with %s", label)
        return CompactionOutcome(messages=original)

    logger.info(
        "Compacted history with %s: %d -> %d messages", label, len(original), len(compacted)
    )
    return CompactionOutcome(
        messages=compacted,
        messages_dropped=len(original) - len(compacted),
    )


# -- LLM summarizer -----------------------------------------------------------


class LLMSummarizer:
    """Summarizer that asks a model for the TL;DR of a message span.

    Makes exactly one ``provider.generate`` call per span and never retries.
    """

    def __init__(
        self,
        provider: LLMProvider,
        model: str,
        prompt: str = COMPACTION_PROMPT,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        self.provider = provider
        self.model = model
        self.prompt = prompt
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def __call__(self, messages: list[Message]) -> Message:
        prompt = self.prompt.replace("{messages_to_fold}", format_messages_for_prompt(messages))
        response = await self.provider.generate(
            messages=[{"role": "user", "content": prompt}],
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        summary = (response.content or "").strip()
        if not summary:
            raise RuntimeError(f"Model {self.model} returned an empty summary")
        return Message.assistant(SUMMARY_PREFIX + summary, name=SUMMARY_MESSAGE_NAME)
