"""Unit tests for predictable.history.manager module."""

from unittest.mock import MagicMock

import pytest

from predictable.history.compaction import compress
from predictable.history.errors import (
    CompactionFallbackWarning,
    InvalidTokenLimit,
    LowMessageCountWarning,
)
from predictable.history.bridge import to_external_messages
from predictable.history.manager import (
    HistoryManager,
    drop_orphaned_tool_results,
    keep_last_messages,
    trim_to_token_limit,
)
from predictable.history.tokens import TokenEstimator
from predictable.history.types import (
    HistoryConfig,
    LastN,
    Message,
    MessageRole,
    ToolCallRequest,
    WholeHistory,
)


def tokens(n: int) -> str:
    """Content that estimates to exactly ``n`` tokens."""
    return "x" * (n * 4)


# -- trim_to_token_limit ------------------------------------------------------


class TestTrimToTokenLimit:
    """Tests for trim_to_token_limit."""

    def test_under_budget_unchanged(self):
        messages = [Message.system(tokens(2)), Message.user(tokens(2))]
        assert trim_to_token_limit(messages, 10, TokenEstimator()) == messages

    def test_drops_oldest_first(self):
        messages = [Message.system(tokens(4))] + [Message.user(f"{i}" * 16) for i in range(4)]

        result = trim_to_token_limit(messages, 10, TokenEstimator())

        assert result == [messages[0], messages[4]]

    def test_keeps_latest_message_even_over_budget(self):
        messages = [Message.system(tokens(1)), Message.user("old"), Message.user(tokens(100))]
        result = trim_to_token_limit(messages, 10, TokenEstimator())
        assert result == [messages[0], messages[2]]

    def test_system_messages_never_dropped(self):
        messages = [
            Message.system(tokens(2)),
            Message.user(tokens(5)),
            Message.system(tokens(2)),
            Message.user(tokens(5)),
            Message.user(tokens(1)),
        ]
        result = trim_to_token_limit(messages, 6, TokenEstimator())
        assert result == [messages[0], messages[2], messages[4]]

    def test_preserves_order(self):
        messages = [Message.user(f"m{i}" + tokens(2)) for i in range(6)]
        result = trim_to_token_limit(messages, 7, TokenEstimator())
        assert result == messages[-2:]

    def test_tool_result_dropped_with_its_call(self):
        call = Message.with_tool_calls([ToolCallRequest(id="c1", name="lookup")])
        messages = [
            Message.system("S"),
            Message.user("x" * 40),
            call,
            Message.tool_result("c1", "42"),
            Message.user("go"),
        ]

        result = trim_to_token_limit(messages, 5, TokenEstimator())

        assert result == [messages[0], messages[4]]
        items = to_external_messages(result)
        assert all(item.get("type") != "function_call_output" for item in items)

    def test_latest_tool_result_keeps_its_call(self):
        call = Message.with_tool_calls([ToolCallRequest(id="c1", name="lookup")])
        messages = [
            Message.system("S"),
            Message.user(tokens(20)),
            call,
            Message.tool_result("c1", "42"),
        ]

        result = trim_to_token_limit(messages, 5, TokenEstimator())

        assert result == [messages[0], call, messages[3]]


# -- keep_last_messages ---------------------------------------------------------


class TestKeepLastMessages:
    """Tests for keep_last_messages."""

    def test_under_limit_unchanged(self):
        messages = [Message.user("a"), Message.user("b")]
        assert keep_last_messages(messages, 5) == messages

    def test_system_counts_toward_limit(self):
        messages = [Message.system("S")] + [Message.user(f"u{i}") for i in range(49)]
        result = keep_last_messages(messages, 20)

        assert len(result) == 20
        assert result[0] == messages[0]
        assert result[1:] == messages[-19:]

    def test_without_system(self):
        messages = [Message.user(f"u{i}") for i in range(10)]
        assert keep_last_messages(messages, 3) == messages[-3:]

    def test_mid_conversation_system_kept_in_place(self):
        messages = [
            Message.user("old"),
            Message.system("rules"),
            Message.user("a"),
            Message.user("b"),
        ]
        assert keep_last_messages(messages, 2) == [messages[1], messages[3]]

    def test_more_system_messages_than_limit(self):
        messages = [Message.system("A"), Message.system("B"), Message.user("u")]
        assert keep_last_messages(messages, 1) == messages[:2]

    def test_tool_result_outside_window_dropped(self):
        call = Message.with_tool_calls([ToolCallRequest(id="c1", name="lookup")])
        messages = [
            Message.system("S"),
            Message.user("weather?"),
            call,
            Message.tool_result("c1", "sunny"),
            Message.assistant("It is sunny."),
            Message.user("thanks"),
        ]

        result = keep_last_messages(messages, 4)

        assert result == [messages[0], messages[4], messages[5]]
        assert all(m.role != MessageRole.TOOL_RESULT for m in result)


class TestDropOrphanedToolResults:
    """Tests for drop_orphaned_tool_results."""

    def test_matched_results_kept(self):
        call = Message.with_tool_calls(
            [ToolCallRequest(id="c1", name="a"), ToolCallRequest(id="c2", name="b")]
        )
        messages = [call, Message.tool_result("c1", "1"), Message.tool_result("c2", "2")]
        assert drop_orphaned_tool_results(messages) == messages

    def test_result_before_its_call_dropped(self):
        result = Message.tool_result("c1", "1")
        call = Message.with_tool_calls([ToolCallRequest(id="c1", name="a")])
        assert drop_orphaned_tool_results([result, call]) == [call]


# -- HistoryManager.apply -------------------------------------------------------


class TestApplyOptIn:
    """History management only changes what it is asked to."""

    @pytest.mark.asyncio
    async def test_empty_config_returns_input(self, summarizer, conversation):
        manager = HistoryManager(summarizer=summarizer)
        result = await manager.apply(conversation, HistoryConfig())

        assert result.ok
        assert result.unwrap() == conversation
        assert summarizer.calls == []

    @pytest.mark.asyncio
    async def test_no_strategy_never_compacts(self, summarizer, conversation):
        manager = HistoryManager(summarizer=summarizer)
        result = await manager.apply(conversation, HistoryConfig(max_tokens=10_000))

        assert result.unwrap() == conversation
        assert summarizer.calls == []

    @pytest.mark.asyncio
    async def test_input_not_mutated(self, summarizer, conversation):
        snapshot = list(conversation)
        manager = HistoryManager(summarizer=summarizer)
        await manager.apply(conversation, HistoryConfig(max_history_size=3))
        assert conversation == snapshot


class TestApplyCompaction:
    """Compaction through the manager."""

    @pytest.mark.asyncio
    async def test_last_n(self, summarizer, conversation):
        manager = HistoryManager(summarizer=summarizer)
        result = await manager.apply(conversation, HistoryConfig(compaction_strategy=LastN(n=3)))

        messages = result.unwrap()
        assert [m.content for m in messages] == ["S", "TLDR (9)", "u10", "u11", "u12"]

    @pytest.mark.asyncio
    async def test_insufficient_history_is_success(self, summarizer):
        messages = [Message.system("S"), Message.user("a"), Message.assistant("b")]
        handler = MagicMock()
        manager = HistoryManager(summarizer=summarizer, warning_handler=handler)

        result = await manager.apply(messages, HistoryConfig(compaction_strategy=WholeHistory()))

        assert result.ok
        assert result.unwrap() == messages
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_per_call_summarizer_overrides_default(self, summarizer, conversation):
        default = MagicMock()
        manager = HistoryManager(summarizer=default)
        config = HistoryConfig(compaction_strategy=LastN(n=3))

        await manager.apply(conversation, config, summarizer=summarizer)

        default.assert_not_called()
        assert len(summarizer.calls) == 1

    @pytest.mark.asyncio
    async def test_missing_summarizer_warns_and_keeps_history(self, conversation):
        handler = MagicMock()
        manager = HistoryManager(warning_handler=handler)

        result = await manager.apply(conversation, HistoryConfig(compaction_strategy=LastN(n=3)))

        assert result.unwrap() == conversation
        warning = handler.call_args.args[0]
        assert isinstance(warning, CompactionFallbackWarning)
        assert warning.reason == "no summarizer configured"


class TestApplyFallback:
    """Summarizer failures never reach the caller."""

    @pytest.mark.asyncio
    async def test_failure_returns_original_with_warning(self, failing_summarizer, conversation):
        handler = MagicMock()
        manager = HistoryManager(summarizer=failing_summarizer, warning_handler=handler)

        result = await manager.apply(
            conversation, HistoryConfig(compaction_strategy=WholeHistory())
        )

        assert result.ok
        assert result.unwrap() == conversation
        handler.assert_called_once()
        warning = handler.call_args.args[0]
        assert isinstance(warning, CompactionFallbackWarning)
        assert warning.strategy == "WholeHistory"
        assert warning.reason == "summarizer unavailable"

    @pytest.mark.asyncio
    async def test_fallback_then_token_trim(self, failing_summarizer):
        messages = [Message.system("S")] + [Message.user(tokens(25)) for _ in range(39)]
        handler = MagicMock()
        manager = HistoryManager(summarizer=failing_summarizer, warning_handler=handler)
        estimator = TokenEstimator()

        result = await manager.apply(
            messages, HistoryConfig(compaction_strategy=WholeHistory(), max_tokens=500)
        )

        trimmed = result.unwrap()
        assert len(messages) == 40
        assert estimator.estimate(trimmed) <= 500
        assert trimmed[0] == messages[0]
        assert trimmed[-1] == messages[-1]
        assert len(trimmed) == 20
        assert isinstance(handler.call_args_list[0].args[0], CompactionFallbackWarning)

    @pytest.mark.asyncio
    async def test_fallback_logs_warning(self, failing_summarizer, conversation, caplog):
        manager = HistoryManager(summarizer=failing_summarizer)
        with caplog.at_level("WARNING", logger="predictable.history"):
            await manager.apply(conversation, HistoryConfig(compaction_strategy=LastN(n=3)))
        assert "fell back to original history" in caplog.text

    @pytest.mark.asyncio
    async def test_raising_handler_does_not_break_pipeline(self, failing_summarizer, conversation):
        handler = MagicMock(side_effect=ValueError("handler bug"))
        manager = HistoryManager(summarizer=failing_summarizer, warning_handler=handler)

        result = await manager.apply(conversation, HistoryConfig(compaction_strategy=LastN(n=3)))

        assert result.unwrap() == conversation


class TestApplyTokenLimit:
    """max_tokens handling."""

    @pytest.mark.asyncio
    async def test_system_over_budget_is_error(self, summarizer, conversation):
        messages = [Message.system(tokens(11))] + conversation[1:]
        manager = HistoryManager(summarizer=summarizer)

        result = await manager.apply(
            messages, HistoryConfig(compaction_strategy=LastN(n=3), max_tokens=10)
        )

        assert not result.ok
        assert isinstance(result.error, InvalidTokenLimit)
        assert result.error.system_prompt_tokens == 11
        assert result.error.max_tokens == 10
        assert summarizer.calls == []

    @pytest.mark.asyncio
    async def test_all_system_messages_count(self):
        messages = [Message.system(tokens(6)), Message.user("u"), Message.system(tokens(6))]
        result = await HistoryManager().apply(messages, HistoryConfig(max_tokens=10))
        assert isinstance(result.error, InvalidTokenLimit)
        assert result.error.system_prompt_tokens == 12

    @pytest.mark.asyncio
    async def test_system_exactly_at_budget_is_allowed(self):
        messages = [Message.system(tokens(10)), Message.user(tokens(3))]
        result = await HistoryManager().apply(messages, HistoryConfig(max_tokens=10))
        assert result.ok

    @pytest.mark.asyncio
    async def test_trims_from_front(self):
        messages = [Message.system(tokens(4))] + [Message.user(f"{i}" * 16) for i in range(4)]

        result = await HistoryManager().apply(messages, HistoryConfig(max_tokens=10))

        assert result.unwrap() == [messages[0], messages[-1]]

    @pytest.mark.asyncio
    async def test_result_fits_budget_or_hits_floor(self):
        messages = [Message.system(tokens(2))]
        messages += [Message.user(f"{i}" + tokens(i)) for i in range(1, 15)]
        estimator = TokenEstimator()

        for budget in (5, 20, 50, 100):
            result = await HistoryManager().apply(messages, HistoryConfig(max_tokens=budget))
            trimmed = result.unwrap()
            at_floor = trimmed == [messages[0], messages[-1]]
            assert estimator.estimate(trimmed) <= budget or at_floor

    @pytest.mark.asyncio
    async def test_caching_toggle(self):
        estimator = TokenEstimator()
        manager = HistoryManager(estimator=estimator)
        messages = [Message.system("S"), Message.user(tokens(5)), Message.user("y" * 20)]

        await manager.apply(messages, HistoryConfig(max_tokens=8, enable_token_caching=False))
        assert estimator.cache_size == 0

        await manager.apply(messages, HistoryConfig(max_tokens=8))
        assert estimator.cache_size == 3


class TestApplyHistorySize:
    """max_history_size handling."""

    @pytest.mark.asyncio
    async def test_keeps_last_twenty(self):
        messages = [Message.system("S")] + [Message.user(f"u{i}") for i in range(49)]

        result = await HistoryManager().apply(messages, HistoryConfig(max_history_size=20))

        kept = result.unwrap()
        assert len(kept) == 20
        assert kept[0] == messages[0]
        assert kept[-1] == messages[-1]

    @pytest.mark.asyncio
    async def test_low_message_count_warning(self, summarizer, conversation):
        handler = MagicMock()
        manager = HistoryManager(summarizer=summarizer, warning_handler=handler)

        result = await manager.apply(
            conversation,
            HistoryConfig(compaction_strategy=LastN(n=3), max_history_size=1),
        )

        assert result.unwrap() == [conversation[0]]
        warning = handler.call_args.args[0]
        assert isinstance(warning, LowMessageCountWarning)
        assert warning.strategy == "LastN(3)"
        assert warning.result_count == 1

    @pytest.mark.asyncio
    async def test_no_low_count_warning_without_strategy(self):
        handler = MagicMock()
        manager = HistoryManager(warning_handler=handler)
        messages = [Message.system("S"), Message.user("u")]

        await manager.apply(messages, HistoryConfig(max_history_size=1))

        handler.assert_not_called()


class TestApplyPrecedence:
    """Compaction, then token trimming, then the count cap."""

    @pytest.mark.asyncio
    async def test_matches_three_step_reference(self, summarizer):
        messages = [Message.system("S")] + [Message.user(f"{i:02d}" + tokens(3)) for i in range(30)]
        config = HistoryConfig(compaction_strategy=LastN(n=12), max_tokens=30, max_history_size=6)
        estimator = TokenEstimator()

        result = await HistoryManager(summarizer=summarizer).apply(messages, config)

        reference = (await compress(LastN(n=12), messages, summarizer)).messages
        reference = trim_to_token_limit(reference, 30, estimator)
        reference = keep_last_messages(reference, 6)
        assert result.unwrap() == reference
        assert len(result.unwrap()) <= 6
