"""Unit tests for predictable.llm.providers.anthropic module."""

import sys
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from predictable.llm.providers.anthropic import (
    DEFAULT_MAX_TOKENS,
    AnthropicProvider,
    _extract_cache_usage,
    _parse_arguments,
    _validate_tools,
)


@pytest.fixture
def anthropic_sdk():
    """Stand-in for the ``anthropic`` package so no SDK or network is needed."""
    client = MagicMock()
    client.messages.create = AsyncMock()
    module = MagicMock()
    module.AsyncAnthropic.return_value = client
    with patch.dict(sys.modules, {"anthropic": module}):
        yield module


@pytest.fixture
def provider(anthropic_sdk):
    return AnthropicProvider(api_key="sk-ant-test")


def messages_result(content=None, usage=None, stop_reason="end_turn"):
    return SimpleNamespace(
        content=content if content is not None else [SimpleNamespace(type="text", text="Hi!")],
        usage=usage
        or SimpleNamespace(
            input_tokens=10,
            output_tokens=5,
            cache_read_input_tokens=None,
            cache_creation_input_tokens=None,
        ),
        model="claude-sonnet-4-5",
        stop_reason=stop_reason,
    )


class TestHelpers:
    """Tests for module helpers."""

    def test_extract_cache_usage(self):
        usage = SimpleNamespace(cache_read_input_tokens=30, cache_creation_input_tokens=None)
        assert _extract_cache_usage(usage) == {"cache_read_input_tokens": 30}

    def test_extract_cache_usage_none(self):
        assert _extract_cache_usage(None) == {}

    @pytest.mark.parametrize(
        "arguments, expected",
        [
            ('{"city": "Rome"}', {"city": "Rome"}),
            ({"city": "Rome"}, {"city": "Rome"}),
            ("", {}),
            ("not json", {}),
            ("[1, 2]", {"value": [1, 2]}),
        ],
    )
    def test_parse_arguments(self, arguments, expected):
        assert _parse_arguments(arguments) == expected

    def test_validate_tools_converts_function_schema(self):
        tools = _validate_tools(
            [
                {
                    "type": "function",
                    "function": {
                        "name": "search",
                        "description": "Search",
                        "parameters": {"type": "object"},
                    },
                }
            ]
        )
        assert tools == [
            {"name": "search", "description": "Search", "input_schema": {"type": "object"}}
        ]

    def test_validate_tools_skips_invalid(self, caplog):
        with caplog.at_level("WARNING", logger="predictable.llm.providers.anthropic"):
            assert _validate_tools([{"name": "no_params"}]) == []
        assert "Skipping invalid tool" in caplog.text


class TestInit:
    """Tests for AnthropicProvider construction."""

    def test_requires_api_key(self, anthropic_sdk, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ValueError, match="Anthropic API key not provided"):
            AnthropicProvider()

    def test_passes_shared_http_client(self, anthropic_sdk, mock_http_client):
        AnthropicProvider(api_key="k", http_client=mock_http_client)
        anthropic_sdk.AsyncAnthropic.assert_called_once_with(
            api_key="k", http_client=mock_http_client
        )

    def test_missing_sdk_raises_install_hint(self):
        with patch.dict(sys.modules, {"anthropic": None}):
            with pytest.raises(ImportError, match="predictable-agents\\[anthropic\\]"):
                AnthropicProvider(api_key="k")


class TestConvertHistoryMessages:
    """Tests for history conversion to content blocks."""

    def test_tool_calls_and_results_become_blocks(self, provider):
        items = [
            {"role": "system", "content": "S"},
            {"role": "user", "content": "weather?"},
            {"role": "assistant", "content": "Checking."},
            {"type": "function_call", "call_id": "c1", "name": "weather", "arguments": '{"c": 1}'},
            {"type": "function_call", "call_id": "c2", "name": "weather", "arguments": "{}"},
            {"type": "function_call_output", "call_id": "c1", "output": "sunny"},
            {"type": "function_call_output", "call_id": "c2", "output": "rainy"},
            {"role": "assistant", "content": "Sunny and rainy."},
        ]

        converted = provider.convert_history_messages(items)

        roles = [m["role"] for m in converted]
        assert roles == ["system", "user", "assistant", "user", "assistant"]
        assert converted[2]["content"] == [
            {"type": "text", "text": "Checking."},
            {"type": "tool_use", "id": "c1", "name": "weather", "input": {"c": 1}},
            {"type": "tool_use", "id": "c2", "name": "weather", "input": {}},
        ]
        assert converted[3]["content"] == [
            {"type": "tool_result", "tool_use_id": "c1", "content": "sunny"},
            {"type": "tool_result", "tool_use_id": "c2", "content": "rainy"},
        ]

    def test_message_names_dropped(self, provider):
        items = [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "TLDR", "name": "tldr"},
        ]
        assert provider.convert_history_messages(items)[1] == {
            "role": "assistant",
            "content": "TLDR",
        }

    def test_calls_without_text(self, provider):
        converted = provider.convert_history_messages(
            [{"type": "function_call", "call_id": "c1", "name": "f", "arguments": "{}"}]
        )
        assert converted == [
            {
                "role": "assistant",
                "content": [{"type": "tool_use", "id": "c1", "name": "f", "input": {}}],
            }
        ]


class TestGenerate:
    """Tests for AnthropicProvider.generate."""

    @pytest.mark.asyncio
    async def test_system_messages_lifted(self, provider):
        provider.client.messages.create.return_value = messages_result()

        response = await provider.generate(
            [{"role": "system", "content": "Rules."}, {"role": "user", "content": "hi"}],
            model="claude-sonnet-4-5",
            system_prompt="Be brief.",
        )

        params = provider.client.messages.create.call_args.kwargs
        assert params["system"] == "Be brief.\n\nRules."
        assert params["messages"] == [{"role": "user", "content": "hi"}]
        assert params["max_tokens"] == DEFAULT_MAX_TOKENS
        assert response.content == "Hi!"
        assert response.stop_reason == "end_turn"

    @pytest.mark.asyncio
    async def test_tool_use_parsed(self, provider):
        provider.client.messages.create.return_value = messages_result(
            content=[
                SimpleNamespace(type="text", text="Let me check."),
                SimpleNamespace(type="tool_use", id="tu_1", name="weather", input={"city": "Rome"}),
            ],
            stop_reason="tool_use",
        )

        response = await provider.generate([{"role": "user", "content": "hi"}], model="claude")

        assert response.content == "Let me check."
        assert response.tool_calls == [
            {
                "call_id": "tu_1",
                "id": "",
                "type": "function",
                "function": {"name": "weather", "arguments": '{"city": "Rome"}'},
            }
        ]

    @pytest.mark.asyncio
    async def test_usage_includes_cache_tokens(self, provider):
        usage = SimpleNamespace(
            input_tokens=10,
            output_tokens=5,
            cache_read_input_tokens=3,
            cache_creation_input_tokens=2,
        )
        provider.client.messages.create.return_value = messages_result(usage=usage)

        response = await provider.generate([{"role": "user", "content": "hi"}], model="claude")

        assert response.usage == {
            "input_tokens": 15,
            "output_tokens": 5,
            "total_tokens": 20,
            "cache_read_input_tokens": 3,
            "cache_creation_input_tokens": 2,
        }

    @pytest.mark.asyncio
    async def test_explicit_parameters(self, provider):
        provider.client.messages.create.return_value = messages_result()

        await provider.generate(
            [{"role": "user", "content": "hi"}],
            model="claude",
            max_tokens=100,
            temperature=0.5,
            top_p=0.9,
        )

        params = provider.client.messages.create.call_args.kwargs
        assert params["max_tokens"] == 100
        assert params["temperature"] == 0.5
        assert params["top_p"] == 0.9
        assert "system" not in params

    @pytest.mark.asyncio
    async def test_api_error_wrapped(self, provider):
        provider.client.messages.create.side_effect = Exception("overloaded")
        with pytest.raises(RuntimeError, match="Anthropic Messages API call failed: overloaded"):
            await provider.generate([{"role": "user", "content": "hi"}], model="claude")
