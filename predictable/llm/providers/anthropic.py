"""Anthropic provider implementation."""

import json
import logging
import os
from typing import Any

import httpx

from .base import LLMProvider, LLMResponse, register_provider, strip_item_names

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096


def _extract_cache_usage(usage_data: Any) -> dict[str, int]:
    """Extract cache token fields from Anthropic usage data."""
    result: dict[str, int] = {}
    if usage_data:
        cache_read = getattr(usage_data, "cache_read_input_tokens", None)
        if cache_read is not None:
            result["cache_read_input_tokens"] = cache_read
        cache_creation = getattr(usage_data, "cache_creation_input_tokens", None)
        if cache_creation is not None:
            result["cache_creation_input_tokens"] = cache_creation
    return result


def _parse_arguments(arguments: Any) -> dict[str, Any]:
    if isinstance(arguments, dict):
        return arguments
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
    except (TypeError, ValueError):
        logger.warning("Tool call arguments are not valid JSON: %s", arguments)
        return {}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


@register_provider("anthropic")
class AnthropicProvider(LLMProvider):
    """Anthropic provider for LLM calls using the Messages API."""

    def __init__(self, api_key: str | None = None, http_client: httpx.AsyncClient | None = None):
        """
        Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key. If not provided, uses ANTHROPIC_API_KEY env var.
            http_client: Optional shared httpx client, reused across providers
        """
        # Import Anthropic SDK only when this provider is used (lazy loading)
        try:
            from anthropic import AsyncAnthropic
        except ImportError:
            raise ImportError(
                "Anthropic SDK not installed. "
                "Install it with: pip install 'predictable-agents[anthropic]'"
            ) from None

        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError(
                "Anthropic API key not provided. Set ANTHROPIC_API_KEY "
                "environment variable or pass api_key parameter."
            )

        client_kwargs: dict[str, Any] = {"api_key": self.api_key}
        if http_client is not None:
            client_kwargs["http_client"] = http_client
        self.client = AsyncAnthropic(**client_kwargs)

    def convert_history_messages(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert normalized history items to Anthropic Messages API format.

        ``function_call`` runs become ``tool_use`` blocks on one assistant
        message (together with a directly preceding assistant text), and
        ``function_call_output`` runs become ``tool_result`` blocks on one
        user message. System items pass through; ``generate`` lifts them into
        the ``system`` parameter.
        """
        messages = strip_item_names(messages)
        result: list[dict[str, Any]] = []

        i = 0
        while i < len(messages):
            msg = messages[i]
            msg_type = msg.get("type")

            if msg_type == "function_call":
                blocks: list[dict[str, Any]] = []
                previous = result[-1] if result else None
                if (
                    previous is not None
                    and previous.get("role") == "assistant"
                    and isinstance(previous.get("content"), str)
                ):
                    result.pop()
                    if previous["content"]:
                        blocks.append({"type": "text", "text": previous["content"]})

                while i < len(messages) and messages[i].get("type") == "function_call":
                    fc = messages[i]
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": fc.get("call_id", ""),
                            "name": fc.get("name", ""),
                            "input": _parse_arguments(fc.get("arguments")),
                        }
                    )
                    i += 1
                result.append({"role": "assistant", "content": blocks})

            elif msg_type == "function_call_output":
                blocks = []
                while i < len(messages) and messages[i].get("type") == "function_call_output":
                    output = messages[i].get("output", "")
                    blocks.append(
                        {
                            "type": "tool_result",
                            "tool_use_id": messages[i].get("call_id", ""),
                            "content": output if isinstance(output, str) else json.dumps(output),
                        }
                    )
                    i += 1
                result.append({"role": "user", "content": blocks})

            else:
                result.append(dict(msg))
                i += 1

        return result

    async def generate(
        self,
        messages: list[dict[str, Any]],
        model: str,
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        top_p: float | None = None,
        system_prompt: str | None = None,
        **kwargs,
    ) -> LLMResponse:
        """
        Make a request to Anthropic using the Messages API.

        Args:
            messages: List of message dicts; system messages are moved to ``system``
            model: Model identifier (e.g., "claude-sonnet-4-5")
            tools: Optional list of tool schemas for function calling
            temperature: Optional temperature parameter (0-1)
            max_tokens: Max output tokens (defaults to 4096, Anthropic requires it)
            top_p: Optional top_p parameter
            system_prompt: Optional system prompt
            **kwargs: Additional Anthropic-specific parameters

        Returns:
            LLMResponse with content, usage, and tool_calls
        """
        system_parts = [system_prompt] if system_prompt else []
        processed_messages = []
        for msg in messages or []:
            if msg.get("role") == "system":
                if msg.get("content"):
                    system_parts.append(msg["content"])
            else:
                processed_messages.append(msg)

        request_params: dict[str, Any] = {
            "model": model,
            "messages": processed_messages,
            "max_tokens": max_tokens if max_tokens is not None else DEFAULT_MAX_TOKENS,
        }

        if system_parts:
            request_params["system"] = "\n\n".join(system_parts)
        if temperature is not None:
            request_params["temperature"] = temperature
        if top_p is not None:
            request_params["top_p"] = top_p
        if tools:
            validated_tools = _validate_tools(tools)
            if validated_tools:
                request_params["tools"] = validated_tools

        request_params.update(kwargs)

        try:
            response = await self.client.messages.create(**request_params)
            if not response:
                raise RuntimeError("Anthropic API returned no response")

            content_parts = []
            tool_calls = []
            for content_block in response.content:
                if content_block.type == "text":
                    content_parts.append(content_block.text)
                elif content_block.type == "tool_use":
                    input_data = content_block.input
                    if hasattr(input_data, "model_dump"):
                        arguments = json.dumps(input_data.model_dump(mode="json"))
                    elif isinstance(input_data, dict):
                        arguments = json.dumps(input_data)
                    else:
                        arguments = str(input_data)

                    tool_calls.append(
                        {
                            "call_id": content_block.id,
                            "id": "",
                            "type": "function",
                            "function": {"name": content_block.name, "arguments": arguments},
                        }
                    )

            # Anthropic's input_tokens only counts non-cached tokens.
            # Total input = input_tokens + cache_read + cache_creation.
            usage_data = response.usage
            cache_usage = _extract_cache_usage(usage_data)
            raw_input = usage_data.input_tokens if usage_data else 0
            total_input = (
                raw_input
                + cache_usage.get("cache_read_input_tokens", 0)
                + cache_usage.get("cache_creation_input_tokens", 0)
            )
            output = usage_data.output_tokens if usage_data else 0
            usage = {
                "input_tokens": total_input,
                "output_tokens": output,
                "total_tokens": total_input + output,
                **cache_usage,
            }

            return LLMResponse(
                content="".join(content_parts),
                usage=usage,
                tool_calls=tool_calls,
                model=getattr(response, "model", None) or model,
                stop_reason=getattr(response, "stop_reason", None),
            )

        except Exception as e:
            raise RuntimeError(f"Anthropic Messages API call failed: {str(e)}") from e


def _validate_tools(tools: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """
    Validate and convert tools to Anthropic format.

    Anthropic expects:
    [{"name": "...", "description": "...", "input_schema": {...}}]
    """
    validated_tools = []
    for tool in tools or []:
        if tool.get("type", "function") != "function":
            validated_tools.append(tool)
            continue

        function_data = tool.get("function", tool)
        name = function_data.get("name") or tool.get("name")
        description = function_data.get("description") or tool.get("description", "")
        parameters = (
            function_data.get("parameters") or tool.get("parameters") or tool.get("input_schema")
        )

        if name and parameters:
            validated_tools.append(
                {"name": name, "description": description, "input_schema": parameters}
            )
        else:
            logger.warning("Skipping invalid tool (missing name or parameters): %s", tool)

    return validated_tools
