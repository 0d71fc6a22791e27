"""OpenAI provider implementation supporting both Responses API and Chat Completions API."""

import json
import logging
import os
from typing import Any

import httpx

from .base import LLMProvider, LLMResponse, register_provider, strip_item_names

logger = logging.getLogger(__name__)


@register_provider("openai")
class OpenAIProvider(LLMProvider):
    """OpenAI provider for LLM calls supporting both Responses API and Chat Completions API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        llm_api: str = "responses",
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key. If not provided, uses OPENAI_API_KEY env var.
            base_url: Optional base URL for the API. If not provided, defaults to OpenAI's URL.
                     Useful for Azure OpenAI or other OpenAI-compatible endpoints.
            llm_api: API version to use - "responses" (default) or "chat_completions"
            http_client: Optional shared httpx client, reused across providers
        """
        # Import OpenAI SDK only when this provider is used (lazy loading)
        try:
            from openai import AsyncOpenAI
        except ImportError:
            raise ImportError(
                "OpenAI SDK not installed. "
                "Install it with: pip install 'predictable-agents[openai]'"
            ) from None

        if llm_api not in ("responses", "chat_completions"):
            raise ValueError(f"Unsupported llm_api: {llm_api}")

        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError(
                "OpenAI API key not provided. Set OPENAI_API_KEY environment variable "
                "or pass api_key parameter."
            )

        self.base_url = base_url or os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
        self.llm_api = llm_api

        client_kwargs: dict[str, Any] = {"api_key": self.api_key, "base_url": self.base_url}
        if http_client is not None:
            client_kwargs["http_client"] = http_client
        self.client = AsyncOpenAI(**client_kwargs)

    def convert_history_messages(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert normalized history items to OpenAI format.

        The Responses API natively accepts our normalized format
        (``function_call`` / ``function_call_output`` items), so no
        conversion is needed beyond dropping message names, which the
        Responses API does not accept.

        The Chat Completions API requires role-based messages, so we
        group consecutive ``function_call`` messages into a single
        ``{role: "assistant", tool_calls: [...]}`` and convert each
        ``function_call_output`` into ``{role: "tool", ...}``.
        """
        if self.llm_api == "responses":
            return strip_item_names(messages)

        result: list[dict[str, Any]] = []

        i = 0
        while i < len(messages):
            msg = messages[i]
            msg_type = msg.get("type")

            if msg_type == "function_call":
                # Collect consecutive function_call messages into one
                # assistant message with tool_calls.
                tool_calls: list[dict[str, Any]] = []
                while i < len(messages) and messages[i].get("type") == "function_call":
                    fc = messages[i]
                    tool_calls.append(
                        {
                            "id": fc.get("call_id", ""),
                            "type": "function",
                            "function": {
                                "name": fc.get("name", ""),
                                "arguments": fc.get("arguments", "{}"),
                            },
                        }
                    )
                    i += 1

                # Fold a directly preceding assistant text message into the call
                previous = result[-1] if result else None
                if (
                    previous is not None
                    and previous.get("role") == "assistant"
                    and "tool_calls" not in previous
                ):
                    previous["tool_calls"] = tool_calls
                else:
                    result.append({"role": "assistant", "content": None, "tool_calls": tool_calls})

            elif msg_type == "function_call_output":
                output = msg.get("output", "")
                result.append(
                    {
                        "role": "tool",
                        "tool_call_id": msg.get("call_id", ""),
                        "content": output if isinstance(output, str) else json.dumps(output),
                    }
                )
                i += 1

            else:
                # Copy so folding tool calls never mutates the caller's items
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
        Make a request to OpenAI using either Responses API or Chat Completions API.

        Args:
            messages: List of message dicts in the format of the configured API
            model: Model identifier (e.g., "gpt-4o", "gpt-4o-mini")
            tools: Optional list of tool schemas for function calling
            temperature: Optional temperature parameter (0-2)
            max_tokens: Optional max output tokens parameter
            top_p: Optional top_p parameter
            system_prompt: Optional system prompt
            **kwargs: Additional OpenAI-specific parameters

        Returns:
            LLMResponse with content, usage, and tool_calls
        """
        if self.llm_api == "chat_completions":
            return await self._generate_chat_completions(
                messages, model, tools, temperature, max_tokens, top_p, system_prompt, **kwargs
            )
        return await self._generate_responses(
            messages, model, tools, temperature, max_tokens, top_p, system_prompt, **kwargs
        )

    async def _generate_responses(
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
        """Generate using Responses API."""
        request_params: dict[str, Any] = {
            "model": model,
            "input": list(messages) if messages else [],
            "stream": False,
        }

        # OpenAI Responses API uses "instructions" for the system prompt
        if system_prompt:
            request_params["instructions"] = system_prompt

        if temperature is not None:
            request_params["temperature"] = temperature
        if max_tokens is not None:
            request_params["max_output_tokens"] = max_tokens
        if top_p is not None:
            request_params["top_p"] = top_p
        if tools:
            validated_tools = _validate_tools_responses(tools)
            if validated_tools:
                request_params["tools"] = validated_tools
            else:
                logger.warning("Tools provided but none were valid. Tools: %s", tools)

        request_params.update(kwargs)

        try:
            response = await self.client.responses.create(**request_params)
            if not response:
                raise RuntimeError("OpenAI API returned no response")

            error = getattr(response, "error", None)
            if error:
                raise RuntimeError(f"OpenAI API error: {getattr(error, 'message', error)}")

            # output_text aggregates all text from output items
            content = response.output_text

            tool_calls = []
            for output_item in response.output:
                if getattr(output_item, "type", None) == "function_call":
                    tool_calls.append(
                        {
                            "id": getattr(output_item, "id", ""),
                            "call_id": getattr(output_item, "call_id", ""),
                            "type": "function",
                            "function": {
                                "name": getattr(output_item, "name", ""),
                                "arguments": getattr(output_item, "arguments", "") or "",
                            },
                        }
                    )

            usage_data = response.usage
            usage = {
                "input_tokens": usage_data.input_tokens if usage_data else 0,
                "output_tokens": usage_data.output_tokens if usage_data else 0,
                "total_tokens": usage_data.total_tokens if usage_data else 0,
            }

            response_model = getattr(response, "model", None) or model
            incomplete_details = getattr(response, "incomplete_details", None)
            response_stop_reason = (
                getattr(incomplete_details, "reason", None) if incomplete_details else None
            )

            return LLMResponse(
                content=content,
                usage=usage,
                tool_calls=tool_calls,
                model=response_model,
                stop_reason=response_stop_reason,
            )

        except Exception as e:
            raise RuntimeError(f"OpenAI Responses API call failed: {str(e)}") from e

    async def _generate_chat_completions(
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
        """Generate using Chat Completions API."""
        # Copy to avoid mutating input
        processed_messages = [dict(msg) for msg in messages] if messages else []

        # Chat Completions API uses the "system" role in messages
        if system_prompt:
            has_system = any(msg.get("role") == "system" for msg in processed_messages)
            if not has_system:
                processed_messages.insert(0, {"role": "system", "content": system_prompt})

        request_params: dict[str, Any] = {
            "model": model,
            "messages": processed_messages,
        }

        if temperature is not None:
            request_params["temperature"] = temperature
        if max_tokens is not None:
            request_params["max_tokens"] = max_tokens
        if top_p is not None:
            request_params["top_p"] = top_p
        if tools:
            validated_tools = _validate_tools_chat_completions(tools)
            if validated_tools:
                request_params["tools"] = validated_tools

        request_params.update(kwargs)

        try:
            usage = {
                "input_tokens": 0,
                "output_tokens": 0,
                "total_tokens": 0,
            }
            response_stop_reason = None
            tool_calls = []
            content = None

            response = await self.client.chat.completions.create(**request_params)
            if not response:
                raise RuntimeError("OpenAI API returned no response")

            if response.choices:
                choice = response.choices[0]
                if not choice.message:
                    raise RuntimeError("OpenAI API returned no message")

                content = choice.message.content or ""
                response_stop_reason = choice.finish_reason

                if choice.message.tool_calls:
                    for tool_call in choice.message.tool_calls:
                        tool_calls.append(
                            {
                                "call_id": tool_call.id,
                                "id": "",
                                "type": "function",
                                "function": {
                                    "name": tool_call.function.name,
                                    "arguments": tool_call.function.arguments,
                                },
                            }
                        )

            if response.usage:
                usage["input_tokens"] = response.usage.prompt_tokens
                usage["output_tokens"] = response.usage.completion_tokens
                usage["total_tokens"] = response.usage.total_tokens

            return LLMResponse(
                content=content,
                usage=usage,
                tool_calls=tool_calls,
                model=response.model or model,
                stop_reason=response_stop_reason,
            )

        except Exception as e:
            raise RuntimeError(f"OpenAI Chat Completions API call failed: {str(e)}") from e


def _validate_tools_responses(tools: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """Validate tools for Responses API format."""
    validated_tools = []
    for tool in tools or []:
        if not isinstance(tool, dict):
            continue
        # Default to type "function" if not specified
        validated_tools.append({"type": "function", **tool})
    return validated_tools


def _validate_tools_chat_completions(tools: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """
    Validate and normalize tools to OpenAI Chat Completions format.

    OpenAI Chat Completions expects:
    [{"type": "function", "function": {"name": "...", "description": "...", "parameters": {...}}}]
    """
    validated = []
    for tool in tools or []:
        if not isinstance(tool, dict):
            continue

        if tool.get("type", "function") == "function":
            if tool.get("function"):
                validated.append(tool)
            elif tool.get("name"):
                validated.append(
                    {
                        "type": "function",
                        "function": {
                            "name": tool.get("name"),
                            "description": tool.get("description", ""),
                            "parameters": tool.get("parameters", {}),
                        },
                    }
                )
        else:
            validated.append(tool)

    return validated
