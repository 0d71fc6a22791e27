"""Base class for LLM providers."""

from abc import ABC, abstractmethod
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

# Provider registry - providers register themselves here
_PROVIDER_REGISTRY: dict[str, type["LLMProvider"]] = {}


def register_provider(name: str):
    """
    Decorator to register an LLM provider class.

    Usage:
        @register_provider("openai")
        class OpenAIProvider(LLMProvider):
            ...

    Args:
        name: Provider name (e.g., "openai", "anthropic")

    Returns:
        Decorator function
    """

    def decorator(cls: type["LLMProvider"]) -> type["LLMProvider"]:
        _PROVIDER_REGISTRY[name.lower()] = cls
        return cls

    return decorator


class LLMResponse(BaseModel):
    """Response from an LLM call."""

    content: str | None = None
    usage: dict[str, Any] | None = Field(default_factory=dict)
    tool_calls: list[dict[str, Any]] | None = Field(default_factory=list)
    model: str | None = None
    stop_reason: str | None = None


class LLMProvider(ABC):
    """Base class for LLM providers."""

    @abstractmethod
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
        Make a completion request to the LLM.

        Args:
            messages: Provider-format messages (see ``convert_history_messages``)
            model: Model identifier (e.g., "gpt-4o", "claude-sonnet-4-5")
            tools: Optional list of tool schemas for function calling
            temperature: Optional temperature parameter
            max_tokens: Optional max output tokens parameter
            top_p: Optional top_p parameter for nucleus sampling
            system_prompt: Optional system prompt, for providers that take it
                outside the message list
            **kwargs: Provider-specific additional parameters

        Returns:
            LLMResponse with content, usage, tool_calls, model, and stop_reason
        """
        pass

    def convert_history_messages(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert normalized history items to provider format.

        History items are provider-agnostic (see ``predictable.history.bridge``):
        - ``{role, content}`` for system, user and assistant text
        - ``{type: "function_call", name, call_id, arguments}``
        - ``{type: "function_call_output", call_id, output}``

        The default implementation is a no-op (returns as-is). Providers that
        need conversion should override this.
        """
        return messages


def strip_item_names(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Drop ``name`` from role-based items, for APIs that reject the field.

    ``function_call`` items keep theirs; there it is the function name.
    """
    if not any("role" in m and "name" in m for m in messages):
        return messages
    return [{k: v for k, v in m.items() if k != "name"} if "role" in m else m for m in messages]


def get_provider(provider_name: str, **kwargs) -> LLMProvider:
    """
    Get LLM provider instance by name from the registry.

    Providers are dynamically imported when requested. If a provider's SDK is not installed,
    a helpful error message will be raised.

    Args:
        provider_name: Name of the provider ("openai", "anthropic")
        **kwargs: Provider-specific initialization parameters

    Returns:
        LLMProvider instance

    Raises:
        ValueError: If the provider is not found or not supported
        ImportError: If the provider's SDK is not installed
    """
    provider_name_lower = provider_name.lower()

    provider_class = _PROVIDER_REGISTRY.get(provider_name_lower)
    if provider_class:
        return provider_class(**kwargs)

    provider_modules = ("openai", "anthropic")
    if provider_name_lower not in provider_modules:
        available = ", ".join(sorted(provider_modules))
        raise ValueError(
            f"Unknown LLM provider: {provider_name}. "
            f"Supported providers: {available}. "
            f"To use a provider, install it with: "
            f"pip install 'predictable-agents[{provider_name_lower}]'"
        )

    # Importing the module triggers its @register_provider decorator
    try:
        if provider_name_lower == "openai":
            from . import openai  # noqa: F401
        elif provider_name_lower == "anthropic":
            from . import anthropic  # noqa: F401
    except ImportError as e:
        raise ImportError(
            f"Failed to import {provider_name} provider. "
            f"Install the required SDK with: "
            f"pip install 'predictable-agents[{provider_name_lower}]'"
        ) from e

    provider_class = _PROVIDER_REGISTRY.get(provider_name_lower)
    if not provider_class:
        raise ValueError(
            f"Provider {provider_name} was imported but not registered. "
            f"This is likely a bug in the provider implementation."
        )

    return provider_class(**kwargs)
