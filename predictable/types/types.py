"""Type definitions for agent configuration, responses, and usage."""

from typing import Any

from pydantic import BaseModel

from ..history.types import Message


class Usage(BaseModel):
    """Token usage information from LLM calls."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cache_read_input_tokens: int | None = None
    cache_creation_input_tokens: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Usage":
        """Build usage from a provider usage dict, ignoring unknown keys."""
        if not data:
            return cls()
        return cls.model_validate({k: v for k, v in data.items() if k in cls.model_fields})


class AgentConfig(BaseModel):
    """Configuration for an agent."""

    name: str
    provider: str
    model: str
    system_prompt: str | None = None
    max_output_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    tools: list[dict[str, Any]] = []
    provider_base_url: str | None = None
    provider_llm_api: str | None = None
    provider_kwargs: dict[str, Any] | None = None
    summary_model: str | None = None


class AgentResponse(BaseModel):
    """Result of one agent call."""

    content: str | None = None
    messages: list[Message] = []
    tool_calls: list[dict[str, Any]] = []
    usage: Usage = Usage()
    model: str | None = None
    stop_reason: str | None = None
