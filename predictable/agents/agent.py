"""Agent class: a system prompt and a model, with history management per call."""

import logging
from collections.abc import Mapping
from typing import Any

from ..history.bridge import from_external_messages, to_external_messages
from ..history.compaction import LLMSummarizer, Summarizer
from ..history.manager import HistoryManager
from ..history.types import HistoryConfig, Message, ToolCallRequest
from ..llm.providers.base import LLMProvider, LLMResponse, get_provider
from ..types.types import AgentConfig, AgentResponse, Usage

logger = logging.getLogger(__name__)

AgentInput = str | list[Message] | list[dict[str, Any]]


class Agent:
    """An LLM-backed agent.

    History management is opt-in per call: pass a ``HistoryConfig`` (or a
    mapping of request options) to ``run`` to compact, token-trim, or cap the
    conversation before it is sent to the provider.

    Usage::

        agent = Agent(
            name="support",
            provider="openai",
            model="gpt-4o",
            system_prompt="You are a helpful assistant.",
        )
        response = await agent.run(
            messages,
            history=HistoryConfig(compaction_strategy=LastN(n=10), max_history_size=40),
        )
    """

    def __init__(
        self,
        name: str,
        provider: str | LLMProvider,
        model: str,
        system_prompt: str | None = None,
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
        max_output_tokens: int | None = None,
        summarizer: Summarizer | None = None,
        summary_model: str | None = None,
        history_manager: HistoryManager | None = None,
        provider_kwargs: dict[str, Any] | None = None,
    ):
        self.name = name
        self.model = model
        self.system_prompt = system_prompt
        self.tools = tools or []
        self.temperature = temperature
        self.top_p = top_p
        self.max_output_tokens = max_output_tokens

        if isinstance(provider, LLMProvider):
            self.provider = provider
        else:
            self.provider = get_provider(provider, **(provider_kwargs or {}))

        if history_manager is None:
            summarizer = summarizer or LLMSummarizer(self.provider, summary_model or model)
            history_manager = HistoryManager(summarizer=summarizer)
        self.history_manager = history_manager

    @classmethod
    def from_config(cls, config: AgentConfig, **kwargs: Any) -> "Agent":
        """Create an agent from an ``AgentConfig``."""
        provider_kwargs = dict(config.provider_kwargs or {})
        if config.provider_base_url:
            provider_kwargs["base_url"] = config.provider_base_url
        if config.provider_llm_api:
            provider_kwargs["llm_api"] = config.provider_llm_api

        return cls(
            name=config.name,
            provider=config.provider,
            model=config.model,
            system_prompt=config.system_prompt,
            tools=config.tools,
            temperature=config.temperature,
            top_p=config.top_p,
            max_output_tokens=config.max_output_tokens,
            summary_model=config.summary_model,
            provider_kwargs=provider_kwargs,
            **kwargs,
        )

    def build_messages(self, input: AgentInput) -> list[Message]:
        """Convert agent input into messages, prepending the system prompt.

        History returned by a previous ``run`` already starts with the system
        prompt; it is not prepended a second time.
        """
        if isinstance(input, str):
            messages = [Message.user(input)]
        elif input and isinstance(input[0], dict):
            messages = from_external_messages(input)
        else:
            messages = list(input)

        prompt = Message.system(self.system_prompt) if self.system_prompt else None
        if prompt is not None and (not messages or messages[0] != prompt):
            messages.insert(0, prompt)
        return messages

    async def manage_history(
        self, messages: list[Message], history: HistoryConfig | Mapping[str, Any] | None
    ) -> list[Message]:
        """Apply history management; raise ``HistoryManagementError`` on a typed error."""
        if isinstance(history, HistoryConfig):
            config = history
        else:
            config = HistoryConfig.from_options(history)
        if not config.is_active:
            return messages

        result = await self.history_manager.apply(messages, config)
        managed = result.unwrap()
        logger.debug(
            "Agent %s history managed: %d -> %d messages", self.name, len(messages), len(managed)
        )
        return managed

    async def run(
        self,
        input: AgentInput,
        history: HistoryConfig | Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> AgentResponse:
        """Run one model call over ``input``.

        Args:
            input: A user string, a list of messages, or normalized history items
            history: Optional history management options for this call
            **kwargs: Extra provider parameters

        Returns:
            AgentResponse with the reply content, the sent history plus the
            reply, tool calls and usage

        Raises:
            HistoryManagementError: If history management rejected the configuration
            MissingToolIdError: If a tool call or result in the history has no id
        """
        messages = await self.manage_history(self.build_messages(input), history)
        provider_messages = self.provider.convert_history_messages(to_external_messages(messages))

        response = await self.provider.generate(
            messages=provider_messages,
            model=self.model,
            tools=self.tools or None,
            temperature=self.temperature,
            max_tokens=self.max_output_tokens,
            top_p=self.top_p,
            **kwargs,
        )

        reply = _reply_message(response)
        return AgentResponse(
            content=response.content,
            messages=messages + [reply],
            tool_calls=response.tool_calls or [],
            usage=Usage.from_dict(response.usage),
            model=response.model,
            stop_reason=response.stop_reason,
        )


def _reply_message(response: LLMResponse) -> Message:
    """Build the assistant message for a provider response."""
    tool_calls = []
    for call in response.tool_calls or []:
        function = call.get("function", {})
        tool_calls.append(
            ToolCallRequest(
                id=call.get("call_id") or call.get("id", ""),
                name=function.get("name", ""),
                arguments=function.get("arguments") or "{}",
            )
        )
    if tool_calls:
        return Message.with_tool_calls(tool_calls, content=response.content or "")
    return Message.assistant(response.content or "")
