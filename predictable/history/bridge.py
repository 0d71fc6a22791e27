"""Conversion between ``Message`` and provider-agnostic history items.

External items use the normalized session format providers understand:

- ``{"role": "system" | "user" | "assistant", "content": str}``, plus ``"name"``
  when the message has one
- ``{"type": "function_call", "call_id", "name", "arguments"}``
- ``{"type": "function_call_output", "call_id", "output"}``

An assistant message carrying N tool calls expands to N ``function_call``
items and collapses back into one assistant message when read. Provider
metadata that has no place on ``Message`` (item ids, status, timestamps) is
dropped when reading.
"""

from __future__ import annotations

import json
from typing import Any

from .compaction import is_summary_message
from .errors import MissingToolIdError
from .types import Message, MessageRole, ToolCallRequest

FUNCTION_CALL = "function_call"
FUNCTION_CALL_OUTPUT = "function_call_output"

_ROLE_NAMES = {
    MessageRole.SYSTEM: "system",
    MessageRole.USER: "user",
    MessageRole.ASSISTANT: "assistant",
}


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return str(value)


def _content_text(content: Any) -> str:
    """Flatten provider content (string or list of content parts) into text."""
    if isinstance(content, list):
        texts = []
        for part in content:
            if isinstance(part, dict) and isinstance(part.get("text"), str):
                texts.append(part["text"])
            elif isinstance(part, str):
                texts.append(part)
        if texts:
            return "".join(texts)
    return _stringify(content)


def to_external(message: Message) -> list[dict[str, Any]]:
    """Convert one message into one or more external items."""
    if message.role == MessageRole.TOOL_RESULT:
        if not message.tool_call_id:
            raise MissingToolIdError(FUNCTION_CALL_OUTPUT, message.name)
        return [
            {
                "type": FUNCTION_CALL_OUTPUT,
                "call_id": message.tool_call_id,
                "output": message.content,
            }
        ]

    if message.role == MessageRole.ASSISTANT and message.tool_calls:
        items: list[dict[str, Any]] = []
        if message.content:
            items.append({"role": "assistant", "content": message.content})
        for call in message.tool_calls:
            if not call.id:
                raise MissingToolIdError(FUNCTION_CALL, call.name)
            items.append(
                {
                    "type": FUNCTION_CALL,
                    "call_id": call.id,
                    "name": call.name,
                    "arguments": call.arguments,
                }
            )
        return items

    item = {"role": _ROLE_NAMES[message.role], "content": message.content}
    if message.name:
        item["name"] = message.name
    return [item]


def from_external(item: dict[str, Any]) -> Message:
    """Convert one external item into a message.

    A single ``function_call`` item becomes an assistant message with one
    tool call; use ``from_external_messages`` to fold consecutive calls.
    """
    item_type = item.get("type")

    if item_type == FUNCTION_CALL:
        return Message.with_tool_calls([_tool_call(item)])

    if item_type == FUNCTION_CALL_OUTPUT:
        call_id = item.get("call_id")
        if not call_id:
            raise MissingToolIdError(FUNCTION_CALL_OUTPUT, item.get("name"))
        return Message.tool_result(call_id, _stringify(item.get("output")), name=item.get("name"))

    if item_type not in (None, "message") and "role" not in item:
        raise ValueError(f"Unsupported history item type: {item_type}")

    role = item.get("role", "user")
    if role == "tool":
        call_id = item.get("tool_call_id")
        if not call_id:
            raise MissingToolIdError("tool", item.get("name"))
        content = _content_text(item.get("content"))
        return Message.tool_result(call_id, content, name=item.get("name"))

    content = _content_text(item.get("content"))
    name = item.get("name") or None
    if role == "system" or role == "developer":
        return Message.system(content, name=name)
    if role == "assistant":
        return Message.assistant(content, name=name)
    return Message.user(content, name=name)


def _tool_call(item: dict[str, Any]) -> ToolCallRequest:
    call_id = item.get("call_id")
    if not call_id:
        raise MissingToolIdError(FUNCTION_CALL, item.get("name"))
    return ToolCallRequest(
        id=call_id,
        name=item.get("name", ""),
        arguments=_stringify(item.get("arguments")) or "{}",
    )


def to_external_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Convert messages to external items, expanding tool calls."""
    result: list[dict[str, Any]] = []
    for message in messages:
        result.extend(to_external(message))
    return result


def from_external_messages(items: list[dict[str, Any]]) -> list[Message]:
    """Convert external items to messages, folding tool call runs.

    Consecutive ``function_call`` items become one assistant message. An
    unnamed assistant text item directly before the run becomes that message's
    content; named items and conversation summaries stay separate messages.
    """
    result: list[Message] = []

    i = 0
    while i < len(items):
        item = items[i]

        if item.get("type") == FUNCTION_CALL:
            tool_calls: list[ToolCallRequest] = []
            while i < len(items) and items[i].get("type") == FUNCTION_CALL:
                tool_calls.append(_tool_call(items[i]))
                i += 1

            content = ""
            previous = result[-1] if result else None
            if (
                previous is not None
                and previous.role == MessageRole.ASSISTANT
                and not previous.tool_calls
                and previous.name is None
                and not is_summary_message(previous)
            ):
                content = result.pop().content
            result.append(Message.with_tool_calls(tool_calls, content=content))

        elif item.get("role") == "assistant" and item.get("tool_calls"):
            # Chat Completions shape: assistant message with nested tool_calls
            tool_calls = []
            for call in item["tool_calls"]:
                function = call.get("function", {})
                tool_calls.append(
                    _tool_call(
                        {
                            "call_id": call.get("id"),
                            "name": function.get("name", ""),
                            "arguments": function.get("arguments"),
                        }
                    )
                )
            result.append(
                Message.with_tool_calls(tool_calls, content=_content_text(item.get("content")))
            )
            i += 1

        else:
            result.append(from_external(item))
            i += 1

    return result
