"""Shared pytest configuration and fixtures."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from predictable.history.types import Message
from predictable.llm.providers.base import LLMProvider, LLMResponse


class FakeSummarizer:
    """Deterministic summarizer recording every span it was asked to fold."""

    def __init__(self, text: str = "TLDR"):
        self.text = text
        self.calls: list[list[Message]] = []

    def __call__(self, messages: list[Message]) -> Message:
        self.calls.append(list(messages))
        return Message.assistant(f"{self.text} ({len(messages)})")


class FailingSummarizer:
    """Summarizer that always raises."""

    def __init__(self, error: Exception | None = None):
        self.error = error or RuntimeError("summarizer unavailable")
        self.calls = 0

    async def __call__(self, messages: list[Message]) -> Message:
        self.calls += 1
        raise self.error


class StubProvider(LLMProvider):
    """Provider returning a canned response and recording requests."""

    def __init__(self, response: LLMResponse | None = None):
        self.response = response or LLMResponse(content="ok", model="stub-model")
        self.requests: list[dict] = []

    async def generate(self, messages, model, **kwargs) -> LLMResponse:
        self.requests.append({"messages": messages, "model": model, **kwargs})
        return self.response


@pytest.fixture
def summarizer():
    return FakeSummarizer()


@pytest.fixture
def failing_summarizer():
    return FailingSummarizer()


@pytest.fixture
def stub_provider():
    return StubProvider()


@pytest.fixture
def conversation():
    """System prompt followed by twelve user turns."""
    return [Message.system("S")] + [Message.user(f"u{i}") for i in range(1, 13)]


@pytest.fixture
def mock_http_client():
    """Mock httpx.AsyncClient passed through to provider SDKs."""
    client = MagicMock()
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def make_provider():
    """Factory for stub providers with a specific canned response."""
    return StubProvider
