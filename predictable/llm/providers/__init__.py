"""LLM provider implementations."""

from .base import LLMProvider, LLMResponse, get_provider, register_provider

__all__ = ["LLMProvider", "LLMResponse", "get_provider", "register_provider"]
