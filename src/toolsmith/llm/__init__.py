"""LLM provider layer for Toolsmith."""

from toolsmith.llm.base import BaseLLMProvider, LLMResponse
from toolsmith.llm.client import LLMClient, create_provider

__all__ = [
    "BaseLLMProvider",
    "LLMClient",
    "LLMResponse",
    "create_provider",
]
