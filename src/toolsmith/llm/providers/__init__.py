"""LLM provider implementations."""

from toolsmith.llm.providers.anthropic_ import AnthropicProvider
from toolsmith.llm.providers.mock import MockCall, MockProvider
from toolsmith.llm.providers.ollama_ import OllamaProvider, is_ollama_available
from toolsmith.llm.providers.openai_ import OpenAIProvider

__all__ = [
    "AnthropicProvider",
    "MockCall",
    "MockProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "is_ollama_available",
]
