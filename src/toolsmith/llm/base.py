"""Base protocol for LLM providers.

All LLM providers (Anthropic, OpenAI, Ollama, Mock) implement this interface.
Toolsmith only relies on plain text completions: the synthesizer and the
orchestrator never depend on provider-specific behaviour beyond ``generate``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from toolsmith.core.types import Message, ModelConfig


@dataclass
class LLMResponse:
    """Response from an LLM provider."""

    content: str
    """The text content of the response."""

    stop_reason: str = "end_turn"
    """Why the model stopped: 'end_turn', 'max_tokens', etc."""

    input_tokens: int = 0
    """Number of input tokens used."""

    output_tokens: int = 0
    """Number of output tokens generated."""

    model_id: str = ""
    """The actual model ID that was used."""

    raw_response: Any = None
    """The raw response from the provider (for debugging)."""

    @property
    def total_tokens(self) -> int:
        """Total tokens used."""
        return self.input_tokens + self.output_tokens


class BaseLLMProvider(ABC):
    """Abstract base class for LLM providers.

    Implementations:
        - AnthropicProvider (Claude models)
        - OpenAIProvider (GPT models)
        - OllamaProvider (Local models)
        - MockProvider (scripted replies for tests)

    Example:
        provider = AnthropicProvider(api_key="...")
        response = await provider.generate(
            messages=[Message(role="user", content="Hello!")],
            config=ModelConfig(provider=LLMProvider.ANTHROPIC, model_id="claude-sonnet-4-20250514"),
        )
        print(response.content)
    """

    @abstractmethod
    async def generate(
        self,
        messages: list[Message],
        config: ModelConfig,
        system_prompt: str | None = None,
    ) -> LLMResponse:
        """Generate a response from the LLM.

        Args:
            messages: Conversation history. System messages may be included;
                providers that take a separate system field extract them.
            config: Model configuration (model_id, temperature, response_format).
            system_prompt: Optional system prompt.

        Returns:
            LLMResponse with the text content.

        Raises:
            LLMError: If the API call fails.
            RateLimitError: If rate limited by the provider.
            AuthenticationError: If API key is invalid.
        """
        ...

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Name of this provider (e.g., 'anthropic', 'openai')."""
        ...
