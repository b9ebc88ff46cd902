"""Thin completion client shared by the synthesizer and the orchestrator.

Wraps a provider with the configured model defaults and normalizes every
provider failure into ``LLMError`` so callers only handle one type.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from toolsmith.core.types import Message, ModelConfig
from toolsmith.exceptions import ConfigurationError, LLMError

if TYPE_CHECKING:
    from toolsmith.config.settings import LLMConfig
    from toolsmith.llm.base import BaseLLMProvider

logger = logging.getLogger(__name__)


def create_provider(config: LLMConfig) -> BaseLLMProvider:
    """Build the provider named by ``config.default_provider``.

    There is no silent fallback to the mock provider: a missing key surfaces
    as ``AuthenticationError`` on the first call.
    """
    from toolsmith.core.types import LLMProvider

    provider = config.default_provider
    if provider == LLMProvider.ANTHROPIC:
        from toolsmith.llm.providers.anthropic_ import AnthropicProvider

        key = config.anthropic_api_key.get_secret_value() if config.anthropic_api_key else None
        return AnthropicProvider(api_key=key)
    if provider == LLMProvider.OPENAI:
        from toolsmith.llm.providers.openai_ import OpenAIProvider

        key = config.openai_api_key.get_secret_value() if config.openai_api_key else None
        return OpenAIProvider(api_key=key)
    if provider == LLMProvider.OLLAMA:
        from toolsmith.llm.providers.ollama_ import OllamaProvider

        return OllamaProvider(base_url=config.ollama_base_url)
    if provider == LLMProvider.MOCK:
        from toolsmith.llm.providers.mock import MockProvider

        return MockProvider()
    raise ConfigurationError(f"Unknown LLM provider: {provider}")


class LLMClient:
    """Completion client bound to one provider and one set of model defaults."""

    def __init__(self, provider: BaseLLMProvider, config: LLMConfig):
        self.provider = provider
        self.config = config

    def model_config(
        self,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        response_format: Literal["json", "text"] | None = None,
    ) -> ModelConfig:
        return ModelConfig(
            provider=self.config.default_provider,
            model_id=self.config.default_model,
            temperature=self.config.default_temperature if temperature is None else temperature,
            max_tokens=self.config.default_max_tokens if max_tokens is None else max_tokens,
            timeout_seconds=self.config.default_timeout_seconds,
            response_format=response_format,
        )

    async def complete(
        self,
        prompt: str | list[Message],
        *,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        response_format: Literal["json", "text"] | None = None,
    ) -> str:
        """Send one prompt and return the reply text.

        Raises:
            LLMError: The provider failed or returned an empty reply.
        """
        messages = [Message(role="user", content=prompt)] if isinstance(prompt, str) else prompt
        config = self.model_config(
            temperature=temperature,
            max_tokens=max_tokens,
            response_format=response_format,
        )

        try:
            response = await self.provider.generate(messages, config, system_prompt=system_prompt)
        except LLMError:
            raise
        except Exception as e:
            raise LLMError(
                f"{self.provider.provider_name} call failed: {e}",
                provider=self.provider.provider_name,
                model=config.model_id,
                cause=e,
            )

        logger.debug(
            "LLM %s/%s: %d in, %d out tokens",
            self.provider.provider_name,
            response.model_id or config.model_id,
            response.input_tokens,
            response.output_tokens,
        )
        return response.content
