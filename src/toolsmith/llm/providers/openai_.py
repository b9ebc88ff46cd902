"""OpenAI provider for Toolsmith.

Supports GPT-4o, GPT-4o-mini and compatible chat models.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

from toolsmith.exceptions import (
    AuthenticationError,
    LLMError,
    RateLimitError,
)
from toolsmith.llm.base import BaseLLMProvider, LLMResponse

if TYPE_CHECKING:
    from toolsmith.core.types import Message, ModelConfig


class OpenAIProvider(BaseLLMProvider):
    """OpenAI GPT provider.

    ``ModelConfig.response_format == "json"`` maps to OpenAI's JSON mode.

    Example:
        provider = OpenAIProvider()  # Uses OPENAI_API_KEY env var
        response = await provider.generate(
            messages=[Message(role="user", content="Hello!")],
            config=ModelConfig(provider=LLMProvider.OPENAI, model_id="gpt-4o"),
        )
    """

    def __init__(self, api_key: str | None = None):
        self._api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize the OpenAI client."""
        if self._client is None:
            try:
                import openai
            except ImportError:
                raise LLMError(
                    "openai package not installed. "
                    "Install with: pip install toolsmith[openai]",
                    provider="openai",
                )

            if not self._api_key:
                raise AuthenticationError(
                    "OpenAI API key not found. "
                    "Set OPENAI_API_KEY environment variable or pass api_key parameter.",
                    provider="openai",
                )

            self._client = openai.AsyncOpenAI(api_key=self._api_key)

        return self._client

    def _convert_messages(
        self, messages: list[Message], system_prompt: str | None = None
    ) -> list[dict[str, Any]]:
        result = []
        if system_prompt:
            result.append({"role": "system", "content": system_prompt})
        for msg in messages:
            result.append({"role": msg.role, "content": msg.content})
        return result

    async def generate(
        self,
        messages: list[Message],
        config: ModelConfig,
        system_prompt: str | None = None,
    ) -> LLMResponse:
        """Generate a response from GPT."""
        client = self._get_client()

        request_params: dict[str, Any] = {
            "model": config.model_id,
            "max_tokens": config.max_tokens,
            "messages": self._convert_messages(messages, system_prompt),
        }

        if config.temperature is not None:
            request_params["temperature"] = config.temperature

        if config.response_format == "json":
            request_params["response_format"] = {"type": "json_object"}

        import openai

        try:
            response = await client.chat.completions.create(**request_params)
        except openai.RateLimitError as e:
            raise RateLimitError(f"OpenAI rate limit exceeded: {e}", provider="openai")
        except openai.AuthenticationError as e:
            raise AuthenticationError(f"OpenAI authentication failed: {e}", provider="openai")
        except openai.APIError as e:
            raise LLMError(f"OpenAI API error: {e}", provider="openai")

        choice = response.choices[0]
        return LLMResponse(
            content=choice.message.content or "",
            stop_reason=choice.finish_reason or "stop",
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
            model_id=response.model,
            raw_response=response,
        )

    @property
    def provider_name(self) -> str:
        return "openai"
