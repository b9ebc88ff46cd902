"""Anthropic Claude provider for Toolsmith."""

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

JSON_ONLY_SUFFIX = "Respond with a single JSON object and nothing else."


class AnthropicProvider(BaseLLMProvider):
    """Anthropic Claude provider.

    Example:
        from toolsmith.llm.providers import AnthropicProvider

        provider = AnthropicProvider()  # Uses ANTHROPIC_API_KEY env var
        response = await provider.generate(
            messages=[Message(role="user", content="Hello!")],
            config=ModelConfig(provider=LLMProvider.ANTHROPIC, model_id="claude-sonnet-4-20250514"),
        )
    """

    def __init__(self, api_key: str | None = None):
        """Initialize the Anthropic provider.

        Args:
            api_key: Anthropic API key. If not provided, uses ANTHROPIC_API_KEY env var.
        """
        self._api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize the Anthropic client."""
        if self._client is None:
            try:
                import anthropic
            except ImportError:
                raise LLMError(
                    "anthropic package not installed. "
                    "Install with: pip install toolsmith[anthropic]",
                    provider="anthropic",
                )

            if not self._api_key:
                raise AuthenticationError(
                    "Anthropic API key not found. "
                    "Set ANTHROPIC_API_KEY environment variable or pass api_key parameter.",
                    provider="anthropic",
                )

            self._client = anthropic.AsyncAnthropic(api_key=self._api_key)

        return self._client

    def _convert_messages(
        self, messages: list[Message], system_prompt: str | None
    ) -> tuple[list[dict[str, Any]], str | None]:
        """Split system messages out; Anthropic takes them as a separate field."""
        system_parts = [system_prompt] if system_prompt else []
        result = []
        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
                continue
            result.append({"role": msg.role, "content": msg.content})
        system = "\n\n".join(system_parts) if system_parts else None
        return result, system

    async def generate(
        self,
        messages: list[Message],
        config: ModelConfig,
        system_prompt: str | None = None,
    ) -> LLMResponse:
        """Generate a response from Claude."""
        client = self._get_client()

        converted, system = self._convert_messages(messages, system_prompt)
        if config.response_format == "json":
            system = f"{system}\n\n{JSON_ONLY_SUFFIX}" if system else JSON_ONLY_SUFFIX

        request_params: dict[str, Any] = {
            "model": config.model_id,
            "max_tokens": config.max_tokens,
            "messages": converted,
        }

        if config.temperature is not None:
            request_params["temperature"] = config.temperature

        if system:
            request_params["system"] = system

        import anthropic

        try:
            response = await client.messages.create(**request_params)
        except anthropic.RateLimitError as e:
            raise RateLimitError(f"Anthropic rate limit exceeded: {e}", provider="anthropic")
        except anthropic.AuthenticationError as e:
            raise AuthenticationError(f"Anthropic authentication failed: {e}", provider="anthropic")
        except anthropic.APIError as e:
            raise LLMError(f"Anthropic API error: {e}", provider="anthropic")

        content_text = "".join(
            block.text for block in response.content if block.type == "text"
        )

        return LLMResponse(
            content=content_text,
            stop_reason=response.stop_reason or "end_turn",
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model_id=response.model,
            raw_response=response,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"
