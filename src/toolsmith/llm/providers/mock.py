"""Scripted LLM provider for tests and offline development.

Replies are consumed in order. Each scripted reply may be:

- a string, returned as the response content
- an exception instance, raised from ``generate``
- a callable ``(messages, config, system_prompt) -> str``

When the script runs out, the ``responder`` callable (if any) answers;
otherwise ``generate`` raises ``LLMError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Union

from toolsmith.exceptions import LLMError
from toolsmith.llm.base import BaseLLMProvider, LLMResponse

if TYPE_CHECKING:
    from toolsmith.core.types import Message, ModelConfig

logger = logging.getLogger(__name__)

Responder = Callable[["list[Message]", "ModelConfig", "str | None"], str]
ScriptedReply = Union[str, BaseException, Responder]


@dataclass
class MockCall:
    """One recorded ``generate`` call."""

    messages: list[Message]
    config: ModelConfig
    system_prompt: str | None

    @property
    def prompt(self) -> str:
        """All message contents joined, for easy assertions."""
        return "\n".join(msg.content for msg in self.messages)


class MockProvider(BaseLLMProvider):
    """Scripted provider.

    Example:
        provider = MockProvider(['{"rationale": "no tool", "executionArgs": {}}'])
        response = await provider.generate(
            messages=[Message(role="user", content="hi")],
            config=ModelConfig(provider=LLMProvider.MOCK, model_id="mock"),
        )
    """

    def __init__(
        self,
        responses: list[ScriptedReply] | None = None,
        *,
        responder: Responder | None = None,
    ):
        self._script: list[ScriptedReply] = list(responses or [])
        self._responder = responder
        self.calls: list[MockCall] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def remaining(self) -> int:
        return len(self._script)

    def queue(self, *responses: ScriptedReply) -> None:
        """Append replies to the script."""
        self._script.extend(responses)

    async def generate(
        self,
        messages: list[Message],
        config: ModelConfig,
        system_prompt: str | None = None,
    ) -> LLMResponse:
        self.calls.append(MockCall(list(messages), config, system_prompt))
        logger.debug("MockProvider call #%d (%d scripted left)", self.call_count, self.remaining)

        reply: Any
        if self._script:
            reply = self._script.pop(0)
        elif self._responder is not None:
            reply = self._responder
        else:
            raise LLMError("MockProvider script exhausted", provider="mock", model=config.model_id)

        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(messages, config, system_prompt)

        content = str(reply)
        return LLMResponse(
            content=content,
            input_tokens=sum(len(msg.content.split()) for msg in messages),
            output_tokens=len(content.split()),
            model_id=config.model_id,
        )

    @property
    def provider_name(self) -> str:
        return "mock"
