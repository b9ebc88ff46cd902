"""Ollama provider for Toolsmith.

Local models through Ollama's HTTP API, using only urllib for transport.
"""

from __future__ import annotations

import asyncio
import json
import urllib.error
import urllib.request
from typing import TYPE_CHECKING, Any

from toolsmith.exceptions import LLMError
from toolsmith.llm.base import BaseLLMProvider, LLMResponse

if TYPE_CHECKING:
    from toolsmith.core.types import Message, ModelConfig

DEFAULT_BASE_URL = "http://localhost:11434"


def is_ollama_available(base_url: str = DEFAULT_BASE_URL) -> bool:
    """Return True if an Ollama server answers on ``/api/tags``."""
    try:
        url = f"{base_url.rstrip('/')}/api/tags"
        req = urllib.request.Request(url, method="GET")
        with urllib.request.urlopen(req, timeout=3) as resp:
            return resp.status == 200
    except (urllib.error.URLError, OSError):
        return False


class OllamaProvider(BaseLLMProvider):
    """Ollama local LLM provider.

    Example:
        provider = OllamaProvider()  # Connects to localhost:11434
        response = await provider.generate(
            messages=[Message(role="user", content="Hello!")],
            config=ModelConfig(provider=LLMProvider.OLLAMA, model_id="llama3"),
        )
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = 300.0):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def _post_json(self, path: str, payload: dict[str, Any]) -> Any:
        url = f"{self._base_url}{path}"
        data = json.dumps(payload).encode("utf-8")
        req = urllib.request.Request(
            url,
            data=data,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise LLMError(f"Ollama HTTP {exc.code}: {detail}", provider="ollama")
        except urllib.error.URLError as exc:
            raise LLMError(
                f"Failed to connect to Ollama at {self._base_url}. "
                f"Is Ollama running? Start it with: ollama serve\n"
                f"Error: {exc}",
                provider="ollama",
            )

        try:
            return json.loads(body)
        except json.JSONDecodeError:
            raise LLMError(f"Ollama returned invalid JSON: {body[:500]}", provider="ollama")

    @staticmethod
    def _strip_model_prefix(model_id: str) -> str:
        """Remove the ``ollama/`` prefix if present."""
        if model_id.startswith("ollama/"):
            return model_id[len("ollama/"):]
        return model_id

    async def generate(
        self,
        messages: list[Message],
        config: ModelConfig,
        system_prompt: str | None = None,
    ) -> LLMResponse:
        """Generate a response with a non-streaming POST to ``/api/chat``."""
        model_id = self._strip_model_prefix(config.model_id)

        chat: list[dict[str, Any]] = []
        if system_prompt:
            chat.append({"role": "system", "content": system_prompt})
        chat.extend({"role": msg.role, "content": msg.content} for msg in messages)

        payload: dict[str, Any] = {
            "model": model_id,
            "messages": chat,
            "stream": False,
        }
        if config.response_format == "json":
            payload["format"] = "json"

        options: dict[str, Any] = {}
        if config.temperature is not None:
            options["temperature"] = config.temperature
        if config.max_tokens:
            options["num_predict"] = config.max_tokens
        if options:
            payload["options"] = options

        # urllib blocks; keep it off the event loop.
        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(None, lambda: self._post_json("/api/chat", payload))

        if not isinstance(data, dict):
            raise LLMError(
                f"Ollama returned unexpected response type: {type(data).__name__}",
                provider="ollama",
            )

        message = data.get("message", {})
        done_reason = data.get("done_reason", "stop")

        return LLMResponse(
            content=message.get("content", ""),
            stop_reason="max_tokens" if done_reason == "length" else "stop",
            input_tokens=data.get("prompt_eval_count", 0) or 0,
            output_tokens=data.get("eval_count", 0) or 0,
            model_id=data.get("model", model_id),
            raw_response=data,
        )

    @property
    def provider_name(self) -> str:
        return "ollama"
