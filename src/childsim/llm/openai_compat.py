"""
OpenAI-compatible chat completions client.

Serves OpenAI, DeepSeek, Volcengine Ark and local servers that speak
the same protocol (LM Studio, Ollama). Streaming uses server-sent
events: ``data: {...}`` lines carrying ``choices[0].delta.content``,
terminated by ``data: [DONE]``.
"""

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Iterator

from .base import LLMClient, LLMError, LLMResponse, Message


logger = logging.getLogger(__name__)


PROVIDERS: dict[str, dict[str, str]] = {
    "openai": {
        "base_url": "https://api.openai.com/v1",
        "model": "gpt-4o-mini",
        "api_key_env": "OPENAI_API_KEY",
    },
    "deepseek": {
        "base_url": "https://api.deepseek.com/v1",
        "model": "deepseek-chat",
        "api_key_env": "DEEPSEEK_API_KEY",
    },
    "volcengine": {
        "base_url": "https://ark.cn-beijing.volces.com/api/v3",
        "model": "deepseek-v3-250324",
        "api_key_env": "ARK_API_KEY",
    },
    "local": {
        "base_url": "http://127.0.0.1:1234/v1",
        "model": "local-model",
        "api_key_env": "LMSTUDIO_API_KEY",
    },
}


def parse_sse_line(line: str) -> str | None:
    """
    Extract the content delta from one SSE line.

    Returns None for blank lines, comments, ``[DONE]`` and events with
    no content.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if not payload or payload == "[DONE]":
        return None
    try:
        event = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Skipping undecodable stream event: %.80s", payload)
        return None
    choices = event.get("choices") or []
    if not choices:
        return None
    delta = choices[0].get("delta") or {}
    content = delta.get("content")
    return content or None


class OpenAICompatibleClient(LLMClient):
    """
    Client for any ``/chat/completions`` endpoint.

    Default: OpenAI. Use ``provider`` to pick a preset base URL, model and
    API key variable, or pass them explicitly.
    """

    def __init__(
        self,
        provider: str = "openai",
        base_url: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        timeout: int = 120,
    ):
        preset = PROVIDERS.get(provider, PROVIDERS["openai"])
        self.provider = provider
        self.base_url = (base_url or preset["base_url"]).rstrip("/")
        self._model = model or preset["model"]
        self._api_key = api_key or os.environ.get(preset["api_key_env"])
        self.timeout = timeout

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def supports_streaming(self) -> bool:
        return True

    def is_available(self) -> bool:
        return bool(self._api_key) or self.provider == "local"

    def _make_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_payload(
        self,
        messages: list[Message],
        system: str | None,
        temperature: float,
        max_tokens: int,
        stream: bool,
    ) -> dict:
        api_messages = []
        if system:
            api_messages.append({"role": "system", "content": system})
        for msg in messages:
            api_messages.append({"role": msg.role, "content": msg.content})
        return {
            "model": self._model,
            "messages": api_messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": stream,
        }

    def _open(self, payload: dict):
        req = urllib.request.Request(
            f"{self.base_url}/chat/completions",
            data=json.dumps(payload).encode("utf-8"),
            headers=self._make_headers(),
            method="POST",
        )
        try:
            return urllib.request.urlopen(req, timeout=self.timeout)
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace")[:300]
            raise LLMError(f"{self.provider} returned HTTP {e.code}: {detail}") from e
        except urllib.error.URLError as e:
            raise LLMError(f"Network failure reaching {self.provider}: {e.reason}") from e
        except TimeoutError as e:
            raise LLMError(f"Request to {self.provider} timed out") from e

    def chat(
        self,
        messages: list[Message],
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> LLMResponse:
        """Send chat completion request."""
        payload = self._build_payload(messages, system, temperature, max_tokens, stream=False)
        with self._open(payload) as resp:
            try:
                result = json.loads(resp.read().decode("utf-8"))
            except json.JSONDecodeError as e:
                raise LLMError(f"Malformed response from {self.provider}: {e}") from e

        choices = result.get("choices") or []
        if not choices:
            raise LLMError(f"Generation failed: {self.provider} returned no choices")
        choice = choices[0]
        return LLMResponse(
            content=(choice.get("message") or {}).get("content") or "",
            finish_reason=choice.get("finish_reason") or "stop",
            usage=result.get("usage"),
        )

    def stream_chat(
        self,
        messages: list[Message],
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> Iterator[str]:
        """Yield content deltas from the SSE stream."""
        payload = self._build_payload(messages, system, temperature, max_tokens, stream=True)
        with self._open(payload) as resp:
            try:
                for raw_line in resp:
                    line = raw_line.decode("utf-8", errors="replace")
                    if line.strip() == "data: [DONE]":
                        return
                    delta = parse_sse_line(line)
                    if delta:
                        yield delta
            except (OSError, TimeoutError) as e:
                raise LLMError(f"Network failure while streaming from {self.provider}: {e}") from e
