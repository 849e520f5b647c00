"""
Claude API client.

Wraps the Anthropic SDK in our LLMClient interface.
"""

from typing import Iterator

import anthropic

from .base import LLMClient, LLMError, LLMResponse, Message


class ClaudeClient(LLMClient):
    """
    Client for Claude API via Anthropic SDK.

    Requires: ANTHROPIC_API_KEY environment variable (or api_key)
    """

    def __init__(
        self,
        model: str = "claude-sonnet-4-20250514",
        api_key: str | None = None,
        timeout: int = 120,
    ):
        self._model = model
        try:
            self.client = anthropic.Anthropic(api_key=api_key, timeout=timeout)
        except anthropic.AnthropicError as e:
            raise LLMError(f"Claude client not configured: {e}") from e

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def supports_streaming(self) -> bool:
        return True

    def is_available(self) -> bool:
        return bool(self.client.api_key)

    @staticmethod
    def _convert(messages: list[Message]) -> list[dict]:
        # System messages go in the system parameter
        return [
            {"role": msg.role, "content": msg.content}
            for msg in messages
            if msg.role != "system"
        ]

    def chat(
        self,
        messages: list[Message],
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> LLMResponse:
        """Send chat completion request to Claude."""
        kwargs = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": self._convert(messages),
        }
        if system:
            kwargs["system"] = system

        try:
            response = self.client.messages.create(**kwargs)
        except anthropic.APIConnectionError as e:
            raise LLMError(f"Network failure reaching Claude: {e}") from e
        except anthropic.APIError as e:
            raise LLMError(f"Claude generation failed: {e}") from e

        content = "".join(
            block.text for block in response.content if block.type == "text"
        )
        return LLMResponse(
            content=content,
            finish_reason=response.stop_reason or "stop",
            usage={
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        )

    def stream_chat(
        self,
        messages: list[Message],
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> Iterator[str]:
        kwargs = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": self._convert(messages),
        }
        if system:
            kwargs["system"] = system

        try:
            with self.client.messages.stream(**kwargs) as stream:
                for text in stream.text_stream:
                    yield text
        except anthropic.APIConnectionError as e:
            raise LLMError(f"Network failure reaching Claude: {e}") from e
        except anthropic.APIError as e:
            raise LLMError(f"Claude generation failed: {e}") from e
