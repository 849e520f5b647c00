"""
Base LLM client abstraction.

Defines the interface the content service talks to. Every backend
provides a blocking ``chat()``; backends that can stream also provide
``stream_chat()``, which yields text deltas as they arrive.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator, Literal


class LLMError(Exception):
    """A backend request failed."""


@dataclass
class Message:
    """A message in the conversation."""
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass
class LLMResponse:
    """Response from the LLM."""
    content: str
    finish_reason: str = "stop"
    usage: dict | None = None


class LLMClient(ABC):
    """
    Abstract base class for LLM backends.

    All backends must implement:
    - chat(): Send messages and get a response
    - model_name: The model identifier
    """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """The model identifier."""
        pass

    @property
    def supports_streaming(self) -> bool:
        return False

    def is_available(self) -> bool:
        """Whether the backend is configured and reachable."""
        return True

    @abstractmethod
    def chat(
        self,
        messages: list[Message],
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> LLMResponse:
        """
        Send a chat completion request.

        Args:
            messages: Conversation history
            system: System prompt
            temperature: Sampling temperature
            max_tokens: Maximum response tokens

        Returns:
            LLMResponse with the full content

        Raises:
            LLMError: If the request fails
        """
        pass

    def stream_chat(
        self,
        messages: list[Message],
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> Iterator[str]:
        """
        Stream a chat completion as text deltas.

        Backends without native streaming yield the whole response once.
        """
        response = self.chat(
            messages,
            system=system,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        yield response.content
