"""
LLM backends for content generation.

Supported backends:
- openai / deepseek / volcengine: hosted OpenAI-compatible APIs
- local: an OpenAI-compatible local server (LM Studio, Ollama)
- claude: Anthropic API
- mock: canned responses for tests and offline play
"""

from typing import Iterator, Literal

from .base import LLMClient, LLMError, LLMResponse, Message
from .openai_compat import PROVIDERS, OpenAICompatibleClient, parse_sse_line


__all__ = [
    "LLMClient",
    "LLMError",
    "LLMResponse",
    "Message",
    "OpenAICompatibleClient",
    "MockLLMClient",
    "PROVIDERS",
    "parse_sse_line",
    "create_llm_client",
]


# -----------------------------------------------------------------------------
# Mock Client for Testing
# -----------------------------------------------------------------------------

class MockLLMClient(LLMClient):
    """
    Mock LLM client for testing.

    Allows configuring responses without actual API calls.
    """

    def __init__(
        self,
        responses: list[str] | None = None,
        model_name: str = "mock-model",
        chunk_size: int = 16,
        fail_with: Exception | None = None,
    ):
        """
        Initialize mock client.

        Args:
            responses: List of responses to return in order.
                       Cycles through if more calls than responses.
            model_name: Name to report as model_name property.
            chunk_size: Characters per streamed delta.
            fail_with: Exception raised by every call, if set.
        """
        self._responses = responses or ["Mock response"]
        self._call_count = 0
        self._model_name = model_name
        self.chunk_size = chunk_size
        self.fail_with = fail_with
        self.calls: list[dict] = []  # Record of all calls made

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def supports_streaming(self) -> bool:
        return True

    def _next(self, method: str, messages: list[Message], system: str | None) -> str:
        self.calls.append({
            "method": method,
            "messages": messages,
            "system": system,
        })
        if self.fail_with is not None:
            raise self.fail_with
        response = self._responses[self._call_count % len(self._responses)]
        self._call_count += 1
        return response

    def chat(
        self,
        messages: list[Message],
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> LLMResponse:
        """Return next mock response."""
        return LLMResponse(content=self._next("chat", messages, system))

    def stream_chat(
        self,
        messages: list[Message],
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> Iterator[str]:
        """Yield the next mock response in fixed-size pieces."""
        text = self._next("stream_chat", messages, system)
        for i in range(0, len(text), self.chunk_size):
            yield text[i:i + self.chunk_size]

    def set_responses(self, responses: list[str]) -> None:
        """Update the list of responses."""
        self._responses = responses
        self._call_count = 0

    def reset(self) -> None:
        """Reset call count and recorded calls."""
        self._call_count = 0
        self.calls.clear()


# -----------------------------------------------------------------------------
# Factory
# -----------------------------------------------------------------------------

BackendType = Literal["openai", "deepseek", "volcengine", "local", "claude", "mock"]


def create_llm_client(
    provider: BackendType = "openai",
    model: str | None = None,
    base_url: str | None = None,
    api_key: str | None = None,
    timeout: int = 120,
) -> LLMClient:
    """
    Build a client for the named provider.

    Raises:
        ValueError: For an unknown provider name.
    """
    if provider == "mock":
        return MockLLMClient()
    if provider == "claude":
        from .claude import ClaudeClient
        if model:
            return ClaudeClient(model=model, api_key=api_key, timeout=timeout)
        return ClaudeClient(api_key=api_key, timeout=timeout)
    if provider in PROVIDERS:
        return OpenAICompatibleClient(
            provider=provider,
            base_url=base_url,
            model=model,
            api_key=api_key,
            timeout=timeout,
        )
    raise ValueError(
        f"Unknown provider '{provider}'. "
        f"Choose from: {', '.join([*PROVIDERS, 'claude', 'mock'])}"
    )
