from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


class RemoteCallError(Exception):
    """The remote model could not produce a reply (timeout, 5xx, network, bad response)."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


@dataclass(frozen=True)
class LLMResponse:
    content: str
    token_count: int
    latency: float


@runtime_checkable
class LLMProvider(Protocol):
    @property
    def name(self) -> str: ...

    async def call(self, prompt: str, system_prompt: str, timeout: float | None = None) -> LLMResponse:
        """Send one prompt and return the generated text.

        Raises RemoteCallError when the provider fails after its own retries.
        """
        ...


def create_provider(
    provider_name: str,
    api_key: str,
    *,
    model: str,
    max_tokens: int = 300,
    temperature: float = 0.7,
) -> LLMProvider:
    """Factory: create an LLMProvider by name."""
    name = provider_name.strip().lower()
    if name == "anthropic":
        from step_sync_assistant.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(api_key, model=model, max_tokens=max_tokens, temperature=temperature)
    if name == "openai":
        from step_sync_assistant.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(api_key, model=model, max_tokens=max_tokens, temperature=temperature)
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'anthropic', 'openai'")
