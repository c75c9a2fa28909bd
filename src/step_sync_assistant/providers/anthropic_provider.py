import time

import anthropic
from loguru import logger
from tenacity import retry

from step_sync_assistant.provider import LLMResponse, RemoteCallError
from step_sync_assistant.providers.common import default_retry_kwargs


class AnthropicProvider:
    def __init__(self, api_key: str, *, model: str, max_tokens: int = 300, temperature: float = 0.7):
        self._client = anthropic.AsyncAnthropic(api_key=api_key)
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def name(self) -> str:
        return "anthropic"

    async def call(self, prompt: str, system_prompt: str, timeout: float | None = None) -> LLMResponse:
        started = time.monotonic()
        try:
            response = await self._create(prompt, system_prompt, timeout)
        except anthropic.APIError as ex:
            raise RemoteCallError(self.name, f"{type(ex).__name__}: {ex}") from ex

        text = "".join(block.text for block in response.content if block.type == "text").strip()
        if not text:
            raise RemoteCallError(self.name, f"empty response (stop_reason={response.stop_reason})")

        usage = response.usage
        latency = time.monotonic() - started
        logger.debug(
            f"API response: stop_reason={response.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}, "
            f"latency={latency:.2f}s"
        )
        return LLMResponse(content=text, token_count=usage.output_tokens, latency=latency)

    @retry(
        **default_retry_kwargs((
            anthropic.RateLimitError,
            anthropic.APIConnectionError,
            anthropic.APITimeoutError,
            anthropic.InternalServerError,
        ))
    )
    async def _create(self, prompt: str, system_prompt: str, timeout: float | None):
        logger.debug(
            f"API request: model={self._model}, max_tokens={self._max_tokens}, prompt_chars={len(prompt)}"
        )
        kwargs = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        return await self._client.messages.create(
            model=self._model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": prompt}],
            **kwargs,
        )
