import time

import openai
from loguru import logger
from tenacity import retry

from step_sync_assistant.provider import LLMResponse, RemoteCallError
from step_sync_assistant.providers.common import default_retry_kwargs


def _to_openai_messages(system_prompt: str, prompt: str) -> list[dict]:
    out: list[dict] = []
    if system_prompt:
        out.append({"role": "system", "content": system_prompt})
    out.append({"role": "user", "content": prompt})
    return out


class OpenAIProvider:
    def __init__(self, api_key: str, *, model: str, max_tokens: int = 300, temperature: float = 0.7):
        self._client = openai.AsyncOpenAI(api_key=api_key)
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def name(self) -> str:
        return "openai"

    async def call(self, prompt: str, system_prompt: str, timeout: float | None = None) -> LLMResponse:
        started = time.monotonic()
        try:
            response = await self._create(_to_openai_messages(system_prompt, prompt), timeout)
        except openai.OpenAIError as ex:
            raise RemoteCallError(self.name, f"{type(ex).__name__}: {ex}") from ex

        if not response.choices:
            raise RemoteCallError(self.name, "response has no choices")
        choice = response.choices[0]
        text = (choice.message.content or "").strip()
        if not text:
            raise RemoteCallError(self.name, f"empty response (finish_reason={choice.finish_reason})")

        usage = response.usage
        token_count = usage.completion_tokens if usage is not None else 0
        latency = time.monotonic() - started
        logger.debug(
            f"API response: finish_reason={choice.finish_reason}, "
            f"completion_tokens={token_count}, latency={latency:.2f}s"
        )
        return LLMResponse(content=text, token_count=token_count, latency=latency)

    @retry(
        **default_retry_kwargs((
            openai.RateLimitError,
            openai.APIConnectionError,
            openai.APITimeoutError,
            openai.InternalServerError,
        ))
    )
    async def _create(self, messages: list[dict], timeout: float | None):
        logger.debug(f"API request: model={self._model}, messages={len(messages)}")
        kwargs = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        return await self._client.chat.completions.create(
            model=self._model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            messages=messages,
            **kwargs,
        )
