from __future__ import annotations

import math
import re
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Sequence

from loguru import logger


class TokenizerModel(str, Enum):
    LLAMA3 = "llama3"
    GPT4 = "gpt4"
    GENERIC = "generic"


@dataclass(frozen=True)
class TokenBudget:
    context_limit: int = 8000
    safety_margin: int = 500
    per_message_overhead: int = 4

    @property
    def effective_limit(self) -> int:
        return self.context_limit - self.safety_margin


class _HasText(Protocol):
    @property
    def role(self) -> str: ...

    @property
    def text(self) -> str: ...


_WHITESPACE = re.compile(r"\s+")
_SEGMENT = re.compile(r"[\w']+|[^\w\s]")
_SPECIAL_CHAR = re.compile(r"[^\w\s]")


class TokenCounter:
    def __init__(
        self,
        budget: TokenBudget | None = None,
        model: TokenizerModel | str = TokenizerModel.LLAMA3,
        *,
        cache_size: int = 1000,
    ):
        self._budget = budget or TokenBudget()
        self._model = TokenizerModel(model)
        self._cache_size = max(0, cache_size)
        self._cache: OrderedDict[tuple[str, TokenizerModel], int] = OrderedDict()
        self._hits = 0
        self._misses = 0

    @property
    def budget(self) -> TokenBudget:
        return self._budget

    @property
    def model(self) -> TokenizerModel:
        return self._model

    def count_tokens(self, text: str, model: TokenizerModel | str | None = None) -> int:
        if not text:
            return 0
        resolved = TokenizerModel(model) if model is not None else self._model
        key = (text, resolved)

        cached = self._cache.get(key)
        if cached is not None:
            self._hits += 1
            self._cache.move_to_end(key)
            return cached

        self._misses += 1
        count = max(1, _ESTIMATORS[resolved](text))
        if self._cache_size:
            self._cache[key] = count
            if len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        return count

    def count_message_tokens(self, message: _HasText) -> int:
        return self.count_tokens(message.text) + self._budget.per_message_overhead

    def count_conversation_tokens(self, messages: Sequence[_HasText], system_prompt_tokens: int = 0) -> int:
        return system_prompt_tokens + sum(self.count_message_tokens(m) for m in messages)

    def remaining_tokens(self, messages: Sequence[_HasText], system_prompt_tokens: int = 0) -> int:
        used = self.count_conversation_tokens(messages, system_prompt_tokens)
        return max(0, self._budget.effective_limit - used)

    def trim_to_fit(
        self,
        messages: Sequence[_HasText],
        limit: int | None = None,
        safety_margin: int | None = None,
        *,
        system_prompt_tokens: int = 0,
    ) -> list:
        """Keep the most recent messages whose estimated cost fits the budget.

        Messages are dropped oldest first. When not even the newest message
        fits, the most recent user message is returned on its own so a
        non-empty history never trims down to nothing.
        """
        if not messages:
            return []

        limit = self._budget.context_limit if limit is None else limit
        margin = self._budget.safety_margin if safety_margin is None else safety_margin
        available = limit - margin - system_prompt_tokens

        used = 0
        keep_from = len(messages)
        for index in range(len(messages) - 1, -1, -1):
            cost = self.count_message_tokens(messages[index])
            if used + cost > available:
                break
            used += cost
            keep_from = index

        if keep_from == len(messages):
            floor = _most_recent_user_message(messages)
            logger.warning(
                f"Token budget exhausted: newest message alone exceeds {limit - margin} tokens "
                f"(system prompt {system_prompt_tokens}); keeping a single message"
            )
            return [floor]

        if keep_from > 0:
            logger.debug(
                f"Trimmed {keep_from} oldest message(s) to fit {limit - margin} tokens "
                f"(kept {len(messages) - keep_from}, ~{used + system_prompt_tokens} tokens)"
            )
        return list(messages[keep_from:])

    def clear_cache(self) -> None:
        self._cache.clear()
        self._hits = 0
        self._misses = 0

    def cache_stats(self) -> dict:
        lookups = self._hits + self._misses
        return {
            "size": len(self._cache),
            "max_size": self._cache_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups, 3) if lookups else 0.0,
        }


def _most_recent_user_message(messages: Sequence[_HasText]) -> _HasText:
    for message in reversed(messages):
        if message.role == "user":
            return message
    return messages[-1]


def _estimate_word_tokens(word: str) -> int:
    length = len(word)
    if length <= 6:
        return 1
    if length <= 10:
        return 2
    return math.ceil(length / 6)


def _estimate_llama_tokens(text: str) -> int:
    normalized = _WHITESPACE.sub(" ", text.strip())
    if not normalized:
        return 1

    tokens = 0
    for segment in _SEGMENT.findall(normalized):
        if _SPECIAL_CHAR.fullmatch(segment):
            tokens += 1
        else:
            tokens += _estimate_word_tokens(segment)

    # SentencePiece folds most spaces into the following token.
    tokens += math.ceil(normalized.count(" ") * 0.3)
    return tokens


def _estimate_gpt_tokens(text: str) -> int:
    tokens = 0
    for word in text.split():
        tokens += 1 if len(word) <= 4 else math.ceil(len(word) / 4)
    tokens += math.ceil(len(_SPECIAL_CHAR.findall(text)) * 0.5)
    return tokens


def _estimate_generic_tokens(text: str) -> int:
    return math.ceil(len(text.split()) * 1.3)


_ESTIMATORS = {
    TokenizerModel.LLAMA3: _estimate_llama_tokens,
    TokenizerModel.GPT4: _estimate_gpt_tokens,
    TokenizerModel.GENERIC: _estimate_generic_tokens,
}
