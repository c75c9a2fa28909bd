from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass
from typing import Any

from loguru import logger

from step_sync_assistant.circuit_breaker import CircuitBreaker, CircuitOpenError
from step_sync_assistant.conversation import templates
from step_sync_assistant.conversation.context import ContextAnalyzer, ConversationSnapshot, LexicalContextAnalyzer
from step_sync_assistant.conversation.intents import Intent, IntentClassifier, KeywordIntentClassifier
from step_sync_assistant.conversation.strategy import ResponseStrategy, ResponseStrategySelector, StrategyDecision
from step_sync_assistant.memory.manager import ConversationMemoryManager
from step_sync_assistant.memory.models import ASSISTANT, USER, Message
from step_sync_assistant.privacy.phi_sanitizer import PhiSanitizer, SanitizationError, SanitizationResult
from step_sync_assistant.provider import LLMProvider, RemoteCallError
from step_sync_assistant.system_prompt import build_system_prompt, format_transcript
from step_sync_assistant.token_counter import TokenCounter


@dataclass(frozen=True)
class OrchestratorConfig:
    remote_timeout_seconds: float = 10.0


@dataclass(frozen=True)
class AssistantReply:
    text: str
    strategy: ResponseStrategy
    intent: Intent
    used_fallback: bool
    decision: StrategyDecision
    sanitization: SanitizationResult


class ConversationOrchestrator:
    """Sanitize, decide, generate, remember.

    The remote call runs outside every session lock; only the two appends
    (user message, assistant reply) take the session lock. A failed or
    rejected remote call degrades to the intent's template.
    """

    def __init__(
        self,
        *,
        sanitizer: PhiSanitizer,
        memory: ConversationMemoryManager,
        selector: ResponseStrategySelector,
        token_counter: TokenCounter,
        breaker: CircuitBreaker,
        provider: LLMProvider | None = None,
        classifier: IntentClassifier | None = None,
        analyzer: ContextAnalyzer | None = None,
        config: OrchestratorConfig | None = None,
    ):
        self._sanitizer = sanitizer
        self._memory = memory
        self._selector = selector
        self._token_counter = token_counter
        self._breaker = breaker
        self._provider = provider
        self._classifier = classifier or KeywordIntentClassifier()
        self._analyzer = analyzer or LexicalContextAnalyzer()
        self._config = config or OrchestratorConfig()
        self._counters = {
            "total": 0,
            ResponseStrategy.TEMPLATE.value: 0,
            ResponseStrategy.LLM.value: 0,
            ResponseStrategy.HYBRID.value: 0,
            "fallbacks": 0,
            "blocked_inputs": 0,
        }

    @property
    def memory(self) -> ConversationMemoryManager:
        return self._memory

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def respond(
        self,
        session_id: str,
        user_text: str,
        diagnostics: Mapping[str, object] | None = None,
    ) -> AssistantReply:
        try:
            sanitization = self._sanitizer.sanitize(user_text)
        except SanitizationError:
            self._counters["blocked_inputs"] += 1
            logger.warning(f"Session {session_id}: input blocked by sanitizer; nothing stored or sent")
            raise
        sanitized = sanitization.sanitized_text

        history = await self._memory.get_history(session_id)
        intent_result = self._classifier.classify(sanitized, history)
        snapshot = self._analyzer.analyze(history, sanitized)
        decision = self._selector.select_strategy(intent_result.intent, snapshot, intent_result.confidence)

        user_message = await self._memory.add_message(session_id, sanitized, USER)

        used_fallback = False
        if decision.strategy == ResponseStrategy.TEMPLATE:
            text = templates.render(intent_result.intent)
        else:
            hybrid = decision.strategy == ResponseStrategy.HYBRID
            generated = await self._generate(
                session_id, [*history, user_message], snapshot, diagnostics, hybrid=hybrid
            )
            if generated is None:
                used_fallback = True
                text = templates.render(intent_result.intent)
            elif hybrid:
                text = f"{templates.render(intent_result.intent)}\n\n{generated}"
            else:
                text = generated

        await self._memory.add_message(session_id, self._sanitizer.redact(text), ASSISTANT)

        self._counters["total"] += 1
        self._counters[decision.strategy.value] += 1
        if used_fallback:
            self._counters["fallbacks"] += 1
        logger.info(
            f"Session {session_id}: intent={intent_result.intent.value} "
            f"strategy={decision.strategy.value} fallback={used_fallback} "
            f"phi_replacements={sanitization.replacement_count}"
        )
        return AssistantReply(
            text=text,
            strategy=decision.strategy,
            intent=intent_result.intent,
            used_fallback=used_fallback,
            decision=decision,
            sanitization=sanitization,
        )

    async def _generate(
        self,
        session_id: str,
        messages: Sequence[Message],
        snapshot: ConversationSnapshot,
        diagnostics: Mapping[str, object] | None,
        *,
        hybrid: bool,
    ) -> str | None:
        if self._provider is None:
            logger.info(f"Session {session_id}: no remote provider configured; using template")
            return None

        provider = self._provider
        system_prompt = build_system_prompt(snapshot, diagnostics, hybrid=hybrid)
        system_tokens = self._token_counter.count_tokens(system_prompt)
        trimmed = self._token_counter.trim_to_fit(messages, system_prompt_tokens=system_tokens)
        prompt = format_transcript(trimmed)
        timeout = self._config.remote_timeout_seconds

        try:
            response = await self._breaker.execute(
                lambda: provider.call(prompt, system_prompt, timeout),
                timeout=timeout,
            )
        except CircuitOpenError as ex:
            logger.info(f"Session {session_id}: circuit open, retry after {ex.retry_after:.0f}s; using template")
            return None
        except RemoteCallError as ex:
            logger.warning(f"Session {session_id}: remote call failed ({ex}); using template")
            return None
        except TimeoutError:
            logger.warning(f"Session {session_id}: remote call timed out after {timeout:.1f}s; using template")
            return None
        except Exception as ex:
            logger.warning(f"Session {session_id}: remote call raised {type(ex).__name__}; using template")
            return None

        logger.debug(
            f"Session {session_id}: generated {response.token_count} tokens in {response.latency:.2f}s "
            f"from {len(trimmed)}/{len(messages)} messages"
        )
        return response.content

    def get_metrics(self) -> dict[str, Any]:
        return {
            "responses": dict(self._counters),
            "circuit_breaker": self._breaker.get_metrics(),
            "memory": asdict(self._memory.get_stats()),
            "locks": self._memory.get_lock_stats(),
            "token_cache": self._token_counter.cache_stats(),
        }
