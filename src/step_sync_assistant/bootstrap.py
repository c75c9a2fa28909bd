from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from loguru import logger

from step_sync_assistant.app_config import AppConfig, RuntimeEnv
from step_sync_assistant.chat_session import ChatSession
from step_sync_assistant.circuit_breaker import CircuitBreakerRegistry
from step_sync_assistant.conversation.context import LexicalContextAnalyzer
from step_sync_assistant.conversation.intents import KeywordIntentClassifier
from step_sync_assistant.conversation.strategy import ResponseStrategySelector
from step_sync_assistant.logging_config import setup_logging
from step_sync_assistant.memory import ConversationMemoryManager, MemoryStore, SqlitePersistence, prune_memory
from step_sync_assistant.orchestrator import ConversationOrchestrator
from step_sync_assistant.privacy.phi_sanitizer import PhiSanitizer
from step_sync_assistant.provider import LLMProvider, create_provider
from step_sync_assistant.token_counter import TokenCounter


@dataclass
class AppRuntime:
    orchestrator: ConversationOrchestrator
    chat: ChatSession
    memory: ConversationMemoryManager
    memory_store: MemoryStore | None
    breakers: CircuitBreakerRegistry
    provider: LLMProvider | None
    log_descriptions: list[str]

    async def close(self) -> None:
        await self.memory.flush()
        if self.memory_store is not None:
            self.memory_store.close()


async def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    sanitizer = PhiSanitizer(
        strict=app.strict_sanitization,
        extra_app_names=app.extra_app_names,
        extra_device_names=app.extra_device_names,
    )
    log_descriptions = setup_logging(
        level=app.log_level,
        consumers=app.log_consumers,
        scrubber=sanitizer.scrub_names,
    )

    token_counter = TokenCounter(app.token_budget, app.tokenizer_model)

    memory_store: MemoryStore | None = None
    persistence: SqlitePersistence | None = None
    if app.memory_enabled:
        db_path = Path(app.memory_db_path)
        if not db_path.is_absolute():
            db_path = Path.cwd() / db_path
        memory_store = MemoryStore(str(db_path))
        prune_memory(
            memory_store,
            max_sessions=app.memory_max_sessions,
            max_messages_per_session=app.memory_max_messages_per_session,
            retention_days=app.memory_retention_days,
        )
        persistence = SqlitePersistence(memory_store)

    memory = ConversationMemoryManager(persistence, app.memory, token_counter=token_counter)

    breakers = CircuitBreakerRegistry(app.circuit_breaker)
    breaker = breakers.get(app.provider_name)

    provider: LLMProvider | None = None
    if env.provider_api_key:
        provider = create_provider(
            app.provider_name,
            env.provider_api_key,
            model=app.model,
            max_tokens=app.max_tokens,
            temperature=app.temperature,
        )
    else:
        logger.warning(f"{env.provider_env_var} is not set; replies will come from templates only")

    orchestrator = ConversationOrchestrator(
        sanitizer=sanitizer,
        memory=memory,
        selector=ResponseStrategySelector(app.strategy),
        token_counter=token_counter,
        breaker=breaker,
        provider=provider,
        classifier=KeywordIntentClassifier(),
        analyzer=LexicalContextAnalyzer(),
        config=app.orchestrator,
    )

    session_id = app.session_id or str(uuid4())
    return AppRuntime(
        orchestrator=orchestrator,
        chat=ChatSession(orchestrator, session_id),
        memory=memory,
        memory_store=memory_store,
        breakers=breakers,
        provider=provider,
        log_descriptions=log_descriptions,
    )
