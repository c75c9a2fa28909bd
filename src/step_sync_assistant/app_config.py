from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from step_sync_assistant.circuit_breaker import CircuitBreakerConfig
from step_sync_assistant.conversation.strategy import StrategyConfig
from step_sync_assistant.memory.manager import MemoryConfig
from step_sync_assistant.orchestrator import OrchestratorConfig
from step_sync_assistant.token_counter import TokenBudget, TokenizerModel


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str


@dataclass
class AppConfig:
    provider_name: str
    model: str
    max_tokens: int
    temperature: float
    tokenizer_model: TokenizerModel
    token_budget: TokenBudget
    strict_sanitization: bool
    extra_app_names: tuple[str, ...]
    extra_device_names: tuple[str, ...]
    circuit_breaker: CircuitBreakerConfig
    strategy: StrategyConfig
    memory: MemoryConfig
    orchestrator: OrchestratorConfig
    memory_enabled: bool
    memory_db_path: str
    memory_max_sessions: int
    memory_max_messages_per_session: int
    memory_retention_days: int
    session_id: str | None
    log_level: str
    log_consumers: list | None


_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS = frozenset({"0", "false", "no", "off"})

_API_KEY_VARS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


def load_json_config(path: str | Path | None = None) -> dict:
    """Read ``config.json`` from the working directory; a missing file means defaults."""
    config_path = Path(path) if path is not None else Path.cwd() / "config.json"
    if not config_path.is_file():
        return {}
    return json.loads(config_path.read_text(encoding="utf-8"))


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS or word in _FALSE_WORDS:
            return word in _TRUE_WORDS
    return bool(value)


def _to_names(value: object) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    return tuple(str(v).strip() for v in value if str(v).strip())


def parse_app_config(config: dict) -> AppConfig:
    breaker = config.get("CircuitBreaker", {})
    budget = config.get("TokenBudget", {})
    strategy = config.get("Strategy", {})
    memory = config.get("Memory", {})
    return AppConfig(
        provider_name=config.get("Provider", "anthropic").strip().lower(),
        model=config.get("Model", "claude-haiku-4-5"),
        max_tokens=int(config.get("MaxTokens", 300)),
        temperature=float(config.get("Temperature", 0.7)),
        tokenizer_model=TokenizerModel(str(config.get("TokenizerModel", "llama3")).lower()),
        token_budget=TokenBudget(
            context_limit=int(budget.get("ContextLimit", 8000)),
            safety_margin=int(budget.get("SafetyMargin", 500)),
            per_message_overhead=int(budget.get("PerMessageOverhead", 4)),
        ),
        strict_sanitization=_to_bool(config.get("StrictSanitization", True), default=True),
        extra_app_names=_to_names(config.get("ExtraAppNames")),
        extra_device_names=_to_names(config.get("ExtraDeviceNames")),
        circuit_breaker=CircuitBreakerConfig(
            failure_threshold=int(breaker.get("FailureThreshold", 5)),
            success_threshold=int(breaker.get("SuccessThreshold", 2)),
            cooldown_seconds=float(breaker.get("CooldownSeconds", 60.0)),
            failure_window_seconds=float(breaker.get("FailureWindowSeconds", 60.0)),
        ),
        strategy=StrategyConfig(
            template_confidence_threshold=float(strategy.get("TemplateConfidenceThreshold", 0.85)),
            multi_turn_threshold=int(strategy.get("MultiTurnThreshold", 3)),
            frustration_overrides_simple_intents=_to_bool(
                strategy.get("FrustrationOverridesSimpleIntents", False), default=False
            ),
        ),
        memory=MemoryConfig(
            max_messages=int(memory.get("MaxMessages", 20)),
            persistence_mode=str(memory.get("PersistenceMode", "sync")).strip().lower(),
            session_ttl_seconds=float(memory.get("SessionTtlSeconds", 86400)),
            capacity_warning_ratio=float(memory.get("CapacityWarningRatio", 0.8)),
        ),
        orchestrator=OrchestratorConfig(
            remote_timeout_seconds=float(config.get("RemoteTimeoutSeconds", 10.0)),
        ),
        memory_enabled=_to_bool(config.get("MemoryEnabled", True), default=True),
        memory_db_path=str(config.get("MemoryDbPath", ".step_sync/memory.db")),
        memory_max_sessions=int(config.get("MemoryMaxSessions", 200)),
        memory_max_messages_per_session=int(config.get("MemoryMaxMessagesPerSession", 500)),
        memory_retention_days=int(config.get("MemoryRetentionDays", 30)),
        session_id=str(config.get("SessionId", "")).strip() or None,
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env(provider_name: str) -> RuntimeEnv:
    env_var = _API_KEY_VARS.get(provider_name, _API_KEY_VARS["anthropic"])
    return RuntimeEnv(provider_api_key=os.environ.get(env_var, ""), provider_env_var=env_var)
