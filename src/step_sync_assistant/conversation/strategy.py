from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from step_sync_assistant.conversation.context import ConversationSnapshot
from step_sync_assistant.conversation.intents import DIAGNOSTIC_INTENTS, SIMPLE_INTENTS, Intent


class ResponseStrategy(str, Enum):
    TEMPLATE = "template"
    LLM = "llm"
    HYBRID = "hybrid"


_COSTS = {
    ResponseStrategy.TEMPLATE: 0.0,
    ResponseStrategy.HYBRID: 0.0002,
    ResponseStrategy.LLM: 0.0005,
}


@dataclass(frozen=True)
class StrategyConfig:
    template_confidence_threshold: float = 0.85
    multi_turn_threshold: int = 3
    frustration_overrides_simple_intents: bool = False


@dataclass(frozen=True)
class StrategyDecision:
    strategy: ResponseStrategy
    reasons: list[str] = field(default_factory=list)
    estimated_cost: float = 0.0


@dataclass(frozen=True)
class _Rule:
    name: str
    strategy: ResponseStrategy
    matches: Callable[[Intent, ConversationSnapshot, float], bool]
    reason: Callable[[Intent, ConversationSnapshot, float], str]


class ResponseStrategySelector:
    """Picks template, llm or hybrid generation. First matching rule wins."""

    def __init__(self, config: StrategyConfig | None = None):
        self._config = config or StrategyConfig()
        self._rules = self._build_rules()

    @property
    def config(self) -> StrategyConfig:
        return self._config

    def select_strategy(self, intent: Intent, context: ConversationSnapshot, confidence: float) -> StrategyDecision:
        decision, _ = self._evaluate(intent, context, confidence)
        logger.debug(
            f"Strategy {decision.strategy.value} for intent={intent.value} "
            f"confidence={confidence:.2f} sentiment={context.sentiment.value}"
        )
        return decision

    def estimated_cost(self, strategy: ResponseStrategy) -> float:
        return _COSTS[strategy]

    def explain_strategy(self, intent: Intent, context: ConversationSnapshot, confidence: float) -> dict[str, Any]:
        decision, evaluations = self._evaluate(intent, context, confidence)
        return {
            "strategy": decision.strategy.value,
            "reasons": list(decision.reasons),
            "estimated_cost": decision.estimated_cost,
            "intent": intent.value,
            "confidence": confidence,
            "sentiment": context.sentiment.value,
            "turn_count": context.turn_count,
            "evaluated_rules": evaluations,
        }

    def _evaluate(
        self, intent: Intent, context: ConversationSnapshot, confidence: float
    ) -> tuple[StrategyDecision, list[dict[str, Any]]]:
        evaluations: list[dict[str, Any]] = []
        for rule in self._rules:
            matched = rule.matches(intent, context, confidence)
            evaluations.append({"rule": rule.name, "matched": matched, "strategy": rule.strategy.value})
            if matched:
                decision = StrategyDecision(
                    strategy=rule.strategy,
                    reasons=[rule.reason(intent, context, confidence)],
                    estimated_cost=self.estimated_cost(rule.strategy),
                )
                return decision, evaluations
        raise AssertionError("default rule must always match")

    def _build_rules(self) -> list[_Rule]:
        cfg = self._config
        frustrated = _Rule(
            name="frustrated_user",
            strategy=ResponseStrategy.LLM,
            matches=lambda i, c, conf: c.is_frustrated,
            reason=lambda i, c, conf: f"User sentiment is {c.sentiment.value}; needs an empathetic reply",
        )
        simple = _Rule(
            name="simple_intent",
            strategy=ResponseStrategy.TEMPLATE,
            matches=lambda i, c, conf: i in SIMPLE_INTENTS,
            reason=lambda i, c, conf: f"Simple intent {i.value} is answered from a template",
        )
        rules = [frustrated, simple] if cfg.frustration_overrides_simple_intents else [simple, frustrated]
        rules += [
            _Rule(
                name="low_confidence",
                strategy=ResponseStrategy.LLM,
                matches=lambda i, c, conf: conf < cfg.template_confidence_threshold,
                reason=lambda i, c, conf: (
                    f"Intent confidence {conf:.2f} below threshold {cfg.template_confidence_threshold:.2f}"
                ),
            ),
            _Rule(
                name="diagnostic_intent",
                strategy=ResponseStrategy.HYBRID,
                matches=lambda i, c, conf: i in DIAGNOSTIC_INTENTS,
                reason=lambda i, c, conf: f"Diagnostic intent {i.value}: template plus a short generated note",
            ),
            _Rule(
                name="multi_turn",
                strategy=ResponseStrategy.LLM,
                matches=lambda i, c, conf: c.turn_count > cfg.multi_turn_threshold,
                reason=lambda i, c, conf: (
                    f"Conversation has {c.turn_count} turns (> {cfg.multi_turn_threshold}); needs context"
                ),
            ),
            _Rule(
                name="default",
                strategy=ResponseStrategy.LLM,
                matches=lambda i, c, conf: True,
                reason=lambda i, c, conf: "Default to a generated reply",
            ),
        ]
        return rules
