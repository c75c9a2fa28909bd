from step_sync_assistant.conversation.context import (
    ContextAnalyzer,
    ConversationSnapshot,
    LexicalContextAnalyzer,
    Sentiment,
)
from step_sync_assistant.conversation.intents import Intent, IntentClassifier, IntentResult, KeywordIntentClassifier
from step_sync_assistant.conversation.strategy import (
    ResponseStrategy,
    ResponseStrategySelector,
    StrategyConfig,
    StrategyDecision,
)

__all__ = [
    "ContextAnalyzer",
    "ConversationSnapshot",
    "Intent",
    "IntentClassifier",
    "IntentResult",
    "KeywordIntentClassifier",
    "LexicalContextAnalyzer",
    "ResponseStrategy",
    "ResponseStrategySelector",
    "Sentiment",
    "StrategyConfig",
    "StrategyDecision",
]
