from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Sequence, runtime_checkable

from step_sync_assistant.memory.models import Message


class Intent(str, Enum):
    GREETING = "greeting"
    THANKS = "thanks"
    FAREWELL = "farewell"
    STEPS_NOT_SYNCING = "steps_not_syncing"
    SYNC_DELAYED = "sync_delayed"
    WRONG_STEP_COUNT = "wrong_step_count"
    DUPLICATE_STEPS = "duplicate_steps"
    DATA_MISSING = "data_missing"
    MULTIPLE_APPS_CONFLICT = "multiple_apps_conflict"
    BATTERY_OPTIMIZATION = "battery_optimization"
    PERMISSION_DENIED = "permission_denied"
    WANT_TO_GRANT_PERMISSION = "want_to_grant_permission"
    WHY_PERMISSION_NEEDED = "why_permission_needed"
    HEALTH_CONNECT_NOT_INSTALLED = "health_connect_not_installed"
    CHECKING_STATUS = "checking_status"
    NEED_HELP = "need_help"
    UNCLEAR = "unclear"


SIMPLE_INTENTS = frozenset({Intent.GREETING, Intent.THANKS, Intent.FAREWELL})
DIAGNOSTIC_INTENTS = frozenset(
    {
        Intent.STEPS_NOT_SYNCING,
        Intent.BATTERY_OPTIMIZATION,
        Intent.PERMISSION_DENIED,
        Intent.WRONG_STEP_COUNT,
    }
)

UNCLEAR_CONFIDENCE = 0.3


@dataclass(frozen=True)
class IntentResult:
    intent: Intent
    confidence: float


@runtime_checkable
class IntentClassifier(Protocol):
    def classify(self, text: str, history: Sequence[Message]) -> IntentResult: ...


# Most specific first; the first matching rule wins. Input is sanitized, so
# app names may already be the [app] placeholder.
_RULES: tuple[tuple[re.Pattern[str], Intent, float], ...] = tuple(
    (re.compile(pattern), intent, confidence)
    for pattern, intent, confidence in (
        (r"^(hi|hello|hey|good morning|good afternoon|good evening)\b", Intent.GREETING, 0.95),
        (r"\b(thank you|thanks|thx|appreciate it)\b", Intent.THANKS, 0.95),
        (r"\b(bye|goodbye|see you|that'?s all|all done)\b", Intent.FAREWELL, 0.92),
        (r"\b(why|what).*(need|want|require).*(permission|access)", Intent.WHY_PERMISSION_NEEDED, 0.90),
        (r"\b(grant|give|allow|enable).*(permission|access)", Intent.WANT_TO_GRANT_PERMISSION, 0.90),
        (r"\b(permission|access).*(denied|blocked|not allowed)", Intent.PERMISSION_DENIED, 0.90),
        (
            r"(\bhealth connect|\[app\]).*(not|n't|isn't).*(installed|available|found)",
            Intent.HEALTH_CONNECT_NOT_INSTALLED,
            0.90,
        ),
        (r"\b(steps?|step count).*(not|n't|isn't|aren't).*(sync|update|show|appear)", Intent.STEPS_NOT_SYNCING, 0.92),
        (r"\b(sync|update).*(slow|delay|late|behind)", Intent.SYNC_DELAYED, 0.88),
        (r"\b(wrong|incorrect|different|off).*(steps?|step count|count)\b", Intent.WRONG_STEP_COUNT, 0.90),
        (r"\b(duplicate|double|twice|multiple).*(steps?|count)\b", Intent.DUPLICATE_STEPS, 0.88),
        (r"\b(missing|lost|disappeared).*(steps?|data)\b", Intent.DATA_MISSING, 0.88),
        (r"\b(multiple|different|several).*(apps?|sources?|\[app\])", Intent.MULTIPLE_APPS_CONFLICT, 0.85),
        (r"\b(battery|power).*(saver|optimi[sz]ation|saving)", Intent.BATTERY_OPTIMIZATION, 0.85),
        (r"\b(check|test|verify|see).*(status|setup|working)\b", Intent.CHECKING_STATUS, 0.80),
        (r"\b(help|assist|support|problem|issue|fix)\b", Intent.NEED_HELP, 0.75),
        (r"\bsteps?\s+(not|no|dont|doesn'?t)\s*$", Intent.STEPS_NOT_SYNCING, 0.70),
        (r"\b(can'?t|cannot)\s+(see|find|view)\b", Intent.NEED_HELP, 0.68),
        (r"\b(not|n'?t|isn'?t|doesn'?t)\s+(work|working)\b", Intent.NEED_HELP, 0.65),
        (r"\bmy\s+steps?\s*(only|not)?$", Intent.NEED_HELP, 0.65),
        (r"\b(show|view|display|see)\s+(me|my)?\s*$", Intent.CHECKING_STATUS, 0.65),
        (r"\b(stpes|setp|stp|syc|halp|hlep)\b", Intent.NEED_HELP, 0.62),
        (r"^(steps?|sync|help|fix|check|status)$", Intent.NEED_HELP, 0.60),
        (r"^(why|how|what|where)\s*\??$", Intent.NEED_HELP, 0.55),
    )
)


class KeywordIntentClassifier:
    """Default regex classifier; swap in anything that satisfies IntentClassifier."""

    def classify(self, text: str, history: Sequence[Message] = ()) -> IntentResult:
        normalized = text.lower().strip()
        for pattern, intent, confidence in _RULES:
            if pattern.search(normalized):
                return IntentResult(intent=intent, confidence=confidence)
        return IntentResult(intent=Intent.UNCLEAR, confidence=UNCLEAR_CONFIDENCE)
