from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Sequence, runtime_checkable

from step_sync_assistant.memory.models import USER, Message


class Sentiment(str, Enum):
    VERY_FRUSTRATED = "very_frustrated"
    FRUSTRATED = "frustrated"
    NEUTRAL = "neutral"
    SATISFIED = "satisfied"
    HAPPY = "happy"

    @property
    def is_frustrated(self) -> bool:
        return self in (Sentiment.VERY_FRUSTRATED, Sentiment.FRUSTRATED)


@dataclass(frozen=True)
class ConversationSnapshot:
    sentiment: Sentiment = Sentiment.NEUTRAL
    turn_count: int = 0
    message_count: int = 0
    last_mentioned_app: str | None = None
    last_mentioned_device: str | None = None
    last_mentioned_problem: str | None = None
    has_references: bool = False

    @property
    def is_frustrated(self) -> bool:
        return self.sentiment.is_frustrated


@runtime_checkable
class ContextAnalyzer(Protocol):
    def analyze(self, history: Sequence[Message], current_text: str | None = None) -> ConversationSnapshot: ...


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


_VERY_FRUSTRATED = _compile(
    r"!{2,}",
    r"\bso (annoying|frustrating|angry)\b",
    r"\b(hate|terrible|awful|useless|ridiculous)\b",
    r"\b(wtf|wth|omg)\b",
    r"\b(still|again|always) (not|broken|failing)\b",
)
_FRUSTRATED = _compile(
    r"\b(annoying|frustrating|frustrated|fed up)\b",
    r"\bwhy (isn'?t|doesn'?t|won'?t|can'?t)\b",
    r"\b(not working|broken|failing)\b.*!",
)
# Plain problem reports only read as frustration once they keep coming back.
_PROBLEM_WORDS = _compile(r"\b(not working|broken|failing|wrong|incorrect|missing|issue)\b")
_HAPPY = _compile(
    r"\b(perfect|awesome|amazing|excellent|fantastic|love it)\b",
    r"\b(thank you|thanks)\b.*(!|much)",
)
_SATISFIED = _compile(
    r"\b(works|working now|fixed|resolved|got it|makes sense|understand)\b",
    r"\b(thank|thanks|good|great)\b",
)

_REFERENCES = re.compile(r"\b(it|that|this|those|these|you said|earlier|before|again)\b", re.IGNORECASE)

_APP_MENTIONS = re.compile(r"\[APP\]|\b(fitness|health|step|tracking) app\b", re.IGNORECASE)
_DEVICE_MENTIONS = re.compile(r"\[DEVICE\]|\b(watch|phone|tracker|band|wearable)\b", re.IGNORECASE)
_PROBLEMS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bpermission", re.IGNORECASE), "permissions"),
    (re.compile(r"\bbattery|power sav", re.IGNORECASE), "battery optimization"),
    (re.compile(r"\b(wrong|incorrect|accura|duplicate|double)", re.IGNORECASE), "step count accuracy"),
    (re.compile(r"\b(missing|lost|disappeared)", re.IGNORECASE), "missing data"),
    (re.compile(r"\b(sync|update|show up|appear)", re.IGNORECASE), "syncing"),
)

_RECENT_USER_TURNS = 3


def detect_sentiment(text: str) -> Sentiment:
    if any(p.search(text) for p in _VERY_FRUSTRATED):
        return Sentiment.VERY_FRUSTRATED
    if any(p.search(text) for p in _FRUSTRATED):
        return Sentiment.FRUSTRATED
    if any(p.search(text) for p in _HAPPY):
        return Sentiment.HAPPY
    if any(p.search(text) for p in _SATISFIED):
        return Sentiment.SATISFIED
    return Sentiment.NEUTRAL


class LexicalContextAnalyzer:
    """Keyword-based sentiment and reference tracking over sanitized history."""

    def analyze(self, history: Sequence[Message], current_text: str | None = None) -> ConversationSnapshot:
        user_texts = [m.text for m in history if m.role == USER]
        if current_text is not None:
            user_texts.append(current_text)
        message_count = len(history) + (1 if current_text is not None else 0)

        if not user_texts:
            return ConversationSnapshot(message_count=message_count)

        return ConversationSnapshot(
            sentiment=self._sentiment(user_texts[-_RECENT_USER_TURNS:]),
            turn_count=len(user_texts),
            message_count=message_count,
            last_mentioned_app=self._last_match(user_texts, _APP_MENTIONS),
            last_mentioned_device=self._last_match(user_texts, _DEVICE_MENTIONS),
            last_mentioned_problem=self._last_problem(user_texts),
            has_references=bool(_REFERENCES.search(user_texts[-1])),
        )

    @staticmethod
    def _sentiment(recent: list[str]) -> Sentiment:
        latest = detect_sentiment(recent[-1])
        if latest != Sentiment.NEUTRAL:
            return latest
        problem_turns = sum(1 for text in recent if any(p.search(text) for p in _PROBLEM_WORDS))
        if problem_turns >= 2 and any(p.search(recent[-1]) for p in _PROBLEM_WORDS):
            return Sentiment.FRUSTRATED
        return Sentiment.NEUTRAL

    @staticmethod
    def _last_match(texts: list[str], pattern: re.Pattern[str]) -> str | None:
        for text in reversed(texts):
            match = pattern.search(text)
            if match:
                return match.group(0).lower() if not match.group(0).startswith("[") else match.group(0)
        return None

    @staticmethod
    def _last_problem(texts: list[str]) -> str | None:
        for text in reversed(texts):
            for pattern, label in _PROBLEMS:
                if pattern.search(text):
                    return label
        return None
