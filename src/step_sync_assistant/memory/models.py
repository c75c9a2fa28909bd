from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

USER = "user"
ASSISTANT = "assistant"
ROLES = frozenset({USER, ASSISTANT})


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Message:
    id: str
    session_id: str
    role: str
    text: str
    timestamp: datetime
    token_count: int = 0


@dataclass
class Session:
    id: str
    created_at: datetime
    last_activity: datetime
    messages: list[Message] = field(default_factory=list)


@dataclass(frozen=True)
class MemoryStats:
    total_sessions: int
    total_messages: int
    user_messages: int
    assistant_messages: int
    estimated_tokens: int
    estimated_bytes: int
    average_messages_per_session: float
    oldest_activity: datetime | None
    newest_activity: datetime | None
