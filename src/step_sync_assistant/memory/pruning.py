from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from loguru import logger

from step_sync_assistant.memory.store import MemoryStore


@dataclass(frozen=True)
class PruneReport:
    expired_sessions: int = 0
    trimmed_messages: int = 0
    overflow_sessions: int = 0

    @property
    def total(self) -> int:
        return self.expired_sessions + self.trimmed_messages + self.overflow_sessions


def prune_memory(
    store: MemoryStore,
    *,
    max_sessions: int,
    max_messages_per_session: int,
    retention_days: int,
    now: datetime | None = None,
) -> PruneReport:
    """Apply the durable retention policy in one transaction.

    Sessions idle past ``retention_days`` go first, then every session is cut
    down to its newest ``max_messages_per_session`` rows, then only the
    ``max_sessions`` most recently updated sessions are kept. A limit of zero
    disables that step.
    """
    cutoff = ((now or datetime.now(UTC)) - timedelta(days=max(1, retention_days))).isoformat()

    with store.transaction():
        report = PruneReport(
            expired_sessions=_expire_idle(store, cutoff),
            trimmed_messages=_trim_messages(store, max_messages_per_session) if max_messages_per_session > 0 else 0,
            overflow_sessions=_drop_overflow(store, max_sessions) if max_sessions > 0 else 0,
        )

    if report.total:
        logger.info(
            f"Memory pruned: expired_sessions={report.expired_sessions}, "
            f"trimmed_messages={report.trimmed_messages}, overflow_sessions={report.overflow_sessions}"
        )
    return report


def _expire_idle(store: MemoryStore, cutoff: str) -> int:
    return store.execute("DELETE FROM sessions WHERE updated_at < ?", (cutoff,)).rowcount


def _trim_messages(store: MemoryStore, keep: int) -> int:
    return store.execute(
        """
        DELETE FROM messages
        WHERE id IN (
            SELECT id FROM (
                SELECT id, ROW_NUMBER() OVER (PARTITION BY session_id ORDER BY seq DESC) AS recency
                FROM messages
            )
            WHERE recency > ?
        )
        """,
        (keep,),
    ).rowcount


def _drop_overflow(store: MemoryStore, keep: int) -> int:
    return store.execute(
        """
        DELETE FROM sessions
        WHERE id NOT IN (
            SELECT id FROM sessions ORDER BY updated_at DESC LIMIT ?
        )
        """,
        (keep,),
    ).rowcount
