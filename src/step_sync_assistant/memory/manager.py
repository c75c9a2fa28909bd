from __future__ import annotations

import asyncio
import math
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from loguru import logger

from step_sync_assistant.memory.models import ROLES, USER, MemoryStats, Message, Session, utc_now
from step_sync_assistant.memory.persistence import ConversationPersistence, PersistenceError
from step_sync_assistant.token_counter import TokenCounter

SYNC = "sync"
BACKGROUND = "background"


@dataclass(frozen=True)
class MemoryConfig:
    max_messages: int = 20
    persistence_mode: str = SYNC
    session_ttl_seconds: float = 86400.0
    capacity_warning_ratio: float = 0.8

    def __post_init__(self) -> None:
        if self.max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        if self.persistence_mode not in (SYNC, BACKGROUND):
            raise ValueError(f"Unknown persistence mode: {self.persistence_mode}")


class ConversationMemoryManager:
    """Bounded per-session message history with a durable write-through hook.

    Every read and write of one session runs under that session's lock, so
    appends land in arrival order. The registry lock is held only while the
    lock map itself is looked up or changed. A lock is dropped once nobody
    holds or waits on it and its session is no longer in memory.
    """

    def __init__(
        self,
        persistence: ConversationPersistence | None = None,
        config: MemoryConfig | None = None,
        *,
        token_counter: TokenCounter | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._persistence = persistence
        self._config = config or MemoryConfig()
        self._token_counter = token_counter
        self._clock = clock

        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._registry_lock = asyncio.Lock()
        # Session ids whose durable history has already been consulted.
        self._hydrated: set[str] = set()
        self._pending_writes: dict[str, set[asyncio.Task]] = {}
        self._persistence_failures = 0

    @property
    def config(self) -> MemoryConfig:
        return self._config

    async def add_message(self, session_id: str, content: str, role: str = USER) -> Message:
        if role not in ROLES:
            raise ValueError(f"Unsupported role: {role}")

        async with self._session_lock(session_id):
            session = await self._load_session(session_id, create=True)
            now = self._clock()
            message = Message(
                id=str(uuid4()),
                session_id=session_id,
                role=role,
                text=content,
                timestamp=now,
                token_count=self._count_tokens(content),
            )
            session.messages.append(message)
            session.last_activity = now
            self._evict_overflow(session)
            self._check_capacity(session)

            await self._persist(session_id, message)
        return message

    async def get_history(self, session_id: str) -> list[Message]:
        async with self._session_lock(session_id):
            session = await self._load_session(session_id, create=False)
            return list(session.messages) if session is not None else []

    async def get_recent_messages(self, session_id: str, count: int) -> list[Message]:
        if count <= 0:
            return []
        history = await self.get_history(session_id)
        return history[-count:]

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def active_session_ids(self) -> list[str]:
        return sorted(self._sessions)

    async def clear_session(self, session_id: str) -> bool:
        async with self._session_lock(session_id):
            # A queued background write would otherwise recreate the session after the delete.
            pending = list(self._pending_writes.get(session_id, ()))
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            existed = self._sessions.pop(session_id, None) is not None
            self._hydrated.discard(session_id)
            if self._persistence is not None:
                try:
                    await self._persistence.delete_session(session_id)
                except PersistenceError as ex:
                    self._record_persistence_failure(f"delete of session {session_id}", ex)
        if existed:
            logger.info(f"Cleared session {session_id}")
        return existed

    async def clear_all_sessions(self) -> int:
        async with self._registry_lock:
            session_ids = list(self._sessions)
        cleared = 0
        for session_id in session_ids:
            if await self.clear_session(session_id):
                cleared += 1
        return cleared

    async def expire_idle_sessions(self) -> list[str]:
        """Drop sessions idle for longer than the TTL from memory.

        Durable history is kept; a later access hydrates it again.
        """
        cutoff = self._clock() - timedelta(seconds=self._config.session_ttl_seconds)
        async with self._registry_lock:
            candidates = [sid for sid, s in self._sessions.items() if s.last_activity < cutoff]

        expired: list[str] = []
        for session_id in candidates:
            async with self._session_lock(session_id):
                session = self._sessions.get(session_id)
                if session is None or session.last_activity >= cutoff:
                    continue
                del self._sessions[session_id]
                self._hydrated.discard(session_id)
                expired.append(session_id)

        if expired:
            logger.info(f"Expired {len(expired)} idle session(s)")
        return expired

    async def flush(self) -> None:
        while self._pending_writes:
            await asyncio.gather(*[task for tasks in self._pending_writes.values() for task in tasks])

    def get_stats(self) -> MemoryStats:
        messages = [m for s in self._sessions.values() for m in s.messages]
        user_messages = sum(1 for m in messages if m.role == USER)
        activities = [s.last_activity for s in self._sessions.values()]
        total_sessions = len(self._sessions)
        return MemoryStats(
            total_sessions=total_sessions,
            total_messages=len(messages),
            user_messages=user_messages,
            assistant_messages=len(messages) - user_messages,
            estimated_tokens=sum(m.token_count for m in messages),
            estimated_bytes=sum(len(m.text.encode("utf-8")) for m in messages),
            average_messages_per_session=round(len(messages) / total_sessions, 2) if total_sessions else 0.0,
            oldest_activity=min(activities) if activities else None,
            newest_activity=max(activities) if activities else None,
        )

    def get_session_usage(self) -> dict[str, dict[str, Any]]:
        usage: dict[str, dict[str, Any]] = {}
        for session_id, session in sorted(self._sessions.items()):
            count = len(session.messages)
            ratio = count / self._config.max_messages
            usage[session_id] = {
                "messages": count,
                "max_messages": self._config.max_messages,
                "capacity_pct": round(ratio * 100, 1),
                "near_capacity": ratio >= self._config.capacity_warning_ratio,
                "created_at": session.created_at.isoformat(timespec="seconds"),
                "last_activity": session.last_activity.isoformat(timespec="seconds"),
            }
        return usage

    def get_lock_stats(self) -> dict[str, Any]:
        locked = sorted(sid for sid, lock in self._locks.items() if lock.locked())
        return {
            "total_locks": len(self._locks),
            "active_locks": len(locked),
            "locked_sessions": locked,
            "registry_locked": self._registry_lock.locked(),
            "pending_writes": sum(len(tasks) for tasks in self._pending_writes.values()),
            "persistence_failures": self._persistence_failures,
        }

    @asynccontextmanager
    async def _session_lock(self, session_id: str) -> AsyncIterator[None]:
        async with self._registry_lock:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[session_id] = lock
            self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            async with self._registry_lock:
                users = self._lock_users[session_id] - 1
                if users:
                    self._lock_users[session_id] = users
                else:
                    del self._lock_users[session_id]
                    if session_id not in self._sessions:
                        del self._locks[session_id]

    async def _load_session(self, session_id: str, *, create: bool) -> Session | None:
        session = self._sessions.get(session_id)
        if session is not None:
            return session

        messages: list[Message] = []
        if self._persistence is not None and session_id not in self._hydrated:
            self._hydrated.add(session_id)
            try:
                messages = await self._persistence.load_messages(session_id)
            except PersistenceError as ex:
                self._record_persistence_failure(f"load of session {session_id}", ex)
            if messages:
                messages = messages[-self._config.max_messages :]
                logger.debug(f"Hydrated session {session_id} with {len(messages)} message(s)")

        if not messages and not create:
            return None

        now = self._clock()
        session = Session(
            id=session_id,
            created_at=messages[0].timestamp if messages else now,
            last_activity=messages[-1].timestamp if messages else now,
            messages=messages,
        )
        self._sessions[session_id] = session
        return session

    async def _persist(self, session_id: str, message: Message) -> None:
        if self._persistence is None:
            return
        if self._config.persistence_mode == BACKGROUND:
            task = asyncio.create_task(self._save(session_id, message))
            self._pending_writes.setdefault(session_id, set()).add(task)
            task.add_done_callback(lambda done: self._forget_write(session_id, done))
            return
        await self._save(session_id, message)

    async def _save(self, session_id: str, message: Message) -> None:
        try:
            await self._persistence.save_message(session_id, message)
        except PersistenceError as ex:
            self._record_persistence_failure(f"save of message {message.id}", ex)

    def _forget_write(self, session_id: str, task: asyncio.Task) -> None:
        tasks = self._pending_writes.get(session_id)
        if tasks is not None:
            tasks.discard(task)
            if not tasks:
                del self._pending_writes[session_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background write for session {session_id} failed: {task.exception()!r}")

    def _evict_overflow(self, session: Session) -> None:
        overflow = len(session.messages) - self._config.max_messages
        if overflow > 0:
            del session.messages[:overflow]
            logger.debug(f"Evicted {overflow} oldest message(s) from session {session.id}")

    def _check_capacity(self, session: Session) -> None:
        threshold = math.ceil(self._config.max_messages * self._config.capacity_warning_ratio)
        if len(session.messages) == threshold and threshold < self._config.max_messages:
            logger.info(
                f"Session {session.id} at {len(session.messages)}/{self._config.max_messages} messages; "
                "oldest messages will be evicted"
            )

    def _count_tokens(self, text: str) -> int:
        if self._token_counter is None:
            return 0
        return self._token_counter.count_tokens(text)

    def _record_persistence_failure(self, operation: str, error: PersistenceError) -> None:
        self._persistence_failures += 1
        logger.warning(f"Persistence failed for {operation}: {error}")
