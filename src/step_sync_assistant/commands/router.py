from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_stats: Callable[[], Awaitable[None]],
        on_history: Callable[[str], Awaitable[None]],
        on_clear: Callable[[], Awaitable[None]],
        on_breaker: Callable[[str], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_stats = on_stats
        self._on_history = on_history
        self._on_clear = on_clear
        self._on_breaker = on_breaker
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command, _, _ = trimmed.partition(" ")
        if command == "/help":
            await self._on_help()
            return True
        if command == "/stats":
            await self._on_stats()
            return True
        if command == "/history":
            await self._on_history(trimmed)
            return True
        if command == "/clear":
            await self._on_clear()
            return True
        if command == "/breaker":
            await self._on_breaker(trimmed)
            return True

        self._on_unknown(trimmed)
        return True
