from __future__ import annotations

import json
from collections.abc import Mapping

from loguru import logger

from step_sync_assistant.circuit_breaker import CircuitPhase
from step_sync_assistant.commands.router import CommandRouter
from step_sync_assistant.orchestrator import ConversationOrchestrator
from step_sync_assistant.privacy.phi_sanitizer import SanitizationError


class ChatSession:
    """One interactive conversation: local slash commands plus orchestrated replies."""

    _LINE_PREFIX = "assistant> "
    _DEFAULT_HISTORY = 10

    def __init__(
        self,
        orchestrator: ConversationOrchestrator,
        session_id: str,
        *,
        diagnostics: Mapping[str, object] | None = None,
    ):
        self._orchestrator = orchestrator
        self._session_id = session_id
        self._diagnostics = dict(diagnostics) if diagnostics else None
        self._command_router = CommandRouter(
            on_help=self._on_help,
            on_stats=self._on_stats,
            on_history=self._on_history,
            on_clear=self._on_clear,
            on_breaker=self._on_breaker,
            on_unknown=self._on_unknown_command,
        )

    @property
    def session_id(self) -> str:
        return self._session_id

    async def run(self, user_message: str) -> None:
        if await self._command_router.try_handle(user_message):
            return

        try:
            reply = await self._orchestrator.respond(self._session_id, user_message, self._diagnostics)
        except SanitizationError as ex:
            print(
                f"{self._LINE_PREFIX}I couldn't send that because it still looks like it contains "
                f"personal details ({ex.category.lower()}). Please rephrase without dates, "
                "contact details or exact numbers."
            )
            return

        print(f"{self._LINE_PREFIX}{reply.text}")
        if reply.used_fallback:
            logger.debug(f"Session {self._session_id}: reply served from template fallback")

    async def _on_help(self) -> None:
        for line in (
            "Commands:",
            "  /help                 Show this help",
            "  /stats                Show response, breaker and memory metrics",
            "  /history [n]          Show the last n stored messages (default 10)",
            "  /clear                Forget this conversation",
            "  /breaker [status|reset|open|close]",
            "                        Inspect or override the remote circuit breaker",
            "  exit | quit           Leave",
        ):
            print(f"{self._LINE_PREFIX}{line}")

    async def _on_stats(self) -> None:
        metrics = self._orchestrator.get_metrics()
        print(f"{self._LINE_PREFIX}{json.dumps(metrics, indent=2, default=str)}")

    async def _on_history(self, trimmed: str) -> None:
        parts = trimmed.split()
        count = self._DEFAULT_HISTORY
        if len(parts) > 1:
            try:
                count = max(1, int(parts[1]))
            except ValueError:
                print(f"{self._LINE_PREFIX}Usage: /history [n]")
                return

        messages = await self._orchestrator.memory.get_recent_messages(self._session_id, count)
        if not messages:
            print(f"{self._LINE_PREFIX}No messages yet.")
            return
        for message in messages:
            stamp = message.timestamp.isoformat(timespec="seconds")
            print(f"{self._LINE_PREFIX}[{stamp}] {message.role}: {message.text}")

    async def _on_clear(self) -> None:
        await self._orchestrator.memory.clear_session(self._session_id)
        print(f"{self._LINE_PREFIX}Conversation cleared.")

    async def _on_breaker(self, trimmed: str) -> None:
        parts = trimmed.split()
        action = parts[1].lower() if len(parts) > 1 else "status"
        breaker = self._orchestrator.breaker

        if action == "reset":
            breaker.reset()
        elif action == "open":
            breaker.force_open()
        elif action == "close":
            breaker.force_closed()
        elif action != "status":
            print(f"{self._LINE_PREFIX}Usage: /breaker [status|reset|open|close]")
            return

        state = breaker.state
        line = f"Circuit '{breaker.name}': {state.phase.value} (recent failures: {state.failure_count})"
        if state.phase == CircuitPhase.HALF_OPEN:
            line += f", probe successes: {state.success_count}"
        print(f"{self._LINE_PREFIX}{line}")

    def _on_unknown_command(self, trimmed: str) -> None:
        print(f"{self._LINE_PREFIX}Unknown local command: {trimmed}")
