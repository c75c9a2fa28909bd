from __future__ import annotations

from collections.abc import Mapping, Sequence

from step_sync_assistant.conversation.context import ConversationSnapshot
from step_sync_assistant.memory.models import Message

_BASE_PROMPT = """\
You are Step Sync Assistant, a friendly support agent that helps people fix problems \
with step tracking: steps not syncing, wrong step counts, missing data, permissions \
and battery optimization.

Personal details in the conversation have been replaced with placeholders such as \
[NUMBER], [TIMEFRAME], [APP] and [DEVICE]. Refer to them generically and never try \
to guess what they stand for.

Keep replies short and practical: two to four sentences, one concrete next step at a time."""

_HYBRID_INSTRUCTIONS = """\
A standard troubleshooting answer has already been shown to the user. Add one or two \
sentences that tailor it to this conversation. Do not repeat the standard answer."""

_FRUSTRATED_INSTRUCTIONS = """\
The user sounds frustrated. Acknowledge it briefly and get straight to the most likely fix."""


def build_system_prompt(
    snapshot: ConversationSnapshot,
    diagnostics: Mapping[str, object] | None = None,
    *,
    hybrid: bool = False,
) -> str:
    sections = [_BASE_PROMPT]

    context_lines = [f"User sentiment: {snapshot.sentiment.value}", f"User turns so far: {snapshot.turn_count}"]
    if snapshot.last_mentioned_problem:
        context_lines.append(f"Current problem: {snapshot.last_mentioned_problem}")
    if snapshot.last_mentioned_app:
        context_lines.append(f"App mentioned: {snapshot.last_mentioned_app}")
    if snapshot.last_mentioned_device:
        context_lines.append(f"Device mentioned: {snapshot.last_mentioned_device}")
    if snapshot.has_references:
        context_lines.append("The latest message refers back to earlier parts of the conversation.")
    sections.append("Conversation context:\n" + "\n".join(f"- {line}" for line in context_lines))

    if diagnostics:
        sections.append("Diagnostic results:\n" + "\n".join(f"- {key}: {value}" for key, value in diagnostics.items()))

    if snapshot.is_frustrated:
        sections.append(_FRUSTRATED_INSTRUCTIONS)
    if hybrid:
        sections.append(_HYBRID_INSTRUCTIONS)

    return "\n\n".join(sections)


def format_transcript(messages: Sequence[Message]) -> str:
    return "\n".join(f"[{message.role}]: {message.text}" for message in messages)
