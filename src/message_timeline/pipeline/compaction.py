from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

from loguru import logger

from message_timeline.models import NormalizedMessage, TextSegment, ThinkingSegment, TurnSummary
from message_timeline.pipeline.summary_folder import is_session_summary

PLACEHOLDER_KEY = "historyProcessPlaceholder"


def has_turn_markers(messages: Sequence[NormalizedMessage]) -> bool:
    """True when the server already grouped the page into turns."""
    return any(
        m.role == "user" and (m.metadata.turn is not None or bool(m.metadata.inline_process))
        for m in messages
    )


def _hidden(message: NormalizedMessage, hidden: bool = True) -> NormalizedMessage:
    return replace(message, metadata=replace(message.metadata, hidden=hidden))


def _is_reply_candidate(message: NormalizedMessage) -> bool:
    return message.role == "assistant" and not is_session_summary(message)


def _final_reply_index(messages: Sequence[NormalizedMessage], start: int, end: int) -> int | None:
    # Last assistant with visible text wins; with none, the earliest assistant does.
    final = None
    for i in range(end - 1, start, -1):
        if not _is_reply_candidate(messages[i]):
            continue
        final = i
        if messages[i].content.strip():
            break
    return final


def _thinking_count(message: NormalizedMessage) -> int:
    return sum(
        1
        for s in message.metadata.content_segments
        if isinstance(s, ThinkingSegment) and not s.is_context_summary
    )


def _final_reply(message: NormalizedMessage) -> NormalizedMessage:
    segments = tuple(s for s in message.metadata.content_segments if isinstance(s, TextSegment))
    return replace(
        message,
        metadata=replace(message.metadata, content_segments=segments, tool_calls=None),
    )


def compact_turns(messages: Sequence[NormalizedMessage]) -> list[NormalizedMessage]:
    """Group an uncompacted page into user turns.

    Each user message gets a ``TurnSummary`` and carries its process rows
    (intermediate assistant and tool rows) as ``inline_process``. The process
    rows stay in the list, hidden, so the count still matches the server
    page. The final reply keeps only its text. Pages the server already
    compacted are left alone apart from hiding placeholder rows.
    """
    if has_turn_markers(messages):
        return [_hidden(m) if m.metadata.extra.get(PLACEHOLDER_KEY) is True else m for m in messages]

    user_indexes = [i for i, m in enumerate(messages) if m.role == "user"]
    compacted = list(messages)
    for pos, user_index in enumerate(user_indexes):
        end = user_indexes[pos + 1] if pos + 1 < len(user_indexes) else len(messages)
        final = _final_reply_index(messages, user_index, end)

        tool_call_count = 0
        thinking_count = 0
        process: list[NormalizedMessage] = []
        for i in range(user_index + 1, end):
            message = messages[i]
            if _is_reply_candidate(message):
                tool_call_count += len(message.metadata.tool_calls or ())
                thinking_count += _thinking_count(message)
            if i == final or message.role not in ("assistant", "tool") or is_session_summary(message):
                continue
            process.append(_hidden(message, False))
            compacted[i] = _hidden(message)

        user = messages[user_index]
        summary = TurnSummary(
            has_process=bool(process),
            tool_call_count=tool_call_count,
            thinking_count=thinking_count,
            process_message_count=len(process),
            final_assistant_message_id=messages[final].id if final is not None else None,
        )
        compacted[user_index] = replace(
            user,
            metadata=replace(user.metadata, turn=summary, inline_process=tuple(process)),
        )
        if final is not None:
            compacted[final] = _final_reply(messages[final])

    if user_indexes:
        logger.debug(f"Compacted {len(user_indexes)} turns")
    return compacted
