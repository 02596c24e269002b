from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from loguru import logger

from message_timeline.models import MessageMetadata, NormalizedMessage, RawRow, TurnSummary
from message_timeline.pipeline.attachments import normalize_attachments
from message_timeline.pipeline.compaction import compact_turns
from message_timeline.pipeline.decoding import clean_id, decode_rows
from message_timeline.pipeline.segments import build_segments
from message_timeline.pipeline.summary_folder import fold_summaries
from message_timeline.pipeline.tool_calls import ToolResult, build_tool_result_index, resolve_tool_calls

# Metadata keys that are lifted into typed MessageMetadata fields.
_STRUCTURED_KEYS = frozenset(
    {
        "type",
        "hidden",
        "toolCalls",
        "tool_calls",
        "attachments",
        "contentSegments",
        "content_segments",
        "historyProcess",
        "historyProcessInlineMessages",
        "processOwner",
    }
)


def _to_int(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def parse_turn_summary(value: Any) -> TurnSummary | None:
    if not isinstance(value, dict):
        return None
    return TurnSummary(
        has_process=value.get("hasProcess") is True or value.get("has_process") is True,
        tool_call_count=_to_int(value.get("toolCallCount", value.get("tool_call_count"))),
        thinking_count=_to_int(value.get("thinkingCount", value.get("thinking_count"))),
        process_message_count=_to_int(value.get("processMessageCount", value.get("process_message_count"))),
        final_assistant_message_id=clean_id(
            value.get("finalAssistantMessageId", value.get("final_assistant_message_id"))
        ),
    )


def _inline_process(row: RawRow) -> tuple[NormalizedMessage, ...]:
    if row.role != "user":
        return ()
    raw = row.metadata.get("historyProcessInlineMessages")
    if not isinstance(raw, list) or not raw:
        return ()
    return tuple(normalize_payloads(raw, row.session_id))


def _normalize_row(row: RawRow, results: dict[str, ToolResult]) -> NormalizedMessage:
    tool_calls = resolve_tool_calls(row, results)
    kind = row.metadata.get("type")
    metadata = MessageMetadata(
        content_segments=build_segments(row, tool_calls),
        tool_calls=tool_calls,
        attachments=normalize_attachments(row.metadata, row.id),
        hidden=row.metadata.get("hidden") is True,
        kind=kind if isinstance(kind, str) else None,
        turn=parse_turn_summary(row.metadata.get("historyProcess")) if row.role == "user" else None,
        inline_process=_inline_process(row),
        process_owner=clean_id(row.metadata.get("processOwner")),
        extra={k: v for k, v in row.metadata.items() if k not in _STRUCTURED_KEYS},
    )
    return NormalizedMessage(
        id=row.id,
        session_id=row.session_id,
        role=row.role,
        content=row.content,
        raw_content=row.summary,
        created_at=row.created_at,
        metadata=metadata,
        tool_call_id=row.tool_call_id,
    )


def normalize(rows: Sequence[RawRow]) -> list[NormalizedMessage]:
    """Turn raw rows into display messages; order and count are preserved.

    Uncompacted pages are grouped into turns before summaries are folded, so
    a summary lands on a visible reply rather than a hidden process row.
    """
    results = build_tool_result_index(rows)
    messages = [_normalize_row(row, results) for row in rows]
    return fold_summaries(compact_turns(messages))


def normalize_payloads(payloads: Iterable[Any], session_id: str) -> list[NormalizedMessage]:
    rows = decode_rows(payloads, session_id)
    messages = normalize(rows)
    logger.debug(f"Normalized {len(messages)} rows for session {session_id}")
    return messages
