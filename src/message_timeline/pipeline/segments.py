from __future__ import annotations

from message_timeline.models import ContentSegment, RawRow, TextSegment, ThinkingSegment, ToolCall, ToolCallSegment

# Reasoning-effort labels some providers persist in place of actual reasoning text.
_EFFORT_LEVELS = {"minimal", "low", "medium", "high", "detailed"}


def is_meaningful_reasoning(value: str | None) -> bool:
    if not value or not value.strip():
        return False
    return value.strip().lower() not in _EFFORT_LEVELS


def build_segments(row: RawRow, tool_calls: tuple[ToolCall, ...] | None) -> tuple[ContentSegment, ...]:
    """thinking, then text, then one tool_call segment per resolved call."""
    segments: list[ContentSegment] = []
    if row.role == "assistant" and is_meaningful_reasoning(row.reasoning):
        segments.append(ThinkingSegment(content=row.reasoning))
    if row.content.strip():
        segments.append(TextSegment(content=row.content))
    for call in tool_calls or ():
        segments.append(ToolCallSegment(tool_call_id=call.id))
    return tuple(segments)
