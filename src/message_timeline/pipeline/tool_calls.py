from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from message_timeline.models import FlatToolCall, FunctionToolCall, RawRow, RawToolCall, ToolCall

_UNKNOWN_TOOL_NAME = "unknown_tool"


@dataclass(frozen=True)
class ToolResult:
    content: str
    error: str | None = None


def synthesize_tool_call_id(message_id: str, index: int) -> str:
    return f"{message_id}:tool:{index}"


def _is_error(row: RawRow) -> bool:
    return row.metadata.get("isError") is True or row.metadata.get("is_error") is True


def build_tool_result_index(rows: Iterable[RawRow]) -> dict[str, ToolResult]:
    index: dict[str, ToolResult] = {}
    for row in rows:
        if row.role != "tool" or not row.tool_call_id:
            continue
        index[row.tool_call_id] = ToolResult(
            content=row.content,
            error=row.content if _is_error(row) else None,
        )
    return index


def source_tool_calls(row: RawRow) -> tuple[RawToolCall, ...]:
    """Top-level tool calls win over the ones stored in metadata."""
    return row.tool_calls if row.tool_calls else row.metadata_tool_calls


def resolve_tool_calls(row: RawRow, results: dict[str, ToolResult]) -> tuple[ToolCall, ...] | None:
    if row.role != "assistant":
        return None
    raw_calls = source_tool_calls(row)
    if not raw_calls:
        return None

    resolved: list[ToolCall] = []
    for index, raw in enumerate(raw_calls):
        call_id = getattr(raw, "id", None) or synthesize_tool_call_id(row.id, index)
        found = results.get(call_id)

        if isinstance(raw, FunctionToolCall):
            result = found.content if found is not None else None
            error = found.error if found is not None else None
            resolved.append(
                ToolCall(
                    id=call_id,
                    message_id=row.id,
                    name=raw.name,
                    arguments=raw.arguments,
                    result=result,
                    completed=found is not None,
                    error=error,
                    created_at=row.created_at,
                )
            )
        elif isinstance(raw, FlatToolCall):
            result = raw.result
            if result is None:
                result = raw.final_result
            if result is None and found is not None:
                result = found.content
            resolved.append(
                ToolCall(
                    id=call_id,
                    message_id=row.id,
                    name=raw.name,
                    arguments=raw.arguments,
                    result=result,
                    final_result=raw.final_result,
                    stream_log=raw.stream_log,
                    completed=raw.completed,
                    error=raw.error or (found.error if found is not None else None),
                    created_at=raw.created_at or row.created_at,
                )
            )
        else:
            resolved.append(
                ToolCall(
                    id=call_id,
                    message_id=row.id,
                    name=_UNKNOWN_TOOL_NAME,
                    arguments=raw.payload,
                    result=found.content if found is not None else None,
                    completed=found is not None,
                    error=found.error if found is not None else None,
                    created_at=row.created_at,
                )
            )
    return tuple(resolved)


def find_missing_tool_call_ids(rows: Iterable[RawRow]) -> set[str]:
    """Tool-result references with no matching call on any assistant row."""
    rows = list(rows)
    known: set[str] = set()
    for row in rows:
        if row.role != "assistant":
            continue
        for raw in source_tool_calls(row):
            call_id = getattr(raw, "id", None)
            if call_id:
                known.add(call_id)

    return {
        row.tool_call_id
        for row in rows
        if row.role == "tool" and row.tool_call_id and row.tool_call_id not in known
    }
