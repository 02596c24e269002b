from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from message_timeline.models import FlatToolCall, FunctionToolCall, OpaqueToolCall, RawRow, RawToolCall

EPOCH = datetime.fromtimestamp(0, UTC)

_UNKNOWN_TOOL_NAME = "unknown_tool"


def first_present(payload: Mapping[str, Any], *keys: str) -> Any:
    """Return the first value under ``keys`` that is not None."""
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def clean_id(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def decode_metadata(value: Any, *, row_id: str = "") -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, str):
        if not value.strip():
            return {}
        try:
            value = json.loads(value)
        except ValueError as ex:
            logger.warning(f"Malformed metadata on row {row_id or '?'}: {ex}")
            return {}
    if not isinstance(value, dict):
        logger.warning(f"Ignoring non-object metadata on row {row_id or '?'}: {type(value).__name__}")
        return {}
    return value


def decode_arguments(value: Any) -> Any:
    if value is None:
        return {}
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError:
        logger.warning(f"Tool call arguments are not valid JSON, keeping raw string ({len(value)} chars)")
        return value


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    return None


def decode_tool_call(entry: Any) -> RawToolCall:
    if not isinstance(entry, dict):
        return OpaqueToolCall(payload=entry)

    call_id = clean_id(first_present(entry, "id", "tool_call_id", "toolCallId"))
    function = entry.get("function")
    if isinstance(function, dict):
        return FunctionToolCall(
            id=call_id,
            name=str(function.get("name") or _UNKNOWN_TOOL_NAME),
            arguments=decode_arguments(function.get("arguments")),
        )

    error = entry.get("error")
    return FlatToolCall(
        id=call_id,
        name=str(first_present(entry, "name", "tool_name", "toolName") or _UNKNOWN_TOOL_NAME),
        arguments=decode_arguments(first_present(entry, "arguments", "args")),
        result=entry.get("result"),
        final_result=first_present(entry, "finalResult", "final_result"),
        error=str(error) if error else None,
        completed=entry.get("completed") is True,
        stream_log=str(first_present(entry, "streamLog", "stream_log") or ""),
        created_at=parse_timestamp(first_present(entry, "createdAt", "created_at")),
    )


def decode_tool_calls(value: Any, *, row_id: str = "") -> tuple[RawToolCall, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        if not value.strip():
            return ()
        try:
            value = json.loads(value)
        except ValueError as ex:
            logger.warning(f"Malformed tool calls on row {row_id or '?'}: {ex}")
            return ()
    if isinstance(value, dict):
        value = [value]
    if not isinstance(value, list):
        return ()
    return tuple(decode_tool_call(entry) for entry in value)


def _synthesize_row_id(session_id: str, payload: Mapping[str, Any]) -> str:
    digest = hashlib.sha1(json.dumps(payload, sort_keys=True, default=str).encode("utf-8")).hexdigest()
    return f"{session_id}:row:{digest[:16]}"


def decode_row(payload: Mapping[str, Any], session_id: str) -> RawRow:
    row_id = clean_id(payload.get("id"))
    if row_id is None:
        row_id = _synthesize_row_id(session_id, payload)
        logger.warning(f"Row without id in session {session_id}; using {row_id}")

    metadata = decode_metadata(payload.get("metadata"), row_id=row_id)
    content = payload.get("content")
    summary = payload.get("summary")
    reasoning = payload.get("reasoning")
    created_at = parse_timestamp(first_present(payload, "created_at", "createdAt"))

    return RawRow(
        id=row_id,
        session_id=str(first_present(payload, "session_id", "sessionId") or session_id),
        role=str(payload.get("role") or "system"),
        content=content if isinstance(content, str) else ("" if content is None else str(content)),
        summary=summary if isinstance(summary, str) else None,
        tool_call_id=clean_id(first_present(payload, "tool_call_id", "toolCallId")),
        reasoning=reasoning if isinstance(reasoning, str) else None,
        metadata=metadata,
        tool_calls=decode_tool_calls(first_present(payload, "toolCalls", "tool_calls"), row_id=row_id),
        metadata_tool_calls=decode_tool_calls(
            first_present(metadata, "toolCalls", "tool_calls"),
            row_id=row_id,
        ),
        created_at=created_at or EPOCH,
    )


def decode_rows(payloads: Iterable[Any], session_id: str) -> list[RawRow]:
    rows: list[RawRow] = []
    for payload in payloads:
        if not isinstance(payload, Mapping):
            logger.warning(f"Skipping non-object row in session {session_id}: {type(payload).__name__}")
            continue
        rows.append(decode_row(payload, session_id))
    return rows
