from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

Role = Literal["user", "assistant", "system", "tool"]
AttachmentType = Literal["image", "audio", "file"]

CONTEXT_SUMMARY_HEADER = "[Context summary]\n"


# -- raw tool-call shapes, decoded at ingestion --


@dataclass(frozen=True)
class FunctionToolCall:
    """``{id?, function: {name, arguments}}``"""

    id: str | None
    name: str
    arguments: Any


@dataclass(frozen=True)
class FlatToolCall:
    """``{id?|tool_call_id?, name|tool_name, arguments|args, result?, error?, completed?, streamLog?}``"""

    id: str | None
    name: str
    arguments: Any
    result: Any = None
    final_result: Any = None
    error: str | None = None
    completed: bool = False
    stream_log: str = ""
    created_at: datetime | None = None


@dataclass(frozen=True)
class OpaqueToolCall:
    """Fallback for entries that are not JSON objects."""

    payload: Any


RawToolCall = FunctionToolCall | FlatToolCall | OpaqueToolCall


@dataclass(frozen=True)
class RawRow:
    id: str
    session_id: str
    role: str
    content: str
    summary: str | None
    tool_call_id: str | None
    reasoning: str | None
    metadata: dict[str, Any]
    tool_calls: tuple[RawToolCall, ...]
    metadata_tool_calls: tuple[RawToolCall, ...]
    created_at: datetime


# -- normalized entities --


@dataclass(frozen=True)
class ToolCall:
    id: str
    message_id: str
    name: str
    arguments: Any
    result: Any = None
    final_result: Any = None
    stream_log: str = ""
    completed: bool = False
    error: str | None = None
    created_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
            "streamLog": self.stream_log,
            "completed": self.completed,
        }
        if self.result is not None:
            payload["result"] = self.result
        if self.final_result is not None:
            payload["finalResult"] = self.final_result
        if self.error is not None:
            payload["error"] = self.error
        if self.created_at is not None:
            payload["createdAt"] = self.created_at.isoformat()
        return payload


@dataclass(frozen=True)
class ThinkingSegment:
    content: str
    type: Literal["thinking"] = "thinking"

    @property
    def is_context_summary(self) -> bool:
        return self.content.startswith(CONTEXT_SUMMARY_HEADER)

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content}


@dataclass(frozen=True)
class TextSegment:
    content: str
    type: Literal["text"] = "text"

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content}


@dataclass(frozen=True)
class ToolCallSegment:
    tool_call_id: str
    type: Literal["tool_call"] = "tool_call"

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "toolCallId": self.tool_call_id}


ContentSegment = ThinkingSegment | TextSegment | ToolCallSegment


@dataclass(frozen=True)
class Attachment:
    id: str
    message_id: str
    type: AttachmentType
    name: str
    url: str
    size: int
    mime_type: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "url": self.url,
            "size": self.size,
            "mimeType": self.mime_type,
        }


@dataclass(frozen=True)
class TurnSummary:
    """Server-side description of the process hidden behind a user message."""

    has_process: bool = False
    tool_call_count: int = 0
    thinking_count: int = 0
    process_message_count: int = 0
    final_assistant_message_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "hasProcess": self.has_process,
            "toolCallCount": self.tool_call_count,
            "thinkingCount": self.thinking_count,
            "processMessageCount": self.process_message_count,
            "finalAssistantMessageId": self.final_assistant_message_id,
        }


@dataclass(frozen=True)
class MessageMetadata:
    content_segments: tuple[ContentSegment, ...] = ()
    tool_calls: tuple[ToolCall, ...] | None = None
    attachments: tuple[Attachment, ...] | None = None
    hidden: bool = False
    kind: str | None = None
    turn: TurnSummary | None = None
    inline_process: tuple[NormalizedMessage, ...] = ()
    process_owner: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NormalizedMessage:
    id: str
    session_id: str
    role: str
    content: str
    raw_content: str | None
    created_at: datetime
    metadata: MessageMetadata = field(default_factory=MessageMetadata)
    status: str = "completed"
    updated_at: datetime | None = None
    tool_call_id: str | None = None

    @property
    def is_spliced(self) -> bool:
        return self.metadata.process_owner is not None

    def reasoning(self) -> str | None:
        for segment in self.metadata.content_segments:
            if isinstance(segment, ThinkingSegment) and not segment.is_context_summary:
                return segment.content
        return None

    def to_row(self) -> dict[str, Any]:
        """Serialize back to the raw row payload shape accepted by the pipeline."""
        meta = self.metadata
        metadata: dict[str, Any] = dict(meta.extra)
        if meta.kind is not None:
            metadata["type"] = meta.kind
        if meta.hidden:
            metadata["hidden"] = True
        if meta.tool_calls is not None:
            metadata["toolCalls"] = [tc.to_payload() for tc in meta.tool_calls]
        if meta.attachments:
            metadata["attachments"] = [a.to_payload() for a in meta.attachments]
        metadata["contentSegments"] = [s.to_payload() for s in meta.content_segments]
        if meta.turn is not None:
            metadata["historyProcess"] = meta.turn.to_payload()
        if meta.inline_process:
            metadata["historyProcessInlineMessages"] = [m.to_row() for m in meta.inline_process]
        if meta.process_owner is not None:
            metadata["processOwner"] = meta.process_owner

        return {
            "id": self.id,
            "session_id": self.session_id,
            "role": self.role,
            "content": self.content,
            "summary": self.raw_content,
            "tool_call_id": self.tool_call_id,
            "reasoning": self.reasoning(),
            "metadata": metadata,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class TurnProcessState:
    expanded: bool = False
    loaded: bool = False
    loading: bool = False
