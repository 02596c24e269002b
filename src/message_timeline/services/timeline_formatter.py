from __future__ import annotations

from collections.abc import Mapping, Sequence

from message_timeline.models import (
    NormalizedMessage,
    TextSegment,
    ThinkingSegment,
    ToolCall,
    ToolCallSegment,
    TurnProcessState,
)


class TimelineFormatter:
    def __init__(self, *, line_prefix: str, short_id_len: int = 8, preview_chars: int = 120):
        self._line_prefix = line_prefix
        self._short_id_len = short_id_len
        self._preview_chars = preview_chars

    def short_id(self, value: str) -> str:
        if len(value) <= self._short_id_len:
            return value
        return value[: self._short_id_len]

    def preview(self, text: str) -> str:
        flat = " ".join(str(text).split())
        if len(flat) <= self._preview_chars:
            return flat
        return flat[: self._preview_chars - 3] + "..."

    def affordance(self, state: TurnProcessState | None) -> str:
        if state is None:
            return ""
        if state.loading:
            return " [loading]"
        if state.expanded:
            return " [-]"
        return " [+]"

    def format_tool_call(self, call: ToolCall, *, indent: str) -> str:
        line = f"{self._line_prefix}{indent}  tool {call.name} ({self.short_id(call.id)})"
        if call.error:
            return f"{line} error: {self.preview(call.error)}"
        if call.result is not None:
            return f"{line} -> {self.preview(call.result)}"
        if call.completed:
            return f"{line} done"
        return f"{line} pending"

    def format_message_lines(
        self,
        message: NormalizedMessage,
        *,
        affordance: TurnProcessState | None = None,
    ) -> list[str]:
        indent = "    " if message.is_spliced else ""
        header = (
            f"{self._line_prefix}{indent}{message.role} [{self.short_id(message.id)}] "
            f"{message.created_at:%Y-%m-%d %H:%M}{self.affordance(affordance)}"
        )
        lines = [header]
        calls = {call.id: call for call in message.metadata.tool_calls or ()}
        for segment in message.metadata.content_segments:
            if isinstance(segment, ThinkingSegment):
                label = "summary" if segment.is_context_summary else "thinking"
                lines.append(f"{self._line_prefix}{indent}  ({label}) {self.preview(segment.content)}")
            elif isinstance(segment, TextSegment):
                lines.append(f"{self._line_prefix}{indent}  {self.preview(segment.content)}")
            elif isinstance(segment, ToolCallSegment):
                call = calls.get(segment.tool_call_id)
                if call is not None:
                    lines.append(self.format_tool_call(call, indent=indent))
        for attachment in message.metadata.attachments or ():
            lines.append(f"{self._line_prefix}{indent}  [{attachment.type}] {attachment.name}")
        return lines

    def format_timeline(
        self,
        messages: Sequence[NormalizedMessage],
        affordances: Mapping[str, TurnProcessState],
        *,
        has_more: bool = False,
    ) -> list[str]:
        lines: list[str] = []
        if has_more:
            lines.append(f"{self._line_prefix}... older messages available (/more)")
        for message in messages:
            if message.metadata.hidden:
                continue
            lines.extend(self.format_message_lines(message, affordance=affordances.get(message.id)))
        if not lines:
            lines.append(f"{self._line_prefix}(no messages)")
        return lines
