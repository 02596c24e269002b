from message_timeline.pipeline.attachments import normalize_attachments
from message_timeline.pipeline.compaction import compact_turns
from message_timeline.pipeline.decoding import decode_row, decode_rows
from message_timeline.pipeline.normalize import normalize, normalize_payloads
from message_timeline.pipeline.segments import build_segments
from message_timeline.pipeline.summary_folder import fold_summaries
from message_timeline.pipeline.tool_calls import (
    build_tool_result_index,
    find_missing_tool_call_ids,
    resolve_tool_calls,
)

__all__ = [
    "build_segments",
    "build_tool_result_index",
    "compact_turns",
    "decode_row",
    "decode_rows",
    "find_missing_tool_call_ids",
    "fold_summaries",
    "normalize",
    "normalize_attachments",
    "normalize_payloads",
    "resolve_tool_calls",
]
