from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

from loguru import logger

from message_timeline.models import CONTEXT_SUMMARY_HEADER, NormalizedMessage, ThinkingSegment

SESSION_SUMMARY_KIND = "session_summary"


def is_session_summary(message: NormalizedMessage) -> bool:
    return message.metadata.kind == SESSION_SUMMARY_KIND


def summary_text(message: NormalizedMessage) -> str:
    if message.raw_content:
        return message.raw_content
    meta_summary = message.metadata.extra.get("summary")
    if isinstance(meta_summary, str) and meta_summary:
        return meta_summary
    return message.content


def _is_fold_target(message: NormalizedMessage) -> bool:
    return message.role == "assistant" and not message.metadata.hidden and not is_session_summary(message)


def _find_target(messages: Sequence[NormalizedMessage], index: int) -> int | None:
    for j in range(index + 1, len(messages)):
        if _is_fold_target(messages[j]):
            return j
    for j in range(index - 1, -1, -1):
        if _is_fold_target(messages[j]):
            return j
    return None


def with_context_summary(message: NormalizedMessage, text: str) -> NormalizedMessage:
    folded = ThinkingSegment(content=CONTEXT_SUMMARY_HEADER + text)
    segments = list(message.metadata.content_segments)
    for i, segment in enumerate(segments):
        if isinstance(segment, ThinkingSegment) and segment.is_context_summary:
            segments[i] = folded
            break
    else:
        segments.append(folded)
    return replace(message, metadata=replace(message.metadata, content_segments=tuple(segments)))


def fold_summaries(messages: Sequence[NormalizedMessage]) -> list[NormalizedMessage]:
    """Move session summary rows into a neighbouring assistant message.

    The summary row itself stays in the list, marked hidden, so page sizes
    still line up with what the server returned.
    """
    folded = list(messages)
    for index, message in enumerate(messages):
        if not is_session_summary(message):
            continue

        target = _find_target(folded, index)
        if target is None:
            logger.debug(f"No assistant message around summary {message.id}; fold skipped")
        else:
            folded[target] = with_context_summary(folded[target], summary_text(message))

        folded[index] = replace(folded[index], metadata=replace(folded[index].metadata, hidden=True))
    return folded
