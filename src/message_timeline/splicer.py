from __future__ import annotations

from collections.abc import Mapping, Sequence

from message_timeline.models import NormalizedMessage, TurnProcessState


def apply_turn_process(
    messages: Sequence[NormalizedMessage],
    cache: Mapping[str, Sequence[NormalizedMessage]],
    states: Mapping[str, TurnProcessState],
) -> list[NormalizedMessage]:
    """Render ``messages`` with expanded turn processes spliced in.

    Rows spliced by an earlier pass are dropped first, so feeding the output
    back in with the same cache and states returns the same list.
    """
    base = [m for m in messages if not m.is_spliced]
    # Hidden base rows (compacted process rows) do not block their spliced copy.
    base_ids = {m.id for m in base if not m.metadata.hidden}

    rendered: list[NormalizedMessage] = []
    for message in base:
        rendered.append(message)
        if message.role != "user":
            continue
        state = states.get(message.id)
        if state is None or not state.expanded:
            continue
        for sub in cache.get(message.id, ()):
            if sub.id not in base_ids:
                rendered.append(sub)
    return rendered


def base_count(messages: Sequence[NormalizedMessage]) -> int:
    """Number of rows that came from the paged source (pagination offset)."""
    return sum(1 for m in messages if not m.is_spliced)


def has_process(message: NormalizedMessage, cache: Mapping[str, Sequence[NormalizedMessage]]) -> bool:
    if message.role != "user":
        return False
    meta = message.metadata
    if meta.turn is not None and (meta.turn.has_process or meta.turn.process_message_count > 0):
        return True
    return bool(meta.inline_process) or bool(cache.get(message.id))


def process_affordances(
    messages: Sequence[NormalizedMessage],
    cache: Mapping[str, Sequence[NormalizedMessage]],
    states: Mapping[str, TurnProcessState],
) -> dict[str, TurnProcessState]:
    """Expand/collapse state for every user message that has a process to show."""
    return {
        m.id: states.get(m.id, TurnProcessState())
        for m in messages
        if not m.is_spliced and has_process(m, cache)
    }
