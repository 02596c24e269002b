from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from enum import Enum

from message_timeline.models import NormalizedMessage, TurnProcessState

_IDLE = TurnProcessState()


class ToggleAction(Enum):
    NOOP = "noop"
    COLLAPSED = "collapsed"
    EXPANDED = "expanded"
    FETCH = "fetch"


@dataclass(frozen=True)
class ToggleDecision:
    action: ToggleAction
    user_message_id: str
    from_inline: bool = False


def owned_by(messages: Iterable[NormalizedMessage], user_message_id: str) -> tuple[NormalizedMessage, ...]:
    """Tag process messages with the user message they hang under."""
    return tuple(
        replace(m, metadata=replace(m.metadata, hidden=False, process_owner=user_message_id)) for m in messages
    )


class TurnProcessCache:
    """Process sub-messages and their expand/load state for one session.

    State machine per user message::

        collapsed/unloaded -> loading -> expanded/loaded <-> collapsed/loaded
        loading -> collapsed/unloaded   (fetch failed, retryable)

    Entries are never invalidated; the whole cache is cleared when the
    session's messages are reloaded from scratch.
    """

    def __init__(self) -> None:
        self._entries: dict[str, tuple[NormalizedMessage, ...]] = {}
        self._states: dict[str, TurnProcessState] = {}
        self._in_flight: set[str] = set()

    @property
    def entries(self) -> Mapping[str, tuple[NormalizedMessage, ...]]:
        return self._entries

    @property
    def states(self) -> Mapping[str, TurnProcessState]:
        return self._states

    def state_of(self, user_message_id: str) -> TurnProcessState:
        return self._states.get(user_message_id, _IDLE)

    def is_in_flight(self, user_message_id: str) -> bool:
        return user_message_id in self._in_flight

    def begin_toggle(self, user_message: NormalizedMessage) -> ToggleDecision:
        """Decide and apply the synchronous part of a toggle.

        Must run inside a single store mutation: the in-flight marker is
        checked and set in the same step that moves the state to loading.
        """
        key = user_message.id
        state = self.state_of(key)

        if state.loading or key in self._in_flight:
            return ToggleDecision(ToggleAction.NOOP, key)

        if state.expanded:
            self._states[key] = replace(state, expanded=False)
            return ToggleDecision(ToggleAction.COLLAPSED, key)

        if state.loaded:
            self._states[key] = replace(state, expanded=True)
            return ToggleDecision(ToggleAction.EXPANDED, key)

        inline = user_message.metadata.inline_process
        if inline:
            self._entries[key] = owned_by(inline, key)
            self._states[key] = TurnProcessState(expanded=True, loaded=True, loading=False)
            return ToggleDecision(ToggleAction.EXPANDED, key, from_inline=True)

        self._in_flight.add(key)
        self._states[key] = TurnProcessState(expanded=False, loaded=False, loading=True)
        return ToggleDecision(ToggleAction.FETCH, key)

    def complete(self, user_message_id: str, messages: Iterable[NormalizedMessage]) -> None:
        self._in_flight.discard(user_message_id)
        self._entries[user_message_id] = owned_by(messages, user_message_id)
        self._states[user_message_id] = TurnProcessState(expanded=True, loaded=True, loading=False)

    def fail(self, user_message_id: str) -> None:
        self._in_flight.discard(user_message_id)
        self._entries.pop(user_message_id, None)
        self._states.pop(user_message_id, None)

    def clear(self) -> None:
        self._entries.clear()
        self._states.clear()
        self._in_flight.clear()
