from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from message_timeline.models import NormalizedMessage, RawRow
from message_timeline.pipeline.normalize import normalize
from message_timeline.splicer import apply_turn_process
from message_timeline.turn_process import TurnProcessCache

T = TypeVar("T")


@dataclass
class SessionTimeline:
    session_id: str
    generation: int = 0
    load_request: int = 0
    loaded: bool = False
    raw_rows: list[RawRow] = field(default_factory=list)
    base_messages: list[NormalizedMessage] = field(default_factory=list)
    messages: list[NormalizedMessage] = field(default_factory=list)
    has_more: bool = False
    turns: TurnProcessCache = field(default_factory=TurnProcessCache)

    def find_user_message(self, message_id: str) -> NormalizedMessage | None:
        for message in self.base_messages:
            if message.id == message_id and message.role == "user":
                return message
        return None

    def set_rows(self, rows: list[RawRow]) -> None:
        self.raw_rows = rows
        self.base_messages = normalize(rows)
        self.render()

    def render(self) -> None:
        self.messages = apply_turn_process(self.base_messages, self.turns.entries, self.turns.states)


@dataclass
class TimelineState:
    current_session_id: str | None = None
    sessions: dict[str, SessionTimeline] = field(default_factory=dict)
    is_loading: bool = False
    error: str | None = None

    @property
    def current(self) -> SessionTimeline | None:
        if self.current_session_id is None:
            return None
        return self.sessions.get(self.current_session_id)

    @property
    def messages(self) -> list[NormalizedMessage]:
        current = self.current
        return current.messages if current is not None else []


class TimelineStore:
    """Owns the timeline state; every write goes through ``mutate``.

    Mutations run one at a time under a lock held only for the duration of
    the mutation function, never across an await.
    """

    def __init__(self, state: TimelineState | None = None):
        self._state = state or TimelineState()
        self._lock = threading.Lock()

    def read(self) -> TimelineState:
        return self._state

    def mutate(self, fn: Callable[[TimelineState], T]) -> T:
        with self._lock:
            return fn(self._state)
