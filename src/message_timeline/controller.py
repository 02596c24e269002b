from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from message_timeline.backfill import DEFAULT_MAX_BACKFILL_ATTEMPTS, BackfillFetcher, FetchResult
from message_timeline.models import NormalizedMessage, TurnProcessState
from message_timeline.pipeline.normalize import normalize_payloads
from message_timeline.source import MessageSource
from message_timeline.splicer import base_count, process_affordances
from message_timeline.state import SessionTimeline, TimelineState, TimelineStore
from message_timeline.turn_process import ToggleAction


@dataclass(frozen=True)
class _Ticket:
    session_id: str
    generation: int


def _error_text(ex: Exception, fallback: str) -> str:
    return str(ex) or fallback


class TimelineController:
    """Actions over the timeline store.

    Each action suspends only at its fetch and finishes with one atomic
    mutation. Responses that land after the session was switched or reloaded
    are dropped.
    """

    def __init__(
        self,
        store: TimelineStore,
        source: MessageSource,
        *,
        page_size: int = 50,
        max_backfill_attempts: int = DEFAULT_MAX_BACKFILL_ATTEMPTS,
    ):
        self._store = store
        self._source = source
        self._page_size = max(1, page_size)
        self._fetcher = BackfillFetcher(source, max_backfill_attempts=max_backfill_attempts)

    @property
    def state(self) -> TimelineState:
        return self._store.read()

    def affordances(self) -> dict[str, TurnProcessState]:
        current = self._store.read().current
        if current is None:
            return {}
        return process_affordances(current.messages, current.turns.entries, current.turns.states)

    # -- load --

    async def load(self, session_id: str) -> None:
        """Load (or reload from scratch) the newest page of ``session_id`` and make it current."""

        def start(state: TimelineState) -> _Ticket:
            state.current_session_id = session_id
            state.is_loading = True
            state.error = None
            timeline = state.sessions.setdefault(session_id, SessionTimeline(session_id))
            timeline.load_request += 1
            return _Ticket(session_id, timeline.load_request)

        # The turn cache is only reset once a reload succeeds; a failed
        # reload leaves the previous timeline intact.
        ticket = self._store.mutate(start)
        try:
            result = await self._fetcher.fetch(session_id, limit=self._page_size, offset=0)
        except Exception as ex:
            logger.bind(session_id=session_id).error(f"Failed to load messages: {ex}")
            error = _error_text(ex, "Failed to load messages")
            self._store.mutate(lambda state: self._fail_load(state, ticket, error))
            return

        self._store.mutate(lambda state: self._commit_load(state, ticket, result))

    def _commit_load(self, state: TimelineState, ticket: _Ticket, result: FetchResult) -> None:
        timeline = self._live_load(state, ticket)
        if timeline is None:
            return
        timeline.generation += 1
        timeline.turns.clear()
        timeline.loaded = True
        timeline.has_more = result.has_more
        timeline.set_rows(result.rows)
        state.is_loading = False
        logger.bind(session_id=ticket.session_id).info(
            f"Loaded {len(result.rows)} rows "
            f"(backfill fetches: {result.backfill_fetches}, more: {result.has_more})"
        )

    def _fail_load(self, state: TimelineState, ticket: _Ticket, error: str) -> None:
        if self._live_load(state, ticket) is None:
            return
        state.error = error
        state.is_loading = False

    def _live_load(self, state: TimelineState, ticket: _Ticket) -> SessionTimeline | None:
        # Only the latest load of the current session may commit.
        if state.current_session_id != ticket.session_id:
            logger.debug(f"Dropping page for session {ticket.session_id}: no longer current")
            return None
        timeline = state.sessions.get(ticket.session_id)
        if timeline is None or timeline.load_request != ticket.generation:
            logger.debug(f"Dropping page for session {ticket.session_id}: superseded by a newer load")
            return None
        return timeline

    # -- load more --

    async def load_more(self) -> None:
        """Fetch the next older page of the current session."""

        def start(state: TimelineState) -> tuple[_Ticket, int, set[str]] | None:
            timeline = state.current
            if timeline is None or not timeline.has_more:
                return None
            offset = base_count(timeline.messages)
            return _Ticket(timeline.session_id, timeline.generation), offset, {r.id for r in timeline.raw_rows}

        started = self._store.mutate(start)
        if started is None:
            return
        ticket, offset, known_ids = started

        try:
            result = await self._fetcher.fetch(
                ticket.session_id,
                limit=self._page_size,
                offset=offset,
                known_ids=known_ids,
            )
        except Exception as ex:
            logger.bind(session_id=ticket.session_id).error(f"Failed to load more messages: {ex}")
            error = _error_text(ex, "Failed to load more messages")
            self._store.mutate(lambda state: self._set_error(state, ticket, error))
            return

        self._store.mutate(lambda state: self._commit_more(state, ticket, result))

    def _commit_more(self, state: TimelineState, ticket: _Ticket, result: FetchResult) -> None:
        timeline = self._live_timeline(state, ticket)
        if timeline is None:
            return
        held = {r.id for r in timeline.raw_rows}
        older = [r for r in result.rows if r.id not in held]
        timeline.has_more = result.has_more
        timeline.set_rows(older + timeline.raw_rows)
        logger.debug(f"Prepended {len(older)} older rows to session {ticket.session_id}")

    # -- turn process --

    async def toggle(self, user_message_id: str) -> None:
        """Expand or collapse the process behind a user message of the current session."""

        def start(state: TimelineState):
            timeline = state.current
            if timeline is None:
                return None
            user_message = timeline.find_user_message(user_message_id)
            if user_message is None:
                logger.warning(f"Toggle ignored: no user message {user_message_id} in session {timeline.session_id}")
                return None
            decision = timeline.turns.begin_toggle(user_message)
            if decision.action is not ToggleAction.FETCH:
                timeline.render()
            return _Ticket(timeline.session_id, timeline.generation), decision

        started = self._store.mutate(start)
        if started is None:
            return
        ticket, decision = started
        if decision.action is not ToggleAction.FETCH:
            logger.debug(f"Turn {user_message_id}: {decision.action.value} (inline={decision.from_inline})")
            return

        try:
            payloads = await self._source.fetch_process(ticket.session_id, user_message_id)
            messages = normalize_payloads(payloads, ticket.session_id)
        except Exception as ex:
            logger.bind(session_id=ticket.session_id).error(f"Failed to load turn process {user_message_id}: {ex}")
            error = _error_text(ex, "Failed to load turn process")
            self._store.mutate(lambda state: self._fail_toggle(state, ticket, user_message_id, error))
            return

        self._store.mutate(lambda state: self._commit_toggle(state, ticket, user_message_id, messages))

    def _commit_toggle(
        self,
        state: TimelineState,
        ticket: _Ticket,
        user_message_id: str,
        messages: list[NormalizedMessage],
    ) -> None:
        timeline = self._live_timeline(state, ticket)
        if timeline is None:
            self._abandon(state, ticket, user_message_id)
            return
        timeline.turns.complete(user_message_id, messages)
        timeline.render()
        logger.debug(f"Turn {user_message_id}: spliced {len(messages)} process messages")

    def _fail_toggle(self, state: TimelineState, ticket: _Ticket, user_message_id: str, error: str) -> None:
        timeline = self._live_timeline(state, ticket)
        if timeline is None:
            self._abandon(state, ticket, user_message_id)
            return
        timeline.turns.fail(user_message_id)
        timeline.render()
        state.error = error

    def _abandon(self, state: TimelineState, ticket: _Ticket, user_message_id: str) -> None:
        # Release the in-flight marker so the turn can be toggled again later.
        timeline = state.sessions.get(ticket.session_id)
        if timeline is not None and timeline.generation == ticket.generation:
            timeline.turns.fail(user_message_id)
            timeline.render()
        logger.debug(f"Dropped stale turn process response for {user_message_id}")

    # -- sessions --

    async def select(self, session_id: str) -> None:
        """Make ``session_id`` current, loading it only if it was never loaded."""

        def apply(state: TimelineState) -> bool:
            timeline = state.sessions.get(session_id)
            if timeline is None or not timeline.loaded:
                return False
            state.current_session_id = session_id
            state.is_loading = False
            state.error = None
            return True

        if not self._store.mutate(apply):
            await self.load(session_id)

    def forget_session(self, session_id: str) -> None:
        def apply(state: TimelineState) -> None:
            state.sessions.pop(session_id, None)
            if state.current_session_id == session_id:
                state.current_session_id = None
                state.is_loading = False

        self._store.mutate(apply)

    def clear_error(self) -> None:
        def apply(state: TimelineState) -> None:
            state.error = None

        self._store.mutate(apply)

    def _set_error(self, state: TimelineState, ticket: _Ticket, error: str) -> None:
        if self._live_timeline(state, ticket) is not None:
            state.error = error

    def _live_timeline(self, state: TimelineState, ticket: _Ticket) -> SessionTimeline | None:
        if state.current_session_id != ticket.session_id:
            logger.debug(f"Dropping response for session {ticket.session_id}: no longer current")
            return None
        timeline = state.sessions.get(ticket.session_id)
        if timeline is None or timeline.generation != ticket.generation:
            logger.debug(f"Dropping response for session {ticket.session_id}: reloaded since request")
            return None
        return timeline
