from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass

from loguru import logger

from message_timeline.models import NormalizedMessage, RawRow
from message_timeline.pipeline.decoding import decode_rows
from message_timeline.pipeline.normalize import normalize
from message_timeline.pipeline.tool_calls import find_missing_tool_call_ids
from message_timeline.source import MessageSource

DEFAULT_MAX_BACKFILL_ATTEMPTS = 4


@dataclass(frozen=True)
class FetchResult:
    rows: list[RawRow]
    has_more: bool
    backfill_fetches: int = 0


def _fresh(rows: Iterable[RawRow], seen: set[str]) -> list[RawRow]:
    out: list[RawRow] = []
    for row in rows:
        if row.id in seen:
            continue
        seen.add(row.id)
        out.append(row)
    return out


class BackfillFetcher:
    """Pages the message source, pulling older pages for dangling tool results.

    A first page can start in the middle of a turn: tool rows whose assistant
    call sits one page further back. Those calls are fetched eagerly so the
    timeline never shows a result without its call. Paging further back
    (``offset > 0``) only returns the requested range.
    """

    def __init__(self, source: MessageSource, *, max_backfill_attempts: int = DEFAULT_MAX_BACKFILL_ATTEMPTS):
        self._source = source
        self._max_backfill_attempts = max(0, max_backfill_attempts)

    async def fetch(
        self,
        session_id: str,
        *,
        limit: int,
        offset: int = 0,
        known_ids: Collection[str] = (),
    ) -> FetchResult:
        page = decode_rows(await self._source.fetch_page(session_id, limit=limit, offset=offset), session_id)
        has_more = len(page) >= limit
        seen = set(known_ids)
        rows = _fresh(page, seen)

        if offset > 0:
            return FetchResult(rows=rows, has_more=has_more)

        missing = find_missing_tool_call_ids(rows)
        next_offset = offset + len(page)
        attempts = 0
        while missing and attempts < self._max_backfill_attempts:
            attempts += 1
            older = decode_rows(
                await self._source.fetch_page(session_id, limit=limit, offset=next_offset),
                session_id,
            )
            if not older:
                has_more = False
                break
            next_offset += len(older)
            has_more = len(older) >= limit
            rows = _fresh(older, seen) + rows
            missing = find_missing_tool_call_ids(rows)
            logger.debug(
                f"Backfill {attempts}/{self._max_backfill_attempts} for session {session_id}: "
                f"+{len(older)} rows, {len(missing)} tool result(s) still unresolved"
            )

        if missing:
            logger.info(
                f"Session {session_id}: {len(missing)} tool result(s) left without their call "
                f"after {attempts} backfill fetch(es)"
            )
        return FetchResult(rows=rows, has_more=has_more, backfill_fetches=attempts)

    async def load(self, session_id: str, *, limit: int, offset: int = 0) -> list[NormalizedMessage]:
        result = await self.fetch(session_id, limit=limit, offset=offset)
        return normalize(result.rows)
