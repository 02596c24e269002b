import asyncio
import unittest

from tests.base import SESSION_ID, FakeMessageSource, assistant_call, row, tool_result
from message_timeline.backfill import BackfillFetcher
from message_timeline.errors import MessageSourceError


class BackfillFetcherTests(unittest.TestCase):
    def test_pulls_previous_page_for_dangling_result(self) -> None:
        source = FakeMessageSource(
            [
                row("u1", "user", "go", minute=0),
                assistant_call("a1", "c1", minute=1),
                tool_result("t1", "c1", "done", minute=2),
                row("a2", "assistant", "All good", minute=3),
            ]
        )
        fetcher = BackfillFetcher(source)

        result = asyncio.run(fetcher.fetch(SESSION_ID, limit=2))

        self.assertEqual(["u1", "a1", "t1", "a2"], [r.id for r in result.rows])
        self.assertEqual(1, result.backfill_fetches)
        self.assertEqual([(SESSION_ID, 2, 0), (SESSION_ID, 2, 2)], source.page_calls)

        messages = asyncio.run(fetcher.load(SESSION_ID, limit=2))
        self.assertEqual("done", messages[1].metadata.tool_calls[0].result)

    def test_no_backfill_when_page_is_complete(self) -> None:
        source = FakeMessageSource(
            [row("u0", "user", "old"), assistant_call("a1", "c1", minute=1), tool_result("t1", "c1", minute=2)]
        )
        result = asyncio.run(BackfillFetcher(source).fetch(SESSION_ID, limit=2))
        self.assertEqual(0, result.backfill_fetches)
        self.assertTrue(result.has_more)
        self.assertEqual(1, len(source.page_calls))

    def test_bounded_number_of_extra_fetches(self) -> None:
        filler = [row(f"u{i}", "user", "filler", minute=i) for i in range(20)]
        source = FakeMessageSource(filler + [tool_result("t1", "never-called", minute=30)])

        result = asyncio.run(BackfillFetcher(source, max_backfill_attempts=4).fetch(SESSION_ID, limit=2))

        self.assertEqual(4, result.backfill_fetches)
        self.assertEqual(5, len(source.page_calls))
        self.assertEqual(10, len(result.rows))
        self.assertEqual("t1", result.rows[-1].id)

    def test_stops_at_empty_page(self) -> None:
        source = FakeMessageSource([tool_result("t1", "c1")])
        result = asyncio.run(BackfillFetcher(source).fetch(SESSION_ID, limit=5))

        self.assertFalse(result.has_more)
        self.assertEqual(1, result.backfill_fetches)
        self.assertEqual(["t1"], [r.id for r in result.rows])

    def test_continues_after_short_page(self) -> None:
        source = FakeMessageSource([tool_result("t1", "c1")])
        pages = [[assistant_call("a1", "c1")], [tool_result("t1", "c1", minute=1)]]

        async def fetch_page(session_id: str, *, limit: int, offset: int) -> list[dict]:
            source.page_calls.append((session_id, limit, offset))
            return pages.pop() if pages else []

        source.fetch_page = fetch_page
        result = asyncio.run(BackfillFetcher(source).fetch(SESSION_ID, limit=5))

        self.assertEqual(["a1", "t1"], [r.id for r in result.rows])
        self.assertEqual(1, result.backfill_fetches)

    def test_older_pages_are_not_backfilled(self) -> None:
        source = FakeMessageSource([tool_result("t0", "c0"), row("u1", "user", "x", minute=1), row("u2", "user", "y")])
        result = asyncio.run(BackfillFetcher(source).fetch(SESSION_ID, limit=1, offset=2))

        self.assertEqual(["t0"], [r.id for r in result.rows])
        self.assertEqual(0, result.backfill_fetches)
        self.assertEqual(1, len(source.page_calls))

    def test_known_ids_are_dropped(self) -> None:
        source = FakeMessageSource(
            [row("u1", "user", "x"), row("u2", "user", "y", minute=1), row("u3", "user", "z", minute=2)]
        )
        result = asyncio.run(BackfillFetcher(source).fetch(SESSION_ID, limit=2, offset=1, known_ids={"u2"}))
        self.assertEqual(["u1"], [r.id for r in result.rows])

    def test_source_errors_propagate(self) -> None:
        source = FakeMessageSource([])
        source.page_error = MessageSourceError("boom", status_code=500)
        with self.assertRaises(MessageSourceError):
            asyncio.run(BackfillFetcher(source).fetch(SESSION_ID, limit=2))


if __name__ == "__main__":
    unittest.main()
