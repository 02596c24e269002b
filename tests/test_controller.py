import asyncio
import unittest

from tests.base import FakeMessageSource, assistant_call, row, tool_result
from message_timeline.controller import TimelineController
from message_timeline.errors import MessageSourceError
from message_timeline.models import TurnProcessState
from message_timeline.state import TimelineStore


def _session_rows() -> list[dict]:
    return [
        row("o1", "user", "older question", minute=0),
        row("o2", "assistant", "older answer", minute=1),
        row("u1", "user", "Fix it", minute=2, metadata={"historyProcess": {"hasProcess": True}}),
        row("a1", "assistant", "Fixed.", minute=5),
    ]


def _process_rows() -> list[dict]:
    return [assistant_call("p1", "c1", minute=3), tool_result("p2", "c1", "patched", minute=4)]


def _make(rows=None, *, page_size: int = 2) -> tuple[TimelineController, FakeMessageSource]:
    source = FakeMessageSource(_session_rows() if rows is None else rows, processes={"u1": _process_rows()})
    return TimelineController(TimelineStore(), source, page_size=page_size), source


def _ids(controller: TimelineController) -> list[str]:
    return [m.id for m in controller.state.messages]


def _visible_ids(controller: TimelineController) -> list[str]:
    return [m.id for m in controller.state.messages if not m.metadata.hidden]


class TimelineControllerTests(unittest.TestCase):
    def test_load_newest_page(self) -> None:
        controller, _ = _make()
        asyncio.run(controller.load("s1"))

        self.assertEqual(["u1", "a1"], _ids(controller))
        self.assertTrue(controller.state.current.has_more)
        self.assertFalse(controller.state.is_loading)
        self.assertIsNone(controller.state.error)

    def test_load_error_is_recorded(self) -> None:
        controller, source = _make()
        source.page_error = MessageSourceError("HTTP 500", status_code=500)

        asyncio.run(controller.load("s1"))

        self.assertEqual("HTTP 500", controller.state.error)
        self.assertFalse(controller.state.is_loading)
        self.assertEqual([], _ids(controller))

    def test_toggle_fetches_and_splices(self) -> None:
        controller, source = _make()

        async def scenario() -> None:
            await controller.load("s1")
            await controller.toggle("u1")

        asyncio.run(scenario())

        self.assertEqual(["u1", "p1", "p2", "a1"], _ids(controller))
        self.assertEqual([("s1", "u1")], source.process_calls)
        self.assertEqual({"u1": TurnProcessState(expanded=True, loaded=True)}, controller.affordances())
        spliced = controller.state.messages[1]
        self.assertEqual("u1", spliced.metadata.process_owner)
        self.assertEqual("patched", spliced.metadata.tool_calls[0].result)

    def test_toggle_twice_collapses_without_refetch(self) -> None:
        controller, source = _make()

        async def scenario() -> None:
            await controller.load("s1")
            await controller.toggle("u1")
            await controller.toggle("u1")

        asyncio.run(scenario())

        self.assertEqual(["u1", "a1"], _ids(controller))
        self.assertEqual(1, len(source.process_calls))

    def test_toggle_failure_resets_state(self) -> None:
        controller, source = _make()
        source.process_error = MessageSourceError("HTTP 404", status_code=404)

        async def scenario() -> None:
            await controller.load("s1")
            await controller.toggle("u1")

        asyncio.run(scenario())

        self.assertEqual("HTTP 404", controller.state.error)
        self.assertEqual(["u1", "a1"], _ids(controller))
        self.assertEqual({"u1": TurnProcessState()}, controller.affordances())
        self.assertFalse(controller.state.current.turns.is_in_flight("u1"))

    def test_inline_process_needs_no_fetch(self) -> None:
        rows = [
            row("u1", "user", "Go", metadata={"historyProcessInlineMessages": _process_rows()}),
            row("a1", "assistant", "Gone", minute=5),
        ]
        controller, source = _make(rows)

        async def scenario() -> None:
            await controller.load("s1")
            await controller.toggle("u1")

        asyncio.run(scenario())

        self.assertEqual(["u1", "p1", "p2", "a1"], _ids(controller))
        self.assertEqual([], source.process_calls)

    def test_second_toggle_while_loading_is_ignored(self) -> None:
        controller, source = _make()

        async def scenario() -> None:
            source.process_gate = asyncio.Event()
            await controller.load("s1")
            first = asyncio.create_task(controller.toggle("u1"))
            await asyncio.sleep(0)
            self.assertEqual(TurnProcessState(loading=True), controller.affordances()["u1"])
            await controller.toggle("u1")
            source.process_gate.set()
            await first

        asyncio.run(scenario())

        self.assertEqual(1, len(source.process_calls))
        self.assertEqual(["u1", "p1", "p2", "a1"], _ids(controller))

    def test_process_response_after_session_switch_is_dropped(self) -> None:
        controller, source = _make()

        async def scenario() -> None:
            source.process_gate = asyncio.Event()
            await controller.load("s1")
            pending = asyncio.create_task(controller.toggle("u1"))
            await asyncio.sleep(0)
            await controller.load("s2")
            source.process_gate.set()
            await pending

        asyncio.run(scenario())

        self.assertEqual("s2", controller.state.current_session_id)
        s1 = controller.state.sessions["s1"]
        self.assertEqual({}, dict(s1.turns.states))
        self.assertFalse(s1.turns.is_in_flight("u1"))
        self.assertNotIn("p1", [m.id for m in s1.messages])

    def test_process_response_after_reload_is_dropped(self) -> None:
        controller, source = _make()

        async def scenario() -> None:
            source.process_gate = asyncio.Event()
            await controller.load("s1")
            pending = asyncio.create_task(controller.toggle("u1"))
            await asyncio.sleep(0)
            await controller.load("s1")
            source.process_gate.set()
            await pending

        asyncio.run(scenario())

        self.assertEqual(["u1", "a1"], _ids(controller))
        self.assertEqual({}, dict(controller.state.current.turns.entries))

    def test_load_more_offset_ignores_spliced_rows(self) -> None:
        controller, source = _make()

        async def scenario() -> None:
            await controller.load("s1")
            await controller.toggle("u1")
            await controller.load_more()

        asyncio.run(scenario())

        self.assertEqual(("s1", 2, 2), source.page_calls[-1])
        self.assertEqual(["o1", "o2", "u1", "p1", "p2", "a1"], _ids(controller))

    def test_load_more_without_more_is_noop(self) -> None:
        controller, source = _make(page_size=10)

        async def scenario() -> None:
            await controller.load("s1")
            await controller.load_more()

        asyncio.run(scenario())

        self.assertFalse(controller.state.current.has_more)
        self.assertEqual(1, len(source.page_calls))

    def test_select_reuses_loaded_session(self) -> None:
        controller, source = _make()

        async def scenario() -> None:
            await controller.load("s1")
            await controller.toggle("u1")
            await controller.select("s2")
            await controller.select("s1")

        asyncio.run(scenario())

        self.assertEqual("s1", controller.state.current_session_id)
        self.assertEqual(["u1", "p1", "p2", "a1"], _ids(controller))
        self.assertEqual([("s1", 2, 0), ("s2", 2, 0)], source.page_calls)

    def test_failed_reload_keeps_expanded_turns(self) -> None:
        controller, source = _make()

        async def scenario() -> None:
            await controller.load("s1")
            await controller.toggle("u1")
            source.page_error = MessageSourceError("HTTP 503", status_code=503)
            await controller.load("s1")

        asyncio.run(scenario())

        self.assertEqual("HTTP 503", controller.state.error)
        self.assertFalse(controller.state.is_loading)
        self.assertEqual(["u1", "p1", "p2", "a1"], _ids(controller))
        self.assertEqual({"u1": TurnProcessState(expanded=True, loaded=True)}, controller.affordances())
        self.assertEqual(1, len(source.process_calls))

    def test_select_retries_session_whose_load_failed(self) -> None:
        controller, source = _make()

        async def scenario() -> None:
            source.page_error = MessageSourceError("HTTP 500", status_code=500)
            await controller.load("s1")
            source.page_error = None
            await controller.select("s2")
            await controller.select("s1")

        asyncio.run(scenario())

        self.assertEqual([("s1", 2, 0), ("s2", 2, 0), ("s1", 2, 0)], source.page_calls)
        self.assertEqual(["u1", "a1"], _ids(controller))
        self.assertIsNone(controller.state.error)

    def test_uncompacted_page_expands_from_grouped_turn(self) -> None:
        rows = [
            row("o1", "user", "older question", minute=0),
            row("o2", "assistant", "older answer", minute=1),
            row("u1", "user", "Fix it", minute=2),
            assistant_call("a1", "c1", minute=3),
            tool_result("t1", "c1", "patched", minute=4),
            row("a2", "assistant", "Fixed.", minute=5),
        ]
        controller, source = _make(rows, page_size=4)

        async def scenario() -> None:
            await controller.load("s1")
            self.assertEqual(["u1", "a2"], _visible_ids(controller))
            self.assertEqual({"u1": TurnProcessState()}, controller.affordances())
            await controller.toggle("u1")
            await controller.load_more()

        asyncio.run(scenario())

        self.assertEqual([], source.process_calls)
        self.assertEqual(("s1", 4, 4), source.page_calls[-1])
        self.assertEqual(["o1", "o2", "u1", "a1", "t1", "a2"], _visible_ids(controller))
        self.assertEqual("u1", controller.state.messages[3].metadata.process_owner)

    def test_forget_session(self) -> None:
        controller, _ = _make()
        asyncio.run(controller.load("s1"))
        controller.forget_session("s1")

        self.assertIsNone(controller.state.current)
        self.assertEqual({}, controller.state.sessions)
        self.assertEqual([], _ids(controller))


if __name__ == "__main__":
    unittest.main()
