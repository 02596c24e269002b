import asyncio
import io
import unittest
from contextlib import redirect_stdout

from tests.base import FakeMessageSource, assistant_call, row, tool_result
from message_timeline.commands.router import CommandRouter
from message_timeline.controller import TimelineController
from message_timeline.errors import MessageSourceError
from message_timeline.models import TurnProcessState
from message_timeline.pipeline.normalize import normalize_payloads
from message_timeline.services.timeline_formatter import TimelineFormatter
from message_timeline.shell import TimelineShell
from message_timeline.state import TimelineStore


def _rows() -> list[dict]:
    return [
        row("sum-1", "system", "", summary="Earlier context", metadata={"type": "session_summary"}),
        row("user-0001", "user", "Fix the tests", minute=1, metadata={"historyProcess": {"hasProcess": True}}),
        row("asst-0001", "assistant", "Fixed.", minute=5),
    ]


def _process() -> list[dict]:
    return [assistant_call("p1", "c1", "bash", minute=2), tool_result("p2", "c1", "3 passed", minute=3)]


class CommandRouterTests(unittest.TestCase):
    def test_routes(self) -> None:
        calls: list[tuple[str, str]] = []

        async def record(name: str, arg: str = "") -> None:
            calls.append((name, arg))

        router = CommandRouter(
            on_help=lambda: record("help"),
            on_load=lambda cmd: record("load", cmd),
            on_more=lambda: record("more"),
            on_toggle=lambda cmd: record("toggle", cmd),
            on_show=lambda: record("show"),
            on_unknown=lambda cmd: calls.append(("unknown", cmd)),
        )

        async def scenario() -> list[bool]:
            return [
                await router.try_handle("/help"),
                await router.try_handle(" /load s1 "),
                await router.try_handle("/more"),
                await router.try_handle("/toggle abc"),
                await router.try_handle("/show"),
                await router.try_handle("/nope"),
                await router.try_handle("hello"),
            ]

        handled = asyncio.run(scenario())

        self.assertEqual([True, True, True, True, True, True, False], handled)
        self.assertEqual(
            [
                ("help", ""),
                ("load", "/load s1"),
                ("more", ""),
                ("toggle", "/toggle abc"),
                ("show", ""),
                ("unknown", "/nope"),
            ],
            calls,
        )


class TimelineFormatterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.formatter = TimelineFormatter(line_prefix="> ", preview_chars=20)

    def test_short_id_and_preview(self) -> None:
        self.assertEqual("abcdefgh", self.formatter.short_id("abcdefghijkl"))
        self.assertEqual("abc", self.formatter.short_id("abc"))
        self.assertEqual("one two", self.formatter.preview("one\n  two"))
        self.assertEqual("x" * 17 + "...", self.formatter.preview("x" * 50))

    def test_hidden_rows_skipped_and_affordance_shown(self) -> None:
        messages = normalize_payloads(_rows(), "s1")
        lines = self.formatter.format_timeline(messages, {"user-0001": TurnProcessState()}, has_more=True)

        text = "\n".join(lines)
        self.assertIn("older messages available", lines[0])
        self.assertNotIn("sum-1", text)
        self.assertIn("user [user-000] 2026-02-19 10:01 [+]", text)
        self.assertIn("(summary) [Context summary]", text)

    def test_tool_call_lines(self) -> None:
        message = normalize_payloads(_process(), "s1")[0]
        lines = self.formatter.format_message_lines(message)
        self.assertEqual("> " + "  tool bash (c1) -> 3 passed", lines[-1])

        pending = normalize_payloads([assistant_call("p1", "c1", "bash")], "s1")[0]
        self.assertTrue(self.formatter.format_message_lines(pending)[-1].endswith("pending"))

    def test_empty_timeline(self) -> None:
        self.assertEqual(["> (no messages)"], self.formatter.format_timeline([], {}))


class TimelineShellTests(unittest.TestCase):
    def _shell(self) -> tuple[TimelineShell, FakeMessageSource]:
        source = FakeMessageSource(_rows(), processes={"user-0001": _process()})
        controller = TimelineController(TimelineStore(), source, page_size=10)
        return TimelineShell(controller), source

    def _run(self, shell: TimelineShell, *commands: str) -> str:
        async def scenario() -> None:
            for command in commands:
                await shell.run(command)

        buf = io.StringIO()
        with redirect_stdout(buf):
            asyncio.run(scenario())
        return buf.getvalue()

    def test_load_and_toggle_by_prefix(self) -> None:
        shell, source = self._shell()
        output = self._run(shell, "/load s1", "/toggle user")

        self.assertEqual([("s1", "user-0001")], source.process_calls)
        self.assertIn("tool bash (c1) -> 3 passed", output)
        self.assertIn("[-]", output)

    def test_toggle_requires_match(self) -> None:
        shell, _ = self._shell()
        output = self._run(shell, "/load s1", "/toggle zzz")
        self.assertIn("No expandable turn matches: zzz", output)

    def test_errors_are_reported_once(self) -> None:
        shell, source = self._shell()
        source.page_error = MessageSourceError("HTTP 503")

        output = self._run(shell, "/load s1", "/show")

        self.assertIn("Error: HTTP 503", output)
        self.assertEqual(1, output.count("HTTP 503"))

    def test_more_without_session(self) -> None:
        shell, _ = self._shell()
        output = self._run(shell, "/more", "/load", "plain text")
        self.assertIn("No session loaded", output)
        self.assertIn("Usage: /load <session_id>", output)
        self.assertIn("Type /help for commands", output)


if __name__ == "__main__":
    unittest.main()
