from __future__ import annotations

import asyncio

from loguru import logger

from message_timeline.commands.router import CommandRouter
from message_timeline.controller import TimelineController
from message_timeline.services.timeline_formatter import TimelineFormatter


class TimelineShell:
    _LINE_PREFIX = "timeline> "

    def __init__(self, controller: TimelineController):
        self._controller = controller
        self._formatter = TimelineFormatter(line_prefix=self._LINE_PREFIX)
        self._run_lock = asyncio.Lock()
        self._command_router = CommandRouter(
            on_help=self._on_help,
            on_load=self._handle_load_command,
            on_more=self._handle_more_command,
            on_toggle=self._handle_toggle_command,
            on_show=self._on_show,
            on_unknown=self._on_unknown_command,
        )

    async def run(self, user_input: str) -> None:
        async with self._run_lock:
            if await self._command_router.try_handle(user_input):
                return
            print(f"{self._LINE_PREFIX}Type /help for commands")

    async def _on_help(self) -> None:
        self._print_help()

    async def _on_show(self) -> None:
        self._print_timeline()

    def _on_unknown_command(self, trimmed: str) -> None:
        print(f"{self._LINE_PREFIX}Unknown local command: {trimmed}")

    def _print_help(self) -> None:
        print(f"{self._LINE_PREFIX}Available commands:")
        print(f"{self._LINE_PREFIX}- /help")
        print(f"{self._LINE_PREFIX}- /load <session_id>")
        print(f"{self._LINE_PREFIX}- /more")
        print(f"{self._LINE_PREFIX}- /toggle <user_message_id or prefix>")
        print(f"{self._LINE_PREFIX}- /show")

    async def _handle_load_command(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        if len(parts) < 2 or not parts[1].strip():
            print(f"{self._LINE_PREFIX}Usage: /load <session_id>")
            return
        await self.load(parts[1].strip())

    async def load(self, session_id: str) -> None:
        await self._controller.load(session_id)
        if self._report_error():
            return
        self._print_timeline()

    async def _handle_more_command(self) -> None:
        timeline = self._controller.state.current
        if timeline is None:
            print(f"{self._LINE_PREFIX}No session loaded. Use /load <session_id>")
            return
        if not timeline.has_more:
            print(f"{self._LINE_PREFIX}No older messages")
            return
        await self._controller.load_more()
        if self._report_error():
            return
        self._print_timeline()

    async def _handle_toggle_command(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        if len(parts) < 2 or not parts[1].strip():
            print(f"{self._LINE_PREFIX}Usage: /toggle <user_message_id or prefix>")
            return
        target = parts[1].strip()
        candidates = [key for key in self._controller.affordances() if key == target or key.startswith(target)]
        if target in candidates:
            candidates = [target]
        if not candidates:
            print(f"{self._LINE_PREFIX}No expandable turn matches: {target}")
            return
        if len(candidates) > 1:
            matches = ", ".join(self._formatter.short_id(c) for c in candidates)
            print(f"{self._LINE_PREFIX}Ambiguous prefix {target}: {matches}")
            return

        logger.debug(f"Toggling turn process {candidates[0]}")
        await self._controller.toggle(candidates[0])
        if self._report_error():
            return
        self._print_timeline()

    def _report_error(self) -> bool:
        error = self._controller.state.error
        if error is None:
            return False
        print(f"{self._LINE_PREFIX}Error: {error}")
        self._controller.clear_error()
        return True

    def _print_timeline(self) -> None:
        timeline = self._controller.state.current
        if timeline is None:
            print(f"{self._LINE_PREFIX}No session loaded. Use /load <session_id>")
            return
        lines = self._formatter.format_timeline(
            timeline.messages,
            self._controller.affordances(),
            has_more=timeline.has_more,
        )
        for line in lines:
            print(line)
