from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_load: Callable[[str], Awaitable[None]],
        on_more: Callable[[], Awaitable[None]],
        on_toggle: Callable[[str], Awaitable[None]],
        on_show: Callable[[], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_load = on_load
        self._on_more = on_more
        self._on_toggle = on_toggle
        self._on_show = on_show
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        if trimmed == "/help":
            await self._on_help()
            return True
        if trimmed == "/more":
            await self._on_more()
            return True
        if trimmed == "/show":
            await self._on_show()
            return True
        if trimmed.startswith("/load"):
            await self._on_load(trimmed)
            return True
        if trimmed.startswith("/toggle"):
            await self._on_toggle(trimmed)
            return True

        self._on_unknown(trimmed)
        return True
