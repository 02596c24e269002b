from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class MessageSource(Protocol):
    async def fetch_page(self, session_id: str, *, limit: int, offset: int) -> list[dict[str, Any]]:
        """Fetch up to ``limit`` rows, skipping the ``offset`` newest ones.

        Rows come back oldest-to-newest within the page.
        """
        ...

    async def fetch_process(self, session_id: str, user_message_id: str) -> list[dict[str, Any]]:
        """Fetch the process rows (tool calls, reasoning) behind one user message."""
        ...
