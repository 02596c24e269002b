from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from message_timeline.errors import MessageSourceError


def _on_retry(retry_state):
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason}. Retrying in {wait:.1f}s (attempt {attempt})...")


class HttpMessageSource:
    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout_seconds: float = 30.0,
        retry_attempts: int = 3,
        retry_wait_seconds: float = 0.5,
        compact: bool = True,
        client: httpx.AsyncClient | None = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_seconds,
        )
        self._compact = compact
        self._get_json = retry(
            retry=retry_if_exception_type(httpx.TransportError),
            wait=wait_exponential(multiplier=retry_wait_seconds, min=retry_wait_seconds, max=8),
            stop=stop_after_attempt(max(1, retry_attempts)),
            before_sleep=_on_retry,
            reraise=True,
        )(self._get_json_once)

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_page(self, session_id: str, *, limit: int, offset: int) -> list[dict[str, Any]]:
        params = {
            "limit": str(limit),
            "offset": str(max(0, offset)),
            "compact": "true" if self._compact else "false",
        }
        return await self._get_rows(f"/sessions/{quote(session_id, safe='')}/messages", params)

    async def fetch_process(self, session_id: str, user_message_id: str) -> list[dict[str, Any]]:
        path = f"/sessions/{quote(session_id, safe='')}/turns/{quote(user_message_id, safe='')}/process"
        return await self._get_rows(path, {})

    async def _get_rows(self, path: str, params: dict[str, str]) -> list[dict[str, Any]]:
        try:
            body = await self._get_json(path, params)
        except httpx.HTTPError as ex:
            raise MessageSourceError(f"Request to {path} failed: {ex}") from ex

        if not isinstance(body, list):
            raise MessageSourceError(f"Expected a list of messages from {path}, got {type(body).__name__}")
        logger.debug(f"GET {path} params={params} -> {len(body)} rows")
        return body

    async def _get_json_once(self, path: str, params: dict[str, str]) -> Any:
        response = await self._client.get(path, params=params)
        if response.status_code >= 400:
            raise MessageSourceError(
                f"GET {path} returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as ex:
            raise MessageSourceError(f"GET {path} returned invalid JSON: {ex}") from ex
