from __future__ import annotations

from dataclasses import dataclass

from message_timeline.app_config import AppConfig, RuntimeEnv
from message_timeline.controller import TimelineController
from message_timeline.logging_config import setup_logging
from message_timeline.shell import TimelineShell
from message_timeline.sources.http_source import HttpMessageSource
from message_timeline.state import TimelineStore


@dataclass
class AppRuntime:
    shell: TimelineShell
    controller: TimelineController
    source: HttpMessageSource
    api_base_url: str
    log_descriptions: list[str]


def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    api_base_url = env.api_base_url or app.api_base_url
    source = HttpMessageSource(
        api_base_url,
        token=env.api_token,
        timeout_seconds=app.request_timeout_seconds,
        retry_attempts=app.request_retry_attempts,
        compact=app.compact_history,
    )
    controller = TimelineController(
        TimelineStore(),
        source,
        page_size=app.page_size,
        max_backfill_attempts=app.backfill_max_attempts,
    )
    return AppRuntime(
        shell=TimelineShell(controller),
        controller=controller,
        source=source,
        api_base_url=api_base_url,
        log_descriptions=log_descriptions,
    )
