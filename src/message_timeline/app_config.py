from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass
class RuntimeEnv:
    api_token: str | None
    api_base_url: str | None


@dataclass
class AppConfig:
    api_base_url: str
    page_size: int
    backfill_max_attempts: int
    compact_history: bool
    request_timeout_seconds: float
    request_retry_attempts: int
    log_level: str
    log_consumers: list | None


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        api_base_url=str(config.get("ApiBaseUrl", "http://localhost:3001/api")).strip(),
        page_size=max(1, int(config.get("PageSize", 50))),
        backfill_max_attempts=max(0, int(config.get("BackfillMaxAttempts", 4))),
        compact_history=_to_bool(config.get("CompactHistory", True), default=True),
        request_timeout_seconds=float(config.get("RequestTimeoutSeconds", 30.0)),
        request_retry_attempts=max(1, int(config.get("RequestRetryAttempts", 3))),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        api_token=os.environ.get("CHAT_API_TOKEN") or None,
        api_base_url=os.environ.get("CHAT_API_BASE_URL") or None,
    )
