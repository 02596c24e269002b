import sys
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

# Records logged without ``logger.bind(session_id=...)`` show this placeholder.
NO_SESSION = "-"

_CONSOLE_FORMAT = (
    "<level>{level:<8}</level> | <magenta>{extra[session_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {extra[session_id]} | {name}:{function}:{line} - {message}"


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    def __init__(self, colorize: bool | None = None):
        self._colorize = colorize

    def register(self, level: str) -> None:
        logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT, colorize=self._colorize)

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


class FileLogConsumer:
    """Plain-text or JSON-lines (``serialize=True``) log file with rotation."""

    def __init__(
        self,
        path: str = "timeline.log",
        rotation: str = "10 MB",
        retention: int = 3,
        serialize: bool = False,
    ):
        self._path = path
        self._rotation = rotation
        self._retention = retention
        self._serialize = serialize

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self._path,
            level=level,
            format=_FILE_FORMAT,
            rotation=self._rotation,
            retention=self._retention,
            serialize=self._serialize,
            encoding="utf-8",
        )

    def describe(self, level: str) -> str:
        kind = "jsonl" if self._serialize else "file"
        return f"{kind} ({self._path}, {level})"


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
}

_DEFAULT_CONSUMERS = [
    {"type": "console", "level": "WARNING"},
    {"type": "file", "path": "timeline.log"},
]


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace loguru's default sink with the configured consumers.

    ``consumers`` entries look like ``{"type": "file", "level": "DEBUG",
    "path": "logs/timeline.log", "serialize": true}``; keys other than
    ``type`` and ``level`` go to the consumer's constructor. Returns one
    description per registered consumer for the startup banner.
    """
    logger.remove()
    logger.configure(extra={"session_id": NO_SESSION})

    descriptions: list[str] = []
    for config in consumers if consumers is not None else _DEFAULT_CONSUMERS:
        sink_type = config.get("type", "")
        cls = _CONSUMER_TYPES.get(sink_type)
        if cls is None:
            logger.warning(f"Unknown log consumer type: {sink_type!r}")
            continue

        sink_level = str(config.get("level", level)).upper()
        options = {k: v for k, v in config.items() if k not in ("type", "level")}
        try:
            consumer = cls(**options)
        except TypeError as ex:
            logger.warning(f"Bad options for {sink_type} log consumer: {ex}")
            continue
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    return descriptions
