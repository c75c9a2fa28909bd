from __future__ import annotations

import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

_CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> <level>{level:<8}</level> <cyan>{name}</cyan> - <level>{message}</level>"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


@dataclass(frozen=True)
class ConsoleLogConsumer:
    colorize: bool = True

    def register(self, level: str) -> None:
        logger.add(sys.stderr, level=level, colorize=self.colorize, format=_CONSOLE_FORMAT)

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


@dataclass(frozen=True)
class FileLogConsumer:
    path: str = "step_sync.log"
    rotation: str = "10 MB"
    retention: int = 3
    serialize: bool = False

    def register(self, level: str) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self.path,
            level=level,
            format=_FILE_FORMAT,
            rotation=self.rotation,
            retention=self.retention,
            serialize=self.serialize,
        )

    def describe(self, level: str) -> str:
        kind = "json file" if self.serialize else "file"
        return f"{kind} ({self.path}, {level})"


@dataclass(frozen=True)
class JsonFileLogConsumer(FileLogConsumer):
    path: str = "step_sync.jsonl"
    serialize: bool = True


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
    "json": JsonFileLogConsumer,
}

# The REPL console only shows problems; the file gets everything.
_DEFAULT_CONSUMERS: list[dict[str, Any]] = [
    {"type": "console", "level": "WARNING"},
    {"type": "file"},
]


def build_consumer(entry: dict[str, Any]) -> LogConsumer | None:
    cls = _CONSUMER_TYPES.get(str(entry.get("type", "")).lower())
    if cls is None:
        return None
    options = {key: value for key, value in entry.items() if key not in ("type", "level")}
    return cls(**options)


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
    *,
    scrubber: Callable[[str], str] | None = None,
) -> list[str]:
    """Replace every loguru sink with the configured consumers.

    ``scrubber`` rewrites each record message before any sink sees it, so
    names that slip into a log line are redacted on the way out. Returns a
    description of each registered consumer.
    """
    logger.remove()
    if scrubber is not None:
        logger.configure(patcher=_scrubbing_patcher(scrubber))

    descriptions: list[str] = []
    for entry in _DEFAULT_CONSUMERS if consumers is None else consumers:
        consumer = build_consumer(entry)
        if consumer is None:
            logger.warning(f"Unknown log consumer type: {entry.get('type')!r}")
            continue
        sink_level = entry.get("level", level)
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))
    return descriptions


def _scrubbing_patcher(scrubber: Callable[[str], str]) -> Callable[[dict], None]:
    def patch(record: dict) -> None:
        record["message"] = scrubber(record["message"])

    return patch
