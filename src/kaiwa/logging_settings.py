"""Read `logging_settings.conf`, the operator-facing knobs for the three log channels.

The file holds `key = value` lines with optional `#` comments:

* `terminal`: console output while the server runs
* `app`: the date-stamped application log under `logs/app/`
* `generations`: one JSON entry per dialogue generation attempt
* `retention_hours`: age after which old log files are removed at startup

Levels are `debug`, `info`, `warning`, `error` or `off`. Anything unreadable
falls back to the defaults rather than failing startup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

_CHANNELS = ("terminal", "app", "generations")
_RETENTION_KEY = "retention_hours"

_LEVELS: dict[str, int | None] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "off": None,
}

DEFAULT_LEVEL = logging.INFO
DEFAULT_RETENTION_HOURS = 72


@dataclass(frozen=True)
class LoggingSettings:
    terminal_level: int | None = DEFAULT_LEVEL
    app_level: int | None = DEFAULT_LEVEL
    generations_level: int | None = DEFAULT_LEVEL
    retention_hours: int = DEFAULT_RETENTION_HOURS


def _assignments(text: str) -> Iterator[tuple[str, str]]:
    for raw_line in text.splitlines():
        line, _, _comment = raw_line.partition("#")
        key, sep, value = line.partition("=")
        if sep:
            yield key.strip().lower(), value.strip()


def _channel_level(value: str) -> int | None:
    return _LEVELS.get(value.lower(), DEFAULT_LEVEL)


def _retention(value: str) -> int:
    try:
        return max(0, int(value))
    except ValueError:
        return DEFAULT_RETENTION_HOURS


def parse_logging_settings(path: Path) -> LoggingSettings:
    """Return the settings in `path`, or the defaults when it does not exist."""

    if not path.exists():
        return LoggingSettings()

    overrides: dict[str, int | None] = {}
    for key, value in _assignments(path.read_text(encoding="utf-8")):
        if key == _RETENTION_KEY:
            overrides[_RETENTION_KEY] = _retention(value)
        elif key in _CHANNELS:
            overrides[f"{key}_level"] = _channel_level(value)
    return LoggingSettings(**overrides)  # type: ignore[arg-type]


__all__ = [
    "DEFAULT_LEVEL",
    "DEFAULT_RETENTION_HOURS",
    "LoggingSettings",
    "parse_logging_settings",
]
