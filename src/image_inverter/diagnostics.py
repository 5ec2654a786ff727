from __future__ import annotations

import logging
import os
import sys
from typing import TextIO

COLOR_RESET = "\033[0m"
COLOR_YELLOW = "\033[33m"
COLOR_RED = "\033[31m"

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime", "taskName"}


class ColorFormatter(logging.Formatter):
    """Renders ``<LEVEL:8><message> key=value ...`` wrapped in a level colour."""

    def __init__(self, *, colorize: bool = True) -> None:
        super().__init__()
        self._colorize = colorize

    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname:<8}{record.getMessage()}"
        context = _extra_fields(record)
        if context:
            line += " " + " ".join(f"{key}={value}" for key, value in context.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        if not self._colorize:
            return line

        color = COLOR_RED if record.levelno >= logging.ERROR else COLOR_YELLOW
        return f"{color}{line}{COLOR_RESET}"


def configure_logging(stream: TextIO | None = None) -> None:
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    stream = stream or sys.stderr

    handler = logging.StreamHandler(stream)
    handler.setFormatter(ColorFormatter(colorize=_is_tty(stream)))
    logging.basicConfig(level=level, handlers=[handler], force=True)


def _extra_fields(record: logging.LogRecord) -> dict[str, object]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


def _is_tty(stream: TextIO) -> bool:
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())
