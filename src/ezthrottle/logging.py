"""Structured logging for the client and CLI.

Library modules only create module-level loggers and attach context through
``extra=``; nothing is configured on import. Applications (and the CLI) call
:func:`configure_logging` once to get one JSON object per line.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, TextIO

_STANDARD_RECORD_FIELDS: frozenset[str] = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime"}

_NOISY_LOGGERS = ("httpx", "httpcore")


def _context_of(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed through ``extra=`` (job ids, URLs, status codes, ...)."""

    return {
        key: value
        for key, value in vars(record).items()
        if key not in _STANDARD_RECORD_FIELDS and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: ``timestamp`` (UTC, ISO 8601), ``level``, ``logger``, ``message``,
    optionally ``where`` (``module:function:line``), ``extra`` (the context
    fields), ``exception`` (``type``, ``message``, ``traceback``) and ``stack``.
    """

    def __init__(self, *, include_location: bool = False) -> None:
        super().__init__()
        self._include_location = include_location

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self._include_location:
            entry["where"] = f"{record.module}:{record.funcName}:{record.lineno}"

        context = _context_of(record)
        if context:
            entry["extra"] = context

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "traceback": self.formatException(record.exc_info),
            }
        if record.stack_info:
            entry["stack"] = self.formatStack(record.stack_info)

        # Header maps and step URLs may hold non-JSON types; fall back to str().
        return json.dumps(entry, ensure_ascii=False, default=str)


def configure_logging(
    level: str, *, stream: TextIO | None = None, include_location: bool = False
) -> None:
    """Install a JSON handler on the root logger, replacing existing handlers."""

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=stream or sys.stderr)
    handler.setFormatter(JsonFormatter(include_location=include_location))

    root.addHandler(handler)
    root.setLevel(level.upper())

    # httpx and httpcore log every request at INFO.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))
