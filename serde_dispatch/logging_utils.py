# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""JSON formatter and logging setup for structured output.

Provides :class:`JsonFormatter`, a :class:`logging.Formatter` subclass
that serializes log records as single-line JSON objects with the
dispatcher's request fields (``server_id``, ``method``, ``ordinal``,
``status`` and the rest) in a fixed order, and
:func:`configure_logging`, which the CLI uses to attach it.

This module is **not** auto-imported by ``serde_dispatch``; import it
explicitly::

    from serde_dispatch.logging_utils import JsonFormatter
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from enum import StrEnum
from typing import TextIO

__all__ = ["JsonFormatter", "LogFormat", "configure_logging"]

# Build the set of attribute names that every LogRecord has by default.
# Anything *not* in this set was injected via ``extra``.
_DEFAULT_RECORD_ATTRS: frozenset[str] = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()) | {
    "message",
    "asctime",
}

_RESERVED_KEYS: frozenset[str] = frozenset({"timestamp", "level", "logger", "message", "exception", "stack_info"})

_REQUEST_FIELDS: tuple[str, ...] = (
    "server_id",
    "interface",
    "method",
    "ordinal",
    "status",
    "duration_ms",
    "error_type",
)
"""Fields the dispatcher attaches to request records, emitted in this order."""

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class LogFormat(StrEnum):
    """Output format for :func:`configure_logging`."""

    text = "text"
    json = "json"


class JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line, request fields first.

    Every line starts with ``timestamp`` (ISO 8601, UTC), ``level``,
    ``logger`` and ``message``.  The request fields the dispatcher attaches
    follow in a fixed order: ``server_id``, ``interface``, ``method``,
    ``ordinal``, ``status``, ``duration_ms``, ``error_type``.  An empty
    ``error_type`` is left out, and an ordinal of ``-1`` (the request ended
    before its ordinal was read) is written as ``null``.  Any other
    ``extra`` fields come last, sorted by name.

    Extra fields never replace the standard ones.  Values JSON cannot
    represent, such as Arrow schemas, are written with ``str()``.
    """

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # noqa: N802
        """Return the record's creation time as ISO 8601 in UTC with milliseconds."""
        if datefmt is not None:
            return super().formatTime(record, datefmt)
        created = datetime.fromtimestamp(record.created, tz=UTC)
        return created.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def format(self, record: logging.LogRecord) -> str:
        """Format *record* as a single-line JSON string."""
        record.message = record.getMessage()
        obj: dict[str, object] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }
        extras = {
            k: v for k, v in record.__dict__.items() if k not in _DEFAULT_RECORD_ATTRS and k not in _RESERVED_KEYS
        }
        for key in _REQUEST_FIELDS:
            if key not in extras:
                continue
            value = extras.pop(key)
            if key == "error_type" and not value:
                continue
            if key == "ordinal" and value == -1:
                value = None
            obj[key] = value
        obj.update(sorted(extras.items()))
        if record.exc_info and record.exc_info[1]:
            obj["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            obj["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(obj, default=str)


def configure_logging(
    level: int | str = logging.WARNING,
    fmt: LogFormat = LogFormat.text,
    stream: TextIO | None = None,
) -> logging.Handler:
    """Attach one stream handler to the ``serde_dispatch`` logger.

    Any handler installed by an earlier call is replaced, so calling this
    repeatedly (as the CLI does per command) never duplicates output.

    Returns:
        The installed handler.

    """
    root = logging.getLogger("serde_dispatch")
    for existing in [h for h in root.handlers if getattr(h, "_serde_dispatch_cli", False)]:
        root.removeHandler(existing)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(JsonFormatter() if fmt == LogFormat.json else logging.Formatter(_TEXT_FORMAT))
    handler._serde_dispatch_cli = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    return handler
