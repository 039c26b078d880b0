# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Debug logging infrastructure for wire protocol diagnostics.

Provides logger instances under the ``serde_dispatch.wire.*`` hierarchy and
formatting helpers for requests and replies.  Enabling
``logging.getLogger("serde_dispatch.wire").setLevel(logging.DEBUG)`` shows
every ordinal, argument list and reply that crosses the wire.

All formatting helpers return ``str`` and never log directly.
They are meant to be called inside ``isEnabledFor`` guards so
there is no overhead when debug logging is disabled.
"""

from __future__ import annotations

import logging
from typing import Any

import pyarrow as pa

# ---------------------------------------------------------------------------
# Logger hierarchy: serde_dispatch.wire.*
# ---------------------------------------------------------------------------

wire_request_logger = logging.getLogger("serde_dispatch.wire.request")
"""Request serialization / deserialization."""

wire_response_logger = logging.getLogger("serde_dispatch.wire.response")
"""Reply serialization / deserialization."""

wire_transport_logger = logging.getLogger("serde_dispatch.wire.transport")
"""Transport lifecycle (pipe, unix socket)."""

# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

_MAX_VALUE_LEN = 80
"""Maximum repr length for individual values in fmt_args / fmt_value."""


def fmt_schema(schema: pa.Schema) -> str:
    """Format an Arrow schema compactly.

    Returns:
        ``"(a: double, b: double)"`` or ``"(empty)"`` for zero-field schemas.

    """
    if len(schema) == 0:
        return "(empty)"
    fields = ", ".join(f"{f.name}: {f.type}" for f in schema)
    return f"({fields})"


def fmt_value(value: Any) -> str:
    """Return ``repr(value)``, truncated for long values."""
    r = repr(value)
    if len(r) > _MAX_VALUE_LEN:
        r = r[:_MAX_VALUE_LEN] + "..."
    return r


def fmt_args(args: dict[str, Any]) -> str:
    """Format call arguments compactly.

    Returns:
        ``"a=1.0, b=2.0"`` with long repr values truncated.

    """
    return ", ".join(f"{k}={fmt_value(v)}" for k, v in args.items())
