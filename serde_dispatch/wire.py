# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Wire protocol read/write helpers.

A request is the encoded ordinal followed by each parameter encoded in
declaration order.  The reply is the encoded return value.  No framing,
length prefix or header is added; each codec value delimits itself.
"""

from __future__ import annotations

import logging
from typing import IO, Any

from serde_dispatch._debug import (
    fmt_args,
    fmt_value,
    wire_request_logger,
    wire_response_logger,
)
from serde_dispatch.codec import Ordinal, decode, encode
from serde_dispatch.schema import MethodSignature

__all__ = [
    "read_arguments",
    "read_ordinal",
    "read_reply",
    "write_reply",
    "write_request",
]


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


def write_request(writer: IO[bytes], method: MethodSignature, args: dict[str, Any]) -> None:
    """Write ``ordinal ++ params`` for a call to *method*.

    *args* must hold a value for every parameter of *method*; they are
    written in declaration order regardless of the dict's order.

    Raises:
        EncodingError: If a value does not fit its parameter type.

    """
    if wire_request_logger.isEnabledFor(logging.DEBUG):
        wire_request_logger.debug(
            "Write request: method=%s, ordinal=%d, args={%s}",
            method.name,
            method.ordinal,
            fmt_args(args),
        )
    encode(writer, method.ordinal, Ordinal)
    for param in method.params:
        encode(writer, args[param.name], param.type_hint)


def read_ordinal(reader: IO[bytes]) -> int:
    """Read the selector that opens a request.

    Raises:
        DecodingError: If the stream is empty, truncated or malformed.

    """
    ordinal: int = decode(reader, Ordinal)
    if wire_request_logger.isEnabledFor(logging.DEBUG):
        wire_request_logger.debug("Read request ordinal: %d", ordinal)
    return ordinal


def read_arguments(reader: IO[bytes], method: MethodSignature) -> dict[str, Any]:
    """Read the parameters of *method* in declaration order.

    Returns:
        Mapping of parameter name to decoded value, in declaration order.

    Raises:
        DecodingError: If a parameter is missing, truncated or mistyped.

    """
    args = {param.name: decode(reader, param.type_hint) for param in method.params}
    if wire_request_logger.isEnabledFor(logging.DEBUG):
        wire_request_logger.debug("Read request: method=%s, args={%s}", method.name, fmt_args(args))
    return args


# ---------------------------------------------------------------------------
# Reply
# ---------------------------------------------------------------------------


def write_reply(writer: IO[bytes], method: MethodSignature, value: Any) -> None:
    """Write the return value of *method*.

    Raises:
        EncodingError: If *value* does not fit the declared return type.

    """
    if wire_response_logger.isEnabledFor(logging.DEBUG):
        wire_response_logger.debug("Write reply: method=%s, value=%s", method.name, fmt_value(value))
    encode(writer, value, method.return_type)


def read_reply(reader: IO[bytes], method: MethodSignature) -> Any:
    """Read the return value of *method*.

    Raises:
        DecodingError: If the reply is missing, truncated or mistyped.

    """
    value = decode(reader, method.return_type)
    if wire_response_logger.isEnabledFor(logging.DEBUG):
        wire_response_logger.debug("Read reply: method=%s, value=%s", method.name, fmt_value(value))
    return value
