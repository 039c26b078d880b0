# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Self-delimiting value codec built on Arrow IPC.

Every value is written as one complete Arrow IPC stream: a schema message
with a single ``value`` field, one single-row record batch, and the
end-of-stream marker.  Consecutive values can therefore be written
back-to-back on one byte stream and read again one at a time; each
``ipc.open_stream()`` stops at its own EOS marker and the next call picks up
where the last left off.

A ``None``-typed value (the unit type of a method without a return
annotation) is written as an empty-schema, zero-row stream.

KEY FUNCTIONS
-------------
encode(sink, value, type_hint) : Append one encoded value to a binary sink
decode(source, type_hint) : Read exactly one encoded value from a source
encode_bytes / decode_bytes : The same, for in-memory buffers
infer_arrow_type(type_hint) : Map a Python annotation to an Arrow type

Type mapping
------------
- Basic types: str, bytes, int (int64), float, bool
- Generic types: list[T], dict[K, V], frozenset[T]
- ``X | None``: nullable field
- NewType: unwraps to the underlying type
- Enum: dictionary-encoded string holding the member name
- dataclasses: struct
- ``Annotated[T, ArrowType(...)]``: explicit Arrow type (see :data:`UInt`)

Set ``SERDE_DISPATCH_CODEC_DEBUG=1`` to trace every encoded and decoded
value on stderr.
"""

from __future__ import annotations

import dataclasses
import os
from enum import Enum
from io import BytesIO
from types import UnionType
from typing import (
    IO,
    Annotated,
    Any,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

import pyarrow as pa
import structlog
from pyarrow import ipc

from serde_dispatch._debug import fmt_schema
from serde_dispatch.errors import DecodingError, EncodingError

__all__ = [
    "ArrowType",
    "Ordinal",
    "UInt",
    "decode",
    "decode_bytes",
    "encode",
    "encode_bytes",
    "infer_arrow_type",
    "is_unit_type",
    "value_schema",
]

# Codec debug logging - enable with SERDE_DISPATCH_CODEC_DEBUG=1
_CODEC_DEBUG = os.environ.get("SERDE_DISPATCH_CODEC_DEBUG", "").lower() in ("1", "true", "yes")
_codec_log: structlog.stdlib.BoundLogger | None = None

_EMPTY_SCHEMA = pa.schema([])
_VALUE_FIELD = "value"


def _get_codec_log() -> structlog.stdlib.BoundLogger:
    """Get or create the codec debug logger, configured to write to stderr."""
    global _codec_log
    if _codec_log is None:
        import sys

        structlog.configure(
            processors=[
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(0),
            logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        )
        _codec_log = structlog.get_logger().bind(component="codec")
    return _codec_log


# ---------------------------------------------------------------------------
# Type inference
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class ArrowType:
    """Annotation marker to specify an explicit Arrow type.

    Use with Annotated to override the default inferred Arrow type::

        def resize(self, width: Annotated[int, ArrowType(pa.uint32())]) -> None: ...

    """

    arrow_type: pa.DataType


UInt = Annotated[int, ArrowType(pa.uint64())]
"""Unsigned 64-bit integer."""

Ordinal = UInt
"""Wire type of the method selector that opens every request."""


def _is_optional_type(python_type: Any) -> tuple[Any, bool]:
    """Check if a type is Optional (X | None) and extract the inner type.

    Returns:
        Tuple of (inner_type, is_nullable). If nullable, inner_type is the
        non-None type. If not nullable, inner_type is the original type.

    """
    origin = get_origin(python_type)
    args = get_args(python_type)

    if origin is UnionType or origin is Union:
        non_none_types = [t for t in args if t is not type(None)]
        if len(non_none_types) == 1 and len(args) == 2:
            return non_none_types[0], True

    return python_type, False


def _unwrap(python_type: Any) -> Any:
    """Strip Optional, Annotated and NewType wrappers down to the base type."""
    inner, _ = _is_optional_type(python_type)
    if get_origin(inner) is Annotated:
        inner = get_args(inner)[0]
    while hasattr(inner, "__supertype__"):
        inner = inner.__supertype__
    return inner


def is_unit_type(python_type: Any) -> bool:
    """Return whether *python_type* is the unit type (``None``)."""
    return python_type is None or python_type is type(None)


def infer_arrow_type(python_type: Any) -> pa.DataType:
    """Infer an Arrow type from a Python type annotation.

    For types not supported here, use ``Annotated[T, ArrowType(...)]``.

    Raises:
        TypeError: If the type cannot be automatically inferred.

    """
    inner_type, _ = _is_optional_type(python_type)
    if inner_type is not python_type:
        return infer_arrow_type(inner_type)

    if get_origin(python_type) is Annotated:
        args = get_args(python_type)
        for arg in args[1:]:
            if isinstance(arg, ArrowType):
                return arg.arrow_type
        return infer_arrow_type(args[0])

    # NewType creates a callable with __supertype__ attribute
    if hasattr(python_type, "__supertype__"):
        return infer_arrow_type(python_type.__supertype__)

    if isinstance(python_type, type) and issubclass(python_type, Enum):
        return pa.dictionary(pa.int8(), pa.string())

    if isinstance(python_type, type) and dataclasses.is_dataclass(python_type):
        try:
            hints = get_type_hints(python_type, include_extras=True)
        except (NameError, AttributeError) as exc:
            raise TypeError(f"Cannot resolve field types of {python_type.__name__}: {exc}") from exc
        struct_fields: list[pa.Field[Any]] = []
        for f in dataclasses.fields(python_type):
            hint = hints.get(f.name, f.type)
            _, nullable = _is_optional_type(hint)
            struct_fields.append(pa.field(f.name, infer_arrow_type(hint), nullable=nullable))
        return pa.struct(struct_fields)

    origin = get_origin(python_type)
    args = get_args(python_type)

    if origin is list or origin is frozenset:
        if not args:
            raise TypeError(f"Cannot infer Arrow type for bare {python_type}; declare its element type")
        return pa.list_(infer_arrow_type(args[0]))

    if origin is dict:
        if len(args) < 2:
            raise TypeError(f"Cannot infer Arrow type for bare {python_type}; declare its key and value types")
        return pa.map_(infer_arrow_type(args[0]), infer_arrow_type(args[1]))

    type_map: dict[type, pa.DataType] = {
        str: pa.string(),
        bytes: pa.binary(),
        bool: pa.bool_(),
        int: pa.int64(),
        float: pa.float64(),
    }

    if python_type in type_map:
        return type_map[python_type]

    raise TypeError(
        f"Cannot infer Arrow type for: {python_type}. "
        f"Use Annotated[T, ArrowType(...)] to specify the Arrow type explicitly."
    )


def value_schema(python_type: Any) -> pa.Schema:
    """Build the single-field schema a value of *python_type* travels in.

    Raises:
        TypeError: If the type cannot be mapped to Arrow.

    """
    if is_unit_type(python_type):
        return _EMPTY_SCHEMA
    _, nullable = _is_optional_type(python_type)
    return pa.schema([pa.field(_VALUE_FIELD, infer_arrow_type(python_type), nullable=nullable)])


def _type_name(python_type: Any) -> str:
    return getattr(python_type, "__name__", None) or str(python_type)


# ---------------------------------------------------------------------------
# Value conversion
# ---------------------------------------------------------------------------


def _to_wire(value: Any) -> Any:
    """Convert a Python value into something ``pa.array`` accepts.

    Handles types that Arrow cannot serialize directly:

    - Enum -> .name (string)
    - dataclass -> dict (struct)
    - frozenset -> list
    - dict -> list of tuples (for map types)
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.name
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_wire(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, frozenset):
        return [_to_wire(v) for v in value]
    if isinstance(value, dict):
        return [(_to_wire(k), _to_wire(v)) for k, v in value.items()]
    if isinstance(value, list):
        return [_to_wire(v) for v in value]
    return value


def _from_wire(value: Any, python_type: Any) -> Any:
    """Convert a value produced by ``as_py()`` back to the annotated Python type."""
    if value is None:
        return None

    inner_type = _unwrap(python_type)

    if isinstance(inner_type, type) and issubclass(inner_type, Enum):
        try:
            return inner_type[value]
        except KeyError as err:
            raise DecodingError(f"'{value}' is not a valid {inner_type.__name__} member name") from err

    if isinstance(inner_type, type) and dataclasses.is_dataclass(inner_type) and isinstance(value, dict):
        hints = get_type_hints(inner_type, include_extras=True)
        return inner_type(
            **{f.name: _from_wire(value.get(f.name), hints.get(f.name, f.type)) for f in dataclasses.fields(inner_type)}
        )

    origin = get_origin(inner_type)
    args = get_args(inner_type)

    if origin is frozenset:
        return frozenset(_from_wire(v, args[0]) for v in value)

    if origin is dict:
        items = value.items() if isinstance(value, dict) else value
        return {_from_wire(k, args[0]): _from_wire(v, args[1]) for k, v in items}

    if origin is list:
        return [_from_wire(v, args[0]) for v in value]

    return value


# ---------------------------------------------------------------------------
# encode / decode
# ---------------------------------------------------------------------------


def _build_batch(value: Any, schema: pa.Schema) -> pa.RecordBatch:
    if len(schema) == 0:
        return pa.RecordBatch.from_pydict({}, schema=schema)
    return pa.RecordBatch.from_arrays([pa.array([_to_wire(value)], type=schema.field(0).type)], schema=schema)


def encode(sink: IO[bytes], value: Any, python_type: Any) -> None:
    """Append the encoding of *value*, typed as *python_type*, to *sink*.

    Raises:
        EncodingError: If the value does not fit the declared type or the
            sink rejects the bytes.

    """
    try:
        schema = value_schema(python_type)
    except TypeError as exc:
        raise EncodingError(f"Cannot encode values of type {_type_name(python_type)}: {exc}") from exc
    if len(schema) > 0 and value is None and not schema.field(0).nullable:
        raise EncodingError(f"Cannot encode None as non-optional {_type_name(python_type)}")
    try:
        batch = _build_batch(value, schema)
    except (pa.ArrowException, TypeError, ValueError, OverflowError) as exc:
        raise EncodingError(f"Cannot encode {value!r} as {_type_name(python_type)}: {exc}") from exc
    try:
        with ipc.new_stream(sink, schema) as writer:
            writer.write_batch(batch)
    except (pa.ArrowException, OSError, ValueError) as exc:
        raise EncodingError(f"Failed writing {_type_name(python_type)} value: {exc}") from exc

    if _CODEC_DEBUG:
        _get_codec_log().debug(
            "codec_encode", type=_type_name(python_type), schema=fmt_schema(schema), value=repr(value)
        )


def encode_bytes(value: Any, python_type: Any) -> bytes:
    """Return the encoding of *value* as bytes."""
    buffer = BytesIO()
    encode(buffer, value, python_type)
    return buffer.getvalue()


def decode(source: IO[bytes], python_type: Any) -> Any:
    """Read exactly one value of *python_type* from *source*.

    Consumes the value's IPC stream up to and including its EOS marker, and
    nothing beyond it.

    Raises:
        DecodingError: If the stream ends early, carries a different type,
            or does not hold exactly one value.

    """
    name = _type_name(python_type)
    try:
        expected = value_schema(python_type)
    except TypeError as exc:
        raise DecodingError(f"Cannot decode values of type {name}: {exc}") from exc

    try:
        reader = ipc.open_stream(source)
        batch = reader.read_next_batch()
    except StopIteration:
        raise DecodingError(f"Stream for {name} value ended without a record batch") from None
    except (pa.ArrowException, OSError, EOFError) as exc:
        raise DecodingError(f"Stream ended before a {name} value was read: {exc}") from exc

    try:
        reader.read_next_batch()
    except StopIteration:
        pass
    except (pa.ArrowException, OSError, EOFError) as exc:
        raise DecodingError(f"Stream for {name} value is truncated: {exc}") from exc
    else:
        raise DecodingError(f"Expected a single record batch for {name} value, got several")

    if _CODEC_DEBUG:
        _get_codec_log().debug("codec_decode", type=name, schema=fmt_schema(batch.schema), num_rows=batch.num_rows)

    if len(batch.schema) != len(expected) or any(
        got.type != want.type for got, want in zip(batch.schema, expected, strict=True)
    ):
        raise DecodingError(
            f"Expected {name} value with schema {fmt_schema(expected)}, got {fmt_schema(batch.schema)}"
        )
    if len(expected) == 0:
        return None
    if batch.num_rows != 1:
        raise DecodingError(f"Expected exactly 1 row for {name} value, got {batch.num_rows}")

    value = batch.column(0)[0].as_py()
    if value is None and not expected.field(0).nullable:
        raise DecodingError(f"Got null for non-optional {name} value")
    try:
        return _from_wire(value, python_type)
    except DecodingError:
        raise
    except Exception as exc:
        raise DecodingError(f"Cannot build {name} value: {type(exc).__name__}: {exc}") from exc


def decode_bytes(data: bytes, python_type: Any) -> Any:
    """Decode one value of *python_type* from an in-memory buffer."""
    return decode(BytesIO(data), python_type)
