# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for serde_dispatch.codec: Arrow type inference and self-delimiting values."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from typing import Annotated, NewType

import pyarrow as pa
import pytest

from serde_dispatch.codec import (
    ArrowType,
    Ordinal,
    UInt,
    _is_optional_type,
    decode,
    decode_bytes,
    encode,
    encode_bytes,
    infer_arrow_type,
    is_unit_type,
    value_schema,
)
from serde_dispatch.errors import DecodingError, EncodingError

# ---------------------------------------------------------------------------
# Test types (module-level so get_type_hints can resolve them)
# ---------------------------------------------------------------------------


class Color(Enum):
    """Test colour enum."""

    RED = "red"
    GREEN = "green"


@dataclass(frozen=True)
class Point:
    """Nested struct for dataclass tests."""

    x: int
    y: int


@dataclass(frozen=True)
class Labeled:
    """Dataclass with a nested dataclass and an optional field."""

    point: Point
    label: str | None


@dataclass(frozen=True)
class Even:
    """Rejects odd values when constructed."""

    n: int

    def __post_init__(self) -> None:
        if self.n % 2:
            raise ValueError(f"{self.n} is odd")


@dataclass(frozen=True)
class AnyNumber:
    """Same struct layout as Even, without its check."""

    n: int


UserId = NewType("UserId", int)


# ---------------------------------------------------------------------------
# Type inference
# ---------------------------------------------------------------------------


class TestInferArrowType:
    """Tests for infer_arrow_type."""

    @pytest.mark.parametrize(
        ("python_type", "expected"),
        [
            (str, pa.string()),
            (bytes, pa.binary()),
            (int, pa.int64()),
            (float, pa.float64()),
            (bool, pa.bool_()),
            (list[int], pa.list_(pa.int64())),
            (frozenset[str], pa.list_(pa.string())),
            (dict[str, int], pa.map_(pa.string(), pa.int64())),
            (str | None, pa.string()),
            (UserId, pa.int64()),
            (Color, pa.dictionary(pa.int8(), pa.string())),
        ],
    )
    def test_basic_mapping(self, python_type: object, expected: pa.DataType) -> None:
        """Supported annotations map to the expected Arrow types."""
        assert infer_arrow_type(python_type) == expected

    def test_uint_is_uint64(self) -> None:
        """UInt and Ordinal are unsigned 64-bit integers."""
        assert infer_arrow_type(UInt) == pa.uint64()
        assert infer_arrow_type(Ordinal) == pa.uint64()

    def test_annotated_override(self) -> None:
        """ArrowType markers override the inferred type."""
        assert infer_arrow_type(Annotated[int, ArrowType(pa.int16())]) == pa.int16()

    def test_annotated_without_marker_uses_base(self) -> None:
        """Annotated without an ArrowType marker falls back to the base type."""
        assert infer_arrow_type(Annotated[str, "doc"]) == pa.string()

    def test_dataclass_struct(self) -> None:
        """Dataclasses become structs, with optional fields nullable."""
        t = infer_arrow_type(Labeled)
        assert pa.types.is_struct(t)
        assert t.field("point").type == pa.struct([pa.field("x", pa.int64()), pa.field("y", pa.int64())])
        assert t.field("label").nullable

    @pytest.mark.parametrize("python_type", [object, list, dict, complex, set[int]])
    def test_unsupported_raises(self, python_type: object) -> None:
        """Types without a mapping raise TypeError."""
        with pytest.raises(TypeError, match="Cannot infer Arrow type"):
            infer_arrow_type(python_type)

    def test_optional_detection(self) -> None:
        """_is_optional_type unwraps X | None and leaves other unions alone."""
        assert _is_optional_type(int | None) == (int, True)
        assert _is_optional_type(int) == (int, False)
        assert _is_optional_type(int | str) == (int | str, False)

    def test_unit(self) -> None:
        """None and NoneType are the unit type and travel with an empty schema."""
        assert is_unit_type(None)
        assert is_unit_type(type(None))
        assert not is_unit_type(int)
        assert len(value_schema(None)) == 0


# ---------------------------------------------------------------------------
# encode / decode
# ---------------------------------------------------------------------------


class TestRoundTrip:
    """Values survive encode then decode with their declared type."""

    @pytest.mark.parametrize(
        ("value", "python_type"),
        [
            ("pong ", str),
            (b"\x00\xff", bytes),
            (-42, int),
            (2**64 - 1, UInt),
            (3.5, float),
            (True, bool),
            ([1, 2, 3], list[int]),
            ({"a": 1, "b": 2}, dict[str, int]),
            (frozenset({"x", "y"}), frozenset[str]),
            (None, str | None),
            (Color.GREEN, Color),
            (Labeled(Point(1, 2), None), Labeled),
            (UserId(7), UserId),
        ],
    )
    def test_round_trip(self, value: object, python_type: object) -> None:
        """decode(encode(v)) == v."""
        assert decode_bytes(encode_bytes(value, python_type), python_type) == value

    def test_unit_round_trip(self) -> None:
        """The unit value encodes to a non-empty stream and decodes to None."""
        data = encode_bytes(None, None)
        assert data
        assert decode_bytes(data, None) is None

    def test_values_are_self_delimiting(self) -> None:
        """Back-to-back values on one stream are read one at a time."""
        buf = BytesIO()
        encode(buf, 0, Ordinal)
        encode(buf, "hello", str)
        encode(buf, [1.5], list[float])
        buf.seek(0)
        assert decode(buf, Ordinal) == 0
        assert decode(buf, str) == "hello"
        assert decode(buf, list[float]) == [1.5]
        assert buf.read() == b""

    def test_encoding_is_deterministic(self) -> None:
        """Equal values of the same type encode to identical bytes."""
        assert encode_bytes(5, UInt) == encode_bytes(5, UInt)


class TestEncodeErrors:
    """Encoding failures raise EncodingError."""

    def test_none_for_required(self) -> None:
        """None is rejected for a non-optional type."""
        with pytest.raises(EncodingError, match="non-optional"):
            encode_bytes(None, str)

    def test_negative_unsigned(self) -> None:
        """A negative number does not fit UInt."""
        with pytest.raises(EncodingError):
            encode_bytes(-1, UInt)

    def test_wrong_value_type(self) -> None:
        """A string does not fit an int parameter."""
        with pytest.raises(EncodingError):
            encode_bytes("five", int)

    def test_unsupported_type(self) -> None:
        """Unsupported annotations surface as EncodingError."""
        with pytest.raises(EncodingError, match="Cannot encode values of type"):
            encode_bytes(object(), object)


class TestDecodeErrors:
    """Decoding failures raise DecodingError."""

    def test_empty_stream(self) -> None:
        """An empty source has no value to read."""
        with pytest.raises(DecodingError):
            decode_bytes(b"", str)

    def test_truncated_stream(self) -> None:
        """A value cut short inside its record batch is rejected."""
        data = encode_bytes("hello", str)
        with pytest.raises(DecodingError):
            decode_bytes(data[:-20], str)

    def test_garbage(self) -> None:
        """Bytes that are not an Arrow stream are rejected."""
        with pytest.raises(DecodingError):
            decode_bytes(b"\xff\xff\xff\xff\x10\x00\x00\x00" + b"not a flatbuffer", str)

    def test_type_mismatch(self) -> None:
        """A string value cannot be read as UInt."""
        with pytest.raises(DecodingError, match=r"schema \(value: uint64\), got \(value: string\)"):
            decode_bytes(encode_bytes("5", str), UInt)

    def test_null_for_required(self) -> None:
        """A null written as optional cannot be read as required."""
        with pytest.raises(DecodingError, match="null"):
            decode_bytes(encode_bytes(None, str | None), str)

    def test_unknown_enum_member(self) -> None:
        """An enum name the reader does not know is rejected."""

        class Shade(Enum):
            DARK = "dark"

        with pytest.raises(DecodingError, match="not a valid Shade member"):
            decode_bytes(encode_bytes(Color.RED, Color), Shade)

    def test_multiple_rows(self) -> None:
        """A stream holding more than one row is not a single value."""
        schema = value_schema(int)
        buf = BytesIO()
        with pa.ipc.new_stream(buf, schema) as writer:
            writer.write_batch(pa.RecordBatch.from_arrays([pa.array([1, 2], type=pa.int64())], schema=schema))
        with pytest.raises(DecodingError, match="exactly 1 row"):
            decode_bytes(buf.getvalue(), int)

    def test_multiple_batches(self) -> None:
        """A stream holding two batches is not a single value."""
        schema = value_schema(int)
        batch = pa.RecordBatch.from_arrays([pa.array([1], type=pa.int64())], schema=schema)
        buf = BytesIO()
        with pa.ipc.new_stream(buf, schema) as writer:
            writer.write_batch(batch)
            writer.write_batch(batch)
        with pytest.raises(DecodingError, match="single record batch"):
            decode_bytes(buf.getvalue(), int)

    def test_schema_without_batch(self) -> None:
        """A stream that ends right after its schema holds no value."""
        buf = BytesIO()
        with pa.ipc.new_stream(buf, value_schema(str)):
            pass
        with pytest.raises(DecodingError, match="without a record batch"):
            decode_bytes(buf.getvalue(), str)

    def test_constructor_rejects_value(self) -> None:
        """A dataclass whose constructor raises is reported as a DecodingError."""
        data = encode_bytes(AnyNumber(3), AnyNumber)
        with pytest.raises(DecodingError, match="Cannot build Even value: ValueError: 3 is odd") as exc_info:
            decode_bytes(data, Even)
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert decode_bytes(encode_bytes(AnyNumber(4), AnyNumber), Even) == Even(4)

    def test_constructor_failure_consumes_value(self) -> None:
        """The rejected value is still read to its end, leaving the next one intact."""
        stream = BytesIO(encode_bytes(AnyNumber(3), AnyNumber) + encode_bytes("next", str))
        with pytest.raises(DecodingError):
            decode(stream, Even)
        assert decode(stream, str) == "next"
