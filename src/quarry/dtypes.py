"""Data type definitions for quarry.

Column types are small immutable objects that compare structurally, so a
schema built by one backend equals a schema built by another. Dtype classes
may be used wherever an instance is expected (``Int64`` and ``Int64()`` are
interchangeable); :func:`to_dtype` normalizes them.

Type categories (NumericType, IntegerType, FloatType, TemporalType,
NestedType) are base classes used by the inference rules to decide which
operations are defined for a column.
"""

from __future__ import annotations

import datetime
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from quarry.errors import DTypeError

# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


class DataType:
    """Base class for all data types."""

    __slots__ = ()

    def _params(self) -> tuple[Any, ...]:
        return ()

    def __eq__(self, other: object) -> bool:
        if isinstance(other, type) and issubclass(other, DataType):
            other = to_dtype(other)
        if not isinstance(other, DataType):
            return NotImplemented
        return type(self) is type(other) and self._params() == other._params()

    def __ne__(self, other: object) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._params()))

    def __repr__(self) -> str:
        return type(self).__name__


# ---------------------------------------------------------------------------
# Type category base classes
# ---------------------------------------------------------------------------


class NumericType(DataType):
    """Base class for all numeric data types."""

    __slots__ = ()
    bits: int = 0


class IntegerType(NumericType):
    """Base class for all integer data types (signed and unsigned)."""

    __slots__ = ()
    signed: bool = True


class SignedIntegerType(IntegerType):
    __slots__ = ()
    signed = True


class UnsignedIntegerType(IntegerType):
    __slots__ = ()
    signed = False


class FloatType(NumericType):
    """Base class for floating-point data types. Used to constrain NaN methods."""

    __slots__ = ()


class TemporalType(DataType):
    """Base class for all temporal data types."""

    __slots__ = ()


class NestedType(DataType):
    """Base class for parameterized container types (List, Struct)."""

    __slots__ = ()


# ---------------------------------------------------------------------------
# Boolean / Null
# ---------------------------------------------------------------------------


class Boolean(DataType):
    """Boolean type. Not numeric, so arithmetic on booleans is not supported."""

    __slots__ = ()


class Null(DataType):
    """Type of an untyped missing value (a bare ``None`` literal)."""

    __slots__ = ()


# ---------------------------------------------------------------------------
# Integers
# ---------------------------------------------------------------------------


class Int8(SignedIntegerType):
    """8-bit signed integer."""

    __slots__ = ()
    bits = 8


class Int16(SignedIntegerType):
    """16-bit signed integer."""

    __slots__ = ()
    bits = 16


class Int32(SignedIntegerType):
    """32-bit signed integer."""

    __slots__ = ()
    bits = 32


class Int64(SignedIntegerType):
    """64-bit signed integer."""

    __slots__ = ()
    bits = 64


class UInt8(UnsignedIntegerType):
    """8-bit unsigned integer."""

    __slots__ = ()
    bits = 8


class UInt16(UnsignedIntegerType):
    """16-bit unsigned integer."""

    __slots__ = ()
    bits = 16


class UInt32(UnsignedIntegerType):
    """32-bit unsigned integer."""

    __slots__ = ()
    bits = 32


class UInt64(UnsignedIntegerType):
    """64-bit unsigned integer."""

    __slots__ = ()
    bits = 64


# ---------------------------------------------------------------------------
# Floating point
# ---------------------------------------------------------------------------


class Float32(FloatType):
    """32-bit floating point."""

    __slots__ = ()
    bits = 32


class Float64(FloatType):
    """64-bit floating point."""

    __slots__ = ()
    bits = 64


# ---------------------------------------------------------------------------
# String / Binary / Categorical
# ---------------------------------------------------------------------------


class String(DataType):
    """UTF-8 encoded string."""

    __slots__ = ()


class Binary(DataType):
    """Raw binary data."""

    __slots__ = ()


class Categorical(DataType):
    """Dictionary-encoded strings. Compares equal to String values."""

    __slots__ = ()


# ---------------------------------------------------------------------------
# Temporal
# ---------------------------------------------------------------------------

TIME_UNITS = ("ns", "us", "ms")


class Date(TemporalType):
    """Calendar date (no time component)."""

    __slots__ = ()


class Time(TemporalType):
    """Time of day (no date component)."""

    __slots__ = ()


class Datetime(TemporalType):
    """Date and time, without timezone, at a given precision."""

    __slots__ = ("time_unit",)

    def __init__(self, time_unit: str = "us") -> None:
        if time_unit not in TIME_UNITS:
            raise DTypeError(f"Invalid time unit {time_unit!r}, expected one of {TIME_UNITS}")
        self.time_unit = time_unit

    def _params(self) -> tuple[Any, ...]:
        return (self.time_unit,)

    def __repr__(self) -> str:
        return f"Datetime({self.time_unit!r})"


class Duration(TemporalType):
    """Time duration / interval."""

    __slots__ = ("time_unit",)

    def __init__(self, time_unit: str = "us") -> None:
        if time_unit not in TIME_UNITS:
            raise DTypeError(f"Invalid time unit {time_unit!r}, expected one of {TIME_UNITS}")
        self.time_unit = time_unit

    def _params(self) -> tuple[Any, ...]:
        return (self.time_unit,)

    def __repr__(self) -> str:
        return f"Duration({self.time_unit!r})"


# ---------------------------------------------------------------------------
# Parameterized nested types
# ---------------------------------------------------------------------------


class List(NestedType):
    """A list column type parameterized by element type.

    Usage::

        List(Int64)            # list of integers
        List(List(String))     # list of lists of strings
    """

    __slots__ = ("inner",)

    def __init__(self, inner: Any) -> None:
        self.inner = to_dtype(inner)

    def _params(self) -> tuple[Any, ...]:
        return (self.inner,)

    def __repr__(self) -> str:
        return f"List({self.inner!r})"


class Struct(NestedType):
    """A struct column type with ordered, named fields.

    Usage::

        Struct({"street": String, "zip": Int32})
    """

    __slots__ = ("fields",)

    def __init__(self, fields: Mapping[str, Any] | Iterable[tuple[str, Any]]) -> None:
        items = fields.items() if isinstance(fields, Mapping) else fields
        self.fields: tuple[tuple[str, DataType], ...] = tuple(
            (name, to_dtype(dtype)) for name, dtype in items
        )

    def _params(self) -> tuple[Any, ...]:
        return (self.fields,)

    def field(self, name: str) -> DataType | None:
        for field_name, dtype in self.fields:
            if field_name == name:
                return dtype
        return None

    def __repr__(self) -> str:
        inner = ", ".join(f"{n!r}: {d!r}" for n, d in self.fields)
        return f"Struct({{{inner}}})"


# ---------------------------------------------------------------------------
# Normalization and category helpers
# ---------------------------------------------------------------------------

SIGNED_INTEGERS: tuple[DataType, ...] = (Int8(), Int16(), Int32(), Int64())
UNSIGNED_INTEGERS: tuple[DataType, ...] = (UInt8(), UInt16(), UInt32(), UInt64())
FLOATS: tuple[DataType, ...] = (Float32(), Float64())

_BY_NAME: dict[str, DataType] = {
    "bool": Boolean(),
    "boolean": Boolean(),
    "i8": Int8(),
    "i16": Int16(),
    "i32": Int32(),
    "i64": Int64(),
    "u8": UInt8(),
    "u16": UInt16(),
    "u32": UInt32(),
    "u64": UInt64(),
    "f32": Float32(),
    "f64": Float64(),
    "str": String(),
    "string": String(),
    "binary": Binary(),
    "cat": Categorical(),
    "category": Categorical(),
    "date": Date(),
    "time": Time(),
    "datetime": Datetime(),
    "datetime[ns]": Datetime("ns"),
    "datetime[us]": Datetime("us"),
    "datetime[ms]": Datetime("ms"),
    "duration": Duration(),
    "null": Null(),
}


def to_dtype(dtype: Any) -> DataType:
    """Normalize a dtype class, instance or short name to a dtype instance."""
    if isinstance(dtype, DataType):
        return dtype
    if isinstance(dtype, type) and issubclass(dtype, DataType):
        if dtype in (List, Struct):
            raise DTypeError(f"{dtype.__name__} requires parameters, e.g. List(Int64)")
        if dtype in (
            DataType,
            NumericType,
            IntegerType,
            SignedIntegerType,
            UnsignedIntegerType,
            FloatType,
            TemporalType,
            NestedType,
        ):
            raise DTypeError(f"{dtype.__name__} is a type category, not a concrete dtype")
        return dtype()
    if isinstance(dtype, str) and dtype.lower() in _BY_NAME:
        return _BY_NAME[dtype.lower()]
    raise DTypeError(f"Not a quarry dtype: {dtype!r}")


def is_numeric(dtype: DataType) -> bool:
    return isinstance(dtype, NumericType)


def is_integer(dtype: DataType) -> bool:
    return isinstance(dtype, IntegerType)


def is_float(dtype: DataType) -> bool:
    return isinstance(dtype, FloatType)


def is_temporal(dtype: DataType) -> bool:
    return isinstance(dtype, TemporalType)


def is_string_like(dtype: DataType) -> bool:
    return isinstance(dtype, (String, Categorical))


# ---------------------------------------------------------------------------
# Inference from host values
# ---------------------------------------------------------------------------


def dtype_of_value(value: Any) -> DataType:
    """Return the dtype a single Python scalar maps to."""
    if value is None:
        return Null()
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return Boolean()
    if isinstance(value, int):
        return Int64()
    if isinstance(value, float):
        return Float64()
    if isinstance(value, str):
        return String()
    if isinstance(value, (bytes, bytearray)):
        return Binary()
    # datetime before date: datetime is a date subclass
    if isinstance(value, datetime.datetime):
        return Datetime("us")
    if isinstance(value, datetime.date):
        return Date()
    if isinstance(value, datetime.time):
        return Time()
    if isinstance(value, datetime.timedelta):
        return Duration("us")
    if isinstance(value, (list, tuple)):
        return List(infer_dtype(value))
    if isinstance(value, Mapping):
        return Struct({k: dtype_of_value(v) for k, v in value.items()})
    raise DTypeError(f"Cannot infer a dtype for value {value!r} of type {type(value).__name__}")


def infer_dtype(values: Sequence[Any]) -> DataType:
    """Infer a column dtype from a sequence of Python values.

    Missing values (``None``) are skipped. Integers mixed with floats widen to
    Float64; any other mix of kinds raises :class:`DTypeError`.
    """
    result: DataType = Null()
    for value in values:
        current = dtype_of_value(value)
        if isinstance(current, Null):
            continue
        if isinstance(result, Null):
            result = current
            continue
        if current == result:
            continue
        if {type(current), type(result)} == {Int64, Float64}:
            result = Float64()
            continue
        if isinstance(current, List) and isinstance(result, List):
            if isinstance(current.inner, Null):
                continue
            if isinstance(result.inner, Null):
                result = current
                continue
        raise DTypeError(
            f"Cannot infer a single dtype: found both {result!r} and {current!r} values"
        )
    return result
