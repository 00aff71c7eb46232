"""Dtype mapping between quarry, Arrow and pandas types.

The pandas backend stores every column with a ``pd.ArrowDtype``, so a quarry
dtype maps to exactly one Arrow type and missing values are real nulls (a
float NaN stays a value).
"""

from __future__ import annotations

import pandas as pd
import pyarrow as pa

from quarry import dtypes
from quarry.errors import DTypeError
from quarry.schema import Schema

# ---------------------------------------------------------------------------
# quarry → Arrow mapping (parameterless dtypes)
# ---------------------------------------------------------------------------

QUARRY_TO_ARROW: dict[type[dtypes.DataType], pa.DataType] = {
    dtypes.Boolean: pa.bool_(),
    dtypes.UInt8: pa.uint8(),
    dtypes.UInt16: pa.uint16(),
    dtypes.UInt32: pa.uint32(),
    dtypes.UInt64: pa.uint64(),
    dtypes.Int8: pa.int8(),
    dtypes.Int16: pa.int16(),
    dtypes.Int32: pa.int32(),
    dtypes.Int64: pa.int64(),
    dtypes.Float32: pa.float32(),
    dtypes.Float64: pa.float64(),
    dtypes.String: pa.string(),
    dtypes.Binary: pa.binary(),
    dtypes.Categorical: pa.dictionary(pa.int32(), pa.string()),
    dtypes.Date: pa.date32(),
    dtypes.Time: pa.time64("us"),
    dtypes.Null: pa.null(),
}

_ARROW_SCALARS: list[tuple[pa.DataType, dtypes.DataType]] = [
    (pa.bool_(), dtypes.Boolean()),
    (pa.uint8(), dtypes.UInt8()),
    (pa.uint16(), dtypes.UInt16()),
    (pa.uint32(), dtypes.UInt32()),
    (pa.uint64(), dtypes.UInt64()),
    (pa.int8(), dtypes.Int8()),
    (pa.int16(), dtypes.Int16()),
    (pa.int32(), dtypes.Int32()),
    (pa.int64(), dtypes.Int64()),
    (pa.float32(), dtypes.Float32()),
    (pa.float64(), dtypes.Float64()),
    (pa.null(), dtypes.Null()),
]


def to_arrow_type(dtype: dtypes.DataType) -> pa.DataType:
    """Map a quarry dtype to the Arrow type the pandas backend stores it as."""
    dtype = dtypes.to_dtype(dtype)
    if isinstance(dtype, dtypes.Datetime):
        return pa.timestamp(dtype.time_unit)
    if isinstance(dtype, dtypes.Duration):
        return pa.duration(dtype.time_unit)
    if isinstance(dtype, dtypes.List):
        return pa.list_(to_arrow_type(dtype.inner))
    if isinstance(dtype, dtypes.Struct):
        return pa.struct([pa.field(name, to_arrow_type(inner)) for name, inner in dtype.fields])
    if type(dtype) in QUARRY_TO_ARROW:
        return QUARRY_TO_ARROW[type(dtype)]
    raise DTypeError(f"Unsupported quarry dtype for pandas: {dtype!r}")


def from_arrow_type(arrow_type: pa.DataType) -> dtypes.DataType:
    """Map an Arrow type (including large and view variants) to a quarry dtype."""
    for candidate, dtype in _ARROW_SCALARS:
        if arrow_type == candidate:
            return dtype
    if pa.types.is_float16(arrow_type):
        return dtypes.Float32()
    if (
        pa.types.is_string(arrow_type)
        or pa.types.is_large_string(arrow_type)
        or pa.types.is_string_view(arrow_type)
    ):
        return dtypes.String()
    if pa.types.is_binary(arrow_type) or pa.types.is_large_binary(arrow_type):
        return dtypes.Binary()
    if pa.types.is_dictionary(arrow_type):
        return dtypes.Categorical()
    if pa.types.is_date(arrow_type):
        return dtypes.Date()
    if pa.types.is_time(arrow_type):
        return dtypes.Time()
    if pa.types.is_timestamp(arrow_type):
        unit = arrow_type.unit if arrow_type.unit in dtypes.TIME_UNITS else "us"
        return dtypes.Datetime(unit)
    if pa.types.is_duration(arrow_type):
        unit = arrow_type.unit if arrow_type.unit in dtypes.TIME_UNITS else "us"
        return dtypes.Duration(unit)
    if pa.types.is_list(arrow_type) or pa.types.is_large_list(arrow_type):
        return dtypes.List(from_arrow_type(arrow_type.value_type))
    if pa.types.is_struct(arrow_type):
        return dtypes.Struct([(field.name, from_arrow_type(field.type)) for field in arrow_type])
    raise DTypeError(f"Unsupported Arrow type: {arrow_type}")


def to_pandas_dtype(dtype: dtypes.DataType) -> pd.ArrowDtype | pd.CategoricalDtype:
    """The pandas dtype a column of ``dtype`` is stored with."""
    if isinstance(dtypes.to_dtype(dtype), dtypes.Categorical):
        return pd.CategoricalDtype()
    return pd.ArrowDtype(to_arrow_type(dtype))


def arrow_types_mapper(arrow_type: pa.DataType) -> pd.ArrowDtype | None:
    """``types_mapper`` for ``Table.to_pandas``; dictionaries become pandas Categoricals."""
    if pa.types.is_dictionary(arrow_type):
        return None
    return pd.ArrowDtype(arrow_type)


def to_arrow_schema(schema: Schema) -> pa.Schema:
    return pa.schema([pa.field(name, to_arrow_type(dtype)) for name, dtype in schema.items()])


def from_arrow_schema(arrow_schema: pa.Schema) -> Schema:
    return Schema([(field.name, from_arrow_type(field.type)) for field in arrow_schema])
