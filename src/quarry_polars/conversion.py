"""Dtype mapping between quarry and Polars types."""

from __future__ import annotations

import polars as pl

from quarry import dtypes
from quarry.errors import DTypeError
from quarry.schema import Schema

# ---------------------------------------------------------------------------
# quarry → Polars mapping (parameterless dtypes)
# ---------------------------------------------------------------------------

QUARRY_TO_POLARS: dict[type[dtypes.DataType], pl.DataType] = {
    dtypes.Boolean: pl.Boolean(),
    dtypes.UInt8: pl.UInt8(),
    dtypes.UInt16: pl.UInt16(),
    dtypes.UInt32: pl.UInt32(),
    dtypes.UInt64: pl.UInt64(),
    dtypes.Int8: pl.Int8(),
    dtypes.Int16: pl.Int16(),
    dtypes.Int32: pl.Int32(),
    dtypes.Int64: pl.Int64(),
    dtypes.Float32: pl.Float32(),
    dtypes.Float64: pl.Float64(),
    dtypes.String: pl.String(),
    dtypes.Binary: pl.Binary(),
    dtypes.Categorical: pl.Categorical(),
    dtypes.Date: pl.Date(),
    dtypes.Time: pl.Time(),
    dtypes.Null: pl.Null(),
}

# ---------------------------------------------------------------------------
# Polars → quarry mapping (keyed by Polars DataType class, not instance)
# ---------------------------------------------------------------------------

POLARS_TO_QUARRY: dict[type[pl.DataType], dtypes.DataType] = {
    pl.Boolean: dtypes.Boolean(),
    pl.UInt8: dtypes.UInt8(),
    pl.UInt16: dtypes.UInt16(),
    pl.UInt32: dtypes.UInt32(),
    pl.UInt64: dtypes.UInt64(),
    pl.Int8: dtypes.Int8(),
    pl.Int16: dtypes.Int16(),
    pl.Int32: dtypes.Int32(),
    pl.Int64: dtypes.Int64(),
    pl.Float32: dtypes.Float32(),
    pl.Float64: dtypes.Float64(),
    pl.String: dtypes.String(),
    pl.Binary: dtypes.Binary(),
    pl.Categorical: dtypes.Categorical(),
    pl.Enum: dtypes.Categorical(),
    pl.Date: dtypes.Date(),
    pl.Time: dtypes.Time(),
    pl.Null: dtypes.Null(),
}


def to_polars_dtype(dtype: dtypes.DataType) -> pl.DataType:
    """Map a quarry dtype to a Polars DataType.

    Handles:
    - Concrete types (UInt64 → pl.UInt64)
    - Datetime/Duration with their time unit
    - List(T) → pl.List with recursively mapped element type
    - Struct(fields) → pl.Struct with recursively mapped fields
    """
    dtype = dtypes.to_dtype(dtype)
    if isinstance(dtype, dtypes.Datetime):
        return pl.Datetime(dtype.time_unit)
    if isinstance(dtype, dtypes.Duration):
        return pl.Duration(dtype.time_unit)
    if isinstance(dtype, dtypes.List):
        return pl.List(to_polars_dtype(dtype.inner))
    if isinstance(dtype, dtypes.Struct):
        return pl.Struct([pl.Field(name, to_polars_dtype(inner)) for name, inner in dtype.fields])
    if type(dtype) in QUARRY_TO_POLARS:
        return QUARRY_TO_POLARS[type(dtype)]
    raise DTypeError(f"Unsupported quarry dtype for polars: {dtype!r}")


def from_polars_dtype(pl_dtype: pl.DataType) -> dtypes.DataType:
    """Map a Polars DataType instance to a quarry dtype."""
    if isinstance(pl_dtype, pl.Datetime):
        # timezone-aware columns keep their instants; the zone is not modelled
        return dtypes.Datetime(pl_dtype.time_unit or "us")
    if isinstance(pl_dtype, pl.Duration):
        return dtypes.Duration(pl_dtype.time_unit or "us")
    if isinstance(pl_dtype, pl.List):
        return dtypes.List(from_polars_dtype(pl_dtype.inner))
    if isinstance(pl_dtype, pl.Struct):
        return dtypes.Struct([(f.name, from_polars_dtype(f.dtype)) for f in pl_dtype.fields])
    dtype_cls = type(pl_dtype) if not isinstance(pl_dtype, type) else pl_dtype
    if dtype_cls in POLARS_TO_QUARRY:
        return POLARS_TO_QUARRY[dtype_cls]
    raise DTypeError(f"Unsupported polars dtype: {pl_dtype}")


def to_polars_schema(schema: Schema) -> dict[str, pl.DataType]:
    return {name: to_polars_dtype(dtype) for name, dtype in schema.items()}


def from_polars_schema(pl_schema: pl.Schema | dict[str, pl.DataType]) -> Schema:
    return Schema([(name, from_polars_dtype(dtype)) for name, dtype in pl_schema.items()])
