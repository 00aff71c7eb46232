"""Arrow boundary for explicit transfer between backends.

Frames from different backends never mix implicitly. Moving data across is
a deliberate step through Arrow::

    pandas_df = quarry.from_arrow(polars_df.to_arrow(), backend="pandas")
    # or, keeping the exact schema
    pandas_df = polars_df.to_backend("pandas")
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import TYPE_CHECKING, Any

import pyarrow as pa

from quarry.errors import ColumnNotFoundError
from quarry.executor import backend_errors
from quarry.registry import get_backend
from quarry.schema import Schema

if TYPE_CHECKING:
    from quarry._protocols import BackendProtocol
    from quarry.dataframe import DataFrame


def to_arrow(df: DataFrame) -> pa.Table:
    """Convert a frame to a ``pyarrow.Table``."""
    with backend_errors("to_arrow", df._backend.name):
        return df._backend.to_arrow(df._data)


def to_batches(df: DataFrame, batch_size: int | None = None) -> Iterator[pa.RecordBatch]:
    """Iterate a frame as Arrow record batches of at most ``batch_size`` rows."""
    yield from to_arrow(df).to_batches(max_chunksize=batch_size)


def _validate_arrow_schema(arrow_schema: pa.Schema, schema: Schema) -> None:
    """Check that every column of ``schema`` is present in the Arrow data."""
    names = list(arrow_schema.names)
    for name in schema:
        if name not in names:
            raise ColumnNotFoundError(name, names, operation="from_arrow")


def from_arrow(
    table: pa.Table | pa.RecordBatch,
    schema: Mapping[str, Any] | Schema | None = None,
    *,
    backend: str | BackendProtocol | None = None,
) -> DataFrame:
    """Load Arrow data into a backend.

    With ``schema``, only its columns are kept, in its order, cast to its
    dtypes; otherwise dtypes follow the Arrow types.
    """
    from quarry.dataframe import DataFrame

    impl = get_backend(backend)
    if isinstance(table, pa.RecordBatch):
        table = pa.Table.from_batches([table])
    with backend_errors("from_arrow", impl.name):
        if schema is None:
            return DataFrame(_data=impl.from_arrow(table), _backend=impl)
        resolved = Schema(schema)
        _validate_arrow_schema(table.schema, resolved)
        data = impl.cast(impl.from_arrow(table.select(resolved.names())), resolved)
    return DataFrame(_data=data, _backend=impl, _schema=resolved)


def from_batches(
    batches: Iterable[pa.RecordBatch],
    schema: Mapping[str, Any] | Schema | None = None,
    *,
    backend: str | BackendProtocol | None = None,
) -> DataFrame:
    """Load an iterable of record batches (all with the same Arrow schema)."""
    batches = list(batches)
    if not batches:
        raise ValueError("from_batches() requires at least one batch")
    return from_arrow(pa.Table.from_batches(batches), schema, backend=backend)
