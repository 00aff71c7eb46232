"""Read/write operations for the pandas backend.

Readers request Arrow-backed columns (``dtype_backend="pyarrow"``). Arrow
IPC streams go through ``pyarrow.ipc`` directly, since pandas has no reader
for them.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

import pandas as pd
import pyarrow as pa
import pyarrow.compute as pc
import pyarrow.parquet as pq

from quarry.dtypes import DataType
from quarry.io import FileFormat, open_remote
from quarry.schema import Schema
from quarry_pandas.conversion import arrow_types_mapper, from_arrow_schema, to_pandas_dtype

logger = logging.getLogger(__name__)

_SCHEMA_SAMPLE_ROWS = 100


def _given(**kwargs: Any) -> dict[str, Any]:
    return {k: v for k, v in kwargs.items() if v is not None}


@contextmanager
def _opened(source: Any, storage_options: Mapping[str, Any] | None) -> Iterator[Any]:
    """``source`` itself, or an fsspec handle on it for readers without storage_options."""
    if storage_options is None:
        yield source
    else:
        with open_remote(source, "rb", storage_options) as handle:
            yield handle


def _parse_dates(frame: pd.DataFrame) -> pd.DataFrame:
    """Convert string columns holding ISO dates or datetimes, leaving others untouched."""
    parsed = {}
    for name in frame.columns:
        column = frame[name]
        dtype = column.dtype
        if not (isinstance(dtype, pd.ArrowDtype) and pa.types.is_string(dtype.pyarrow_dtype)):
            continue
        values = pa.Table.from_pandas(column.to_frame(), preserve_index=False).column(0)
        for target in (pa.date32(), pa.timestamp("us")):
            try:
                converted = pc.cast(values, target)
            except (pa.ArrowInvalid, pa.ArrowNotImplementedError):
                continue
            parsed[name] = pd.Series(pd.arrays.ArrowExtensionArray(converted), index=frame.index)
            break
    return frame.assign(**parsed) if parsed else frame


def _read_csv(
    source: Any,
    delimiter: str | None = None,
    has_header: bool | None = None,
    skip_rows: int | None = None,
    max_rows: int | None = None,
    columns: Sequence[str] | None = None,
    dtypes: Mapping[str, DataType] | None = None,
    null_values: str | Sequence[str] | None = None,
    parse_dates: bool | None = None,
    infer_schema_length: int | None = None,
    storage_options: dict[str, Any] | None = None,
) -> pd.DataFrame:
    # pandas reads the whole file to infer types; infer_schema_length does not apply
    header = has_header is None or has_header
    frame = pd.read_csv(
        source,
        header=0 if header else None,
        dtype_backend="pyarrow",
        **_given(
            sep=delimiter,
            skiprows=skip_rows,
            nrows=max_rows,
            dtype={n: to_pandas_dtype(d) for n, d in dtypes.items()} if dtypes else None,
            na_values=null_values,
            storage_options=storage_options,
        ),
    )
    if not header:
        frame.columns = [f"column_{i + 1}" for i in range(frame.shape[1])]
    if parse_dates:
        frame = _parse_dates(frame)
    if columns is not None:
        frame = frame[list(columns)]
    return frame


def read_frame(source: Any, format: FileFormat, **options: Any) -> pd.DataFrame:
    """Read ``source`` into a pandas DataFrame with Arrow-backed columns."""
    logger.debug("Reading %s from %r", format.name, source)
    if format is FileFormat.CSV:
        return _read_csv(source, **options)
    columns = options.get("columns")
    max_rows = options.get("max_rows")
    storage_options = options.get("storage_options")
    if format is FileFormat.PARQUET:
        frame = pd.read_parquet(
            source,
            dtype_backend="pyarrow",
            **_given(columns=columns, storage_options=storage_options),
        )
    elif format is FileFormat.IPC:
        frame = pd.read_feather(
            source,
            dtype_backend="pyarrow",
            **_given(columns=columns, storage_options=storage_options),
        )
    elif format is FileFormat.IPC_STREAM:
        with _opened(source, storage_options) as handle:
            with pa.ipc.open_stream(pa.input_stream(handle)) as reader:
                table = reader.read_all()
        if columns is not None:
            table = table.select(list(columns))
        frame = table.to_pandas(types_mapper=arrow_types_mapper)
    elif format is FileFormat.NDJSON:
        frame = pd.read_json(
            source,
            lines=True,
            convert_dates=False,
            dtype_backend="pyarrow",
            **_given(nrows=max_rows, storage_options=storage_options),
        )
        if columns is not None:
            frame = frame[list(columns)]
    else:
        raise ValueError(f"Unsupported file format: {format!r}")
    return frame.head(max_rows) if max_rows is not None else frame


def read_schema(source: Any, format: FileFormat, **options: Any) -> Schema:
    """The schema a read would produce, from file metadata or a bounded sample."""
    storage_options = options.get("storage_options")
    if format is FileFormat.PARQUET:
        with _opened(source, storage_options) as handle:
            return from_arrow_schema(pq.read_schema(handle))
    if format is FileFormat.IPC:
        with _opened(source, storage_options) as handle, pa.ipc.open_file(handle) as reader:
            return from_arrow_schema(reader.schema)
    if format is FileFormat.IPC_STREAM:
        with _opened(source, storage_options) as handle:
            with pa.ipc.open_stream(pa.input_stream(handle)) as reader:
                return from_arrow_schema(reader.schema)
    options.pop("columns", None)
    limit = options.pop("infer_schema_length", None) or _SCHEMA_SAMPLE_ROWS
    max_rows = options.pop("max_rows", None)
    if max_rows is not None:
        limit = min(limit, max_rows)
    sample = read_frame(source, format, max_rows=limit, **options)
    return from_arrow_schema(pa.Schema.from_pandas(sample, preserve_index=False))


def write_frame(
    frame: pd.DataFrame, destination: Any, format: FileFormat, **options: Any
) -> None:
    """Write ``frame`` to a path, remote URL or binary buffer."""
    logger.debug("Writing %s to %r", format.name, destination)
    compression = options.get("compression")
    storage_options = options.get("storage_options")
    if format is FileFormat.CSV:
        frame.to_csv(
            destination,
            index=False,
            sep=options.get("delimiter") or ",",
            header=options.get("include_header", True),
            na_rep=options.get("null_value") or "",
            **_given(storage_options=storage_options),
        )
    elif format is FileFormat.PARQUET:
        frame.to_parquet(
            destination,
            index=False,
            compression=compression or "snappy",
            **_given(storage_options=storage_options),
        )
    elif format is FileFormat.IPC:
        frame.to_feather(
            destination,
            compression=compression or "uncompressed",
            **_given(storage_options=storage_options),
        )
    elif format is FileFormat.IPC_STREAM:
        table = pa.Table.from_pandas(frame, preserve_index=False)
        ipc_options = pa.ipc.IpcWriteOptions(compression=compression)
        if storage_options is None:
            _write_stream(table, destination, ipc_options)
        else:
            with open_remote(destination, "wb", storage_options) as handle:
                _write_stream(table, handle, ipc_options)
    elif format is FileFormat.NDJSON:
        if isinstance(destination, str):
            frame.to_json(
                destination,
                orient="records",
                lines=True,
                date_format="iso",
                **_given(storage_options=storage_options),
            )
        else:
            text = frame.to_json(orient="records", lines=True, date_format="iso")
            destination.write(text.encode("utf-8"))
    else:
        raise ValueError(f"Unsupported file format: {format!r}")


def _write_stream(table: pa.Table, sink: Any, options: pa.ipc.IpcWriteOptions) -> None:
    with pa.ipc.new_stream(sink, table.schema, options=options) as writer:
        writer.write_table(table)
