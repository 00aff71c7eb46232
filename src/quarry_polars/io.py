"""Read/write operations for the Polars backend.

quarry's option names are translated to Polars keyword arguments here;
options left unset fall back to Polars' own defaults.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import polars as pl

from quarry.dtypes import DataType
from quarry.io import FileFormat, open_remote
from quarry.schema import Schema
from quarry_polars.conversion import from_polars_schema, to_polars_dtype

logger = logging.getLogger(__name__)


def _given(**kwargs: Any) -> dict[str, Any]:
    return {k: v for k, v in kwargs.items() if v is not None}


def _csv_kwargs(
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
) -> dict[str, Any]:
    overrides = {n: to_polars_dtype(d) for n, d in dtypes.items()} if dtypes else None
    return _given(
        separator=delimiter,
        has_header=has_header,
        skip_rows=skip_rows,
        n_rows=max_rows,
        columns=list(columns) if columns is not None else None,
        schema_overrides=overrides,
        null_values=list(null_values) if isinstance(null_values, (list, tuple)) else null_values,
        try_parse_dates=parse_dates,
        infer_schema_length=infer_schema_length,
        storage_options=storage_options,
    )


def read_frame(source: Any, format: FileFormat, **options: Any) -> pl.DataFrame:
    """Read ``source`` eagerly into a ``pl.DataFrame``."""
    logger.debug("Reading %s from %r", format.name, source)
    columns = options.pop("columns", None)
    max_rows = options.pop("max_rows", None)
    storage_options = options.pop("storage_options", None)
    if format is FileFormat.CSV:
        return pl.read_csv(
            source,
            **_csv_kwargs(
                columns=columns, max_rows=max_rows, storage_options=storage_options, **options
            ),
        )
    kwargs = _given(
        columns=list(columns) if columns is not None else None,
        n_rows=max_rows,
        storage_options=storage_options,
    )
    if format is FileFormat.PARQUET:
        return pl.read_parquet(source, **kwargs)
    if format is FileFormat.IPC:
        return pl.read_ipc(source, **kwargs)
    if format is FileFormat.IPC_STREAM:
        return pl.read_ipc_stream(source, **kwargs)
    if format is FileFormat.NDJSON:
        frame = pl.read_ndjson(
            source,
            **_given(
                n_rows=max_rows,
                infer_schema_length=options.get("infer_schema_length"),
                storage_options=storage_options,
            ),
        )
        return frame.select(list(columns)) if columns is not None else frame
    raise ValueError(f"Unsupported file format: {format!r}")


def scan_frame(
    source: Any, format: FileFormat, columns: Sequence[str] | None, **options: Any
) -> pl.LazyFrame:
    """Open ``source`` as a ``pl.LazyFrame`` so Polars can push projections into the reader."""
    max_rows = options.pop("max_rows", None)
    storage_options = options.pop("storage_options", None)
    if format is FileFormat.CSV:
        frame = pl.scan_csv(
            source,
            **_csv_kwargs(max_rows=max_rows, storage_options=storage_options, **options),
        )
    elif format is FileFormat.PARQUET:
        frame = pl.scan_parquet(
            source, **_given(n_rows=max_rows, storage_options=storage_options)
        )
    elif format is FileFormat.IPC:
        frame = pl.scan_ipc(source, **_given(n_rows=max_rows, storage_options=storage_options))
    elif format is FileFormat.NDJSON:
        frame = pl.scan_ndjson(
            source,
            **_given(
                n_rows=max_rows,
                infer_schema_length=options.get("infer_schema_length"),
                storage_options=storage_options,
            ),
        )
    else:
        # Polars has no lazy reader for Arrow streams
        frame = read_frame(
            source, format, max_rows=max_rows, storage_options=storage_options
        ).lazy()
    return frame.select(list(columns)) if columns is not None else frame


def read_schema(source: Any, format: FileFormat, **options: Any) -> Schema:
    """The schema a read would produce, without loading the data."""
    storage_options = options.get("storage_options")
    if storage_options is None and format is FileFormat.PARQUET:
        return from_polars_schema(pl.read_parquet_schema(source))
    if storage_options is None and format is FileFormat.IPC:
        return from_polars_schema(pl.read_ipc_schema(source))
    if format is FileFormat.IPC_STREAM:
        head = read_frame(source, format, max_rows=0, storage_options=storage_options)
        return from_polars_schema(head.schema)
    options.pop("columns", None)
    return from_polars_schema(scan_frame(source, format, None, **options).collect_schema())


def write_frame(frame: pl.DataFrame, destination: Any, format: FileFormat, **options: Any) -> None:
    """Write ``frame`` to a path, remote URL or binary buffer."""
    logger.debug("Writing %s to %r", format.name, destination)
    storage_options = options.pop("storage_options", None)
    if format is FileFormat.PARQUET:
        frame.write_parquet(
            destination,
            **_given(compression=options.get("compression"), storage_options=storage_options),
        )
    elif storage_options is None:
        _write_to(frame, destination, format, **options)
    else:
        # these writers take no storage_options of their own
        with open_remote(destination, "wb", storage_options) as handle:
            _write_to(frame, handle, format, **options)


def _write_to(frame: pl.DataFrame, destination: Any, format: FileFormat, **options: Any) -> None:
    compression = options.get("compression") or "uncompressed"
    if format is FileFormat.CSV:
        frame.write_csv(
            destination,
            **_given(
                separator=options.get("delimiter"),
                include_header=options.get("include_header"),
                null_value=options.get("null_value"),
            ),
        )
    elif format is FileFormat.IPC:
        frame.write_ipc(destination, compression=compression)
    elif format is FileFormat.IPC_STREAM:
        frame.write_ipc_stream(destination, compression=compression)
    elif format is FileFormat.NDJSON:
        frame.write_ndjson(destination)
    else:
        raise ValueError(f"Unsupported file format: {format!r}")
