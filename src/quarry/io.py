"""Uniform read/write entry points.

The format is given explicitly or inferred from the file suffix. Options
are validated here and passed through to the backend, which delegates to its
engine's reader or writer; quarry never inspects file bytes itself. Remote
sources (``s3://...``, ``https://...``) are handed to the engine as-is,
together with ``storage_options``.

Supported options:

===========  ==========================================================
Format       Read options
===========  ==========================================================
CSV          delimiter, has_header, skip_rows, max_rows, columns, dtypes,
             null_values, parse_dates, infer_schema_length
PARQUET      columns, max_rows
IPC          columns, max_rows
IPC_STREAM   columns, max_rows
NDJSON       columns, max_rows, infer_schema_length
===========  ==========================================================

Every reader and writer also accepts ``storage_options``. Writers accept
``compression`` (Parquet, IPC) and ``delimiter``, ``include_header``,
``null_value`` (CSV). Where an engine reader or writer takes no
``storage_options`` of its own, the backend opens the object through fsspec
with :func:`open_remote` and hands the engine the file handle.
"""

from __future__ import annotations

import enum
import io
import os
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import fsspec

from quarry.dataframe import DataFrame, LazyFrame
from quarry.dtypes import to_dtype
from quarry.executor import backend_errors
from quarry.plan import FileScan
from quarry.registry import get_backend

if TYPE_CHECKING:
    from quarry._protocols import BackendProtocol


class FileFormat(enum.Enum):
    CSV = "csv"
    PARQUET = "parquet"
    IPC = "ipc"
    IPC_STREAM = "ipc_stream"
    NDJSON = "ndjson"


_SUFFIXES: dict[str, FileFormat] = {
    ".csv": FileFormat.CSV,
    ".parquet": FileFormat.PARQUET,
    ".pq": FileFormat.PARQUET,
    ".arrow": FileFormat.IPC,
    ".ipc": FileFormat.IPC,
    ".feather": FileFormat.IPC,
    ".arrows": FileFormat.IPC_STREAM,
    ".ndjson": FileFormat.NDJSON,
    ".jsonl": FileFormat.NDJSON,
}

_READ_OPTIONS: dict[FileFormat, frozenset[str]] = {
    FileFormat.CSV: frozenset(
        {
            "delimiter",
            "has_header",
            "skip_rows",
            "max_rows",
            "columns",
            "dtypes",
            "null_values",
            "parse_dates",
            "infer_schema_length",
        }
    ),
    FileFormat.PARQUET: frozenset({"columns", "max_rows"}),
    FileFormat.IPC: frozenset({"columns", "max_rows"}),
    FileFormat.IPC_STREAM: frozenset({"columns", "max_rows"}),
    FileFormat.NDJSON: frozenset({"columns", "max_rows", "infer_schema_length"}),
}

_WRITE_OPTIONS: dict[FileFormat, frozenset[str]] = {
    FileFormat.CSV: frozenset({"delimiter", "include_header", "null_value"}),
    FileFormat.PARQUET: frozenset({"compression"}),
    FileFormat.IPC: frozenset({"compression"}),
    FileFormat.IPC_STREAM: frozenset({"compression"}),
    FileFormat.NDJSON: frozenset(),
}


def infer_format(path: str | os.PathLike[str]) -> FileFormat:
    """Guess the format from a path or URL suffix."""
    text = os.fspath(path).split("?", 1)[0]
    _, suffix = os.path.splitext(text)
    try:
        return _SUFFIXES[suffix.lower()]
    except KeyError:
        raise ValueError(
            f"Cannot infer file format from {os.fspath(path)!r}; pass format= explicitly"
        ) from None


def _resolve_format(format: FileFormat | str | None, source: Any) -> FileFormat:
    if format is None:
        if not isinstance(source, (str, os.PathLike)):
            raise ValueError("format= is required when reading from or writing to a buffer")
        return infer_format(source)
    if isinstance(format, FileFormat):
        return format
    return FileFormat(format.lower())


def _check_options(
    fmt: FileFormat,
    options: Mapping[str, Any],
    allowed: Mapping[FileFormat, frozenset[str]],
    op: str,
) -> dict[str, Any]:
    unknown = sorted(set(options) - allowed[fmt] - {"storage_options"})
    if unknown:
        raise TypeError(f"{op}() got unsupported {fmt.name} options: {', '.join(unknown)}")
    resolved = dict(options)
    if "dtypes" in resolved:
        resolved["dtypes"] = {name: to_dtype(d) for name, d in resolved["dtypes"].items()}
    if isinstance(resolved.get("columns"), str):
        resolved["columns"] = [resolved["columns"]]
    return resolved


def _source(source: Any) -> Any:
    return os.fspath(source) if isinstance(source, os.PathLike) else source


def open_remote(url: str, mode: str, storage_options: Mapping[str, Any]) -> Any:
    """Open ``url`` as a binary file object through fsspec; use as a context manager."""
    return fsspec.open(url, mode, **storage_options)


# ---------------------------------------------------------------------------
# Generic entry points
# ---------------------------------------------------------------------------


def read(
    source: Any,
    format: FileFormat | str | None = None,
    *,
    backend: str | BackendProtocol | None = None,
    **options: Any,
) -> DataFrame:
    """Read a file, remote object or binary buffer into a DataFrame."""
    impl = get_backend(backend)
    fmt = _resolve_format(format, source)
    resolved = _check_options(fmt, options, _READ_OPTIONS, "read")
    with backend_errors("read", impl.name):
        data = impl.read(_source(source), fmt, **resolved)
    return DataFrame(_data=data, _backend=impl)


def scan(
    source: str | os.PathLike[str],
    format: FileFormat | str | None = None,
    *,
    backend: str | BackendProtocol | None = None,
    **options: Any,
) -> LazyFrame:
    """Start a lazy plan over a file; only its schema is read now."""
    impl = get_backend(backend)
    fmt = _resolve_format(format, source)
    resolved = _check_options(fmt, options, _READ_OPTIONS, "scan")
    columns = resolved.pop("columns", None)
    path = _source(source)
    with backend_errors("scan", impl.name):
        schema = impl.read_schema(path, fmt, **resolved)
    if columns is not None:
        schema.require(columns, "scan")
    node = FileScan(path, fmt, resolved, impl, schema, projection=columns)
    return LazyFrame(_plan=node)


def write(
    df: DataFrame,
    destination: Any,
    format: FileFormat | str | None = None,
    **options: Any,
) -> None:
    """Write a DataFrame to a path, remote URL or binary buffer."""
    fmt = _resolve_format(format, destination)
    resolved = _check_options(fmt, options, _WRITE_OPTIONS, "write")
    with backend_errors("write", df._backend.name):
        df._backend.write(df._data, _source(destination), fmt, **resolved)


def dump(df: DataFrame, format: FileFormat | str, **options: Any) -> bytes:
    """Serialize a DataFrame to bytes in the given format."""
    buffer = io.BytesIO()
    write(df, buffer, format, **options)
    return buffer.getvalue()


def load(
    data: bytes,
    format: FileFormat | str,
    *,
    backend: str | BackendProtocol | None = None,
    **options: Any,
) -> DataFrame:
    """Deserialize bytes produced by :func:`dump` (or any writer of ``format``)."""
    return read(io.BytesIO(data), format, backend=backend, **options)


# ---------------------------------------------------------------------------
# Format-specific wrappers
# ---------------------------------------------------------------------------


def read_csv(
    source: Any, *, backend: str | BackendProtocol | None = None, **options: Any
) -> DataFrame:
    """Read a CSV file into a DataFrame."""
    return read(source, FileFormat.CSV, backend=backend, **options)


def read_parquet(
    source: Any, *, backend: str | BackendProtocol | None = None, **options: Any
) -> DataFrame:
    """Read a Parquet file into a DataFrame."""
    return read(source, FileFormat.PARQUET, backend=backend, **options)


def read_ipc(
    source: Any, *, backend: str | BackendProtocol | None = None, **options: Any
) -> DataFrame:
    """Read an Arrow IPC (Feather v2) file into a DataFrame."""
    return read(source, FileFormat.IPC, backend=backend, **options)


def read_ndjson(
    source: Any, *, backend: str | BackendProtocol | None = None, **options: Any
) -> DataFrame:
    """Read a newline-delimited JSON file into a DataFrame."""
    return read(source, FileFormat.NDJSON, backend=backend, **options)


def scan_csv(
    source: Any, *, backend: str | BackendProtocol | None = None, **options: Any
) -> LazyFrame:
    """Lazily scan a CSV file."""
    return scan(source, FileFormat.CSV, backend=backend, **options)


def scan_parquet(
    source: Any, *, backend: str | BackendProtocol | None = None, **options: Any
) -> LazyFrame:
    """Lazily scan a Parquet file."""
    return scan(source, FileFormat.PARQUET, backend=backend, **options)


def scan_ipc(
    source: Any, *, backend: str | BackendProtocol | None = None, **options: Any
) -> LazyFrame:
    """Lazily scan an Arrow IPC file."""
    return scan(source, FileFormat.IPC, backend=backend, **options)


def scan_ndjson(
    source: Any, *, backend: str | BackendProtocol | None = None, **options: Any
) -> LazyFrame:
    """Lazily scan a newline-delimited JSON file."""
    return scan(source, FileFormat.NDJSON, backend=backend, **options)


def write_csv(df: DataFrame, destination: Any, **options: Any) -> None:
    """Write a DataFrame to a CSV file."""
    write(df, destination, FileFormat.CSV, **options)


def write_parquet(df: DataFrame, destination: Any, **options: Any) -> None:
    """Write a DataFrame to a Parquet file."""
    write(df, destination, FileFormat.PARQUET, **options)


def write_ipc(df: DataFrame, destination: Any, **options: Any) -> None:
    """Write a DataFrame to an Arrow IPC file."""
    write(df, destination, FileFormat.IPC, **options)


def write_ndjson(df: DataFrame, destination: Any, **options: Any) -> None:
    """Write a DataFrame to a newline-delimited JSON file."""
    write(df, destination, FileFormat.NDJSON, **options)
