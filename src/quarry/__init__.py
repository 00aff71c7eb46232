"""quarry: one DataFrame API over interchangeable execution backends."""

import logging
from importlib.metadata import version as _version

__version__: str = _version("quarry")

logging.getLogger(__name__).addHandler(logging.NullHandler())

from quarry._protocols import BackendProtocol
from quarry.arrow import from_arrow, from_batches, to_arrow, to_batches
from quarry.dataframe import (
    DataFrame,
    GroupBy,
    LazyFrame,
    LazyGroupBy,
    concat_columns,
    concat_rows,
    from_dict,
)
from quarry.dtypes import (
    Binary,
    Boolean,
    Categorical,
    DataType,
    Date,
    Datetime,
    Duration,
    Float32,
    Float64,
    Int8,
    Int16,
    Int32,
    Int64,
    List,
    Null,
    String,
    Struct,
    Time,
    UInt8,
    UInt16,
    UInt32,
    UInt64,
)
from quarry.errors import (
    BackendMismatchError,
    BackendNotFoundError,
    CancelledError,
    ColumnNotFoundError,
    DTypeError,
    DuplicateColumnError,
    ExecutionError,
    QuarryError,
    ShapeError,
)
from quarry.executor import CancellationToken, PlanState
from quarry.expr import Expr, LazySeries, col, concat_str, lit, when
from quarry.io import (
    FileFormat,
    dump,
    load,
    read,
    read_csv,
    read_ipc,
    read_ndjson,
    read_parquet,
    scan,
    scan_csv,
    scan_ipc,
    scan_ndjson,
    scan_parquet,
    write,
    write_csv,
    write_ipc,
    write_ndjson,
    write_parquet,
)
from quarry.registry import (
    available_backends,
    get_backend,
    register_backend,
    reset_default_backend,
    set_default_backend,
    using_backend,
)
from quarry.schema import Schema
from quarry.series import Series, series

__all__ = [
    # Frames
    "DataFrame",
    "LazyFrame",
    "GroupBy",
    "LazyGroupBy",
    "Series",
    "from_dict",
    "series",
    "concat_rows",
    "concat_columns",
    # Expressions
    "Expr",
    "LazySeries",
    "col",
    "lit",
    "when",
    "concat_str",
    # Schema and dtypes
    "Schema",
    "DataType",
    "Boolean",
    "Null",
    "Int8",
    "Int16",
    "Int32",
    "Int64",
    "UInt8",
    "UInt16",
    "UInt32",
    "UInt64",
    "Float32",
    "Float64",
    "String",
    "Binary",
    "Categorical",
    "Date",
    "Time",
    "Datetime",
    "Duration",
    "List",
    "Struct",
    # Backends
    "BackendProtocol",
    "available_backends",
    "get_backend",
    "register_backend",
    "set_default_backend",
    "reset_default_backend",
    "using_backend",
    # Execution
    "CancellationToken",
    "PlanState",
    # I/O
    "FileFormat",
    "read",
    "scan",
    "write",
    "dump",
    "load",
    "read_csv",
    "read_parquet",
    "read_ipc",
    "read_ndjson",
    "scan_csv",
    "scan_parquet",
    "scan_ipc",
    "scan_ndjson",
    "write_csv",
    "write_parquet",
    "write_ipc",
    "write_ndjson",
    # Arrow boundary
    "to_arrow",
    "from_arrow",
    "to_batches",
    "from_batches",
    # Errors
    "QuarryError",
    "ColumnNotFoundError",
    "DTypeError",
    "ShapeError",
    "DuplicateColumnError",
    "BackendMismatchError",
    "BackendNotFoundError",
    "ExecutionError",
    "CancelledError",
]
