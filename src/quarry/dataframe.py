"""DataFrame, LazyFrame, GroupBy and LazyGroupBy.

Every data operation goes through a backend adapter. An eager
``DataFrame`` operation builds the plan node the lazy API would append,
which binds and type-checks its expressions against the current schema, and
applies it at once through the backend. A ``LazyFrame`` keeps the nodes and
hands the whole plan to the planner on :meth:`LazyFrame.collect`.

Frames are values: no method mutates its receiver or its arguments.
Operations that combine frames (join, concatenation, Series masks) require
all inputs to come from the same backend and raise
:class:`~quarry.errors.BackendMismatchError` otherwise.
"""

from __future__ import annotations

import random
from collections.abc import Iterator, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from quarry.dtypes import Boolean, DataType, infer_dtype
from quarry.errors import (
    BackendMismatchError,
    ColumnNotFoundError,
    DTypeError,
    DuplicateColumnError,
    ShapeError,
)
from quarry.executor import CancellationToken, Execution, apply_node, backend_errors
from quarry.expr import ColumnRef, Expr, SortExpr, _wrap, col
from quarry.plan import (
    Aggregate,
    Concat,
    DataFrameScan,
    DropNulls,
    Filter,
    HConcat,
    Join,
    PlanNode,
    Rename,
    Select,
    Slice,
    Sort,
    Unique,
    Unpivot,
    WithColumns,
    explain,
    scans,
)
from quarry.registry import get_backend
from quarry.schema import DEFAULT_JOIN_SUFFIX, Schema
from quarry.series import Series

if TYPE_CHECKING:
    import pyarrow as pa

    from quarry._protocols import BackendProtocol

_TEMP_PREFIX = "__quarry_tmp"
_PIVOT_AGGREGATES = ("first", "last", "sum", "mean", "min", "max", "count")


# ---------------------------------------------------------------------------
# Argument normalization
# ---------------------------------------------------------------------------


def _to_expr(value: str | Expr) -> Expr:
    if isinstance(value, str):
        return ColumnRef(value)
    if isinstance(value, Expr):
        return value
    raise TypeError(f"Expected a column name or expression, got {type(value).__name__}")


def _to_name(value: str | Expr, operation: str) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, ColumnRef):
        return value.name
    raise TypeError(f"{operation}() expects column names, got {value!r}")


def _flatten(items: Sequence[Any]) -> list[Any]:
    """Accept both ``f("a", "b")`` and ``f(["a", "b"])``."""
    flat: list[Any] = []
    for item in items:
        if isinstance(item, (list, tuple)):
            flat.extend(item)
        else:
            flat.append(item)
    return flat


def _per_key(value: bool | Sequence[bool], n: int, name: str) -> list[bool]:
    if isinstance(value, bool):
        return [value] * n
    flags = list(value)
    if len(flags) != n:
        raise ValueError(f"sort() got {len(flags)} {name} flags for {n} keys")
    return flags


def _sort_keys(
    by: Sequence[str | Expr | SortExpr],
    descending: bool | Sequence[bool],
    nulls_last: bool | Sequence[bool],
) -> list[SortExpr]:
    keys = _flatten(by)
    desc = _per_key(descending, len(keys), "descending")
    last = _per_key(nulls_last, len(keys), "nulls_last")
    result = []
    for key, d, n in zip(keys, desc, last):
        if isinstance(key, SortExpr):
            result.append(key)
        else:
            result.append(SortExpr(_to_expr(key), descending=d, nulls_last=n))
    return result


def _named_exprs(exprs: Sequence[Any], named: Mapping[str, Any]) -> list[Expr]:
    result = [_to_expr(e) for e in _flatten(exprs)]
    result += [_wrap(value).alias(name) for name, value in named.items()]
    return result


def _join_keys(
    on: str | Sequence[str] | None,
    left_on: str | Sequence[str] | None,
    right_on: str | Sequence[str] | None,
    how: str,
) -> tuple[list[str], list[str]]:
    def as_list(value: str | Sequence[str] | None) -> list[str]:
        if value is None:
            return []
        return [value] if isinstance(value, str) else list(value)

    if how == "cross":
        if on is not None or left_on is not None or right_on is not None:
            raise ValueError("cross join does not take key columns")
        return [], []
    if on is not None:
        if left_on is not None or right_on is not None:
            raise ValueError("join() takes either on= or left_on=/right_on=, not both")
        keys = as_list(on)
        return keys, keys
    if left_on is None or right_on is None:
        raise ValueError("join() requires on= or both left_on= and right_on=")
    return as_list(left_on), as_list(right_on)


def _check_same_backend(backends: Sequence[BackendProtocol], operation: str) -> None:
    first = backends[0]
    for other in backends[1:]:
        if other.name != first.name:
            raise BackendMismatchError(first.name, other.name, operation=operation)


def _temp_name(schema: Schema, index: int = 0) -> str:
    name = f"{_TEMP_PREFIX}_{index}"
    while name in schema:
        name += "_"
    return name


# ---------------------------------------------------------------------------
# DataFrame
# ---------------------------------------------------------------------------


class DataFrame:
    """An eager, materialized table of equal-length, uniquely named columns.

    Construct with :func:`from_dict`, :meth:`DataFrame.from_rows`, an I/O
    reader such as :func:`quarry.read_csv`, or :meth:`DataFrame.from_native`.
    """

    __slots__ = ("_data", "_backend", "_schema")

    def __init__(
        self,
        *,
        _data: Any,
        _backend: BackendProtocol,
        _schema: Schema | None = None,
    ) -> None:
        self._data = _data
        self._backend = _backend
        self._schema = _schema if _schema is not None else _backend.schema(_data)

    # --- Construction ---

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Sequence[Any]],
        schema: Mapping[str, Any] | Schema | None = None,
        *,
        backend: str | BackendProtocol | None = None,
    ) -> DataFrame:
        """Build a frame from ``{name: values}``; dtypes are inferred unless given."""
        impl = get_backend(backend)
        columns = {name: list(values) for name, values in data.items()}
        lengths = {len(values) for values in columns.values()}
        if len(lengths) > 1:
            detail = {name: len(values) for name, values in columns.items()}
            raise ShapeError(f"from_dict() requires columns of equal length, got {detail}")
        given = Schema(schema) if schema is not None else Schema()
        for name in given:
            if name not in columns:
                raise ColumnNotFoundError(name, list(columns), operation="from_dict")
        resolved = Schema(
            [
                (name, given[name] if name in given else infer_dtype(values))
                for name, values in columns.items()
            ]
        )
        with backend_errors("from_dict", impl.name):
            native = impl.from_dict(columns, resolved)
        return cls(_data=native, _backend=impl, _schema=resolved)

    @classmethod
    def from_rows(
        cls,
        rows: Sequence[Mapping[str, Any] | Sequence[Any]],
        columns: Sequence[str] | None = None,
        schema: Mapping[str, Any] | Schema | None = None,
        *,
        backend: str | BackendProtocol | None = None,
    ) -> DataFrame:
        """Build a frame from row dicts, or from row tuples plus column names."""
        if columns is None:
            if schema is not None:
                columns = list(Schema(schema).names())
            elif rows and isinstance(rows[0], Mapping):
                columns = list(rows[0])
            else:
                raise ValueError("from_rows() needs columns= or schema= for tuple rows")
        data: dict[str, list[Any]] = {name: [] for name in columns}
        for row in rows:
            if isinstance(row, Mapping):
                for name in columns:
                    data[name].append(row.get(name))
            else:
                if len(row) != len(columns):
                    raise ShapeError(
                        f"from_rows() row has {len(row)} values for {len(columns)} columns"
                    )
                for name, value in zip(columns, row):
                    data[name].append(value)
        return cls.from_dict(data, schema, backend=backend)

    @classmethod
    def from_series(cls, *columns: Series) -> DataFrame:
        """Place Series side by side; they must share a backend and length."""
        items = _flatten(columns)
        if not items:
            raise ValueError("from_series() requires at least one Series")
        _check_same_backend([s._backend for s in items], "from_series")
        names = [s.name for s in items]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise DuplicateColumnError(duplicates, operation="from_series")
        lengths = {len(s) for s in items}
        if len(lengths) > 1:
            raise ShapeError(f"from_series() requires Series of equal length, got {lengths}")
        backend = items[0]._backend
        with backend_errors("from_series", backend.name):
            data = backend.hconcat([s._data for s in items])
        schema = Schema([(s.name, s.dtype) for s in items])
        return cls(_data=data, _backend=backend, _schema=schema)

    @classmethod
    def from_native(cls, data: Any, *, backend: str | BackendProtocol | None = None) -> DataFrame:
        """Wrap an engine-native frame (e.g. ``pl.DataFrame``) without copying."""
        return cls(_data=data, _backend=get_backend(backend))

    # --- Introspection ---

    def __repr__(self) -> str:
        return f"DataFrame[{self._backend.name}] {self.shape}\n{self._data!r}"

    def _repr_html_(self) -> str | None:
        """Rich HTML representation for Jupyter notebooks."""
        if hasattr(self._data, "_repr_html_"):
            return self._data._repr_html_()
        return None

    @property
    def schema(self) -> Schema:
        return self._schema

    @property
    def columns(self) -> list[str]:
        return self._schema.names()

    @property
    def dtypes(self) -> list[DataType]:
        return self._schema.dtypes()

    @property
    def backend(self) -> str:
        """Name of the backend holding this frame."""
        return self._backend.name

    @property
    def height(self) -> int:
        """Return the number of rows."""
        return self._backend.row_count(self._data)

    def __len__(self) -> int:
        return self.height

    @property
    def width(self) -> int:
        """Return the number of columns."""
        return len(self._schema)

    @property
    def shape(self) -> tuple[int, int]:
        """Return ``(rows, columns)``."""
        return (self.height, self.width)

    def is_empty(self) -> bool:
        return self.height == 0

    def __getitem__(self, key: str | Sequence[str]) -> Any:
        if isinstance(key, str):
            return self.column(key)
        return self.select(*key)

    def __contains__(self, name: object) -> bool:
        return name in self._schema

    __hash__ = None  # type: ignore[assignment]

    def column(self, name: str) -> Series:
        """Extract one column as a Series."""
        node = Select(self._scan(), [ColumnRef(name)])
        data = self._run(node, "column")._data
        return Series(_data=data, _name=name, _dtype=node.schema[name], _backend=self._backend)

    def get_column(self, name: str) -> Series:
        return self.column(name)

    def iter_columns(self) -> Iterator[Series]:
        for name in self.columns:
            yield self.column(name)

    # --- Plumbing ---

    def _scan(self, data: Any = None, schema: Schema | None = None) -> DataFrameScan:
        if data is None:
            return DataFrameScan(self._data, self._backend, self._schema)
        return DataFrameScan(data, self._backend, schema or self._backend.schema(data))

    def _run(self, node: PlanNode, operation: str, inputs: list[Any] | None = None) -> DataFrame:
        with backend_errors(operation, self._backend.name):
            data = apply_node(self._backend, node, inputs or [self._data])
        return DataFrame(_data=data, _backend=self._backend, _schema=node.schema)

    def _with_series(
        self, values: Sequence[Series], operation: str
    ) -> tuple[Any, Schema, list[str]]:
        """Attach Series as temporary columns; returns (data, schema, temp names)."""
        data = self._data
        schema = self._schema
        temps: list[str] = []
        for i, s in enumerate(values):
            if s._backend.name != self._backend.name:
                raise BackendMismatchError(
                    self._backend.name, s._backend.name, operation=operation
                )
            if len(s) != self.height:
                raise ShapeError(
                    f"{operation}() Series {s.name!r} has length {len(s)}, "
                    f"frame has height {self.height}"
                )
            temp = _temp_name(schema, i)
            with backend_errors(operation, self._backend.name):
                renamed = self._backend.rename(s._data, {s.name: temp})
                data = self._backend.hconcat([data, renamed])
            schema = Schema([*schema.items(), (temp, s.dtype)])
            temps.append(temp)
        return data, schema, temps

    # --- Schema-preserving operations ---

    def filter(self, predicate: Expr | Series) -> DataFrame:
        """Keep rows where ``predicate`` is true; missing counts as false.

        ``predicate`` is a Boolean expression or a Boolean Series of the same
        height.
        """
        if isinstance(predicate, Series):
            if not isinstance(predicate.dtype, Boolean):
                raise DTypeError(f"filter() mask must be Boolean, got {predicate.dtype!r}")
            data, schema, (temp,) = self._with_series([predicate], "filter")
            filtered = Filter(self._scan(data, schema), ColumnRef(temp))
            with backend_errors("filter", self._backend.name):
                out = apply_node(self._backend, filtered, [data])
            node = Select(filtered, [ColumnRef(n) for n in self.columns])
            return self._run(node, "filter", [out])
        return self._run(Filter(self._scan(), predicate), "filter")

    def sort(
        self,
        *by: str | Expr | SortExpr,
        descending: bool | Sequence[bool] = False,
        nulls_last: bool | Sequence[bool] = False,
    ) -> DataFrame:
        """Stable sort by one or more keys, each with its own direction and null placement."""
        return self._run(Sort(self._scan(), _sort_keys(by, descending, nulls_last)), "sort")

    def head(self, n: int = 5) -> DataFrame:
        """Return the first n rows."""
        return self._run(Slice(self._scan(), 0, n), "head")

    def limit(self, n: int = 5) -> DataFrame:
        return self.head(n)

    def tail(self, n: int = 5) -> DataFrame:
        """Return the last n rows."""
        return self._run(Slice(self._scan(), -n, n), "tail")

    def slice(self, offset: int, length: int | None = None) -> DataFrame:
        return self._run(Slice(self._scan(), offset, length), "slice")

    def sample(self, n: int, *, seed: int | None = None) -> DataFrame:
        """Return n rows drawn without replacement, in their original order."""
        if n > self.height:
            raise ShapeError(f"sample() cannot draw {n} rows from a frame of height {self.height}")
        with backend_errors("sample", self._backend.name):
            data = self._backend.sample(self._data, n, seed)
        return DataFrame(_data=data, _backend=self._backend, _schema=self._schema)

    def unique(
        self, subset: str | Sequence[str] | None = None, *, keep: str = "first"
    ) -> DataFrame:
        """Drop duplicate rows, keeping first-appearance order."""
        if isinstance(subset, str):
            subset = [subset]
        return self._run(Unique(self._scan(), subset, keep), "unique")

    def drop_nulls(self, subset: str | Sequence[str] | None = None) -> DataFrame:
        if isinstance(subset, str):
            subset = [subset]
        return self._run(DropNulls(self._scan(), subset), "drop_nulls")

    def with_columns(self, *exprs: Expr | Series, **named: Any) -> DataFrame:
        """Add or overwrite columns.

        Positional arguments are expressions (named by their alias or first
        column) or Series; keyword arguments name an expression, Series or
        scalar.
        """
        positional = _flatten(exprs)
        attached = [v for v in positional if isinstance(v, Series)]
        attached += [v for v in named.values() if isinstance(v, Series)]
        if not attached:
            node = WithColumns(self._scan(), _named_exprs(positional, named))
            return self._run(node, "with_columns")

        data, schema, temps = self._with_series(attached, "with_columns")
        slots = iter(temps)
        resolved: list[Expr] = []
        for value in positional:
            if isinstance(value, Series):
                resolved.append(col(next(slots)).alias(value.name))
            else:
                resolved.append(_to_expr(value))
        for name, value in named.items():
            if isinstance(value, Series):
                resolved.append(col(next(slots)).alias(name))
            else:
                resolved.append(_wrap(value).alias(name))
        node = WithColumns(self._scan(data, schema), resolved)
        with backend_errors("with_columns", self._backend.name):
            out = apply_node(self._backend, node, [data])
        keep = [n for n in node.schema.names() if n not in temps]
        return self._run(Select(node, [ColumnRef(n) for n in keep]), "with_columns", [out])

    # --- Schema-transforming operations ---

    def select(self, *exprs: str | Expr, **named: Any) -> DataFrame:
        """Evaluate column names or expressions into a new frame, in the given order."""
        return self._run(Select(self._scan(), _named_exprs(exprs, named)), "select")

    def drop(self, *columns: str) -> DataFrame:
        names = _flatten(columns)
        remaining = self._schema.drop(names)
        return self._run(Select(self._scan(), [ColumnRef(n) for n in remaining]), "drop")

    def rename(self, mapping: Mapping[str, str]) -> DataFrame:
        return self._run(Rename(self._scan(), mapping), "rename")

    def group_by(self, *keys: str | Expr) -> GroupBy:
        """Group by key columns for aggregation."""
        names = [_to_name(k, "group_by") for k in _flatten(keys)]
        self._schema.require(names, "group_by")
        return GroupBy(_frame=self, _keys=names)

    def join(
        self,
        other: DataFrame,
        on: str | Sequence[str] | None = None,
        *,
        left_on: str | Sequence[str] | None = None,
        right_on: str | Sequence[str] | None = None,
        how: str = "inner",
        suffix: str = DEFAULT_JOIN_SUFFIX,
    ) -> DataFrame:
        """Join with another frame.

        Key columns appear once, under their left name. Right columns whose
        name collides with a left column get ``suffix`` appended.
        """
        if not isinstance(other, DataFrame):
            raise TypeError(f"join() expects a DataFrame, got {type(other).__name__}")
        _check_same_backend([self._backend, other._backend], "join")
        lk, rk = _join_keys(on, left_on, right_on, how)
        node = Join(self._scan(), other._scan(), lk, rk, how, suffix)
        return self._run(node, "join", [self._data, other._data])

    def pivot_longer(
        self,
        index: str | Sequence[str],
        on: str | Sequence[str] | None = None,
        *,
        variable_name: str = "variable",
        value_name: str = "value",
    ) -> DataFrame:
        """Unpivot ``on`` columns into (variable, value) rows."""
        index = [index] if isinstance(index, str) else list(index)
        on = [on] if isinstance(on, str) else on
        node = Unpivot(self._scan(), index, on, variable_name, value_name)
        return self._run(node, "pivot_longer")

    unpivot = pivot_longer

    def pivot_wider(
        self,
        index: str | Sequence[str],
        on: str,
        values: str,
        *,
        aggregate: str = "first",
    ) -> DataFrame:
        """Spread the distinct values of ``on`` into columns.

        The output columns depend on the data, so there is no lazy form.
        """
        index = [index] if isinstance(index, str) else list(index)
        self._schema.require([*index, on, values], "pivot_wider")
        if aggregate not in _PIVOT_AGGREGATES:
            raise ValueError(
                f"pivot_wider() aggregate must be one of {_PIVOT_AGGREGATES}, got {aggregate!r}"
            )
        with backend_errors("pivot_wider", self._backend.name):
            data = self._backend.pivot(self._data, index, on, values, aggregate)
        return DataFrame(_data=data, _backend=self._backend)

    # --- Conversion ---

    def lazy(self) -> LazyFrame:
        """Start a lazy query plan over this frame's data."""
        return LazyFrame(_plan=self._scan())

    def to_dict(self) -> dict[str, list[Any]]:
        """Column name → list of Python values (``None`` for missing)."""
        return self._backend.to_dict(self._data)

    def rows(self, *, named: bool = False) -> list[Any]:
        """All rows, as tuples or (``named=True``) as dicts."""
        data = self.to_dict()
        names = self.columns
        tuples = list(zip(*(data[n] for n in names))) if names else []
        if named:
            return [dict(zip(names, row)) for row in tuples]
        return tuples

    def iter_rows(self, *, named: bool = False) -> Iterator[Any]:
        yield from self.rows(named=named)

    def item(self, row: int | None = None, column: str | None = None) -> Any:
        """A single value; without arguments the frame must be 1x1."""
        if row is None and column is None:
            if self.shape != (1, 1):
                raise ShapeError(f"item() without arguments requires a 1x1 frame, got {self.shape}")
            return self.to_dict()[self.columns[0]][0]
        if row is None or column is None:
            raise ValueError("item() takes both row and column, or neither")
        return self.column(column).to_list()[row]

    def to_native(self) -> Any:
        """Return the underlying backend-native data object (e.g. pl.DataFrame)."""
        return self._data

    def to_arrow(self) -> pa.Table:
        from quarry.arrow import to_arrow

        return to_arrow(self)

    def to_backend(self, backend: str | BackendProtocol) -> DataFrame:
        """Copy this frame to another backend through Arrow, keeping its schema."""
        from quarry.arrow import from_arrow

        target = get_backend(backend)
        if target.name == self._backend.name:
            return self
        return from_arrow(self.to_arrow(), schema=self._schema, backend=target)

    def equals(self, other: object) -> bool:
        """True if ``other`` has the same schema and values, in the same row order.

        Frames from different backends compare by value.
        """
        if not isinstance(other, DataFrame):
            return False
        return self._schema == other._schema and self.to_dict() == other.to_dict()


# ---------------------------------------------------------------------------
# GroupBy
# ---------------------------------------------------------------------------


class GroupBy:
    """Grouped DataFrame for aggregation."""

    __slots__ = ("_frame", "_keys")

    def __init__(self, *, _frame: DataFrame, _keys: Sequence[str]) -> None:
        self._frame = _frame
        self._keys = list(_keys)

    def __repr__(self) -> str:
        return f"GroupBy(keys={self._keys})"

    def agg(self, *exprs: Expr, **named: Expr) -> DataFrame:
        """Aggregate each group; groups appear in first-appearance order."""
        frame = self._frame
        node = Aggregate(frame._scan(), self._keys, _named_exprs(exprs, named))
        return frame._run(node, "agg")


# ---------------------------------------------------------------------------
# LazyFrame
# ---------------------------------------------------------------------------


class LazyFrame:
    """A lazy query plan. Nothing runs until :meth:`collect`.

    Every method returns a new LazyFrame with one more plan node; building a
    plan only fails for statically detectable errors (unknown columns,
    ill-typed expressions), never for data-dependent ones.
    """

    __slots__ = ("_plan",)

    def __init__(self, *, _plan: PlanNode) -> None:
        self._plan = _plan

    def __repr__(self) -> str:
        return f"LazyFrame[{self.backend}]\n{explain(self._plan)}"

    @property
    def plan(self) -> PlanNode:
        return self._plan

    @property
    def _backend(self) -> BackendProtocol:
        return scans(self._plan)[0].backend

    @property
    def backend(self) -> str:
        return self._backend.name

    @property
    def schema(self) -> Schema:
        """The output schema, derived without touching data."""
        return self._plan.schema

    @property
    def columns(self) -> list[str]:
        return self._plan.schema.names()

    @property
    def dtypes(self) -> list[DataType]:
        return self._plan.schema.dtypes()

    @property
    def width(self) -> int:
        return len(self._plan.schema)

    def _then(self, node: PlanNode) -> LazyFrame:
        return LazyFrame(_plan=node)

    # --- Schema-preserving operations ---

    def filter(self, predicate: Expr) -> LazyFrame:
        if isinstance(predicate, Series):
            raise TypeError("LazyFrame.filter() takes an expression, not an eager Series")
        return self._then(Filter(self._plan, predicate))

    def sort(
        self,
        *by: str | Expr | SortExpr,
        descending: bool | Sequence[bool] = False,
        nulls_last: bool | Sequence[bool] = False,
    ) -> LazyFrame:
        return self._then(Sort(self._plan, _sort_keys(by, descending, nulls_last)))

    def head(self, n: int = 5) -> LazyFrame:
        return self._then(Slice(self._plan, 0, n))

    def limit(self, n: int = 5) -> LazyFrame:
        return self.head(n)

    def tail(self, n: int = 5) -> LazyFrame:
        return self._then(Slice(self._plan, -n, n))

    def slice(self, offset: int, length: int | None = None) -> LazyFrame:
        return self._then(Slice(self._plan, offset, length))

    def unique(
        self, subset: str | Sequence[str] | None = None, *, keep: str = "first"
    ) -> LazyFrame:
        if isinstance(subset, str):
            subset = [subset]
        return self._then(Unique(self._plan, subset, keep))

    def drop_nulls(self, subset: str | Sequence[str] | None = None) -> LazyFrame:
        if isinstance(subset, str):
            subset = [subset]
        return self._then(DropNulls(self._plan, subset))

    def with_columns(self, *exprs: Expr, **named: Any) -> LazyFrame:
        return self._then(WithColumns(self._plan, _named_exprs(exprs, named)))

    # --- Schema-transforming operations ---

    def select(self, *exprs: str | Expr, **named: Any) -> LazyFrame:
        return self._then(Select(self._plan, _named_exprs(exprs, named)))

    def drop(self, *columns: str) -> LazyFrame:
        remaining = self._plan.schema.drop(_flatten(columns))
        return self._then(Select(self._plan, [ColumnRef(n) for n in remaining]))

    def rename(self, mapping: Mapping[str, str]) -> LazyFrame:
        return self._then(Rename(self._plan, mapping))

    def group_by(self, *keys: str | Expr) -> LazyGroupBy:
        names = [_to_name(k, "group_by") for k in _flatten(keys)]
        self._plan.schema.require(names, "group_by")
        return LazyGroupBy(_frame=self, _keys=names)

    def join(
        self,
        other: LazyFrame,
        on: str | Sequence[str] | None = None,
        *,
        left_on: str | Sequence[str] | None = None,
        right_on: str | Sequence[str] | None = None,
        how: str = "inner",
        suffix: str = DEFAULT_JOIN_SUFFIX,
    ) -> LazyFrame:
        if not isinstance(other, LazyFrame):
            raise TypeError(f"join() expects a LazyFrame, got {type(other).__name__}")
        _check_same_backend([self._backend, other._backend], "join")
        lk, rk = _join_keys(on, left_on, right_on, how)
        return self._then(Join(self._plan, other._plan, lk, rk, how, suffix))

    def pivot_longer(
        self,
        index: str | Sequence[str],
        on: str | Sequence[str] | None = None,
        *,
        variable_name: str = "variable",
        value_name: str = "value",
    ) -> LazyFrame:
        index = [index] if isinstance(index, str) else list(index)
        on = [on] if isinstance(on, str) else on
        return self._then(Unpivot(self._plan, index, on, variable_name, value_name))

    unpivot = pivot_longer

    # --- Planning / execution ---

    def explain(self, optimized: bool = True) -> str:
        """Render the (optionally optimized) plan as an indented tree."""
        from quarry.optimizer import optimize

        return explain(optimize(self._plan) if optimized else self._plan)

    def optimize(self) -> LazyFrame:
        """Return a LazyFrame over the optimized plan."""
        from quarry.optimizer import optimize

        return self._then(optimize(self._plan))

    def execution(self) -> Execution:
        """A fresh, not yet started execution of this plan."""
        return Execution(self._plan)

    def collect(
        self, *, optimize: bool = True, cancel_token: CancellationToken | None = None
    ) -> DataFrame:
        """Optimize and execute the plan. Each call re-executes from the sources."""
        execution = self.execution()
        data = execution.run(optimize=optimize, token=cancel_token)
        return DataFrame(_data=data, _backend=execution.backend, _schema=self._plan.schema)


class LazyGroupBy:
    """Grouped LazyFrame for aggregation."""

    __slots__ = ("_frame", "_keys")

    def __init__(self, *, _frame: LazyFrame, _keys: Sequence[str]) -> None:
        self._frame = _frame
        self._keys = list(_keys)

    def __repr__(self) -> str:
        return f"LazyGroupBy(keys={self._keys})"

    def agg(self, *exprs: Expr, **named: Expr) -> LazyFrame:
        node = Aggregate(self._frame._plan, self._keys, _named_exprs(exprs, named))
        return self._frame._then(node)


# ---------------------------------------------------------------------------
# Module-level constructors and combinators
# ---------------------------------------------------------------------------


def from_dict(
    data: Mapping[str, Sequence[Any]],
    schema: Mapping[str, Any] | Schema | None = None,
    *,
    backend: str | BackendProtocol | None = None,
) -> DataFrame:
    """Build a DataFrame from ``{name: values}``."""
    return DataFrame.from_dict(data, schema, backend=backend)


def concat_rows(frames: Sequence[DataFrame | LazyFrame]) -> DataFrame | LazyFrame:
    """Stack frames vertically. All must share column names, dtypes and backend."""
    frames = list(frames)
    if not frames:
        raise ValueError("concat_rows() requires at least one frame")
    _check_same_backend([f._backend for f in frames], "concat_rows")
    if all(isinstance(f, LazyFrame) for f in frames):
        return LazyFrame(_plan=Concat([f._plan for f in frames]))
    if not all(isinstance(f, DataFrame) for f in frames):
        raise TypeError("concat_rows() cannot mix DataFrame and LazyFrame inputs")
    node = Concat([f._scan() for f in frames])
    return frames[0]._run(node, "concat_rows", [f._data for f in frames])


def concat_columns(frames: Sequence[DataFrame | LazyFrame]) -> DataFrame | LazyFrame:
    """Place frames side by side. Names must be unique and heights equal."""
    frames = list(frames)
    if not frames:
        raise ValueError("concat_columns() requires at least one frame")
    _check_same_backend([f._backend for f in frames], "concat_columns")
    if all(isinstance(f, LazyFrame) for f in frames):
        return LazyFrame(_plan=HConcat([f._plan for f in frames]))
    if not all(isinstance(f, DataFrame) for f in frames):
        raise TypeError("concat_columns() cannot mix DataFrame and LazyFrame inputs")
    node = HConcat([f._scan() for f in frames])
    return frames[0]._run(node, "concat_columns", [f._data for f in frames])


def sample_positions(height: int, n: int, seed: int | None) -> list[int]:
    """Sorted row positions of a sample without replacement.

    Backends take these rows so a seeded sample is identical on every engine.
    """
    return sorted(random.Random(seed).sample(range(height), n))
