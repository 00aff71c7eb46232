"""Series: an eager, named, single-typed column held by a backend.

A Series is backed by a one-column native frame. Every operation builds the
equivalent expression over that column and evaluates it through the same
plan nodes a DataFrame uses, so a Series operation and the matching
``with_columns`` expression always agree on result type and null handling.

Combining two Series requires the same backend (``BackendMismatchError``)
and the same length (``ShapeError``); a Python scalar broadcasts.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import TYPE_CHECKING, Any

from quarry.dtypes import Boolean, DataType, infer_dtype, to_dtype
from quarry.errors import BackendMismatchError, DTypeError, ShapeError
from quarry.executor import apply_node, backend_errors
from quarry.expr import BinOp, ColumnRef, Expr, SortExpr, UnaryOp, _wrap, col, concat_str
from quarry.plan import DataFrameScan, Filter, PlanNode, Select, Slice, Sort, Unique
from quarry.registry import get_backend
from quarry.schema import Schema

if TYPE_CHECKING:
    import pyarrow as pa

    from quarry._protocols import BackendProtocol
    from quarry.dataframe import DataFrame

_LHS = "__quarry_lhs"
_RHS = "__quarry_rhs"
_MASK = "__quarry_mask"


def series(
    values: Sequence[Any],
    dtype: Any = None,
    name: str = "",
    *,
    backend: str | BackendProtocol | None = None,
) -> Series:
    """Create a Series from a Python sequence.

    The dtype is inferred from the values when not given; ``None`` entries
    are missing values.
    """
    impl = get_backend(backend)
    values = list(values)
    resolved = to_dtype(dtype) if dtype is not None else infer_dtype(values)
    schema = Schema({name: resolved})
    with backend_errors("series", impl.name):
        data = impl.from_dict({name: values}, schema)
    return Series(_data=data, _name=name, _dtype=resolved, _backend=impl)


class Series:
    """A one-dimensional, single-typed, nullable column of values."""

    __slots__ = ("_data", "_name", "_dtype", "_backend")

    def __init__(
        self,
        *,
        _data: Any,
        _name: str,
        _backend: BackendProtocol,
        _dtype: DataType | None = None,
    ) -> None:
        self._data = _data
        self._name = _name
        self._backend = _backend
        self._dtype = _dtype if _dtype is not None else _backend.schema(_data)[_name]

    # --- Introspection ---

    @property
    def name(self) -> str:
        return self._name

    @property
    def dtype(self) -> DataType:
        return self._dtype

    @property
    def backend(self) -> str:
        """Name of the backend holding this Series."""
        return self._backend.name

    def __len__(self) -> int:
        return self._backend.row_count(self._data)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.to_list())

    def __getitem__(self, index: int) -> Any:
        return self.to_list()[index]

    def __bool__(self) -> bool:
        msg = (
            "The truth value of a Series is ambiguous. "
            "Use .equals() for comparison, or .any()/.all() style aggregations."
        )
        raise TypeError(msg)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Series[{self._name!r}, {self._dtype!r}, {self.backend}]\n{self.to_native()!r}"

    # --- Conversion ---

    def to_list(self) -> list[Any]:
        return self._backend.to_dict(self._data)[self._name]

    def to_native(self) -> Any:
        """The engine's native column object (e.g. ``pl.Series``)."""
        return self._backend.get_column(self._data, self._name)

    def to_arrow(self) -> pa.Array:
        return self._backend.to_arrow(self._data).column(0).combine_chunks()

    def to_frame(self) -> DataFrame:
        from quarry.dataframe import DataFrame

        return DataFrame(
            _data=self._data, _backend=self._backend, _schema=Schema({self._name: self._dtype})
        )

    def equals(self, other: object) -> bool:
        """True if ``other`` has the same name, dtype and values."""
        if not isinstance(other, Series):
            return False
        return (
            self._name == other._name
            and self._dtype == other._dtype
            and self.to_list() == other.to_list()
        )

    # --- Evaluation helpers ---

    def _node(self, data: Any = None) -> DataFrameScan:
        data = self._data if data is None else data
        return DataFrameScan(data, self._backend, self._backend.schema(data))

    def _run(self, node: PlanNode, data: Any, operation: str) -> Series:
        with backend_errors(operation, self._backend.name):
            out = apply_node(self._backend, node, [data])
        return Series(
            _data=out, _name=self._name, _dtype=node.schema[self._name], _backend=self._backend
        )

    def _evaluate(self, expr: Expr, operation: str, data: Any = None) -> Series:
        data = self._data if data is None else data
        node = Select(self._node(data), [expr.alias(self._name)])
        return self._run(node, data, operation)

    def _check_compatible(self, other: Series, operation: str) -> None:
        if other._backend.name != self._backend.name:
            raise BackendMismatchError(
                self._backend.name, other._backend.name, operation=operation
            )
        if len(other) != len(self):
            raise ShapeError(
                f"{operation}() requires Series of equal length, got {len(self)} and {len(other)}"
            )

    def _paired(self, other: Series, operation: str) -> Any:
        """Both Series side by side under internal names."""
        self._check_compatible(other, operation)
        backend = self._backend
        with backend_errors(operation, backend.name):
            left = backend.rename(self._data, {self._name: _LHS})
            right = backend.rename(other._data, {other._name: _RHS})
            return backend.hconcat([left, right])

    def _binary(self, other: Any, op: str, reflected: bool = False) -> Series:
        operation = f"Series.__{op}__"
        if isinstance(other, Series):
            data = self._paired(other, operation)
            left: Expr = col(_LHS)
            right: Expr = col(_RHS)
        else:
            with backend_errors(operation, self._backend.name):
                data = self._backend.rename(self._data, {self._name: _LHS})
            left, right = col(_LHS), _wrap(other)
        if reflected:
            left, right = right, left
        return self._evaluate(BinOp(left, right, op), operation, data)

    def _apply(self, build: Any, operation: str) -> Series:
        return self._evaluate(build(col(self._name)), operation)

    # --- Arithmetic operators ---

    def __add__(self, other: Any) -> Series:
        return self._binary(other, "+")

    def __radd__(self, other: Any) -> Series:
        return self._binary(other, "+", reflected=True)

    def __sub__(self, other: Any) -> Series:
        return self._binary(other, "-")

    def __rsub__(self, other: Any) -> Series:
        return self._binary(other, "-", reflected=True)

    def __mul__(self, other: Any) -> Series:
        return self._binary(other, "*")

    def __rmul__(self, other: Any) -> Series:
        return self._binary(other, "*", reflected=True)

    def __truediv__(self, other: Any) -> Series:
        return self._binary(other, "/")

    def __rtruediv__(self, other: Any) -> Series:
        return self._binary(other, "/", reflected=True)

    def __floordiv__(self, other: Any) -> Series:
        return self._binary(other, "//")

    def __rfloordiv__(self, other: Any) -> Series:
        return self._binary(other, "//", reflected=True)

    def __mod__(self, other: Any) -> Series:
        return self._binary(other, "%")

    def __rmod__(self, other: Any) -> Series:
        return self._binary(other, "%", reflected=True)

    def __neg__(self) -> Series:
        return self._apply(lambda c: UnaryOp(c, "-"), "Series.__neg__")

    # --- Comparison and logical operators ---

    def __eq__(self, other: Any) -> Series:  # type: ignore[override]
        return self._binary(other, "==")

    def __ne__(self, other: Any) -> Series:  # type: ignore[override]
        return self._binary(other, "!=")

    def __lt__(self, other: Any) -> Series:
        return self._binary(other, "<")

    def __le__(self, other: Any) -> Series:
        return self._binary(other, "<=")

    def __gt__(self, other: Any) -> Series:
        return self._binary(other, ">")

    def __ge__(self, other: Any) -> Series:
        return self._binary(other, ">=")

    def __and__(self, other: Any) -> Series:
        return self._binary(other, "&")

    def __rand__(self, other: Any) -> Series:
        return self._binary(other, "&", reflected=True)

    def __or__(self, other: Any) -> Series:
        return self._binary(other, "|")

    def __ror__(self, other: Any) -> Series:
        return self._binary(other, "|", reflected=True)

    def __invert__(self) -> Series:
        return self._apply(lambda c: UnaryOp(c, "~"), "Series.__invert__")

    # --- Aggregations ---

    def _aggregate(self, agg_type: str) -> Any:
        node = Select(self._node(), [getattr(col(self._name), agg_type)().alias(self._name)])
        result = self._run(node, self._data, agg_type)
        return result.to_list()[0]

    def sum(self) -> Any:
        return self._aggregate("sum")

    def mean(self) -> Any:
        return self._aggregate("mean")

    def median(self) -> Any:
        return self._aggregate("median")

    def min(self) -> Any:
        return self._aggregate("min")

    def max(self) -> Any:
        return self._aggregate("max")

    def std(self) -> Any:
        return self._aggregate("std")

    def var(self) -> Any:
        return self._aggregate("var")

    def count(self) -> int:
        """Number of non-missing values."""
        return self._aggregate("count")

    def n_unique(self) -> int:
        return self._aggregate("n_unique")

    def null_count(self) -> int:
        return self._aggregate("null_count")

    def first(self) -> Any:
        return self._aggregate("first")

    def last(self) -> Any:
        return self._aggregate("last")

    # --- Element-wise transforms ---

    def is_null(self) -> Series:
        return self._apply(lambda c: c.is_null(), "is_null")

    def is_not_null(self) -> Series:
        return self._apply(lambda c: c.is_not_null(), "is_not_null")

    def fill_null(self, value: Any) -> Series:
        return self._apply(lambda c: c.fill_null(value), "fill_null")

    def cast(self, dtype: Any) -> Series:
        return self._apply(lambda c: c.cast(dtype), "cast")

    def abs(self) -> Series:
        return self._apply(lambda c: c.abs(), "abs")

    def round(self, decimals: int = 0) -> Series:
        return self._apply(lambda c: c.round(decimals), "round")

    def is_in(self, values: Sequence[Any]) -> Series:
        return self._apply(lambda c: c.is_in(values), "is_in")

    # --- String transforms ---

    def str_contains(self, pattern: str) -> Series:
        return self._apply(lambda c: c.str_contains(pattern), "str_contains")

    def str_starts_with(self, prefix: str) -> Series:
        return self._apply(lambda c: c.str_starts_with(prefix), "str_starts_with")

    def str_ends_with(self, suffix: str) -> Series:
        return self._apply(lambda c: c.str_ends_with(suffix), "str_ends_with")

    def str_len(self) -> Series:
        return self._apply(lambda c: c.str_len(), "str_len")

    def str_to_lowercase(self) -> Series:
        return self._apply(lambda c: c.str_to_lowercase(), "str_to_lowercase")

    def str_to_uppercase(self) -> Series:
        return self._apply(lambda c: c.str_to_uppercase(), "str_to_uppercase")

    def str_strip(self) -> Series:
        return self._apply(lambda c: c.str_strip(), "str_strip")

    def str_replace(self, pattern: str, replacement: str) -> Series:
        return self._apply(lambda c: c.str_replace(pattern, replacement), "str_replace")

    def str_slice(self, offset: int, length: int | None = None) -> Series:
        return self._apply(lambda c: c.str_slice(offset, length), "str_slice")

    def concat_str(self, *others: Series | str, separator: str = "") -> Series:
        """Concatenate with other String Series (or string scalars) row-wise."""
        data = self._data
        parts: list[Any] = [col(self._name)]
        for i, other in enumerate(others):
            if isinstance(other, Series):
                self._check_compatible(other, "concat_str")
                alias = f"{_RHS}_{i}"
                with backend_errors("concat_str", self._backend.name):
                    renamed = self._backend.rename(other._data, {other._name: alias})
                    data = self._backend.hconcat([data, renamed])
                parts.append(col(alias))
            else:
                parts.append(_wrap(other))
        return self._evaluate(concat_str(*parts, separator=separator), "concat_str", data)

    # --- Temporal transforms ---

    def dt_year(self) -> Series:
        return self._apply(lambda c: c.dt_year(), "dt_year")

    def dt_month(self) -> Series:
        return self._apply(lambda c: c.dt_month(), "dt_month")

    def dt_day(self) -> Series:
        return self._apply(lambda c: c.dt_day(), "dt_day")

    def dt_weekday(self) -> Series:
        return self._apply(lambda c: c.dt_weekday(), "dt_weekday")

    def dt_hour(self) -> Series:
        return self._apply(lambda c: c.dt_hour(), "dt_hour")

    def dt_minute(self) -> Series:
        return self._apply(lambda c: c.dt_minute(), "dt_minute")

    def dt_second(self) -> Series:
        return self._apply(lambda c: c.dt_second(), "dt_second")

    # --- Window transforms ---

    def cum_sum(self) -> Series:
        return self._apply(lambda c: c.cum_sum(), "cum_sum")

    def cum_min(self) -> Series:
        return self._apply(lambda c: c.cum_min(), "cum_min")

    def cum_max(self) -> Series:
        return self._apply(lambda c: c.cum_max(), "cum_max")

    def shift(self, n: int = 1) -> Series:
        return self._apply(lambda c: c.shift(n), "shift")

    def rolling_sum(self, window_size: int, min_periods: int | None = None) -> Series:
        return self._apply(lambda c: c.rolling_sum(window_size, min_periods), "rolling_sum")

    def rolling_mean(self, window_size: int, min_periods: int | None = None) -> Series:
        return self._apply(lambda c: c.rolling_mean(window_size, min_periods), "rolling_mean")

    def rolling_min(self, window_size: int, min_periods: int | None = None) -> Series:
        return self._apply(lambda c: c.rolling_min(window_size, min_periods), "rolling_min")

    def rolling_max(self, window_size: int, min_periods: int | None = None) -> Series:
        return self._apply(lambda c: c.rolling_max(window_size, min_periods), "rolling_max")

    # --- Row operations ---

    def sort(self, descending: bool = False, nulls_last: bool = False) -> Series:
        node = Sort(self._node(), [SortExpr(ColumnRef(self._name), descending, nulls_last)])
        return self._run(node, self._data, "sort")

    def head(self, n: int = 5) -> Series:
        return self._run(Slice(self._node(), 0, n), self._data, "head")

    def tail(self, n: int = 5) -> Series:
        return self._run(Slice(self._node(), -n, n), self._data, "tail")

    def slice(self, offset: int, length: int | None = None) -> Series:
        return self._run(Slice(self._node(), offset, length), self._data, "slice")

    def unique(self) -> Series:
        """Distinct values in first-appearance order."""
        return self._run(Unique(self._node(), [self._name], "first"), self._data, "unique")

    def filter(self, mask: Series) -> Series:
        """Keep values where ``mask`` is true; missing counts as false."""
        if not isinstance(mask.dtype, Boolean):
            raise DTypeError(f"filter() mask must be Boolean, got {mask.dtype!r}")
        self._check_compatible(mask, "filter")
        with backend_errors("filter", self._backend.name):
            renamed = self._backend.rename(mask._data, {mask._name: _MASK})
            data = self._backend.hconcat([self._data, renamed])
        filtered = Filter(self._node(data), ColumnRef(_MASK))
        node = Select(filtered, [ColumnRef(self._name)])
        with backend_errors("filter", self._backend.name):
            out = apply_node(self._backend, filtered, [data])
            out = apply_node(self._backend, node, [out])
        return Series(_data=out, _name=self._name, _dtype=self._dtype, _backend=self._backend)

    def rename(self, name: str) -> Series:
        with backend_errors("rename", self._backend.name):
            data = self._backend.rename(self._data, {self._name: name})
        return Series(_data=data, _name=name, _dtype=self._dtype, _backend=self._backend)

    def to_backend(self, backend: str | BackendProtocol) -> Series:
        """Copy this Series to another backend through Arrow."""
        frame = self.to_frame().to_backend(backend)
        return frame[self._name]
