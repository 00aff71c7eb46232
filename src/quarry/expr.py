"""Expression tree: AST nodes for the quarry expression DSL.

Every operation on an expression produces another expression node instead of
executing. The same trees serve three purposes: eager ``with_columns`` /
``filter`` / ``agg`` arguments, the per-column steps of a lazy plan, and the
lazy counterpart of a Series (``LazySeries``). Backend adapters translate the
trees into engine-native operations.

Nodes are created untyped. :func:`quarry.inference.bind` resolves them
against a schema, returning a copy whose ``dtype`` slots are filled in.

The node set is closed: ColumnRef, Literal, BinOp, UnaryOp, FunctionCall,
Agg, Window, WhenThenOtherwise, StructFieldAccess, ListOp and AliasedExpr.
Passes that rewrite trees (binding, constant folding, predicate pushdown)
match exhaustively on these classes.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from typing import Any

from quarry.dtypes import DataType, to_dtype

# ---------------------------------------------------------------------------
# Base expression
# ---------------------------------------------------------------------------


class Expr:
    """Base class for all expression tree nodes.

    Supports logical chaining (``&``, ``|``, ``~``), comparison,
    arithmetic operators, and aliasing. ``==`` builds a comparison node; use
    :meth:`equals` for structural equality.
    """

    __slots__ = ("dtype",)

    dtype: DataType | None

    def _key(self) -> tuple[Any, ...]:
        raise NotImplementedError

    def children(self) -> tuple[Expr, ...]:
        """Direct sub-expressions, in evaluation order."""
        return ()

    def map_children(self, fn: Callable[[Expr], Expr]) -> Expr:
        """Return a copy with ``fn`` applied to every direct sub-expression."""
        return self

    def equals(self, other: object) -> bool:
        """Structural equality, including resolved dtypes."""
        return isinstance(other, Expr) and self._key() == other._key()

    def __bool__(self) -> bool:
        msg = (
            "The truth value of an expression is ambiguous. "
            "Use '&' / '|' instead of 'and' / 'or', and .equals() for structural comparison."
        )
        raise TypeError(msg)

    # --- Logical operators (for chaining boolean expressions) ---

    def __and__(self, other: Any) -> BinOp:
        return BinOp(left=self, right=_wrap(other), op="&")

    def __rand__(self, other: Any) -> BinOp:
        return BinOp(left=_wrap(other), right=self, op="&")

    def __or__(self, other: Any) -> BinOp:
        return BinOp(left=self, right=_wrap(other), op="|")

    def __ror__(self, other: Any) -> BinOp:
        return BinOp(left=_wrap(other), right=self, op="|")

    def __invert__(self) -> UnaryOp:
        return UnaryOp(operand=self, op="~")

    # --- Comparison operators ---

    def __gt__(self, other: Any) -> BinOp:
        return BinOp(left=self, right=_wrap(other), op=">")

    def __lt__(self, other: Any) -> BinOp:
        return BinOp(left=self, right=_wrap(other), op="<")

    def __ge__(self, other: Any) -> BinOp:
        return BinOp(left=self, right=_wrap(other), op=">=")

    def __le__(self, other: Any) -> BinOp:
        return BinOp(left=self, right=_wrap(other), op="<=")

    def __eq__(self, other: Any) -> BinOp:  # type: ignore[override]
        return BinOp(left=self, right=_wrap(other), op="==")

    def __ne__(self, other: Any) -> BinOp:  # type: ignore[override]
        return BinOp(left=self, right=_wrap(other), op="!=")

    __hash__ = None  # type: ignore[assignment]

    # --- Arithmetic operators ---

    def __add__(self, other: Any) -> BinOp:
        return BinOp(left=self, right=_wrap(other), op="+")

    def __radd__(self, other: Any) -> BinOp:
        return BinOp(left=_wrap(other), right=self, op="+")

    def __sub__(self, other: Any) -> BinOp:
        return BinOp(left=self, right=_wrap(other), op="-")

    def __rsub__(self, other: Any) -> BinOp:
        return BinOp(left=_wrap(other), right=self, op="-")

    def __mul__(self, other: Any) -> BinOp:
        return BinOp(left=self, right=_wrap(other), op="*")

    def __rmul__(self, other: Any) -> BinOp:
        return BinOp(left=_wrap(other), right=self, op="*")

    def __truediv__(self, other: Any) -> BinOp:
        return BinOp(left=self, right=_wrap(other), op="/")

    def __rtruediv__(self, other: Any) -> BinOp:
        return BinOp(left=_wrap(other), right=self, op="/")

    def __floordiv__(self, other: Any) -> BinOp:
        return BinOp(left=self, right=_wrap(other), op="//")

    def __rfloordiv__(self, other: Any) -> BinOp:
        return BinOp(left=_wrap(other), right=self, op="//")

    def __mod__(self, other: Any) -> BinOp:
        return BinOp(left=self, right=_wrap(other), op="%")

    def __rmod__(self, other: Any) -> BinOp:
        return BinOp(left=_wrap(other), right=self, op="%")

    def __neg__(self) -> UnaryOp:
        return UnaryOp(operand=self, op="-")

    # --- Aliasing ---

    def alias(self, name: str) -> AliasedExpr:
        """Bind this expression to an output column name."""
        return AliasedExpr(expr=self, name=name)

    # --- Sorting ---

    def desc(self, nulls_last: bool = False) -> SortExpr:
        """Sort descending."""
        return SortExpr(expr=self, descending=True, nulls_last=nulls_last)

    def asc(self, nulls_last: bool = False) -> SortExpr:
        """Sort ascending."""
        return SortExpr(expr=self, descending=False, nulls_last=nulls_last)

    # --- Aggregation methods ---

    def _agg(self, agg_type: str) -> Agg:
        return Agg(source=self, agg_type=agg_type)

    def sum(self) -> Agg:
        return self._agg("sum")

    def mean(self) -> Agg:
        return self._agg("mean")

    def median(self) -> Agg:
        return self._agg("median")

    def min(self) -> Agg:
        return self._agg("min")

    def max(self) -> Agg:
        return self._agg("max")

    def count(self) -> Agg:
        """Number of non-missing values."""
        return self._agg("count")

    def null_count(self) -> Agg:
        return self._agg("null_count")

    def std(self) -> Agg:
        return self._agg("std")

    def var(self) -> Agg:
        return self._agg("var")

    def first(self) -> Agg:
        return self._agg("first")

    def last(self) -> Agg:
        return self._agg("last")

    def n_unique(self) -> Agg:
        """Number of distinct values; missing counts as one value."""
        return self._agg("n_unique")

    # --- Window ---

    def over(self, *partition_by: str | Expr) -> Window:
        """Evaluate this expression per partition, broadcasting back to rows."""
        return Window(expr=self, partition_by=tuple(_wrap_column(p) for p in partition_by))

    def _fn(self, name: str, *args: Any, **kwargs: Any) -> FunctionCall:
        return FunctionCall(name=name, args=(self, *args), kwargs=kwargs)

    def cum_sum(self) -> FunctionCall:
        return self._fn("cum_sum")

    def cum_min(self) -> FunctionCall:
        return self._fn("cum_min")

    def cum_max(self) -> FunctionCall:
        return self._fn("cum_max")

    def shift(self, n: int = 1) -> FunctionCall:
        return self._fn("shift", n)

    def rolling_sum(self, window_size: int, min_periods: int | None = None) -> FunctionCall:
        return self._fn("rolling_sum", window_size, min_periods=min_periods or window_size)

    def rolling_mean(self, window_size: int, min_periods: int | None = None) -> FunctionCall:
        return self._fn("rolling_mean", window_size, min_periods=min_periods or window_size)

    def rolling_min(self, window_size: int, min_periods: int | None = None) -> FunctionCall:
        return self._fn("rolling_min", window_size, min_periods=min_periods or window_size)

    def rolling_max(self, window_size: int, min_periods: int | None = None) -> FunctionCall:
        return self._fn("rolling_max", window_size, min_periods=min_periods or window_size)

    # --- String methods ---

    def str_contains(self, pattern: str) -> FunctionCall:
        """Literal substring match."""
        return self._fn("str_contains", pattern)

    def str_starts_with(self, prefix: str) -> FunctionCall:
        return self._fn("str_starts_with", prefix)

    def str_ends_with(self, suffix: str) -> FunctionCall:
        return self._fn("str_ends_with", suffix)

    def str_len(self) -> FunctionCall:
        """Length in characters."""
        return self._fn("str_len")

    def str_to_lowercase(self) -> FunctionCall:
        return self._fn("str_to_lowercase")

    def str_to_uppercase(self) -> FunctionCall:
        return self._fn("str_to_uppercase")

    def str_strip(self) -> FunctionCall:
        return self._fn("str_strip")

    def str_replace(self, pattern: str, replacement: str) -> FunctionCall:
        """Replace every literal occurrence of ``pattern``."""
        return self._fn("str_replace", pattern, replacement)

    def str_slice(self, offset: int, length: int | None = None) -> FunctionCall:
        return self._fn("str_slice", offset, length)

    # --- Temporal methods ---

    def dt_year(self) -> FunctionCall:
        return self._fn("dt_year")

    def dt_month(self) -> FunctionCall:
        return self._fn("dt_month")

    def dt_day(self) -> FunctionCall:
        return self._fn("dt_day")

    def dt_weekday(self) -> FunctionCall:
        """ISO weekday, Monday = 1 … Sunday = 7."""
        return self._fn("dt_weekday")

    def dt_hour(self) -> FunctionCall:
        return self._fn("dt_hour")

    def dt_minute(self) -> FunctionCall:
        return self._fn("dt_minute")

    def dt_second(self) -> FunctionCall:
        return self._fn("dt_second")

    # --- Null handling ---

    def is_null(self) -> UnaryOp:
        return UnaryOp(operand=self, op="is_null")

    def is_not_null(self) -> UnaryOp:
        return UnaryOp(operand=self, op="is_not_null")

    def is_nan(self) -> UnaryOp:
        return UnaryOp(operand=self, op="is_nan")

    def fill_null(self, value: Any) -> FunctionCall:
        return self._fn("fill_null", _wrap(value))

    def fill_nan(self, value: Any) -> FunctionCall:
        return self._fn("fill_nan", _wrap(value))

    # --- General ---

    def cast(self, dtype: Any) -> FunctionCall:
        return self._fn("cast", dtype=to_dtype(dtype))

    def abs(self) -> FunctionCall:
        return self._fn("abs")

    def round(self, decimals: int = 0) -> FunctionCall:
        return self._fn("round", decimals)

    def is_in(self, values: Sequence[Any]) -> FunctionCall:
        return self._fn("is_in", tuple(values))

    # --- Nested types ---

    def field(self, name: str) -> StructFieldAccess:
        """Access a field within a struct column."""
        return StructFieldAccess(struct_expr=self, field=name)

    @property
    def list(self) -> ListAccessor:
        """Access list operations on a list column."""
        return ListAccessor(self)


# ---------------------------------------------------------------------------
# Concrete AST nodes
# ---------------------------------------------------------------------------


class ColumnRef(Expr):
    """Reference to a column by name."""

    __slots__ = ("name",)

    def __init__(self, name: str, dtype: DataType | None = None) -> None:
        self.name = name
        self.dtype = dtype

    def _key(self) -> tuple[Any, ...]:
        return ("col", self.name, self.dtype)

    def __repr__(self) -> str:
        return f"col({self.name!r})"


class Literal(Expr):
    """A literal value."""

    __slots__ = ("value",)

    def __init__(self, value: Any, dtype: DataType | None = None) -> None:
        self.value = value
        self.dtype = dtype

    def _key(self) -> tuple[Any, ...]:
        return ("lit", _freeze(self.value), type(self.value).__name__, self.dtype)

    def __repr__(self) -> str:
        return f"lit({self.value!r})"


class BinOp(Expr):
    """Binary operation (arithmetic, comparison, logical)."""

    __slots__ = ("left", "right", "op")

    def __init__(self, left: Expr, right: Expr, op: str, dtype: DataType | None = None) -> None:
        self.left = left
        self.right = right
        self.op = op
        self.dtype = dtype

    def children(self) -> tuple[Expr, ...]:
        return (self.left, self.right)

    def map_children(self, fn: Callable[[Expr], Expr]) -> Expr:
        return BinOp(left=fn(self.left), right=fn(self.right), op=self.op, dtype=self.dtype)

    def _key(self) -> tuple[Any, ...]:
        return ("binop", self.op, self.left._key(), self.right._key(), self.dtype)

    def __repr__(self) -> str:
        return f"({self.left!r} {self.op} {self.right!r})"


class UnaryOp(Expr):
    """Unary operation (negation, not, is_null, etc.)."""

    __slots__ = ("operand", "op")

    def __init__(self, operand: Expr, op: str, dtype: DataType | None = None) -> None:
        self.operand = operand
        self.op = op
        self.dtype = dtype

    def children(self) -> tuple[Expr, ...]:
        return (self.operand,)

    def map_children(self, fn: Callable[[Expr], Expr]) -> Expr:
        return UnaryOp(operand=fn(self.operand), op=self.op, dtype=self.dtype)

    def _key(self) -> tuple[Any, ...]:
        return ("unary", self.op, self.operand._key(), self.dtype)

    def __repr__(self) -> str:
        if self.op in ("-", "~"):
            return f"{self.op}{self.operand!r}"
        return f"{self.operand!r}.{self.op}()"


class FunctionCall(Expr):
    """Named function application (str_contains, dt_year, cast, cum_sum, etc.).

    ``args`` mixes sub-expressions and plain Python parameters; only the
    ``Expr`` entries are children.
    """

    __slots__ = ("name", "args", "kwargs")

    def __init__(
        self,
        name: str,
        args: tuple[Any, ...] = (),
        kwargs: dict[str, Any] | None = None,
        dtype: DataType | None = None,
    ) -> None:
        self.name = name
        self.args = args
        self.kwargs = kwargs or {}
        self.dtype = dtype

    @property
    def input(self) -> Expr:
        """The first argument, which every function operates on."""
        return self.args[0]

    def children(self) -> tuple[Expr, ...]:
        return tuple(a for a in self.args if isinstance(a, Expr))

    def map_children(self, fn: Callable[[Expr], Expr]) -> Expr:
        args = tuple(fn(a) if isinstance(a, Expr) else a for a in self.args)
        return FunctionCall(name=self.name, args=args, kwargs=dict(self.kwargs), dtype=self.dtype)

    def _key(self) -> tuple[Any, ...]:
        args = tuple(a._key() if isinstance(a, Expr) else _freeze(a) for a in self.args)
        kwargs = tuple(sorted((k, _freeze(v)) for k, v in self.kwargs.items()))
        return ("fn", self.name, args, kwargs, self.dtype)

    def __repr__(self) -> str:
        params = [repr(a) for a in self.args[1:]]
        params += [f"{k}={v!r}" for k, v in self.kwargs.items()]
        return f"{self.args[0]!r}.{self.name}({', '.join(params)})"


class Agg(Expr):
    """Aggregation expression (sum, mean, count, etc.)."""

    __slots__ = ("source", "agg_type")

    def __init__(self, source: Expr, agg_type: str, dtype: DataType | None = None) -> None:
        self.source = source
        self.agg_type = agg_type
        self.dtype = dtype

    def children(self) -> tuple[Expr, ...]:
        return (self.source,)

    def map_children(self, fn: Callable[[Expr], Expr]) -> Expr:
        return Agg(source=fn(self.source), agg_type=self.agg_type, dtype=self.dtype)

    def _key(self) -> tuple[Any, ...]:
        return ("agg", self.agg_type, self.source._key(), self.dtype)

    def __repr__(self) -> str:
        return f"{self.source!r}.{self.agg_type}()"


class Window(Expr):
    """An expression evaluated separately within each partition of rows."""

    __slots__ = ("expr", "partition_by")

    def __init__(
        self, expr: Expr, partition_by: tuple[Expr, ...], dtype: DataType | None = None
    ) -> None:
        self.expr = expr
        self.partition_by = partition_by
        self.dtype = dtype

    def children(self) -> tuple[Expr, ...]:
        return (self.expr, *self.partition_by)

    def map_children(self, fn: Callable[[Expr], Expr]) -> Expr:
        return Window(
            expr=fn(self.expr),
            partition_by=tuple(fn(p) for p in self.partition_by),
            dtype=self.dtype,
        )

    def _key(self) -> tuple[Any, ...]:
        return ("over", self.expr._key(), tuple(p._key() for p in self.partition_by), self.dtype)

    def __repr__(self) -> str:
        keys = ", ".join(repr(p) for p in self.partition_by)
        return f"{self.expr!r}.over({keys})"


class WhenThenOtherwise(Expr):
    """Conditional expression: the first matching case wins, else ``otherwise``."""

    __slots__ = ("cases", "otherwise_expr")

    def __init__(
        self,
        cases: tuple[tuple[Expr, Expr], ...],
        otherwise_expr: Expr,
        dtype: DataType | None = None,
    ) -> None:
        self.cases = cases
        self.otherwise_expr = otherwise_expr
        self.dtype = dtype

    def children(self) -> tuple[Expr, ...]:
        flat: list[Expr] = []
        for cond, value in self.cases:
            flat.extend((cond, value))
        flat.append(self.otherwise_expr)
        return tuple(flat)

    def map_children(self, fn: Callable[[Expr], Expr]) -> Expr:
        return WhenThenOtherwise(
            cases=tuple((fn(c), fn(v)) for c, v in self.cases),
            otherwise_expr=fn(self.otherwise_expr),
            dtype=self.dtype,
        )

    def _key(self) -> tuple[Any, ...]:
        cases = tuple((c._key(), v._key()) for c, v in self.cases)
        return ("when", cases, self.otherwise_expr._key(), self.dtype)

    def __repr__(self) -> str:
        parts = "".join(f"when({c!r}).then({v!r})." for c, v in self.cases)
        return f"{parts}otherwise({self.otherwise_expr!r})"


class StructFieldAccess(Expr):
    """Access a field within a struct column."""

    __slots__ = ("struct_expr", "field_name")

    def __init__(self, struct_expr: Expr, field: str, dtype: DataType | None = None) -> None:
        self.struct_expr = struct_expr
        self.field_name = field
        self.dtype = dtype

    def children(self) -> tuple[Expr, ...]:
        return (self.struct_expr,)

    def map_children(self, fn: Callable[[Expr], Expr]) -> Expr:
        return StructFieldAccess(fn(self.struct_expr), self.field_name, dtype=self.dtype)

    def _key(self) -> tuple[Any, ...]:
        return ("field", self.struct_expr._key(), self.field_name, self.dtype)

    def __repr__(self) -> str:
        return f"{self.struct_expr!r}.field({self.field_name!r})"


class ListOp(Expr):
    """Operation on a list column (len, get, contains, sum, etc.)."""

    __slots__ = ("list_expr", "op", "args")

    def __init__(
        self,
        list_expr: Expr,
        op: str,
        args: tuple[Any, ...] = (),
        dtype: DataType | None = None,
    ) -> None:
        self.list_expr = list_expr
        self.op = op
        self.args = args
        self.dtype = dtype

    def children(self) -> tuple[Expr, ...]:
        return (self.list_expr,)

    def map_children(self, fn: Callable[[Expr], Expr]) -> Expr:
        return ListOp(fn(self.list_expr), self.op, self.args, dtype=self.dtype)

    def _key(self) -> tuple[Any, ...]:
        return ("list", self.op, self.list_expr._key(), _freeze(self.args), self.dtype)

    def __repr__(self) -> str:
        return f"{self.list_expr!r}.list.{self.op}({', '.join(repr(a) for a in self.args)})"


class AliasedExpr(Expr):
    """Expression with an output column name."""

    __slots__ = ("expr", "name")

    def __init__(self, expr: Expr, name: str) -> None:
        self.expr = expr
        self.name = name
        self.dtype = expr.dtype

    def children(self) -> tuple[Expr, ...]:
        return (self.expr,)

    def map_children(self, fn: Callable[[Expr], Expr]) -> Expr:
        return AliasedExpr(expr=fn(self.expr), name=self.name)

    def _key(self) -> tuple[Any, ...]:
        return ("alias", self.name, self.expr._key())

    def __repr__(self) -> str:
        return f"{self.expr!r}.alias({self.name!r})"


class SortExpr:
    """Sort direction wrapper. Not an expression; used in .sort() calls."""

    __slots__ = ("expr", "descending", "nulls_last")

    def __init__(self, expr: Expr, descending: bool = False, nulls_last: bool = False) -> None:
        self.expr = expr
        self.descending = descending
        self.nulls_last = nulls_last

    def _key(self) -> tuple[Any, ...]:
        return ("sort", self.expr._key(), self.descending, self.nulls_last)

    def __repr__(self) -> str:
        direction = "desc" if self.descending else "asc"
        nulls = ", nulls_last" if self.nulls_last else ""
        return f"{self.expr!r} {direction}{nulls}"


# ---------------------------------------------------------------------------
# Accessors and builders
# ---------------------------------------------------------------------------


class ListAccessor:
    """List-specific methods producing ``ListOp`` nodes::

    col("tags").list.len()
    col("tags").list.get(0)
    col("tags").list.contains("x")
    """

    __slots__ = ("_expr",)

    def __init__(self, expr: Expr) -> None:
        self._expr = expr

    def __repr__(self) -> str:
        return f"ListAccessor({self._expr!r})"

    def _list_op(self, op: str, *args: Any) -> ListOp:
        return ListOp(list_expr=self._expr, op=op, args=args)

    def len(self) -> ListOp:
        return self._list_op("len")

    def get(self, index: int) -> ListOp:
        return self._list_op("get", index)

    def contains(self, value: Any) -> ListOp:
        return self._list_op("contains", value)

    def sum(self) -> ListOp:
        return self._list_op("sum")

    def mean(self) -> ListOp:
        return self._list_op("mean")

    def min(self) -> ListOp:
        return self._list_op("min")

    def max(self) -> ListOp:
        return self._list_op("max")


class When:
    """Incomplete conditional: call :meth:`then` next."""

    __slots__ = ("_cases", "_condition")

    def __init__(self, cases: tuple[tuple[Expr, Expr], ...], condition: Expr) -> None:
        self._cases = cases
        self._condition = condition

    def then(self, value: Any) -> Then:
        return Then((*self._cases, (self._condition, _wrap(value))))


class Then:
    """Conditional with at least one case: chain :meth:`when` or finish with :meth:`otherwise`."""

    __slots__ = ("_cases",)

    def __init__(self, cases: tuple[tuple[Expr, Expr], ...]) -> None:
        self._cases = cases

    def when(self, condition: Expr) -> When:
        return When(self._cases, condition)

    def otherwise(self, value: Any) -> WhenThenOtherwise:
        return WhenThenOtherwise(cases=self._cases, otherwise_expr=_wrap(value))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _freeze(value: Any) -> Any:
    """Make parameters hashable/comparable for structural keys."""
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, dict):
        return tuple(sorted((k, _freeze(v)) for k, v in value.items()))
    return value


def _wrap(value: Any) -> Expr:
    """Wrap a raw value as a Literal unless it already is an expression."""
    if isinstance(value, Expr):
        return value
    return Literal(value=value)


def _wrap_column(value: str | Expr) -> Expr:
    """Wrap a column name as a ColumnRef unless it already is an expression."""
    if isinstance(value, str):
        return ColumnRef(value)
    return value


def col(name: str) -> ColumnRef:
    """Create a column reference expression."""
    return ColumnRef(name)


def lit(value: Any, dtype: Any = None) -> Literal:
    """Create a literal expression, optionally with an explicit dtype."""
    return Literal(value=value, dtype=to_dtype(dtype) if dtype is not None else None)


def when(condition: Expr) -> When:
    """Start a ``when(...).then(...).otherwise(...)`` conditional."""
    return When((), condition)


def concat_str(*exprs: str | Expr, separator: str = "") -> FunctionCall:
    """Concatenate string expressions row-wise.

    This is the only way to join strings: ``+`` on string columns is a type error.
    """
    if not exprs:
        raise ValueError("concat_str() requires at least one expression")
    wrapped = tuple(_wrap_column(e) for e in exprs)
    return FunctionCall(name="concat_str", args=wrapped, kwargs={"separator": separator})


# ---------------------------------------------------------------------------
# Tree utilities
# ---------------------------------------------------------------------------


def walk(expr: Expr) -> Iterator[Expr]:
    """Yield ``expr`` and all of its descendants, depth-first."""
    yield expr
    for child in expr.children():
        yield from walk(child)


def transform(expr: Expr, fn: Callable[[Expr], Expr]) -> Expr:
    """Rebuild a tree bottom-up, applying ``fn`` to every node after its children."""
    return fn(expr.map_children(lambda child: transform(child, fn)))


def collect_column_names(*exprs: Expr | SortExpr) -> list[str]:
    """Names of all columns referenced by the given expressions, in first-use order."""
    names: list[str] = []
    for item in exprs:
        root = item.expr if isinstance(item, SortExpr) else item
        for node in walk(root):
            if isinstance(node, ColumnRef) and node.name not in names:
                names.append(node.name)
    return names


def output_name(expr: Expr) -> str:
    """The column name an expression produces when not explicitly aliased.

    Like most engines, the name of the left-most column reference wins; a pure
    literal is named ``"literal"``.
    """
    if isinstance(expr, AliasedExpr):
        return expr.name
    if isinstance(expr, ColumnRef):
        return expr.name
    for node in walk(expr):
        if isinstance(node, ColumnRef):
            return node.name
    return "literal"


_ROW_DEPENDENT_FUNCTIONS = frozenset(
    {
        "cum_sum",
        "cum_min",
        "cum_max",
        "shift",
        "rolling_sum",
        "rolling_mean",
        "rolling_min",
        "rolling_max",
    }
)


def is_elementwise(expr: Expr) -> bool:
    """True if each output row depends only on the same input row.

    Aggregations, windows and order-dependent functions see other rows, so
    filtering before them changes their result.
    """
    for node in walk(expr):
        if isinstance(node, (Agg, Window)):
            return False
        if isinstance(node, FunctionCall) and node.name in _ROW_DEPENDENT_FUNCTIONS:
            return False
    return True


def has_aggregation(expr: Expr) -> bool:
    """True if the expression contains an aggregation outside of any window."""
    if isinstance(expr, Agg):
        return True
    if isinstance(expr, Window):
        return False
    return any(has_aggregation(child) for child in expr.children())


def split_conjunction(expr: Expr) -> list[Expr]:
    """Split ``a & b & c`` into ``[a, b, c]``."""
    if isinstance(expr, BinOp) and expr.op == "&":
        return split_conjunction(expr.left) + split_conjunction(expr.right)
    return [expr]


LazySeries = Expr
"""The lazy counterpart of :class:`quarry.Series`: an unevaluated column expression."""
