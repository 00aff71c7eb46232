"""PolarsBackend: translates quarry expression trees and plans to Polars."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, TypeVar

import polars as pl
import pyarrow as pa

from quarry.dataframe import sample_positions
from quarry.dtypes import is_integer
from quarry.errors import ShapeError
from quarry.executor import CancellationToken
from quarry.expr import (
    Agg,
    AliasedExpr,
    BinOp,
    ColumnRef,
    Expr,
    FunctionCall,
    ListOp,
    Literal,
    SortExpr,
    StructFieldAccess,
    UnaryOp,
    WhenThenOtherwise,
    Window,
    collect_column_names,
)
from quarry.inference import agg_dtype, supertype
from quarry.io import FileFormat
from quarry.plan import (
    Aggregate,
    Concat,
    DataFrameScan,
    DropNulls,
    FileScan,
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
)
from quarry.schema import Schema, join_output_names
from quarry_polars import io as polars_io
from quarry_polars.conversion import from_polars_schema, to_polars_dtype, to_polars_schema

logger = logging.getLogger(__name__)

# Operations below accept either frame kind so the eager path and the lazy
# lowering share one implementation.
Frame = TypeVar("Frame", pl.DataFrame, pl.LazyFrame)

# ---------------------------------------------------------------------------
# BinOp operator dispatch
# ---------------------------------------------------------------------------

_BINOP_MAP: dict[str, str] = {
    "+": "__add__",
    "-": "__sub__",
    "*": "__mul__",
    "/": "__truediv__",
    "//": "__floordiv__",
    "%": "__mod__",
    ">": "__gt__",
    "<": "__lt__",
    ">=": "__ge__",
    "<=": "__le__",
    "==": "__eq__",
    "!=": "__ne__",
    "&": "__and__",
    "|": "__or__",
}

_ARITHMETIC = frozenset({"+", "-", "*", "/", "//", "%"})

_STR_METHODS: dict[str, str] = {
    "str_starts_with": "starts_with",
    "str_ends_with": "ends_with",
    "str_len": "len_chars",
    "str_to_lowercase": "to_lowercase",
    "str_to_uppercase": "to_uppercase",
    "str_strip": "strip_chars",
}

_DT_METHODS: dict[str, str] = {
    "dt_year": "year",
    "dt_month": "month",
    "dt_day": "day",
    "dt_weekday": "weekday",
    "dt_hour": "hour",
    "dt_minute": "minute",
    "dt_second": "second",
}


def _typed(result: pl.Expr, expr: Expr) -> pl.Expr:
    """Cast to the dtype inference assigned, so results never depend on Polars' own rules."""
    if expr.dtype is None:
        return result
    return result.cast(to_polars_dtype(expr.dtype))


def _frame_schema(frame: pl.DataFrame | pl.LazyFrame) -> Schema:
    return from_polars_schema(frame.collect_schema())


# ---------------------------------------------------------------------------
# PolarsBackend
# ---------------------------------------------------------------------------


class PolarsBackend:
    """quarry backend adapter for Polars."""

    name = "polars"

    def __repr__(self) -> str:
        return "PolarsBackend()"

    # --- Expression translation ---

    def translate_expr(self, expr: Expr) -> pl.Expr:
        """Recursively translate a bound quarry expression to a Polars expression."""
        if isinstance(expr, AliasedExpr):
            inner = self.translate_expr(expr.expr)
            return _typed(inner, expr.expr).alias(expr.name)

        if isinstance(expr, ColumnRef):
            return pl.col(expr.name)

        if isinstance(expr, Literal):
            if expr.dtype is None:
                return pl.lit(expr.value)
            return pl.lit(expr.value, dtype=to_polars_dtype(expr.dtype))

        if isinstance(expr, BinOp):
            left = self.translate_expr(expr.left)
            right = self.translate_expr(expr.right)
            method = _BINOP_MAP.get(expr.op)
            if method is None:
                msg = f"Unsupported BinOp operator: {expr.op}"
                raise ValueError(msg)
            result = getattr(left, method)(right)
            return _typed(result, expr) if expr.op in _ARITHMETIC else result

        if isinstance(expr, UnaryOp):
            operand = self.translate_expr(expr.operand)
            if expr.op == "-":
                return -operand
            if expr.op == "~":
                return ~operand
            if expr.op == "is_null":
                return operand.is_null()
            if expr.op == "is_not_null":
                return operand.is_not_null()
            if expr.op == "is_nan":
                return operand.is_nan()
            msg = f"Unsupported UnaryOp: {expr.op}"
            raise ValueError(msg)

        if isinstance(expr, Agg):
            return _typed(self._translate_agg(expr), expr)

        if isinstance(expr, FunctionCall):
            return _typed(self._translate_function_call(expr), expr)

        if isinstance(expr, Window):
            inner = self.translate_expr(expr.expr)
            return inner.over([self.translate_expr(p) for p in expr.partition_by])

        if isinstance(expr, StructFieldAccess):
            struct = self.translate_expr(expr.struct_expr)
            return struct.struct.field(expr.field_name)

        if isinstance(expr, ListOp):
            return _typed(self._translate_list_op(expr), expr)

        if isinstance(expr, WhenThenOtherwise):
            cond, val = expr.cases[0]
            result = pl.when(self.translate_expr(cond)).then(self.translate_expr(val))
            for cond, val in expr.cases[1:]:
                result = result.when(self.translate_expr(cond)).then(self.translate_expr(val))
            return _typed(result.otherwise(self.translate_expr(expr.otherwise_expr)), expr)

        msg = f"Unsupported expression type: {type(expr).__name__}"
        raise TypeError(msg)

    def _translate_agg(self, expr: Agg) -> pl.Expr:
        source = self.translate_expr(expr.source)
        if expr.agg_type in ("std", "var"):
            return getattr(source, expr.agg_type)(ddof=1)
        return getattr(source, expr.agg_type)()

    def _translate_function_call(self, expr: FunctionCall) -> pl.Expr:
        """Translate a FunctionCall node to Polars."""
        name = expr.name

        if name == "concat_str":
            parts = [self.translate_expr(a) for a in expr.args]
            return pl.concat_str(parts, separator=expr.kwargs.get("separator", ""))

        source = self.translate_expr(expr.args[0])

        # String methods
        if name in _STR_METHODS:
            return getattr(source.str, _STR_METHODS[name])(*expr.args[1:])
        if name == "str_contains":
            return source.str.contains(expr.args[1], literal=True)
        if name == "str_replace":
            return source.str.replace_all(expr.args[1], expr.args[2], literal=True)
        if name == "str_slice":
            return source.str.slice(expr.args[1], expr.args[2])

        # Temporal methods
        if name in _DT_METHODS:
            return getattr(source.dt, _DT_METHODS[name])()

        # Null/NaN handling
        if name == "fill_null":
            return source.fill_null(self.translate_expr(expr.args[1]))
        if name == "fill_nan":
            return source.fill_nan(self.translate_expr(expr.args[1]))

        # Window transforms
        if name in ("cum_sum", "cum_min", "cum_max"):
            return getattr(source, name)()
        if name == "shift":
            return source.shift(expr.args[1])
        if name.startswith("rolling_"):
            return getattr(source, name)(
                expr.args[1], min_samples=expr.kwargs.get("min_periods", expr.args[1])
            )

        # General
        if name == "cast":
            return source.cast(to_polars_dtype(expr.kwargs["dtype"]))
        if name == "abs":
            return source.abs()
        if name == "round":
            if is_integer(expr.args[0].dtype):
                return source
            return source.round(expr.args[1])
        if name == "is_in":
            values = pl.Series(
                list(expr.args[1]), dtype=to_polars_dtype(expr.args[0].dtype), strict=False
            )
            # missing stays missing, as with every other comparison
            member = source.is_in(pl.lit(values).implode())
            return pl.when(source.is_null()).then(None).otherwise(member)

        msg = f"Unsupported FunctionCall: {name}"
        raise ValueError(msg)

    def _translate_list_op(self, expr: ListOp) -> pl.Expr:
        """Translate a ListOp node to Polars."""
        list_expr = self.translate_expr(expr.list_expr)
        op = expr.op

        if op == "len":
            return list_expr.list.len()
        if op == "get":
            return list_expr.list.get(expr.args[0], null_on_oob=True)
        if op == "contains":
            return list_expr.list.contains(expr.args[0])
        if op == "sum":
            return list_expr.list.sum()
        if op == "mean":
            return list_expr.list.mean()
        if op == "min":
            return list_expr.list.min()
        if op == "max":
            return list_expr.list.max()

        msg = f"Unsupported ListOp: {op}"
        raise ValueError(msg)

    # --- Construction / introspection ---

    def from_dict(self, data: Mapping[str, Sequence[Any]], schema: Schema) -> pl.DataFrame:
        """Create a Polars DataFrame from a columnar dict with schema-driven dtypes."""
        columns = [
            pl.Series(name, list(data[name]), dtype=to_polars_dtype(dtype))
            for name, dtype in schema.items()
        ]
        return pl.DataFrame(columns)

    def from_arrow(self, table: pa.Table) -> pl.DataFrame:
        frame = pl.from_arrow(table)
        return frame.to_frame() if isinstance(frame, pl.Series) else frame

    def to_arrow(self, source: pl.DataFrame) -> pa.Table:
        return source.to_arrow()

    def schema(self, source: pl.DataFrame | pl.LazyFrame) -> Schema:
        return _frame_schema(source)

    def row_count(self, source: pl.DataFrame) -> int:
        return source.height

    def to_dict(self, source: pl.DataFrame) -> dict[str, list[Any]]:
        return source.to_dict(as_series=False)

    def get_column(self, source: pl.DataFrame, name: str) -> pl.Series:
        return source.get_column(name)

    # --- Schema-preserving operations ---

    def filter(self, source: Frame, predicate: Expr) -> Frame:
        condition = self.translate_expr(predicate)
        if collect_column_names(predicate):
            return source.filter(condition)
        # a constant predicate keeps all rows or none; Polars would move it
        # below a literal-only select, which emits one row regardless
        return source if pl.select(condition).item() else source.clear()

    def sort(self, source: Frame, by: Sequence[SortExpr]) -> Frame:
        return source.sort(
            [self.translate_expr(item.expr) for item in by],
            descending=[item.descending for item in by],
            nulls_last=[item.nulls_last for item in by],
            maintain_order=True,
        )

    def slice(self, source: Frame, offset: int, length: int | None) -> Frame:
        return source.slice(offset, length)

    def sample(self, source: pl.DataFrame, n: int, seed: int | None) -> pl.DataFrame:
        positions = sample_positions(source.height, n, seed)
        return source.select(pl.all().gather(positions))

    def unique(self, source: Frame, subset: Sequence[str], keep: str) -> Frame:
        key = pl.col(subset[0]) if len(subset) == 1 else pl.struct(list(subset))
        if keep == "first":
            return source.filter(key.is_first_distinct())
        if keep == "last":
            return source.filter(key.is_last_distinct())
        if keep == "none":
            return source.filter(~key.is_duplicated())
        raise ValueError(f"Unsupported keep strategy: {keep!r}")

    def drop_nulls(self, source: Frame, subset: Sequence[str]) -> Frame:
        return source.drop_nulls(subset=list(subset))

    def with_columns(self, source: Frame, exprs: Sequence[Expr]) -> Frame:
        return source.with_columns([self.translate_expr(e) for e in exprs])

    def concat(self, sources: Sequence[Frame]) -> Frame:
        return pl.concat(list(sources), how="vertical")

    # --- Schema-transforming operations ---

    def select(self, source: Frame, exprs: Sequence[Expr]) -> Frame:
        return source.select([self.translate_expr(e) for e in exprs])

    def rename(self, source: Frame, mapping: Mapping[str, str]) -> Frame:
        return source.rename(dict(mapping))

    def group_by_agg(self, source: Frame, keys: Sequence[str], aggs: Sequence[Expr]) -> Frame:
        return source.group_by(list(keys), maintain_order=True).agg(
            [self.translate_expr(a) for a in aggs]
        )

    def join(
        self,
        left: Frame,
        right: Frame,
        left_on: Sequence[str],
        right_on: Sequence[str],
        how: str,
        suffix: str,
    ) -> Frame:
        left_schema = _frame_schema(left)
        outputs = join_output_names(left_schema, _frame_schema(right), right_on, how, suffix)
        if how == "cross":
            return left.join(right.rename(outputs), how="cross")

        # right keys take the left names, so every join below is an equi-join on `keys`
        keys = list(left_on)
        renamed = {**dict(zip(right_on, keys)), **outputs}
        right = right.rename({k: v for k, v in renamed.items() if k != v})
        columns = left_schema.names() + list(outputs.values())
        if how in ("inner", "left"):
            return left.join(right, on=keys, how=how, maintain_order="left")
        if how == "right":
            swapped = right.join(left, on=keys, how="left", maintain_order="left")
            return swapped.select(columns)
        if how == "outer":
            full = left.join(
                right, on=keys, how="full", coalesce=True, maintain_order="left_right"
            )
            return full.select(columns)
        raise ValueError(f"Unsupported join type: {how!r}")

    def hconcat(self, sources: Sequence[Frame]) -> Frame:
        return pl.concat(list(sources), how="horizontal")

    def unpivot(
        self,
        source: Frame,
        index: Sequence[str],
        on: Sequence[str],
        variable_name: str,
        value_name: str,
    ) -> Frame:
        schema = _frame_schema(source)
        value_dtype = supertype([schema[name] for name in on], "pivot_longer")
        aligned = source.with_columns(
            [pl.col(name).cast(to_polars_dtype(value_dtype)) for name in on]
        )
        return aligned.unpivot(
            on=list(on),
            index=list(index),
            variable_name=variable_name,
            value_name=value_name,
        )

    def pivot(
        self,
        source: pl.DataFrame,
        index: Sequence[str],
        on: str,
        values: str,
        aggregate: str,
    ) -> pl.DataFrame:
        result_dtype = agg_dtype(aggregate, _frame_schema(source)[values])
        wide = source.pivot(
            on=on,
            index=list(index),
            values=values,
            aggregate_function=getattr(pl.element(), aggregate)(),
            maintain_order=True,
        )
        spread = [name for name in wide.columns if name not in index]
        target = to_polars_dtype(result_dtype)
        return wide.with_columns([pl.col(name).cast(target) for name in spread])

    def cast(self, source: Frame, schema: Schema) -> Frame:
        return source.cast(to_polars_schema(schema))

    # --- I/O ---

    def read(self, source: Any, format: FileFormat, **options: Any) -> pl.DataFrame:
        return polars_io.read_frame(source, format, **options)

    def read_schema(self, source: Any, format: FileFormat, **options: Any) -> Schema:
        return polars_io.read_schema(source, format, **options)

    def write(
        self, source: pl.DataFrame, destination: Any, format: FileFormat, **options: Any
    ) -> None:
        polars_io.write_frame(source, destination, format, **options)

    # --- Lazy ---

    def execute(self, plan: PlanNode, token: CancellationToken) -> pl.DataFrame:
        """Lower the whole plan to one ``pl.LazyFrame`` query and collect it.

        The token is checked before each node is lowered and again before the
        query runs; once Polars starts executing, cancellation takes effect
        when the collect returns.
        """
        query = self._lower(plan, token)
        token.raise_if_cancelled()
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Collecting polars query:\n%s", query.explain(optimized=False))
        return query.collect()

    def _lower(self, node: PlanNode, token: CancellationToken) -> pl.LazyFrame:
        inputs = [self._lower(child, token) for child in node.inputs()]
        token.raise_if_cancelled()

        if isinstance(node, DataFrameScan):
            frame = node.data.lazy()
            if node.projection is None:
                return frame
            return frame.select(list(node.projection))
        if isinstance(node, FileScan):
            return polars_io.scan_frame(node.source, node.format, node.projection, **node.options)
        if isinstance(node, Select):
            return self.select(inputs[0], node.exprs)
        if isinstance(node, WithColumns):
            return self.with_columns(inputs[0], node.exprs)
        if isinstance(node, Filter):
            return self.filter(inputs[0], node.predicate)
        if isinstance(node, Sort):
            return self.sort(inputs[0], node.by)
        if isinstance(node, Slice):
            return self.slice(inputs[0], node.offset, node.length)
        if isinstance(node, Unique):
            return self.unique(inputs[0], node.subset, node.keep)
        if isinstance(node, DropNulls):
            return self.drop_nulls(inputs[0], node.subset)
        if isinstance(node, Rename):
            return self.rename(inputs[0], node.mapping)
        if isinstance(node, Aggregate):
            if node.keys:
                return self.group_by_agg(inputs[0], node.keys, node.aggs)
            return self.select(inputs[0], node.aggs)
        if isinstance(node, Join):
            return self.join(
                inputs[0], inputs[1], node.left_on, node.right_on, node.how, node.suffix
            )
        if isinstance(node, Concat):
            return self.concat(inputs)
        if isinstance(node, HConcat):
            frames = [frame.collect() for frame in inputs]
            heights = [frame.height for frame in frames]
            if len(set(heights)) > 1:
                raise ShapeError(
                    f"concat_columns() requires frames of equal height, got {heights}"
                )
            return self.hconcat(frames).lazy()
        if isinstance(node, Unpivot):
            result = self.unpivot(
                inputs[0], node.index, node.on, node.variable_name, node.value_name
            )
            return self.cast(result, node.schema)
        raise TypeError(f"Unknown plan node: {type(node).__name__}")
