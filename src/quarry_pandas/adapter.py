"""PandasBackend: evaluates quarry expression trees over Arrow-backed pandas frames.

Every column is stored with a ``pd.ArrowDtype`` (Categoricals stay pandas
Categoricals). Expressions are evaluated column-wise with ``pyarrow.compute``
kernels, the engine behind those dtypes; frame-level work (masking, sorting,
grouping, merging, reshaping) goes through pandas. Frames are never mutated:
every operation returns a new frame with a fresh ``RangeIndex``.

Lazy plans are executed by the generic node interpreter, so cancellation is
observed between plan nodes.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Union

import numpy as np
import pandas as pd
import pyarrow as pa
import pyarrow.compute as pc

from quarry.dataframe import sample_positions
from quarry.dtypes import DataType, is_float, is_integer, is_numeric
from quarry.executor import CancellationToken, run_plan
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
)
from quarry.inference import agg_dtype, supertype
from quarry.io import FileFormat
from quarry.plan import PlanNode
from quarry.schema import Schema, join_output_names, join_schema
from quarry_pandas import io as pandas_io
from quarry_pandas.conversion import (
    arrow_types_mapper,
    from_arrow_schema,
    from_arrow_type,
    to_arrow_schema,
    to_arrow_type,
)

logger = logging.getLogger(__name__)

Datum = Union[pa.Array, pa.ChunkedArray, pa.Scalar]

_POSITION = "__quarry_position"

_COMPARISONS: dict[str, Any] = {
    "==": pc.equal,
    "!=": pc.not_equal,
    "<": pc.less,
    "<=": pc.less_equal,
    ">": pc.greater,
    ">=": pc.greater_equal,
}

_STR_KERNELS: dict[str, Any] = {
    "str_len": pc.utf8_length,
    "str_to_lowercase": pc.utf8_lower,
    "str_to_uppercase": pc.utf8_upper,
    "str_strip": pc.utf8_trim_whitespace,
}

_DT_KERNELS: dict[str, Any] = {
    "dt_year": pc.year,
    "dt_month": pc.month,
    "dt_day": pc.day,
    "dt_hour": pc.hour,
    "dt_minute": pc.minute,
    "dt_second": pc.second,
}

_CUMULATIVE: dict[str, Any] = {
    "cum_sum": pc.cumulative_sum,
    "cum_min": pc.cumulative_min,
    "cum_max": pc.cumulative_max,
}


# ---------------------------------------------------------------------------
# Arrow <-> pandas plumbing
# ---------------------------------------------------------------------------


def _cast_array(datum: Datum, target: pa.DataType) -> Datum:
    if datum.type == target:
        return datum
    if pa.types.is_dictionary(target):
        if isinstance(datum, pa.Scalar):
            return pc.cast(datum, target.value_type)
        return pc.dictionary_encode(pc.cast(datum, target.value_type))
    return pc.cast(datum, target)


def _normalize(table: pa.Table) -> pa.Table:
    """Cast every column to the one Arrow type its quarry dtype maps to."""
    columns = []
    for column in table.columns:
        columns.append(_cast_array(column, to_arrow_type(from_arrow_type(column.type))))
    return pa.Table.from_arrays(columns, names=table.column_names)


def _table(frame: pd.DataFrame) -> pa.Table:
    return _normalize(pa.Table.from_pandas(frame, preserve_index=False))


def _frame(table: pa.Table) -> pd.DataFrame:
    return _normalize(table).to_pandas(types_mapper=arrow_types_mapper)


def _plain(datum: Datum) -> Datum:
    """Decode dictionary (Categorical) data so string kernels apply."""
    if pa.types.is_dictionary(datum.type):
        return pc.cast(datum, datum.type.value_type)
    return datum


def _as_array(datum: Datum, length: int) -> pa.Array:
    """Materialize a scalar as ``length`` copies; flatten chunked arrays."""
    if isinstance(datum, pa.Scalar):
        return pa.repeat(datum, length)
    if isinstance(datum, pa.ChunkedArray):
        return datum.combine_chunks()
    return datum


def _to_series(datum: Datum) -> pd.Series:
    return pd.Series(pd.arrays.ArrowExtensionArray(_plain(datum)))


def _from_values(values: list[Any], dtype: DataType) -> pa.Array:
    target = to_arrow_type(dtype)
    if pa.types.is_dictionary(target):
        return _cast_array(pa.array(values, type=target.value_type), target)
    return pa.array(values, type=target)


def _group_positions(keys: Sequence[Datum], length: int) -> list[np.ndarray]:
    """Row positions of each distinct key combination, groups in first-appearance order.

    Missing values form a group of their own.
    """
    if length == 0:
        return []
    if not keys:
        return [np.arange(length)]
    frame = pd.DataFrame(
        {f"key_{i}": _to_series(_as_array(key, length)) for i, key in enumerate(keys)}
    )
    ids = (
        frame.groupby(list(frame.columns), sort=False, dropna=False, observed=True)
        .ngroup()
        .to_numpy()
    )
    order = np.argsort(ids, kind="stable")
    counts = np.bincount(ids)
    return np.split(order, np.cumsum(counts)[:-1])


def _aggregate(values: Datum, agg_type: str) -> pa.Scalar:
    values = _plain(values)
    if agg_type == "sum":
        return pc.sum(values, min_count=0)
    if agg_type == "mean":
        return pc.mean(values)
    if agg_type == "median":
        if pc.count(values).as_py() == 0:
            return pa.scalar(None, type=pa.float64())
        return pc.quantile(values, q=0.5)[0]
    if agg_type == "min":
        return pc.min(values)
    if agg_type == "max":
        return pc.max(values)
    if agg_type == "std":
        return pc.stddev(values, ddof=1)
    if agg_type == "var":
        return pc.variance(values, ddof=1)
    if agg_type == "count":
        return pc.count(values, mode="only_valid")
    if agg_type == "null_count":
        return pc.count(values, mode="only_null")
    if agg_type == "n_unique":
        return pc.count_distinct(values, mode="all")
    if agg_type in ("first", "last"):
        if len(values) == 0:
            return pa.scalar(None, type=values.type)
        return values[0] if agg_type == "first" else values[len(values) - 1]
    raise ValueError(f"Unsupported aggregation: {agg_type!r}")


def _floordiv(left: Datum, right: Datum, dtype: DataType) -> Datum:
    if is_float(dtype):
        return pc.floor(pc.divide(left, right))
    # a zero divisor gives a missing value, as on Polars
    right = pc.if_else(pc.equal(right, 0), pa.scalar(None, type=right.type), right)
    # integer division truncates toward zero; step down where the signs differ
    quotient = pc.divide(left, right)
    remainder = pc.subtract(left, pc.multiply(quotient, right))
    adjust = pc.and_(
        pc.not_equal(remainder, 0), pc.not_equal(pc.less(remainder, 0), pc.less(right, 0))
    )
    return pc.if_else(adjust, pc.subtract(quotient, 1), quotient)


def _slice_bounds(height: int, offset: int, length: int | None) -> tuple[int, int]:
    if offset < 0:
        overshoot = max(-offset - height, 0)
        start = max(height + offset, 0)
        if length is not None:
            length = max(length - overshoot, 0)
    else:
        start = min(offset, height)
    stop = height if length is None else min(start + length, height)
    return start, stop


def _reset(frame: pd.DataFrame) -> pd.DataFrame:
    return frame.reset_index(drop=True)


# ---------------------------------------------------------------------------
# Expression evaluation
# ---------------------------------------------------------------------------


class _Evaluator:
    """Evaluates bound expressions against one Arrow table.

    Row-wise expressions produce arrays of the table's height; aggregations
    produce scalars, which callers broadcast as needed.
    """

    def __init__(self, table: pa.Table) -> None:
        self.table = table
        self.height = table.num_rows

    def evaluate(self, expr: Expr) -> Datum:
        if isinstance(expr, AliasedExpr):
            return self.typed(self.evaluate(expr.expr), expr.expr.dtype)

        if isinstance(expr, ColumnRef):
            return self.table.column(expr.name)

        if isinstance(expr, Literal):
            if expr.dtype is None:
                return pa.scalar(expr.value)
            target = to_arrow_type(expr.dtype)
            if pa.types.is_dictionary(target):
                target = target.value_type
            return pa.scalar(expr.value, type=target)

        if isinstance(expr, BinOp):
            return self._binop(expr)

        if isinstance(expr, UnaryOp):
            operand = self.evaluate(expr.operand)
            if expr.op == "-":
                return pc.negate(operand)
            if expr.op == "~":
                return pc.invert(operand)
            if expr.op == "is_null":
                return pc.is_null(operand)
            if expr.op == "is_not_null":
                return pc.is_valid(operand)
            if expr.op == "is_nan":
                return pc.is_nan(operand)
            raise ValueError(f"Unsupported UnaryOp: {expr.op}")

        if isinstance(expr, Agg):
            values = _as_array(self.evaluate(expr.source), self.height)
            return self.typed(_aggregate(values, expr.agg_type), expr.dtype)

        if isinstance(expr, FunctionCall):
            return self.typed(self._function(expr), expr.dtype)

        if isinstance(expr, Window):
            return self._window(expr)

        if isinstance(expr, StructFieldAccess):
            struct = self.evaluate(expr.struct_expr)
            index = struct.type.get_field_index(expr.field_name)
            return pc.struct_field(struct, [index])

        if isinstance(expr, ListOp):
            return self.typed(self._list_op(expr), expr.dtype)

        if isinstance(expr, WhenThenOtherwise):
            result = self.typed(self.evaluate(expr.otherwise_expr), expr.dtype)
            for cond, value in reversed(expr.cases):
                mask = pc.coalesce(self.evaluate(cond), pa.scalar(False))
                result = pc.if_else(mask, self.typed(self.evaluate(value), expr.dtype), result)
            return result

        raise TypeError(f"Unsupported expression type: {type(expr).__name__}")

    def typed(self, datum: Datum, dtype: DataType | None) -> Datum:
        if dtype is None:
            return datum
        return _cast_array(datum, to_arrow_type(dtype))

    def broadcast(self, datum: Datum) -> Datum:
        return pa.repeat(datum, self.height) if isinstance(datum, pa.Scalar) else datum

    # --- operators ---

    def _binop(self, expr: BinOp) -> Datum:
        left = _plain(self.evaluate(expr.left))
        right = _plain(self.evaluate(expr.right))
        op = expr.op
        if op in _COMPARISONS:
            return _COMPARISONS[op](left, right)
        if op == "&":
            return pc.and_kleene(left, right)
        if op == "|":
            return pc.or_kleene(left, right)

        dtype = expr.dtype
        if is_numeric(dtype):
            # compute in the result type so mixed-width operands agree with inference
            left, right = self.typed(left, dtype), self.typed(right, dtype)
        elif pa.types.is_timestamp(left.type) and pa.types.is_duration(right.type):
            right = pc.cast(right, pa.duration(left.type.unit))
        if op == "+":
            result = pc.add(left, right)
        elif op == "-":
            result = pc.subtract(left, right)
        elif op == "*":
            result = pc.multiply(left, right)
        elif op == "/":
            result = pc.divide(left, right)
        elif op == "//":
            result = _floordiv(left, right, dtype)
        elif op == "%":
            result = pc.subtract(left, pc.multiply(_floordiv(left, right, dtype), right))
        else:
            raise ValueError(f"Unsupported BinOp operator: {op}")
        return self.typed(result, dtype)

    # --- functions ---

    def _function(self, expr: FunctionCall) -> Datum:
        name = expr.name

        if name == "concat_str":
            parts = [_plain(self.evaluate(a)) for a in expr.args]
            return pc.binary_join_element_wise(*parts, expr.kwargs.get("separator", ""))

        source = _plain(self.evaluate(expr.args[0]))

        # String methods
        if name in _STR_KERNELS:
            return _STR_KERNELS[name](source)
        if name == "str_contains":
            return pc.match_substring(source, expr.args[1])
        if name == "str_starts_with":
            return pc.starts_with(source, expr.args[1])
        if name == "str_ends_with":
            return pc.ends_with(source, expr.args[1])
        if name == "str_replace":
            return pc.replace_substring(source, expr.args[1], expr.args[2])
        if name == "str_slice":
            offset, length = expr.args[1], expr.args[2]
            stop = None if length is None else offset + length
            if offset < 0 and stop is not None and stop >= 0:
                stop = None
            return pc.utf8_slice_codeunits(source, offset, stop)

        # Temporal methods
        if name in _DT_KERNELS:
            return _DT_KERNELS[name](source)
        if name == "dt_weekday":
            return pc.day_of_week(source, count_from_zero=False, week_start=1)

        # Null/NaN handling
        if name == "fill_null":
            value = self.typed(self.evaluate(expr.args[1]), expr.dtype)
            return pc.coalesce(self.typed(source, expr.dtype), value)
        if name == "fill_nan":
            value = self.typed(self.evaluate(expr.args[1]), expr.dtype)
            source = self.typed(source, expr.dtype)
            return pc.if_else(pc.is_nan(source), value, source)

        # Window transforms
        if name in _CUMULATIVE:
            values = self.typed(self.broadcast(source), expr.dtype)
            return _CUMULATIVE[name](values, skip_nulls=True)
        if name == "shift":
            return self._shift(_as_array(source, self.height), expr.args[1])
        if name.startswith("rolling_"):
            min_periods = expr.kwargs.get("min_periods", expr.args[1])
            return self._rolling(source, name, expr.args[1], min_periods)

        # General
        if name == "cast":
            target = to_arrow_type(expr.kwargs["dtype"])
            if pa.types.is_floating(source.type) and pa.types.is_integer(target):
                source = pc.trunc(source)
            return _cast_array(source, target)
        if name == "abs":
            return pc.abs(source)
        if name == "round":
            if is_integer(expr.args[0].dtype):
                return source
            return pc.round(source, ndigits=expr.args[1], round_mode="half_to_even")
        if name == "is_in":
            value_set = _cast_array(pa.array(list(expr.args[1])), source.type)
            matched = pc.is_in(source, value_set=value_set)
            return pc.if_else(pc.is_null(source), pa.scalar(None, pa.bool_()), matched)

        raise ValueError(f"Unsupported FunctionCall: {name}")

    def _shift(self, values: pa.Array, n: int) -> pa.Array:
        length = len(values)
        n = max(min(n, length), -length)
        if n >= 0:
            return pa.concat_arrays([pa.nulls(n, values.type), values.slice(0, length - n)])
        return pa.concat_arrays([values.slice(-n), pa.nulls(-n, values.type)])

    def _rolling(self, source: Datum, name: str, window: int, min_periods: int) -> pa.Array:
        values = _as_array(source, self.height).to_numpy(zero_copy_only=False)
        rolling = pd.Series(values, dtype="float64").rolling(window, min_periods=min_periods)
        result = getattr(rolling, name.removeprefix("rolling_"))()
        return pa.array(result.to_numpy(), from_pandas=True)

    def _window(self, expr: Window) -> Datum:
        keys = [self.evaluate(p) for p in expr.partition_by]
        groups = _group_positions(keys, self.height)
        if not groups:
            return self.typed(pa.array([], type=pa.null()), expr.dtype)
        pieces = []
        for positions in groups:
            sub = _Evaluator(self.table.take(positions))
            value = sub.typed(sub.evaluate(expr.expr), expr.dtype)
            pieces.append(_as_array(value, len(positions)))
        # scatter the per-partition results back to the original row positions
        order = np.argsort(np.concatenate(groups), kind="stable")
        return pa.concat_arrays(pieces).take(pa.array(order))

    def _list_op(self, expr: ListOp) -> Datum:
        source = self.broadcast(self.evaluate(expr.list_expr))
        if expr.op == "len":
            return pc.list_value_length(source)
        lists = source.to_pylist()
        if expr.op == "get":
            index = expr.args[0]
            values = [
                v[index] if v is not None and -len(v) <= index < len(v) else None for v in lists
            ]
        elif expr.op == "contains":
            values = [None if v is None else expr.args[0] in v for v in lists]
        else:
            values = [None if v is None else self._list_reduce(v, expr.op) for v in lists]
        return _from_values(values, expr.dtype)

    @staticmethod
    def _list_reduce(items: list[Any], op: str) -> Any:
        present = [item for item in items if item is not None]
        if op == "sum":
            return sum(present)
        if not present:
            return None
        if op == "mean":
            return sum(present) / len(present)
        if op == "min":
            return min(present)
        if op == "max":
            return max(present)
        raise ValueError(f"Unsupported ListOp: {op}")


# ---------------------------------------------------------------------------
# PandasBackend
# ---------------------------------------------------------------------------


class PandasBackend:
    """quarry backend adapter for pandas."""

    name = "pandas"

    def __repr__(self) -> str:
        return "PandasBackend()"

    def _evaluate_columns(
        self, frame: pd.DataFrame, exprs: Sequence[Expr]
    ) -> tuple[int, list[Datum]]:
        evaluator = _Evaluator(_table(frame))
        return evaluator.height, [evaluator.evaluate(e) for e in exprs]

    # --- Construction / introspection ---

    def from_dict(self, data: Mapping[str, Sequence[Any]], schema: Schema) -> pd.DataFrame:
        """Create a pandas DataFrame from a columnar dict with schema-driven dtypes."""
        arrays = [_from_values(list(data[name]), dtype) for name, dtype in schema.items()]
        return _frame(pa.Table.from_arrays(arrays, names=schema.names()))

    def from_arrow(self, table: pa.Table) -> pd.DataFrame:
        return _frame(table)

    def to_arrow(self, source: pd.DataFrame) -> pa.Table:
        return _table(source)

    def schema(self, source: pd.DataFrame) -> Schema:
        return from_arrow_schema(pa.Schema.from_pandas(source, preserve_index=False))

    def row_count(self, source: pd.DataFrame) -> int:
        return len(source)

    def to_dict(self, source: pd.DataFrame) -> dict[str, list[Any]]:
        return _table(source).to_pydict()

    def get_column(self, source: pd.DataFrame, name: str) -> pd.Series:
        return source[name]

    # --- Schema-preserving operations ---

    def filter(self, source: pd.DataFrame, predicate: Expr) -> pd.DataFrame:
        height, (mask,) = self._evaluate_columns(source, [predicate])
        keep = pc.fill_null(_as_array(mask, height), False)
        return _reset(source.loc[keep.to_numpy(zero_copy_only=False)])

    def sort(self, source: pd.DataFrame, by: Sequence[SortExpr]) -> pd.DataFrame:
        height, keys = self._evaluate_columns(source, [item.expr for item in by])
        order = np.arange(height)
        # stable sorts applied from the last key to the first give a lexicographic order
        for item, key in reversed(list(zip(by, keys))):
            values = _plain(_as_array(key, height)).take(pa.array(order))
            indices = pc.array_sort_indices(
                values,
                order="descending" if item.descending else "ascending",
                null_placement="at_end" if item.nulls_last else "at_start",
            )
            order = order[indices.to_numpy()]
        return _reset(source.iloc[order])

    def slice(self, source: pd.DataFrame, offset: int, length: int | None) -> pd.DataFrame:
        start, stop = _slice_bounds(len(source), offset, length)
        return _reset(source.iloc[start:stop])

    def sample(self, source: pd.DataFrame, n: int, seed: int | None) -> pd.DataFrame:
        return _reset(source.iloc[sample_positions(len(source), n, seed)])

    def unique(self, source: pd.DataFrame, subset: Sequence[str], keep: str) -> pd.DataFrame:
        if keep not in ("first", "last", "none"):
            raise ValueError(f"Unsupported keep strategy: {keep!r}")
        duplicated = source.duplicated(subset=list(subset), keep=False if keep == "none" else keep)
        return _reset(source.loc[~duplicated.to_numpy()])

    def drop_nulls(self, source: pd.DataFrame, subset: Sequence[str]) -> pd.DataFrame:
        return _reset(source.dropna(subset=list(subset)))

    def with_columns(self, source: pd.DataFrame, exprs: Sequence[Expr]) -> pd.DataFrame:
        height, values = self._evaluate_columns(source, exprs)
        table = _table(source)
        for expr, value in zip(exprs, values):
            column = _as_array(value, height)
            index = table.schema.get_field_index(expr.name)
            if index >= 0:
                table = table.set_column(index, expr.name, column)
            else:
                table = table.append_column(expr.name, column)
        return _frame(table)

    def concat(self, sources: Sequence[pd.DataFrame]) -> pd.DataFrame:
        # Categoricals with different categories come back as objects; cast them back
        schema = self.schema(sources[0])
        return self.cast(pd.concat(list(sources), ignore_index=True), schema)

    # --- Schema-transforming operations ---

    def select(self, source: pd.DataFrame, exprs: Sequence[Expr]) -> pd.DataFrame:
        height, values = self._evaluate_columns(source, exprs)
        rowwise = any(not isinstance(v, pa.Scalar) for v in values)
        length = height if rowwise else 1
        columns = [_as_array(v, length) for v in values]
        return _frame(pa.Table.from_arrays(columns, names=[e.name for e in exprs]))

    def rename(self, source: pd.DataFrame, mapping: Mapping[str, str]) -> pd.DataFrame:
        return source.rename(columns=dict(mapping))

    def group_by_agg(
        self, source: pd.DataFrame, keys: Sequence[str], aggs: Sequence[Expr]
    ) -> pd.DataFrame:
        table = _table(source)
        groups = _group_positions([table.column(k) for k in keys], table.num_rows)
        firsts = pa.array([positions[0] for positions in groups], type=pa.int64())
        columns: list[Datum] = [table.column(k).take(firsts) for k in keys]
        results: list[list[Any]] = [[] for _ in aggs]
        for positions in groups:
            sub = _Evaluator(table.take(positions))
            for slot, agg in zip(results, aggs):
                value = sub.evaluate(agg)
                if not isinstance(value, pa.Scalar):
                    value = value[0]
                slot.append(value.as_py())
        columns += [_from_values(values, agg.dtype) for values, agg in zip(results, aggs)]
        names = list(keys) + [agg.name for agg in aggs]
        return _frame(pa.Table.from_arrays(columns, names=names))

    def join(
        self,
        left: pd.DataFrame,
        right: pd.DataFrame,
        left_on: Sequence[str],
        right_on: Sequence[str],
        how: str,
        suffix: str,
    ) -> pd.DataFrame:
        left_schema, right_schema = self.schema(left), self.schema(right)
        outputs = join_output_names(left_schema, right_schema, right_on, how, suffix)
        if how == "cross":
            return _reset(left.merge(right.rename(columns=outputs), how="cross"))

        # right keys take the left names, so every join below is an equi-join on `keys`
        keys = list(left_on)
        right = right.rename(columns={**dict(zip(right_on, keys)), **outputs})
        columns = left_schema.names() + list(outputs.values())
        # missing keys never match, so they are removed from the side being looked up
        if how in ("inner", "left"):
            lookup = right.dropna(subset=keys)
            return _reset(left.merge(lookup, on=keys, how=how, sort=False))
        if how == "right":
            lookup = left.dropna(subset=keys)
            return _reset(lookup.merge(right, on=keys, how="right", sort=False)[columns])
        if how == "outer":
            expected = join_schema(left_schema, right_schema, left_on, right_on, how, suffix)
            return self._outer_join(left, right, keys, columns, expected)
        raise ValueError(f"Unsupported join type: {how!r}")

    def _outer_join(
        self,
        left: pd.DataFrame,
        right: pd.DataFrame,
        keys: list[str],
        columns: list[str],
        expected: Schema,
    ) -> pd.DataFrame:
        """Left rows in order (with their matches), then unmatched right rows in order."""
        right = right.assign(**{_POSITION: np.arange(len(right))})
        matched = left.merge(right.dropna(subset=keys), on=keys, how="left", sort=False)
        hit = matched[_POSITION].dropna().astype("int64").to_numpy()
        unmatched = _table(right.loc[~np.isin(np.arange(len(right)), hit)])
        height = unmatched.num_rows
        filler = [
            unmatched.column(name) if name in unmatched.column_names
            else pa.nulls(height, to_arrow_type(expected[name]))
            for name in columns
        ]
        tail = _frame(pa.Table.from_arrays(filler, names=columns))
        combined = pd.concat([matched[columns], tail], ignore_index=True)
        return self.cast(combined, expected)

    def hconcat(self, sources: Sequence[pd.DataFrame]) -> pd.DataFrame:
        return pd.concat([_reset(frame) for frame in sources], axis=1)

    def unpivot(
        self,
        source: pd.DataFrame,
        index: Sequence[str],
        on: Sequence[str],
        variable_name: str,
        value_name: str,
    ) -> pd.DataFrame:
        schema = self.schema(source)
        value_dtype = supertype([schema[name] for name in on], "pivot_longer")
        aligned = self.cast(source, schema.with_columns((name, value_dtype) for name in on))
        return aligned.melt(
            id_vars=list(index),
            value_vars=list(on),
            var_name=variable_name,
            value_name=value_name,
        )

    def pivot(
        self,
        source: pd.DataFrame,
        index: Sequence[str],
        on: str,
        values: str,
        aggregate: str,
    ) -> pd.DataFrame:
        table = _table(source)
        result_dtype = agg_dtype(aggregate, from_arrow_type(table.column(values).type))
        rows = _group_positions([table.column(k) for k in index], table.num_rows)
        spread = _group_positions([table.column(on)], table.num_rows)

        cell_of_row = np.empty(table.num_rows, dtype=np.int64)
        for column_id, positions in enumerate(spread):
            cell_of_row[positions] = column_id
        firsts = pa.array([positions[0] for positions in rows], type=pa.int64())
        columns: list[Datum] = [table.column(k).take(firsts) for k in index]

        on_values = table.column(on).take(pa.array([p[0] for p in spread], type=pa.int64()))
        names = ["null" if v is None else str(v) for v in _plain(on_values).to_pylist()]
        cells: list[list[Any]] = [[None] * len(rows) for _ in spread]
        for row_id, positions in enumerate(rows):
            for column_id in np.unique(cell_of_row[positions]):
                members = positions[cell_of_row[positions] == column_id]
                value = _aggregate(table.column(values).take(pa.array(members)), aggregate)
                cells[column_id][row_id] = value.as_py()
        columns += [_from_values(values_, result_dtype) for values_ in cells]
        return _frame(pa.Table.from_arrays(columns, names=list(index) + names))

    def cast(self, source: pd.DataFrame, schema: Schema) -> pd.DataFrame:
        table = pa.Table.from_pandas(source[schema.names()], preserve_index=False)
        target = to_arrow_schema(schema)
        columns = [_cast_array(table.column(f.name), f.type) for f in target]
        return _frame(pa.Table.from_arrays(columns, names=schema.names()))

    # --- I/O ---

    def read(self, source: Any, format: FileFormat, **options: Any) -> pd.DataFrame:
        return _frame(_table(pandas_io.read_frame(source, format, **options)))

    def read_schema(self, source: Any, format: FileFormat, **options: Any) -> Schema:
        return pandas_io.read_schema(source, format, **options)

    def write(
        self, source: pd.DataFrame, destination: Any, format: FileFormat, **options: Any
    ) -> None:
        pandas_io.write_frame(source, destination, format, **options)

    # --- Lazy ---

    def execute(self, plan: PlanNode, token: CancellationToken) -> pd.DataFrame:
        """Run the plan node by node; the token is checked between nodes."""
        logger.debug("Executing plan with the pandas node interpreter")
        return run_plan(self, plan, token)


__all__ = ["PandasBackend"]
