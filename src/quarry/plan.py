"""Logical plan nodes for lazy frames.

A lazy plan is a tree of :class:`PlanNode` objects, each recording one
relational step over the output of its inputs. Nodes are immutable: they bind
their expressions and compute their output ``schema`` when constructed, from
the input schemas only, so building a plan never touches data and fails
immediately on unknown columns or ill-typed expressions.

For example ``df.lazy().filter(col("a") > 1).select("a")`` builds::

    Select([col("a")], Filter(col("a") > 1, DataFrameScan(...)))

The eager ``DataFrame`` methods build the same nodes over their current data
and apply them at once, which keeps eager and lazy validation identical.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from quarry.dtypes import String
from quarry.errors import DTypeError, DuplicateColumnError, ShapeError
from quarry.expr import (
    AliasedExpr,
    ColumnRef,
    Expr,
    SortExpr,
    has_aggregation,
    output_name,
)
from quarry.inference import bind, bind_all, bind_predicate, supertype
from quarry.schema import DEFAULT_JOIN_SUFFIX, Schema, join_schema

JOIN_TYPES = ("inner", "left", "right", "outer", "cross")
KEEP_OPTIONS = ("first", "last", "none")


def _named(exprs: Sequence[Expr]) -> tuple[Expr, ...]:
    """Alias every expression with its output name so backends never guess."""
    return tuple(e if isinstance(e, AliasedExpr) else AliasedExpr(e, output_name(e)) for e in exprs)


def _output_schema(exprs: Sequence[Expr], operation: str) -> list[tuple[str, Any]]:
    pairs = [(output_name(e), e.dtype) for e in exprs]
    names = [n for n, _ in pairs]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise DuplicateColumnError(duplicates, operation=operation)
    return pairs


# ---------------------------------------------------------------------------
# Base node
# ---------------------------------------------------------------------------


class PlanNode:
    """Base class for all logical plan nodes."""

    __slots__ = ("schema",)

    schema: Schema

    def inputs(self) -> tuple[PlanNode, ...]:
        return ()

    def with_inputs(self, *inputs: PlanNode) -> PlanNode:
        """Return a copy of this node over new inputs (rebinding its expressions)."""
        return self

    def describe(self) -> str:
        """One-line label used by :func:`explain`."""
        raise NotImplementedError

    def _key(self) -> tuple[Any, ...]:
        raise NotImplementedError

    def equals(self, other: object) -> bool:
        """Structural equality of two plans."""
        return isinstance(other, PlanNode) and self._key() == other._key()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.describe()}>"


def _exprs_key(exprs: Sequence[Expr]) -> tuple[Any, ...]:
    return tuple(e._key() for e in exprs)


def _fmt(items: Sequence[Any]) -> str:
    return "[" + ", ".join(repr(i) for i in items) + "]"


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class DataFrameScan(PlanNode):
    """Leaf over data already held by a backend."""

    __slots__ = ("data", "backend", "source_schema", "projection")

    def __init__(
        self,
        data: Any,
        backend: Any,
        schema: Schema,
        projection: Sequence[str] | None = None,
    ) -> None:
        self.data = data
        self.backend = backend
        self.source_schema = schema
        self.projection = tuple(projection) if projection is not None else None
        self.schema = schema if self.projection is None else schema.select(self.projection)

    def with_projection(self, projection: Sequence[str] | None) -> DataFrameScan:
        return DataFrameScan(self.data, self.backend, self.source_schema, projection)

    def describe(self) -> str:
        label = f"DF {_fmt(self.source_schema.names())}"
        if self.projection is not None:
            label += f"; PROJECT {len(self.projection)}/{len(self.source_schema)} COLUMNS"
        return label

    def _key(self) -> tuple[Any, ...]:
        return ("df_scan", id(self.data), self.backend.name, self.source_schema, self.projection)


class FileScan(PlanNode):
    """Leaf reading a file (or remote object) when the plan executes."""

    __slots__ = ("source", "format", "options", "backend", "source_schema", "projection")

    def __init__(
        self,
        source: str,
        format: Any,
        options: Mapping[str, Any],
        backend: Any,
        schema: Schema,
        projection: Sequence[str] | None = None,
    ) -> None:
        self.source = source
        self.format = format
        self.options = dict(options)
        self.backend = backend
        self.source_schema = schema
        self.projection = tuple(projection) if projection is not None else None
        self.schema = schema if self.projection is None else schema.select(self.projection)

    def with_projection(self, projection: Sequence[str] | None) -> FileScan:
        return FileScan(
            self.source, self.format, self.options, self.backend, self.source_schema, projection
        )

    def describe(self) -> str:
        label = f"{self.format.name} SCAN {self.source}"
        if self.projection is not None:
            label += f"; PROJECT {len(self.projection)}/{len(self.source_schema)} COLUMNS"
        return label

    def _key(self) -> tuple[Any, ...]:
        options = tuple(sorted((k, repr(v)) for k, v in self.options.items()))
        return ("file_scan", self.source, self.format, options, self.backend.name, self.projection)


# ---------------------------------------------------------------------------
# Single-input nodes
# ---------------------------------------------------------------------------


class Select(PlanNode):
    """Evaluate expressions into a new set of columns."""

    __slots__ = ("input", "exprs")

    def __init__(self, input: PlanNode, exprs: Sequence[Expr]) -> None:
        self.input = input
        self.exprs = _named(bind_all(exprs, input.schema, "select"))
        self.schema = Schema(_output_schema(self.exprs, "select"))

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def with_inputs(self, *inputs: PlanNode) -> PlanNode:
        return Select(inputs[0], self.exprs)

    def is_projection(self) -> bool:
        """True when every expression is a bare (possibly renamed) column."""
        return all(isinstance(e.expr, ColumnRef) for e in self.exprs)

    def describe(self) -> str:
        return f"SELECT {_fmt(self.exprs)}"

    def _key(self) -> tuple[Any, ...]:
        return ("select", _exprs_key(self.exprs), self.input._key())


class WithColumns(PlanNode):
    """Add or overwrite columns, keeping all existing ones."""

    __slots__ = ("input", "exprs")

    def __init__(self, input: PlanNode, exprs: Sequence[Expr]) -> None:
        self.input = input
        self.exprs = _named(bind_all(exprs, input.schema, "with_columns"))
        pairs = _output_schema(self.exprs, "with_columns")
        self.schema = input.schema.with_columns(pairs)

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def with_inputs(self, *inputs: PlanNode) -> PlanNode:
        return WithColumns(inputs[0], self.exprs)

    def describe(self) -> str:
        return f"WITH_COLUMNS {_fmt(self.exprs)}"

    def _key(self) -> tuple[Any, ...]:
        return ("with_columns", _exprs_key(self.exprs), self.input._key())


class Filter(PlanNode):
    """Keep rows where the predicate is true; missing counts as false."""

    __slots__ = ("input", "predicate")

    def __init__(self, input: PlanNode, predicate: Expr) -> None:
        self.input = input
        self.predicate = bind_predicate(predicate, input.schema, "filter")
        if has_aggregation(self.predicate):
            raise ShapeError(f"filter() predicate must be row-wise, got aggregation {predicate!r}")
        self.schema = input.schema

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def with_inputs(self, *inputs: PlanNode) -> PlanNode:
        return Filter(inputs[0], self.predicate)

    def describe(self) -> str:
        return f"FILTER {self.predicate!r}"

    def _key(self) -> tuple[Any, ...]:
        return ("filter", self.predicate._key(), self.input._key())


class Sort(PlanNode):
    """Stable sort by one or more keys."""

    __slots__ = ("input", "by")

    def __init__(self, input: PlanNode, by: Sequence[SortExpr]) -> None:
        self.input = input
        if not by:
            raise ValueError("sort() requires at least one key")
        self.by = tuple(
            SortExpr(bind(s.expr, input.schema, "sort"), s.descending, s.nulls_last) for s in by
        )
        self.schema = input.schema

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def with_inputs(self, *inputs: PlanNode) -> PlanNode:
        return Sort(inputs[0], self.by)

    def describe(self) -> str:
        return f"SORT BY {_fmt(self.by)}"

    def _key(self) -> tuple[Any, ...]:
        return ("sort", tuple(s._key() for s in self.by), self.input._key())


class Slice(PlanNode):
    """Rows ``[offset, offset + length)``; a negative offset counts from the end."""

    __slots__ = ("input", "offset", "length")

    def __init__(self, input: PlanNode, offset: int, length: int | None) -> None:
        if length is not None and length < 0:
            raise ValueError(f"slice() length must be non-negative, got {length}")
        self.input = input
        self.offset = offset
        self.length = length
        self.schema = input.schema

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def with_inputs(self, *inputs: PlanNode) -> PlanNode:
        return Slice(inputs[0], self.offset, self.length)

    def describe(self) -> str:
        return f"SLICE offset={self.offset}, length={self.length}"

    def _key(self) -> tuple[Any, ...]:
        return ("slice", self.offset, self.length, self.input._key())


class Unique(PlanNode):
    """Drop duplicate rows over ``subset``, keeping first-appearance order."""

    __slots__ = ("input", "subset", "keep")

    def __init__(self, input: PlanNode, subset: Sequence[str] | None, keep: str) -> None:
        if keep not in KEEP_OPTIONS:
            raise ValueError(f"unique() keep must be one of {KEEP_OPTIONS}, got {keep!r}")
        self.input = input
        self.subset = tuple(subset) if subset is not None else tuple(input.schema.names())
        input.schema.require(self.subset, "unique")
        self.keep = keep
        self.schema = input.schema

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def with_inputs(self, *inputs: PlanNode) -> PlanNode:
        return Unique(inputs[0], self.subset, self.keep)

    def describe(self) -> str:
        return f"UNIQUE {_fmt(self.subset)} keep={self.keep}"

    def _key(self) -> tuple[Any, ...]:
        return ("unique", self.subset, self.keep, self.input._key())


class DropNulls(PlanNode):
    """Drop rows with a missing value in any ``subset`` column."""

    __slots__ = ("input", "subset")

    def __init__(self, input: PlanNode, subset: Sequence[str] | None) -> None:
        self.input = input
        self.subset = tuple(subset) if subset is not None else tuple(input.schema.names())
        input.schema.require(self.subset, "drop_nulls")
        self.schema = input.schema

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def with_inputs(self, *inputs: PlanNode) -> PlanNode:
        return DropNulls(inputs[0], self.subset)

    def describe(self) -> str:
        return f"DROP_NULLS {_fmt(self.subset)}"

    def _key(self) -> tuple[Any, ...]:
        return ("drop_nulls", self.subset, self.input._key())


class Rename(PlanNode):
    __slots__ = ("input", "mapping")

    def __init__(self, input: PlanNode, mapping: Mapping[str, str]) -> None:
        self.input = input
        self.mapping = dict(mapping)
        self.schema = input.schema.rename(self.mapping)

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def with_inputs(self, *inputs: PlanNode) -> PlanNode:
        return Rename(inputs[0], self.mapping)

    def describe(self) -> str:
        pairs = ", ".join(f"{k!r} -> {v!r}" for k, v in self.mapping.items())
        return f"RENAME {{{pairs}}}"

    def _key(self) -> tuple[Any, ...]:
        return ("rename", tuple(self.mapping.items()), self.input._key())


class Aggregate(PlanNode):
    """Group by key columns (possibly none) and aggregate."""

    __slots__ = ("input", "keys", "aggs")

    def __init__(self, input: PlanNode, keys: Sequence[str], aggs: Sequence[Expr]) -> None:
        self.input = input
        self.keys = tuple(keys)
        input.schema.require(self.keys, "group_by")
        self.aggs = _named(bind_all(aggs, input.schema, "agg"))
        for agg in self.aggs:
            if not has_aggregation(agg):
                raise ShapeError(
                    f"agg() expressions must aggregate to one value per group, got {agg!r}"
                )
        pairs = [(k, input.schema[k]) for k in self.keys]
        pairs += _output_schema(self.aggs, "agg")
        names = [n for n, _ in pairs]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise DuplicateColumnError(duplicates, operation="agg")
        self.schema = Schema(pairs)

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def with_inputs(self, *inputs: PlanNode) -> PlanNode:
        return Aggregate(inputs[0], self.keys, self.aggs)

    def describe(self) -> str:
        return f"AGGREGATE {_fmt(self.aggs)} BY {_fmt(self.keys)}"

    def _key(self) -> tuple[Any, ...]:
        return ("aggregate", self.keys, _exprs_key(self.aggs), self.input._key())


class Unpivot(PlanNode):
    """Turn ``on`` columns into (variable, value) rows, repeating ``index`` columns."""

    __slots__ = ("input", "index", "on", "variable_name", "value_name")

    def __init__(
        self,
        input: PlanNode,
        index: Sequence[str],
        on: Sequence[str] | None,
        variable_name: str = "variable",
        value_name: str = "value",
    ) -> None:
        self.input = input
        self.index = tuple(index)
        if on is None:
            on = [n for n in input.schema.names() if n not in self.index]
        self.on = tuple(on)
        input.schema.require(self.index + self.on, "pivot_longer")
        if not self.on:
            raise ValueError("pivot_longer() requires at least one column to unpivot")
        self.variable_name = variable_name
        self.value_name = value_name
        value_dtype = supertype([input.schema[n] for n in self.on], "pivot_longer")
        self.schema = Schema(
            [(n, input.schema[n]) for n in self.index]
            + [(variable_name, String()), (value_name, value_dtype)]
        )

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.input,)

    def with_inputs(self, *inputs: PlanNode) -> PlanNode:
        return Unpivot(inputs[0], self.index, self.on, self.variable_name, self.value_name)

    def describe(self) -> str:
        return f"UNPIVOT {_fmt(self.on)} INDEX {_fmt(self.index)}"

    def _key(self) -> tuple[Any, ...]:
        return (
            "unpivot",
            self.index,
            self.on,
            self.variable_name,
            self.value_name,
            self.input._key(),
        )


# ---------------------------------------------------------------------------
# Multi-input nodes
# ---------------------------------------------------------------------------


class Join(PlanNode):
    """Join two inputs on key columns.

    Keys appear once, under the left name, in the left position. Right
    non-key columns that collide with a left name get ``suffix`` appended.
    """

    __slots__ = ("left", "right", "left_on", "right_on", "how", "suffix")

    def __init__(
        self,
        left: PlanNode,
        right: PlanNode,
        left_on: Sequence[str],
        right_on: Sequence[str],
        how: str = "inner",
        suffix: str = DEFAULT_JOIN_SUFFIX,
    ) -> None:
        if how not in JOIN_TYPES:
            raise ValueError(f"join() how must be one of {JOIN_TYPES}, got {how!r}")
        self.left = left
        self.right = right
        self.left_on = tuple(left_on)
        self.right_on = tuple(right_on)
        self.how = how
        self.suffix = suffix
        if how == "cross":
            if self.left_on or self.right_on:
                raise ValueError("cross join does not take key columns")
        elif not self.left_on or len(self.left_on) != len(self.right_on):
            raise ValueError("join() requires the same non-zero number of left and right keys")
        self.schema = join_schema(
            left.schema, right.schema, self.left_on, self.right_on, how, suffix
        )
        for lk, rk in zip(self.left_on, self.right_on):
            ld, rd = left.schema[lk], right.schema[rk]
            if ld != rd:
                raise DTypeError(
                    f"join() key dtypes differ: {lk!r} is {ld!r} but {rk!r} is {rd!r}; "
                    "cast one side first"
                )

    def inputs(self) -> tuple[PlanNode, ...]:
        return (self.left, self.right)

    def with_inputs(self, *inputs: PlanNode) -> PlanNode:
        return Join(inputs[0], inputs[1], self.left_on, self.right_on, self.how, self.suffix)

    def describe(self) -> str:
        if self.how == "cross":
            return "CROSS JOIN"
        keys = f"LEFT ON {_fmt(self.left_on)} RIGHT ON {_fmt(self.right_on)}"
        return f"{self.how.upper()} JOIN {keys}"

    def _key(self) -> tuple[Any, ...]:
        return (
            "join",
            self.how,
            self.left_on,
            self.right_on,
            self.suffix,
            self.left._key(),
            self.right._key(),
        )


class Concat(PlanNode):
    """Stack inputs vertically; all must have identical schemas."""

    __slots__ = ("frames",)

    def __init__(self, frames: Sequence[PlanNode]) -> None:
        if not frames:
            raise ValueError("concat_rows() requires at least one frame")
        self.frames = tuple(frames)
        first = self.frames[0].schema
        for other in self.frames[1:]:
            if other.schema.names() != first.names():
                raise ShapeError(
                    "concat_rows() requires identical column names in the same order, "
                    f"got {first.names()} and {other.schema.names()}"
                )
            for name in first:
                if first[name] != other.schema[name]:
                    raise DTypeError(
                        f"concat_rows() column {name!r} has dtype {first[name]!r} "
                        f"in one frame and {other.schema[name]!r} in another"
                    )
        self.schema = first

    def inputs(self) -> tuple[PlanNode, ...]:
        return self.frames

    def with_inputs(self, *inputs: PlanNode) -> PlanNode:
        return Concat(inputs)

    def describe(self) -> str:
        return f"UNION {len(self.frames)} INPUTS"

    def _key(self) -> tuple[Any, ...]:
        return ("concat", tuple(f._key() for f in self.frames))


class HConcat(PlanNode):
    """Place inputs side by side; column names must not overlap."""

    __slots__ = ("frames",)

    def __init__(self, frames: Sequence[PlanNode]) -> None:
        if not frames:
            raise ValueError("concat_columns() requires at least one frame")
        self.frames = tuple(frames)
        pairs = [item for f in self.frames for item in f.schema.items()]
        names = [n for n, _ in pairs]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise DuplicateColumnError(duplicates, operation="concat_columns")
        self.schema = Schema(pairs)

    def inputs(self) -> tuple[PlanNode, ...]:
        return self.frames

    def with_inputs(self, *inputs: PlanNode) -> PlanNode:
        return HConcat(inputs)

    def describe(self) -> str:
        return f"HCONCAT {len(self.frames)} INPUTS"

    def _key(self) -> tuple[Any, ...]:
        return ("hconcat", tuple(f._key() for f in self.frames))


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def explain(node: PlanNode) -> str:
    """Render a plan as an indented tree, root first."""
    lines: list[str] = []

    def visit(current: PlanNode, depth: int) -> None:
        lines.append("  " * depth + current.describe())
        for child in current.inputs():
            visit(child, depth + 1)

    visit(node, 0)
    return "\n".join(lines)


def scans(node: PlanNode) -> list[PlanNode]:
    """All leaf nodes of a plan, left to right."""
    children = node.inputs()
    if not children:
        return [node]
    return [leaf for child in children for leaf in scans(child)]
