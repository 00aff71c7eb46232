"""Semantics-preserving rewrites of logical plans.

:func:`optimize` runs three passes, in order:

1. **Constant folding** evaluates operators whose operands are all literals,
   with the same null semantics the backends use, and removes filters whose
   predicate folded to ``True``.
2. **Predicate pushdown** splits filter predicates on ``&`` and carries the
   conjuncts down the tree, re-applying them as a single filter at the lowest
   point where doing so cannot change the result.
3. **Projection pruning** propagates the set of required column names
   top-down so that scans only read, and ``with_columns`` only computes, what
   is used above them.

Every pass returns a new tree; the input plan is never modified. Running
:func:`optimize` on its own output yields a structurally equal plan.
"""

from __future__ import annotations

import logging
import operator
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from quarry.dtypes import Boolean, is_float, is_integer, is_numeric
from quarry.expr import (
    AliasedExpr,
    BinOp,
    ColumnRef,
    Expr,
    Literal,
    SortExpr,
    UnaryOp,
    collect_column_names,
    is_elementwise,
    split_conjunction,
    transform,
)
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
    WithColumns,
    explain,
)
from quarry.schema import join_output_names

logger = logging.getLogger(__name__)


def optimize(plan: PlanNode) -> PlanNode:
    """Return an optimized plan with the same output schema and result."""
    logger.debug("Optimizing plan:\n%s", explain(plan))
    optimized = prune_projections(push_down_predicates(fold_constants(plan)))
    logger.debug("Optimized plan:\n%s", explain(optimized))
    return optimized


# ---------------------------------------------------------------------------
# Constant folding
# ---------------------------------------------------------------------------

_NO_FOLD = object()

_ARITHMETIC: dict[str, Callable[[Any, Any], Any]] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
    "//": operator.floordiv,
    "%": operator.mod,
}

_COMPARISON: dict[str, Callable[[Any, Any], Any]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def _kleene_and(a: bool | None, b: bool | None) -> bool | None:
    if a is False or b is False:
        return False
    if a is None or b is None:
        return None
    return True


def _kleene_or(a: bool | None, b: bool | None) -> bool | None:
    if a is True or b is True:
        return True
    if a is None or b is None:
        return None
    return False


def _fits(value: Any, expr: Expr) -> bool:
    dtype = expr.dtype
    if is_integer(dtype):
        bits = dtype.bits
        low, high = (-(2 ** (bits - 1)), 2 ** (bits - 1)) if dtype.signed else (0, 2**bits)
        return isinstance(value, int) and low <= value < high
    return True


def _fold_binop(expr: BinOp, a: Any, b: Any) -> Any:
    if expr.op == "&":
        return _kleene_and(a, b)
    if expr.op == "|":
        return _kleene_or(a, b)
    if a is None or b is None:
        return None
    if expr.op in _COMPARISON:
        return _COMPARISON[expr.op](a, b)
    if not (is_numeric(expr.left.dtype) and is_numeric(expr.right.dtype)):
        return _NO_FOLD
    if expr.op in ("/", "//", "%") and b == 0:
        # leave to the engine, which defines its own division-by-zero result
        return _NO_FOLD
    if expr.op in ("//", "%") and (a < 0 or b < 0):
        return _NO_FOLD
    result = _ARITHMETIC[expr.op](a, b)
    if is_float(expr.dtype):
        return float(result)
    return result if _fits(result, expr) else _NO_FOLD


def _fold_node(expr: Expr) -> Expr:
    if isinstance(expr, BinOp) and isinstance(expr.left, Literal) and isinstance(
        expr.right, Literal
    ):
        value = _fold_binop(expr, expr.left.value, expr.right.value)
        if value is not _NO_FOLD:
            return Literal(value, dtype=expr.dtype)
    if isinstance(expr, UnaryOp) and isinstance(expr.operand, Literal):
        value = expr.operand.value
        if expr.op == "is_null":
            return Literal(value is None, dtype=Boolean())
        if expr.op == "is_not_null":
            return Literal(value is not None, dtype=Boolean())
        if expr.op == "~" and (value is None or isinstance(value, bool)):
            return Literal(None if value is None else not value, dtype=Boolean())
        if expr.op == "-" and is_numeric(expr.dtype):
            return Literal(None if value is None else -value, dtype=expr.dtype)
    return expr


def fold_expr(expr: Expr) -> Expr:
    """Fold literal-only sub-expressions of a bound expression."""
    return transform(expr, _fold_node)


def _map_exprs(node: PlanNode, fn: Callable[[Expr], Expr]) -> PlanNode:
    """Rebuild ``node`` with ``fn`` applied to each of its own expressions."""
    if isinstance(node, Select):
        return Select(node.input, [fn(e) for e in node.exprs])
    if isinstance(node, WithColumns):
        return WithColumns(node.input, [fn(e) for e in node.exprs])
    if isinstance(node, Filter):
        return Filter(node.input, fn(node.predicate))
    if isinstance(node, Sort):
        return Sort(
            node.input, [SortExpr(fn(s.expr), s.descending, s.nulls_last) for s in node.by]
        )
    if isinstance(node, Aggregate):
        return Aggregate(node.input, node.keys, [fn(e) for e in node.aggs])
    return node


def _is_true(expr: Expr) -> bool:
    return isinstance(expr, Literal) and expr.value is True


def fold_constants(plan: PlanNode) -> PlanNode:
    inputs = tuple(fold_constants(child) for child in plan.inputs())
    node = plan.with_inputs(*inputs) if inputs else plan
    node = _map_exprs(node, fold_expr)
    if isinstance(node, Filter) and _is_true(node.predicate):
        return node.input
    return node


# ---------------------------------------------------------------------------
# Predicate pushdown
# ---------------------------------------------------------------------------


def combine_predicates(predicates: Sequence[Expr]) -> Expr:
    """Join conjuncts left-associatively: ``((p0 & p1) & p2)``."""
    result = predicates[0]
    for predicate in predicates[1:]:
        result = BinOp(result, predicate, "&", dtype=Boolean())
    return result


def _apply(node: PlanNode, predicates: Sequence[Expr]) -> PlanNode:
    return Filter(node, combine_predicates(predicates)) if predicates else node


def _substitute(expr: Expr, mapping: Mapping[str, Expr]) -> Expr:
    """Replace column references by the expressions that produce them."""

    def replace(node: Expr) -> Expr:
        if isinstance(node, ColumnRef) and node.name in mapping:
            return mapping[node.name]
        return node

    return transform(expr, replace)


def _partition(
    predicates: Iterable[Expr], movable: Callable[[Expr], bool]
) -> tuple[list[Expr], list[Expr]]:
    moved, kept = [], []
    for predicate in predicates:
        (moved if movable(predicate) else kept).append(predicate)
    return moved, kept


def _references(predicate: Expr) -> set[str]:
    return set(collect_column_names(predicate))


def _renames(exprs: Sequence[Expr]) -> dict[str, Expr]:
    """Output name → source column for projected expressions that are bare columns."""
    mapping: dict[str, Expr] = {}
    for expr in exprs:
        inner = expr.expr if isinstance(expr, AliasedExpr) else expr
        if isinstance(inner, ColumnRef):
            mapping[expr.name] = ColumnRef(inner.name, dtype=inner.dtype)
    return mapping


def push_down_predicates(plan: PlanNode) -> PlanNode:
    return _push(plan, [])


def _push(node: PlanNode, predicates: list[Expr]) -> PlanNode:
    if isinstance(node, Filter):
        own = split_conjunction(node.predicate)
        if not all(is_elementwise(p) for p in own):
            # a predicate that sees other rows must run on exactly its original input
            return _apply(Filter(_push(node.input, []), node.predicate), predicates)
        return _push(node.input, own + predicates)

    if isinstance(node, (Sort, DropNulls)):
        return node.with_inputs(_push(node.input, predicates))

    if isinstance(node, Rename):
        inverse = {new: ColumnRef(old) for old, new in node.mapping.items()}
        moved = [_substitute(p, inverse) for p in predicates]
        return node.with_inputs(_push(node.input, moved))

    if isinstance(node, (Select, WithColumns)):
        if not all(is_elementwise(e) for e in node.exprs):
            return _apply(node.with_inputs(_push(node.input, [])), predicates)
        if isinstance(node, Select) and not collect_column_names(*node.exprs):
            # literal-only projections emit one row whatever their input holds
            return _apply(node.with_inputs(_push(node.input, [])), predicates)
        renames = _renames(node.exprs)
        produced = {e.name for e in node.exprs}
        passthrough = set() if isinstance(node, Select) else set(node.input.schema.names())
        available = (passthrough - produced) | set(renames)
        moved, kept = _partition(predicates, lambda p: _references(p) <= available)
        moved = [_substitute(p, renames) for p in moved]
        return _apply(node.with_inputs(_push(node.input, moved)), kept)

    if isinstance(node, Unique):
        subset = set(node.subset)
        moved, kept = _partition(predicates, lambda p: _references(p) <= subset)
        return _apply(node.with_inputs(_push(node.input, moved)), kept)

    if isinstance(node, Aggregate):
        if not node.keys:
            return _apply(node.with_inputs(_push(node.input, [])), predicates)
        keys = set(node.keys)
        moved, kept = _partition(predicates, lambda p: _references(p) <= keys)
        return _apply(node.with_inputs(_push(node.input, moved)), kept)

    if isinstance(node, Concat):
        return node.with_inputs(*(_push(frame, list(predicates)) for frame in node.frames))

    if isinstance(node, Join):
        return _push_join(node, predicates)

    # Slice, Unpivot, HConcat and scans are barriers
    children = tuple(_push(child, []) for child in node.inputs())
    rebuilt = node.with_inputs(*children) if children else node
    return _apply(rebuilt, predicates)


def _push_join(node: Join, predicates: list[Expr]) -> PlanNode:
    left_names = set(node.left.schema.names())
    right_outputs = join_output_names(
        node.left.schema, node.right.schema, node.right_on, node.how, node.suffix
    )
    right_map: dict[str, Expr] = {out: ColumnRef(name) for name, out in right_outputs.items()}
    if node.how == "right":
        for lk, rk in zip(node.left_on, node.right_on):
            right_map[lk] = ColumnRef(rk)

    to_left: list[Expr] = []
    to_right: list[Expr] = []
    kept: list[Expr] = []
    for predicate in predicates:
        refs = _references(predicate)
        if node.how in ("inner", "left", "cross") and refs <= left_names:
            to_left.append(predicate)
        elif node.how in ("inner", "right", "cross") and refs <= set(right_map):
            to_right.append(_substitute(predicate, right_map))
        else:
            kept.append(predicate)

    left = _push(node.left, to_left)
    right = _push(node.right, to_right)
    return _apply(node.with_inputs(left, right), kept)


# ---------------------------------------------------------------------------
# Projection pruning
# ---------------------------------------------------------------------------


def prune_projections(plan: PlanNode) -> PlanNode:
    return _prune(plan, None)


def _refs(exprs: Iterable[Expr | SortExpr]) -> set[str]:
    return set(collect_column_names(*exprs))


def _ordered(names: Iterable[str], schema_names: Sequence[str]) -> list[str]:
    wanted = set(names)
    return [n for n in schema_names if n in wanted]


def _prune_scan(node: DataFrameScan | FileScan, required: set[str] | None) -> PlanNode:
    if required is None:
        return node
    visible = node.schema.names()
    # keep one column so the row count survives
    projection = _ordered(required, visible) or visible[:1]
    if projection == node.source_schema.names():
        return node.with_projection(None)
    return node.with_projection(projection)


def _prune(node: PlanNode, required: set[str] | None) -> PlanNode:
    if isinstance(node, (DataFrameScan, FileScan)):
        return _prune_scan(node, required)

    if isinstance(node, Select):
        return node.with_inputs(_prune(node.input, _refs(node.exprs)))

    if isinstance(node, WithColumns):
        exprs = list(node.exprs)
        if required is not None:
            exprs = [e for e in exprs if e.name in required]
        if not exprs:
            return _prune(node.input, required)
        needed = None
        if required is not None:
            needed = (required - {e.name for e in exprs}) | _refs(exprs)
        return WithColumns(_prune(node.input, needed), exprs)

    if isinstance(node, Filter):
        needed = None if required is None else required | _refs([node.predicate])
        return node.with_inputs(_prune(node.input, needed))

    if isinstance(node, Sort):
        needed = None if required is None else required | _refs(node.by)
        return node.with_inputs(_prune(node.input, needed))

    if isinstance(node, (Unique, DropNulls)):
        needed = None if required is None else required | set(node.subset)
        return node.with_inputs(_prune(node.input, needed))

    if isinstance(node, Rename):
        needed = None
        if required is not None:
            inverse = {new: old for old, new in node.mapping.items()}
            needed = {inverse.get(n, n) for n in required}
        child = _prune(node.input, needed)
        mapping = {old: new for old, new in node.mapping.items() if old in child.schema}
        return Rename(child, mapping)

    if isinstance(node, Aggregate):
        return node.with_inputs(_prune(node.input, set(node.keys) | _refs(node.aggs)))

    if isinstance(node, Join):
        return _prune_join(node, required)

    if isinstance(node, Concat):
        return _prune_concat(node, required)

    if isinstance(node, HConcat):
        frames = []
        for frame in node.frames:
            names = frame.schema.names()
            needed = None if required is None else set(_ordered(required, names)) or set(names[:1])
            frames.append(_prune(frame, needed))
        return node.with_inputs(*frames)

    if isinstance(node, Slice):
        return node.with_inputs(_prune(node.input, required))
    # Unpivot needs every input column
    children = tuple(_prune(child, None) for child in node.inputs())
    return node.with_inputs(*children) if children else node


def _prune_join(node: Join, required: set[str] | None) -> PlanNode:
    if required is None:
        return node.with_inputs(_prune(node.left, None), _prune(node.right, None))
    left_names = node.left.schema.names()
    right_names = node.right.schema.names()
    # names that collide keep both sides so suffixing stays stable
    collisions = set(left_names) & set(right_names)
    right_outputs = join_output_names(
        node.left.schema, node.right.schema, node.right_on, node.how, node.suffix
    )
    inverse = {out: name for name, out in right_outputs.items()}

    left_needed = (required & set(left_names)) | set(node.left_on) | collisions
    right_needed = {inverse[n] for n in required if n in inverse} | set(node.right_on)
    right_needed |= collisions & set(right_names)
    left_needed = left_needed or set(left_names[:1])
    right_needed = right_needed or set(right_names[:1])
    return node.with_inputs(_prune(node.left, left_needed), _prune(node.right, right_needed))


def _prune_concat(node: Concat, required: set[str] | None) -> PlanNode:
    frames = [_prune(frame, required) for frame in node.frames]
    if required is None:
        return node.with_inputs(*frames)
    names = _ordered(required, node.schema.names()) or node.schema.names()[:1]
    aligned = [
        frame if frame.schema.names() == names else Select(frame, [ColumnRef(n) for n in names])
        for frame in frames
    ]
    return node.with_inputs(*aligned)

