"""Static type inference for expression trees.

:func:`bind` resolves an untyped expression against a schema and returns a
copy in which every node carries its output dtype. All statically detectable
errors surface here, before any data is touched:

- a column name that is not in the schema raises ``ColumnNotFoundError``;
- an operator or function with no defined result type for its operand types
  raises ``DTypeError``.

Untyped literals adopt the dtype of the column they are combined with, so
``col("small") + 1`` stays ``Int8`` when ``small`` is ``Int8``. Integer columns
of different width or signedness are never unified implicitly.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from quarry.dtypes import (
    Boolean,
    Categorical,
    DataType,
    Date,
    Datetime,
    Duration,
    Float32,
    Float64,
    FloatType,
    Int8,
    Int32,
    Int64,
    List,
    Null,
    String,
    Struct,
    TemporalType,
    UInt32,
    UInt64,
    dtype_of_value,
    is_float,
    is_integer,
    is_numeric,
    is_string_like,
)
from quarry.errors import ColumnNotFoundError, DTypeError
from quarry.expr import (
    Agg,
    AliasedExpr,
    BinOp,
    ColumnRef,
    Expr,
    FunctionCall,
    ListOp,
    Literal,
    StructFieldAccess,
    UnaryOp,
    WhenThenOtherwise,
    Window,
)
from quarry.schema import Schema

ARITHMETIC_OPS = frozenset({"+", "-", "*", "/", "//", "%"})
COMPARISON_OPS = frozenset({"==", "!=", "<", "<=", ">", ">="})
LOGICAL_OPS = frozenset({"&", "|"})


def bind(expr: Expr, schema: Schema, operation: str = "") -> Expr:
    """Return a typed copy of ``expr`` resolved against ``schema``."""
    return _Binder(schema, operation).bind(expr)


def bind_all(exprs: Sequence[Expr], schema: Schema, operation: str = "") -> list[Expr]:
    binder = _Binder(schema, operation)
    return [binder.bind(e) for e in exprs]


def bind_predicate(expr: Expr, schema: Schema, operation: str = "filter") -> Expr:
    """Bind a filter predicate, requiring a Boolean result."""
    bound = bind(expr, schema, operation)
    if not isinstance(bound.dtype, (Boolean, Null)):
        raise DTypeError(f"{operation}() predicate must be Boolean, got {bound.dtype!r}: {expr!r}")
    return bound


# ---------------------------------------------------------------------------
# Promotion rules
# ---------------------------------------------------------------------------


def numeric_supertype(left: DataType, right: DataType, op: str = "+") -> DataType:
    """Result dtype of an arithmetic operator between two numeric dtypes."""
    if is_integer(left) and is_integer(right):
        if left != right:
            raise DTypeError(
                f"Cannot apply '{op}' to {left!r} and {right!r}: integer widths are not "
                "unified implicitly, cast one side first"
            )
        return left
    if is_float(left) and is_float(right):
        return left if left.bits >= right.bits else right
    integer, floating = (left, right) if is_integer(left) else (right, left)
    if isinstance(floating, Float32) and integer.bits >= 32:
        return Float64()
    return floating


def _true_div_dtype(left: DataType, right: DataType) -> DataType:
    if isinstance(left, Float32) and isinstance(right, Float32):
        return Float32()
    return Float64()


def arithmetic_dtype(op: str, left: DataType, right: DataType) -> DataType:
    if isinstance(left, Null) and isinstance(right, Null):
        return Null()
    if isinstance(left, Null):
        left = right
    if isinstance(right, Null):
        right = left
    if is_string_like(left) or is_string_like(right):
        hint = " Use concat_str() to join strings." if op == "+" else ""
        raise DTypeError(f"Cannot apply '{op}' to {left!r} and {right!r}.{hint}")
    if isinstance(left, TemporalType) or isinstance(right, TemporalType):
        return _temporal_arithmetic(op, left, right)
    if not (is_numeric(left) and is_numeric(right)):
        raise DTypeError(f"Cannot apply '{op}' to {left!r} and {right!r}")
    if op == "/":
        return _true_div_dtype(left, right)
    return numeric_supertype(left, right, op)


def _temporal_arithmetic(op: str, left: DataType, right: DataType) -> DataType:
    if op == "-" and left == right and isinstance(left, Date):
        return Duration("ms")
    if op == "-" and left == right and isinstance(left, Datetime):
        return Duration(left.time_unit)
    if op in ("+", "-") and isinstance(left, Datetime) and isinstance(right, Duration):
        return left
    if op == "+" and isinstance(left, Duration) and isinstance(right, Datetime):
        return right
    if op in ("+", "-") and isinstance(left, Duration) and left == right:
        return left
    raise DTypeError(f"Cannot apply '{op}' to {left!r} and {right!r}")


def comparison_compatible(left: DataType, right: DataType) -> bool:
    if isinstance(left, Null) or isinstance(right, Null):
        return True
    if is_numeric(left) and is_numeric(right):
        return True
    if is_string_like(left) and is_string_like(right):
        return True
    return left == right


def sum_dtype(dtype: DataType) -> DataType:
    if isinstance(dtype, Boolean):
        return Int64()
    if is_integer(dtype):
        return Int64() if dtype.signed else UInt64()
    if is_float(dtype) or isinstance(dtype, (Duration, Null)):
        return dtype
    raise DTypeError(f"Cannot sum values of type {dtype!r}")


def _is_orderable(dtype: DataType) -> bool:
    return is_numeric(dtype) or isinstance(dtype, (Boolean, String, TemporalType, Null))


def agg_dtype(agg_type: str, dtype: DataType) -> DataType:
    """Result dtype of an aggregation over a column of ``dtype``."""
    if agg_type == "sum":
        return sum_dtype(dtype)
    if agg_type in ("mean", "median", "std", "var"):
        if not (is_numeric(dtype) or isinstance(dtype, (Boolean, Null))):
            raise DTypeError(f"Cannot compute {agg_type} of type {dtype!r}")
        return Float64()
    if agg_type in ("min", "max"):
        if not _is_orderable(dtype):
            raise DTypeError(f"Cannot compute {agg_type} of type {dtype!r}")
        return dtype
    if agg_type in ("first", "last"):
        return dtype
    if agg_type in ("count", "n_unique", "null_count"):
        return Int64()
    raise DTypeError(f"Unknown aggregation {agg_type!r}")


def supertype(dtypes: Sequence[DataType], context: str) -> DataType:
    """Common dtype for values that end up in one column (conditional branches, concat)."""
    result: DataType = Null()
    for dtype in dtypes:
        if isinstance(dtype, Null):
            continue
        if isinstance(result, Null) or result == dtype:
            result = dtype
        elif is_numeric(result) and is_numeric(dtype):
            result = numeric_supertype(result, dtype)
        elif is_string_like(result) and is_string_like(dtype):
            result = String()
        else:
            raise DTypeError(f"Incompatible dtypes in {context}: {result!r} and {dtype!r}")
    return result


def _int_fits(value: int, dtype: DataType) -> bool:
    bits = dtype.bits
    if dtype.signed:
        return -(2 ** (bits - 1)) <= value < 2 ** (bits - 1)
    return 0 <= value < 2**bits


def adopt_literal(value: Any, target: DataType) -> DataType:
    """The dtype an untyped literal takes when combined with a ``target`` column."""
    natural = dtype_of_value(value)
    if isinstance(natural, Null):
        return target
    if isinstance(natural, Int64):
        if is_integer(target) and _int_fits(value, target):
            return target
        if is_float(target):
            return target
        return natural
    if isinstance(natural, Float64):
        if is_float(target):
            return target
        return natural
    if isinstance(natural, String) and isinstance(target, Categorical):
        return natural
    if type(natural) is type(target):
        return target
    return natural


# ---------------------------------------------------------------------------
# Binder
# ---------------------------------------------------------------------------

_STR_PREDICATES = frozenset({"str_contains", "str_starts_with", "str_ends_with"})
_STR_TRANSFORMS = frozenset(
    {"str_to_lowercase", "str_to_uppercase", "str_strip", "str_replace", "str_slice"}
)
_DATE_PARTS = {
    "dt_year": Int32(),
    "dt_month": Int8(),
    "dt_day": Int8(),
    "dt_weekday": Int8(),
}
_TIME_PARTS = {"dt_hour": Int8(), "dt_minute": Int8(), "dt_second": Int8()}
_NUMERIC_SAME = frozenset({"abs", "cum_min", "cum_max", "rolling_min", "rolling_max"})
_SUM_LIKE = frozenset({"cum_sum", "rolling_sum"})


class _Binder:
    def __init__(self, schema: Schema, operation: str) -> None:
        self.schema = schema
        self.operation = operation

    def error(self, msg: str) -> DTypeError:
        where = f"{self.operation}(): " if self.operation else ""
        return DTypeError(f"{where}{msg}")

    def bind(self, expr: Expr) -> Expr:
        if isinstance(expr, ColumnRef):
            if expr.name not in self.schema:
                raise ColumnNotFoundError(
                    expr.name, self.schema.names(), operation=self.operation
                )
            return ColumnRef(expr.name, dtype=self.schema[expr.name])
        if isinstance(expr, Literal):
            dtype = expr.dtype if expr.dtype is not None else dtype_of_value(expr.value)
            return Literal(expr.value, dtype=dtype)
        if isinstance(expr, BinOp):
            return self._bind_binop(expr)
        if isinstance(expr, UnaryOp):
            return self._bind_unary(expr)
        if isinstance(expr, FunctionCall):
            return self._bind_function(expr)
        if isinstance(expr, Agg):
            source = self.bind(expr.source)
            return Agg(source, expr.agg_type, dtype=agg_dtype(expr.agg_type, source.dtype))
        if isinstance(expr, Window):
            inner = self.bind(expr.expr)
            keys = tuple(self.bind(p) for p in expr.partition_by)
            return Window(inner, keys, dtype=inner.dtype)
        if isinstance(expr, WhenThenOtherwise):
            return self._bind_when(expr)
        if isinstance(expr, StructFieldAccess):
            return self._bind_field(expr)
        if isinstance(expr, ListOp):
            return self._bind_list(expr)
        if isinstance(expr, AliasedExpr):
            return AliasedExpr(self.bind(expr.expr), expr.name)
        raise TypeError(f"Unknown expression node: {type(expr).__name__}")

    # --- helpers ---

    def _bind_pair(self, left: Expr, right: Expr) -> tuple[Expr, Expr]:
        """Bind two operands, letting an untyped literal adopt the other side's dtype."""
        left_untyped = isinstance(left, Literal) and left.dtype is None
        right_untyped = isinstance(right, Literal) and right.dtype is None
        bound_left = self.bind(left)
        bound_right = self.bind(right)
        if left_untyped and not right_untyped:
            bound_left = Literal(left.value, dtype=adopt_literal(left.value, bound_right.dtype))
        elif right_untyped and not left_untyped:
            bound_right = Literal(right.value, dtype=adopt_literal(right.value, bound_left.dtype))
        return bound_left, bound_right

    def _bind_binop(self, expr: BinOp) -> Expr:
        left, right = self._bind_pair(expr.left, expr.right)
        ld, rd = left.dtype, right.dtype
        if expr.op in ARITHMETIC_OPS:
            try:
                dtype = arithmetic_dtype(expr.op, ld, rd)
            except DTypeError as exc:
                raise self.error(f"{exc} in {expr!r}") from None
        elif expr.op in COMPARISON_OPS:
            if not comparison_compatible(ld, rd):
                raise self.error(f"Cannot compare {ld!r} with {rd!r} in {expr!r}")
            dtype = Boolean()
        elif expr.op in LOGICAL_OPS:
            for side in (ld, rd):
                if not isinstance(side, (Boolean, Null)):
                    raise self.error(f"'{expr.op}' requires Boolean operands, got {side!r}")
            dtype = Boolean()
        else:
            raise self.error(f"Unknown operator {expr.op!r}")
        return BinOp(left, right, expr.op, dtype=dtype)

    def _bind_unary(self, expr: UnaryOp) -> Expr:
        operand = self.bind(expr.operand)
        dtype = operand.dtype
        if expr.op == "-":
            if not (is_numeric(dtype) or isinstance(dtype, (Duration, Null))):
                raise self.error(f"Cannot negate {dtype!r}")
            return UnaryOp(operand, "-", dtype=dtype)
        if expr.op == "~":
            if not isinstance(dtype, (Boolean, Null)):
                raise self.error(f"'~' requires a Boolean operand, got {dtype!r}")
            return UnaryOp(operand, "~", dtype=Boolean())
        if expr.op == "is_nan":
            if not isinstance(dtype, FloatType):
                raise self.error(f"is_nan() requires a float column, got {dtype!r}")
        return UnaryOp(operand, expr.op, dtype=Boolean())

    def _bind_function(self, expr: FunctionCall) -> Expr:
        name = expr.name
        if name == "concat_str":
            args = tuple(self.bind(a) for a in expr.args)
            for arg in args:
                if not (is_string_like(arg.dtype) or isinstance(arg.dtype, Null)):
                    raise self.error(f"concat_str() requires String inputs, got {arg.dtype!r}")
            return FunctionCall(name, args, dict(expr.kwargs), dtype=String())
        if name in ("fill_null", "fill_nan"):
            source, value = self._bind_pair(expr.args[0], expr.args[1])
            if name == "fill_nan" and not is_float(source.dtype):
                raise self.error(f"fill_nan() requires a float column, got {source.dtype!r}")
            dtype = supertype([source.dtype, value.dtype], f"{name}()")
            return FunctionCall(name, (source, value), dtype=dtype)

        source = self.bind(expr.args[0])
        args = (source, *expr.args[1:])
        if name == "cast":
            return FunctionCall(name, args, dict(expr.kwargs), dtype=expr.kwargs["dtype"])
        dtype = self._function_dtype(name, source.dtype)
        return FunctionCall(name, args, dict(expr.kwargs), dtype=dtype)

    def _function_dtype(self, name: str, dtype: DataType) -> DataType:
        if name in _STR_PREDICATES:
            if not (is_string_like(dtype) or isinstance(dtype, Null)):
                raise self.error(f"{name}() requires a String column, got {dtype!r}")
            return Boolean()
        if name == "str_len":
            if not (is_string_like(dtype) or isinstance(dtype, Null)):
                raise self.error(f"{name}() requires a String column, got {dtype!r}")
            return UInt32()
        if name in _STR_TRANSFORMS:
            if not (is_string_like(dtype) or isinstance(dtype, Null)):
                raise self.error(f"{name}() requires a String column, got {dtype!r}")
            return String()
        if name in _DATE_PARTS:
            if not isinstance(dtype, (Date, Datetime, Null)):
                raise self.error(f"{name}() requires a Date or Datetime column, got {dtype!r}")
            return _DATE_PARTS[name]
        if name in _TIME_PARTS:
            if not isinstance(dtype, (Datetime, Null)):
                raise self.error(f"{name}() requires a Datetime column, got {dtype!r}")
            return _TIME_PARTS[name]
        if name in _NUMERIC_SAME or name == "round":
            if not (is_numeric(dtype) or isinstance(dtype, Null)):
                raise self.error(f"{name}() requires a numeric column, got {dtype!r}")
            return dtype
        if name in _SUM_LIKE:
            try:
                return sum_dtype(dtype)
            except DTypeError:
                raise self.error(f"{name}() requires a numeric column, got {dtype!r}") from None
        if name == "rolling_mean":
            if not (is_numeric(dtype) or isinstance(dtype, Null)):
                raise self.error(f"{name}() requires a numeric column, got {dtype!r}")
            return Float64()
        if name == "shift":
            return dtype
        if name == "is_in":
            return Boolean()
        raise self.error(f"Unknown function {name!r}")

    def _bind_when(self, expr: WhenThenOtherwise) -> Expr:
        conditions = []
        for cond, _ in expr.cases:
            bound = self.bind(cond)
            if not isinstance(bound.dtype, (Boolean, Null)):
                raise self.error(f"when() condition must be Boolean, got {bound.dtype!r}")
            conditions.append(bound)

        branches = [value for _, value in expr.cases] + [expr.otherwise_expr]
        typed = [
            self.bind(b) for b in branches if not (isinstance(b, Literal) and b.dtype is None)
        ]
        target = supertype([b.dtype for b in typed], "when/then/otherwise")
        if isinstance(target, Null):
            target = supertype([self.bind(b).dtype for b in branches], "when/then/otherwise")

        values = []
        for branch in branches:
            if isinstance(branch, Literal) and branch.dtype is None:
                values.append(Literal(branch.value, dtype=adopt_literal(branch.value, target)))
            else:
                values.append(self.bind(branch))
        dtype = supertype([v.dtype for v in values], "when/then/otherwise")
        cases = tuple(zip(conditions, values[:-1]))
        return WhenThenOtherwise(cases, values[-1], dtype=dtype)

    def _bind_field(self, expr: StructFieldAccess) -> Expr:
        source = self.bind(expr.struct_expr)
        if not isinstance(source.dtype, Struct):
            raise self.error(f"field() requires a Struct column, got {source.dtype!r}")
        dtype = source.dtype.field(expr.field_name)
        if dtype is None:
            raise ColumnNotFoundError(
                expr.field_name, [n for n, _ in source.dtype.fields], operation="field"
            )
        return StructFieldAccess(source, expr.field_name, dtype=dtype)

    def _bind_list(self, expr: ListOp) -> Expr:
        source = self.bind(expr.list_expr)
        if not isinstance(source.dtype, List):
            raise self.error(f"list.{expr.op}() requires a List column, got {source.dtype!r}")
        inner = source.dtype.inner
        if expr.op == "len":
            dtype: DataType = UInt32()
        elif expr.op == "get":
            dtype = inner
        elif expr.op == "contains":
            dtype = Boolean()
        elif expr.op == "sum":
            dtype = sum_dtype(inner)
        elif expr.op == "mean":
            dtype = agg_dtype("mean", inner)
        elif expr.op in ("min", "max"):
            dtype = agg_dtype(expr.op, inner)
        else:
            raise self.error(f"Unknown list operation {expr.op!r}")
        return ListOp(source, expr.op, expr.args, dtype=dtype)
