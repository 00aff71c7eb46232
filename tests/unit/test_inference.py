"""Unit tests for static type inference (quarry.inference)."""

from __future__ import annotations

import pytest

from quarry.dtypes import (
    Boolean,
    Categorical,
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
    String,
    Struct,
    UInt32,
    UInt64,
)
from quarry.errors import ColumnNotFoundError, DTypeError
from quarry.expr import col, concat_str, lit, when
from quarry.inference import agg_dtype, bind, bind_predicate, supertype
from quarry.schema import Schema

SCHEMA = Schema(
    {
        "i8": Int8,
        "i16": Int16,
        "i64": Int64,
        "u64": UInt64,
        "f32": Float32,
        "f64": Float64,
        "s": String,
        "cat": Categorical,
        "flag": Boolean,
        "d": Date,
        "ts": Datetime("us"),
        "dur": Duration("us"),
        "tags": List(String),
        "point": Struct({"x": Float64, "y": Float64}),
    }
)


def dtype_of(expr):
    return bind(expr, SCHEMA).dtype


class TestArithmetic:
    def test_literal_adopts_column_width(self) -> None:
        assert dtype_of(col("i8") + 1) == Int8()

    def test_literal_that_does_not_fit_keeps_int64(self) -> None:
        with pytest.raises(DTypeError, match="integer widths"):
            dtype_of(col("i8") + 1000)

    def test_mixed_integer_widths_are_rejected(self) -> None:
        with pytest.raises(DTypeError, match="cast one side first"):
            dtype_of(col("i8") + col("i16"))

    def test_int_and_float(self) -> None:
        assert dtype_of(col("i16") * col("f32")) == Float32()
        assert dtype_of(col("i64") * col("f32")) == Float64()

    def test_true_division_is_float(self) -> None:
        assert dtype_of(col("i64") / col("i64")) == Float64()
        assert dtype_of(col("f32") / col("f32")) == Float32()

    def test_floor_division_and_modulo_keep_integers(self) -> None:
        assert dtype_of(col("i64") // 2) == Int64()
        assert dtype_of(col("i64") % 2) == Int64()

    def test_strings_do_not_add(self) -> None:
        with pytest.raises(DTypeError, match="concat_str"):
            dtype_of(col("s") + col("s"))

    def test_booleans_are_not_numeric(self) -> None:
        with pytest.raises(DTypeError):
            dtype_of(col("flag") + 1)

    def test_temporal(self) -> None:
        assert dtype_of(col("ts") - col("ts")) == Duration("us")
        assert dtype_of(col("ts") + col("dur")) == Datetime("us")
        assert dtype_of(col("d") - col("d")) == Duration("ms")
        with pytest.raises(DTypeError):
            dtype_of(col("ts") + col("ts"))


class TestComparisonAndLogic:
    def test_comparison_is_boolean(self) -> None:
        assert dtype_of(col("i64") > 3) == Boolean()
        assert dtype_of(col("cat") == "a") == Boolean()

    def test_incomparable(self) -> None:
        with pytest.raises(DTypeError, match="Cannot compare"):
            dtype_of(col("s") > col("i64"))

    def test_logic_requires_booleans(self) -> None:
        assert dtype_of((col("i64") > 1) & col("flag")) == Boolean()
        with pytest.raises(DTypeError, match="Boolean operands"):
            dtype_of(col("i64") & col("flag"))

    def test_predicate_must_be_boolean(self) -> None:
        with pytest.raises(DTypeError, match="predicate must be Boolean"):
            bind_predicate(col("i64") + 1, SCHEMA)

    def test_is_nan_requires_float(self) -> None:
        assert dtype_of(col("f64").is_nan()) == Boolean()
        with pytest.raises(DTypeError):
            dtype_of(col("i64").is_nan())


class TestAggregations:
    def test_sum_widens_integers(self) -> None:
        assert dtype_of(col("i8").sum()) == Int64()
        assert dtype_of(col("u64").sum()) == UInt64()
        assert dtype_of(col("flag").sum()) == Int64()

    def test_mean_is_float(self) -> None:
        assert dtype_of(col("i16").mean()) == Float64()

    def test_counts(self) -> None:
        assert dtype_of(col("s").count()) == Int64()
        assert dtype_of(col("s").n_unique()) == Int64()

    def test_min_of_string(self) -> None:
        assert agg_dtype("min", String()) == String()

    def test_mean_of_string(self) -> None:
        with pytest.raises(DTypeError):
            dtype_of(col("s").mean())


class TestFunctions:
    def test_string_functions(self) -> None:
        assert dtype_of(col("s").str_len()) == UInt32()
        assert dtype_of(col("s").str_contains("a")) == Boolean()
        assert dtype_of(col("cat").str_to_uppercase()) == String()
        with pytest.raises(DTypeError, match="requires a String column"):
            dtype_of(col("i64").str_len())

    def test_date_parts(self) -> None:
        assert dtype_of(col("d").dt_year()) == Int32()
        assert dtype_of(col("ts").dt_hour()) == Int8()
        with pytest.raises(DTypeError):
            dtype_of(col("d").dt_hour())

    def test_concat_str(self) -> None:
        assert dtype_of(concat_str("s", "cat", separator="-")) == String()
        with pytest.raises(DTypeError):
            dtype_of(concat_str("s", "i64"))

    def test_fill_null_supertype(self) -> None:
        assert dtype_of(col("i8").fill_null(0)) == Int8()
        assert dtype_of(col("i64").fill_null(0.5)) == Float64()

    def test_cast(self) -> None:
        assert dtype_of(col("i64").cast(Float32)) == Float32()

    def test_cumulative_and_rolling(self) -> None:
        assert dtype_of(col("i8").cum_sum()) == Int64()
        assert dtype_of(col("i8").cum_max()) == Int8()
        assert dtype_of(col("i64").rolling_mean(3)) == Float64()

    def test_unknown_column(self) -> None:
        with pytest.raises(ColumnNotFoundError, match="nope"):
            dtype_of(col("nope") + 1)


class TestConditionalAndNested:
    def test_when_branch_literals_adopt_column_dtype(self) -> None:
        expr = when(col("flag")).then(col("i8")).otherwise(0)
        assert dtype_of(expr) == Int8()

    def test_when_incompatible_branches(self) -> None:
        with pytest.raises(DTypeError):
            dtype_of(when(col("flag")).then(col("s")).otherwise(col("i64")))

    def test_when_condition_must_be_boolean(self) -> None:
        with pytest.raises(DTypeError, match="condition must be Boolean"):
            dtype_of(when(col("i64")).then(1).otherwise(2))

    def test_struct_field(self) -> None:
        assert dtype_of(col("point").field("x")) == Float64()
        with pytest.raises(ColumnNotFoundError):
            dtype_of(col("point").field("z"))

    def test_list_ops(self) -> None:
        assert dtype_of(col("tags").list.len()) == UInt32()
        assert dtype_of(col("tags").list.get(0)) == String()
        assert dtype_of(col("tags").list.contains("x")) == Boolean()
        with pytest.raises(DTypeError, match="requires a List column"):
            dtype_of(col("s").list.len())

    def test_window_keeps_inner_dtype(self) -> None:
        assert dtype_of(col("f64").sum().over("s")) == Float64()

    def test_explicit_literal_dtype(self) -> None:
        assert dtype_of(lit(1, Int16)) == Int16()


class TestSupertype:
    def test_nulls_are_ignored(self) -> None:
        assert supertype([Int64(), Int64()], "concat") == Int64()

    def test_string_and_categorical(self) -> None:
        assert supertype([String(), Categorical()], "concat") == String()

    def test_incompatible(self) -> None:
        with pytest.raises(DTypeError, match="Incompatible dtypes in concat"):
            supertype([String(), Int64()], "concat")
