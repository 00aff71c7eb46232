"""The same operations give the same results on every backend.

Each test runs once per built-in backend through the ``backend`` fixture.
"""

from __future__ import annotations

import datetime

import pytest

import quarry as qr
from quarry import col, lit, when
from quarry.dtypes import Boolean, Categorical, Date, Float64, Int32, Int64, List, String, Struct
from quarry.errors import BackendMismatchError, DTypeError, ShapeError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _people(backend: str) -> qr.DataFrame:
    return qr.from_dict(
        {
            "id": [1, 2, 3, 4, 5],
            "name": ["Alice", "Bob", "Carol", "Dan", None],
            "team": ["red", "blue", "red", None, "blue"],
            "score": [3.5, None, 1.0, 4.0, 2.5],
        },
        backend=backend,
    )


def _sorted_rows(df: qr.DataFrame) -> list[tuple]:
    return sorted(df.rows(), key=repr)


# ---------------------------------------------------------------------------
# Construction and conversion
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_inferred_schema(self, backend: str) -> None:
        df = _people(backend)
        assert df.schema == qr.Schema(
            {"id": Int64, "name": String, "team": String, "score": Float64}
        )
        assert df.shape == (5, 4)
        assert df.backend == backend

    def test_explicit_schema(self, backend: str) -> None:
        df = qr.from_dict({"a": [1, 2]}, {"a": Int32}, backend=backend)
        assert df.schema["a"] == Int32()

    def test_to_dict_keeps_nulls(self, backend: str) -> None:
        data = {"a": [1, None, 3], "b": ["x", "y", None]}
        assert qr.from_dict(data, backend=backend).to_dict() == data

    def test_from_rows(self, backend: str) -> None:
        df = qr.DataFrame.from_rows([{"a": 1, "b": "x"}, {"a": 2}], backend=backend)
        assert df.rows() == [(1, "x"), (2, None)]

    def test_unequal_lengths(self, backend: str) -> None:
        with pytest.raises(ShapeError):
            qr.from_dict({"a": [1, 2], "b": [1]}, backend=backend)

    def test_dates(self, backend: str) -> None:
        day = datetime.date(2024, 2, 29)
        df = qr.from_dict({"d": [day, None]}, backend=backend)
        assert df.schema["d"] == Date()
        assert df.to_dict() == {"d": [day, None]}

    def test_item(self, backend: str) -> None:
        df = _people(backend)
        assert df.item(1, "name") == "Bob"
        assert df.select(col("id").sum()).item() == 15

    def test_rows_named(self, backend: str) -> None:
        df = _people(backend).head(1)
        assert df.rows(named=True) == [
            {"id": 1, "name": "Alice", "team": "red", "score": 3.5}
        ]


# ---------------------------------------------------------------------------
# Row operations
# ---------------------------------------------------------------------------


class TestRows:
    def test_filter_drops_missing(self, backend: str) -> None:
        result = _people(backend).filter(col("score") > 2.0)
        assert result["id"].to_list() == [1, 4, 5]

    def test_filter_by_series(self, backend: str) -> None:
        df = _people(backend)
        result = df.filter(df["id"] % 2 == 0)
        assert result["id"].to_list() == [2, 4]
        assert result.columns == df.columns

    def test_sort_nulls_first_by_default(self, backend: str) -> None:
        assert _people(backend).sort("score")["id"].to_list() == [2, 3, 5, 1, 4]

    def test_sort_nulls_last_descending(self, backend: str) -> None:
        result = _people(backend).sort("score", descending=True, nulls_last=True)
        assert result["id"].to_list() == [4, 1, 5, 3, 2]

    def test_sort_is_stable_across_keys(self, backend: str) -> None:
        result = _people(backend).sort("team", col("id").desc())
        assert result["id"].to_list() == [4, 5, 2, 3, 1]

    def test_head_tail(self, backend: str) -> None:
        df = _people(backend)
        assert df.head(2)["id"].to_list() == [1, 2]
        assert df.tail(2)["id"].to_list() == [4, 5]
        assert df.head(10).height == 5

    def test_slice(self, backend: str) -> None:
        df = _people(backend)
        assert df.slice(1, 2)["id"].to_list() == [2, 3]
        assert df.slice(3)["id"].to_list() == [4, 5]
        assert df.slice(-2, 1)["id"].to_list() == [4]

    @pytest.mark.parametrize(
        ("keep", "expected"),
        [("first", [1, 2, 4]), ("last", [2, 3, 4]), ("none", [2, 4])],
    )
    def test_unique(self, backend: str, keep: str, expected: list[int]) -> None:
        df = qr.from_dict({"k": ["a", "b", "a", "c"], "v": [1, 2, 3, 4]}, backend=backend)
        result = df.with_columns(row=col("v")).unique("k", keep=keep)
        assert result["row"].to_list() == expected

    def test_unique_treats_null_as_value(self, backend: str) -> None:
        df = qr.from_dict({"k": [None, 1, None]}, backend=backend)
        assert df.unique().to_dict() == {"k": [None, 1]}

    def test_drop_nulls(self, backend: str) -> None:
        df = _people(backend)
        assert df.drop_nulls()["id"].to_list() == [1, 3]
        assert df.drop_nulls("team")["id"].to_list() == [1, 2, 3, 5]

    def test_sample_is_seeded_and_ordered(self, backend: str) -> None:
        df = _people(backend)
        first = df.sample(3, seed=7)["id"].to_list()
        assert first == sorted(first)
        assert df.sample(3, seed=7)["id"].to_list() == first

    def test_sample_same_rows_on_every_backend(self, backend: str) -> None:
        ours = _people(backend).sample(3, seed=11)
        reference = _people("polars").sample(3, seed=11)
        assert ours.equals(reference)

    def test_sample_too_many(self, backend: str) -> None:
        with pytest.raises(ShapeError):
            _people(backend).sample(6)


# ---------------------------------------------------------------------------
# Column expressions
# ---------------------------------------------------------------------------


class TestExpressions:
    def test_arithmetic_propagates_missing(self, backend: str) -> None:
        result = _people(backend).select((col("score") * 2).alias("double"))
        assert result["double"].to_list() == [7.0, None, 2.0, 8.0, 5.0]

    def test_true_division_of_integers_is_float(self, backend: str) -> None:
        result = qr.from_dict({"a": [3, 4]}, backend=backend).select(col("a") / 2)
        assert result.schema["a"] == Float64()
        assert result["a"].to_list() == [1.5, 2.0]

    def test_floor_division_and_modulo(self, backend: str) -> None:
        df = qr.from_dict({"a": [7, 8, 9]}, backend=backend)
        result = df.select(q=col("a") // 2, r=col("a") % 2)
        assert result.to_dict() == {"q": [3, 4, 4], "r": [1, 0, 1]}

    def test_integer_division_by_zero_is_missing(self, backend: str) -> None:
        df = qr.from_dict({"a": [7, 8, -9], "b": [0, 2, 0]}, backend=backend)
        result = df.select(q=col("a") // col("b"), r=col("a") % col("b"))
        assert result.to_dict() == {"q": [None, 4, None], "r": [None, 0, None]}

    def test_floor_division_by_literal_zero(self, backend: str) -> None:
        df = qr.from_dict({"a": [7, None]}, backend=backend)
        assert df.select(col("a") // 0)["a"].to_list() == [None, None]

    def test_kleene_logic(self, backend: str) -> None:
        data = {"a": [True, False, None], "b": [None, None, None]}
        df = qr.from_dict(data, {"b": Boolean}, backend=backend)
        result = df.select(
            both=col("a") & col("b"), either=col("a") | col("b"), neither=~col("a")
        )
        assert result.to_dict() == {
            "both": [None, False, None],
            "either": [True, None, None],
            "neither": [False, True, None],
        }

    def test_comparison_with_missing_is_missing(self, backend: str) -> None:
        result = _people(backend).select(col("score") >= 2.5)
        assert result["score"].to_list() == [True, None, False, True, True]

    def test_when_then_otherwise(self, backend: str) -> None:
        expr = (
            when(col("score") >= 3.0)
            .then(lit("high"))
            .when(col("score") >= 2.0)
            .then(lit("mid"))
            .otherwise(lit("low"))
        )
        result = _people(backend).select(expr.alias("band"))
        assert result["band"].to_list() == ["high", "low", "low", "high", "mid"]

    def test_fill_null_and_is_null(self, backend: str) -> None:
        result = _people(backend).select(
            filled=col("team").fill_null("none"), missing=col("name").is_null()
        )
        assert result["filled"].to_list() == ["red", "blue", "red", "none", "blue"]
        assert result["missing"].to_list() == [False, False, False, False, True]

    def test_is_in_keeps_missing(self, backend: str) -> None:
        result = _people(backend).select(col("team").is_in(["red"]))
        assert result["team"].to_list() == [True, False, True, None, False]

    def test_cast(self, backend: str) -> None:
        result = _people(backend).select(col("id").cast(Float64))
        assert result.schema["id"] == Float64()
        assert result["id"].to_list() == [1.0, 2.0, 3.0, 4.0, 5.0]

    def test_abs(self, backend: str) -> None:
        df = qr.from_dict({"a": [-2, None, 3]}, backend=backend)
        assert df.select(col("a").abs())["a"].to_list() == [2, None, 3]

    def test_string_functions(self, backend: str) -> None:
        df = qr.from_dict({"s": [" Ab ", "abc", None]}, backend=backend)
        result = df.select(
            upper=col("s").str_to_uppercase(),
            stripped=col("s").str_strip(),
            length=col("s").str_len(),
            has_b=col("s").str_contains("b"),
            starts=col("s").str_starts_with("a"),
            replaced=col("s").str_replace("b", "_"),
            head=col("s").str_slice(0, 2),
        )
        assert result.to_dict() == {
            "upper": [" AB ", "ABC", None],
            "stripped": ["Ab", "abc", None],
            "length": [4, 3, None],
            "has_b": [True, True, None],
            "starts": [False, True, None],
            "replaced": [" A_ ", "a_c", None],
            "head": [" A", "ab", None],
        }

    def test_concat_str(self, backend: str) -> None:
        df = _people(backend).head(2)
        result = df.select(qr.concat_str(col("name"), col("team"), separator="-").alias("tag"))
        assert result["tag"].to_list() == ["Alice-red", "Bob-blue"]

    def test_string_addition_is_a_type_error(self, backend: str) -> None:
        with pytest.raises(DTypeError):
            _people(backend).select(col("name") + col("team"))

    def test_date_parts(self, backend: str) -> None:
        df = qr.from_dict(
            {"d": [datetime.date(2024, 3, 15), datetime.date(2023, 12, 31)]}, backend=backend
        )
        result = df.select(
            year=col("d").dt_year(), month=col("d").dt_month(), day=col("d").dt_day()
        )
        assert result.to_dict() == {"year": [2024, 2023], "month": [3, 12], "day": [15, 31]}

    def test_datetime_parts(self, backend: str) -> None:
        stamp = datetime.datetime(2024, 1, 2, 13, 45, 30)
        df = qr.from_dict({"t": [stamp]}, backend=backend)
        result = df.select(
            h=col("t").dt_hour(), m=col("t").dt_minute(), s=col("t").dt_second()
        )
        assert result.rows() == [(13, 45, 30)]

    def test_with_columns_overwrites_in_place(self, backend: str) -> None:
        df = _people(backend)
        result = df.with_columns(col("id") * 10, flag=lit(True))
        assert result.columns == ["id", "name", "team", "score", "flag"]
        assert result["id"].to_list() == [10, 20, 30, 40, 50]
        assert result["flag"].to_list() == [True] * 5

    def test_with_columns_from_series(self, backend: str) -> None:
        df = _people(backend)
        ranks = qr.series([5, 4, 3, 2, 1], name="rank", backend=backend)
        assert df.with_columns(ranks)["rank"].to_list() == [5, 4, 3, 2, 1]


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------


class TestWindows:
    def test_cumulative(self, backend: str) -> None:
        df = qr.from_dict({"v": [3, 1, None, 4]}, backend=backend)
        result = df.select(
            s=col("v").cum_sum(), lo=col("v").cum_min(), hi=col("v").cum_max()
        )
        assert result.to_dict() == {
            "s": [3, 4, None, 8],
            "lo": [3, 1, None, 1],
            "hi": [3, 3, None, 4],
        }

    def test_shift(self, backend: str) -> None:
        df = qr.from_dict({"v": [1, 2, 3]}, backend=backend)
        result = df.select(lag=col("v").shift(1), lead=col("v").shift(-1))
        assert result.to_dict() == {"lag": [None, 1, 2], "lead": [2, 3, None]}

    def test_rolling_sum(self, backend: str) -> None:
        df = qr.from_dict({"v": [1, 2, 3, 4]}, backend=backend)
        assert df.select(col("v").rolling_sum(2))["v"].to_list() == [None, 3, 5, 7]

    def test_rolling_mean_min_periods(self, backend: str) -> None:
        df = qr.from_dict({"v": [1.0, 2.0, 3.0]}, backend=backend)
        result = df.select(col("v").rolling_mean(2, min_periods=1))
        assert result["v"].to_list() == [1.0, 1.5, 2.5]

    def test_aggregate_over_partition(self, backend: str) -> None:
        df = qr.from_dict({"g": ["a", "b", "a", "b"], "v": [1, 2, 3, 4]}, backend=backend)
        result = df.with_columns(total=col("v").sum().over("g"))
        assert result["total"].to_list() == [4, 6, 4, 6]

    def test_cumulative_over_partition(self, backend: str) -> None:
        df = qr.from_dict({"g": ["a", "b", "a", "b"], "v": [1, 2, 3, 4]}, backend=backend)
        result = df.with_columns(running=col("v").cum_sum().over("g"))
        assert result["running"].to_list() == [1, 2, 4, 6]


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


class TestAggregation:
    def test_groups_in_first_appearance_order(self, backend: str) -> None:
        result = _people(backend).group_by("team").agg(col("id").sum().alias("ids"))
        assert result.rows() == [("red", 4), ("blue", 7), (None, 4)]

    def test_multiple_aggregations(self, backend: str) -> None:
        result = (
            _people(backend)
            .group_by("team")
            .agg(
                n=col("id").count(),
                scored=col("score").count(),
                best=col("score").max(),
                avg=col("score").mean(),
                first=col("name").first(),
            )
        )
        assert result.to_dict() == {
            "team": ["red", "blue", None],
            "n": [2, 2, 1],
            "scored": [2, 1, 1],
            "best": [3.5, 2.5, 4.0],
            "avg": [2.25, 2.5, 4.0],
            "first": ["Alice", "Bob", "Dan"],
        }

    def test_multiple_keys(self, backend: str) -> None:
        df = qr.from_dict(
            {"a": [1, 1, 2, 1], "b": ["x", "y", "x", "x"], "v": [1, 2, 3, 4]}, backend=backend
        )
        result = df.group_by("a", "b").agg(col("v").sum())
        assert result.rows() == [(1, "x", 5), (1, "y", 2), (2, "x", 3)]

    def test_aggregation_without_keys(self, backend: str) -> None:
        result = _people(backend).select(
            total=col("id").sum(),
            missing=col("score").null_count(),
            distinct=col("team").n_unique(),
        )
        assert result.rows() == [(15, 1, 3)]

    def test_median_std_var(self, backend: str) -> None:
        df = qr.from_dict({"v": [1.0, 2.0, 3.0, 4.0]}, backend=backend)
        result = df.select(
            med=col("v").median(), sd=col("v").std(), var=col("v").var()
        ).rows(named=True)[0]
        assert result["med"] == 2.5
        assert result["var"] == pytest.approx(5 / 3)
        assert result["sd"] == pytest.approx((5 / 3) ** 0.5)

    def test_sum_of_all_missing_is_zero(self, backend: str) -> None:
        df = qr.from_dict({"v": [None, None]}, {"v": Int64}, backend=backend)
        assert df.select(col("v").sum()).item() == 0

    def test_mean_of_all_missing_is_missing(self, backend: str) -> None:
        df = qr.from_dict({"v": [None, None]}, {"v": Int64}, backend=backend)
        assert df.select(col("v").mean()).item() is None


# ---------------------------------------------------------------------------
# Joins
# ---------------------------------------------------------------------------


def _left(backend: str) -> qr.DataFrame:
    return qr.from_dict({"id": [1, 2, 3, None], "lv": ["a", "b", "c", "d"]}, backend=backend)


def _right(backend: str) -> qr.DataFrame:
    return qr.from_dict({"id": [3, 2, 4, None], "rv": [30, 20, 40, 99]}, backend=backend)


class TestJoins:
    def test_inner(self, backend: str) -> None:
        result = _left(backend).join(_right(backend), on="id")
        assert result.columns == ["id", "lv", "rv"]
        assert result.rows() == [(2, "b", 20), (3, "c", 30)]

    def test_left_keeps_left_order(self, backend: str) -> None:
        result = _left(backend).join(_right(backend), on="id", how="left")
        assert result.rows() == [(1, "a", None), (2, "b", 20), (3, "c", 30), (None, "d", None)]

    def test_right_keeps_right_order(self, backend: str) -> None:
        result = _left(backend).join(_right(backend), on="id", how="right")
        assert result.columns == ["id", "lv", "rv"]
        assert result.rows() == [(3, "c", 30), (2, "b", 20), (4, None, 40), (None, None, 99)]

    def test_outer_never_matches_missing_keys(self, backend: str) -> None:
        result = _left(backend).join(_right(backend), on="id", how="outer")
        assert result.height == 6
        assert _sorted_rows(result) == sorted(
            [
                (1, "a", None),
                (2, "b", 20),
                (3, "c", 30),
                (None, "d", None),
                (4, None, 40),
                (None, None, 99),
            ],
            key=repr,
        )

    def test_cross(self, backend: str) -> None:
        left = qr.from_dict({"k": [1, 2]}, backend=backend)
        right = qr.from_dict({"k": [10, 20]}, backend=backend)
        result = left.join(right, how="cross")
        assert result.columns == ["k", "k_right"]
        assert result.rows() == [(1, 10), (1, 20), (2, 10), (2, 20)]

    def test_different_key_names(self, backend: str) -> None:
        right = _right(backend).rename({"id": "rid"})
        result = _left(backend).join(right, left_on="id", right_on="rid")
        assert result.columns == ["id", "lv", "rv"]
        assert result["id"].to_list() == [2, 3]

    def test_colliding_columns_get_suffix(self, backend: str) -> None:
        left = qr.from_dict({"id": [1, 2], "v": [1, 2]}, backend=backend)
        right = qr.from_dict({"id": [1, 2], "v": [10, 20]}, backend=backend)
        result = left.join(right, on="id", suffix="_r")
        assert result.to_dict() == {"id": [1, 2], "v": [1, 2], "v_r": [10, 20]}

    def test_duplicate_right_keys_multiply_rows(self, backend: str) -> None:
        left = qr.from_dict({"id": [1]}, backend=backend)
        right = qr.from_dict({"id": [1, 1], "v": [1, 2]}, backend=backend)
        assert left.join(right, on="id")["v"].to_list() == [1, 2]

    def test_key_dtypes_must_match(self, backend: str) -> None:
        right = qr.from_dict({"id": ["1"], "rv": [1]}, backend=backend)
        with pytest.raises(DTypeError):
            _left(backend).join(right, on="id")


# ---------------------------------------------------------------------------
# Reshaping and combining
# ---------------------------------------------------------------------------


class TestReshape:
    def _sales(self, backend: str) -> qr.DataFrame:
        return qr.from_dict(
            {
                "store": ["x", "x", "y", "y", "x"],
                "month": ["jan", "feb", "jan", "feb", "jan"],
                "sales": [1, 2, 3, 4, 5],
            },
            backend=backend,
        )

    def test_pivot_wider_first(self, backend: str) -> None:
        result = self._sales(backend).pivot_wider("store", "month", "sales")
        assert result.to_dict() == {"store": ["x", "y"], "jan": [1, 3], "feb": [2, 4]}

    def test_pivot_wider_sum(self, backend: str) -> None:
        result = self._sales(backend).pivot_wider("store", "month", "sales", aggregate="sum")
        assert result.to_dict() == {"store": ["x", "y"], "jan": [6, 3], "feb": [2, 4]}

    def test_pivot_wider_missing_cell(self, backend: str) -> None:
        df = self._sales(backend).filter(col("sales") != 4)
        result = df.pivot_wider("store", "month", "sales", aggregate="max")
        assert result.to_dict() == {"store": ["x", "y"], "jan": [5, 3], "feb": [2, None]}

    def test_pivot_wider_unknown_aggregate(self, backend: str) -> None:
        with pytest.raises(ValueError, match="aggregate"):
            self._sales(backend).pivot_wider("store", "month", "sales", aggregate="mode")

    def test_pivot_longer(self, backend: str) -> None:
        df = qr.from_dict({"id": [1, 2], "a": [10, 20], "b": [30, 40]}, backend=backend)
        result = df.pivot_longer("id")
        assert result.columns == ["id", "variable", "value"]
        assert result.rows() == [(1, "a", 10), (2, "a", 20), (1, "b", 30), (2, "b", 40)]

    def test_pivot_longer_widens_values(self, backend: str) -> None:
        df = qr.from_dict({"id": [1], "a": [1], "b": [0.5]}, backend=backend)
        result = df.unpivot("id", ["a", "b"], variable_name="k", value_name="v")
        assert result.schema["v"] == Float64()
        assert result["v"].to_list() == [1.0, 0.5]

    def test_concat_rows(self, backend: str) -> None:
        df = _people(backend)
        result = qr.concat_rows([df.head(2), df.tail(1)])
        assert result["id"].to_list() == [1, 2, 5]
        assert result.schema == df.schema

    def test_concat_columns(self, backend: str) -> None:
        df = _people(backend)
        result = qr.concat_columns([df.select("id"), df.select(col("name").alias("who"))])
        assert result.columns == ["id", "who"]
        assert result.height == 5

    def test_concat_columns_height_mismatch(self, backend: str) -> None:
        df = _people(backend)
        with pytest.raises(ShapeError):
            qr.concat_columns([df.select("id"), df.head(2).select("name")])

    def test_rename_and_drop(self, backend: str) -> None:
        result = _people(backend).rename({"id": "key"}).drop("team", "score")
        assert result.columns == ["key", "name"]


# ---------------------------------------------------------------------------
# Series
# ---------------------------------------------------------------------------


class TestSeries:
    def test_aggregations(self, backend: str) -> None:
        s = qr.series([1, 2, None, 4], name="v", backend=backend)
        assert s.sum() == 7
        assert s.min() == 1
        assert s.max() == 4
        assert s.count() == 3
        assert s.null_count() == 1
        assert s.n_unique() == 4
        assert s.mean() == pytest.approx(7 / 3)

    def test_arithmetic_between_series(self, backend: str) -> None:
        a = qr.series([1, 2, 3], name="a", backend=backend)
        b = qr.series([10, None, 30], name="b", backend=backend)
        result = a + b
        assert result.name == "a"
        assert result.to_list() == [11, None, 33]

    def test_reflected_scalar(self, backend: str) -> None:
        s = qr.series([1, 2], name="v", backend=backend)
        assert (10 - s).to_list() == [9, 8]

    @pytest.mark.parametrize(
        "values", [[1, None, -3], [0.5, None, 2.25]], ids=["integer", "float"]
    )
    def test_additive_and_multiplicative_identity(self, backend: str, values: list) -> None:
        s = qr.series(values, name="v", backend=backend)
        assert (s + 0).equals(s)
        assert (s * 1).equals(s)
        assert (s + 0).to_list() == values
        assert (s * 1).dtype == s.dtype

    def test_comparison_and_filter(self, backend: str) -> None:
        s = qr.series([5, 1, 3], name="v", backend=backend)
        assert s.filter(s > 2).to_list() == [5, 3]

    def test_sort_unique(self, backend: str) -> None:
        s = qr.series([3, None, 1, 3], name="v", backend=backend)
        assert s.sort().to_list() == [None, 1, 3, 3]
        assert s.sort(descending=True, nulls_last=True).to_list() == [3, 3, 1, None]
        assert s.unique().to_list() == [3, None, 1]

    def test_length_mismatch(self, backend: str) -> None:
        a = qr.series([1, 2], name="a", backend=backend)
        b = qr.series([1], name="b", backend=backend)
        with pytest.raises(ShapeError):
            a + b

    def test_string_series(self, backend: str) -> None:
        s = qr.series(["ab", None], name="s", backend=backend)
        assert s.str_to_uppercase().to_list() == ["AB", None]
        assert s.concat_str("!").to_list() == ["ab!", None]


# ---------------------------------------------------------------------------
# Backend boundaries
# ---------------------------------------------------------------------------


def _other(backend: str) -> str:
    return "pandas" if backend == "polars" else "polars"


class TestBackendBoundary:
    def test_join_across_backends(self, backend: str) -> None:
        with pytest.raises(BackendMismatchError):
            _left(backend).join(_right(_other(backend)), on="id")

    def test_concat_across_backends(self, backend: str) -> None:
        with pytest.raises(BackendMismatchError):
            qr.concat_rows([_people(backend), _people(_other(backend))])

    def test_series_across_backends(self, backend: str) -> None:
        a = qr.series([1], name="a", backend=backend)
        b = qr.series([1], name="b", backend=_other(backend))
        with pytest.raises(BackendMismatchError):
            a + b

    def test_to_backend_keeps_values_and_schema(self, backend: str) -> None:
        df = _people(backend)
        moved = df.to_backend(_other(backend))
        assert moved.backend == _other(backend)
        assert moved.equals(df)

    def test_to_same_backend_is_identity(self, backend: str) -> None:
        df = _people(backend)
        assert df.to_backend(backend) is df

    def test_using_backend_scopes_construction(self, backend: str) -> None:
        with qr.using_backend(backend):
            assert qr.from_dict({"a": [1]}).backend == backend


# ---------------------------------------------------------------------------
# Eager and lazy agree
# ---------------------------------------------------------------------------


class TestLazyMatchesEager:
    def test_pipeline(self, backend: str) -> None:
        df = _people(backend)
        eager = (
            df.filter(col("score").is_not_null())
            .with_columns(double=col("score") * 2)
            .group_by("team")
            .agg(col("double").sum().alias("total"))
            .sort("total", descending=True)
        )
        lazy = (
            df.lazy()
            .filter(col("score").is_not_null())
            .with_columns(double=col("score") * 2)
            .group_by("team")
            .agg(col("double").sum().alias("total"))
            .sort("total", descending=True)
            .collect()
        )
        assert lazy.equals(eager)
        assert lazy.rows() == [("red", 9.0), (None, 8.0), ("blue", 5.0)]

    def test_join_pipeline(self, backend: str) -> None:
        left, right = _left(backend), _right(backend)
        eager = left.join(right, on="id", how="left").filter(col("rv") > 25)
        lazy = left.lazy().join(right.lazy(), on="id", how="left").filter(col("rv") > 25)
        assert lazy.collect().equals(eager)
        assert lazy.collect(optimize=False).equals(eager)

    def test_lazy_round_trip_returns_the_same_frame(self, backend: str) -> None:
        df = qr.from_dict(
            {
                "id": [1, 2, 3],
                "kind": ["a", "b", "a"],
                "tags": [["x", "y"], [], None],
                "point": [{"x": 1.0, "y": 2.0}, {"x": None, "y": 0.5}, {"x": 3.0, "y": None}],
                "score": [1.5, None, 3.0],
            },
            {
                "kind": Categorical,
                "tags": List(String),
                "point": Struct({"x": Float64, "y": Float64}),
            },
            backend=backend,
        )
        restored = df.lazy().collect()
        assert restored.schema == df.schema
        assert restored.equals(df)
        assert df.lazy().collect(optimize=False).equals(df)

    @pytest.mark.parametrize(
        "predicate", [lit(False), lit(1) > lit(2)], ids=["false", "folded_comparison"]
    )
    def test_constant_predicate_over_global_aggregate(
        self, backend: str, predicate: qr.Expr
    ) -> None:
        lazy = (
            qr.from_dict({"a": [1, 2, 3]}, backend=backend)
            .lazy()
            .group_by()
            .agg(col("a").sum().alias("s"))
            .filter(predicate)
        )
        assert lazy.collect(optimize=False).height == 0
        assert lazy.collect().height == 0

    def test_constant_predicate_over_literal_select(self, backend: str) -> None:
        lazy = (
            qr.from_dict({"a": [1, 2, 3]}, backend=backend)
            .lazy()
            .select(lit(1).alias("x"))
            .filter(lit(False))
        )
        assert lazy.collect(optimize=False).height == 0
        assert lazy.collect().height == 0
        assert lazy.collect().columns == ["x"]

    def test_true_constant_predicate_keeps_the_aggregate_row(self, backend: str) -> None:
        lazy = (
            qr.from_dict({"a": [1, 2, 3]}, backend=backend)
            .lazy()
            .group_by()
            .agg(col("a").sum().alias("s"))
            .filter(lit(2) > lit(1))
        )
        assert lazy.collect().rows() == [(6,)]
        assert lazy.collect(optimize=False).rows() == [(6,)]
