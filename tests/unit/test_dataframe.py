"""Unit tests for DataFrame/LazyFrame plan building, without a real engine."""

from __future__ import annotations

import pytest

from quarry import col
from quarry.dataframe import DataFrame, LazyFrame, concat_columns, concat_rows
from quarry.dtypes import Boolean, Float64, Int64, String
from quarry.errors import BackendMismatchError, ColumnNotFoundError
from quarry.plan import (
    Aggregate,
    DataFrameScan,
    Filter,
    Join,
    Rename,
    Select,
    Slice,
    Sort,
    Unique,
    Unpivot,
    WithColumns,
)
from quarry.schema import Schema

USERS = Schema({"id": Int64, "name": String, "age": Int64, "score": Float64})

# ---------------------------------------------------------------------------
# Minimal mock backend: only identity, no execution
# ---------------------------------------------------------------------------


class _MockBackend:
    def __init__(self, name: str = "mock") -> None:
        self.name = name

    def row_count(self, source: object) -> int:
        return 0


def _frame(schema: Schema = USERS, backend: str = "mock") -> DataFrame:
    return DataFrame(_data=object(), _backend=_MockBackend(backend), _schema=schema)


def _lazy(schema: Schema = USERS, backend: str = "mock") -> LazyFrame:
    return _frame(schema, backend).lazy()


# ---------------------------------------------------------------------------
# DataFrame metadata
# ---------------------------------------------------------------------------


class TestDataFrameMetadata:
    def test_schema_and_columns(self) -> None:
        df = _frame()
        assert df.schema is USERS
        assert df.columns == ["id", "name", "age", "score"]
        assert df.dtypes == [Int64(), String(), Int64(), Float64()]
        assert df.width == 4

    def test_backend_name(self) -> None:
        assert _frame(backend="engine").backend == "engine"

    def test_contains(self) -> None:
        df = _frame()
        assert "age" in df
        assert "missing" not in df

    def test_lazy_wraps_a_scan(self) -> None:
        lazy = _frame().lazy()
        assert isinstance(lazy.plan, DataFrameScan)
        assert lazy.schema == USERS
        assert lazy.backend == "mock"


# ---------------------------------------------------------------------------
# LazyFrame plan building
# ---------------------------------------------------------------------------


class TestLazyPlanBuilding:
    def test_each_method_adds_one_node(self) -> None:
        lazy = _lazy().filter(col("age") > 30).sort("age").head(3)
        assert isinstance(lazy.plan, Slice)
        assert isinstance(lazy.plan.input, Sort)
        assert isinstance(lazy.plan.input.input, Filter)

    def test_building_never_mutates(self) -> None:
        base = _lazy()
        base.filter(col("age") > 30)
        assert isinstance(base.plan, DataFrameScan)

    def test_select_and_with_columns_schemas(self) -> None:
        lazy = _lazy().with_columns(adult=col("age") >= 18).select("name", "adult")
        assert isinstance(lazy.plan, Select)
        assert isinstance(lazy.plan.input, WithColumns)
        assert lazy.schema == Schema({"name": String, "adult": Boolean})

    def test_drop(self) -> None:
        assert _lazy().drop("age", "score").columns == ["id", "name"]

    def test_drop_unknown_column(self) -> None:
        with pytest.raises(ColumnNotFoundError, match="nope"):
            _lazy().drop("nope")

    def test_rename(self) -> None:
        lazy = _lazy().rename({"name": "user"})
        assert isinstance(lazy.plan, Rename)
        assert lazy.columns == ["id", "user", "age", "score"]

    def test_sort_flags_per_key(self) -> None:
        lazy = _lazy().sort("age", "name", descending=[True, False], nulls_last=True)
        keys = lazy.plan.by
        assert [k.descending for k in keys] == [True, False]
        assert all(k.nulls_last for k in keys)

    def test_sort_flag_count_must_match(self) -> None:
        with pytest.raises(ValueError, match="2 descending flags for 1 keys"):
            _lazy().sort("age", descending=[True, False])

    def test_unique_subset_string(self) -> None:
        lazy = _lazy().unique("name", keep="last")
        assert isinstance(lazy.plan, Unique)
        assert list(lazy.plan.subset) == ["name"]

    def test_tail_is_negative_slice(self) -> None:
        plan = _lazy().tail(2).plan
        assert (plan.offset, plan.length) == (-2, 2)

    def test_group_by_agg(self) -> None:
        lazy = _lazy().group_by("name").agg(total=col("score").sum(), n=col("id").count())
        assert isinstance(lazy.plan, Aggregate)
        assert lazy.schema == Schema({"name": String, "total": Float64, "n": Int64})

    def test_group_by_requires_column_names(self) -> None:
        with pytest.raises(TypeError, match="expects column names"):
            _lazy().group_by(col("age") + 1)

    def test_group_by_unknown_key(self) -> None:
        with pytest.raises(ColumnNotFoundError):
            _lazy().group_by("nope")

    def test_pivot_longer(self) -> None:
        lazy = _lazy().pivot_longer("id", ["age", "score"])
        assert isinstance(lazy.plan, Unpivot)
        assert lazy.columns == ["id", "variable", "value"]

    def test_repr_shows_plan(self) -> None:
        text = repr(_lazy().filter(col("age") > 1))
        assert text.startswith("LazyFrame[mock]")
        assert "FILTER" in text


# ---------------------------------------------------------------------------
# Joins and concatenation
# ---------------------------------------------------------------------------


ORDERS = Schema({"order_id": Int64, "user_id": Int64, "amount": Float64})


class TestJoinArguments:
    def test_on(self) -> None:
        plan = _lazy().join(_lazy(Schema({"id": Int64, "tag": String})), on="id").plan
        assert isinstance(plan, Join)
        assert (plan.left_on, plan.right_on) == (("id",), ("id",))

    def test_left_and_right_on(self) -> None:
        lazy = _lazy(ORDERS).join(_lazy(), left_on="user_id", right_on="id", how="left")
        assert lazy.columns == ["order_id", "user_id", "amount", "name", "age", "score"]

    def test_on_and_left_on_are_exclusive(self) -> None:
        with pytest.raises(ValueError, match="either on="):
            _lazy().join(_lazy(), on="id", left_on="id")

    def test_requires_keys(self) -> None:
        with pytest.raises(ValueError, match="requires on="):
            _lazy().join(_lazy(), left_on="id")

    def test_cross_rejects_keys(self) -> None:
        with pytest.raises(ValueError, match="cross join"):
            _lazy().join(_lazy(ORDERS), on="id", how="cross")

    def test_suffix_for_collisions(self) -> None:
        other = _lazy(Schema({"id": Int64, "name": String}))
        assert _lazy().join(other, on="id", suffix="_r").columns[-1] == "name_r"

    def test_backends_must_match(self) -> None:
        with pytest.raises(BackendMismatchError, match="join"):
            _lazy().join(_lazy(backend="other"), on="id")

    def test_join_expects_same_kind(self) -> None:
        with pytest.raises(TypeError, match="expects a LazyFrame"):
            _lazy().join(_frame(), on="id")  # type: ignore[arg-type]


class TestConcat:
    def test_lazy_rows(self) -> None:
        stacked = concat_rows([_lazy(), _lazy()])
        assert isinstance(stacked, LazyFrame)
        assert stacked.schema == USERS

    def test_lazy_columns(self) -> None:
        wide = concat_columns([_lazy().select("id"), _lazy(ORDERS).select("amount")])
        assert wide.columns == ["id", "amount"]

    def test_cannot_mix_eager_and_lazy(self) -> None:
        with pytest.raises(TypeError, match="cannot mix"):
            concat_rows([_lazy(), _frame()])

    def test_backend_mismatch(self) -> None:
        with pytest.raises(BackendMismatchError):
            concat_rows([_lazy(), _lazy(backend="other")])

    def test_requires_input(self) -> None:
        with pytest.raises(ValueError, match="at least one frame"):
            concat_columns([])
