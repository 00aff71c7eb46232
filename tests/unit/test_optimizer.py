"""Unit tests for the plan optimizer (quarry.optimizer)."""

from __future__ import annotations

from quarry.dtypes import Float64, Int64, String
from quarry.expr import BinOp, Literal, col, collect_column_names, lit
from quarry.optimizer import fold_constants, optimize, prune_projections, push_down_predicates
from quarry.plan import (
    Aggregate,
    Concat,
    DataFrameScan,
    Filter,
    Join,
    Rename,
    Select,
    Slice,
    Sort,
    WithColumns,
)
from quarry.schema import Schema


class _StubBackend:
    name = "stub"


SOURCE = Schema({"a": Int64, "b": Int64, "c": String, "g": String, "v": Float64})


def scan(schema: Schema = SOURCE) -> DataFrameScan:
    return DataFrameScan(None, _StubBackend(), schema)


def columns_of(node) -> list[str]:
    return collect_column_names(node.predicate)


# ---------------------------------------------------------------------------
# Constant folding
# ---------------------------------------------------------------------------


class TestConstantFolding:
    def test_true_filter_is_removed(self) -> None:
        base = scan()
        assert fold_constants(Filter(base, lit(1) == lit(1))) is base

    def test_arithmetic_is_folded(self) -> None:
        node = fold_constants(Select(scan(), [(lit(1) + lit(2)).alias("three")]))
        folded = node.exprs[0].expr
        assert isinstance(folded, Literal)
        assert folded.value == 3

    def test_division_by_zero_is_left_to_the_engine(self) -> None:
        node = fold_constants(Select(scan(), [(lit(1) // lit(0)).alias("z")]))
        assert isinstance(node.exprs[0].expr, BinOp)

    def test_column_operands_are_untouched(self) -> None:
        node = fold_constants(Filter(scan(), col("a") > lit(1) + lit(1)))
        assert isinstance(node.predicate.right, Literal)
        assert node.predicate.right.value == 2


# ---------------------------------------------------------------------------
# Predicate pushdown
# ---------------------------------------------------------------------------


class TestPredicatePushdown:
    def test_through_with_columns_when_only_passthrough_columns_are_used(self) -> None:
        plan = Filter(WithColumns(scan(), [(col("a") + 1).alias("d")]), col("b") > 1)
        result = push_down_predicates(plan)
        assert isinstance(result, WithColumns)
        assert isinstance(result.input, Filter)
        assert isinstance(result.input.input, DataFrameScan)

    def test_blocked_by_computed_column(self) -> None:
        plan = Filter(WithColumns(scan(), [(col("a") + 1).alias("d")]), col("d") > 1)
        assert isinstance(push_down_predicates(plan), Filter)

    def test_conjunction_is_split(self) -> None:
        plan = Filter(
            WithColumns(scan(), [(col("a") + 1).alias("d")]), (col("d") > 1) & (col("b") > 1)
        )
        result = push_down_predicates(plan)
        assert isinstance(result, Filter)
        assert columns_of(result) == ["d"]
        assert columns_of(result.input.input) == ["b"]

    def test_through_rename(self) -> None:
        plan = Filter(Rename(scan(), {"a": "x"}), col("x") > 1)
        result = push_down_predicates(plan)
        assert isinstance(result, Rename)
        assert columns_of(result.input) == ["a"]

    def test_through_aliased_select(self) -> None:
        plan = Filter(Select(scan(), [col("a").alias("x"), col("c")]), col("x") > 1)
        result = push_down_predicates(plan)
        assert isinstance(result, Select)
        assert columns_of(result.input) == ["a"]

    def test_through_sort(self) -> None:
        plan = Filter(Sort(scan(), [col("a").desc()]), col("b") > 1)
        result = push_down_predicates(plan)
        assert isinstance(result, Sort)
        assert isinstance(result.input, Filter)

    def test_aggregate_key_predicates_move_below(self) -> None:
        agg = Aggregate(scan(), ["g"], [col("v").sum().alias("total")])
        plan = Filter(agg, (col("g") == "x") & (col("total") > 5))
        result = push_down_predicates(plan)
        assert isinstance(result, Filter)
        assert columns_of(result) == ["total"]
        assert isinstance(result.input, Aggregate)
        assert columns_of(result.input.input) == ["g"]

    def test_constant_predicate_stays_above_global_aggregate(self) -> None:
        agg = Aggregate(scan(), [], [col("v").sum().alias("total")])
        result = push_down_predicates(Filter(agg, lit(False)))
        assert isinstance(result, Filter)
        assert isinstance(result.input, Aggregate)
        assert isinstance(result.input.input, DataFrameScan)

    def test_constant_predicate_stays_above_literal_select(self) -> None:
        plan = Filter(Select(scan(), [lit(1).alias("x")]), lit(1) > lit(2))
        result = optimize(plan)
        assert isinstance(result, Filter)
        assert isinstance(result.input, Select)

    def test_constant_predicate_moves_below_grouped_aggregate(self) -> None:
        agg = Aggregate(scan(), ["g"], [col("v").sum().alias("total")])
        result = push_down_predicates(Filter(agg, lit(False)))
        assert isinstance(result, Aggregate)
        assert isinstance(result.input, Filter)

    def test_slice_is_a_barrier(self) -> None:
        plan = Filter(Slice(scan(), 0, 10), col("a") > 1)
        result = push_down_predicates(plan)
        assert isinstance(result, Filter)
        assert isinstance(result.input, Slice)

    def test_window_predicate_is_not_moved(self) -> None:
        inner = Filter(scan(), col("a") > 1)
        windowed = WithColumns(inner, [col("v").cum_sum().alias("running")])
        plan = Filter(windowed, col("b") > 1)
        result = push_down_predicates(plan)
        assert isinstance(result, Filter)
        assert isinstance(result.input, WithColumns)

    def test_concat_branches(self) -> None:
        plan = Filter(Concat([scan(), scan()]), col("a") > 1)
        result = push_down_predicates(plan)
        assert isinstance(result, Concat)
        assert all(isinstance(frame, Filter) for frame in result.frames)

    def test_inner_join_routes_each_side(self) -> None:
        left = scan(Schema({"id": Int64, "a": Int64}))
        right = scan(Schema({"id": Int64, "b": Int64}))
        plan = Filter(Join(left, right, ["id"], ["id"]), (col("a") > 1) & (col("b") > 2))
        result = push_down_predicates(plan)
        assert isinstance(result, Join)
        assert columns_of(result.left) == ["a"]
        assert columns_of(result.right) == ["b"]

    def test_suffixed_right_column_is_renamed_back(self) -> None:
        left = scan(Schema({"id": Int64, "v": Int64}))
        right = scan(Schema({"id": Int64, "v": Int64}))
        plan = Filter(Join(left, right, ["id"], ["id"]), col("v_right") > 2)
        result = push_down_predicates(plan)
        assert columns_of(result.right) == ["v"]

    def test_left_join_keeps_right_predicates_above(self) -> None:
        left = scan(Schema({"id": Int64, "a": Int64}))
        right = scan(Schema({"id": Int64, "b": Int64}))
        plan = Filter(Join(left, right, ["id"], ["id"], "left"), col("b") > 2)
        result = push_down_predicates(plan)
        assert isinstance(result, Filter)
        assert isinstance(result.input, Join)


# ---------------------------------------------------------------------------
# Projection pruning
# ---------------------------------------------------------------------------


class TestProjectionPruning:
    def test_scan_reads_only_referenced_columns(self) -> None:
        plan = Select(Filter(scan(), col("a") > 1), [col("b")])
        result = prune_projections(plan)
        assert result.input.input.projection == ("a", "b")

    def test_unused_with_columns_is_dropped(self) -> None:
        plan = Select(WithColumns(scan(), [(col("a") * 2).alias("unused")]), [col("c")])
        result = prune_projections(plan)
        assert isinstance(result.input, DataFrameScan)
        assert result.input.projection == ("c",)

    def test_root_without_projection_reads_everything(self) -> None:
        result = prune_projections(Filter(scan(), col("a") > 1))
        assert result.input.projection is None

    def test_keeps_one_column_for_row_count(self) -> None:
        plan = Select(scan(), [lit(1).alias("one")])
        result = prune_projections(plan)
        assert result.input.projection == ("a",)

    def test_join_keeps_keys(self) -> None:
        left = scan(Schema({"id": Int64, "a": Int64, "x": Int64}))
        right = scan(Schema({"rid": Int64, "b": Int64, "y": Int64}))
        plan = Select(Join(left, right, ["id"], ["rid"]), [col("a"), col("b")])
        result = prune_projections(plan)
        assert result.input.left.projection == ("id", "a")
        assert result.input.right.projection == ("rid", "b")


# ---------------------------------------------------------------------------
# Whole pipeline
# ---------------------------------------------------------------------------


class TestOptimize:
    def _plan(self):
        left = scan(Schema({"id": Int64, "a": Int64, "x": String}))
        right = scan(Schema({"id": Int64, "b": Int64, "y": String}))
        joined = Join(left, right, ["id"], ["id"])
        enriched = WithColumns(joined, [(col("a") + col("b")).alias("total")])
        filtered = Filter(enriched, (col("a") > 1) & (col("total") > 3))
        return Select(filtered, [col("id"), col("total")])

    def test_schema_is_preserved(self) -> None:
        plan = self._plan()
        assert optimize(plan).schema == plan.schema

    def test_idempotent(self) -> None:
        once = optimize(self._plan())
        assert optimize(once)._key() == once._key()

    def test_input_plan_is_not_modified(self) -> None:
        plan = self._plan()
        before = plan._key()
        optimize(plan)
        assert plan._key() == before
