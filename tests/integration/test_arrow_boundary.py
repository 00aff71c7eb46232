"""Integration tests for the Arrow boundary (to_arrow / from_arrow / batches)."""

from __future__ import annotations

import pyarrow as pa
import pytest

import quarry as qr
from quarry import col
from quarry.dtypes import Float64, Int32, Int64, String
from quarry.errors import BackendMismatchError, ColumnNotFoundError


def _users(backend: str) -> qr.DataFrame:
    return qr.from_dict(
        {"id": [1, 2, 3], "name": ["Alice", "Bob", None], "score": [1.5, None, 3.0]},
        backend=backend,
    )


def _table() -> pa.Table:
    return pa.table(
        {
            "id": pa.array([1, 2, 3], pa.int64()),
            "name": pa.array(["a", "b", "c"], pa.string()),
            "extra": pa.array([True, False, True]),
        }
    )


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


class TestToArrow:
    def test_returns_table(self, backend: str) -> None:
        table = _users(backend).to_arrow()
        assert isinstance(table, pa.Table)
        assert table.column_names == ["id", "name", "score"]
        assert table.to_pydict() == _users(backend).to_dict()

    def test_module_function_matches_method(self, backend: str) -> None:
        df = _users(backend)
        assert qr.to_arrow(df).equals(df.to_arrow())

    def test_batches(self, backend: str) -> None:
        batches = list(qr.to_batches(_users(backend), batch_size=2))
        assert [b.num_rows for b in batches] == [2, 1]
        assert all(isinstance(b, pa.RecordBatch) for b in batches)

    def test_single_batch_by_default(self, backend: str) -> None:
        assert sum(b.num_rows for b in qr.to_batches(_users(backend))) == 3


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


class TestFromArrow:
    def test_types_follow_arrow(self, backend: str) -> None:
        df = qr.from_arrow(_table(), backend=backend)
        assert df.backend == backend
        assert df.columns == ["id", "name", "extra"]
        assert df.schema["id"] == Int64()
        assert df["name"].to_list() == ["a", "b", "c"]

    def test_schema_selects_orders_and_casts(self, backend: str) -> None:
        df = qr.from_arrow(_table(), {"name": String, "id": Int32}, backend=backend)
        assert df.columns == ["name", "id"]
        assert df.schema == qr.Schema({"name": String, "id": Int32})
        assert df["id"].to_list() == [1, 2, 3]

    def test_missing_column(self, backend: str) -> None:
        with pytest.raises(ColumnNotFoundError, match="missing"):
            qr.from_arrow(_table(), {"missing": Int64}, backend=backend)

    def test_record_batch(self, backend: str) -> None:
        batch = _table().to_batches()[0]
        assert qr.from_arrow(batch, backend=backend).height == 3

    def test_from_batches(self, backend: str) -> None:
        batches = list(qr.to_batches(_users(backend), batch_size=1))
        df = qr.from_batches(batches, backend=backend)
        assert df.equals(_users(backend))

    def test_from_batches_requires_one(self, backend: str) -> None:
        with pytest.raises(ValueError, match="at least one batch"):
            qr.from_batches([], backend=backend)


# ---------------------------------------------------------------------------
# Crossing backends
# ---------------------------------------------------------------------------


class TestTransfer:
    def test_to_backend_keeps_schema_and_values(self, backend: str) -> None:
        other = "pandas" if backend == "polars" else "polars"
        moved = _users(backend).to_backend(other)
        assert moved.backend == other
        assert moved.schema == _users(backend).schema
        assert moved.equals(_users(backend))

    def test_to_same_backend_is_identity(self, backend: str) -> None:
        df = _users(backend)
        assert df.to_backend(backend) is df

    def test_mixing_requires_explicit_transfer(self, backend: str) -> None:
        other = "pandas" if backend == "polars" else "polars"
        left = _users(backend)
        right = qr.from_dict({"id": [1], "flag": [True]}, backend=other)
        with pytest.raises(BackendMismatchError):
            left.join(right, on="id")
        joined = left.join(right.to_backend(backend), on="id")
        assert joined.rows() == [(1, "Alice", 1.5, True)]

    def test_transfer_then_compute(self, backend: str) -> None:
        other = "pandas" if backend == "polars" else "polars"
        result = (
            qr.from_arrow(_users(backend).to_arrow(), backend=other)
            .with_columns(doubled=col("score") * 2)
            .select("doubled")
        )
        assert result.schema["doubled"] == Float64()
        assert result["doubled"].to_list() == [3.0, None, 6.0]
