"""Backend protocols (what adapters must implement)."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    import pyarrow as pa

    from quarry.executor import CancellationToken
    from quarry.expr import Expr, SortExpr
    from quarry.io import FileFormat
    from quarry.plan import PlanNode
    from quarry.schema import Schema


class BackendProtocol(Protocol):
    """Interface that all backend adapters must implement.

    Each method takes backend-native data (``Any``) as ``source`` and returns
    backend-native data. The DataFrame/LazyFrame layer validates names,
    shapes and dtypes before calling in, and wraps results in frame instances.
    Expressions passed to a backend are always bound: every node carries its
    output dtype, and backends cast each result column to that dtype so the
    observable schema never depends on the engine.

    Failures inside the engine are raised as-is; the dispatch layer wraps
    them in :class:`quarry.errors.ExecutionError`.
    """

    name: str

    # --- Construction / introspection ---

    def from_dict(self, data: Mapping[str, Sequence[Any]], schema: Schema) -> Any:
        """Create a native frame from a columnar dict, coercing to ``schema``."""
        ...

    def from_arrow(self, table: pa.Table) -> Any: ...

    def to_arrow(self, source: Any) -> pa.Table: ...

    def schema(self, source: Any) -> Schema: ...

    def row_count(self, source: Any) -> int: ...

    def to_dict(self, source: Any) -> dict[str, list[Any]]:
        """Column name → list of Python values, with ``None`` for missing."""
        ...

    def get_column(self, source: Any, name: str) -> Any:
        """The engine's native one-dimensional column object."""
        ...

    # --- Schema-preserving operations ---

    def filter(self, source: Any, predicate: Expr) -> Any: ...

    def sort(self, source: Any, by: Sequence[SortExpr]) -> Any: ...

    def slice(self, source: Any, offset: int, length: int | None) -> Any:
        """Rows ``[offset, offset + length)``; a negative offset counts from the end."""
        ...

    def sample(self, source: Any, n: int, seed: int | None) -> Any: ...

    def unique(self, source: Any, subset: Sequence[str], keep: str) -> Any: ...

    def drop_nulls(self, source: Any, subset: Sequence[str]) -> Any: ...

    def with_columns(self, source: Any, exprs: Sequence[Expr]) -> Any: ...

    def concat(self, sources: Sequence[Any]) -> Any: ...

    # --- Schema-transforming operations ---

    def select(self, source: Any, exprs: Sequence[Expr]) -> Any:
        """Evaluate aliased expressions; aggregations broadcast against row-wise columns."""
        ...

    def rename(self, source: Any, mapping: Mapping[str, str]) -> Any: ...

    def group_by_agg(self, source: Any, keys: Sequence[str], aggs: Sequence[Expr]) -> Any:
        """Group by ``keys`` in first-appearance order; missing keys form their own group."""
        ...

    def join(
        self,
        left: Any,
        right: Any,
        left_on: Sequence[str],
        right_on: Sequence[str],
        how: str,
        suffix: str,
    ) -> Any: ...

    def hconcat(self, sources: Sequence[Any]) -> Any: ...

    def unpivot(
        self,
        source: Any,
        index: Sequence[str],
        on: Sequence[str],
        variable_name: str,
        value_name: str,
    ) -> Any: ...

    def pivot(
        self,
        source: Any,
        index: Sequence[str],
        on: str,
        values: str,
        aggregate: str,
    ) -> Any: ...

    def cast(self, source: Any, schema: Schema) -> Any:
        """Cast every column to the dtype ``schema`` gives it."""
        ...

    # --- I/O ---

    def read(self, source: Any, format: FileFormat, **options: Any) -> Any:
        """Read a file, remote object or in-memory buffer into a native frame."""
        ...

    def read_schema(self, source: Any, format: FileFormat, **options: Any) -> Schema:
        """The schema a read would produce, from metadata or a bounded sample."""
        ...

    def write(self, source: Any, destination: Any, format: FileFormat, **options: Any) -> None: ...

    # --- Lazy ---

    def execute(self, plan: PlanNode, token: CancellationToken) -> Any:
        """Materialize an optimized plan into a native frame."""
        ...
