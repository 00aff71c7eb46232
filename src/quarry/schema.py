"""Schema: the ordered name → dtype mapping shared by every layer.

A schema is derived from an eager frame by asking its backend, or computed
for a lazy plan purely from the schemas of its inputs. Both sides produce the
same ``Schema`` value, which is what makes ``LazyFrame.schema`` usable before
any data is touched.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any

from quarry.dtypes import DataType, to_dtype
from quarry.errors import ColumnNotFoundError, DuplicateColumnError, QuarryError

DEFAULT_JOIN_SUFFIX = "_right"


class Schema(Mapping[str, DataType]):
    """An immutable, ordered mapping from column name to dtype.

    Usage::

        Schema({"id": Int64, "name": String})
        Schema([("id", Int64), ("name", String)])
    """

    __slots__ = ("_columns",)

    def __init__(
        self,
        columns: Mapping[str, Any] | Iterable[tuple[str, Any]] | None = None,
    ) -> None:
        items: Iterable[tuple[str, Any]]
        if columns is None:
            items = ()
        elif isinstance(columns, Mapping):
            items = columns.items()
        else:
            items = columns
        resolved: dict[str, DataType] = {}
        duplicates: list[str] = []
        for name, dtype in items:
            if name in resolved:
                duplicates.append(name)
            resolved[name] = to_dtype(dtype)
        if duplicates:
            raise DuplicateColumnError(duplicates)
        self._columns = resolved

    # --- Mapping protocol ---

    def __getitem__(self, name: str) -> DataType:
        try:
            return self._columns[name]
        except KeyError:
            raise ColumnNotFoundError(name, list(self._columns)) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def __contains__(self, name: object) -> bool:
        return name in self._columns

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Schema):
            return list(self._columns.items()) == list(other._columns.items())
        if isinstance(other, Mapping):
            try:
                return self == Schema(other)
            except QuarryError:
                return False
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(self._columns.items()))

    def __repr__(self) -> str:
        cols = ", ".join(f"{name!r}: {dtype!r}" for name, dtype in self._columns.items())
        return f"Schema({{{cols}}})"

    # --- Accessors ---

    def names(self) -> list[str]:
        """Column names in order."""
        return list(self._columns)

    def dtypes(self) -> list[DataType]:
        """Column dtypes in order."""
        return list(self._columns.values())

    def require(self, names: Iterable[str], operation: str = "") -> None:
        """Raise :class:`ColumnNotFoundError` for the first name not in the schema."""
        for name in names:
            if name not in self._columns:
                raise ColumnNotFoundError(name, list(self._columns), operation=operation)

    # --- Derivation ---

    def select(self, names: Sequence[str], operation: str = "select") -> Schema:
        self.require(names, operation)
        duplicates = sorted({n for n in names if list(names).count(n) > 1})
        if duplicates:
            raise DuplicateColumnError(duplicates, operation=operation)
        return Schema([(n, self._columns[n]) for n in names])

    def drop(self, names: Sequence[str], operation: str = "drop") -> Schema:
        self.require(names, operation)
        dropped = set(names)
        return Schema([(n, d) for n, d in self._columns.items() if n not in dropped])

    def rename(self, mapping: Mapping[str, str], operation: str = "rename") -> Schema:
        self.require(mapping, operation)
        renamed = [(mapping.get(n, n), d) for n, d in self._columns.items()]
        seen: set[str] = set()
        duplicates = []
        for name, _ in renamed:
            if name in seen:
                duplicates.append(name)
            seen.add(name)
        if duplicates:
            raise DuplicateColumnError(duplicates, operation=operation)
        return Schema(renamed)

    def with_columns(self, columns: Iterable[tuple[str, DataType]]) -> Schema:
        """Overwrite existing columns in place and append new ones at the end."""
        resolved = dict(self._columns)
        for name, dtype in columns:
            resolved[name] = dtype
        return Schema(resolved)

    def merge_join(
        self,
        other: Schema,
        left_on: Sequence[str],
        right_on: Sequence[str],
        how: str = "inner",
        suffix: str = DEFAULT_JOIN_SUFFIX,
    ) -> Schema:
        """Schema of joining this (left) schema with ``other`` (right)."""
        return join_schema(self, other, left_on, right_on, how, suffix)


# ---------------------------------------------------------------------------
# Join schema resolution
# ---------------------------------------------------------------------------


def join_output_names(
    left: Schema,
    right: Schema,
    right_on: Sequence[str],
    how: str,
    suffix: str = DEFAULT_JOIN_SUFFIX,
) -> dict[str, str]:
    """Return ``{right_name: output_name}`` for the right columns kept by a join.

    Right key columns are dropped (they equal the left keys) except for cross
    joins, which have no keys. A right column whose name collides with a left
    column gets ``suffix`` appended. A suffixed name that still collides raises
    :class:`DuplicateColumnError`.
    """
    dropped = set() if how == "cross" else set(right_on)
    taken = set(left.names())
    mapping: dict[str, str] = {}
    for name in right.names():
        if name in dropped:
            continue
        output = name
        if output in taken:
            output = f"{name}{suffix}"
            if output in taken or output in right:
                raise DuplicateColumnError([output], operation="join")
        taken.add(output)
        mapping[name] = output
    return mapping


def join_schema(
    left: Schema,
    right: Schema,
    left_on: Sequence[str],
    right_on: Sequence[str],
    how: str,
    suffix: str = DEFAULT_JOIN_SUFFIX,
) -> Schema:
    """Compute the output schema of a join without touching data."""
    left.require(left_on, "join")
    right.require(right_on, "join")
    mapping = join_output_names(left, right, right_on, how, suffix)
    return Schema(list(left.items()) + [(out, right[name]) for name, out in mapping.items()])
