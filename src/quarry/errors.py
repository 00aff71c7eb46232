"""Error taxonomy shared by the dispatch layer, the lazy planner and backends.

Every error raised by quarry derives from :class:`QuarryError` and from the
closest builtin exception, so ``except TypeError`` or ``except LookupError``
keep working for callers that do not know about quarry.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class QuarryError(Exception):
    """Base class for all quarry errors."""


class ColumnNotFoundError(QuarryError, LookupError):
    """Raised when a referenced column name is absent from a schema."""

    def __init__(self, name: str, available: Sequence[str] = (), *, operation: str = "") -> None:
        self.name = name
        self.available = list(available)
        self.operation = operation
        super().__init__(self._build_message())

    def _build_message(self) -> str:
        where = f" in {self.operation}()" if self.operation else ""
        msg = f"Column {self.name!r} not found{where}"
        if self.available:
            msg += f". Available columns: {', '.join(self.available)}"
        return msg

    def __str__(self) -> str:
        # LookupError/KeyError repr-quotes a single argument; keep the plain message.
        return self.args[0] if self.args else ""


class DTypeError(QuarryError, TypeError):
    """Raised when an operation has no defined result type for its operand types."""


class ShapeError(QuarryError, ValueError):
    """Raised on length or dimension mismatch outside the broadcast rules."""


class DuplicateColumnError(QuarryError, ValueError):
    """Raised when an operation would produce two columns with the same name."""

    def __init__(self, names: Sequence[str], *, operation: str = "") -> None:
        self.names = list(names)
        where = f" in {operation}()" if operation else ""
        super().__init__(f"Duplicate column names{where}: {', '.join(self.names)}")


class BackendMismatchError(QuarryError, ValueError):
    """Raised when an operation mixes values backed by two different backends."""

    def __init__(self, left: str, right: str, *, operation: str = "") -> None:
        self.left = left
        self.right = right
        where = f" in {operation}()" if operation else ""
        super().__init__(
            f"Cannot combine values from backend {left!r} with backend {right!r}{where}. "
            "Convert one side explicitly with .to_backend()."
        )


class BackendNotFoundError(QuarryError, LookupError):
    """Raised when a backend name is not registered."""

    def __str__(self) -> str:
        return self.args[0] if self.args else ""


class ExecutionError(QuarryError, RuntimeError):
    """Raised when a backend fails while materializing a result.

    The original engine exception is available as ``__cause__``.
    """

    def __init__(self, operation: str, detail: Any = None, *, backend: str = "") -> None:
        self.operation = operation
        self.detail = detail
        self.backend = backend
        parts = [f"{operation}() failed"]
        if backend:
            parts.append(f"on backend {backend!r}")
        msg = " ".join(parts)
        if detail is not None:
            msg += f": {detail}"
        super().__init__(msg)


class CancelledError(QuarryError):
    """Raised when a running lazy execution observes a cancellation request."""
