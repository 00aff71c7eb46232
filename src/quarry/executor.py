"""Plan execution: the collect state machine and the generic node interpreter.

A lazy plan goes through ``BUILT → OPTIMIZED → EXECUTING → MATERIALIZED``,
or ends in ``FAILED`` from any state. Execution is all-or-nothing: a failure
discards every intermediate result and surfaces as an exception. Each call
to :meth:`Execution.run` (and so each ``LazyFrame.collect``) re-executes the
plan from its sources.

The generic interpreter (:func:`run_plan`) walks the optimized plan bottom-up
and calls the backend's eager operations one node at a time, checking the
cancellation token before each step. A backend may instead translate the
whole plan to its own lazy engine in ``execute``.
"""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from quarry.errors import CancelledError, ExecutionError, QuarryError, ShapeError
from quarry.expr import AliasedExpr, ColumnRef
from quarry.optimizer import optimize as optimize_plan
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
    Unpivot,
    WithColumns,
    explain,
    scans,
)

if TYPE_CHECKING:
    from quarry._protocols import BackendProtocol

logger = logging.getLogger(__name__)


class PlanState(enum.Enum):
    BUILT = "built"
    OPTIMIZED = "optimized"
    EXECUTING = "executing"
    MATERIALIZED = "materialized"
    FAILED = "failed"


class CancellationToken:
    """A cooperative cancellation signal, safe to set from another thread.

    Usage::

        token = CancellationToken()
        worker = threading.Thread(target=lambda: lf.collect(cancel_token=token))
        worker.start()
        token.cancel()
    """

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError("Plan execution was cancelled")

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"


@contextmanager
def backend_errors(operation: str, backend: str) -> Iterator[None]:
    """Wrap engine failures in :class:`ExecutionError` with operation context.

    quarry's own errors pass through unchanged.
    """
    try:
        yield
    except QuarryError:
        raise
    except Exception as exc:
        raise ExecutionError(operation, exc, backend=backend) from exc


# ---------------------------------------------------------------------------
# Node interpreter
# ---------------------------------------------------------------------------


def apply_node(backend: BackendProtocol, node: PlanNode, inputs: list[Any]) -> Any:
    """Compute one non-leaf node from its already-materialized inputs.

    Shared by the eager ``DataFrame`` methods and the generic plan executor.
    """
    if isinstance(node, Select):
        return backend.select(inputs[0], node.exprs)
    if isinstance(node, WithColumns):
        return backend.with_columns(inputs[0], node.exprs)
    if isinstance(node, Filter):
        return backend.filter(inputs[0], node.predicate)
    if isinstance(node, Sort):
        return backend.sort(inputs[0], node.by)
    if isinstance(node, Slice):
        return backend.slice(inputs[0], node.offset, node.length)
    if isinstance(node, Unique):
        return backend.unique(inputs[0], node.subset, node.keep)
    if isinstance(node, DropNulls):
        return backend.drop_nulls(inputs[0], node.subset)
    if isinstance(node, Rename):
        return backend.rename(inputs[0], node.mapping)
    if isinstance(node, Aggregate):
        if node.keys:
            return backend.group_by_agg(inputs[0], node.keys, node.aggs)
        return backend.select(inputs[0], node.aggs)
    if isinstance(node, Join):
        return backend.join(
            inputs[0], inputs[1], node.left_on, node.right_on, node.how, node.suffix
        )
    if isinstance(node, Concat):
        return backend.concat(inputs)
    if isinstance(node, HConcat):
        heights = [backend.row_count(data) for data in inputs]
        if len(set(heights)) > 1:
            raise ShapeError(f"concat_columns() requires frames of equal height, got {heights}")
        return backend.hconcat(inputs)
    if isinstance(node, Unpivot):
        result = backend.unpivot(
            inputs[0], node.index, node.on, node.variable_name, node.value_name
        )
        return backend.cast(result, node.schema)
    raise TypeError(f"Unknown plan node: {type(node).__name__}")


def _scan(backend: BackendProtocol, node: DataFrameScan | FileScan) -> Any:
    if isinstance(node, FileScan):
        return backend.read(node.source, node.format, columns=node.projection, **node.options)
    if node.projection is None:
        return node.data
    return backend.select(node.data, [AliasedExpr(ColumnRef(n), n) for n in node.projection])


def run_plan(backend: BackendProtocol, plan: PlanNode, token: CancellationToken) -> Any:
    """Execute ``plan`` node by node through ``backend``'s eager operations."""

    def visit(node: PlanNode) -> Any:
        inputs = [visit(child) for child in node.inputs()]
        token.raise_if_cancelled()
        operation = type(node).__name__.lower()
        logger.debug("Executing %s", node.describe())
        with backend_errors(operation, backend.name):
            if isinstance(node, (DataFrameScan, FileScan)):
                return _scan(node.backend, node)
            return apply_node(backend, node, inputs)

    return visit(plan)


# ---------------------------------------------------------------------------
# Collect state machine
# ---------------------------------------------------------------------------


class Execution:
    """One attempt at materializing a plan.

    ``state`` moves forward only; ``error`` holds the exception that moved it
    to ``FAILED``.
    """

    def __init__(self, plan: PlanNode, backend: BackendProtocol | None = None) -> None:
        self.plan = plan
        self.backend = backend if backend is not None else scans(plan)[0].backend
        self.state = PlanState.BUILT
        self.optimized: PlanNode | None = None
        self.error: BaseException | None = None

    def _transition(self, state: PlanState) -> None:
        logger.debug("Plan %s -> %s", self.state.value, state.value)
        self.state = state

    def run(self, optimize: bool = True, token: CancellationToken | None = None) -> Any:
        """Optimize and execute the plan, returning backend-native data."""
        token = token or CancellationToken()
        try:
            token.raise_if_cancelled()
            self.optimized = optimize_plan(self.plan) if optimize else self.plan
            self._transition(PlanState.OPTIMIZED)
            token.raise_if_cancelled()
            self._transition(PlanState.EXECUTING)
            with backend_errors("collect", self.backend.name):
                result = self.backend.execute(self.optimized, token)
            token.raise_if_cancelled()
        except BaseException as exc:
            self.error = exc
            self._transition(PlanState.FAILED)
            logger.debug("Plan execution failed:\n%s", explain(self.plan), exc_info=True)
            raise
        self._transition(PlanState.MATERIALIZED)
        return result
