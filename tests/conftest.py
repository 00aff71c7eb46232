"""Shared fixtures: backend parametrization and registry isolation."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from quarry import registry

BACKENDS = ["polars", "pandas"]


@pytest.fixture(autouse=True)
def _isolated_registry(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Every test starts from the environment default, with no override active."""
    monkeypatch.delenv("QUARRY_BACKEND", raising=False)
    registry.reset_default_backend()
    yield
    registry.reset_default_backend()


@pytest.fixture(params=BACKENDS)
def backend(request: pytest.FixtureRequest) -> str:
    """Name of each built-in backend in turn."""
    return request.param
