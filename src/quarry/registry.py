"""Backend registry: symbolic names to backend instances.

Backends are resolved in this order:

1. an explicit ``backend=`` argument (a name or an instance);
2. the innermost active :func:`using_backend` block in the current thread
   or async context;
3. the process default, from :func:`set_default_backend` or the
   ``QUARRY_BACKEND`` environment variable.

The process default lives in a versioned cell guarded by a lock. Readers
take the lock only for the duration of a tuple read; instances are created
once per name and reused.
"""

from __future__ import annotations

import contextvars
import importlib
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from quarry._protocols import BackendProtocol
from quarry.config import backend_from_env
from quarry.errors import BackendNotFoundError

logger = logging.getLogger(__name__)

BackendFactory = Callable[[], BackendProtocol]

_BUILTIN: dict[str, str] = {
    "polars": "quarry_polars.adapter:PolarsBackend",
    "pandas": "quarry_pandas.adapter:PandasBackend",
}

_lock = threading.Lock()
_factories: dict[str, BackendFactory] = {}
_instances: dict[str, BackendProtocol] = {}
# (version, name); None until first read so the environment is consulted lazily
_default: tuple[int, str] | None = None
_scoped: contextvars.ContextVar[BackendProtocol | None] = contextvars.ContextVar(
    "quarry_backend", default=None
)


def _import_factory(path: str) -> BackendFactory:
    module_name, _, attr = path.partition(":")
    module = importlib.import_module(module_name)
    return getattr(module, attr)


def register_backend(name: str, factory: BackendFactory) -> None:
    """Register (or replace) a backend under ``name``."""
    with _lock:
        _factories[name] = factory
        _instances.pop(name, None)
    logger.debug("Registered backend %r", name)


def available_backends() -> list[str]:
    """Names that :func:`get_backend` can resolve."""
    with _lock:
        return sorted(set(_BUILTIN) | set(_factories))


def get_backend(name: str | BackendProtocol | None = None) -> BackendProtocol:
    """Resolve a backend name (or ``None`` for the active one) to an instance."""
    if name is None:
        scoped = _scoped.get()
        if scoped is not None:
            return scoped
        name = default_backend_name()
    if not isinstance(name, str):
        return name
    with _lock:
        instance = _instances.get(name)
        factory = _factories.get(name)
    if instance is not None:
        return instance
    if factory is None:
        if name not in _BUILTIN:
            raise BackendNotFoundError(
                f"Unknown backend {name!r}. Available backends: {', '.join(available_backends())}"
            )
        try:
            factory = _import_factory(_BUILTIN[name])
        except ImportError as exc:
            raise BackendNotFoundError(
                f"Backend {name!r} is not installed: {exc}"
            ) from exc
    created = factory()
    with _lock:
        # another thread may have won the race; keep the first instance
        instance = _instances.setdefault(name, created)
    logger.debug("Created backend instance %r", name)
    return instance


def _read_default() -> tuple[int, str]:
    global _default
    with _lock:
        if _default is None:
            _default = (0, backend_from_env())
        return _default


def default_backend_name() -> str:
    return _read_default()[1]


def default_backend_version() -> int:
    """Counter bumped by every :func:`set_default_backend` call."""
    return _read_default()[0]


def set_default_backend(name: str) -> None:
    """Replace the process-wide default backend."""
    global _default
    # resolve first so an unknown name leaves the default untouched
    get_backend(name)
    with _lock:
        version = _default[0] + 1 if _default is not None else 1
        _default = (version, name)
    logger.debug("Default backend set to %r (version %d)", name, version)


def reset_default_backend() -> None:
    """Forget the programmatic default and re-read the environment on next use."""
    global _default
    with _lock:
        _default = None


@contextmanager
def using_backend(backend: str | BackendProtocol) -> Iterator[BackendProtocol]:
    """Make ``backend`` the active backend for the dynamic extent of the block."""
    instance = get_backend(backend)
    token = _scoped.set(instance)
    try:
        yield instance
    finally:
        _scoped.reset(token)


def same_backend(left: Any, right: Any) -> bool:
    return left.name == right.name
