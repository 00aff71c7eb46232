"""Process configuration: which backend is the default.

The default backend is read from the environment the first time it is
needed, and can be replaced programmatically::

    # Environment variable
    QUARRY_BACKEND=pandas pytest tests/

    # Programmatic
    import quarry
    quarry.set_default_backend("pandas")

    # Scoped, restored on exit and invisible to other threads
    with quarry.using_backend("pandas"):
        ...

Unset or empty ``QUARRY_BACKEND`` means ``"polars"``.
"""

from __future__ import annotations

import os

ENV_BACKEND = "QUARRY_BACKEND"
DEFAULT_BACKEND = "polars"


def backend_from_env() -> str:
    """Return the backend name configured in the environment."""
    name = os.environ.get(ENV_BACKEND, "").strip().lower()
    return name or DEFAULT_BACKEND
