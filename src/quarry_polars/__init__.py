"""quarry Polars backend adapter."""

from importlib.metadata import version as _version

__version__: str = _version("quarry")

from quarry_polars.adapter import PolarsBackend
from quarry_polars.conversion import (
    from_polars_dtype,
    from_polars_schema,
    to_polars_dtype,
    to_polars_schema,
)

__all__ = [
    "PolarsBackend",
    "from_polars_dtype",
    "from_polars_schema",
    "to_polars_dtype",
    "to_polars_schema",
]
