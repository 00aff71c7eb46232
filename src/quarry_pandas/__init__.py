"""quarry pandas backend adapter."""

from importlib.metadata import version as _version

__version__: str = _version("quarry")

from quarry_pandas.adapter import PandasBackend
from quarry_pandas.conversion import (
    from_arrow_schema,
    from_arrow_type,
    to_arrow_schema,
    to_arrow_type,
    to_pandas_dtype,
)

__all__ = [
    "PandasBackend",
    "from_arrow_schema",
    "from_arrow_type",
    "to_arrow_schema",
    "to_arrow_type",
    "to_pandas_dtype",
]
