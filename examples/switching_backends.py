"""Switching backends: one pipeline, two engines.

The same function runs on Polars and on pandas. Frames never mix backends
implicitly; moving data between them goes through Arrow.
"""

from __future__ import annotations

import quarry as qr
from quarry import col

data = {
    "city": ["Oslo", "Lima", "Oslo", "Pune", "Lima", "Oslo"],
    "temp": [3.5, 19.0, 5.0, 31.5, None, 4.0],
}


def warmest_cities(df: qr.DataFrame) -> qr.DataFrame:
    return (
        df.drop_nulls("temp")
        .group_by("city")
        .agg(avg_temp=col("temp").mean(), readings=col("temp").count())
        .sort("avg_temp", descending=True)
    )


# ---------------------------------------------------------------------------
# Explicit backend per call
# ---------------------------------------------------------------------------

for name in ("polars", "pandas"):
    result = warmest_cities(qr.from_dict(data, backend=name))
    print(f"{name}: {result.rows()}")
    print(f"  native type: {type(result.to_native()).__module__}")

# ---------------------------------------------------------------------------
# Scoped override (QUARRY_BACKEND sets the process-wide default)
# ---------------------------------------------------------------------------

with qr.using_backend("pandas"):
    scoped = qr.from_dict(data)
print(f"\nInside using_backend('pandas'): {scoped.backend}")
print(f"Outside: {qr.from_dict(data).backend}")

# ---------------------------------------------------------------------------
# Crossing the boundary
# ---------------------------------------------------------------------------

polars_df = qr.from_dict(data, backend="polars")
pandas_df = qr.from_dict({"city": ["Oslo", "Lima"], "country": ["NO", "PE"]}, backend="pandas")

try:
    polars_df.join(pandas_df, on="city")
except qr.BackendMismatchError as exc:
    print(f"\nRefused: {exc}")

joined = polars_df.join(pandas_df.to_backend("polars"), on="city")
print(f"After to_backend(): shape {joined.shape} on {joined.backend}")

table = joined.to_arrow()
print(f"Arrow schema: {table.schema.names}")
