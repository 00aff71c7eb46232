"""Full pipeline: a complete ETL example.

Writes sample data to Parquet, then builds one lazy plan that cleans nulls,
filters, joins, aggregates and sorts. The plan is printed before and after
optimization, collected, and the result written back out.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

import quarry as qr
from quarry import col

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

# ---------------------------------------------------------------------------
# Generate sample data and write to Parquet
# ---------------------------------------------------------------------------

tmp_dir = Path(tempfile.mkdtemp())

users = qr.from_dict(
    {
        "id": list(range(1, 11)),
        "name": [
            "Alice",
            "Bob",
            "Charlie",
            "Diana",
            "Eve",
            "Frank",
            "Grace",
            "Henry",
            "Iris",
            "Jack",
        ],
        "age": [30, 25, 35, 28, 40, 22, 33, 45, 27, 31],
        "score": [85.0, 92.5, None, 95.0, 88.0, 76.0, None, 91.0, 82.0, 79.0],
    },
    {"id": qr.UInt64, "age": qr.UInt8},
)
qr.write(users, tmp_dir / "users.parquet")

orders = qr.from_dict(
    {
        "order_id": list(range(1, 16)),
        "user_id": [1, 2, 1, 3, 5, 2, 8, 1, 4, 6, 3, 5, 9, 10, 7],
        "amount": [
            100.0,
            200.0,
            150.0,
            300.0,
            75.0,
            125.0,
            450.0,
            90.0,
            175.0,
            60.0,
            220.0,
            180.0,
            95.0,
            310.0,
            140.0,
        ],
    },
    {"order_id": qr.UInt64, "user_id": qr.UInt64},
)
qr.write(orders, tmp_dir / "orders.parquet")

# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

print("=== ETL Pipeline ===\n")

revenue = (
    qr.scan(tmp_dir / "users.parquet")
    .with_columns(score=col("score").fill_null(0.0))
    .filter(col("age") >= 25)
    .join(qr.scan(tmp_dir / "orders.parquet"), left_on="id", right_on="user_id")
    .group_by("id", "name")
    .agg(total_amount=col("amount").sum(), orders=col("order_id").count())
    .sort("total_amount", descending=True)
)

print("Plan as written:")
print(revenue.explain(optimized=False))
print()
print("Plan after optimization (filter pushed down, scans pruned):")
print(revenue.explain())
print()

result = revenue.collect()
print("=== User Revenue Report ===")
print(result)
print()

output_path = tmp_dir / "user_revenue.parquet"
qr.write(result, output_path)
restored = qr.read(output_path)
assert restored.equals(result)
print(f"Wrote and verified {restored.height} rows at {output_path}")
