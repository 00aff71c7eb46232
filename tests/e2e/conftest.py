"""Shared fixtures for end-to-end pipeline tests.

Data is generated deterministically as plain Python columns, written once
per session to Parquet/CSV, and read back by the pipelines under test. The
raw columns are exposed too, so tests can compute expected results in
plain Python.
"""

from __future__ import annotations

import random
from typing import Any

import pytest

import quarry as qr
from quarry.dtypes import Float64, Int64, List, String, Struct, UInt64

Columns = dict[str, list[Any]]

# ---------------------------------------------------------------------------
# Data generation helpers
# ---------------------------------------------------------------------------


def _make_users(n: int = 100) -> Columns:
    """Users with varied ages and scores; every tenth score is null."""
    rng = random.Random(42)
    return {
        "id": list(range(1, n + 1)),
        "name": [f"user_{i:03d}" for i in range(1, n + 1)],
        "age": [rng.randint(18, 65) for _ in range(n)],
        "score": [round(rng.uniform(0, 100), 2) if i % 10 != 0 else None for i in range(n)],
    }


def _make_orders(n: int = 200, max_user_id: int = 100) -> Columns:
    rng = random.Random(123)
    return {
        "order_id": list(range(1, n + 1)),
        "user_id": [rng.randint(1, max_user_id) for _ in range(n)],
        "amount": [round(rng.uniform(10, 500), 2) for _ in range(n)],
    }


def _make_products(n: int = 50) -> Columns:
    rng = random.Random(99)
    return {
        "product_id": list(range(1, n + 1)),
        "product_name": [f"product_{i}" for i in range(1, n + 1)],
        "price": [round(rng.uniform(5, 200), 2) for _ in range(n)],
    }


def _make_order_items(n: int = 300, max_order_id: int = 200, max_product_id: int = 50) -> Columns:
    rng = random.Random(77)
    return {
        "order_id": [rng.randint(1, max_order_id) for _ in range(n)],
        "product_id": [rng.randint(1, max_product_id) for _ in range(n)],
        "quantity": [rng.randint(1, 10) for _ in range(n)],
    }


def _make_profiles(n: int = 20) -> Columns:
    """Users with a struct address, a list of tags and a list of scores."""
    rng = random.Random(55)
    cities = ["New York", "Los Angeles", "Chicago", "Houston", "Phoenix"]
    all_tags = ["admin", "user", "editor", "viewer", "manager"]
    return {
        "id": list(range(1, n + 1)),
        "address": [
            {"street": f"{i * 100} Main St", "city": cities[i % len(cities)]} for i in range(n)
        ],
        "tags": [rng.sample(all_tags, k=rng.randint(1, 3)) for _ in range(n)],
        "scores": [
            [round(rng.uniform(0, 100), 1) for _ in range(rng.randint(1, 5))] for _ in range(n)
        ],
    }


def _make_nullable_users(n: int = 50) -> Columns:
    """Users with nulls in age (every fifth) and score (every third)."""
    rng = random.Random(33)
    return {
        "id": list(range(1, n + 1)),
        "name": [f"user_{i:03d}" for i in range(1, n + 1)],
        "age": [rng.randint(18, 65) if i % 5 != 0 else None for i in range(n)],
        "score": [round(rng.uniform(0, 100), 2) if i % 3 != 0 else None for i in range(n)],
    }


USERS_SCHEMA = qr.Schema({"id": UInt64, "name": String, "age": Int64, "score": Float64})
ORDERS_SCHEMA = qr.Schema({"order_id": UInt64, "user_id": UInt64, "amount": Float64})
PRODUCTS_SCHEMA = qr.Schema({"product_id": UInt64, "product_name": String, "price": Float64})
ORDER_ITEMS_SCHEMA = qr.Schema({"order_id": UInt64, "product_id": UInt64, "quantity": Int64})
PROFILES_SCHEMA = qr.Schema(
    {
        "id": UInt64,
        "address": Struct({"street": String, "city": String}),
        "tags": List(String),
        "scores": List(Float64),
    }
)


def _write(tmp_path_factory: pytest.TempPathFactory, name: str, data: Columns, schema: Any) -> str:
    path = str(tmp_path_factory.mktemp("data") / name)
    qr.write(qr.from_dict(data, schema, backend="polars"), path)
    return path


# ---------------------------------------------------------------------------
# Raw data fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def users_data() -> Columns:
    return _make_users()


@pytest.fixture(scope="session")
def orders_data() -> Columns:
    return _make_orders()


@pytest.fixture(scope="session")
def products_data() -> Columns:
    return _make_products()


@pytest.fixture(scope="session")
def order_items_data() -> Columns:
    return _make_order_items()


@pytest.fixture(scope="session")
def profiles_data() -> Columns:
    return _make_profiles()


@pytest.fixture(scope="session")
def nullable_users_data() -> Columns:
    return _make_nullable_users()


# ---------------------------------------------------------------------------
# File fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def users_parquet(tmp_path_factory: pytest.TempPathFactory, users_data: Columns) -> str:
    return _write(tmp_path_factory, "users.parquet", users_data, USERS_SCHEMA)


@pytest.fixture(scope="session")
def users_csv(tmp_path_factory: pytest.TempPathFactory, users_data: Columns) -> str:
    return _write(tmp_path_factory, "users.csv", users_data, USERS_SCHEMA)


@pytest.fixture(scope="session")
def orders_parquet(tmp_path_factory: pytest.TempPathFactory, orders_data: Columns) -> str:
    return _write(tmp_path_factory, "orders.parquet", orders_data, ORDERS_SCHEMA)


@pytest.fixture(scope="session")
def products_ipc(tmp_path_factory: pytest.TempPathFactory, products_data: Columns) -> str:
    return _write(tmp_path_factory, "products.arrow", products_data, PRODUCTS_SCHEMA)


@pytest.fixture(scope="session")
def order_items_parquet(
    tmp_path_factory: pytest.TempPathFactory, order_items_data: Columns
) -> str:
    return _write(tmp_path_factory, "order_items.parquet", order_items_data, ORDER_ITEMS_SCHEMA)


@pytest.fixture(scope="session")
def profiles_parquet(tmp_path_factory: pytest.TempPathFactory, profiles_data: Columns) -> str:
    return _write(tmp_path_factory, "profiles.parquet", profiles_data, PROFILES_SCHEMA)


@pytest.fixture(scope="session")
def nullable_users_parquet(
    tmp_path_factory: pytest.TempPathFactory, nullable_users_data: Columns
) -> str:
    return _write(tmp_path_factory, "nullable_users.parquet", nullable_users_data, USERS_SCHEMA)
