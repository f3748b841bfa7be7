"""
Shared pytest fixtures for the stock recommender test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema and all migrations applied. Created anew for each test.
  - ``app_config`` / ``db_file``: an ``AppConfig`` pointing at a temporary
    on-disk database (initialized) and lock directory, for code that opens
    its own connections.
  - Payload and record factories shared across test modules.
"""

from __future__ import annotations

import sqlite3
from datetime import date
from typing import Any, Generator, Optional

import pytest

from stock_recommender.config import AppConfig, DatabaseConfig
from stock_recommender.db.connection import get_connection
from stock_recommender.db.migrations import run_migrations
from stock_recommender.db.schema import apply_schema
from stock_recommender.models.feature import FeatureRecord

AS_OF = date(2026, 1, 27)


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON. Schema and migrations are applied
    idempotently. Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    run_migrations(conn)
    yield conn
    conn.close()


@pytest.fixture
def db_file(tmp_path) -> str:
    """Path of an initialized on-disk database under ``tmp_path``."""
    path = str(tmp_path / "db" / "test.db")
    with get_connection(path) as conn:
        apply_schema(conn)
        run_migrations(conn)
    return path


@pytest.fixture
def app_config(tmp_path, db_file) -> AppConfig:
    """``AppConfig`` whose database and lock directory live under ``tmp_path``."""
    return AppConfig(
        database=DatabaseConfig(db_path=db_file, lock_dir=str(tmp_path / "locks")),
    )


# ── Factories ─────────────────────────────────────────────────────────────────

def make_item(rank: int, **overrides: Any) -> dict[str, Any]:
    """One valid external-format recommendation item."""
    item: dict[str, Any] = {
        "rank": rank,
        "ticker": f"KRX:{rank:06d}",
        "name": f"Company {rank}",
        "rationale": [
            f"Liquidity rank {rank} in the candidate set.",
            "Positive one-day return.",
            "Momentum above sector median.",
        ],
        "risk_notes": "Earnings next week.",
        "confidence": 0.5,
    }
    item.update(overrides)
    return item


def make_payload(
    as_of_date: date = AS_OF,
    items: Optional[list[dict[str, Any]]] = None,
    generated_at: str = "2026-01-27T07:30:00Z",
) -> dict[str, Any]:
    """A valid external-format snapshot payload (20 items unless given)."""
    return {
        "as_of_date": as_of_date.isoformat(),
        "generated_at": generated_at,
        "items": items if items is not None else [make_item(r) for r in range(1, 21)],
    }


def make_feature_records(
    n: int,
    as_of_date: date = AS_OF,
    name_fn=lambda i: f"Company {i:04d}",
) -> list[FeatureRecord]:
    """``n`` feature rows with strictly descending trading value."""
    return [
        FeatureRecord(
            as_of_date=as_of_date,
            ticker=f"KRX:{i:06d}",
            name=name_fn(i),
            trading_value=float((n - i + 1) * 1_000_000),
            features={"ret_1d": 0.0, "mom_5d": 0.01},
        )
        for i in range(1, n + 1)
    ]


@pytest.fixture
def sample_payload() -> dict[str, Any]:
    """A valid snapshot payload for ``AS_OF``."""
    return make_payload()


@pytest.fixture
def item_factory():
    """``make_item`` as a fixture."""
    return make_item


@pytest.fixture
def payload_factory():
    """``make_payload`` as a fixture."""
    return make_payload


@pytest.fixture
def feature_records_factory():
    """``make_feature_records`` as a fixture."""
    return make_feature_records
