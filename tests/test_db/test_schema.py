"""Tests for SQLite schema and migrations: idempotency, tables, indexes, constraints."""

from __future__ import annotations

import sqlite3

import pytest

from stock_recommender.db.migrations import MIGRATIONS, run_migrations
from stock_recommender.db.schema import (
    ALL_TABLE_NAMES,
    apply_schema,
    get_existing_indexes,
    get_existing_tables,
)


class TestApplySchema:
    def test_all_tables_created(self, in_memory_db):
        tables = get_existing_tables(in_memory_db)
        for expected_table in ALL_TABLE_NAMES:
            assert expected_table in tables, (
                f"Expected table '{expected_table}' not found in database. "
                f"Found: {tables}"
            )

    def test_migration_tables_created(self, in_memory_db):
        tables = get_existing_tables(in_memory_db)
        for name in ("schema_versions", "stock_features_ingest_runs", "provider_access_tokens"):
            assert name in tables

    def test_idempotent_double_apply(self, in_memory_db):
        """apply_schema() and run_migrations() called again must not raise."""
        apply_schema(in_memory_db)
        assert run_migrations(in_memory_db) == 0
        assert set(ALL_TABLE_NAMES) <= set(get_existing_tables(in_memory_db))

    def test_all_migrations_recorded(self, in_memory_db):
        rows = in_memory_db.execute("SELECT version_id FROM schema_versions;").fetchall()
        assert {r["version_id"] for r in rows} == set(MIGRATIONS)

    def test_key_indexes_created(self, in_memory_db):
        indexes = get_existing_indexes(in_memory_db)
        for idx in (
            "uq_snapshots_success_per_date",
            "idx_snapshots_date",
            "uq_items_snapshot_rank",
            "uq_items_snapshot_ticker",
            "idx_items_ticker",
            "idx_features_date_value",
            "idx_ingest_runs_date",
        ):
            assert idx in indexes, f"Expected index '{idx}' not found. Found: {indexes}"


def _insert_snapshot(conn, snapshot_id: str, status: str, as_of: str = "2026-01-27") -> None:
    conn.execute(
        """
        INSERT INTO recommendation_snapshots (
            snapshot_id, as_of_date, generated_at, provider, status
        ) VALUES (?, ?, '2026-01-27T07:30:00Z', 'anthropic', ?);
        """,
        (snapshot_id, as_of, status),
    )


def _insert_item(conn, snapshot_id: str, rank: int = 1, **overrides) -> None:
    row = {
        "ticker": f"KRX:{rank:06d}",
        "name": "Company",
        "rationale": '["a", "b", "c"]',
        "confidence": 0.5,
    }
    row.update(overrides)
    conn.execute(
        """
        INSERT INTO recommendation_items (snapshot_id, rank, ticker, name, rationale, confidence)
        VALUES (?, ?, ?, ?, ?, ?);
        """,
        (snapshot_id, rank, row["ticker"], row["name"], row["rationale"], row["confidence"]),
    )


class TestSnapshotConstraints:
    def test_second_success_for_date_rejected(self, in_memory_db):
        _insert_snapshot(in_memory_db, "s1", "success")
        with pytest.raises(sqlite3.IntegrityError, match="recommendation_snapshots.as_of_date"):
            _insert_snapshot(in_memory_db, "s2", "success")

    def test_error_rows_unlimited(self, in_memory_db):
        _insert_snapshot(in_memory_db, "s1", "success")
        for i in range(3):
            _insert_snapshot(in_memory_db, f"e{i}", "error")
        n = in_memory_db.execute("SELECT COUNT(*) FROM recommendation_snapshots;").fetchone()[0]
        assert n == 4

    def test_success_on_other_date_allowed(self, in_memory_db):
        _insert_snapshot(in_memory_db, "s1", "success")
        _insert_snapshot(in_memory_db, "s2", "success", as_of="2026-01-28")

    def test_unknown_status_rejected(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            _insert_snapshot(in_memory_db, "s1", "pending")


class TestItemConstraints:
    def test_fk_enforcement_is_on(self, in_memory_db):
        row = in_memory_db.execute("PRAGMA foreign_keys;").fetchone()
        assert row[0] == 1

    def test_orphan_item_rejected(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            _insert_item(in_memory_db, "missing")

    @pytest.mark.parametrize("rank", [0, 21])
    def test_rank_range(self, in_memory_db, rank):
        _insert_snapshot(in_memory_db, "s1", "success")
        with pytest.raises(sqlite3.IntegrityError):
            _insert_item(in_memory_db, "s1", rank=rank)

    def test_duplicate_rank_rejected(self, in_memory_db):
        _insert_snapshot(in_memory_db, "s1", "success")
        _insert_item(in_memory_db, "s1", rank=1)
        with pytest.raises(sqlite3.IntegrityError):
            _insert_item(in_memory_db, "s1", rank=1, ticker="KRX:999999")

    def test_duplicate_ticker_rejected(self, in_memory_db):
        _insert_snapshot(in_memory_db, "s1", "success")
        _insert_item(in_memory_db, "s1", rank=1)
        with pytest.raises(sqlite3.IntegrityError):
            _insert_item(in_memory_db, "s1", rank=2, ticker="KRX:000001")

    @pytest.mark.parametrize("confidence", [-0.01, 1.01])
    def test_confidence_range(self, in_memory_db, confidence):
        _insert_snapshot(in_memory_db, "s1", "success")
        with pytest.raises(sqlite3.IntegrityError):
            _insert_item(in_memory_db, "s1", confidence=confidence)

    def test_rationale_must_have_three_lines(self, in_memory_db):
        _insert_snapshot(in_memory_db, "s1", "success")
        with pytest.raises(sqlite3.IntegrityError):
            _insert_item(in_memory_db, "s1", rationale='["a", "b"]')

    def test_items_cascade_with_snapshot(self, in_memory_db):
        _insert_snapshot(in_memory_db, "s1", "success")
        _insert_item(in_memory_db, "s1")
        in_memory_db.execute("DELETE FROM recommendation_snapshots WHERE snapshot_id = 's1';")
        n = in_memory_db.execute("SELECT COUNT(*) FROM recommendation_items;").fetchone()[0]
        assert n == 0
