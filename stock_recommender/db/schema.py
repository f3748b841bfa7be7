"""
SQLite schema DDL — CREATE TABLE and CREATE INDEX statements.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is **idempotent**:
safe to call on an already-initialized database (e.g. after restart or in tests).

Table creation order respects foreign key dependencies:
  1. stock_features_daily      (no FKs)
  2. recommendation_snapshots  (no FKs)
  3. recommendation_items      (→ recommendation_snapshots)

Constraints carried by the store rather than by application code:
  - at most one ``status = 'success'`` snapshot per ``as_of_date``
    (partial unique index ``uq_snapshots_success_per_date``);
  - item rank in 1..20, unique per snapshot;
  - item ticker unique per snapshot;
  - exactly three rationale lines (JSON array);
  - confidence NULL or within [0, 1].

Later tables (ingest audit, token cache) are added by ``migrations.py``.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_STOCK_FEATURES_DAILY = """
CREATE TABLE IF NOT EXISTS stock_features_daily (
    as_of_date      TEXT    NOT NULL,
    ticker          TEXT    NOT NULL CHECK (length(trim(ticker)) > 0),
    name            TEXT    NOT NULL CHECK (length(trim(name)) > 0),
    trading_value   REAL,
    features        TEXT    NOT NULL DEFAULT '{}',
    updated_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    PRIMARY KEY (as_of_date, ticker)
);

CREATE INDEX IF NOT EXISTS idx_features_date_value
    ON stock_features_daily(as_of_date, trading_value DESC);
"""

_DDL_RECOMMENDATION_SNAPSHOTS = """
CREATE TABLE IF NOT EXISTS recommendation_snapshots (
    snapshot_id       TEXT    NOT NULL PRIMARY KEY,
    as_of_date        TEXT    NOT NULL,
    generated_at      TEXT    NOT NULL,
    provider          TEXT    NOT NULL,
    status            TEXT    NOT NULL CHECK (status IN ('success', 'error')),
    error             TEXT,
    raw_llm_response  TEXT,
    created_at        TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_snapshots_success_per_date
    ON recommendation_snapshots(as_of_date)
    WHERE status = 'success';

CREATE INDEX IF NOT EXISTS idx_snapshots_date
    ON recommendation_snapshots(as_of_date, created_at);
"""

_DDL_RECOMMENDATION_ITEMS = """
CREATE TABLE IF NOT EXISTS recommendation_items (
    item_id       INTEGER PRIMARY KEY AUTOINCREMENT,
    snapshot_id   TEXT    NOT NULL
                  REFERENCES recommendation_snapshots(snapshot_id) ON DELETE CASCADE,
    rank          INTEGER NOT NULL CHECK (rank BETWEEN 1 AND 20),
    ticker        TEXT    NOT NULL CHECK (length(trim(ticker)) > 0),
    name          TEXT    NOT NULL CHECK (length(trim(name)) > 0),
    rationale     TEXT    NOT NULL CHECK (json_array_length(rationale) = 3),
    risk_notes    TEXT,
    confidence    REAL    CHECK (confidence IS NULL OR (confidence >= 0 AND confidence <= 1)),
    created_at    TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_items_snapshot_rank
    ON recommendation_items(snapshot_id, rank);

CREATE UNIQUE INDEX IF NOT EXISTS uq_items_snapshot_ticker
    ON recommendation_items(snapshot_id, ticker);

CREATE INDEX IF NOT EXISTS idx_items_ticker
    ON recommendation_items(ticker);
"""

_ALL_DDL: list[str] = [
    _DDL_STOCK_FEATURES_DAILY,
    _DDL_RECOMMENDATION_SNAPSHOTS,
    _DDL_RECOMMENDATION_ITEMS,
]

ALL_TABLE_NAMES = [
    "stock_features_daily",
    "recommendation_snapshots",
    "recommendation_items",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.

    Idempotent — safe to call on an already-initialized database.

    Args:
        conn: An open ``sqlite3.Connection`` (FK enforcement should be ON).
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return table names present in the database, sorted alphabetically."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]


def get_existing_indexes(conn: sqlite3.Connection) -> list[str]:
    """Return index names present in the database, sorted alphabetically."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
