"""
Sequential schema migrations.

Not a migration framework: no down migrations, no branching.

  1. A ``schema_versions`` table tracks applied migration IDs.
  2. Each migration is a function taking a ``sqlite3.Connection``.
  3. ``run_migrations()`` applies, in ``MIGRATIONS`` order, any migration
     not yet recorded.

The core tables come from ``apply_schema()`` in ``schema.py``, which must
run first. Migrations add everything introduced after the core layout.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable

logger = logging.getLogger(__name__)

MigrationFn = Callable[[sqlite3.Connection], None]


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    """Create the ``schema_versions`` tracking table if it does not exist."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_versions (
            version_id  TEXT    NOT NULL PRIMARY KEY,
            applied_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
            description TEXT
        );
    """)
    conn.commit()


def _get_applied_versions(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute("SELECT version_id FROM schema_versions;").fetchall()
    return {row[0] for row in rows}


def _mark_applied(conn: sqlite3.Connection, version_id: str, description: str) -> None:
    conn.execute(
        "INSERT INTO schema_versions(version_id, description) VALUES (?, ?);",
        (version_id, description),
    )
    conn.commit()


# ── Migration functions ────────────────────────────────────────────────────────

def migration_0001_baseline(conn: sqlite3.Connection) -> None:
    """Baseline marker; the core tables are created by ``apply_schema()``."""


def migration_0002_add_ingest_runs(conn: sqlite3.Connection) -> None:
    """Add the feature-ingest audit table."""
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS stock_features_ingest_runs (
            run_id          TEXT    NOT NULL PRIMARY KEY,
            as_of_date      TEXT    NOT NULL,
            generated_at    TEXT    NOT NULL,
            provider        TEXT    NOT NULL,
            status          TEXT    NOT NULL
                            CHECK (status IN ('started', 'success', 'error')),
            rows_upserted   INTEGER NOT NULL DEFAULT 0,
            error           TEXT,
            raw_response    TEXT,
            created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
        );

        CREATE INDEX IF NOT EXISTS idx_ingest_runs_date
            ON stock_features_ingest_runs(as_of_date, generated_at DESC);
    """)
    conn.commit()


def migration_0003_add_provider_access_tokens(conn: sqlite3.Connection) -> None:
    """Add the shared bearer-token cache for the feature provider."""
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS provider_access_tokens (
            cache_key       TEXT    NOT NULL PRIMARY KEY,
            access_token    TEXT    NOT NULL,
            expires_at      TEXT    NOT NULL,
            issued_at       TEXT    NOT NULL,
            updated_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
        );
    """)
    conn.commit()


MIGRATIONS: dict[str, tuple[MigrationFn, str]] = {
    "0001_baseline": (
        migration_0001_baseline,
        "Baseline: core feature and snapshot tables from apply_schema()",
    ),
    "0002_ingest_runs": (
        migration_0002_add_ingest_runs,
        "Add stock_features_ingest_runs audit table",
    ),
    "0003_provider_access_tokens": (
        migration_0003_add_provider_access_tokens,
        "Add provider_access_tokens shared token cache",
    ),
}


def run_migrations(conn: sqlite3.Connection) -> int:
    """Apply all pending migrations.

    Args:
        conn: An open ``sqlite3.Connection`` with FK enforcement enabled.

    Returns:
        Number of migrations applied in this call.
    """
    _ensure_version_table(conn)
    applied = _get_applied_versions(conn)

    count = 0
    for version_id, (fn, description) in MIGRATIONS.items():
        if version_id in applied:
            logger.debug("Migration %s already applied; skipping.", version_id)
            continue

        logger.info("Applying migration %s: %s", version_id, description)
        try:
            fn(conn)
            _mark_applied(conn, version_id, description)
            count += 1
        except Exception as exc:
            conn.rollback()
            logger.error("Migration %s FAILED: %s", version_id, exc)
            raise

    if count:
        logger.info("Applied %d migration(s).", count)
    else:
        logger.debug("No pending migrations.")

    return count
