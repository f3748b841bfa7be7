"""
Repositories for the local feature table and its ingest audit log.

``FeatureRepository.list_features()`` is the only read the universe
builder needs: a bounded, deterministically ordered slice of one date's
rows (trading value descending, NULLs last, ticker ascending).
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from stock_recommender.db.repositories.base import BaseRepository, from_json, to_json
from stock_recommender.models.feature import FeatureRecord
from stock_recommender.models.meta import IngestRun
from stock_recommender.utils.time_utils import format_utc, parse_utc

logger = logging.getLogger(__name__)


class FeatureRepository(BaseRepository):
    """CRUD for ``stock_features_daily``."""

    _UPSERT_SQL = """
        INSERT INTO stock_features_daily (
            as_of_date, ticker, name, trading_value, features, updated_at
        ) VALUES (?, ?, ?, ?, ?, strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
        ON CONFLICT(as_of_date, ticker) DO UPDATE SET
            name          = excluded.name,
            trading_value = excluded.trading_value,
            features      = excluded.features,
            updated_at    = excluded.updated_at;
    """

    def upsert_many(self, records: list[FeatureRecord], batch_size: int = 200) -> int:
        """Insert or replace feature rows in one transaction.

        Args:
            records: Rows to write; ``(as_of_date, ticker)`` is the key.
            batch_size: Rows per ``executemany`` call.

        Returns:
            Number of rows written.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}.")

        params = [
            (
                r.as_of_date.isoformat(),
                r.ticker,
                r.name,
                r.trading_value,
                to_json(r.features),
            )
            for r in records
        ]
        with self.transaction():
            for start in range(0, len(params), batch_size):
                self.executemany(self._UPSERT_SQL, params[start:start + batch_size])
        return len(params)

    def list_features(
        self,
        as_of_date: date,
        limit: int,
        min_trading_value: Optional[float] = None,
    ) -> list[FeatureRecord]:
        """Return up to ``limit`` rows for a date, most liquid first.

        Args:
            as_of_date: Trading date to read.
            limit: Maximum rows returned.
            min_trading_value: If set, rows below it (or with unknown
                trading value) are excluded.

        Returns:
            Rows ordered by trading value descending (NULLs last), then
            ticker ascending.
        """
        if limit < 1:
            return []

        where = "WHERE as_of_date = ?"
        params: list = [as_of_date.isoformat()]
        if min_trading_value is not None:
            where += " AND trading_value >= ?"
            params.append(min_trading_value)
        params.append(limit)

        rows = self.fetchall(
            f"""
            SELECT as_of_date, ticker, name, trading_value, features
            FROM stock_features_daily
            {where}
            ORDER BY trading_value IS NULL, trading_value DESC, ticker ASC
            LIMIT ?;
            """,
            tuple(params),
        )
        return [_row_to_feature(r) for r in rows]

    def count_for_date(self, as_of_date: date) -> int:
        row = self.fetchone(
            "SELECT COUNT(*) AS n FROM stock_features_daily WHERE as_of_date = ?;",
            (as_of_date.isoformat(),),
        )
        return int(row["n"]) if row else 0

    def get(self, as_of_date: date, ticker: str) -> Optional[FeatureRecord]:
        row = self.fetchone(
            """
            SELECT as_of_date, ticker, name, trading_value, features
            FROM stock_features_daily
            WHERE as_of_date = ? AND ticker = ?;
            """,
            (as_of_date.isoformat(), ticker),
        )
        return _row_to_feature(row) if row else None


class IngestRunRepository(BaseRepository):
    """Writes and reads ``stock_features_ingest_runs`` audit rows."""

    def insert_run(self, run: IngestRun) -> None:
        self.execute(
            """
            INSERT INTO stock_features_ingest_runs (
                run_id, as_of_date, generated_at, provider, status,
                rows_upserted, error, raw_response
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                run.run_id,
                run.as_of_date.isoformat(),
                format_utc(run.generated_at),
                run.provider,
                run.status,
                run.rows_upserted,
                run.error,
                to_json(run.raw_response),
            ),
        )
        self.conn.commit()

    def update_run(self, run: IngestRun) -> None:
        self.execute(
            """
            UPDATE stock_features_ingest_runs
            SET status = ?, rows_upserted = ?, error = ?, raw_response = ?
            WHERE run_id = ?;
            """,
            (run.status, run.rows_upserted, run.error, to_json(run.raw_response), run.run_id),
        )
        self.conn.commit()

    def get_latest(self, as_of_date: date) -> Optional[IngestRun]:
        row = self.fetchone(
            """
            SELECT * FROM stock_features_ingest_runs
            WHERE as_of_date = ?
            ORDER BY generated_at DESC, rowid DESC
            LIMIT 1;
            """,
            (as_of_date.isoformat(),),
        )
        return _row_to_ingest_run(row) if row else None

    def list_runs(self, as_of_date: date) -> list[IngestRun]:
        rows = self.fetchall(
            """
            SELECT * FROM stock_features_ingest_runs
            WHERE as_of_date = ?
            ORDER BY generated_at ASC, rowid ASC;
            """,
            (as_of_date.isoformat(),),
        )
        return [_row_to_ingest_run(r) for r in rows]


# ── Row mappers ───────────────────────────────────────────────────────────────

def _row_to_feature(row) -> FeatureRecord:
    return FeatureRecord(
        as_of_date=date.fromisoformat(row["as_of_date"]),
        ticker=row["ticker"],
        name=row["name"],
        trading_value=row["trading_value"],
        features=from_json(row["features"]) or {},
    )


def _row_to_ingest_run(row) -> IngestRun:
    return IngestRun(
        run_id=row["run_id"],
        as_of_date=date.fromisoformat(row["as_of_date"]),
        generated_at=parse_utc(row["generated_at"]),
        provider=row["provider"],
        status=row["status"],
        rows_upserted=row["rows_upserted"],
        error=row["error"],
        raw_response=from_json(row["raw_response"]),
    )
