"""
Repository for recommendation snapshots and their items.

Write side:
  ``persist_success()`` writes one snapshot row plus its 20 item rows in a
  single transaction. The partial unique index on ``as_of_date`` (success
  rows only) makes a second success for the same date fail; that failure is
  surfaced as ``UniqueConstraintError`` so callers can tell "someone else
  already committed" apart from real storage faults (``PersistenceError``).

  ``persist_failure()`` appends an error row; any number may exist per date.

Read side:
  success snapshot by date, latest success, one item by (date, ticker), and
  the full attempt history for a date.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime
from typing import Any, Optional
from uuid import uuid4

from stock_recommender.db.repositories.base import BaseRepository, from_json, to_json
from stock_recommender.errors import PersistenceError, UniqueConstraintError
from stock_recommender.models.snapshot import (
    RecommendationItemRecord,
    RecommendationSnapshot,
    SnapshotRecord,
)
from stock_recommender.utils.time_utils import format_utc, parse_utc

logger = logging.getLogger(__name__)

_SUCCESS_DATE_CONFLICT = "recommendation_snapshots.as_of_date"


def _is_success_date_conflict(exc: sqlite3.IntegrityError) -> bool:
    """True if ``exc`` came from the one-success-per-date index."""
    message = str(exc)
    if getattr(exc, "sqlite_errorname", None) not in (None, "SQLITE_CONSTRAINT_UNIQUE"):
        return False
    return "UNIQUE constraint failed" in message and _SUCCESS_DATE_CONFLICT in message


class SnapshotRepository(BaseRepository):
    """Persists and reads ``recommendation_snapshots`` / ``recommendation_items``."""

    # ── Write side ─────────────────────────────────────────────────────────────

    def persist_success(
        self,
        snapshot: RecommendationSnapshot,
        provider: str,
        raw_response: Optional[Any] = None,
    ) -> str:
        """Atomically write a success snapshot and its items.

        Args:
            snapshot: Validated snapshot (exactly 20 items).
            provider: Model provider name.
            raw_response: Raw provider JSON kept for audit.

        Returns:
            The new ``snapshot_id``.

        Raises:
            UniqueConstraintError: A success row already exists for the date.
            PersistenceError: Any other storage failure; nothing is written.
        """
        snapshot_id = str(uuid4())
        try:
            with self.transaction():
                self.execute(
                    """
                    INSERT INTO recommendation_snapshots (
                        snapshot_id, as_of_date, generated_at, provider,
                        status, error, raw_llm_response
                    ) VALUES (?, ?, ?, ?, 'success', NULL, ?);
                    """,
                    (
                        snapshot_id,
                        snapshot.as_of_date.isoformat(),
                        format_utc(snapshot.generated_at),
                        provider,
                        to_json(raw_response),
                    ),
                )
                self.executemany(
                    """
                    INSERT INTO recommendation_items (
                        snapshot_id, rank, ticker, name, rationale,
                        risk_notes, confidence
                    ) VALUES (?, ?, ?, ?, ?, ?, ?);
                    """,
                    [
                        (
                            snapshot_id,
                            item.rank,
                            item.ticker,
                            item.name,
                            to_json(item.rationale),
                            item.risk_notes,
                            item.confidence,
                        )
                        for item in snapshot.items
                    ],
                )
        except sqlite3.IntegrityError as exc:
            if _is_success_date_conflict(exc):
                raise UniqueConstraintError(snapshot.as_of_date) from exc
            raise PersistenceError(f"persist_success integrity error: {exc}") from exc
        except sqlite3.Error as exc:
            raise PersistenceError(f"persist_success failed: {exc}") from exc

        logger.info(
            "Persisted success snapshot %s for %s (%d items)",
            snapshot_id, snapshot.as_of_date, len(snapshot.items),
        )
        return snapshot_id

    def persist_failure(
        self,
        as_of_date: date,
        generated_at: datetime,
        provider: str,
        error: str,
        raw_response: Optional[Any] = None,
    ) -> str:
        """Append an error-status attempt row.

        Returns:
            The new ``snapshot_id``.

        Raises:
            PersistenceError: If the row cannot be written.
        """
        snapshot_id = str(uuid4())
        try:
            with self.transaction():
                self.execute(
                    """
                    INSERT INTO recommendation_snapshots (
                        snapshot_id, as_of_date, generated_at, provider,
                        status, error, raw_llm_response
                    ) VALUES (?, ?, ?, ?, 'error', ?, ?);
                    """,
                    (
                        snapshot_id,
                        as_of_date.isoformat(),
                        format_utc(generated_at),
                        provider,
                        error,
                        to_json(raw_response),
                    ),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"persist_failure failed: {exc}") from exc

        logger.info("Recorded failed attempt %s for %s", snapshot_id, as_of_date)
        return snapshot_id

    # ── Read side ──────────────────────────────────────────────────────────────

    def success_exists(self, as_of_date: date) -> bool:
        row = self.fetchone(
            """
            SELECT 1 FROM recommendation_snapshots
            WHERE as_of_date = ? AND status = 'success'
            LIMIT 1;
            """,
            (as_of_date.isoformat(),),
        )
        return row is not None

    def get_success_snapshot(self, as_of_date: date) -> Optional[SnapshotRecord]:
        """Return the success snapshot (with items) for a date, or ``None``."""
        row = self.fetchone(
            """
            SELECT * FROM recommendation_snapshots
            WHERE as_of_date = ? AND status = 'success';
            """,
            (as_of_date.isoformat(),),
        )
        if row is None:
            return None
        return _row_to_snapshot(row, self._items_for(row["snapshot_id"]))

    def get_latest_success(self) -> Optional[SnapshotRecord]:
        """Return the success snapshot with the most recent as-of date."""
        row = self.fetchone(
            """
            SELECT * FROM recommendation_snapshots
            WHERE status = 'success'
            ORDER BY as_of_date DESC
            LIMIT 1;
            """
        )
        if row is None:
            return None
        return _row_to_snapshot(row, self._items_for(row["snapshot_id"]))

    def get_item(self, as_of_date: date, ticker: str) -> Optional[RecommendationItemRecord]:
        """Return one item of the date's success snapshot by ticker."""
        row = self.fetchone(
            """
            SELECT i.*
            FROM recommendation_items i
            JOIN recommendation_snapshots s ON s.snapshot_id = i.snapshot_id
            WHERE s.as_of_date = ? AND s.status = 'success' AND i.ticker = ?;
            """,
            (as_of_date.isoformat(), ticker),
        )
        return _row_to_item(row) if row else None

    def list_attempts(self, as_of_date: date) -> list[SnapshotRecord]:
        """All attempts for a date (success and error), oldest first, without items."""
        rows = self.fetchall(
            """
            SELECT * FROM recommendation_snapshots
            WHERE as_of_date = ?
            ORDER BY created_at ASC, rowid ASC;
            """,
            (as_of_date.isoformat(),),
        )
        return [_row_to_snapshot(r, []) for r in rows]

    def count_items(self, snapshot_id: str) -> int:
        row = self.fetchone(
            "SELECT COUNT(*) AS n FROM recommendation_items WHERE snapshot_id = ?;",
            (snapshot_id,),
        )
        return int(row["n"]) if row else 0

    def _items_for(self, snapshot_id: str) -> list[RecommendationItemRecord]:
        rows = self.fetchall(
            "SELECT * FROM recommendation_items WHERE snapshot_id = ? ORDER BY rank ASC;",
            (snapshot_id,),
        )
        return [_row_to_item(r) for r in rows]


# ── Row mappers ───────────────────────────────────────────────────────────────

def _row_to_item(row) -> RecommendationItemRecord:
    return RecommendationItemRecord(
        snapshot_id=row["snapshot_id"],
        rank=row["rank"],
        ticker=row["ticker"],
        name=row["name"],
        rationale=from_json(row["rationale"]),
        risk_notes=row["risk_notes"],
        confidence=row["confidence"],
    )


def _row_to_snapshot(row, items: list[RecommendationItemRecord]) -> SnapshotRecord:
    return SnapshotRecord(
        snapshot_id=row["snapshot_id"],
        as_of_date=date.fromisoformat(row["as_of_date"]),
        generated_at=parse_utc(row["generated_at"]),
        provider=row["provider"],
        status=row["status"],
        error=row["error"],
        raw_llm_response=from_json(row["raw_llm_response"]),
        created_at=parse_utc(row["created_at"]) if row["created_at"] else None,
        items=items,
    )
