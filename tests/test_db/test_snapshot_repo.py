"""
Tests for SnapshotRepository.

What we test
------------
1. persist_success writes 1 snapshot row + 20 item rows; reads return them
   ordered by rank with the raw provider JSON intact.
2. A second success for the same date raises UniqueConstraintError and
   leaves the first untouched.
3. Error rows: any number per date, alongside a success.
4. Atomicity: an item insert failure rolls back the snapshot row.
5. get_item / get_latest_success / list_attempts ordering.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from stock_recommender.db.repositories.snapshot_repo import SnapshotRepository
from stock_recommender.errors import PersistenceError, UniqueConstraintError
from stock_recommender.models.snapshot import RecommendationItem, RecommendationSnapshot
from stock_recommender.recommendations.contract import validate_snapshot

AS_OF = date(2026, 1, 27)
FAILED_AT = datetime(2026, 1, 27, 7, 0, tzinfo=timezone.utc)


@pytest.fixture
def repo(in_memory_db) -> SnapshotRepository:
    return SnapshotRepository(in_memory_db)


@pytest.fixture
def snapshot(payload_factory) -> RecommendationSnapshot:
    return validate_snapshot(payload_factory(), AS_OF)


def _count(conn, table: str) -> int:
    return conn.execute(f"SELECT COUNT(*) FROM {table};").fetchone()[0]


# ── persist_success ───────────────────────────────────────────────────────────

class TestPersistSuccess:
    def test_writes_snapshot_and_items(self, repo, in_memory_db, snapshot):
        snapshot_id = repo.persist_success(snapshot, "anthropic", {"id": "msg_1"})

        assert _count(in_memory_db, "recommendation_snapshots") == 1
        assert repo.count_items(snapshot_id) == 20
        assert repo.success_exists(AS_OF)

    def test_read_back(self, repo, snapshot):
        snapshot_id = repo.persist_success(snapshot, "anthropic", {"id": "msg_1"})
        record = repo.get_success_snapshot(AS_OF)

        assert record is not None
        assert record.snapshot_id == snapshot_id
        assert record.is_success
        assert record.provider == "anthropic"
        assert record.error is None
        assert record.raw_llm_response == {"id": "msg_1"}
        assert record.generated_at == snapshot.generated_at
        assert record.created_at is not None
        assert [i.rank for i in record.items] == list(range(1, 21))
        assert record.items[0].rationale == snapshot.items[0].rationale
        assert record.items[0].confidence == 0.5

    def test_second_success_conflicts(self, repo, in_memory_db, snapshot):
        first_id = repo.persist_success(snapshot, "anthropic")

        with pytest.raises(UniqueConstraintError) as exc_info:
            repo.persist_success(snapshot, "anthropic")

        assert exc_info.value.as_of_date == AS_OF
        assert _count(in_memory_db, "recommendation_snapshots") == 1
        assert _count(in_memory_db, "recommendation_items") == 20
        assert repo.get_success_snapshot(AS_OF).snapshot_id == first_id

    def test_item_failure_rolls_back_snapshot(self, repo, in_memory_db, snapshot):
        # model_construct skips validation so the CHECK constraint is what fails.
        bad_item = RecommendationItem.model_construct(
            **{**snapshot.items[-1].model_dump(), "confidence": 2.0}
        )
        broken = RecommendationSnapshot.model_construct(
            as_of_date=snapshot.as_of_date,
            generated_at=snapshot.generated_at,
            items=[*snapshot.items[:-1], bad_item],
        )

        with pytest.raises(PersistenceError) as exc_info:
            repo.persist_success(broken, "anthropic")

        assert not isinstance(exc_info.value, UniqueConstraintError)
        assert _count(in_memory_db, "recommendation_snapshots") == 0
        assert _count(in_memory_db, "recommendation_items") == 0
        assert not repo.success_exists(AS_OF)


# ── persist_failure ───────────────────────────────────────────────────────────

class TestPersistFailure:
    def test_error_rows_unlimited(self, repo):
        for i in range(3):
            repo.persist_failure(AS_OF, FAILED_AT, "anthropic", f"boom {i}", {"raw_text": "x"})

        attempts = repo.list_attempts(AS_OF)
        assert len(attempts) == 3
        assert all(a.status == "error" for a in attempts)
        assert not repo.success_exists(AS_OF)

    def test_error_row_contents(self, repo):
        repo.persist_failure(AS_OF, FAILED_AT, "anthropic", "LLM error", {"raw_text": "oops"})
        attempt = repo.list_attempts(AS_OF)[0]

        assert attempt.error == "LLM error"
        assert attempt.raw_llm_response == {"raw_text": "oops"}
        assert attempt.generated_at == FAILED_AT
        assert attempt.items == []

    def test_error_then_success_both_kept(self, repo, snapshot):
        repo.persist_failure(AS_OF, FAILED_AT, "anthropic", "first try failed")
        repo.persist_success(snapshot, "anthropic")

        statuses = [a.status for a in repo.list_attempts(AS_OF)]
        assert statuses == ["error", "success"]


# ── Reads ─────────────────────────────────────────────────────────────────────

class TestReads:
    def test_missing_date_returns_none(self, repo):
        assert repo.get_success_snapshot(AS_OF) is None
        assert repo.get_latest_success() is None
        assert repo.list_attempts(AS_OF) == []

    def test_get_item_by_ticker(self, repo, snapshot):
        snapshot_id = repo.persist_success(snapshot, "anthropic")
        item = repo.get_item(AS_OF, "KRX:000007")

        assert item is not None
        assert item.rank == 7
        assert item.snapshot_id == snapshot_id
        assert repo.get_item(AS_OF, "KRX:999999") is None

    def test_get_item_ignores_error_rows(self, repo):
        repo.persist_failure(AS_OF, FAILED_AT, "anthropic", "boom")
        assert repo.get_item(AS_OF, "KRX:000001") is None

    def test_latest_success_by_date(self, repo, payload_factory):
        later = date(2026, 1, 28)
        repo.persist_success(validate_snapshot(payload_factory(as_of_date=later), later), "anthropic")
        repo.persist_success(validate_snapshot(payload_factory(), AS_OF), "anthropic")

        assert repo.get_latest_success().as_of_date == later
