"""
Tests for FeatureRepository, IngestRunRepository and AccessTokenRepository.

What we test
------------
1. upsert_many inserts, then replaces on (as_of_date, ticker).
2. list_features ordering: trading value desc, NULLs last, ticker asc;
   limit and minimum-trading-value floor.
3. Ingest audit rows: insert, update, latest, list.
4. Access-token cache rows: missing, save, overwrite.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest

from stock_recommender.db.repositories.feature_repo import FeatureRepository, IngestRunRepository
from stock_recommender.db.repositories.token_repo import AccessTokenRepository
from stock_recommender.models.feature import FeatureRecord
from stock_recommender.models.meta import AccessToken, IngestRun

AS_OF = date(2026, 1, 27)
T0 = datetime(2026, 1, 27, 6, 0, tzinfo=timezone.utc)


def _record(ticker: str, trading_value, name: str = "Co", **features) -> FeatureRecord:
    return FeatureRecord(
        as_of_date=AS_OF,
        ticker=ticker,
        name=name,
        trading_value=trading_value,
        features=features or {"ret_1d": 0.01},
    )


# ── Features ──────────────────────────────────────────────────────────────────

class TestFeatureRepository:
    def test_upsert_and_count(self, in_memory_db, feature_records_factory):
        repo = FeatureRepository(in_memory_db)
        assert repo.upsert_many(feature_records_factory(25), batch_size=10) == 25
        assert repo.count_for_date(AS_OF) == 25

    def test_upsert_replaces(self, in_memory_db):
        repo = FeatureRepository(in_memory_db)
        repo.upsert_many([_record("KRX:000001", 1e6, name="Old", ret_1d=0.01)])
        repo.upsert_many([_record("KRX:000001", 2e6, name="New", ret_1d=-0.02)])

        assert repo.count_for_date(AS_OF) == 1
        row = repo.get(AS_OF, "KRX:000001")
        assert row.name == "New"
        assert row.trading_value == 2e6
        assert row.features == {"ret_1d": -0.02}

    def test_batch_size_validated(self, in_memory_db):
        with pytest.raises(ValueError):
            FeatureRepository(in_memory_db).upsert_many([], batch_size=0)

    def test_ordering(self, in_memory_db):
        repo = FeatureRepository(in_memory_db)
        repo.upsert_many([
            _record("KRX:000003", None),
            _record("KRX:000002", 5e8),
            _record("KRX:000001", 5e8),
            _record("KRX:000004", 9e8),
        ])
        tickers = [r.ticker for r in repo.list_features(AS_OF, limit=10)]
        assert tickers == ["KRX:000004", "KRX:000001", "KRX:000002", "KRX:000003"]

    def test_limit_and_floor(self, in_memory_db):
        repo = FeatureRepository(in_memory_db)
        repo.upsert_many([
            _record("KRX:000001", 3e9),
            _record("KRX:000002", 2e9),
            _record("KRX:000003", 1e8),
            _record("KRX:000004", None),
        ])
        assert len(repo.list_features(AS_OF, limit=2)) == 2
        floored = repo.list_features(AS_OF, limit=10, min_trading_value=1e9)
        assert [r.ticker for r in floored] == ["KRX:000001", "KRX:000002"]

    def test_zero_limit(self, in_memory_db, feature_records_factory):
        repo = FeatureRepository(in_memory_db)
        repo.upsert_many(feature_records_factory(3))
        assert repo.list_features(AS_OF, limit=0) == []

    def test_other_dates_isolated(self, in_memory_db, feature_records_factory):
        repo = FeatureRepository(in_memory_db)
        repo.upsert_many(feature_records_factory(5, as_of_date=date(2026, 1, 26)))
        assert repo.list_features(AS_OF, limit=10) == []


# ── Ingest runs ───────────────────────────────────────────────────────────────

def _run(generated_at: datetime = T0, provider: str = "stub") -> IngestRun:
    return IngestRun(run_id=str(uuid4()), as_of_date=AS_OF, generated_at=generated_at, provider=provider)


class TestIngestRunRepository:
    def test_insert_then_update(self, in_memory_db):
        repo = IngestRunRepository(in_memory_db)
        run = _run()
        repo.insert_run(run)
        assert repo.get_latest(AS_OF).status == "started"

        run.status = "success"
        run.rows_upserted = 500
        run.raw_response = {"items": []}
        repo.update_run(run)

        latest = repo.get_latest(AS_OF)
        assert latest.run_id == run.run_id
        assert latest.status == "success"
        assert latest.rows_upserted == 500
        assert latest.raw_response == {"items": []}

    def test_latest_and_list_order(self, in_memory_db):
        repo = IngestRunRepository(in_memory_db)
        early, late = _run(T0), _run(T0 + timedelta(hours=1))
        repo.insert_run(late)
        repo.insert_run(early)

        assert repo.get_latest(AS_OF).run_id == late.run_id
        assert [r.run_id for r in repo.list_runs(AS_OF)] == [early.run_id, late.run_id]

    def test_missing_date(self, in_memory_db):
        assert IngestRunRepository(in_memory_db).get_latest(AS_OF) is None


# ── Access tokens ─────────────────────────────────────────────────────────────

class TestAccessTokenRepository:
    def test_missing_key(self, in_memory_db):
        assert AccessTokenRepository(in_memory_db).load("default") is None

    def test_save_and_overwrite(self, in_memory_db):
        repo = AccessTokenRepository(in_memory_db)
        first = AccessToken(access_token="a", expires_at=T0 + timedelta(hours=1), issued_at=T0)
        second = AccessToken(access_token="b", expires_at=T0 + timedelta(hours=2), issued_at=T0)

        repo.save("default", first)
        repo.save("default", second)

        loaded = repo.load("default")
        assert loaded == second
        assert repo.load("other") is None
