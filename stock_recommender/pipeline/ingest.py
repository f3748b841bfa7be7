"""
FeatureIngestStage — load one date of features into ``stock_features_daily``.

Sources:
  stub      deterministic rows from ``build_stub_features`` (no network).
  http      ``HttpJsonFeatureProvider`` against ``[feature_provider] base_url``,
            authenticated with DATA_PROVIDER_API_KEY and, when ``token_url``
            and client credentials are set, a bearer token from ``TokenCache``.

Every run writes a ``stock_features_ingest_runs`` row: inserted as
``started`` before any work, then updated to ``success`` (rows upserted,
raw provider JSON) or ``error`` (error text). All feature rows of a run are
upserted in a single transaction, in ``upsert_batch_size`` batches, so a
failed run leaves the table unchanged.

Usage::

    stage = FeatureIngestStage(config=app_config)
    run = stage.run(as_of_date=date(2026, 1, 27), stub=True, size=500)
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional
from uuid import uuid4

from stock_recommender.config import (
    ENV_DATA_PROVIDER_API_KEY,
    ENV_DATA_PROVIDER_CLIENT_ID,
    ENV_DATA_PROVIDER_CLIENT_SECRET,
    AppConfig,
    get_secret,
)
from stock_recommender.db.connection import get_connection
from stock_recommender.db.repositories.feature_repo import FeatureRepository, IngestRunRepository
from stock_recommender.ingestion.feature_provider import FeatureBatch, HttpJsonFeatureProvider
from stock_recommender.ingestion.stub_features import STUB_PROVIDER_NAME, build_stub_features
from stock_recommender.ingestion.token_cache import TokenCache
from stock_recommender.models.meta import IngestRun
from stock_recommender.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class FeatureIngestStage:
    """Fetch (or synthesize) features for a date and upsert them.

    Attributes:
        config: The application configuration.
        db_path: SQLite path (defaults to ``config.database.db_path``).
        provider: Optional pre-built HTTP provider; built from config and
            environment secrets on first use when ``None``.
    """

    stage_name = "ingest_features"

    def __init__(
        self,
        config: AppConfig,
        db_path: Optional[str] = None,
        provider: Optional[HttpJsonFeatureProvider] = None,
    ) -> None:
        self.config = config
        self.db_path = db_path or config.database.db_path
        self.provider = provider

    def _connect(self):
        return get_connection(
            self.db_path,
            wal_mode=self.config.database.wal_mode,
            busy_timeout_ms=self.config.database.busy_timeout_ms,
        )

    def run(
        self,
        as_of_date: date,
        stub: bool = False,
        size: Optional[int] = None,
    ) -> IngestRun:
        """Execute one ingest.

        Args:
            as_of_date: Trading date to ingest.
            stub: Use synthetic rows instead of the HTTP feed.
            size: Stub row count (defaults to ``feature_provider.stub_size``).

        Returns:
            The finalized ``IngestRun``.

        Raises:
            Exception: Re-raises any fetch or storage error after recording
                ``status='error'`` in the run row.
        """
        run = IngestRun(
            run_id=str(uuid4()),
            as_of_date=as_of_date,
            generated_at=utcnow(),
            provider=STUB_PROVIDER_NAME if stub else HttpJsonFeatureProvider.provider_name,
        )
        logger.info(
            "Stage [%s] starting | as_of_date=%s provider=%s run_id=%s",
            self.stage_name, as_of_date, run.provider, run.run_id,
        )
        self._persist_run(run, insert=True)

        try:
            if stub:
                records = build_stub_features(
                    as_of_date,
                    size or self.config.feature_provider.stub_size,
                    self.config.market.ticker_prefix,
                )
            else:
                batch = self._fetch(as_of_date)
                records = batch.records
                run.raw_response = batch.raw_json

            with self._connect() as conn:
                run.rows_upserted = FeatureRepository(conn).upsert_many(
                    records, batch_size=self.config.feature_provider.upsert_batch_size
                )
            run.status = "success"
            logger.info(
                "Stage [%s] completed | rows=%d | run_id=%s",
                self.stage_name, run.rows_upserted, run.run_id,
            )

        except Exception as exc:
            run.status = "error"
            run.error = str(exc)
            logger.error(
                "Stage [%s] FAILED: %s | run_id=%s", self.stage_name, exc, run.run_id
            )
            self._persist_run(run)
            raise

        self._persist_run(run)
        return run

    def _fetch(self, as_of_date: date) -> FeatureBatch:
        if self.provider is not None:
            return self.provider.fetch_daily_features(as_of_date)

        fp = self.config.feature_provider
        client_id = get_secret(ENV_DATA_PROVIDER_CLIENT_ID)
        client_secret = get_secret(ENV_DATA_PROVIDER_CLIENT_SECRET)

        with self._connect() as token_conn:
            token_cache = None
            if fp.token_url and client_id and client_secret:
                token_cache = TokenCache(
                    token_url=fp.token_url,
                    client_id=client_id,
                    client_secret=client_secret,
                    conn=token_conn,
                    refresh_margin_s=fp.token_refresh_margin_s,
                )
            with HttpJsonFeatureProvider(
                fp,
                api_key=get_secret(ENV_DATA_PROVIDER_API_KEY),
                token_cache=token_cache,
            ) as provider:
                return provider.fetch_daily_features(as_of_date)

    def _persist_run(self, run: IngestRun, insert: bool = False) -> None:
        """Write or update the run row. Logs rather than raises."""
        try:
            with self._connect() as conn:
                repo = IngestRunRepository(conn)
                if insert:
                    repo.insert_run(run)
                else:
                    repo.update_run(run)
        except Exception as exc:
            logger.error("Failed to persist IngestRun run_id=%s: %s", run.run_id, exc)
