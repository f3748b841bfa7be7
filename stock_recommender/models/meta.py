"""
Operational metadata models.

``IngestRun`` is the audit record of one feature-ingest attempt, written
whether the upstream fetch succeeded or not. It is the only mutable model
in the package: ``status``, ``rows_upserted``, ``error`` and
``raw_response`` are filled in as the ingest stage progresses.

``AccessToken`` is a cached bearer token for the upstream feature feed.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from stock_recommender.utils.time_utils import ensure_utc

VALID_INGEST_STATUSES = frozenset({"started", "success", "error"})


class IngestRun(BaseModel):
    """Feature ingest audit record.

    Attributes:
        run_id: UUID4 string primary key.
        as_of_date: Trading date being ingested.
        generated_at: When the run started (UTC).
        provider: ``"external_http_json"`` or ``"stub"``.
        status: ``"started"`` → ``"success"`` / ``"error"``.
        rows_upserted: Feature rows written.
        error: Error text if ``status == "error"``.
        raw_response: Provider JSON body, when one was received.
    """

    # Not frozen: status and counts change while the stage runs
    model_config = ConfigDict(frozen=False)

    run_id: str
    as_of_date: date
    generated_at: datetime
    provider: str
    status: str = "started"
    rows_upserted: int = 0
    error: Optional[str] = None
    raw_response: Optional[Any] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_INGEST_STATUSES:
            raise ValueError(
                f"Invalid status '{v}'. Must be one of {sorted(VALID_INGEST_STATUSES)}."
            )
        return v


class AccessToken(BaseModel):
    """Bearer token with its absolute expiry."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    expires_at: datetime
    issued_at: datetime

    @field_validator("expires_at", "issued_at")
    @classmethod
    def validate_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def is_fresh(self, now: datetime, margin_s: int = 0) -> bool:
        """``True`` if the token stays valid for at least ``margin_s`` more seconds."""
        return ensure_utc(now) + timedelta(seconds=margin_s) < self.expires_at
