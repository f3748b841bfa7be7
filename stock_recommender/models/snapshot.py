"""
Recommendation snapshot models.

``RecommendationSnapshot`` is the validated, in-memory result of one
generation: exactly 20 ``RecommendationItem``s ranked 1..20 for one
trading date. The contract validator is the normal way to build one from
untrusted model output; the model validators below re-check the same
invariants so a snapshot can never exist in an invalid state.

``SnapshotRecord`` / ``RecommendationItemRecord`` are the persisted rows as
read back from the database, including failed attempts.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from stock_recommender.utils.time_utils import ensure_utc

SNAPSHOT_ITEM_COUNT = 20
RATIONALE_LINES = 3

VALID_SNAPSHOT_STATUSES = frozenset({"success", "error"})


class RecommendationItem(BaseModel):
    """One ranked recommendation.

    Attributes:
        rank: Position 1..20 (1 is the strongest pick).
        ticker: Exchange-qualified ticker, trimmed and non-empty.
        name: Display name, trimmed and non-empty.
        rationale: Exactly three non-empty lines.
        risk_notes: Optional free text; blank collapses to ``None``.
        confidence: Optional model confidence in [0, 1].
    """

    model_config = ConfigDict(frozen=True)

    rank: int
    ticker: str
    name: str
    rationale: list[str]
    risk_notes: Optional[str] = None
    confidence: Optional[float] = None

    @field_validator("rank")
    @classmethod
    def validate_rank(cls, v: int) -> int:
        if not 1 <= v <= SNAPSHOT_ITEM_COUNT:
            raise ValueError(f"rank must be in [1, {SNAPSHOT_ITEM_COUNT}], got {v}.")
        return v

    @field_validator("ticker", "name")
    @classmethod
    def validate_non_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must be non-empty after trimming.")
        return v

    @field_validator("rationale")
    @classmethod
    def validate_rationale(cls, v: list[str]) -> list[str]:
        lines = [line.strip() for line in v]
        if len(lines) != RATIONALE_LINES or not all(lines):
            raise ValueError(
                f"rationale must have exactly {RATIONALE_LINES} non-empty lines."
            )
        return lines

    @field_validator("risk_notes")
    @classmethod
    def normalize_risk_notes(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not 0.0 <= v <= 1.0:
            raise ValueError(f"confidence must be in [0.0, 1.0], got {v}.")
        return v


class RecommendationSnapshot(BaseModel):
    """Validated set of 20 ranked recommendations for one trading date."""

    model_config = ConfigDict(frozen=True)

    as_of_date: date
    generated_at: datetime
    items: list[RecommendationItem]

    @field_validator("generated_at")
    @classmethod
    def validate_generated_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("items")
    @classmethod
    def validate_items(cls, v: list[RecommendationItem]) -> list[RecommendationItem]:
        if len(v) != SNAPSHOT_ITEM_COUNT:
            raise ValueError(
                f"snapshot must have exactly {SNAPSHOT_ITEM_COUNT} items, got {len(v)}."
            )
        ranks = sorted(item.rank for item in v)
        if ranks != list(range(1, SNAPSHOT_ITEM_COUNT + 1)):
            raise ValueError("item ranks must be exactly 1..20 with no duplicates.")
        if len({item.ticker for item in v}) != SNAPSHOT_ITEM_COUNT:
            raise ValueError("item tickers must be unique within a snapshot.")
        # Canonical order is by rank.
        return sorted(v, key=lambda i: i.rank)

    def item_for(self, ticker: str) -> Optional[RecommendationItem]:
        return next((i for i in self.items if i.ticker == ticker), None)


class RecommendationItemRecord(RecommendationItem):
    """A persisted recommendation item row."""

    snapshot_id: str


class SnapshotRecord(BaseModel):
    """A persisted generation attempt (success or error).

    Attributes:
        snapshot_id: UUID4 string primary key.
        as_of_date: Trading date of the attempt.
        generated_at: When the snapshot (or failure) was produced (UTC).
        provider: Model provider name.
        status: ``"success"`` or ``"error"``.
        error: Error text for failed attempts.
        raw_llm_response: Raw provider JSON (or ``{"raw_text": ...}``).
        created_at: Row insertion time (UTC).
        items: Child rows, ordered by rank; empty for error rows.
    """

    model_config = ConfigDict(frozen=True)

    snapshot_id: str
    as_of_date: date
    generated_at: datetime
    provider: str
    status: str
    error: Optional[str] = None
    raw_llm_response: Optional[Any] = None
    created_at: Optional[datetime] = None
    items: list[RecommendationItemRecord] = []

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_SNAPSHOT_STATUSES:
            raise ValueError(
                f"Invalid status '{v}'. Must be one of {sorted(VALID_SNAPSHOT_STATUSES)}."
            )
        return v

    @property
    def is_success(self) -> bool:
        return self.status == "success"
