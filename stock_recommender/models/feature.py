"""
Feature-side domain models.

``FeatureRecord`` is one row of the local feature table: numeric signals
for a single ticker on a single trading date. ``Candidate`` is the
ephemeral view of a record that survived universe selection and is sent
to the model. ``GenerationInput`` bundles the candidates for one date and
enforces the universe size bounds.
"""

from __future__ import annotations

import math
from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from stock_recommender.config import UNIVERSE_MAX_SIZE, UNIVERSE_MIN_SIZE


def _clean_feature_map(v: dict[str, float]) -> dict[str, float]:
    cleaned: dict[str, float] = {}
    for key, val in v.items():
        name = str(key).strip()
        if not name:
            raise ValueError("feature names must be non-empty.")
        if not math.isfinite(val):
            raise ValueError(f"feature '{name}' is not finite: {val}.")
        cleaned[name] = float(val)
    return cleaned


class FeatureRecord(BaseModel):
    """Per-date, per-ticker feature vector.

    Attributes:
        as_of_date: Trading date the features describe.
        ticker: Exchange-qualified ticker, e.g. ``"KRX:005930"``.
        name: Issuer / instrument display name.
        trading_value: Traded value for the day in local currency, if known.
        features: Feature name → value, e.g. ``{"ret_1d": 0.012}``.
    """

    model_config = ConfigDict(frozen=True)

    as_of_date: date
    ticker: str
    name: str
    trading_value: Optional[float] = None
    features: dict[str, float] = {}

    @field_validator("ticker", "name")
    @classmethod
    def validate_non_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must be non-empty after trimming.")
        return v

    @field_validator("features")
    @classmethod
    def validate_features(cls, v: dict[str, float]) -> dict[str, float]:
        return _clean_feature_map(v)


class Candidate(BaseModel):
    """A ticker selected for generation, with its features and composite score."""

    model_config = ConfigDict(frozen=True)

    ticker: str
    name: str
    features: dict[str, float] = {}
    trading_value: Optional[float] = None
    score: float = 0.0

    def to_prompt_dict(self) -> dict[str, Any]:
        """Shape sent to the model: identity plus raw features, no score."""
        payload: dict[str, Any] = {"ticker": self.ticker, "name": self.name}
        if self.trading_value is not None:
            payload["trading_value"] = self.trading_value
        payload["features"] = dict(self.features)
        return payload


class GenerationInput(BaseModel):
    """Candidates for one trading date; size must be within [200, 500]."""

    model_config = ConfigDict(frozen=True)

    as_of_date: date
    candidates: list[Candidate]

    @model_validator(mode="after")
    def validate_candidate_count(self) -> "GenerationInput":
        n = len(self.candidates)
        if not UNIVERSE_MIN_SIZE <= n <= UNIVERSE_MAX_SIZE:
            raise ValueError(
                f"GenerationInput needs {UNIVERSE_MIN_SIZE}-{UNIVERSE_MAX_SIZE} "
                f"candidates, got {n}."
            )
        return self

    def candidates_payload(self) -> list[dict[str, Any]]:
        return [c.to_prompt_dict() for c in self.candidates]
