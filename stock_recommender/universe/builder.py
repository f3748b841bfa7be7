"""
Universe builder: feature table → ranked candidate list.

Two stages keep the query bounded while scoring on more than liquidity:

  1. Prefilter — fetch ``size × oversample_factor`` rows for the date,
     most liquid first (optionally above ``min_trading_value``).
  2. Score    — drop fund-like names, compute the composite score, sort by
     score descending (ticker ascending on ties) and keep the top ``size``.

Fewer than ``size`` survivors raises ``InsufficientCandidatesError``
before any model call is made.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional, Protocol

from stock_recommender.config import UNIVERSE_MAX_SIZE, UNIVERSE_MIN_SIZE, UniverseConfig
from stock_recommender.errors import InsufficientCandidatesError
from stock_recommender.models.feature import Candidate, FeatureRecord
from stock_recommender.universe.scoring import FundNameFilter, rank_candidates

logger = logging.getLogger(__name__)


class FeatureSource(Protocol):
    """What the builder needs from the feature store."""

    def list_features(
        self,
        as_of_date: date,
        limit: int,
        min_trading_value: Optional[float] = None,
    ) -> list[FeatureRecord]: ...


@dataclass(frozen=True)
class UniverseOptions:
    """Per-run selection options.

    Attributes:
        size: Candidates to return, within [200, 500].
        min_trading_value: Optional liquidity floor applied in the prefilter.
        oversample_factor: Prefilter fetches ``size × oversample_factor`` rows.
    """

    size: int = UNIVERSE_MIN_SIZE
    min_trading_value: Optional[float] = None
    oversample_factor: int = 3

    def __post_init__(self) -> None:
        if not UNIVERSE_MIN_SIZE <= self.size <= UNIVERSE_MAX_SIZE:
            raise ValueError(
                f"size must be in [{UNIVERSE_MIN_SIZE}, {UNIVERSE_MAX_SIZE}], got {self.size}."
            )
        if self.oversample_factor < 1:
            raise ValueError(f"oversample_factor must be >= 1, got {self.oversample_factor}.")

    @property
    def fetch_limit(self) -> int:
        return self.size * self.oversample_factor

    @classmethod
    def from_config(cls, config: UniverseConfig) -> "UniverseOptions":
        return cls(
            size=config.size,
            min_trading_value=config.min_trading_value,
            oversample_factor=config.oversample_factor,
        )


class UniverseBuilder:
    """Selects the candidate universe for one trading date.

    Args:
        source: Feature store (normally a ``FeatureRepository``).
        config: Scoring constants and exclusion tokens.
    """

    def __init__(self, source: FeatureSource, config: Optional[UniverseConfig] = None) -> None:
        self.source = source
        self.config = config or UniverseConfig()
        self.fund_filter = FundNameFilter(self.config.excluded_name_tokens)

    def build(self, as_of_date: date, options: Optional[UniverseOptions] = None) -> list[Candidate]:
        """Return exactly ``options.size`` candidates for ``as_of_date``.

        Raises:
            InsufficientCandidatesError: Fewer eligible records than ``size``.
        """
        options = options or UniverseOptions.from_config(self.config)

        records = self.source.list_features(
            as_of_date,
            options.fetch_limit,
            options.min_trading_value,
        )
        ranked = rank_candidates(
            records,
            self.fund_filter,
            trading_value_scale=self.config.trading_value_scale,
            ret_1d_weight=self.config.ret_1d_weight,
        )
        logger.info(
            "Universe %s: fetched=%d eligible=%d required=%d",
            as_of_date, len(records), len(ranked), options.size,
        )

        if len(ranked) < options.size:
            raise InsufficientCandidatesError(as_of_date, len(ranked), options.size)
        return ranked[: options.size]


def build_stub_universe(as_of_date: date, size: int, ticker_prefix: str = "KRX") -> list[Candidate]:
    """Deterministic synthetic candidates for smoke-testing the model call.

    Tickers are ``{prefix}:000001`` … with descending trading value, so the
    list is already in score order.
    """
    if not UNIVERSE_MIN_SIZE <= size <= UNIVERSE_MAX_SIZE:
        raise ValueError(f"size must be in [{UNIVERSE_MIN_SIZE}, {UNIVERSE_MAX_SIZE}], got {size}.")

    candidates: list[Candidate] = []
    for i in range(1, size + 1):
        trading_value = float((size - i + 1) * 100_000_000)
        candidates.append(
            Candidate(
                ticker=f"{ticker_prefix}:{i:06d}",
                name=f"Stub {i:06d}",
                features={"ret_1d": 0.0, "value_score": (size - i + 1) / size},
                trading_value=trading_value,
                score=trading_value / 1e9,
            )
        )
    logger.info("Stub universe for %s: %d candidates", as_of_date, size)
    return candidates
