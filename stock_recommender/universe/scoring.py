"""
Candidate scoring and fund filtering.

Score formula
-------------
    score = trading_value / trading_value_scale + ret_1d * ret_1d_weight

with defaults ``trading_value_scale = 1e9`` and ``ret_1d_weight = 10``:
one billion of traded value is worth the same as a 10% one-day move. A
missing trading value or ``ret_1d`` feature contributes 0.

Both constants are uncalibrated heuristics and live in ``[universe]``
config, not here.

Fund filter
-----------
ETFs, ETNs, SPACs and REITs are excluded by name. ASCII tokens match as
whole words, case-insensitively (``"ACE"`` hits ``"ACE 미국S&P500"`` but not
``"PLACE"``); non-ASCII tokens such as ``"스팩"`` match anywhere in the name,
since Korean names do not separate words consistently.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import Optional

from stock_recommender.models.feature import Candidate, FeatureRecord

RET_1D_FEATURE = "ret_1d"


def _compile_token_pattern(tokens: Iterable[str]) -> tuple[Optional[re.Pattern[str]], tuple[str, ...]]:
    ascii_tokens: list[str] = []
    other_tokens: list[str] = []
    for token in tokens:
        token = token.strip()
        if not token:
            continue
        (ascii_tokens if token.isascii() else other_tokens).append(token)

    pattern = None
    if ascii_tokens:
        alternation = "|".join(re.escape(t) for t in ascii_tokens)
        # Only adjacent Latin letters break a match, so "KODEX200" still hits.
        pattern = re.compile(rf"(?<![A-Za-z])(?:{alternation})(?![A-Za-z])", re.IGNORECASE)
    return pattern, tuple(other_tokens)


class FundNameFilter:
    """Name-token heuristic for excluding funds and other non-operating issuers."""

    def __init__(self, tokens: Iterable[str]) -> None:
        self._pattern, self._substrings = _compile_token_pattern(tokens)

    def is_fund_like(self, name: str) -> bool:
        if self._pattern is not None and self._pattern.search(name):
            return True
        return any(token in name for token in self._substrings)


def composite_score(
    record: FeatureRecord,
    trading_value_scale: float = 1e9,
    ret_1d_weight: float = 10.0,
) -> float:
    """Liquidity plus one-day momentum, see module docstring."""
    trading_value = record.trading_value or 0.0
    ret_1d = record.features.get(RET_1D_FEATURE, 0.0)
    return trading_value / trading_value_scale + ret_1d * ret_1d_weight


def rank_candidates(
    records: Sequence[FeatureRecord],
    fund_filter: FundNameFilter,
    trading_value_scale: float = 1e9,
    ret_1d_weight: float = 10.0,
) -> list[Candidate]:
    """Filter out fund-like names, score, and sort.

    Args:
        records: Prefetched feature rows for one date.
        fund_filter: Name exclusion heuristic.
        trading_value_scale: Divisor applied to trading value.
        ret_1d_weight: Multiplier applied to ``ret_1d``.

    Returns:
        All surviving records as ``Candidate``s, ordered by score
        descending with ticker ascending as the tie-break.
    """
    candidates = [
        Candidate(
            ticker=r.ticker,
            name=r.name,
            features=r.features,
            trading_value=r.trading_value,
            score=composite_score(r, trading_value_scale, ret_1d_weight),
        )
        for r in records
        if not fund_filter.is_fund_like(r.name)
    ]
    candidates.sort(key=lambda c: (-c.score, c.ticker))
    return candidates
