"""Tests for the composite score, fund-name filter and candidate ranking."""

from __future__ import annotations

from datetime import date

import pytest

from stock_recommender.config import DEFAULT_EXCLUDED_NAME_TOKENS
from stock_recommender.models.feature import FeatureRecord
from stock_recommender.universe.scoring import FundNameFilter, composite_score, rank_candidates

AS_OF = date(2026, 1, 27)


def _record(ticker: str, trading_value, ret_1d=None, name: str = "Operating Co") -> FeatureRecord:
    features = {} if ret_1d is None else {"ret_1d": ret_1d}
    return FeatureRecord(
        as_of_date=AS_OF,
        ticker=ticker,
        name=name,
        trading_value=trading_value,
        features=features or {"vol_20d": 0.2},
    )


class TestCompositeScore:
    def test_formula(self):
        rec = _record("KRX:000001", 2e9, ret_1d=0.05)
        assert composite_score(rec) == pytest.approx(2.5)

    def test_missing_inputs_contribute_zero(self):
        rec = _record("KRX:000001", None)
        assert composite_score(rec) == 0.0

    def test_custom_constants(self):
        rec = _record("KRX:000001", 1e6, ret_1d=-0.01)
        assert composite_score(rec, trading_value_scale=1e6, ret_1d_weight=100.0) == pytest.approx(0.0)


class TestFundNameFilter:
    @pytest.fixture
    def fund_filter(self) -> FundNameFilter:
        return FundNameFilter(DEFAULT_EXCLUDED_NAME_TOKENS)

    @pytest.mark.parametrize("name", [
        "KODEX 200",
        "KODEX200",
        "TIGER 미국나스닥100",
        "tiger etf",
        "ACE 미국S&P500",
        "삼성스팩1호",
        "신한알파리츠",
        "Hana SPAC 12",
    ])
    def test_fund_like_names(self, fund_filter, name):
        assert fund_filter.is_fund_like(name)

    @pytest.mark.parametrize("name", [
        "Samsung Electronics",
        "PLACE Holdings",
        "SK hynix",
        "삼성전자",
        "Surplus Materials",
    ])
    def test_operating_companies_kept(self, fund_filter, name):
        assert not fund_filter.is_fund_like(name)

    def test_blank_tokens_ignored(self):
        assert not FundNameFilter(["", "  "]).is_fund_like("Anything")


class TestRankCandidates:
    def test_sorted_by_score_then_ticker(self):
        records = [
            _record("KRX:000003", 1e9),
            _record("KRX:000001", 1e9),
            _record("KRX:000002", 3e9),
        ]
        ranked = rank_candidates(records, FundNameFilter([]))
        assert [c.ticker for c in ranked] == ["KRX:000002", "KRX:000001", "KRX:000003"]

    def test_momentum_can_outrank_liquidity(self):
        records = [
            _record("KRX:000001", 1.2e9, ret_1d=-0.05),   # 0.7
            _record("KRX:000002", 1.0e9, ret_1d=0.02),    # 1.2
        ]
        ranked = rank_candidates(records, FundNameFilter([]))
        assert ranked[0].ticker == "KRX:000002"
        assert ranked[0].score == pytest.approx(1.2)

    def test_funds_dropped(self):
        records = [
            _record("KRX:069500", 9e12, name="KODEX 200"),
            _record("KRX:005930", 1e12, name="Samsung Electronics"),
        ]
        ranked = rank_candidates(records, FundNameFilter(DEFAULT_EXCLUDED_NAME_TOKENS))
        assert [c.ticker for c in ranked] == ["KRX:005930"]

    def test_candidate_keeps_features(self):
        ranked = rank_candidates([_record("KRX:000001", 1e9, ret_1d=0.01)], FundNameFilter([]))
        assert ranked[0].features == {"ret_1d": 0.01}
        assert "score" not in ranked[0].to_prompt_dict()
