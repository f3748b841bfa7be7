"""
Tests for snapshot contract validation.

What we test
------------
1. A valid payload (dict or JSON text) yields a snapshot sorted by rank.
2. Structural failures: invalid JSON, non-object, missing and mistyped fields.
3. Date mismatch against the expected as-of date.
4. Item count boundaries (19 / 21 items).
5. Rank rules: out of range, duplicate, non-integer, boolean.
6. Ticker / name / rationale rules.
7. Confidence boundaries 0.0, 1.0 accepted; 1.0000001 and -0.1 rejected.
8. Risk-note normalization (blank → None) and optional fields.
9. Round trip through ``snapshot_to_payload``.
"""

from __future__ import annotations

import json
from datetime import date, timezone

import pytest

from stock_recommender.errors import OutputShapeError
from stock_recommender.models.snapshot import RecommendationSnapshot
from stock_recommender.recommendations.contract import (
    ContractViolation,
    ViolationKind,
    snapshot_to_payload,
    validate_snapshot,
    validate_snapshot_or_raise,
)

AS_OF = date(2026, 1, 27)


def _kind(result) -> ViolationKind:
    assert isinstance(result, ContractViolation), f"expected a violation, got {result!r}"
    return result.kind


# ── Valid input ───────────────────────────────────────────────────────────────

class TestValidSnapshot:
    def test_dict_payload_accepted(self, sample_payload):
        result = validate_snapshot(sample_payload, AS_OF)
        assert isinstance(result, RecommendationSnapshot)
        assert result.as_of_date == AS_OF
        assert len(result.items) == 20

    def test_json_text_accepted(self, sample_payload):
        result = validate_snapshot(json.dumps(sample_payload), AS_OF)
        assert isinstance(result, RecommendationSnapshot)

    def test_items_sorted_by_rank(self, payload_factory, item_factory):
        items = [item_factory(r) for r in reversed(range(1, 21))]
        result = validate_snapshot(payload_factory(items=items), AS_OF)
        assert [i.rank for i in result.items] == list(range(1, 21))

    def test_generated_at_is_utc(self, sample_payload):
        result = validate_snapshot(sample_payload, AS_OF)
        assert result.generated_at.tzinfo == timezone.utc
        assert result.generated_at.hour == 7

    def test_offset_generated_at_converted_to_utc(self, payload_factory):
        result = validate_snapshot(
            payload_factory(generated_at="2026-01-27T16:30:00+09:00"), AS_OF
        )
        assert result.generated_at.hour == 7
        assert result.generated_at.tzinfo == timezone.utc

    def test_fields_trimmed(self, payload_factory, item_factory):
        items = [item_factory(r) for r in range(1, 21)]
        items[0] = item_factory(
            1,
            ticker="  KRX:005930 ",
            name=" Samsung Electronics ",
            rationale=[" a ", "b ", " c"],
        )
        result = validate_snapshot(payload_factory(items=items), AS_OF)
        first = result.items[0]
        assert first.ticker == "KRX:005930"
        assert first.name == "Samsung Electronics"
        assert first.rationale == ["a", "b", "c"]


# ── Structure ─────────────────────────────────────────────────────────────────

class TestStructure:
    def test_invalid_json(self):
        assert _kind(validate_snapshot("{not json", AS_OF)) == ViolationKind.INVALID_JSON

    def test_array_is_not_an_object(self):
        assert _kind(validate_snapshot("[]", AS_OF)) == ViolationKind.NOT_AN_OBJECT

    @pytest.mark.parametrize("key", ["as_of_date", "generated_at", "items"])
    def test_missing_top_level_field(self, sample_payload, key):
        del sample_payload[key]
        result = validate_snapshot(sample_payload, AS_OF)
        assert _kind(result) == ViolationKind.MISSING_FIELD
        assert result.field == key

    def test_items_not_a_list(self, sample_payload):
        sample_payload["items"] = {"rank": 1}
        assert _kind(validate_snapshot(sample_payload, AS_OF)) == ViolationKind.WRONG_TYPE

    def test_unparseable_date(self, sample_payload):
        sample_payload["as_of_date"] = "27/01/2026"
        assert _kind(validate_snapshot(sample_payload, AS_OF)) == ViolationKind.WRONG_TYPE

    def test_unparseable_generated_at(self, sample_payload):
        sample_payload["generated_at"] = "yesterday"
        assert _kind(validate_snapshot(sample_payload, AS_OF)) == ViolationKind.WRONG_TYPE

    def test_item_missing_rationale(self, payload_factory, item_factory):
        items = [item_factory(r) for r in range(1, 21)]
        del items[4]["rationale"]
        result = validate_snapshot(payload_factory(items=items), AS_OF)
        assert _kind(result) == ViolationKind.MISSING_FIELD
        assert result.field == "items[4].rationale"


# ── Date and count ────────────────────────────────────────────────────────────

class TestDateAndCount:
    def test_date_mismatch(self, payload_factory):
        result = validate_snapshot(payload_factory(as_of_date=date(2026, 1, 26)), AS_OF)
        assert _kind(result) == ViolationKind.DATE_MISMATCH
        assert "2026-01-27" in result.message

    def test_nineteen_items_rejected(self, payload_factory, item_factory):
        items = [item_factory(r) for r in range(1, 20)]
        assert _kind(validate_snapshot(payload_factory(items=items), AS_OF)) == ViolationKind.ITEM_COUNT

    def test_twenty_one_items_rejected(self, payload_factory, item_factory):
        items = [item_factory(r) for r in range(1, 21)] + [item_factory(20, ticker="KRX:999999")]
        assert _kind(validate_snapshot(payload_factory(items=items), AS_OF)) == ViolationKind.ITEM_COUNT


# ── Ranks ─────────────────────────────────────────────────────────────────────

class TestRanks:
    @pytest.mark.parametrize("bad_rank", [0, 21, -1])
    def test_rank_out_of_range(self, payload_factory, item_factory, bad_rank):
        items = [item_factory(r) for r in range(1, 21)]
        items[0]["rank"] = bad_rank
        result = validate_snapshot(payload_factory(items=items), AS_OF)
        assert _kind(result) == ViolationKind.RANK_OUT_OF_RANGE

    def test_duplicate_rank(self, payload_factory, item_factory):
        items = [item_factory(r) for r in range(1, 21)]
        items[19] = item_factory(19, ticker="KRX:777777")
        result = validate_snapshot(payload_factory(items=items), AS_OF)
        assert _kind(result) == ViolationKind.DUPLICATE_RANK
        assert result.field == "items[19].rank"

    @pytest.mark.parametrize("bad_rank", [1.5, "1", True])
    def test_non_integer_rank(self, payload_factory, item_factory, bad_rank):
        items = [item_factory(r) for r in range(1, 21)]
        items[0]["rank"] = bad_rank
        assert _kind(validate_snapshot(payload_factory(items=items), AS_OF)) == ViolationKind.WRONG_TYPE


# ── Ticker / name / rationale ─────────────────────────────────────────────────

class TestItemFields:
    def test_blank_ticker(self, payload_factory, item_factory):
        items = [item_factory(r) for r in range(1, 21)]
        items[2]["ticker"] = "   "
        assert _kind(validate_snapshot(payload_factory(items=items), AS_OF)) == ViolationKind.EMPTY_TICKER

    def test_duplicate_ticker(self, payload_factory, item_factory):
        items = [item_factory(r) for r in range(1, 21)]
        items[5]["ticker"] = items[0]["ticker"]
        assert _kind(validate_snapshot(payload_factory(items=items), AS_OF)) == ViolationKind.DUPLICATE_TICKER

    def test_blank_name(self, payload_factory, item_factory):
        items = [item_factory(r) for r in range(1, 21)]
        items[2]["name"] = ""
        assert _kind(validate_snapshot(payload_factory(items=items), AS_OF)) == ViolationKind.EMPTY_NAME

    @pytest.mark.parametrize("lines", [["a", "b"], ["a", "b", "c", "d"], []])
    def test_rationale_count(self, payload_factory, item_factory, lines):
        items = [item_factory(r) for r in range(1, 21)]
        items[0]["rationale"] = lines
        assert _kind(validate_snapshot(payload_factory(items=items), AS_OF)) == ViolationKind.RATIONALE_COUNT

    def test_blank_rationale_line(self, payload_factory, item_factory):
        items = [item_factory(r) for r in range(1, 21)]
        items[0]["rationale"] = ["a", "  ", "c"]
        result = validate_snapshot(payload_factory(items=items), AS_OF)
        assert _kind(result) == ViolationKind.EMPTY_RATIONALE_LINE
        assert result.field == "items[0].rationale[1]"


# ── Confidence and risk notes ─────────────────────────────────────────────────

class TestOptionalFields:
    @pytest.mark.parametrize("value", [0.0, 1.0, 0, 1])
    def test_confidence_boundaries_accepted(self, payload_factory, item_factory, value):
        items = [item_factory(r) for r in range(1, 21)]
        items[0]["confidence"] = value
        result = validate_snapshot(payload_factory(items=items), AS_OF)
        assert isinstance(result, RecommendationSnapshot)
        assert result.items[0].confidence == float(value)

    @pytest.mark.parametrize("value", [1.0000001, -0.1, 2])
    def test_confidence_out_of_range(self, payload_factory, item_factory, value):
        items = [item_factory(r) for r in range(1, 21)]
        items[0]["confidence"] = value
        result = validate_snapshot(payload_factory(items=items), AS_OF)
        assert _kind(result) == ViolationKind.CONFIDENCE_OUT_OF_RANGE

    def test_confidence_nan_rejected(self, payload_factory, item_factory):
        items = [item_factory(r) for r in range(1, 21)]
        items[0]["confidence"] = float("nan")
        result = validate_snapshot(payload_factory(items=items), AS_OF)
        assert _kind(result) == ViolationKind.CONFIDENCE_OUT_OF_RANGE

    def test_blank_risk_notes_become_none(self, payload_factory, item_factory):
        items = [item_factory(r) for r in range(1, 21)]
        items[0]["risk_notes"] = "   "
        result = validate_snapshot(payload_factory(items=items), AS_OF)
        assert result.items[0].risk_notes is None

    def test_optional_keys_may_be_absent(self, payload_factory, item_factory):
        items = [item_factory(r) for r in range(1, 21)]
        for item in items:
            del item["risk_notes"]
            del item["confidence"]
        result = validate_snapshot(payload_factory(items=items), AS_OF)
        assert all(i.risk_notes is None and i.confidence is None for i in result.items)


# ── Raise wrapper and round trip ──────────────────────────────────────────────

class TestWrappers:
    def test_or_raise_returns_snapshot(self, sample_payload):
        assert validate_snapshot_or_raise(sample_payload, AS_OF).as_of_date == AS_OF

    def test_or_raise_carries_violation_and_raw_text(self):
        with pytest.raises(OutputShapeError) as exc_info:
            validate_snapshot_or_raise("not json at all", AS_OF)
        assert exc_info.value.violation.kind == ViolationKind.INVALID_JSON
        assert exc_info.value.raw_output == "not json at all"

    def test_round_trip(self, payload_factory, item_factory):
        items = [item_factory(r) for r in range(1, 21)]
        items[3]["risk_notes"] = None
        items[7]["confidence"] = None
        snapshot = validate_snapshot(payload_factory(items=items), AS_OF)
        again = validate_snapshot(snapshot_to_payload(snapshot), AS_OF)
        assert again == snapshot

    def test_violation_str_names_kind_and_field(self):
        violation = ContractViolation(ViolationKind.ITEM_COUNT, "items", "expected exactly 20 items, got 19")
        assert str(violation) == "item_count at items: expected exactly 20 items, got 19"
