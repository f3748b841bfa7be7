"""
Snapshot contract validation.

``validate_snapshot(raw, expected_as_of_date)`` is a pure function: it
returns either a ``RecommendationSnapshot`` or a ``ContractViolation``
naming the first rule that failed. It never raises for bad input; the
generation client uses the violation text to build repair prompts.

Rules (checked in this order)
-----------------------------
    1. Input is JSON (if text) and decodes to an object.
    2. ``as_of_date``, ``generated_at`` and ``items`` are present and typed.
    3. ``as_of_date`` equals the expected date.
    4. ``items`` has exactly 20 entries.
    5. Per item:
         rank        integer in [1, 20], not seen before
         ticker      trimmed, non-empty, not seen before
         name        trimmed, non-empty
         rationale   exactly 3 entries, each trimmed non-empty
         risk_notes  optional; blank after trimming becomes absent
         confidence  optional; if present within [0, 1] inclusive
    6. Ranks cover {1..20} exactly.

Booleans are rejected where numbers are expected (JSON ``true`` is not a
rank). A ``generated_at`` without an offset is taken as UTC.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date
from enum import StrEnum
from typing import Any

from stock_recommender.errors import OutputShapeError
from stock_recommender.models.snapshot import (
    RATIONALE_LINES,
    SNAPSHOT_ITEM_COUNT,
    RecommendationItem,
    RecommendationSnapshot,
)
from stock_recommender.utils.time_utils import ensure_utc, parse_utc

RawModelOutput = str | dict[str, Any]


class ViolationKind(StrEnum):
    INVALID_JSON = "invalid_json"
    NOT_AN_OBJECT = "not_an_object"
    MISSING_FIELD = "missing_field"
    WRONG_TYPE = "wrong_type"
    DATE_MISMATCH = "date_mismatch"
    ITEM_COUNT = "item_count"
    RANK_OUT_OF_RANGE = "rank_out_of_range"
    DUPLICATE_RANK = "duplicate_rank"
    MISSING_RANK = "missing_rank"
    EMPTY_TICKER = "empty_ticker"
    DUPLICATE_TICKER = "duplicate_ticker"
    EMPTY_NAME = "empty_name"
    RATIONALE_COUNT = "rationale_count"
    EMPTY_RATIONALE_LINE = "empty_rationale_line"
    CONFIDENCE_OUT_OF_RANGE = "confidence_out_of_range"


@dataclass(frozen=True)
class ContractViolation:
    """First rule a candidate snapshot broke.

    Attributes:
        kind: Which rule.
        field: JSON path of the offending value, e.g. ``"items[3].rank"``.
        message: Human-readable detail, suitable for a repair prompt.
    """

    kind: ViolationKind
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.kind} at {self.field}: {self.message}"


ValidationResult = RecommendationSnapshot | ContractViolation


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_snapshot(raw: RawModelOutput, expected_as_of_date: date) -> ValidationResult:
    """Validate model output against the snapshot contract.

    Args:
        raw: JSON text or an already-decoded object.
        expected_as_of_date: The date the run is generating for.

    Returns:
        A ``RecommendationSnapshot`` (items sorted by rank) on success,
        otherwise the first ``ContractViolation`` found.
    """
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            return ContractViolation(ViolationKind.INVALID_JSON, "$", f"not valid JSON: {exc.msg}")
    else:
        data = raw

    if not isinstance(data, dict):
        return ContractViolation(
            ViolationKind.NOT_AN_OBJECT, "$", f"expected a JSON object, got {type(data).__name__}"
        )

    for key in ("as_of_date", "generated_at", "items"):
        if key not in data:
            return ContractViolation(ViolationKind.MISSING_FIELD, key, "required field is missing")

    # ── Top level ────────────────────────────────────────────────────────────
    as_of_raw = data["as_of_date"]
    if not isinstance(as_of_raw, str):
        return ContractViolation(ViolationKind.WRONG_TYPE, "as_of_date", "must be a YYYY-MM-DD string")
    try:
        as_of_date = date.fromisoformat(as_of_raw.strip())
    except ValueError:
        return ContractViolation(
            ViolationKind.WRONG_TYPE, "as_of_date", f"not a YYYY-MM-DD date: {as_of_raw!r}"
        )
    if as_of_date != expected_as_of_date:
        return ContractViolation(
            ViolationKind.DATE_MISMATCH,
            "as_of_date",
            f"expected {expected_as_of_date.isoformat()}, got {as_of_date.isoformat()}",
        )

    generated_raw = data["generated_at"]
    if not isinstance(generated_raw, str):
        return ContractViolation(
            ViolationKind.WRONG_TYPE, "generated_at", "must be an RFC 3339 date-time string"
        )
    try:
        generated_at = parse_utc(generated_raw)
    except ValueError:
        return ContractViolation(
            ViolationKind.WRONG_TYPE, "generated_at", f"not a date-time: {generated_raw!r}"
        )

    items_raw = data["items"]
    if not isinstance(items_raw, list):
        return ContractViolation(ViolationKind.WRONG_TYPE, "items", "must be an array")
    if len(items_raw) != SNAPSHOT_ITEM_COUNT:
        return ContractViolation(
            ViolationKind.ITEM_COUNT,
            "items",
            f"expected exactly {SNAPSHOT_ITEM_COUNT} items, got {len(items_raw)}",
        )

    # ── Items ────────────────────────────────────────────────────────────────
    items: list[RecommendationItem] = []
    seen_ranks: set[int] = set()
    seen_tickers: set[str] = set()

    for idx, entry in enumerate(items_raw):
        result = _validate_item(entry, f"items[{idx}]", seen_ranks, seen_tickers)
        if isinstance(result, ContractViolation):
            return result
        items.append(result)

    missing = sorted(set(range(1, SNAPSHOT_ITEM_COUNT + 1)) - seen_ranks)
    if missing:
        return ContractViolation(
            ViolationKind.MISSING_RANK, "items", f"ranks not covered: {missing}"
        )

    return RecommendationSnapshot(
        as_of_date=as_of_date,
        generated_at=generated_at,
        items=items,
    )


def _validate_item(
    entry: Any,
    path: str,
    seen_ranks: set[int],
    seen_tickers: set[str],
) -> RecommendationItem | ContractViolation:
    if not isinstance(entry, dict):
        return ContractViolation(ViolationKind.WRONG_TYPE, path, "item must be an object")

    for key in ("rank", "ticker", "name", "rationale"):
        if key not in entry:
            return ContractViolation(
                ViolationKind.MISSING_FIELD, f"{path}.{key}", "required field is missing"
            )

    rank = entry["rank"]
    if not _is_int(rank):
        return ContractViolation(ViolationKind.WRONG_TYPE, f"{path}.rank", "must be an integer")
    if not 1 <= rank <= SNAPSHOT_ITEM_COUNT:
        return ContractViolation(
            ViolationKind.RANK_OUT_OF_RANGE,
            f"{path}.rank",
            f"must be in [1, {SNAPSHOT_ITEM_COUNT}], got {rank}",
        )
    if rank in seen_ranks:
        return ContractViolation(ViolationKind.DUPLICATE_RANK, f"{path}.rank", f"rank {rank} repeated")
    seen_ranks.add(rank)

    ticker = entry["ticker"]
    if not isinstance(ticker, str):
        return ContractViolation(ViolationKind.WRONG_TYPE, f"{path}.ticker", "must be a string")
    ticker = ticker.strip()
    if not ticker:
        return ContractViolation(ViolationKind.EMPTY_TICKER, f"{path}.ticker", "empty after trimming")
    if ticker in seen_tickers:
        return ContractViolation(
            ViolationKind.DUPLICATE_TICKER, f"{path}.ticker", f"ticker {ticker} repeated"
        )
    seen_tickers.add(ticker)

    name = entry["name"]
    if not isinstance(name, str):
        return ContractViolation(ViolationKind.WRONG_TYPE, f"{path}.name", "must be a string")
    name = name.strip()
    if not name:
        return ContractViolation(ViolationKind.EMPTY_NAME, f"{path}.name", "empty after trimming")

    rationale = entry["rationale"]
    if not isinstance(rationale, list):
        return ContractViolation(
            ViolationKind.WRONG_TYPE, f"{path}.rationale", "must be an array of strings"
        )
    if len(rationale) != RATIONALE_LINES:
        return ContractViolation(
            ViolationKind.RATIONALE_COUNT,
            f"{path}.rationale",
            f"expected exactly {RATIONALE_LINES} lines, got {len(rationale)}",
        )
    lines: list[str] = []
    for line_idx, line in enumerate(rationale):
        if not isinstance(line, str):
            return ContractViolation(
                ViolationKind.WRONG_TYPE, f"{path}.rationale[{line_idx}]", "must be a string"
            )
        if not line.strip():
            return ContractViolation(
                ViolationKind.EMPTY_RATIONALE_LINE,
                f"{path}.rationale[{line_idx}]",
                "empty after trimming",
            )
        lines.append(line.strip())

    risk_notes = entry.get("risk_notes")
    if risk_notes is not None:
        if not isinstance(risk_notes, str):
            return ContractViolation(
                ViolationKind.WRONG_TYPE, f"{path}.risk_notes", "must be a string or null"
            )
        risk_notes = risk_notes.strip() or None

    confidence = entry.get("confidence")
    if confidence is not None:
        if not _is_number(confidence):
            return ContractViolation(
                ViolationKind.WRONG_TYPE, f"{path}.confidence", "must be a number or null"
            )
        # NaN fails both comparisons and lands here too.
        if not 0.0 <= confidence <= 1.0:
            return ContractViolation(
                ViolationKind.CONFIDENCE_OUT_OF_RANGE,
                f"{path}.confidence",
                f"must be within [0, 1], got {confidence}",
            )
        confidence = float(confidence)

    return RecommendationItem(
        rank=rank,
        ticker=ticker,
        name=name,
        rationale=lines,
        risk_notes=risk_notes,
        confidence=confidence,
    )


def validate_snapshot_or_raise(
    raw: RawModelOutput, expected_as_of_date: date
) -> RecommendationSnapshot:
    """Like ``validate_snapshot`` but raises ``OutputShapeError`` on violation."""
    result = validate_snapshot(raw, expected_as_of_date)
    if isinstance(result, ContractViolation):
        raw_text = raw if isinstance(raw, str) else json.dumps(raw, ensure_ascii=False, default=str)
        raise OutputShapeError(result, raw_output=raw_text)
    return result


def snapshot_to_payload(snapshot: RecommendationSnapshot) -> dict[str, Any]:
    """Serialize a snapshot to the external (model-facing) JSON shape.

    ``validate_snapshot(snapshot_to_payload(s), s.as_of_date) == s``.
    """
    return {
        "as_of_date": snapshot.as_of_date.isoformat(),
        "generated_at": ensure_utc(snapshot.generated_at).isoformat(),
        "items": [
            {
                "rank": item.rank,
                "ticker": item.ticker,
                "name": item.name,
                "rationale": list(item.rationale),
                "risk_notes": item.risk_notes,
                "confidence": item.confidence,
            }
            for item in snapshot.items
        ],
    }

