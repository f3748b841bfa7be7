"""
Prompt text and the forced output schema.

The model is given exactly one tool, ``emit_recommendation_snapshot``, and
``tool_choice`` forces it, so a well-behaved response is a single
``tool_use`` block whose ``input`` matches ``SNAPSHOT_SCHEMA``. The schema is
a hint to the provider, not a guarantee; every response still goes through
the contract validator.
"""

from __future__ import annotations

import json
from datetime import date
from typing import Any

from stock_recommender.models.feature import GenerationInput
from stock_recommender.models.snapshot import RATIONALE_LINES, SNAPSHOT_ITEM_COUNT

SNAPSHOT_TOOL_NAME = "emit_recommendation_snapshot"

SNAPSHOT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["as_of_date", "generated_at", "items"],
    "properties": {
        "as_of_date": {"type": "string", "format": "date"},
        "generated_at": {"type": "string", "format": "date-time"},
        "items": {
            "type": "array",
            "minItems": SNAPSHOT_ITEM_COUNT,
            "maxItems": SNAPSHOT_ITEM_COUNT,
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["rank", "ticker", "name", "rationale", "risk_notes", "confidence"],
                "properties": {
                    "rank": {"type": "integer", "minimum": 1, "maximum": SNAPSHOT_ITEM_COUNT},
                    "ticker": {"type": "string", "minLength": 1},
                    "name": {"type": "string", "minLength": 1},
                    "rationale": {
                        "type": "array",
                        "minItems": RATIONALE_LINES,
                        "maxItems": RATIONALE_LINES,
                        "items": {"type": "string", "minLength": 1},
                    },
                    "risk_notes": {"type": ["string", "null"]},
                    "confidence": {"type": ["number", "null"], "minimum": 0, "maximum": 1},
                },
            },
        },
    },
}

SNAPSHOT_TOOL: dict[str, Any] = {
    "name": SNAPSHOT_TOOL_NAME,
    "description": "Return the daily recommendation snapshot. Call exactly once.",
    "input_schema": SNAPSHOT_SCHEMA,
}

SYSTEM_PROMPT = (
    "You are an equity analyst producing a daily watchlist for Korean listed stocks. "
    "You only choose from the candidates you are given and you only use the numeric "
    "features supplied with them. Respond by calling the "
    f"{SNAPSHOT_TOOL_NAME} tool exactly once; do not answer in prose."
)

CONTRACT_RULES = f"""\
Rules (all mandatory):
- as_of_date must be exactly {{as_of_date}} (YYYY-MM-DD).
- generated_at is the current UTC time in RFC 3339 format.
- items has exactly {SNAPSHOT_ITEM_COUNT} entries.
- rank values are the integers 1..{SNAPSHOT_ITEM_COUNT}, each used exactly once (1 = strongest).
- ticker and name are copied from the candidate list and are non-empty.
- Each ticker appears at most once.
- rationale has exactly {RATIONALE_LINES} non-empty lines.
- risk_notes is a short string or null.
- confidence is a number between 0 and 1 inclusive, or null."""


def render_rules(as_of_date: date) -> str:
    return CONTRACT_RULES.format(as_of_date=as_of_date.isoformat())


def build_user_prompt(generation_input: GenerationInput) -> str:
    """First-attempt prompt: task, rules, and the candidate list as JSON."""
    candidates = json.dumps(
        generation_input.candidates_payload(), ensure_ascii=False, separators=(",", ":")
    )
    return (
        f"Select the {SNAPSHOT_ITEM_COUNT} most attractive stocks for trading date "
        f"{generation_input.as_of_date.isoformat()} from the "
        f"{len(generation_input.candidates)} candidates below, ranked 1..{SNAPSHOT_ITEM_COUNT}.\n\n"
        f"{render_rules(generation_input.as_of_date)}\n\n"
        f"Candidates (JSON):\n{candidates}"
    )


def build_repair_prompt(
    generation_input: GenerationInput,
    problem: str,
    previous_output: str,
) -> str:
    """Prompt asking the model to produce a corrected snapshot.

    Args:
        generation_input: The original date and candidates.
        problem: Why the previous output was rejected.
        previous_output: The rejected output (JSON text or raw text).
    """
    schema = json.dumps(SNAPSHOT_SCHEMA, ensure_ascii=False, indent=2)
    candidates = json.dumps(
        generation_input.candidates_payload(), ensure_ascii=False, separators=(",", ":")
    )
    return (
        "Your previous answer was rejected and must be produced again from scratch.\n\n"
        f"Expected as_of_date: {generation_input.as_of_date.isoformat()}\n"
        f"Rejection reason: {problem}\n\n"
        f"{render_rules(generation_input.as_of_date)}\n\n"
        f"Output JSON schema:\n{schema}\n\n"
        "Previous invalid output, for reference only. Do NOT copy it verbatim; "
        "fix every rule it breaks:\n"
        f"<previous_output>\n{previous_output}\n</previous_output>\n\n"
        f"Candidates (JSON):\n{candidates}"
    )
