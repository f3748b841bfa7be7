"""
Provider response parsing and candidate-output extraction.

A Messages API response carries a list of heterogeneous content blocks. They
are parsed into a closed set of tagged variants:

    text                 free-form text            (``type == "text"``)
    structured_output    forced tool call input    (``type == "tool_use"``)
    reasoning            visible thinking          (``type == "thinking"``)
    redacted_reasoning   encrypted thinking        (``type == "redacted_thinking"``)
    unknown              anything else, kept raw

``extract_candidate_output()`` is the only place that decides which block is
"the answer": the structured output if present, otherwise all text blocks
joined, reduced to the JSON inside them where possible.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Optional

STOP_REASON_MAX_TOKENS = "max_tokens"

_FENCE_OPEN = re.compile(r"^```[A-Za-z0-9_+-]*")


class BlockKind(StrEnum):
    TEXT = "text"
    STRUCTURED_OUTPUT = "structured_output"
    REASONING = "reasoning"
    REDACTED_REASONING = "redacted_reasoning"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ContentBlock:
    """One parsed response block.

    Only the attribute matching ``kind`` is meaningful: ``text`` for
    ``TEXT`` and ``REASONING``; ``tool_name`` / ``payload`` for
    ``STRUCTURED_OUTPUT``; ``raw`` always holds the original dict.
    """

    kind: BlockKind
    text: str = ""
    tool_name: Optional[str] = None
    payload: Any = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderResponse:
    """A decoded provider reply.

    Attributes:
        stop_reason: Provider stop reason; ``"max_tokens"`` means truncated.
        blocks: Parsed content blocks, in response order.
        raw_json: Full response body, kept for audit.
    """

    stop_reason: Optional[str]
    blocks: list[ContentBlock]
    raw_json: dict[str, Any]

    @property
    def truncated(self) -> bool:
        return self.stop_reason == STOP_REASON_MAX_TOKENS


def parse_content_block(block: Any) -> ContentBlock:
    if not isinstance(block, dict):
        return ContentBlock(kind=BlockKind.UNKNOWN, raw={"value": block})

    block_type = block.get("type")
    if block_type == "text":
        return ContentBlock(kind=BlockKind.TEXT, text=str(block.get("text") or ""), raw=block)
    if block_type == "tool_use":
        return ContentBlock(
            kind=BlockKind.STRUCTURED_OUTPUT,
            tool_name=block.get("name"),
            payload=block.get("input"),
            raw=block,
        )
    if block_type == "thinking":
        return ContentBlock(kind=BlockKind.REASONING, text=str(block.get("thinking") or ""), raw=block)
    if block_type == "redacted_thinking":
        return ContentBlock(kind=BlockKind.REDACTED_REASONING, raw=block)
    return ContentBlock(kind=BlockKind.UNKNOWN, raw=block)


def parse_provider_response(data: dict[str, Any]) -> ProviderResponse:
    """Decode a Messages API response body."""
    content = data.get("content")
    blocks = [parse_content_block(b) for b in content] if isinstance(content, list) else []
    return ProviderResponse(stop_reason=data.get("stop_reason"), blocks=blocks, raw_json=data)


def extract_json_text(text: str) -> Optional[str]:
    """Pull a JSON object out of free text.

    A leading markdown fence (```` ``` ```` or ```` ```json ````) is removed
    together with everything after the last closing fence, also when the
    whole fence sits on one line. Otherwise, or when the fence is empty, the
    substring from the first ``{`` to the last ``}`` is returned.

    Returns:
        The candidate JSON text, or ``None`` if no object can be located.
    """
    trimmed = text.strip()
    if trimmed.startswith("```"):
        head, newline, inner = trimmed.partition("\n")
        if not newline:
            # Single-line fence: ```json {...}```
            inner = _FENCE_OPEN.sub("", head, count=1)
        end = inner.rfind("```")
        if end != -1:
            inner = inner[:end]
        inner = inner.strip()
        if inner:
            return inner

    start = trimmed.find("{")
    end = trimmed.rfind("}")
    if start == -1 or end <= start:
        return None
    return trimmed[start : end + 1].strip()


CandidateOutput = dict[str, Any] | str


def extract_candidate_output(
    blocks: list[ContentBlock],
    tool_name: Optional[str] = None,
) -> Optional[CandidateOutput]:
    """Choose the model's answer from a response.

    Args:
        blocks: Parsed content blocks.
        tool_name: Preferred structured-output tool; any tool call is
            accepted when none matches.

    Returns:
        The structured payload (usually a dict) if the response has one,
        else the extracted JSON text (or the trimmed text when no JSON
        object is found), else ``None`` for a response with no usable
        content at all.
    """
    structured = [b for b in blocks if b.kind is BlockKind.STRUCTURED_OUTPUT]
    if structured:
        preferred = next((b for b in structured if b.tool_name == tool_name), structured[0])
        payload = preferred.payload
        if isinstance(payload, (dict, str)):
            return payload

    text = "\n".join(b.text for b in blocks if b.kind is BlockKind.TEXT).strip()
    if not text:
        return None
    return extract_json_text(text) or text
