"""
Generation client: candidates in, validated snapshot out.

Protocol per ``generate()`` call
--------------------------------
  1. Send the user prompt with the snapshot tool forced.
  2. If the reply stopped on ``max_tokens``, resend the same request once
     with ``max(2 × max_output_tokens, min_truncation_retry_tokens)``.
  3. Extract the answer (structured output first, then text) and validate.
  4. On a contract violation, send up to ``max_repair_attempts`` repair
     prompts, each carrying the expected date, schema, rules, the rejection
     reason and the rejected output. Steps 2–3 apply to every repair.
  5. Still invalid: raise ``GenerationDiagnosticsError`` with stage
     ``"parse_after_repair"`` and the last raw text / response JSON.

Transport failures that survive the transport's own retries end the call
with stage ``"request"``. A wrongly dated but otherwise valid reply is an
ordinary contract violation (``date_mismatch``) and is repaired like any
other.

The client keeps no state between calls.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from stock_recommender.config import LLMConfig
from stock_recommender.errors import (
    GenerationDiagnosticsError,
    ProviderRequestError,
    TransientTransportError,
)
from stock_recommender.generation.extract import ProviderResponse, extract_candidate_output
from stock_recommender.generation.prompts import (
    SNAPSHOT_TOOL,
    SNAPSHOT_TOOL_NAME,
    SYSTEM_PROMPT,
    build_repair_prompt,
    build_user_prompt,
)
from stock_recommender.models.feature import GenerationInput
from stock_recommender.models.snapshot import RecommendationSnapshot
from stock_recommender.recommendations.contract import ContractViolation, validate_snapshot

logger = logging.getLogger(__name__)

STAGE_REQUEST = "request"
STAGE_PARSE_AFTER_REPAIR = "parse_after_repair"


class MessageTransport(Protocol):
    """What the client needs from a transport (``AnthropicTransport`` in production)."""

    @property
    def provider(self) -> str: ...

    def send(self, payload: dict[str, Any]) -> ProviderResponse: ...


@dataclass(frozen=True)
class GenerationResult:
    """A validated snapshot plus the provider reply it came from.

    Attributes:
        snapshot: The validated snapshot.
        raw_response: Full provider JSON of the accepted reply.
        requests_sent: Provider requests made, truncation retries included.
        repairs_used: Repair prompts needed (0 if the first reply was valid).
    """

    snapshot: RecommendationSnapshot
    raw_response: dict[str, Any]
    requests_sent: int
    repairs_used: int


class GenerationClient:
    """Runs the request / validate / repair protocol against one transport."""

    def __init__(self, transport: MessageTransport, config: Optional[LLMConfig] = None) -> None:
        self.transport = transport
        self.config = config or LLMConfig()

    @property
    def provider(self) -> str:
        return self.transport.provider

    def _payload(self, prompt: str, max_tokens: int) -> dict[str, Any]:
        return {
            "model": self.config.model,
            "max_tokens": max_tokens,
            "temperature": self.config.temperature,
            "system": SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": prompt}],
            "tools": [SNAPSHOT_TOOL],
            "tool_choice": {"type": "tool", "name": SNAPSHOT_TOOL_NAME},
        }

    def generate(self, generation_input: GenerationInput) -> GenerationResult:
        """Produce one validated snapshot for ``generation_input``.

        Raises:
            GenerationDiagnosticsError: Transport failure (stage ``"request"``)
                or no valid output after all repairs (``"parse_after_repair"``).
        """
        as_of_date = generation_input.as_of_date
        max_repairs = self.config.max_repair_attempts

        requests_sent = 0
        last_raw_output: Optional[str] = None
        last_raw_json: Optional[dict[str, Any]] = None
        problem = ""

        for attempt in range(max_repairs + 1):
            if attempt == 0:
                prompt = build_user_prompt(generation_input)
            else:
                logger.warning(
                    "Repair attempt %d/%d for %s: %s",
                    attempt, max_repairs, as_of_date, problem,
                )
                prompt = build_repair_prompt(
                    generation_input, problem, last_raw_output or "<no output>"
                )

            response, sent = self._request(prompt, last_raw_output, last_raw_json)
            requests_sent += sent
            last_raw_json = response.raw_json

            candidate = extract_candidate_output(response.blocks, SNAPSHOT_TOOL_NAME)
            if candidate is None:
                last_raw_output = None
                problem = "response contained no usable output"
                if response.truncated:
                    problem += " (truncated at max_tokens)"
                continue

            last_raw_output = (
                candidate
                if isinstance(candidate, str)
                else json.dumps(candidate, ensure_ascii=False)
            )
            result = validate_snapshot(candidate, as_of_date)
            if isinstance(result, ContractViolation):
                problem = str(result)
                logger.info("Output rejected for %s: %s", as_of_date, problem)
                continue

            logger.info(
                "Snapshot generated for %s (requests=%d, repairs=%d)",
                as_of_date, requests_sent, attempt,
            )
            return GenerationResult(
                snapshot=result,
                raw_response=response.raw_json,
                requests_sent=requests_sent,
                repairs_used=attempt,
            )

        raise GenerationDiagnosticsError(
            provider=self.provider,
            stage=STAGE_PARSE_AFTER_REPAIR,
            detail=f"no valid snapshot after {max_repairs} repair attempt(s): {problem}",
            raw_output=last_raw_output,
            raw_response_json=last_raw_json,
        )

    def _request(
        self,
        prompt: str,
        last_raw_output: Optional[str],
        last_raw_json: Optional[dict[str, Any]],
    ) -> tuple[ProviderResponse, int]:
        """One logical request, with the single truncation retry.

        Returns:
            The final response and the number of provider requests sent.
        """
        max_tokens = self.config.max_output_tokens
        sent = 0
        try:
            sent += 1
            response = self.transport.send(self._payload(prompt, max_tokens))
            if response.truncated:
                retry_tokens = max(2 * max_tokens, self.config.min_truncation_retry_tokens)
                logger.warning(
                    "Response truncated at max_tokens=%d; retrying once with %d",
                    max_tokens, retry_tokens,
                )
                sent += 1
                response = self.transport.send(self._payload(prompt, retry_tokens))
                if response.truncated:
                    logger.warning("Response still truncated at max_tokens=%d", retry_tokens)
        except (TransientTransportError, ProviderRequestError) as exc:
            raise GenerationDiagnosticsError(
                provider=self.provider,
                stage=STAGE_REQUEST,
                detail=str(exc),
                raw_output=last_raw_output,
                raw_response_json=last_raw_json,
            ) from exc
        return response, sent
