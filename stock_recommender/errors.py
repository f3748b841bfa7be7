"""
Error taxonomy for the recommendation pipeline.

Only ``GenerationDiagnosticsError`` and the persistence errors cross the
coordinator boundary; everything else is raised and handled inside the
generation client or the universe builder.

  TransientTransportError     network / HTTP 429 / HTTP 5xx, after retries
  ProviderRequestError        non-retryable provider response (4xx, bad body)
  OutputShapeError            model output violates the snapshot contract
  GenerationDiagnosticsError  generation gave up; carries raw output
  InsufficientCandidatesError universe cannot satisfy the requested size
  UniqueConstraintError       a success snapshot already exists for the date
  PersistenceError            any other storage fault
  FeatureProviderError        upstream feature feed failure

Lock denial and "already satisfied" are not errors; they are terminal
``RunState`` values of the coordinator.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from stock_recommender.recommendations.contract import ContractViolation


class StockRecommenderError(Exception):
    """Base class for all domain errors raised by this package."""


class TransientTransportError(StockRecommenderError):
    """Retryable provider failure that persisted through every transport attempt."""

    def __init__(
        self,
        message: str,
        attempts: int,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.status_code = status_code


class ProviderRequestError(StockRecommenderError):
    """The provider rejected the request or returned an unusable body."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class OutputShapeError(StockRecommenderError):
    """Model output failed contract validation."""

    def __init__(self, violation: "ContractViolation", raw_output: Optional[str] = None) -> None:
        super().__init__(str(violation))
        self.violation = violation
        self.raw_output = raw_output


class GenerationDiagnosticsError(StockRecommenderError):
    """Generation failed; carries enough context to audit the attempt.

    Attributes:
        provider: Provider name, e.g. ``"anthropic"``.
        stage: Where generation gave up: ``"request"`` or ``"parse_after_repair"``.
            Empty or truncated replies are repaired, not a separate stage.
        detail: Human-readable cause.
        raw_output: Last extracted model text, if any.
        raw_response_json: Last full provider response body, if any.
    """

    def __init__(
        self,
        provider: str,
        stage: str,
        detail: str,
        raw_output: Optional[str] = None,
        raw_response_json: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(f"LLM error (provider={provider}, stage={stage}): {detail}")
        self.provider = provider
        self.stage = stage
        self.detail = detail
        self.raw_output = raw_output
        self.raw_response_json = raw_response_json


class InsufficientCandidatesError(StockRecommenderError):
    """Fewer eligible candidates than the requested universe size."""

    def __init__(self, as_of_date: date, available: int, required: int) -> None:
        super().__init__(
            f"Only {available} eligible candidates for {as_of_date}; {required} required."
        )
        self.as_of_date = as_of_date
        self.available = available
        self.required = required


class PersistenceError(StockRecommenderError):
    """Storage fault other than a success-uniqueness conflict."""


class UniqueConstraintError(PersistenceError):
    """A success snapshot for the date was already committed by another run."""

    def __init__(self, as_of_date: date) -> None:
        super().__init__(f"A success snapshot already exists for {as_of_date}.")
        self.as_of_date = as_of_date


class FeatureProviderError(StockRecommenderError):
    """The upstream feature feed failed or returned an invalid payload."""
