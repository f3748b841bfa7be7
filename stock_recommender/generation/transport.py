"""
Anthropic Messages API transport.

API:   POST {base_url}/v1/messages
Auth:  ``x-api-key`` header (ANTHROPIC_API_KEY in .env)
       ``anthropic-version: 2023-06-01``

Retry policy
------------
Network errors, HTTP 429 and HTTP 5xx are retried up to
``max_transport_attempts`` (3) in total, sleeping
``backoff_base_s * 2 ** (attempt - 1)`` between attempts (1s, 2s, ...).
A numeric ``Retry-After`` header replaces the computed wait, clamped to
``max_retry_after_s`` since the caller holds the date lock. Exhaustion
raises ``TransientTransportError``. Any other non-200 status raises
``ProviderRequestError`` at once.

These retries are independent of the generation client's repair loop: a
single repair attempt may itself use up to three transport attempts.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, Optional

import httpx

from stock_recommender.config import LLMConfig
from stock_recommender.errors import ProviderRequestError, TransientTransportError
from stock_recommender.generation.extract import ProviderResponse, parse_provider_response

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504, 529})


def _is_retryable(status_code: int) -> bool:
    return status_code in _RETRYABLE_STATUS or status_code >= 500


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class AnthropicTransport:
    """Sends one Messages API request with bounded transport retries.

    Args:
        config: LLM section of ``AppConfig``.
        api_key: Provider API key.
        client: Optional preconfigured ``httpx.Client`` (tests pass one built
            on ``httpx.MockTransport``). A client created here is closed by
            ``close()``.
        sleep: Wait function, replaceable in tests.
    """

    def __init__(
        self,
        config: LLMConfig,
        api_key: str,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_key:
            raise ValueError("An API key is required for the Anthropic transport.")
        self.config = config
        self._api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=config.timeout_s)
        self._sleep = sleep

    @property
    def provider(self) -> str:
        return self.config.provider

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/v1/messages"

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._api_key,
            "anthropic-version": self.config.api_version,
            "content-type": "application/json",
        }

    def _backoff(self, attempt: int) -> float:
        return self.config.backoff_base_s * (2 ** (attempt - 1))

    def send(self, payload: dict[str, Any]) -> ProviderResponse:
        """POST ``payload`` and return the decoded response.

        Raises:
            TransientTransportError: Retryable failures on every attempt.
            ProviderRequestError: Non-retryable status or undecodable body.
        """
        max_attempts = self.config.max_transport_attempts
        last_error = "no attempt made"
        last_status: Optional[int] = None

        for attempt in range(1, max_attempts + 1):
            wait = self._backoff(attempt)
            try:
                resp = self._client.post(
                    self.endpoint,
                    json=payload,
                    headers=self._headers(),
                    timeout=self.config.timeout_s,
                )
            except httpx.TransportError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                last_status = None
                logger.warning(
                    "%s request error on attempt %d/%d: %s",
                    self.provider, attempt, max_attempts, last_error,
                )
            else:
                if resp.status_code == 200:
                    try:
                        data = resp.json()
                    except ValueError as exc:
                        raise ProviderRequestError(
                            f"{self.provider} returned a non-JSON body",
                            status_code=200,
                            body=resp.text[:2000],
                        ) from exc
                    if not isinstance(data, dict):
                        raise ProviderRequestError(
                            f"{self.provider} returned a non-object body",
                            status_code=200,
                            body=resp.text[:2000],
                        )
                    logger.debug("%s request OK (attempt %d)", self.provider, attempt)
                    return parse_provider_response(data)

                if not _is_retryable(resp.status_code):
                    logger.error(
                        "%s API error %d (non-retryable): %s",
                        self.provider, resp.status_code, resp.text[:500],
                    )
                    raise ProviderRequestError(
                        f"{self.provider} API error {resp.status_code}",
                        status_code=resp.status_code,
                        body=resp.text[:2000],
                    )

                last_status = resp.status_code
                last_error = f"HTTP {resp.status_code}"
                retry_after = _retry_after_seconds(resp)
                if retry_after is not None:
                    wait = min(retry_after, self.config.max_retry_after_s)
                logger.warning(
                    "%s HTTP %d on attempt %d/%d",
                    self.provider, resp.status_code, attempt, max_attempts,
                )

            if attempt < max_attempts:
                logger.info("Retrying %s request in %.1fs", self.provider, wait)
                self._sleep(wait)

        raise TransientTransportError(
            f"{self.provider}: all {max_attempts} attempts failed. Last error: {last_error}",
            attempts=max_attempts,
            status_code=last_status,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "AnthropicTransport":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
