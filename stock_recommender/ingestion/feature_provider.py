"""
HTTP JSON daily-feature feed client.

API:   GET {base_url}{features_path}?as_of_date=YYYY-MM-DD
Auth:  ``x-api-key`` header when DATA_PROVIDER_API_KEY is set;
       ``Authorization: Bearer`` when a ``TokenCache`` is supplied.

Response::

    {
      "as_of_date": "2026-01-27",
      "items": [
        {"ticker": "KRX:005930", "name": "Samsung Electronics",
         "trading_value": 1.2e12, "features": {"ret_1d": 0.01, "mom_5d": -0.02}}
      ]
    }

Retries: transport errors, non-2xx statuses and undecodable bodies are
retried up to ``retries`` attempts in total with 1s, 2s, 4s ... between
them. A well-formed body that fails validation (wrong date, empty ticker,
name or feature map, non-numeric feature) is not retried.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from stock_recommender.config import FeatureProviderConfig
from stock_recommender.errors import FeatureProviderError
from stock_recommender.ingestion.token_cache import TokenCache
from stock_recommender.models.feature import FeatureRecord

logger = logging.getLogger(__name__)

PROVIDER_NAME = "external_http_json"


@dataclass(frozen=True)
class FeatureBatch:
    """Validated provider response for one date."""

    as_of_date: date
    records: list[FeatureRecord]
    raw_json: dict[str, Any]


class _RetryableFetchError(Exception):
    """Internal marker: the attempt failed in a way worth retrying."""


class HttpJsonFeatureProvider:
    """Fetches and validates one date of features from the upstream feed.

    Args:
        config: ``[feature_provider]`` section; ``base_url`` is required.
        api_key: Optional ``x-api-key`` value.
        token_cache: Optional bearer token source.
        client: Optional ``httpx.Client`` (tests pass a mock transport).
        sleep: Wait function, replaceable in tests.
    """

    provider_name = PROVIDER_NAME

    def __init__(
        self,
        config: FeatureProviderConfig,
        api_key: Optional[str] = None,
        token_cache: Optional[TokenCache] = None,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not config.base_url:
            raise FeatureProviderError(
                "feature_provider.base_url is not configured "
                "(set it in config or STOCK_RECOMMENDER_FEATURE_PROVIDER_URL)."
            )
        self.config = config
        self.api_key = api_key
        self.token_cache = token_cache
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=config.timeout_s)
        self._sleep = sleep

    @property
    def url(self) -> str:
        path = self.config.features_path
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"accept": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        if self.token_cache is not None:
            headers["Authorization"] = f"Bearer {self.token_cache.get_token()}"
        return headers

    def fetch_daily_features(self, as_of_date: date) -> FeatureBatch:
        """Fetch, validate and convert one date of features.

        Raises:
            FeatureProviderError: Retries exhausted or invalid payload.
        """
        retries = self.config.retries
        for attempt in range(1, retries + 1):
            try:
                raw = self._fetch_once(as_of_date)
            except _RetryableFetchError as exc:
                if attempt >= retries:
                    raise FeatureProviderError(
                        f"Feature provider failed after {retries} attempt(s): {exc}"
                    ) from exc
                backoff = float(1 << (attempt - 1))
                logger.warning(
                    "Feature provider fetch failed (attempt %d/%d): %s; retrying in %.0fs",
                    attempt, retries, exc, backoff,
                )
                self._sleep(backoff)
                continue

            records = parse_feature_payload(raw, as_of_date)
            logger.info(
                "Feature provider returned %d items for %s", len(records), as_of_date
            )
            return FeatureBatch(as_of_date=as_of_date, records=records, raw_json=raw)

        raise FeatureProviderError("Feature provider was configured with zero retries.")

    def _fetch_once(self, as_of_date: date) -> dict[str, Any]:
        try:
            resp = self._client.get(
                self.url,
                params={"as_of_date": as_of_date.isoformat()},
                headers=self._headers(),
                timeout=self.config.timeout_s,
            )
        except httpx.TransportError as exc:
            raise _RetryableFetchError(f"{type(exc).__name__}: {exc}") from exc

        if resp.status_code == 401 and self.token_cache is not None:
            self.token_cache.invalidate()
        if not resp.is_success:
            raise _RetryableFetchError(f"HTTP {resp.status_code}: {resp.text[:500]}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise _RetryableFetchError(f"response is not valid JSON: {resp.text[:500]}") from exc
        if not isinstance(data, dict):
            raise _RetryableFetchError("response is not a JSON object")
        return data

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HttpJsonFeatureProvider":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


# ── Payload validation ────────────────────────────────────────────────────────

def parse_feature_payload(data: dict[str, Any], expected: date) -> list[FeatureRecord]:
    """Validate a provider body and convert its items to ``FeatureRecord``s.

    Raises:
        FeatureProviderError: On any shape or value problem.
    """
    raw_date = data.get("as_of_date")
    try:
        payload_date = date.fromisoformat(str(raw_date))
    except ValueError as exc:
        raise FeatureProviderError(f"provider as_of_date is not a date: {raw_date!r}") from exc
    if payload_date != expected:
        raise FeatureProviderError(
            f"provider as_of_date mismatch: expected {expected}, got {payload_date}"
        )

    items = data.get("items")
    if not isinstance(items, list):
        raise FeatureProviderError("provider response has no 'items' list")

    return [_parse_item(item, expected, idx) for idx, item in enumerate(items)]


def _parse_item(item: Any, as_of_date: date, idx: int) -> FeatureRecord:
    if not isinstance(item, dict):
        raise FeatureProviderError(f"items[{idx}] is not an object")

    ticker = str(item.get("ticker") or "").strip()
    name = str(item.get("name") or "").strip()
    if not ticker:
        raise FeatureProviderError(f"items[{idx}]: ticker must be non-empty")
    if not name:
        raise FeatureProviderError(f"items[{idx}] ({ticker}): name must be non-empty")

    features = item.get("features")
    if not isinstance(features, dict) or not features:
        raise FeatureProviderError(f"items[{idx}] ({ticker}): features must be a non-empty object")
    for key, val in features.items():
        # bool is an int subclass; strings must not be coerced
        if isinstance(val, bool) or not isinstance(val, (int, float)):
            raise FeatureProviderError(
                f"items[{idx}] ({ticker}): feature '{key}' is not numeric: {val!r}"
            )

    trading_value = item.get("trading_value")
    if trading_value is not None:
        if isinstance(trading_value, bool) or not isinstance(trading_value, (int, float)):
            raise FeatureProviderError(
                f"items[{idx}] ({ticker}): trading_value is not numeric: {trading_value!r}"
            )
        if not math.isfinite(trading_value):
            raise FeatureProviderError(f"items[{idx}] ({ticker}): trading_value is not finite")

    try:
        return FeatureRecord(
            as_of_date=as_of_date,
            ticker=ticker,
            name=name,
            trading_value=trading_value,
            features=features,
        )
    except ValidationError as exc:
        raise FeatureProviderError(f"items[{idx}] ({ticker}): {exc}") from exc
