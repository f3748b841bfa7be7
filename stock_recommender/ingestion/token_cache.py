"""
Bearer token cache for the upstream feature feed.

Lookup order on ``get_token()``:
  1. In-memory entry held by this ``TokenCache`` instance.
  2. Shared ``provider_access_tokens`` row (lets short-lived CI runners reuse
     one token instead of issuing a new one per run).
  3. Issue a new token from ``token_url`` (OAuth2 client credentials, Basic
     auth) and write it back to memory and the shared row.

A token is treated as stale ``refresh_margin_s`` seconds before it expires.
Writing the shared row is best-effort: a storage error is logged and the
freshly issued token is still returned.

Token endpoint response::

    {"access_token": "...", "token_type": "Bearer", "expires_in": 86400}
"""

from __future__ import annotations

import base64
import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional

import httpx

from stock_recommender.db.repositories.token_repo import AccessTokenRepository
from stock_recommender.errors import FeatureProviderError
from stock_recommender.models.meta import AccessToken
from stock_recommender.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class TokenCache:
    """Three-level access token cache.

    Args:
        token_url: Client-credentials token endpoint.
        client_id: OAuth2 client id (``DATA_PROVIDER_CLIENT_ID``).
        client_secret: OAuth2 client secret (``DATA_PROVIDER_CLIENT_SECRET``).
        conn: Open SQLite connection for the shared cache; ``None`` disables
            the shared level.
        cache_key: Row key in ``provider_access_tokens``.
        refresh_margin_s: Seconds before expiry at which a token is stale.
        client: Optional ``httpx.Client`` (tests pass a mock transport).
        clock: Current-time source.
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        conn: Optional[sqlite3.Connection] = None,
        cache_key: str = "default",
        refresh_margin_s: int = 300,
        client: Optional[httpx.Client] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.cache_key = cache_key
        self.refresh_margin_s = refresh_margin_s
        self._repo = AccessTokenRepository(conn) if conn is not None else None
        self._client = client
        self._clock = clock
        self._token: Optional[AccessToken] = None

    def get_token(self) -> str:
        """Return a usable access token string, issuing one if needed.

        Raises:
            FeatureProviderError: If the token endpoint fails.
        """
        now = self._clock()

        if self._token is not None and self._token.is_fresh(now, self.refresh_margin_s):
            return self._token.access_token

        if self._repo is not None:
            stored = self._repo.load(self.cache_key)
            if stored is not None and stored.is_fresh(now, self.refresh_margin_s):
                logger.debug("Access token for '%s' loaded from shared cache", self.cache_key)
                self._token = stored
                return stored.access_token

        token = self._issue(now)
        self._token = token

        if self._repo is not None:
            try:
                self._repo.save(self.cache_key, token)
            except sqlite3.Error as exc:
                logger.warning(
                    "Failed to persist access token for '%s': %s", self.cache_key, exc
                )
        return token.access_token

    def invalidate(self) -> None:
        """Forget the in-memory token (e.g. after a 401)."""
        self._token = None

    def _issue(self, now: datetime) -> AccessToken:
        credentials = base64.b64encode(
            f"{self.client_id}:{self.client_secret}".encode()
        ).decode()
        request_kwargs = dict(
            headers={
                "Authorization": f"Basic {credentials}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            data={"grant_type": "client_credentials"},
            timeout=30.0,
        )
        try:
            if self._client is not None:
                resp = self._client.post(self.token_url, **request_kwargs)
            else:
                resp = httpx.post(self.token_url, **request_kwargs)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise FeatureProviderError(f"Token request to {self.token_url} failed: {exc}") from exc

        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise FeatureProviderError("Token response has no access_token.")
        try:
            expires_in = int(data.get("expires_in", 0))
        except (TypeError, ValueError) as exc:
            raise FeatureProviderError(f"Invalid expires_in in token response: {exc}") from exc

        logger.info("Access token issued for '%s' (expires_in=%ds)", self.cache_key, expires_in)
        return AccessToken(
            access_token=access_token,
            expires_at=now + timedelta(seconds=expires_in),
            issued_at=now,
        )
