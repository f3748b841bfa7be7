"""Repository for the shared provider access-token cache."""

from __future__ import annotations

from typing import Optional

from stock_recommender.db.repositories.base import BaseRepository
from stock_recommender.models.meta import AccessToken
from stock_recommender.utils.time_utils import format_utc, parse_utc


class AccessTokenRepository(BaseRepository):
    """Reads and upserts ``provider_access_tokens`` rows keyed by ``cache_key``."""

    def load(self, cache_key: str) -> Optional[AccessToken]:
        row = self.fetchone(
            """
            SELECT access_token, expires_at, issued_at
            FROM provider_access_tokens
            WHERE cache_key = ?;
            """,
            (cache_key,),
        )
        if row is None:
            return None
        return AccessToken(
            access_token=row["access_token"],
            expires_at=parse_utc(row["expires_at"]),
            issued_at=parse_utc(row["issued_at"]),
        )

    def save(self, cache_key: str, token: AccessToken) -> None:
        self.execute(
            """
            INSERT INTO provider_access_tokens (
                cache_key, access_token, expires_at, issued_at, updated_at
            ) VALUES (?, ?, ?, ?, strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
            ON CONFLICT(cache_key) DO UPDATE SET
                access_token = excluded.access_token,
                expires_at   = excluded.expires_at,
                issued_at    = excluded.issued_at,
                updated_at   = excluded.updated_at;
            """,
            (
                cache_key,
                token.access_token,
                format_utc(token.expires_at),
                format_utc(token.issued_at),
            ),
        )
        self.conn.commit()
