"""SQLite persistence for per-user Google OAuth tokens."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime

import aiosqlite

from aide.models import OAuthToken

logger = logging.getLogger(__name__)

_OAUTH_TOKENS_DDL = """
CREATE TABLE IF NOT EXISTS oauth_tokens (
    user_id        INTEGER PRIMARY KEY,
    access_token   TEXT NOT NULL,
    refresh_token  TEXT,
    token_type     TEXT NOT NULL DEFAULT 'Bearer',
    expires_at     TEXT,
    scope          TEXT,
    updated_at     TEXT NOT NULL
);
"""


async def init_token_schema(conn: aiosqlite.Connection) -> None:
    await conn.execute(_OAUTH_TOKENS_DDL)


class SqliteTokenStore:
    """One row of Google credentials per user."""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        transaction: Callable[[], AbstractAsyncContextManager[None]],
    ) -> None:
        self._conn = conn
        self._transaction = transaction

    async def save(self, token: OAuthToken, updated_at: datetime) -> None:
        """Insert or replace a user's token.

        A response without a refresh token keeps the one already stored;
        Google only sends it on the first consent.
        """
        async with self._transaction():
            await self._conn.execute(
                """
                INSERT INTO oauth_tokens (user_id, access_token, refresh_token, token_type,
                                          expires_at, scope, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = COALESCE(excluded.refresh_token, oauth_tokens.refresh_token),
                    token_type = excluded.token_type,
                    expires_at = excluded.expires_at,
                    scope = COALESCE(excluded.scope, oauth_tokens.scope),
                    updated_at = excluded.updated_at
                """,
                (
                    token.user_id,
                    token.access_token,
                    token.refresh_token,
                    token.token_type,
                    token.expires_at.isoformat() if token.expires_at else None,
                    token.scope,
                    updated_at.isoformat(),
                ),
            )
        logger.info("Stored OAuth token for user %s", token.user_id)

    async def get(self, user_id: int) -> OAuthToken | None:
        cursor = await self._conn.execute(
            "SELECT * FROM oauth_tokens WHERE user_id = ?", (user_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return OAuthToken(
            user_id=row["user_id"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            token_type=row["token_type"],
            expires_at=datetime.fromisoformat(row["expires_at"]) if row["expires_at"] else None,
            scope=row["scope"],
        )

    async def delete(self, user_id: int) -> None:
        """Forget a user's credentials (revoked or unusable refresh token)."""
        async with self._transaction():
            await self._conn.execute("DELETE FROM oauth_tokens WHERE user_id = ?", (user_id,))
        logger.info("Removed OAuth token for user %s", user_id)
