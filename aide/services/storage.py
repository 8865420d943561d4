"""Opens the SQLite database and builds the stores that share it."""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from aide.services.draft_store import SqliteDraftStore, init_draft_schema
from aide.services.health_store import SqliteHealthStore, init_health_schema
from aide.services.token_store import SqliteTokenStore, init_token_schema

logger = logging.getLogger(__name__)


async def init_db(conn: aiosqlite.Connection) -> None:
    """Create every table and index if they do not exist."""
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA busy_timeout = 5000;")
    await init_draft_schema(conn)
    await init_health_schema(conn)
    await init_token_schema(conn)


class StoreGroup:
    """Stores sharing one connection and one write lock."""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.drafts = SqliteDraftStore(conn)
        self.health = SqliteHealthStore(conn, self.drafts.transaction)
        self.tokens = SqliteTokenStore(conn, self.drafts.transaction)

    async def close(self) -> None:
        await self.conn.close()


async def open_stores(db_path: str | Path) -> StoreGroup:
    """Open (creating if needed) the SQLite database and return its stores.

    The connection runs in autocommit mode; ``SqliteDraftStore.transaction()``
    issues explicit ``BEGIN IMMEDIATE`` / ``COMMIT`` statements.
    """
    path = str(db_path)
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(path, isolation_level=None)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)
    logger.info("Database ready at %s", path)
    return StoreGroup(conn)
