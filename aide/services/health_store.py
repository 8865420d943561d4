"""SQLite persistence for sleep and water logs.

Rows are append-only events with a UTC timestamp; day boundaries and
aggregation happen in ``aide.health``, which knows the user's timezone.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime

import aiosqlite

from aide.models import SleepLogKind

logger = logging.getLogger(__name__)

_WATER_LOGS_DDL = """
CREATE TABLE IF NOT EXISTS water_logs (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    INTEGER NOT NULL,
    amount_ml  INTEGER NOT NULL CHECK (amount_ml > 0),
    logged_at  TEXT NOT NULL
);
"""

_SLEEP_LOGS_DDL = """
CREATE TABLE IF NOT EXISTS sleep_logs (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    INTEGER NOT NULL,
    log_type   TEXT NOT NULL CHECK (log_type IN ('wake', 'sleep')),
    logged_at  TEXT NOT NULL
);
"""

_HEALTH_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_water_user_time ON water_logs(user_id, logged_at);",
    "CREATE INDEX IF NOT EXISTS idx_sleep_user_time ON sleep_logs(user_id, log_type, logged_at);",
]


async def init_health_schema(conn: aiosqlite.Connection) -> None:
    await conn.execute(_WATER_LOGS_DDL)
    await conn.execute(_SLEEP_LOGS_DDL)
    for idx_sql in _HEALTH_INDEXES:
        await conn.execute(idx_sql)


class SqliteHealthStore:
    """Water and sleep logs over the shared connection.

    *transaction* is the draft store's ``transaction`` so that writes here
    are serialised with every other write on the same connection.
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        transaction: Callable[[], AbstractAsyncContextManager[None]],
    ) -> None:
        self._conn = conn
        self._transaction = transaction

    # ── Water ────────────────────────────────────────────────────────

    async def log_water(self, user_id: int, amount_ml: int, logged_at: datetime) -> None:
        async with self._transaction():
            await self._conn.execute(
                "INSERT INTO water_logs (user_id, amount_ml, logged_at) VALUES (?, ?, ?)",
                (user_id, amount_ml, logged_at.astimezone(UTC).isoformat()),
            )
        logger.info("Logged %dml of water for user %s", amount_ml, user_id)

    async def water_since(self, user_id: int, since: datetime) -> list[tuple[datetime, int]]:
        """``(logged_at, amount_ml)`` pairs at or after *since*, oldest first."""
        cursor = await self._conn.execute(
            """
            SELECT logged_at, amount_ml FROM water_logs
            WHERE user_id = ? AND logged_at >= ?
            ORDER BY logged_at
            """,
            (user_id, since.astimezone(UTC).isoformat()),
        )
        rows = await cursor.fetchall()
        return [(datetime.fromisoformat(r["logged_at"]), r["amount_ml"]) for r in rows]

    # ── Sleep ────────────────────────────────────────────────────────

    async def log_sleep(self, user_id: int, kind: SleepLogKind, logged_at: datetime) -> None:
        async with self._transaction():
            await self._conn.execute(
                "INSERT INTO sleep_logs (user_id, log_type, logged_at) VALUES (?, ?, ?)",
                (user_id, kind.value, logged_at.astimezone(UTC).isoformat()),
            )
        logger.info("Logged %s for user %s", kind, user_id)

    async def sleep_since(
        self, user_id: int, since: datetime,
    ) -> list[tuple[SleepLogKind, datetime]]:
        """``(kind, logged_at)`` pairs at or after *since*, oldest first."""
        cursor = await self._conn.execute(
            """
            SELECT log_type, logged_at FROM sleep_logs
            WHERE user_id = ? AND logged_at >= ?
            ORDER BY logged_at
            """,
            (user_id, since.astimezone(UTC).isoformat()),
        )
        rows = await cursor.fetchall()
        return [
            (SleepLogKind(r["log_type"]), datetime.fromisoformat(r["logged_at"]))
            for r in rows
        ]

    async def last_sleep_log(self, user_id: int, kind: SleepLogKind) -> datetime | None:
        cursor = await self._conn.execute(
            """
            SELECT logged_at FROM sleep_logs
            WHERE user_id = ? AND log_type = ?
            ORDER BY logged_at DESC LIMIT 1
            """,
            (user_id, kind.value),
        )
        row = await cursor.fetchone()
        return datetime.fromisoformat(row["logged_at"]) if row else None
