"""SQLite persistence for event drafts and per-user bot state.

Two tables:

* ``event_drafts`` — one row per draft.  A partial unique index guarantees
  at most one row per user in an active state (collecting / ready / editing).
* ``bot_state`` — one row per user naming the awaited input, if any.

All mutations run inside ``transaction()``, which issues ``BEGIN IMMEDIATE``
on the shared ``aiosqlite`` connection and is serialised by an
``asyncio.Lock``.  Public methods open their own transaction, or join the
caller's when one is already running in the same task, so the engine can
group a draft write and a bot-state write into one atomic unit.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime
from typing import Any

import aiosqlite

from aide.errors import InvariantViolation, NotFoundError
from aide.fields import FIELD_ORDER, TIME_FIELDS
from aide.models import (
    ACTIVE_STATES,
    BotState,
    DraftState,
    EventDraft,
    StateData,
    validate_transition,
)

logger = logging.getLogger(__name__)

# ── Schema ───────────────────────────────────────────────────────────

_EVENT_DRAFTS_DDL = """
CREATE TABLE IF NOT EXISTS event_drafts (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id            INTEGER NOT NULL,
    state              TEXT NOT NULL DEFAULT 'collecting',
    title              TEXT,
    event_date         TEXT,
    start_time         TEXT,
    end_time           TEXT,
    location           TEXT,
    all_day            INTEGER NOT NULL DEFAULT 0,
    external_event_id  TEXT,
    event_url          TEXT,
    anchor_message_id  INTEGER,
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL
);
"""

_EVENT_DRAFTS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_drafts_user_state ON event_drafts(user_id, state);",
    "CREATE INDEX IF NOT EXISTS idx_drafts_anchor ON event_drafts(user_id, anchor_message_id);",
    # At most one active draft per user
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_drafts_one_active ON event_drafts(user_id) "
        "WHERE state IN ('collecting', 'ready', 'editing');"
    ),
]

_BOT_STATE_DDL = """
CREATE TABLE IF NOT EXISTS bot_state (
    user_id                 INTEGER PRIMARY KEY,
    current_state           TEXT,
    state_data              TEXT NOT NULL DEFAULT '{}',
    last_anchor_message_id  INTEGER,
    updated_at              TEXT NOT NULL
);
"""

# Columns a caller may write through ``update_fields``.
_WRITABLE_COLUMNS = frozenset(
    {"title", "event_date", "start_time", "end_time", "location", "all_day", "anchor_message_id"}
)

_ACTIVE_VALUES = tuple(state.value for state in sorted(ACTIVE_STATES))


async def init_draft_schema(conn: aiosqlite.Connection) -> None:
    """Create the draft and bot-state tables and indexes if they do not exist."""
    await conn.execute(_EVENT_DRAFTS_DDL)
    await conn.execute(_BOT_STATE_DDL)
    for idx_sql in _EVENT_DRAFTS_INDEXES:
        await conn.execute(idx_sql)


def missing_fields(draft: EventDraft) -> list[str]:
    """Return the names of required fields the draft still lacks, in prompt order.

    ``start`` and ``end`` are only required when the draft is not all-day.
    """
    values = {
        "title": draft.title,
        "date": draft.event_date,
        "start": draft.start_time,
        "end": draft.end_time,
        "location": draft.location,
    }
    missing = []
    for name in FIELD_ORDER:
        if draft.all_day and name in TIME_FIELDS:
            continue
        if not values[name]:
            missing.append(name)
    return missing


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SqliteDraftStore:
    """Draft and bot-state store over a single ``aiosqlite`` connection."""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._conn = conn
        self._clock = clock
        self._lock = asyncio.Lock()
        self._tx_owner: asyncio.Task | None = None

    # ── Transactions ─────────────────────────────────────────────────

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run the enclosed block as one ``BEGIN IMMEDIATE`` transaction.

        Re-entrant within the task that opened it: nested calls join the
        outer transaction instead of starting a new one.
        """
        current = asyncio.current_task()
        if self._tx_owner is not None and self._tx_owner is current:
            yield
            return

        async with self._lock:
            self._tx_owner = current
            await self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                await self._conn.execute("ROLLBACK")
                raise
            else:
                await self._conn.execute("COMMIT")
            finally:
                self._tx_owner = None

    # ── Draft lifecycle ──────────────────────────────────────────────

    async def create_draft(
        self, user_id: int, anchor_message_id: int | None = None,
    ) -> EventDraft:
        """Supersede the user's active draft (if any) and insert a new one.

        Collecting / ready drafts become ``superseded``; an ``editing`` draft
        is materialized already, so it falls back to ``created``.
        """
        async with self.transaction():
            now = self._now()
            cursor = await self._conn.execute(
                """
                UPDATE event_drafts SET state = ?, updated_at = ?
                WHERE user_id = ? AND state IN (?, ?)
                """,
                (DraftState.SUPERSEDED.value, now, user_id,
                 DraftState.COLLECTING.value, DraftState.READY.value),
            )
            superseded = cursor.rowcount
            cursor = await self._conn.execute(
                """
                UPDATE event_drafts SET state = ?, updated_at = ?
                WHERE user_id = ? AND state = ?
                """,
                (DraftState.CREATED.value, now, user_id, DraftState.EDITING.value),
            )
            superseded += cursor.rowcount
            if superseded:
                logger.info("Superseded %d active draft(s) for user %s", superseded, user_id)

            cursor = await self._conn.execute(
                """
                INSERT INTO event_drafts (user_id, state, anchor_message_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, DraftState.COLLECTING.value, anchor_message_id, now, now),
            )
            draft = await self._require(cursor.lastrowid)

        logger.info("Created draft %s for user %s", draft.id, user_id)
        return draft

    async def get_draft(self, draft_id: int) -> EventDraft | None:
        cursor = await self._conn.execute(
            "SELECT * FROM event_drafts WHERE id = ?", (draft_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_draft(row) if row else None

    async def get_active_draft(self, user_id: int) -> EventDraft | None:
        """Most recently created draft in an active state, if any."""
        placeholders = ", ".join("?" for _ in _ACTIVE_VALUES)
        cursor = await self._conn.execute(
            f"""
            SELECT * FROM event_drafts
            WHERE user_id = ? AND state IN ({placeholders})
            ORDER BY id DESC LIMIT 1
            """,
            (user_id, *_ACTIVE_VALUES),
        )
        row = await cursor.fetchone()
        return self._row_to_draft(row) if row else None

    async def get_draft_by_anchor(
        self, user_id: int, anchor_message_id: int,
    ) -> EventDraft | None:
        """Newest non-superseded draft bound to a displayed card."""
        cursor = await self._conn.execute(
            """
            SELECT * FROM event_drafts
            WHERE user_id = ? AND anchor_message_id = ? AND state != ?
            ORDER BY id DESC LIMIT 1
            """,
            (user_id, anchor_message_id, DraftState.SUPERSEDED.value),
        )
        row = await cursor.fetchone()
        return self._row_to_draft(row) if row else None

    async def get_current_draft(
        self, user_id: int, anchor_message_id: int | None = None,
    ) -> EventDraft | None:
        """Resolve the draft a trigger refers to.

        With an anchor, only the draft bound to that card counts: a card
        whose draft was superseded or deleted resolves to ``None`` rather
        than to whatever the user is working on now.  Without one, the
        active draft wins, then the newest created draft.
        """
        if anchor_message_id is not None:
            return await self.get_draft_by_anchor(user_id, anchor_message_id)

        draft = await self.get_active_draft(user_id)
        if draft is not None:
            return draft

        cursor = await self._conn.execute(
            """
            SELECT * FROM event_drafts
            WHERE user_id = ? AND state = ?
            ORDER BY id DESC LIMIT 1
            """,
            (user_id, DraftState.CREATED.value),
        )
        row = await cursor.fetchone()
        return self._row_to_draft(row) if row else None

    async def update_fields(self, draft_id: int, fields: dict[str, Any]) -> EventDraft:
        """Apply a partial update and promote ``collecting -> ready`` when complete.

        Never demotes ``ready`` back to ``collecting``.

        Raises:
            NotFoundError: the draft does not exist.
            InvariantViolation: the draft is not active, or an unknown column
                was passed.
        """
        unknown = set(fields) - _WRITABLE_COLUMNS
        if unknown:
            raise InvariantViolation(f"Cannot write columns {sorted(unknown)} on a draft")

        async with self.transaction():
            draft = await self._require(draft_id)
            if not draft.is_active:
                raise InvariantViolation(
                    f"Draft {draft_id} is {draft.state}; fields can only change while active"
                )

            if fields:
                assignments = ", ".join(f"{column} = ?" for column in fields)
                values = [self._to_db(value) for value in fields.values()]
                await self._conn.execute(
                    f"UPDATE event_drafts SET {assignments}, updated_at = ? WHERE id = ?",
                    (*values, self._now(), draft_id),
                )
                draft = await self._require(draft_id)

            if draft.state == DraftState.COLLECTING and draft.is_complete:
                await self._set_state(draft, DraftState.READY)
                draft = await self._require(draft_id)
                logger.info("Draft %s is complete, now ready", draft_id)

        return draft

    async def bind_anchor(self, draft_id: int, anchor_message_id: int) -> EventDraft:
        """Point a draft at the card that now displays it.

        Superseded drafts are left alone: no trigger can reach them anyway.
        """
        async with self.transaction():
            draft = await self._require(draft_id)
            if draft.state == DraftState.SUPERSEDED:
                logger.info("Not binding superseded draft %s to card %s", draft_id, anchor_message_id)
                return draft
            await self._conn.execute(
                "UPDATE event_drafts SET anchor_message_id = ?, updated_at = ? WHERE id = ?",
                (anchor_message_id, self._now(), draft_id),
            )
            return await self._require(draft_id)

    async def mark_created(
        self, draft_id: int, external_event_id: str, event_url: str | None = None,
    ) -> EventDraft:
        """Record a successful calendar insert: ``ready -> created``."""
        async with self.transaction():
            draft = await self._require(draft_id)
            if draft.external_event_id is not None:
                raise InvariantViolation(
                    f"Draft {draft_id} already holds external event {draft.external_event_id}"
                )
            if draft.state != DraftState.READY:
                raise InvariantViolation(
                    f"Draft {draft_id} must be ready to be marked created (is {draft.state})"
                )
            await self._conn.execute(
                """
                UPDATE event_drafts
                SET state = ?, external_event_id = ?, event_url = ?, updated_at = ?
                WHERE id = ?
                """,
                (DraftState.CREATED.value, external_event_id, event_url, self._now(), draft_id),
            )
            return await self._require(draft_id)

    async def begin_editing(self, draft_id: int) -> EventDraft:
        """``created -> editing``.  Idempotent when already editing."""
        return await self._toggle_editing(draft_id, DraftState.CREATED, DraftState.EDITING)

    async def end_editing(self, draft_id: int) -> EventDraft:
        """``editing -> created``.  Idempotent when already created."""
        return await self._toggle_editing(draft_id, DraftState.EDITING, DraftState.CREATED)

    async def delete_draft(self, draft_id: int) -> str | None:
        """Delete the row and return the external event id it held, if any.

        The caller owns deleting the matching calendar event.
        """
        async with self.transaction():
            draft = await self._require(draft_id)
            await self._conn.execute("DELETE FROM event_drafts WHERE id = ?", (draft_id,))
        logger.info("Deleted draft %s (external id: %s)", draft_id, draft.external_event_id)
        return draft.external_event_id

    # ── Bot state ────────────────────────────────────────────────────

    async def get_bot_state(self, user_id: int) -> BotState:
        cursor = await self._conn.execute(
            """
            SELECT current_state, state_data, last_anchor_message_id
            FROM bot_state WHERE user_id = ?
            """,
            (user_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return BotState(user_id=user_id)
        return BotState(
            user_id=user_id,
            current_state=row["current_state"],
            state_data=StateData(**json.loads(row["state_data"] or "{}")),
            last_anchor_message_id=row["last_anchor_message_id"],
        )

    async def set_bot_state(
        self,
        user_id: int,
        current_state: str | None,
        data: StateData | None = None,
        last_anchor_message_id: int | None = None,
    ) -> None:
        """Overwrite the awaited-input marker; keeps the last anchor unless given."""
        payload = (data or StateData()).model_dump_json()
        async with self.transaction():
            await self._conn.execute(
                """
                INSERT INTO bot_state (user_id, current_state, state_data,
                                       last_anchor_message_id, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (user_id) DO UPDATE SET
                    current_state = excluded.current_state,
                    state_data = excluded.state_data,
                    last_anchor_message_id = COALESCE(
                        excluded.last_anchor_message_id, bot_state.last_anchor_message_id
                    ),
                    updated_at = excluded.updated_at
                """,
                (user_id, current_state, payload, last_anchor_message_id, self._now()),
            )

    async def clear_bot_state(self, user_id: int) -> None:
        """Return the user to free-form mode (keeps the last anchor id)."""
        await self.set_bot_state(user_id, None)

    async def set_last_anchor(self, user_id: int, message_id: int) -> None:
        async with self.transaction():
            await self._conn.execute(
                """
                INSERT INTO bot_state (user_id, last_anchor_message_id, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT (user_id) DO UPDATE SET
                    last_anchor_message_id = excluded.last_anchor_message_id,
                    updated_at = excluded.updated_at
                """,
                (user_id, message_id, self._now()),
            )

    # ── Internal ─────────────────────────────────────────────────────

    async def _toggle_editing(
        self, draft_id: int, from_state: DraftState, to_state: DraftState,
    ) -> EventDraft:
        async with self.transaction():
            draft = await self._require(draft_id)
            if draft.external_event_id is None:
                raise InvariantViolation(
                    f"Draft {draft_id} has no calendar event; editing needs a created event"
                )
            if draft.state == to_state:
                return draft
            if draft.state != from_state:
                raise InvariantViolation(
                    f"Draft {draft_id} is {draft.state}; expected {from_state}"
                )
            await self._set_state(draft, to_state)
            return await self._require(draft_id)

    async def _set_state(self, draft: EventDraft, state: DraftState) -> None:
        if not validate_transition(draft.state, state):
            raise InvariantViolation(f"Draft {draft.id} cannot move {draft.state} -> {state}")
        await self._conn.execute(
            "UPDATE event_drafts SET state = ?, updated_at = ? WHERE id = ?",
            (state.value, self._now(), draft.id),
        )

    async def _require(self, draft_id: int) -> EventDraft:
        draft = await self.get_draft(draft_id)
        if draft is None:
            raise NotFoundError(draft_id)
        return draft

    def _now(self) -> str:
        return self._clock().isoformat()

    @staticmethod
    def _to_db(value: Any) -> Any:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, date):
            return value.isoformat()
        return value

    @staticmethod
    def _row_to_draft(row: aiosqlite.Row) -> EventDraft:
        """Convert a database row into an ``EventDraft``."""
        return EventDraft(
            id=row["id"],
            user_id=row["user_id"],
            state=DraftState(row["state"]),
            title=row["title"],
            event_date=date.fromisoformat(row["event_date"]) if row["event_date"] else None,
            start_time=row["start_time"],
            end_time=row["end_time"],
            location=row["location"],
            all_day=bool(row["all_day"]),
            external_event_id=row["external_event_id"],
            event_url=row["event_url"],
            anchor_message_id=row["anchor_message_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
