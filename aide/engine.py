"""Event-draft state machine.

Drives one draft through ``collecting -> ready -> created <-> editing`` and
keeps the per-user ``BotState`` marker in step with it.  Each public method
handles one trigger and returns an ``Outcome`` naming the view to render;
the dispatcher turns that into a card.

Draft writes and bot-state writes belonging to one transition are grouped
in a single store transaction.  Calendar calls happen outside any
transaction: a slow provider must not hold the database lock.

Triggers that arrive for a draft in the wrong state (a stale button on an
old card, a double tap) are not errors.  They re-render whatever the draft
currently looks like.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from aide.errors import CollaboratorFailure, NotFoundError, ValidationError
from aide.fields import FIELDS, get_field
from aide.health import BedtimeReport, SleepStats, WakeReport, WaterStats
from aide.models import (
    BotState,
    DraftState,
    EventDraft,
    InputMode,
    ResolvedEvent,
    StateData,
    awaiting_token,
)
from aide.services.calendar_client import GoogleCalendarClient
from aide.services.draft_store import SqliteDraftStore, missing_fields

logger = logging.getLogger(__name__)


class View(StrEnum):
    """What the transport should show after a transition."""

    DRAFT = "draft"
    PROMPT = "prompt"
    CREATED = "created"
    EDIT = "edit"
    MENU = "menu"
    AUTHORIZE = "authorize"
    CONFIRM_FAILED = "confirm_failed"
    NOTICE = "notice"
    HEALTH = "health"
    WATER = "water"
    SLEEP = "sleep"
    GOOD_MORNING = "good_morning"
    GOOD_NIGHT = "good_night"


@dataclass
class Outcome:
    view: View
    draft: EventDraft | None = None
    field: str | None = None
    error: str | None = None
    url: str | None = None
    notice: str | None = None
    # Health views
    water: WaterStats | None = None
    sleep: SleepStats | None = None
    report: WakeReport | BedtimeReport | None = None
    logged_ml: int | None = None


SAVE_FAILED_NOTICE = "Could not save the changes to your calendar. Tap Save to try again."


class FormEngine:
    """Transitions for the event-draft form."""

    def __init__(self, store: SqliteDraftStore, calendar: GoogleCalendarClient):
        self._store = store
        self._calendar = calendar

    # ── Collection ───────────────────────────────────────────────────

    async def start(
        self,
        user_id: int,
        anchor_message_id: int | None = None,
        prefill: dict[str, Any] | None = None,
    ) -> Outcome:
        """Begin a new draft, superseding any active one.

        *prefill* maps field names to already-parsed values (e.g. from the
        assistant's extraction); they are stored before the first prompt.
        """
        if not await self._calendar.is_authorized(user_id):
            logger.info("User %s is not authorized for calendar access", user_id)
            return Outcome(View.AUTHORIZE, url=self._calendar.authorization_url(user_id))

        async with self._store.transaction():
            draft = await self._store.create_draft(user_id, anchor_message_id)
            if prefill:
                draft = await self._store.update_fields(draft.id, _to_columns(prefill))
            return await self._advance(draft)

    async def receive_field(self, bot_state: BotState, text: str) -> Outcome:
        """Store a free-text reply for the awaited field.

        Invalid input re-prompts the same field and changes nothing.  A
        marker that points at a draft which is gone or no longer accepts
        input is cleared, and ``NotFoundError`` is raised.
        """
        user_id = bot_state.user_id
        data = bot_state.state_data
        field = bot_state.awaited_field

        draft = await self._store.get_draft(data.draft_id) if data.draft_id else None
        if draft is None or not draft.is_active or field not in FIELDS:
            logger.info("Clearing stale input marker for user %s (%s)", user_id, bot_state.current_state)
            await self._store.clear_bot_state(user_id)
            raise NotFoundError(data.draft_id or 0)

        try:
            value = FIELDS[field].parse(text)
        except ValidationError as exc:
            logger.debug("Rejected %s for draft %s: %s", field, draft.id, exc)
            return Outcome(View.PROMPT, draft, field=field, error=str(exc))

        async with self._store.transaction():
            draft = await self._store.update_fields(draft.id, {FIELDS[field].column: value})
            if data.mode == InputMode.EDIT:
                await self._store.clear_bot_state(user_id)
                return Outcome(View.EDIT, draft)
            return await self._advance(draft)

    async def request_field(
        self,
        user_id: int,
        field: str,
        mode: InputMode = InputMode.COLLECT,
        anchor_message_id: int | None = None,
    ) -> Outcome:
        """Prompt for one specific field (``field:<name>`` / ``change:<name>``)."""
        if get_field(field) is None:
            raise ValidationError(f"Unknown field {field!r}", field)

        draft = await self._current(user_id, anchor_message_id)
        allowed = (
            {DraftState.EDITING} if mode == InputMode.EDIT
            else {DraftState.COLLECTING, DraftState.READY}
        )
        if draft.state not in allowed:
            return self._stale(draft, f"{mode}:{field}")

        await self._store.set_bot_state(
            user_id,
            awaiting_token(field),
            StateData(
                draft_id=draft.id,
                field=field,
                mode=mode,
                anchor_message_id=draft.anchor_message_id,
            ),
        )
        return Outcome(View.PROMPT, draft, field=field)

    async def toggle_all_day(self, user_id: int, anchor_message_id: int | None = None) -> Outcome:
        """Flip ``all_day``.  Start and end values are kept either way."""
        draft = await self._current(user_id, anchor_message_id)
        if not draft.is_active:
            return self._stale(draft, "toggle_all_day")

        async with self._store.transaction():
            draft = await self._store.update_fields(draft.id, {"all_day": not draft.all_day})
            logger.info("Draft %s all_day=%s", draft.id, draft.all_day)
            if draft.state == DraftState.EDITING:
                return Outcome(View.EDIT, draft)
            return await self._advance(draft)

    # ── Materialization ──────────────────────────────────────────────

    async def confirm(self, user_id: int, anchor_message_id: int | None = None) -> Outcome:
        """Create the calendar event for a ready draft."""
        draft = await self._current(user_id, anchor_message_id)
        if draft.state == DraftState.COLLECTING:
            async with self._store.transaction():
                return await self._advance(draft)
        if draft.state != DraftState.READY:
            return self._stale(draft, "confirm")

        # Ready but incomplete: all-day was switched off after promotion.
        if missing_fields(draft):
            async with self._store.transaction():
                return await self._advance(draft)

        try:
            external_id = await self._calendar.create(user_id, ResolvedEvent.from_draft(draft))
        except CollaboratorFailure as exc:
            logger.warning("Calendar create failed for draft %s: %s", draft.id, exc)
            return Outcome(View.CONFIRM_FAILED, draft, error=str(exc))

        url = self._calendar.url_for(external_id)
        try:
            async with self._store.transaction():
                draft = await self._store.mark_created(draft.id, external_id, url)
                await self._store.clear_bot_state(user_id)
        except Exception:
            logger.error(
                "Calendar event %s exists but draft %s was not marked created; "
                "reconcile manually", external_id, draft.id,
            )
            raise

        logger.info("Draft %s materialized as %s", draft.id, external_id)
        return Outcome(View.CREATED, draft, url=url)

    # ── Editing ──────────────────────────────────────────────────────

    async def begin_edit(self, user_id: int, anchor_message_id: int | None = None) -> Outcome:
        draft = await self._current(user_id, anchor_message_id)
        if draft.state not in (DraftState.CREATED, DraftState.EDITING):
            return self._stale(draft, "edit")

        async with self._store.transaction():
            draft = await self._store.begin_editing(draft.id)
            await self._store.clear_bot_state(user_id)
        return Outcome(View.EDIT, draft)

    async def save(self, user_id: int, anchor_message_id: int | None = None) -> Outcome:
        """Push the edited values to the calendar and leave editing.

        On provider failure the draft stays in ``editing`` and the edit
        card is shown again with a retry notice.
        """
        draft = await self._current(user_id, anchor_message_id)
        if draft.state != DraftState.EDITING:
            return self._stale(draft, "save")

        missing = missing_fields(draft)
        if missing:
            return await self.request_field(
                user_id, missing[0], InputMode.EDIT, draft.anchor_message_id,
            )

        try:
            await self._calendar.update(
                user_id, draft.external_event_id, ResolvedEvent.from_draft(draft),
            )
        except CollaboratorFailure as exc:
            logger.warning("Calendar update failed for draft %s: %s", draft.id, exc)
            return Outcome(View.EDIT, draft, error=str(exc), notice=SAVE_FAILED_NOTICE)

        async with self._store.transaction():
            draft = await self._store.end_editing(draft.id)
            await self._store.clear_bot_state(user_id)
        return Outcome(View.CREATED, draft, url=self._event_url(draft))

    async def exit_edit(self, user_id: int, anchor_message_id: int | None = None) -> Outcome:
        """Leave editing without a calendar call; edits already stored are kept."""
        draft = await self._current(user_id, anchor_message_id)
        if draft.state not in (DraftState.CREATED, DraftState.EDITING):
            return self._stale(draft, "exit")

        async with self._store.transaction():
            draft = await self._store.end_editing(draft.id)
            await self._store.clear_bot_state(user_id)
        return Outcome(View.CREATED, draft, url=self._event_url(draft))

    # ── Cancel ───────────────────────────────────────────────────────

    async def cancel(self, user_id: int, anchor_message_id: int | None = None) -> Outcome:
        """Discard the draft, deleting its calendar event if it has one.

        The calendar delete is best-effort: a failure is logged and the
        draft is removed anyway.  A card whose draft is gone raises
        ``NotFoundError`` and leaves the current draft alone.
        """
        draft = await self._store.get_current_draft(user_id, anchor_message_id)
        if draft is None:
            if anchor_message_id is not None:
                raise NotFoundError(anchor_message_id)
            await self._store.clear_bot_state(user_id)
            return Outcome(View.MENU)

        if draft.external_event_id:
            try:
                await self._calendar.delete(user_id, draft.external_event_id)
            except CollaboratorFailure as exc:
                logger.warning(
                    "Could not delete calendar event %s for draft %s: %s",
                    draft.external_event_id, draft.id, exc,
                )

        async with self._store.transaction():
            await self._store.delete_draft(draft.id)
            await self._store.clear_bot_state(user_id)
        return Outcome(View.MENU)

    # ── Internal ─────────────────────────────────────────────────────

    async def _current(self, user_id: int, anchor_message_id: int | None) -> EventDraft:
        draft = await self._store.get_current_draft(user_id, anchor_message_id)
        if draft is None:
            raise NotFoundError(anchor_message_id or 0)
        return draft

    async def _advance(self, draft: EventDraft) -> Outcome:
        """Prompt the first missing field, or show the draft card when complete.

        Must run inside a store transaction.
        """
        missing = missing_fields(draft)
        if not missing:
            await self._store.clear_bot_state(draft.user_id)
            return Outcome(View.DRAFT, draft)

        field = missing[0]
        await self._store.set_bot_state(
            draft.user_id,
            awaiting_token(field),
            StateData(
                draft_id=draft.id,
                field=field,
                mode=InputMode.COLLECT,
                anchor_message_id=draft.anchor_message_id,
            ),
        )
        return Outcome(View.PROMPT, draft, field=field)

    def _event_url(self, draft: EventDraft) -> str:
        return draft.event_url or self._calendar.url_for(draft.external_event_id)

    def _stale(self, draft: EventDraft, trigger: str) -> Outcome:
        logger.info("Ignoring %s for draft %s in state %s", trigger, draft.id, draft.state)
        if draft.state == DraftState.EDITING:
            return Outcome(View.EDIT, draft)
        if draft.state == DraftState.CREATED:
            return Outcome(View.CREATED, draft, url=self._event_url(draft))
        return Outcome(View.DRAFT, draft)


def _to_columns(values: dict[str, Any]) -> dict[str, Any]:
    """Map field names (``date``, ``start``...) to draft columns, dropping unknowns."""
    columns: dict[str, Any] = {}
    for name, value in values.items():
        if name == "all_day":
            columns["all_day"] = bool(value)
        elif name in FIELDS and value is not None:
            columns[FIELDS[name].column] = value
    return columns
