"""Domain models for the event-draft form engine and its neighbours.

``DraftState`` is the lifecycle of one draft row; ``BotState`` records which
input the bot is waiting for.  ``ResolvedEvent`` is the fully-typed payload
handed to the calendar adapter once a draft is complete.  Sleep-log kinds
and stored OAuth credentials live here too.
"""

from __future__ import annotations

import datetime as dt
from datetime import date, datetime, time
from enum import StrEnum

from pydantic import BaseModel, Field

from aide.errors import InvariantViolation


class DraftState(StrEnum):
    """Lifecycle of an event draft."""

    COLLECTING = "collecting"
    READY = "ready"
    CREATED = "created"
    EDITING = "editing"
    # Pushed out of the active set by a newer draft; kept, never resumed.
    SUPERSEDED = "superseded"


ACTIVE_STATES: frozenset[DraftState] = frozenset(
    {DraftState.COLLECTING, DraftState.READY, DraftState.EDITING}
)

VALID_TRANSITIONS: dict[DraftState, set[DraftState]] = {
    DraftState.COLLECTING: {DraftState.READY, DraftState.SUPERSEDED},
    DraftState.READY: {DraftState.CREATED, DraftState.SUPERSEDED},
    DraftState.CREATED: {DraftState.EDITING},
    DraftState.EDITING: {DraftState.CREATED},
    DraftState.SUPERSEDED: set(),
}


def validate_transition(from_state: DraftState, to_state: DraftState) -> bool:
    """Return True if *from_state* may move to *to_state*."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


class InputMode(StrEnum):
    """Whether an awaited field belongs to initial collection or an edit."""

    COLLECT = "collect"
    EDIT = "edit"


AWAITING_PREFIX = "awaiting:"


def awaiting_token(field: str) -> str:
    """Build the ``BotState.current_state`` token for an awaited field."""
    return f"{AWAITING_PREFIX}{field}"


class EventDraft(BaseModel):
    """One in-progress or completed event for one user."""

    id: int
    user_id: int
    state: DraftState = DraftState.COLLECTING
    title: str | None = None
    event_date: date | None = None
    start_time: str | None = Field(default=None, description="HH:MM")
    end_time: str | None = Field(default=None, description="HH:MM")
    location: str | None = None
    all_day: bool = False
    external_event_id: str | None = None
    event_url: str | None = None
    anchor_message_id: int | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    @property
    def is_materialized(self) -> bool:
        return self.external_event_id is not None

    @property
    def is_complete(self) -> bool:
        if not (self.title and self.event_date and self.location):
            return False
        if self.all_day:
            return True
        return bool(self.start_time and self.end_time)


class ResolvedEvent(BaseModel):
    """Fully-resolved event payload passed to the calendar adapter."""

    title: str
    date: dt.date
    start: time | None = None
    end: time | None = None
    location: str | None = None
    all_day: bool = False

    @classmethod
    def from_draft(cls, draft: EventDraft) -> ResolvedEvent:
        """Build the payload from a complete draft.

        Raises:
            InvariantViolation: if the draft is not complete.
        """
        if not draft.is_complete:
            raise InvariantViolation(f"Draft {draft.id} is incomplete and cannot be resolved")
        return cls(
            title=draft.title,
            date=draft.event_date,
            start=None if draft.all_day else _to_time(draft.start_time),
            end=None if draft.all_day else _to_time(draft.end_time),
            location=draft.location,
            all_day=draft.all_day,
        )


def _to_time(value: str | None) -> time | None:
    if not value:
        return None
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


class StateData(BaseModel):
    """Transition-local context kept alongside the awaited-input marker."""

    draft_id: int | None = None
    field: str | None = None
    mode: InputMode = InputMode.COLLECT
    anchor_message_id: int | None = None


class BotState(BaseModel):
    """Per-user "what are we waiting for" marker."""

    user_id: int
    current_state: str | None = None
    state_data: StateData = Field(default_factory=StateData)
    last_anchor_message_id: int | None = None

    @property
    def awaited_field(self) -> str | None:
        """Name of the awaited draft field, or ``None`` in free-form mode."""
        if self.current_state and self.current_state.startswith(AWAITING_PREFIX):
            return self.current_state[len(AWAITING_PREFIX):]
        return None


class SleepLogKind(StrEnum):
    """The two sleep events a user reports."""

    WAKE = "wake"
    SLEEP = "sleep"


class OAuthToken(BaseModel):
    """Google OAuth credentials granted by one user."""

    user_id: int
    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_at: datetime | None = None
    scope: str | None = None

    def expires_within(self, now: datetime, seconds: int = 60) -> bool:
        """True if the access token is expired or will be within *seconds*."""
        if self.expires_at is None:
            return False
        return (self.expires_at - now).total_seconds() <= seconds
