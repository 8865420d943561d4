"""Routes inbound triggers into form-engine transitions.

Two entry points, one per kind of chat input:

* ``on_button_press`` — a callback code from an inline button
  (``create``, ``field:<name>``, ``toggle_all_day``, ``confirm``, ``cancel``,
  ``edit``, ``change:<name>``, ``save``, ``exit``, ``menu``, and the health
  codes ``good_morning``, ``good_night``, ``health``, ``sleep``, ``water``,
  ``water:<ml>``).
* ``on_text_reply`` — free text.  Goes to the awaited field when the bot is
  waiting for one, otherwise to the assistant.

Triggers for the same user are serialised by a per-user ``asyncio.Lock``
held for the whole transition, calendar call included.  Both entry points
return the cards to display, in order.

``on_card_shown`` is called by the transport once a draft card has a message
id, so that buttons on that message resolve to that draft.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

from aide.config import STRICT_INVARIANTS
from aide.engine import FormEngine, Outcome, View
from aide.errors import (
    CollaboratorFailure,
    InvariantViolation,
    NotFoundError,
    ValidationError,
)
from aide.fields import FIELD_ORDER, FIELDS
from aide.health import WATER_AMOUNTS_ML, HealthSummary, HealthTracker
from aide.models import InputMode
from aide.presentation import Card, CardRenderer
from aide.services.draft_store import SqliteDraftStore, missing_fields
from aide.services.metrics import metrics

logger = logging.getLogger(__name__)

ASSISTANT_UNAVAILABLE = "Sorry, I couldn't process that right now. Please try again."

_HEALTH_CODES = frozenset({"good_morning", "good_night", "health", "sleep", "water"})


class ActionDispatcher:
    """Entry point for every user-triggered transition."""

    def __init__(
        self,
        store: SqliteDraftStore,
        engine: FormEngine,
        renderer: CardRenderer | None = None,
        assistant=None,
        *,
        health: HealthTracker | None = None,
        strict: bool = STRICT_INVARIANTS,
    ):
        self._store = store
        self._engine = engine
        self._renderer = renderer or CardRenderer()
        self._assistant = assistant
        self._health = health
        self._strict = strict
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ── Ingress ──────────────────────────────────────────────────────

    async def on_button_press(
        self, user_id: int, code: str, message_id: int | None = None,
    ) -> list[Card]:
        """Handle a button callback.  Unknown codes are logged and ignored."""
        action = self._action_for(user_id, code, message_id)
        if action is None:
            logger.warning("Ignoring unknown button code %r from user %s", code, user_id)
            return []

        trigger = code.partition(":")[0]
        async with self._locks[user_id]:
            if message_id is not None:
                await self._store.set_last_anchor(user_id, message_id)
            return await self._run(user_id, trigger, action)

    async def on_text_reply(
        self, user_id: int, text: str, message_id: int | None = None,
    ) -> list[Card]:
        """Handle free text: the awaited field's value, or an assistant request."""
        async with self._locks[user_id]:
            bot_state = await self._store.get_bot_state(user_id)
            if bot_state.awaited_field is not None:
                return await self._run(
                    user_id, "reply", lambda: self._engine.receive_field(bot_state, text),
                )
            return await self._assist(user_id, text)

    async def on_card_shown(self, user_id: int, draft_id: int, message_id: int) -> None:
        """Bind a displayed draft card's message id to its draft.

        Unknown drafts and drafts owned by another user are ignored.
        """
        async with self._locks[user_id]:
            draft = await self._store.get_draft(draft_id)
            if draft is None or draft.user_id != user_id:
                logger.warning(
                    "Ignoring card %s for draft %s: not a draft of user %s",
                    message_id, draft_id, user_id,
                )
                return
            await self._store.bind_anchor(draft_id, message_id)

    # ── Routing ──────────────────────────────────────────────────────

    def _action_for(
        self, user_id: int, code: str, message_id: int | None,
    ) -> Callable[[], Awaitable[Outcome]] | None:
        trigger, _, arg = code.partition(":")
        engine = self._engine

        if trigger == "field" and arg:
            return lambda: engine.request_field(user_id, arg, InputMode.COLLECT, message_id)
        if trigger == "change" and arg:
            return lambda: engine.request_field(user_id, arg, InputMode.EDIT, message_id)
        if trigger in _HEALTH_CODES:
            return self._health_action(user_id, trigger, arg)
        if arg:
            return None

        simple: dict[str, Callable[[int, int | None], Awaitable[Outcome]]] = {
            "create": engine.start,
            "toggle_all_day": engine.toggle_all_day,
            "confirm": engine.confirm,
            "cancel": engine.cancel,
            "edit": engine.begin_edit,
            "save": engine.save,
            "exit": engine.exit_edit,
        }
        if trigger == "menu":
            return lambda: self._show_menu(user_id)
        handler = simple.get(trigger)
        if handler is None:
            return None
        return lambda: handler(user_id, message_id)

    def _health_action(
        self, user_id: int, trigger: str, arg: str,
    ) -> Callable[[], Awaitable[Outcome]] | None:
        if self._health is None:
            return None
        if trigger == "water" and arg:
            if not arg.isdigit() or int(arg) not in WATER_AMOUNTS_ML:
                return None
            return lambda: self._log_water(user_id, int(arg))
        if arg:
            return None
        if trigger == "water":
            return lambda: self._water(user_id)
        if trigger == "sleep":
            return lambda: self._sleep(user_id)
        if trigger == "health":
            return lambda: self._health_overview(user_id)
        if trigger == "good_morning":
            return lambda: self._good_morning(user_id)
        return lambda: self._good_night(user_id)

    async def _run(
        self,
        user_id: int,
        trigger: str,
        action: Callable[[], Awaitable[Outcome]],
    ) -> list[Card]:
        """Execute one transition and render its outcome.

        Must be called with the user's lock held.
        """
        try:
            outcome = await action()
        except NotFoundError as exc:
            logger.info("%s from user %s: %s; showing menu", trigger, user_id, exc)
            outcome = Outcome(View.MENU)
        except ValidationError as exc:
            logger.warning("Ignoring %s from user %s: %s", trigger, user_id, exc)
            return []
        except InvariantViolation:
            if self._strict:
                raise
            logger.exception("Invariant violated handling %s for user %s", trigger, user_id)
            outcome = Outcome(View.MENU)

        if outcome.view == View.MENU and outcome.water is None:
            outcome = await self._menu(user_id)
        metrics.record_transition(trigger, outcome.view.value)
        logger.debug("User %s: %s -> %s", user_id, trigger, outcome.view)
        return [self.render(outcome)]

    async def _show_menu(self, user_id: int) -> Outcome:
        await self._store.clear_bot_state(user_id)
        return Outcome(View.MENU)

    async def _menu(self, user_id: int) -> Outcome:
        """Menu outcome with the quick health status, when tracking is on."""
        if self._health is None:
            return Outcome(View.MENU)
        summary = await self._health.summary(user_id)
        return Outcome(View.MENU, water=summary.water, sleep=summary.sleep)

    # ── Health ───────────────────────────────────────────────────────

    async def _log_water(self, user_id: int, amount_ml: int) -> Outcome:
        stats = await self._health.log_water(user_id, amount_ml)
        return Outcome(View.WATER, water=stats, logged_ml=amount_ml)

    async def _water(self, user_id: int) -> Outcome:
        return Outcome(View.WATER, water=await self._health.water_stats(user_id))

    async def _sleep(self, user_id: int) -> Outcome:
        return Outcome(View.SLEEP, sleep=await self._health.sleep_stats(user_id))

    async def _health_overview(self, user_id: int) -> Outcome:
        summary = await self._health.summary(user_id)
        return Outcome(View.HEALTH, water=summary.water, sleep=summary.sleep)

    async def _good_morning(self, user_id: int) -> Outcome:
        return Outcome(View.GOOD_MORNING, report=await self._health.good_morning(user_id))

    async def _good_night(self, user_id: int) -> Outcome:
        return Outcome(View.GOOD_NIGHT, report=await self._health.good_night(user_id))

    async def _assist(self, user_id: int, text: str) -> list[Card]:
        if self._assistant is None:
            return [self.render(await self._menu(user_id))]

        try:
            reply = await self._assistant.respond(user_id, text)
        except CollaboratorFailure as exc:
            logger.warning("Assistant failed for user %s: %s", user_id, exc)
            return [self._renderer.render_text(ASSISTANT_UNAVAILABLE)]

        cards: list[Card] = []
        if reply.message:
            cards.append(self._renderer.render_text(reply.message))

        if reply.intent == "create_event":
            prefill = parse_prefill(reply.params)
            logger.info("Assistant started an event for user %s with %s", user_id, sorted(prefill))
            cards.extend(
                await self._run(
                    user_id, "create",
                    lambda: self._engine.start(user_id, prefill=prefill),
                )
            )
        elif reply.intent == "show_menu":
            cards.extend(await self._run(user_id, "menu", lambda: self._show_menu(user_id)))
        elif reply.intent:
            logger.warning("Unknown assistant intent %r", reply.intent)

        return cards

    # ── Rendering ────────────────────────────────────────────────────

    def render(self, outcome: Outcome) -> Card:
        """Turn an engine outcome into the card to display."""
        r = self._renderer
        draft = outcome.draft
        view = outcome.view
        if view == View.DRAFT:
            return r.render_draft_card(draft, missing_fields(draft))
        if view == View.PROMPT:
            return r.prompt_for_field(outcome.field, outcome.error)
        if view == View.CREATED:
            return r.render_created_card(draft, outcome.url)
        if view == View.EDIT:
            return r.render_edit_card(draft, outcome.notice)
        if view == View.AUTHORIZE:
            return r.render_authorization(outcome.url)
        if view == View.CONFIRM_FAILED:
            return r.render_confirm_failed(draft)
        if view == View.NOTICE:
            return r.render_text(outcome.notice or "")
        if view == View.WATER:
            return r.render_water_card(outcome.water, outcome.logged_ml)
        if view == View.SLEEP:
            return r.render_sleep_card(outcome.sleep)
        if view == View.HEALTH:
            return r.render_health_card(HealthSummary(sleep=outcome.sleep, water=outcome.water))
        if view == View.GOOD_MORNING:
            return r.render_good_morning(outcome.report)
        if view == View.GOOD_NIGHT:
            return r.render_good_night(outcome.report)
        summary = None
        if outcome.water is not None and outcome.sleep is not None:
            summary = HealthSummary(sleep=outcome.sleep, water=outcome.water)
        return r.render_menu(summary)


def parse_prefill(params: dict[str, Any]) -> dict[str, Any]:
    """Run assistant-extracted values through the field parsers.

    Values that do not parse are dropped; the form will ask for them.
    """
    values: dict[str, Any] = {}
    for name in FIELD_ORDER:
        raw = params.get(name)
        if raw in (None, ""):
            continue
        try:
            values[name] = FIELDS[name].parse(str(raw))
        except ValidationError:
            logger.debug("Dropping unparseable %s from assistant: %r", name, raw)
    raw_all_day = params.get("all_day")
    if raw_all_day is True or str(raw_all_day).strip().lower() == "true":
        values["all_day"] = True
    return values
