"""Render drafts and bot prompts into transport-neutral cards.

A ``Card`` is what the chat transport displays: a block of text, rows of
buttons and, for prompts, a force-reply flag with an input placeholder.
Buttons carry either a callback ``code`` (fed back into the dispatcher) or
an external ``url``.  Nothing in here reads or writes state; the health
cards render stats computed by ``aide.health``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from aide.fields import FIELD_ORDER, FIELDS, TIME_FIELDS, format_date
from aide.health import (
    WATER_AMOUNTS_ML,
    BedtimeReport,
    HealthSummary,
    SleepStats,
    WakeReport,
    WaterStats,
)
from aide.models import EventDraft

_EMPTY = "…"


class Button(BaseModel):
    """One inline button: a callback code or an external link."""

    text: str
    code: str | None = None
    url: str | None = None


class Card(BaseModel):
    """A displayable surface."""

    text: str
    buttons: list[list[Button]] = Field(default_factory=list)
    anchor_message_id: int | None = None
    # Set on cards that act on a draft, so the transport can report the
    # message id it was shown under.
    draft_id: int | None = None
    force_reply: bool = False
    placeholder: str | None = None


class CardRenderer:
    """Builds cards for every view the form engine can end on."""

    # ── Draft lifecycle ──────────────────────────────────────────────

    def render_draft_card(self, draft: EventDraft, missing: list[str]) -> Card:
        """Summary of a draft under collection.

        Every field gets a button so the user can fill or change it in any
        order; confirm is only offered once nothing is missing.
        """
        header = "📅 *New event*"
        if missing:
            labels = ", ".join(FIELDS[name].label.lower() for name in missing)
            footer = f"Still missing: {labels}"
        else:
            footer = "Everything is set. Confirm to add it to your calendar."

        rows = self._field_rows(draft, prefix="field")
        rows.append([self._all_day_button(draft)])
        actions = [Button(text="✖ Cancel", code="cancel")]
        if not missing:
            actions.insert(0, Button(text="✅ Confirm", code="confirm"))
        rows.append(actions)

        return Card(
            text=f"{header}\n\n{self._summary(draft)}\n\n{footer}",
            buttons=rows,
            anchor_message_id=draft.anchor_message_id,
            draft_id=draft.id,
        )

    def render_created_card(self, draft: EventDraft, url: str) -> Card:
        return Card(
            text=f"✅ *Event created*\n\n{self._summary(draft)}",
            buttons=[
                [Button(text="🔗 Open in Google Calendar", url=url)],
                [
                    Button(text="✏️ Edit", code="edit"),
                    Button(text="🗑 Delete", code="cancel"),
                ],
                [Button(text="🏠 Menu", code="menu")],
            ],
            anchor_message_id=draft.anchor_message_id,
            draft_id=draft.id,
        )

    def render_edit_card(self, draft: EventDraft, notice: str | None = None) -> Card:
        """Edit view of a created event, with one change button per field."""
        text = f"✏️ *Editing event*\n\n{self._summary(draft)}"
        if notice:
            text = f"{text}\n\n⚠️ {notice}"

        rows = self._field_rows(draft, prefix="change")
        rows.append([self._all_day_button(draft)])
        rows.append([
            Button(text="💾 Save", code="save"),
            Button(text="↩ Exit", code="exit"),
        ])
        rows.append([Button(text="🗑 Delete", code="cancel")])
        return Card(
            text=text,
            buttons=rows,
            anchor_message_id=draft.anchor_message_id,
            draft_id=draft.id,
        )

    def render_confirm_failed(self, draft: EventDraft) -> Card:
        return Card(
            text=(
                "❌ Could not create the event in your calendar.\n\n"
                f"{self._summary(draft)}\n\nYou can try again."
            ),
            buttons=[
                [Button(text="🔄 Try again", code="confirm")],
                [Button(text="✖ Cancel", code="cancel")],
            ],
            anchor_message_id=draft.anchor_message_id,
            draft_id=draft.id,
        )

    # ── Prompts and free-standing cards ──────────────────────────────

    def prompt_for_field(self, field: str, error: str | None = None) -> Card:
        spec = FIELDS[field]
        text = spec.prompt if error is None else f"❌ {error}\n\n{spec.prompt}"
        return Card(text=text, force_reply=True, placeholder=spec.placeholder)

    def render_menu(self, summary: HealthSummary | None = None) -> Card:
        text = "👋 What would you like to do?"
        if summary is not None:
            text = f"{text}\n\n{self._quick_status(summary)}"
        return Card(
            text=text,
            buttons=[
                [
                    Button(text="☀️ Good morning", code="good_morning"),
                    Button(text="🌙 Good night", code="good_night"),
                ],
                [Button(text="📅 Create event", code="create")],
                [
                    Button(text="💪 Health", code="health"),
                    Button(text="💧 Water", code="water"),
                ],
            ],
        )

    def render_authorization(self, url: str) -> Card:
        return Card(
            text=(
                "🔐 I need access to your Google Calendar before I can create events.\n"
                "Authorize below, then tap *Create event* again."
            ),
            buttons=[[Button(text="🔑 Connect Google Calendar", url=url)]],
        )

    def render_text(self, text: str) -> Card:
        return Card(text=text)

    # ── Health ───────────────────────────────────────────────────────

    def render_health_card(self, summary: HealthSummary) -> Card:
        sleep, water = summary.sleep, summary.water
        lines = ["💪 *Health*", "", "😴 *Sleep*"]
        if sleep.last_night_hours is not None:
            lines.append(f"Last night: {format_hours(sleep.last_night_hours)}")
        if sleep.average_hours is not None:
            lines.append(f"7-day average: {format_hours(sleep.average_hours)}")
        if sleep.last_night_hours is None and sleep.average_hours is None:
            lines.append("No sleep logged yet.")
        lines += [
            "",
            "💧 *Water*",
            f"Today: {water.today_ml}ml / {water.goal_ml}ml",
            f"{progress_bar(water.percent)} {water.percent}%",
        ]
        days_met = sum(1 for day in water.week if day.met_goal)
        lines.append(f"Goal met {days_met}/{len(water.week)} days this week")
        return Card(
            text="\n".join(lines),
            buttons=[
                [
                    Button(text="😴 Sleep", code="sleep"),
                    Button(text="💧 Water", code="water"),
                ],
                [Button(text="🏠 Menu", code="menu")],
            ],
        )

    def render_water_card(self, stats: WaterStats, logged_ml: int | None = None) -> Card:
        lines = []
        if logged_ml is not None:
            lines += [f"✅ Logged {logged_ml}ml", ""]
        lines += [
            "💧 *Water today*",
            f"{stats.today_ml}ml / {stats.goal_ml}ml",
            f"{progress_bar(stats.percent)} {stats.percent}%",
        ]
        if stats.remaining_ml:
            lines.append(f"{stats.remaining_ml}ml to go")
        else:
            lines.append("🎉 Daily goal reached!")
        lines += ["", "*Last 7 days*"]
        for day in stats.week:
            mark = "✅" if day.met_goal else "▫️"
            lines.append(f"{mark} {day.day:%a %d} {day.total_ml}ml")

        amounts = [Button(text=f"+{ml}ml", code=f"water:{ml}") for ml in WATER_AMOUNTS_ML]
        return Card(
            text="\n".join(lines),
            buttons=[amounts, [Button(text="🏠 Menu", code="menu")]],
        )

    def render_sleep_card(self, stats: SleepStats) -> Card:
        lines = ["😴 *Sleep*", ""]
        if stats.last_night_hours is not None:
            lines.append(
                f"{sleep_quality(stats.last_night_hours)} Last night: "
                f"{format_hours(stats.last_night_hours)}"
            )
        else:
            lines.append("Last night: not logged")
        if stats.average_hours is not None:
            lines.append(f"7-day average: {format_hours(stats.average_hours)}")

        lines += ["", "*Last 7 days*"]
        for night in stats.week:
            hours = format_hours(night.hours) if night.hours is not None else "not logged"
            lines.append(f"{night.day:%a %d} {hours}")

        if stats.average_hours is not None:
            lines += ["", _sleep_insight(stats.average_hours)]
        return Card(
            text="\n".join(lines),
            buttons=[[Button(text="🏠 Menu", code="menu")]],
        )

    def render_good_morning(self, report: WakeReport) -> Card:
        hour = report.at.hour
        if hour < 12:
            greeting = "☀️ Good morning!"
        elif hour < 18:
            greeting = "🌤 Good afternoon!"
        else:
            greeting = "🌙 Good evening!"
        lines = [greeting, f"Woke up at {report.at:%H:%M}."]
        if report.slept_hours is not None:
            lines.append(
                f"{sleep_quality(report.slept_hours)} You slept {format_hours(report.slept_hours)}."
            )
        return Card(
            text="\n".join(lines),
            buttons=[
                [Button(text="💧 Water", code="water")],
                [Button(text="🏠 Menu", code="menu")],
            ],
        )

    def render_good_night(self, report: BedtimeReport) -> Card:
        lines = ["🌙 Good night!", f"Going to sleep at {report.at:%H:%M}."]
        if report.awake_hours is not None:
            lines.append(f"You were up for {format_hours(report.awake_hours)} today.")
        return Card(text="\n".join(lines), buttons=[[Button(text="🏠 Menu", code="menu")]])

    # ── Internal ─────────────────────────────────────────────────────

    def _summary(self, draft: EventDraft) -> str:
        when = format_date(draft.event_date) if draft.event_date else _EMPTY
        if draft.all_day:
            hours = "All day"
        else:
            hours = f"{draft.start_time or _EMPTY} - {draft.end_time or _EMPTY}"
        return "\n".join([
            f"📝 {draft.title or _EMPTY}",
            f"📅 {when}",
            f"🕒 {hours}",
            f"📍 {draft.location or _EMPTY}",
        ])

    def _field_rows(self, draft: EventDraft, prefix: str) -> list[list[Button]]:
        names = [n for n in FIELD_ORDER if not (draft.all_day and n in TIME_FIELDS)]
        buttons = [Button(text=FIELDS[n].label, code=f"{prefix}:{n}") for n in names]
        # Two per row
        return [buttons[i : i + 2] for i in range(0, len(buttons), 2)]

    @staticmethod
    def _all_day_button(draft: EventDraft) -> Button:
        mark = "☑" if draft.all_day else "☐"
        return Button(text=f"{mark} All day", code="toggle_all_day")

    def _quick_status(self, summary: HealthSummary) -> str:
        sleep, water = summary.sleep, summary.water
        if sleep.last_night_hours is not None:
            slept = f"😴 Last night: {format_hours(sleep.last_night_hours)}"
        else:
            slept = "😴 Last night: not logged"
        return (
            f"{slept}\n"
            f"💧 Water: {water.today_ml}/{water.goal_ml}ml {progress_bar(water.percent)}"
        )


def format_duration(minutes: int) -> str:
    """``"7h 30min"``, ``"8h"`` or ``"45min"``."""
    hours, mins = divmod(max(0, minutes), 60)
    if hours and mins:
        return f"{hours}h {mins}min"
    if hours:
        return f"{hours}h"
    return f"{mins}min"


def format_hours(hours: float) -> str:
    return format_duration(round(hours * 60))


def progress_bar(percent: int, width: int = 10) -> str:
    filled = min(width, max(0, round(percent * width / 100)))
    return "▓" * filled + "░" * (width - filled)


def sleep_quality(hours: float) -> str:
    if 7 <= hours <= 9:
        return "😊"
    if 6 <= hours < 7:
        return "😐"
    if hours > 9:
        return "😴"
    return "😫"


def _sleep_insight(average_hours: float) -> str:
    if average_hours < 7:
        return "💡 You're averaging under 7 hours. Try going to bed a little earlier."
    if average_hours > 9:
        return "💡 You're sleeping more than 9 hours on average."
    return "💡 Nice, your sleep is in the healthy 7-9 hour range."
