"""Field registry for event drafts: prompts, placeholders and parsers.

Every draft field the form engine can ask for is described here once.  The
engine never inspects raw text itself; it looks the field up in ``FIELDS``
and calls its parser, which either returns the value to store or raises
``ParseError`` with a message suitable for re-prompting.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import Any

from aide.errors import ParseError

# dd/mm/yyyy, also dd-mm-yyyy and dd.mm.yyyy
_DATE_RE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})$")
# HH:MM or H:MM
_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
# HHh or HHhMM
_HOUR_SUFFIX_RE = re.compile(r"^(\d{1,2})h(\d{2})?$", re.IGNORECASE)


# ── Parsers ──────────────────────────────────────────────────────────


def parse_date(raw: str) -> date:
    """Parse ``dd/mm/yyyy`` (or ``-`` / ``.`` separators) into a date.

    Numerically well-formed but impossible dates such as ``31/02/2026`` are
    rejected: the date is rebuilt from its components and must round-trip.
    """
    match = _DATE_RE.match(raw.strip())
    if not match:
        raise ParseError("Invalid date. Use the format dd/mm/yyyy (e.g. 15/02/2026).", "date")

    day, month, year = (int(part) for part in match.groups())
    try:
        parsed = date(year, month, day)
    except ValueError:
        raise ParseError(f"{raw.strip()} is not a real calendar date.", "date") from None

    if (parsed.day, parsed.month, parsed.year) != (day, month, year):
        raise ParseError(f"{raw.strip()} is not a real calendar date.", "date")
    return parsed


def parse_time(raw: str) -> tuple[int, int]:
    """Parse ``HH:MM``, ``HHh`` or ``HHhMM`` into ``(hours, minutes)``."""
    text = raw.strip()
    match = _CLOCK_RE.match(text)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
    else:
        match = _HOUR_SUFFIX_RE.match(text)
        if not match:
            raise ParseError("Invalid time. Use the format HH:MM (e.g. 14:30).", "time")
        hours = int(match.group(1))
        minutes = int(match.group(2)) if match.group(2) else 0

    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ParseError(f"{text} is out of range. Hours go 0-23, minutes 0-59.", "time")
    return hours, minutes


def format_time(hours: int, minutes: int) -> str:
    """Format a time-of-day as zero-padded ``HH:MM``."""
    return f"{hours:02d}:{minutes:02d}"


def format_date(value: date) -> str:
    """Format a date as ``dd/mm/yyyy``."""
    return value.strftime("%d/%m/%Y")


def _parse_text(raw: str) -> str:
    text = raw.strip()
    if not text:
        raise ParseError("Please type something.")
    return text


def _parse_clock(raw: str) -> str:
    return format_time(*parse_time(raw))


# ── Registry ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FieldSpec:
    """Declarative description of one draft field."""

    name: str
    column: str
    label: str
    prompt: str
    placeholder: str
    parser: Callable[[str], Any]

    def parse(self, raw: str) -> Any:
        """Run the parser, tagging any ``ParseError`` with this field's name."""
        try:
            return self.parser(raw)
        except ParseError as exc:
            exc.field = self.name
            raise


FIELD_ORDER: tuple[str, ...] = ("title", "date", "start", "end", "location")
TIME_FIELDS: frozenset[str] = frozenset({"start", "end"})

FIELDS: dict[str, FieldSpec] = {
    "title": FieldSpec(
        name="title",
        column="title",
        label="Title",
        prompt="📝 What is the event title?",
        placeholder="e.g. Meeting with client",
        parser=_parse_text,
    ),
    "date": FieldSpec(
        name="date",
        column="event_date",
        label="Date",
        prompt="📅 What date? (dd/mm/yyyy)",
        placeholder="e.g. 15/02/2026",
        parser=parse_date,
    ),
    "start": FieldSpec(
        name="start",
        column="start_time",
        label="Start",
        prompt="🟢 Start time?",
        placeholder="e.g. 14:30",
        parser=_parse_clock,
    ),
    "end": FieldSpec(
        name="end",
        column="end_time",
        label="End",
        prompt="🔴 End time?",
        placeholder="e.g. 16:00",
        parser=_parse_clock,
    ),
    "location": FieldSpec(
        name="location",
        column="location",
        label="Location",
        prompt="📍 Where is it?",
        placeholder="e.g. Office, Room 302",
        parser=_parse_text,
    ),
}


def get_field(name: str) -> FieldSpec | None:
    """Return the registry entry for *name*, or ``None`` if unknown."""
    return FIELDS.get(name)
