"""Tests for the field registry and its parsers."""

from __future__ import annotations

from datetime import date

import pytest

from aide.errors import ParseError, ValidationError
from aide.fields import (
    FIELD_ORDER,
    FIELDS,
    format_date,
    format_time,
    get_field,
    parse_date,
    parse_time,
)

# ── parse_date ───────────────────────────────────────────────────────


class TestParseDate:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("15/02/2026", date(2026, 2, 15)),
            ("1/2/2026", date(2026, 2, 1)),
            ("15-02-2026", date(2026, 2, 15)),
            ("15.02.2026", date(2026, 2, 15)),
            ("  15/02/2026  ", date(2026, 2, 15)),
            ("29/02/2024", date(2024, 2, 29)),
        ],
    )
    def test_accepts_valid_dates(self, raw, expected):
        assert parse_date(raw) == expected

    @pytest.mark.parametrize("raw", ["31/02/2026", "30/02/2024", "29/02/2023", "31/04/2026", "00/01/2026"])
    def test_rejects_impossible_dates(self, raw):
        with pytest.raises(ParseError):
            parse_date(raw)

    @pytest.mark.parametrize("raw", ["2026-02-15", "15/02/26", "tomorrow", "", "15/02"])
    def test_rejects_malformed_input(self, raw):
        with pytest.raises(ParseError) as exc_info:
            parse_date(raw)
        assert "dd/mm/yyyy" in str(exc_info.value)

    def test_parse_error_is_validation_error(self):
        assert ParseError is ValidationError


# ── parse_time ───────────────────────────────────────────────────────


class TestParseTime:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("14:30", (14, 30)),
            ("9:05", (9, 5)),
            ("14h", (14, 0)),
            ("14H", (14, 0)),
            ("14h30", (14, 30)),
            ("0:00", (0, 0)),
            ("23:59", (23, 59)),
        ],
    )
    def test_accepts_supported_formats(self, raw, expected):
        assert parse_time(raw) == expected

    @pytest.mark.parametrize("raw", ["24:00", "12:60", "25h", "9h75"])
    def test_rejects_out_of_range(self, raw):
        with pytest.raises(ParseError):
            parse_time(raw)

    @pytest.mark.parametrize("raw", ["2pm", "14.30", "14:3", "", "noon"])
    def test_rejects_malformed(self, raw):
        with pytest.raises(ParseError):
            parse_time(raw)

    @pytest.mark.parametrize("h, m", [(0, 0), (7, 5), (14, 30), (23, 59)])
    def test_format_round_trip_for_every_format(self, h, m):
        assert parse_time(format_time(h, m)) == (h, m)
        assert parse_time(f"{h}h{m:02d}") == (h, m)
        if m == 0:
            assert parse_time(f"{h}h") == (h, 0)

    def test_parsing_is_deterministic(self):
        assert {parse_time("14h30") for _ in range(5)} == {(14, 30)}


# ── Registry ─────────────────────────────────────────────────────────


class TestRegistry:
    def test_field_order(self):
        assert FIELD_ORDER == ("title", "date", "start", "end", "location")
        assert set(FIELDS) == set(FIELD_ORDER)

    def test_time_fields_normalise_to_hh_mm(self):
        assert FIELDS["start"].parse("9h") == "09:00"
        assert FIELDS["end"].parse("18:05") == "18:05"

    def test_text_fields_are_stripped(self):
        assert FIELDS["title"].parse("  Dentist  ") == "Dentist"
        assert FIELDS["location"].parse("Room 302") == "Room 302"

    def test_blank_text_is_rejected(self):
        with pytest.raises(ParseError):
            FIELDS["title"].parse("   ")

    def test_parse_error_is_tagged_with_field_name(self):
        with pytest.raises(ParseError) as exc_info:
            FIELDS["end"].parse("late")
        assert exc_info.value.field == "end"

    def test_get_field_unknown_returns_none(self):
        assert get_field("colour") is None
        assert get_field("date").column == "event_date"

    def test_format_date(self):
        assert format_date(date(2026, 2, 5)) == "05/02/2026"
