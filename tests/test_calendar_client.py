"""Tests for the Google Calendar client."""

from __future__ import annotations

import base64
from datetime import date, time
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from aide.models import ResolvedEvent
from aide.services.calendar_client import (
    EVENT_URL_BASE,
    INITIAL_BACKOFF_SECONDS,
    MAX_RETRIES,
    CalendarAPIError,
    GoogleCalendarClient,
    build_event_body,
)

TIMED = ResolvedEvent(
    title="Dentist",
    date=date(2026, 3, 15),
    start=time(14, 30),
    end=time(15, 30),
    location="Clinic",
)

# ── Helpers ──────────────────────────────────────────────────────────


def _mock_response(data: dict | None, status_code: int = 200) -> MagicMock:
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = data
    mock.text = str(data)
    mock.content = b"" if data is None else b"{...}"
    return mock


async def _token(user_id: int) -> str:
    return "user-token"


def _client(**kwargs) -> GoogleCalendarClient:
    return GoogleCalendarClient(token_provider=kwargs.pop("token_provider", _token), **kwargs)


# ── Tests: event body ────────────────────────────────────────────────


class TestBuildEventBody:
    def test_timed_event(self):
        body = build_event_body(TIMED, "Europe/Lisbon")
        assert body == {
            "summary": "Dentist",
            "location": "Clinic",
            "start": {"dateTime": "2026-03-15T14:30:00", "timeZone": "Europe/Lisbon"},
            "end": {"dateTime": "2026-03-15T15:30:00", "timeZone": "Europe/Lisbon"},
        }

    def test_overnight_end_rolls_to_next_day(self):
        event = TIMED.model_copy(update={"start": time(22, 0), "end": time(1, 0)})
        body = build_event_body(event, "UTC")
        assert body["end"]["dateTime"] == "2026-03-16T01:00:00"

    def test_all_day_uses_exclusive_end_date(self):
        event = ResolvedEvent(title="Holiday", date=date(2026, 12, 31), all_day=True)
        body = build_event_body(event, "UTC")
        assert body["start"] == {"date": "2026-12-31"}
        assert body["end"] == {"date": "2027-01-01"}
        assert "location" not in body

    def test_timed_event_without_times_is_rejected(self):
        with pytest.raises(ValueError):
            build_event_body(ResolvedEvent(title="x", date=date(2026, 1, 1)), "UTC")


# ── Tests: CRUD ──────────────────────────────────────────────────────


class TestEventCalls:
    async def test_create_returns_event_id(self):
        client = _client(calendar_id="primary")
        with patch.object(
            client._client, "request", AsyncMock(return_value=_mock_response({"id": "evt-1"})),
        ) as mock_req:
            event_id = await client.create(42, TIMED)

        assert event_id == "evt-1"
        method, path = mock_req.await_args.args
        assert (method, path) == ("POST", "/calendars/primary/events")
        assert mock_req.await_args.kwargs["headers"] == {"Authorization": "Bearer user-token"}
        assert mock_req.await_args.kwargs["json"]["summary"] == "Dentist"

    async def test_create_without_id_raises(self):
        client = _client()
        with patch.object(client._client, "request", AsyncMock(return_value=_mock_response({}))):
            with pytest.raises(CalendarAPIError):
                await client.create(42, TIMED)

    async def test_update_patches_event(self):
        client = _client(calendar_id="primary")
        with patch.object(
            client._client, "request", AsyncMock(return_value=_mock_response({"id": "evt-1"})),
        ) as mock_req:
            await client.update(42, "evt-1", TIMED)
        assert mock_req.await_args.args == ("PATCH", "/calendars/primary/events/evt-1")

    async def test_delete_accepts_empty_response(self):
        client = _client()
        with patch.object(
            client._client, "request", AsyncMock(return_value=_mock_response(None, 204)),
        ) as mock_req:
            await client.delete(42, "evt-1")
        assert mock_req.await_args.args[0] == "DELETE"

    @pytest.mark.parametrize("status", [404, 410])
    async def test_delete_of_missing_event_succeeds(self, status):
        client = _client()
        with patch.object(
            client._client, "request", AsyncMock(return_value=_mock_response({"error": "gone"}, status)),
        ):
            await client.delete(42, "evt-1")

    async def test_missing_credentials_fail_without_request(self):
        async def no_token(user_id: int):
            return None

        client = _client(token_provider=no_token)
        with patch.object(client._client, "request", AsyncMock()) as mock_req:
            with pytest.raises(CalendarAPIError) as exc_info:
                await client.create(42, TIMED)
        assert exc_info.value.status_code == 401
        mock_req.assert_not_awaited()


# ── Tests: retry logic ───────────────────────────────────────────────


class TestRetryLogic:
    @patch("aide.services.calendar_client.asyncio.sleep", new_callable=AsyncMock)
    async def test_retries_on_timeout(self, mock_sleep):
        client = _client()
        with patch.object(
            client._client,
            "request",
            AsyncMock(side_effect=[httpx.TimeoutException("timeout"), _mock_response({"id": "evt-1"})]),
        ):
            assert await client.create(42, TIMED) == "evt-1"
        mock_sleep.assert_awaited_once_with(INITIAL_BACKOFF_SECONDS)

    @patch("aide.services.calendar_client.asyncio.sleep", new_callable=AsyncMock)
    async def test_retries_on_500_error(self, mock_sleep):
        client = _client()
        with patch.object(
            client._client,
            "request",
            AsyncMock(side_effect=[_mock_response({"error": "x"}, 500), _mock_response({"id": "evt-2"})]),
        ):
            assert await client.create(42, TIMED) == "evt-2"

    @patch("aide.services.calendar_client.asyncio.sleep", new_callable=AsyncMock)
    async def test_gives_up_after_max_retries(self, mock_sleep):
        client = _client()
        with patch.object(
            client._client, "request", AsyncMock(side_effect=httpx.ConnectError("refused")),
        ) as mock_req:
            with pytest.raises(CalendarAPIError, match=f"after {MAX_RETRIES} attempts"):
                await client.create(42, TIMED)
        assert mock_req.await_count == MAX_RETRIES
        # Sleeps only between attempts
        assert mock_sleep.await_count == MAX_RETRIES - 1

    @patch("aide.services.calendar_client.asyncio.sleep", new_callable=AsyncMock)
    async def test_does_not_retry_4xx(self, mock_sleep):
        client = _client()
        with patch.object(
            client._client, "request", AsyncMock(return_value=_mock_response({"error": "bad"}, 400)),
        ) as mock_req:
            with pytest.raises(CalendarAPIError) as exc_info:
                await client.create(42, TIMED)
        assert exc_info.value.status_code == 400
        assert mock_req.await_count == 1
        mock_sleep.assert_not_awaited()


# ── Tests: links and authorization ───────────────────────────────────


class TestLinksAndAuthorization:
    def test_url_for_encodes_event_and_calendar_id(self):
        url = _client(calendar_id="me@example.com").url_for("evt-1")
        assert url.startswith(EVENT_URL_BASE)
        eid = url.removeprefix(EVENT_URL_BASE)
        assert "=" not in eid
        padded = eid + "=" * (-len(eid) % 4)
        assert base64.urlsafe_b64decode(padded).decode() == "evt-1 me@example.com"

    async def test_url_for_prefers_html_link_from_insert(self):
        client = _client()
        html_link = "https://www.google.com/calendar/event?eid=abc"
        with patch.object(
            client._client, "request",
            AsyncMock(return_value=_mock_response({"id": "evt-1", "htmlLink": html_link})),
        ):
            await client.create(42, TIMED)
        assert client.url_for("evt-1") == html_link

    def test_authorization_url_has_user_state(self):
        params = parse_qs(urlparse(GoogleCalendarClient.authorization_url(42)).query)
        assert params["state"] == ["42"]

    async def test_authorized_when_token_present(self):
        assert await _client().is_authorized(42) is True

    async def test_not_authorized_without_token(self):
        async def no_token(user_id: int):
            return None

        assert await _client(token_provider=no_token).is_authorized(42) is False

    async def test_allow_list_is_enforced(self):
        with patch("aide.services.calendar_client.ALLOWED_USER_IDS", frozenset({1, 2})):
            assert await _client().is_authorized(42) is False
            assert await _client().is_authorized(1) is True
