"""Async HTTP client for the Google Calendar API v3 with retry logic and
timeout handling.

Calendar API docs: https://developers.google.com/calendar/api/v3/reference
Requests carry a per-user OAuth access token as a Bearer token.  Where the
token comes from is pluggable (``token_provider``): the server wires in
``GoogleOAuthClient.access_token``; without one every user shares
``GOOGLE_CALENDAR_TOKEN``.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

import httpx

from aide.config import (
    ALLOWED_USER_IDS,
    CALENDAR_BASE_URL,
    CALENDAR_TIMEOUT_SECONDS,
    GOOGLE_CALENDAR_ID,
    GOOGLE_CALENDAR_TOKEN,
    TIMEZONE,
)
from aide.errors import CollaboratorFailure
from aide.models import ResolvedEvent
from aide.services.google_auth import build_authorization_url
from aide.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0

# ── Links ───────────────────────────────────────────────────────────
EVENT_URL_BASE = "https://calendar.google.com/calendar/event?eid="

TokenProvider = Callable[[int], Awaitable[str | None]]


class CalendarAPIError(CollaboratorFailure):
    """Raised when a Calendar API call fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


async def _shared_token(user_id: int) -> str | None:
    """Default token provider: one configured token for every user."""
    return GOOGLE_CALENDAR_TOKEN


def build_event_body(event: ResolvedEvent, timezone: str = TIMEZONE) -> dict[str, Any]:
    """Translate a resolved event into a Calendar API event resource.

    All-day events use an exclusive end date (the next day).  Timed events
    whose end is not after their start roll the end over to the next day.
    """
    body: dict[str, Any] = {"summary": event.title}
    if event.location:
        body["location"] = event.location

    if event.all_day:
        body["start"] = {"date": event.date.isoformat()}
        body["end"] = {"date": (event.date + timedelta(days=1)).isoformat()}
        return body

    if event.start is None or event.end is None:
        raise ValueError("Event must be all-day or have start and end times")

    start_dt = datetime.combine(event.date, event.start)
    end_dt = datetime.combine(event.date, event.end)
    if end_dt <= start_dt:
        end_dt += timedelta(days=1)

    body["start"] = {"dateTime": start_dt.isoformat(), "timeZone": timezone}
    body["end"] = {"dateTime": end_dt.isoformat(), "timeZone": timezone}
    return body


class GoogleCalendarClient:
    """Thin async wrapper around the Calendar events API with automatic retries.

    Timeouts, connection errors and 5xx responses are retried with
    exponential backoff; 4xx responses fail immediately.  Every failure
    surfaces as ``CalendarAPIError``.
    """

    def __init__(
        self,
        *,
        token_provider: TokenProvider | None = None,
        base_url: str | None = None,
        calendar_id: str | None = None,
        timeout: float | None = None,
        timezone: str | None = None,
    ):
        self._token_provider = token_provider or _shared_token
        self._calendar_id = calendar_id or GOOGLE_CALENDAR_ID
        self._timezone = timezone or TIMEZONE
        # htmlLink of events inserted by this client, by event id
        self._html_links: dict[str, str] = {}
        self._client = httpx.AsyncClient(
            base_url=base_url or CALENDAR_BASE_URL,
            headers={"Content-Type": "application/json"},
            timeout=timeout or CALENDAR_TIMEOUT_SECONDS,
        )

    # ── Internal helpers ─────────────────────────────────────────────

    async def _request(
        self,
        user_id: int,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute an authenticated request with exponential-backoff retries."""
        token = await self._token_provider(user_id)
        if not token:
            raise CalendarAPIError(f"No calendar credentials for user {user_id}", status_code=401)

        operation = f"{method} /events"
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = await self._client.request(
                    method,
                    path,
                    json=json_body,
                    headers={"Authorization": f"Bearer {token}"},
                )
                elapsed = (time.perf_counter() - t0) * 1000
                if response.status_code >= 400:
                    metrics.record_failure(
                        "google_calendar", operation,
                        error_type=f"{response.status_code // 100}xx", latency_ms=elapsed,
                    )
                    kind = "Server" if response.status_code >= 500 else "Client"
                    raise CalendarAPIError(
                        f"{kind} error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                metrics.record_success("google_calendar", operation, latency_ms=elapsed)
                if response.status_code == 204 or not response.content:
                    return {}
                return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                metrics.record_failure(
                    "google_calendar", operation, error_type=type(exc).__name__,
                )
                last_error = exc
                logger.warning(
                    "Calendar API attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt,
                    MAX_RETRIES,
                    type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except CalendarAPIError as exc:
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "Calendar API server error on attempt %d/%d. Retrying…",
                        attempt,
                        MAX_RETRIES,
                    )
                else:
                    raise  # 4xx errors are not retried

            if attempt < MAX_RETRIES:
                await asyncio.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        raise CalendarAPIError(
            f"Calendar API request failed after {MAX_RETRIES} attempts: {last_error}"
        )

    def _events_path(self, event_id: str | None = None) -> str:
        path = f"/calendars/{self._calendar_id}/events"
        return f"{path}/{event_id}" if event_id else path

    # ── Public API methods ───────────────────────────────────────────

    async def create(self, user_id: int, event: ResolvedEvent) -> str:
        """Insert an event and return its calendar id."""
        data = await self._request(
            user_id, "POST", self._events_path(),
            json_body=build_event_body(event, self._timezone),
        )
        event_id = data.get("id")
        if not event_id:
            raise CalendarAPIError("Calendar API returned no event id")
        if data.get("htmlLink"):
            self._html_links[event_id] = data["htmlLink"]
        logger.info("Created calendar event %s for user %s", event_id, user_id)
        return event_id

    async def update(self, user_id: int, external_id: str, event: ResolvedEvent) -> None:
        """Overwrite title, location and timing of an existing event."""
        await self._request(
            user_id, "PATCH", self._events_path(external_id),
            json_body=build_event_body(event, self._timezone),
        )
        logger.info("Updated calendar event %s for user %s", external_id, user_id)

    async def delete(self, user_id: int, external_id: str) -> None:
        """Delete an event.  An event that is already gone counts as deleted."""
        try:
            await self._request(user_id, "DELETE", self._events_path(external_id))
        except CalendarAPIError as exc:
            if exc.status_code in (404, 410):
                logger.warning("Calendar event %s was already deleted", external_id)
                return
            raise
        logger.info("Deleted calendar event %s for user %s", external_id, user_id)

    def url_for(self, external_id: str) -> str:
        """Link that opens the event in the Google Calendar web UI.

        Uses the ``htmlLink`` Google returned on insert when this client
        created the event.  Otherwise builds it: ``eid`` is the base64 of
        ``"<event id> <calendar id>"`` without padding.
        """
        link = self._html_links.get(external_id)
        if link:
            return link
        raw = f"{external_id} {self._calendar_id}".encode("utf-8")
        eid = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
        return f"{EVENT_URL_BASE}{eid}"

    # ── Authorization ────────────────────────────────────────────────

    async def is_authorized(self, user_id: int) -> bool:
        """True if the user is allow-listed and calendar credentials exist."""
        if ALLOWED_USER_IDS and user_id not in ALLOWED_USER_IDS:
            logger.info("User %s is not on the allow-list", user_id)
            return False
        return bool(await self._token_provider(user_id))

    @staticmethod
    def authorization_url(user_id: int) -> str:
        """OAuth consent URL the user must visit to grant calendar access."""
        return build_authorization_url(user_id)

    async def aclose(self) -> None:
        await self._client.aclose()
