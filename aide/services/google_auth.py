"""Google OAuth 2.0 for calendar access.

The consent link carries the chat user id in ``state``.  Google redirects
back to ``GOOGLE_REDIRECT_URI`` (``/api/oauth/callback``), which hands the
code to ``GoogleOAuthClient.exchange_code``; the resulting tokens are stored
per user.  ``access_token`` is the calendar client's token provider: it
returns the stored token, refreshing it when it is about to expire.

OAuth docs: https://developers.google.com/identity/protocols/oauth2/web-server
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from aide.config import (
    CALENDAR_TIMEOUT_SECONDS,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_REDIRECT_URI,
)
from aide.errors import CollaboratorFailure
from aide.models import OAuthToken
from aide.services.metrics import metrics
from aide.services.token_store import SqliteTokenStore

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_SCOPES = (
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
)


class OAuthError(CollaboratorFailure):
    """Raised when Google rejects a code exchange or token refresh."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def build_authorization_url(user_id: int) -> str:
    """OAuth consent URL the user must visit to grant calendar access."""
    url = httpx.URL(
        GOOGLE_AUTH_URL,
        params={
            "client_id": GOOGLE_CLIENT_ID,
            "redirect_uri": GOOGLE_REDIRECT_URI,
            "response_type": "code",
            "scope": " ".join(CALENDAR_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": str(user_id),
        },
    )
    return str(url)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class GoogleOAuthClient:
    """Exchanges authorization codes and keeps per-user access tokens fresh."""

    def __init__(
        self,
        tokens: SqliteTokenStore,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        fallback_token: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._tokens = tokens
        self._client_id = client_id or GOOGLE_CLIENT_ID
        self._client_secret = client_secret or GOOGLE_CLIENT_SECRET
        self._redirect_uri = redirect_uri or GOOGLE_REDIRECT_URI
        self._fallback_token = fallback_token
        self._clock = clock
        self._client = httpx.AsyncClient(timeout=CALENDAR_TIMEOUT_SECONDS)

    # ── Public API ───────────────────────────────────────────────────

    async def exchange_code(self, user_id: int, code: str) -> OAuthToken:
        """Trade the callback's authorization code for tokens and store them."""
        data = await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._redirect_uri,
            },
            operation="exchange_code",
        )
        token = self._token_from(user_id, data)
        await self._tokens.save(token, self._clock())
        logger.info("User %s connected Google Calendar", user_id)
        return token

    async def access_token(self, user_id: int) -> str | None:
        """A usable access token for *user_id*, or ``None`` if they must (re)connect.

        Users without stored credentials get the configured fallback token.
        """
        token = await self._tokens.get(user_id)
        if token is None:
            return self._fallback_token
        if not token.expires_within(self._clock()):
            return token.access_token
        if not token.refresh_token:
            logger.info("Access token for user %s expired and cannot be refreshed", user_id)
            return None

        try:
            data = await self._post_token(
                {"grant_type": "refresh_token", "refresh_token": token.refresh_token},
                operation="refresh_token",
            )
        except OAuthError as exc:
            logger.warning("Token refresh failed for user %s: %s", user_id, exc)
            if exc.status_code in (400, 401):
                # Revoked or invalid grant: the user has to consent again.
                await self._tokens.delete(user_id)
            return None

        refreshed = self._token_from(user_id, data)
        await self._tokens.save(refreshed, self._clock())
        return refreshed.access_token

    @staticmethod
    def authorization_url(user_id: int) -> str:
        return build_authorization_url(user_id)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Internal helpers ─────────────────────────────────────────────

    async def _post_token(self, form: dict[str, str], *, operation: str) -> dict[str, Any]:
        if not self._client_secret:
            raise OAuthError("GOOGLE_CLIENT_SECRET is not configured")

        payload = {"client_id": self._client_id, "client_secret": self._client_secret, **form}
        t0 = time.perf_counter()
        try:
            response = await self._client.post(GOOGLE_TOKEN_URL, data=payload)
        except (httpx.TimeoutException, httpx.ConnectError) as exc:
            metrics.record_failure("google_oauth", operation, error_type=type(exc).__name__)
            raise OAuthError(f"Token endpoint unreachable: {exc}") from exc

        elapsed = (time.perf_counter() - t0) * 1000
        if response.status_code >= 400:
            metrics.record_failure(
                "google_oauth", operation,
                error_type=f"{response.status_code // 100}xx", latency_ms=elapsed,
            )
            raise OAuthError(
                f"Token endpoint error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        metrics.record_success("google_oauth", operation, latency_ms=elapsed)
        return response.json()

    def _token_from(self, user_id: int, data: dict[str, Any]) -> OAuthToken:
        access = data.get("access_token")
        if not access:
            raise OAuthError("Token endpoint returned no access token")
        expires_in = data.get("expires_in")
        return OAuthToken(
            user_id=user_id,
            access_token=access,
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type", "Bearer"),
            expires_at=self._clock() + timedelta(seconds=int(expires_in)) if expires_in else None,
            scope=data.get("scope"),
        )
