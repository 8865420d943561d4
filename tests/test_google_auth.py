"""Tests for the Google OAuth client and per-user token storage."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from aide.models import OAuthToken
from aide.services.google_auth import (
    CALENDAR_SCOPES,
    GOOGLE_TOKEN_URL,
    GoogleOAuthClient,
    OAuthError,
    build_authorization_url,
)

USER = 42
NOW = datetime(2026, 3, 15, 9, 0, tzinfo=UTC)

# ── Helpers ──────────────────────────────────────────────────────────


def _mock_response(data: dict, status_code: int = 200) -> MagicMock:
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = data
    mock.text = str(data)
    return mock


def _oauth(tokens, **kwargs) -> GoogleOAuthClient:
    kwargs.setdefault("client_id", "client-id")
    kwargs.setdefault("client_secret", "client-secret")
    kwargs.setdefault("redirect_uri", "http://localhost:8000/api/oauth/callback")
    return GoogleOAuthClient(tokens, clock=lambda: NOW, **kwargs)


async def _store_token(tokens, **overrides) -> None:
    values = {
        "user_id": USER,
        "access_token": "stored-access",
        "refresh_token": "stored-refresh",
        "expires_at": NOW + timedelta(hours=1),
    }
    values.update(overrides)
    await tokens.save(OAuthToken(**values), NOW)


# ── Tests: consent link ──────────────────────────────────────────────


class TestAuthorizationUrl:
    def test_params(self):
        url = urlparse(build_authorization_url(USER))
        params = parse_qs(url.query)
        assert url.netloc == "accounts.google.com"
        assert params["scope"] == [" ".join(CALENDAR_SCOPES)]
        assert params["response_type"] == ["code"]
        assert params["access_type"] == ["offline"]
        assert params["prompt"] == ["consent"]
        assert params["state"] == ["42"]
        assert params["redirect_uri"][0].endswith("/api/oauth/callback")


# ── Tests: token store ───────────────────────────────────────────────


class TestTokenStore:
    async def test_save_and_get(self, stores):
        await _store_token(stores.tokens)
        token = await stores.tokens.get(USER)
        assert token.access_token == "stored-access"
        assert token.expires_at == NOW + timedelta(hours=1)

    async def test_missing_user(self, stores):
        assert await stores.tokens.get(USER) is None

    async def test_refresh_token_kept_when_response_omits_it(self, stores):
        await _store_token(stores.tokens)
        await _store_token(stores.tokens, access_token="new-access", refresh_token=None)
        token = await stores.tokens.get(USER)
        assert token.access_token == "new-access"
        assert token.refresh_token == "stored-refresh"

    async def test_delete(self, stores):
        await _store_token(stores.tokens)
        await stores.tokens.delete(USER)
        assert await stores.tokens.get(USER) is None


# ── Tests: code exchange ─────────────────────────────────────────────


class TestExchangeCode:
    async def test_stores_tokens_for_user(self, stores):
        oauth = _oauth(stores.tokens)
        body = {
            "access_token": "ya29.access",
            "refresh_token": "1//refresh",
            "expires_in": 3599,
            "token_type": "Bearer",
            "scope": " ".join(CALENDAR_SCOPES),
        }
        with patch.object(
            oauth._client, "post", AsyncMock(return_value=_mock_response(body)),
        ) as mock_post:
            token = await oauth.exchange_code(USER, "auth-code")

        url = mock_post.await_args.args[0]
        form = mock_post.await_args.kwargs["data"]
        assert url == GOOGLE_TOKEN_URL
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "auth-code"
        assert form["client_secret"] == "client-secret"
        assert token.expires_at == NOW + timedelta(seconds=3599)

        stored = await stores.tokens.get(USER)
        assert stored.access_token == "ya29.access"
        assert stored.refresh_token == "1//refresh"

    async def test_rejected_code_raises(self, stores):
        oauth = _oauth(stores.tokens)
        with patch.object(
            oauth._client, "post",
            AsyncMock(return_value=_mock_response({"error": "invalid_grant"}, 400)),
        ):
            with pytest.raises(OAuthError) as exc_info:
                await oauth.exchange_code(USER, "bad-code")
        assert exc_info.value.status_code == 400
        assert await stores.tokens.get(USER) is None

    async def test_unreachable_endpoint_raises(self, stores):
        oauth = _oauth(stores.tokens)
        with patch.object(
            oauth._client, "post", AsyncMock(side_effect=httpx.ConnectError("refused")),
        ):
            with pytest.raises(OAuthError):
                await oauth.exchange_code(USER, "auth-code")

    async def test_missing_client_secret(self, stores):
        oauth = _oauth(stores.tokens)
        oauth._client_secret = None
        with pytest.raises(OAuthError, match="GOOGLE_CLIENT_SECRET"):
            await oauth.exchange_code(USER, "auth-code")


# ── Tests: access token provider ─────────────────────────────────────


class TestAccessToken:
    async def test_fresh_token_is_returned(self, stores):
        await _store_token(stores.tokens)
        oauth = _oauth(stores.tokens)
        with patch.object(oauth._client, "post", AsyncMock()) as mock_post:
            assert await oauth.access_token(USER) == "stored-access"
        mock_post.assert_not_awaited()

    async def test_fallback_for_users_without_credentials(self, stores):
        oauth = _oauth(stores.tokens, fallback_token="shared-token")
        assert await oauth.access_token(USER) == "shared-token"
        assert await _oauth(stores.tokens).access_token(USER) is None

    async def test_expiring_token_is_refreshed(self, stores):
        await _store_token(stores.tokens, expires_at=NOW + timedelta(seconds=30))
        oauth = _oauth(stores.tokens)
        body = {"access_token": "refreshed", "expires_in": 3600}
        with patch.object(
            oauth._client, "post", AsyncMock(return_value=_mock_response(body)),
        ) as mock_post:
            assert await oauth.access_token(USER) == "refreshed"

        form = mock_post.await_args.kwargs["data"]
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "stored-refresh"
        stored = await stores.tokens.get(USER)
        assert stored.access_token == "refreshed"
        assert stored.refresh_token == "stored-refresh"

    async def test_revoked_refresh_token_forgets_user(self, stores):
        await _store_token(stores.tokens, expires_at=NOW - timedelta(minutes=5))
        oauth = _oauth(stores.tokens)
        with patch.object(
            oauth._client, "post",
            AsyncMock(return_value=_mock_response({"error": "invalid_grant"}, 400)),
        ):
            assert await oauth.access_token(USER) is None
        assert await stores.tokens.get(USER) is None

    async def test_transient_refresh_failure_keeps_token(self, stores):
        await _store_token(stores.tokens, expires_at=NOW - timedelta(minutes=5))
        oauth = _oauth(stores.tokens)
        with patch.object(
            oauth._client, "post", AsyncMock(return_value=_mock_response({}, 503)),
        ):
            assert await oauth.access_token(USER) is None
        assert await stores.tokens.get(USER) is not None

    async def test_expired_without_refresh_token(self, stores):
        await _store_token(
            stores.tokens, refresh_token=None, expires_at=NOW - timedelta(minutes=5),
        )
        assert await _oauth(stores.tokens).access_token(USER) is None
