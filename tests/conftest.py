"""Shared test fixtures for the Aide test suite."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")
    os.environ.setdefault("GOOGLE_CALENDAR_TOKEN", "test-calendar-token")
    os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
    os.environ["ALLOWED_USER_IDS"] = ""
    os.environ["METRICS_ENABLED"] = "false"


USER = 42
EVENT_ID = "evt-abc123"
NOW = datetime(2026, 3, 15, 9, 0, tzinfo=UTC)


@pytest_asyncio.fixture
async def stores(tmp_path):
    """Every store over one fresh SQLite file."""
    from aide.services.storage import open_stores

    group = await open_stores(tmp_path / "aide.db")
    yield group
    await group.close()


@pytest.fixture
def store(stores):
    return stores.drafts


@pytest.fixture
def health(stores):
    """Health tracker in UTC with the clock stopped at NOW."""
    from aide.health import HealthTracker

    return HealthTracker(stores.health, goal_ml=2000, timezone="UTC", clock=lambda: NOW)


@pytest.fixture
def calendar():
    """Stand-in for GoogleCalendarClient: authorized, every call succeeds."""
    cal = MagicMock()
    cal.is_authorized = AsyncMock(return_value=True)
    cal.authorization_url.return_value = "https://accounts.example/auth?state=42"
    cal.create = AsyncMock(return_value=EVENT_ID)
    cal.update = AsyncMock(return_value=None)
    cal.delete = AsyncMock(return_value=None)
    cal.url_for.side_effect = lambda eid: f"https://calendar.example/event?eid={eid}"
    return cal


@pytest.fixture
def engine(store, calendar):
    from aide.engine import FormEngine

    return FormEngine(store, calendar)


@pytest.fixture
def dispatcher(store, engine, health):
    from aide.dispatcher import ActionDispatcher

    return ActionDispatcher(store, engine, health=health, strict=True)
