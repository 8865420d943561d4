"""Centralized configuration for the Aide assistant bot.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/aide/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 (lazy, only needed on AWS)

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/aide/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /aide/{name} (AWS)."
    )


def _optional_secret(name: str) -> str | None:
    """Like ``_require_env`` but returns ``None`` instead of raising."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value
    if _ON_AWS:
        return _get_ssm_parameter(name)
    return None


def _parse_user_ids(raw: str) -> frozenset[int]:
    """Parse a comma-separated allow-list, skipping blanks and junk."""
    ids: set[int] = set()
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            ids.add(int(chunk))
        except ValueError:
            logger.warning("Ignoring non-numeric user id in ALLOWED_USER_IDS: %r", chunk)
    return frozenset(ids)


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
ROUTER_MODEL_NAME: str = os.getenv("ROUTER_MODEL_NAME", "claude-haiku-4-5")

# ── Google Calendar ─────────────────────────────────────────────────
GOOGLE_CLIENT_ID: str = _require_env("GOOGLE_CLIENT_ID")
GOOGLE_REDIRECT_URI: str = os.getenv(
    "GOOGLE_REDIRECT_URI", "http://localhost:8000/api/oauth/callback",
)
GOOGLE_CLIENT_SECRET: str | None = _optional_secret("GOOGLE_CLIENT_SECRET")
GOOGLE_CALENDAR_ID: str = os.getenv("GOOGLE_CALENDAR_ID", "primary")
# Access token for users who have not connected their own account (dev only).
GOOGLE_CALENDAR_TOKEN: str | None = _optional_secret("GOOGLE_CALENDAR_TOKEN")
CALENDAR_BASE_URL: str = os.getenv(
    "CALENDAR_BASE_URL", "https://www.googleapis.com/calendar/v3",
)
CALENDAR_TIMEOUT_SECONDS: float = float(os.getenv("CALENDAR_TIMEOUT_SECONDS", "15"))

# ── Behaviour ───────────────────────────────────────────────────────
TIMEZONE: str = os.getenv("TIMEZONE", "America/Sao_Paulo")
# Empty allow-list means every user may create events.
ALLOWED_USER_IDS: frozenset[int] = _parse_user_ids(os.getenv("ALLOWED_USER_IDS", ""))
STRICT_INVARIANTS: bool = os.getenv("AIDE_STRICT_INVARIANTS", "false").lower() == "true"

# ── Health tracking ─────────────────────────────────────────────────
WATER_GOAL_ML: int = int(os.getenv("WATER_GOAL_ML", "4000"))

# ── Storage ─────────────────────────────────────────────────────────
DATABASE_PATH: str = os.getenv("DATABASE_PATH", "data/aide.db")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
