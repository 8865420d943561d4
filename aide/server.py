"""FastAPI server for the Aide bot.

The chat transport (a webhook relay, a web front-end) posts button presses
and messages here and displays the cards it gets back.

Run with:
    uvicorn aide.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from aide.agent import Assistant
from aide.api.routes import router
from aide.config import (
    CORS_ORIGINS,
    DATABASE_PATH,
    GOOGLE_CALENDAR_TOKEN,
    SERVER_HOST,
    SERVER_PORT,
)
from aide.dispatcher import ActionDispatcher
from aide.engine import FormEngine
from aide.health import HealthTracker
from aide.services.calendar_client import GoogleCalendarClient
from aide.services.google_auth import GoogleOAuthClient
from aide.services.storage import open_stores

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Open the stores and Google clients, compile the assistant, wire the dispatcher."""
    stores = await open_stores(DATABASE_PATH)
    oauth = GoogleOAuthClient(stores.tokens, fallback_token=GOOGLE_CALENDAR_TOKEN)
    calendar = GoogleCalendarClient(token_provider=oauth.access_token)
    logger.info("Compiling assistant graph…")
    assistant = Assistant()
    application.state.oauth = oauth
    application.state.dispatcher = ActionDispatcher(
        stores.drafts,
        FormEngine(stores.drafts, calendar),
        assistant=assistant,
        health=HealthTracker(stores.health),
    )
    logger.info("Dispatcher ready.")
    try:
        yield
    finally:
        application.state.dispatcher = None
        application.state.oauth = None
        await calendar.aclose()
        await oauth.aclose()
        await stores.close()
        logger.info("Stores and Google clients closed.")


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Aide",
    description="Personal assistant bot: conversational calendar event creation and chat.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID to every request and echo it as ``X-Request-ID``."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Aide",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


if __name__ == "__main__":
    logger.info("Starting Aide API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "aide.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
