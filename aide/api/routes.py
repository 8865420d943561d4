"""FastAPI route definitions for the Aide bot API."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse

from aide.api.schemas import (
    ButtonPressRequest,
    CardShownRequest,
    CardsResponse,
    HealthResponse,
    MessageRequest,
)
from aide.dispatcher import ActionDispatcher
from aide.errors import CollaboratorFailure
from aide.services.google_auth import GoogleOAuthClient

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_dispatcher(request: Request) -> ActionDispatcher:
    """Retrieve the dispatcher built during the FastAPI lifespan."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(
            status_code=503,
            detail="The bot is still starting up. Please try again in a moment.",
        )
    return dispatcher


def _get_oauth(request: Request) -> GoogleOAuthClient:
    oauth = getattr(request.app.state, "oauth", None)
    if oauth is None:
        raise HTTPException(status_code=503, detail="Google sign-in is not available.")
    return oauth


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    html = (
        f"<!doctype html><html><head><title>{title}</title></head>"
        f"<body><h1>{title}</h1><p>{body}</p></body></html>"
    )
    return HTMLResponse(html, status_code=status_code)


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/button", response_model=CardsResponse)
async def button(request: ButtonPressRequest, http_request: Request):
    """Feed an inline-button press into the form engine."""
    dispatcher = _get_dispatcher(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    try:
        cards = await dispatcher.on_button_press(
            request.user_id, request.code, request.message_id,
        )
    except Exception as e:
        logger.exception("[%s] Error handling button %r", request_id, request.code)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e
    return CardsResponse(cards=cards)


@router.post("/message", response_model=CardsResponse)
async def message(request: MessageRequest, http_request: Request):
    """Feed a free-text message: a field value or an assistant request."""
    dispatcher = _get_dispatcher(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    try:
        cards = await dispatcher.on_text_reply(
            request.user_id, request.text, request.message_id,
        )
    except Exception as e:
        logger.exception("[%s] Error handling message", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e
    return CardsResponse(cards=cards)


@router.post("/card-shown", status_code=204)
async def card_shown(request: CardShownRequest, http_request: Request):
    """Record the message id a draft card is displayed under."""
    dispatcher = _get_dispatcher(http_request)
    await dispatcher.on_card_shown(request.user_id, request.draft_id, request.message_id)


@router.get("/oauth/callback", response_class=HTMLResponse)
async def oauth_callback(
    http_request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
):
    """Google's redirect after the consent screen.

    ``state`` carries the chat user id the consent link was built for.
    """
    request_id = getattr(http_request.state, "request_id", "?")
    if error:
        logger.info("[%s] Google consent denied: %s", request_id, error)
        return _page("Authorization cancelled", "Calendar access was not granted.", 400)
    if not code or not state or not state.isdigit():
        return _page("Invalid request", "The authorization link is incomplete.", 400)

    oauth = _get_oauth(http_request)
    try:
        await oauth.exchange_code(int(state), code)
    except CollaboratorFailure:
        logger.exception("[%s] Code exchange failed for user %s", request_id, state)
        return _page(
            "Authorization failed", "Could not connect your calendar. Please try again.", 502,
        )
    return _page(
        "Google Calendar connected",
        "You can close this window and tap Create event in the chat.",
    )
