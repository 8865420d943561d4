"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field

from aide.presentation import Card


class ButtonPressRequest(BaseModel):
    """An inline-button callback from the chat transport."""

    user_id: int = Field(..., description="Chat user the callback came from")
    code: str = Field(..., min_length=1, max_length=64, description="Callback code, e.g. 'confirm'")
    message_id: int | None = Field(
        default=None, description="Id of the card the button was pressed on",
    )


class MessageRequest(BaseModel):
    """A free-text message from the chat transport."""

    user_id: int = Field(..., description="Chat user who sent the message")
    text: str = Field(..., min_length=1, max_length=2000, description="The user's message")
    message_id: int | None = Field(default=None, description="Id of the incoming message")


class CardShownRequest(BaseModel):
    """The transport displayed a draft card under a new message id."""

    user_id: int = Field(..., description="Chat user the card was shown to")
    draft_id: int = Field(..., description="``Card.draft_id`` of the displayed card")
    message_id: int = Field(..., description="Id of the message showing the card")


class CardsResponse(BaseModel):
    """Cards to display, in order.  Empty when the trigger was ignored."""

    cards: list[Card] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "aide"
