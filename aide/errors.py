"""Exception taxonomy shared by the store, the form engine and the adapters."""

from __future__ import annotations


class AideError(Exception):
    """Base class for every error raised by the ``aide`` package."""


class ValidationError(AideError):
    """Malformed user input for a draft field.

    Always recoverable: the caller re-prompts the same field.
    """

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


# Parsers in ``aide.fields`` raise this name; it is the same class.
ParseError = ValidationError


class NotFoundError(AideError):
    """An operation referenced a draft that no longer exists."""

    def __init__(self, draft_id: int):
        self.draft_id = draft_id
        super().__init__(f"Event draft {draft_id} not found")


class InvariantViolation(AideError):
    """A lifecycle precondition was broken (programming-contract error)."""


class CollaboratorFailure(AideError):
    """An external collaborator (calendar provider, LLM) failed."""
