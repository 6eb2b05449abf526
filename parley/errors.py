"""
Error taxonomy for the chat surface.

Each ChatError knows the HTTP status it maps to. Route handlers turn them
into responses; anything else that escapes before the stream starts is an
internal failure.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for errors reported synchronously to the caller."""

    status_code: int = 500
    default_message: str = "An error occurred while processing your request!"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class RequestValidationError(ChatError):
    status_code = 400
    default_message = "Invalid request body"

    def __init__(self, message: str | None = None, details: list | None = None):
        super().__init__(message)
        self.details = details or []


class UnauthorizedError(ChatError):
    status_code = 401
    default_message = "Unauthorized"


class NotFoundError(ChatError):
    status_code = 404
    default_message = "Not Found"


class AgentNotFoundError(NotFoundError):
    default_message = "Agent not found"


class AgentLookupError(ChatError):
    status_code = 500
    default_message = "Error fetching agent information"


class MissingAssistantMessageError(Exception):
    """The model response held no assistant-role message to persist."""
