"""Exceptions raised by the event bus and their HTTP error mapping."""

from __future__ import annotations

import uuid


class AppException(Exception):
    """Base for errors that surface to API callers.

    ``code`` and ``status_code`` are class attributes and feed the error
    envelope built in ``eventbus.app``.
    """

    code: str = "APP_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class BadRequestException(AppException):
    """Caller error: the request is missing something it must provide."""

    code = "BAD_REQUEST"
    status_code = 400


class NotFoundException(AppException):
    code = "NOT_FOUND"
    status_code = 404


class ConflictException(AppException):
    code = "CONFLICT"
    status_code = 409


class EventNotFoundException(NotFoundException):
    def __init__(self, event_id: uuid.UUID) -> None:
        super().__init__(f"Event {event_id} not found")
        self.event_id = event_id


class InvalidTransitionException(ConflictException):
    """An operator action was requested for an event in the wrong status."""

    def __init__(self, event_id: uuid.UUID, status: str, action: str, allowed: list[str]) -> None:
        super().__init__(
            f"Event {event_id} is {status}; {action} needs one of: {', '.join(allowed)}",
            details=[{"field": "status", "message": status}],
        )
        self.event_id = event_id
        self.status = status


class RegistryError(Exception):
    """Raised at startup when the handler map references an unknown handler."""
