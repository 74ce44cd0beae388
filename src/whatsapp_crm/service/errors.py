"""
Service Errors

Raised by synchronous agent-facing operations and mapped to HTTP status
codes by the API layer.
"""

from typing import Any


class ServiceError(Exception):
    """Base class for errors surfaced to the agent-facing API."""

    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidRequestError(ServiceError):
    """Malformed or empty input."""

    status_code = 400


class NotFoundError(ServiceError):
    """Resource does not exist in the caller's organization."""

    status_code = 404


class ConflictError(ServiceError):
    """Request conflicts with current state."""

    status_code = 409


class UpstreamProviderError(ServiceError):
    """The WhatsApp provider rejected an outbound call."""

    status_code = 502


class MediaUnavailableError(Exception):
    """Media could not be fetched from the provider or stored."""
