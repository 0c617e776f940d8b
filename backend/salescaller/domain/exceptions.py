"""
Domain Exceptions
Error taxonomy shared by providers, services, workers and the API.

The job queue worker is the only place that decides between retry and
terminal failure; it does so purely from these exception types.
"""
from typing import Optional


class SalesCallerError(Exception):
    """Base class for all domain errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ProviderError(SalesCallerError):
    """A provider rejected the request or timed out. Retryable at queue level."""

    def __init__(self, provider: str, message: str, details: Optional[dict] = None):
        super().__init__(f"{provider}: {message}", details)
        self.provider = provider


class ValidationError(SalesCallerError):
    """Malformed job payload or webhook. Never retried."""


class NotFoundError(SalesCallerError):
    """Referenced entity or external id does not exist. Acknowledged, not retried."""


class ConflictError(SalesCallerError):
    """Requested action violates a state machine or business invariant. Never retried."""


class WebhookAuthenticationError(SalesCallerError):
    """Webhook could not be authenticated; it must not mutate state."""
