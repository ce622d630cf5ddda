"""Errors raised along the reminder pipeline."""


class ReminderError(Exception):
    """Base class for reminder pipeline failures."""


class AuthorizationError(ReminderError):
    """Missing or wrong notification API key. Raised before any data access."""


class SelectionError(ReminderError):
    """The task store query failed; the invocation aborts without sending."""


class ContentGenerationError(ReminderError):
    """AI content was unavailable or rejected. Always absorbed by the fallback."""


class DeliveryError(ReminderError):
    """A single endpoint could not be reached."""

    permanent = False

    def __init__(self, endpoint, message, status_code=None):
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code


class PermanentDeliveryError(DeliveryError):
    """The endpoint will never succeed again (expired subscription, bounced address)."""

    permanent = True


class TransientDeliveryError(DeliveryError):
    """Provider-side or network trouble; the endpoint is kept for the next run."""
