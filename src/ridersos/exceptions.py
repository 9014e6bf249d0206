"""Custom exception hierarchy for the RidersOS billing core."""

from __future__ import annotations


class RidersOSError(Exception):
    """Base class for all RidersOS specific errors."""


class ValidationError(RidersOSError):
    """Raised when input is malformed, before any side effect happens."""


class NotFoundError(RidersOSError):
    """Raised when a referenced trainer, rider, horse, event or statement is missing."""


class AuthorizationError(RidersOSError):
    """Raised when the caller does not own the resource being changed."""


class ConflictError(RidersOSError):
    """Raised on unique-key violations and rejected state transitions."""


class NotificationDeliveryError(RidersOSError):
    """Raised by dispatchers when a notification could not be delivered.

    The billing and care workflows never let this escape to their callers.
    """
