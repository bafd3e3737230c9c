"""
Errors raised by the usage ledger.

Each error carries the HTTP status it maps to at the API boundary. All of
them are raised before any state is changed.
"""

from typing import Optional


class UsageError(Exception):
    """Base class for usage accounting errors."""
    status_code = 500


class UnauthenticatedError(UsageError):
    """The caller has no identity."""
    status_code = 401


class ValidationError(UsageError):
    """A request is missing a required field or carries an invalid value."""
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class AuthorizationError(UsageError):
    """The caller may not touch the requested data."""
    status_code = 403


class ConfirmationRequired(UsageError):
    """A destructive bulk operation was requested without confirmation."""
    status_code = 400
    requires_confirmation = True
