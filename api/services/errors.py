"""
Error types for identity reconciliation.

Every error carries the HTTP status it maps to and whether it is
operational (expected, user-correctable) or a failure of the service itself.
"""


class ReconciliationError(Exception):
    """Base class for errors raised by the reconciliation service."""

    status_code: int = 500
    is_operational: bool = True

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ReconciliationError):
    """Raised when the submitted email/phone is missing or malformed."""

    status_code = 400


class StoreError(ReconciliationError):
    """Raised when the contact store fails to read or write."""

    is_operational = False

    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message)


class InvariantViolation(ReconciliationError):
    """Raised when contact data breaks a linking invariant (a bug upstream)."""

    is_operational = False
