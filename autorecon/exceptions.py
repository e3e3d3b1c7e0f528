"""
Settlement core exception hierarchy.

Every error raised by the workflow services derives from AutoReconError and
carries a human-readable reason plus structured details for the caller.
"""


class AutoReconError(Exception):
    """Base exception for all settlement core errors"""

    status_code = 400

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ValidationError(AutoReconError):
    """Raised when a required field is missing or malformed"""

    status_code = 422


class InvalidTransition(AutoReconError):
    """Raised when an operation is not permitted from the entity's current status"""

    status_code = 409


class CurrencyMismatch(AutoReconError):
    """Raised when a transaction currency differs from the run currency"""

    status_code = 422


class AuthorizationError(AutoReconError):
    """Raised when an actor may not perform the requested decision"""

    status_code = 403


class ConcurrentModification(AutoReconError):
    """Raised when the entity changed since it was read; retry with fresh state"""

    status_code = 409


class NotFoundError(AutoReconError):
    """Raised when a run, partner settlement or approval request does not exist"""

    status_code = 404
