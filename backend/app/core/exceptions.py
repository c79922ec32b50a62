"""Error taxonomy for the payment lifecycle.

Every failure a caller can observe belongs to exactly one ``ErrorKind``. The
kind decides the HTTP status, whether a retry is safe, and what the caller is
allowed to see. Gateway and storage details stay in the server log; callers
only get ``public_message``.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    SIGNATURE = "signature"
    NOT_FOUND = "not_found"
    UPSTREAM = "upstream"
    PERSISTENCE = "persistence"


class PaymentError(Exception):
    """Base class for all expected payment lifecycle failures"""

    kind: ErrorKind
    status_code: int = 500
    retryable: bool = False
    default_message: str = "Payment request failed"

    def __init__(self, detail: str, public_message: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.public_message = public_message or self.default_message


class ValidationError(PaymentError):
    """Bad caller input. Never retried."""
    kind = ErrorKind.VALIDATION
    status_code = 400

    def __init__(self, detail: str):
        # Validation messages are written for the caller
        super().__init__(detail, public_message=detail)


class AuthenticationError(PaymentError):
    kind = ErrorKind.AUTHENTICATION
    status_code = 401

    def __init__(self, detail: str = "Not authenticated. Please log in."):
        super().__init__(detail, public_message=detail)


class SignatureError(PaymentError):
    """Webhook authenticity check failed. Never retried, never mutates state."""
    kind = ErrorKind.SIGNATURE
    status_code = 400
    default_message = "Invalid signature"


class NotFoundError(PaymentError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404

    def __init__(self, detail: str):
        super().__init__(detail, public_message=detail)


class UpstreamError(PaymentError):
    """Stripe call failed. Surfaced as-is, not retried internally."""
    kind = ErrorKind.UPSTREAM
    status_code = 500
    default_message = "Payment provider request failed"


class PersistenceError(PaymentError):
    """Local storage write failed.

    Safe to retry for webhooks (the event ledger makes redelivery a no-op);
    on the refund path money has already moved and the failure is raised to
    the reconciliation alert channel as well.
    """
    kind = ErrorKind.PERSISTENCE
    status_code = 500
    retryable = True
    default_message = "Failed to save payment state"
