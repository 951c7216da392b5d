"""
Quotation Error Kinds

Every lifecycle operation either returns a result or raises one of these.
"""

from typing import List, Optional


class QuotationError(Exception):
    """Base class for quotation workflow errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(QuotationError):
    """Raised when a required field is missing or invalid."""

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        self.fields = fields or []
        super().__init__(message)


class InvalidTransitionError(QuotationError):
    """Raised when an action is not defined for the current status."""

    def __init__(self, action: str, status: str):
        self.action = action
        self.status = status
        super().__init__(f"Cannot {action} a quotation that is {status}")


class UnauthorizedTransitionError(QuotationError):
    """Raised when the acting role lacks the capability for a transition."""

    def __init__(self, action: str, status: str, role: str, message: Optional[str] = None):
        self.action = action
        self.status = status
        self.role = role
        super().__init__(message or f"Role '{role}' may not {action} a quotation that is {status}")


class QuotationExpiredError(QuotationError):
    """Raised when a quotation is acted on past its validUntil timestamp."""

    def __init__(self, quotation_number: str, valid_until: str):
        self.quotation_number = quotation_number
        self.valid_until = valid_until
        super().__init__(f"Quotation {quotation_number} expired at {valid_until}")


class ConcurrentModificationError(QuotationError):
    """Raised when a write is conditioned on a stale version."""

    def __init__(self, quotation_number: str, expected_version: int):
        self.quotation_number = quotation_number
        self.expected_version = expected_version
        super().__init__(
            f"Quotation {quotation_number} was modified concurrently "
            f"(expected version {expected_version}); reload and retry"
        )


class DependencyFailure(QuotationError):
    """Raised when an external collaborator (orders, notifications, uploads) fails."""

    def __init__(self, dependency: str, message: str):
        self.dependency = dependency
        super().__init__(f"{dependency} failed: {message}")


class QuotationNotFoundError(QuotationError):
    def __init__(self, quotation_number: str):
        self.quotation_number = quotation_number
        super().__init__(f"Quotation {quotation_number} not found")
