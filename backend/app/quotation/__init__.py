"""
Quotation Module - lifecycle of customer quotation requests

Contains:
- models: Quotation entity, items, status / role / action enums
- authority: which role may trigger which transition from which status
- engine: pure transition functions returning new snapshots + intents
- repository: versioned persistence
- service: orchestration of engine, repository and collaborators
"""

from app.quotation.engine import TransitionResult
from app.quotation.errors import (
    ConcurrentModificationError,
    DependencyFailure,
    InvalidTransitionError,
    QuotationError,
    QuotationExpiredError,
    QuotationNotFoundError,
    UnauthorizedTransitionError,
    ValidationError,
)
from app.quotation.models import (
    Action,
    ActorRole,
    Quotation,
    QuotationItem,
    QuotationStatus,
    StaffReply,
)

__all__ = [
    # Models
    "Action",
    "ActorRole",
    "Quotation",
    "QuotationItem",
    "QuotationStatus",
    "StaffReply",
    # Engine
    "TransitionResult",
    # Errors
    "ConcurrentModificationError",
    "DependencyFailure",
    "InvalidTransitionError",
    "QuotationError",
    "QuotationExpiredError",
    "QuotationNotFoundError",
    "UnauthorizedTransitionError",
    "ValidationError",
]
