"""
Side-effect Intents

Descriptions of work the lifecycle engine requests but does not execute.
The application service hands them to the notification and order collaborators.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class NotificationKind(str, Enum):
    APPROVED = "quotation_approved"
    REJECTED = "quotation_rejected"
    REPLIED = "quotation_replied"
    CONVERTED = "quotation_converted"
    CUSTOMER_APPROVED = "quotation_customer_approved"
    CUSTOMER_REJECTED = "quotation_customer_rejected"
    EXPIRED = "quotation_expired"


class NotificationTarget(str, Enum):
    CUSTOMER = "customer"
    STAFF = "staff"


@dataclass
class NotifyIntent:
    """Ask the notification service to tell someone about a quotation."""
    quotation_number: str
    kind: NotificationKind
    message: str
    target: NotificationTarget
    recipient: Optional[str] = None  # user id or email for customers, None = all staff
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quotation_number": self.quotation_number,
            "kind": self.kind.value,
            "message": self.message,
            "target": self.target.value,
            "recipient": self.recipient,
            "metadata": dict(self.metadata),
        }


class NotifyCustomer(NotifyIntent):
    def __init__(self, quotation_number: str, kind: NotificationKind, message: str,
                 recipient: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None):
        super().__init__(
            quotation_number=quotation_number,
            kind=kind,
            message=message,
            target=NotificationTarget.CUSTOMER,
            recipient=recipient,
            metadata=metadata or {},
        )


class NotifyStaff(NotifyIntent):
    def __init__(self, quotation_number: str, kind: NotificationKind, message: str,
                 metadata: Optional[Dict[str, Any]] = None):
        super().__init__(
            quotation_number=quotation_number,
            kind=kind,
            message=message,
            target=NotificationTarget.STAFF,
            recipient=None,
            metadata=metadata or {},
        )


@dataclass
class CreateOrder:
    """Ask the order service to create an order from a quotation snapshot."""
    quotation_number: str
    user_id: Optional[str]
    customer_name: str
    customer_email: str
    customer_phone: Optional[str]
    items: List[Dict[str, Any]]
    subtotal: float
    tax: float
    discount: float
    total_amount: float
    notes: Optional[str] = None
    prescription_file: Optional[str] = None
    staff_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quotation_number": self.quotation_number,
            "user_id": self.user_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "items": [dict(i) for i in self.items],
            "subtotal": self.subtotal,
            "tax": self.tax,
            "discount": self.discount,
            "total_amount": self.total_amount,
            "notes": self.notes,
            "prescription_file": self.prescription_file,
            "staff_id": self.staff_id,
        }
