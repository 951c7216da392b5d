"""
Quotation Domain Models

QuotationStatus, ActorRole, QuotationItem, StaffReply and the Quotation
entity with its derived monetary fields.
"""

import os
import random
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from app.quotation.errors import ValidationError

TAX_RATE = float(os.getenv("QUOTATION_TAX_RATE", "0.10"))
VALIDITY_DAYS = int(os.getenv("QUOTATION_VALIDITY_DAYS", "30"))

# Free-text limits
MAX_NOTES_LENGTH = 1000
MAX_REASON_LENGTH = 500
MAX_REPLY_LENGTH = 1000

QUOTATION_NUMBER_RE = re.compile(r"^QUO-\d{8}-\d{4}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")
PHONE_RE = re.compile(r"^\+?[\d\s\-()]+$")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the database columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def money(value: float) -> float:
    return round(float(value), 2)


class QuotationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CONVERTED = "converted"
    EXPIRED = "expired"


TERMINAL_STATES = {QuotationStatus.REJECTED, QuotationStatus.CONVERTED, QuotationStatus.EXPIRED}


class ActorRole(str, Enum):
    CUSTOMER = "customer"
    STAFF = "staff"

    @classmethod
    def parse(cls, value: "str | ActorRole") -> "ActorRole":
        """Resolve a role string; admins act with staff capabilities."""
        if isinstance(value, ActorRole):
            return value
        normalized = (value or "").strip().lower()
        if normalized == "admin":
            return cls.STAFF
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationError(f"Unknown actor role: {value}", fields=["actor_role"])


class Action(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    CONVERT = "convert"
    REPLY = "reply"


def generate_quotation_number(now: Optional[datetime] = None) -> str:
    """Generate a quotation number: QUO-YYYYMMDD-NNNN"""
    date_str = (now or utcnow()).strftime("%Y%m%d")
    return f"QUO-{date_str}-{random.randint(1000, 9999)}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None) if value.tzinfo else value
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@dataclass
class QuotationItem:
    """Quotation line item"""
    product_id: str
    quantity: int
    unit_price: float
    product_name: str = ""
    product_image: str = ""
    specifications: Dict[str, str] = field(default_factory=dict)
    total_price: float = 0.0

    def __post_init__(self):
        self.validate()
        self.total_price = money(self.quantity * self.unit_price)

    def validate(self) -> None:
        missing = []
        if not self.product_id:
            missing.append("product_id")
        if not isinstance(self.quantity, int) or isinstance(self.quantity, bool) or self.quantity < 1:
            missing.append("quantity")
        if self.unit_price is None or self.unit_price < 0:
            missing.append("unit_price")
        if missing:
            raise ValidationError(
                "Item requires a product, a quantity of at least 1 and a non-negative unit price",
                fields=missing,
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_image": self.product_image,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
            "specifications": dict(self.specifications),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuotationItem":
        return cls(
            product_id=data["product_id"],
            quantity=int(data["quantity"]),
            unit_price=float(data["unit_price"]),
            product_name=data.get("product_name", ""),
            product_image=data.get("product_image", ""),
            specifications=dict(data.get("specifications") or {}),
        )


@dataclass
class StaffReply:
    """Staff message appended to a quotation's audit trail"""
    message: str
    staff_id: Optional[str] = None
    replied_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "staff_id": self.staff_id,
            "replied_at": self.replied_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StaffReply":
        return cls(
            message=data["message"],
            staff_id=data.get("staff_id"),
            replied_at=_parse_dt(data.get("replied_at")) or utcnow(),
        )


@dataclass
class Quotation:
    """
    Customer quotation.

    subtotal, tax and total_amount are derived from items, discount and
    tax_rate; every item mutation goes through add_item/remove_item which
    recompute them.
    """
    quotation_number: str
    customer_name: str
    customer_email: str
    items: List[QuotationItem] = field(default_factory=list)
    customer_phone: Optional[str] = None
    user_id: Optional[str] = None
    status: QuotationStatus = QuotationStatus.PENDING
    discount: float = 0.0
    tax_rate: float = TAX_RATE
    subtotal: float = 0.0
    tax: float = 0.0
    total_amount: float = 0.0
    notes: Optional[str] = None
    prescription_file: Optional[str] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    valid_until: Optional[datetime] = None

    # Staff handling
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_reason: Optional[str] = None
    staff_notes: Optional[str] = None
    staff_replies: List[StaffReply] = field(default_factory=list)

    # Customer response
    customer_approved_at: Optional[datetime] = None
    customer_rejected_at: Optional[datetime] = None
    customer_rejection_reason: Optional[str] = None

    # Conversion
    converted_at: Optional[datetime] = None
    converted_to_order: Optional[str] = None

    version: int = 1

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = QuotationStatus(self.status)
        now = utcnow()
        if self.created_at is None:
            self.created_at = now
        if self.modified_at is None:
            self.modified_at = self.created_at
        if self.valid_until is None:
            self.valid_until = self.created_at + timedelta(days=VALIDITY_DAYS)
        if self.discount < 0:
            raise ValidationError("Discount cannot be negative", fields=["discount"])
        self.recompute_totals()

    @classmethod
    def create(
        cls,
        customer_name: str,
        customer_email: str,
        items: List[QuotationItem],
        customer_phone: Optional[str] = None,
        user_id: Optional[str] = None,
        notes: Optional[str] = None,
        prescription_file: Optional[str] = None,
        now: Optional[datetime] = None,
        validity_days: int = VALIDITY_DAYS,
        tax_rate: float = TAX_RATE,
    ) -> "Quotation":
        """Build a new pending quotation valid for validity_days."""
        missing = validate_customer(customer_name, customer_email, customer_phone)
        if not items:
            missing.append("items")
        if notes and len(notes) > MAX_NOTES_LENGTH:
            missing.append("notes")
        if validity_days <= 0:
            missing.append("validity_days")
        if missing:
            raise ValidationError(f"Invalid quotation request: {', '.join(missing)}", fields=missing)

        created = now or utcnow()
        return cls(
            quotation_number=generate_quotation_number(created),
            customer_name=customer_name.strip(),
            customer_email=customer_email.strip().lower(),
            customer_phone=customer_phone,
            user_id=user_id,
            items=list(items),
            notes=notes,
            prescription_file=prescription_file,
            created_at=created,
            modified_at=created,
            valid_until=created + timedelta(days=validity_days),
            tax_rate=tax_rate,
        )

    # === Items & totals ===

    def add_item(self, item: QuotationItem) -> None:
        item.validate()
        item.total_price = money(item.quantity * item.unit_price)
        self.items.append(item)
        self.recompute_totals()

    def remove_item(self, item_index: int) -> QuotationItem:
        if item_index < 0 or item_index >= len(self.items):
            raise ValidationError(f"No item at index {item_index}", fields=["items"])
        if len(self.items) == 1:
            raise ValidationError("A quotation requires at least one item", fields=["items"])
        removed = self.items.pop(item_index)
        self.recompute_totals()
        return removed

    def replace_items(self, items: List[QuotationItem]) -> None:
        if not items:
            raise ValidationError("A quotation requires at least one item", fields=["items"])
        for item in items:
            item.validate()
        self.items = list(items)
        self.recompute_totals()

    def apply_discount(self, amount: float) -> None:
        if amount is None or amount < 0:
            raise ValidationError("Discount cannot be negative", fields=["discount"])
        subtotal = money(sum(i.quantity * i.unit_price for i in self.items))
        if amount > subtotal + money(subtotal * self.tax_rate):
            raise ValidationError("Discount cannot exceed the quotation total", fields=["discount"])
        self.discount = money(amount)
        self.recompute_totals()

    def recompute_totals(self) -> None:
        """Re-derive item totals, subtotal, tax and total from items and discount."""
        for item in self.items:
            item.total_price = money(item.quantity * item.unit_price)
        self.subtotal = money(sum(item.total_price for item in self.items))
        self.tax = money(self.subtotal * self.tax_rate)
        self.total_amount = money(self.subtotal + self.tax - self.discount)

    # === Validity ===

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.valid_until < (now or utcnow())

    def effective_status(self, now: Optional[datetime] = None) -> QuotationStatus:
        """Stored status with implicit expiry applied."""
        if self.status in (QuotationStatus.PENDING, QuotationStatus.APPROVED) and self.is_expired(now):
            return QuotationStatus.EXPIRED
        return self.status

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    # === Serialization ===

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quotation_number": self.quotation_number,
            "user_id": self.user_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "items": [i.to_dict() for i in self.items],
            "subtotal": self.subtotal,
            "tax": self.tax,
            "tax_rate": self.tax_rate,
            "discount": self.discount,
            "total_amount": self.total_amount,
            "status": self.status.value,
            "effective_status": self.effective_status().value,
            "notes": self.notes,
            "prescription_file": self.prescription_file,
            "valid_until": _iso(self.valid_until),
            "approved_at": _iso(self.approved_at),
            "approved_by": self.approved_by,
            "rejected_at": _iso(self.rejected_at),
            "rejected_by": self.rejected_by,
            "rejected_reason": self.rejected_reason,
            "staff_notes": self.staff_notes,
            "staff_replies": [r.to_dict() for r in self.staff_replies],
            "customer_approved_at": _iso(self.customer_approved_at),
            "customer_rejected_at": _iso(self.customer_rejected_at),
            "customer_rejection_reason": self.customer_rejection_reason,
            "converted_at": _iso(self.converted_at),
            "converted_to_order": self.converted_to_order,
            "created_at": _iso(self.created_at),
            "modified_at": _iso(self.modified_at),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Quotation":
        return cls(
            quotation_number=data["quotation_number"],
            user_id=data.get("user_id"),
            customer_name=data["customer_name"],
            customer_email=data["customer_email"],
            customer_phone=data.get("customer_phone"),
            items=[QuotationItem.from_dict(i) for i in data.get("items") or []],
            discount=float(data.get("discount") or 0.0),
            tax_rate=float(data.get("tax_rate", TAX_RATE)),
            status=QuotationStatus(data.get("status", "pending")),
            notes=data.get("notes"),
            prescription_file=data.get("prescription_file"),
            created_at=_parse_dt(data.get("created_at")),
            modified_at=_parse_dt(data.get("modified_at")),
            valid_until=_parse_dt(data.get("valid_until")),
            approved_at=_parse_dt(data.get("approved_at")),
            approved_by=data.get("approved_by"),
            rejected_at=_parse_dt(data.get("rejected_at")),
            rejected_by=data.get("rejected_by"),
            rejected_reason=data.get("rejected_reason"),
            staff_notes=data.get("staff_notes"),
            staff_replies=[StaffReply.from_dict(r) for r in data.get("staff_replies") or []],
            customer_approved_at=_parse_dt(data.get("customer_approved_at")),
            customer_rejected_at=_parse_dt(data.get("customer_rejected_at")),
            customer_rejection_reason=data.get("customer_rejection_reason"),
            converted_at=_parse_dt(data.get("converted_at")),
            converted_to_order=data.get("converted_to_order"),
            version=int(data.get("version", 1)),
        )


def validate_customer(
    name: Optional[str],
    email: Optional[str],
    phone: Optional[str] = None,
) -> List[str]:
    """
    Validate requester identity.

    Returns list of invalid fields (empty = valid).
    """
    invalid = []
    if not name or not (2 <= len(name.strip()) <= 100):
        invalid.append("customer_name")
    if not email or not EMAIL_RE.match(email.strip()):
        invalid.append("customer_email")
    if phone and not PHONE_RE.match(phone):
        invalid.append("customer_phone")
    return invalid
