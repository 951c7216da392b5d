"""
Quotation Lifecycle Engine

Validates and applies transitions. Each operation takes a quotation
snapshot plus the acting role, and returns a TransitionResult holding a new
snapshot and the side-effect intents the caller must execute. The input
snapshot is never mutated and nothing is persisted here.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from app.quotation.authority import authorize, ensure_defined
from app.quotation.errors import (
    InvalidTransitionError,
    QuotationExpiredError,
    UnauthorizedTransitionError,
    ValidationError,
)
from app.quotation.intents import (
    CreateOrder,
    NotificationKind,
    NotifyCustomer,
    NotifyIntent,
    NotifyStaff,
)
from app.quotation.models import (
    MAX_NOTES_LENGTH,
    MAX_REASON_LENGTH,
    MAX_REPLY_LENGTH,
    Action,
    ActorRole,
    Quotation,
    QuotationItem,
    QuotationStatus,
    StaffReply,
    utcnow,
)

Intent = Union[NotifyIntent, CreateOrder]


@dataclass
class TransitionResult:
    """Next quotation snapshot plus intents for the caller to execute."""
    quotation: Quotation
    action: str
    actor_role: ActorRole
    from_status: QuotationStatus
    to_status: QuotationStatus
    intents: List[Intent] = field(default_factory=list)

    @property
    def notifications(self) -> List[NotifyIntent]:
        return [i for i in self.intents if isinstance(i, NotifyIntent)]

    @property
    def order_request(self) -> Optional[CreateOrder]:
        return next((i for i in self.intents if isinstance(i, CreateOrder)), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "actor_role": self.actor_role.value,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "quotation": self.quotation.to_dict(),
        }


# === Helpers ===

def _authorize(
    quotation: Quotation,
    actor_role: Union[str, ActorRole],
    action: Action,
    now: datetime,
) -> QuotationStatus:
    """State check, then expiry, then role check."""
    role = ActorRole.parse(actor_role)
    ensure_defined(quotation.status, action)
    if quotation.is_expired(now):
        raise QuotationExpiredError(quotation.quotation_number, quotation.valid_until.isoformat())
    return authorize(quotation.status, role, action)


def _require_text(value: Optional[str], field_name: str, label: str, max_length: int) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{label} is required", fields=[field_name])
    if len(text) > max_length:
        raise ValidationError(f"{label} cannot exceed {max_length} characters", fields=[field_name])
    return text


def _optional_text(value: Optional[str], field_name: str, label: str, max_length: int) -> Optional[str]:
    text = (value or "").strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{label} cannot exceed {max_length} characters", fields=[field_name])
    return text


def _customer_recipient(quotation: Quotation) -> str:
    return quotation.user_id or quotation.customer_email


def _truncate(message: str, limit: int = 100) -> str:
    return message if len(message) <= limit else message[:limit] + "..."


# === Transitions ===

def approve(
    quotation: Quotation,
    actor_role: Union[str, ActorRole],
    actor_id: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """
    Staff approval (pending -> approved) or customer confirmation of a
    staff-approved quotation (approved -> approved).
    """
    now = now or utcnow()
    role = ActorRole.parse(actor_role)
    to_status = _authorize(quotation, role, Action.APPROVE, now)
    staff_notes = _optional_text(notes, "staff_notes", "Staff notes", MAX_NOTES_LENGTH)

    updated = copy.deepcopy(quotation)
    updated.status = to_status
    updated.modified_at = now

    if role == ActorRole.STAFF:
        updated.approved_at = now
        updated.approved_by = actor_id
        if staff_notes:
            updated.staff_notes = staff_notes
        intents: List[Intent] = [NotifyCustomer(
            quotation_number=updated.quotation_number,
            kind=NotificationKind.APPROVED,
            message=(
                f"Your quotation {updated.quotation_number} has been approved. "
                f"Total amount: ${updated.total_amount:.2f}"
            ),
            recipient=_customer_recipient(updated),
            metadata={"total_amount": updated.total_amount},
        )]
    else:
        updated.customer_approved_at = now
        intents = [NotifyStaff(
            quotation_number=updated.quotation_number,
            kind=NotificationKind.CUSTOMER_APPROVED,
            message=(
                f"{updated.customer_name} accepted quotation {updated.quotation_number} "
                f"and is ready for conversion"
            ),
            metadata={"customer_email": updated.customer_email},
        )]

    return TransitionResult(
        quotation=updated,
        action=Action.APPROVE.value,
        actor_role=role,
        from_status=quotation.status,
        to_status=to_status,
        intents=intents,
    )


def reject(
    quotation: Quotation,
    actor_role: Union[str, ActorRole],
    reason: Optional[str],
    actor_id: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """Staff rejection of a pending quotation or customer decline of an approved one."""
    now = now or utcnow()
    role = ActorRole.parse(actor_role)
    to_status = _authorize(quotation, role, Action.REJECT, now)
    reason_text = _require_text(reason, "reason", "A rejection reason", MAX_REASON_LENGTH)
    staff_notes = _optional_text(notes, "staff_notes", "Staff notes", MAX_NOTES_LENGTH)

    updated = copy.deepcopy(quotation)
    updated.status = to_status
    updated.modified_at = now

    if role == ActorRole.STAFF:
        updated.rejected_at = now
        updated.rejected_by = actor_id
        updated.rejected_reason = reason_text
        if staff_notes:
            updated.staff_notes = staff_notes
        intents: List[Intent] = [NotifyCustomer(
            quotation_number=updated.quotation_number,
            kind=NotificationKind.REJECTED,
            message=f"Your quotation {updated.quotation_number} has been rejected. Reason: {reason_text}",
            recipient=_customer_recipient(updated),
            metadata={"reason": reason_text},
        )]
    else:
        updated.customer_rejected_at = now
        updated.customer_rejection_reason = reason_text
        intents = [NotifyStaff(
            quotation_number=updated.quotation_number,
            kind=NotificationKind.CUSTOMER_REJECTED,
            message=(
                f"{updated.customer_name} declined quotation {updated.quotation_number}. "
                f"Reason: {reason_text}"
            ),
            metadata={"reason": reason_text},
        )]

    return TransitionResult(
        quotation=updated,
        action=Action.REJECT.value,
        actor_role=role,
        from_status=quotation.status,
        to_status=to_status,
        intents=intents,
    )


def reply(
    quotation: Quotation,
    message: Optional[str],
    actor_role: Union[str, ActorRole] = ActorRole.STAFF,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """Append a staff reply; status is unchanged."""
    now = now or utcnow()
    role = ActorRole.parse(actor_role)
    to_status = _authorize(quotation, role, Action.REPLY, now)
    text = _require_text(message, "message", "A reply message", MAX_REPLY_LENGTH)

    updated = copy.deepcopy(quotation)
    updated.staff_replies.append(StaffReply(message=text, staff_id=actor_id, replied_at=now))
    updated.modified_at = now

    return TransitionResult(
        quotation=updated,
        action=Action.REPLY.value,
        actor_role=role,
        from_status=quotation.status,
        to_status=to_status,
        intents=[NotifyCustomer(
            quotation_number=updated.quotation_number,
            kind=NotificationKind.REPLIED,
            message=f"Staff replied to quotation {updated.quotation_number}: {_truncate(text)}",
            recipient=_customer_recipient(updated),
            metadata={"staff_id": actor_id},
        )],
    )


def convert(
    quotation: Quotation,
    actor_role: Union[str, ActorRole] = ActorRole.STAFF,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """
    Request conversion of an approved quotation into an order.

    The returned snapshot keeps status=approved; it carries a CreateOrder
    intent. Apply complete_conversion() once the order service succeeds.
    """
    now = now or utcnow()
    role = ActorRole.parse(actor_role)
    _authorize(quotation, role, Action.CONVERT, now)

    snapshot = copy.deepcopy(quotation)
    order_request = CreateOrder(
        quotation_number=snapshot.quotation_number,
        user_id=snapshot.user_id,
        customer_name=snapshot.customer_name,
        customer_email=snapshot.customer_email,
        customer_phone=snapshot.customer_phone,
        items=[item.to_dict() for item in snapshot.items],
        subtotal=snapshot.subtotal,
        tax=snapshot.tax,
        discount=snapshot.discount,
        total_amount=snapshot.total_amount,
        notes=snapshot.notes,
        prescription_file=snapshot.prescription_file,
        staff_id=actor_id,
    )

    return TransitionResult(
        quotation=snapshot,
        action=Action.CONVERT.value,
        actor_role=role,
        from_status=quotation.status,
        to_status=quotation.status,
        intents=[order_request],
    )


def complete_conversion(
    quotation: Quotation,
    order_id: str,
    order_number: Optional[str] = None,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """Record a successful order creation: approved -> converted."""
    now = now or utcnow()
    to_status = _authorize(quotation, ActorRole.STAFF, Action.CONVERT, now)
    if not order_id:
        raise ValidationError("An order reference is required to complete conversion", fields=["order_id"])

    updated = copy.deepcopy(quotation)
    updated.status = to_status
    updated.converted_at = now
    updated.converted_to_order = order_id
    updated.modified_at = now

    return TransitionResult(
        quotation=updated,
        action=Action.CONVERT.value,
        actor_role=ActorRole.STAFF,
        from_status=quotation.status,
        to_status=to_status,
        intents=[NotifyCustomer(
            quotation_number=updated.quotation_number,
            kind=NotificationKind.CONVERTED,
            message=(
                f"Your quotation {updated.quotation_number} has been converted to order "
                f"{order_number or order_id}"
            ),
            recipient=_customer_recipient(updated),
            metadata={"order_id": order_id, "order_number": order_number, "staff_id": actor_id},
        )],
    )


def expire(quotation: Quotation, now: Optional[datetime] = None) -> TransitionResult:
    """Persist implicit expiry: pending/approved past validUntil -> expired."""
    now = now or utcnow()
    if quotation.effective_status(now) != QuotationStatus.EXPIRED or quotation.status == QuotationStatus.EXPIRED:
        raise InvalidTransitionError("expire", quotation.status.value)

    updated = copy.deepcopy(quotation)
    updated.status = QuotationStatus.EXPIRED
    updated.modified_at = now

    return TransitionResult(
        quotation=updated,
        action="expire",
        actor_role=ActorRole.STAFF,
        from_status=quotation.status,
        to_status=QuotationStatus.EXPIRED,
        intents=[NotifyCustomer(
            quotation_number=updated.quotation_number,
            kind=NotificationKind.EXPIRED,
            message=f"Your quotation {updated.quotation_number} has expired",
            recipient=_customer_recipient(updated),
        )],
    )


def revise(
    quotation: Quotation,
    actor_role: Union[str, ActorRole],
    items: Optional[List[QuotationItem]] = None,
    notes: Optional[str] = None,
    staff_notes: Optional[str] = None,
    discount: Optional[float] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """Staff edit of a pending quotation's items, notes or discount; totals are re-derived."""
    now = now or utcnow()
    role = ActorRole.parse(actor_role)
    if quotation.status != QuotationStatus.PENDING:
        raise InvalidTransitionError("update", quotation.status.value)
    if quotation.is_expired(now):
        raise QuotationExpiredError(quotation.quotation_number, quotation.valid_until.isoformat())
    if role != ActorRole.STAFF:
        raise UnauthorizedTransitionError("update", quotation.status.value, role.value)

    updated = copy.deepcopy(quotation)
    if items is not None:
        updated.replace_items(copy.deepcopy(items))
    if notes is not None:
        updated.notes = _optional_text(notes, "notes", "Notes", MAX_NOTES_LENGTH)
    if staff_notes is not None:
        updated.staff_notes = _optional_text(staff_notes, "staff_notes", "Staff notes", MAX_NOTES_LENGTH)
    if discount is not None:
        updated.apply_discount(discount)
    updated.recompute_totals()
    updated.modified_at = now

    return TransitionResult(
        quotation=updated,
        action="update",
        actor_role=role,
        from_status=quotation.status,
        to_status=quotation.status,
    )
