"""
Quotation API Endpoints

REST API for the quotation workflow: request, list, detail, staff
approve/reject/reply/convert, customer confirm/decline, stats.

The acting role and id are passed explicitly in the X-Actor-Role and
X-Actor-Id headers.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Header, HTTPException
from pydantic import BaseModel, Field

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
from app.quotation.models import ActorRole
from app.quotation.service import get_quotation_service

router = APIRouter()
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 400,
    UnauthorizedTransitionError: 403,
    QuotationNotFoundError: 404,
    InvalidTransitionError: 409,
    ConcurrentModificationError: 409,
    QuotationExpiredError: 410,
    DependencyFailure: 502,
}


# === Request Models ===

class RequestedItem(BaseModel):
    product_id: str
    quantity: int = Field(ge=1)
    specifications: Dict[str, str] = {}


class ItemRequest(RequestedItem):
    unit_price: Optional[float] = Field(default=None, ge=0)


class CreateQuotationRequest(BaseModel):
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    items: List[RequestedItem]
    notes: Optional[str] = None
    prescription_file: Optional[str] = None


class UpdateQuotationRequest(BaseModel):
    items: Optional[List[ItemRequest]] = None
    notes: Optional[str] = None
    staff_notes: Optional[str] = None
    discount: Optional[float] = None
    version: Optional[int] = None


class ApproveRequest(BaseModel):
    staff_notes: Optional[str] = None
    version: Optional[int] = None


class RejectRequest(BaseModel):
    reason: str = ""
    staff_notes: Optional[str] = None
    version: Optional[int] = None


class ReplyRequest(BaseModel):
    message: str = ""
    version: Optional[int] = None


class ConvertRequest(BaseModel):
    version: Optional[int] = None


# === Helpers ===

def _http_error(e: QuotationError) -> HTTPException:
    status_code = next(
        (code for kind, code in ERROR_STATUS.items() if isinstance(e, kind)),
        400,
    )
    detail: Dict[str, Any] = {"error": type(e).__name__, "message": e.message}
    if isinstance(e, ValidationError) and e.fields:
        detail["fields"] = e.fields
    return HTTPException(status_code=status_code, detail=detail)


def _role(x_actor_role: Optional[str]) -> ActorRole:
    if not x_actor_role:
        raise HTTPException(status_code=400, detail="X-Actor-Role header is required")
    try:
        return ActorRole.parse(x_actor_role)
    except ValidationError as e:
        raise _http_error(e)


def _require_staff(role: ActorRole) -> None:
    if role != ActorRole.STAFF:
        raise HTTPException(status_code=403, detail="Staff role required")


# === Quotations ===

@router.post("", response_model=Dict[str, Any], status_code=201)
async def create_quotation(
    request: CreateQuotationRequest,
    x_actor_id: Optional[str] = Header(default=None),
):
    """Request a quotation (customer). Prices are taken from the catalog."""
    service = get_quotation_service()
    try:
        quotation = await service.request_quotation(
            customer_name=request.customer_name,
            customer_email=request.customer_email,
            customer_phone=request.customer_phone,
            user_id=x_actor_id,
            items=[item.model_dump() for item in request.items],
            notes=request.notes,
            prescription_file=request.prescription_file,
        )
    except QuotationError as e:
        raise _http_error(e)
    return quotation.to_dict()


@router.get("", response_model=Dict[str, Any])
async def list_quotations(
    status: Optional[str] = None,
    search: Optional[str] = None,
    user_id: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    x_actor_role: Optional[str] = Header(default=None),
    x_actor_id: Optional[str] = Header(default=None),
):
    """List quotations. Customers only ever see their own."""
    role = _role(x_actor_role)
    if role == ActorRole.CUSTOMER:
        user_id = x_actor_id
        if not user_id:
            raise HTTPException(status_code=400, detail="X-Actor-Id header is required for customers")

    service = get_quotation_service()
    try:
        result = await service.list_quotations(
            status=status, search=search, user_id=user_id, page=page, limit=limit,
        )
    except QuotationError as e:
        raise _http_error(e)

    return {
        "quotations": [q.to_dict() for q in result["quotations"]],
        "pagination": {
            "page": result["page"],
            "limit": result["limit"],
            "total": result["total"],
            "pages": result["pages"],
        },
    }


@router.get("/stats", response_model=Dict[str, int])
async def get_stats(x_actor_role: Optional[str] = Header(default=None)):
    """Quotation counts per status."""
    _require_staff(_role(x_actor_role))
    return await get_quotation_service().stats()


@router.post("/expire", response_model=Dict[str, Any])
async def expire_quotations(x_actor_role: Optional[str] = Header(default=None)):
    """Mark every overdue pending/approved quotation as expired."""
    _require_staff(_role(x_actor_role))
    expired = await get_quotation_service().expire_overdue()
    return {"expired": expired, "count": len(expired)}


@router.get("/{quotation_number}", response_model=Dict[str, Any])
async def get_quotation(
    quotation_number: str,
    x_actor_role: Optional[str] = Header(default=None),
    x_actor_id: Optional[str] = Header(default=None),
):
    """Get quotation detail. Customers only see their own."""
    role = _role(x_actor_role)
    try:
        quotation = await get_quotation_service().get_quotation(quotation_number, role, x_actor_id)
    except QuotationError as e:
        raise _http_error(e)
    return quotation.to_dict()


@router.get("/{quotation_number}/actions", response_model=Dict[str, Any])
async def get_available_actions(
    quotation_number: str,
    x_actor_role: Optional[str] = Header(default=None),
    x_actor_id: Optional[str] = Header(default=None),
):
    """Actions the caller's role may take on this quotation right now."""
    role = _role(x_actor_role)
    try:
        actions = await get_quotation_service().available_actions(quotation_number, role, actor_id=x_actor_id)
    except QuotationError as e:
        raise _http_error(e)
    return {"quotation_number": quotation_number, "role": role.value, "actions": actions}


@router.get("/{quotation_number}/events", response_model=Dict[str, Any])
async def get_quotation_events(
    quotation_number: str,
    x_actor_role: Optional[str] = Header(default=None),
    x_actor_id: Optional[str] = Header(default=None),
):
    """Transition history. Customers only see their own."""
    role = _role(x_actor_role)
    try:
        events = await get_quotation_service().events(quotation_number, role, x_actor_id)
    except QuotationError as e:
        raise _http_error(e)
    return {"quotation_number": quotation_number, "events": events, "count": len(events)}


@router.put("/{quotation_number}", response_model=Dict[str, Any])
async def update_quotation(
    quotation_number: str,
    request: UpdateQuotationRequest,
    x_actor_role: Optional[str] = Header(default=None),
    x_actor_id: Optional[str] = Header(default=None),
):
    """Edit a pending quotation (staff)."""
    role = _role(x_actor_role)
    try:
        outcome = await get_quotation_service().update_quotation(
            quotation_number,
            role,
            items=[i.model_dump() for i in request.items] if request.items is not None else None,
            notes=request.notes,
            staff_notes=request.staff_notes,
            discount=request.discount,
            actor_id=x_actor_id,
            expected_version=request.version,
        )
    except QuotationError as e:
        raise _http_error(e)
    return outcome.to_dict()


@router.post("/{quotation_number}/approve", response_model=Dict[str, Any])
async def approve_quotation(
    quotation_number: str,
    request: ApproveRequest,
    x_actor_role: Optional[str] = Header(default=None),
    x_actor_id: Optional[str] = Header(default=None),
):
    """Staff approval of a pending quotation, or customer confirmation of an approved one."""
    role = _role(x_actor_role)
    try:
        outcome = await get_quotation_service().approve(
            quotation_number, role,
            actor_id=x_actor_id, notes=request.staff_notes, expected_version=request.version,
        )
    except QuotationError as e:
        raise _http_error(e)
    return outcome.to_dict()


@router.post("/{quotation_number}/reject", response_model=Dict[str, Any])
async def reject_quotation(
    quotation_number: str,
    request: RejectRequest,
    x_actor_role: Optional[str] = Header(default=None),
    x_actor_id: Optional[str] = Header(default=None),
):
    """Staff rejection of a pending quotation, or customer decline of an approved one."""
    role = _role(x_actor_role)
    try:
        outcome = await get_quotation_service().reject(
            quotation_number, role, request.reason,
            actor_id=x_actor_id, notes=request.staff_notes, expected_version=request.version,
        )
    except QuotationError as e:
        raise _http_error(e)
    return outcome.to_dict()


@router.post("/{quotation_number}/reply", response_model=Dict[str, Any])
async def reply_to_quotation(
    quotation_number: str,
    request: ReplyRequest,
    x_actor_role: Optional[str] = Header(default=None),
    x_actor_id: Optional[str] = Header(default=None),
):
    """Append a staff reply."""
    role = _role(x_actor_role)
    try:
        outcome = await get_quotation_service().reply(
            quotation_number, request.message,
            actor_role=role, actor_id=x_actor_id, expected_version=request.version,
        )
    except QuotationError as e:
        raise _http_error(e)
    return outcome.to_dict()


@router.post("/{quotation_number}/convert", response_model=Dict[str, Any])
async def convert_quotation(
    quotation_number: str,
    request: ConvertRequest,
    x_actor_role: Optional[str] = Header(default=None),
    x_actor_id: Optional[str] = Header(default=None),
):
    """Convert an approved quotation into an order (staff)."""
    role = _role(x_actor_role)
    try:
        outcome = await get_quotation_service().convert(
            quotation_number, actor_role=role, actor_id=x_actor_id, expected_version=request.version,
        )
    except QuotationError as e:
        raise _http_error(e)
    return outcome.to_dict()
