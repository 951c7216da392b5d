"""
Quotation Service

Read -> lifecycle engine -> version-checked write -> execute intents.
The only place where the engine's intents meet the collaborators.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from app.quotation import engine
from app.quotation.authority import permitted_actions
from app.quotation.collaborators import Notifier, OrderGateway, OrderReceipt, ProductCatalog
from app.quotation.engine import TransitionResult
from app.quotation.errors import (
    ConcurrentModificationError,
    DependencyFailure,
    QuotationError,
    QuotationNotFoundError,
    UnauthorizedTransitionError,
    ValidationError,
)
from app.quotation.intents import NotifyIntent
from app.quotation.models import (
    ActorRole,
    Quotation,
    QuotationItem,
    QuotationStatus,
    utcnow,
)
from app.quotation.repository import QuotationRepository

logger = logging.getLogger(__name__)


@dataclass
class TransitionOutcome:
    """What a persisted transition produced"""
    quotation: Quotation
    action: str
    from_status: QuotationStatus
    to_status: QuotationStatus
    order: Optional[OrderReceipt] = None
    undelivered_notifications: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "quotation": self.quotation.to_dict(),
            "order": (
                {"order_id": self.order.order_id, "order_number": self.order.order_number}
                if self.order else None
            ),
            "undelivered_notifications": list(self.undelivered_notifications),
        }


# === Global accessor ===

_quotation_service: Optional["QuotationService"] = None


def get_quotation_service() -> "QuotationService":
    """Shared QuotationService wired to the default collaborators"""
    global _quotation_service
    if _quotation_service is None:
        from app.catalog.repository import get_catalog_repo
        from app.db.database import AsyncSessionLocal
        from app.notifications.service import get_notification_service
        from app.orders.service import get_order_service

        _quotation_service = QuotationService(
            repository=QuotationRepository(session_factory=AsyncSessionLocal),
            notifier=get_notification_service(),
            orders=get_order_service(),
            catalog=get_catalog_repo(),
        )
    return _quotation_service


def set_quotation_service(service: Optional["QuotationService"]) -> None:
    """Replace the shared instance (test injection)"""
    global _quotation_service
    _quotation_service = service


class QuotationService:
    def __init__(
        self,
        repository: QuotationRepository,
        notifier: Notifier,
        orders: OrderGateway,
        catalog: ProductCatalog,
    ):
        self._repo = repository
        self._notifier = notifier
        self._orders = orders
        self._catalog = catalog

    # === Creation & reads ===

    async def request_quotation(
        self,
        customer_name: str,
        customer_email: str,
        items: List[Dict[str, Any]],
        customer_phone: Optional[str] = None,
        user_id: Optional[str] = None,
        notes: Optional[str] = None,
        prescription_file: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Quotation:
        """Price the requested items from the catalog and store a pending quotation."""
        if not items:
            raise ValidationError("At least one item is required", fields=["items"])

        quotation_items = [await self._price_item(item, check_stock=True, allow_price=False) for item in items]
        quotation = Quotation.create(
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            user_id=user_id,
            items=quotation_items,
            notes=notes,
            prescription_file=prescription_file,
            now=now,
        )
        return await self._repo.add(quotation, actor_id=user_id)

    async def get_quotation(
        self,
        quotation_number: str,
        actor_role: Optional[Union[str, ActorRole]] = None,
        actor_id: Optional[str] = None,
    ) -> Quotation:
        """Load a quotation; when a role is given, customers may only see their own."""
        quotation = await self._repo.get(quotation_number)
        if quotation is None:
            raise QuotationNotFoundError(quotation_number)
        if actor_role is not None:
            self._ensure_owner(quotation, ActorRole.parse(actor_role), actor_id, "view")
        return quotation

    async def list_quotations(
        self,
        status: Optional[Union[str, QuotationStatus]] = None,
        search: Optional[str] = None,
        user_id: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        if isinstance(status, str) and status:
            try:
                status = QuotationStatus(status)
            except ValueError:
                raise ValidationError(f"Invalid status: {status}", fields=["status"])
        if page < 1 or not (1 <= limit <= 100):
            raise ValidationError("page must be >= 1 and limit between 1 and 100", fields=["page", "limit"])

        quotations, total = await self._repo.list_quotations(
            status=status or None, search=search, user_id=user_id, page=page, limit=limit,
        )
        return {
            "quotations": quotations,
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit) if total else 0,
        }

    async def stats(self, now: Optional[datetime] = None) -> Dict[str, int]:
        return await self._repo.count_by_status(now)

    async def events(
        self,
        quotation_number: str,
        actor_role: Optional[Union[str, ActorRole]] = None,
        actor_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        quotation = await self.get_quotation(quotation_number, actor_role, actor_id)
        return await self._repo.list_events(quotation.quotation_number)

    async def available_actions(
        self,
        quotation_number: str,
        actor_role: Union[str, ActorRole],
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[str]:
        """Actions the role may take right now; none once implicitly expired."""
        role = ActorRole.parse(actor_role)
        quotation = await self.get_quotation(quotation_number, role, actor_id)
        if quotation.effective_status(now) == QuotationStatus.EXPIRED:
            return []
        return sorted(a.value for a in permitted_actions(quotation.status, role))

    # === Transitions ===

    async def approve(
        self,
        quotation_number: str,
        actor_role: Union[str, ActorRole],
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> TransitionOutcome:
        quotation = await self._load(quotation_number, expected_version)
        self._ensure_owner(quotation, ActorRole.parse(actor_role), actor_id, "approve")
        result = engine.approve(quotation, actor_role, actor_id=actor_id, notes=notes, now=now)
        return await self._commit(result, quotation.version, actor_id, payload={"notes": notes})

    async def reject(
        self,
        quotation_number: str,
        actor_role: Union[str, ActorRole],
        reason: Optional[str],
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> TransitionOutcome:
        quotation = await self._load(quotation_number, expected_version)
        self._ensure_owner(quotation, ActorRole.parse(actor_role), actor_id, "reject")
        result = engine.reject(quotation, actor_role, reason, actor_id=actor_id, notes=notes, now=now)
        return await self._commit(result, quotation.version, actor_id, payload={"reason": reason})

    async def reply(
        self,
        quotation_number: str,
        message: Optional[str],
        actor_role: Union[str, ActorRole] = ActorRole.STAFF,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> TransitionOutcome:
        quotation = await self._load(quotation_number, expected_version)
        result = engine.reply(quotation, message, actor_role=actor_role, actor_id=actor_id, now=now)
        return await self._commit(result, quotation.version, actor_id, payload={"message": message})

    async def convert(
        self,
        quotation_number: str,
        actor_role: Union[str, ActorRole] = ActorRole.STAFF,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> TransitionOutcome:
        """
        Convert an approved quotation into an order.

        The quotation is written only after the order service succeeds. If
        the write then loses a version race, the new order is cancelled.
        """
        now = now or utcnow()
        quotation = await self._load(quotation_number, expected_version)
        requested = engine.convert(quotation, actor_role, actor_id=actor_id, now=now)

        try:
            receipt = await self._orders.create_order(requested.order_request)
        except QuotationError as e:
            logger.error(f"Conversion of {quotation_number} aborted: {e.message}")
            raise
        except Exception as e:
            logger.error(f"Conversion of {quotation_number} aborted: {e}")
            raise DependencyFailure("order service", str(e)) from e

        completed = engine.complete_conversion(
            quotation, receipt.order_id, order_number=receipt.order_number, actor_id=actor_id, now=now,
        )
        try:
            outcome = await self._commit(
                completed, quotation.version, actor_id,
                payload={"order_id": receipt.order_id, "order_number": receipt.order_number},
            )
        except ConcurrentModificationError:
            logger.warning(f"Conversion of {quotation_number} lost a race; cancelling {receipt.order_number}")
            await self._cancel_orphan(quotation_number, receipt)
            raise

        outcome.order = receipt
        return outcome

    async def update_quotation(
        self,
        quotation_number: str,
        actor_role: Union[str, ActorRole],
        items: Optional[List[Dict[str, Any]]] = None,
        notes: Optional[str] = None,
        staff_notes: Optional[str] = None,
        discount: Optional[float] = None,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> TransitionOutcome:
        """Staff edit of a pending quotation; item prices default to the catalog price."""
        quotation = await self._load(quotation_number, expected_version)
        priced = None
        if items is not None:
            priced = [await self._price_item(item, check_stock=False, allow_price=True) for item in items]
        result = engine.revise(
            quotation, actor_role,
            items=priced, notes=notes, staff_notes=staff_notes, discount=discount, now=now,
        )
        return await self._commit(
            result, quotation.version, actor_id,
            payload={"total_amount": result.quotation.total_amount},
        )

    async def expire_overdue(self, now: Optional[datetime] = None) -> List[str]:
        """Persist implicit expiry for every overdue quotation; returns the expired numbers."""
        now = now or utcnow()
        expired = []
        for quotation in await self._repo.list_overdue(now):
            result = engine.expire(quotation, now=now)
            try:
                await self._commit(result, quotation.version, actor_id=None)
            except ConcurrentModificationError:
                # Changed since listing; the next sweep sees the new state
                continue
            expired.append(quotation.quotation_number)

        if expired:
            logger.info(f"Expired {len(expired)} quotations: {expired}")
        return expired

    # === Helpers ===

    @staticmethod
    def _ensure_owner(quotation: Quotation, role: ActorRole, actor_id: Optional[str], action: str) -> None:
        """Customers may only act on quotations they requested."""
        if role != ActorRole.CUSTOMER:
            return
        if not actor_id or actor_id != quotation.user_id:
            raise UnauthorizedTransitionError(
                action,
                quotation.status.value,
                role.value,
                message=f"Access denied: quotation {quotation.quotation_number} belongs to another customer",
            )

    async def _cancel_orphan(self, quotation_number: str, receipt: OrderReceipt) -> None:
        try:
            await self._orders.cancel_order(receipt.order_id)
        except Exception as e:
            logger.error(
                f"Order {receipt.order_number} ({receipt.order_id}) for {quotation_number} is orphaned; "
                f"cancellation failed: {e}"
            )

    async def _load(self, quotation_number: str, expected_version: Optional[int]) -> Quotation:
        quotation = await self.get_quotation(quotation_number)
        if expected_version is not None and expected_version != quotation.version:
            raise ConcurrentModificationError(quotation.quotation_number, expected_version)
        return quotation

    async def _price_item(self, item: Dict[str, Any], check_stock: bool, allow_price: bool) -> QuotationItem:
        """Copy catalog data onto an item; only staff edits may override the catalog price."""
        product_id = item.get("product_id")
        quantity = item.get("quantity")
        if not product_id:
            raise ValidationError("Product ID is required for each item", fields=["product_id"])

        product = await self._catalog.get_product(product_id)
        if product is None:
            raise ValidationError(f"Product with ID {product_id} not found", fields=["product_id"])
        if check_stock and isinstance(quantity, int) and product.inventory < quantity:
            raise ValidationError(f"Insufficient inventory for product {product.name}", fields=["quantity"])

        unit_price = item.get("unit_price") if allow_price else None
        return QuotationItem(
            product_id=product.product_id,
            product_name=product.name,
            product_image=product.image,
            quantity=quantity,
            unit_price=product.price if unit_price is None else unit_price,
            specifications=dict(item.get("specifications") or {}),
        )

    async def _commit(
        self,
        result: TransitionResult,
        expected_version: int,
        actor_id: Optional[str],
        payload: Optional[Dict[str, Any]] = None,
    ) -> TransitionOutcome:
        saved = await self._repo.save(
            result.quotation,
            expected_version=expected_version,
            event={
                "action": result.action,
                "actor_role": result.actor_role.value,
                "actor_id": actor_id,
                "from_status": result.from_status.value,
                "to_status": result.to_status.value,
                "payload": {k: v for k, v in (payload or {}).items() if v is not None},
            },
        )
        logger.info(
            f"Quotation {saved.quotation_number} {result.action} by {result.actor_role.value}: "
            f"{result.from_status.value} -> {result.to_status.value} (v{saved.version})"
        )

        undelivered = await self._dispatch(result.notifications)
        return TransitionOutcome(
            quotation=saved,
            action=result.action,
            from_status=result.from_status,
            to_status=result.to_status,
            undelivered_notifications=undelivered,
        )

    async def _dispatch(self, intents: List[NotifyIntent]) -> List[str]:
        """Deliver notifications after the write; failures are reported, not rolled back."""
        undelivered = []
        for intent in intents:
            try:
                await self._notifier.notify(intent)
            except Exception as e:
                logger.warning(f"Notification for {intent.quotation_number} not delivered: {e}")
                undelivered.append(intent.kind.value)
        return undelivered
