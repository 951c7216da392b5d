"""
Order Service

Creates confirmed orders from quotation snapshots and takes the ordered
quantities out of catalog inventory in the same transaction.
"""

import logging
import random
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from app.catalog.repository import CatalogRepository
from app.db.models import Order
from app.quotation.collaborators import OrderGateway, OrderReceipt
from app.quotation.errors import DependencyFailure, ValidationError
from app.quotation.intents import CreateOrder
from app.quotation.models import utcnow

logger = logging.getLogger(__name__)


def generate_order_number() -> str:
    """Order number: ORD-YYYYMMDD-NNNN"""
    date_str = utcnow().strftime("%Y%m%d")
    return f"ORD-{date_str}-{random.randint(1000, 9999)}"


# === Global accessor ===

_order_service: Optional["OrderService"] = None


def get_order_service() -> "OrderService":
    global _order_service
    if _order_service is None:
        from app.db.database import AsyncSessionLocal
        _order_service = OrderService(session_factory=AsyncSessionLocal)
    return _order_service


def set_order_service(service: Optional["OrderService"]) -> None:
    global _order_service
    _order_service = service


class OrderService(OrderGateway):
    """SQLAlchemy-backed order creation"""

    def __init__(self, session_factory=None, catalog: Optional[CatalogRepository] = None):
        self._session_factory = session_factory
        self._catalog = catalog or CatalogRepository(session_factory=session_factory)

    def _session(self):
        return self._session_factory()

    async def create_order(self, request: CreateOrder) -> OrderReceipt:
        order_id = f"ORD-{uuid4().hex[:12].upper()}"
        order_number = generate_order_number()

        try:
            async with self._session() as session:
                session.add(Order(
                    id=order_id,
                    order_number=order_number,
                    quotation_id=request.quotation_number,
                    user_id=request.user_id,
                    customer_name=request.customer_name,
                    customer_email=request.customer_email,
                    customer_phone=request.customer_phone,
                    items=[dict(i) for i in request.items],
                    subtotal=request.subtotal,
                    tax=request.tax,
                    shipping=0.0,  # free shipping on quotation orders
                    discount=request.discount,
                    total_amount=request.total_amount,
                    status="confirmed",
                    payment_method="quotation",
                    payment_status="pending",
                    notes=request.notes,
                    prescription_file=request.prescription_file,
                    staff_id=request.staff_id,
                    created_at=utcnow(),
                ))
                for item in request.items:
                    taken = await self._catalog.adjust_inventory(session, item["product_id"], -int(item["quantity"]))
                    if not taken:
                        await session.rollback()
                        logger.warning(
                            f"Order for {request.quotation_number} refused: "
                            f"not enough stock of {item['product_id']}"
                        )
                        raise ValidationError(
                            f"Insufficient inventory for product {item.get('product_name') or item['product_id']}",
                            fields=["quantity"],
                        )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Order creation failed for {request.quotation_number}: {e}")
            raise DependencyFailure("order service", str(e)) from e

        logger.info(f"Created order {order_number} from quotation {request.quotation_number}")
        return OrderReceipt(order_id=order_id, order_number=order_number)

    async def cancel_order(self, order_id: str) -> None:
        """Mark an order cancelled and put its quantities back into inventory."""
        try:
            async with self._session() as session:
                order = await session.get(Order, order_id)
                if order is None or order.status == "cancelled":
                    return
                order.status = "cancelled"
                for item in order.items or []:
                    await self._catalog.adjust_inventory(session, item["product_id"], int(item["quantity"]))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Order cancellation failed for {order_id}: {e}")
            raise DependencyFailure("order service", str(e)) from e

        logger.info(f"Cancelled order {order_id}")

    async def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        async with self._session() as session:
            row = await session.get(Order, order_id)
            if not row:
                return None
            return {
                "id": row.id,
                "order_number": row.order_number,
                "quotation_number": row.quotation_id,
                "user_id": row.user_id,
                "customer_name": row.customer_name,
                "customer_email": row.customer_email,
                "items": row.items,
                "subtotal": row.subtotal,
                "tax": row.tax,
                "shipping": row.shipping,
                "discount": row.discount,
                "total_amount": row.total_amount,
                "status": row.status,
                "payment_method": row.payment_method,
                "payment_status": row.payment_status,
                "created_at": row.created_at.isoformat() if row.created_at else None,
            }
