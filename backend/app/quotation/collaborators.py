"""
Quotation Collaborator Interfaces

External services the quotation workflow depends on. Concrete
implementations live in app.notifications, app.orders, app.catalog and
app.uploads.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from app.quotation.intents import CreateOrder, NotifyIntent


@dataclass
class ProductSnapshot:
    """Catalog data copied onto a quotation item at creation time"""
    product_id: str
    name: str
    image: str
    price: float
    inventory: int


@dataclass
class OrderReceipt:
    """Result of a successful order creation"""
    order_id: str
    order_number: str


class Notifier(ABC):
    @abstractmethod
    async def notify(self, intent: NotifyIntent) -> None:
        """Deliver a notification intent."""
        pass


class OrderGateway(ABC):
    @abstractmethod
    async def create_order(self, request: CreateOrder) -> OrderReceipt:
        """
        Create an order from a quotation snapshot.

        Raises ValidationError when stock ran out since the quotation was
        requested, DependencyFailure when the order cannot be created.
        """
        pass

    @abstractmethod
    async def cancel_order(self, order_id: str) -> None:
        """Undo an order whose quotation could not be marked converted."""
        pass


class ProductCatalog(ABC):
    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[ProductSnapshot]:
        pass


class PrescriptionStorage(ABC):
    @abstractmethod
    async def store(self, filename: str, content: bytes, content_type: str) -> str:
        """Validate and store a prescription file; returns its URL."""
        pass
