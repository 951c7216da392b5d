import os

# In-memory database for anything that imports app.db.database directly
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import timedelta
from typing import List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.catalog.repository import CatalogRepository
from app.db.database import create_tables
from app.orders.service import OrderService
from app.quotation.collaborators import Notifier, OrderGateway, OrderReceipt
from app.quotation.errors import DependencyFailure
from app.quotation.intents import CreateOrder, NotifyIntent
from app.quotation.models import Quotation, QuotationItem, QuotationStatus, utcnow
from app.quotation.repository import QuotationRepository
from app.quotation.service import QuotationService


class RecordingNotifier(Notifier):
    """Keeps delivered intents in memory; fails every delivery when fail=True."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[NotifyIntent] = []

    async def notify(self, intent: NotifyIntent) -> None:
        if self.fail:
            raise DependencyFailure("notification service", "smtp unreachable")
        self.sent.append(intent)


class FailingOrderGateway(OrderGateway):
    def __init__(self):
        self.requests: List[CreateOrder] = []
        self.cancelled: List[str] = []

    async def create_order(self, request: CreateOrder) -> OrderReceipt:
        self.requests.append(request)
        raise DependencyFailure("order service", "connection refused")

    async def cancel_order(self, order_id: str) -> None:
        self.cancelled.append(order_id)


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def catalog(session_factory):
    repo = CatalogRepository(session_factory=session_factory)
    await repo.add_product("FRM-1", "Classic Aviator Frame", price=150.0, inventory=10, image="/img/aviator.jpg")
    await repo.add_product("LNS-1", "Blue Cut Lens", price=100.0, inventory=10, image="/img/lens.jpg")
    await repo.add_product("CL-1", "Monthly Contacts", price=45.0, inventory=1)
    return repo


@pytest.fixture
def repo(session_factory):
    return QuotationRepository(session_factory=session_factory)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def orders(session_factory, catalog):
    return OrderService(session_factory=session_factory, catalog=catalog)


@pytest.fixture
def service(repo, notifier, orders, catalog):
    return QuotationService(repository=repo, notifier=notifier, orders=orders, catalog=catalog)


@pytest.fixture
def make_quotation():
    """Factory for in-memory quotations matching the QUO-20241201-1234 sample."""

    def _make(
        status: QuotationStatus = QuotationStatus.PENDING,
        expired: bool = False,
        discount: float = 0.0,
        number: str = "QUO-20241201-1234",
        user_id: Optional[str] = "cust-1",
    ) -> Quotation:
        now = utcnow()
        created = now - timedelta(days=40 if expired else 1)
        return Quotation(
            quotation_number=number,
            customer_name="Ravi Kumar",
            customer_email="ravi@example.com",
            user_id=user_id,
            items=[
                QuotationItem(product_id="FRM-1", product_name="Classic Aviator Frame", quantity=1, unit_price=150.0),
                QuotationItem(product_id="LNS-1", product_name="Blue Cut Lens", quantity=1, unit_price=100.0),
            ],
            status=status,
            discount=discount,
            created_at=created,
            valid_until=created + timedelta(days=30),
        )

    return _make


@pytest.fixture
async def pending_quotation(service, catalog):
    return await service.request_quotation(
        customer_name="Ravi Kumar",
        customer_email="ravi@example.com",
        user_id="cust-1",
        items=[
            {"product_id": "FRM-1", "quantity": 1},
            {"product_id": "LNS-1", "quantity": 1, "specifications": {"lens_type": "single vision"}},
        ],
    )
