import logging
from datetime import timedelta

import pytest

from app.orders.service import OrderService
from app.quotation.collaborators import Notifier, OrderGateway
from app.quotation.errors import (
    ConcurrentModificationError,
    DependencyFailure,
    InvalidTransitionError,
    QuotationExpiredError,
    QuotationNotFoundError,
    UnauthorizedTransitionError,
    ValidationError,
)
from app.quotation.intents import NotificationKind
from app.quotation.models import ActorRole, QuotationStatus, utcnow
from app.quotation.service import QuotationService

from tests.conftest import FailingOrderGateway, RecordingNotifier


class RacingOrderGateway(OrderGateway):
    """Creates the order, then lets another writer touch the quotation before returning."""

    def __init__(self, inner: OrderService, interfere, cancel_fails: bool = False):
        self.inner = inner
        self.interfere = interfere
        self.cancel_fails = cancel_fails
        self.cancelled = []

    async def create_order(self, request):
        receipt = await self.inner.create_order(request)
        await self.interfere(request.quotation_number)
        return receipt

    async def cancel_order(self, order_id):
        self.cancelled.append(order_id)
        if self.cancel_fails:
            raise DependencyFailure("order service", "connection reset")
        await self.inner.cancel_order(order_id)


# === Requests & reads ===

async def test_request_prices_items_from_catalog(pending_quotation, repo):
    assert pending_quotation.status == QuotationStatus.PENDING
    assert pending_quotation.version == 1
    assert [i.product_name for i in pending_quotation.items] == ["Classic Aviator Frame", "Blue Cut Lens"]
    assert pending_quotation.subtotal == 250.0
    assert pending_quotation.tax == 25.0
    assert pending_quotation.total_amount == 275.0
    assert pending_quotation.items[1].specifications == {"lens_type": "single vision"}

    stored = await repo.get(pending_quotation.quotation_number)
    assert stored.to_dict() == pending_quotation.to_dict()


async def test_request_rejects_unknown_product(service):
    with pytest.raises(ValidationError) as exc:
        await service.request_quotation(
            customer_name="Ravi Kumar",
            customer_email="ravi@example.com",
            items=[{"product_id": "NOPE", "quantity": 1}],
        )
    assert exc.value.fields == ["product_id"]


async def test_request_checks_stock(service):
    with pytest.raises(ValidationError) as exc:
        await service.request_quotation(
            customer_name="Ravi Kumar",
            customer_email="ravi@example.com",
            items=[{"product_id": "CL-1", "quantity": 2}],
        )
    assert "Insufficient inventory" in exc.value.message


async def test_request_requires_items(service):
    with pytest.raises(ValidationError):
        await service.request_quotation(customer_name="Ravi Kumar", customer_email="ravi@example.com", items=[])


async def test_get_quotation_normalizes_number(service, pending_quotation):
    number = pending_quotation.quotation_number
    found = await service.get_quotation(f"  {number.lower()} ")
    assert found.quotation_number == number

    with pytest.raises(QuotationNotFoundError):
        await service.get_quotation("QUO-19990101-0000")


async def test_list_search_and_pagination(service):
    base = utcnow() - timedelta(hours=3)
    for offset, (name, email, user) in enumerate([
        ("Asha Verma", "asha@example.com", "cust-1"),
        ("Ravi Kumar", "ravi@example.com", "cust-2"),
        ("Meera Nair", "meera@optics.in", "cust-1"),
    ]):
        await service.request_quotation(
            customer_name=name,
            customer_email=email,
            user_id=user,
            items=[{"product_id": "FRM-1", "quantity": 1}],
            now=base + timedelta(minutes=offset),
        )

    page = await service.list_quotations(page=1, limit=2)
    assert page["total"] == 3
    assert page["pages"] == 2
    assert [q.customer_name for q in page["quotations"]] == ["Meera Nair", "Ravi Kumar"]

    second = await service.list_quotations(page=2, limit=2)
    assert [q.customer_name for q in second["quotations"]] == ["Asha Verma"]

    mine = await service.list_quotations(user_id="cust-1")
    assert {q.customer_name for q in mine["quotations"]} == {"Asha Verma", "Meera Nair"}

    found = await service.list_quotations(search="OPTICS")
    assert [q.customer_name for q in found["quotations"]] == ["Meera Nair"]

    assert (await service.list_quotations(status="approved"))["total"] == 0


async def test_list_validates_arguments(service):
    with pytest.raises(ValidationError):
        await service.list_quotations(status="archived")
    with pytest.raises(ValidationError):
        await service.list_quotations(limit=500)
    with pytest.raises(ValidationError):
        await service.list_quotations(page=0)


# === Transitions ===

async def test_full_lifecycle_to_order(service, pending_quotation, notifier, orders, catalog):
    number = pending_quotation.quotation_number

    await service.reply(number, "Anti-glare is included", actor_id="staff-7")
    staff = await service.approve(number, ActorRole.STAFF, actor_id="staff-7")
    assert staff.to_status == QuotationStatus.APPROVED
    confirmed = await service.approve(number, "customer", actor_id="cust-1")
    assert confirmed.quotation.customer_approved_at is not None

    outcome = await service.convert(number, actor_id="staff-7")

    assert outcome.quotation.status == QuotationStatus.CONVERTED
    assert outcome.quotation.converted_to_order == outcome.order.order_id
    assert outcome.quotation.version == 5

    order = await orders.get_order(outcome.order.order_id)
    assert order["total_amount"] == 275.0
    assert order["status"] == "confirmed"
    assert order["quotation_number"] == number
    assert (await catalog.get_product("FRM-1")).inventory == 9
    assert (await catalog.get_product("LNS-1")).inventory == 9

    assert [n.kind for n in notifier.sent] == [
        NotificationKind.REPLIED,
        NotificationKind.APPROVED,
        NotificationKind.CUSTOMER_APPROVED,
        NotificationKind.CONVERTED,
    ]

    events = await service.events(number)
    assert [e["action"] for e in events] == ["create", "reply", "approve", "approve", "convert"]
    assert [e["version"] for e in events] == [1, 2, 3, 4, 5]
    assert events[-1]["payload"]["order_id"] == outcome.order.order_id

    with pytest.raises(InvalidTransitionError):
        await service.reply(number, "One more thing")


async def test_order_service_failure_leaves_quotation_approved(repo, notifier, catalog, pending_quotation):
    gateway = FailingOrderGateway()
    service = QuotationService(repository=repo, notifier=notifier, orders=gateway, catalog=catalog)
    number = pending_quotation.quotation_number
    await service.approve(number, ActorRole.STAFF)

    with pytest.raises(DependencyFailure):
        await service.convert(number)

    stored = await repo.get(number)
    assert stored.status == QuotationStatus.APPROVED
    assert stored.version == 2
    assert stored.converted_to_order is None
    assert len(gateway.requests) == 1


async def test_lost_race_cancels_created_order(repo, notifier, catalog, session_factory, pending_quotation):
    number = pending_quotation.quotation_number
    plain = QuotationService(
        repository=repo, notifier=notifier, orders=FailingOrderGateway(), catalog=catalog,
    )
    await plain.approve(number, ActorRole.STAFF)

    async def interfere(quotation_number):
        await plain.reply(quotation_number, "Price confirmed with supplier")

    gateway = RacingOrderGateway(OrderService(session_factory=session_factory, catalog=catalog), interfere)
    service = QuotationService(repository=repo, notifier=notifier, orders=gateway, catalog=catalog)

    with pytest.raises(ConcurrentModificationError):
        await service.convert(number)

    assert len(gateway.cancelled) == 1
    order = await gateway.inner.get_order(gateway.cancelled[0])
    assert order["status"] == "cancelled"
    assert (await catalog.get_product("FRM-1")).inventory == 10

    stored = await repo.get(number)
    assert stored.status == QuotationStatus.APPROVED
    assert stored.version == 3


async def test_second_writer_at_same_version_fails(repo, pending_quotation):
    from app.quotation import engine

    number = pending_quotation.quotation_number
    first = await repo.get(number)
    second = await repo.get(number)

    await repo.save(engine.approve(first, ActorRole.STAFF).quotation, expected_version=1)
    with pytest.raises(ConcurrentModificationError):
        await repo.save(engine.reject(second, ActorRole.STAFF, "duplicate").quotation, expected_version=1)

    stored = await repo.get(number)
    assert stored.status == QuotationStatus.APPROVED
    assert stored.version == 2


async def test_stale_expected_version_is_refused(service, pending_quotation):
    with pytest.raises(ConcurrentModificationError):
        await service.approve(pending_quotation.quotation_number, ActorRole.STAFF, expected_version=7)
    outcome = await service.approve(pending_quotation.quotation_number, ActorRole.STAFF, expected_version=1)
    assert outcome.quotation.version == 2


async def test_save_unknown_quotation(repo, make_quotation):
    with pytest.raises(QuotationNotFoundError):
        await repo.save(make_quotation(number="QUO-19990101-0001"), expected_version=1)


async def test_notification_failure_does_not_roll_back(repo, catalog, orders, pending_quotation):
    service = QuotationService(
        repository=repo, notifier=RecordingNotifier(fail=True), orders=orders, catalog=catalog,
    )
    outcome = await service.approve(pending_quotation.quotation_number, ActorRole.STAFF)

    assert outcome.undelivered_notifications == ["quotation_approved"]
    assert (await repo.get(pending_quotation.quotation_number)).status == QuotationStatus.APPROVED


async def test_refused_transition_is_not_persisted(service, pending_quotation, repo, notifier):
    number = pending_quotation.quotation_number
    with pytest.raises(UnauthorizedTransitionError):
        await service.approve(number, ActorRole.CUSTOMER)
    with pytest.raises(ValidationError):
        await service.reject(number, ActorRole.STAFF, "   ")

    stored = await repo.get(number)
    assert stored.status == QuotationStatus.PENDING
    assert stored.version == 1
    assert notifier.sent == []


# === Expiry ===

async def test_expired_quotation(service, repo, make_quotation):
    quotation = await repo.add(make_quotation(expired=True, number="QUO-20240101-0001"))
    number = quotation.quotation_number

    with pytest.raises(QuotationExpiredError):
        await service.approve(number, ActorRole.STAFF)
    assert await service.available_actions(number, ActorRole.STAFF) == []
    assert (await repo.get(number)).status == QuotationStatus.PENDING


async def test_available_actions(service, pending_quotation):
    number = pending_quotation.quotation_number
    assert await service.available_actions(number, "staff") == ["approve", "reject", "reply"]
    assert await service.available_actions(number, "customer", actor_id="cust-1") == []


async def test_stats_and_expire_overdue(service, repo, make_quotation, pending_quotation, notifier):
    overdue = await repo.add(make_quotation(expired=True, number="QUO-20240101-0002"))

    stats = await service.stats()
    assert stats["total"] == 2
    assert stats["pending"] == 2
    assert stats["expired"] == 1

    expired = await service.expire_overdue()
    assert expired == [overdue.quotation_number]
    assert (await repo.get(overdue.quotation_number)).status == QuotationStatus.EXPIRED
    assert (await repo.get(pending_quotation.quotation_number)).status == QuotationStatus.PENDING
    assert notifier.sent[-1].kind == NotificationKind.EXPIRED

    stats = await service.stats()
    assert stats["pending"] == 1
    assert stats["expired"] == 1
    assert await service.expire_overdue() == []


# === Edits ===

async def test_staff_update_reprices_and_discounts(service, pending_quotation):
    number = pending_quotation.quotation_number

    outcome = await service.update_quotation(number, ActorRole.STAFF, discount=25, staff_notes="Loyalty discount")
    assert outcome.quotation.total_amount == 250.0
    assert outcome.quotation.staff_notes == "Loyalty discount"

    outcome = await service.update_quotation(
        number, ActorRole.STAFF, items=[{"product_id": "CL-1", "quantity": 4}],
    )
    # stock is only checked on request, not on staff edits
    assert outcome.quotation.subtotal == 180.0
    assert outcome.quotation.tax == 18.0
    assert outcome.quotation.total_amount == 173.0
    assert outcome.quotation.version == 3


async def test_update_refused_for_customer_and_oversized_discount(service, pending_quotation):
    number = pending_quotation.quotation_number
    with pytest.raises(UnauthorizedTransitionError):
        await service.update_quotation(number, ActorRole.CUSTOMER, notes="Please hurry")
    with pytest.raises(ValidationError):
        await service.update_quotation(number, ActorRole.STAFF, discount=1000)


async def test_customer_prices_are_ignored_on_request(service):
    quotation = await service.request_quotation(
        customer_name="Ravi Kumar",
        customer_email="ravi@example.com",
        items=[{"product_id": "FRM-1", "quantity": 1, "unit_price": 0}],
    )
    assert quotation.items[0].unit_price == 150.0
    assert quotation.total_amount == 165.0


async def test_staff_update_may_set_item_price(service, pending_quotation):
    outcome = await service.update_quotation(
        pending_quotation.quotation_number,
        ActorRole.STAFF,
        items=[{"product_id": "FRM-1", "quantity": 1, "unit_price": 120.0}],
    )
    assert outcome.quotation.items[0].unit_price == 120.0
    assert outcome.quotation.total_amount == 132.0


# === Ownership ===

async def test_customer_can_only_act_on_own_quotation(service, repo, pending_quotation):
    number = pending_quotation.quotation_number
    await service.approve(number, ActorRole.STAFF)

    with pytest.raises(UnauthorizedTransitionError) as exc:
        await service.reject(number, ActorRole.CUSTOMER, "not mine", actor_id="cust-2")
    assert "another customer" in exc.value.message
    with pytest.raises(UnauthorizedTransitionError):
        await service.approve(number, ActorRole.CUSTOMER, actor_id="cust-2")
    with pytest.raises(UnauthorizedTransitionError):
        await service.approve(number, ActorRole.CUSTOMER)

    stored = await repo.get(number)
    assert stored.status == QuotationStatus.APPROVED
    assert stored.customer_approved_at is None
    assert stored.version == 2

    outcome = await service.reject(number, ActorRole.CUSTOMER, "Found it cheaper", actor_id="cust-1")
    assert outcome.to_status == QuotationStatus.REJECTED


async def test_customer_reads_are_scoped(service, pending_quotation):
    number = pending_quotation.quotation_number

    assert (await service.get_quotation(number, ActorRole.CUSTOMER, "cust-1")).quotation_number == number
    assert (await service.get_quotation(number, ActorRole.STAFF)).quotation_number == number
    with pytest.raises(UnauthorizedTransitionError):
        await service.get_quotation(number, ActorRole.CUSTOMER, "cust-2")
    with pytest.raises(UnauthorizedTransitionError):
        await service.events(number, ActorRole.CUSTOMER, "cust-2")
    with pytest.raises(UnauthorizedTransitionError):
        await service.available_actions(number, ActorRole.CUSTOMER, actor_id="cust-2")


# === Conversion failures ===

async def test_failed_cancel_still_reports_lost_race(
    repo, notifier, catalog, session_factory, pending_quotation, caplog,
):
    number = pending_quotation.quotation_number
    plain = QuotationService(
        repository=repo, notifier=notifier, orders=FailingOrderGateway(), catalog=catalog,
    )
    await plain.approve(number, ActorRole.STAFF)

    async def interfere(quotation_number):
        await plain.reply(quotation_number, "Price confirmed with supplier")

    gateway = RacingOrderGateway(
        OrderService(session_factory=session_factory, catalog=catalog), interfere, cancel_fails=True,
    )
    service = QuotationService(repository=repo, notifier=notifier, orders=gateway, catalog=catalog)

    caplog.set_level(logging.ERROR, logger="app.quotation.service")
    with pytest.raises(ConcurrentModificationError):
        await service.convert(number)

    order = await gateway.inner.get_order(gateway.cancelled[0])
    assert order["status"] == "confirmed"
    assert any("orphaned" in r.getMessage() and r.levelno == logging.ERROR for r in caplog.records)


async def test_conversion_refused_when_stock_ran_out(service, repo, catalog, pending_quotation):
    number = pending_quotation.quotation_number
    await service.approve(number, ActorRole.STAFF)
    await catalog.add_product("LNS-1", "Blue Cut Lens", price=100.0, inventory=0)

    with pytest.raises(ValidationError) as exc:
        await service.convert(number)
    assert "Insufficient inventory" in exc.value.message

    stored = await repo.get(number)
    assert stored.status == QuotationStatus.APPROVED
    assert stored.version == 2
    # the frame taken before the lens check is put back
    assert (await catalog.get_product("FRM-1")).inventory == 10
    assert (await catalog.get_product("LNS-1")).inventory == 0


# === Collaborator errors ===

class BrokenNotifier(Notifier):
    async def notify(self, intent):
        raise RuntimeError("template missing")


async def test_unexpected_notifier_error_is_reported(repo, catalog, orders, pending_quotation):
    service = QuotationService(repository=repo, notifier=BrokenNotifier(), orders=orders, catalog=catalog)
    outcome = await service.approve(pending_quotation.quotation_number, ActorRole.STAFF)

    assert outcome.undelivered_notifications == ["quotation_approved"]
    assert (await repo.get(pending_quotation.quotation_number)).status == QuotationStatus.APPROVED


async def test_number_allocation_gives_up_with_dependency_failure(repo, make_quotation, monkeypatch):
    monkeypatch.setattr(
        "app.quotation.repository.generate_quotation_number", lambda *args: "QUO-20240101-0005",
    )
    await repo.add(make_quotation(number="QUO-20240101-0005"))

    with pytest.raises(DependencyFailure):
        await repo.add(make_quotation(number="QUO-20240101-0005"))
