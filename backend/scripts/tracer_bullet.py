#!/usr/bin/env python3
"""
Tracer Bullet: walk one quotation through its whole lifecycle

1. Seed the catalog with sample eyewear
2. Customer requests a quotation
3. Staff replies and approves
4. Customer confirms
5. Staff converts it into an order

Usage:
    cd backend
    DATABASE_URL=sqlite:///./tracer.db python -m scripts.tracer_bullet
"""

import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.catalog.repository import get_catalog_repo
from app.db.database import create_tables
from app.notifications.service import get_notification_service
from app.quotation.models import ActorRole
from app.quotation.service import get_quotation_service


# === Seed Data ===

SEED_PRODUCTS = [
    {"product_id": "FRM-AVIATOR-01", "name": "Classic Aviator Frame", "price": 150.0, "inventory": 25,
     "image": "/images/products/aviator.jpg"},
    {"product_id": "LNS-BLUECUT-01", "name": "Blue Cut Single Vision Lens", "price": 100.0, "inventory": 80,
     "image": "/images/products/bluecut.jpg"},
    {"product_id": "CL-MONTHLY-01", "name": "Monthly Contact Lenses (6 pack)", "price": 45.0, "inventory": 40,
     "image": "/images/products/contacts.jpg"},
]


async def seed_catalog():
    catalog = get_catalog_repo()
    for product in SEED_PRODUCTS:
        await catalog.add_product(**product)
    print(f"Seeded {len(SEED_PRODUCTS)} products")


async def main():
    await create_tables()
    await seed_catalog()

    service = get_quotation_service()

    quotation = await service.request_quotation(
        customer_name="Asha Verma",
        customer_email="asha@example.com",
        customer_phone="+91 98450 12345",
        user_id="cust-1001",
        items=[
            {"product_id": "FRM-AVIATOR-01", "quantity": 1, "specifications": {"color": "gold"}},
            {"product_id": "LNS-BLUECUT-01", "quantity": 1, "specifications": {"lens_type": "single vision"}},
        ],
        notes="Need anti-glare coating",
    )
    number = quotation.quotation_number
    print(f"\nRequested {number}: subtotal={quotation.subtotal} tax={quotation.tax} "
          f"total={quotation.total_amount} (valid until {quotation.valid_until:%Y-%m-%d})")

    await service.reply(number, "Anti-glare is included in the blue cut lens.", actor_id="staff-7")
    outcome = await service.approve(number, ActorRole.STAFF, actor_id="staff-7", notes="Standard pricing")
    print(f"Staff approved: {outcome.from_status.value} -> {outcome.to_status.value}")

    outcome = await service.approve(number, ActorRole.CUSTOMER, actor_id="cust-1001")
    print(f"Customer confirmed at {outcome.quotation.customer_approved_at:%H:%M:%S}")

    outcome = await service.convert(number, ActorRole.STAFF, actor_id="staff-7")
    print(f"Converted to order {outcome.order.order_number} (status={outcome.quotation.status.value})")

    print("\nEvents:")
    for event in await service.events(number):
        print(f"  v{event['version']} {event['action']:<8} {event['actor_role']:<9} "
              f"{event['from_status']} -> {event['to_status']}")

    print("\nNotifications:")
    for notification in await get_notification_service().list_notifications():
        print(f"  [{notification['target']}] {notification['title']}: {notification['message']}")


if __name__ == "__main__":
    asyncio.run(main())
