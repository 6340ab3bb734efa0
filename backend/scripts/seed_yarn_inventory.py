"""
Seed Yarn Inventory - Creates demo lots, customers and allocated orders.

Run: python scripts/seed_yarn_inventory.py
"""

import asyncio
import random
import uuid
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from db.session import Base
from db.models import CustomerOrder, CustomerSheet, InventoryLot
from core.config import get_settings

settings = get_settings()

# Seed data constants
YARNS = ["Cotton 30/1", "Cotton 20/1", "Polyester 150D", "Viscose 30/1", "Lycra 40D"]
LOCATIONS = ["BU/Main Store", "BU/Factory Floor"]
CUSTOMERS = [("cust-nile", "Nile Textiles"), ("cust-delta", "Delta Apparel")]
FABRICS = ["Single Jersey", "Rib 1x1", "Interlock", "Fleece"]


def _allocation(order_id: str, customer_id: str, client_name: str, quantity: float) -> dict:
    return {
        "orderId": order_id,
        "customerId": customer_id,
        "clientName": client_name,
        "fabricName": random.choice(FABRICS),
        "quantity": quantity,
        "timestamp": (datetime.utcnow() - timedelta(days=random.randint(1, 20))).isoformat(),
    }


async def seed_data():
    """Create demo data for development."""
    engine = create_async_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with SessionLocal() as db:
        # ── Lots ─────────────────────────────────────────────
        lots = []
        for yarn in YARNS:
            for n in range(3):
                lot = InventoryLot(
                    lot_id=uuid.uuid4(),
                    yarn_name=yarn,
                    lot_number=f"{random.randint(10000, 99999)}",
                    quantity=round(random.uniform(20, 900), 2),
                    # one legacy lot per yarn, created before locations existed
                    location=None if n == 0 else random.choice(LOCATIONS),
                    allocations=[],
                )
                lots.append(lot)
        db.add_all(lots)

        # ── Customers + orders, half embedded, half child rows ──
        for i, (customer_id, name) in enumerate(CUSTOMERS):
            sheet = CustomerSheet(customer_id=customer_id, name=name, orders=[])
            db.add(sheet)
            await db.flush()

            embedded_orders = []
            for j, lot in enumerate(random.sample(lots, 4)):
                order_id = f"{customer_id}-ord-{j + 1}"
                quantity = round(min(lot.quantity, random.uniform(15, 120)), 2)
                lot.allocations = [*lot.allocations, _allocation(order_id, customer_id, name, quantity)]
                yarn_allocations = {
                    lot.yarn_name: [
                        {
                            "lotId": str(lot.lot_id),
                            "lotNumber": lot.lot_number,
                            "quantity": quantity,
                            "allocatedAt": datetime.utcnow().isoformat(),
                        }
                    ]
                }
                if (i + j) % 2 == 0:
                    embedded_orders.append(
                        {
                            "id": order_id,
                            "material": lot.yarn_name,
                            "requiredQty": quantity * 3,
                            "remainingQty": quantity * 2,
                            "yarnAllocations": yarn_allocations,
                        }
                    )
                else:
                    db.add(
                        CustomerOrder(
                            order_id=order_id,
                            customer_id=customer_id,
                            material=lot.yarn_name,
                            required_qty=quantity * 3,
                            remaining_qty=quantity * 2,
                            yarn_allocations=yarn_allocations,
                        )
                    )
            sheet.orders = embedded_orders

        await db.commit()
        print(f"Seeded {len(lots)} lots and {len(CUSTOMERS)} customers")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_data())
