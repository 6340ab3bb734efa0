"""
Reconciliation service - one pass from upload to confirmed commit.

  1. load the full ledger and the order details once (the pass matches
     against this snapshot)
  2. compute the plan in memory and park it in the registry
  3. on confirmation, take the plan out of the registry and commit it

Changes other users make to the ledger between 1 and 3 are not seen by
the pass; the confirmation step is the only gate.
"""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from db.models import CustomerOrder, CustomerSheet, InventoryLot
from reconciliation.commit import CommitResult, commit_reconciliation_plan
from reconciliation.ledger import LedgerLot, OrderDetails, OrderKey, attach_order_details, snapshot_ledger
from reconciliation.plan import PlanRegistry, ReconciliationPlan, compute_reconciliation_plan
from reconciliation.policy import policy_from_settings, thresholds_from_settings

logger = structlog.get_logger()


async def load_ledger(db: AsyncSession) -> list[LedgerLot]:
    result = await db.execute(select(InventoryLot))
    return snapshot_ledger(result.scalars().all())


async def load_order_details(db: AsyncSession) -> dict[OrderKey, OrderDetails]:
    """Index every order by (customer_id, order_id), from both order shapes.

    An order embedded in a customer sheet wins over a child record with
    the same id, matching how allocation cleanup locates orders.
    """
    orders: dict[OrderKey, OrderDetails] = {}

    children = await db.execute(select(CustomerOrder))
    for child in children.scalars().all():
        orders[(child.customer_id, child.order_id)] = OrderDetails(
            order_id=child.order_id,
            customer_id=child.customer_id,
            material=child.material,
            required_qty=child.required_qty or 0.0,
            remaining_qty=child.remaining_qty or 0.0,
        )

    sheets = await db.execute(select(CustomerSheet))
    for sheet in sheets.scalars().all():
        for order in sheet.orders or []:
            if isinstance(order, dict) and order.get("id"):
                details = OrderDetails.from_embedded(sheet.customer_id, order)
                orders[(details.customer_id, details.order_id)] = details

    logger.debug("reconcile.orders_loaded", orders=len(orders))
    return orders


async def prepare_reconciliation(
    db: AsyncSession,
    registry: PlanRegistry,
    content: bytes,
    filename: str | None = None,
    settings: Settings | None = None,
) -> ReconciliationPlan:
    """Compute a preview for an uploaded snapshot and hold it for confirmation."""
    settings = settings or get_settings()
    ledger = attach_order_details(await load_ledger(db), await load_order_details(db))
    plan = compute_reconciliation_plan(
        content,
        ledger,
        filename=filename,
        policy=policy_from_settings(settings),
        thresholds=thresholds_from_settings(settings),
    )
    registry.put(plan)
    return plan


async def confirm_reconciliation(
    db: AsyncSession,
    registry: PlanRegistry,
    plan_id: str,
    settings: Settings | None = None,
) -> CommitResult:
    """Commit a previously previewed plan. The plan cannot be committed twice."""
    settings = settings or get_settings()
    plan = registry.take(plan_id)
    return await commit_reconciliation_plan(db, plan, max_batch_size=settings.max_batch_size)
