"""
Allocation Ledger Maintenance - remove one allocation from a lot.

An allocation is recorded twice: in the lot's ``allocations`` list and in
the owning order's ``yarn_allocations`` map. Removal is two separate
writes, lot first, then order:

  1. drop the allocation from the lot by index and commit
  2. find the order it points at and drop every map entry whose
     ``lotId`` is this lot, then commit

Orders exist in two shapes: embedded in the customer sheet's ``orders``
array (older data) or as ``customer_orders`` child rows. Step 2 checks
the embedded array first and falls back to the child record.

If step 2 fails after step 1 committed, the copies diverge;
``OrderCleanupError`` is raised and nothing is retried or compensated.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import CustomerOrder, CustomerSheet, InventoryLot
from reconciliation.ledger import Allocation

logger = structlog.get_logger()


class AllocationNotFoundError(LookupError):
    """The lot does not exist or has no allocation at the given index."""


class OrderCleanupError(RuntimeError):
    """The lot-side removal was committed but the order-side cleanup failed."""

    def __init__(self, lot_id: uuid.UUID, customer_id: str, order_id: str, cause: BaseException):
        self.lot_id = lot_id
        self.customer_id = customer_id
        self.order_id = order_id
        self.cause = cause
        super().__init__(
            f"Allocation removed from lot {lot_id} but order {order_id} could not be updated: {cause}. "
            "The order still references this lot and must be corrected manually."
        )


class OrderCleanup(str, Enum):
    UPDATED = "updated"
    NO_MATCHING_ENTRY = "no_matching_entry"
    ORDER_NOT_FOUND = "order_not_found"


# ── Order shapes ───────────────────────────────────────────────────────────


@dataclass
class EmbeddedOrder:
    """Order stored inline in ``CustomerSheet.orders``."""

    sheet: CustomerSheet
    index: int

    @property
    def yarn_allocations(self) -> dict[str, Any]:
        return self.sheet.orders[self.index].get("yarnAllocations") or {}

    def replace_yarn_allocations(self, yarn_allocations: dict[str, Any]) -> None:
        orders = list(self.sheet.orders)
        orders[self.index] = {**orders[self.index], "yarnAllocations": yarn_allocations}
        self.sheet.orders = orders


@dataclass
class ChildOrder:
    """Order stored as its own ``CustomerOrder`` row."""

    order: CustomerOrder

    @property
    def yarn_allocations(self) -> dict[str, Any]:
        return self.order.yarn_allocations or {}

    def replace_yarn_allocations(self, yarn_allocations: dict[str, Any]) -> None:
        self.order.yarn_allocations = yarn_allocations


OrderRecord = Union[EmbeddedOrder, ChildOrder]


@dataclass(frozen=True)
class AllocationRemoval:
    lot_id: uuid.UUID
    allocation: Allocation
    remaining_allocations: int
    order_cleanup: OrderCleanup


async def locate_order(db: AsyncSession, customer_id: str, order_id: str) -> OrderRecord | None:
    sheet = await db.get(CustomerSheet, customer_id)
    if sheet is not None:
        for index, order in enumerate(sheet.orders or []):
            if isinstance(order, dict) and order.get("id") == order_id:
                return EmbeddedOrder(sheet, index)

    result = await db.execute(
        select(CustomerOrder).where(
            CustomerOrder.order_id == order_id,
            CustomerOrder.customer_id == customer_id,
        )
    )
    child = result.scalar_one_or_none()
    if child is not None:
        return ChildOrder(child)
    return None


def strip_lot_allocations(yarn_allocations: dict[str, Any], lot_id: uuid.UUID) -> dict[str, Any] | None:
    """Drop entries referencing ``lot_id``; ``None`` when nothing matched."""
    target = str(lot_id)
    cleaned: dict[str, Any] = {}
    changed = False
    for yarn_key, entries in yarn_allocations.items():
        entries = entries or []
        kept = [e for e in entries if not (isinstance(e, dict) and str(e.get("lotId")) == target)]
        if len(kept) != len(entries):
            changed = True
        cleaned[yarn_key] = kept
    return cleaned if changed else None


async def _remove_from_order(db: AsyncSession, lot_id: uuid.UUID, allocation: Allocation) -> OrderCleanup:
    record = await locate_order(db, allocation.customer_id, allocation.order_id)
    if record is None:
        return OrderCleanup.ORDER_NOT_FOUND

    cleaned = strip_lot_allocations(record.yarn_allocations, lot_id)
    if cleaned is None:
        return OrderCleanup.NO_MATCHING_ENTRY

    record.replace_yarn_allocations(cleaned)
    await db.commit()
    return OrderCleanup.UPDATED


async def delete_allocation(db: AsyncSession, lot_id: uuid.UUID, allocation_index: int) -> AllocationRemoval:
    """Remove one allocation from a lot and clean up the owning order."""
    lot = await db.get(InventoryLot, lot_id)
    if lot is None:
        raise AllocationNotFoundError(f"Lot {lot_id} not found")

    allocations = list(lot.allocations or [])
    if allocation_index < 0 or allocation_index >= len(allocations):
        raise AllocationNotFoundError(f"Lot {lot_id} has no allocation at index {allocation_index}")

    removed_payload = allocations.pop(allocation_index)
    allocation = Allocation.from_payload(removed_payload)

    # Step 1: lot side
    lot.allocations = allocations
    await db.commit()
    logger.info(
        "allocations.removed_from_lot",
        lot_id=str(lot_id),
        order_id=allocation.order_id,
        customer_id=allocation.customer_id,
        quantity=allocation.quantity,
    )

    # Step 2: order side
    try:
        cleanup = await _remove_from_order(db, lot_id, allocation)
    except Exception as exc:
        await db.rollback()
        logger.error(
            "allocations.order_cleanup_failed",
            lot_id=str(lot_id),
            order_id=allocation.order_id,
            customer_id=allocation.customer_id,
            error=str(exc),
        )
        raise OrderCleanupError(lot_id, allocation.customer_id, allocation.order_id, exc) from exc

    if cleanup is not OrderCleanup.UPDATED:
        logger.warning(
            "allocations.order_not_updated",
            lot_id=str(lot_id),
            order_id=allocation.order_id,
            reason=cleanup.value,
        )

    return AllocationRemoval(
        lot_id=lot_id,
        allocation=allocation,
        remaining_allocations=len(allocations),
        order_cleanup=cleanup,
    )
