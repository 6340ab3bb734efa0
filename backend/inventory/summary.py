"""
Yarn Inventory Summary - stock totals and per-yarn grouping.

Read-only views over the lot ledger:
  - totals: kg on hand, kg allocated, net remaining, distinct yarns,
    low-stock lots, kg per location, most recent update
  - groups: lots grouped by yarn name with total / allocated / net,
    filtered by a search term (yarn name or lot number) and location
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import InventoryLot
from reconciliation.ledger import Allocation

logger = structlog.get_logger()

DEFAULT_LOW_STOCK_KG = 50.0
UNKNOWN_LOCATION = "Unknown"


def lot_allocated(lot: InventoryLot) -> float:
    return sum(Allocation.from_payload(a).quantity for a in (lot.allocations or []) if isinstance(a, dict))


@dataclass
class InventoryTotals:
    total_kg: float = 0.0
    total_allocated: float = 0.0
    total_remaining: float = 0.0
    unique_yarns: int = 0
    low_stock_lots: int = 0
    location_totals: dict[str, float] = field(default_factory=dict)
    last_updated: datetime | None = None


@dataclass
class YarnGroup:
    yarn_name: str
    total_quantity: float = 0.0
    total_allocated: float = 0.0
    lots: list[InventoryLot] = field(default_factory=list)

    @property
    def net_available(self) -> float:
        return self.total_quantity - self.total_allocated


def summarize_lots(lots: Iterable[InventoryLot], low_stock_kg: float = DEFAULT_LOW_STOCK_KG) -> InventoryTotals:
    totals = InventoryTotals()
    yarns: set[str] = set()

    for lot in lots:
        quantity = lot.quantity or 0.0
        totals.total_kg += quantity
        totals.total_allocated += lot_allocated(lot)
        yarns.add(lot.yarn_name)
        if quantity < low_stock_kg:
            totals.low_stock_lots += 1
        location = lot.location or UNKNOWN_LOCATION
        totals.location_totals[location] = totals.location_totals.get(location, 0.0) + quantity
        if lot.last_updated and (totals.last_updated is None or lot.last_updated > totals.last_updated):
            totals.last_updated = lot.last_updated

    totals.total_remaining = totals.total_kg - totals.total_allocated
    totals.unique_yarns = len(yarns)
    return totals


def group_lots(
    lots: Iterable[InventoryLot],
    search: str | None = None,
    location: str | None = None,
) -> list[YarnGroup]:
    """Group lots by yarn; yarns with allocations first, then by name."""
    term = (search or "").strip().lower()
    groups: dict[str, YarnGroup] = {}

    for lot in lots:
        if location and lot.location != location:
            continue
        if term and term not in (lot.yarn_name or "").lower() and term not in (lot.lot_number or "").lower():
            continue
        group = groups.setdefault(lot.yarn_name, YarnGroup(yarn_name=lot.yarn_name))
        group.total_quantity += lot.quantity or 0.0
        group.total_allocated += lot_allocated(lot)
        group.lots.append(lot)

    return sorted(groups.values(), key=lambda g: (g.total_allocated <= 0, g.yarn_name.lower()))


async def load_lots(db: AsyncSession) -> list[InventoryLot]:
    result = await db.execute(select(InventoryLot))
    return list(result.scalars().all())
