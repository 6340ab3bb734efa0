"""
In-memory view of the lot ledger used by one reconciliation pass.

Allocations are persisted as camelCase JSON objects (the shape order
workflows write). They are parsed here for read-only analysis; the
persisted payload itself is never rebuilt from these objects.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from db.models import InventoryLot


def _as_float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


@dataclass(frozen=True)
class OrderDetails:
    """Production order fields shown next to an allocation in a preview."""

    order_id: str
    customer_id: str
    material: str | None = None
    required_qty: float = 0.0
    remaining_qty: float = 0.0

    @classmethod
    def from_embedded(cls, customer_id: str, order: dict[str, Any]) -> OrderDetails:
        return cls(
            order_id=str(order.get("id", "")),
            customer_id=customer_id,
            material=order.get("material"),
            required_qty=_as_float(order.get("requiredQty")),
            remaining_qty=_as_float(order.get("remainingQty")),
        )


@dataclass(frozen=True)
class Allocation:
    """A reservation of lot quantity against one production order."""

    order_id: str
    customer_id: str
    fabric_name: str
    quantity: float
    timestamp: str | None = None
    client_name: str | None = None
    order: OrderDetails | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Allocation:
        return cls(
            order_id=str(payload.get("orderId", "")),
            customer_id=str(payload.get("customerId", "")),
            fabric_name=str(payload.get("fabricName", "")),
            quantity=_as_float(payload.get("quantity")),
            timestamp=payload.get("timestamp"),
            client_name=payload.get("clientName"),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "orderId": self.order_id,
            "customerId": self.customer_id,
            "fabricName": self.fabric_name,
            "quantity": self.quantity,
            "timestamp": self.timestamp,
        }
        if self.client_name is not None:
            payload["clientName"] = self.client_name
        return payload


@dataclass(frozen=True)
class LedgerLot:
    lot_id: uuid.UUID
    yarn_name: str
    lot_number: str
    quantity: float
    location: str | None
    allocations: tuple[Allocation, ...] = field(default_factory=tuple)

    @property
    def allocated(self) -> float:
        """Total kg reserved against this lot."""
        return sum(a.quantity for a in self.allocations)

    @classmethod
    def from_row(cls, row: InventoryLot) -> LedgerLot:
        return cls(
            lot_id=row.lot_id,
            yarn_name=row.yarn_name or "",
            lot_number=row.lot_number or "",
            quantity=_as_float(row.quantity),
            location=row.location,
            allocations=tuple(Allocation.from_payload(a) for a in (row.allocations or []) if isinstance(a, dict)),
        )


def snapshot_ledger(rows: Iterable[InventoryLot]) -> list[LedgerLot]:
    """Freeze ORM rows into the immutable snapshot a pass matches against."""
    return [LedgerLot.from_row(row) for row in rows]


OrderKey = tuple[str, str]  # (customer_id, order_id)


def attach_order_details(ledger: Iterable[LedgerLot], orders: Mapping[OrderKey, OrderDetails]) -> list[LedgerLot]:
    """Return the ledger with each allocation carrying its order's details.

    Allocations whose order is not in ``orders`` keep ``order=None``.
    """
    enriched = []
    for lot in ledger:
        if lot.allocations:
            allocations = tuple(
                replace(a, order=orders.get((a.customer_id, a.order_id))) for a in lot.allocations
            )
            lot = replace(lot, allocations=allocations)
        enriched.append(lot)
    return enriched
