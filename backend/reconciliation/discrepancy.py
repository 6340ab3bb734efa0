"""
Discrepancy Analyzer - plan (allocations) vs reality (stock draw-down).

When the floor swaps one lot for another without telling the planner, the
snapshot shows it indirectly: the allocated lot is not consumed (stale)
while some unallocated lot drops (ghost). Partial divergence between what
was reserved and what was drawn shows up as a deviation.

Consumption is old − new quantity, floored at zero: a stock increase
(return, correction) counts as no consumption.

Rules, first match wins:
  1. stale      allocated > 10 and consumption < 2
  2. ghost      allocated == 0 and consumption > 10
  3. deviation  allocated > 0 and |allocated − consumption| exceeds both
                10 kg and 20% of allocated
All limits come from ``DiscrepancyThresholds``.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from reconciliation.policy import DEFAULT_THRESHOLDS, DiscrepancyThresholds

if TYPE_CHECKING:
    from reconciliation.classifier import LotUpdate


class DiscrepancyKind(str, Enum):
    STALE = "stale"
    GHOST = "ghost"
    DEVIATION = "deviation"


@dataclass(frozen=True)
class Discrepancy:
    kind: DiscrepancyKind
    allocated: float
    consumption: float
    reason: str


def consumption_between(old_quantity: float, new_quantity: float) -> float:
    return max(0.0, old_quantity - new_quantity)


def classify_discrepancy(
    allocated: float,
    old_quantity: float,
    new_quantity: float,
    thresholds: DiscrepancyThresholds = DEFAULT_THRESHOLDS,
) -> Discrepancy | None:
    consumption = consumption_between(old_quantity, new_quantity)

    if allocated > thresholds.stale_min_allocated_kg and consumption < thresholds.untouched_max_consumption_kg:
        return Discrepancy(
            DiscrepancyKind.STALE,
            allocated,
            consumption,
            "Allocated stock was not touched. Possible lot swap.",
        )

    if allocated == 0 and consumption > thresholds.ghost_min_consumption_kg:
        return Discrepancy(
            DiscrepancyKind.GHOST,
            allocated,
            consumption,
            "Stock consumed without allocation. Possible lot swap target.",
        )

    if allocated > 0:
        diff = abs(allocated - consumption)
        if diff > thresholds.deviation_min_kg and diff > thresholds.deviation_min_ratio * allocated:
            reason = "Consumed more than allocated." if consumption > allocated else "Consumed less than allocated."
            return Discrepancy(DiscrepancyKind.DEVIATION, allocated, consumption, reason)

    return None


def annotate_discrepancies(
    updates: Iterable[LotUpdate],
    thresholds: DiscrepancyThresholds = DEFAULT_THRESHOLDS,
) -> list[LotUpdate]:
    """Return the updates with ``discrepancy`` set where a rule fires."""
    annotated = []
    for update in updates:
        finding = classify_discrepancy(update.allocated, update.old_quantity, update.new_quantity, thresholds)
        annotated.append(dataclasses.replace(update, discrepancy=finding))
    return annotated
