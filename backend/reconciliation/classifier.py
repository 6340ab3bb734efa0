"""
Change Classifier - decide what a snapshot row means for the ledger.

Each row is one of:
  - duplicate  same (name, lot, location) already seen earlier in the file
  - add        no ledger lot matched
  - unchanged  matched, quantity within tolerance and location identical
  - update     matched, quantity or location differs
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Union

from reconciliation.discrepancy import Discrepancy
from reconciliation.ledger import Allocation
from reconciliation.policy import DEFAULT_POLICY, ReconciliationPolicy
from reconciliation.resolver import LedgerIndex, MatchKind
from reconciliation.snapshot import StockRecord


@dataclass(frozen=True)
class LotAddition:
    yarn_name: str
    lot_number: str
    quantity: float
    location: str
    source_row: int = 0


@dataclass(frozen=True)
class LotUpdate:
    lot_id: uuid.UUID
    yarn_name: str
    lot_number: str
    old_quantity: float
    new_quantity: float
    old_location: str | None
    new_location: str
    match_kind: MatchKind = MatchKind.EXACT
    # the matched lot's allocations, carried for analysis and preview only
    allocations: tuple[Allocation, ...] = field(default_factory=tuple)
    discrepancy: Discrepancy | None = None
    source_row: int = 0

    @property
    def allocated(self) -> float:
        return sum(a.quantity for a in self.allocations)

    @property
    def quantity_delta(self) -> float:
        return self.new_quantity - self.old_quantity


@dataclass(frozen=True)
class Unchanged:
    lot_id: uuid.UUID
    record: StockRecord


@dataclass(frozen=True)
class Duplicate:
    record: StockRecord


Classification = Union[LotAddition, LotUpdate, Unchanged, Duplicate]


def quantity_changed(old: float, new: float, tolerance: float = DEFAULT_POLICY.quantity_tolerance_kg) -> bool:
    return abs(old - new) >= tolerance


class ChangeClassifier:
    """Classifies the rows of one file against one ledger index, in order."""

    def __init__(self, index: LedgerIndex, policy: ReconciliationPolicy = DEFAULT_POLICY):
        self._index = index
        self._policy = policy
        self._seen: set[tuple[str, str, str]] = set()

    def classify(self, record: StockRecord) -> Classification:
        key = record.identity_key
        if key in self._seen:
            return Duplicate(record)
        self._seen.add(key)

        match = self._index.resolve(record)
        if match is None:
            return LotAddition(
                yarn_name=record.yarn_name,
                lot_number=record.lot_number,
                quantity=record.quantity,
                location=record.location,
                source_row=record.source_row,
            )

        lot = match.lot
        qty_changed = quantity_changed(lot.quantity, record.quantity, self._policy.quantity_tolerance_kg)
        loc_changed = lot.location != record.location
        if not qty_changed and not loc_changed:
            return Unchanged(lot.lot_id, record)

        return LotUpdate(
            lot_id=lot.lot_id,
            yarn_name=record.yarn_name,
            lot_number=record.lot_number,
            old_quantity=lot.quantity,
            new_quantity=record.quantity,
            old_location=lot.location,
            new_location=record.location,
            match_kind=match.kind,
            allocations=lot.allocations,
            source_row=record.source_row,
        )
