"""
Identity Resolver - match snapshot rows to existing ledger lots.

Lots are identified by (yarn name, lot number, location). Lots created
before locations were tracked carry no location (or ``"Unknown"``); those
sit in a pool keyed by (yarn name, lot number) and are adopted by the
first row that has no exact match, which is how they get migrated to a
real location instead of being re-created as duplicates.
"""

from __future__ import annotations

import uuid
from collections import defaultdict, deque
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

import structlog

from reconciliation.ledger import LedgerLot
from reconciliation.policy import DEFAULT_POLICY, ReconciliationPolicy
from reconciliation.snapshot import StockRecord, normalize_key_part

logger = structlog.get_logger()


class MatchKind(str, Enum):
    EXACT = "exact"
    MIGRATION = "migration"


@dataclass(frozen=True)
class Match:
    lot: LedgerLot
    kind: MatchKind


class LedgerIndex:
    """Per-pass index over the ledger snapshot.

    Stateful: every lot can be claimed by at most one row, so an index
    must not be reused across passes.
    """

    def __init__(self, lots: Iterable[LedgerLot], policy: ReconciliationPolicy = DEFAULT_POLICY):
        self._unknown = normalize_key_part(policy.unknown_location)
        self._exact: dict[tuple[str, str, str], LedgerLot] = {}
        self._unknown_pool: dict[tuple[str, str], deque[LedgerLot]] = defaultdict(deque)
        self._claimed: set[uuid.UUID] = set()

        for lot in lots:
            location = normalize_key_part(lot.location) or self._unknown
            name = normalize_key_part(lot.yarn_name)
            number = normalize_key_part(lot.lot_number)
            key = (name, number, location)
            if key in self._exact:
                logger.warning(
                    "reconcile.duplicate_ledger_identity",
                    yarn_name=lot.yarn_name,
                    lot_number=lot.lot_number,
                    location=lot.location,
                    lot_id=str(lot.lot_id),
                )
            else:
                self._exact[key] = lot
            if location == self._unknown:
                self._unknown_pool[(name, number)].append(lot)

    def resolve(self, record: StockRecord) -> Match | None:
        """Claim the ledger lot for a row, or ``None`` when it is a new lot."""
        lot = self._exact.get(record.identity_key)
        if lot is not None and lot.lot_id not in self._claimed:
            self._claimed.add(lot.lot_id)
            return Match(lot, MatchKind.EXACT)

        pool = self._unknown_pool.get(record.lot_key)
        while pool:
            candidate = pool.popleft()
            if candidate.lot_id in self._claimed:
                continue
            self._claimed.add(candidate.lot_id)
            return Match(candidate, MatchKind.MIGRATION)

        return None
