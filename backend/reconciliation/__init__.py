"""
Snapshot reconciliation package.

Turns a periodic full stock count (spreadsheet export) into a reviewed set
of ledger changes:

    snapshot   grid → StockRecord
    resolver   StockRecord → existing lot (exact key, then legacy pool)
    classifier add / update / unchanged / in-file duplicate
    discrepancy stale / ghost / deviation flags on updates
    plan       preview held until confirmed
    commit     batched writes, allocations never touched

Usage:
    from reconciliation import compute_reconciliation_plan, commit_reconciliation_plan

    plan = compute_reconciliation_plan(file_bytes, ledger, filename="stock.xlsx")
    result = await commit_reconciliation_plan(db, plan)
"""

from reconciliation.classifier import ChangeClassifier, LotAddition, LotUpdate
from reconciliation.commit import CommitResult, commit_reconciliation_plan
from reconciliation.discrepancy import Discrepancy, DiscrepancyKind, classify_discrepancy
from reconciliation.errors import CommitBatchError, PlanNotFoundError, ReconciliationError, SnapshotFormatError
from reconciliation.ledger import Allocation, LedgerLot
from reconciliation.plan import (
    PlanRegistry,
    ReconciliationPlan,
    compute_plan_from_grid,
    compute_reconciliation_plan,
    plan_registry_from_settings,
)
from reconciliation.policy import DiscrepancyThresholds, ReconciliationPolicy
from reconciliation.resolver import LedgerIndex, MatchKind
from reconciliation.snapshot import SkipReason, SnapshotRows, StockRecord, read_snapshot_grid

__all__ = [
    "Allocation",
    "ChangeClassifier",
    "CommitBatchError",
    "CommitResult",
    "Discrepancy",
    "DiscrepancyKind",
    "DiscrepancyThresholds",
    "LedgerIndex",
    "LedgerLot",
    "LotAddition",
    "LotUpdate",
    "MatchKind",
    "PlanNotFoundError",
    "PlanRegistry",
    "ReconciliationError",
    "ReconciliationPlan",
    "ReconciliationPolicy",
    "SkipReason",
    "SnapshotFormatError",
    "SnapshotRows",
    "StockRecord",
    "classify_discrepancy",
    "commit_reconciliation_plan",
    "compute_plan_from_grid",
    "compute_reconciliation_plan",
    "plan_registry_from_settings",
    "read_snapshot_grid",
]
