"""
Reconciliation Plan - the read-only preview of one snapshot import.

Computing a plan never writes: it reads the file, matches every row
against a frozen ledger snapshot, classifies it and flags discrepancies.
The plan is then held until an operator confirms (commit) or discards it.
"""

from __future__ import annotations

import uuid
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from core.config import Settings
from reconciliation.classifier import ChangeClassifier, Duplicate, LotAddition, LotUpdate, Unchanged
from reconciliation.discrepancy import DiscrepancyKind, annotate_discrepancies
from reconciliation.errors import PlanNotFoundError
from reconciliation.ledger import LedgerLot
from reconciliation.policy import DEFAULT_POLICY, DEFAULT_THRESHOLDS, DiscrepancyThresholds, ReconciliationPolicy
from reconciliation.resolver import LedgerIndex
from reconciliation.snapshot import Grid, ParsedRow, SkippedRow, SnapshotRows, read_snapshot_grid

logger = structlog.get_logger()


@dataclass
class ReconciliationPlan:
    additions: list[LotAddition] = field(default_factory=list)
    updates: list[LotUpdate] = field(default_factory=list)
    unchanged_count: int = 0
    duplicate_count: int = 0
    skipped: dict[str, int] = field(default_factory=dict)
    source_filename: str | None = None
    plan_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def discrepancies(self) -> list[LotUpdate]:
        return [u for u in self.updates if u.discrepancy is not None]

    @property
    def is_empty(self) -> bool:
        return not self.additions and not self.updates

    def discrepancy_counts(self) -> dict[str, int]:
        counts = Counter(u.discrepancy.kind.value for u in self.discrepancies)
        return {kind.value: counts.get(kind.value, 0) for kind in DiscrepancyKind}


def compute_plan_from_grid(
    grid: Grid,
    ledger: Iterable[LedgerLot],
    *,
    policy: ReconciliationPolicy = DEFAULT_POLICY,
    thresholds: DiscrepancyThresholds = DEFAULT_THRESHOLDS,
    source_filename: str | None = None,
) -> ReconciliationPlan:
    rows = SnapshotRows(grid, policy)
    classifier = ChangeClassifier(LedgerIndex(ledger, policy), policy)

    plan = ReconciliationPlan(source_filename=source_filename)
    skipped: Counter[str] = Counter()
    updates: list[LotUpdate] = []

    for outcome in rows.outcomes():
        if isinstance(outcome, SkippedRow):
            skipped[outcome.reason.value] += 1
            continue
        if not isinstance(outcome, ParsedRow):
            continue

        result = classifier.classify(outcome.record)
        if isinstance(result, Duplicate):
            plan.duplicate_count += 1
        elif isinstance(result, Unchanged):
            plan.unchanged_count += 1
        elif isinstance(result, LotAddition):
            plan.additions.append(result)
        elif isinstance(result, LotUpdate):
            updates.append(result)

    plan.updates = annotate_discrepancies(updates, thresholds)
    plan.skipped = dict(skipped)

    logger.info(
        "reconcile.plan_computed",
        plan_id=plan.plan_id,
        filename=source_filename,
        added=len(plan.additions),
        updated=len(plan.updates),
        unchanged=plan.unchanged_count,
        duplicates=plan.duplicate_count,
        skipped=sum(skipped.values()),
        **{f"discrepancy_{k}": v for k, v in plan.discrepancy_counts().items()},
    )
    return plan


def compute_reconciliation_plan(
    content: bytes,
    ledger: Iterable[LedgerLot],
    *,
    filename: str | None = None,
    policy: ReconciliationPolicy = DEFAULT_POLICY,
    thresholds: DiscrepancyThresholds = DEFAULT_THRESHOLDS,
) -> ReconciliationPlan:
    """Build the import preview for a snapshot file. No side effects.

    Raises ``SnapshotFormatError`` if the file is not a readable table;
    no partial plan is produced in that case.
    """
    grid = read_snapshot_grid(content, filename)
    return compute_plan_from_grid(
        grid,
        ledger,
        policy=policy,
        thresholds=thresholds,
        source_filename=filename,
    )


class PlanRegistry:
    """Holds computed plans until they are confirmed or discarded.

    ``take`` removes the plan, so a plan is committed at most once. Plans
    older than ``max_age`` are evicted, and once ``max_pending`` plans are
    held the oldest is dropped to make room for a new one.
    """

    def __init__(
        self,
        max_age: timedelta | None = timedelta(hours=1),
        max_pending: int | None = 200,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._plans: dict[str, ReconciliationPlan] = {}
        self._max_age = max_age
        self._max_pending = max_pending
        self._clock = clock

    def __len__(self) -> int:
        self._evict_expired()
        return len(self._plans)

    def _evict_expired(self) -> None:
        if self._max_age is None:
            return
        cutoff = self._clock() - self._max_age
        expired = [plan_id for plan_id, plan in self._plans.items() if plan.created_at < cutoff]
        for plan_id in expired:
            del self._plans[plan_id]
        if expired:
            logger.info("reconcile.plans_expired", count=len(expired))

    def put(self, plan: ReconciliationPlan) -> str:
        self._evict_expired()
        if self._max_pending is not None:
            while len(self._plans) >= self._max_pending:
                # dicts keep insertion order, so the first key is the oldest plan
                oldest = next(iter(self._plans))
                del self._plans[oldest]
                logger.warning("reconcile.plan_evicted", plan_id=oldest, max_pending=self._max_pending)
        self._plans[plan.plan_id] = plan
        return plan.plan_id

    def get(self, plan_id: str) -> ReconciliationPlan:
        self._evict_expired()
        plan = self._plans.get(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    def take(self, plan_id: str) -> ReconciliationPlan:
        self._evict_expired()
        plan = self._plans.pop(plan_id, None)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    def discard(self, plan_id: str) -> None:
        self._evict_expired()
        if self._plans.pop(plan_id, None) is None:
            raise PlanNotFoundError(plan_id)
        logger.info("reconcile.plan_discarded", plan_id=plan_id)


def plan_registry_from_settings(settings: Settings) -> PlanRegistry:
    return PlanRegistry(
        max_age=timedelta(minutes=settings.plan_max_age_minutes),
        max_pending=settings.max_pending_plans,
    )
