"""
Commit Engine - apply a confirmed reconciliation plan to the lot ledger.

Writes are grouped into batches of at most ``max_batch_size`` operations;
each batch is one transaction. Batches are not atomic with each other: if
batch N fails, batches 1..N-1 stay committed and ``CommitBatchError`` says
how far the import got. Re-running the same import is the recovery path.

Updates only ever touch quantity, location and last_updated. The
allocations column is never part of a write issued from here.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import InventoryLot
from reconciliation.classifier import LotAddition, LotUpdate
from reconciliation.errors import CommitBatchError
from reconciliation.plan import ReconciliationPlan
from reconciliation.policy import DEFAULT_POLICY

logger = structlog.get_logger()


@dataclass
class CommitResult:
    plan_id: str
    added: int = 0
    updated: int = 0
    batches: int = 0
    missing_lot_ids: list[uuid.UUID] = field(default_factory=list)
    added_lot_ids: list[uuid.UUID] = field(default_factory=list)


class _BatchWriter:
    """Stages writes on a session and commits every ``max_size`` operations."""

    def __init__(self, db: AsyncSession, result: CommitResult, max_size: int):
        self.db = db
        self.result = result
        self.max_size = max_size
        self._pending_adds = 0
        self._pending_updates = 0
        self._pending_missing = 0

    @property
    def pending(self) -> int:
        return self._pending_adds + self._pending_updates

    async def add(self, addition: LotAddition, timestamp: datetime) -> None:
        lot = InventoryLot(
            lot_id=uuid.uuid4(),
            yarn_name=addition.yarn_name,
            lot_number=addition.lot_number,
            quantity=addition.quantity,
            location=addition.location,
            allocations=[],
            last_updated=timestamp,
        )
        self.db.add(lot)
        self.result.added_lot_ids.append(lot.lot_id)
        self._pending_adds += 1
        await self._maybe_commit()

    async def update(self, change: LotUpdate, timestamp: datetime) -> None:
        outcome = await self.db.execute(
            update(InventoryLot)
            .where(InventoryLot.lot_id == change.lot_id)
            .values(
                quantity=change.new_quantity,
                location=change.new_location,
                last_updated=timestamp,
            )
        )
        if outcome.rowcount == 0:
            # lot deleted after the preview was computed
            logger.warning("reconcile.update_target_missing", lot_id=str(change.lot_id))
            self.result.missing_lot_ids.append(change.lot_id)
            self._pending_missing += 1
        self._pending_updates += 1
        await self._maybe_commit()

    async def _maybe_commit(self) -> None:
        if self.pending >= self.max_size:
            await self.flush()

    async def flush(self) -> None:
        if self.pending == 0:
            return
        await self.db.commit()
        self.result.batches += 1
        self.result.added += self._pending_adds
        # an update that matched no row still fills a batch slot but changed nothing
        self.result.updated += self._pending_updates - self._pending_missing
        logger.info(
            "reconcile.batch_committed",
            plan_id=self.result.plan_id,
            batch=self.result.batches,
            adds=self._pending_adds,
            updates=self._pending_updates - self._pending_missing,
            missing=self._pending_missing,
        )
        self._pending_adds = 0
        self._pending_updates = 0
        self._pending_missing = 0


async def commit_reconciliation_plan(
    db: AsyncSession,
    plan: ReconciliationPlan,
    max_batch_size: int = DEFAULT_POLICY.max_batch_size,
) -> CommitResult:
    """
    Apply a confirmed plan's additions and updates.

    The plan is applied exactly as previewed; nothing is re-derived from
    the ledger. Raises ``CommitBatchError`` on the first failing batch.
    """
    if max_batch_size < 1:
        raise ValueError("max_batch_size must be at least 1")

    result = CommitResult(plan_id=plan.plan_id)
    writer = _BatchWriter(db, result, max_batch_size)
    timestamp = datetime.utcnow()

    logger.info(
        "reconcile.commit_start",
        plan_id=plan.plan_id,
        additions=len(plan.additions),
        updates=len(plan.updates),
        max_batch_size=max_batch_size,
    )

    try:
        for addition in plan.additions:
            await writer.add(addition, timestamp)
        for change in plan.updates:
            await writer.update(change, timestamp)
        await writer.flush()
    except Exception as exc:
        await db.rollback()
        logger.error(
            "reconcile.commit_failed",
            plan_id=plan.plan_id,
            batches_committed=result.batches,
            committed_adds=result.added,
            committed_updates=result.updated,
            error=str(exc),
        )
        raise CommitBatchError(
            batches_committed=result.batches,
            committed_adds=result.added,
            committed_updates=result.updated,
            cause=exc,
        ) from exc

    logger.info(
        "reconcile.commit_complete",
        plan_id=plan.plan_id,
        added=result.added,
        updated=result.updated,
        batches=result.batches,
    )
    return result
