"""
Yarn Inventory Router - snapshot reconciliation, allocations, stock views.

Reconciliation is two calls: upload a snapshot to get a preview (nothing
is written), then confirm the preview by id to apply it. Discarding a
preview is free.
"""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from allocations.maintenance import AllocationNotFoundError, OrderCleanupError, delete_allocation
from api.deps import get_current_user, get_db, get_plan_registry
from core.config import get_settings
from inventory.summary import group_lots, load_lots, summarize_lots
from reconciliation.classifier import LotAddition, LotUpdate
from reconciliation.errors import CommitBatchError, PlanNotFoundError, SnapshotFormatError
from reconciliation.ledger import Allocation
from reconciliation.plan import PlanRegistry, ReconciliationPlan
from reconciliation.service import confirm_reconciliation, prepare_reconciliation

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/yarn-inventory", tags=["yarn-inventory"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class OrderDetailsResponse(BaseModel):
    order_id: str
    material: str | None = None
    required_qty: float
    remaining_qty: float


class AllocationResponse(BaseModel):
    order_id: str
    customer_id: str
    client_name: str | None = None
    fabric_name: str
    quantity: float
    timestamp: str | None = None
    order: OrderDetailsResponse | None = None

    @classmethod
    def from_allocation(cls, allocation: Allocation) -> "AllocationResponse":
        order = allocation.order
        return cls(
            order_id=allocation.order_id,
            customer_id=allocation.customer_id,
            client_name=allocation.client_name,
            fabric_name=allocation.fabric_name,
            quantity=allocation.quantity,
            timestamp=allocation.timestamp,
            order=(
                OrderDetailsResponse(
                    order_id=order.order_id,
                    material=order.material,
                    required_qty=order.required_qty,
                    remaining_qty=order.remaining_qty,
                )
                if order is not None
                else None
            ),
        )


class DiscrepancyResponse(BaseModel):
    kind: str  # "stale", "ghost", "deviation"
    allocated: float
    consumption: float
    reason: str


class LotAdditionResponse(BaseModel):
    yarn_name: str
    lot_number: str
    quantity: float
    location: str
    source_row: int


class LotUpdateResponse(BaseModel):
    lot_id: UUID
    yarn_name: str
    lot_number: str
    old_quantity: float
    new_quantity: float
    old_location: str | None
    new_location: str
    match_kind: str  # "exact", "migration"
    allocated: float
    allocations: list[AllocationResponse]
    discrepancy: DiscrepancyResponse | None = None
    source_row: int


class ReconciliationPreview(BaseModel):
    plan_id: str
    source_filename: str | None
    created_at: datetime
    additions: list[LotAdditionResponse]
    updates: list[LotUpdateResponse]
    unchanged_count: int
    duplicate_count: int
    skipped: dict[str, int]
    discrepancy_counts: dict[str, int]


class CommitResponse(BaseModel):
    plan_id: str
    added: int
    updated: int
    batches: int
    missing_lot_ids: list[UUID]


class AllocationRemovalResponse(BaseModel):
    lot_id: UUID
    removed: AllocationResponse
    remaining_allocations: int
    order_cleanup: str


class InventorySummaryResponse(BaseModel):
    total_kg: float
    total_allocated: float
    total_remaining: float
    unique_yarns: int
    low_stock_lots: int
    location_totals: dict[str, float]
    last_updated: datetime | None


class LotResponse(BaseModel):
    lot_id: UUID
    lot_number: str
    quantity: float
    location: str | None
    last_updated: datetime
    allocations: list[AllocationResponse]


class YarnGroupResponse(BaseModel):
    yarn_name: str
    total_quantity: float
    total_allocated: float
    net_available: float
    lots: list[LotResponse]


# ─── Helpers ─────────────────────────────────────────────────────────────────


def _addition_response(addition: LotAddition) -> LotAdditionResponse:
    return LotAdditionResponse(
        yarn_name=addition.yarn_name,
        lot_number=addition.lot_number,
        quantity=addition.quantity,
        location=addition.location,
        source_row=addition.source_row,
    )


def _update_response(change: LotUpdate) -> LotUpdateResponse:
    discrepancy = None
    if change.discrepancy is not None:
        discrepancy = DiscrepancyResponse(
            kind=change.discrepancy.kind.value,
            allocated=change.discrepancy.allocated,
            consumption=change.discrepancy.consumption,
            reason=change.discrepancy.reason,
        )
    return LotUpdateResponse(
        lot_id=change.lot_id,
        yarn_name=change.yarn_name,
        lot_number=change.lot_number,
        old_quantity=change.old_quantity,
        new_quantity=change.new_quantity,
        old_location=change.old_location,
        new_location=change.new_location,
        match_kind=change.match_kind.value,
        allocated=change.allocated,
        allocations=[AllocationResponse.from_allocation(a) for a in change.allocations],
        discrepancy=discrepancy,
        source_row=change.source_row,
    )


def _preview_response(plan: ReconciliationPlan) -> ReconciliationPreview:
    return ReconciliationPreview(
        plan_id=plan.plan_id,
        source_filename=plan.source_filename,
        created_at=plan.created_at,
        additions=[_addition_response(a) for a in plan.additions],
        updates=[_update_response(u) for u in plan.updates],
        unchanged_count=plan.unchanged_count,
        duplicate_count=plan.duplicate_count,
        skipped=plan.skipped,
        discrepancy_counts=plan.discrepancy_counts(),
    )


# ─── Reconciliation ─────────────────────────────────────────────────────────


@router.post("/reconciliations", response_model=ReconciliationPreview, status_code=status.HTTP_201_CREATED)
async def create_reconciliation(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    registry: PlanRegistry = Depends(get_plan_registry),
    user: dict = Depends(get_current_user),
):
    """Upload a stock snapshot and get the import preview. Nothing is written."""
    content = await file.read()
    try:
        plan = await prepare_reconciliation(db, registry, content, filename=file.filename)
    except SnapshotFormatError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    logger.info("reconcile.preview_created", plan_id=plan.plan_id, user=user.get("sub"))
    return _preview_response(plan)


@router.get("/reconciliations/{plan_id}", response_model=ReconciliationPreview)
async def get_reconciliation(
    plan_id: str,
    registry: PlanRegistry = Depends(get_plan_registry),
    user: dict = Depends(get_current_user),
):
    """Fetch a pending preview."""
    try:
        plan = registry.get(plan_id)
    except PlanNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _preview_response(plan)


@router.post("/reconciliations/{plan_id}/confirm", response_model=CommitResponse)
async def confirm_reconciliation_plan(
    plan_id: str,
    db: AsyncSession = Depends(get_db),
    registry: PlanRegistry = Depends(get_plan_registry),
    user: dict = Depends(get_current_user),
):
    """Apply a previewed plan to the ledger."""
    try:
        result = await confirm_reconciliation(db, registry, plan_id, settings=get_settings())
    except PlanNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except CommitBatchError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": str(exc),
                "batches_committed": exc.batches_committed,
                "committed_adds": exc.committed_adds,
                "committed_updates": exc.committed_updates,
            },
        ) from exc

    logger.info("reconcile.confirmed", plan_id=plan_id, user=user.get("sub"))
    return CommitResponse(
        plan_id=result.plan_id,
        added=result.added,
        updated=result.updated,
        batches=result.batches,
        missing_lot_ids=result.missing_lot_ids,
    )


@router.delete("/reconciliations/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def discard_reconciliation(
    plan_id: str,
    registry: PlanRegistry = Depends(get_plan_registry),
    user: dict = Depends(get_current_user),
):
    """Discard a pending preview without writing anything."""
    try:
        registry.discard(plan_id)
    except PlanNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


# ─── Allocations ────────────────────────────────────────────────────────────


@router.delete("/lots/{lot_id}/allocations/{allocation_index}", response_model=AllocationRemovalResponse)
async def remove_allocation(
    lot_id: UUID,
    allocation_index: int,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Remove one allocation from a lot and from its order."""
    try:
        removal = await delete_allocation(db, lot_id, allocation_index)
    except AllocationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except OrderCleanupError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": str(exc), "lot_id": str(exc.lot_id), "order_id": exc.order_id},
        ) from exc

    return AllocationRemovalResponse(
        lot_id=removal.lot_id,
        removed=AllocationResponse.from_allocation(removal.allocation),
        remaining_allocations=removal.remaining_allocations,
        order_cleanup=removal.order_cleanup.value,
    )


# ─── Stock views ────────────────────────────────────────────────────────────


@router.get("/summary", response_model=InventorySummaryResponse)
async def get_yarn_inventory_summary(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Stock totals across all lots."""
    lots = await load_lots(db)
    totals = summarize_lots(lots, low_stock_kg=get_settings().low_stock_threshold_kg)
    return InventorySummaryResponse(
        total_kg=totals.total_kg,
        total_allocated=totals.total_allocated,
        total_remaining=totals.total_remaining,
        unique_yarns=totals.unique_yarns,
        low_stock_lots=totals.low_stock_lots,
        location_totals=totals.location_totals,
        last_updated=totals.last_updated,
    )


@router.get("/", response_model=list[YarnGroupResponse])
async def list_yarn_inventory(
    search: str | None = None,
    location: str | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """List lots grouped by yarn name."""
    lots = await load_lots(db)
    groups = group_lots(lots, search=search, location=location)
    return [
        YarnGroupResponse(
            yarn_name=group.yarn_name,
            total_quantity=group.total_quantity,
            total_allocated=group.total_allocated,
            net_available=group.net_available,
            lots=[
                LotResponse(
                    lot_id=lot.lot_id,
                    lot_number=lot.lot_number,
                    quantity=lot.quantity,
                    location=lot.location,
                    last_updated=lot.last_updated,
                    allocations=[
                        AllocationResponse.from_allocation(Allocation.from_payload(a))
                        for a in (lot.allocations or [])
                        if isinstance(a, dict)
                    ],
                )
                for lot in group.lots
            ],
        )
        for group in groups[skip : skip + limit]
    ]
