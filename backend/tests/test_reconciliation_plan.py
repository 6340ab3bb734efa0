"""
Tests for plan computation and the pending-plan registry.

Plans are pure: the same file against the same ledger always classifies
the same way, and computing a plan never touches the ledger.
"""

import uuid
from datetime import datetime, timedelta

import pytest

from reconciliation.discrepancy import DiscrepancyKind
from reconciliation.errors import PlanNotFoundError, SnapshotFormatError
from reconciliation.ledger import Allocation, LedgerLot, OrderDetails, attach_order_details
from reconciliation.plan import (
    PlanRegistry,
    ReconciliationPlan,
    compute_plan_from_grid,
    compute_reconciliation_plan,
    plan_registry_from_settings,
)
from reconciliation.policy import DiscrepancyThresholds
from reconciliation.resolver import MatchKind

HEADER = [["Stock Balance Report"], ["Item", "Lot", "Qty (kg)", "Location"]]

GRID = HEADER + [
    ["BU/Main Store"],
    ["Cotton 30/1", "L100", 99],  # allocated, barely consumed
    ["Polyester 150D", "P7", 250],  # unchanged
    ["Polyester 150D", "P8", 180],  # ghost draw-down
    ["Viscose 30/1", "V9", 80],  # legacy lot gets a location
    ["Lycra 40D", "Y1", 12],  # new
    ["", "Y1", 12],  # same row again
    ["Lycra 40D", "", 12],
    ["Lycra 40D", "Y2", "?"],
]


@pytest.fixture
def ledger():
    allocations = (
        Allocation("ord-1", "cust-nile", "Single Jersey", 30.0),
        Allocation("ord-2", "cust-nile", "Rib 1x1", 20.0),
    )
    return [
        LedgerLot(uuid.uuid4(), "Cotton 30/1", "L100", 100.0, "BU/Main Store", allocations),
        LedgerLot(uuid.uuid4(), "Polyester 150D", "P7", 250.0, "BU/Main Store"),
        LedgerLot(uuid.uuid4(), "Polyester 150D", "P8", 200.0, "BU/Main Store"),
        LedgerLot(uuid.uuid4(), "Viscose 30/1", "V9", 80.0, None),
    ]


def _shape(plan: ReconciliationPlan):
    return (
        [(a.yarn_name, a.lot_number, a.quantity, a.location) for a in plan.additions],
        [(u.lot_id, u.new_quantity, u.new_location, u.discrepancy) for u in plan.updates],
        plan.unchanged_count,
        plan.duplicate_count,
        plan.skipped,
    )


class TestComputePlan:
    def test_partitions(self, ledger):
        plan = compute_plan_from_grid(GRID, ledger, source_filename="stock.xlsx")

        assert [(a.yarn_name, a.lot_number) for a in plan.additions] == [("Lycra 40D", "Y1")]
        assert [u.lot_number for u in plan.updates] == ["L100", "P8", "V9"]
        assert plan.unchanged_count == 1
        assert plan.duplicate_count == 1
        assert plan.skipped == {"missing_lot_number": 1, "invalid_quantity": 1}
        assert plan.source_filename == "stock.xlsx"
        assert not plan.is_empty

    def test_discrepancies_flagged(self, ledger):
        plan = compute_plan_from_grid(GRID, ledger)

        kinds = {u.lot_number: u.discrepancy and u.discrepancy.kind for u in plan.updates}
        assert kinds == {"L100": DiscrepancyKind.STALE, "P8": DiscrepancyKind.GHOST, "V9": None}
        assert [u.lot_number for u in plan.discrepancies] == ["L100", "P8"]
        assert plan.discrepancy_counts() == {"stale": 1, "ghost": 1, "deviation": 0}

    def test_legacy_lot_migrated(self, ledger):
        plan = compute_plan_from_grid(GRID, ledger)
        migration = next(u for u in plan.updates if u.lot_number == "V9")

        assert migration.lot_id == ledger[3].lot_id
        assert migration.match_kind is MatchKind.MIGRATION
        assert (migration.old_location, migration.new_location) == (None, "BU/Main Store")

    def test_same_input_same_plan(self, ledger):
        first = compute_plan_from_grid(GRID, ledger)
        second = compute_plan_from_grid(GRID, ledger)

        assert _shape(first) == _shape(second)
        assert first.plan_id != second.plan_id

    def test_ledger_not_mutated(self, ledger):
        before = list(ledger)
        compute_plan_from_grid(GRID, ledger)
        assert ledger == before

    def test_thresholds_passed_through(self, ledger):
        lenient = DiscrepancyThresholds(
            stale_min_allocated_kg=1000.0, ghost_min_consumption_kg=1000.0, deviation_min_kg=1000.0
        )
        plan = compute_plan_from_grid(GRID, ledger, thresholds=lenient)
        assert plan.discrepancies == []

    def test_stale_floor_alone_leaves_deviation(self, ledger):
        no_stale = DiscrepancyThresholds(stale_min_allocated_kg=1000.0)
        plan = compute_plan_from_grid(GRID, ledger, thresholds=no_stale)

        l100 = next(u for u in plan.updates if u.lot_number == "L100")
        assert l100.discrepancy.kind is DiscrepancyKind.DEVIATION
        assert l100.discrepancy.reason == "Consumed less than allocated."

    def test_empty_grid_is_empty_plan(self, ledger):
        plan = compute_plan_from_grid(HEADER, ledger)

        assert plan.is_empty
        assert plan.skipped == {}

    def test_from_csv_bytes(self, ledger, make_csv):
        plan = compute_reconciliation_plan(make_csv(GRID), ledger, filename="stock.csv")

        assert _shape(plan) == _shape(compute_plan_from_grid(GRID, ledger))

    def test_unreadable_file_yields_no_plan(self, ledger):
        with pytest.raises(SnapshotFormatError):
            compute_reconciliation_plan(b"\x00\x01garbage", ledger, filename="stock.xlsx")


class TestPlanRegistry:
    def test_put_and_get(self):
        registry = PlanRegistry()
        plan = ReconciliationPlan()
        plan_id = registry.put(plan)

        assert registry.get(plan_id) is plan
        assert len(registry) == 1

    def test_take_removes(self):
        registry = PlanRegistry()
        plan_id = registry.put(ReconciliationPlan())

        registry.take(plan_id)
        with pytest.raises(PlanNotFoundError):
            registry.take(plan_id)
        assert len(registry) == 0

    def test_discard(self):
        registry = PlanRegistry()
        plan_id = registry.put(ReconciliationPlan())

        registry.discard(plan_id)
        with pytest.raises(PlanNotFoundError):
            registry.get(plan_id)

    def test_unknown_plan(self):
        with pytest.raises(PlanNotFoundError) as exc_info:
            PlanRegistry().discard("nope")
        assert exc_info.value.plan_id == "nope"


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TestPlanRegistryEviction:
    def _plan(self, created_at: datetime) -> ReconciliationPlan:
        return ReconciliationPlan(created_at=created_at)

    def test_expired_plan_not_found(self):
        clock = FakeClock(datetime(2026, 10, 17, 9, 0))
        registry = PlanRegistry(max_age=timedelta(minutes=30), clock=clock)
        plan_id = registry.put(self._plan(clock.now))

        clock.now += timedelta(minutes=31)

        with pytest.raises(PlanNotFoundError):
            registry.get(plan_id)
        with pytest.raises(PlanNotFoundError):
            registry.take(plan_id)
        assert len(registry) == 0

    def test_fresh_plan_survives(self):
        clock = FakeClock(datetime(2026, 10, 17, 9, 0))
        registry = PlanRegistry(max_age=timedelta(minutes=30), clock=clock)
        plan_id = registry.put(self._plan(clock.now))

        clock.now += timedelta(minutes=29)
        assert registry.take(plan_id).plan_id == plan_id

    def test_oldest_dropped_when_full(self):
        clock = FakeClock(datetime(2026, 10, 17, 9, 0))
        registry = PlanRegistry(max_pending=3, clock=clock)
        plan_ids = [registry.put(self._plan(clock.now)) for _ in range(5)]

        assert len(registry) == 3
        with pytest.raises(PlanNotFoundError):
            registry.get(plan_ids[0])
        assert registry.get(plan_ids[-1]).plan_id == plan_ids[-1]

    def test_unbounded_when_limits_disabled(self):
        registry = PlanRegistry(max_age=None, max_pending=None)
        for _ in range(500):
            registry.put(self._plan(datetime(2000, 1, 1)))
        assert len(registry) == 500

    def test_limits_from_settings(self):
        from core.config import Settings

        registry = plan_registry_from_settings(Settings(plan_max_age_minutes=5, max_pending_plans=2))
        for _ in range(4):
            registry.put(ReconciliationPlan())
        assert len(registry) == 2


class TestAttachOrderDetails:
    def test_allocations_enriched_without_touching_input(self, ledger):
        orders = {("cust-nile", "ord-1"): OrderDetails("ord-1", "cust-nile", "Single Jersey", 120.0, 90.0)}

        enriched = attach_order_details(ledger, orders)

        first, second = enriched[0].allocations
        assert first.order.material == "Single Jersey"
        assert first.order.remaining_qty == 90.0
        assert second.order is None
        assert ledger[0].allocations[0].order is None
        assert enriched[1] is ledger[1]

    def test_orders_keyed_by_customer(self, ledger):
        orders = {("cust-other", "ord-1"): OrderDetails("ord-1", "cust-other", "Pique")}

        enriched = attach_order_details(ledger, orders)
        assert enriched[0].allocations[0].order is None

    def test_details_reach_plan_updates(self, ledger):
        orders = {("cust-nile", "ord-2"): OrderDetails("ord-2", "cust-nile", "Rib 1x1", 200.0, 150.0)}

        plan = compute_plan_from_grid(GRID, attach_order_details(ledger, orders))

        l100 = next(u for u in plan.updates if u.lot_number == "L100")
        assert [a.order and a.order.required_qty for a in l100.allocations] == [None, 200.0]
