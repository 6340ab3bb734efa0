"""
Tests for the discrepancy analyzer - stale, ghost and deviation rules.
"""

import uuid

import pytest

from reconciliation.classifier import LotUpdate
from reconciliation.discrepancy import (
    DiscrepancyKind,
    annotate_discrepancies,
    classify_discrepancy,
    consumption_between,
)
from reconciliation.ledger import Allocation
from reconciliation.policy import DiscrepancyThresholds


class TestConsumption:
    def test_drawdown(self):
        assert consumption_between(100.0, 80.0) == 20.0

    def test_restock_is_no_consumption(self):
        assert consumption_between(80.0, 100.0) == 0.0


class TestClassifyDiscrepancy:
    def test_allocated_but_untouched_is_stale(self):
        finding = classify_discrepancy(allocated=50.0, old_quantity=100.0, new_quantity=99.0)

        assert finding.kind is DiscrepancyKind.STALE
        assert finding.consumption == pytest.approx(1.0)
        assert "lot swap" in finding.reason

    def test_consumed_without_allocation_is_ghost(self):
        finding = classify_discrepancy(allocated=0.0, old_quantity=100.0, new_quantity=80.0)

        assert finding.kind is DiscrepancyKind.GHOST
        assert finding.consumption == 20.0

    def test_overconsumption_is_deviation(self):
        finding = classify_discrepancy(allocated=50.0, old_quantity=100.0, new_quantity=35.0)

        assert finding.kind is DiscrepancyKind.DEVIATION
        assert finding.reason == "Consumed more than allocated."

    def test_underconsumption_is_deviation(self):
        finding = classify_discrepancy(allocated=100.0, old_quantity=200.0, new_quantity=150.0)

        assert finding.kind is DiscrepancyKind.DEVIATION
        assert finding.reason == "Consumed less than allocated."

    def test_close_to_plan_is_clean(self):
        assert classify_discrepancy(allocated=50.0, old_quantity=100.0, new_quantity=48.0) is None

    def test_small_ghost_ignored(self):
        assert classify_discrepancy(allocated=0.0, old_quantity=100.0, new_quantity=95.0) is None

    def test_restock_of_allocated_lot_is_stale(self):
        finding = classify_discrepancy(allocated=50.0, old_quantity=100.0, new_quantity=150.0)

        assert finding.kind is DiscrepancyKind.STALE
        assert finding.consumption == 0.0

    def test_small_allocation_needs_absolute_and_relative_gap(self):
        # 8 kg gap on 5 kg allocated: above 20% but under the 10 kg floor
        assert classify_discrepancy(allocated=5.0, old_quantity=100.0, new_quantity=87.0) is None
        # 30 kg gap on 200 kg allocated: above 10 kg but only 15%
        assert classify_discrepancy(allocated=200.0, old_quantity=400.0, new_quantity=230.0) is None

    def test_custom_thresholds(self):
        strict = DiscrepancyThresholds(deviation_min_kg=1.0, deviation_min_ratio=0.01)
        finding = classify_discrepancy(50.0, 100.0, 48.0, thresholds=strict)

        assert finding.kind is DiscrepancyKind.DEVIATION


class TestAnnotateDiscrepancies:
    def _update(self, old, new, allocated=()):
        return LotUpdate(
            lot_id=uuid.uuid4(),
            yarn_name="Cotton 30/1",
            lot_number="L100",
            old_quantity=old,
            new_quantity=new,
            old_location="BU/Main Store",
            new_location="BU/Main Store",
            allocations=tuple(Allocation("ord-1", "cust-nile", "Single Jersey", q) for q in allocated),
        )

    def test_flags_set_on_copies(self):
        stale = self._update(100.0, 99.5, allocated=(30.0, 20.0))
        ghost = self._update(100.0, 70.0)
        clean = self._update(100.0, 50.0, allocated=(50.0,))

        annotated = annotate_discrepancies([stale, ghost, clean])

        assert [u.discrepancy and u.discrepancy.kind for u in annotated] == [
            DiscrepancyKind.STALE,
            DiscrepancyKind.GHOST,
            None,
        ]
        assert annotated[0].discrepancy.allocated == 50.0
        assert stale.discrepancy is None
