"""
Policy constants for snapshot reconciliation and discrepancy detection.

Values are tunable via environment (see ``core.config.Settings``); the pure
engine only ever sees these frozen objects.
"""

from dataclasses import dataclass

from core.config import Settings


@dataclass(frozen=True)
class ReconciliationPolicy:
    header_rows: int = 2
    section_marker_prefix: str = "BU/"
    unknown_location: str = "Unknown"
    quantity_tolerance_kg: float = 0.01
    max_batch_size: int = 450


@dataclass(frozen=True)
class DiscrepancyThresholds:
    """Plan-vs-reality thresholds, in kg except ``deviation_min_ratio``."""

    stale_min_allocated_kg: float = 10.0
    untouched_max_consumption_kg: float = 2.0
    ghost_min_consumption_kg: float = 10.0
    deviation_min_kg: float = 10.0
    deviation_min_ratio: float = 0.2


DEFAULT_POLICY = ReconciliationPolicy()
DEFAULT_THRESHOLDS = DiscrepancyThresholds()


def policy_from_settings(settings: Settings) -> ReconciliationPolicy:
    return ReconciliationPolicy(
        header_rows=settings.snapshot_header_rows,
        section_marker_prefix=settings.section_marker_prefix,
        unknown_location=settings.unknown_location,
        quantity_tolerance_kg=settings.quantity_tolerance_kg,
        max_batch_size=settings.max_batch_size,
    )


def thresholds_from_settings(settings: Settings) -> DiscrepancyThresholds:
    return DiscrepancyThresholds(
        stale_min_allocated_kg=settings.stale_min_allocated_kg,
        untouched_max_consumption_kg=settings.untouched_max_consumption_kg,
        ghost_min_consumption_kg=settings.ghost_min_consumption_kg,
        deviation_min_kg=settings.deviation_min_kg,
        deviation_min_ratio=settings.deviation_min_ratio,
    )
