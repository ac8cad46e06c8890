# drive_stats/merge.py
"""Merge reducer for aggregation tables.

Uses the same combine rules as ``apply_record`` so that, under the default "max"
capacity policy, merging is associative and commutative over the set of applied
records: the final table does not depend on how files were split between workers
or on the fold order.
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Iterable

from drive_stats.accumulators import DataCenterStats, DriveStats, update_capacity
from drive_stats.config import CapacityPolicy, DateRange

logger = logging.getLogger(__name__)


def merge_drive(into: DriveStats, other: DriveStats) -> None:
    """Fold ``other`` into an existing drive; ``into`` keeps its initial power-on hour."""
    if len(into.monthly_counts) != len(other.monthly_counts):
        raise ValueError(
            f"Counter length mismatch: {len(into.monthly_counts)} != {len(other.monthly_counts)}"
        )
    for i, count in enumerate(other.monthly_counts):
        if count:
            into.monthly_counts[i] += count

    if other.failure_dates:
        into.failure_dates = list(heapq.merge(into.failure_dates, other.failure_dates))


def merge_tables(
    into: DataCenterStats,
    other: DataCenterStats,
    *,
    policy: CapacityPolicy = "max",
) -> DataCenterStats:
    """
    Fold ``other`` into ``into`` in place and return ``into``.

    ``other`` is left untouched; drives first seen in ``other`` are copied.

    Raises:
        ValueError: If the tables were built for different date ranges
    """
    if into.date_range != other.date_range:
        raise ValueError(f"Cannot merge tables with different date ranges: {into.date_range} vs {other.date_range}")

    for model_name, other_model in other.models.items():
        model_stats = into.model(model_name)

        if other_model.capacity_bytes is not None:
            update_capacity(model_stats, other_model.capacity_bytes, model_name=model_name, policy=policy)

        for serial, other_drive in other_model.drives.items():
            drive = model_stats.drives.get(serial)
            if drive is None:
                drive = model_stats.drives[serial] = other_drive.copy()
            else:
                if other_drive.failure_dates and any(
                    d not in other_drive.failure_dates for d in drive.failure_dates
                ):
                    logger.warning(
                        "Drive %s/%s failed more than once: %s and %s",
                        model_name,
                        serial,
                        [d.isoformat() for d in drive.failure_dates],
                        [d.isoformat() for d in other_drive.failure_dates],
                    )
                merge_drive(drive, other_drive)
            into.update_max_failure(len(drive.failure_dates))

    into.update_max_failure(other.max_failure_count)
    return into


def fold_tables(
    tables: Iterable[DataCenterStats],
    date_range: DateRange,
    *,
    policy: CapacityPolicy = "max",
) -> DataCenterStats:
    """Sequentially merge every table into a fresh one."""
    result = DataCenterStats(date_range=date_range)
    for table in tables:
        merge_tables(result, table, policy=policy)
    return result
