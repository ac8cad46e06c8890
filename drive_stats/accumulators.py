# drive_stats/accumulators.py
"""
Per-drive, per-model and table-level accumulators.

Field combine rules (shared with the merge reducer in drive_stats.merge):
- monthly_counts: sum, one drive-day per record
- initial_power_on_hour: first writer wins, set only when the drive is created
- failure_dates: sorted insert, duplicates kept
- capacity_bytes (model): monotonic max by default, see CapacityPolicy
"""

from __future__ import annotations

import bisect
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date

from drive_stats.config import CapacityPolicy, DateRange
from drive_stats.records import DriveRecord

logger = logging.getLogger(__name__)


@dataclass
class DriveStats:
    monthly_counts: list[int]
    initial_power_on_hour: int | None = None
    failure_dates: list[date] = field(default_factory=list)

    @classmethod
    def empty(cls, date_range: DateRange, initial_power_on_hour: int | None = None) -> DriveStats:
        return cls(monthly_counts=[0] * date_range.counter_count, initial_power_on_hour=initial_power_on_hour)

    def copy(self) -> DriveStats:
        return DriveStats(
            monthly_counts=list(self.monthly_counts),
            initial_power_on_hour=self.initial_power_on_hour,
            failure_dates=list(self.failure_dates),
        )

    @property
    def drive_days(self) -> int:
        return sum(self.monthly_counts)


@dataclass
class ModelStats:
    drives: dict[str, DriveStats] = field(default_factory=dict)
    capacity_bytes: int | None = None


@dataclass
class DataCenterStats:
    """Aggregation table: model name -> serial number -> drive accumulator."""

    date_range: DateRange = field(default_factory=DateRange)
    models: dict[str, ModelStats] = field(default_factory=dict)
    max_failure_count: int = 0

    def update_max_failure(self, failure_count: int) -> None:
        if failure_count > self.max_failure_count:
            self.max_failure_count = failure_count

    def model(self, name: str) -> ModelStats:
        """Get or create the model accumulator."""
        stats = self.models.get(name)
        if stats is None:
            stats = self.models[name] = ModelStats()
        return stats

    def drive_count(self) -> int:
        return sum(len(m.drives) for m in self.models.values())

    def iter_drives(self) -> Iterator[tuple[str, str, ModelStats, DriveStats]]:
        """Yield ``(model, serial, model_stats, drive_stats)`` sorted by model then serial."""
        for model_name in sorted(self.models):
            model_stats = self.models[model_name]
            for serial in sorted(model_stats.drives):
                yield model_name, serial, model_stats, model_stats.drives[serial]


def update_capacity(
    model_stats: ModelStats,
    capacity_bytes: int,
    *,
    model_name: str,
    policy: CapacityPolicy = "max",
) -> None:
    """
    Combine a plausible capacity into the model accumulator.

    A change of an already known value is reported as an anomaly; the report never
    affects which value is kept.
    """
    current = model_stats.capacity_bytes
    if current is None:
        model_stats.capacity_bytes = capacity_bytes
        return
    if current == capacity_bytes:
        return

    if policy == "replace":
        new_value = capacity_bytes
    else:
        new_value = max(current, capacity_bytes)

    if new_value == current:
        logger.warning("Capacity mismatch for model %s: saw %s, keeping %s", model_name, capacity_bytes, current)
        return

    logger.warning("Capacity changed for model %s: %s -> %s", model_name, current, new_value)
    model_stats.capacity_bytes = new_value


def apply_record(table: DataCenterStats, record: DriveRecord, *, policy: CapacityPolicy = "max") -> None:
    """Apply one drive-day record to the table."""
    model_stats = table.model(record.model)

    if record.capacity_bytes is not None:
        update_capacity(model_stats, record.capacity_bytes, model_name=record.model, policy=policy)

    drive = model_stats.drives.get(record.serial_number)
    if drive is None:
        drive = model_stats.drives[record.serial_number] = DriveStats.empty(
            table.date_range, initial_power_on_hour=record.power_on_hours
        )

    drive.monthly_counts[table.date_range.bucket(record.date)] += 1

    if record.failure:
        if any(d != record.date for d in drive.failure_dates):
            logger.warning(
                "Drive %s/%s failed more than once: %s, new failure on %s",
                record.model,
                record.serial_number,
                [d.isoformat() for d in drive.failure_dates],
                record.date.isoformat(),
            )
        bisect.insort_left(drive.failure_dates, record.date)
        table.update_max_failure(len(drive.failure_dates))
