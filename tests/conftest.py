"""Shared fixtures for drive stats tests"""

from __future__ import annotations

from datetime import date
from pathlib import Path

import polars as pl
import pytest

from drive_stats.config import DateRange, gigabytes
from drive_stats.records import DriveRecord, ParseRules

SNAPSHOT_COLUMNS = ["date", "serial_number", "model", "capacity_bytes", "failure", "smart_9_raw"]


@pytest.fixture
def date_range() -> DateRange:
    return DateRange(2013, 2023)


@pytest.fixture
def rules(date_range: DateRange) -> ParseRules:
    """Default rules with a lower capacity floor so 1 GB test drives count as plausible."""
    return ParseRules(date_range=date_range, min_capacity_bytes=gigabytes(1))


def make_record(
    model: str = "X",
    serial: str = "S1",
    day: date = date(2013, 1, 1),
    *,
    failure: bool = False,
    capacity: int | None = None,
    power_on_hours: int | None = None,
) -> DriveRecord:
    return DriveRecord(
        model=model,
        serial_number=serial,
        date=day,
        failure=failure,
        capacity_bytes=capacity,
        power_on_hours=power_on_hours,
    )


def write_snapshot(path: Path, rows: list[dict[str, object]], columns: list[str] | None = None) -> Path:
    """Write a daily snapshot CSV; missing keys become empty cells."""
    columns = columns or SNAPSHOT_COLUMNS
    data = {c: [None if r.get(c) is None else str(r[c]) for r in rows] for c in columns}
    path.parent.mkdir(parents=True, exist_ok=True)
    pl.DataFrame(data, schema=dict.fromkeys(columns, pl.Utf8)).write_csv(path)
    return path
