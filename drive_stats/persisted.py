# drive_stats/persisted.py
"""Aggregated table I/O.

Output layout (one row per model/serial, sorted):
    model, serial_number, capacity_bytes, initial_power_on_hour,
    failure_1 .. failure_<max_failure_count>,
    <first_year>-01 .. <last_year>-12

Empty cells stand for absent values and for zero monthly counts. A previously written
file can be loaded back (read_parsed_stats) and merged with a new run; this is how
incremental runs work.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import polars as pl

from drive_stats.accumulators import DataCenterStats, DriveStats, update_capacity
from drive_stats.config import CapacityPolicy, DateRange
from drive_stats.ingest import read_header, read_rows
from drive_stats.merge import merge_drive, merge_tables
from drive_stats.records import (
    OUTPUT_PREFIX_COLUMNS,
    AggregatedRow,
    RecordParseError,
    aggregated_header,
    months_outside_range,
    parse_aggregated_row,
)

__all__ = [
    "SUPPORTED_OUTPUT_SUFFIXES",
    "UnsupportedOutputFormat",
    "check_existing_output",
    "check_output_path",
    "read_parsed_stats",
    "table_to_frame",
    "write_parsed_stats",
]

logger = logging.getLogger(__name__)

SUPPORTED_OUTPUT_SUFFIXES: tuple[str, ...] = (".csv",)

ERR_UNSUPPORTED_OUTPUT = "Unsupported output format {!r}; expected one of {}"
ERR_MONTHS_OUTSIDE_RANGE = (
    "{} has month columns outside {}..{} ({}); merging would drop them. "
    "Configure years that cover them, or write without merging"
)


class UnsupportedOutputFormat(ValueError):
    pass


def check_output_path(path: Path | str) -> Path:
    """Fail before any work starts if the output format cannot be written."""
    path = Path(path)
    if path.suffix.lower() not in SUPPORTED_OUTPUT_SUFFIXES:
        raise UnsupportedOutputFormat(ERR_UNSUPPORTED_OUTPUT.format(path.suffix, SUPPORTED_OUTPUT_SUFFIXES))
    return path


def check_existing_output(path: Path | str, date_range: DateRange) -> None:
    """
    Fail if an existing output cannot be merged without losing months.

    Raises:
        ValueError: If the file's header has ``YYYY-MM`` columns outside ``date_range``
    """
    path = Path(path)
    if not path.exists():
        return
    outside = months_outside_range(read_header(path), date_range)
    if outside:
        span = outside[0] if len(outside) == 1 else f"{outside[0]}..{outside[-1]}"
        raise ValueError(
            ERR_MONTHS_OUTSIDE_RANGE.format(path, date_range.first_year, date_range.last_year, span)
        )


def _cell(value: int | None) -> str | None:
    # None is written as an empty cell
    return None if value is None else str(value)


def table_to_frame(table: DataCenterStats) -> pl.DataFrame:
    """Render the table as an all-Utf8 DataFrame in output column order."""
    header = list(aggregated_header(table.date_range, table.max_failure_count))
    n_failure_slots = table.max_failure_count

    rows: list[list[str | None]] = []
    for model_name, serial, model_stats, drive in table.iter_drives():
        failures: list[str | None] = [d.isoformat() for d in drive.failure_dates]
        failures += [None] * (n_failure_slots - len(failures))
        counts = [str(c) if c else None for c in drive.monthly_counts]
        rows.append([
            model_name or None,
            serial or None,
            _cell(model_stats.capacity_bytes),
            _cell(drive.initial_power_on_hour),
            *failures,
            *counts,
        ])

    return pl.DataFrame(rows, schema=dict.fromkeys(header, pl.Utf8), orient="row")


def _apply_aggregated_row(
    table: DataCenterStats,
    row: AggregatedRow,
    *,
    policy: CapacityPolicy,
) -> None:
    """Fold one persisted row into ``table`` using the merge rules."""
    model_stats = table.model(row.model)
    if row.capacity_bytes is not None:
        update_capacity(model_stats, row.capacity_bytes, model_name=row.model, policy=policy)

    incoming = DriveStats(
        monthly_counts=list(row.monthly_counts),
        initial_power_on_hour=row.initial_power_on_hour,
        failure_dates=list(row.failure_dates),
    )
    drive = model_stats.drives.get(row.serial_number)
    if drive is None:
        drive = model_stats.drives[row.serial_number] = incoming
    else:
        # Duplicate (model, serial) rows only appear in hand-edited files.
        logger.warning("Duplicate row for %s/%s; merging", row.model, row.serial_number)
        merge_drive(drive, incoming)
    table.update_max_failure(len(drive.failure_dates))


def read_parsed_stats(
    path: Path | str,
    date_range: DateRange,
    *,
    policy: CapacityPolicy = "max",
) -> DataCenterStats:
    """
    Load a previously written aggregate table.

    Malformed rows are logged and skipped, like raw input rows.

    Raises:
        ValueError: If the file lacks the model/serial_number columns, or has month
            columns outside ``date_range`` (see check_existing_output)
    """
    path = Path(path)
    check_existing_output(path, date_range)
    table = DataCenterStats(date_range=date_range)

    n_rows = 0
    for line, raw in read_rows(path, required_columns=OUTPUT_PREFIX_COLUMNS[:2]):
        try:
            if isinstance(raw, RecordParseError):
                raise raw
            row = parse_aggregated_row(raw, date_range)
        except RecordParseError as exc:
            logger.warning("Skipping %s:%d: %s", path, line, exc)
            continue
        _apply_aggregated_row(table, row, policy=policy)
        n_rows += 1

    logger.info("Loaded %d drives from %s", n_rows, path)
    return table


def write_parsed_stats(
    table: DataCenterStats,
    path: Path | str,
    *,
    merge: bool = True,
    policy: CapacityPolicy = "max",
) -> DataCenterStats:
    """
    Write the aggregate table, merging with an existing file at ``path`` first.

    The existing file is fully read before being replaced. The new content is written
    to a sibling temp file and renamed over the target.

    Returns:
        The table that was written (the merged one in incremental mode)
    """
    path = check_output_path(path)

    if merge and path.exists():
        logger.info("Merging with existing output %s", path)
        previous = read_parsed_stats(path, table.date_range, policy=policy)
        table = merge_tables(previous, table, policy=policy)

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    table_to_frame(table).write_csv(tmp_path)
    os.replace(tmp_path, path)

    logger.info(
        "Wrote %d drives across %d models to %s (%d failure columns)",
        table.drive_count(),
        len(table.models),
        path,
        table.max_failure_count,
    )
    return table

