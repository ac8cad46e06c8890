# drive_stats/records.py
"""Row-level decoding of drive snapshot records.

Two row shapes are understood:
- raw daily snapshots (one row per drive per day), decoded into ``DriveRecord``;
- rows of the aggregated output table, decoded into ``AggregatedRow`` so that a
  previous result can be loaded back and merged with a new run.

Every violation raises ``RecordParseError``; callers decide whether to skip the row.
"""

from __future__ import annotations

import calendar
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

from drive_stats.config import (
    DEFAULT_MAX_CAPACITY_BYTES,
    DEFAULT_MIN_CAPACITY_BYTES,
    ColumnNames,
    DateRange,
)

__all__ = [
    "OUTPUT_PREFIX_COLUMNS",
    "AggregatedRow",
    "DriveRecord",
    "ParseRules",
    "RecordParseError",
    "aggregated_header",
    "date_from_file_name",
    "failure_column",
    "months_outside_range",
    "parse_aggregated_row",
    "parse_capacity",
    "parse_date",
    "parse_failure",
    "parse_int",
    "parse_raw_row",
    "strip_all_whitespace",
]

OUTPUT_PREFIX_COLUMNS: tuple[str, ...] = ("model", "serial_number", "capacity_bytes", "initial_power_on_hour")
FAILURE_COLUMN_PREFIX = "failure_"

# Zero padding is optional: older outputs were written as e.g. 2013-1-5.
_DATE_RE = re.compile(r"^(?P<year>\d{4})-(?P<month>\d{1,2})-(?P<day>\d{1,2})$")
_INT_RE = re.compile(r"^[+-]?\d+$")
_MONTH_COL_RE = re.compile(r"^(?P<year>\d{4})-(?P<month>\d{2})$")
_WHITESPACE_RE = re.compile(r"\s+")

ERR_BAD_DATE = "expected YYYY-MM-DD"
ERR_YEAR_RANGE = "year outside supported range {}..{}"
ERR_MONTH_RANGE = "month must be in 1..12"
ERR_DAY_RANGE = "day must be in 1..{}"
ERR_BAD_INT = "expected a signed integer"
ERR_MISSING = "required value is missing"


class RecordParseError(ValueError):
    """A single row (or one of its fields) could not be decoded."""

    def __init__(self, field_name: str, value: object, reason: str) -> None:
        self.field = field_name
        self.value = value
        self.reason = reason
        super().__init__(f"{field_name}={value!r}: {reason}")


@dataclass(frozen=True)
class ParseRules:
    date_range: DateRange = field(default_factory=DateRange)
    min_capacity_bytes: int = DEFAULT_MIN_CAPACITY_BYTES
    max_capacity_bytes: int = DEFAULT_MAX_CAPACITY_BYTES
    columns: ColumnNames = field(default_factory=ColumnNames)

    def is_plausible_capacity(self, value: int) -> bool:
        return self.min_capacity_bytes <= value <= self.max_capacity_bytes


@dataclass(frozen=True)
class DriveRecord:
    """One drive-day observation."""

    model: str
    serial_number: str
    date: date
    failure: bool
    capacity_bytes: int | None = None
    # Non-negative but outside the plausible range; never applied, kept for diagnostics.
    rejected_capacity_bytes: int | None = None
    power_on_hours: int | None = None


@dataclass(frozen=True)
class AggregatedRow:
    """One (model, serial) row of a previously written aggregate table."""

    model: str
    serial_number: str
    capacity_bytes: int | None
    initial_power_on_hour: int | None
    failure_dates: tuple[date, ...]
    monthly_counts: tuple[int, ...]


def _is_blank(text: str | None) -> bool:
    return text is None or not text.strip()


def strip_all_whitespace(text: str | None) -> str:
    """Remove every whitespace character, not only leading/trailing ones."""
    if text is None:
        return ""
    return _WHITESPACE_RE.sub("", text)


def parse_int(text: str | None, field_name: str) -> int:
    if _is_blank(text):
        raise RecordParseError(field_name, text, ERR_MISSING)
    value = text.strip()  # type: ignore[union-attr]
    if not _INT_RE.match(value):
        raise RecordParseError(field_name, text, ERR_BAD_INT)
    return int(value)


def parse_date(text: str | None, date_range: DateRange, field_name: str = "date") -> date:
    """
    Parse ``YYYY-MM-DD`` with calendar validation.

    Raises:
        RecordParseError: On malformed text, unsupported year, month outside 1..12,
            or a day the month does not have. Values are never clamped.
    """
    if _is_blank(text):
        raise RecordParseError(field_name, text, ERR_MISSING)

    m = _DATE_RE.match(text.strip())  # type: ignore[union-attr]
    if not m:
        raise RecordParseError(field_name, text, ERR_BAD_DATE)

    year, month, day = int(m.group("year")), int(m.group("month")), int(m.group("day"))
    if not date_range.contains_year(year):
        raise RecordParseError(field_name, text, ERR_YEAR_RANGE.format(date_range.first_year, date_range.last_year))
    if not 1 <= month <= 12:
        raise RecordParseError(field_name, text, ERR_MONTH_RANGE)

    days_in_month = calendar.monthrange(year, month)[1]
    if not 1 <= day <= days_in_month:
        raise RecordParseError(field_name, text, ERR_DAY_RANGE.format(days_in_month))

    return date(year, month, day)


def parse_capacity(
    text: str | None,
    rules: ParseRules,
    field_name: str = "capacity_bytes",
) -> tuple[int | None, int | None]:
    """
    Classify a capacity cell.

    Returns:
        ``(plausible, rejected)``: ``plausible`` is set for in-range values, ``rejected``
        for non-negative values outside the range. Negative means unknown and yields
        ``(None, None)``, as does an empty cell.
    """
    if _is_blank(text):
        return None, None

    value = parse_int(text, field_name)
    if value < 0:
        return None, None
    if not rules.is_plausible_capacity(value):
        return None, value
    return value, None


def parse_failure(text: str | None, field_name: str = "failure") -> bool:
    return parse_int(text, field_name) != 0


def _parse_optional_counter(text: str | None, field_name: str) -> int | None:
    if _is_blank(text):
        return None
    # SMART raw values are sometimes exported as floats ("1234.0")
    value = text.strip()  # type: ignore[union-attr]
    if value.endswith(".0"):
        value = value[:-2]
    parsed = parse_int(value, field_name)
    return parsed if parsed >= 0 else None


def date_from_file_name(path: Path | str, date_range: DateRange) -> date | None:
    """Daily snapshot files are named ``YYYY-MM-DD.csv``; return that date if valid."""
    try:
        return parse_date(Path(path).stem, date_range, field_name="file_name")
    except RecordParseError:
        return None


def parse_raw_row(
    row: Mapping[str, str | None],
    rules: ParseRules,
    *,
    default_date: date | None = None,
) -> DriveRecord:
    """
    Decode one raw daily snapshot row.

    Args:
        row: Column name -> raw cell text (None for missing cells)
        rules: Column names, capacity range and supported dates
        default_date: Used when the row has no date cell (date derived from the file name)

    Raises:
        RecordParseError: If any required field is malformed
    """
    cols = rules.columns

    model = strip_all_whitespace(row.get(cols.model))
    serial_number = strip_all_whitespace(row.get(cols.serial_number))

    raw_date = row.get(cols.date)
    if _is_blank(raw_date) and default_date is not None:
        day = default_date
    else:
        day = parse_date(raw_date, rules.date_range, cols.date)

    failure = parse_failure(row.get(cols.failure), cols.failure)
    capacity, rejected = parse_capacity(row.get(cols.capacity_bytes), rules, cols.capacity_bytes)
    power_on_hours = _parse_optional_counter(row.get(cols.power_on_hours), cols.power_on_hours)

    return DriveRecord(
        model=model,
        serial_number=serial_number,
        date=day,
        failure=failure,
        capacity_bytes=capacity,
        rejected_capacity_bytes=rejected,
        power_on_hours=power_on_hours,
    )


# -------------------------------------------------------------------------------------------------
# Aggregated (output) schema
# -------------------------------------------------------------------------------------------------


def failure_column(slot: int) -> str:
    """Header of the 1-based failure date slot."""
    return f"{FAILURE_COLUMN_PREFIX}{slot}"


def _failure_slot(column: str) -> int | None:
    if not column.startswith(FAILURE_COLUMN_PREFIX):
        return None
    suffix = column[len(FAILURE_COLUMN_PREFIX) :]
    return int(suffix) if suffix.isdigit() else None


def _month_bucket(column: str, date_range: DateRange) -> int | None:
    """Bucket index for a ``YYYY-MM`` header, -1 if outside the range, None if not a month column."""
    m = _MONTH_COL_RE.match(column)
    if not m:
        return None
    year, month = int(m.group("year")), int(m.group("month"))
    if not 1 <= month <= 12:
        return None
    if not date_range.contains_year(year):
        return -1
    return date_range.bucket(date(year, month, 1))


def parse_aggregated_row(row: Mapping[str, str | None], date_range: DateRange) -> AggregatedRow:
    """
    Decode one row of the aggregated output schema.

    Empty cells mean absent (capacity, power-on hours, failure slots) or zero (monthly
    counters). A non-zero count in a month column outside ``date_range`` cannot be kept
    without losing data, so the row fails.
    """
    model = strip_all_whitespace(row.get("model"))
    serial_number = strip_all_whitespace(row.get("serial_number"))

    capacity_text = row.get("capacity_bytes")
    capacity = None if _is_blank(capacity_text) else parse_int(capacity_text, "capacity_bytes")
    if capacity is not None and capacity < 0:
        capacity = None

    poh_text = row.get("initial_power_on_hour")
    initial_power_on_hour = None if _is_blank(poh_text) else parse_int(poh_text, "initial_power_on_hour")

    slots: list[tuple[int, date]] = []
    counts = [0] * date_range.counter_count
    for column, text in row.items():
        slot = _failure_slot(column)
        if slot is not None:
            if not _is_blank(text):
                slots.append((slot, parse_date(text, date_range, column)))
            continue

        bucket = _month_bucket(column, date_range)
        if bucket is None or _is_blank(text):
            continue
        count = parse_int(text, column)
        if count < 0:
            raise RecordParseError(column, text, "drive-day count must not be negative")
        if bucket < 0:
            if count:
                raise RecordParseError(column, text, "month outside supported range")
            continue
        counts[bucket] += count

    failure_dates = tuple(sorted(day for _, day in sorted(slots)))

    return AggregatedRow(
        model=model,
        serial_number=serial_number,
        capacity_bytes=capacity,
        initial_power_on_hour=initial_power_on_hour,
        failure_dates=failure_dates,
        monthly_counts=tuple(counts),
    )


def aggregated_header(date_range: DateRange, max_failure_count: int) -> Sequence[str]:
    """Column order of the aggregated output table."""
    return [
        *OUTPUT_PREFIX_COLUMNS,
        *(failure_column(slot) for slot in range(1, max_failure_count + 1)),
        *date_range.month_labels(),
    ]


def months_outside_range(header: Iterable[str], date_range: DateRange) -> list[str]:
    """``YYYY-MM`` columns of an aggregated header that ``date_range`` has no bucket for."""
    return [column for column in header if _month_bucket(column, date_range) == -1]
