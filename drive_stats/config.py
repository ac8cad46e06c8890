"""
Configuration loader for drive stats aggregation runs.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from dataclasses import dataclass, field, fields
from datetime import date
from pathlib import Path
from typing import Any, Literal, cast

import yaml

CapacityPolicy = Literal["max", "replace"]
CAPACITY_POLICIES: tuple[str, ...] = ("max", "replace")

MONTHS_PER_YEAR = 12

# Range covered by the public Backblaze drive stats archive at the time of writing.
DEFAULT_FIRST_YEAR = 2013
DEFAULT_LAST_YEAR = 2023


def gigabytes(count: int) -> int:
    """Decimal gigabytes to bytes (drive vendors do not use binary units)."""
    return count * 1000 * 1000 * 1000


def terabytes(count: int) -> int:
    return gigabytes(count) * 1000


# Very old drives
DEFAULT_MIN_CAPACITY_BYTES = gigabytes(40)
# Modern HAMR drives
DEFAULT_MAX_CAPACITY_BYTES = terabytes(40)


@dataclass(frozen=True)
class DateRange:
    """Supported calendar years; every month in the range owns one counter bucket."""

    first_year: int = DEFAULT_FIRST_YEAR
    last_year: int = DEFAULT_LAST_YEAR

    def __post_init__(self) -> None:
        if self.last_year < self.first_year:
            raise ValueError(f"last_year ({self.last_year}) must not precede first_year ({self.first_year})")

    @property
    def counter_count(self) -> int:
        return (self.last_year - self.first_year + 1) * MONTHS_PER_YEAR

    def contains_year(self, year: int) -> bool:
        return self.first_year <= year <= self.last_year

    def bucket(self, day: date) -> int:
        """Index of the (year, month) counter for ``day``."""
        if not self.contains_year(day.year):
            raise ValueError(f"Date {day.isoformat()} outside supported years {self.first_year}..{self.last_year}")
        return (day.year - self.first_year) * MONTHS_PER_YEAR + (day.month - 1)

    def month_labels(self) -> Iterator[str]:
        """Yield ``YYYY-MM`` labels in bucket order."""
        for year in range(self.first_year, self.last_year + 1):
            for month in range(1, MONTHS_PER_YEAR + 1):
                yield f"{year}-{month:02d}"


@dataclass(frozen=True)
class ColumnNames:
    """Input CSV column names. Defaults follow the Backblaze daily snapshot layout."""

    model: str = "model"
    serial_number: str = "serial_number"
    date: str = "date"
    capacity_bytes: str = "capacity_bytes"
    failure: str = "failure"
    power_on_hours: str = "smart_9_raw"


@dataclass(frozen=True)
class AggregationSettings:
    date_range: DateRange = field(default_factory=DateRange)
    min_capacity_bytes: int = DEFAULT_MIN_CAPACITY_BYTES
    max_capacity_bytes: int = DEFAULT_MAX_CAPACITY_BYTES
    columns: ColumnNames = field(default_factory=ColumnNames)
    extension: str = ".csv"
    workers: int | None = None
    capacity_policy: CapacityPolicy = "max"

    def resolved_workers(self) -> int:
        """Worker pool size; falls back to the available hardware parallelism."""
        if self.workers is not None:
            return self.workers
        return os.cpu_count() or 1


def default_config_path() -> Path:
    # config/drive_stats.yaml relative to project root
    return Path(__file__).parent.parent / "config" / "drive_stats.yaml"


def load_config(config_path: Path | str | None = None) -> dict[str, Any]:
    """
    Load configuration from YAML file with environment variable substitution.

    Args:
        config_path: Path to config file. If None, uses default config/drive_stats.yaml

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If the config file does not exist
        ValueError: If the YAML root is not a mapping
    """
    config_path = default_config_path() if config_path is None else Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        config: dict[str, Any] = {}
    elif not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping, got {type(data).__name__}")
    else:
        config = cast(dict[str, Any], data)

    return cast(dict[str, Any], _substitute_env_vars(config))


def _substitute_env_vars(obj: Any) -> Any:
    """Recursively substitute ${VAR} patterns with environment variables."""
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item) for item in obj]
    if isinstance(obj, str) and obj.startswith("${") and obj.endswith("}"):
        var_name = obj[2:-1]
        return os.getenv(var_name, obj)  # fall back to original if unset
    return obj


def _optional_int(value: Any, name: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as err:
        raise ValueError(f"{name} must be an integer, got {value!r}") from err


def settings_from_config(config: dict[str, Any] | None = None) -> AggregationSettings:
    """
    Build typed aggregation settings from a config mapping.

    Args:
        config: Config dict. If None, loads default config.

    Returns:
        AggregationSettings with defaults for every missing key

    Raises:
        ValueError: On inconsistent or unsupported values
    """
    if config is None:
        config = load_config()

    years = config.get("years") or {}
    date_range = DateRange(
        first_year=_optional_int(years.get("first"), "years.first") or DEFAULT_FIRST_YEAR,
        last_year=_optional_int(years.get("last"), "years.last") or DEFAULT_LAST_YEAR,
    )

    capacity = config.get("capacity") or {}
    min_capacity = _optional_int(capacity.get("min_bytes"), "capacity.min_bytes")
    max_capacity = _optional_int(capacity.get("max_bytes"), "capacity.max_bytes")
    min_capacity = DEFAULT_MIN_CAPACITY_BYTES if min_capacity is None else min_capacity
    max_capacity = DEFAULT_MAX_CAPACITY_BYTES if max_capacity is None else max_capacity
    if min_capacity < 0 or min_capacity > max_capacity:
        raise ValueError(f"Invalid capacity range: [{min_capacity}, {max_capacity}]")

    policy = str(capacity.get("policy", "max"))
    if policy not in CAPACITY_POLICIES:
        raise ValueError(f"capacity.policy must be one of {CAPACITY_POLICIES}, got {policy!r}")

    column_overrides = {k: str(v) for k, v in (config.get("columns") or {}).items()}
    unknown = sorted(set(column_overrides) - {f.name for f in fields(ColumnNames)})
    if unknown:
        raise ValueError(f"Unknown columns in config: {unknown}")
    columns = ColumnNames(**column_overrides)

    workers = _optional_int(config.get("workers"), "workers")
    if workers is not None and workers < 1:
        raise ValueError(f"workers must be positive, got {workers}")

    extension = str(config.get("extension", ".csv"))
    if not extension.startswith("."):
        extension = f".{extension}"

    return AggregationSettings(
        date_range=date_range,
        min_capacity_bytes=min_capacity,
        max_capacity_bytes=max_capacity,
        columns=columns,
        extension=extension.lower(),
        workers=workers,
        capacity_policy=cast(CapacityPolicy, policy),
    )
