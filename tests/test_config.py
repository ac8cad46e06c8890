"""Tests for configuration loading"""

import pytest

from drive_stats.config import (
    DEFAULT_MAX_CAPACITY_BYTES,
    DEFAULT_MIN_CAPACITY_BYTES,
    AggregationSettings,
    ColumnNames,
    DateRange,
    gigabytes,
    load_config,
    settings_from_config,
    terabytes,
)


def test_capacity_units():
    assert gigabytes(40) == 40_000_000_000
    assert terabytes(40) == 40_000_000_000_000
    assert DEFAULT_MIN_CAPACITY_BYTES == gigabytes(40)
    assert DEFAULT_MAX_CAPACITY_BYTES == terabytes(40)


def test_default_config_matches_builtin_defaults():
    """config/drive_stats.yaml spells out the built-in defaults"""
    settings = settings_from_config(load_config())
    assert settings == AggregationSettings()
    assert settings.date_range == DateRange(2013, 2023)
    assert settings.columns == ColumnNames()


def test_empty_config_uses_defaults():
    assert settings_from_config({}) == AggregationSettings()


def test_env_substitution(tmp_path, monkeypatch):
    cfg = tmp_path / "custom.yaml"
    cfg.write_text(
        "workers: ${DRIVE_STATS_TEST_WORKERS}\n"
        "years:\n  first: 2015\n  last: 2016\n"
        "capacity:\n  policy: replace\n"
        "extension: CSV\n"
        "columns:\n  power_on_hours: smart_9_normalized\n"
    )
    monkeypatch.setenv("DRIVE_STATS_TEST_WORKERS", "3")

    settings = settings_from_config(load_config(cfg))
    assert settings.workers == 3
    assert settings.resolved_workers() == 3
    assert settings.date_range == DateRange(2015, 2016)
    assert settings.date_range.counter_count == 24
    assert settings.capacity_policy == "replace"
    assert settings.extension == ".csv"
    assert settings.columns.power_on_hours == "smart_9_normalized"
    assert settings.columns.model == "model"


def test_resolved_workers_defaults_to_cpu_count(monkeypatch):
    monkeypatch.setattr("drive_stats.config.os.cpu_count", lambda: 12)
    assert AggregationSettings().resolved_workers() == 12
    monkeypatch.setattr("drive_stats.config.os.cpu_count", lambda: None)
    assert AggregationSettings().resolved_workers() == 1


@pytest.mark.parametrize(
    "config",
    [
        {"years": {"first": 2020, "last": 2019}},
        {"capacity": {"policy": "latest"}},
        {"capacity": {"min_bytes": 10, "max_bytes": 5}},
        {"workers": 0},
        {"workers": "${UNSET_DRIVE_STATS_VAR}"},
        {"columns": {"vendor": "manufacturer"}},
    ],
)
def test_invalid_config(config):
    with pytest.raises(ValueError):
        settings_from_config(config)


def test_load_config_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")

    bad = tmp_path / "list.yaml"
    bad.write_text("- a\n- b\n")
    with pytest.raises(ValueError, match="mapping"):
        load_config(bad)

    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    assert load_config(empty) == {}
