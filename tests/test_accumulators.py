"""Tests for applying records to the aggregation table"""

import logging
from datetime import date

from conftest import make_record

from drive_stats.accumulators import DataCenterStats, DriveStats, ModelStats, apply_record, update_capacity
from drive_stats.config import DateRange


def test_date_range_buckets():
    date_range = DateRange(2013, 2023)
    assert date_range.counter_count == 132
    assert date_range.bucket(date(2013, 1, 31)) == 0
    assert date_range.bucket(date(2013, 12, 1)) == 11
    assert date_range.bucket(date(2023, 12, 31)) == 131
    labels = list(date_range.month_labels())
    assert labels[0] == "2013-01"
    assert labels[13] == "2014-02"
    assert len(labels) == 132


def test_apply_creates_accumulators_lazily(date_range):
    table = DataCenterStats(date_range=date_range)
    assert table.models == {}

    apply_record(table, make_record(day=date(2013, 2, 3), capacity=4000, power_on_hours=17))

    drive = table.models["X"].drives["S1"]
    assert len(drive.monthly_counts) == date_range.counter_count
    assert drive.monthly_counts[1] == 1
    assert drive.drive_days == 1
    assert drive.initial_power_on_hour == 17
    assert drive.failure_dates == []
    assert table.models["X"].capacity_bytes == 4000
    assert table.max_failure_count == 0


def test_apply_is_commutative(date_range):
    """Two records applied in either order give the same table"""
    r1 = make_record(day=date(2013, 1, 1), capacity=1000, power_on_hours=5)
    r2 = make_record(day=date(2013, 3, 9), failure=True, capacity=2000, power_on_hours=5)

    a = DataCenterStats(date_range=date_range)
    apply_record(a, r1)
    apply_record(a, r2)

    b = DataCenterStats(date_range=date_range)
    apply_record(b, r2)
    apply_record(b, r1)

    assert a.models["X"].drives["S1"].monthly_counts == b.models["X"].drives["S1"].monthly_counts
    assert a == b


def test_initial_power_on_hour_is_first_writer_wins(date_range):
    table = DataCenterStats(date_range=date_range)
    apply_record(table, make_record(day=date(2013, 1, 1), power_on_hours=100))
    apply_record(table, make_record(day=date(2013, 1, 2), power_on_hours=124))
    apply_record(table, make_record(day=date(2013, 1, 3), power_on_hours=None))
    assert table.models["X"].drives["S1"].initial_power_on_hour == 100

    # Absent on the first record stays absent
    apply_record(table, make_record(serial="S2", day=date(2013, 1, 1)))
    apply_record(table, make_record(serial="S2", day=date(2013, 1, 2), power_on_hours=9))
    assert table.models["X"].drives["S2"].initial_power_on_hour is None


def test_capacity_is_monotonic_max(date_range, caplog):
    table = DataCenterStats(date_range=date_range)
    with caplog.at_level(logging.WARNING):
        apply_record(table, make_record(capacity=2000))
        apply_record(table, make_record(capacity=1000))
        apply_record(table, make_record(capacity=None))
    assert table.models["X"].capacity_bytes == 2000
    # A smaller value is reported as observed, not as a change
    assert "Capacity mismatch for model X: saw 1000, keeping 2000" in caplog.text
    assert "Capacity changed" not in caplog.text

    caplog.clear()
    with caplog.at_level(logging.WARNING):
        apply_record(table, make_record(capacity=3000))
    assert table.models["X"].capacity_bytes == 3000
    assert "Capacity changed for model X: 2000 -> 3000" in caplog.text


def test_capacity_replace_policy(caplog):
    stats = ModelStats()
    update_capacity(stats, 2000, model_name="X", policy="replace")
    with caplog.at_level(logging.WARNING):
        update_capacity(stats, 1000, model_name="X", policy="replace")
    assert stats.capacity_bytes == 1000
    assert "2000 -> 1000" in caplog.text


def test_failure_dates_sorted_with_duplicates(date_range, caplog):
    table = DataCenterStats(date_range=date_range)
    with caplog.at_level(logging.WARNING):
        for day in [date(2014, 5, 1), date(2013, 7, 2), date(2014, 5, 1), date(2013, 1, 1)]:
            apply_record(table, make_record(day=day, failure=True))
    drive = table.models["X"].drives["S1"]
    assert drive.failure_dates == [date(2013, 1, 1), date(2013, 7, 2), date(2014, 5, 1), date(2014, 5, 1)]
    assert table.max_failure_count == 4
    assert "failed more than once" in caplog.text


def test_max_failure_count_tracks_longest_list(date_range):
    table = DataCenterStats(date_range=date_range)
    apply_record(table, make_record(serial="A", failure=True))
    apply_record(table, make_record(serial="B", failure=True))
    apply_record(table, make_record(serial="B", day=date(2013, 1, 2), failure=True))
    apply_record(table, make_record(serial="C", day=date(2013, 1, 2)))
    assert table.max_failure_count == 2
    assert max(len(d.failure_dates) for _, _, _, d in table.iter_drives()) == 2


def test_same_serial_under_different_models(date_range):
    """Each (model, serial) pair owns an independent accumulator"""
    table = DataCenterStats(date_range=date_range)
    apply_record(table, make_record(model="A", serial="S1"))
    apply_record(table, make_record(model="B", serial="S1", failure=True))
    assert table.models["A"].drives["S1"].failure_dates == []
    assert table.models["B"].drives["S1"].failure_dates == [date(2013, 1, 1)]
    assert table.drive_count() == 2
    assert [(m, s) for m, s, _, _ in table.iter_drives()] == [("A", "S1"), ("B", "S1")]


def test_drive_copy_is_independent(date_range):
    drive = DriveStats.empty(date_range, initial_power_on_hour=3)
    clone = drive.copy()
    clone.monthly_counts[0] += 1
    clone.failure_dates.append(date(2013, 1, 1))
    assert drive.monthly_counts[0] == 0
    assert drive.failure_dates == []
    assert clone.initial_power_on_hour == 3
