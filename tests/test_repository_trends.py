from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime

from backend.domain.models import ExpenseRecord, ExpenseType, OdometerEventType, UsageRecord
from backend.repository.data_repository import DEMO_GROUP_ID, DataRepository
from backend.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    base = get_settings()
    return replace(base, database_path=tmp_path / filename)


def _repository(tmp_path, filename: str) -> DataRepository:
    repository = DataRepository(_build_test_settings(tmp_path, filename))
    repository.initialize_database()
    return repository


def test_fairness_trend_upsert_is_idempotent(tmp_path):
    repository = _repository(tmp_path, "trends.db")
    start = datetime(2025, 5, 1)
    end = datetime(2025, 5, 31, 23, 59, 59, 999999)

    assert repository.upsert_fairness_trend("g1", start, end, 75.5) is True
    assert repository.upsert_fairness_trend("g1", start, end, 75.5) is False
    assert repository.count_fairness_trends("g1") == 1
    assert repository.find_fairness_trend("g1", start, end) == 75.5

    assert repository.upsert_fairness_trend("g1", start, end, 80.0) is True
    assert repository.count_fairness_trends("g1") == 1
    assert repository.find_fairness_trend("g1", start, end) == 80.0


def test_distinct_periods_create_distinct_snapshots(tmp_path):
    repository = _repository(tmp_path, "periods.db")
    repository.upsert_fairness_trend("g1", datetime(2025, 4, 1), datetime(2025, 4, 30), 60.0)
    repository.upsert_fairness_trend("g1", datetime(2025, 5, 1), datetime(2025, 5, 31), 60.0)
    repository.upsert_fairness_trend("g2", datetime(2025, 5, 1), datetime(2025, 5, 31), 60.0)

    assert repository.count_fairness_trends("g1") == 2
    assert repository.count_fairness_trends("g2") == 1
    assert repository.find_fairness_trend("g1", datetime(2025, 5, 1), datetime(2025, 5, 30)) is None


def test_missing_usage_share_round_trips_as_nan(tmp_path):
    repository = _repository(tmp_path, "usage.db")
    repository.add_usage_record(
        UsageRecord(
            group_id="g1",
            user_id="u1",
            period_start=datetime(2025, 5, 1),
            period_end=datetime(2025, 5, 7),
            ownership_share=0.5,
            usage_share=math.nan,
            total_usage_hours=12.0,
        )
    )

    records = repository.list_usage_records("g1", datetime(2025, 5, 5), datetime(2025, 6, 1))
    assert len(records) == 1
    assert math.isnan(records[0].usage_share)
    assert repository.group_has_usage_signals("g1")
    assert not repository.group_has_usage_signals("g2")
    assert repository.list_usage_records("g1", datetime(2025, 5, 8), datetime(2025, 6, 1)) == []


def test_active_bookings_exclude_cancelled_and_no_show(tmp_path):
    repository = _repository(tmp_path, "bookings.db")
    day = datetime(2025, 6, 2)
    repository.create_booking("b1", "g1", "u1", day.replace(hour=9), day.replace(hour=11))
    repository.create_booking("b2", "g1", "u1", day.replace(hour=12), day.replace(hour=13), "Cancelled")
    repository.create_booking("b3", "g1", "u2", day.replace(hour=14), day.replace(hour=15), "NoShow")
    repository.create_booking("b4", "g1", "u2", day.replace(hour=16), day.replace(hour=18), "Pending")

    bookings = repository.list_active_bookings("g1", day, day.replace(hour=23))

    assert [booking.status for booking in bookings] == ["Confirmed", "Pending"]


def test_completed_trips_carry_odometer_events(tmp_path):
    repository = _repository(tmp_path, "trips.db")
    start = datetime(2025, 6, 2, 9)
    end = datetime(2025, 6, 2, 12)
    repository.create_booking("b1", "g1", "u1", start, end, "Completed")
    repository.add_odometer_event("b1", OdometerEventType.CHECK_IN, 1000)
    repository.add_odometer_event("b1", OdometerEventType.CHECK_OUT, 1085)
    repository.create_booking("b2", "g1", "u1", datetime(2025, 6, 3, 9), datetime(2025, 6, 3, 10))

    trips = repository.list_completed_trips("g1", datetime(2025, 6, 1), datetime(2025, 6, 30))

    assert [trip.booking_id for trip in trips] == ["b1"]
    assert [event.odometer for event in trips[0].events] == [1000, 1085]


def test_expenses_filtered_by_date(tmp_path):
    repository = _repository(tmp_path, "expenses.db")
    for incurred in (datetime(2025, 1, 10), datetime(2025, 3, 10), datetime(2025, 7, 10)):
        repository.add_expense(
            "g1",
            ExpenseRecord(
                amount=100.0,
                expense_type=ExpenseType.FUEL,
                date_incurred=incurred,
                description="Fuel",
            ),
        )

    expenses = repository.list_expenses("g1", datetime(2025, 2, 1), datetime(2025, 6, 30))

    assert [expense.date_incurred for expense in expenses] == [datetime(2025, 3, 10)]


def test_seed_runs_once(tmp_path):
    repository = _repository(tmp_path, "seed.db")
    repository.seed_synthetic_data()
    repository.seed_synthetic_data()

    group = repository.get_group(DEMO_GROUP_ID)
    assert group is not None
    assert group.member_count == 3
    assert len(repository.list_vehicles(DEMO_GROUP_ID)) == 1
    assert repository.group_has_usage_signals(DEMO_GROUP_ID)
    assert repository.get_group("missing") is None
