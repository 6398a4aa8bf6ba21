from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta

import pandas as pd
import pytest

from backend.domain.models import UsageDayBucket, UsageRecord
from backend.repository.data_repository import DataRepository
from backend.services.forecast_service import (
    ForecastService,
    build_daily_usage,
    detect_usage_anomalies,
    forecast_days,
    predict_bottlenecks,
    predict_peak_hours,
)
from backend.utils.config import get_settings


GROUP_ID = "group-forecast"
NOW = datetime(2025, 6, 15, 12, 0)


def _build_test_settings(tmp_path, filename: str):
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, advisory_enabled=False)


def _service(tmp_path, filename: str) -> tuple[ForecastService, DataRepository]:
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.create_group(GROUP_ID, "Forecast Group")
    return ForecastService(repository=repository, settings=settings), repository


def _daily_record(day: datetime, hours: float, user_id: str = "u1") -> UsageRecord:
    return UsageRecord(
        group_id=GROUP_ID,
        user_id=user_id,
        period_start=day,
        period_end=day + timedelta(days=1) - timedelta(seconds=1),
        ownership_share=1.0,
        usage_share=1.0,
        total_usage_hours=hours,
    )


def _buckets(hours: list[float]) -> list[UsageDayBucket]:
    start = date(2025, 6, 1)
    return [UsageDayBucket(date=start + timedelta(days=i), hours=value) for i, value in enumerate(hours)]


def test_spike_is_detected_on_the_jump_day():
    anomalies = detect_usage_anomalies(_buckets([10, 10, 30]))

    assert len(anomalies) == 1
    assert anomalies[0].description == "Sudden usage spike"
    assert anomalies[0].period_start == date(2025, 6, 3)


def test_drop_is_detected_on_the_fall_day():
    anomalies = detect_usage_anomalies(_buckets([30, 30, 10]))

    assert len(anomalies) == 1
    assert anomalies[0].description == "Sudden usage drop"
    assert anomalies[0].period_end == date(2025, 6, 3)


def test_zero_previous_day_is_not_compared():
    assert detect_usage_anomalies(_buckets([0, 10, 10])) == []


def test_daily_usage_spreads_hours_across_covered_days():
    record = UsageRecord(
        group_id=GROUP_ID,
        user_id="u1",
        period_start=datetime(2025, 6, 1),
        period_end=datetime(2025, 6, 4, 23, 59),
        ownership_share=1.0,
        usage_share=1.0,
        total_usage_hours=8.0,
    )

    daily = build_daily_usage([record, _daily_record(datetime(2025, 6, 2), 3.0)])

    assert list(daily.round(2)) == [2.0, 5.0, 2.0, 2.0]


def test_unknown_group_returns_none(tmp_path):
    service, _ = _service(tmp_path, "unknown.db")

    assert service.forecast("missing", now=NOW) is None


def test_group_without_rows_reports_insufficient_history(tmp_path):
    service, _ = _service(tmp_path, "empty.db")

    result = service.forecast(GROUP_ID, now=NOW)

    assert result is not None
    assert result.insufficient_history
    assert result.next_30_days == []


def test_short_history_reports_insufficient_history(tmp_path):
    service, repository = _service(tmp_path, "short.db")
    for offset in range(14):
        repository.add_usage_record(_daily_record(datetime(2025, 6, 1) + timedelta(days=offset), 2.0))

    result = service.forecast(GROUP_ID, now=NOW)

    assert result is not None
    assert result.insufficient_history
    assert result.peak_hours == []
    assert result.anomalies == []


def test_growing_usage_produces_growth_insight(tmp_path):
    service, repository = _service(tmp_path, "growth.db")
    first_day = datetime(2025, 4, 16)
    for offset in range(60):
        hours = 2.0 if offset < 30 else 4.0
        repository.add_usage_record(_daily_record(first_day + timedelta(days=offset), hours))

    result = service.forecast(GROUP_ID, now=NOW)

    assert result is not None
    assert not result.insufficient_history
    assert len(result.next_30_days) == 30
    assert result.next_30_days[0].date == date(2025, 6, 15)
    assert all(0.4 <= day.confidence <= 0.9 for day in result.next_30_days)
    assert "Usage increased 100% compared to previous month" in result.insights
    assert "Usage increased significantly compared to earlier period" in result.insights
    assert "Evaluate adding a second vehicle" in [item.action for item in result.recommendations]
    assert result.anomalies == []
    assert [peak.hour for peak in result.peak_hours] == [8, 9, 18, 19, 14]
    assert len(result.member_likelihoods) == 28
    weekend = [item for item in result.member_likelihoods if item.day_of_week in (0, 6)]
    assert all(item.likelihood == pytest.approx(0.6) for item in weekend)


def test_steady_usage_has_no_growth_recommendation(tmp_path):
    service, repository = _service(tmp_path, "steady.db")
    first_day = datetime(2025, 4, 16)
    for offset in range(60):
        repository.add_usage_record(_daily_record(first_day + timedelta(days=offset), 3.0))

    result = service.forecast(GROUP_ID, now=NOW)

    assert result is not None
    assert [item.action for item in result.recommendations] == [
        "Encourage off-peak bookings",
        "Promote weekend usage",
    ]
    assert all(day.expected_usage_hours == pytest.approx(3.0) for day in result.next_30_days)
    assert result.bottlenecks == []
    assert result.to_dict()["group_id"] == GROUP_ID


def _weekday_averages(sunday: float, weekdays: float, saturday: float, monday: float | None = None) -> pd.Series:
    values = [sunday] + [weekdays] * 5 + [saturday]
    if monday is not None:
        values[1] = monday
    return pd.Series(values, index=range(7), dtype=float)


def test_weekend_heavy_usage_halves_commute_peaks():
    peaks = predict_peak_hours(_weekday_averages(sunday=10.0, weekdays=1.0, saturday=10.0))

    loads = {peak.hour: peak.relative_load for peak in peaks}
    assert loads == pytest.approx({8: 0.35, 9: 0.3, 18: 0.4, 19: 0.35, 14: 0.6})
    assert {peak.hour: peak.confidence for peak in peaks}[14] == pytest.approx(0.5)


def test_weekday_heavy_usage_halves_leisure_peak():
    peaks = predict_peak_hours(_weekday_averages(sunday=1.0, weekdays=4.0, saturday=1.0))

    loads = {peak.hour: peak.relative_load for peak in peaks}
    assert loads == pytest.approx({8: 0.7, 9: 0.6, 18: 0.8, 19: 0.7, 14: 0.3})


def test_busy_weekday_forecast_is_flagged_as_bottleneck():
    dow_avg = _weekday_averages(sunday=2.0, weekdays=2.0, saturday=2.0, monday=10.0)
    predictions = forecast_days(
        dow_avg,
        overall_mean=3.0,
        trend_pct=0.0,
        history_end=datetime(2025, 6, 15, 23, 59),
        span_days=60.0,
        horizon_days=7,
    )

    bottlenecks = predict_bottlenecks(predictions, overall_mean=3.0)

    assert predictions[0].date == date(2025, 6, 16)
    assert predictions[0].expected_usage_hours == pytest.approx(10.0)
    assert len(bottlenecks) == 1
    assert bottlenecks[0].date == date(2025, 6, 16)
    assert bottlenecks[0].description == "Potential conflicts on 2025-06-16"
    assert bottlenecks[0].confidence == pytest.approx(0.6)


def test_busy_weekend_forecast_is_not_a_bottleneck():
    dow_avg = _weekday_averages(sunday=10.0, weekdays=2.0, saturday=10.0)
    predictions = forecast_days(dow_avg, 3.0, 0.0, datetime(2025, 6, 15), 60.0, 7)

    assert predict_bottlenecks(predictions, overall_mean=3.0) == []
