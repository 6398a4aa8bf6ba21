"""Daily usage series, trend detection and a 30-day usage forecast."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Optional, Sequence

import numpy as np
import pandas as pd

from backend.domain.constraints import engine_config_from_settings, validate_engine_config
from backend.domain.models import UsageDayBucket, UsageRecord
from backend.repository.data_repository import DataRepository
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger
from backend.utils.timeutils import utc_now


logger = get_logger(__name__)

COMMUTE_HOURS = (8, 9, 18, 19)
LEISURE_HOURS = (13, 14, 15, 16)
SPIKE_FACTOR = 2.5
DROP_FACTOR = 0.4
TREND_WINDOW_DAYS = 30
GROWTH_TREND_PCT = 30.0


@dataclass(frozen=True)
class DayPrediction:
    date: date
    expected_usage_hours: float
    confidence: float


@dataclass(frozen=True)
class PeakHourPrediction:
    hour: int
    relative_load: float
    confidence: float


@dataclass(frozen=True)
class MemberSlotLikelihood:
    user_id: str
    day_of_week: int
    hour: int
    likelihood: float


@dataclass(frozen=True)
class UsageAnomaly:
    period_start: date
    period_end: date
    description: str


@dataclass(frozen=True)
class BottleneckPrediction:
    date: date
    description: str
    confidence: float


@dataclass(frozen=True)
class ForecastRecommendation:
    action: str
    rationale: str


@dataclass(frozen=True)
class UsageForecast:
    group_id: str
    generated_at: datetime
    history_start: datetime
    history_end: datetime
    insufficient_history: bool
    peak_hours: list[PeakHourPrediction] = field(default_factory=list)
    next_30_days: list[DayPrediction] = field(default_factory=list)
    member_likelihoods: list[MemberSlotLikelihood] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)
    anomalies: list[UsageAnomaly] = field(default_factory=list)
    bottlenecks: list[BottleneckPrediction] = field(default_factory=list)
    recommendations: list[ForecastRecommendation] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_daily_usage(records: Sequence[UsageRecord]) -> pd.Series:
    """Spread each record's hours evenly over the calendar days it covers.

    Returns a float Series indexed by day, sorted ascending.
    """
    days: list[pd.Timestamp] = []
    hours: list[float] = []
    for record in records:
        covered = pd.date_range(
            pd.Timestamp(record.period_start).normalize(),
            pd.Timestamp(record.period_end).normalize(),
            freq="D",
        )
        span = max(1, len(covered))
        per_day = record.total_usage_hours / span
        days.extend(covered)
        hours.extend([per_day] * len(covered))

    if not days:
        return pd.Series(dtype=float)
    series = pd.Series(hours, index=pd.DatetimeIndex(days), dtype=float)
    return series.groupby(level=0).sum().sort_index()


def to_day_buckets(daily: pd.Series) -> list[UsageDayBucket]:
    return [UsageDayBucket(date=day.date(), hours=float(value)) for day, value in daily.items()]


def compute_trend_pct(daily: pd.Series, history_end: datetime) -> float:
    end_day = pd.Timestamp(history_end).normalize()
    last_start = end_day - pd.Timedelta(days=TREND_WINDOW_DAYS - 1)
    prev_start = last_start - pd.Timedelta(days=TREND_WINDOW_DAYS)
    index = daily.index
    last_sum = float(daily[(index >= last_start) & (index <= end_day)].sum())
    prev_sum = float(daily[(index >= prev_start) & (index < last_start)].sum())
    if prev_sum <= 0:
        return 0.0
    return (last_sum - prev_sum) / prev_sum * 100.0


def day_of_week_averages(daily: pd.Series) -> pd.Series:
    """Mean daily hours per weekday, index 0=Sunday .. 6=Saturday."""
    if daily.empty:
        return pd.Series(0.0, index=range(7))
    sunday_first = (daily.index.dayofweek + 1) % 7
    return daily.groupby(sunday_first).mean().reindex(range(7), fill_value=0.0)


def predict_peak_hours(dow_avg: pd.Series) -> list[PeakHourPrediction]:
    weekday_load = float(dow_avg.loc[1:5].sum())
    weekend_load = float(dow_avg.loc[0] + dow_avg.loc[6])
    commute_weight = 1.0 if weekday_load >= weekend_load else 0.5
    leisure_weight = 1.0 if weekend_load > weekday_load else 0.5

    commute = [(8, 0.7), (9, 0.6), (18, 0.8), (19, 0.7)]
    peaks = [
        PeakHourPrediction(hour=hour, relative_load=min(1.0, base * commute_weight), confidence=0.6)
        for hour, base in commute
    ]
    peaks.append(PeakHourPrediction(hour=14, relative_load=min(1.0, 0.6 * leisure_weight), confidence=0.5))
    return peaks


def forecast_days(
    dow_avg: pd.Series,
    overall_mean: float,
    trend_pct: float,
    history_end: datetime,
    span_days: float,
    horizon_days: int,
) -> list[DayPrediction]:
    adjustment = 1.0 + float(np.clip(trend_pct / 100.0, -0.5, 0.5))
    confidence = float(np.clip(0.4 + span_days / 180.0, 0.4, 0.9))
    end_day = history_end.date()

    predictions: list[DayPrediction] = []
    for offset in range(1, horizon_days + 1):
        day = end_day + timedelta(days=offset)
        dow = (day.weekday() + 1) % 7
        baseline = float(dow_avg.loc[dow]) or overall_mean
        predictions.append(
            DayPrediction(
                date=day,
                expected_usage_hours=round(baseline * adjustment, 2),
                confidence=confidence,
            )
        )
    return predictions


def member_likelihoods(records: Sequence[UsageRecord]) -> list[MemberSlotLikelihood]:
    if not records:
        return []
    frame = pd.DataFrame(
        {
            "user_id": [record.user_id for record in records],
            "usage_share": [record.usage_share for record in records],
        }
    )
    shares = frame.groupby("user_id", sort=False)["usage_share"].mean()

    likelihoods: list[MemberSlotLikelihood] = []
    for user_id, share in shares.items():
        if not np.isfinite(share) or share <= 0:
            continue
        for dow in range(7):
            weekend = dow in (0, 6)
            hours = LEISURE_HOURS if weekend else COMMUTE_HOURS
            value = min(1.0, 0.5 * float(share) + (0.1 if weekend else 0.0))
            likelihoods.extend(
                MemberSlotLikelihood(user_id=str(user_id), day_of_week=dow, hour=hour, likelihood=value)
                for hour in hours
            )
    return likelihoods


def seasonal_insights(daily: pd.Series) -> list[str]:
    monthly = daily.groupby(daily.index.to_period("M")).mean().sort_index()
    if len(monthly) < 3:
        return []
    first, last = float(monthly.iloc[0]), float(monthly.iloc[-1])
    if last > first * 1.2:
        return ["Usage increased significantly compared to earlier period"]
    if last < first * 0.8:
        return ["Usage decreased significantly compared to earlier period"]
    return []


def detect_usage_anomalies(buckets: Sequence[UsageDayBucket]) -> list[UsageAnomaly]:
    """Flag day-to-day jumps above 2.5x or below 0.4x of the previous day."""
    anomalies: list[UsageAnomaly] = []
    for previous, current in zip(buckets, buckets[1:]):
        if previous.hours <= 0:
            continue
        if current.hours > previous.hours * SPIKE_FACTOR:
            description = "Sudden usage spike"
        elif current.hours < previous.hours * DROP_FACTOR:
            description = "Sudden usage drop"
        else:
            continue
        anomalies.append(
            UsageAnomaly(period_start=current.date, period_end=current.date, description=description)
        )
    return anomalies


def predict_bottlenecks(predictions: Sequence[DayPrediction], overall_mean: float) -> list[BottleneckPrediction]:
    return [
        BottleneckPrediction(
            date=prediction.date,
            description=f"Potential conflicts on {prediction.date:%Y-%m-%d}",
            confidence=0.6,
        )
        for prediction in predictions
        if prediction.date.weekday() < 5 and prediction.expected_usage_hours > overall_mean * 1.5
    ]


def build_recommendations(trend_pct: float) -> tuple[list[str], list[ForecastRecommendation]]:
    insights: list[str] = []
    recommendations = [
        ForecastRecommendation("Encourage off-peak bookings", "Reduce peak conflicts and improve fairness"),
        ForecastRecommendation("Promote weekend usage", "Leverage lower weekend load"),
    ]
    if trend_pct > GROWTH_TREND_PCT:
        insights.append(f"Usage increased {trend_pct:.0f}% compared to previous month")
        recommendations.append(
            ForecastRecommendation(
                "Evaluate adding a second vehicle",
                "Sustained growth and predicted bottlenecks",
            )
        )
    return insights, recommendations


class ForecastService:
    """Forecasts group usage from the look-back window of usage rows."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(settings=self._settings)
        self._config = engine_config_from_settings(self._settings)
        validate_engine_config(self._config)

    def forecast(self, group_id: str, now: Optional[datetime] = None) -> Optional[UsageForecast]:
        generated_at = now or utc_now()
        window_start = generated_at - timedelta(days=self._config.forecast_lookback_days)
        records = self._repository.list_usage_records(group_id, window_start, generated_at)

        if not records:
            if self._repository.get_group(group_id) is None:
                logger.info("Usage forecast found unknown group | group_id=%s", group_id)
                return None
            return UsageForecast(
                group_id=group_id,
                generated_at=generated_at,
                history_start=generated_at,
                history_end=generated_at,
                insufficient_history=True,
            )

        history_start = min(record.period_start for record in records)
        history_end = max(record.period_end for record in records)
        span_days = (history_end - history_start).total_seconds() / 86400.0
        if span_days < self._config.forecast_min_history_days:
            logger.info(
                "Usage forecast has insufficient history | group_id=%s | span_days=%.1f",
                group_id,
                span_days,
            )
            return UsageForecast(
                group_id=group_id,
                generated_at=generated_at,
                history_start=history_start,
                history_end=history_end,
                insufficient_history=True,
            )

        daily = build_daily_usage(records)
        overall_mean = float(daily.mean()) if not daily.empty else 0.0
        trend_pct = compute_trend_pct(daily, history_end)
        dow_avg = day_of_week_averages(daily)
        next_days = forecast_days(
            dow_avg,
            overall_mean,
            trend_pct,
            history_end,
            span_days,
            self._config.forecast_horizon_days,
        )
        trend_insights, recommendations = build_recommendations(trend_pct)

        result = UsageForecast(
            group_id=group_id,
            generated_at=generated_at,
            history_start=history_start,
            history_end=history_end,
            insufficient_history=False,
            peak_hours=predict_peak_hours(dow_avg),
            next_30_days=next_days,
            member_likelihoods=member_likelihoods(records),
            insights=seasonal_insights(daily) + trend_insights,
            anomalies=detect_usage_anomalies(to_day_buckets(daily)),
            bottlenecks=predict_bottlenecks(next_days, overall_mean),
            recommendations=recommendations,
        )
        logger.info(
            "Usage forecast completed | group_id=%s | days=%s | trend_pct=%.1f | anomalies=%s | bottlenecks=%s",
            group_id,
            len(daily),
            trend_pct,
            len(result.anomalies),
            len(result.bottlenecks),
        )
        return result
