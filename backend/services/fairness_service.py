"""Ownership-vs-usage fairness scoring with a persisted monthly trend."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

import numpy as np
import pandas as pd

from backend.domain.constraints import (
    AnalyticsValidationError,
    EngineConfig,
    engine_config_from_settings,
    validate_engine_config,
)
from backend.domain.models import FairnessTrendPoint, MemberUsageAggregate, UsageRecord
from backend.repository.data_repository import DataRepository
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger
from backend.utils.timeutils import month_windows, utc_now


logger = get_logger(__name__)

GROUP_LOW_RECOMMENDATIONS = (
    "Establish usage quotas aligned with ownership shares.",
    "Encourage equitable booking through priority windows for underutilizers.",
    "Consider rebalancing ownership shares to match sustained usage patterns.",
)
UNDER_UTILIZER_RECOMMENDATIONS = (
    "Book more during available off-peak times.",
    "Enable reminders for upcoming availability windows.",
)
OVER_UTILIZER_RECOMMENDATIONS = (
    "Reduce peak-time bookings to allow balance.",
    "Shift some usage to off-peak slots.",
)


class FairnessValidationError(AnalyticsValidationError):
    """Raised when the requested fairness window is invalid."""


@dataclass(frozen=True)
class MemberFairness:
    user_id: str
    ownership_percentage: float
    usage_percentage: float
    fairness_score: float
    is_over_utilizer: bool
    is_under_utilizer: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "ownership_percentage": self.ownership_percentage,
            "usage_percentage": self.usage_percentage,
            "fairness_score": self.fairness_score,
            "is_over_utilizer": self.is_over_utilizer,
            "is_under_utilizer": self.is_under_utilizer,
        }


@dataclass(frozen=True)
class FairnessAlerts:
    has_severe_over_utilizers: bool = False
    has_severe_under_utilizers: bool = False
    group_fairness_low: bool = False
    over_utilizer_user_ids: list[str] = field(default_factory=list)
    under_utilizer_user_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_severe_over_utilizers": self.has_severe_over_utilizers,
            "has_severe_under_utilizers": self.has_severe_under_utilizers,
            "group_fairness_low": self.group_fairness_low,
            "over_utilizer_user_ids": list(self.over_utilizer_user_ids),
            "under_utilizer_user_ids": list(self.under_utilizer_user_ids),
        }


@dataclass(frozen=True)
class FairnessRecommendations:
    group_recommendations: list[str] = field(default_factory=list)
    member_recommendations: dict[str, list[str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_recommendations": list(self.group_recommendations),
            "member_recommendations": {
                user_id: list(items) for user_id, items in self.member_recommendations.items()
            },
        }


@dataclass(frozen=True)
class FairnessVisualization:
    ownership_vs_usage_chart: list[dict[str, Any]] = field(default_factory=list)
    member_comparison: list[dict[str, Any]] = field(default_factory=list)
    fairness_timeline: list[FairnessTrendPoint] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ownership_vs_usage_chart": [dict(point) for point in self.ownership_vs_usage_chart],
            "member_comparison": [dict(point) for point in self.member_comparison],
            "fairness_timeline": [point.to_dict() for point in self.fairness_timeline],
        }


@dataclass(frozen=True)
class FairnessResult:
    group_id: str
    period_start: datetime
    period_end: datetime
    group_fairness_score: float
    fairness_index: float
    gini_coefficient: float
    standard_deviation_from_ownership: float
    members: list[MemberFairness]
    alerts: FairnessAlerts
    recommendations: FairnessRecommendations
    visualization: FairnessVisualization
    trend: list[FairnessTrendPoint]

    def member(self, user_id: str) -> Optional[MemberFairness]:
        for member in self.members:
            if member.user_id == user_id:
                return member
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "period_start": self.period_start,
            "period_end": self.period_end,
            "group_fairness_score": self.group_fairness_score,
            "fairness_index": self.fairness_index,
            "gini_coefficient": self.gini_coefficient,
            "standard_deviation_from_ownership": self.standard_deviation_from_ownership,
            "members": [member.to_dict() for member in self.members],
            "alerts": self.alerts.to_dict(),
            "recommendations": self.recommendations.to_dict(),
            "visualization": self.visualization.to_dict(),
            "trend": [point.to_dict() for point in self.trend],
        }


def _overlapping(
    records: Sequence[UsageRecord],
    start: datetime,
    end: datetime,
) -> list[UsageRecord]:
    return [record for record in records if record.period_end >= start and record.period_start <= end]


def aggregate_member_usage(records: Sequence[UsageRecord]) -> list[MemberUsageAggregate]:
    """Group raw rows per user in first-appearance order.

    Ownership and usage shares are averaged, hours are summed. A single
    non-finite usage share makes the member's average non-finite so that
    normalization can repair it.
    """
    if not records:
        return []

    frame = pd.DataFrame(
        {
            "user_id": [record.user_id for record in records],
            "ownership_share": [record.ownership_share for record in records],
            "usage_share": [record.usage_share for record in records],
            "total_usage_hours": [record.total_usage_hours for record in records],
        }
    )
    grouped = frame.groupby("user_id", sort=False).agg(
        ownership_share=("ownership_share", "mean"),
        usage_share=("usage_share", lambda series: float(np.mean(series.to_numpy(dtype=float)))),
        total_usage_hours=("total_usage_hours", "sum"),
    )
    return [
        MemberUsageAggregate(
            user_id=str(user_id),
            ownership_share=float(row.ownership_share),
            usage_share=float(row.usage_share),
            total_usage_hours=float(row.total_usage_hours),
        )
        for user_id, row in grouped.iterrows()
    ]


def normalize_usage(members: Sequence[MemberUsageAggregate]) -> list[MemberUsageAggregate]:
    """Derive usage shares from hours when shares are all zero or non-finite."""
    if not members:
        return []

    usage = np.array([member.usage_share for member in members], dtype=float)
    hours = np.array([member.total_usage_hours for member in members], dtype=float)
    if not np.all(np.isfinite(usage)) or np.all(usage == 0.0):
        total_hours = float(hours.sum())
        if total_hours > 0:
            usage = hours / total_hours
        else:
            usage = np.where(np.isfinite(usage), usage, 0.0)

    usage = np.clip(usage, 0.0, 1.0)
    return [
        replace(
            member,
            ownership_share=float(min(1.0, max(0.0, member.ownership_share))),
            usage_share=float(share),
        )
        for member, share in zip(members, usage)
    ]


def compute_member_fairness(members: Sequence[MemberUsageAggregate]) -> list[MemberFairness]:
    results: list[MemberFairness] = []
    for member in members:
        ownership_pct = member.ownership_share * 100.0
        usage_pct = member.usage_share * 100.0
        fairness = 0.0 if ownership_pct == 0 else usage_pct / ownership_pct * 100.0
        fairness = round(fairness, 2)
        results.append(
            MemberFairness(
                user_id=member.user_id,
                ownership_percentage=round(ownership_pct, 2),
                usage_percentage=round(usage_pct, 2),
                fairness_score=fairness,
                is_over_utilizer=fairness > 100.0,
                is_under_utilizer=fairness < 100.0,
            )
        )
    return results


def mean_absolute_deviation(members: Sequence[MemberFairness]) -> float:
    if not members:
        return 0.0
    deviations = [abs(m.usage_percentage - m.ownership_percentage) for m in members]
    return float(np.mean(deviations))


def group_fairness_score(members: Sequence[MemberFairness]) -> float:
    if not members:
        return 0.0
    return max(0.0, 100.0 - mean_absolute_deviation(members))


def standard_deviation_from_ownership(members: Sequence[MemberFairness]) -> float:
    if not members:
        return 0.0
    differences = [m.usage_percentage - m.ownership_percentage for m in members]
    return float(np.std(differences))


def gini_coefficient(values: Sequence[float]) -> float:
    """Gini over non-negative values; 0 for an empty or all-zero vector."""
    ordered = np.sort(np.array([value for value in values if value >= 0], dtype=float))
    count = ordered.size
    if count == 0:
        return 0.0
    total = float(ordered.sum())
    if total == 0:
        return 0.0
    weights = 2 * np.arange(1, count + 1) - count - 1
    return abs(float(np.dot(weights, ordered)) / (count * total))


def score_records(records: Sequence[UsageRecord]) -> float:
    """Group fairness score for an arbitrary set of raw rows (0 when empty)."""
    members = compute_member_fairness(normalize_usage(aggregate_member_usage(records)))
    return round(group_fairness_score(members), 2)


def build_alerts(members: Sequence[MemberFairness], group_score: float, config: EngineConfig) -> FairnessAlerts:
    over = [m.user_id for m in members if m.fairness_score >= config.fairness_severe_over_threshold]
    under = [m.user_id for m in members if m.fairness_score <= config.fairness_severe_under_threshold]
    return FairnessAlerts(
        has_severe_over_utilizers=bool(over),
        has_severe_under_utilizers=bool(under),
        group_fairness_low=group_score < config.fairness_low_score_threshold,
        over_utilizer_user_ids=over,
        under_utilizer_user_ids=under,
    )


def build_recommendations(members: Sequence[MemberFairness], group_low: bool) -> FairnessRecommendations:
    member_recommendations: dict[str, list[str]] = {}
    for member in members:
        if member.fairness_score < 100.0:
            member_recommendations[member.user_id] = list(UNDER_UTILIZER_RECOMMENDATIONS)
        elif member.fairness_score > 100.0:
            member_recommendations[member.user_id] = list(OVER_UTILIZER_RECOMMENDATIONS)
        else:
            member_recommendations[member.user_id] = []
    return FairnessRecommendations(
        group_recommendations=list(GROUP_LOW_RECOMMENDATIONS) if group_low else [],
        member_recommendations=member_recommendations,
    )


def build_visualization(
    members: Sequence[MemberFairness],
    timeline: Sequence[FairnessTrendPoint],
) -> FairnessVisualization:
    return FairnessVisualization(
        ownership_vs_usage_chart=[
            {
                "user_id": m.user_id,
                "ownership_percentage": m.ownership_percentage,
                "usage_percentage": m.usage_percentage,
            }
            for m in members
        ],
        member_comparison=[{"user_id": m.user_id, "fairness_score": m.fairness_score} for m in members],
        fairness_timeline=list(timeline),
    )


class FairnessService:
    """Loads usage rows, scores the window and maintains trend snapshots."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(settings=self._settings)
        self._config = engine_config_from_settings(self._settings)
        validate_engine_config(self._config)

    def calculate(
        self,
        group_id: str,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Optional[FairnessResult]:
        """Return the fairness result for a window, or ``None`` for an unknown group."""
        resolved_end = period_end or now or utc_now()
        resolved_start = period_start or resolved_end - timedelta(
            days=self._config.fairness_default_window_days
        )
        if resolved_start > resolved_end:
            raise FairnessValidationError("start_date must not be after end_date")

        records = self._repository.list_usage_records(group_id, resolved_start, resolved_end)
        if not records and not self._repository.group_has_usage_signals(group_id):
            logger.info("Fairness lookup found no usage signals | group_id=%s", group_id)
            return None

        members = compute_member_fairness(normalize_usage(aggregate_member_usage(records)))
        if not members:
            trend = self._build_trend(group_id, resolved_end)
            logger.info("Fairness completed without members | group_id=%s", group_id)
            return FairnessResult(
                group_id=group_id,
                period_start=resolved_start,
                period_end=resolved_end,
                group_fairness_score=0.0,
                fairness_index=0.0,
                gini_coefficient=0.0,
                standard_deviation_from_ownership=0.0,
                members=[],
                alerts=FairnessAlerts(),
                recommendations=FairnessRecommendations(),
                visualization=build_visualization([], trend),
                trend=trend,
            )

        group_score = round(group_fairness_score(members), 2)
        alerts = build_alerts(members, group_score, self._config)

        self._persist_snapshot(group_id, resolved_start, resolved_end, group_score)
        trend = self._build_trend(group_id, resolved_end)

        result = FairnessResult(
            group_id=group_id,
            period_start=resolved_start,
            period_end=resolved_end,
            group_fairness_score=group_score,
            fairness_index=group_score,
            gini_coefficient=round(gini_coefficient([m.usage_percentage / 100.0 for m in members]), 4),
            standard_deviation_from_ownership=round(standard_deviation_from_ownership(members), 2),
            members=members,
            alerts=alerts,
            recommendations=build_recommendations(members, alerts.group_fairness_low),
            visualization=build_visualization(members, trend),
            trend=trend,
        )
        logger.info(
            "Fairness completed | group_id=%s | members=%s | score=%.2f | gini=%.4f",
            group_id,
            len(members),
            result.group_fairness_score,
            result.gini_coefficient,
        )
        return result

    def _persist_snapshot(
        self,
        group_id: str,
        period_start: datetime,
        period_end: datetime,
        score: float,
    ) -> None:
        try:
            written = self._repository.upsert_fairness_trend(group_id, period_start, period_end, score)
        except sqlite3.Error as exc:
            logger.warning("Fairness snapshot upsert failed | group_id=%s | error=%s", group_id, exc)
            return
        logger.debug("Fairness snapshot upsert | group_id=%s | written=%s", group_id, written)

    def _build_trend(self, group_id: str, period_end: datetime) -> list[FairnessTrendPoint]:
        windows = month_windows(period_end, self._config.fairness_trend_months)
        timeline_records = self._repository.list_usage_records(group_id, windows[0][0], period_end)

        trend: list[FairnessTrendPoint] = []
        for month_start, month_end in windows:
            stored = self._repository.find_fairness_trend(group_id, month_start, month_end)
            if stored is None:
                score = score_records(_overlapping(timeline_records, month_start, month_end))
            else:
                score = stored
            trend.append(
                FairnessTrendPoint(
                    period_start=month_start,
                    period_end=month_end,
                    group_fairness_score=score,
                )
            )
        return trend
