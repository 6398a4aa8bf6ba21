"""Response schemas used to validate advisory payloads before they are served.

An advisory response is accepted only if it parses into the same shape the
engine produces for that capability.
"""

from __future__ import annotations

import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _Schema(BaseModel):
    model_config = ConfigDict(extra="ignore")


class MemberFairnessSchema(_Schema):
    user_id: str
    ownership_percentage: float = Field(ge=0.0, le=100.0)
    usage_percentage: float = Field(ge=0.0, le=100.0)
    fairness_score: float = Field(ge=0.0)
    is_over_utilizer: bool
    is_under_utilizer: bool


class FairnessAlertsSchema(_Schema):
    has_severe_over_utilizers: bool = False
    has_severe_under_utilizers: bool = False
    group_fairness_low: bool = False
    over_utilizer_user_ids: list[str] = Field(default_factory=list)
    under_utilizer_user_ids: list[str] = Field(default_factory=list)


class FairnessRecommendationsSchema(_Schema):
    group_recommendations: list[str] = Field(default_factory=list)
    member_recommendations: dict[str, list[str]] = Field(default_factory=dict)


class FairnessTrendPointSchema(_Schema):
    period_start: dt.datetime
    period_end: dt.datetime
    group_fairness_score: float = Field(ge=0.0, le=100.0)


class FairnessVisualizationSchema(_Schema):
    ownership_vs_usage_chart: list[dict] = Field(default_factory=list)
    member_comparison: list[dict] = Field(default_factory=list)
    fairness_timeline: list[FairnessTrendPointSchema] = Field(default_factory=list)


class FairnessResultSchema(_Schema):
    group_id: str
    period_start: dt.datetime
    period_end: dt.datetime
    group_fairness_score: float = Field(ge=0.0, le=100.0)
    fairness_index: float = Field(ge=0.0, le=100.0)
    gini_coefficient: float = Field(ge=0.0, le=1.0)
    standard_deviation_from_ownership: float = Field(ge=0.0)
    members: list[MemberFairnessSchema]
    alerts: FairnessAlertsSchema = Field(default_factory=FairnessAlertsSchema)
    recommendations: FairnessRecommendationsSchema = Field(default_factory=FairnessRecommendationsSchema)
    visualization: FairnessVisualizationSchema = Field(default_factory=FairnessVisualizationSchema)
    trend: list[FairnessTrendPointSchema] = Field(default_factory=list)


class BookingSuggestionSchema(_Schema):
    start: dt.datetime
    end: dt.datetime
    day_offset: int = Field(default=0, ge=0)
    confidence: float = Field(ge=0.0, le=1.0)
    reasons: list[str] = Field(default_factory=list)


class BookingSuggestionsSchema(_Schema):
    user_id: str
    group_id: str
    suggestions: list[BookingSuggestionSchema] = Field(max_length=5)


class DayPredictionSchema(_Schema):
    date: dt.date
    expected_usage_hours: float = Field(ge=0.0)
    confidence: float = Field(ge=0.0, le=1.0)


class PeakHourSchema(_Schema):
    hour: int = Field(ge=0, le=23)
    relative_load: float = Field(ge=0.0, le=1.0)
    confidence: float = Field(ge=0.0, le=1.0)


class MemberSlotLikelihoodSchema(_Schema):
    user_id: str
    day_of_week: int = Field(ge=0, le=6)
    hour: int = Field(ge=0, le=23)
    likelihood: float = Field(ge=0.0, le=1.0)


class UsageAnomalySchema(_Schema):
    period_start: Optional[dt.date] = None
    period_end: Optional[dt.date] = None
    description: str


class BottleneckSchema(_Schema):
    date: Optional[dt.date] = None
    description: str
    confidence: float = Field(ge=0.0, le=1.0)


class ForecastRecommendationSchema(_Schema):
    action: str
    rationale: str = ""


class UsageForecastSchema(_Schema):
    group_id: str
    generated_at: dt.datetime
    history_start: dt.datetime
    history_end: dt.datetime
    insufficient_history: bool
    peak_hours: list[PeakHourSchema] = Field(default_factory=list)
    next_30_days: list[DayPredictionSchema] = Field(default_factory=list)
    member_likelihoods: list[MemberSlotLikelihoodSchema] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)
    anomalies: list[UsageAnomalySchema] = Field(default_factory=list)
    bottlenecks: list[BottleneckSchema] = Field(default_factory=list)
    recommendations: list[ForecastRecommendationSchema] = Field(default_factory=list)


class CostSummarySchema(_Schema):
    total_expenses: float = Field(ge=0.0)
    average_monthly_expenses: float = Field(ge=0.0)
    total_expense_count: int = Field(ge=0)
    expenses_by_type: dict[str, float] = Field(default_factory=dict)
    expenses_by_month: dict[str, float] = Field(default_factory=dict)


class HighCostAreaSchema(_Schema):
    category: str
    total_amount: float
    count: int = Field(ge=0)
    average_amount: float
    percentage_of_total: float
    provider_name: Optional[str] = None
    description: str = ""


class EfficiencyMetricsSchema(_Schema):
    cost_per_kilometer: float = Field(ge=0.0)
    cost_per_trip: float = Field(ge=0.0)
    cost_per_member: float = Field(ge=0.0)
    cost_per_hour: float = Field(ge=0.0)
    total_kilometers: int = Field(ge=0)
    total_trips: int = Field(ge=0)
    total_members: int = Field(ge=0)
    total_hours: int = Field(ge=0)


class BenchmarkComparisonSchema(_Schema):
    benchmark_name: str
    benchmark_cost_per_km: float
    your_cost_per_km: float
    benchmark_cost_per_trip: float
    your_cost_per_trip: float
    variance_percentage: float
    status: str


class BenchmarksSchema(_Schema):
    industry_comparison: Optional[BenchmarkComparisonSchema] = None
    vehicle_comparison: Optional[BenchmarkComparisonSchema] = None
    group_comparison: Optional[BenchmarkComparisonSchema] = None


class CostRecommendationSchema(_Schema):
    title: str
    description: str
    estimated_savings: float
    estimated_savings_percentage: float
    category: str
    priority: str
    action_required: Optional[str] = None
    provider_name: Optional[str] = None


class UpcomingExpenseSchema(_Schema):
    description: str
    estimated_amount: float
    expected_date: dt.datetime
    category: str
    reason: str = ""


class MonthlyPredictionSchema(_Schema):
    month: dt.datetime
    predicted_amount: float
    confidence: float = Field(ge=0.0, le=1.0)


class CostPredictionSchema(_Schema):
    next_month_prediction: float = 0.0
    next_quarter_prediction: float = 0.0
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    upcoming_expenses: list[UpcomingExpenseSchema] = Field(default_factory=list)
    monthly_forecast: list[MonthlyPredictionSchema] = Field(default_factory=list)


class SpendingAlertSchema(_Schema):
    type: str
    title: str
    description: str
    amount: float
    severity: str
    alert_date: dt.datetime
    budget_threshold: Optional[float] = None


class RoiCalculationSchema(_Schema):
    title: str
    description: str
    scenario: str
    investment_amount: float
    expected_savings: float
    expected_savings_per_year: float
    payback_period_months: float
    roi_percentage: float


class CostOptimizationSchema(_Schema):
    group_id: str
    group_name: str
    period_start: dt.datetime
    period_end: dt.datetime
    generated_at: dt.datetime
    insufficient_data: bool
    summary: CostSummarySchema = Field(
        default_factory=lambda: CostSummarySchema(
            total_expenses=0.0,
            average_monthly_expenses=0.0,
            total_expense_count=0,
        )
    )
    high_cost_areas: list[HighCostAreaSchema] = Field(default_factory=list)
    efficiency_metrics: Optional[EfficiencyMetricsSchema] = None
    benchmarks: BenchmarksSchema = Field(default_factory=BenchmarksSchema)
    recommendations: list[CostRecommendationSchema] = Field(default_factory=list)
    predictions: CostPredictionSchema = Field(default_factory=CostPredictionSchema)
    alerts: list[SpendingAlertSchema] = Field(default_factory=list)
    roi_calculations: list[RoiCalculationSchema] = Field(default_factory=list)
