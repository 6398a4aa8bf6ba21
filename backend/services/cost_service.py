"""Cost-efficiency analysis, savings recommendations and spend predictions."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence

import numpy as np
import pandas as pd

from backend.domain.constraints import engine_config_from_settings, validate_engine_config
from backend.domain.models import (
    CompletedTrip,
    ExpenseRecord,
    ExpenseType,
    GroupRecord,
    OdometerEventType,
    VehicleRecord,
)
from backend.repository.data_repository import DataRepository
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger
from backend.utils.timeutils import add_months, add_years, start_of_month, utc_now


logger = get_logger(__name__)

INDUSTRY_COST_PER_KM = 0.25
INDUSTRY_COST_PER_TRIP = 15.0
PROVIDER_KEYWORDS = ("Dealer", "Service Center", "Auto Shop", "Garage", "Mechanic", "Workshop")
UNKNOWN_PROVIDER = "Unknown Provider"
MAINTENANCE_INTERVAL_KM = 10_000
REPLACEMENT_COST = 30_000.0
PREVENTIVE_INVESTMENT = 500.0
DAYS_PER_MONTH = 365.25 / 12

_SERVICE_TYPES = (ExpenseType.MAINTENANCE, ExpenseType.REPAIR)


@dataclass(frozen=True)
class CostSummary:
    total_expenses: float = 0.0
    average_monthly_expenses: float = 0.0
    total_expense_count: int = 0
    expenses_by_type: dict[str, float] = field(default_factory=dict)
    expenses_by_month: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class HighCostArea:
    category: str
    total_amount: float
    count: int
    average_amount: float
    percentage_of_total: float
    provider_name: Optional[str] = None
    description: str = ""


@dataclass(frozen=True)
class EfficiencyMetrics:
    cost_per_kilometer: float = 0.0
    cost_per_trip: float = 0.0
    cost_per_member: float = 0.0
    cost_per_hour: float = 0.0
    total_kilometers: int = 0
    total_trips: int = 0
    total_members: int = 0
    total_hours: int = 0


@dataclass(frozen=True)
class BenchmarkComparison:
    benchmark_name: str
    benchmark_cost_per_km: float
    your_cost_per_km: float
    benchmark_cost_per_trip: float
    your_cost_per_trip: float
    variance_percentage: float
    status: str


@dataclass(frozen=True)
class Benchmarks:
    industry_comparison: Optional[BenchmarkComparison] = None
    vehicle_comparison: Optional[BenchmarkComparison] = None
    group_comparison: Optional[BenchmarkComparison] = None


@dataclass(frozen=True)
class CostRecommendation:
    title: str
    description: str
    estimated_savings: float
    estimated_savings_percentage: float
    category: str
    priority: str
    action_required: str
    provider_name: Optional[str] = None


@dataclass(frozen=True)
class UpcomingExpense:
    description: str
    estimated_amount: float
    expected_date: datetime
    category: str
    reason: str


@dataclass(frozen=True)
class MonthlyPrediction:
    month: datetime
    predicted_amount: float
    confidence: float


@dataclass(frozen=True)
class CostPrediction:
    next_month_prediction: float = 0.0
    next_quarter_prediction: float = 0.0
    confidence_score: float = 0.0
    upcoming_expenses: list[UpcomingExpense] = field(default_factory=list)
    monthly_forecast: list[MonthlyPrediction] = field(default_factory=list)


@dataclass(frozen=True)
class SpendingAlert:
    type: str
    title: str
    description: str
    amount: float
    severity: str
    alert_date: datetime
    budget_threshold: Optional[float] = None


@dataclass(frozen=True)
class RoiCalculation:
    title: str
    description: str
    scenario: str
    investment_amount: float
    expected_savings: float
    expected_savings_per_year: float
    payback_period_months: float
    roi_percentage: float


@dataclass(frozen=True)
class CostOptimization:
    group_id: str
    group_name: str
    period_start: datetime
    period_end: datetime
    generated_at: datetime
    insufficient_data: bool
    summary: CostSummary = field(default_factory=CostSummary)
    high_cost_areas: list[HighCostArea] = field(default_factory=list)
    efficiency_metrics: EfficiencyMetrics = field(default_factory=EfficiencyMetrics)
    benchmarks: Benchmarks = field(default_factory=Benchmarks)
    recommendations: list[CostRecommendation] = field(default_factory=list)
    predictions: CostPrediction = field(default_factory=CostPrediction)
    alerts: list[SpendingAlert] = field(default_factory=list)
    roi_calculations: list[RoiCalculation] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _money(value: float) -> float:
    return round(float(value), 2)


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def _of_type(expenses: Sequence[ExpenseRecord], *types: ExpenseType) -> list[ExpenseRecord]:
    return [expense for expense in expenses if expense.expense_type in types]


def trip_distance(trip: CompletedTrip) -> int:
    """Distance for one trip: each CheckOut reading minus the first CheckIn reading."""
    check_in = next(
        (event for event in trip.events if event.event_type is OdometerEventType.CHECK_IN),
        None,
    )
    if check_in is None:
        return 0
    return sum(
        max(0, event.odometer - check_in.odometer)
        for event in trip.events
        if event.event_type is OdometerEventType.CHECK_OUT
    )


def total_distance(trips: Sequence[CompletedTrip]) -> int:
    return sum(trip_distance(trip) for trip in trips)


def booked_hours(trips: Sequence[CompletedTrip]) -> int:
    return sum(int((trip.end_at - trip.start_at).total_seconds() // 3600) for trip in trips)


def extract_provider_name(description: str, notes: Optional[str] = None) -> str:
    """Best-effort provider label from free-text expense fields.

    The first keyword present wins; the word right before it is used as a
    prefix when there is one ("Northside Garage").
    """
    text = f"{description or ''} {notes or ''}"
    lowered = text.lower()
    words = text.split()
    for keyword in PROVIDER_KEYWORDS:
        needle = keyword.lower()
        if needle not in lowered:
            continue
        width = len(keyword.split())
        for index in range(len(words) - width):
            candidate = " ".join(words[index + 1 : index + 1 + width]).lower()
            if needle in candidate:
                return f"{words[index]} {keyword}"
        return keyword
    return UNKNOWN_PROVIDER


def _expense_frame(expenses: Sequence[ExpenseRecord]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "amount": [expense.amount for expense in expenses],
            "expense_type": [expense.expense_type.value for expense in expenses],
            "month": [f"{expense.date_incurred:%Y-%m}" for expense in expenses],
        }
    )


def summarize_expenses(expenses: Sequence[ExpenseRecord]) -> CostSummary:
    if not expenses:
        return CostSummary()
    frame = _expense_frame(expenses)
    by_type = frame.groupby("expense_type", sort=False)["amount"].sum()
    by_month = frame.groupby("month")["amount"].sum().sort_index()
    return CostSummary(
        total_expenses=_money(frame["amount"].sum()),
        average_monthly_expenses=_money(by_month.mean()),
        total_expense_count=len(expenses),
        expenses_by_type={str(key): _money(value) for key, value in by_type.items()},
        expenses_by_month={str(key): _money(value) for key, value in by_month.items()},
    )


def analyze_high_cost_areas(expenses: Sequence[ExpenseRecord], total: float) -> list[HighCostArea]:
    areas: list[HighCostArea] = []
    frame = _expense_frame(expenses)
    grouped = frame.groupby("expense_type", sort=False)["amount"].agg(["sum", "count", "mean"])
    for expense_type, row in grouped.iterrows():
        areas.append(
            HighCostArea(
                category=str(expense_type),
                total_amount=_money(row["sum"]),
                count=int(row["count"]),
                average_amount=_money(row["mean"]),
                percentage_of_total=_money(_ratio(row["sum"], total) * 100.0),
            )
        )

    providers: dict[str, list[ExpenseRecord]] = {}
    for expense in _of_type(expenses, *_SERVICE_TYPES):
        providers.setdefault(extract_provider_name(expense.description, expense.notes), []).append(expense)
    ranked = sorted(providers.items(), key=lambda item: sum(e.amount for e in item[1]), reverse=True)
    for provider, items in ranked[:5]:
        provider_total = sum(e.amount for e in items)
        areas.append(
            HighCostArea(
                category="Maintenance Provider",
                total_amount=_money(provider_total),
                count=len(items),
                average_amount=_money(provider_total / len(items)),
                percentage_of_total=_money(_ratio(provider_total, total) * 100.0),
                provider_name=provider,
                description=f"Multiple expenses with {provider}",
            )
        )

    repairs = _of_type(expenses, ExpenseType.REPAIR)
    if len(repairs) >= 3:
        repair_total = sum(e.amount for e in repairs)
        areas.append(
            HighCostArea(
                category="Frequent Repairs",
                total_amount=_money(repair_total),
                count=len(repairs),
                average_amount=_money(repair_total / len(repairs)),
                percentage_of_total=_money(_ratio(repair_total, total) * 100.0),
                description=(
                    f"High frequency of repairs ({len(repairs)} repairs) may indicate underlying issues"
                ),
            )
        )

    return sorted(areas, key=lambda area: area.total_amount, reverse=True)


def benchmark_status(yours: float, reference: float) -> str:
    if yours <= reference * 1.1:
        return "Below Average"
    if yours <= reference * 1.3:
        return "Average"
    return "Above Average"


def _compare(name: str, reference_per_km: float, metrics: EfficiencyMetrics) -> BenchmarkComparison:
    return BenchmarkComparison(
        benchmark_name=name,
        benchmark_cost_per_km=reference_per_km,
        your_cost_per_km=metrics.cost_per_kilometer,
        benchmark_cost_per_trip=INDUSTRY_COST_PER_TRIP,
        your_cost_per_trip=metrics.cost_per_trip,
        variance_percentage=round(
            _ratio(metrics.cost_per_kilometer - reference_per_km, reference_per_km) * 100.0, 2
        ),
        status=benchmark_status(metrics.cost_per_kilometer, reference_per_km),
    )


def vehicle_age_reference(average_age: float) -> float:
    if average_age < 3:
        return 0.20
    if average_age < 7:
        return 0.28
    return 0.35


def calculate_benchmarks(
    metrics: EfficiencyMetrics,
    vehicles: Sequence[VehicleRecord],
    now: datetime,
) -> Benchmarks:
    industry = _compare("Industry Average", INDUSTRY_COST_PER_KM, metrics)
    vehicle = None
    if vehicles:
        average_age = now.year - float(np.mean([v.year for v in vehicles]))
        vehicle = _compare(
            f"Similar Vehicles ({average_age:.0f} years avg)",
            vehicle_age_reference(average_age),
            metrics,
        )
    group = BenchmarkComparison(
        benchmark_name="Similar Groups",
        benchmark_cost_per_km=industry.benchmark_cost_per_km,
        your_cost_per_km=industry.your_cost_per_km,
        benchmark_cost_per_trip=industry.benchmark_cost_per_trip,
        your_cost_per_trip=industry.your_cost_per_trip,
        variance_percentage=industry.variance_percentage,
        status=industry.status,
    )
    return Benchmarks(industry_comparison=industry, vehicle_comparison=vehicle, group_comparison=group)


def generate_recommendations(
    expenses: Sequence[ExpenseRecord],
    high_cost_areas: Sequence[HighCostArea],
    metrics: EfficiencyMetrics,
    benchmarks: Benchmarks,
    total: float,
) -> list[CostRecommendation]:
    recommendations: list[CostRecommendation] = []

    expensive_providers = [
        area
        for area in high_cost_areas
        if area.category == "Maintenance Provider" and area.total_amount > 200
    ]
    for provider in sorted(expensive_providers, key=lambda area: area.total_amount, reverse=True)[:3]:
        if provider.count == 0 or provider.average_amount == 0:
            continue
        recommendations.append(
            CostRecommendation(
                title="Switch Maintenance Provider",
                description=(
                    f"Consider switching from {provider.provider_name} "
                    f"(avg ${provider.average_amount:.2f}/service). Alternative providers may "
                    "offer similar quality at lower cost."
                ),
                estimated_savings=_money(provider.average_amount * 0.15 * provider.count),
                estimated_savings_percentage=15,
                category="Provider Optimization",
                priority="High" if provider.total_amount > 500 else "Medium",
                action_required="Research alternative maintenance providers and compare quotes",
                provider_name=provider.provider_name,
            )
        )

    repairs = _of_type(expenses, ExpenseType.REPAIR)
    if len(repairs) >= 3:
        repair_total = sum(e.amount for e in repairs)
        recommendations.append(
            CostRecommendation(
                title="Increase Preventive Maintenance",
                description=(
                    f"High frequency of repairs ({len(repairs)} repairs, ${repair_total:.2f} total) "
                    "suggests preventive maintenance could reduce future repair costs."
                ),
                estimated_savings=_money(repair_total * 0.3),
                estimated_savings_percentage=30,
                category="Preventive Maintenance",
                priority="High",
                action_required="Schedule regular preventive maintenance checks",
            )
        )

    insurance = _of_type(expenses, ExpenseType.INSURANCE)
    if insurance:
        insurance_total = sum(e.amount for e in insurance)
        recommendations.append(
            CostRecommendation(
                title="Review Insurance Plan",
                description=(
                    f"Current insurance costs (${insurance_total:.2f}/year) may be optimized based on "
                    "usage patterns. Usage-based insurance could be more cost-effective."
                ),
                estimated_savings=_money(insurance_total * 0.15),
                estimated_savings_percentage=15,
                category="Insurance",
                priority="Medium",
                action_required="Compare insurance quotes and consider usage-based options",
            )
        )

    cleaning = _of_type(expenses, ExpenseType.CLEANING)
    if cleaning:
        cleaning_total = sum(e.amount for e in cleaning)
        cleaning_average = cleaning_total / len(cleaning)
        if cleaning_average > 50:
            recommendations.append(
                CostRecommendation(
                    title="Optimize Cleaning Costs",
                    description=(
                        f"Average cleaning cost (${cleaning_average:.2f}) is above typical range. "
                        "Consider self-service options or package deals."
                    ),
                    estimated_savings=_money(cleaning_total * 0.25),
                    estimated_savings_percentage=25,
                    category="Cleaning",
                    priority="Low",
                    action_required="Explore self-service cleaning or negotiate package deals",
                )
            )

    fuel = _of_type(expenses, ExpenseType.FUEL)
    if fuel:
        recommendations.append(
            CostRecommendation(
                title="Optimize Charging Schedule",
                description="Charging during off-peak hours can reduce electricity costs by 20-30%.",
                estimated_savings=_money(sum(e.amount for e in fuel) * 0.25),
                estimated_savings_percentage=25,
                category="Charging",
                priority="Medium",
                action_required="Schedule charging during off-peak hours (typically 10 PM - 6 AM)",
            )
        )

    industry = benchmarks.industry_comparison
    if industry is not None and industry.variance_percentage > 20:
        recommendations.append(
            CostRecommendation(
                title="Improve Cost Efficiency",
                description=(
                    f"Cost per kilometer (${metrics.cost_per_kilometer:.2f}/km) is "
                    f"{industry.variance_percentage:.1f}% above industry average. Review maintenance "
                    "schedules and driving patterns."
                ),
                estimated_savings=_money(total * 0.15),
                estimated_savings_percentage=15,
                category="Efficiency",
                priority="High" if industry.variance_percentage > 40 else "Medium",
                action_required="Review maintenance schedules, tire pressure, and driving efficiency",
            )
        )

    return sorted(recommendations, key=lambda item: item.estimated_savings, reverse=True)


def _trend_factor(monthly_totals: pd.Series, average: float) -> float:
    newest_first = monthly_totals.sort_index(ascending=False)
    recent = newest_first.iloc[:3]
    older = newest_first.iloc[3:6]
    recent_avg = float(recent.mean()) if not recent.empty else average
    older_avg = float(older.mean()) if not older.empty else average
    return _ratio(recent_avg - older_avg, older_avg) if older_avg > 0 else 0.0


def generate_predictions(
    expenses: Sequence[ExpenseRecord],
    distance: float,
    now: datetime,
) -> CostPrediction:
    if len(expenses) >= 6:
        confidence = 0.75
    elif len(expenses) >= 3:
        confidence = 0.5
    else:
        confidence = 0.3

    monthly_totals = _expense_frame(expenses).groupby("month")["amount"].sum()
    average = float(monthly_totals.mean()) if not monthly_totals.empty else 0.0
    trend = _trend_factor(monthly_totals, average)
    next_month = average * (1 + trend * 0.5)

    upcoming: list[UpcomingExpense] = []
    insurance = _of_type(expenses, ExpenseType.INSURANCE)
    if insurance:
        last = max(insurance, key=lambda e: e.date_incurred)
        if (now - last.date_incurred).days > 300:
            upcoming.append(
                UpcomingExpense(
                    description="Insurance Renewal",
                    estimated_amount=_money(last.amount),
                    expected_date=add_years(last.date_incurred, 1),
                    category="Insurance",
                    reason="Annual insurance renewal based on historical pattern",
                )
            )

    registrations = _of_type(expenses, ExpenseType.REGISTRATION)
    if registrations:
        last = max(registrations, key=lambda e: e.date_incurred)
        renewal = add_years(last.date_incurred, 1)
        if now < renewal <= add_months(now, 3):
            upcoming.append(
                UpcomingExpense(
                    description="Vehicle Registration Renewal",
                    estimated_amount=_money(last.amount),
                    expected_date=renewal,
                    category="Registration",
                    reason="Annual registration renewal",
                )
            )

    maintenance = _of_type(expenses, ExpenseType.MAINTENANCE)
    if maintenance and distance > 0:
        per_km = sum(e.amount for e in maintenance) / distance
        upcoming.append(
            UpcomingExpense(
                description="Scheduled Maintenance",
                estimated_amount=_money(per_km * MAINTENANCE_INTERVAL_KM),
                expected_date=add_months(now, 2),
                category="Maintenance",
                reason="Based on average maintenance frequency and distance",
            )
        )

    monthly_forecast = [
        MonthlyPrediction(
            month=start_of_month(add_months(now, step)),
            predicted_amount=_money(next_month * (1 + trend * 0.1 * step)),
            confidence=round(max(0.3, confidence - 0.1 * step), 2),
        )
        for step in range(1, 4)
    ]
    return CostPrediction(
        next_month_prediction=_money(next_month),
        next_quarter_prediction=_money(next_month * 3),
        confidence_score=confidence,
        upcoming_expenses=upcoming,
        monthly_forecast=monthly_forecast,
    )


def generate_alerts(expenses: Sequence[ExpenseRecord], now: datetime) -> list[SpendingAlert]:
    alerts: list[SpendingAlert] = []
    monthly_totals = _expense_frame(expenses).groupby("month")["amount"].sum().sort_index()
    if monthly_totals.empty:
        return alerts

    average = float(monthly_totals.mean())
    threshold = average * 1.2
    latest_month = str(monthly_totals.index[-1])
    latest = float(monthly_totals.iloc[-1])
    if latest > threshold:
        alerts.append(
            SpendingAlert(
                type="BudgetExceeded",
                title="Monthly Budget Exceeded",
                description=(
                    f"Spending in {latest_month} (${latest:.2f}) exceeded budget threshold "
                    f"(${threshold:.2f})"
                ),
                amount=_money(latest),
                severity="High" if latest > threshold * 1.5 else "Medium",
                alert_date=now,
                budget_threshold=_money(threshold),
            )
        )

    if len(monthly_totals) >= 3:
        deviation = float(np.std(monthly_totals.to_numpy()))
        if latest > average + 2 * deviation:
            alerts.append(
                SpendingAlert(
                    type="UnusualSpike",
                    title="Unusual Expense Spike Detected",
                    description=(
                        f"Spending in {latest_month} (${latest:.2f}) is significantly higher than "
                        f"average (${average:.2f})"
                    ),
                    amount=_money(latest),
                    severity="High",
                    alert_date=now,
                )
            )

    buckets: dict[float, list[float]] = {}
    for expense in _of_type(expenses, *_SERVICE_TYPES):
        buckets.setdefault(round(expense.amount / 10) * 10, []).append(expense.amount)
    for amounts in buckets.values():
        if len(amounts) < 3:
            continue
        bucket_average = float(np.mean(amounts))
        spread = float(np.mean([abs(amount - bucket_average) for amount in amounts]))
        if spread < bucket_average * 0.1:
            alerts.append(
                SpendingAlert(
                    type="RecurringOvercharge",
                    title="Potential Recurring Overcharge",
                    description=(
                        f"Multiple similar expenses detected (${bucket_average:.2f} average, "
                        f"{len(amounts)} occurrences). Verify if consistent pricing is expected."
                    ),
                    amount=_money(sum(amounts)),
                    severity="Medium",
                    alert_date=now,
                )
            )
    return alerts


def months_covered(expenses: Sequence[ExpenseRecord], now: datetime) -> float:
    earliest = min(expense.date_incurred for expense in expenses)
    return max(1.0, (now - earliest).days / DAYS_PER_MONTH)


def calculate_roi(
    expenses: Sequence[ExpenseRecord],
    vehicles: Sequence[VehicleRecord],
    now: datetime,
) -> list[RoiCalculation]:
    calculations: list[RoiCalculation] = []
    months = months_covered(expenses, now)
    repairs = _of_type(expenses, ExpenseType.REPAIR)
    annual_repair = sum(e.amount for e in repairs) * 12 / months
    annual_total = sum(e.amount for e in expenses) * 12 / months

    if annual_repair > 2000 and vehicles:
        age = now.year - vehicles[0].year
        projected = annual_repair * max(1, 10 - age)
        if projected > REPLACEMENT_COST * 0.3:
            savings = projected - REPLACEMENT_COST
            calculations.append(
                RoiCalculation(
                    title="Vehicle Replacement Analysis",
                    description=(
                        f"High repair costs (${annual_repair:.2f}/year) suggest replacement may be "
                        "more cost-effective long-term."
                    ),
                    scenario="Maintenance vs Replacement",
                    investment_amount=REPLACEMENT_COST,
                    expected_savings=_money(max(0.0, savings)),
                    expected_savings_per_year=_money(max(0.0, annual_repair - REPLACEMENT_COST * 0.05)),
                    payback_period_months=_money(REPLACEMENT_COST / (annual_repair / 12)),
                    roi_percentage=_money(savings / REPLACEMENT_COST * 100.0),
                )
            )

    if len(repairs) >= 3:
        net = annual_repair * 0.3 - PREVENTIVE_INVESTMENT
        calculations.append(
            RoiCalculation(
                title="Preventive Maintenance Program",
                description=(
                    f"Investing ${PREVENTIVE_INVESTMENT:.2f}/year in preventive maintenance could "
                    "reduce repair costs by 30%."
                ),
                scenario="Upgrade",
                investment_amount=PREVENTIVE_INVESTMENT,
                expected_savings=_money(net),
                expected_savings_per_year=_money(net),
                payback_period_months=_money(PREVENTIVE_INVESTMENT / (net / 12)) if net > 0 else 0.0,
                roi_percentage=_money(net / PREVENTIVE_INVESTMENT * 100.0),
            )
        )

    if vehicles:
        lease = annual_total * 1.2
        calculations.append(
            RoiCalculation(
                title="Ownership vs Lease Comparison",
                description=(
                    f"Current ownership costs (${annual_total:.2f}/year) vs estimated lease costs "
                    f"(${lease:.2f}/year)."
                ),
                scenario="Lease vs Own",
                investment_amount=0.0,
                expected_savings=_money(lease - annual_total),
                expected_savings_per_year=_money(lease - annual_total),
                payback_period_months=0.0,
                roi_percentage=0.0,
            )
        )

    return sorted(calculations, key=lambda item: item.expected_savings, reverse=True)


def analyze_costs(
    group: GroupRecord,
    vehicles: Sequence[VehicleRecord],
    expenses: Sequence[ExpenseRecord],
    trips: Sequence[CompletedTrip],
    period_start: datetime,
    period_end: datetime,
    now: datetime,
) -> CostOptimization:
    """Full cost report for one group; flags insufficient data instead of raising."""
    if not expenses or not trips:
        return CostOptimization(
            group_id=group.group_id,
            group_name=group.name,
            period_start=period_start,
            period_end=period_end,
            generated_at=now,
            insufficient_data=True,
        )

    distance = total_distance(trips)
    hours = booked_hours(trips)
    total = float(sum(expense.amount for expense in expenses))
    metrics = EfficiencyMetrics(
        cost_per_kilometer=_money(_ratio(total, distance)),
        cost_per_trip=_money(_ratio(total, len(trips))),
        cost_per_member=_money(_ratio(total, group.member_count)),
        cost_per_hour=_money(_ratio(total, hours)),
        total_kilometers=int(distance),
        total_trips=len(trips),
        total_members=group.member_count,
        total_hours=hours,
    )
    high_cost_areas = analyze_high_cost_areas(expenses, total)
    benchmarks = calculate_benchmarks(metrics, vehicles, now)

    return CostOptimization(
        group_id=group.group_id,
        group_name=group.name,
        period_start=period_start,
        period_end=period_end,
        generated_at=now,
        insufficient_data=False,
        summary=summarize_expenses(expenses),
        high_cost_areas=high_cost_areas,
        efficiency_metrics=metrics,
        benchmarks=benchmarks,
        recommendations=generate_recommendations(expenses, high_cost_areas, metrics, benchmarks, total),
        predictions=generate_predictions(expenses, distance, now),
        alerts=generate_alerts(expenses, now),
        roi_calculations=calculate_roi(expenses, vehicles, now),
    )


class CostService:
    """Loads a group's spend and trips and produces the optimization report."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(settings=self._settings)
        self._config = engine_config_from_settings(self._settings)
        validate_engine_config(self._config)

    def analyze(self, group_id: str, now: Optional[datetime] = None) -> Optional[CostOptimization]:
        generated_at = now or utc_now()
        group = self._repository.get_group(group_id)
        if group is None:
            logger.info("Cost optimization found unknown group | group_id=%s", group_id)
            return None

        period_start = add_months(generated_at, -self._config.cost_lookback_months)
        expenses = self._repository.list_expenses(group_id, period_start, generated_at)
        trips = self._repository.list_completed_trips(group_id, period_start, generated_at)
        vehicles = self._repository.list_vehicles(group_id)

        result = analyze_costs(group, vehicles, expenses, trips, period_start, generated_at, generated_at)
        logger.info(
            "Cost optimization completed | group_id=%s | expenses=%s | trips=%s | insufficient=%s",
            group_id,
            len(expenses),
            len(trips),
            result.insufficient_data,
        )
        return result
