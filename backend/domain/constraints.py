"""Domain-level validation rules for analytics engine tuning."""

from __future__ import annotations

from dataclasses import dataclass

from backend.utils.config import Settings


class AnalyticsValidationError(Exception):
    """Raised when an analytics request carries invalid inputs."""


@dataclass(frozen=True)
class EngineConfig:
    fairness_default_window_days: int
    fairness_trend_months: int
    fairness_low_score_threshold: float
    fairness_severe_over_threshold: float
    fairness_severe_under_threshold: float
    booking_search_days: int
    booking_top_n: int
    booking_min_duration_minutes: int
    forecast_lookback_days: int
    forecast_min_history_days: int
    forecast_horizon_days: int
    cost_lookback_months: int


def engine_config_from_settings(settings: Settings) -> EngineConfig:
    return EngineConfig(
        fairness_default_window_days=settings.fairness_default_window_days,
        fairness_trend_months=settings.fairness_trend_months,
        fairness_low_score_threshold=settings.fairness_low_score_threshold,
        fairness_severe_over_threshold=settings.fairness_severe_over_threshold,
        fairness_severe_under_threshold=settings.fairness_severe_under_threshold,
        booking_search_days=settings.booking_search_days,
        booking_top_n=settings.booking_top_n,
        booking_min_duration_minutes=settings.booking_min_duration_minutes,
        forecast_lookback_days=settings.forecast_lookback_days,
        forecast_min_history_days=settings.forecast_min_history_days,
        forecast_horizon_days=settings.forecast_horizon_days,
        cost_lookback_months=settings.cost_lookback_months,
    )


def validate_engine_config(config: EngineConfig) -> None:
    if config.fairness_default_window_days <= 0:
        raise ValueError("fairness_default_window_days must be > 0")
    if config.fairness_trend_months <= 0:
        raise ValueError("fairness_trend_months must be > 0")
    if not 0.0 <= config.fairness_low_score_threshold <= 100.0:
        raise ValueError("fairness_low_score_threshold must be between 0 and 100")
    if config.fairness_severe_over_threshold <= 100.0:
        raise ValueError("fairness_severe_over_threshold must be > 100")
    if not 0.0 <= config.fairness_severe_under_threshold < 100.0:
        raise ValueError("fairness_severe_under_threshold must be in [0, 100)")
    if config.booking_search_days <= 0:
        raise ValueError("booking_search_days must be > 0")
    if config.booking_top_n <= 0:
        raise ValueError("booking_top_n must be > 0")
    if config.booking_min_duration_minutes <= 0:
        raise ValueError("booking_min_duration_minutes must be > 0")
    if config.forecast_lookback_days <= 0:
        raise ValueError("forecast_lookback_days must be > 0")
    if not 0 <= config.forecast_min_history_days <= config.forecast_lookback_days:
        raise ValueError(
            "forecast_min_history_days must be between 0 and forecast_lookback_days"
        )
    if config.forecast_horizon_days <= 0:
        raise ValueError("forecast_horizon_days must be > 0")
    if config.cost_lookback_months <= 0:
        raise ValueError("cost_lookback_months must be > 0")
