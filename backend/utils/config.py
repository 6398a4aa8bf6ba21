"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path

    advisory_enabled: bool
    advisory_base_url: str
    advisory_api_key: str
    advisory_timeout_seconds: float

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

    synthetic_random_seed: int
    synthetic_seed_days: int


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; use ``get_settings.cache_clear()`` to reload."""
    return Settings(
        app_name=_env_str("APP_NAME", "Co-ownership Analytics"),
        app_version=_env_str("APP_VERSION", "1.0.0"),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        database_path=Path(_env_str("DATABASE_PATH", "data/analytics.db")),
        advisory_enabled=_env_bool("ADVISORY_ENABLED", True),
        advisory_base_url=_env_str("ADVISORY_BASE_URL", ""),
        advisory_api_key=_env_str("ADVISORY_API_KEY", ""),
        advisory_timeout_seconds=_env_float("ADVISORY_TIMEOUT_SECONDS", 60.0),
        fairness_default_window_days=_env_int("FAIRNESS_DEFAULT_WINDOW_DAYS", 90),
        fairness_trend_months=_env_int("FAIRNESS_TREND_MONTHS", 6),
        fairness_low_score_threshold=_env_float("FAIRNESS_LOW_SCORE_THRESHOLD", 70.0),
        fairness_severe_over_threshold=_env_float("FAIRNESS_SEVERE_OVER_THRESHOLD", 150.0),
        fairness_severe_under_threshold=_env_float("FAIRNESS_SEVERE_UNDER_THRESHOLD", 50.0),
        booking_search_days=_env_int("BOOKING_SEARCH_DAYS", 7),
        booking_top_n=_env_int("BOOKING_TOP_N", 5),
        booking_min_duration_minutes=_env_int("BOOKING_MIN_DURATION_MINUTES", 30),
        forecast_lookback_days=_env_int("FORECAST_LOOKBACK_DAYS", 120),
        forecast_min_history_days=_env_int("FORECAST_MIN_HISTORY_DAYS", 30),
        forecast_horizon_days=_env_int("FORECAST_HORIZON_DAYS", 30),
        cost_lookback_months=_env_int("COST_LOOKBACK_MONTHS", 12),
        synthetic_random_seed=_env_int("SYNTHETIC_RANDOM_SEED", 42),
        synthetic_seed_days=_env_int("SYNTHETIC_SEED_DAYS", 180),
    )
