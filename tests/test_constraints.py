"""Tests for analytics engine configuration validation.

Covers the validation branches in validate_engine_config().
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from backend.domain.constraints import (
    EngineConfig,
    engine_config_from_settings,
    validate_engine_config,
)
from backend.services.fairness_service import FairnessService
from backend.utils.config import get_settings


def valid_config(**overrides) -> EngineConfig:
    """Return a valid baseline EngineConfig, optionally overriding fields."""
    defaults = {
        "fairness_default_window_days": 90,
        "fairness_trend_months": 6,
        "fairness_low_score_threshold": 70.0,
        "fairness_severe_over_threshold": 150.0,
        "fairness_severe_under_threshold": 50.0,
        "booking_search_days": 7,
        "booking_top_n": 5,
        "booking_min_duration_minutes": 30,
        "forecast_lookback_days": 120,
        "forecast_min_history_days": 30,
        "forecast_horizon_days": 30,
        "cost_lookback_months": 12,
    }
    defaults.update(overrides)
    return EngineConfig(**defaults)


# --- Baseline pass ---

def test_valid_config_passes() -> None:
    """A fully valid config must not raise."""
    validate_engine_config(valid_config())


def test_default_settings_produce_valid_config() -> None:
    validate_engine_config(engine_config_from_settings(get_settings()))


# --- fairness ---

def test_fairness_window_zero_raises() -> None:
    with pytest.raises(ValueError):
        validate_engine_config(valid_config(fairness_default_window_days=0))


def test_fairness_trend_months_zero_raises() -> None:
    with pytest.raises(ValueError):
        validate_engine_config(valid_config(fairness_trend_months=0))


def test_low_score_threshold_above_hundred_raises() -> None:
    with pytest.raises(ValueError):
        validate_engine_config(valid_config(fairness_low_score_threshold=100.5))


def test_severe_over_threshold_must_exceed_hundred() -> None:
    with pytest.raises(ValueError):
        validate_engine_config(valid_config(fairness_severe_over_threshold=100.0))


def test_severe_under_threshold_hundred_raises() -> None:
    with pytest.raises(ValueError):
        validate_engine_config(valid_config(fairness_severe_under_threshold=100.0))


# --- booking ---

def test_booking_search_days_zero_raises() -> None:
    with pytest.raises(ValueError):
        validate_engine_config(valid_config(booking_search_days=0))


def test_booking_top_n_negative_raises() -> None:
    with pytest.raises(ValueError):
        validate_engine_config(valid_config(booking_top_n=-1))


def test_booking_min_duration_zero_raises() -> None:
    with pytest.raises(ValueError):
        validate_engine_config(valid_config(booking_min_duration_minutes=0))


# --- forecast ---

def test_forecast_min_history_longer_than_lookback_raises() -> None:
    with pytest.raises(ValueError):
        validate_engine_config(valid_config(forecast_min_history_days=121))


def test_forecast_horizon_zero_raises() -> None:
    with pytest.raises(ValueError):
        validate_engine_config(valid_config(forecast_horizon_days=0))


# --- cost ---

def test_cost_lookback_zero_raises() -> None:
    with pytest.raises(ValueError):
        validate_engine_config(valid_config(cost_lookback_months=0))


# --- Boundary values ---

def test_low_score_threshold_bounds_pass() -> None:
    """Exact bounds must pass."""
    validate_engine_config(valid_config(fairness_low_score_threshold=0.0))
    validate_engine_config(valid_config(fairness_low_score_threshold=100.0))


def test_forecast_min_history_equal_to_lookback_passes() -> None:
    validate_engine_config(valid_config(forecast_min_history_days=120))


def test_service_construction_rejects_invalid_settings(tmp_path) -> None:
    settings = replace(
        get_settings(),
        database_path=tmp_path / "invalid.db",
        fairness_trend_months=0,
    )
    with pytest.raises(ValueError):
        FairnessService(settings=settings)
