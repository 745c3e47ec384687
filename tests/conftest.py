"""
Pytest configuration file with shared fixtures for all tests.

Provides a test configuration, a temporary Parquet store seeded with
observations, seeded estimators and mock collaborators used across unit
and integration tests.
"""

import json
import logging
from typing import Dict, List
from unittest.mock import Mock

import numpy as np
import pandas as pd
import pytest

from grid_analytics.data.data_fetcher import WeatherSeries
from grid_analytics.data.data_manager import GridDataStore
from grid_analytics.data.generation_estimator import GenerationEstimator
from grid_analytics.data.records import ObservationRecord

# Disable logging during tests to reduce noise
logging.disable(logging.CRITICAL)

# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def sample_config(tmp_path) -> Dict:
    """
    Provide test configuration dictionary.

    Returns minimal config with a temporary data path, no rate limiting and
    a fixed random seed.
    """
    return {
        "api": {
            "open_meteo": {
                "base_url": "https://archive-api.open-meteo.com/v1/archive",
                "timeout": 5,
                "max_retries": 0,
                "retry_backoff": 0.0,
            },
            "scoring": {
                "base_url": "https://scoring.test/v1/chat/completions",
                "model": "test-model",
                "api_key": None,
                "timeout": 5,
                "max_retries": 0,
                "retry_backoff": 0.0,
            },
        },
        "data": {
            "processed_data_path": str(tmp_path / "processed"),
            "parquet": {"compression": "snappy"},
        },
        "grid": {
            "capacity_by_year": {
                2022: {"wind": 2800, "solar": 500, "coal": 4000, "hydro": 900},
                2023: {"wind": 3200, "solar": 800, "coal": 2000, "hydro": 900},
                2024: {"wind": 4000, "solar": 1200, "coal": 500, "hydro": 900},
                2025: {"wind": 4500, "solar": 1500, "coal": 0, "hydro": 900},
                2026: {"wind": 5000, "solar": 2000, "coal": 0, "hydro": 900},
            },
            "wind_clusters": [
                {"name": "Pincher Creek", "lat": 49.48, "lon": -113.94, "weight": 0.4},
                {"name": "Halkirk", "lat": 52.28, "lon": -112.13, "weight": 0.3},
                {"name": "Forty Mile", "lat": 49.45, "lon": -111.45, "weight": 0.3},
            ],
            "estimator": {"random_seed": 42},
        },
        "backfill": {
            "batch_size": 500,
            "days_per_window": 7,
            "update_batch_size": 50,
            "rate_limit_seconds": 0.0,
        },
        "forecasting": {
            "market": "AESO",
            "lookback_hours": 168,
            "horizons": [1, 6, 12, 24],
            "timezone": "America/Edmonton",
            "model_version": "test-model-v1",
        },
        "logging": {"level": "WARNING", "log_file": None},
    }


# =============================================================================
# Data Fixtures
# =============================================================================


def make_observations(
    start: str = "2024-03-01",
    hours: int = 48,
    start_id: int = 1,
    complete: bool = False,
    price_seed: int = 7
) -> List[ObservationRecord]:
    """Hourly observations with demand and prices; generation empty unless complete."""
    rng = np.random.default_rng(price_seed)
    timestamps = pd.date_range(start, periods=hours, freq="h", tz="UTC")
    generation = (
        {"gas": 5000.0, "wind": 1500.0, "solar": 0.0, "hydro": 360.0, "coal": 0.0, "other": 400.0}
        if complete else {}
    )
    return [
        ObservationRecord(
            id=start_id + i,
            timestamp=ts,
            demand_mw=10000.0 + 500.0 * np.sin(i / 24 * 2 * np.pi),
            generation=dict(generation),
            pool_price=float(round(60.0 + rng.normal(0, 10), 2)),
        )
        for i, ts in enumerate(timestamps)
    ]


@pytest.fixture
def sample_observations() -> List[ObservationRecord]:
    """Two days of incomplete hourly observations starting 2024-03-01."""
    return make_observations()


@pytest.fixture
def temp_store(sample_config) -> GridDataStore:
    """Empty GridDataStore in a temporary directory."""
    return GridDataStore(config=sample_config)


@pytest.fixture
def populated_store(temp_store, sample_observations) -> GridDataStore:
    """GridDataStore holding the sample observations."""
    temp_store.save_observations(sample_observations)
    return temp_store


@pytest.fixture
def seeded_estimator(sample_config) -> GenerationEstimator:
    """GenerationEstimator with a fixed random seed."""
    return GenerationEstimator(config=sample_config, rng=np.random.default_rng(42))


@pytest.fixture
def flat_weather_fetcher() -> Mock:
    """Weather fetcher mock returning an empty series (defaults for every hour)."""
    fetcher = Mock()
    fetcher.fetch_hourly_weather.return_value = WeatherSeries(
        pd.DataFrame(columns=["wind_speed_100m", "shortwave_radiation", "cloudcover"],
                     index=pd.DatetimeIndex([], tz="UTC"))
    )
    return fetcher


# =============================================================================
# Scoring Fixtures
# =============================================================================


def scoring_payload(
    predictions: List[Dict] = None,
    regime: str = "stable",
    as_string: bool = True
) -> Dict:
    """Chat-completions response carrying a forecast_prices function call."""
    if predictions is None:
        predictions = [
            {"hours_ahead": h, "predicted_price": 60.0 + h, "confidence": 80, "reasoning": f"{h}h outlook"}
            for h in (1, 6, 12, 24)
        ]
    arguments = {
        "predictions": predictions,
        "market_regime": regime,
        "key_drivers": ["wind ramp"],
        "risk_factors": ["gas outage"],
        "recommendation": "hold",
    }
    return {
        "choices": [{
            "message": {
                "tool_calls": [{
                    "function": {
                        "name": "forecast_prices",
                        "arguments": json.dumps(arguments) if as_string else arguments,
                    }
                }]
            }
        }]
    }


@pytest.fixture
def observation_factory():
    """Factory fixture wrapping make_observations."""
    return make_observations


@pytest.fixture
def scoring_response():
    """Factory fixture wrapping scoring_payload."""
    return scoring_payload
