"""
Data acquisition, estimation and storage module.

This module provides:
- Typed records and reference data (observations, predictions, capacity)
- Weather fetching from the Open-Meteo archive (WeatherFetcher)
- Capacity-factor generation estimation (GenerationEstimator)
- Parquet-backed storage (GridDataStore)
- Generation backfill orchestration (BackfillOrchestrator)
"""

# Records and reference data
from grid_analytics.data.records import (
    CapacityMix,
    CapacityTimeline,
    EstimatorSettings,
    GenerationMix,
    ObservationRecord,
    PricePrediction,
    WeatherCluster,
    WeatherObservation,
)

# Weather fetching
from grid_analytics.data.data_fetcher import APIError, WeatherFetcher, WeatherSeries, resolve_centroid

# Storage
from grid_analytics.data.data_manager import GridDataStore

# Estimation and backfill
from grid_analytics.data.generation_estimator import GenerationEstimator, wind_capacity_factor
from grid_analytics.data.backfill import (
    BackfillOrchestrator,
    BackfillRequest,
    BackfillResult,
    build_date_windows,
    group_by_date,
)

__all__ = [
    # Records
    'CapacityMix',
    'CapacityTimeline',
    'EstimatorSettings',
    'GenerationMix',
    'ObservationRecord',
    'PricePrediction',
    'WeatherCluster',
    'WeatherObservation',

    # Weather
    'APIError',
    'WeatherFetcher',
    'WeatherSeries',
    'resolve_centroid',

    # Storage
    'GridDataStore',

    # Estimation and backfill
    'GenerationEstimator',
    'wind_capacity_factor',
    'BackfillOrchestrator',
    'BackfillRequest',
    'BackfillResult',
    'build_date_windows',
    'group_by_date',
]
