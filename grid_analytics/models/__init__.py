"""
Price forecasting module.

This module provides:
- PriceContextAggregator: Rolling market statistics over trailing history
- ScoringClient: External forecast scoring service client
- ForecastConfidenceCalculator: Horizon and confidence scaled intervals
- PriceForecastPipeline: End-to-end forecasting orchestration
- PredictionValidator: Accuracy tracking against realised prices
"""

from grid_analytics.models.price_context import MarketContextSnapshot, PriceContextAggregator
from grid_analytics.models.confidence import (
    ForecastConfidenceCalculator,
    ForecastSignal,
    calculate_interval,
    interval_width
)
from grid_analytics.models.scoring_client import ScoringClient, ScoringResult
from grid_analytics.models.forecast_pipeline import ForecastRun, PriceForecastPipeline
from grid_analytics.models.prediction_validation import PredictionValidator, classify_regime

__all__ = [
    'MarketContextSnapshot',
    'PriceContextAggregator',
    'ForecastConfidenceCalculator',
    'ForecastSignal',
    'calculate_interval',
    'interval_width',
    'ScoringClient',
    'ScoringResult',
    'ForecastRun',
    'PriceForecastPipeline',
    'PredictionValidator',
    'classify_regime'
]
