"""
Forecast confidence intervals.

Turns an external point forecast and its confidence score (0-100) into an
interval whose width grows with horizon and shrinks with confidence:

    width = stddev * 1.5 * (1 + horizon/24 * 0.5) * (2 - confidence/100)

The lower bound is clamped at zero; the upper bound is not clamped.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from grid_analytics.data.records import PricePrediction, to_utc_timestamp
from grid_analytics.models.price_context import MarketContextSnapshot


logger = logging.getLogger(__name__)

BASE_WIDTH_MULTIPLIER = 1.5
HORIZON_DECAY_PER_DAY = 0.5


@dataclass(frozen=True)
class ForecastSignal:
    """
    One per-horizon output of the external scoring service.

    Attributes:
        hours_ahead: Forecast horizon in hours
        predicted_price: Point forecast in $/MWh
        confidence: Scorer confidence, 0-100
        reasoning: Scorer's explanation
    """
    hours_ahead: float
    predicted_price: float
    confidence: float
    reasoning: str = ""


def interval_width(stddev: float, horizon_hours: float, confidence: float) -> float:
    """
    Width of the band on each side of the point forecast.

    Confidence is clamped to [0, 100] and negative stddev or horizon count
    as zero, so the width is non-decreasing in horizon and non-increasing
    in confidence.
    """
    confidence_factor = min(100.0, max(0.0, confidence)) / 100.0
    horizon_decay = 1.0 + (max(0.0, horizon_hours) / 24.0) * HORIZON_DECAY_PER_DAY
    return max(0.0, stddev) * BASE_WIDTH_MULTIPLIER * horizon_decay * (2.0 - confidence_factor)


def calculate_interval(
    predicted_price: float,
    confidence: float,
    horizon_hours: float,
    stddev: float
) -> Tuple[float, float]:
    """
    Returns:
        (lower, upper) bounds, lower clamped at zero
    """
    width = interval_width(stddev, horizon_hours, confidence)
    return max(0.0, predicted_price - width), predicted_price + width


class ForecastConfidenceCalculator:
    """
    Build write-once PricePrediction rows from scorer signals and market volatility.

    Prices are floored at zero before the interval is applied, so the stored
    band always satisfies 0 <= lower <= predicted <= upper.
    """

    def __init__(self, model_version: Optional[str] = None, config: Optional[Dict] = None):
        if model_version is None:
            if config is None:
                from grid_analytics.config.load_config import get_config
                config = get_config()
            model_version = config.get('forecasting', {}).get('model_version', 'ai-gemini-v1')
        self.model_version = model_version

    def build_predictions(
        self,
        signals: Iterable[ForecastSignal],
        snapshot: MarketContextSnapshot,
        prediction_time: Any,
        extra_features: Optional[Mapping[str, Any]] = None
    ) -> List[PricePrediction]:
        """
        Create one prediction per signal.

        Args:
            signals: Per-horizon scorer outputs
            snapshot: Market context supplying historical volatility
            prediction_time: Time the forecast is made
            extra_features: Run-level context stored in features_used

        Returns:
            List of PricePrediction, in signal order
        """
        prediction_ts = to_utc_timestamp(prediction_time)
        predictions = []

        for signal in signals:
            if signal.hours_ahead <= 0:
                logger.warning(f"Skipping signal with non-positive horizon: {signal.hours_ahead}")
                continue

            price = max(0.0, float(signal.predicted_price))
            confidence = min(100.0, max(0.0, float(signal.confidence)))
            lower, upper = calculate_interval(price, confidence, signal.hours_ahead, snapshot.std_price)

            features = dict(extra_features or {})
            features.update({
                'ai_reasoning': signal.reasoning,
                'ai_confidence': confidence,
                'historical_avg': snapshot.mean_price,
                'historical_std': snapshot.std_price,
                'context_hours': snapshot.data_points,
            })

            predictions.append(PricePrediction(
                prediction_timestamp=prediction_ts,
                target_timestamp=prediction_ts + pd.Timedelta(hours=signal.hours_ahead),
                horizon_hours=float(signal.hours_ahead),
                predicted_price=round(price, 2),
                confidence_lower=round(lower, 2),
                confidence_upper=round(upper, 2),
                confidence_score=confidence / 100.0,
                model_version=self.model_version,
                features_used=features
            ))

        return predictions
