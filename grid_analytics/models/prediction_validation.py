"""
Prediction validation against realised prices.

Matches stored predictions whose target hour has passed to the observed
pool price for that hour and appends accuracy rows to a separate table.
Predictions themselves are never modified.
"""

import logging
from typing import Any, Dict, List, Optional

import pandas as pd
from sklearn.metrics import mean_absolute_error

from grid_analytics.data.data_manager import GridDataStore
from grid_analytics.data.records import PricePrediction, to_utc_timestamp


logger = logging.getLogger(__name__)


def classify_regime(price: float) -> str:
    """Price regime: spike >= 200, elevated >= 100, low < 30, otherwise normal."""
    if price >= 200:
        return 'spike'
    if price >= 100:
        return 'elevated'
    if price < 30:
        return 'low'
    return 'normal'


def calculate_errors(actual: float, predicted: float) -> Dict[str, float]:
    """
    Absolute, percent and symmetric percent error for one prediction.

    Percentage errors are reported as 0 when their denominator is below 0.01.
    """
    absolute_error = abs(actual - predicted)
    percent_error = absolute_error / actual * 100 if actual > 0.01 else 0.0
    denominator = (abs(actual) + abs(predicted)) / 2
    symmetric_percent_error = absolute_error / denominator * 100 if denominator > 0.01 else 0.0

    return {
        'absolute_error': round(absolute_error, 2),
        'percent_error': round(percent_error, 2),
        'symmetric_percent_error': round(symmetric_percent_error, 2),
    }


def summarize_accuracy(rows: pd.DataFrame) -> Dict[str, Any]:
    """
    Aggregate accuracy rows.

    Returns:
        Dictionary with count, mae, smape, coverage (share of actuals inside
        the band) and a per-horizon breakdown
    """
    if rows.empty:
        return {'count': 0, 'mae': None, 'smape': None, 'coverage': None, 'by_horizon': {}}

    def _stats(frame: pd.DataFrame) -> Dict[str, Any]:
        return {
            'count': int(len(frame)),
            'mae': round(float(mean_absolute_error(frame['actual_price'], frame['predicted_price'])), 2),
            'smape': round(float(frame['symmetric_percent_error'].mean()), 2),
            'coverage': round(float(frame['within_confidence'].mean()), 4),
        }

    summary = _stats(rows)
    summary['by_horizon'] = {
        f"{horizon:g}h": _stats(group)
        for horizon, group in rows.groupby('horizon_hours', sort=True)
    }
    return summary


class PredictionValidator:
    """
    Validate matured predictions against observed prices.

    Example:
        >>> validator = PredictionValidator(store)
        >>> report = validator.validate()
        >>> report['summary']['mae']
    """

    def __init__(self, store: GridDataStore):
        self.store = store

    def validate(self, now: Optional[Any] = None) -> Dict[str, Any]:
        """
        Validate every matured, not-yet-validated prediction.

        Args:
            now: Cut-off for matured targets; defaults to the current UTC time

        Returns:
            Dictionary with validated, no_data, total_processed and summary
        """
        now_ts = to_utc_timestamp(now) if now is not None else pd.Timestamp.now(tz='UTC')

        already_validated = set()
        existing = self.store.load_accuracy()
        if not existing.empty:
            already_validated = set(existing['prediction_key'])

        matured = [
            p for p in self.store.load_predictions()
            if p.target_timestamp <= now_ts and p.key not in already_validated
        ]
        if not matured:
            logger.info("No predictions ready for validation")
            return {'validated': 0, 'no_data': 0, 'total_processed': 0, 'summary': summarize_accuracy(pd.DataFrame())}

        actual_by_hour = self._actual_prices()

        rows: List[Dict[str, Any]] = []
        no_data = 0
        for prediction in matured:
            actual = actual_by_hour.get(prediction.target_timestamp.floor('h'))
            if actual is None:
                no_data += 1
                continue
            rows.append(self._accuracy_row(prediction, actual, now_ts))

        accuracy = pd.DataFrame(rows)
        self.store.append_accuracy(accuracy)

        logger.info(f"Validated {len(rows)} predictions; {no_data} have no actual price yet")

        return {
            'validated': len(rows),
            'no_data': no_data,
            'total_processed': len(matured),
            'summary': summarize_accuracy(accuracy),
        }

    def _actual_prices(self) -> Dict[pd.Timestamp, float]:
        observations = self.store.load_observations()
        priced = observations[observations['pool_price'].notna() & (observations['pool_price'] > 0)]
        hours = priced['timestamp'].dt.floor('h')
        # First observation wins for a given hour
        return {
            hour: float(price)
            for hour, price in zip(hours[::-1], priced['pool_price'][::-1])
        }

    @staticmethod
    def _accuracy_row(prediction: PricePrediction, actual: float, validated_at: pd.Timestamp) -> Dict[str, Any]:
        errors = calculate_errors(actual, prediction.predicted_price)
        within = bool(prediction.confidence_lower <= actual <= prediction.confidence_upper)
        predicted_regime = prediction.features_used.get('market_regime', 'unknown')

        return {
            'prediction_key': prediction.key,
            'target_timestamp': prediction.target_timestamp,
            'horizon_hours': prediction.horizon_hours,
            'model_version': prediction.model_version,
            'predicted_price': prediction.predicted_price,
            'actual_price': actual,
            **errors,
            'within_confidence': within,
            'actual_regime': classify_regime(actual),
            'predicted_regime': predicted_regime,
            'validated_at': validated_at,
        }


__all__ = ['PredictionValidator', 'calculate_errors', 'classify_regime', 'summarize_accuracy']
