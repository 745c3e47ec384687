"""
Market context aggregation for price forecasting.

Summarises a trailing window of hourly pool prices into the statistics the
scoring service and the confidence calculator consume: mean, min, max,
population standard deviation, a 24h-over-24h trend and hour-of-day
average prices.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from grid_analytics.data.records import ObservationRecord


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketContextSnapshot:
    """
    Read-only market summary recomputed on every forecast run.

    Attributes:
        mean_price: Arithmetic mean over the window
        min_price: Minimum price
        max_price: Maximum price
        std_price: Population standard deviation
        trend_24h_pct: Percent change of the last 24 values' mean over the prior 24
        last_24h_avg: Mean of the most recent 24 values
        hourly_averages: Local hour (0-23) -> average price
        recent_prices: Most recent 24 prices, oldest first
        data_points: Number of prices in the window
        current_price: Latest price in the window
        current_conditions: Latest observation, if supplied
    """
    mean_price: float
    min_price: float
    max_price: float
    std_price: float
    trend_24h_pct: float
    last_24h_avg: float
    hourly_averages: Mapping[int, float]
    recent_prices: Tuple[float, ...]
    data_points: int
    current_price: float
    current_conditions: Optional[ObservationRecord] = field(default=None, compare=False)

    def to_features(self) -> Dict[str, Any]:
        """Plain-dict view used as scoring input and stored with predictions."""
        features = {
            'avg_price': self.mean_price,
            'min_price': self.min_price,
            'max_price': self.max_price,
            'std_price': self.std_price,
            'trend_24h_pct': self.trend_24h_pct,
            'last_24h_avg': self.last_24h_avg,
            'hourly_averages': {str(h): p for h, p in self.hourly_averages.items()},
            'recent_prices': list(self.recent_prices),
            'data_points': self.data_points,
            'current_price': self.current_price,
        }
        if self.current_conditions is not None:
            conditions = self.current_conditions
            features['current_demand_mw'] = conditions.demand_mw
            features['current_generation'] = dict(conditions.generation)
        return features


class PriceContextAggregator:
    """
    Compute rolling price statistics from a trailing window of history.

    Example:
        >>> aggregator = PriceContextAggregator(config=config)
        >>> snapshot = aggregator.aggregate(store.price_history(hours=168))
        >>> snapshot.std_price, snapshot.trend_24h_pct
    """

    def __init__(
        self,
        lookback_hours: Optional[int] = None,
        timezone: Optional[str] = None,
        config: Optional[Dict] = None
    ):
        """
        Initialize the aggregator.

        Args:
            lookback_hours: Maximum number of trailing hourly points. If None, reads from config.
            timezone: Market timezone used to bucket hour-of-day averages. If None, reads from config.
            config: Configuration dictionary. If None, loads from config.yaml.
        """
        if lookback_hours is None or timezone is None:
            if config is None:
                from grid_analytics.config.load_config import get_config
                config = get_config()
            forecasting_config = config.get('forecasting', {})
            if lookback_hours is None:
                lookback_hours = forecasting_config.get('lookback_hours', 168)
            if timezone is None:
                timezone = forecasting_config.get('timezone', 'UTC')

        self.lookback_hours = lookback_hours
        self.timezone = timezone

    def aggregate(
        self,
        prices: pd.Series,
        current: Optional[ObservationRecord] = None
    ) -> MarketContextSnapshot:
        """
        Summarise a price history.

        Args:
            prices: Hourly prices indexed by timestamp (naive timestamps are taken as UTC)
            current: Latest observation to carry as current conditions

        Returns:
            MarketContextSnapshot

        Raises:
            ValueError: If the history holds no prices
        """
        series = prices.dropna().astype(float).sort_index().tail(self.lookback_hours)
        if series.empty:
            raise ValueError("Price history is empty; cannot build market context")

        values = series.to_numpy()

        # Recent trend: last 24 values vs the 24 before them
        last_24h = values[-24:]
        prior_24h = values[-48:-24]
        last_24h_avg = float(last_24h.mean())
        prior_24h_avg = float(prior_24h.mean()) if len(prior_24h) > 0 else last_24h_avg
        if prior_24h_avg == 0:
            trend = 0.0
        else:
            trend = (last_24h_avg - prior_24h_avg) / prior_24h_avg * 100

        snapshot = MarketContextSnapshot(
            mean_price=float(values.mean()),
            min_price=float(values.min()),
            max_price=float(values.max()),
            std_price=float(np.std(values)),
            trend_24h_pct=round(trend, 1),
            last_24h_avg=last_24h_avg,
            hourly_averages=MappingProxyType(self._hourly_averages(series)),
            recent_prices=tuple(float(v) for v in last_24h),
            data_points=len(values),
            current_price=float(values[-1]),
            current_conditions=current
        )

        logger.info(
            f"Market context: {snapshot.data_points} points, mean={snapshot.mean_price:.2f}, "
            f"std={snapshot.std_price:.2f}, trend={snapshot.trend_24h_pct:+.1f}%"
        )
        return snapshot

    def _hourly_averages(self, series: pd.Series) -> Dict[int, float]:
        index = pd.DatetimeIndex(series.index)
        if index.tz is None:
            index = index.tz_localize('UTC')
        local_hours = index.tz_convert(self.timezone).hour

        grouped = series.groupby(np.asarray(local_hours)).mean()
        return {int(hour): round(float(price), 2) for hour, price in grouped.sort_index().items()}
