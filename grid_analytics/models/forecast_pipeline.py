"""
Price forecast pipeline.

Orchestrates one forecast run:

    price history -> market context -> external scoring
    -> confidence intervals -> append-only prediction storage
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from grid_analytics.data.data_manager import GridDataStore
from grid_analytics.data.records import PricePrediction, to_utc_timestamp
from grid_analytics.models.confidence import ForecastConfidenceCalculator
from grid_analytics.models.price_context import MarketContextSnapshot, PriceContextAggregator
from grid_analytics.models.scoring_client import ScoringClient


@dataclass
class ForecastRun:
    """
    Result of a forecast run.

    Attributes:
        predictions: Stored predictions, one per horizon
        analysis: Scorer regime, drivers, risks and recommendation
        snapshot: Market context the run was based on
        model_version: Scoring model identifier
        generated_at: Prediction timestamp
    """
    predictions: List[PricePrediction]
    analysis: Dict[str, Any]
    snapshot: MarketContextSnapshot
    model_version: str
    generated_at: pd.Timestamp
    market: str = "AESO"
    stored: int = field(default=0)

    def market_context(self) -> Dict[str, Any]:
        return {
            'current_price': self.snapshot.current_price,
            'avg_7d': self.snapshot.mean_price,
            'volatility': self.snapshot.std_price,
            'trend_24h': self.snapshot.trend_24h_pct,
            'data_points': self.snapshot.data_points,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': True,
            'market': self.market,
            'predictions': [p.to_dict() for p in self.predictions],
            'analysis': dict(self.analysis),
            'market_context': self.market_context(),
            'model_version': self.model_version,
            'generated_at': self.generated_at.isoformat(),
        }


class PriceForecastPipeline:
    """
    End-to-end short-horizon price forecasting.

    Attributes:
        store: Source of price history and sink for predictions
        scoring_client: External scoring service
        aggregator: Market context aggregator
        calculator: Confidence interval calculator
        horizons: Forecast horizons in hours
        market: Default market identifier

    Example:
        >>> pipeline = PriceForecastPipeline(store, ScoringClient(config=config), config=config)
        >>> run = pipeline.run()
        >>> [p.predicted_price for p in run.predictions]
    """

    def __init__(
        self,
        store: GridDataStore,
        scoring_client: ScoringClient,
        aggregator: Optional[PriceContextAggregator] = None,
        calculator: Optional[ForecastConfidenceCalculator] = None,
        config: Optional[Dict] = None
    ):
        self.logger = logging.getLogger(__name__)

        if config is None:
            from grid_analytics.config.load_config import get_config
            config = get_config()
        self.config = config

        forecasting_config = self.config.get('forecasting', {})
        self.horizons = [float(h) for h in forecasting_config.get('horizons', [1, 6, 12, 24])]
        self.market = forecasting_config.get('market', 'AESO')
        self.lookback_hours = forecasting_config.get('lookback_hours', 168)

        self.store = store
        self.scoring_client = scoring_client
        self.aggregator = aggregator or PriceContextAggregator(config=self.config)
        self.calculator = calculator or ForecastConfidenceCalculator(config=self.config)

        self.logger.info(
            f"PriceForecastPipeline initialized: market={self.market}, "
            f"horizons={self.horizons}, lookback={self.lookback_hours}h"
        )

    def run(
        self,
        market: Optional[str] = None,
        prior_predictions: Optional[Sequence[PricePrediction]] = None,
        user_context: Optional[str] = None,
        now: Optional[Any] = None
    ) -> ForecastRun:
        """
        Produce and store one set of forecasts.

        Args:
            market: Market identifier; defaults to the configured market
            prior_predictions: Earlier predictions passed to the scorer as context
            user_context: Free-text context passed to the scorer
            now: Forecast time; defaults to the current UTC time

        Returns:
            ForecastRun

        Raises:
            ValueError: If there is no price history to build context from
            APIError: If the scoring service fails
        """
        market = market or self.market
        now_ts = to_utc_timestamp(now) if now is not None else pd.Timestamp.now(tz='UTC')

        history = self.store.price_history(end=now_ts, hours=self.lookback_hours)
        if history.empty:
            raise ValueError(f"No price history available before {now_ts.isoformat()}")
        self.logger.info(f"Loaded {len(history)} hours of price history")

        snapshot = self.aggregator.aggregate(history, current=self.store.latest_observation(end=now_ts))

        result = self.scoring_client.score(
            snapshot,
            market=market,
            horizons=self.horizons,
            prior_predictions=prior_predictions,
            user_context=user_context
        )

        analysis = result.analysis()
        predictions = self.calculator.build_predictions(
            result.signals,
            snapshot,
            prediction_time=now_ts,
            extra_features={
                'market': market,
                'market_regime': analysis['market_regime'],
                'key_drivers': analysis['key_drivers'],
                'risk_factors': analysis['risk_factors'],
                'recommendation': analysis['recommendation'],
            }
        )

        stored = self.store.append_predictions(predictions)
        self.logger.info(f"Stored {stored} predictions for {market} (regime={analysis['market_regime']})")

        return ForecastRun(
            predictions=predictions,
            analysis=analysis,
            snapshot=snapshot,
            model_version=self.calculator.model_version,
            generated_at=now_ts,
            market=market,
            stored=stored
        )

    def handle_request(self, body: Optional[Dict[str, Any]] = None, now: Optional[Any] = None) -> Dict[str, Any]:
        """
        Run a forecast from a request body {market?, priorPredictions?, userContext?}.

        Prior predictions may be PricePrediction objects or their dict form.
        """
        body = body or {}
        prior = [
            p if isinstance(p, PricePrediction) else PricePrediction.from_row(p)
            for p in body.get('priorPredictions') or []
        ]
        run = self.run(
            market=body.get('market'),
            prior_predictions=prior or None,
            user_context=body.get('userContext'),
            now=now
        )
        return run.to_dict()
