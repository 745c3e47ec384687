"""
Client for the external price scoring service.

The service is treated as a black box: it receives the market context as a
chat-completions request with a forced `forecast_prices` function call and
returns per-horizon point forecasts with confidence scores, plus a market
regime assessment. No statistical model runs locally.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from grid_analytics.data.data_fetcher import APIError
from grid_analytics.data.records import PricePrediction
from grid_analytics.models.confidence import ForecastSignal
from grid_analytics.models.price_context import MarketContextSnapshot


logger = logging.getLogger(__name__)

MARKET_REGIMES = ('stable', 'volatile', 'spike_risk', 'low')

SYSTEM_PROMPT = (
    "You are an expert energy market analyst specializing in {market} pool price forecasting. "
    "You have deep knowledge of real-time pricing and merit order dispatch, weather impacts on "
    "demand and on wind and solar supply, seasonal and day-of-week patterns, and gas price "
    "correlations. Your predictions should be precise, well-reasoned, and account for market "
    "fundamentals."
)

FORECAST_TOOL = {
    'type': 'function',
    'function': {
        'name': 'forecast_prices',
        'description': 'Provide structured price forecasts for the requested horizons',
        'parameters': {
            'type': 'object',
            'properties': {
                'predictions': {
                    'type': 'array',
                    'items': {
                        'type': 'object',
                        'properties': {
                            'hours_ahead': {'type': 'number', 'description': 'Hours from now'},
                            'predicted_price': {'type': 'number', 'description': 'Predicted pool price in $/MWh'},
                            'confidence': {'type': 'number', 'description': 'Confidence level 0-100'},
                            'reasoning': {'type': 'string', 'description': 'Brief explanation for this prediction'},
                        },
                        'required': ['hours_ahead', 'predicted_price', 'confidence', 'reasoning'],
                        'additionalProperties': False,
                    },
                },
                'market_regime': {
                    'type': 'string',
                    'enum': list(MARKET_REGIMES),
                    'description': 'Current market regime assessment',
                },
                'key_drivers': {'type': 'array', 'items': {'type': 'string'}},
                'risk_factors': {'type': 'array', 'items': {'type': 'string'}},
                'recommendation': {'type': 'string'},
            },
            'required': ['predictions', 'market_regime', 'key_drivers', 'risk_factors', 'recommendation'],
            'additionalProperties': False,
        },
    },
}


@dataclass
class ScoringResult:
    """Parsed scorer output."""
    signals: List[ForecastSignal]
    market_regime: str
    key_drivers: List[str] = field(default_factory=list)
    risk_factors: List[str] = field(default_factory=list)
    recommendation: str = ""

    def analysis(self) -> Dict[str, Any]:
        return {
            'market_regime': self.market_regime,
            'key_drivers': list(self.key_drivers),
            'risk_factors': list(self.risk_factors),
            'recommendation': self.recommendation,
        }


def build_user_prompt(
    snapshot: MarketContextSnapshot,
    market: str,
    horizons: Sequence[float],
    prior_predictions: Optional[Sequence[PricePrediction]] = None,
    user_context: Optional[str] = None
) -> str:
    """Render the market snapshot as the scorer's user message."""
    lines = [f"Analyze the following {market} market data and provide price predictions "
             f"for these horizons (hours ahead): {', '.join(f'{h:g}' for h in horizons)}.", ""]

    lines.append("## Current Market Conditions")
    lines.append(f"- Current Price: ${snapshot.current_price:.2f}/MWh")
    conditions = snapshot.current_conditions
    if conditions is not None:
        lines.append(f"- Observed At: {conditions.timestamp.isoformat()}")
        if conditions.demand_mw is not None:
            lines.append(f"- Current Demand: {conditions.demand_mw:,.0f} MW")
        for fuel, value in conditions.generation.items():
            if value is not None:
                lines.append(f"- {fuel.title()} Generation: {value:,.0f} MW")
    lines.append("")

    lines.append(f"## Recent Price Statistics (last {snapshot.data_points} hours)")
    lines.append(f"- Average: ${snapshot.mean_price:.2f}/MWh")
    lines.append(f"- Min: ${snapshot.min_price:.2f}/MWh")
    lines.append(f"- Max: ${snapshot.max_price:.2f}/MWh")
    lines.append(f"- Std Dev: ${snapshot.std_price:.2f}")
    lines.append(f"- 24h Trend: {snapshot.trend_24h_pct:+.1f}%")
    lines.append(f"- Last 24h Avg: ${snapshot.last_24h_avg:.2f}/MWh")
    lines.append("")

    lines.append("## Historical Hourly Averages")
    lines.extend(f"Hour {hour}: ${price}/MWh" for hour, price in sorted(snapshot.hourly_averages.items()))
    lines.append("")

    lines.append("## Recent Price Sequence (oldest first)")
    lines.append(", ".join(f"${p:.2f}" for p in snapshot.recent_prices))

    if prior_predictions:
        lines.append("")
        lines.append("## Previous Predictions")
        for prediction in prior_predictions:
            lines.append(
                f"- {prediction.target_timestamp.isoformat()} (+{prediction.horizon_hours:g}h): "
                f"${prediction.predicted_price:.2f} [{prediction.confidence_lower:.2f}, "
                f"{prediction.confidence_upper:.2f}]"
            )

    if user_context:
        lines.append("")
        lines.append("## Additional Context")
        lines.append(user_context)

    lines.append("")
    lines.append("Based on this data, provide predictions using the forecast_prices function.")
    return "\n".join(lines)


class ScoringClient:
    """
    HTTP client for the external scoring service.

    Example:
        >>> client = ScoringClient(config=config)
        >>> result = client.score(snapshot, market="AESO", horizons=[1, 6, 12, 24])
        >>> result.signals[0].predicted_price
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        config: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize scoring client.

        Args:
            api_key: Service API key. If None, reads SCORING_API_KEY or config.
            timeout: Request timeout in seconds. If None, reads from config.
            max_retries: Maximum retry attempts. If None, reads from config.
            retry_backoff: Exponential backoff multiplier. If None, reads from config.
            config: Configuration dictionary. If None, loads from config.yaml.

        Raises:
            ValueError: If no API key is provided or found in environment/config.
        """
        if config is None:
            from grid_analytics.config.load_config import get_config
            config = get_config()

        api_config = config.get("api", {}).get("scoring", {})

        # Priority: parameter > environment variable > config
        self.api_key = api_key or os.getenv('SCORING_API_KEY') or api_config.get("api_key")
        if not self.api_key:
            raise ValueError(
                "Scoring API key is required. Set SCORING_API_KEY environment variable, "
                "configure api.scoring.api_key in config.yaml, or pass api_key parameter."
            )

        self.base_url = api_config.get("base_url", "https://ai.gateway.lovable.dev/v1/chat/completions")
        self.model = api_config.get("model", "google/gemini-2.5-flash")
        self.timeout = timeout if timeout is not None else api_config.get("timeout", 120)
        self.max_retries = max_retries if max_retries is not None else api_config.get("max_retries", 2)
        self.retry_backoff = retry_backoff if retry_backoff is not None else api_config.get("retry_backoff", 2.0)

        # 429 and 402 are surfaced to the caller rather than retried
        self.session = requests.Session()
        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=self.retry_backoff,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["POST"]
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

    def score(
        self,
        snapshot: MarketContextSnapshot,
        market: str,
        horizons: Sequence[float],
        prior_predictions: Optional[Sequence[PricePrediction]] = None,
        user_context: Optional[str] = None
    ) -> ScoringResult:
        """
        Request per-horizon forecasts for the given market context.

        Returns:
            ScoringResult

        Raises:
            APIError: If the request fails or the response cannot be parsed
        """
        payload = {
            'model': self.model,
            'messages': [
                {'role': 'system', 'content': SYSTEM_PROMPT.format(market=market)},
                {'role': 'user', 'content': build_user_prompt(
                    snapshot, market, horizons, prior_predictions, user_context
                )},
            ],
            'tools': [FORECAST_TOOL],
            'tool_choice': {'type': 'function', 'function': {'name': 'forecast_prices'}},
        }
        headers = {
            'Authorization': f"Bearer {self.api_key}",
            'Content-Type': 'application/json',
        }

        logger.info(f"Requesting {market} price scoring for horizons {list(horizons)}")

        try:
            response = self.session.post(self.base_url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise APIError(f"Failed to reach scoring service: {str(e)}")

        if response.status_code == 429:
            raise APIError("Rate limit exceeded. Please try again later.")
        if response.status_code == 402:
            raise APIError("Scoring credits exhausted. Please add funds.")
        if response.status_code >= 400:
            logger.error(f"Scoring API error {response.status_code}: {response.text}")
            raise APIError(f"Scoring API error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Scoring API returned a non-JSON body: {response.text[:200]}")
            raise APIError(f"Failed to parse scoring response: {str(e)}")

        result = self.parse_response(data)
        logger.info(f"Scoring returned {len(result.signals)} forecasts, regime={result.market_regime}")
        return result

    @staticmethod
    def parse_response(data: Dict[str, Any]) -> ScoringResult:
        """
        Extract the forecast_prices call from a chat-completions response.

        Raises:
            APIError: If the response does not carry a usable forecast
        """
        try:
            tool_call = data['choices'][0]['message']['tool_calls'][0]
            if tool_call['function']['name'] != 'forecast_prices':
                raise APIError(f"Unexpected function call: {tool_call['function']['name']}")
            arguments = tool_call['function']['arguments']
            if isinstance(arguments, str):
                arguments = json.loads(arguments)

            signals = [
                ForecastSignal(
                    hours_ahead=float(p['hours_ahead']),
                    predicted_price=float(p['predicted_price']),
                    confidence=float(p['confidence']),
                    reasoning=str(p.get('reasoning', ''))
                )
                for p in arguments['predictions']
            ]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise APIError(f"Failed to parse scoring response: {str(e)}")

        regime = arguments.get('market_regime', 'stable')
        if regime not in MARKET_REGIMES:
            logger.warning(f"Unknown market regime '{regime}' from scorer")

        return ScoringResult(
            signals=signals,
            market_regime=regime,
            key_drivers=list(arguments.get('key_drivers', [])),
            risk_factors=list(arguments.get('risk_factors', [])),
            recommendation=str(arguments.get('recommendation', ''))
        )

    def close(self):
        """Close the session."""
        self.session.close()
