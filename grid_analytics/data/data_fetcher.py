"""
Data fetching module for historical hourly weather.

This module provides:
- WeatherFetcher: Open-Meteo archive client sampling the weighted centroid
  of the generation clusters
- WeatherSeries: hour-indexed wind, irradiance and cloud cover with
  nominal fallbacks for missing hours
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import pandas as pd
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from grid_analytics.data.records import WeatherCluster, WeatherObservation, to_utc_timestamp


# Get logger (no basicConfig - central config handles logging)
logger = logging.getLogger(__name__)

WEATHER_VARIABLES = ('wind_speed_100m', 'shortwave_radiation', 'cloudcover')

DateLike = Union[str, date, datetime, pd.Timestamp]


class APIError(Exception):
    """Custom exception for API errors."""
    pass


def resolve_centroid(clusters: Sequence[WeatherCluster]) -> Tuple[float, float]:
    """
    Collapse weighted clusters to one representative coordinate.

    Args:
        clusters: Cluster locations with capacity weights

    Returns:
        (latitude, longitude) of the weight-normalised centroid

    Raises:
        ValueError: If no clusters are given or the weights sum to zero
    """
    total_weight = sum(c.weight for c in clusters)
    if not clusters or total_weight <= 0:
        raise ValueError("At least one cluster with positive weight is required")

    lat = sum(c.lat * c.weight for c in clusters) / total_weight
    lon = sum(c.lon * c.weight for c in clusters) / total_weight
    return round(lat, 4), round(lon, 4)


class WeatherSeries:
    """
    Hourly weather indexed by UTC hour.

    Lookups for hours that are absent (or hold null values) fall back to
    nominal defaults: wind 8 m/s, radiation 0 W/m², cloud cover 50 %.
    """

    DEFAULTS = {
        'wind_speed_100m': 8.0,
        'shortwave_radiation': 0.0,
        'cloudcover': 50.0,
    }

    def __init__(self, data: pd.DataFrame, defaults: Optional[Dict[str, float]] = None):
        self.data = data.sort_index()
        self.defaults = {**self.DEFAULTS, **(defaults or {})}

    def __len__(self) -> int:
        return len(self.data)

    def observation_at(self, timestamp: Any) -> WeatherObservation:
        """Weather for the hour containing `timestamp`."""
        hour = to_utc_timestamp(timestamp).floor('h')
        values = dict(self.defaults)
        if hour in self.data.index:
            row = self.data.loc[hour]
            for column in WEATHER_VARIABLES:
                value = row.get(column)
                if value is not None and not pd.isna(value):
                    values[column] = float(value)

        return WeatherObservation(
            timestamp=hour,
            wind_speed_100m=values['wind_speed_100m'],
            shortwave_radiation=values['shortwave_radiation'],
            cloudcover=values['cloudcover']
        )

    @classmethod
    def from_hourly_payload(cls, hourly: Dict[str, Any]) -> 'WeatherSeries':
        """Build from parallel hourly arrays (`time` plus one list per variable)."""
        times = pd.to_datetime(hourly.get('time') or [], utc=True)
        n_hours = len(times)

        columns = {}
        for column in WEATHER_VARIABLES:
            # Short or missing arrays are padded with nulls
            values = (list(hourly.get(column) or []) + [None] * n_hours)[:n_hours]
            columns[column] = pd.to_numeric(pd.Series(values, dtype=object), errors='coerce').to_numpy()

        frame = pd.DataFrame(columns, index=pd.DatetimeIndex(times, name='timestamp'))
        # Keep the first sample for any duplicated hour
        frame = frame[~frame.index.duplicated(keep='first')]
        return cls(frame)


class WeatherFetcher:
    """
    Fetcher for historical hourly weather from the Open-Meteo archive API.

    Requests wind speed at 100 m (m/s), shortwave radiation (W/m²) and cloud
    cover (%) at the weighted centroid of the configured clusters. Upstream
    failures are logged and reported as None so callers can skip the window.

    Example:
        >>> fetcher = WeatherFetcher(config=config)
        >>> series = fetcher.fetch_hourly_weather("2024-01-01", "2024-01-07")
        >>> series.observation_at("2024-01-03T14:00:00Z")
    """

    DEFAULT_BASE_URL = "https://archive-api.open-meteo.com/v1/archive"

    def __init__(
        self,
        clusters: Optional[Sequence[WeatherCluster]] = None,
        timeout: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        config: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize weather fetcher.

        Args:
            clusters: Default clusters to sample. If None, reads grid.wind_clusters from config.
            timeout: Request timeout in seconds. If None, reads from config.
            max_retries: Maximum retry attempts. If None, reads from config.
            retry_backoff: Exponential backoff multiplier. If None, reads from config.
            config: Configuration dictionary. If None, loads from config.yaml.
        """
        if config is None:
            from grid_analytics.config.load_config import get_config
            config = get_config()

        api_config = config.get("api", {}).get("open_meteo", {})

        self.base_url = api_config.get("base_url", self.DEFAULT_BASE_URL)
        self.timeout = timeout if timeout is not None else api_config.get("timeout", 60)
        self.max_retries = max_retries if max_retries is not None else api_config.get("max_retries", 3)
        self.retry_backoff = retry_backoff if retry_backoff is not None else api_config.get("retry_backoff", 2.0)
        self.clusters = list(clusters) if clusters is not None else WeatherCluster.list_from_config(config)

        # Configure session with retry logic
        self.session = requests.Session()
        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=self.retry_backoff,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"]
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

    def fetch_hourly_weather(
        self,
        start_date: DateLike,
        end_date: DateLike,
        clusters: Optional[Sequence[WeatherCluster]] = None
    ) -> Optional[WeatherSeries]:
        """
        Fetch hourly weather for an inclusive date range.

        Args:
            start_date: First date (YYYY-MM-DD or date-like)
            end_date: Last date, inclusive
            clusters: Clusters to sample; defaults to the fetcher's clusters

        Returns:
            WeatherSeries, or None if the upstream request or payload failed

        Raises:
            ValueError: If dates are malformed or out of order
        """
        start_str = self._format_date(start_date, "start_date")
        end_str = self._format_date(end_date, "end_date")
        if start_str > end_str:
            raise ValueError(f"start_date ({start_str}) must not be after end_date ({end_str})")

        lat, lon = resolve_centroid(clusters if clusters is not None else self.clusters)

        params = {
            "latitude": lat,
            "longitude": lon,
            "start_date": start_str,
            "end_date": end_str,
            "hourly": ",".join(WEATHER_VARIABLES),
            "wind_speed_unit": "ms",
            "timezone": "UTC",
        }

        logger.info(f"Fetching weather: {start_str} to {end_str} at ({lat}, {lon})")

        try:
            response = self.session.get(self.base_url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()

            if data.get("error"):
                raise APIError(f"Open-Meteo error: {data.get('reason', 'unknown')}")

            hourly = data.get("hourly")
            if not hourly or not hourly.get("time"):
                raise APIError("Open-Meteo response has no hourly data")

            series = WeatherSeries.from_hourly_payload(hourly)

        except (requests.exceptions.RequestException, ValueError, APIError) as e:
            logger.warning(f"Weather fetch failed for {start_str} to {end_str}: {str(e)}")
            return None

        logger.info(f"Fetched {len(series)} hourly weather rows for {start_str} to {end_str}")
        return series

    @staticmethod
    def _format_date(value: DateLike, name: str) -> str:
        if isinstance(value, str):
            try:
                datetime.strptime(value, "%Y-%m-%d")
            except ValueError:
                raise ValueError(f"{name} must be in YYYY-MM-DD format")
            return value
        return pd.Timestamp(value).strftime("%Y-%m-%d")

    def close(self):
        """Close the session."""
        self.session.close()
