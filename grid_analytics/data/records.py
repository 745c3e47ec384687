"""
Typed records and immutable reference data for the grid analytics system.

Records exchanged between the store, the weather fetcher, the generation
estimator and the forecast pipeline are plain dataclasses that check their
own field constraints on construction. Reference data (installed capacity by
year, weather clusters, estimator constants) is frozen and built from the
configuration dictionary so alternative grids can be injected in tests.
"""

import json
import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd


FUEL_TYPES: Tuple[str, ...] = ('gas', 'wind', 'solar', 'hydro', 'coal', 'other')
CAPACITY_FUELS: Tuple[str, ...] = ('wind', 'solar', 'coal', 'hydro')


def to_utc_timestamp(value: Any) -> pd.Timestamp:
    """Convert a datetime-like value to a UTC-aware pandas Timestamp."""
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        return ts.tz_localize('UTC')
    return ts.tz_convert('UTC')


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


# =============================================================================
# Observation / Weather / Generation records
# =============================================================================

@dataclass(frozen=True)
class GenerationMix:
    """
    Estimated generation by fuel type for a single hour (MW).

    Attributes:
        gas: Residual gas-fired generation
        wind: Wind generation
        solar: Solar generation
        hydro: Hydro generation
        coal: Coal generation
        other: Cogeneration, biomass, storage and imports
    """
    gas: float
    wind: float
    solar: float
    hydro: float
    coal: float
    other: float

    @property
    def total(self) -> float:
        return self.gas + self.wind + self.solar + self.hydro + self.coal + self.other

    def as_dict(self) -> Dict[str, float]:
        return {fuel: getattr(self, fuel) for fuel in FUEL_TYPES}


@dataclass
class ObservationRecord:
    """
    One hourly grid observation.

    Attributes:
        id: Record identifier in the store
        timestamp: Observation time (normalised to UTC)
        demand_mw: Internal load in MW, if known
        generation: Fuel type -> MW (None where not yet populated)
        hour_of_day: Hour used for daylight calculations; defaults to the UTC hour
        pool_price: Observed pool price in $/MWh, if known
    """
    id: int
    timestamp: pd.Timestamp
    demand_mw: Optional[float] = None
    generation: Dict[str, Optional[float]] = field(default_factory=dict)
    hour_of_day: Optional[int] = None
    pool_price: Optional[float] = None

    def __post_init__(self):
        self.timestamp = to_utc_timestamp(self.timestamp)

        unknown = set(self.generation) - set(FUEL_TYPES)
        if unknown:
            raise ValueError(f"Unknown fuel types in generation: {sorted(unknown)}")
        self.generation = {
            fuel: (None if _is_missing(self.generation.get(fuel)) else float(self.generation[fuel]))
            for fuel in FUEL_TYPES
        }

        if _is_missing(self.hour_of_day):
            self.hour_of_day = self.timestamp.hour
        self.hour_of_day = int(self.hour_of_day)
        if not 0 <= self.hour_of_day <= 23:
            raise ValueError(f"hour_of_day must be within 0-23, got {self.hour_of_day}")

        if _is_missing(self.demand_mw):
            self.demand_mw = None
        if _is_missing(self.pool_price):
            self.pool_price = None

    @property
    def is_complete(self) -> bool:
        """True once every fuel type has a value."""
        return all(self.generation[fuel] is not None for fuel in FUEL_TYPES)


@dataclass(frozen=True)
class WeatherObservation:
    """Hourly weather sample at the cluster centroid."""
    timestamp: pd.Timestamp
    wind_speed_100m: float
    shortwave_radiation: float
    cloudcover: float


# =============================================================================
# Price prediction records
# =============================================================================

@dataclass(frozen=True)
class PricePrediction:
    """
    A single stored price forecast. Rows are written once and never updated.

    Attributes:
        prediction_timestamp: When the forecast was produced
        target_timestamp: Hour being forecast
        horizon_hours: Hours between prediction and target
        predicted_price: Point forecast in $/MWh
        confidence_lower: Lower band (never negative)
        confidence_upper: Upper band
        confidence_score: Scorer confidence scaled to 0-1
        model_version: Identifier of the scoring model
        features_used: Context the forecast was produced from
    """
    prediction_timestamp: pd.Timestamp
    target_timestamp: pd.Timestamp
    horizon_hours: float
    predicted_price: float
    confidence_lower: float
    confidence_upper: float
    confidence_score: float
    model_version: str
    features_used: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'prediction_timestamp', to_utc_timestamp(self.prediction_timestamp))
        object.__setattr__(self, 'target_timestamp', to_utc_timestamp(self.target_timestamp))
        object.__setattr__(self, 'features_used', MappingProxyType(dict(self.features_used)))

        if self.horizon_hours <= 0:
            raise ValueError(f"horizon_hours must be positive, got {self.horizon_hours}")
        if self.confidence_lower < 0:
            raise ValueError("confidence_lower cannot be negative")
        if self.confidence_lower > self.confidence_upper:
            raise ValueError(
                f"confidence_lower ({self.confidence_lower}) exceeds "
                f"confidence_upper ({self.confidence_upper})"
            )
        if not 0.0 <= self.confidence_score <= 1.0:
            raise ValueError(f"confidence_score must be within [0, 1], got {self.confidence_score}")

    @property
    def key(self) -> str:
        """Stable identifier used to link validation rows back to the prediction."""
        return f"{self.model_version}:{self.prediction_timestamp.isoformat()}:{self.horizon_hours:g}h"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'prediction_timestamp': self.prediction_timestamp.isoformat(),
            'target_timestamp': self.target_timestamp.isoformat(),
            'horizon_hours': self.horizon_hours,
            'predicted_price': self.predicted_price,
            'confidence_lower': self.confidence_lower,
            'confidence_upper': self.confidence_upper,
            'confidence_score': self.confidence_score,
            'model_version': self.model_version,
            'features_used': dict(self.features_used),
        }

    def to_row(self) -> Dict[str, Any]:
        """Flat row for columnar storage (features serialised as JSON)."""
        row = self.to_dict()
        row['prediction_key'] = self.key
        row['prediction_timestamp'] = self.prediction_timestamp
        row['target_timestamp'] = self.target_timestamp
        row['features_used'] = json.dumps(row['features_used'], default=str)
        return row

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> 'PricePrediction':
        features = row.get('features_used') or '{}'
        if isinstance(features, str):
            features = json.loads(features)
        return cls(
            prediction_timestamp=row['prediction_timestamp'],
            target_timestamp=row['target_timestamp'],
            horizon_hours=float(row['horizon_hours']),
            predicted_price=float(row['predicted_price']),
            confidence_lower=float(row['confidence_lower']),
            confidence_upper=float(row['confidence_upper']),
            confidence_score=float(row['confidence_score']),
            model_version=str(row['model_version']),
            features_used=features,
        )


# =============================================================================
# Reference data
# =============================================================================

@dataclass(frozen=True)
class CapacityMix:
    """Installed nameplate capacity (MW) for the weather-driven and baseload fleets."""
    wind: float
    solar: float
    coal: float
    hydro: float


class CapacityTimeline:
    """
    Immutable mapping of calendar year -> installed capacity.

    Years that are not defined resolve to the nearest defined year
    (ties go to the later year), so any year after the table uses the
    latest entry and any year before it uses the earliest.
    """

    def __init__(self, capacity_by_year: Mapping[int, CapacityMix]):
        if not capacity_by_year:
            raise ValueError("Capacity timeline needs at least one year")
        self._by_year = MappingProxyType({int(y): c for y, c in capacity_by_year.items()})
        self._years = tuple(sorted(self._by_year))

    @property
    def years(self) -> Tuple[int, ...]:
        return self._years

    def for_year(self, year: int) -> CapacityMix:
        if year in self._by_year:
            return self._by_year[year]
        nearest = min(self._years, key=lambda y: (abs(y - year), -y))
        return self._by_year[nearest]

    def __contains__(self, year: int) -> bool:
        return year in self._by_year

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'CapacityTimeline':
        table = config.get('grid', {}).get('capacity_by_year') or DEFAULT_CAPACITY_BY_YEAR
        return cls({
            int(year): CapacityMix(**{fuel: float(values.get(fuel, 0.0)) for fuel in CAPACITY_FUELS})
            for year, values in table.items()
        })


@dataclass(frozen=True)
class WeatherCluster:
    """A generation cluster location with its share of installed capacity."""
    name: str
    lat: float
    lon: float
    weight: float

    @classmethod
    def list_from_config(cls, config: Mapping[str, Any]) -> List['WeatherCluster']:
        clusters = config.get('grid', {}).get('wind_clusters') or DEFAULT_WIND_CLUSTERS
        return [
            cls(name=c['name'], lat=float(c['lat']), lon=float(c['lon']), weight=float(c['weight']))
            for c in clusters
        ]


@dataclass(frozen=True)
class EstimatorSettings:
    """Physical and operating constants used by the generation estimator."""
    cut_in_speed: float = 3.0
    rated_speed: float = 12.0
    cut_out_speed: float = 25.0
    wind_variability: float = 0.15
    daylight_start_hour: int = 7
    daylight_end_hour: int = 19
    panel_efficiency: float = 0.18
    array_scaling: float = 5.0
    hydro_capacity_factor: float = 0.4
    hydro_high_season_factor: float = 1.1
    hydro_low_season_factor: float = 0.9
    coal_capacity_factor: float = 0.7
    other_min_mw: float = 300.0
    other_max_mw: float = 500.0
    min_gas_mw: float = 1500.0
    max_gas_mw: float = 8000.0
    default_demand_mw: float = 10500.0
    default_wind_speed: float = 8.0
    default_solar_radiation: float = 0.0
    default_cloud_cover: float = 50.0
    random_seed: Optional[int] = 42

    def __post_init__(self):
        if not self.cut_in_speed < self.rated_speed < self.cut_out_speed:
            raise ValueError("Wind speeds must satisfy cut_in < rated < cut_out")
        if self.min_gas_mw > self.max_gas_mw:
            raise ValueError("min_gas_mw cannot exceed max_gas_mw")
        if self.other_min_mw > self.other_max_mw:
            raise ValueError("other_min_mw cannot exceed other_max_mw")
        if not 0 <= self.daylight_start_hour < self.daylight_end_hour <= 23:
            raise ValueError("Daylight window must lie within 0-23 with start < end")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'EstimatorSettings':
        section = dict(config.get('grid', {}).get('estimator', {}) or {})
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in section.items() if k in known})


DEFAULT_CAPACITY_BY_YEAR: Dict[int, Dict[str, float]] = {
    2022: {'wind': 2800, 'solar': 500, 'coal': 4000, 'hydro': 900},
    2023: {'wind': 3200, 'solar': 800, 'coal': 2000, 'hydro': 900},
    2024: {'wind': 4000, 'solar': 1200, 'coal': 500, 'hydro': 900},
    2025: {'wind': 4500, 'solar': 1500, 'coal': 0, 'hydro': 900},
    2026: {'wind': 5000, 'solar': 2000, 'coal': 0, 'hydro': 900},
}

DEFAULT_WIND_CLUSTERS: List[Dict[str, Any]] = [
    {'name': 'Pincher Creek', 'lat': 49.48, 'lon': -113.94, 'weight': 0.4},
    {'name': 'Halkirk', 'lat': 52.28, 'lon': -112.13, 'weight': 0.3},
    {'name': 'Forty Mile', 'lat': 49.45, 'lon': -111.45, 'weight': 0.3},
]
