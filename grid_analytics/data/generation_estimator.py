"""
Capacity-factor generation estimation module.

Estimates hourly generation by fuel type from weather, demand and the
installed capacity mix for the record's year:
- Wind from a turbine power curve (cut-in, rated, cut-out)
- Solar from irradiance, cloud cover and a daylight-shaped sine ramp
- Hydro as a seasonal baseline
- Coal as baseload while capacity remains installed
- Other (cogen, biomass, storage, imports) as a bounded random baseline
- Gas as the residual that balances demand, clamped to the fleet band

The gas term absorbs the error of every other term by construction, so
estimated gas generation is not independently validated.
"""

import logging
import math
from typing import Any, Dict, Optional, Union

import numpy as np

from grid_analytics.data.records import (
    CapacityTimeline,
    EstimatorSettings,
    GenerationMix,
    WeatherObservation,
)


# Get logger (no basicConfig - central config handles logging)
logger = logging.getLogger(__name__)

ArrayLike = Union[float, np.ndarray]


def wind_capacity_factor(
    wind_speed: ArrayLike,
    cut_in: float = 3.0,
    rated: float = 12.0,
    cut_out: float = 25.0
) -> ArrayLike:
    """
    Convert wind speed to a capacity factor using a turbine power curve.

    Piecewise function:
    - v < cut_in: 0
    - cut_in <= v < rated: ((v - cut_in)/(rated - cut_in))^3
    - rated <= v < cut_out: 1
    - v >= cut_out: 0

    Args:
        wind_speed: Wind speed(s) in m/s
        cut_in: Cut-in wind speed
        rated: Rated wind speed
        cut_out: Cut-out wind speed

    Returns:
        Capacity factor(s) in [0, 1]; a float for scalar input
    """
    scalar_input = np.ndim(wind_speed) == 0
    speeds = np.atleast_1d(np.asarray(wind_speed, dtype=float))
    factor = np.zeros_like(speeds)

    mask_ramp = (speeds >= cut_in) & (speeds < rated)
    factor[mask_ramp] = ((speeds[mask_ramp] - cut_in) / (rated - cut_in)) ** 3

    mask_rated = (speeds >= rated) & (speeds < cut_out)
    factor[mask_rated] = 1.0

    if scalar_input:
        return float(factor[0])
    return factor


def solar_capacity_factor(solar_radiation: float, cloud_cover: float) -> float:
    """
    Capacity factor from shortwave irradiance (W/m²) and cloud cover (%).

    min(1, (radiation / 1000) * (1 - cloud_cover / 200))
    """
    radiation = max(0.0, solar_radiation)
    cloud = min(100.0, max(0.0, cloud_cover))
    return min(1.0, (radiation / 1000.0) * (1.0 - cloud / 200.0))


def daylight_factor(hour_of_day: int, start_hour: int = 7, end_hour: int = 19) -> float:
    """Sine ramp over the daylight window; zero outside it."""
    if hour_of_day < start_hour or hour_of_day > end_hour:
        return 0.0
    return math.sin((hour_of_day - start_hour) / (end_hour - start_hour) * math.pi)


def _value_or_default(value: Optional[float], default: float) -> float:
    if value is None:
        return default
    try:
        value = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(value) or math.isinf(value):
        return default
    return value


class GenerationEstimator:
    """
    Estimate generation by fuel type for one hour of grid operation.

    The estimator is a total function: missing or non-finite inputs fall
    back to nominal defaults and unknown years use the nearest year of the
    capacity timeline.

    Attributes:
        capacity_timeline: Installed capacity by year
        settings: Physical and operating constants
        rng: Random source for wind and other-generation variability

    Example:
        >>> estimator = GenerationEstimator(config=config)
        >>> mix = estimator.estimate(
        ...     year=2024, hour_of_day=14, wind_speed=8.0,
        ...     solar_radiation=600.0, cloud_cover=20.0, demand=10500.0
        ... )
        >>> mix.gas, mix.wind
    """

    def __init__(
        self,
        capacity_timeline: Optional[CapacityTimeline] = None,
        settings: Optional[EstimatorSettings] = None,
        rng: Optional[np.random.Generator] = None,
        config: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize the estimator.

        Args:
            capacity_timeline: Capacity by year. If None, built from config.
            settings: Estimator constants. If None, built from config.
            rng: Random generator. If None, seeded from settings.random_seed.
            config: Configuration dictionary. Only loaded when reference data is missing.
        """
        if capacity_timeline is None or settings is None:
            if config is None:
                from grid_analytics.config.load_config import get_config
                config = get_config()
            if capacity_timeline is None:
                capacity_timeline = CapacityTimeline.from_config(config)
            if settings is None:
                settings = EstimatorSettings.from_config(config)

        self.capacity_timeline = capacity_timeline
        self.settings = settings
        self.rng = rng if rng is not None else np.random.default_rng(settings.random_seed)

        logger.info(
            f"GenerationEstimator initialized: years={list(capacity_timeline.years)}, "
            f"gas band=[{settings.min_gas_mw}, {settings.max_gas_mw}]MW"
        )

    def estimate(
        self,
        year: int,
        hour_of_day: int,
        wind_speed: Optional[float],
        solar_radiation: Optional[float],
        cloud_cover: Optional[float],
        demand: Optional[float],
        month: Optional[int] = None
    ) -> GenerationMix:
        """
        Estimate generation by fuel type for one hour.

        Args:
            year: Calendar year used for the capacity lookup
            hour_of_day: Hour (0-23) used for the daylight window
            wind_speed: Hub-height wind speed in m/s
            solar_radiation: Shortwave irradiance in W/m²
            cloud_cover: Cloud cover in percent
            demand: Internal load in MW
            month: Calendar month for the hydro seasonal multiplier;
                None applies no seasonal adjustment

        Returns:
            GenerationMix rounded to whole MW
        """
        s = self.settings
        capacity = self.capacity_timeline.for_year(int(year))

        wind_speed = _value_or_default(wind_speed, s.default_wind_speed)
        solar_radiation = _value_or_default(solar_radiation, s.default_solar_radiation)
        cloud_cover = _value_or_default(cloud_cover, s.default_cloud_cover)
        demand = _value_or_default(demand, s.default_demand_mw)

        wind = self._estimate_wind(capacity.wind, wind_speed)
        solar = self._estimate_solar(capacity.solar, int(hour_of_day), solar_radiation, cloud_cover)
        hydro = self._estimate_hydro(capacity.hydro, month)
        coal = self._estimate_coal(capacity.coal)
        other = float(round(self.rng.uniform(s.other_min_mw, s.other_max_mw)))

        # Gas fills whatever demand remains (merit order)
        residual = demand - (wind + solar + hydro) - coal - other
        gas = float(min(s.max_gas_mw, max(s.min_gas_mw, round(residual))))

        return GenerationMix(gas=gas, wind=wind, solar=solar, hydro=hydro, coal=coal, other=other)

    def estimate_from_weather(
        self,
        year: int,
        hour_of_day: int,
        weather: WeatherObservation,
        demand: Optional[float],
        month: Optional[int] = None
    ) -> GenerationMix:
        """Convenience wrapper taking a WeatherObservation."""
        return self.estimate(
            year=year,
            hour_of_day=hour_of_day,
            wind_speed=weather.wind_speed_100m,
            solar_radiation=weather.shortwave_radiation,
            cloud_cover=weather.cloudcover,
            demand=demand,
            month=month
        )

    def _estimate_wind(self, capacity_mw: float, wind_speed: float) -> float:
        s = self.settings
        factor = wind_capacity_factor(wind_speed, s.cut_in_speed, s.rated_speed, s.cut_out_speed)
        variability = self.rng.uniform(1.0 - s.wind_variability, 1.0 + s.wind_variability)
        return float(max(0.0, round(capacity_mw * factor * variability)))

    def _estimate_solar(
        self,
        capacity_mw: float,
        hour_of_day: int,
        solar_radiation: float,
        cloud_cover: float
    ) -> float:
        s = self.settings
        shape = daylight_factor(hour_of_day, s.daylight_start_hour, s.daylight_end_hour)
        if shape <= 0.0:
            return 0.0
        factor = solar_capacity_factor(solar_radiation, cloud_cover)
        return float(round(capacity_mw * factor * shape * s.panel_efficiency * s.array_scaling))

    def _estimate_hydro(self, capacity_mw: float, month: Optional[int]) -> float:
        s = self.settings
        if month is None:
            seasonal = 1.0
        elif 4 <= month <= 9:
            seasonal = s.hydro_high_season_factor
        else:
            seasonal = s.hydro_low_season_factor
        return float(round(capacity_mw * s.hydro_capacity_factor * seasonal))

    def _estimate_coal(self, capacity_mw: float) -> float:
        # Zero installed coal models retirement
        if capacity_mw <= 0:
            return 0.0
        return float(round(capacity_mw * self.settings.coal_capacity_factor))
