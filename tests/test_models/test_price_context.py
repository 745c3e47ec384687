"""
Unit tests for PriceContextAggregator.

Tests rolling statistics, 24h trend, hour-of-day averages in the market
timezone and edge cases for short or empty histories.
"""

import numpy as np
import pandas as pd
import pytest

from grid_analytics.models.price_context import PriceContextAggregator


def _series(values, start="2024-01-08T00:00:00Z"):
    index = pd.date_range(start, periods=len(values), freq="h", tz="UTC")
    return pd.Series(values, index=index, name="pool_price", dtype=float)


@pytest.fixture
def aggregator(sample_config):
    return PriceContextAggregator(config=sample_config)


class TestPriceContextAggregator:
    """Test market context statistics."""

    def test_week_of_prices(self, aggregator):
        """Test mean 60 / stddev 10 over a seven-day window."""
        prices = _series([50.0, 70.0] * 84)
        snapshot = aggregator.aggregate(prices)

        assert snapshot.data_points == 168
        assert snapshot.mean_price == pytest.approx(60.0)
        assert snapshot.std_price == pytest.approx(10.0)
        assert snapshot.min_price == 50.0
        assert snapshot.max_price == 70.0
        assert snapshot.trend_24h_pct == 0.0
        assert snapshot.current_price == 70.0
        assert len(snapshot.recent_prices) == 24

    def test_population_stddev(self, aggregator):
        """Test standard deviation uses the population formula."""
        values = [10.0, 20.0, 30.0, 40.0]
        snapshot = aggregator.aggregate(_series(values))
        assert snapshot.std_price == pytest.approx(np.std(values))
        assert snapshot.std_price != pytest.approx(np.std(values, ddof=1))

    def test_trend(self, aggregator):
        """Test percent change of the last 24 values over the prior 24."""
        snapshot = aggregator.aggregate(_series([50.0] * 24 + [75.0] * 24))
        assert snapshot.trend_24h_pct == 50.0
        assert snapshot.last_24h_avg == 75.0

    def test_trend_without_prior_window(self, aggregator):
        """Test short histories report a flat trend."""
        snapshot = aggregator.aggregate(_series([40.0, 45.0, 50.0]))
        assert snapshot.trend_24h_pct == 0.0
        assert snapshot.data_points == 3

    def test_trend_with_zero_prior_average(self, aggregator):
        """Test a zero prior average does not divide by zero."""
        snapshot = aggregator.aggregate(_series([0.0] * 24 + [30.0] * 24))
        assert snapshot.trend_24h_pct == 0.0

    def test_hourly_averages_in_market_timezone(self, aggregator):
        """Test hour buckets use local market hours."""
        # Even UTC hours 50, odd UTC hours 70; Edmonton is UTC-7 in January
        snapshot = aggregator.aggregate(_series([50.0, 70.0] * 84))

        assert set(snapshot.hourly_averages) == set(range(24))
        assert snapshot.hourly_averages[0] == 70.0
        assert snapshot.hourly_averages[1] == 50.0

    def test_naive_index_treated_as_utc(self, sample_config):
        """Test naive timestamps are localised to UTC before bucketing."""
        utc = PriceContextAggregator(timezone="UTC", config=sample_config)
        naive = pd.Series([10.0, 20.0], index=pd.date_range("2024-01-01", periods=2, freq="h"))
        snapshot = utc.aggregate(naive)
        assert dict(snapshot.hourly_averages) == {0: 10.0, 1: 20.0}

    def test_lookback_caps_points(self, sample_config):
        """Test only the trailing lookback window is used."""
        aggregator = PriceContextAggregator(lookback_hours=24, config=sample_config)
        snapshot = aggregator.aggregate(_series([1000.0] * 10 + [50.0] * 24))
        assert snapshot.data_points == 24
        assert snapshot.max_price == 50.0

    def test_missing_values_dropped(self, aggregator):
        """Test NaN prices are ignored."""
        snapshot = aggregator.aggregate(_series([50.0, np.nan, 70.0]))
        assert snapshot.data_points == 2
        assert snapshot.mean_price == 60.0

    def test_empty_history_raises(self, aggregator):
        """Test ValueError when there are no prices."""
        with pytest.raises(ValueError, match="empty"):
            aggregator.aggregate(pd.Series(dtype=float))

    def test_to_features(self, aggregator, populated_store):
        """Test feature dict includes current conditions when supplied."""
        current = populated_store.latest_observation()
        snapshot = aggregator.aggregate(populated_store.price_history(hours=168), current=current)

        features = snapshot.to_features()
        assert features["data_points"] == 48
        assert features["current_demand_mw"] == current.demand_mw
        assert set(features["current_generation"]) == {"gas", "wind", "solar", "hydro", "coal", "other"}
