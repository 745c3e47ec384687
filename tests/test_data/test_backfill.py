"""
Unit tests for generation backfill orchestration.

Tests request parsing, date grouping and windowing, batch caps,
idempotence, failure isolation per window and sub-batch, rate limiting
and response formatting with a mocked weather fetcher.
"""

from datetime import date
from unittest.mock import Mock

import pandas as pd
import pytest

from grid_analytics.data.backfill import (
    BackfillOrchestrator,
    BackfillRequest,
    BackfillResult,
    build_date_windows,
    group_by_date,
)
from grid_analytics.data.data_manager import GridDataStore


@pytest.fixture
def orchestrator_factory(sample_config, seeded_estimator, flat_weather_fetcher):
    """Build an orchestrator around a store with a recording sleep."""
    def _build(store, fetcher=None, sleep=None, **kwargs):
        return BackfillOrchestrator(
            store=store,
            weather_fetcher=fetcher or flat_weather_fetcher,
            estimator=seeded_estimator,
            sleep=sleep or Mock(),
            config=sample_config,
            **kwargs
        )
    return _build


class TestBackfillRequest:
    """Test request validation and date bounds."""

    def test_from_dict(self):
        """Test camelCase body parsing."""
        request = BackfillRequest.from_dict({"year": 2024, "month": 3, "batchSize": 100})
        assert (request.year, request.month, request.batch_size) == (2024, 3, 100)

    def test_empty_body(self):
        """Test empty or missing body means no filters."""
        assert BackfillRequest.from_dict(None) == BackfillRequest()
        assert BackfillRequest.from_dict({}).date_bounds() == (None, None)

    @pytest.mark.parametrize("body", [
        {"month": 13},
        {"month": 0},
        {"year": "2024"},
        {"batchSize": -1},
        {"batchSize": True},
        {"year": 1500},
    ])
    def test_invalid_body_raises(self, body):
        """Test malformed values are rejected."""
        with pytest.raises(ValueError):
            BackfillRequest.from_dict(body)

    def test_month_bounds(self):
        """Test inclusive bounds for a leap-year February."""
        start, end = BackfillRequest(year=2024, month=2).date_bounds()
        assert start == pd.Timestamp("2024-02-01T00:00:00Z")
        assert end == pd.Timestamp("2024-02-29T23:59:59Z")

    def test_year_bounds(self):
        """Test inclusive bounds for a whole year."""
        start, end = BackfillRequest(year=2023).date_bounds()
        assert start == pd.Timestamp("2023-01-01T00:00:00Z")
        assert end == pd.Timestamp("2023-12-31T23:59:59Z")

    def test_month_without_year_ignored(self):
        """Test a month filter needs a year."""
        assert BackfillRequest(month=5).date_bounds() == (None, None)


class TestGrouping:
    """Test date grouping and fetch windows."""

    def test_group_by_date(self, sample_observations):
        """Test records group by UTC date in ascending order."""
        groups = group_by_date(list(reversed(sample_observations)))
        assert list(groups) == [date(2024, 3, 1), date(2024, 3, 2)]
        assert len(groups[date(2024, 3, 1)]) == 24

    def test_windows_span_at_most_seven_days(self):
        """Test windows never span more than days_per_window days."""
        dates = [date(2024, 1, d) for d in range(1, 16)]
        windows = build_date_windows(dates, days_per_window=7)

        assert [len(w) for w in windows] == [7, 7, 1]
        for window in windows:
            assert (window[-1] - window[0]).days < 7

    def test_windows_with_gaps(self):
        """Test sparse dates are windowed by calendar span."""
        dates = [date(2024, 3, 1), date(2024, 3, 3), date(2024, 3, 9), date(2024, 3, 10)]
        windows = build_date_windows(dates, days_per_window=7)
        assert windows == [[date(2024, 3, 1), date(2024, 3, 3)], [date(2024, 3, 9), date(2024, 3, 10)]]

    def test_invalid_window_size(self):
        """Test ValueError for non-positive window size."""
        with pytest.raises(ValueError):
            build_date_windows([date(2024, 1, 1)], days_per_window=0)


class TestBackfillOrchestrator:
    """Test backfill runs."""

    def test_fills_all_records(self, populated_store, orchestrator_factory, flat_weather_fetcher):
        """Test a single run completes a small dataset."""
        orchestrator = orchestrator_factory(populated_store)
        result = orchestrator.run()

        assert result.success
        assert result.records_updated == 48
        assert result.dates_processed == 2
        assert result.remaining_records == 0
        assert result.is_complete
        assert result.errors == []
        assert populated_store.count_incomplete() == 0
        flat_weather_fetcher.fetch_hourly_weather.assert_called_once_with("2024-03-01", "2024-03-02")

    def test_estimates_respect_gas_band(self, populated_store, orchestrator_factory):
        """Test persisted estimates are within physical limits."""
        orchestrator_factory(populated_store).run()
        frame = populated_store.load_observations()

        assert frame["generation_gas"].between(1500, 8000).all()
        night = frame[frame["timestamp"].dt.hour < 7]
        assert (night["generation_solar"] == 0).all()

    def test_idempotent(self, populated_store, orchestrator_factory, flat_weather_fetcher):
        """Test a second run finds nothing to do and does not fetch weather."""
        orchestrator = orchestrator_factory(populated_store)
        orchestrator.run()
        before = populated_store.load_observations()

        second = orchestrator.run()
        assert second.records_updated == 0
        assert second.is_complete
        assert second.message == "All records have generation data"
        assert flat_weather_fetcher.fetch_hourly_weather.call_count == 1
        pd.testing.assert_frame_equal(before, populated_store.load_observations())

    def test_zero_batch_size(self, populated_store, orchestrator_factory, flat_weather_fetcher):
        """Test batchSize=0 selects nothing and never calls the fetcher."""
        result = orchestrator_factory(populated_store).run(batch_size=0)

        assert result.is_complete
        assert result.records_updated == 0
        assert result.remaining_records == 48
        flat_weather_fetcher.fetch_hourly_weather.assert_not_called()

    def test_empty_store(self, temp_store, orchestrator_factory, flat_weather_fetcher):
        """Test nothing to fill in an empty store."""
        result = orchestrator_factory(temp_store).run()
        assert result.is_complete
        flat_weather_fetcher.fetch_hourly_weather.assert_not_called()

    def test_batch_cap_is_partial(self, populated_store, orchestrator_factory):
        """Test the batch cap leaves remaining records for the next run."""
        result = orchestrator_factory(populated_store).run(batch_size=30)

        assert result.records_updated == 30
        assert result.remaining_records == 18
        assert not result.is_complete
        assert result.status == "partial"
        assert result.dates_processed == 2

    def test_windows_and_rate_limit(self, temp_store, orchestrator_factory, observation_factory,
                                    flat_weather_fetcher):
        """Test ten days are fetched in two windows with one pause between them."""
        temp_store.save_observations(observation_factory(start="2024-03-01", hours=240))
        sleep = Mock()
        orchestrator = orchestrator_factory(temp_store, sleep=sleep, rate_limit_seconds=0.25)

        result = orchestrator.run()

        assert result.records_updated == 240
        assert result.dates_processed == 10
        calls = [c.args for c in flat_weather_fetcher.fetch_hourly_weather.call_args_list]
        assert calls == [("2024-03-01", "2024-03-07"), ("2024-03-08", "2024-03-10")]
        sleep.assert_called_once_with(0.25)

    def test_failed_window_is_skipped(self, temp_store, orchestrator_factory, observation_factory,
                                      flat_weather_fetcher):
        """Test a failed weather fetch skips only its window."""
        temp_store.save_observations(observation_factory(start="2024-03-01", hours=240))
        good = flat_weather_fetcher.fetch_hourly_weather.return_value
        fetcher = Mock()
        fetcher.fetch_hourly_weather.side_effect = [None, good]

        result = orchestrator_factory(temp_store, fetcher=fetcher).run()

        assert result.success
        assert result.records_updated == 72
        assert result.remaining_records == 168
        assert not result.is_complete
        assert result.errors == ["Failed to fetch weather for 2024-03-01 to 2024-03-07"]

    def test_window_exception_is_recorded(self, populated_store, orchestrator_factory):
        """Test unexpected window errors are reported and the run continues."""
        fetcher = Mock()
        fetcher.fetch_hourly_weather.side_effect = RuntimeError("boom")

        result = orchestrator_factory(populated_store, fetcher=fetcher).run()

        assert result.success
        assert result.records_updated == 0
        assert result.errors == ["Error processing 2024-03-01 to 2024-03-02: boom"]

    def test_sub_batch_failure(self, populated_store, orchestrator_factory, monkeypatch):
        """Test failed updates are reported without losing the rest of the batch."""
        real_update = populated_store.update_generation

        def flaky_update(record_id, mix):
            if record_id == 5:
                raise KeyError("record 5 locked")
            real_update(record_id, mix)

        monkeypatch.setattr(populated_store, "update_generation", flaky_update)
        result = orchestrator_factory(populated_store).run()

        assert result.records_updated == 47
        assert result.remaining_records == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith("1 of 48 updates failed for 2024-03-01 to 2024-03-02")

    def test_failed_write_not_counted(self, populated_store, orchestrator_factory, sample_config,
                                      monkeypatch):
        """Test a window whose write fails counts nothing and stays incomplete."""
        def failing_write(name, data):
            raise OSError("disk full")

        monkeypatch.setattr(populated_store, "_write_table", failing_write)
        result = orchestrator_factory(populated_store).run()

        assert result.records_updated == 0
        assert result.remaining_records == 48
        assert not result.is_complete
        assert result.errors == ["Error processing 2024-03-01 to 2024-03-02: disk full"]
        assert GridDataStore(config=sample_config).count_incomplete() == 48

    def test_year_month_filter(self, temp_store, orchestrator_factory, observation_factory):
        """Test filters restrict both selection and the remaining count."""
        temp_store.save_observations(observation_factory(start="2024-03-01", hours=24, start_id=1))
        temp_store.save_observations(observation_factory(start="2025-01-15", hours=24, start_id=100))

        result = orchestrator_factory(temp_store).run(year=2025, month=1)

        assert result.records_updated == 24
        assert result.remaining_records == 0
        assert result.is_complete
        assert temp_store.count_incomplete() == 24
        assert all(r.timestamp.year == 2024 for r in temp_store.find_incomplete())

    def test_run_until_complete(self, populated_store, orchestrator_factory):
        """Test repeated runs drain the backlog."""
        result = orchestrator_factory(populated_store).run_until_complete(batch_size=10)

        assert result.is_complete
        assert result.records_updated == 48
        assert populated_store.count_incomplete() == 0

    def test_run_until_complete_stops_without_progress(self, populated_store, orchestrator_factory):
        """Test runs stop when a pass updates nothing."""
        fetcher = Mock()
        fetcher.fetch_hourly_weather.return_value = None

        result = orchestrator_factory(populated_store, fetcher=fetcher).run_until_complete(max_runs=5)

        assert not result.is_complete
        assert fetcher.fetch_hourly_weather.call_count == 1

    def test_handle_request(self, populated_store, orchestrator_factory):
        """Test request body in, camelCase response out."""
        response = orchestrator_factory(populated_store).handle_request(
            {"year": 2024, "month": 3, "batchSize": 24}
        )
        assert response == {
            "success": True,
            "recordsUpdated": 24,
            "datesProcessed": 1,
            "remainingRecords": 24,
            "isComplete": False,
        }

    def test_handle_request_invalid(self, populated_store, orchestrator_factory):
        """Test malformed bodies raise ValueError."""
        with pytest.raises(ValueError):
            orchestrator_factory(populated_store).handle_request({"month": "March"})


class TestBackfillResult:
    """Test result formatting."""

    def test_to_dict_with_errors(self):
        """Test errors are included when present."""
        result = BackfillResult(
            success=True, records_updated=1, dates_processed=1,
            remaining_records=2, is_complete=False, errors=["x"]
        )
        assert result.to_dict()["errors"] == ["x"]
        assert result.status == "partial"

    def test_to_dict_complete(self):
        """Test message is included and errors omitted."""
        result = BackfillResult(
            success=True, records_updated=0, dates_processed=0, remaining_records=0,
            is_complete=True, message="All records have generation data"
        )
        body = result.to_dict()
        assert "errors" not in body
        assert body["message"] == "All records have generation data"
        assert result.status == "complete"
