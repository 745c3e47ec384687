"""
Generation backfill orchestration.

Fills missing generation-by-fuel values on historical observation records:

    fetch missing -> group by date -> batch weather fetch per date window
    -> estimate and stage updates -> persist in sub-batches -> report

A run ends Complete (nothing left to fill under the request's filters) or
Partial (batch-size cap reached, or windows skipped). Runs only touch
records that are still incomplete, so a scheduler can keep re-invoking
until `is_complete` is true.
"""

import logging
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from grid_analytics.data.data_fetcher import WeatherFetcher, WeatherSeries
from grid_analytics.data.data_manager import GridDataStore
from grid_analytics.data.generation_estimator import GenerationEstimator
from grid_analytics.data.records import GenerationMix, ObservationRecord


# Get logger (no basicConfig - central config handles logging)
logger = logging.getLogger(__name__)


# =============================================================================
# Request / Result
# =============================================================================

@dataclass
class BackfillRequest:
    """
    Backfill invocation parameters.

    Attributes:
        year: Restrict to this calendar year
        month: Restrict to this month of `year` (ignored without a year)
        batch_size: Maximum records to process in this run
    """
    year: Optional[int] = None
    month: Optional[int] = None
    batch_size: Optional[int] = None

    def __post_init__(self):
        for name in ('year', 'month', 'batch_size'):
            value = getattr(self, name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                raise ValueError(f"{name} must be an integer, got {value!r}")
        if self.year is not None and not 1900 <= self.year <= 2100:
            raise ValueError(f"year out of range: {self.year}")
        if self.month is not None and not 1 <= self.month <= 12:
            raise ValueError(f"month must be within 1-12, got {self.month}")
        if self.batch_size is not None and self.batch_size < 0:
            raise ValueError(f"batchSize cannot be negative, got {self.batch_size}")

    @classmethod
    def from_dict(cls, body: Optional[Mapping[str, Any]]) -> 'BackfillRequest':
        """Parse a request body of the form {year?, month?, batchSize?}."""
        body = body or {}
        return cls(year=body.get('year'), month=body.get('month'), batch_size=body.get('batchSize'))

    def date_bounds(self) -> Tuple[Optional[pd.Timestamp], Optional[pd.Timestamp]]:
        """Inclusive UTC bounds implied by year/month, or (None, None)."""
        if self.year is None:
            if self.month is not None:
                logger.warning(f"month={self.month} given without year; ignoring month filter")
            return None, None

        if self.month is None:
            start = pd.Timestamp(year=self.year, month=1, day=1, tz='UTC')
            end = start + pd.DateOffset(years=1)
        else:
            start = pd.Timestamp(year=self.year, month=self.month, day=1, tz='UTC')
            end = start + pd.DateOffset(months=1)
        return start, end - pd.Timedelta(seconds=1)


@dataclass
class BackfillResult:
    """Outcome of one backfill run."""
    success: bool
    records_updated: int
    dates_processed: int
    remaining_records: int
    is_complete: bool
    errors: List[str] = field(default_factory=list)
    message: Optional[str] = None

    @property
    def status(self) -> str:
        return "complete" if self.is_complete else "partial"

    def to_dict(self) -> Dict[str, Any]:
        """Response body; `errors` is omitted when empty."""
        response = {
            'success': self.success,
            'recordsUpdated': self.records_updated,
            'datesProcessed': self.dates_processed,
            'remainingRecords': self.remaining_records,
            'isComplete': self.is_complete,
        }
        if self.errors:
            response['errors'] = list(self.errors)
        if self.message:
            response['message'] = self.message
        return response


# =============================================================================
# Grouping helpers
# =============================================================================

def group_by_date(records: Sequence[ObservationRecord]) -> "OrderedDict[date, List[ObservationRecord]]":
    """Group records by UTC calendar date, dates in ascending order."""
    groups: Dict[date, List[ObservationRecord]] = {}
    for record in records:
        groups.setdefault(record.timestamp.date(), []).append(record)
    return OrderedDict(sorted(groups.items()))


def build_date_windows(dates: Sequence[date], days_per_window: int = 7) -> List[List[date]]:
    """
    Batch sorted dates into fetch windows spanning at most `days_per_window` days.

    A new window starts whenever the next date falls outside the span that
    began at the current window's first date.
    """
    if days_per_window < 1:
        raise ValueError("days_per_window must be at least 1")

    windows: List[List[date]] = []
    for day in sorted(dates):
        if windows and (day - windows[-1][0]).days < days_per_window:
            windows[-1].append(day)
        else:
            windows.append([day])
    return windows


# =============================================================================
# Orchestrator
# =============================================================================

class BackfillOrchestrator:
    """
    Fill missing generation values window by window.

    Weather is fetched once per date window; every record in the window is
    estimated independently and the updates are persisted in fixed-size
    sub-batches issued concurrently. A failed weather fetch or persistence
    sub-batch is reported in `errors` and the rest of the run continues.

    Example:
        >>> orchestrator = BackfillOrchestrator(store, WeatherFetcher(), GenerationEstimator())
        >>> result = orchestrator.run(year=2024, batch_size=500)
        >>> result.to_dict()
    """

    def __init__(
        self,
        store: GridDataStore,
        weather_fetcher: WeatherFetcher,
        estimator: GenerationEstimator,
        batch_size: Optional[int] = None,
        days_per_window: Optional[int] = None,
        update_batch_size: Optional[int] = None,
        rate_limit_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        config: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Observation store (owns persistence)
            weather_fetcher: Hourly weather source
            estimator: Generation estimator
            batch_size: Default maximum records per run. If None, reads from config.
            days_per_window: Maximum days per weather request. If None, reads from config.
            update_batch_size: Concurrent updates per sub-batch. If None, reads from config.
            rate_limit_seconds: Pause between windows. If None, reads from config.
            sleep: Sleep function used for the pause
            config: Configuration dictionary. If None, loads from config.yaml.
        """
        if config is None:
            from grid_analytics.config.load_config import get_config
            config = get_config()

        backfill_config = config.get("backfill", {})

        self.store = store
        self.weather_fetcher = weather_fetcher
        self.estimator = estimator
        self.batch_size = batch_size if batch_size is not None else backfill_config.get("batch_size", 500)
        self.days_per_window = days_per_window if days_per_window is not None else backfill_config.get("days_per_window", 7)
        self.update_batch_size = update_batch_size if update_batch_size is not None else backfill_config.get("update_batch_size", 50)
        self.rate_limit_seconds = rate_limit_seconds if rate_limit_seconds is not None else backfill_config.get("rate_limit_seconds", 0.1)
        self.sleep = sleep

        if self.update_batch_size < 1:
            raise ValueError("update_batch_size must be at least 1")

        logger.info(
            f"BackfillOrchestrator initialized: batch_size={self.batch_size}, "
            f"days_per_window={self.days_per_window}, update_batch_size={self.update_batch_size}"
        )

    def handle_request(self, body: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        Run a backfill from a request body and return the response body.

        Raises:
            ValueError: If the request body is malformed
        """
        request = BackfillRequest.from_dict(body)
        return self.run(request.year, request.month, request.batch_size).to_dict()

    def run(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
        batch_size: Optional[int] = None
    ) -> BackfillResult:
        """
        Execute one backfill pass.

        Args:
            year: Optional calendar-year filter
            month: Optional month filter (requires year)
            batch_size: Maximum records to process; defaults to the configured size

        Returns:
            BackfillResult with counts, completion flag and error list
        """
        request = BackfillRequest(year=year, month=month, batch_size=batch_size)
        limit = request.batch_size if request.batch_size is not None else self.batch_size
        start, end = request.date_bounds()

        logger.info(f"Generation backfill: year={year}, month={month}, batch_size={limit}")

        # Fetch missing
        missing = self.store.find_incomplete(start=start, end=end, limit=limit)
        if not missing:
            logger.info("No records need generation estimation")
            return BackfillResult(
                success=True,
                records_updated=0,
                dates_processed=0,
                remaining_records=self.store.count_incomplete(start=start, end=end),
                is_complete=True,
                message="All records have generation data" if limit > 0 else "No records selected (batch size 0)"
            )

        logger.info(f"Found {len(missing)} records to estimate")

        # Group by date, then into fetch windows
        groups = group_by_date(missing)
        windows = build_date_windows(list(groups), self.days_per_window)
        logger.info(f"Processing {len(groups)} unique dates in {len(windows)} weather windows")

        records_updated = 0
        errors: List[str] = []

        with ThreadPoolExecutor(max_workers=self.update_batch_size) as executor:
            for i, window in enumerate(windows):
                window_start, window_end = window[0].isoformat(), window[-1].isoformat()

                try:
                    weather = self.weather_fetcher.fetch_hourly_weather(window_start, window_end)
                    if weather is None:
                        errors.append(f"Failed to fetch weather for {window_start} to {window_end}")
                        logger.warning(f"Skipping window {window_start} to {window_end}: no weather data")
                    else:
                        updates = self._stage_updates(window, groups, weather)
                        updated, failures = self._persist_updates(executor, updates, window_start, window_end)
                        errors.extend(failures)
                        # Only count the window once it is on disk
                        self.store.flush()
                        records_updated += updated
                        logger.info(f"Updated {updated} records for {window_start} to {window_end}")

                except Exception as e:
                    errors.append(f"Error processing {window_start} to {window_end}: {str(e)}")
                    logger.error(f"Error processing {window_start} to {window_end}: {str(e)}")

                # Rate limiting between windows
                if i < len(windows) - 1:
                    self.sleep(self.rate_limit_seconds)

        remaining = self.store.count_incomplete(start=start, end=end)
        logger.info(f"Backfill finished: {records_updated} records updated, {remaining} remaining")

        return BackfillResult(
            success=True,
            records_updated=records_updated,
            dates_processed=len(groups),
            remaining_records=remaining,
            is_complete=remaining == 0,
            errors=errors
        )

    def run_until_complete(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
        batch_size: Optional[int] = None,
        max_runs: int = 100
    ) -> BackfillResult:
        """
        Re-invoke run() until complete, `max_runs` is reached, or a run makes no progress.

        Returns:
            Result of the last run, with errors accumulated across runs
        """
        all_errors: List[str] = []
        total_updated = 0
        result = None

        for run_number in range(1, max_runs + 1):
            result = self.run(year=year, month=month, batch_size=batch_size)
            total_updated += result.records_updated
            all_errors.extend(result.errors)

            if result.is_complete:
                break
            if result.records_updated == 0:
                logger.warning(f"Backfill run {run_number} made no progress; stopping")
                break

        result.records_updated = total_updated
        result.errors = all_errors
        return result

    def _stage_updates(
        self,
        window: Sequence[date],
        groups: Mapping[date, List[ObservationRecord]],
        weather: WeatherSeries
    ) -> List[Tuple[int, GenerationMix]]:
        updates = []
        for day in window:
            for record in groups[day]:
                observation = weather.observation_at(record.timestamp)
                mix = self.estimator.estimate_from_weather(
                    year=record.timestamp.year,
                    hour_of_day=record.hour_of_day,
                    weather=observation,
                    demand=record.demand_mw,
                    month=record.timestamp.month
                )
                updates.append((record.id, mix))
        return updates

    def _persist_updates(
        self,
        executor: ThreadPoolExecutor,
        updates: List[Tuple[int, GenerationMix]],
        window_start: str,
        window_end: str
    ) -> Tuple[int, List[str]]:
        updated = 0
        failures: List[str] = []

        for j in range(0, len(updates), self.update_batch_size):
            batch = updates[j:j + self.update_batch_size]
            futures = [
                executor.submit(self.store.update_generation, record_id, mix)
                for record_id, mix in batch
            ]

            batch_errors = []
            for future in futures:
                try:
                    future.result()
                    updated += 1
                except Exception as e:
                    batch_errors.append(str(e))

            if batch_errors:
                logger.error(
                    f"{len(batch_errors)} of {len(batch)} updates failed for "
                    f"{window_start} to {window_end}"
                )
                failures.append(
                    f"{len(batch_errors)} of {len(batch)} updates failed for "
                    f"{window_start} to {window_end}: {batch_errors[0]}"
                )

        return updated, failures


if __name__ == "__main__":
    from grid_analytics.config.load_config import get_config

    config = get_config()
    orchestrator = BackfillOrchestrator(
        store=GridDataStore(config=config),
        weather_fetcher=WeatherFetcher(config=config),
        estimator=GenerationEstimator(config=config),
        config=config
    )

    result = orchestrator.run_until_complete()
    print(result.to_dict())
