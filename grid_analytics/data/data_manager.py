"""
Data management module for grid observation and prediction storage.

This module provides the GridDataStore class, a Parquet-backed store
(PyArrow engine) for:
- Hourly observation records (demand, price, generation by fuel type)
- Append-only price predictions
- Append-only prediction accuracy rows
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from grid_analytics.data.records import (
    FUEL_TYPES,
    GenerationMix,
    ObservationRecord,
    PricePrediction,
    to_utc_timestamp,
)


# Get logger (no basicConfig - central config handles logging)
logger = logging.getLogger(__name__)

GENERATION_COLUMNS = [f"generation_{fuel}" for fuel in FUEL_TYPES]
OBSERVATION_COLUMNS = ['timestamp', 'demand_mw', 'pool_price', 'hour_of_day'] + GENERATION_COLUMNS


class GridDataStore:
    """
    Parquet-backed store for grid observations and price predictions.

    Observations are held in memory once loaded; generation updates are
    applied under a lock (last write wins) and written back by flush().
    Prediction and accuracy tables are append-only.

    Example:
        >>> store = GridDataStore(data_path="data/processed")
        >>> store.save_observations(records)
        >>> missing = store.find_incomplete(limit=500)
        >>> store.update_generation(missing[0].id, mix)
        >>> store.flush()
    """

    OBSERVATIONS = "observations"
    PREDICTIONS = "price_predictions"
    ACCURACY = "prediction_accuracy"

    def __init__(
        self,
        data_path: Optional[str] = None,
        compression: Optional[str] = None,
        config: Optional[Dict] = None
    ):
        """
        Initialize GridDataStore.

        Args:
            data_path: Directory holding the Parquet tables. If None, reads from config.
            compression: Compression codec ("snappy", "gzip", "brotli", "none"). If None, reads from config.
            config: Configuration dictionary. If None, loads from config.yaml.
        """
        if data_path is None or compression is None:
            if config is None:
                from grid_analytics.config.load_config import get_config
                config = get_config()
            data_config = config.get("data", {})
            parquet_config = data_config.get("parquet", {})
            if data_path is None:
                data_path = data_config.get("processed_data_path", "data/processed")
            if compression is None:
                compression = parquet_config.get("compression", "snappy")

        self.data_path = Path(data_path)
        self.compression = compression
        self.data_path.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._observations: Optional[pd.DataFrame] = None
        self._dirty = False

        logger.info(f"GridDataStore initialized: path={self.data_path}, compression={self.compression}")

    # =========================================================================
    # Table I/O
    # =========================================================================

    def _table_path(self, name: str) -> Path:
        return self.data_path / f"{name}.parquet"

    def _read_table(self, name: str) -> pd.DataFrame:
        path = self._table_path(name)
        if not path.exists():
            return pd.DataFrame()
        return pd.read_parquet(path, engine='pyarrow')

    def _write_table(self, name: str, data: pd.DataFrame) -> Path:
        filepath = self._table_path(name)
        try:
            table = pa.Table.from_pandas(data, preserve_index=False)
            pq.write_table(
                table,
                filepath,
                compression=self.compression,
                use_dictionary=True,
                write_statistics=True
            )
            logger.debug(f"Wrote {len(data)} rows to {filepath}")
            return filepath

        except Exception as e:
            logger.error(f"Failed to save data to {filepath}: {str(e)}")
            raise

    # =========================================================================
    # Observations
    # =========================================================================

    def save_observations(
        self,
        records: Union[Iterable[ObservationRecord], pd.DataFrame]
    ) -> Optional[Path]:
        """
        Insert or replace observation records (matched by id) and write the table.

        Args:
            records: ObservationRecords, or a DataFrame with an `id` column
                (or id index) and the observation columns

        Returns:
            Path to the observations table, or None if nothing was given
        """
        if isinstance(records, pd.DataFrame):
            incoming = self._normalise_frame(records)
        else:
            incoming = self._records_to_frame(list(records))

        if incoming.empty:
            logger.warning("No observation records provided, skipping save")
            return None

        with self._lock:
            current = self._ensure_observations()
            kept = current[~current.index.isin(incoming.index)]
            combined = pd.concat([kept, incoming]) if not kept.empty else incoming
            self._observations = combined.sort_values('timestamp', kind='stable')
            self._dirty = True

        logger.info(f"Saved {len(incoming)} observation records")
        return self.flush()

    def load_observations(self) -> pd.DataFrame:
        """Return a copy of all observations indexed by id, ordered by timestamp."""
        with self._lock:
            return self._ensure_observations().copy()

    def get_observation(self, record_id: int) -> ObservationRecord:
        """
        Raises:
            KeyError: If the id is unknown
        """
        with self._lock:
            frame = self._ensure_observations()
            if record_id not in frame.index:
                raise KeyError(f"Unknown observation id: {record_id}")
            return self._row_to_record(record_id, frame.loc[record_id])

    def find_incomplete(
        self,
        start: Optional[Any] = None,
        end: Optional[Any] = None,
        limit: Optional[int] = None
    ) -> List[ObservationRecord]:
        """
        Records missing any generation value, oldest first.

        Args:
            start: Inclusive lower timestamp bound
            end: Inclusive upper timestamp bound
            limit: Maximum number of records to return

        Returns:
            List of ObservationRecords
        """
        if limit is not None and limit <= 0:
            return []

        with self._lock:
            frame = self._ensure_observations()
            missing = frame[self._incomplete_mask(frame, start, end)]
            if limit is not None:
                missing = missing.head(limit)
            return [self._row_to_record(idx, row) for idx, row in missing.iterrows()]

    def count_incomplete(self, start: Optional[Any] = None, end: Optional[Any] = None) -> int:
        """Number of records still missing generation data within the bounds."""
        with self._lock:
            frame = self._ensure_observations()
            return int(self._incomplete_mask(frame, start, end).sum())

    def update_generation(self, record_id: int, mix: GenerationMix) -> None:
        """
        Set all six generation values of one record (last write wins).

        Raises:
            KeyError: If the id is unknown
        """
        with self._lock:
            frame = self._ensure_observations()
            if record_id not in frame.index:
                raise KeyError(f"Unknown observation id: {record_id}")
            frame.loc[record_id, GENERATION_COLUMNS] = [mix.as_dict()[fuel] for fuel in FUEL_TYPES]
            self._dirty = True

    def flush(self) -> Optional[Path]:
        """
        Write pending observation changes to disk.

        If the write fails, unsaved changes are discarded and the table is
        re-read from disk on next access, then the error is re-raised.
        """
        with self._lock:
            if not self._dirty or self._observations is None:
                return None
            try:
                path = self._write_table(
                    self.OBSERVATIONS,
                    self._observations.rename_axis('id').reset_index()
                )
            except Exception:
                logger.warning("Discarding unsaved observation changes after failed write")
                self._observations = None
                self._dirty = False
                raise
            self._dirty = False
        return path

    def price_history(self, end: Optional[Any] = None, hours: int = 168) -> pd.Series:
        """
        Trailing window of observed pool prices.

        Args:
            end: Inclusive end of the window; defaults to the latest priced record
            hours: Window length in hours (also caps the number of points)

        Returns:
            Series of prices indexed by UTC timestamp, oldest first
        """
        with self._lock:
            frame = self._ensure_observations()
            priced = frame[frame['pool_price'].notna()]

        if priced.empty:
            return pd.Series(dtype=float, name='pool_price')

        end_ts = to_utc_timestamp(end) if end is not None else priced['timestamp'].max()
        start_ts = end_ts - pd.Timedelta(hours=hours)
        window = priced[(priced['timestamp'] > start_ts) & (priced['timestamp'] <= end_ts)]
        window = window.sort_values('timestamp').tail(hours)

        return pd.Series(
            window['pool_price'].astype(float).values,
            index=pd.DatetimeIndex(window['timestamp'], name='timestamp'),
            name='pool_price'
        )

    def latest_observation(self, end: Optional[Any] = None) -> Optional[ObservationRecord]:
        """Most recent priced observation at or before `end`."""
        with self._lock:
            frame = self._ensure_observations()
            priced = frame[frame['pool_price'].notna()]
            if end is not None:
                priced = priced[priced['timestamp'] <= to_utc_timestamp(end)]
            if priced.empty:
                return None
            idx = priced['timestamp'].idxmax()
            return self._row_to_record(idx, priced.loc[idx])

    def _ensure_observations(self) -> pd.DataFrame:
        # Caller holds the lock
        if self._observations is None:
            raw = self._read_table(self.OBSERVATIONS)
            self._observations = self._normalise_frame(raw)
        return self._observations

    @staticmethod
    def _incomplete_mask(frame: pd.DataFrame, start: Optional[Any], end: Optional[Any]) -> pd.Series:
        mask = frame[GENERATION_COLUMNS].isna().any(axis=1)
        if start is not None:
            mask &= frame['timestamp'] >= to_utc_timestamp(start)
        if end is not None:
            mask &= frame['timestamp'] <= to_utc_timestamp(end)
        return mask

    @staticmethod
    def _normalise_frame(data: pd.DataFrame) -> pd.DataFrame:
        frame = data.copy()
        if 'id' in frame.columns:
            frame = frame.set_index('id')
        frame.index = frame.index.astype(np.int64) if len(frame) else pd.Index([], dtype=np.int64)
        frame.index.name = 'id'

        for column in OBSERVATION_COLUMNS:
            if column not in frame.columns:
                frame[column] = np.nan
        frame = frame[OBSERVATION_COLUMNS].copy()

        frame['timestamp'] = pd.to_datetime(frame['timestamp'], utc=True)
        for column in OBSERVATION_COLUMNS[1:]:
            frame[column] = pd.to_numeric(frame[column], errors='coerce').astype(float)

        return frame.sort_values('timestamp', kind='stable')

    @staticmethod
    def _records_to_frame(records: List[ObservationRecord]) -> pd.DataFrame:
        rows = []
        for record in records:
            row = {
                'id': record.id,
                'timestamp': record.timestamp,
                'demand_mw': record.demand_mw,
                'pool_price': record.pool_price,
                'hour_of_day': record.hour_of_day,
            }
            for fuel in FUEL_TYPES:
                row[f"generation_{fuel}"] = record.generation[fuel]
            rows.append(row)
        return GridDataStore._normalise_frame(pd.DataFrame(rows, columns=['id'] + OBSERVATION_COLUMNS))

    @staticmethod
    def _row_to_record(record_id: Any, row: pd.Series) -> ObservationRecord:
        return ObservationRecord(
            id=int(record_id),
            timestamp=row['timestamp'],
            demand_mw=row['demand_mw'],
            generation={fuel: row[f"generation_{fuel}"] for fuel in FUEL_TYPES},
            hour_of_day=row['hour_of_day'],
            pool_price=row['pool_price']
        )

    # =========================================================================
    # Predictions (append-only)
    # =========================================================================

    def append_predictions(self, predictions: Iterable[PricePrediction]) -> int:
        """
        Append prediction rows. Existing rows are never modified.

        Returns:
            Number of rows appended
        """
        new_rows = pd.DataFrame([p.to_row() for p in predictions])
        if new_rows.empty:
            return 0

        with self._lock:
            existing = self._read_table(self.PREDICTIONS)
            combined = pd.concat([existing, new_rows], ignore_index=True) if not existing.empty else new_rows
            self._write_table(self.PREDICTIONS, combined)

        logger.info(f"Stored {len(new_rows)} price predictions")
        return len(new_rows)

    def load_predictions(self) -> List[PricePrediction]:
        with self._lock:
            frame = self._read_table(self.PREDICTIONS)
        return [PricePrediction.from_row(row) for row in frame.to_dict(orient='records')]

    # =========================================================================
    # Prediction accuracy (append-only)
    # =========================================================================

    def append_accuracy(self, rows: pd.DataFrame) -> int:
        """Append validation rows; returns the number appended."""
        if rows.empty:
            return 0
        with self._lock:
            existing = self._read_table(self.ACCURACY)
            combined = pd.concat([existing, rows], ignore_index=True) if not existing.empty else rows
            self._write_table(self.ACCURACY, combined)
        logger.info(f"Stored {len(rows)} prediction accuracy rows")
        return len(rows)

    def load_accuracy(self) -> pd.DataFrame:
        with self._lock:
            return self._read_table(self.ACCURACY)
