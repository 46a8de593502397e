from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterator

import pandas as pd

from drain_audit.config import AppConfig
from drain_audit.io.schema import (
    RegistrationColumns,
    SnapshotColumns,
    normalize_registration_columns,
    normalize_snapshot_columns,
)

Normalizer = Callable[[pd.DataFrame], pd.DataFrame]

TABLE_SUFFIXES = frozenset({".parquet", ".csv", ".jsonl", ".ndjson"})


def load_table(path: Path) -> pd.DataFrame:
    if path.suffix == ".parquet":
        return pd.read_parquet(path)
    if path.suffix == ".csv":
        # utf-8-sig strips BOM-prefixed headers commonly found in exported CSV files.
        return pd.read_csv(path, encoding="utf-8-sig")
    if path.suffix in {".jsonl", ".ndjson"}:
        return pd.read_json(path, lines=True)
    raise ValueError(f"Unsupported table file type: {path.suffix}")


class FileRecordSource:
    """Snapshot or registration records read from a local table file.

    Batches hold canonical columns, ordered by device then time, and only
    contain records strictly newer than ``after`` when it is given.
    """

    def __init__(
        self,
        path: Path,
        normalizer: Normalizer,
        device_column: str,
        time_column: str,
        batch_size: int = 10_000,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if path.suffix not in TABLE_SUFFIXES:
            raise ValueError(f"Unsupported table file type: {path.suffix}")
        self.path = path
        self.normalizer = normalizer
        self.device_column = device_column
        self.time_column = time_column
        self.batch_size = batch_size

    def iter_batches(self, after: float | None = None) -> Iterator[pd.DataFrame]:
        frame = self.normalizer(load_table(self.path))
        if after is not None and after > 0:
            frame = frame[frame[self.time_column] > after]
        frame = frame.sort_values(
            [self.device_column, self.time_column], kind="mergesort"
        ).reset_index(drop=True)
        for start in range(0, len(frame), self.batch_size):
            yield frame.iloc[start : start + self.batch_size].reset_index(drop=True)


def snapshot_file_source(path: Path, config: AppConfig) -> FileRecordSource:
    return FileRecordSource(
        path=path,
        normalizer=lambda df: normalize_snapshot_columns(
            df,
            columns=config.columns.snapshots,
            process_delimiter=config.rates.process_delimiter,
        ),
        device_column=SnapshotColumns.device_id,
        time_column=SnapshotColumns.timestamp,
        batch_size=config.input.batch_size,
    )


def registration_file_source(path: Path, config: AppConfig) -> FileRecordSource:
    return FileRecordSource(
        path=path,
        normalizer=lambda df: normalize_registration_columns(
            df, columns=config.columns.registrations
        ),
        device_column=RegistrationColumns.device_id,
        time_column=RegistrationColumns.timestamp,
        batch_size=config.input.batch_size,
    )
