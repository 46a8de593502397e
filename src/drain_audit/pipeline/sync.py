from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Protocol

import pandas as pd

from drain_audit.config import AppConfig
from drain_audit.features.rates import extract_rates, merge_rates, rate_devices
from drain_audit.features.registry import EntityRegistry
from drain_audit.io.checkpoint import Checkpoint, load_checkpoint, save_checkpoint
from drain_audit.io.rate_cache import load_rates, save_rates
from drain_audit.io.read import registration_file_source, snapshot_file_source
from drain_audit.io.records_postgres import (
    registration_postgres_source,
    snapshot_postgres_source,
)
from drain_audit.io.schema import RegistrationColumns, SnapshotColumns
from drain_audit.paths import StatePaths, build_state_paths

LOGGER = logging.getLogger(__name__)


class RecordSource(Protocol):
    def iter_batches(self, after: float | None = None) -> Iterator[pd.DataFrame]: ...


@dataclass(frozen=True)
class SyncResult:
    rates: pd.DataFrame
    registry: EntityRegistry
    checkpoint: Checkpoint
    new_snapshots: int = 0
    new_registrations: int = 0
    new_rates: int = 0


def build_record_sources(config: AppConfig) -> tuple[RecordSource, RecordSource | None]:
    """Snapshot source and optional registration source for the configured input mode."""
    if config.input.mode == "postgres":
        return snapshot_postgres_source(config), registration_postgres_source(config)
    if not config.input.samples_path:
        raise ValueError("input.samples_path must be set when input.mode is 'file'")
    registrations = (
        registration_file_source(Path(config.input.registrations_path), config)
        if config.input.registrations_path
        else None
    )
    return snapshot_file_source(Path(config.input.samples_path), config), registrations


def _fetch(source: RecordSource | None, after: float, label: str) -> pd.DataFrame:
    if source is None:
        return pd.DataFrame()
    batches = [batch for batch in source.iter_batches(after=after) if not batch.empty]
    LOGGER.info("Fetched %s %s batches after %s", len(batches), label, after)
    if not batches:
        return pd.DataFrame()
    return pd.concat(batches, ignore_index=True)


def _max_time(frame: pd.DataFrame, column: str) -> float | None:
    if frame.empty or column not in frame.columns:
        return None
    value = pd.to_numeric(frame[column], errors="coerce").max()
    return None if pd.isna(value) else float(value)


def sync_rates(
    config: AppConfig,
    snapshot_source: RecordSource | None = None,
    registration_source: RecordSource | None = None,
    state_paths: StatePaths | None = None,
) -> SyncResult:
    """Extend the cached rates with everything newer than the checkpoint.

    The rate cache is replaced before the checkpoint advances, so an abort in
    between only causes already-cached records to be fetched again; merging
    drops them as duplicates.
    """
    if snapshot_source is None:
        snapshot_source, default_registrations = build_record_sources(config)
        registration_source = registration_source or default_registrations
    paths = state_paths or build_state_paths(
        Path(config.state.state_dir), config.outputs.tables_format
    )

    checkpoint = load_checkpoint(paths.checkpoint)
    cached = load_rates(paths.rates_cache)
    registry = rate_devices(cached)

    registrations = _fetch(registration_source, checkpoint.last_registration, "registration")
    registry.update_from_registrations(registrations)
    LOGGER.info(
        "Registry holds %s devices across %s OS versions and %s models",
        len(registry),
        len(registry.oses),
        len(registry.models),
    )
    snapshots = _fetch(snapshot_source, checkpoint.last_sample, "snapshot")
    fresh = extract_rates(snapshots, registry, config.rates)
    rates = merge_rates(cached, fresh)

    save_rates(rates, paths.rates_cache)
    advanced = checkpoint.advanced(
        last_sample=_max_time(snapshots, SnapshotColumns.timestamp),
        last_registration=_max_time(registrations, RegistrationColumns.timestamp),
    )
    save_checkpoint(advanced, paths.checkpoint)
    LOGGER.info(
        "Sync complete: %s snapshots, %s registrations, %s new rates, %s total rates",
        len(snapshots),
        len(registrations),
        len(fresh),
        len(rates),
    )
    return SyncResult(
        rates=rates,
        registry=registry,
        checkpoint=advanced,
        new_snapshots=len(snapshots),
        new_registrations=len(registrations),
        new_rates=len(fresh),
    )


def load_cached_rates(config: AppConfig) -> pd.DataFrame:
    paths = build_state_paths(Path(config.state.state_dir), config.outputs.tables_format)
    cached = load_rates(paths.rates_cache)
    if cached is None:
        raise ValueError(f"Run ingest first: no cached rates at {paths.rates_cache}")
    return cached
