from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from drain_audit.config import RegistrationColumnsConfig, SnapshotColumnsConfig

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotColumns:
    device_id: str = "device_id"
    timestamp: str = "timestamp"
    battery_level: str = "battery_level"
    battery_state: str = "battery_state"
    event: str = "event"
    processes: str = "processes"


@dataclass(frozen=True)
class RegistrationColumns:
    device_id: str = "device_id"
    timestamp: str = "timestamp"
    os: str = "os"
    model: str = "model"


SNAPSHOT_COLUMNS = [
    SnapshotColumns.device_id,
    SnapshotColumns.timestamp,
    SnapshotColumns.battery_level,
    SnapshotColumns.battery_state,
    SnapshotColumns.event,
    SnapshotColumns.processes,
]
REGISTRATION_COLUMNS = [
    RegistrationColumns.device_id,
    RegistrationColumns.timestamp,
    RegistrationColumns.os,
    RegistrationColumns.model,
]
SNAPSHOT_REQUIRED = (SnapshotColumns.device_id, SnapshotColumns.timestamp)
REGISTRATION_REQUIRED = (RegistrationColumns.device_id,)


def coerce_process_list(value: object, delimiter: str = "|") -> list[str]:
    """Turn a stored process cell (list, array, delimited string or null) into a list."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part for part in value.split(delimiter) if part.strip()] if value else []
    if isinstance(value, (list, tuple, set, frozenset, np.ndarray, pd.Series)):
        return [str(part) for part in value if part is not None and str(part).strip()]
    if isinstance(value, float) and np.isnan(value):
        return []
    return [str(value)]


def _rename_and_fill(
    df: pd.DataFrame,
    rename_map: dict[str, str],
    canonical: list[str],
    required: tuple[str, ...],
    defaults: dict[str, object],
) -> pd.DataFrame:
    missing_required = [
        source for source, target in rename_map.items() if target in required and source not in df
    ]
    if missing_required:
        missing_str = ", ".join(missing_required)
        raise ValueError(f"Missing required columns: {missing_str}")

    out = df.rename(columns=rename_map)
    for column in canonical:
        if column not in out.columns:
            LOGGER.warning("Column %s missing from input; using placeholder values", column)
            out[column] = defaults[column]
    return out[canonical].copy()


def normalize_snapshot_columns(
    df: pd.DataFrame,
    columns: SnapshotColumnsConfig,
    process_delimiter: str = "|",
) -> pd.DataFrame:
    """Rename source columns to canonical snapshot names and coerce their types.

    Malformed cells are replaced with placeholders (empty string, zero, empty
    process list) instead of raising. Only the device id and timestamp columns
    are structurally required.
    """
    rename_map = {
        columns.device_id: SnapshotColumns.device_id,
        columns.timestamp: SnapshotColumns.timestamp,
        columns.battery_level: SnapshotColumns.battery_level,
        columns.battery_state: SnapshotColumns.battery_state,
        columns.event: SnapshotColumns.event,
        columns.processes: SnapshotColumns.processes,
    }
    out = _rename_and_fill(
        df,
        rename_map=rename_map,
        canonical=SNAPSHOT_COLUMNS,
        required=SNAPSHOT_REQUIRED,
        defaults={
            SnapshotColumns.battery_level: 0.0,
            SnapshotColumns.battery_state: "",
            SnapshotColumns.event: "",
            SnapshotColumns.processes: None,
        },
    )
    out[SnapshotColumns.device_id] = out[SnapshotColumns.device_id].fillna("").astype(str)
    out[SnapshotColumns.timestamp] = pd.to_numeric(
        out[SnapshotColumns.timestamp], errors="coerce"
    ).astype(float)
    out[SnapshotColumns.battery_level] = (
        pd.to_numeric(out[SnapshotColumns.battery_level], errors="coerce").fillna(0.0).astype(float)
    )
    for column in (SnapshotColumns.battery_state, SnapshotColumns.event):
        out[column] = out[column].fillna("").astype(str).str.strip()
    out[SnapshotColumns.processes] = out[SnapshotColumns.processes].map(
        lambda value: coerce_process_list(value, delimiter=process_delimiter)
    )
    return out


def normalize_registration_columns(
    df: pd.DataFrame,
    columns: RegistrationColumnsConfig,
) -> pd.DataFrame:
    rename_map = {
        columns.device_id: RegistrationColumns.device_id,
        columns.timestamp: RegistrationColumns.timestamp,
        columns.os: RegistrationColumns.os,
        columns.model: RegistrationColumns.model,
    }
    out = _rename_and_fill(
        df,
        rename_map=rename_map,
        canonical=REGISTRATION_COLUMNS,
        required=REGISTRATION_REQUIRED,
        defaults={
            RegistrationColumns.timestamp: 0.0,
            RegistrationColumns.os: "",
            RegistrationColumns.model: "",
        },
    )
    out[RegistrationColumns.timestamp] = (
        pd.to_numeric(out[RegistrationColumns.timestamp], errors="coerce").fillna(0.0).astype(float)
    )
    for column in (
        RegistrationColumns.device_id,
        RegistrationColumns.os,
        RegistrationColumns.model,
    ):
        out[column] = out[column].fillna("").astype(str).str.strip()
    return out
