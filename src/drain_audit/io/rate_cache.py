from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from drain_audit.features.rates import RATE_COLUMNS, empty_rates
from drain_audit.io.read import load_table
from drain_audit.io.schema import coerce_process_list
from drain_audit.io.write import write_table

LOGGER = logging.getLogger(__name__)

CSV_APPS_DELIMITER = "|"


def _serialize_apps(rates: pd.DataFrame, fmt: str) -> pd.DataFrame:
    working = rates[RATE_COLUMNS].copy()
    if fmt == "csv":
        working["apps"] = working["apps"].map(lambda apps: CSV_APPS_DELIMITER.join(sorted(apps)))
    else:
        working["apps"] = working["apps"].map(lambda apps: sorted(apps))
    return working


def _deserialize(frame: pd.DataFrame) -> pd.DataFrame:
    missing = [column for column in RATE_COLUMNS if column not in frame.columns]
    if missing:
        raise ValueError(f"Cached rates missing columns: {', '.join(missing)}")
    out = frame[RATE_COLUMNS].copy()
    for column in ("device_id", "os", "model"):
        out[column] = out[column].fillna("").astype(str)
    for column in ("time_start", "time_end", "rate_low", "rate_high"):
        out[column] = pd.to_numeric(out[column], errors="coerce").astype(float)
    out["is_range"] = out["is_range"].astype(bool)
    out["apps"] = out["apps"].map(
        lambda value: frozenset(coerce_process_list(value, delimiter=CSV_APPS_DELIMITER))
    )
    return out


def load_rates(path: Path) -> pd.DataFrame | None:
    """Load previously computed rates, or ``None`` on a first run."""
    if not path.exists():
        LOGGER.info("No cached rates at %s", path)
        return None
    rates = _deserialize(load_table(path))
    LOGGER.info("Loaded %s cached rates from %s", len(rates), path)
    return rates


def save_rates(rates: pd.DataFrame | None, path: Path) -> Path:
    fmt = "csv" if path.suffix == ".csv" else "parquet"
    frame = rates if rates is not None else empty_rates()
    write_table(_serialize_apps(frame, fmt), path, fmt=fmt)
    LOGGER.info("Saved %s rates to %s", len(frame), path)
    return path
