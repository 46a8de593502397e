from __future__ import annotations

import logging
from typing import Iterable

import numpy as np
import pandas as pd

from drain_audit.config import RatesConfig
from drain_audit.features.registry import EntityRegistry
from drain_audit.io.schema import SnapshotColumns

LOGGER = logging.getLogger(__name__)

RATE_COLUMNS = [
    "device_id",
    "os",
    "model",
    "time_start",
    "time_end",
    "rate_low",
    "rate_high",
    "is_range",
    "apps",
]
RATE_KEY = ["device_id", "time_start", "time_end"]


def empty_rates() -> pd.DataFrame:
    frame = pd.DataFrame({column: pd.Series(dtype=object) for column in RATE_COLUMNS})
    for column in ("time_start", "time_end", "rate_low", "rate_high"):
        frame[column] = frame[column].astype(float)
    frame["is_range"] = frame["is_range"].astype(bool)
    return frame


def parse_process_names(entries: Iterable[object] | None) -> frozenset[str]:
    """Normalize reported process entries (``"<pid>;<name>"`` or bare names) to app names."""
    names: set[str] = set()
    for entry in entries if entries is not None else ():
        if entry is None:
            continue
        name = str(entry).rsplit(";", 1)[-1].strip()
        if name:
            names.add(name)
    return frozenset(names)


def extract_rates(
    snapshots: pd.DataFrame,
    registry: EntityRegistry,
    config: RatesConfig,
) -> pd.DataFrame:
    """Map time-ordered device snapshots to drain-rate observations.

    Consecutive snapshots of the same device form a pair. Pairs with no
    elapsed time, a charging state at either end, or a battery level increase
    are skipped. When both ends were triggered by a battery level change the
    drop is known exactly and a point rate is emitted; otherwise the true drop
    lies within one level quantum of the observed one and the pair becomes a
    uniform rate range. Rates above ``config.abnormal_rate`` are discarded.
    """
    if snapshots.empty:
        return empty_rates()

    working = snapshots.copy()
    unordered = working[SnapshotColumns.timestamp].isna()
    if unordered.any():
        LOGGER.warning("Dropping %s snapshots without a usable timestamp", int(unordered.sum()))
        working = working[~unordered]
    if working.empty:
        return empty_rates()

    scale = 100.0 if config.battery_level_scale == "fraction" else 1.0
    charging_states = {state.lower() for state in config.charging_states}
    level_events = {event.lower() for event in config.level_change_events}

    working["level"] = working[SnapshotColumns.battery_level].astype(float) * scale
    states = working[SnapshotColumns.battery_state].str.lower()
    working["is_charging"] = states.isin(charging_states)
    working["is_level_event"] = working[SnapshotColumns.event].str.lower().isin(level_events)
    working["apps"] = working[SnapshotColumns.processes].map(parse_process_names)
    working = working.sort_values(
        [SnapshotColumns.device_id, SnapshotColumns.timestamp], kind="mergesort"
    ).reset_index(drop=True)

    previous = working.groupby(SnapshotColumns.device_id, sort=False)[
        [SnapshotColumns.timestamp, "level", "is_charging", "is_level_event", "apps"]
    ].shift(1)
    has_previous = previous[SnapshotColumns.timestamp].notna()
    pairs = working[has_previous]
    previous = previous[has_previous]
    if pairs.empty:
        return empty_rates()

    elapsed = (pairs[SnapshotColumns.timestamp] - previous[SnapshotColumns.timestamp]).to_numpy()
    drop = (previous["level"].astype(float) - pairs["level"]).to_numpy()
    charging = (previous["is_charging"].astype(bool) | pairs["is_charging"]).to_numpy()
    exact = (previous["is_level_event"].astype(bool) & pairs["is_level_event"]).to_numpy()

    valid = (elapsed > 0) & ~charging & (drop >= 0)
    n_charging = int((charging | (drop < 0)).sum())

    safe_elapsed = np.where(elapsed > 0, elapsed, 1.0)
    quantum = float(config.level_quantum)
    point_rate = drop / safe_elapsed
    rate_low = np.where(exact, point_rate, np.clip(drop - quantum, 0.0, None) / safe_elapsed)
    rate_high = np.where(exact, point_rate, (drop + quantum) / safe_elapsed)
    valid &= rate_high > 0

    abnormal = valid & (rate_low > config.abnormal_rate)
    valid &= ~abnormal
    rate_high = np.minimum(rate_high, config.abnormal_rate)

    pairs = pairs[valid]
    previous = previous[valid]
    rate_low = rate_low[valid]
    rate_high = rate_high[valid]

    lookups = [registry.lookup(device_id) for device_id in pairs[SnapshotColumns.device_id]]
    rates = pd.DataFrame(
        {
            "device_id": pairs[SnapshotColumns.device_id].to_numpy(dtype=object),
            "os": [os for os, _model in lookups],
            "model": [model for _os, model in lookups],
            "time_start": previous[SnapshotColumns.timestamp].to_numpy(dtype=float),
            "time_end": pairs[SnapshotColumns.timestamp].to_numpy(dtype=float),
            "rate_low": rate_low,
            "rate_high": rate_high,
            "is_range": rate_high > rate_low,
            "apps": [
                current | prior
                for current, prior in zip(pairs["apps"], previous["apps"])
            ],
        },
        columns=RATE_COLUMNS,
    )
    LOGGER.info(
        "Extracted %s rates (%s ranges) from %s snapshots; skipped %s charging and %s abnormal",
        len(rates),
        int(rates["is_range"].sum()),
        len(working),
        n_charging,
        int(abnormal.sum()),
    )
    return rates


def merge_rates(old: pd.DataFrame | None, new: pd.DataFrame | None) -> pd.DataFrame:
    """Union cached and freshly extracted rates, keeping one row per observation key."""
    frames = [frame for frame in (old, new) if frame is not None and not frame.empty]
    if not frames:
        return empty_rates()
    merged = pd.concat([frame[RATE_COLUMNS] for frame in frames], ignore_index=True)
    merged = merged.drop_duplicates(RATE_KEY, keep="last")
    return merged.sort_values(RATE_KEY, kind="mergesort").reset_index(drop=True)


def rate_devices(rates: pd.DataFrame | None) -> EntityRegistry:
    """Registry view of the devices appearing in a rate frame."""
    registry = EntityRegistry()
    registry.update_from_rates(rates)
    return registry
