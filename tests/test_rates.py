from __future__ import annotations

import pandas as pd
import pytest

from drain_audit.config import RatesConfig
from drain_audit.features.rates import (
    RATE_COLUMNS,
    extract_rates,
    merge_rates,
    parse_process_names,
    rate_devices,
)
from drain_audit.features.registry import EntityRegistry
from drain_audit.io.schema import SNAPSHOT_COLUMNS

LEVEL = "batterylevelchanged"


def _snapshots(rows: list[tuple[object, ...]]) -> pd.DataFrame:
    return pd.DataFrame(rows, columns=SNAPSHOT_COLUMNS)


def _registry() -> EntityRegistry:
    registry = EntityRegistry()
    registry.register("dev-a", "9.1", "iPhone7,2")
    return registry


def test_parse_process_names_strips_pid_prefix_and_blanks() -> None:
    names = parse_process_names(["12;Mail", " Safari ", "", None, "3;"])

    assert names == frozenset({"Mail", "Safari"})


def test_extract_rates_excludes_pairs_spanning_a_charge() -> None:
    snapshots = _snapshots(
        [
            ("dev-a", 0.0, 0.90, "unplugged", LEVEL, ["Mail"]),
            ("dev-a", 100.0, 0.85, "charging", LEVEL, ["Mail"]),
            ("dev-a", 200.0, 0.95, "unplugged", LEVEL, ["Maps"]),
            ("dev-a", 300.0, 0.90, "unplugged", LEVEL, ["Safari"]),
            ("dev-a", 400.0, 0.95, "unplugged", LEVEL, ["Safari"]),
        ]
    )

    rates = extract_rates(snapshots, _registry(), RatesConfig())

    assert list(rates.columns) == RATE_COLUMNS
    assert len(rates) == 1
    row = rates.iloc[0]
    assert row["time_start"] == 200.0
    assert row["time_end"] == 300.0
    assert row["rate_low"] == pytest.approx(0.05)
    assert row["rate_high"] == pytest.approx(0.05)
    assert not row["is_range"]
    assert row["apps"] == frozenset({"Maps", "Safari"})
    assert (row["os"], row["model"]) == ("9.1", "iPhone7,2")


def test_extract_rates_emits_range_when_change_moment_is_unknown() -> None:
    snapshots = _snapshots(
        [
            ("dev-b", 0.0, 0.90, "unplugged", "usernotification", []),
            ("dev-b", 100.0, 0.80, "unplugged", LEVEL, ["Mail"]),
        ]
    )

    rates = extract_rates(snapshots, EntityRegistry(), RatesConfig(level_quantum=5.0))

    assert len(rates) == 1
    row = rates.iloc[0]
    assert row["rate_low"] == pytest.approx(0.05)
    assert row["rate_high"] == pytest.approx(0.15)
    assert row["is_range"]
    assert (row["os"], row["model"]) == ("", "")


def test_extract_rates_applies_abnormal_ceiling() -> None:
    snapshots = _snapshots(
        [
            # exact 50 %/s: dropped
            ("dev-a", 0.0, 0.90, "unplugged", LEVEL, []),
            ("dev-a", 1.0, 0.40, "unplugged", LEVEL, []),
            # range [15, 25] %/s: lower bound above the ceiling, dropped
            ("dev-b", 0.0, 0.90, "unplugged", "", []),
            ("dev-b", 1.0, 0.70, "unplugged", "", []),
            # range [0, 10] %/s: kept, clipped to 9
            ("dev-c", 0.0, 0.90, "unplugged", "", []),
            ("dev-c", 1.0, 0.85, "unplugged", "", []),
        ]
    )

    rates = extract_rates(snapshots, EntityRegistry(), RatesConfig(abnormal_rate=9.0))

    assert rates["device_id"].tolist() == ["dev-c"]
    assert rates.iloc[0]["rate_low"] == pytest.approx(0.0)
    assert rates.iloc[0]["rate_high"] == pytest.approx(9.0)


def test_extract_rates_skips_zero_elapsed_and_unordered_snapshots() -> None:
    snapshots = _snapshots(
        [
            ("dev-a", 10.0, 0.90, "unplugged", LEVEL, []),
            ("dev-a", 10.0, 0.85, "unplugged", LEVEL, []),
            ("dev-a", float("nan"), 0.80, "unplugged", LEVEL, []),
        ]
    )

    rates = extract_rates(snapshots, EntityRegistry(), RatesConfig())

    assert rates.empty
    assert list(rates.columns) == RATE_COLUMNS


def test_extract_rates_accepts_percent_levels() -> None:
    snapshots = _snapshots(
        [
            ("dev-a", 0.0, 90.0, "unplugged", LEVEL, []),
            ("dev-a", 50.0, 85.0, "unplugged", LEVEL, []),
        ]
    )

    rates = extract_rates(snapshots, EntityRegistry(), RatesConfig(battery_level_scale="percent"))

    assert rates.iloc[0]["rate_low"] == pytest.approx(0.1)


def test_merge_rates_deduplicates_on_observation_key() -> None:
    snapshots = _snapshots(
        [
            ("dev-a", 0.0, 0.90, "unplugged", LEVEL, ["Mail"]),
            ("dev-a", 100.0, 0.85, "unplugged", LEVEL, ["Mail"]),
            ("dev-a", 200.0, 0.80, "unplugged", LEVEL, ["Mail"]),
        ]
    )
    rates = extract_rates(snapshots, _registry(), RatesConfig())

    merged = merge_rates(rates, rates)

    assert len(merged) == 2
    assert merge_rates(None, None).empty


def test_rate_devices_builds_registry_from_rates() -> None:
    snapshots = _snapshots(
        [
            ("dev-a", 0.0, 0.90, "unplugged", LEVEL, []),
            ("dev-a", 100.0, 0.85, "unplugged", LEVEL, []),
        ]
    )
    rates = extract_rates(snapshots, _registry(), RatesConfig())

    registry = rate_devices(rates)

    assert registry.lookup("dev-a") == ("9.1", "iPhone7,2")
    assert registry.lookup("unknown") == ("", "")
    assert len(registry) == 1
