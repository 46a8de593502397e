from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from drain_audit.features.rates import RATE_COLUMNS
from drain_audit.io.checkpoint import Checkpoint, load_checkpoint, save_checkpoint
from drain_audit.io.rate_cache import load_rates, save_rates
from drain_audit.io.write import write_table


def _rates() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "device_id": ["dev-a", "dev-b"],
            "os": ["9.1", ""],
            "model": ["iPhone7,2", ""],
            "time_start": [0.0, 10.0],
            "time_end": [100.0, 50.0],
            "rate_low": [0.05, 0.0],
            "rate_high": [0.05, 0.2],
            "is_range": [False, True],
            "apps": [frozenset({"Mail", "Maps"}), frozenset()],
        },
        columns=RATE_COLUMNS,
    )


@pytest.mark.parametrize("suffix", ["parquet", "csv"])
def test_rate_cache_round_trips(tmp_path: Path, suffix: str) -> None:
    path = tmp_path / f"cached-rates.{suffix}"

    save_rates(_rates(), path)
    loaded = load_rates(path)

    assert loaded is not None
    assert list(loaded.columns) == RATE_COLUMNS
    assert loaded["device_id"].tolist() == ["dev-a", "dev-b"]
    assert loaded["os"].tolist() == ["9.1", ""]
    assert loaded["is_range"].tolist() == [False, True]
    assert loaded["rate_high"].tolist() == pytest.approx([0.05, 0.2])
    assert loaded["apps"].tolist() == [frozenset({"Mail", "Maps"}), frozenset()]
    assert not (tmp_path / f"cached-rates-new.{suffix}").exists()


def test_load_rates_returns_none_on_first_run(tmp_path: Path) -> None:
    assert load_rates(tmp_path / "cached-rates.parquet") is None


def test_load_rates_rejects_incomplete_cache(tmp_path: Path) -> None:
    path = tmp_path / "cached-rates.csv"
    write_table(pd.DataFrame({"device_id": ["a"]}), path, fmt="csv")

    with pytest.raises(ValueError, match="Cached rates missing columns"):
        load_rates(path)


def test_write_table_rejects_unknown_format(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Unsupported table format"):
        write_table(_rates(), tmp_path / "rates.xlsx", fmt="xlsx")


def test_checkpoint_defaults_and_only_moves_forward(tmp_path: Path) -> None:
    path = tmp_path / "checkpoint.json"
    assert load_checkpoint(path) == Checkpoint()

    checkpoint = Checkpoint(last_sample=100.0, last_registration=5.0).advanced(
        last_sample=50.0, last_registration=None
    )
    save_checkpoint(checkpoint, path)

    assert load_checkpoint(path) == Checkpoint(last_sample=100.0, last_registration=5.0)
    assert checkpoint.advanced(200.0, 7.0) == Checkpoint(200.0, 7.0)
