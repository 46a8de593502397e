from __future__ import annotations

from pathlib import Path

import pytest

from drain_audit.config import AppConfig
from drain_audit.io.checkpoint import load_checkpoint
from drain_audit.paths import build_state_paths
from drain_audit.pipeline import sync as sync_module
from drain_audit.pipeline.sync import build_record_sources, load_cached_rates, sync_rates

HEADER = "uuid,timestamp,batteryLevel,batteryState,triggeredBy,processes"


def _sample_lines(device_id: str, start: float, count: int, level: float) -> list[str]:
    return [
        f"{device_id},{start + index * 600},{level - index * 0.05:.2f},unplugged,"
        f"batterylevelchanged,1;Mail|2;Maps"
        for index in range(count)
    ]


def _config(tmp_path: Path) -> AppConfig:
    samples = tmp_path / "samples.csv"
    samples.write_text(
        "\n".join(
            [HEADER, *_sample_lines("dev-a", 0.0, 3, 0.95), *_sample_lines("dev-b", 0.0, 3, 0.9)]
        )
        + "\n",
        encoding="utf-8",
    )
    registrations = tmp_path / "registrations.csv"
    registrations.write_text(
        'uuid,timestamp,osVersion,model\ndev-a,1,9.1,"iPhone7,2"\ndev-b,2,8.4,"iPhone6,1"\n',
        encoding="utf-8",
    )
    config = AppConfig()
    config.input.samples_path = str(samples)
    config.input.registrations_path = str(registrations)
    config.state.state_dir = str(tmp_path / "state")
    return config


def test_sync_extracts_rates_and_advances_checkpoint(tmp_path: Path) -> None:
    config = _config(tmp_path)

    result = sync_rates(config)

    assert result.new_snapshots == 6
    assert result.new_registrations == 2
    assert len(result.rates) == 4
    assert set(result.rates["os"]) == {"9.1", "8.4"}
    assert result.checkpoint.last_sample == 1200.0
    assert result.checkpoint.last_registration == 2.0
    paths = build_state_paths(Path(config.state.state_dir))
    assert load_checkpoint(paths.checkpoint) == result.checkpoint
    assert len(load_cached_rates(config)) == 4


def test_sync_is_idempotent_with_unchanged_sources(tmp_path: Path) -> None:
    config = _config(tmp_path)

    first = sync_rates(config)
    second = sync_rates(config)

    assert second.new_snapshots == 0
    assert second.checkpoint == first.checkpoint
    assert first.rates.to_dict("records") == second.rates.to_dict("records")
    assert second.registry.lookup("dev-b") == ("8.4", "iPhone6,1")


def test_sync_appends_only_newer_snapshots(tmp_path: Path) -> None:
    config = _config(tmp_path)
    sync_rates(config)

    samples = Path(config.input.samples_path or "")
    with samples.open("a", encoding="utf-8") as handle:
        handle.write("\n".join(_sample_lines("dev-a", 5000.0, 2, 0.6)) + "\n")

    result = sync_rates(config)

    assert result.new_snapshots == 2
    assert result.new_rates == 1
    assert len(result.rates) == 5
    assert result.checkpoint.last_sample == 5600.0
    assert set(result.rates.loc[result.rates["time_start"] == 5000.0, "os"]) == {"9.1"}


def test_abort_before_checkpoint_does_not_duplicate_rates(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    config = _config(tmp_path)

    def _fail(*_args: object, **_kwargs: object) -> None:
        raise RuntimeError("disk full")

    with monkeypatch.context() as patch:
        patch.setattr(sync_module, "save_checkpoint", _fail)
        with pytest.raises(RuntimeError, match="disk full"):
            sync_rates(config)

    paths = build_state_paths(Path(config.state.state_dir))
    assert load_checkpoint(paths.checkpoint).last_sample == 0.0

    result = sync_rates(config)

    assert len(result.rates) == 4
    assert result.checkpoint.last_sample == 1200.0


def test_file_mode_requires_samples_path() -> None:
    with pytest.raises(ValueError, match="samples_path"):
        build_record_sources(AppConfig())


def test_load_cached_rates_requires_prior_ingest(tmp_path: Path) -> None:
    config = AppConfig()
    config.state.state_dir = str(tmp_path / "state")

    with pytest.raises(ValueError, match="Run ingest first"):
        load_cached_rates(config)
