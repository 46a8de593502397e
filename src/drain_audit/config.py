from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_DAEMON_PATTERNS = [
    "kernel_task",
    "launchd",
    "configd",
    "notifyd",
    "syslogd",
    "mDNSResponder",
    "SpringBoard",
    "backboardd",
    "com.apple.*",
]


class SnapshotColumnsConfig(BaseModel):
    device_id: str = "uuid"
    timestamp: str = "timestamp"
    battery_level: str = "batteryLevel"
    battery_state: str = "batteryState"
    event: str = "triggeredBy"
    processes: str = "processes"


class RegistrationColumnsConfig(BaseModel):
    device_id: str = "uuid"
    timestamp: str = "timestamp"
    os: str = "osVersion"
    model: str = "model"


class ColumnsConfig(BaseModel):
    snapshots: SnapshotColumnsConfig = Field(default_factory=SnapshotColumnsConfig)
    registrations: RegistrationColumnsConfig = Field(default_factory=RegistrationColumnsConfig)


class RatesConfig(BaseModel):
    battery_level_scale: Literal["fraction", "percent"] = "fraction"
    level_quantum: float = Field(default=5.0, ge=0.0)
    abnormal_rate: float = Field(default=9.0, gt=0.0)
    charging_states: list[str] = Field(default_factory=lambda: ["charging", "full"])
    level_change_events: list[str] = Field(default_factory=lambda: ["batterylevelchanged"])
    process_delimiter: str = "|"


class DistributionConfig(BaseModel):
    buckets: int = Field(default=100, ge=2)
    smallest_bucket: float = Field(default=0.0001, gt=0.0)
    decimals: int = Field(default=3, ge=0, le=12)


class ClassificationConfig(BaseModel):
    min_users: int = Field(default=5, ge=1)
    daemons: list[str] = Field(default_factory=lambda: list(DEFAULT_DAEMON_PATTERNS))
    daemons_path: str | None = None


class ConcurrencyConfig(BaseModel):
    max_workers: int = Field(default=100, ge=1)
    output_slots: int = Field(default=100, ge=1)


class InputConfig(BaseModel):
    mode: Literal["file", "postgres"] = "file"
    samples_path: str | None = None
    registrations_path: str | None = None
    db_url: str | None = None
    samples_table: str = "samples"
    registrations_table: str = "registrations"
    batch_size: int = Field(default=10_000, ge=1)


class StateConfig(BaseModel):
    state_dir: str = "state"


class OutputsConfig(BaseModel):
    tables_format: Literal["parquet", "csv"] = "parquet"


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    columns: ColumnsConfig = Field(default_factory=ColumnsConfig)
    rates: RatesConfig = Field(default_factory=RatesConfig)
    distributions: DistributionConfig = Field(default_factory=DistributionConfig)
    classification: ClassificationConfig = Field(default_factory=ClassificationConfig)
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    input: InputConfig = Field(default_factory=InputConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    outputs: OutputsConfig = Field(default_factory=OutputsConfig)


DEFAULT_CONFIG_PATH = Path("configs/default.yaml")


def _resolve_optional_path(path_value: str | None, base_dir: Path) -> str | None:
    if not path_value:
        return None
    candidate = Path(path_value)
    if candidate.is_absolute():
        return str(candidate)
    return str((base_dir / candidate).resolve())


def load_config(path: Path) -> AppConfig:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    config = AppConfig.model_validate(data)
    base_dir = path.resolve().parent

    config.input.samples_path = _resolve_optional_path(config.input.samples_path, base_dir)
    config.input.registrations_path = _resolve_optional_path(
        config.input.registrations_path,
        base_dir,
    )
    config.classification.daemons_path = _resolve_optional_path(
        config.classification.daemons_path,
        base_dir,
    )
    config.state.state_dir = (
        _resolve_optional_path(config.state.state_dir, base_dir) or str(base_dir / "state")
    )
    config.input.db_url = (
        config.input.db_url or os.getenv("DRAIN_AUDIT_DB_URL") or os.getenv("DATABASE_URL")
    )
    return config
