from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd


def _staging_path(path: Path) -> Path:
    return path.with_name(f"{path.stem}-new{path.suffix}")


def _json_default(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def write_table(df: pd.DataFrame, path: Path, fmt: str = "parquet") -> Path:
    """Write a table next to ``path`` and atomically move it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = _staging_path(path)
    if fmt == "parquet":
        df.to_parquet(staging, index=False)
    elif fmt == "csv":
        df.to_csv(staging, index=False)
    else:
        raise ValueError(f"Unsupported table format: {fmt}")
    os.replace(staging, path)
    return path


def write_summary(data: dict[str, Any], path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = _staging_path(path)
    staging.write_text(
        json.dumps(data, indent=2, sort_keys=True, default=_json_default),
        encoding="utf-8",
    )
    os.replace(staging, path)
    return path
