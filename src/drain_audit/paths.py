from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class OutputPaths:
    root: Path
    results: Path
    correlations: Path
    summary: Path


def build_output_paths(out_dir: Path) -> OutputPaths:
    paths = OutputPaths(
        root=out_dir,
        results=out_dir / "results",
        correlations=out_dir / "results" / "correlations",
        summary=out_dir / "summary",
    )
    for path in (
        paths.root,
        paths.results,
        paths.correlations,
        paths.summary,
    ):
        path.mkdir(parents=True, exist_ok=True)
    return paths


@dataclass(frozen=True)
class StatePaths:
    root: Path
    checkpoint: Path
    rates_cache: Path


def build_state_paths(state_dir: Path, tables_format: str = "parquet") -> StatePaths:
    extension = "parquet" if tables_format == "parquet" else "csv"
    state_dir.mkdir(parents=True, exist_ok=True)
    return StatePaths(
        root=state_dir,
        checkpoint=state_dir / "checkpoint.json",
        rates_cache=state_dir / f"cached-rates.{extension}",
    )
