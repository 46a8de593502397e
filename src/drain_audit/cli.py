from __future__ import annotations

from pathlib import Path

import typer

from drain_audit.config import DEFAULT_CONFIG_PATH, AppConfig, load_config
from drain_audit.logging import configure_logging
from drain_audit.pipeline.orchestrator import RunSummary
from drain_audit.pipeline.run_all import analyze_rates, run_all
from drain_audit.pipeline.sync import (
    RecordSource,
    build_record_sources,
    load_cached_rates,
    sync_rates,
)

app = typer.Typer(no_args_is_help=True, add_completion=False)

LOG_LEVEL_OPTION = typer.Option("INFO", "--log-level", help="Logging level, e.g. DEBUG or INFO.")
LOG_FILE_OPTION = typer.Option(
    None, "--log-file", resolve_path=True, help="Also write log records to this file."
)


def _load_app_config(config_path: Path) -> AppConfig:
    return load_config(config_path)


def _configure_logging(log_level: str, log_file: Path | None) -> None:
    try:
        configure_logging(log_level, log_file)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--log-level") from exc


def _record_sources(cfg: AppConfig) -> tuple[RecordSource, RecordSource | None]:
    try:
        return build_record_sources(cfg)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _echo_summary(summary: RunSummary) -> None:
    counts = summary.counts
    typer.echo(
        f"Analysis complete. Hogs: {counts.get('hogs', 0)}, Bugs: {counts.get('bugs', 0)}, "
        f"Devices scored: {counts.get('jscores', 0)}"
    )


@app.command()
def ingest(
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    log_level: str = LOG_LEVEL_OPTION,
    log_file: Path | None = LOG_FILE_OPTION,
) -> None:
    """Fetch new snapshots and registrations and extend the cached rates."""
    _configure_logging(log_level, log_file)
    cfg = _load_app_config(config)
    result = sync_rates(cfg, *_record_sources(cfg))
    typer.echo(
        f"Ingest complete. New rates: {result.new_rates}, Total rates: {len(result.rates)}"
    )


@app.command()
def analyze(
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    log_level: str = LOG_LEVEL_OPTION,
    log_file: Path | None = LOG_FILE_OPTION,
) -> None:
    """Run every comparison over the cached rates and write results."""
    _configure_logging(log_level, log_file)
    cfg = _load_app_config(config)
    try:
        rates = load_cached_rates(cfg)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    _echo_summary(analyze_rates(rates, out, cfg))


@app.command()
def run(
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    log_level: str = LOG_LEVEL_OPTION,
    log_file: Path | None = LOG_FILE_OPTION,
) -> None:
    """Ingest new records, then analyze the full rate cache."""
    _configure_logging(log_level, log_file)
    cfg = _load_app_config(config)
    _echo_summary(run_all(out, cfg, _record_sources(cfg)))


if __name__ == "__main__":
    app()
