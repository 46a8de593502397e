from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from drain_audit.config import AppConfig
from drain_audit.io.result_sink import RESULT_TABLES, FileResultSink
from drain_audit.io.write import write_summary
from drain_audit.paths import build_output_paths
from drain_audit.pipeline.orchestrator import Orchestrator, RunSummary
from drain_audit.pipeline.sync import RecordSource, build_record_sources, sync_rates
from drain_audit.pipeline.workers import WorkerPool

LOGGER = logging.getLogger(__name__)

SUMMARY_FILE = "run_summary.json"


def analyze_rates(rates: pd.DataFrame, out_dir: Path, config: AppConfig) -> RunSummary:
    paths = build_output_paths(out_dir)
    sink = FileResultSink(paths)
    with WorkerPool(config.concurrency.max_workers) as pool:
        summary = Orchestrator(config, sink, pool).run(rates)
    payload = summary.to_dict()
    payload["tables"] = {table: len(sink.keys(table)) for table in RESULT_TABLES}
    write_summary(payload, paths.summary / SUMMARY_FILE)
    return summary


def run_all(
    out_dir: Path,
    config: AppConfig,
    sources: tuple[RecordSource, RecordSource | None] | None = None,
) -> RunSummary:
    snapshot_source, registration_source = sources or build_record_sources(config)
    synced = sync_rates(config, snapshot_source, registration_source)
    LOGGER.info("Analyzing %s rates after sync", len(synced.rates))
    return analyze_rates(synced.rates, out_dir, config)
