from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from drain_audit.analysis.correlation import CorrelationResult
from drain_audit.analysis.distance import MODEL, OS
from drain_audit.analysis.distributions import build_apriori
from drain_audit.config import AppConfig
from drain_audit.features.daemons import daemons_globbed, load_daemon_patterns
from drain_audit.io.result_sink import BUGS_TABLE, HOGS_TABLE, MODELS_TABLE, OS_TABLE, ResultSink
from drain_audit.pipeline.comparisons import (
    AppOutcome,
    ComparisonContext,
    analyze_app,
    analyze_device,
    compare_attribute,
    finalize_scores,
)
from drain_audit.pipeline.workers import QUEUED, DeviceResultTables, TaskStates, WorkerPool

LOGGER = logging.getLogger(__name__)

OS_GROUP = "os"
MODEL_GROUP = "models"
APP_GROUP = "apps"
DEVICE_GROUP = "devices"
SCORE_GROUP = "scores"


@dataclass(frozen=True)
class RunSummary:
    hogs: dict[str, float] = field(default_factory=dict)
    bugs: dict[tuple[str, str], float] = field(default_factory=dict)
    counts: dict[str, int] = field(default_factory=dict)
    correlations: CorrelationResult = field(default_factory=CorrelationResult)
    jscores: dict[str, float] = field(default_factory=dict)
    task_states: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "hogs": dict(sorted(self.hogs.items())),
            "bugs": [
                {"device_id": device_id, "app": app, "distance": distance}
                for (device_id, app), distance in sorted(self.bugs.items())
            ],
            "counts": dict(self.counts),
            "correlations": self.correlations.as_dict(),
            "jscores": dict(sorted(self.jscores.items())),
            "task_states": dict(self.task_states),
        }


def _distinct_values(rates: pd.DataFrame, column: str) -> list[str]:
    return sorted(value for value in rates[column].dropna().unique() if value)


class Orchestrator:
    """Fan out every comparison of one analysis run over a shared worker pool."""

    def __init__(self, config: AppConfig, sink: ResultSink, pool: WorkerPool) -> None:
        self.config = config
        self.sink = sink
        self.pool = pool

    def _context(self, rates: pd.DataFrame) -> tuple[ComparisonContext, list[str], list[str]]:
        devices = sorted(rates["device_id"].unique()) if not rates.empty else []
        all_apps = frozenset().union(*rates["apps"]) if not rates.empty else frozenset()
        patterns = load_daemon_patterns(
            self.config.classification.daemons,
            self.config.classification.daemons_path,
        )
        daemons = daemons_globbed(all_apps, patterns)
        apps = sorted(all_apps - daemons)
        context = ComparisonContext(
            rates=rates,
            config=self.config,
            sink=self.sink,
            output_slots=threading.BoundedSemaphore(self.config.concurrency.output_slots),
            apriori=build_apriori(rates, self.config.distributions),
            oses=_distinct_values(rates, "os"),
            models=_distinct_values(rates, "model"),
            daemons=daemons,
            task_states=TaskStates(),
        )
        LOGGER.info(
            "Analyzing %s rates: %s devices, %s OS versions, %s models, %s apps (%s daemons)",
            len(rates),
            len(devices),
            len(context.oses),
            len(context.models),
            len(apps),
            len(daemons),
        )
        return context, devices, apps

    def _submit(self, context: ComparisonContext, group: str, task: str, fn, *args):
        context.task_states.set(task, QUEUED)
        return self.pool.submit(group, fn, *args)

    def run(self, rates: pd.DataFrame) -> RunSummary:
        rates = rates.reset_index(drop=True)
        context, devices, apps = self._context(rates)

        self.sink.clear(BUGS_TABLE)

        os_futures = [
            self._submit(
                context, OS_GROUP, f"{OS}:{os}", compare_attribute, context, OS_TABLE, "os", os, OS
            )
            for os in context.oses
        ]
        model_futures = [
            self._submit(
                context,
                MODEL_GROUP,
                f"{MODEL}:{model}",
                compare_attribute,
                context,
                MODELS_TABLE,
                "model",
                model,
                MODEL,
            )
            for model in context.models
        ]
        app_futures = [
            self._submit(context, APP_GROUP, f"hog:{app}", analyze_app, context, app)
            for app in apps
        ]
        tables = DeviceResultTables()
        for device_id in devices:
            self._submit(
                context,
                DEVICE_GROUP,
                f"device:{device_id}",
                analyze_device,
                context,
                device_id,
                tables,
            )

        self.pool.barrier(DEVICE_GROUP)
        LOGGER.info("All %s device tasks registered; computing J-scores", len(tables))
        score_future = self.pool.submit(SCORE_GROUP, finalize_scores, context, tables)
        self.pool.join()
        scores, correlations = score_future.result()

        outcomes: list[AppOutcome] = [future.result() for future in app_futures]
        hogs = {outcome.app: outcome.comparison.distance for outcome in outcomes if outcome.hog}
        bugs = {
            (device_id, outcome.app): distance
            for outcome in outcomes
            for device_id, distance in outcome.bugs.items()
        }
        for outcome in outcomes:
            if not outcome.hog:
                context.write(self.sink.delete, HOGS_TABLE, outcome.app)

        counts = {
            "rates": len(rates),
            "devices": len(devices),
            "apps": len(apps),
            "daemons": len(context.daemons),
            "os": sum(1 for future in os_futures if future.result() is not None),
            "models": sum(1 for future in model_futures if future.result() is not None),
            "hogs": len(hogs),
            "bugs": len(bugs),
            "jscores": len(scores),
        }
        LOGGER.info("Run complete: %s", counts)
        LOGGER.info("Task states: %s", context.task_states.counts())
        return RunSummary(
            hogs=hogs,
            bugs=bugs,
            counts=counts,
            correlations=correlations,
            jscores=scores,
            task_states=context.task_states.as_dict(),
        )
