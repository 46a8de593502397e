from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

import numpy as np
import pandas as pd

from drain_audit.analysis.correlation import CorrelationResult, correlate
from drain_audit.analysis.distance import (
    BUG,
    DEVICE,
    HOG,
    SIMILAR,
    bug_partition,
    build_comparison,
    is_bug,
    is_hog,
    partition_by_app,
    partition_by_device,
    partition_by_similarity,
    partition_by_value,
    should_persist,
    similarity_threshold,
)
from drain_audit.analysis.distributions import Comparison, Distribution
from drain_audit.analysis.jscore import jscores
from drain_audit.config import AppConfig
from drain_audit.io.result_sink import (
    BUGS_TABLE,
    HOGS_TABLE,
    JSCORES_TABLE,
    SIMILAR_TABLE,
    ResultKey,
    ResultRecord,
    ResultSink,
)
from drain_audit.pipeline.workers import (
    CLASSIFIED,
    PERSISTED,
    REPORTED,
    RUNNING,
    SKIPPED,
    DeviceParameters,
    DeviceResultTables,
    TaskStates,
)

LOGGER = logging.getLogger(__name__)

POPULATION_NAME = "All"


@dataclass
class ComparisonContext:
    """Read-only inputs shared by every comparison task of one run."""

    rates: pd.DataFrame
    config: AppConfig
    sink: ResultSink
    output_slots: threading.BoundedSemaphore
    apriori: tuple[np.ndarray, Distribution] | None
    oses: list[str]
    models: list[str]
    daemons: frozenset[str]
    task_states: TaskStates = field(default_factory=TaskStates)

    @property
    def decimals(self) -> int:
        return int(self.config.distributions.decimals)

    def write(self, action: Callable[..., Any], *args: Any) -> None:
        # Only sink I/O takes an output slot.
        with self.output_slots:
            action(*args)


@dataclass(frozen=True)
class AppOutcome:
    app: str
    comparison: Comparison | None
    hog: bool
    bugs: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class DeviceOutcome:
    device_id: str
    similar: Comparison | None
    comparison: Comparison | None


def _persist(
    context: ComparisonContext,
    task: str,
    table: str,
    key: ResultKey,
    comparison: Comparison | None,
    kind: str,
    apps: frozenset[str] | None = None,
) -> bool:
    if not should_persist(comparison, kind):
        context.write(context.sink.delete, table, key)
        context.task_states.set(task, SKIPPED if comparison is None else CLASSIFIED)
        return False
    context.task_states.set(task, CLASSIFIED)
    record = ResultRecord.from_comparison(comparison, context.decimals, apps=apps)
    context.write(context.sink.put, table, key, record)
    context.task_states.set(task, PERSISTED)
    return True


def compare_attribute(
    context: ComparisonContext,
    table: str,
    column: str,
    value: str,
    kind: str,
) -> Comparison | None:
    """OS version or model against the rest of the population."""
    task = f"{kind}:{value}"
    context.task_states.set(task, RUNNING)
    with_rates, without_rates = partition_by_value(context.rates, column, value)
    comparison = build_comparison(
        with_rates, without_rates, context.config.distributions, label=f"{kind} {value}"
    )
    _persist(context, task, table, value, comparison, kind)
    return comparison


def analyze_app(context: ComparisonContext, app: str) -> AppOutcome:
    """Hog check for one app, then per-device bug checks when it is not a hog."""
    task = f"{HOG}:{app}"
    context.task_states.set(task, RUNNING)
    rates = context.rates
    with_rates, without_rates = partition_by_app(rates, app)
    comparison = build_comparison(
        with_rates, without_rates, context.config.distributions, label=f"Hog {app}"
    )
    if is_hog(comparison, context.config.classification.min_users):
        _persist(context, task, HOGS_TABLE, app, comparison, HOG)
        correlations = correlate(
            with_rates, context.apriori, context.oses, context.models, name=app
        )
        context.write(
            context.sink.put_correlations,
            app,
            correlations,
            comparison.users_with,
            comparison.users_without,
        )
        return AppOutcome(app=app, comparison=comparison, hog=True)

    # A degenerate hog comparison (the app runs everywhere) still gets bug checks.
    context.task_states.set(task, SKIPPED if comparison is None else CLASSIFIED)
    bugs: dict[str, float] = {}
    for device_id in sorted(with_rates["device_id"].unique()):
        bug_task = f"{BUG}:{device_id}:{app}"
        context.task_states.set(bug_task, RUNNING)
        bug_with, bug_without = bug_partition(rates, device_id, app, app_rates=with_rates)
        bug = build_comparison(
            bug_with,
            bug_without,
            context.config.distributions,
            label=f"Bug {app} on {device_id}",
        )
        if bug is None:
            context.task_states.set(bug_task, SKIPPED)
            continue
        if not is_bug(bug):
            context.task_states.set(bug_task, CLASSIFIED)
            continue
        _persist(context, bug_task, BUGS_TABLE, (device_id, app), bug, BUG)
        bugs[device_id] = bug.distance
    if bugs:
        context.task_states.set(task, PERSISTED)
    return AppOutcome(app=app, comparison=comparison, hog=False, bugs=bugs)


def analyze_device(
    context: ComparisonContext,
    device_id: str,
    tables: DeviceResultTables,
) -> DeviceOutcome:
    """Similar-apps cohort for one device, then the device against everyone else."""
    task = f"{DEVICE}:{device_id}"
    context.task_states.set(task, RUNNING)
    rates = context.rates
    on_device = rates[rates["device_id"] == device_id]
    apps = frozenset().union(*on_device["apps"]) - context.daemons

    similar_task = f"{SIMILAR}:{device_id}"
    context.task_states.set(similar_task, RUNNING)
    threshold = similarity_threshold(len(apps))
    similar_with, similar_without = partition_by_similarity(rates, apps, threshold)
    similar = build_comparison(
        similar_with,
        similar_without,
        context.config.distributions,
        label=f"Similar apps for {device_id} (overlap >= {threshold})",
    )
    _persist(context, similar_task, SIMILAR_TABLE, device_id, similar, SIMILAR, apps=apps)

    with_rates, without_rates = partition_by_device(rates, device_id)
    comparison = build_comparison(
        with_rates, without_rates, context.config.distributions, label=f"Device {device_id}"
    )
    if comparison is None:
        tables.register(device_id, None, None, None, apps)
        context.task_states.set(task, SKIPPED)
    else:
        context.task_states.set(task, CLASSIFIED)
        tables.register(
            device_id,
            (comparison.with_dist, comparison.without_dist),
            DeviceParameters(xmax=comparison.xmax, ev=comparison.ev, ev_neg=comparison.ev_neg),
            comparison.distance,
            apps,
        )
        context.task_states.set(task, REPORTED)
    return DeviceOutcome(device_id=device_id, similar=similar, comparison=comparison)


def _jscore_record(
    tables: DeviceResultTables,
    device_id: str,
    score: float,
    decimals: int,
) -> ResultRecord | None:
    distributions = tables.distributions.get(device_id)
    parameters = tables.parameters.get(device_id)
    if distributions is None or parameters is None:
        return None
    with_dist, without_dist = distributions
    return ResultRecord(
        xmax=parameters.xmax,
        distribution_with=with_dist.as_mapping(decimals),
        distribution_without=without_dist.as_mapping(decimals),
        score=score,
        ev=parameters.ev,
        ev_neg=parameters.ev_neg,
        apps=sorted(tables.apps.get(device_id, frozenset())),
    )


def finalize_scores(
    context: ComparisonContext,
    tables: DeviceResultTables,
) -> tuple[dict[str, float], CorrelationResult]:
    """Rank every device by its distance and report population-wide correlations.

    Must only run once every device task has registered its results. Devices
    without a device-vs-rest comparison still get a score, but no stored entry.
    """
    context.task_states.set("jscores", RUNNING)
    snapshot = tables.snapshot()
    scores = jscores(snapshot.distances, decimals=context.decimals)
    written = 0
    for device_id, score in scores.items():
        record = _jscore_record(snapshot, device_id, score, context.decimals)
        if record is None:
            LOGGER.error("No distributions for device %s; J-score entry not written", device_id)
            context.write(context.sink.delete, JSCORES_TABLE, device_id)
            continue
        context.write(context.sink.put, JSCORES_TABLE, device_id, record)
        written += 1
    context.task_states.set("jscores", PERSISTED)
    LOGGER.info("Wrote J-scores for %s of %s devices", written, len(scores))

    context.task_states.set("correlations", RUNNING)
    correlations = correlate(
        context.rates, context.apriori, context.oses, context.models, name=POPULATION_NAME
    )
    context.write(
        context.sink.put_correlations,
        POPULATION_NAME,
        correlations,
        len(scores),
        0,
    )
    context.task_states.set("correlations", REPORTED)
    return scores, correlations
