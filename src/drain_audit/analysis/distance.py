from __future__ import annotations

import logging
import math
from typing import Iterable

import pandas as pd

from drain_audit.analysis.distributions import Comparison, build_distributions
from drain_audit.config import DistributionConfig

LOGGER = logging.getLogger(__name__)

HOG = "hog"
BUG = "bug"
OS = "os"
MODEL = "model"
SIMILAR = "similar"
DEVICE = "device"

ANOMALY_KINDS = frozenset({HOG, BUG})
INFORMATIONAL_KINDS = frozenset({OS, MODEL, SIMILAR, DEVICE})


def ev_distance(ev_with: float, ev_without: float) -> float:
    """Signed relative EV difference; positive when the condition drains faster."""
    upper = max(ev_with, ev_without)
    if upper <= 0.0:
        return 0.0
    return (ev_with - ev_without) / upper


def battery_life_change_hours(ev_with: float, ev_without: float) -> float:
    """Hours of full-battery life gained by removing the condition (100 % / rate)."""
    if ev_with <= 0.0 or ev_without <= 0.0:
        return 0.0
    return (100.0 / ev_without - 100.0 / ev_with) / 3600.0


def distinct_devices(rates: pd.DataFrame) -> int:
    return int(rates["device_id"].nunique()) if not rates.empty else 0


def build_comparison(
    with_rates: pd.DataFrame,
    without_rates: pd.DataFrame,
    config: DistributionConfig,
    label: str = "",
) -> Comparison | None:
    built = build_distributions(with_rates, without_rates, config)
    if built is None:
        LOGGER.info(
            "%s: insufficient data (with=%s without=%s)",
            label or "comparison",
            len(with_rates),
            len(without_rates),
        )
        return None

    xmax, with_dist, without_dist = built
    distance = ev_distance(with_dist.ev, without_dist.ev)
    comparison = Comparison(
        xmax=xmax,
        with_dist=with_dist,
        without_dist=without_dist,
        distance=distance,
        users_with=distinct_devices(with_rates),
        users_without=distinct_devices(without_rates),
    )
    if distance > 0:
        hours = battery_life_change_hours(with_dist.ev, without_dist.ev)
        days = int(hours // 24)
        LOGGER.info(
            "%s evWith=%s evWithout=%s evDistance=%s improvement=%s days %.2f hours "
            "(%s vs %s users)",
            label,
            with_dist.ev,
            without_dist.ev,
            distance,
            days,
            hours - days * 24,
            comparison.users_with,
            comparison.users_without,
        )
    else:
        LOGGER.info(
            "%s evWith=%s evWithout=%s evDistance=%s (%s vs %s users)",
            label,
            with_dist.ev,
            without_dist.ev,
            distance,
            comparison.users_with,
            comparison.users_without,
        )
    return comparison


def similarity_threshold(n_apps: int) -> int:
    """Minimum app overlap for the similar cohort: ``max(1, ceil(ln(n)))``."""
    if n_apps <= 1:
        return 1
    return max(1, math.ceil(math.log(n_apps)))


def has_enough_users(users_with: int, users_without: int, min_users: int) -> bool:
    return users_with >= min_users and users_without >= min_users


def is_hog(comparison: Comparison | None, min_users: int) -> bool:
    if comparison is None:
        return False
    return (
        has_enough_users(comparison.users_with, comparison.users_without, min_users)
        and comparison.distance > 0
    )


def is_bug(comparison: Comparison | None) -> bool:
    return comparison is not None and comparison.distance > 0


def should_persist(comparison: Comparison | None, kind: str) -> bool:
    if comparison is None:
        return False
    if kind in ANOMALY_KINDS:
        return comparison.distance > 0
    if kind in INFORMATIONAL_KINDS:
        return True
    raise ValueError(f"Unknown comparison kind: {kind}")


def app_mask(rates: pd.DataFrame, app: str) -> pd.Series:
    return rates["apps"].map(lambda apps: app in apps).astype(bool)


def partition_by_app(rates: pd.DataFrame, app: str) -> tuple[pd.DataFrame, pd.DataFrame]:
    mask = app_mask(rates, app)
    return rates[mask], rates[~mask]


def partition_by_value(
    rates: pd.DataFrame, column: str, value: str
) -> tuple[pd.DataFrame, pd.DataFrame]:
    mask = rates[column] == value
    return rates[mask], rates[~mask]


def partition_by_device(rates: pd.DataFrame, device_id: str) -> tuple[pd.DataFrame, pd.DataFrame]:
    return partition_by_value(rates, "device_id", device_id)


def partition_by_similarity(
    rates: pd.DataFrame, apps: Iterable[str], threshold: int
) -> tuple[pd.DataFrame, pd.DataFrame]:
    reference = frozenset(apps)
    overlap = rates["apps"].map(lambda running: len(running & reference))
    mask = (overlap >= threshold).astype(bool)
    return rates[mask], rates[~mask]


def bug_partition(
    rates: pd.DataFrame,
    device_id: str,
    app: str,
    app_rates: pd.DataFrame | None = None,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """The app on ``device_id`` vs the app elsewhere.

    When no other device ran the app, the comparison falls back to every
    observation from the other devices.
    """
    running = app_rates if app_rates is not None else rates[app_mask(rates, app)]
    on_device = running["device_id"] == device_id
    with_rates = running[on_device]
    without_rates = running[~on_device]
    if without_rates.empty and not with_rates.empty:
        LOGGER.debug("No other device ran %s; comparing %s against all others", app, device_id)
        without_rates = rates[rates["device_id"] != device_id]
    return with_rates, without_rates
