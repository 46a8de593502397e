from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from drain_audit.config import DistributionConfig

LOGGER = logging.getLogger(__name__)

# Range rows are spread over buckets in blocks to bound the (rows x buckets) temporary.
_RANGE_BLOCK_ROWS = 20_000


@dataclass(frozen=True)
class Distribution:
    """Probability mass per log-spaced bucket plus the expected drain rate."""

    probabilities: np.ndarray
    ev: float
    n_observations: int

    def as_mapping(self, decimals: int | None = None) -> dict[int, float]:
        mapping: dict[int, float] = {}
        for bucket, mass in enumerate(self.probabilities):
            value = round(float(mass), decimals) if decimals is not None else float(mass)
            if value > 0.0:
                mapping[bucket] = value
        return mapping


@dataclass(frozen=True)
class Comparison:
    """Two distributions over shared buckets and the signed distance between their EVs."""

    xmax: float
    with_dist: Distribution
    without_dist: Distribution
    distance: float
    users_with: int = 0
    users_without: int = 0

    @property
    def ev(self) -> float:
        return self.with_dist.ev

    @property
    def ev_neg(self) -> float:
        return self.without_dist.ev


def effective_xmax(xmax: float, smallest_bucket: float) -> float:
    if not np.isfinite(xmax) or xmax <= smallest_bucket:
        return 2.0 * smallest_bucket
    return float(xmax)


def log_base(buckets: int, smallest_bucket: float, xmax: float) -> float:
    return float((effective_xmax(xmax, smallest_bucket) / smallest_bucket) ** (1.0 / buckets))


def bucket_edges(xmax: float, buckets: int, smallest_bucket: float) -> np.ndarray:
    """Return ``buckets + 1`` edges; edge 0 is 0 so bucket 0 absorbs everything below."""
    top = effective_xmax(xmax, smallest_bucket)
    base = log_base(buckets, smallest_bucket, top)
    exponents = buckets - np.arange(buckets + 1, dtype=float)
    edges = top / np.power(base, exponents)
    edges[0] = 0.0
    edges[-1] = top
    return edges


def bucket_midpoints(edges: np.ndarray) -> np.ndarray:
    return (edges[:-1] + edges[1:]) / 2.0


def _bucket_masses(low: np.ndarray, high: np.ndarray, edges: np.ndarray) -> np.ndarray:
    n_buckets = edges.size - 1
    masses = np.zeros(n_buckets, dtype=float)
    if low.size == 0:
        return masses

    is_point = high <= low
    if is_point.any():
        points = np.clip(low[is_point], edges[0], edges[-1])
        index = np.searchsorted(edges, points, side="right") - 1
        index = np.clip(index, 0, n_buckets - 1)
        masses += np.bincount(index, minlength=n_buckets).astype(float)

    range_low = low[~is_point]
    range_high = high[~is_point]
    for start in range(0, range_low.size, _RANGE_BLOCK_ROWS):
        lo = range_low[start : start + _RANGE_BLOCK_ROWS, None]
        hi = range_high[start : start + _RANGE_BLOCK_ROWS, None]
        cdf = np.clip((edges[None, :] - lo) / (hi - lo), 0.0, 1.0)
        masses += np.diff(cdf, axis=1).sum(axis=0)
    return masses


def _rate_bounds(rates: pd.DataFrame) -> tuple[np.ndarray, np.ndarray]:
    low = rates["rate_low"].to_numpy(dtype=float)
    high = np.maximum(rates["rate_high"].to_numpy(dtype=float), low)
    return low, high


def _distribution(rates: pd.DataFrame, edges: np.ndarray) -> Distribution:
    low, high = _rate_bounds(rates)
    masses = _bucket_masses(low, high, edges)
    probabilities = masses / float(len(rates))
    ev = float(np.dot(bucket_midpoints(edges), probabilities))
    return Distribution(probabilities=probabilities, ev=ev, n_observations=len(rates))


def expected_value(probabilities: np.ndarray, edges: np.ndarray) -> float:
    return float(np.dot(bucket_midpoints(edges), probabilities))


def build_distributions(
    with_rates: pd.DataFrame,
    without_rates: pd.DataFrame,
    config: DistributionConfig,
) -> tuple[float, Distribution, Distribution] | None:
    """Bucket both rate collections over a shared log scale.

    Returns ``(xmax, with, without)`` or ``None`` when either side is empty.
    """
    if with_rates.empty or without_rates.empty:
        return None

    observed_max = max(
        float(_rate_bounds(with_rates)[1].max()),
        float(_rate_bounds(without_rates)[1].max()),
    )
    xmax = effective_xmax(observed_max, config.smallest_bucket)
    edges = bucket_edges(xmax, config.buckets, config.smallest_bucket)
    with_dist = _distribution(with_rates, edges)
    without_dist = _distribution(without_rates, edges)
    return xmax, with_dist, without_dist


def build_apriori(
    rates: pd.DataFrame, config: DistributionConfig
) -> tuple[np.ndarray, Distribution] | None:
    """Population-wide rate distribution; returns its bucket edges and the distribution."""
    if rates.empty:
        LOGGER.warning("A priori distribution is empty")
        return None
    xmax = effective_xmax(float(rates["rate_high"].max()), config.smallest_bucket)
    edges = bucket_edges(xmax, config.buckets, config.smallest_bucket)
    return edges, _distribution(rates, edges)
