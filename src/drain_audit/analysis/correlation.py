from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

import numpy as np
import pandas as pd

from drain_audit.analysis.distributions import Distribution, bucket_midpoints

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorrelationResult:
    os: dict[str, float] = field(default_factory=dict)
    model: dict[str, float] = field(default_factory=dict)

    def as_dict(self) -> dict[str, dict[str, float]]:
        return {"os": dict(self.os), "model": dict(self.model)}


def rate_expected_values(
    rates: pd.DataFrame,
    apriori: tuple[np.ndarray, Distribution] | None,
) -> np.ndarray:
    """One expected rate per observation.

    Point rates map to themselves. A rate range maps to the mean of the a priori
    bucket midpoints that fall inside it, weighted by a priori probability, or
    to the range midpoint when the a priori has no mass there.
    """
    low = rates["rate_low"].to_numpy(dtype=float)
    high = np.maximum(rates["rate_high"].to_numpy(dtype=float), low)
    values = (low + high) / 2.0
    if apriori is None:
        return values

    edges, distribution = apriori
    midpoints = bucket_midpoints(edges)
    probabilities = distribution.probabilities
    for index in np.flatnonzero(high > low):
        inside = (midpoints >= low[index]) & (midpoints <= high[index])
        weight = probabilities[inside].sum()
        if weight > 0:
            values[index] = float(np.dot(midpoints[inside], probabilities[inside]) / weight)
    return values


def normalize(values: np.ndarray) -> np.ndarray | None:
    """Center and scale to unit length; ``None`` when the vector has no spread."""
    if values.size == 0:
        return None
    values = values.astype(float)
    centered = values - float(values.mean())
    norm = float(np.linalg.norm(centered))
    # Float noise around a constant vector must still count as zero spread.
    tolerance = 1e-12 * max(1.0, float(np.abs(values).max())) * np.sqrt(values.size)
    if not np.isfinite(norm) or norm <= tolerance:
        return None
    return centered / norm


def _indicator_correlations(
    name: str,
    label: str,
    rate_evs: np.ndarray,
    column: pd.Series,
    candidates: Iterable[str],
) -> dict[str, float]:
    correlations: dict[str, float] = {}
    for candidate in sorted(candidates):
        indicator = normalize((column == candidate).to_numpy(dtype=float))
        if indicator is None:
            LOGGER.warning("%s: zero stddev for %s %s; skipping", name, label, candidate)
            continue
        correlations[candidate] = float(np.dot(rate_evs, indicator))
        LOGGER.debug("%s and %s correlated with %s", name, candidate, correlations[candidate])
    return correlations


def correlate(
    rates: pd.DataFrame,
    apriori: tuple[np.ndarray, Distribution] | None,
    oses: Iterable[str],
    models: Iterable[str],
    name: str = "All",
) -> CorrelationResult:
    """Correlate each OS version and model indicator with the per-rate expected value.

    Both vectors are scaled to unit length, so each value is a Pearson
    coefficient in [-1, 1] rather than a raw dot product over n observations.
    """
    if rates.empty:
        LOGGER.warning("%s: no rates to correlate", name)
        return CorrelationResult()

    rate_evs = normalize(rate_expected_values(rates, apriori))
    if rate_evs is None:
        LOGGER.error("%s: rates had a zero stddev; correlations skipped", name)
        return CorrelationResult()

    return CorrelationResult(
        os=_indicator_correlations(name, "os", rate_evs, rates["os"], oses),
        model=_indicator_correlations(name, "model", rate_evs, rates["model"], models),
    )
