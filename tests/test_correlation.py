from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from drain_audit.analysis.correlation import correlate, normalize, rate_expected_values
from drain_audit.analysis.distributions import build_apriori
from drain_audit.config import DistributionConfig


def _rates(rows: list[tuple[str, str, float, float]]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "device_id": [f"dev-{index}" for index in range(len(rows))],
            "os": [os for os, _model, _low, _high in rows],
            "model": [model for _os, model, _low, _high in rows],
            "rate_low": [low for _os, _model, low, _high in rows],
            "rate_high": [high for _os, _model, _low, high in rows],
            "apps": [frozenset()] * len(rows),
        }
    )


def test_normalize_centers_to_unit_length() -> None:
    normalized = normalize(np.array([1.0, 2.0, 3.0]))

    assert normalized is not None
    assert normalized.mean() == pytest.approx(0.0)
    assert np.linalg.norm(normalized) == pytest.approx(1.0)


def test_normalize_returns_none_without_spread() -> None:
    assert normalize(np.array([0.1, 0.1, 0.1])) is None
    assert normalize(np.array([])) is None


def test_rate_expected_values_uses_midpoint_without_apriori() -> None:
    rates = _rates([("9", "A", 0.1, 0.1), ("9", "A", 0.2, 0.4)])

    values = rate_expected_values(rates, apriori=None)

    assert values.tolist() == pytest.approx([0.1, 0.3])


def test_rate_expected_values_weights_ranges_by_apriori() -> None:
    rates = _rates([("9", "A", 0.01, 0.01)] * 9 + [("9", "A", 0.0, 1.0)])
    apriori = build_apriori(rates, DistributionConfig(buckets=20))

    values = rate_expected_values(rates, apriori)

    # Most a priori mass sits near 0.01, pulling the range's value well below its midpoint.
    assert values[-1] < 0.5
    assert values[0] == pytest.approx(0.01)


def test_correlate_matches_os_with_higher_drain() -> None:
    rates = _rates(
        [
            ("9.1", "iPhone7,2", 0.05, 0.05),
            ("9.1", "iPhone7,2", 0.06, 0.06),
            ("8.4", "iPhone7,2", 0.01, 0.01),
            ("8.4", "iPhone7,2", 0.02, 0.02),
        ]
    )

    result = correlate(rates, None, oses=["9.1", "8.4"], models=["iPhone7,2"])

    assert result.os["9.1"] > 0.9
    assert result.os["8.4"] == pytest.approx(-result.os["9.1"])
    assert all(-1.0 - 1e-9 <= value <= 1.0 + 1e-9 for value in result.os.values())
    # a model present on every rate has no spread and is skipped
    assert result.model == {}
    assert result.as_dict()["os"] == result.os


def test_correlate_skips_when_rates_have_no_spread() -> None:
    rates = _rates([("9.1", "A", 0.05, 0.05), ("8.4", "B", 0.05, 0.05)])

    result = correlate(rates, None, oses=["9.1", "8.4"], models=["A", "B"])

    assert result.os == {}
    assert result.model == {}
    assert correlate(rates.iloc[0:0], None, oses=[], models=[]).os == {}


def test_correlate_values_equal_pearson_coefficient() -> None:
    rows = [
        ("9.1", "A", 0.05, 0.05),
        ("9.1", "B", 0.02, 0.02),
        ("8.4", "A", 0.03, 0.03),
        ("8.4", "B", 0.01, 0.01),
        ("8.4", "B", 0.015, 0.015),
    ]
    rates = _rates(rows)

    result = correlate(rates, None, oses=["9.1"], models=["A"])

    indicator = (rates["os"] == "9.1").to_numpy(dtype=float)
    expected = np.corrcoef(rates["rate_low"].to_numpy(dtype=float), indicator)[0, 1]
    assert result.os["9.1"] == pytest.approx(expected)
