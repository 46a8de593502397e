from __future__ import annotations

from typing import Mapping

import numpy as np


def jscores(distances: Mapping[str, float | None], decimals: int = 3) -> dict[str, float]:
    """Share of devices whose EV-distance is strictly higher than each device's own.

    Devices with an undefined (``None``) distance do not count toward the
    population and score 0, as do devices with a zero distance.
    """
    defined = np.array(
        sorted(float(value) for value in distances.values() if value is not None),
        dtype=float,
    )
    total = defined.size
    scores: dict[str, float] = {}
    for device_id, distance in distances.items():
        if distance is None or distance == 0 or total == 0:
            scores[device_id] = 0.0
            continue
        higher = total - int(np.searchsorted(defined, float(distance), side="right"))
        scores[device_id] = round(higher / total, decimals)
    return scores
