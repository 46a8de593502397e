from __future__ import annotations

import threading
import time

import numpy as np
import pytest

from drain_audit.analysis.distributions import Distribution
from drain_audit.pipeline.workers import (
    PERSISTED,
    QUEUED,
    DeviceParameters,
    DeviceResultTables,
    TaskStates,
    WorkerPool,
)


def _distribution() -> Distribution:
    return Distribution(probabilities=np.array([1.0]), ev=0.1, n_observations=1)


def test_barrier_waits_for_every_task_in_the_group() -> None:
    tables = DeviceResultTables()

    def _device_task(index: int) -> str:
        time.sleep(0.01 * (index % 3))
        device_id = f"dev-{index}"
        tables.register(device_id, None, None, float(index), frozenset())
        return device_id

    with WorkerPool(max_workers=4) as pool:
        for index in range(12):
            pool.submit("devices", _device_task, index)
        results = pool.barrier("devices")
        assert len(tables) == 12

    assert results == [f"dev-{index}" for index in range(12)]


def test_barrier_only_covers_its_own_group() -> None:
    release = threading.Event()

    with WorkerPool(max_workers=2) as pool:
        blocked = pool.submit("apps", release.wait, 5)
        pool.submit("devices", lambda: "done")

        assert pool.barrier("devices") == ["done"]
        assert not blocked.done()
        release.set()
        pool.join()
        assert blocked.result() is True


def test_barrier_reraises_task_failure() -> None:
    def _boom() -> None:
        raise RuntimeError("sink unavailable")

    with WorkerPool(max_workers=2) as pool:
        pool.submit("devices", _boom)
        with pytest.raises(RuntimeError, match="sink unavailable"):
            pool.barrier("devices")


def test_device_tables_serialize_concurrent_registration() -> None:
    tables = DeviceResultTables()
    distribution = _distribution()

    def _register(index: int) -> None:
        tables.register(
            f"dev-{index}",
            (distribution, distribution),
            DeviceParameters(xmax=1.0, ev=0.1, ev_neg=0.1),
            0.0,
            frozenset({"Mail"}),
        )

    with WorkerPool(max_workers=16) as pool:
        for index in range(200):
            pool.submit("devices", _register, index)
        pool.join()

    snapshot = tables.snapshot()
    assert len(snapshot.distances) == 200
    assert len(snapshot.distributions) == 200
    assert len(snapshot.parameters) == 200
    assert len(snapshot.apps) == 200

    tables.register("late", None, None, None, frozenset())
    assert "late" not in snapshot.distances
    assert tables.distances["late"] is None


def test_task_states_keep_latest_state() -> None:
    states = TaskStates()
    states.set("hog:Mail", QUEUED)
    states.set("hog:Mail", PERSISTED)
    states.set("os:9.1", QUEUED)

    assert states.as_dict() == {"hog:Mail": PERSISTED, "os:9.1": QUEUED}
    assert states.counts() == {PERSISTED: 1, QUEUED: 1}
