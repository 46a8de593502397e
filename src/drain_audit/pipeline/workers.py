from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable

from drain_audit.analysis.distributions import Distribution

LOGGER = logging.getLogger(__name__)


class WorkerPool:
    """Thread pool whose tasks carry a group label so callers can wait on one group."""

    def __init__(self, max_workers: int) -> None:
        self.max_workers = int(max_workers)
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="drain-audit",
        )
        self._groups: dict[str, list[Future]] = {}
        self._lock = threading.Lock()

    def submit(self, group: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        future = self._executor.submit(fn, *args, **kwargs)
        with self._lock:
            self._groups.setdefault(group, []).append(future)
        return future

    def _futures(self, group: str | None = None) -> list[Future]:
        with self._lock:
            if group is not None:
                return list(self._groups.get(group, []))
            return [future for futures in self._groups.values() for future in futures]

    @staticmethod
    def _wait_all(futures: list[Future]) -> list[Any]:
        done, _pending = wait(futures, return_when=FIRST_EXCEPTION)
        for future in done:
            error = future.exception()
            if error is not None:
                raise error
        return [future.result() for future in futures]

    def barrier(self, group: str) -> list[Any]:
        """Block until every task submitted under ``group`` has finished.

        Results come back in submission order. The first failure is re-raised.
        """
        futures = self._futures(group)
        LOGGER.debug("Waiting for %s tasks in group %s", len(futures), group)
        return self._wait_all(futures)

    def join(self) -> None:
        self._wait_all(self._futures())

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> WorkerPool:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()


@dataclass(frozen=True)
class DeviceParameters:
    xmax: float
    ev: float
    ev_neg: float


@dataclass
class DeviceResultTables:
    """Per-device results shared across device tasks; all four maps change together."""

    distributions: dict[str, tuple[Distribution, Distribution]] = field(default_factory=dict)
    parameters: dict[str, DeviceParameters] = field(default_factory=dict)
    distances: dict[str, float | None] = field(default_factory=dict)
    apps: dict[str, frozenset[str]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def register(
        self,
        device_id: str,
        distributions: tuple[Distribution, Distribution] | None,
        parameters: DeviceParameters | None,
        distance: float | None,
        apps: frozenset[str],
    ) -> None:
        with self._lock:
            if distributions is not None:
                self.distributions[device_id] = distributions
            if parameters is not None:
                self.parameters[device_id] = parameters
            self.distances[device_id] = distance
            self.apps[device_id] = apps

    def snapshot(self) -> DeviceResultTables:
        with self._lock:
            return DeviceResultTables(
                distributions=dict(self.distributions),
                parameters=dict(self.parameters),
                distances=dict(self.distances),
                apps=dict(self.apps),
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self.distances)


QUEUED = "queued"
RUNNING = "running"
CLASSIFIED = "classified"
SKIPPED = "skipped"
PERSISTED = "persisted"
REPORTED = "reported"


class TaskStates:
    """Latest lifecycle state per task, for the run summary and debug logs."""

    def __init__(self) -> None:
        self._states: dict[str, str] = {}
        self._lock = threading.Lock()

    def set(self, task: str, state: str) -> None:
        with self._lock:
            self._states[task] = state
        LOGGER.debug("Task %s -> %s", task, state)

    def as_dict(self) -> dict[str, str]:
        with self._lock:
            return dict(sorted(self._states.items()))

    def counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for state in self.as_dict().values():
            counts[state] = counts.get(state, 0) + 1
        return counts
