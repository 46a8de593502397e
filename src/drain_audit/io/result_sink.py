from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Protocol, Sequence
from urllib.parse import quote, unquote

from drain_audit.analysis.correlation import CorrelationResult
from drain_audit.analysis.distributions import Comparison
from drain_audit.io.write import write_summary
from drain_audit.paths import OutputPaths

LOGGER = logging.getLogger(__name__)

HOGS_TABLE = "hogs"
BUGS_TABLE = "bugs"
OS_TABLE = "os"
MODELS_TABLE = "models"
SIMILAR_TABLE = "similarApps"
JSCORES_TABLE = "jscores"
RESULT_TABLES = (HOGS_TABLE, BUGS_TABLE, OS_TABLE, MODELS_TABLE, SIMILAR_TABLE, JSCORES_TABLE)

ResultKey = str | tuple[str, ...]


@dataclass(frozen=True)
class ResultRecord:
    """Persisted form of one comparison for a named entity."""

    xmax: float
    distribution_with: dict[int, float]
    distribution_without: dict[int, float]
    score: float
    ev: float
    ev_neg: float
    apps: list[str] | None = None
    users_with: int = 0
    users_without: int = 0

    @classmethod
    def from_comparison(
        cls,
        comparison: Comparison,
        decimals: int,
        score: float | None = None,
        apps: Sequence[str] | None = None,
    ) -> ResultRecord:
        return cls(
            xmax=float(comparison.xmax),
            distribution_with=comparison.with_dist.as_mapping(decimals),
            distribution_without=comparison.without_dist.as_mapping(decimals),
            score=float(comparison.distance if score is None else score),
            ev=float(comparison.ev),
            ev_neg=float(comparison.ev_neg),
            apps=sorted(apps) if apps is not None else None,
            users_with=comparison.users_with,
            users_without=comparison.users_without,
        )

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        # JSON object keys are strings; keep buckets as ordered pairs instead.
        data["distribution_with"] = sorted(self.distribution_with.items())
        data["distribution_without"] = sorted(self.distribution_without.items())
        return data


class ResultSink(Protocol):
    def put(self, table: str, key: ResultKey, record: ResultRecord) -> None: ...

    def delete(self, table: str, key: ResultKey) -> None: ...

    def clear(self, table: str) -> None: ...

    def put_correlations(
        self,
        name: str,
        correlations: CorrelationResult,
        users_with: int = 0,
        users_without: int = 0,
    ) -> None: ...


def _key_parts(key: ResultKey) -> tuple[str, ...]:
    return (key,) if isinstance(key, str) else tuple(str(part) for part in key)


def _quote_part(part: str) -> str:
    # "_" is left alone by quote(); escape it so "__" only ever separates parts.
    return quote(part, safe="").replace("_", "%5F")


def _file_name(key: ResultKey) -> str:
    return "__".join(_quote_part(part) for part in _key_parts(key)) + ".json"


def key_from_file_name(name: str) -> tuple[str, ...]:
    stem = name[: -len(".json")] if name.endswith(".json") else name
    return tuple(unquote(part) for part in stem.split("__"))


class FileResultSink:
    """One JSON document per entity under ``results/<table>/``."""

    def __init__(self, paths: OutputPaths) -> None:
        self.paths = paths
        self._lock = threading.Lock()

    def _table_dir(self, table: str) -> Path:
        return self.paths.results / table

    def put(self, table: str, key: ResultKey, record: ResultRecord) -> None:
        payload = {"key": list(_key_parts(key)), **record.to_dict()}
        with self._lock:
            write_summary(payload, self._table_dir(table) / _file_name(key))

    def delete(self, table: str, key: ResultKey) -> None:
        with self._lock:
            (self._table_dir(table) / _file_name(key)).unlink(missing_ok=True)

    def clear(self, table: str) -> None:
        with self._lock:
            directory = self._table_dir(table)
            if not directory.exists():
                return
            for path in directory.glob("*.json"):
                path.unlink(missing_ok=True)
        LOGGER.info("Cleared result table %s", table)

    def put_correlations(
        self,
        name: str,
        correlations: CorrelationResult,
        users_with: int = 0,
        users_without: int = 0,
    ) -> None:
        payload = {
            "name": name,
            "users_with": int(users_with),
            "users_without": int(users_without),
            # Weakest first.
            "os": sorted(correlations.os.items(), key=lambda item: abs(item[1])),
            "model": sorted(correlations.model.items(), key=lambda item: abs(item[1])),
        }
        with self._lock:
            write_summary(payload, self.paths.correlations / _file_name(name))

    def keys(self, table: str) -> list[tuple[str, ...]]:
        directory = self._table_dir(table)
        if not directory.exists():
            return []
        return sorted(key_from_file_name(path.name) for path in directory.glob("*.json"))


@dataclass
class MemoryResultSink:
    """In-memory sink for dry runs and tests."""

    tables: dict[str, dict[tuple[str, ...], ResultRecord]] = field(default_factory=dict)
    correlations: dict[str, tuple[CorrelationResult, int, int]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def put(self, table: str, key: ResultKey, record: ResultRecord) -> None:
        with self._lock:
            self.tables.setdefault(table, {})[_key_parts(key)] = record

    def delete(self, table: str, key: ResultKey) -> None:
        with self._lock:
            self.tables.get(table, {}).pop(_key_parts(key), None)

    def clear(self, table: str) -> None:
        with self._lock:
            self.tables[table] = {}

    def put_correlations(
        self,
        name: str,
        correlations: CorrelationResult,
        users_with: int = 0,
        users_without: int = 0,
    ) -> None:
        with self._lock:
            self.correlations[name] = (correlations, int(users_with), int(users_without))

    def table(self, table: str) -> dict[tuple[str, ...], ResultRecord]:
        with self._lock:
            return dict(self.tables.get(table, {}))
