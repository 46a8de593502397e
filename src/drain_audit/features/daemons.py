from __future__ import annotations

import logging
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Iterable

LOGGER = logging.getLogger(__name__)


def load_daemon_patterns(patterns: Iterable[str], path: str | None = None) -> list[str]:
    """Combine configured glob patterns with an optional one-pattern-per-line file."""
    combined = [str(pattern).strip() for pattern in patterns if str(pattern).strip()]
    if path:
        for line in Path(path).read_text(encoding="utf-8").splitlines():
            entry = line.split("#", 1)[0].strip()
            if entry:
                combined.append(entry)
    return list(dict.fromkeys(combined))


def daemons_globbed(all_apps: Iterable[str], patterns: Iterable[str]) -> frozenset[str]:
    """Return the apps in ``all_apps`` matched by any daemon glob."""
    pattern_list = list(patterns)
    matched = frozenset(
        app for app in all_apps if any(fnmatchcase(app, pattern) for pattern in pattern_list)
    )
    LOGGER.debug("Matched %s daemon apps", len(matched))
    return matched
