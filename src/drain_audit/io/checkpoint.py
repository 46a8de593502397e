from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

from drain_audit.io.write import write_summary

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Checkpoint:
    """Timestamps of the newest sample and registration already merged into the rate cache."""

    last_sample: float = 0.0
    last_registration: float = 0.0

    def advanced(self, last_sample: float | None, last_registration: float | None) -> Checkpoint:
        return Checkpoint(
            last_sample=max(self.last_sample, float(last_sample or 0.0)),
            last_registration=max(self.last_registration, float(last_registration or 0.0)),
        )


def load_checkpoint(path: Path) -> Checkpoint:
    if not path.exists():
        return Checkpoint()
    data = json.loads(path.read_text(encoding="utf-8") or "{}")
    return Checkpoint(
        last_sample=float(data.get("last_sample") or 0.0),
        last_registration=float(data.get("last_registration") or 0.0),
    )


def save_checkpoint(checkpoint: Checkpoint, path: Path) -> Path:
    LOGGER.info(
        "Saving checkpoint last_sample=%s last_registration=%s",
        checkpoint.last_sample,
        checkpoint.last_registration,
    )
    return write_summary(asdict(checkpoint), path)
