from __future__ import annotations

from pathlib import Path

import pandas as pd

from drain_audit.features.daemons import daemons_globbed, load_daemon_patterns
from drain_audit.features.registry import EntityRegistry


def test_load_daemon_patterns_merges_file_entries(tmp_path: Path) -> None:
    path = tmp_path / "daemons.txt"
    path.write_text("# system services\nlocationd\n\nwifid  # radio\nlaunchd\n", encoding="utf-8")

    patterns = load_daemon_patterns(["launchd", " com.apple.* "], str(path))

    assert patterns == ["launchd", "com.apple.*", "locationd", "wifid"]


def test_daemons_globbed_matches_case_sensitive_globs() -> None:
    apps = {"launchd", "com.apple.Maps", "Mail", "Launchd", "locationd"}

    daemons = daemons_globbed(apps, ["launchd", "com.apple.*", "location?"])

    assert daemons == frozenset({"launchd", "com.apple.Maps", "locationd"})


def test_registry_keeps_latest_registration_per_device() -> None:
    registry = EntityRegistry()
    registrations = pd.DataFrame(
        {
            "device_id": ["dev-a", "dev-a", "dev-b"],
            "timestamp": [20.0, 10.0, 5.0],
            "os": ["9.2", "9.1", "8.4"],
            "model": ["iPhone7,2", "iPhone7,2", "iPhone6,1"],
        }
    )

    assert registry.update_from_registrations(registrations) == 3
    assert registry.lookup("dev-a") == ("9.2", "iPhone7,2")
    assert registry.oses == {"9.2", "8.4"}
    assert registry.models == {"iPhone7,2", "iPhone6,1"}
    assert registry.update_from_registrations(registrations.iloc[0:0]) == 0
