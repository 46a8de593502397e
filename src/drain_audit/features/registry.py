from __future__ import annotations

from dataclasses import dataclass, field

import pandas as pd

from drain_audit.io.schema import RegistrationColumns


@dataclass
class EntityRegistry:
    """Device id to (OS version, model), carried across incremental runs."""

    devices: dict[str, tuple[str, str]] = field(default_factory=dict)

    def register(self, device_id: str, os: str, model: str) -> None:
        self.devices[str(device_id)] = (str(os), str(model))

    def lookup(self, device_id: str) -> tuple[str, str]:
        return self.devices.get(str(device_id), ("", ""))

    def update_from_registrations(self, registrations: pd.DataFrame) -> int:
        if registrations.empty:
            return 0
        ordered = registrations.sort_values(RegistrationColumns.timestamp, kind="mergesort")
        for device_id, os, model in ordered[
            [RegistrationColumns.device_id, RegistrationColumns.os, RegistrationColumns.model]
        ].itertuples(index=False, name=None):
            self.register(device_id, os, model)
        return len(ordered)

    def update_from_rates(self, rates: pd.DataFrame | None) -> int:
        if rates is None or rates.empty:
            return 0
        pairs = rates[["device_id", "os", "model"]].drop_duplicates("device_id", keep="last")
        for device_id, os, model in pairs.itertuples(index=False, name=None):
            self.register(device_id, os, model)
        return len(pairs)

    @property
    def oses(self) -> set[str]:
        return {os for os, _model in self.devices.values()}

    @property
    def models(self) -> set[str]:
        return {model for _os, model in self.devices.values()}

    def __len__(self) -> int:
        return len(self.devices)
