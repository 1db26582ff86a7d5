"""Drift detection between two snapshots of the same scope."""

from __future__ import annotations

from spo_baseline_auditor.executor import same_value
from spo_baseline_auditor.models import DriftEntry, SettingSnapshot


def detect_drift(previous: SettingSnapshot, current: SettingSnapshot) -> list[DriftEntry]:
    """List settings that changed, appeared, or disappeared, sorted by key.

    Raises:
        ValueError: If the snapshots belong to different scopes.
    """
    if previous.scope_id != current.scope_id:
        raise ValueError(f"Cannot compare {previous.scope_id} with {current.scope_id}")

    entries: list[DriftEntry] = []
    for key in sorted(set(previous.values) | set(current.values)):
        before = previous.values.get(key)
        after = current.values.get(key)
        if key not in current.values:
            entries.append(DriftEntry(setting_key=key, change="removed", previous_value=before))
        elif key not in previous.values:
            entries.append(DriftEntry(setting_key=key, change="added", current_value=after))
        elif not same_value(before, after):
            entries.append(DriftEntry(setting_key=key, change="changed", previous_value=before, current_value=after))
    return entries
