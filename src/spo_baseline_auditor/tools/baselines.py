"""Baseline listing and risk lookup MCP tools."""

from __future__ import annotations

from spo_baseline_auditor.baseline import BaselineRegistry
from spo_baseline_auditor.models import SettingValue
from spo_baseline_auditor.risk import RiskMatrix


def list_baselines(registry: BaselineRegistry) -> dict:
    """List registered baselines with their setting counts."""
    baselines = registry.list_baselines()
    return {"baselines": baselines, "total_count": len(baselines)}


def show_baseline(registry: BaselineRegistry, name: str, scope_kind: str | None = None) -> dict:
    """Return a baseline's entries, optionally only tenant or site settings.

    Raises:
        BaselineNotFoundError: If the baseline is not registered.
    """
    baseline = registry.get_baseline(name)
    data = baseline.model_dump(mode="json")
    if scope_kind == "tenant":
        data.pop("site_settings")
    elif scope_kind == "site":
        data.pop("tenant_settings")
    return data


def classify_risk(matrix: RiskMatrix, setting_key: str, value: SettingValue | None) -> dict:
    """Return the risk level the matrix assigns to an observed value."""
    return {
        "setting_key": setting_key,
        "value": value,
        "risk_level": matrix.classify(setting_key, value),
        "has_rule": setting_key in matrix.rules,
    }
