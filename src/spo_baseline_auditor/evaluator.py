"""Baseline diffing with typed comparison semantics.

Evaluation is pure: the same (snapshot, baseline) pair always yields the same
findings in baseline declaration order, and the same score.
"""

from __future__ import annotations

from spo_baseline_auditor.models import (
    Baseline,
    BaselineEntry,
    ComplianceFinding,
    SettingSnapshot,
    SettingValue,
    SiteAuditResult,
)
from spo_baseline_auditor.risk import RiskMatrix
from spo_baseline_auditor.scoring import ComplianceScorer


def _matches_type(entry: BaselineEntry, value: SettingValue) -> bool:
    if entry.value_type == "bool":
        return isinstance(value, bool)
    if entry.value_type == "int":
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, str)


def compare(entry: BaselineEntry, current: SettingValue | None) -> tuple[bool, str]:
    """Compare an observed value against a baseline entry.

    Returns:
        Tuple of (compliant, reason). The reason is empty when compliant.
    """
    if current is None:
        return False, "setting not present"
    if not _matches_type(entry, current):
        return False, f"type mismatch: expected {entry.value_type}, got {type(current).__name__}"

    if entry.value_type == "enum" and current not in entry.allowed_values:
        return False, f"{current!r} is not an allowed value"

    if entry.compare_mode == "max_bound":
        if entry.value_type == "enum":
            ok = entry.allowed_values.index(current) <= entry.allowed_values.index(entry.expected)  # type: ignore[arg-type]
        else:
            ok = current <= entry.expected  # type: ignore[operator]
        return (True, "") if ok else (False, f"{current!r} exceeds upper bound {entry.expected!r}")

    if current == entry.expected:
        return True, ""
    return False, f"expected {entry.expected!r}, found {current!r}"


class ComplianceEvaluator:
    """Compares snapshots against baselines and classifies the risk of each difference."""

    def __init__(self, risk_matrix: RiskMatrix, scorer: ComplianceScorer | None = None) -> None:
        self.risk_matrix = risk_matrix
        self.scorer = scorer or ComplianceScorer()

    def evaluate(self, snapshot: SettingSnapshot, baseline: Baseline) -> list[ComplianceFinding]:
        """Produce one finding per baseline entry for the snapshot's scope kind."""
        findings: list[ComplianceFinding] = []
        for entry in baseline.entries_for(snapshot.scope_kind):
            current = snapshot.values.get(entry.key)
            compliant, reason = compare(entry, current)
            if compliant:
                risk = "none"
            else:
                risk = self.risk_matrix.classify(entry.key, current)
                # a difference is never riskless
                if risk == "none":
                    risk = "low"
            findings.append(ComplianceFinding(
                setting_key=entry.key,
                scope_id=snapshot.scope_id,
                scope_kind=snapshot.scope_kind,
                current_value=current,
                expected_value=entry.expected,
                compliant=compliant,
                risk_level=risk,
                risk_weight=entry.risk_weight,
                reason=reason,
            ))
        return findings

    def evaluate_scope(self, snapshot: SettingSnapshot, baseline: Baseline) -> SiteAuditResult:
        """Evaluate a snapshot and wrap findings and score in a SiteAuditResult."""
        findings = self.evaluate(snapshot, baseline)
        score, compliant_weight, total_weight = self.scorer.calculate_score(findings)
        return SiteAuditResult(
            scope_id=snapshot.scope_id,
            scope_kind=snapshot.scope_kind,
            reachable=True,
            findings=findings,
            compliance_score=score,
            compliant_weight=compliant_weight,
            total_weight=total_weight,
        )
