"""Baseline audit and remediation MCP tool.

Runs one audit pass over the tenant and the requested sites, optionally
remediates, and returns the report with an executive summary.
"""

from __future__ import annotations

from spo_baseline_auditor.engine import ComplianceEngine, RunRequest
from spo_baseline_auditor.models import ComplianceReport, RemediationMode, RunResult


def _grade(score: int | None) -> tuple[str, str]:
    """Map an overall score to a letter grade and posture label."""
    if score is None:
        return "N/A", "unknown"
    if score >= 90:
        return "A", "low"
    if score >= 75:
        return "B", "moderate"
    if score >= 60:
        return "C", "elevated"
    if score >= 40:
        return "D", "high"
    return "F", "critical"


def summarize_report(report: ComplianceReport) -> dict:
    """Build an executive summary with non-compliant findings grouped by risk level."""
    findings_by_risk: dict[str, list[dict]] = {"high": [], "medium": [], "low": []}
    results = ([report.tenant_result] if report.tenant_result else []) + report.site_results
    for result in results:
        for finding in result.non_compliant:
            findings_by_risk[finding.risk_level].append({
                "scope_id": finding.scope_id,
                "setting_key": finding.setting_key,
                "current_value": finding.current_value,
                "expected_value": finding.expected_value,
                "reason": finding.reason,
            })

    grade, posture = _grade(report.overall_score)
    recommendations: list[str] = []
    if findings_by_risk["high"]:
        recommendations.append(f"Address {len(findings_by_risk['high'])} high-risk setting(s) immediately")
    if report.scopes_unreachable:
        recommendations.append(f"Re-audit {report.scopes_unreachable} unreachable scope(s)")
    if not any(findings_by_risk.values()) and not report.scopes_unreachable:
        recommendations.append("All audited scopes match the baseline")

    return {
        "overall_score": report.overall_score,
        "grade": grade,
        "posture": posture,
        "scopes_total": report.scopes_total,
        "scopes_unreachable": report.scopes_unreachable,
        "non_compliant_count": report.non_compliant_count,
        "findings_by_risk": findings_by_risk,
        "recommendations": recommendations,
    }


def run_baseline_audit(
    engine: ComplianceEngine,
    baseline_name: str,
    scopes: list[str] | None = None,
    mode: RemediationMode = "report_only",
    concurrency_limit: int = 8,
    include_tenant: bool = True,
    deadline_seconds: float | None = None,
) -> dict:
    """Audit the tenant and sites against a baseline and optionally remediate.

    Args:
        engine: Configured compliance engine.
        baseline_name: Registered baseline to audit against.
        scopes: Site URLs to audit.
        mode: report_only, interactive, or automatic.
        concurrency_limit: Maximum scopes audited or remediated at once.
        include_tenant: Also audit tenant-level settings.
        deadline_seconds: Stop starting new scopes after this many seconds.

    Returns:
        Dict with the report, per-scope outcomes, executions, and summary.
    """
    request = RunRequest(
        baseline_name=baseline_name,
        scopes=scopes or [],
        mode=mode,
        concurrency_limit=concurrency_limit,
        include_tenant=include_tenant,
        deadline_seconds=deadline_seconds,
    )
    result: RunResult = engine.run(request)
    payload = result.model_dump(mode="json")
    payload["summary"] = summarize_report(result.report)
    return payload
