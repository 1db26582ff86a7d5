"""Report history, report comparison, and scope drift MCP tools.

Provides tools to browse past reports, compare two reports for trend
analysis (score deltas, new/resolved findings), and diff the two most recent
snapshots of a scope.
"""

from __future__ import annotations

from spo_baseline_auditor.drift import detect_drift
from spo_baseline_auditor.models import ComplianceReport
from spo_baseline_auditor.storage import AuditStorage


def _non_compliant_keys(report: ComplianceReport) -> set[str]:
    results = ([report.tenant_result] if report.tenant_result else []) + report.site_results
    return {f"{f.scope_id}#{f.setting_key}" for r in results for f in r.non_compliant}


def get_audit_history(storage: AuditStorage, baseline: str | None = None, limit: int = 10) -> dict:
    """Retrieve a list of past reports.

    Args:
        storage: Audit storage instance.
        baseline: Optional filter by baseline name.
        limit: Maximum number of reports to return.

    Returns:
        Dict with list of report summaries.
    """
    reports = storage.list_reports(baseline=baseline, limit=limit)
    return {
        "reports": reports,
        "total_returned": len(reports),
        "filter": baseline,
    }


def compare_reports(storage: AuditStorage, report_id_1: str, report_id_2: str) -> dict:
    """Compare two reports for trend analysis.

    Findings are identified as ``<scope id>#<setting key>``.

    Args:
        storage: Audit storage instance.
        report_id_1: The older report ID.
        report_id_2: The newer report ID.

    Returns:
        Dict with comparison data.
    """
    report_1 = storage.load_report(report_id_1)
    report_2 = storage.load_report(report_id_2)

    score_1 = report_1.overall_score
    score_2 = report_2.overall_score
    score_delta = (score_2 - score_1) if score_1 is not None and score_2 is not None else None

    failed_1 = _non_compliant_keys(report_1)
    failed_2 = _non_compliant_keys(report_2)

    if score_delta is None:
        trend = "unknown"
    else:
        trend = "improving" if score_delta > 0 else "declining" if score_delta < 0 else "stable"

    return {
        "report_id_1": report_id_1,
        "report_id_2": report_id_2,
        "score_1": score_1,
        "score_2": score_2,
        "score_delta": score_delta,
        "trend": trend,
        "new_findings": sorted(failed_2 - failed_1),
        "resolved_findings": sorted(failed_1 - failed_2),
        "persistent_findings": sorted(failed_1 & failed_2),
    }


def get_scope_drift(storage: AuditStorage, scope_id: str) -> dict:
    """Diff the two most recent cached snapshots of a scope."""
    snapshots = storage.load_snapshots(scope_id, limit=2)
    if len(snapshots) < 2:
        return {
            "status": "no_data",
            "scope_id": scope_id,
            "message": "At least two audits of this scope are needed to detect drift.",
        }
    current, previous = snapshots
    drift = detect_drift(previous, current)
    return {
        "status": "drifted" if drift else "unchanged",
        "scope_id": scope_id,
        "previous_captured_at": previous.captured_at.isoformat(),
        "current_captured_at": current.captured_at.isoformat(),
        "changes": [d.model_dump(mode="json") for d in drift],
    }
