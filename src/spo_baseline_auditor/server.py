"""FastMCP server entry point for the SharePoint Online baseline auditor.

Registers all MCP tools and starts the server. The server connects to a
SharePoint Online tenant admin endpoint to audit tenant and site settings
against security baselines and remediate non-compliant settings.
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from spo_baseline_auditor.config import AuditConfig, get_config
from spo_baseline_auditor.engine import ComplianceEngine
from spo_baseline_auditor.models import RemediationMode
from spo_baseline_auditor.storage import AuditStorage
from spo_baseline_auditor.tools.audit import run_baseline_audit
from spo_baseline_auditor.tools.baselines import classify_risk, list_baselines, show_baseline
from spo_baseline_auditor.tools.history import compare_reports, get_audit_history, get_scope_drift

logger = logging.getLogger(__name__)

mcp = FastMCP("spo-baseline-auditor")

# Module-level singletons initialized on first tool call
_config: AuditConfig | None = None
_engine: ComplianceEngine | None = None


def _get_dependencies() -> tuple[AuditConfig, ComplianceEngine, AuditStorage]:
    """Lazily initialize and return the shared config, engine, and storage."""
    global _config, _engine  # noqa: PLW0603
    if _config is None:
        _config = get_config()
        # Interactive runs over MCP have no confirmation callback: every
        # action is reported as declined, which makes them a preview.
        _engine = ComplianceEngine.from_config(_config)
    return _config, _engine, _engine.storage  # type: ignore[return-value, union-attr]


@mcp.tool()
def audit_run(
    baseline_name: str = "",
    scopes: list[str] | None = None,
    mode: RemediationMode = "report_only",
    concurrency_limit: int | None = None,
    include_tenant: bool = True,
    deadline_seconds: float | None = None,
) -> dict:
    """Audit the tenant and the given site URLs against a baseline, optionally remediating."""
    if not baseline_name:
        return {"status": "error", "message": "baseline_name is required"}
    config, engine, _ = _get_dependencies()
    return run_baseline_audit(
        engine,
        baseline_name,
        scopes=scopes,
        mode=mode,
        concurrency_limit=concurrency_limit or config.concurrency_limit,
        include_tenant=include_tenant,
        deadline_seconds=deadline_seconds or config.deadline_seconds,
    )


@mcp.tool()
def baselines_list() -> dict:
    """List registered security baselines."""
    _, engine, _ = _get_dependencies()
    return list_baselines(engine.registry)


@mcp.tool()
def baseline_show(name: str = "", scope_kind: str | None = None) -> dict:
    """Show the expected values, compare modes, and weights of a baseline."""
    if not name:
        return {"status": "error", "message": "name is required"}
    _, engine, _ = _get_dependencies()
    return show_baseline(engine.registry, name, scope_kind=scope_kind)


@mcp.tool()
def risk_classify(setting_key: str = "", value: bool | int | str | None = None) -> dict:
    """Look up the risk level of an observed setting value."""
    if not setting_key:
        return {"status": "error", "message": "setting_key is required"}
    _, engine, _ = _get_dependencies()
    return classify_risk(engine.risk_matrix, setting_key, value)


@mcp.tool()
def audit_history(baseline: str | None = None, limit: int = 10) -> dict:
    """Retrieve past compliance reports for trend analysis."""
    _, _, storage = _get_dependencies()
    return get_audit_history(storage, baseline=baseline, limit=limit)


@mcp.tool()
def audit_compare(report_id_1: str = "", report_id_2: str = "") -> dict:
    """Compare two reports showing score deltas and finding changes."""
    if not report_id_1 or not report_id_2:
        return {"status": "error", "message": "Both report_id_1 and report_id_2 are required"}
    _, _, storage = _get_dependencies()
    return compare_reports(storage, report_id_1, report_id_2)


@mcp.tool()
def scope_drift(scope_id: str = "") -> dict:
    """Show settings changed between the two most recent audits of a scope."""
    if not scope_id:
        return {"status": "error", "message": "scope_id is required"}
    _, _, storage = _get_dependencies()
    return get_scope_drift(storage, scope_id)


@mcp.tool()
def health_check() -> dict:
    """Verify the auditor server is running and can read tenant settings."""
    try:
        config, engine, _ = _get_dependencies()
        snapshot = engine.source.get_snapshot(engine.tenant_id, "tenant")
        return {
            "status": "healthy",
            "tenant": config.spo_admin_url,
            "settings_visible": len(snapshot.values),
            "baselines": len(engine.registry),
        }
    except Exception as exc:
        return {"status": "unhealthy", "error": str(exc)}


def main() -> None:
    """Entry point for the spo-baseline-auditor MCP server."""
    config = get_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    logger.info("Starting spo-baseline-auditor MCP server")
    mcp.run()
