"""Compliance engine: one audit pass plus optional remediation.

The ComplianceEngine wires the baseline registry, evaluator, orchestrator,
planner, and executor around an explicit SettingSource, enforces the run's
global preconditions, and produces a RunResult with the report and per-scope
remediation outcomes.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from pydantic import BaseModel, Field

from spo_baseline_auditor.baseline import BaselineRegistry, build_registry
from spo_baseline_auditor.client import SettingSource, SharePointSettingSource
from spo_baseline_auditor.concurrency import Deadline, ScopeLocks
from spo_baseline_auditor.config import AuditConfig
from spo_baseline_auditor.evaluator import ComplianceEvaluator
from spo_baseline_auditor.exceptions import AuditPreconditionError
from spo_baseline_auditor.executor import ConfirmAction, RemediationExecutor, RetryPolicy
from spo_baseline_auditor.models import (
    Baseline,
    ComplianceReport,
    RemediationMode,
    ReportMetadata,
    RunResult,
    ScopeOutcome,
    SiteAuditResult,
)
from spo_baseline_auditor.orchestrator import AuditOrchestrator
from spo_baseline_auditor.planner import RemediationPlanner
from spo_baseline_auditor.risk import RiskMatrix
from spo_baseline_auditor.scoring import ComplianceScorer
from spo_baseline_auditor.storage import AuditStorage

logger = logging.getLogger(__name__)


class RunRequest(BaseModel):
    """What to audit and how to remediate."""

    baseline_name: str
    scopes: list[str] = Field(default_factory=list)
    mode: RemediationMode = "report_only"
    concurrency_limit: int = Field(8, ge=1)
    include_tenant: bool = True
    deadline_seconds: float | None = Field(None, gt=0)


def build_compliance_report(
    baseline: Baseline,
    tenant_result: SiteAuditResult | None,
    site_results: list[SiteAuditResult],
    scorer: ComplianceScorer | None = None,
) -> ComplianceReport:
    """Aggregate per-scope results into a ComplianceReport."""
    scorer = scorer or ComplianceScorer()
    all_results = ([tenant_result] if tenant_result else []) + site_results
    return ComplianceReport(
        metadata=ReportMetadata(baseline=baseline.name, baseline_version=baseline.version),
        tenant_result=tenant_result,
        site_results=site_results,
        overall_score=scorer.aggregate_score(all_results),
        scopes_total=len(all_results),
        scopes_unreachable=sum(1 for r in all_results if not r.reachable),
        non_compliant_count=sum(len(r.non_compliant) for r in all_results),
    )


class ComplianceEngine:
    """Runs baseline audits and remediation against one tenant."""

    def __init__(
        self,
        source: SettingSource,
        registry: BaselineRegistry,
        tenant_id: str,
        risk_matrix: RiskMatrix | None = None,
        storage: AuditStorage | None = None,
        retry_policy: RetryPolicy | None = None,
        include_low_risk: bool = False,
        confirm: ConfirmAction | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.source = source
        self.registry = registry
        self.tenant_id = tenant_id
        self.risk_matrix = risk_matrix or RiskMatrix.bundled()
        self.storage = storage
        self.locks = ScopeLocks()
        self.scorer = ComplianceScorer()
        self.evaluator = ComplianceEvaluator(self.risk_matrix, self.scorer)
        self.orchestrator = AuditOrchestrator(source, self.evaluator, locks=self.locks, storage=storage)
        self.planner = RemediationPlanner(include_low_risk=include_low_risk)
        self.executor = RemediationExecutor(
            source,
            locks=self.locks,
            retry_policy=retry_policy,
            confirm=confirm,
            sleep=sleep,
            storage=storage,
        )

    @classmethod
    def from_config(
        cls,
        config: AuditConfig,
        source: SettingSource | None = None,
        confirm: ConfirmAction | None = None,
    ) -> ComplianceEngine:
        """Build an engine from configuration, using the SharePoint source unless one is given."""
        risk_matrix = RiskMatrix.from_file(config.risk_matrix_path) if config.risk_matrix_path else RiskMatrix.bundled()
        return cls(
            source=source or SharePointSettingSource(config),
            registry=build_registry(config),
            tenant_id=config.spo_admin_url.rstrip("/"),
            risk_matrix=risk_matrix,
            storage=AuditStorage(config.audit_storage_path),
            retry_policy=RetryPolicy(
                max_attempts=config.remediation_max_attempts,
                base_delay=config.retry_base_delay,
                max_delay=config.retry_max_delay,
            ),
            include_low_risk=config.include_low_risk,
            confirm=confirm,
        )

    def run(self, request: RunRequest) -> RunResult:
        """Audit every requested scope and, unless report_only, remediate.

        Every requested scope appears in the report, either with findings or
        with a reachability marker. Per-scope failures never abort the run.

        Raises:
            BaselineNotFoundError: If the baseline is not registered.
            AuditPreconditionError: If there is nothing to audit.
        """
        baseline = self.registry.get_baseline(request.baseline_name)
        site_scopes = sorted(set(request.scopes))
        if not site_scopes and not request.include_tenant:
            raise AuditPreconditionError("No scopes to audit")

        deadline = Deadline(request.deadline_seconds)
        logger.info(
            "Starting %s run of baseline %s v%s over %d site(s)%s",
            request.mode,
            baseline.name,
            baseline.version,
            len(site_scopes),
            " and the tenant" if request.include_tenant else "",
        )

        tenant_result = (
            self.orchestrator.audit_scope(self.tenant_id, "tenant", baseline, deadline)
            if request.include_tenant
            else None
        )
        site_results = self.orchestrator.audit(site_scopes, baseline, request.concurrency_limit, deadline)
        report = build_compliance_report(baseline, tenant_result, site_results, self.scorer)

        result = RunResult(report=report, mode=request.mode)
        if request.mode != "report_only":
            audited = ([tenant_result] if tenant_result else []) + site_results
            findings = [f for r in audited if r.reachable for f in r.findings]
            actions = self.planner.plan(findings, request.mode, baseline)
            transactions = self.planner.build_transactions(actions)
            executions = self.executor.execute_all(transactions, request.concurrency_limit, deadline)

            outcomes: dict[str, ScopeOutcome] = {r.scope_id: "skipped" for r in audited}
            for execution in executions:
                outcomes[execution.scope_id] = execution.outcome
            result.outcomes = outcomes
            result.executions = executions

        if self.storage is not None:
            try:
                self.storage.save_report(report)
            except OSError as exc:
                logger.warning("Could not save report %s: %s", report.id, exc)
        logger.info(
            "Run complete: overall score %s, %d unreachable, %d non-compliant",
            report.overall_score,
            report.scopes_unreachable,
            report.non_compliant_count,
        )
        return result
