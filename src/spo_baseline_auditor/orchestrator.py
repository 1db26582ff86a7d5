"""Bounded-concurrency audit fan-out across scopes.

The AuditOrchestrator audits each scope independently on a worker pool,
absorbs per-scope failures into ``reachable=False`` results, and returns
results sorted by scope id regardless of completion order.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING

from spo_baseline_auditor.client import SettingSource
from spo_baseline_auditor.concurrency import Deadline, ScopeLocks
from spo_baseline_auditor.evaluator import ComplianceEvaluator
from spo_baseline_auditor.exceptions import AuditError, AuditPreconditionError
from spo_baseline_auditor.models import Baseline, ScopeKind, SiteAuditResult

if TYPE_CHECKING:
    from spo_baseline_auditor.storage import AuditStorage

logger = logging.getLogger(__name__)


class AuditOrchestrator:
    """Audits many scopes against one baseline on a bounded worker pool."""

    def __init__(
        self,
        source: SettingSource,
        evaluator: ComplianceEvaluator,
        locks: ScopeLocks | None = None,
        storage: AuditStorage | None = None,
    ) -> None:
        self.source = source
        self.evaluator = evaluator
        self.locks = locks or ScopeLocks()
        self.storage = storage

    def audit_scope(
        self,
        scope_id: str,
        scope_kind: ScopeKind,
        baseline: Baseline,
        deadline: Deadline | None = None,
    ) -> SiteAuditResult:
        """Audit a single scope. Never raises.

        Args:
            scope_id: Tenant admin URL or site URL.
            scope_kind: 'tenant' or 'site'.
            baseline: The baseline to evaluate against.
            deadline: Optional run deadline; an expired deadline marks the scope unreachable.

        Returns:
            A SiteAuditResult with findings, or ``reachable=False`` with an error kind.
        """
        deadline = deadline or Deadline()
        try:
            deadline.check(f"auditing {scope_id}")
            with self.locks.hold(scope_id, deadline):
                snapshot = self.source.get_snapshot(scope_id, scope_kind)
        except AuditError as exc:
            logger.warning("Scope %s not audited (%s): %s", scope_id, exc.kind, exc)
            return SiteAuditResult(
                scope_id=scope_id,
                scope_kind=scope_kind,
                reachable=False,
                error_kind=exc.kind,
                error=str(exc),
            )
        except Exception as exc:
            logger.error("Scope %s failed unexpectedly: %s", scope_id, exc)
            return SiteAuditResult(
                scope_id=scope_id,
                scope_kind=scope_kind,
                reachable=False,
                error_kind="error",
                error=f"{type(exc).__name__}: {exc}",
            )

        if snapshot.scope_id != scope_id or snapshot.scope_kind != scope_kind:
            snapshot = snapshot.model_copy(update={"scope_id": scope_id, "scope_kind": scope_kind})

        if self.storage is not None:
            try:
                self.storage.save_snapshot(snapshot)
            except OSError as exc:
                logger.warning("Could not cache snapshot for %s: %s", scope_id, exc)

        result = self.evaluator.evaluate_scope(snapshot, baseline)
        logger.info(
            "Audited %s: score %s, %d non-compliant",
            scope_id,
            result.compliance_score,
            len(result.non_compliant),
        )
        return result

    def audit(
        self,
        scopes: Sequence[str],
        baseline: Baseline,
        concurrency_limit: int,
        deadline: Deadline | None = None,
        scope_kind: ScopeKind = "site",
    ) -> list[SiteAuditResult]:
        """Audit scopes with at most ``concurrency_limit`` audits in flight.

        Duplicate scope ids are audited once. Scopes not started before the
        deadline are reported unreachable with ``error_kind='deadline_exceeded'``.

        Returns:
            One SiteAuditResult per distinct scope, sorted by scope id.

        Raises:
            AuditPreconditionError: If concurrency_limit is below 1.
        """
        if concurrency_limit < 1:
            raise AuditPreconditionError(f"concurrency_limit must be at least 1, got {concurrency_limit}")
        unique = sorted(set(scopes))
        if not unique:
            return []
        deadline = deadline or Deadline()

        results: dict[str, SiteAuditResult] = {}
        max_workers = min(concurrency_limit, len(unique))
        logger.info("Auditing %d %s scope(s) with %d worker(s)", len(unique), scope_kind, max_workers)
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = {
                pool.submit(self.audit_scope, scope_id, scope_kind, baseline, deadline): scope_id
                for scope_id in unique
            }
            for future in as_completed(futures):
                scope_id = futures[future]
                try:
                    results[scope_id] = future.result()
                except Exception as exc:
                    results[scope_id] = SiteAuditResult(
                        scope_id=scope_id,
                        scope_kind=scope_kind,
                        reachable=False,
                        error_kind="error",
                        error=str(exc),
                    )

        return [results[scope_id] for scope_id in unique]
