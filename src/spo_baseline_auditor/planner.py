"""Turns non-compliant findings into ordered remediation actions.

Tenant actions always come before site actions because site settings such as
sharingCapability are bounded by the tenant-level ceiling. Within one scope,
actions follow baseline declaration order.
"""

from __future__ import annotations

import logging

from spo_baseline_auditor.models import (
    Baseline,
    ComplianceFinding,
    RemediationAction,
    RemediationMode,
    RemediationTransaction,
    RiskLevel,
)

logger = logging.getLogger(__name__)

_SCOPE_ORDER = {"tenant": 0, "site": 1}
AUTOMATIC_RISK_LEVELS: frozenset[RiskLevel] = frozenset({"medium", "high"})


class RemediationPlanner:
    """Builds remediation actions and per-scope transactions from findings."""

    def __init__(self, include_low_risk: bool = False) -> None:
        self.include_low_risk = include_low_risk

    def _eligible(self, finding: ComplianceFinding, mode: RemediationMode) -> bool:
        if finding.compliant:
            return False
        if finding.current_value is None:
            # nothing to roll back to
            logger.info("Skipping %s on %s: no current value to capture", finding.setting_key, finding.scope_id)
            return False
        if mode == "automatic":
            return finding.risk_level in AUTOMATIC_RISK_LEVELS or (
                self.include_low_risk and finding.risk_level == "low"
            )
        return True

    def plan(
        self,
        findings: list[ComplianceFinding],
        mode: RemediationMode,
        baseline: Baseline | None = None,
    ) -> list[RemediationAction]:
        """Plan remediation actions for non-compliant findings.

        Args:
            findings: Findings from any number of scopes.
            mode: report_only plans nothing; interactive flags every action for
                confirmation; automatic plans medium and high risk findings
                (and low when include_low_risk is set).
            baseline: When given, orders actions within a scope by declaration
                order; otherwise the input order is kept.

        Returns:
            Actions ordered tenant first, then by scope id, then declaration order.
        """
        if mode == "report_only":
            return []

        ranked: list[tuple[tuple[int, str, int, int], RemediationAction]] = []
        for index, finding in enumerate(findings):
            if not self._eligible(finding, mode):
                continue
            position = baseline.position(finding.scope_kind, finding.setting_key) if baseline else index
            if position < 0:
                position = len(findings) + index
            action = RemediationAction(
                setting_key=finding.setting_key,
                scope_id=finding.scope_id,
                scope_kind=finding.scope_kind,
                target_value=finding.expected_value,
                previous_value=finding.current_value,  # type: ignore[arg-type]
                risk_level=finding.risk_level,
                requires_confirmation=mode == "interactive",
            )
            ranked.append(((_SCOPE_ORDER[finding.scope_kind], finding.scope_id, position, index), action))

        ranked.sort(key=lambda pair: pair[0])
        actions = [action for _, action in ranked]
        logger.info("Planned %d action(s) in %s mode", len(actions), mode)
        return actions

    @staticmethod
    def build_transactions(actions: list[RemediationAction]) -> list[RemediationTransaction]:
        """Group ordered actions into one transaction per scope, keeping their order."""
        transactions: dict[tuple[str, str], RemediationTransaction] = {}
        for action in actions:
            key = (action.scope_kind, action.scope_id)
            transaction = transactions.get(key)
            if transaction is None:
                transaction = transactions[key] = RemediationTransaction(
                    scope_id=action.scope_id,
                    scope_kind=action.scope_kind,
                )
            transaction.actions.append(action)
        return sorted(transactions.values(), key=lambda t: (_SCOPE_ORDER[t.scope_kind], t.scope_id))
