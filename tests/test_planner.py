"""Tests for remediation planning."""

from __future__ import annotations

from conftest import TENANT, site

from spo_baseline_auditor.models import Baseline, ComplianceFinding
from spo_baseline_auditor.planner import RemediationPlanner


def _finding(
    key: str,
    risk: str,
    scope_id: str = "https://contoso.sharepoint.com/sites/site01",
    scope_kind: str = "site",
    compliant: bool = False,
    current: object = "current",
) -> ComplianceFinding:
    return ComplianceFinding(
        setting_key=key,
        scope_id=scope_id,
        scope_kind=scope_kind,
        current_value=current,
        expected_value="expected",
        compliant=compliant,
        risk_level="none" if compliant else risk,
        risk_weight=1.0,
    )


class TestRemediationPlanner:
    def setup_method(self) -> None:
        self.planner = RemediationPlanner()
        self.findings = [
            _finding("sharingCapability", "high"),
            _finding("defaultLinkPermission", "medium"),
            _finding("anonymousLinkExpirationInDays", "low"),
            _finding("compliantSetting", "none", compliant=True),
        ]

    def test_report_only_plans_nothing(self) -> None:
        assert self.planner.plan(self.findings, "report_only") == []
        assert RemediationPlanner(include_low_risk=True).plan(self.findings, "report_only") == []

    def test_automatic_excludes_low_risk(self) -> None:
        actions = self.planner.plan(self.findings, "automatic")
        assert [a.setting_key for a in actions] == ["sharingCapability", "defaultLinkPermission"]
        assert not any(a.requires_confirmation for a in actions)

    def test_automatic_includes_low_when_configured(self) -> None:
        actions = RemediationPlanner(include_low_risk=True).plan(self.findings, "automatic")
        assert {a.risk_level for a in actions} == {"high", "medium", "low"}

    def test_interactive_requires_confirmation(self) -> None:
        actions = self.planner.plan(self.findings, "interactive")
        assert len(actions) == 3
        assert all(a.requires_confirmation for a in actions)

    def test_compliant_findings_never_planned(self) -> None:
        actions = self.planner.plan(self.findings, "interactive")
        assert "compliantSetting" not in {a.setting_key for a in actions}

    def test_missing_current_value_skipped(self) -> None:
        findings = [_finding("sharingCapability", "high", current=None)]
        assert self.planner.plan(findings, "automatic") == []

    def test_action_captures_values(self) -> None:
        (action,) = self.planner.plan([_finding("sharingCapability", "high")], "automatic")
        assert action.previous_value == "current"
        assert action.target_value == "expected"
        assert action.status == "planned"
        assert not action.applied

    def test_tenant_actions_first(self) -> None:
        findings = [
            _finding("sharingCapability", "high", scope_id=site(2)),
            _finding("sharingCapability", "high", scope_id=site(1)),
            _finding("sharingCapability", "high", scope_id=TENANT, scope_kind="tenant"),
        ]
        actions = self.planner.plan(findings, "automatic")
        assert [a.scope_id for a in actions] == [TENANT, site(1), site(2)]

    def test_declaration_order_within_scope(self, baseline: Baseline) -> None:
        findings = [
            _finding("anonymousLinkExpirationInDays", "medium"),
            _finding("sharingCapability", "high"),
            _finding("defaultLinkPermission", "medium"),
        ]
        actions = self.planner.plan(findings, "automatic", baseline)
        assert [a.setting_key for a in actions] == [e.key for e in baseline.site_settings]

    def test_input_order_without_baseline(self) -> None:
        findings = [_finding("b", "high"), _finding("a", "high")]
        assert [a.setting_key for a in self.planner.plan(findings, "automatic")] == ["b", "a"]


class TestBuildTransactions:
    def test_one_transaction_per_scope(self) -> None:
        planner = RemediationPlanner()
        findings = [
            _finding("a", "high", scope_id=site(1)),
            _finding("b", "high", scope_id=site(1)),
            _finding("a", "high", scope_id=site(2)),
            _finding("a", "high", scope_id=TENANT, scope_kind="tenant"),
        ]
        transactions = planner.build_transactions(planner.plan(findings, "automatic"))
        assert [(t.scope_kind, t.scope_id) for t in transactions] == [
            ("tenant", TENANT), ("site", site(1)), ("site", site(2)),
        ]
        assert [a.setting_key for a in transactions[1].actions] == ["a", "b"]
        assert all(t.state == "pending" for t in transactions)
        assert all(a.scope_id == t.scope_id for t in transactions for a in t.actions)

    def test_no_actions_no_transactions(self) -> None:
        assert RemediationPlanner.build_transactions([]) == []
