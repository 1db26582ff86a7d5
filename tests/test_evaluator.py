"""Tests for the compliance evaluator."""

from __future__ import annotations

import pytest
from conftest import COMPLIANT_SITE, COMPLIANT_TENANT, SHARING_LEVELS

from spo_baseline_auditor.baseline import parse_baseline
from spo_baseline_auditor.evaluator import ComplianceEvaluator, compare
from spo_baseline_auditor.models import Baseline, BaselineEntry, SettingSnapshot
from spo_baseline_auditor.risk import RiskMatrix


def _snapshot(values: dict, scope_kind: str = "site", scope_id: str = "https://contoso.sharepoint.com/sites/a") -> SettingSnapshot:
    return SettingSnapshot(scope_id=scope_id, scope_kind=scope_kind, values=values)


class TestCompare:
    def test_equals(self) -> None:
        entry = BaselineEntry(key="k", scope="site", expected=False, value_type="bool", risk_weight=1)
        assert compare(entry, False) == (True, "")
        compliant, reason = compare(entry, True)
        assert not compliant
        assert "expected False" in reason

    def test_int_max_bound(self) -> None:
        entry = BaselineEntry(
            key="k", scope="site", expected=30, value_type="int", compare_mode="max_bound", risk_weight=1,
        )
        assert compare(entry, 30)[0]
        assert compare(entry, 7)[0]
        assert not compare(entry, 31)[0]

    def test_enum_max_bound_uses_declared_order(self) -> None:
        entry = BaselineEntry(
            key="sharingCapability",
            scope="tenant",
            expected="ExistingExternalUserSharingOnly",
            value_type="enum",
            compare_mode="max_bound",
            allowed_values=tuple(SHARING_LEVELS),
            risk_weight=10,
        )
        assert compare(entry, "Disabled")[0]
        assert compare(entry, "ExistingExternalUserSharingOnly")[0]
        assert not compare(entry, "ExternalUserAndGuestSharing")[0]

    def test_enum_value_outside_allowed(self) -> None:
        entry = BaselineEntry(
            key="k", scope="site", expected="View", value_type="enum",
            allowed_values=("View", "Edit"), risk_weight=1,
        )
        compliant, reason = compare(entry, "Owner")
        assert not compliant
        assert "not an allowed value" in reason

    def test_missing_value(self) -> None:
        entry = BaselineEntry(key="k", scope="site", expected=True, value_type="bool", risk_weight=1)
        assert compare(entry, None) == (False, "setting not present")

    def test_type_mismatch_is_not_coerced(self) -> None:
        entry = BaselineEntry(key="k", scope="site", expected=30, value_type="int", risk_weight=1)
        compliant, reason = compare(entry, "30")
        assert not compliant
        assert reason.startswith("type mismatch")

    def test_bool_is_not_an_int(self) -> None:
        entry = BaselineEntry(key="k", scope="site", expected=1, value_type="int", risk_weight=1)
        assert not compare(entry, True)[0]


class TestComplianceEvaluator:
    def setup_method(self) -> None:
        self.evaluator = ComplianceEvaluator(RiskMatrix.bundled())

    def test_single_setting_example(self) -> None:
        baseline = parse_baseline({
            "name": "single",
            "version": "1",
            "siteSettings": {
                "sharingCapability": {"expected": "Disabled", "compareMode": "equals", "riskWeight": 10},
            },
        })
        result = self.evaluator.evaluate_scope(_snapshot({"sharingCapability": "ExternalUserAndGuestSharing"}), baseline)
        (finding,) = result.findings
        assert finding.compliant is False
        assert finding.risk_level == "high"
        assert result.compliance_score == 0

    def test_fully_compliant_scope(self, baseline: Baseline) -> None:
        result = self.evaluator.evaluate_scope(_snapshot(COMPLIANT_SITE), baseline)
        assert result.compliance_score == 100
        assert all(f.compliant and f.risk_level == "none" for f in result.findings)

    def test_findings_follow_declaration_order(self, baseline: Baseline) -> None:
        findings = self.evaluator.evaluate(_snapshot(COMPLIANT_TENANT, "tenant"), baseline)
        assert [f.setting_key for f in findings] == [e.key for e in baseline.tenant_settings]

    def test_one_finding_per_entry_even_when_missing(self, baseline: Baseline) -> None:
        findings = self.evaluator.evaluate(_snapshot({}), baseline)
        assert len(findings) == len(baseline.site_settings)
        assert all(not f.compliant and f.current_value is None for f in findings)
        assert findings[0].risk_level == "high"

    def test_extra_observed_settings_ignored(self, baseline: Baseline) -> None:
        values = dict(COMPLIANT_SITE, somethingUnrelated=True)
        findings = self.evaluator.evaluate(_snapshot(values), baseline)
        assert "somethingUnrelated" not in {f.setting_key for f in findings}

    def test_deterministic(self, baseline: Baseline) -> None:
        snapshot = _snapshot(dict(COMPLIANT_SITE, defaultLinkPermission="Edit"))
        first = self.evaluator.evaluate_scope(snapshot, baseline)
        second = self.evaluator.evaluate_scope(snapshot, baseline)
        assert first.findings == second.findings
        assert first.compliance_score == second.compliance_score

    def test_fixing_a_finding_never_lowers_score(self, baseline: Baseline) -> None:
        broken = {
            "sharingCapability": "ExternalUserAndGuestSharing",
            "defaultLinkPermission": "Edit",
            "anonymousLinkExpirationInDays": 90,
        }
        previous = self.evaluator.evaluate_scope(_snapshot(broken), baseline).compliance_score
        for key, fixed in COMPLIANT_SITE.items():
            broken[key] = fixed
            score = self.evaluator.evaluate_scope(_snapshot(broken), baseline).compliance_score
            assert score > previous
            previous = score
        assert previous == 100

    def test_partial_score_is_weighted(self, baseline: Baseline) -> None:
        # weights: sharingCapability 10, defaultLinkPermission 4, anonymousLinkExpirationInDays 6
        snapshot = _snapshot(dict(COMPLIANT_SITE, sharingCapability="ExternalUserAndGuestSharing"))
        result = self.evaluator.evaluate_scope(snapshot, baseline)
        assert result.compliant_weight == 10.0
        assert result.total_weight == 20.0
        assert result.compliance_score == 50

    def test_none_risk_raised_to_low(self) -> None:
        baseline = parse_baseline({
            "name": "b",
            "version": "1",
            "siteSettings": {"legacyAuthProtocolsEnabled": {"expected": True, "riskWeight": 1}},
        })
        (finding,) = self.evaluator.evaluate(_snapshot({"legacyAuthProtocolsEnabled": False}), baseline)
        assert not finding.compliant
        assert finding.risk_level == "low"

    @pytest.mark.parametrize(
        ("value", "level"),
        [("ExternalUserSharingOnly", "medium"), ("ExternalUserAndGuestSharing", "high")],
    )
    def test_risk_follows_observed_value(self, baseline: Baseline, value: str, level: str) -> None:
        findings = self.evaluator.evaluate(_snapshot(dict(COMPLIANT_SITE, sharingCapability=value)), baseline)
        assert findings[0].risk_level == level
