"""Tests for the risk matrix."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from spo_baseline_auditor.exceptions import BaselineValidationError
from spo_baseline_auditor.risk import RiskMatrix, RiskRule, value_token


class TestValueToken:
    def test_bool_tokens(self) -> None:
        assert value_token(True) == "true"
        assert value_token(False) == "false"

    def test_other_tokens(self) -> None:
        assert value_token(30) == "30"
        assert value_token("Direct") == "Direct"


class TestRiskMatrix:
    def setup_method(self) -> None:
        self.matrix = RiskMatrix.from_dict({
            "settings": {
                "sharingCapability": {
                    "values": {"Disabled": "none", "ExternalUserAndGuestSharing": "high"},
                    "missing": "high",
                    "default": "medium",
                },
                "legacyAuthProtocolsEnabled": {"whenTrue": "high"},
                "browserIdleSignout": {"whenFalse": "low"},
                "externalUserExpireInDays": {"default": "low"},
            },
        })

    def test_exact_value_match(self) -> None:
        assert self.matrix.classify("sharingCapability", "ExternalUserAndGuestSharing") == "high"
        assert self.matrix.classify("sharingCapability", "Disabled") == "none"

    def test_setting_default(self) -> None:
        assert self.matrix.classify("sharingCapability", "ExternalUserSharingOnly") == "medium"
        assert self.matrix.classify("externalUserExpireInDays", 365) == "low"

    def test_missing_value(self) -> None:
        assert self.matrix.classify("sharingCapability", None) == "high"
        assert self.matrix.classify("externalUserExpireInDays", None) == "low"

    def test_when_true_rule(self) -> None:
        assert self.matrix.classify("legacyAuthProtocolsEnabled", True) == "high"
        assert self.matrix.classify("legacyAuthProtocolsEnabled", False) == "none"

    def test_when_false_rule(self) -> None:
        assert self.matrix.classify("browserIdleSignout", False) == "low"
        assert self.matrix.classify("browserIdleSignout", True) == "none"

    def test_unknown_setting_is_medium(self) -> None:
        assert self.matrix.classify("somethingElse", "x") == "medium"
        assert self.matrix.classify("somethingElse", None) == "medium"

    def test_matrix_default_override(self) -> None:
        matrix = RiskMatrix.from_dict({"default": "high"})
        assert matrix.classify("anything", 1) == "high"

    def test_with_overrides(self) -> None:
        overridden = self.matrix.with_overrides({"legacyAuthProtocolsEnabled": RiskRule(when_true="low")})
        assert overridden.classify("legacyAuthProtocolsEnabled", True) == "low"
        assert self.matrix.classify("legacyAuthProtocolsEnabled", True) == "high"

    def test_invalid_level_rejected(self) -> None:
        with pytest.raises(BaselineValidationError) as exc_info:
            RiskMatrix.from_dict({"settings": {"x": {"values": {"a": "critical"}}}})
        assert exc_info.value.errors

    def test_both_boolean_directions_rejected(self) -> None:
        with pytest.raises(BaselineValidationError):
            RiskMatrix.from_dict({"settings": {"x": {"whenTrue": "high", "whenFalse": "low"}}})

    def test_unknown_rule_field_rejected(self) -> None:
        with pytest.raises(BaselineValidationError):
            RiskMatrix.from_dict({"settings": {"x": {"level": "high"}}})

    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "matrix.json"
        path.write_text(json.dumps({"settings": {"x": {"default": "high"}}}))
        assert RiskMatrix.from_file(path).classify("x", 1) == "high"

    def test_bundled_matrix(self, risk_matrix: RiskMatrix) -> None:
        assert risk_matrix.classify("sharingCapability", "ExternalUserAndGuestSharing") == "high"
        assert risk_matrix.classify("legacyAuthProtocolsEnabled", True) == "high"
        assert risk_matrix.classify("defaultSharingLinkType", "AnonymousAccess") == "high"
        assert risk_matrix.classify("emailAttestationRequired", False) == "low"
