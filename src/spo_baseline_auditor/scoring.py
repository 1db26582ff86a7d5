"""Compliance scoring with risk-weight based calculations.

A scope's score is the share of baseline risk weight that is compliant,
scaled to 0-100 and rounded to the nearest integer. The aggregate score pools
weights over every reachable scope; unreachable scopes are excluded.
"""

from __future__ import annotations

import math
from collections.abc import Iterable

from spo_baseline_auditor.models import ComplianceFinding, SiteAuditResult


class ComplianceScorer:
    """Calculates weighted compliance scores."""

    @staticmethod
    def to_score(compliant_weight: float, total_weight: float, all_compliant: bool) -> int:
        """Scale a weight ratio to an integer 0-100.

        A scope with nothing to evaluate scores 100. Rounding never lifts a
        scope with a non-compliant finding to 100.
        """
        if total_weight <= 0:
            return 100
        score = math.floor(100.0 * compliant_weight / total_weight + 0.5)
        if score >= 100 and not all_compliant:
            return 99
        return max(0, min(100, score))

    def calculate_score(self, findings: list[ComplianceFinding]) -> tuple[int, float, float]:
        """Calculate a weighted compliance score from findings.

        Args:
            findings: Findings for one scope.

        Returns:
            Tuple of (score, compliant weight, total weight).
        """
        total = sum(f.risk_weight for f in findings)
        compliant = sum(f.risk_weight for f in findings if f.compliant)
        all_compliant = all(f.compliant for f in findings)
        return self.to_score(compliant, total, all_compliant), compliant, total

    def aggregate_score(self, results: Iterable[SiteAuditResult]) -> int | None:
        """Pool weights across reachable scopes. Returns None if none were reachable."""
        reachable = [r for r in results if r.reachable]
        if not reachable:
            return None
        total = sum(r.total_weight for r in reachable)
        compliant = sum(r.compliant_weight for r in reachable)
        all_compliant = all(not r.non_compliant for r in reachable)
        return self.to_score(compliant, total, all_compliant)
