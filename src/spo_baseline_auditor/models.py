"""Pydantic v2 data models for baselines, snapshots, findings, and remediation.

All core data structures used throughout the auditor live here. Value objects
shared across worker threads (Baseline, SettingSnapshot, ComplianceFinding)
are frozen.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr

SettingValue = StrictBool | StrictInt | StrictStr
ValueType = Literal["bool", "int", "string", "enum"]
CompareMode = Literal["equals", "max_bound"]
ScopeKind = Literal["tenant", "site"]
RiskLevel = Literal["none", "low", "medium", "high"]
RemediationMode = Literal["report_only", "interactive", "automatic"]
TransactionState = Literal["pending", "committed", "rolled_back", "rollback_incomplete"]
ActionStatus = Literal["planned", "applied", "declined", "failed", "reverted", "revert_failed", "not_attempted"]
ScopeOutcome = Literal["committed", "rolled_back", "rollback_incomplete", "skipped"]
ErrorKind = Literal[
    "unreachable",
    "permission_denied",
    "transient",
    "invalid_value",
    "conflict",
    "deadline_exceeded",
    "error",
]

RISK_ORDER: dict[str, int] = {"none": 0, "low": 1, "medium": 2, "high": 3}


class BaselineEntry(BaseModel):
    """Expected value, comparison rule and weight for one setting."""

    model_config = ConfigDict(frozen=True)

    key: str
    scope: ScopeKind
    expected: SettingValue
    value_type: ValueType
    compare_mode: CompareMode = "equals"
    risk_weight: float = Field(gt=0)
    allowed_values: tuple[str, ...] = ()
    description: str = ""


class Baseline(BaseModel):
    """A named, versioned security policy."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    description: str = ""
    tenant_settings: tuple[BaselineEntry, ...] = ()
    site_settings: tuple[BaselineEntry, ...] = ()

    def entries_for(self, scope_kind: ScopeKind) -> tuple[BaselineEntry, ...]:
        """Return entries for a scope kind in declaration order."""
        return self.tenant_settings if scope_kind == "tenant" else self.site_settings

    def position(self, scope_kind: ScopeKind, key: str) -> int:
        """Return the declaration index of ``key`` or -1 when absent."""
        for index, entry in enumerate(self.entries_for(scope_kind)):
            if entry.key == key:
                return index
        return -1


class SettingSnapshot(BaseModel):
    """Observed configuration at one scope."""

    model_config = ConfigDict(frozen=True)

    scope_id: str
    scope_kind: ScopeKind
    values: dict[str, SettingValue] = Field(default_factory=dict)
    captured_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ComplianceFinding(BaseModel):
    """Evaluation result for one setting at one scope."""

    model_config = ConfigDict(frozen=True)

    setting_key: str
    scope_id: str
    scope_kind: ScopeKind
    current_value: SettingValue | None
    expected_value: SettingValue
    compliant: bool
    risk_level: RiskLevel
    risk_weight: float
    reason: str = ""


class SiteAuditResult(BaseModel):
    """All findings for one scope, or a reachability marker."""

    scope_id: str
    scope_kind: ScopeKind = "site"
    reachable: bool = True
    findings: list[ComplianceFinding] = Field(default_factory=list)
    compliance_score: int | None = Field(default=None, ge=0, le=100)
    compliant_weight: float = 0.0
    total_weight: float = 0.0
    error_kind: ErrorKind | None = None
    error: str = ""

    @property
    def non_compliant(self) -> list[ComplianceFinding]:
        return [f for f in self.findings if not f.compliant]


class RemediationAction(BaseModel):
    """A planned fix for one non-compliant finding."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    setting_key: str
    scope_id: str
    scope_kind: ScopeKind
    target_value: SettingValue
    previous_value: SettingValue
    risk_level: RiskLevel
    requires_confirmation: bool = False
    applied: bool = False
    status: ActionStatus = "planned"
    error: str = ""


class RemediationTransaction(BaseModel):
    """Ordered group of actions against a single scope."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    scope_id: str
    scope_kind: ScopeKind
    actions: list[RemediationAction] = Field(default_factory=list)
    state: TransactionState = "pending"


class ExecutionResult(BaseModel):
    """Outcome of executing one remediation transaction."""

    transaction_id: str
    scope_id: str
    scope_kind: ScopeKind
    state: TransactionState
    outcome: ScopeOutcome
    actions: list[RemediationAction] = Field(default_factory=list)
    applied_count: int = 0
    reverted_count: int = 0
    error_kind: ErrorKind | None = None
    error: str = ""
    needs_reaudit: bool = False
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None


class ReportMetadata(BaseModel):
    baseline: str
    baseline_version: str
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ComplianceReport(BaseModel):
    """Aggregated audit output handed to report rendering."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    metadata: ReportMetadata
    tenant_result: SiteAuditResult | None = None
    site_results: list[SiteAuditResult] = Field(default_factory=list)
    overall_score: int | None = Field(default=None, ge=0, le=100)
    scopes_total: int = 0
    scopes_unreachable: int = 0
    non_compliant_count: int = 0


class RunResult(BaseModel):
    """Report plus per-scope remediation outcomes for one invocation."""

    report: ComplianceReport
    mode: RemediationMode
    outcomes: dict[str, ScopeOutcome] = Field(default_factory=dict)
    executions: list[ExecutionResult] = Field(default_factory=list)


class DriftEntry(BaseModel):
    """A setting whose value differs between two snapshots of one scope."""

    setting_key: str
    change: Literal["changed", "added", "removed"]
    previous_value: SettingValue | None = None
    current_value: SettingValue | None = None
