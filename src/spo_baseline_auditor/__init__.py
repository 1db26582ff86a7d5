"""SharePoint Online Baseline Auditor - security baseline compliance and remediation engine."""

__version__ = "0.1.0"

from spo_baseline_auditor.baseline import BaselineRegistry, parse_baseline
from spo_baseline_auditor.client import SettingSource, SharePointSettingSource
from spo_baseline_auditor.config import AuditConfig, get_config
from spo_baseline_auditor.engine import ComplianceEngine, RunRequest
from spo_baseline_auditor.evaluator import ComplianceEvaluator
from spo_baseline_auditor.exceptions import (
    AuditAPIError,
    AuditError,
    AuditPreconditionError,
    BaselineNotFoundError,
    BaselineValidationError,
    ConflictError,
    DeadlineExceededError,
    InvalidValueError,
    PermissionDeniedError,
    TransientError,
    UnreachableError,
)
from spo_baseline_auditor.executor import RemediationExecutor, RetryPolicy
from spo_baseline_auditor.models import (
    Baseline,
    BaselineEntry,
    ComplianceFinding,
    ComplianceReport,
    ExecutionResult,
    RemediationAction,
    RemediationMode,
    RemediationTransaction,
    RiskLevel,
    RunResult,
    SettingSnapshot,
    SiteAuditResult,
)
from spo_baseline_auditor.orchestrator import AuditOrchestrator
from spo_baseline_auditor.planner import RemediationPlanner
from spo_baseline_auditor.risk import RiskMatrix

__all__ = [
    "__version__",
    "AuditConfig",
    "get_config",
    "AuditError",
    "UnreachableError",
    "PermissionDeniedError",
    "TransientError",
    "InvalidValueError",
    "ConflictError",
    "DeadlineExceededError",
    "AuditAPIError",
    "BaselineValidationError",
    "BaselineNotFoundError",
    "AuditPreconditionError",
    "Baseline",
    "BaselineEntry",
    "SettingSnapshot",
    "ComplianceFinding",
    "SiteAuditResult",
    "RiskLevel",
    "RemediationMode",
    "RemediationAction",
    "RemediationTransaction",
    "ExecutionResult",
    "ComplianceReport",
    "RunResult",
    "SettingSource",
    "SharePointSettingSource",
    "BaselineRegistry",
    "parse_baseline",
    "RiskMatrix",
    "ComplianceEvaluator",
    "AuditOrchestrator",
    "RemediationPlanner",
    "RemediationExecutor",
    "RetryPolicy",
    "ComplianceEngine",
    "RunRequest",
]
