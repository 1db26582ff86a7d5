"""JSON-based file storage for reports, snapshots, and remediation transactions.

Persists audit history under the configured audit_storage_path, enabling
history queries, report comparison, drift detection against the previous
snapshot of a scope, and an audit trail of every remediation transaction.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from pathlib import Path

from spo_baseline_auditor.models import ComplianceReport, ExecutionResult, SettingSnapshot

logger = logging.getLogger(__name__)


def scope_dir_name(scope_id: str) -> str:
    """Filesystem-safe, collision-resistant directory name for a scope id."""
    slug = re.sub(r"[^A-Za-z0-9]+", "-", scope_id).strip("-")[:60]
    digest = hashlib.sha256(scope_id.encode("utf-8")).hexdigest()[:12]
    return f"{slug}-{digest}" if slug else digest


class AuditStorage:
    """Manages persistence of reports, snapshots, and transaction results."""

    def __init__(self, base_path: str) -> None:
        self.base_path = Path(base_path)
        self.reports_path = self.base_path / "reports"
        self.snapshots_path = self.base_path / "snapshots"
        self.transactions_path = self.base_path / "transactions"
        self.reports_path.mkdir(parents=True, exist_ok=True)
        self.snapshots_path.mkdir(parents=True, exist_ok=True)
        self.transactions_path.mkdir(parents=True, exist_ok=True)

    def save_report(self, report: ComplianceReport) -> str:
        """Persist a compliance report to disk.

        Args:
            report: The ComplianceReport to save.

        Returns:
            The report ID.
        """
        file_path = self.reports_path / f"{report.id}.json"
        file_path.write_text(report.model_dump_json(indent=2))
        logger.info("Saved report %s to %s", report.id, file_path)
        return report.id

    def load_report(self, report_id: str) -> ComplianceReport:
        """Load a report by ID.

        Raises:
            FileNotFoundError: If the report file does not exist.
        """
        file_path = self.reports_path / f"{report_id}.json"
        if not file_path.exists():
            raise FileNotFoundError(f"Report not found: {report_id}")
        return ComplianceReport.model_validate_json(file_path.read_text())

    def list_reports(self, baseline: str | None = None, limit: int = 50) -> list[dict]:
        """List stored reports, newest first, with optional baseline filtering.

        Returns:
            List of summary dicts with id, baseline, generated_at, and overall score.
        """
        results: list[dict] = []
        files = sorted(self.reports_path.glob("*.json"), key=lambda p: p.stat().st_mtime, reverse=True)

        for file_path in files:
            if len(results) >= limit:
                break
            try:
                data = json.loads(file_path.read_text())
                metadata = data["metadata"]
                if baseline and metadata.get("baseline") != baseline:
                    continue
                results.append({
                    "id": data["id"],
                    "baseline": metadata.get("baseline"),
                    "baseline_version": metadata.get("baseline_version"),
                    "generated_at": metadata.get("generated_at"),
                    "overall_score": data.get("overall_score"),
                    "scopes_total": data.get("scopes_total"),
                    "scopes_unreachable": data.get("scopes_unreachable"),
                })
            except (json.JSONDecodeError, KeyError) as exc:
                logger.warning("Skipping corrupt report file %s: %s", file_path, exc)
                continue

        return results

    def save_snapshot(self, snapshot: SettingSnapshot) -> Path:
        """Persist a scope snapshot for later drift comparison."""
        scope_path = self.snapshots_path / scope_dir_name(snapshot.scope_id)
        scope_path.mkdir(parents=True, exist_ok=True)
        file_path = scope_path / f"{snapshot.captured_at:%Y%m%dT%H%M%S%f}.json"
        file_path.write_text(snapshot.model_dump_json(indent=2))
        logger.debug("Saved snapshot of %s to %s", snapshot.scope_id, file_path)
        return file_path

    def load_snapshots(self, scope_id: str, limit: int = 2) -> list[SettingSnapshot]:
        """Return the most recent snapshots of a scope, newest first."""
        scope_path = self.snapshots_path / scope_dir_name(scope_id)
        if not scope_path.is_dir():
            return []
        files = sorted(scope_path.glob("*.json"), reverse=True)[:limit]
        return [SettingSnapshot.model_validate_json(p.read_text()) for p in files]

    def save_execution(self, result: ExecutionResult) -> str:
        """Record a remediation transaction outcome in the audit trail."""
        file_path = self.transactions_path / f"{result.transaction_id}.json"
        file_path.write_text(result.model_dump_json(indent=2))
        logger.info("Recorded transaction %s (%s) to %s", result.transaction_id, result.state, file_path)
        return result.transaction_id

    def load_execution(self, transaction_id: str) -> ExecutionResult:
        """Load a recorded transaction outcome.

        Raises:
            FileNotFoundError: If no transaction with that ID was recorded.
        """
        file_path = self.transactions_path / f"{transaction_id}.json"
        if not file_path.exists():
            raise FileNotFoundError(f"Transaction not found: {transaction_id}")
        return ExecutionResult.model_validate_json(file_path.read_text())
