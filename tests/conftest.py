"""Shared test fixtures for the baseline auditor test suite.

Unit tests use an in-memory FakeSettingSource for the remote platform and
MagicMock to simulate HTTP responses from requests. Integration tests
(tests/integration/) require a real SharePoint Online tenant.
"""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path

import pytest

from spo_baseline_auditor.baseline import parse_baseline
from spo_baseline_auditor.config import AuditConfig
from spo_baseline_auditor.exceptions import UnreachableError
from spo_baseline_auditor.models import Baseline, ScopeKind, SettingSnapshot, SettingValue
from spo_baseline_auditor.risk import RiskMatrix
from spo_baseline_auditor.storage import AuditStorage

TENANT = "https://contoso-admin.sharepoint.com"

SHARING_LEVELS = [
    "Disabled",
    "ExistingExternalUserSharingOnly",
    "ExternalUserSharingOnly",
    "ExternalUserAndGuestSharing",
]

BASELINE_DOC: dict = {
    "name": "test-baseline",
    "version": "1.0",
    "tenantSettings": {
        "sharingCapability": {
            "expected": "ExistingExternalUserSharingOnly",
            "allowedValues": SHARING_LEVELS,
            "compareMode": "maxBound",
            "riskWeight": 10,
        },
        "legacyAuthProtocolsEnabled": {"expected": False, "riskWeight": 5},
        "externalUserExpireInDays": {"expected": 60, "compareMode": "maxBound", "riskWeight": 5},
    },
    "siteSettings": {
        "sharingCapability": {
            "expected": "ExistingExternalUserSharingOnly",
            "allowedValues": SHARING_LEVELS,
            "compareMode": "maxBound",
            "riskWeight": 10,
        },
        "defaultLinkPermission": {
            "expected": "View",
            "allowedValues": ["None", "View", "Edit"],
            "compareMode": "equals",
            "riskWeight": 4,
        },
        "anonymousLinkExpirationInDays": {"expected": 30, "compareMode": "maxBound", "riskWeight": 6},
    },
}

COMPLIANT_TENANT: dict[str, SettingValue] = {
    "sharingCapability": "ExistingExternalUserSharingOnly",
    "legacyAuthProtocolsEnabled": False,
    "externalUserExpireInDays": 30,
}

COMPLIANT_SITE: dict[str, SettingValue] = {
    "sharingCapability": "Disabled",
    "defaultLinkPermission": "View",
    "anonymousLinkExpirationInDays": 14,
}


class FakeSettingSource:
    """Thread-safe in-memory SettingSource with failure injection.

    ``get_failures`` and ``apply_failures`` hold per-scope / per-(scope, key)
    queues; each call pops the next item and raises it, ``None`` meaning the
    call succeeds. ``unreachable`` scopes always fail.
    """

    def __init__(self, values: dict[str, dict[str, SettingValue]] | None = None, delay: float = 0.0) -> None:
        self.values = {scope: dict(v) for scope, v in (values or {}).items()}
        self.delay = delay
        self.unreachable: set[str] = set()
        self.get_failures: dict[str, list[Exception | None]] = {}
        self.apply_failures: dict[tuple[str, str], list[Exception | None]] = {}
        self.get_calls: list[str] = []
        self.apply_calls: list[tuple[str, str, SettingValue]] = []
        self.on_get = None
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def get_snapshot(self, scope_id: str, scope_kind: ScopeKind) -> SettingSnapshot:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.get_calls.append(scope_id)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.on_get is not None:
                self.on_get(self, scope_id)
            if scope_id in self.unreachable or scope_id not in self.values:
                raise UnreachableError(f"{scope_id} is unreachable")
            queue = self.get_failures.get(scope_id)
            if queue:
                failure = queue.pop(0)
                if failure is not None:
                    raise failure
            with self._lock:
                values = dict(self.values[scope_id])
            return SettingSnapshot(scope_id=scope_id, scope_kind=scope_kind, values=values)
        finally:
            with self._lock:
                self.active -= 1

    def apply_setting(self, scope_id: str, scope_kind: ScopeKind, key: str, value: SettingValue) -> None:
        with self._lock:
            self.apply_calls.append((scope_id, key, value))
        queue = self.apply_failures.get((scope_id, key))
        if queue:
            failure = queue.pop(0)
            if failure is not None:
                raise failure
        with self._lock:
            self.values[scope_id][key] = value


def site(n: int) -> str:
    return f"https://contoso.sharepoint.com/sites/site{n:02d}"


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def env_configured() -> bool:
    """Check whether SharePoint environment variables are configured."""
    required_vars = ["SPO_ADMIN_URL", "SPO_ACCESS_TOKEN"]
    return all(os.environ.get(var) for var in required_vars)


@pytest.fixture
def audit_config(tmp_path: Path) -> AuditConfig:
    """Return an AuditConfig with test values."""
    return AuditConfig(
        SPO_ADMIN_URL=TENANT,
        SPO_ACCESS_TOKEN="token",
        SPO_TIMEOUT=10,
        SPO_MAX_RETRIES=1,
        RETRY_BASE_DELAY=0,
        AUDIT_STORAGE_PATH=str(tmp_path / "config-storage"),
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def baseline() -> Baseline:
    return parse_baseline(BASELINE_DOC)


@pytest.fixture
def risk_matrix() -> RiskMatrix:
    return RiskMatrix.bundled()


@pytest.fixture
def fake_source() -> FakeSettingSource:
    return FakeSettingSource({
        TENANT: dict(COMPLIANT_TENANT),
        site(1): dict(COMPLIANT_SITE),
        site(2): dict(COMPLIANT_SITE),
    })


@pytest.fixture
def audit_storage(tmp_path: Path) -> AuditStorage:
    """Return an AuditStorage using a temp directory."""
    return AuditStorage(str(tmp_path / "audit-storage"))
