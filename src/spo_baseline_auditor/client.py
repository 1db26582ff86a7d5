"""Setting sources: the boundary between the engine and the remote platform.

``SettingSource`` is the protocol every component receives explicitly.
``SharePointSettingSource`` implements it over the SharePoint Online tenant
admin REST API with exponential backoff on transient read failures and
structured exception mapping. Writes are attempted once; the remediation
executor owns write retries.
"""

from __future__ import annotations

import logging
import math
import random
import time
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Protocol
from urllib.parse import quote

import requests

from spo_baseline_auditor.config import AuditConfig
from spo_baseline_auditor.exceptions import (
    AuditAPIError,
    InvalidValueError,
    PermissionDeniedError,
    TransientError,
    UnreachableError,
)
from spo_baseline_auditor.models import ScopeKind, SettingSnapshot, SettingValue

logger = logging.getLogger(__name__)

# Integer enums exposed by the admin API, decoded to their names so baselines
# can declare readable expected values.
ENUM_CODECS: dict[str, dict[int, str]] = {
    "SharingCapability": {
        0: "Disabled",
        1: "ExternalUserSharingOnly",
        2: "ExternalUserAndGuestSharing",
        3: "ExistingExternalUserSharingOnly",
    },
    "OneDriveSharingCapability": {
        0: "Disabled",
        1: "ExternalUserSharingOnly",
        2: "ExternalUserAndGuestSharing",
        3: "ExistingExternalUserSharingOnly",
    },
    "DefaultSharingLinkType": {0: "None", 1: "Direct", 2: "Internal", 3: "AnonymousAccess"},
    "DefaultLinkPermission": {0: "None", 1: "View", 2: "Edit"},
    "ConditionalAccessPolicy": {
        0: "AllowFullAccess",
        1: "AllowLimitedAccess",
        2: "BlockAccess",
        3: "AuthenticationContext",
    },
    "SharingDomainRestrictionMode": {0: "None", 1: "AllowList", 2: "BlockList"},
    "DisableCompanyWideSharingLinks": {0: "Unknown", 1: "Disabled", 2: "NotDisabled"},
}

_TRANSIENT_STATUSES = {429, 502, 503, 504}


class SettingSource(Protocol):
    """Reads and writes individual configuration values at tenant or site scope."""

    def get_snapshot(self, scope_id: str, scope_kind: ScopeKind) -> SettingSnapshot: ...

    def apply_setting(self, scope_id: str, scope_kind: ScopeKind, key: str, value: SettingValue) -> None: ...


def parse_retry_after(header: str | None) -> float | None:
    """Seconds to wait from a Retry-After header given as seconds or an HTTP date."""
    if not header:
        return None
    try:
        seconds = float(header)
    except ValueError:
        pass
    else:
        return max(0.0, seconds) if math.isfinite(seconds) else None
    try:
        when = parsedate_to_datetime(header)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


def to_property_name(key: str) -> str:
    """Map a baseline key (``sharingCapability``) to an API property (``SharingCapability``)."""
    return key[:1].upper() + key[1:]


def to_setting_key(prop: str) -> str:
    return prop[:1].lower() + prop[1:]


def decode_value(prop: str, value: object) -> SettingValue | None:
    """Convert a raw API value into a SettingValue, or None if unsupported."""
    codec = ENUM_CODECS.get(prop)
    if codec is not None and isinstance(value, int) and not isinstance(value, bool):
        return codec.get(value, str(value))
    if isinstance(value, (bool, int, str)):
        return value
    return None


def encode_value(prop: str, value: SettingValue) -> object:
    """Convert a SettingValue back into the representation the API expects."""
    codec = ENUM_CODECS.get(prop)
    if codec is not None and isinstance(value, str):
        for code, name in codec.items():
            if name == value:
                return code
        raise InvalidValueError(f"Unknown value {value!r} for {prop}", details={"allowed": sorted(codec.values())})
    return value


class SharePointSettingSource:
    """SettingSource over the SharePoint Online tenant admin REST API."""

    def __init__(self, config: AuditConfig) -> None:
        self.config = config
        self.admin_url = config.spo_admin_url.rstrip("/")
        self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {config.spo_access_token}",
            "Accept": "application/json;odata=nometadata",
            "Content-Type": "application/json;odata=nometadata",
        })
        self.timeout = config.spo_timeout
        self.max_retries = config.spo_max_retries

    def _request(self, method: str, url: str, retry: bool = True, **kwargs: object) -> requests.Response:
        """Execute an HTTP request with retry logic and error mapping.

        With ``retry`` the initial attempt plus up to ``max_retries`` retries are
        made for transient failures. Without it a single attempt is made.
        """
        attempts = self.max_retries + 1 if retry else 1
        last_exception: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                response = self.session.request(
                    method,
                    url,
                    timeout=self.timeout,
                    **kwargs,  # type: ignore[arg-type]
                )
                self._raise_for_status(response)
                return response
            except TransientError as exc:
                last_exception = exc
                wait = exc.retry_after or (2 ** (attempt - 1))
            except requests.Timeout as exc:
                last_exception = TransientError(f"Request timed out: {exc}", details={"url": url, "attempt": attempt})
                wait = 2 ** (attempt - 1)
            except requests.ConnectionError as exc:
                last_exception = UnreachableError(f"Connection failed: {exc}", details={"url": url, "attempt": attempt})
                wait = 2 ** (attempt - 1)
            if attempt < attempts:
                wait += random.uniform(0, wait / 2)
                logger.warning("%s, retrying in %.1fs (attempt %d/%d)", last_exception, wait, attempt, attempts)
                time.sleep(wait)
        raise last_exception  # type: ignore[misc]

    def _raise_for_status(self, response: requests.Response) -> None:
        """Map HTTP status codes to typed audit exceptions."""
        if response.ok:
            return
        status = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text[:500]}

        if status in (401, 403):
            raise PermissionDeniedError("Permission denied", details=body)
        if status == 404:
            raise UnreachableError("Scope not found", details=body)
        if status == 400:
            raise InvalidValueError("Value rejected by the platform", details=body)
        if status in _TRANSIENT_STATUSES:
            retry_after = response.headers.get("Retry-After")
            raise TransientError(
                f"Transient API failure: HTTP {status}",
                retry_after=parse_retry_after(retry_after),
                details=body,
            )
        raise AuditAPIError(
            f"API error: HTTP {status}",
            status_code=status,
            details=body,
        )

    def _scope_url(self, scope_id: str, scope_kind: ScopeKind) -> str:
        if scope_kind == "tenant":
            return f"{self.admin_url}/_api/SPO.Tenant"
        return f"{self.admin_url}/_api/SPO.Tenant/sites('{quote(scope_id, safe='')}')"

    def get_snapshot(self, scope_id: str, scope_kind: ScopeKind) -> SettingSnapshot:
        """Read every supported property of a tenant or site.

        Args:
            scope_id: Admin URL for the tenant, or the site URL.
            scope_kind: 'tenant' or 'site'.

        Returns:
            SettingSnapshot keyed by camelCase setting keys.

        Raises:
            UnreachableError: If the scope cannot be contacted or does not exist.
            PermissionDeniedError: If the token lacks admin rights.
        """
        if scope_kind == "tenant":
            response = self._request("GET", self._scope_url(scope_id, scope_kind))
        else:
            response = self._request(
                "POST",
                f"{self.admin_url}/_api/SPO.Tenant/GetSitePropertiesByUrl",
                json={"url": scope_id, "includeDetail": True},
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise AuditAPIError(f"Malformed response for {scope_id}", details={"error": str(exc)}) from exc

        values: dict[str, SettingValue] = {}
        for prop, raw in data.items():
            value = decode_value(prop, raw)
            if value is not None:
                values[to_setting_key(prop)] = value
        return SettingSnapshot(scope_id=scope_id, scope_kind=scope_kind, values=values)

    def apply_setting(self, scope_id: str, scope_kind: ScopeKind, key: str, value: SettingValue) -> None:
        """Write a single property. One attempt; failures raise typed errors."""
        prop = to_property_name(key)
        payload = {prop: encode_value(prop, value)}
        logger.info("Setting %s=%r on %s", prop, value, scope_id)
        self._request("PATCH", self._scope_url(scope_id, scope_kind), retry=False, json=payload)
