"""Custom exception hierarchy for the baseline auditor.

Maps SharePoint admin API errors and baseline problems to typed exceptions.
Per-scope errors are converted to ``error_kind`` values on results; only
baseline and precondition errors escape a run.
"""

from __future__ import annotations


class AuditError(Exception):
    """Base exception for all audit-related errors."""

    kind = "error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class UnreachableError(AuditError):
    """Raised when a tenant or site cannot be contacted or does not exist."""

    kind = "unreachable"


class PermissionDeniedError(AuditError):
    """Raised when the caller lacks rights on the scope (401/403)."""

    kind = "permission_denied"


class TransientError(AuditError):
    """Raised for throttling and timeouts that are worth retrying."""

    kind = "transient"

    def __init__(self, message: str, retry_after: float | None = None, details: dict | None = None) -> None:
        super().__init__(message, details)
        self.retry_after = retry_after


class InvalidValueError(AuditError):
    """Raised when the platform rejects a setting value (400)."""

    kind = "invalid_value"


class ConflictError(AuditError):
    """Raised when a setting changed since its value was captured at plan time."""

    kind = "conflict"

    def __init__(
        self,
        message: str,
        expected: object = None,
        actual: object = None,
        details: dict | None = None,
    ) -> None:
        super().__init__(message, details)
        self.expected = expected
        self.actual = actual


class AuditAPIError(AuditError):
    """Raised for unexpected API errors (5xx, malformed response, etc)."""

    def __init__(self, message: str, status_code: int | None = None, details: dict | None = None) -> None:
        super().__init__(message, details)
        self.status_code = status_code


class BaselineValidationError(AuditError):
    """Raised when a baseline document is malformed. Carries every problem found."""

    def __init__(self, message: str, errors: list[str] | None = None, details: dict | None = None) -> None:
        super().__init__(message, details)
        self.errors = errors or []


class BaselineNotFoundError(AuditError):
    """Raised when a baseline name is not registered."""


class AuditPreconditionError(AuditError):
    """Raised when a run cannot start (no scopes, bad concurrency limit)."""


class DeadlineExceededError(AuditError):
    """Raised when the run deadline passes before a scope's work could start or continue."""

    kind = "deadline_exceeded"
