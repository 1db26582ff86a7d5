"""Transactional application of remediation actions.

Each transaction targets one scope and runs its actions strictly in order
while holding that scope's lock. Before every write the current value is
re-read and compared with the value captured at plan time; a difference is a
conflict. Transient write failures are retried with exponential backoff and
jitter. The first unrecoverable failure rolls every applied action back to
its captured value, in reverse order.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from spo_baseline_auditor.client import SettingSource
from spo_baseline_auditor.concurrency import Deadline, ScopeLocks
from spo_baseline_auditor.exceptions import (
    AuditError,
    AuditPreconditionError,
    ConflictError,
    DeadlineExceededError,
    TransientError,
)
from spo_baseline_auditor.models import (
    ExecutionResult,
    RemediationAction,
    RemediationTransaction,
    SettingValue,
    TransactionState,
)

if TYPE_CHECKING:
    from spo_baseline_auditor.storage import AuditStorage

logger = logging.getLogger(__name__)

T = TypeVar("T")
ConfirmAction = Callable[[RemediationAction], bool]


class RetryPolicy(BaseModel):
    """Bounded exponential backoff with jitter for transient failures."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(4, ge=1)
    base_delay: float = Field(1.0, ge=0)
    max_delay: float = Field(30.0, ge=0)

    def delay_for(self, attempt: int, retry_after: float | None = None) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        if retry_after is not None:
            return min(self.max_delay, retry_after)
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        return delay + random.uniform(0, delay / 2)


def same_value(left: SettingValue | None, right: SettingValue | None) -> bool:
    """Equality that does not treat True as 1."""
    return type(left) is type(right) and left == right


class RemediationExecutor:
    """Applies remediation transactions with retry, conflict detection and rollback."""

    def __init__(
        self,
        source: SettingSource,
        locks: ScopeLocks | None = None,
        retry_policy: RetryPolicy | None = None,
        confirm: ConfirmAction | None = None,
        sleep: Callable[[float], None] = time.sleep,
        storage: AuditStorage | None = None,
    ) -> None:
        self.source = source
        self.locks = locks or ScopeLocks()
        self.retry_policy = retry_policy or RetryPolicy()
        self.confirm = confirm
        self.sleep = sleep
        self.storage = storage

    def _with_retry(self, operation: Callable[[], T], description: str, deadline: Deadline | None) -> T:
        """Run ``operation``, retrying TransientError up to the policy's attempt bound.

        No new attempt starts once the deadline has passed.
        """
        attempts = self.retry_policy.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                return operation()
            except TransientError as exc:
                if attempt >= attempts:
                    raise
                if deadline is not None and deadline.expired:
                    raise DeadlineExceededError(f"Deadline passed while retrying {description}") from exc
                wait = self.retry_policy.delay_for(attempt, exc.retry_after)
                logger.warning(
                    "%s failed transiently (%s), retrying in %.2fs (attempt %d/%d)",
                    description, exc, wait, attempt, attempts,
                )
                self.sleep(wait)
        raise AssertionError("unreachable")  # pragma: no cover

    def _verify_unchanged(self, transaction: RemediationTransaction, action: RemediationAction, deadline: Deadline) -> None:
        snapshot = self._with_retry(
            lambda: self.source.get_snapshot(transaction.scope_id, transaction.scope_kind),
            f"reading {transaction.scope_id}",
            deadline,
        )
        current = snapshot.values.get(action.setting_key)
        if not same_value(current, action.previous_value):
            raise ConflictError(
                f"{action.setting_key} on {transaction.scope_id} changed since planning: "
                f"expected {action.previous_value!r}, found {current!r}",
                expected=action.previous_value,
                actual=current,
            )

    def _apply(self, transaction: RemediationTransaction, key: str, value: SettingValue, deadline: Deadline | None) -> None:
        self._with_retry(
            lambda: self.source.apply_setting(transaction.scope_id, transaction.scope_kind, key, value),
            f"setting {key} on {transaction.scope_id}",
            deadline,
        )

    def _confirmed(self, action: RemediationAction) -> bool:
        if self.confirm is None:
            return False
        return bool(self.confirm(action))

    def _rollback(self, transaction: RemediationTransaction, applied: list[RemediationAction]) -> tuple[int, list[str]]:
        """Revert applied actions in reverse order. Each revert is bounded by the retry policy."""
        reverted = 0
        failures: list[str] = []
        for action in reversed(applied):
            try:
                self._apply(transaction, action.setting_key, action.previous_value, None)
            except Exception as exc:
                error = exc if isinstance(exc, AuditError) else AuditError(f"{type(exc).__name__}: {exc}")
                action.status = "revert_failed"
                action.error = f"revert failed: {error}"
                failures.append(action.setting_key)
                logger.error(
                    "Rollback of %s on %s failed: %s", action.setting_key, transaction.scope_id, error,
                )
                continue
            action.applied = False
            action.status = "reverted"
            reverted += 1
        return reverted, failures

    @staticmethod
    def _close(transaction: RemediationTransaction, state: TransactionState) -> None:
        if transaction.state != "pending":
            raise AuditPreconditionError(f"Transaction {transaction.id} is already {transaction.state}")
        transaction.state = state

    def execute(self, transaction: RemediationTransaction, deadline: Deadline | None = None) -> ExecutionResult:
        """Apply a transaction's actions in order, rolling back on the first unrecoverable failure.

        Args:
            transaction: A pending transaction whose actions all target its scope.
            deadline: Optional run deadline, checked before each action.

        Returns:
            ExecutionResult describing the final transaction state.

        Raises:
            AuditPreconditionError: If the transaction is not pending or mixes scopes.
        """
        if transaction.state != "pending":
            raise AuditPreconditionError(f"Transaction {transaction.id} is already {transaction.state}")
        for action in transaction.actions:
            if (action.scope_id, action.scope_kind) != (transaction.scope_id, transaction.scope_kind):
                raise AuditPreconditionError(
                    f"Action {action.id} targets {action.scope_id}, not {transaction.scope_id}"
                )

        deadline = deadline or Deadline()
        started = datetime.now(UTC)
        try:
            with self.locks.hold(transaction.scope_id, deadline):
                result = self._run(transaction, deadline, started)
        except DeadlineExceededError as exc:
            logger.warning("Transaction %s on %s not started: %s", transaction.id, transaction.scope_id, exc)
            for action in transaction.actions:
                action.status = "not_attempted"
            self._close(transaction, "rolled_back")
            result = ExecutionResult(
                transaction_id=transaction.id,
                scope_id=transaction.scope_id,
                scope_kind=transaction.scope_kind,
                state=transaction.state,
                outcome="rolled_back",
                actions=transaction.actions,
                error_kind=exc.kind,
                error=str(exc),
                started_at=started,
                completed_at=datetime.now(UTC),
            )

        if self.storage is not None:
            try:
                self.storage.save_execution(result)
            except OSError as exc:
                logger.warning("Could not record transaction %s: %s", transaction.id, exc)
        return result

    def _run(self, transaction: RemediationTransaction, deadline: Deadline, started: datetime) -> ExecutionResult:
        applied: list[RemediationAction] = []
        failure: AuditError | None = None
        failed_index = len(transaction.actions)

        for index, action in enumerate(transaction.actions):
            try:
                deadline.check(f"applying {action.setting_key} on {transaction.scope_id}")
                if action.requires_confirmation and not self._confirmed(action):
                    action.status = "declined"
                    logger.info("Declined %s on %s", action.setting_key, transaction.scope_id)
                    continue
                self._verify_unchanged(transaction, action, deadline)
                self._apply(transaction, action.setting_key, action.target_value, deadline)
            except Exception as exc:
                failure = exc if isinstance(exc, AuditError) else AuditError(f"{type(exc).__name__}: {exc}")
                action.status = "not_attempted" if isinstance(exc, DeadlineExceededError) else "failed"
                action.error = str(failure)
                failed_index = index
                logger.warning(
                    "Action %s on %s failed (%s): %s",
                    action.setting_key, transaction.scope_id, failure.kind, failure,
                )
                break
            action.applied = True
            action.status = "applied"
            applied.append(action)

        if failure is None:
            self._close(transaction, "committed")
            logger.info("Committed transaction %s on %s (%d applied)", transaction.id, transaction.scope_id, len(applied))
            return ExecutionResult(
                transaction_id=transaction.id,
                scope_id=transaction.scope_id,
                scope_kind=transaction.scope_kind,
                state=transaction.state,
                outcome="committed" if applied else "skipped",
                actions=transaction.actions,
                applied_count=len(applied),
                started_at=started,
                completed_at=datetime.now(UTC),
            )

        for action in transaction.actions[failed_index + 1:]:
            action.status = "not_attempted"
        reverted, failures = self._rollback(transaction, applied)
        error = str(failure)
        if failures:
            self._close(transaction, "rollback_incomplete")
            error = f"{failure}; rollback incomplete for {', '.join(failures)}"
            logger.error(
                "Rollback incomplete for transaction %s on %s: %s",
                transaction.id, transaction.scope_id, ", ".join(failures),
            )
        else:
            self._close(transaction, "rolled_back")
            logger.warning("Rolled back transaction %s on %s (%d reverted)", transaction.id, transaction.scope_id, reverted)

        return ExecutionResult(
            transaction_id=transaction.id,
            scope_id=transaction.scope_id,
            scope_kind=transaction.scope_kind,
            state=transaction.state,
            outcome=transaction.state,  # type: ignore[arg-type]
            actions=transaction.actions,
            applied_count=len(applied),
            reverted_count=reverted,
            error_kind=failure.kind,  # type: ignore[arg-type]
            error=error,
            needs_reaudit=isinstance(failure, ConflictError) or bool(failures),
            started_at=started,
            completed_at=datetime.now(UTC),
        )

    def execute_all(
        self,
        transactions: list[RemediationTransaction],
        concurrency_limit: int,
        deadline: Deadline | None = None,
    ) -> list[ExecutionResult]:
        """Execute tenant transactions first, then site transactions on a bounded pool.

        Returns:
            Results in the same order as ``transactions``.
        """
        if concurrency_limit < 1:
            raise AuditPreconditionError(f"concurrency_limit must be at least 1, got {concurrency_limit}")
        deadline = deadline or Deadline()
        results: dict[str, ExecutionResult] = {}

        tenant_failed = False
        for transaction in transactions:
            if transaction.scope_kind == "tenant":
                result = self._execute_guarded(transaction, deadline)
                results[transaction.id] = result
                tenant_failed = tenant_failed or result.state != "committed"

        sites = [t for t in transactions if t.scope_kind == "site"]
        if sites and tenant_failed:
            for transaction in sites:
                results[transaction.id] = self._skip(transaction, "tenant remediation did not commit")
        elif sites:
            with ThreadPoolExecutor(max_workers=min(concurrency_limit, len(sites))) as pool:
                futures = {pool.submit(self.execute, t, deadline): t for t in sites}
                for future in as_completed(futures):
                    transaction = futures[future]
                    try:
                        results[transaction.id] = future.result()
                    except Exception as exc:
                        results[transaction.id] = self._crashed(transaction, exc)

        return [results[t.id] for t in transactions]

    def _execute_guarded(self, transaction: RemediationTransaction, deadline: Deadline) -> ExecutionResult:
        try:
            return self.execute(transaction, deadline)
        except Exception as exc:
            return self._crashed(transaction, exc)

    def _crashed(self, transaction: RemediationTransaction, exc: Exception) -> ExecutionResult:
        """Result for a transaction whose execution raised; its scope state is unknown."""
        logger.error("Transaction %s on %s raised: %s", transaction.id, transaction.scope_id, exc, exc_info=exc)
        if transaction.state == "pending":
            transaction.state = "rollback_incomplete"
        error = exc if isinstance(exc, AuditError) else AuditError(f"{type(exc).__name__}: {exc}")
        return ExecutionResult(
            transaction_id=transaction.id,
            scope_id=transaction.scope_id,
            scope_kind=transaction.scope_kind,
            state=transaction.state,
            outcome=transaction.state,  # type: ignore[arg-type]
            actions=transaction.actions,
            error_kind=error.kind,  # type: ignore[arg-type]
            error=str(error),
            needs_reaudit=True,
        )

    def _skip(self, transaction: RemediationTransaction, reason: str) -> ExecutionResult:
        """Close a site transaction without touching its scope."""
        logger.warning("Skipping transaction %s on %s: %s", transaction.id, transaction.scope_id, reason)
        for action in transaction.actions:
            action.status = "not_attempted"
        self._close(transaction, "rolled_back")
        result = ExecutionResult(
            transaction_id=transaction.id,
            scope_id=transaction.scope_id,
            scope_kind=transaction.scope_kind,
            state=transaction.state,
            outcome="skipped",
            actions=transaction.actions,
            error_kind="error",
            error=reason,
        )
        if self.storage is not None:
            try:
                self.storage.save_execution(result)
            except OSError as exc:
                logger.warning("Could not record transaction %s: %s", transaction.id, exc)
        return result
