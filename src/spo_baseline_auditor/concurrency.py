"""Per-scope mutual exclusion and run deadlines shared by audit and remediation."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from spo_baseline_auditor.exceptions import DeadlineExceededError

logger = logging.getLogger(__name__)


class Deadline:
    """A point in monotonic time after which no new work may start."""

    def __init__(self, seconds: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def remaining(self) -> float | None:
        """Seconds left, or None when there is no deadline."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def check(self, what: str) -> None:
        if self.expired:
            raise DeadlineExceededError(f"Deadline passed before {what}")


class ScopeLocks:
    """One lock per scope id.

    A scope is held for the duration of its snapshot read during an audit and
    for the whole life of a remediation transaction, so two transactions never
    mutate the same scope and a scope is never read while it is being changed.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, scope_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(scope_id)
            if lock is None:
                lock = self._locks[scope_id] = threading.Lock()
            return lock

    def is_held(self, scope_id: str) -> bool:
        return self._lock_for(scope_id).locked()

    @contextmanager
    def hold(self, scope_id: str, deadline: Deadline | None = None) -> Iterator[None]:
        """Hold the scope's lock, waiting no longer than the deadline allows.

        Raises:
            DeadlineExceededError: If the lock could not be taken before the deadline.
        """
        lock = self._lock_for(scope_id)
        remaining = deadline.remaining() if deadline is not None else None
        acquired = lock.acquire() if remaining is None else lock.acquire(timeout=remaining)
        if not acquired:
            raise DeadlineExceededError(f"Timed out waiting for scope {scope_id}")
        logger.debug("Acquired scope %s", scope_id)
        try:
            yield
        finally:
            lock.release()
            logger.debug("Released scope %s", scope_id)
