"""
Circuit breaker — stop hammering an unreachable registry store.

States:
    CLOSED    → Store calls go through. Consecutive failures counted.
    OPEN      → Store calls skipped; the registry serves degraded results.
    HALF_OPEN → One trial call allowed to test whether the store is back.

Transitions:
    CLOSED → OPEN:      failure_count >= failure_threshold
    OPEN → HALF_OPEN:   recovery_timeout elapsed
    HALF_OPEN → CLOSED: trial succeeds
    HALF_OPEN → OPEN:   trial fails

The registry is shared by request threads and deployment workers, so
every state change happens under ``_lock``.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class CircuitState(StrEnum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Thread-safe breaker for one backing store.

    Args:
        name: Identifier used in logs and health output.
        failure_threshold: Consecutive failures before opening.
        recovery_timeout: Seconds before a trial call is allowed.
    """

    name: str
    failure_threshold: int = 3
    recovery_timeout: float = 30.0

    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: float = 0.0
    last_error: str = ""
    total_rejections: int = 0
    _trial_in_flight: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def allow_request(self) -> bool:
        """Check whether a store call may proceed.

        Returns:
            True if the call should go to the store, False to skip it.
        """
        with self._lock:
            if self.state == CircuitState.CLOSED:
                return True

            if self.state == CircuitState.OPEN:
                elapsed = time.monotonic() - self.last_failure_time
                if elapsed >= self.recovery_timeout:
                    self._transition(CircuitState.HALF_OPEN)
                    self._trial_in_flight = True
                    return True
                self.total_rejections += 1
                return False

            # HALF_OPEN: only the single trial call is let through
            if self._trial_in_flight:
                self.total_rejections += 1
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        """Record a successful store call."""
        with self._lock:
            self._trial_in_flight = False
            if self.state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.CLOSED)
            self.failure_count = 0

    def record_failure(self, error: str = "") -> None:
        """Record a failed store call."""
        with self._lock:
            self._trial_in_flight = False
            self.last_failure_time = time.monotonic()
            self.last_error = error

            if self.state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif self.state == CircuitState.CLOSED:
                self.failure_count += 1
                if self.failure_count >= self.failure_threshold:
                    self._transition(CircuitState.OPEN)

    def reset(self) -> None:
        """Force the breaker back to closed."""
        with self._lock:
            self._transition(CircuitState.CLOSED)
            self.failure_count = 0
            self.total_rejections = 0
            self._trial_in_flight = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize the breaker state."""
        with self._lock:
            return {
                "name": self.name,
                "state": self.state.value,
                "failure_count": self.failure_count,
                "total_rejections": self.total_rejections,
                "failure_threshold": self.failure_threshold,
                "recovery_timeout": self.recovery_timeout,
                "last_error": self.last_error,
            }

    def _transition(self, new_state: CircuitState) -> None:
        """Transition to a new state (caller holds the lock)."""
        old = self.state
        if old == new_state:
            return
        self.state = new_state
        if new_state == CircuitState.CLOSED:
            self.failure_count = 0
        logger.info(
            "Circuit breaker '%s': %s → %s",
            self.name,
            old.value,
            new_state.value,
        )
