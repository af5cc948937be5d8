"""
Circuit Breaker
===============

Stops calling a failing model endpoint for a cooldown period.

- CLOSED: requests pass, consecutive failures are counted
- OPEN: requests are rejected until the timeout elapses
- HALF_OPEN: one probe at a time; ``success_threshold`` consecutive probe
  successes close the circuit, any probe failure reopens it
"""

import logging
import time
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, Optional

from codeforge.config.settings import CircuitBreakerConfig
from codeforge.errors import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation, requests pass through
    OPEN = "open"            # Failing, requests are rejected
    HALF_OPEN = "half-open"  # Testing if service recovered


class CircuitBreaker:
    """Circuit breaker owned by a single gateway.

    Usage:
        breaker = CircuitBreaker("lm-studio")
        breaker.check()            # raises CircuitOpenError when open
        try:
            text = await call_model()
            breaker.record_success()
        except GatewayTransportError:
            breaker.record_failure()
            raise
    """

    def __init__(
        self,
        name: str = "llm",
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_failure_time: Optional[float] = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        """Current circuit state (no lazy transition)."""
        return self._state

    def get_state(self) -> str:
        return self._state.value

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def retry_after(self) -> float:
        """Seconds until an open circuit admits a probe (0 when not open)."""
        with self._lock:
            return self._retry_after_locked()

    def _retry_after_locked(self) -> float:
        if self._state != CircuitState.OPEN or self._last_failure_time is None:
            return 0.0
        elapsed = self._clock() - self._last_failure_time
        return max(0.0, self.config.timeout - elapsed)

    def is_available(self) -> bool:
        """Whether a request would be admitted, without claiming the probe slot."""
        with self._lock:
            self._maybe_half_open_locked()
            if self._state == CircuitState.OPEN:
                return False
            if self._state == CircuitState.HALF_OPEN:
                return not self._probe_in_flight
            return True

    def allow_request(self) -> bool:
        """Admit a request, moving OPEN to HALF_OPEN once the timeout elapsed.

        In HALF_OPEN only one probe may be in flight; the slot is released by
        ``record_success``, ``record_failure`` or ``release``.
        """
        with self._lock:
            self._maybe_half_open_locked()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN:
                return False
            if self._probe_in_flight:
                return False
            self._probe_in_flight = True
            return True

    def check(self) -> None:
        """Like ``allow_request`` but raises ``CircuitOpenError`` on rejection."""
        if not self.allow_request():
            raise CircuitOpenError(self.retry_after(), self.name)

    def _maybe_half_open_locked(self) -> None:
        if self._state != CircuitState.OPEN or self._last_failure_time is None:
            return
        elapsed = self._clock() - self._last_failure_time
        if elapsed >= self.config.timeout:
            logger.info(f"Circuit {self.name}: transitioning to HALF_OPEN after {elapsed:.1f}s")
            self._state = CircuitState.HALF_OPEN
            self._successes = 0
            self._probe_in_flight = False

    def record_success(self) -> None:
        """Record a successful request."""
        with self._lock:
            self._failures = 0
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False
                self._successes += 1
                if self._successes >= self.config.success_threshold:
                    logger.info(f"Circuit {self.name}: closing after {self._successes} successes")
                    self._state = CircuitState.CLOSED
                    self._successes = 0

    def record_failure(self, error: Optional[BaseException] = None) -> None:
        """Record a failed request."""
        with self._lock:
            self._last_failure_time = self._clock()
            self._failures += 1

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(f"Circuit {self.name}: reopening after failure in HALF_OPEN ({error})")
                self._state = CircuitState.OPEN
                self._successes = 0
                self._probe_in_flight = False
            elif self._state == CircuitState.CLOSED and self._failures >= self.config.failure_threshold:
                logger.warning(f"Circuit {self.name}: opening after {self._failures} failures ({error})")
                self._state = CircuitState.OPEN

    def release(self) -> None:
        """Free the half-open probe slot for a call that neither succeeded nor failed."""
        with self._lock:
            self._probe_in_flight = False

    def reset(self) -> None:
        """Force the circuit closed with counters zeroed (operator override)."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._successes = 0
            self._last_failure_time = None
            self._probe_in_flight = False
            logger.info(f"Circuit {self.name}: manually reset")

    def get_status(self) -> Dict[str, Any]:
        """Get current circuit breaker status."""
        with self._lock:
            return {
                'name': self.name,
                'state': self._state.value,
                'failures': self._failures,
                'successes': self._successes,
                'last_failure_time': self._last_failure_time,
                'retry_after': round(self._retry_after_locked(), 3),
                'config': {
                    'failure_threshold': self.config.failure_threshold,
                    'success_threshold': self.config.success_threshold,
                    'timeout': self.config.timeout,
                },
            }


__all__ = [
    'CircuitBreaker',
    'CircuitState',
]
