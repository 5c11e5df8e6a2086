"""Per-key circuit breaker with exponential backoff.

States per key::

    closed ──(failure_threshold consecutive failures)──▶ open
    open ──(recovery_timeout elapsed, checked on can_execute)──▶ half-open
    half-open ──(success_threshold successes)──▶ closed
    half-open ──(any failure)──▶ open

Backoff for retry *n* (1-based) is ``base_delay_ms × 2^(n-1)``, capped at
``max_delay_ms``, then scaled by a uniform ±``jitter`` factor.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from contextsmith.cache import BoundedCache

logger = logging.getLogger(__name__)

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half-open"


@dataclass
class CircuitState:
    state: str = CLOSED
    failures: int = 0
    successes: int = 0
    last_failure_at: float = 0.0
    last_error: str = ""


class CircuitBreaker:
    """Circuit breaker and backoff calculator shared by every retry session.

    Args:
        failure_threshold: Consecutive failures that open a closed circuit.
        recovery_timeout: Seconds an open circuit waits before half-opening.
        success_threshold: Half-open successes needed to close again.
        base_delay_ms: Backoff for the first retry.
        max_delay_ms: Backoff ceiling before jitter.
        jitter: Fractional jitter, 0.3 meaning ±30 %.
        max_keys: Circuits tracked before the least recently used is dropped.
        clock: Monotonic time source in seconds.
        rng: Uniform [0, 1) source for jitter.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        recovery_timeout: float = 30.0,
        success_threshold: int = 2,
        *,
        base_delay_ms: int = 1_000,
        max_delay_ms: int = 30_000,
        jitter: float = 0.3,
        max_keys: int = 256,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ) -> None:
        if failure_threshold < 1 or success_threshold < 1:
            raise ValueError("thresholds must be >= 1")
        if not 0.0 <= jitter < 1.0:
            raise ValueError(f"jitter must be in [0, 1), got {jitter}")
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.jitter = jitter
        self._clock = clock
        self._rng = rng
        self._circuits: BoundedCache[str, CircuitState] = BoundedCache(
            max_keys, "lru", name="circuits"
        )
        self._mutex = threading.Lock()

    @classmethod
    def from_config(cls, cfg) -> CircuitBreaker:
        """Build from a ``RetryCfg`` section."""
        return cls(
            cfg.failure_threshold,
            cfg.recovery_timeout,
            cfg.success_threshold,
            base_delay_ms=cfg.base_delay_ms,
            max_delay_ms=cfg.max_delay_ms,
            jitter=cfg.jitter,
        )

    def _circuit(self, key: str) -> CircuitState:
        circuit = self._circuits.get(key)
        if circuit is None:
            circuit = CircuitState()
            self._circuits.set(key, circuit)
        return circuit

    def _transition(self, key: str, circuit: CircuitState, to: str) -> None:
        if circuit.state == to:
            return
        logger.info("Circuit %s: %s → %s", key, circuit.state, to)
        circuit.state = to
        if to == CLOSED:
            circuit.failures = 0
            circuit.successes = 0
        elif to == HALF_OPEN:
            circuit.successes = 0

    # ------------------------------------------------------------------
    # Collaborator interface
    # ------------------------------------------------------------------

    def can_execute(self, key: str) -> bool:
        with self._mutex:
            circuit = self._circuit(key)
            if circuit.state == OPEN:
                if self._clock() - circuit.last_failure_at < self.recovery_timeout:
                    return False
                self._transition(key, circuit, HALF_OPEN)
            return True

    def record_success(self, key: str) -> None:
        with self._mutex:
            circuit = self._circuit(key)
            circuit.failures = 0
            if circuit.state == HALF_OPEN:
                circuit.successes += 1
                if circuit.successes >= self.success_threshold:
                    self._transition(key, circuit, CLOSED)

    def record_failure(self, key: str, error: BaseException | str | None = None) -> None:
        with self._mutex:
            circuit = self._circuit(key)
            circuit.failures += 1
            circuit.successes = 0
            circuit.last_failure_at = self._clock()
            circuit.last_error = str(error) if error is not None else ""
            if circuit.state == HALF_OPEN or circuit.failures >= self.failure_threshold:
                self._transition(key, circuit, OPEN)

    def calculate_backoff(self, attempt: int) -> int:
        """Milliseconds to wait before retry *attempt* (1-based)."""
        exponent = max(0, attempt - 1)
        delay = min(self.base_delay_ms * (2**exponent), self.max_delay_ms)
        factor = 1.0 + self.jitter * (2.0 * self._rng() - 1.0)
        return max(0, round(delay * factor))

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def state(self, key: str) -> str:
        with self._mutex:
            circuit = self._circuits.get(key)
            return circuit.state if circuit is not None else CLOSED

    def stats(self, key: str) -> dict:
        with self._mutex:
            circuit = self._circuits.get(key) or CircuitState()
            return {
                "state": circuit.state,
                "failures": circuit.failures,
                "successes": circuit.successes,
                "last_failure_at": circuit.last_failure_at,
                "last_error": circuit.last_error,
            }

    def reset(self, key: str | None = None) -> None:
        with self._mutex:
            if key is None:
                self._circuits.clear()
            else:
                self._circuits.pop(key)
