"""Smart retry engine — recover from failed or unusable generations.

One loop handles both kinds of failure:

  executor raised     → record failure on the circuit, pick a strategy from
                        the error message
  output unusable     → classify with detect_failure_mode, pick a strategy
                        from STRATEGY_TABLE

Before every call the circuit breaker is consulted; an open circuit raises
CircuitOpenError at once.  Between attempts the engine sleeps for the
breaker's backoff.  When ``max_attempts`` retries after the initial call are
spent, RetryExhaustedError carries the full RetrySession.

Strategy counters are kept for ``stats()`` only; they never change which
strategy is chosen.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from contextsmith.cache import BoundedCache
from contextsmith.errors import CircuitOpenError, RetryExhaustedError
from contextsmith.retry.circuit import CircuitBreaker
from contextsmith.retry.failures import FailureMode, find_failure
from contextsmith.retry.strategies import (
    PromptModification,
    RetryContext,
    Strategy,
    apply_strategy,
    strategy_for_error,
    strategy_for_mode,
)

logger = logging.getLogger(__name__)

DEFAULT_CIRCUIT_KEY = "generation"


class GenerationExecutor(Protocol):
    def __call__(
        self,
        prompt: str,
        system_prompt: str | None = None,
        context: str | None = None,
        temperature_offset: float = 0.0,
        token_limit_offset: int = 0,
    ) -> str: ...


Validator = Callable[[str, str], "FailureMode | None"]


@dataclass
class RetryAttempt:
    """One executor call.

    Attributes:
        number: 0 for the initial call, then 1..max_attempts.
        strategy: Strategy that produced this call's prompt (None initially).
        failure_mode: Classification of unusable output, if any.
        error: Message of the raised error, if any.
    """

    number: int
    prompt: str
    strategy: Strategy | None = None
    failure_mode: FailureMode | None = None
    error: str | None = None
    succeeded: bool = False
    duration_ms: float = 0.0


@dataclass
class RetrySession:
    id: str
    circuit_key: str
    original_prompt: str
    max_attempts: int
    attempts: list[RetryAttempt] = field(default_factory=list)
    succeeded: bool = False
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    @property
    def strategies_used(self) -> list[Strategy]:
        return [a.strategy for a in self.attempts if a.strategy is not None]


@dataclass
class RetryOutcome:
    output: str
    session: RetrySession

    @property
    def attempts(self) -> int:
        return len(self.session.attempts)


@dataclass
class StrategyStats:
    uses: int = 0
    successes: int = 0

    @property
    def success_rate(self) -> float:
        return self.successes / self.uses if self.uses else 0.0


class SmartRetryEngine:
    """Retry a generation executor with failure-specific prompt changes.

    Args:
        circuit: Circuit breaker / backoff collaborator.
        max_attempts: Retries after the initial call.
        sessions: Store for finished and running sessions.
        sleep: Called with seconds between attempts.
    """

    def __init__(
        self,
        circuit: CircuitBreaker | None = None,
        *,
        max_attempts: int = 3,
        sessions: BoundedCache[str, RetrySession] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 0:
            raise ValueError(f"max_attempts must be >= 0, got {max_attempts}")
        self.circuit = circuit or CircuitBreaker()
        self.max_attempts = max_attempts
        self._sessions: BoundedCache[str, RetrySession] = sessions or BoundedCache(
            200, "fifo", name="retry-sessions"
        )
        self._sleep = sleep
        self._stats: dict[Strategy, StrategyStats] = {s: StrategyStats() for s in Strategy}
        self._stats_lock = threading.Lock()
        self._totals = {"sessions": 0, "succeeded": 0, "exhausted": 0, "circuit_open": 0}

    @classmethod
    def from_config(cls, cfg, *, sleep: Callable[[float], None] = time.sleep) -> SmartRetryEngine:
        """Build from a ``RetryCfg`` section."""
        return cls(
            CircuitBreaker.from_config(cfg),
            max_attempts=cfg.max_attempts,
            sessions=BoundedCache(cfg.max_sessions, "fifo", name="retry-sessions"),
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Strategy selection
    # ------------------------------------------------------------------

    def propose(self, mode: FailureMode, attempt: int) -> Strategy:
        return strategy_for_mode(mode, attempt)

    def select_strategy_for_error(
        self,
        error: BaseException | str,
        attempt: int,
        used: list[Strategy] | tuple[Strategy, ...] = (),
    ) -> Strategy:
        return strategy_for_error(error, attempt, used)

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    def run(
        self,
        executor: GenerationExecutor,
        prompt: str,
        *,
        system_prompt: str | None = None,
        context: str | None = None,
        circuit_key: str = DEFAULT_CIRCUIT_KEY,
        max_attempts: int | None = None,
        validate: Validator | None = find_failure,
        on_retry: Callable[[int, Strategy, PromptModification], None] | None = None,
    ) -> RetryOutcome:
        """Call *executor* until it yields usable output.

        Args:
            executor: The generation callable.
            prompt: The original request.
            system_prompt: Passed through to the executor and strategies.
            context: Passed through to the executor and strategies.
            circuit_key: Circuit breaker key for this executor.
            max_attempts: Overrides the engine default for this call.
            validate: ``(output, prompt) -> FailureMode | None``; None
                accepts every non-raising call.
            on_retry: Called with (retry number, strategy, modification)
                before each retry.

        Raises:
            CircuitOpenError: The circuit for *circuit_key* is open.
            RetryExhaustedError: Every attempt failed.
        """
        limit = self.max_attempts if max_attempts is None else max_attempts
        session = RetrySession(
            id=uuid.uuid4().hex,
            circuit_key=circuit_key,
            original_prompt=prompt,
            max_attempts=limit,
        )
        self._sessions.set(session.id, session)
        self._count("sessions")

        current = PromptModification(prompt=prompt, system_prompt=system_prompt, context=context)
        last_error: BaseException | None = None

        for number in range(limit + 1):
            if not self.circuit.can_execute(circuit_key):
                self._finish(session, succeeded=False)
                self._count("circuit_open")
                logger.warning("Retry session %s stopped: circuit %s is open", session.id, circuit_key)
                raise CircuitOpenError(circuit_key)

            attempt = RetryAttempt(number=number, prompt=current.prompt, strategy=current.strategy)
            session.attempts.append(attempt)
            started = time.perf_counter()
            output = ""
            try:
                output = executor(
                    current.prompt,
                    current.system_prompt,
                    current.context,
                    current.temperature_offset,
                    current.token_limit_offset,
                )
            except Exception as exc:
                last_error = exc
                attempt.error = str(exc) or type(exc).__name__
                self.circuit.record_failure(circuit_key, exc)
            else:
                last_error = None
                self.circuit.record_success(circuit_key)
                attempt.failure_mode = validate(output, prompt) if validate is not None else None
            finally:
                attempt.duration_ms = (time.perf_counter() - started) * 1000

            self._record_use(attempt.strategy)
            if attempt.error is None and attempt.failure_mode is None:
                attempt.succeeded = True
                self._record_success(attempt.strategy)
                self._finish(session, succeeded=True)
                if number:
                    logger.info("Retry session %s recovered on attempt %d", session.id, number)
                return RetryOutcome(output=output, session=session)

            if number == limit:
                break

            retry = number + 1
            if last_error is not None:
                strategy = self.select_strategy_for_error(last_error, number, session.strategies_used)
            else:
                strategy = self.propose(attempt.failure_mode, number)
            current = apply_strategy(
                strategy,
                RetryContext(
                    original_prompt=prompt,
                    attempt=retry,
                    max_attempts=limit,
                    system_prompt=system_prompt,
                    context=context,
                    failure_mode=attempt.failure_mode,
                    error=attempt.error,
                    previous_output=output,
                ),
            )

            delay_ms = self.circuit.calculate_backoff(retry)
            logger.info(
                "Retry %d/%d using %s after %s (waiting %d ms)",
                retry,
                limit,
                strategy.value,
                attempt.error or attempt.failure_mode.value,
                delay_ms,
            )
            if on_retry is not None:
                on_retry(retry, strategy, current)
            self._sleep(delay_ms / 1000)

        self._finish(session, succeeded=False)
        self._count("exhausted")
        logger.warning(
            "Retry session %s exhausted after %d attempt(s)", session.id, len(session.attempts)
        )
        raise RetryExhaustedError(session, last_error)

    def _finish(self, session: RetrySession, *, succeeded: bool) -> None:
        session.succeeded = succeeded
        session.finished_at = time.time()
        if succeeded:
            self._count("succeeded")

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self._totals[key] += 1

    def _record_use(self, strategy: Strategy | None) -> None:
        if strategy is None:
            return
        with self._stats_lock:
            self._stats[strategy].uses += 1

    def _record_success(self, strategy: Strategy | None) -> None:
        if strategy is None:
            return
        with self._stats_lock:
            self._stats[strategy].successes += 1

    def get_session(self, session_id: str) -> RetrySession | None:
        return self._sessions.get(session_id)

    def stats(self) -> dict:
        with self._stats_lock:
            return {
                **self._totals,
                "strategies": {
                    s.value: {
                        "uses": st.uses,
                        "successes": st.successes,
                        "success_rate": round(st.success_rate, 3),
                    }
                    for s, st in self._stats.items()
                },
            }
