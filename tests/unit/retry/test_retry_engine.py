"""Tests for SmartRetryEngine."""

from __future__ import annotations

import pytest

from contextsmith.config import RetryCfg
from contextsmith.errors import CircuitOpenError, RetryExhaustedError
from contextsmith.retry.circuit import CircuitBreaker
from contextsmith.retry.engine import SmartRetryEngine
from contextsmith.retry.failures import FailureMode
from contextsmith.retry.strategies import Strategy

_PROMPT = "Build a small app."
_GOOD = "```tsx\nexport const App = () => <div>Hi</div>;\n```"


class _Executor:
    """Scripted executor: each item is returned, or raised if it is an exception."""

    def __init__(self, *script):
        self.script = list(script)
        self.calls = []

    def __call__(self, prompt, system_prompt=None, context=None, temperature_offset=0.0, token_limit_offset=0):
        self.calls.append(
            {
                "prompt": prompt,
                "system_prompt": system_prompt,
                "context": context,
                "temperature_offset": temperature_offset,
                "token_limit_offset": token_limit_offset,
            }
        )
        item = self.script[min(len(self.calls), len(self.script)) - 1]
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def engine(sleeps):
    return SmartRetryEngine(max_attempts=3, sleep=sleeps.append)


# ---------------------------------------------------------------------------
# Success paths
# ---------------------------------------------------------------------------


def test_first_call_succeeds(engine, sleeps):
    executor = _Executor(_GOOD)
    outcome = engine.run(executor, _PROMPT)

    assert outcome.output == _GOOD
    assert outcome.attempts == 1
    assert outcome.session.succeeded is True
    assert outcome.session.strategies_used == []
    assert sleeps == []


def test_recovers_on_retry(engine, sleeps):
    executor = _Executor("", _GOOD)
    outcome = engine.run(executor, _PROMPT, system_prompt="You write React.")

    assert outcome.output == _GOOD
    assert outcome.attempts == 2
    first, second = outcome.session.attempts
    assert first.failure_mode is FailureMode.EMPTY_OUTPUT
    assert second.strategy is Strategy.REPHRASE
    assert second.succeeded is True
    assert executor.calls[1]["prompt"].endswith(f"Original request: {_PROMPT}")
    assert executor.calls[1]["system_prompt"] == "You write React."
    assert executor.calls[1]["temperature_offset"] == pytest.approx(0.1)
    assert len(sleeps) == 1


def test_validate_none_accepts_any_output(engine):
    outcome = engine.run(_Executor(""), _PROMPT, validate=None)
    assert outcome.output == ""
    assert outcome.attempts == 1


def test_on_retry_callback(engine):
    seen = []
    engine.run(_Executor("", _GOOD), _PROMPT, on_retry=lambda n, s, mod: seen.append((n, s)))
    assert seen == [(1, Strategy.REPHRASE)]


# ---------------------------------------------------------------------------
# Exhaustion
# ---------------------------------------------------------------------------


def test_repeated_empty_output_uses_distinct_strategies(sleeps):
    engine = SmartRetryEngine(max_attempts=3, sleep=sleeps.append)
    executor = _Executor("")

    with pytest.raises(RetryExhaustedError) as exc_info:
        engine.run(executor, _PROMPT)

    session = exc_info.value.session
    assert len(session.attempts) == 4
    assert session.strategies_used == [
        Strategy.REPHRASE,
        Strategy.SIMPLIFY,
        Strategy.CONSTRAIN_OUTPUT,
    ]
    assert len(set(session.strategies_used)) == 3
    assert session.succeeded is False
    assert session.finished_at is not None
    assert exc_info.value.last_error is None
    assert "after 4 attempt(s)" in str(exc_info.value)
    assert len(sleeps) == 3


def test_strategies_reapply_to_original_prompt():
    engine = SmartRetryEngine(max_attempts=2, sleep=lambda s: None)
    executor = _Executor("")
    with pytest.raises(RetryExhaustedError):
        engine.run(executor, _PROMPT)

    assert executor.calls[1]["prompt"].count("The previous attempt failed") == 1
    assert executor.calls[2]["prompt"] == f"TASK (simplified retry): {_PROMPT}"


def test_raised_errors_exhaust_with_last_error():
    circuit = CircuitBreaker(failure_threshold=10)
    engine = SmartRetryEngine(circuit, max_attempts=2, sleep=lambda s: None)
    error = ValueError("could not parse json")

    with pytest.raises(RetryExhaustedError, match="could not parse json") as exc_info:
        engine.run(_Executor(error), _PROMPT)

    session = exc_info.value.session
    assert exc_info.value.last_error is error
    assert session.strategies_used == [Strategy.ADD_EXAMPLES, Strategy.SIMPLIFY]
    assert all(a.error == "could not parse json" for a in session.attempts)


def test_zero_retries_makes_one_call():
    engine = SmartRetryEngine(max_attempts=0, sleep=lambda s: None)
    executor = _Executor("")
    with pytest.raises(RetryExhaustedError):
        engine.run(executor, _PROMPT)
    assert len(executor.calls) == 1


def test_per_call_max_attempts_override(engine):
    executor = _Executor("")
    with pytest.raises(RetryExhaustedError):
        engine.run(executor, _PROMPT, max_attempts=1)
    assert len(executor.calls) == 2


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------


def test_open_circuit_stops_retrying():
    engine = SmartRetryEngine(max_attempts=5, sleep=lambda s: None)
    executor = _Executor(RuntimeError("connection reset"))

    with pytest.raises(CircuitOpenError) as exc_info:
        engine.run(executor, _PROMPT, circuit_key="llm")

    assert exc_info.value.key == "llm"
    # failure_threshold=3 opens the circuit before the fourth call
    assert len(executor.calls) == 3
    assert executor.calls[1]["prompt"].startswith("The previous attempt failed: connection reset")
    assert engine.stats()["circuit_open"] == 1


def test_already_open_circuit_makes_no_call():
    circuit = CircuitBreaker(failure_threshold=1)
    circuit.record_failure("generation")
    engine = SmartRetryEngine(circuit, sleep=lambda s: None)
    executor = _Executor(_GOOD)

    with pytest.raises(CircuitOpenError):
        engine.run(executor, _PROMPT)
    assert executor.calls == []


def test_unusable_output_does_not_trip_circuit():
    circuit = CircuitBreaker(failure_threshold=1)
    engine = SmartRetryEngine(circuit, max_attempts=3, sleep=lambda s: None)

    with pytest.raises(RetryExhaustedError):
        engine.run(_Executor(""), _PROMPT)
    assert circuit.state("generation") == "closed"


# ---------------------------------------------------------------------------
# Bookkeeping
# ---------------------------------------------------------------------------


def test_stats_and_sessions(engine):
    outcome = engine.run(_Executor("", _GOOD), _PROMPT)
    with pytest.raises(RetryExhaustedError):
        engine.run(_Executor(""), _PROMPT)

    stats = engine.stats()
    assert stats["sessions"] == 2
    assert stats["succeeded"] == 1
    assert stats["exhausted"] == 1
    assert stats["strategies"]["rephrase"] == {"uses": 2, "successes": 1, "success_rate": 0.5}
    assert engine.get_session(outcome.session.id) is outcome.session


def test_counters_never_change_selection(engine):
    def used():
        with pytest.raises(RetryExhaustedError) as exc_info:
            engine.run(_Executor(""), _PROMPT)
        return exc_info.value.session.strategies_used

    assert used() == used()


def test_rejects_negative_max_attempts():
    with pytest.raises(ValueError):
        SmartRetryEngine(max_attempts=-1)


def test_from_config():
    engine = SmartRetryEngine.from_config(RetryCfg(max_attempts=1, failure_threshold=7))
    assert engine.max_attempts == 1
    assert engine.circuit.failure_threshold == 7
