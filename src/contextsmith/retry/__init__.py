"""Failure classification, retry strategies, circuit breaking and the retry loop."""

from contextsmith.retry.circuit import CircuitBreaker
from contextsmith.retry.engine import (
    RetryAttempt,
    RetryOutcome,
    RetrySession,
    SmartRetryEngine,
)
from contextsmith.retry.failures import FailureMode, detect_failure_mode, find_failure
from contextsmith.retry.strategies import (
    STRATEGY_TABLE,
    PromptModification,
    RetryContext,
    Strategy,
    apply_strategy,
)

__all__ = [
    "STRATEGY_TABLE",
    "CircuitBreaker",
    "FailureMode",
    "PromptModification",
    "RetryAttempt",
    "RetryContext",
    "RetryOutcome",
    "RetrySession",
    "SmartRetryEngine",
    "Strategy",
    "apply_strategy",
    "detect_failure_mode",
    "find_failure",
]
