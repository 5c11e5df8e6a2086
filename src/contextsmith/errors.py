"""Exception types surfaced by the contextsmith engine.

Only retry exhaustion and an open circuit ever reach the caller; every other
failure (provider outage, summarizer error, unmatched heuristic) is absorbed
inside the component that hit it and logged.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from contextsmith.retry.engine import RetrySession


class ContextsmithError(Exception):
    """Base class for errors the engine propagates to callers."""


class CircuitOpenError(ContextsmithError):
    """The circuit breaker refused execution for *key*; no further retries."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Circuit breaker open for '{key}'")
        self.key = key


class RetryExhaustedError(ContextsmithError):
    """Every retry attempt failed.

    Attributes:
        session: The finalized RetrySession with one RetryAttempt per try.
        last_error: The exception raised by the final attempt, if the final
            attempt raised (``None`` when the output itself was unusable).
    """

    def __init__(
        self,
        session: RetrySession,
        last_error: BaseException | None = None,
    ) -> None:
        attempts = len(session.attempts)
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(
            f"Generation failed after {attempts} attempt(s){detail}"
        )
        self.session = session
        self.last_error = last_error


class GenerationError(ContextsmithError):
    """The generation executor returned no usable content."""


class EmbeddingUnavailableError(ContextsmithError):
    """The remote embedding provider could not produce vectors.

    Raised by providers and always absorbed by ResilientEmbeddingProvider.
    """
