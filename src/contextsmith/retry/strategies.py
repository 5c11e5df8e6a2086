"""Retry strategies — pure prompt transforms.

Each strategy maps a RetryContext (what was asked, what went wrong) to a
PromptModification (what to send next).  Transforms always start from the
original request, never from a previously modified prompt, so the same
context always produces the same modification.

Selection is table driven:

  output failures   STRATEGY_TABLE[mode][attempt % len(row)]
  raised errors     keyword → first strategy, then a fixed progression that
                    skips strategies the session already tried
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from contextsmith.estimator import default_estimator
from contextsmith.retry.failures import FailureMode


class Strategy(str, Enum):
    REPHRASE = "rephrase"
    SIMPLIFY = "simplify"
    ADD_EXAMPLES = "add-examples"
    DECOMPOSE = "decompose"
    CONSTRAIN_OUTPUT = "constrain-output"
    INCREASE_CONTEXT = "increase-context"


@dataclass(frozen=True)
class RetryContext:
    """Inputs to a strategy.

    Attributes:
        attempt: 1-based retry number.
        failure_mode: Classification of the failed output, or None when the
            executor raised.
        error: Message of the raised error, if any.
        previous_output: What the failed attempt produced, if anything.
    """

    original_prompt: str
    attempt: int
    max_attempts: int
    system_prompt: str | None = None
    context: str | None = None
    failure_mode: FailureMode | None = None
    error: str | None = None
    previous_output: str = ""

    @property
    def problem(self) -> str:
        if self.error:
            return self.error
        if self.failure_mode is not None:
            return self.failure_mode.value
        return "unusable output"


@dataclass(frozen=True)
class PromptModification:
    prompt: str
    system_prompt: str | None
    context: str | None
    strategy: Strategy | None = None
    reason: str = ""
    temperature_offset: float = 0.0
    token_limit_offset: int = 0


# ------------------------------------------------------------------
# Transforms
# ------------------------------------------------------------------

_HEDGE_RE = re.compile(
    r"\b(?:please|kindly|if possible|maybe|perhaps|could you|would you)\b", re.IGNORECASE
)
_PREAMBLE_RE = re.compile(
    r"\b(?:I would like|I want|I need|I think|I believe|in my opinion)\b", re.IGNORECASE
)
_FILLER_RE = re.compile(r"\b(?:very|really|quite|rather|somewhat|fairly)\b", re.IGNORECASE)

_CONTEXT_TRIM_TOKENS = 1_000
_TRIM_MARKER = "[...earlier context trimmed...]\n"
_TAIL_CHARS = 500


def rephrase(ctx: RetryContext) -> PromptModification:
    prompt = (
        f"The previous attempt failed: {ctx.problem}\n\n"
        "Please try again, avoiding the issue that caused the failure.\n\n"
        f"Original request: {ctx.original_prompt}"
    )
    return PromptModification(
        prompt=prompt,
        system_prompt=ctx.system_prompt,
        context=ctx.context,
        strategy=Strategy.REPHRASE,
        reason="Restated the request with the previous failure spelled out",
        temperature_offset=0.1,
    )


def simplify(ctx: RetryContext) -> PromptModification:
    text = _HEDGE_RE.sub("", ctx.original_prompt)
    text = _PREAMBLE_RE.sub("", text)
    text = _FILLER_RE.sub("", text)
    text = re.sub(r"\s+", " ", text).strip()

    context = ctx.context
    reason = "Removed verbose language and focused on the core task"
    if context:
        tokens = default_estimator().estimate(context)
        if tokens > _CONTEXT_TRIM_TOKENS:
            keep = len(context) // 2
            context = _TRIM_MARKER + context[len(context) - keep :]
            reason += f"; halved context from {tokens} tokens"

    return PromptModification(
        prompt=f"TASK (simplified retry): {text}",
        system_prompt=ctx.system_prompt,
        context=context,
        strategy=Strategy.SIMPLIFY,
        reason=reason,
    )


_FORMAT_EXAMPLE = """\
Respond with the complete code in a single fenced block, for example:

```tsx
export default function Example() {
  return <div className="example">Hello</div>;
}
```"""


def add_examples(ctx: RetryContext) -> PromptModification:
    prompt = (
        f"{ctx.original_prompt}\n\n{_FORMAT_EXAMPLE}\n\n"
        "Make sure every bracket, quote and code fence you open is closed."
    )
    return PromptModification(
        prompt=prompt,
        system_prompt=ctx.system_prompt,
        context=ctx.context,
        strategy=Strategy.ADD_EXAMPLES,
        reason="Added an output example and lowered temperature",
        temperature_offset=-0.2,
    )


def decompose(ctx: RetryContext) -> PromptModification:
    prompt = (
        "Let's approach this step by step:\n\n"
        f"Original task: {ctx.original_prompt}\n\n"
        "Please:\n"
        "1. First, identify the key components needed\n"
        "2. Then, implement the most critical part first\n"
        "3. Finally, add supporting functionality\n\n"
        "Focus on getting a working solution even if simplified."
    )
    return PromptModification(
        prompt=prompt,
        system_prompt=ctx.system_prompt,
        context=ctx.context,
        strategy=Strategy.DECOMPOSE,
        reason="Broke the task into sequential steps",
    )


def constrain_output(ctx: RetryContext) -> PromptModification:
    prompt = (
        f"{ctx.original_prompt}\n\n"
        "IMPORTANT: Provide a minimal, working implementation. Omit comments, tests, "
        "and optional features. Focus only on core functionality."
    )
    return PromptModification(
        prompt=prompt,
        system_prompt=ctx.system_prompt,
        context=ctx.context,
        strategy=Strategy.CONSTRAIN_OUTPUT,
        reason="Requested minimal output",
        temperature_offset=-0.1,
        token_limit_offset=-1_024,
    )


def increase_context(ctx: RetryContext) -> PromptModification:
    notes = [f"Previous attempt {ctx.attempt} of {ctx.max_attempts} failed: {ctx.problem}"]
    if ctx.previous_output.strip():
        notes.append(f"It ended with:\n{ctx.previous_output[-_TAIL_CHARS:]}")
    extra = "\n\n".join(notes)
    context = f"{ctx.context}\n\n{extra}" if ctx.context else extra
    return PromptModification(
        prompt=ctx.original_prompt,
        system_prompt=ctx.system_prompt,
        context=context,
        strategy=Strategy.INCREASE_CONTEXT,
        reason="Added failure details to the context and raised the token limit",
        token_limit_offset=1_024,
    )


TRANSFORMS: dict[Strategy, Callable[[RetryContext], PromptModification]] = {
    Strategy.REPHRASE: rephrase,
    Strategy.SIMPLIFY: simplify,
    Strategy.ADD_EXAMPLES: add_examples,
    Strategy.DECOMPOSE: decompose,
    Strategy.CONSTRAIN_OUTPUT: constrain_output,
    Strategy.INCREASE_CONTEXT: increase_context,
}


def apply_strategy(strategy: Strategy, ctx: RetryContext) -> PromptModification:
    return TRANSFORMS[strategy](ctx)


# ------------------------------------------------------------------
# Selection tables
# ------------------------------------------------------------------

STRATEGY_TABLE: dict[FailureMode, tuple[Strategy, ...]] = {
    FailureMode.EMPTY_OUTPUT: (Strategy.REPHRASE, Strategy.SIMPLIFY, Strategy.CONSTRAIN_OUTPUT),
    FailureMode.REPETITION: (Strategy.REPHRASE, Strategy.CONSTRAIN_OUTPUT, Strategy.SIMPLIFY),
    FailureMode.SYNTAX_ERROR: (Strategy.ADD_EXAMPLES, Strategy.CONSTRAIN_OUTPUT, Strategy.DECOMPOSE),
    FailureMode.INCOMPLETE_OUTPUT: (
        Strategy.CONSTRAIN_OUTPUT,
        Strategy.DECOMPOSE,
        Strategy.INCREASE_CONTEXT,
    ),
    FailureMode.WRONG_FORMAT: (Strategy.ADD_EXAMPLES, Strategy.REPHRASE, Strategy.CONSTRAIN_OUTPUT),
    FailureMode.OFF_TOPIC: (Strategy.REPHRASE, Strategy.INCREASE_CONTEXT, Strategy.SIMPLIFY),
    FailureMode.UNKNOWN: (Strategy.REPHRASE, Strategy.SIMPLIFY, Strategy.DECOMPOSE),
}

# First strategy for a raised error, by message keyword; first match wins.
ERROR_KEYWORDS: tuple[tuple[tuple[str, ...], Strategy], ...] = (
    (("token", "length", "too long", "context window"), Strategy.SIMPLIFY),
    (("timeout", "timed out"), Strategy.CONSTRAIN_OUTPUT),
    (("parse", "syntax", "invalid", "json"), Strategy.ADD_EXAMPLES),
    (("rate limit", "rate_limit", "429"), Strategy.REPHRASE),
    (("connection", "network"), Strategy.REPHRASE),
    (("complex", "too large"), Strategy.DECOMPOSE),
)

ERROR_PROGRESSION: tuple[Strategy, ...] = (
    Strategy.REPHRASE,
    Strategy.SIMPLIFY,
    Strategy.CONSTRAIN_OUTPUT,
    Strategy.ADD_EXAMPLES,
    Strategy.DECOMPOSE,
    Strategy.INCREASE_CONTEXT,
)


def strategy_for_mode(mode: FailureMode, attempt: int) -> Strategy:
    """Strategy for the 0-based *attempt* at recovering from *mode*; wraps around."""
    row = STRATEGY_TABLE[mode]
    return row[attempt % len(row)]


def strategy_for_error(
    error: BaseException | str,
    attempt: int,
    used: Sequence[Strategy] = (),
) -> Strategy:
    """Strategy for a raised error.

    On the first retry a keyword in the message picks the strategy.  Later
    retries, and messages with no keyword, walk ERROR_PROGRESSION from
    *attempt* and take the first strategy not in *used*.
    """
    message = str(error).lower()
    if attempt == 0:
        for keywords, strategy in ERROR_KEYWORDS:
            if any(k in message for k in keywords) and strategy not in used:
                return strategy

    n = len(ERROR_PROGRESSION)
    start = attempt % n
    for offset in range(n):
        candidate = ERROR_PROGRESSION[(start + offset) % n]
        if candidate not in used:
            return candidate
    return ERROR_PROGRESSION[start]
