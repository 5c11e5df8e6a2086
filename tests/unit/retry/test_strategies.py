"""Tests for retry strategy transforms and selection."""

from __future__ import annotations

import pytest

from contextsmith.retry.failures import FailureMode
from contextsmith.retry.strategies import (
    ERROR_PROGRESSION,
    STRATEGY_TABLE,
    RetryContext,
    Strategy,
    apply_strategy,
    strategy_for_error,
    strategy_for_mode,
)

_PROMPT = "Build a counter component with increment and reset buttons."


def _ctx(**overrides) -> RetryContext:
    values = dict(
        original_prompt=_PROMPT,
        attempt=2,
        max_attempts=3,
        system_prompt="You write React.",
        context="// src/App.tsx",
        failure_mode=FailureMode.EMPTY_OUTPUT,
    )
    values.update(overrides)
    return RetryContext(**values)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def test_mode_selection_cycles_through_row():
    picked = [strategy_for_mode(FailureMode.EMPTY_OUTPUT, n) for n in range(4)]
    assert picked == [
        Strategy.REPHRASE,
        Strategy.SIMPLIFY,
        Strategy.CONSTRAIN_OUTPUT,
        Strategy.REPHRASE,
    ]


def test_every_mode_has_distinct_remedies():
    assert set(STRATEGY_TABLE) == set(FailureMode)
    for row in STRATEGY_TABLE.values():
        assert len(set(row)) == len(row) >= 2


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("maximum context length exceeded", Strategy.SIMPLIFY),
        ("Request timed out", Strategy.CONSTRAIN_OUTPUT),
        ("Could not parse JSON", Strategy.ADD_EXAMPLES),
        ("Rate limit reached (429)", Strategy.REPHRASE),
        ("Connection reset by peer", Strategy.REPHRASE),
        ("Request too large for model", Strategy.DECOMPOSE),
    ],
)
def test_error_keywords_pick_first_strategy(message, expected):
    assert strategy_for_error(RuntimeError(message), 0) is expected


def test_error_without_keyword_follows_progression():
    assert strategy_for_error("boom", 0) is ERROR_PROGRESSION[0]
    assert strategy_for_error("boom", 1) is Strategy.SIMPLIFY


def test_used_strategies_are_skipped():
    assert strategy_for_error("timed out", 0, [Strategy.CONSTRAIN_OUTPUT]) is Strategy.REPHRASE
    assert strategy_for_error("boom", 1, [Strategy.SIMPLIFY]) is Strategy.CONSTRAIN_OUTPUT


def test_keywords_only_apply_to_first_retry():
    assert strategy_for_error("timed out", 1) is Strategy.SIMPLIFY


def test_everything_used_falls_back_to_progression():
    assert strategy_for_error("boom", 2, list(Strategy)) is ERROR_PROGRESSION[2]


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("strategy", list(Strategy))
def test_transforms_are_pure(strategy):
    ctx = _ctx()
    first = apply_strategy(strategy, ctx)
    assert first == apply_strategy(strategy, ctx)
    assert first.strategy is strategy
    assert first.system_prompt == "You write React."


@pytest.mark.parametrize("strategy", [s for s in Strategy if s is not Strategy.SIMPLIFY])
def test_transforms_keep_the_original_request(strategy):
    assert _PROMPT in apply_strategy(strategy, _ctx()).prompt


def test_rephrase_names_the_problem():
    mod = apply_strategy(Strategy.REPHRASE, _ctx(error="Request timed out"))
    assert mod.prompt.startswith("The previous attempt failed: Request timed out")
    assert mod.temperature_offset == pytest.approx(0.1)


def test_simplify_strips_hedges_and_filler():
    mod = apply_strategy(
        Strategy.SIMPLIFY,
        _ctx(original_prompt="Could you please make a very simple button"),
    )
    assert mod.prompt == "TASK (simplified retry): make a simple button"
    assert mod.context == "// src/App.tsx"


def test_simplify_halves_large_context():
    context = "word " * 2_000
    mod = apply_strategy(Strategy.SIMPLIFY, _ctx(context=context))

    assert mod.context.startswith("[...earlier context trimmed...]")
    assert len(mod.context) < len(context)
    assert "halved context" in mod.reason


def test_add_examples_lowers_temperature():
    mod = apply_strategy(Strategy.ADD_EXAMPLES, _ctx())
    assert "```tsx" in mod.prompt
    assert mod.temperature_offset < 0


def test_constrain_output_shrinks_token_limit():
    mod = apply_strategy(Strategy.CONSTRAIN_OUTPUT, _ctx())
    assert "minimal, working implementation" in mod.prompt
    assert mod.token_limit_offset == -1024


def test_decompose_asks_for_steps():
    assert "step by step" in apply_strategy(Strategy.DECOMPOSE, _ctx()).prompt


def test_increase_context_appends_failure_details():
    mod = apply_strategy(
        Strategy.INCREASE_CONTEXT,
        _ctx(failure_mode=FailureMode.INCOMPLETE_OUTPUT, previous_output="export function Counter("),
    )
    assert mod.prompt == _PROMPT
    assert mod.context.startswith("// src/App.tsx\n\n")
    assert "Previous attempt 2 of 3 failed: incomplete-output" in mod.context
    assert mod.context.endswith("export function Counter(")
    assert mod.token_limit_offset == 1024


def test_increase_context_without_prior_context():
    mod = apply_strategy(Strategy.INCREASE_CONTEXT, _ctx(context=None, failure_mode=None))
    assert mod.context == "Previous attempt 2 of 3 failed: unusable output"
