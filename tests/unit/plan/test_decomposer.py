"""Tests for complexity scoring and prompt decomposition."""

from __future__ import annotations

import pytest

from contextsmith.config import DecompositionCfg
from contextsmith.plan.decomposer import (
    DecompositionResult,
    GenerationStep,
    PromptDecomposer,
    _merge,
    _split,
    analyze_complexity,
    extract_features,
    sequential_prompts,
)

_TODO_APP = "Build a todo app with login and a dashboard showing completed tasks."
_LOGIN_AND_CHARTS = "Create an app with a login form and a dashboard with charts."


def _step(id, key, category, complexity, depends_on=()):
    return GenerationStep(
        id=id,
        key=key,
        description=key.title(),
        prompt=f"{key} prompt.",
        category=category,
        depends_on=depends_on,
        complexity=complexity,
    )


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def test_extract_features_in_table_order():
    keys = [f.key for f in extract_features(_TODO_APP)]
    assert keys == ["auth", "dashboard", "todo-management"]


def test_extract_features_deduplicates_by_key():
    features = extract_features("Login, then signup, then sign in.")
    assert [f.key for f in features] == ["auth"]
    assert features[0].match.lower() == "login"


def test_analyze_complexity_todo_app():
    analysis = analyze_complexity(_TODO_APP)
    # with/and + login + dashboard + 3 features
    assert analysis.score == 14
    assert analysis.categories == ("conjunction", "auth", "data")


def test_trivial_prompt_scores_zero():
    assert analyze_complexity("Make the button blue.").score == 0


def test_long_prompts_earn_bonus():
    sentences = " ".join(["This sentence adds some length here."] * 6)
    assert analyze_complexity(sentences).score >= 3


# ---------------------------------------------------------------------------
# Decomposition
# ---------------------------------------------------------------------------


def test_below_threshold_is_single_step():
    result = PromptDecomposer().decompose("Make the button blue.")

    assert result.decomposed is False
    assert len(result.steps) == 1
    assert result.steps[0].prompt == "Make the button blue."
    assert result.steps[0].category == "general"
    assert "below threshold" in result.reason


def test_single_feature_is_not_decomposed():
    prompt = "Build a login page with a signup form and oauth and authentication."
    result = PromptDecomposer().decompose(prompt)

    assert analyze_complexity(prompt).score >= 8
    assert result.decomposed is False
    assert result.step_keys == ["general"]
    assert "one feature" in result.reason


def test_todo_app_end_to_end():
    result = PromptDecomposer().decompose(_TODO_APP)

    assert result.decomposed is True
    assert result.step_keys == ["layout", "auth", "dashboard", "todo-management"]
    assert [s.id for s in result.steps] == [1, 2, 3, 4]
    assert [s.depends_on for s in result.steps] == [(), (1,), (2,), (3,)]
    assert result.optimized is False
    assert result.estimated_token_savings > 0


def test_login_form_and_charts_gate_auth_on_layout():
    result = PromptDecomposer().decompose(_LOGIN_AND_CHARTS)

    assert result.decomposed is True
    assert len(result.steps) >= 2
    layout = next(s for s in result.steps if s.category == "layout")
    auth = next(s for s in result.steps if s.category == "auth")
    assert layout.id in auth.depends_on
    assert result.step_keys.index("auth") < result.step_keys.index("dashboard")
    # score 17 crosses the optimization threshold
    assert result.optimized is True
    assert result.context_window == 8192


def test_optimization_can_be_disabled_per_call():
    result = PromptDecomposer().decompose(_LOGIN_AND_CHARTS, optimize=False)
    assert result.optimized is False


def test_step_prompts_quote_the_relevant_sentence():
    result = PromptDecomposer().decompose(_TODO_APP)
    auth = result.steps[1]
    assert auth.prompt == f"Authentication system: {_TODO_APP}"
    assert auth.complexity == "high"


def test_from_config():
    decomposer = PromptDecomposer.from_config(
        DecompositionCfg(threshold=100, optimize=False, optimize_threshold=200, context_window=4096)
    )
    assert decomposer.threshold == 100
    assert decomposer.context_window == 4096
    assert decomposer.decompose(_TODO_APP).decomposed is False


# ---------------------------------------------------------------------------
# Context-window optimization
# ---------------------------------------------------------------------------


def test_tiny_window_splits_every_step():
    decomposer = PromptDecomposer()
    result = decomposer.optimize_for_context_window(decomposer.decompose(_TODO_APP), 10)

    assert len(result.steps) == 8
    assert result.step_keys[:2] == ["layout-structure", "layout-logic"]
    assert [s.id for s in result.steps] == list(range(1, 9))
    assert all(s.depends_on[0] == s.id - 1 for s in result.steps[1:])
    auth_structure = result.steps[2]
    assert auth_structure.key == "auth-structure"
    assert 1 in auth_structure.depends_on


def test_small_low_steps_merge():
    result = DecompositionResult(
        decomposed=True,
        score=20,
        original_prompt="Shell, navbar and login.",
        steps=[
            _step(1, "layout", "layout", "low"),
            _step(2, "navigation", "navigation", "low", (1,)),
            _step(3, "auth", "auth", "high", (2,)),
        ],
        reason="test",
    )
    optimized = PromptDecomposer().optimize_for_context_window(result)

    assert optimized.step_keys == ["layout+navigation", "auth"]
    assert optimized.steps[1].depends_on == (1,)
    assert optimized.optimized is True


def test_optimize_leaves_undecomposed_result_alone():
    decomposer = PromptDecomposer()
    result = decomposer.decompose("Make the button blue.")
    assert decomposer.optimize_for_context_window(result, 10) is result


def test_merge_takes_highest_complexity():
    merged = _merge([_step(1, "a", "layout", "low"), _step(2, "b", "data", "medium")])

    assert merged.key == "a+b"
    assert merged.complexity == "medium"
    assert merged.prompt == "a prompt.\n\nAlso implement: b prompt."
    assert _merge([_step(1, "solo", "layout", "low")]).key == "solo"


def test_split_structure_then_logic():
    structure, logic = _split(_step(3, "dashboard", "data", "medium", (2,)))

    assert (structure.key, logic.key) == ("dashboard-structure", "dashboard-logic")
    assert logic.depends_on == (3,)
    assert "Don't implement business logic" in structure.prompt


# ---------------------------------------------------------------------------
# Sequencing
# ---------------------------------------------------------------------------


def test_sequential_prompts_preserve_existing_functionality():
    result = PromptDecomposer().decompose(_TODO_APP)
    prompts = sequential_prompts(result)

    assert len(prompts) == 4
    assert prompts[0].startswith("Build the foundation")
    assert _TODO_APP in prompts[0]
    for prompt in prompts[1:]:
        assert "Preserve existing functionality" in prompt


@pytest.mark.parametrize("prompt", ["Make the button blue.", "Fix the typo in the footer."])
def test_sequential_prompts_for_single_step(prompt):
    result = PromptDecomposer().decompose(prompt)
    assert PromptDecomposer().sequential_prompts(result) == [prompt]
