"""Tests for the heuristic token estimator and its calibration."""

from __future__ import annotations

import pytest

from contextsmith.config import EstimatorCfg
from contextsmith.estimator import (
    STRUCTURAL_OVERHEAD,
    TokenEstimator,
    default_estimator,
    estimate_tokens,
)


# ---------------------------------------------------------------------------
# Layered heuristic
# ---------------------------------------------------------------------------


def test_empty_text_costs_nothing(estimator):
    assert estimator.estimate("") == 0


def test_short_words_and_overhead(estimator):
    # "the" and "cat" are one token each
    assert estimator.estimate("the cat") == 2 + STRUCTURAL_OVERHEAD


def test_medium_words_cost_more_than_short(estimator):
    # 2 × 1.3 = 2.6, plus overhead
    assert estimator.estimate("hello world") == 8
    assert estimator.estimate("hello world", include_overhead=False) == 3


def test_long_words_cost_by_length(estimator):
    # 16 letters → ceil(16 / 4)
    assert estimator.estimate("internationalize", include_overhead=False) == 4


def test_code_fence_is_costed_by_length(estimator):
    fenced = "```\nabcdefg\n```"
    assert estimator.estimate(fenced, include_overhead=False) == 5  # ceil(15 / 3.5)


def test_url_consumed_before_words(estimator):
    assert estimator.estimate("https://example.com", include_overhead=False) == 8


def test_digits(estimator):
    assert estimator.estimate("12345", include_overhead=False) == 2


def test_punctuation(estimator):
    # three punctuation marks × 0.7 → ceil(2.1)
    assert estimator.estimate("!?;", include_overhead=False) == 3


def test_estimate_never_negative(estimator):
    for text in ["   ", "\n\n", "a", "—", "```"]:
        assert estimator.estimate(text) >= 0


def test_estimate_is_monotonic_in_repetition(estimator):
    one = estimator.estimate("function add(a, b) { return a + b; }")
    two = estimator.estimate("function add(a, b) { return a + b; }\n" * 2)
    assert two > one


def test_unclosed_fence_is_costed_as_code(estimator):
    # 25 chars to the end of text → ceil(25 / 3.5)
    text = "```\n" + "{" * 10 + "}" * 10 + "\n"
    assert estimator.estimate(text, include_overhead=False) == 8


@pytest.mark.parametrize(
    "opened",
    [
        "```\n" + "{" * 10 + "}" * 10 + "\n",
        "```tsx\nconst x = () => { return [1, 2]; };\n",
        "Here you go:\n```\n<div>{items.map((i) => <li>{i}</li>)}</div>\n",
    ],
)
def test_closing_a_fence_never_lowers_the_estimate(estimator, opened):
    assert estimator.estimate(opened + "```") >= estimator.estimate(opened)
    assert estimator.estimate(opened + "``") >= estimator.estimate(opened)


def test_estimate_many_sums(estimator):
    texts = ["hello world", "the cat", ""]
    assert estimator.estimate_many(texts) == sum(estimator.estimate(t) for t in texts)


# ---------------------------------------------------------------------------
# Calibration
# ---------------------------------------------------------------------------


def test_calibration_inactive_below_min_samples(estimator):
    for _ in range(9):
        estimator.record("hello world", 15)
    cal = estimator.calibration
    assert cal.samples == 9
    assert cal.active is False
    assert cal.factor == 1.0
    assert estimator.estimate("hello world") == 8


def test_calibration_applies_after_min_samples(estimator):
    for _ in range(10):
        estimator.record("hello world", 15)
    cal = estimator.calibration
    assert cal.active is True
    assert cal.factor == pytest.approx(15 / 7.6)
    assert estimator.estimate("hello world") >= 15


def test_calibration_ignores_out_of_range_mean(estimator):
    for _ in range(10):
        estimator.record("hello world", 100)
    assert estimator.calibration.active is False
    assert estimator.estimate("hello world") == 8


def test_record_ignores_useless_samples(estimator):
    estimator.record("hello world", 0)
    estimator.record("", 12)
    assert estimator.calibration.samples == 0


def test_calibration_window_tracks_recent_samples():
    est = TokenEstimator(window=5, min_samples=5)
    for _ in range(5):
        est.record("hello world", 15)
    for _ in range(5):
        est.record("hello world", 8)
    assert est.calibration.samples == 5
    assert est.calibration.factor == pytest.approx(8 / 7.6)


def test_calibration_does_not_feed_on_itself(estimator):
    for _ in range(20):
        estimator.record("hello world", 15)
    # ratio is taken against the raw estimate, so the factor stays put
    assert estimator.calibration.factor == pytest.approx(15 / 7.6)


def test_reset_calibration(estimator):
    for _ in range(10):
        estimator.record("hello world", 15)
    estimator.reset_calibration()
    assert estimator.calibration.samples == 0
    assert estimator.estimate("hello world") == 8


def test_negative_window_rejected():
    with pytest.raises(ValueError, match="window"):
        TokenEstimator(window=-1)


def test_from_config():
    est = TokenEstimator.from_config(EstimatorCfg(window=0, min_samples=3, max_ratio=3.0))
    assert est.window == 0
    assert est.min_samples == 3
    assert est.max_ratio == 3.0


# ---------------------------------------------------------------------------
# Shared default
# ---------------------------------------------------------------------------


def test_default_estimator_is_shared():
    assert default_estimator() is default_estimator()


def test_estimate_tokens_shortcut():
    assert estimate_tokens("") == 0
    assert estimate_tokens("the cat") > 0
