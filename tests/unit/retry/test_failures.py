"""Tests for structural failure-mode detection."""

from __future__ import annotations

import pytest

from contextsmith.retry.failures import (
    FailureMode,
    detect_failure_mode,
    ends_mid_sentence,
    find_failure,
    has_repetition,
    is_balanced,
    topic_overlap,
)

_COUNTER_PROMPT = "Write a React component for a counter."
_COUNTER_CODE = (
    "```tsx\n"
    "export function Counter() {\n"
    "  return <button>0</button>;\n"
    "}\n"
    "```"
)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("output", ["", "   \n\t", "short"])
def test_empty_output(output):
    assert detect_failure_mode(output) is FailureMode.EMPTY_OUTPUT


def test_repetition():
    output = "The same sentence keeps coming back again and again. " * 4
    assert detect_failure_mode(output) is FailureMode.REPETITION


def test_unterminated_fence_is_incomplete():
    output = "Here is the code:\n```tsx\nexport const a = 1;\n"
    assert detect_failure_mode(output) is FailureMode.INCOMPLETE_OUTPUT


def test_unbalanced_brackets_in_fenced_block():
    output = "```js\nfunction f() {\n  return [1, 2;\n}\n```\n"
    assert detect_failure_mode(output) is FailureMode.SYNTAX_ERROR


def test_text_cut_mid_sentence():
    output = "The component renders the list and"
    assert detect_failure_mode(output) is FailureMode.INCOMPLETE_OUTPUT


def test_prose_for_code_request_is_wrong_format():
    output = "Sure! A counter keeps track of a number that goes up."
    assert detect_failure_mode(output, _COUNTER_PROMPT) is FailureMode.WRONG_FORMAT


def test_off_topic():
    prompt = "Summarize quarterly revenue figures for marketing department"
    output = "Bananas grow in tropical climates across many regions."
    assert detect_failure_mode(output, prompt) is FailureMode.OFF_TOPIC


def test_good_output_is_unknown():
    assert detect_failure_mode(_COUNTER_CODE, _COUNTER_PROMPT) is FailureMode.UNKNOWN
    assert find_failure(_COUNTER_CODE, _COUNTER_PROMPT) is None


def test_find_failure_passes_real_modes_through():
    assert find_failure("") is FailureMode.EMPTY_OUTPUT


def test_failure_mode_values():
    assert FailureMode("syntax-error") is FailureMode.SYNTAX_ERROR
    assert FailureMode.OFF_TOPIC.value == "off-topic"


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------


def test_repetition_needs_enough_text():
    assert has_repetition("abc" * 10) is False


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("function f() { return [1, 2]; }", True),
        ("function f() { return [1, 2; }", False),
        ("const s = \"abc;", False),
        ("const msg = don't stop;", True),
        ("# a ( b\nx = 1", True),
        ("/* ( */ x()", True),
        ("const s = `a\n(b`;", True),
        ("const s = `abc", False),
        ('s = """doc (\nstill doc"""', True),
        ("const s = \"a)\";", True),
        ("x)", False),
    ],
)
def test_is_balanced(code, expected):
    assert is_balanced(code) is expected


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("The list renders each", True),
        ("Items are: one, two,", True),
        ("All done.", False),
        ("All done.\n", False),
        ("const a = 1;\nexport default App", False),
        ("", False),
    ],
)
def test_ends_mid_sentence(output, expected):
    assert ends_mid_sentence(output) is expected


def test_topic_overlap():
    assert topic_overlap("fix it", "anything") is None
    overlap = topic_overlap("Render todo items with checkbox toggles", "todo items list")
    assert overlap == pytest.approx(2 / 5)
