"""Structural failure-mode detection for generated output.

There is no oracle for "is this output correct", so classification looks
only at shape.  Checks run in this order and the first hit wins:

  1. empty-output       fewer than 10 non-whitespace characters
  2. repetition         a 50+ character span appears 3 or more times
  3. incomplete-output  an odd number of ``` fences (cut off inside a block)
  4. syntax-error       unbalanced brackets or quotes in the code
  5. incomplete-output  text stops mid-word or on a trailing comma
  6. wrong-format       the prompt asks for code and nothing looks like code
  7. off-topic          under 10 % of the prompt's significant words appear
  8. unknown            nothing structural found

``find_failure`` maps "unknown" to None so callers can treat the output as
usable.
"""

from __future__ import annotations

import re
from collections import Counter
from enum import Enum


class FailureMode(str, Enum):
    EMPTY_OUTPUT = "empty-output"
    REPETITION = "repetition"
    SYNTAX_ERROR = "syntax-error"
    INCOMPLETE_OUTPUT = "incomplete-output"
    WRONG_FORMAT = "wrong-format"
    OFF_TOPIC = "off-topic"
    UNKNOWN = "unknown"


MIN_CONTENT_CHARS = 10
REPEAT_WINDOW = 50
REPEAT_COUNT = 3
MIN_TOPIC_OVERLAP = 0.10
MIN_SIGNIFICANT_WORDS = 3

_FENCE_RE = re.compile(r"^\s*```", re.MULTILINE)
_FENCED_BLOCK_RE = re.compile(r"^\s*```[^\n]*\n(.*?)^\s*```", re.MULTILINE | re.DOTALL)

_CODE_REQUEST_RE = re.compile(
    r"\b(?:code|function|component|class|method|implement|script|module|endpoint|api|"
    r"html|css|javascript|typescript|python|react|sql|snippet|program|app|application)\b",
    re.IGNORECASE,
)
_CODE_TOKEN_RE = re.compile(
    r"```"
    r"|\b(?:function|const|let|var|class|def|import|export|return|interface)\b"
    r"|=>"
    r"|</?[A-Za-z][\w.-]*(?:\s[^<>]*)?/?>"
    r"|[{};]\s*$",
    re.MULTILINE,
)
_TRAILING_STATEMENT_RE = re.compile(r"^\s*(?:export|import|return|from|module\.exports)\b")
_WORD_RE = re.compile(r"[a-z][a-z0-9]+")

_STOPWORDS: frozenset[str] = frozenset(
    """about above after again also because been before being below between both
    could does doing down during each from further have having here into itself
    just more most only other over please same should some such than that their
    them then there these they this those through under until very want what when
    where which while will with would your make need using""".split()
)

_PAIRS = {")": "(", "]": "[", "}": "{"}
_OPENERS = frozenset(_PAIRS.values())


# ------------------------------------------------------------------
# Individual checks
# ------------------------------------------------------------------


def is_empty(output: str) -> bool:
    return len(re.sub(r"\s", "", output)) < MIN_CONTENT_CHARS


def has_repetition(
    output: str,
    window: int = REPEAT_WINDOW,
    times: int = REPEAT_COUNT,
) -> bool:
    """True if some *window*-character span occurs at least *times* times, non-overlapping."""
    if len(output) < window * times:
        return False
    counts = Counter(output[i : i + window] for i in range(len(output) - window + 1))
    for span, n in counts.most_common():
        if n < times:
            return False
        if span.strip() and output.count(span) >= times:
            return True
    return False


def has_unterminated_fence(output: str) -> bool:
    return len(_FENCE_RE.findall(output)) % 2 == 1


def looks_like_code(text: str) -> bool:
    return bool(_CODE_TOKEN_RE.search(text))


def _string_end(line: str, start: int) -> int:
    """Index of the quote closing the string opened at *start*, or -1."""
    quote = line[start]
    i = start + 1
    while i < len(line):
        if line[i] == "\\":
            i += 2
            continue
        if line[i] == quote:
            return i
        i += 1
    return -1


def is_balanced(code: str) -> bool:
    """Bracket and quote balance of *code*, skipping strings and comments.

    Single- and double-quoted strings end at the line break; an unclosed
    double quote is an error, an unclosed single quote is read as an
    apostrophe.  Backtick and triple-quoted strings may span lines.
    """
    stack: list[str] = []
    multiline: str | None = None  # "`", '"""', "'''" or "*/"

    for line in code.split("\n"):
        i = 0
        while i < len(line):
            if multiline is not None:
                if multiline == "`" and line[i] == "\\":
                    i += 2
                    continue
                if line.startswith(multiline, i):
                    i += len(multiline)
                    multiline = None
                else:
                    i += 1
                continue

            ch = line[i]
            if line.startswith("/*", i):
                multiline, i = "*/", i + 2
            elif line.startswith('"""', i) or line.startswith("'''", i):
                multiline, i = line[i : i + 3], i + 3
            elif ch == "`":
                multiline, i = "`", i + 1
            elif line.startswith("//", i) or (ch == "#" and line[i + 1 : i + 2] in ("", " ", "!")):
                break
            elif ch in "'\"":
                end = _string_end(line, i)
                if end == -1:
                    if ch == '"':
                        return False
                    i += 1
                else:
                    i = end + 1
            else:
                if ch in _OPENERS:
                    stack.append(ch)
                elif ch in _PAIRS and (not stack or stack.pop() != _PAIRS[ch]):
                    return False
                i += 1

    return not stack and multiline is None


def _code_sections(output: str) -> list[str]:
    blocks = _FENCED_BLOCK_RE.findall(output)
    if blocks:
        return blocks
    return [output] if looks_like_code(output) else []


def has_syntax_error(output: str) -> bool:
    return any(not is_balanced(section) for section in _code_sections(output))


def ends_mid_sentence(output: str) -> bool:
    if not output or output[-1].isspace():
        return False
    last_line = output.rsplit("\n", 1)[-1]
    if _TRAILING_STATEMENT_RE.match(last_line):
        return False
    return bool(re.search(r"[A-Za-z,]$", output))


def significant_words(text: str) -> set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if len(w) > 3 and w not in _STOPWORDS}


def topic_overlap(prompt: str, output: str) -> float | None:
    """Fraction of the prompt's significant words found in *output*; None if too few."""
    words = significant_words(prompt)
    if len(words) < MIN_SIGNIFICANT_WORDS:
        return None
    lowered = output.lower()
    return sum(1 for w in words if w in lowered) / len(words)


# ------------------------------------------------------------------
# Classification
# ------------------------------------------------------------------


def detect_failure_mode(output: str, prompt: str = "") -> FailureMode:
    """Classify *output* structurally; UNKNOWN means nothing was found."""
    if is_empty(output):
        return FailureMode.EMPTY_OUTPUT
    if has_repetition(output):
        return FailureMode.REPETITION
    if has_unterminated_fence(output):
        return FailureMode.INCOMPLETE_OUTPUT
    if has_syntax_error(output):
        return FailureMode.SYNTAX_ERROR
    if ends_mid_sentence(output):
        return FailureMode.INCOMPLETE_OUTPUT
    if prompt and _CODE_REQUEST_RE.search(prompt) and not looks_like_code(output):
        return FailureMode.WRONG_FORMAT
    if prompt:
        overlap = topic_overlap(prompt, output)
        if overlap is not None and overlap < MIN_TOPIC_OVERLAP:
            return FailureMode.OFF_TOPIC
    return FailureMode.UNKNOWN


def find_failure(output: str, prompt: str = "") -> FailureMode | None:
    mode = detect_failure_mode(output, prompt)
    return None if mode is FailureMode.UNKNOWN else mode
