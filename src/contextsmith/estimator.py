"""Heuristic token estimator with self-calibration.

No tokenizer is loaded.  Text is costed by layered passes; each pass removes
the spans it matched before the next one runs:

  1. fenced code blocks       ~3.5 chars / token (an unclosed fence runs to the end)
  2. URLs                     ~2.5 chars / token
  3. file-path-like runs      ~3 chars / token
  4. digit runs               ~3 digits / token
  5. punctuation              0.7 tokens each
  6. remaining words          <=4 chars: 1, 5-8 chars: 1.3, longer: ceil(len/4)

A fixed structural overhead is added per call.  ``record()`` feeds back real
token counts (e.g. ``usage.prompt_tokens`` from a completion) and, once enough
samples agree, scales every later estimate by their mean ratio.
"""

from __future__ import annotations

import logging
import math
import re
import threading
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# Heuristic constants
# ------------------------------------------------------------------

STRUCTURAL_OVERHEAD = 5

_CODE_FENCE_RE = re.compile(r"```[\s\S]*?(?:```|\Z)")
_URL_RE = re.compile(r"https?://[^\s]+")
_PATH_RE = re.compile(r"(?:/[\w\-./]+)+")
_DIGITS_RE = re.compile(r"\d+")
_PUNCT_RE = re.compile(r"[^a-zA-Z0-9\s]")
_NON_LETTER_RE = re.compile(r"[^a-zA-Z]")

# (pattern, chars per token), applied in order; matched spans are removed after counting
_SPAN_PASSES: tuple[tuple[re.Pattern[str], float], ...] = (
    (_CODE_FENCE_RE, 3.5),
    (_URL_RE, 2.5),
    (_PATH_RE, 3.0),
    (_DIGITS_RE, 3.0),
)

_PUNCT_TOKENS = 0.7
_MEDIUM_WORD_TOKENS = 1.3

_MIN_SAMPLES = 10
_MIN_RATIO = 0.5
_MAX_RATIO = 2.0
_DRIFT_LOG_THRESHOLD = 0.2
_DEFAULT_WINDOW = 200


@dataclass(frozen=True)
class Calibration:
    """Snapshot of the estimator's calibration state."""

    factor: float
    samples: int
    active: bool


class TokenEstimator:
    """Approximate token counter.

    Args:
        window: Number of most recent calibration samples to average.
            ``0`` keeps every sample (unbounded running mean).
        min_samples: Samples required before calibration applies.
        min_ratio: Lower bound of an acceptable mean ratio.
        max_ratio: Upper bound of an acceptable mean ratio.
    """

    def __init__(
        self,
        window: int = _DEFAULT_WINDOW,
        *,
        min_samples: int = _MIN_SAMPLES,
        min_ratio: float = _MIN_RATIO,
        max_ratio: float = _MAX_RATIO,
    ) -> None:
        if window < 0:
            raise ValueError(f"window must be >= 0, got {window}")
        self.window = window
        self.min_samples = min_samples
        self.min_ratio = min_ratio
        self.max_ratio = max_ratio
        self._samples: deque[float] = deque(maxlen=window or None)
        self._factor = 1.0
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg) -> TokenEstimator:
        """Build from an ``EstimatorCfg`` section."""
        return cls(
            window=cfg.window,
            min_samples=cfg.min_samples,
            min_ratio=cfg.min_ratio,
            max_ratio=cfg.max_ratio,
        )

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------

    def estimate(self, text: str, *, include_overhead: bool = True) -> int:
        """Return a non-negative token estimate for *text*.

        Empty text costs 0.  ``include_overhead=False`` omits the per-call
        structural overhead, for callers summing many small fragments.
        """
        if not text:
            return 0
        raw = self._raw(text, include_overhead)
        with self._lock:
            factor = self._factor
        return math.ceil(raw * factor)

    def estimate_many(self, texts: Iterable[str]) -> int:
        """Sum of ``estimate()`` over *texts*."""
        return sum(self.estimate(t) for t in texts)

    def _raw(self, text: str, include_overhead: bool = True) -> float:
        remaining = text
        total = 0.0

        for pattern, chars_per_token in _SPAN_PASSES:
            spans: list[int] = []

            def _consume(m: re.Match[str], _spans: list[int] = spans) -> str:
                _spans.append(len(m.group(0)))
                return " "

            remaining = pattern.sub(_consume, remaining)
            for length in spans:
                total += math.ceil(length / chars_per_token)

        punct = len(_PUNCT_RE.findall(remaining))
        if punct:
            total += math.ceil(punct * _PUNCT_TOKENS)
            remaining = _PUNCT_RE.sub(" ", remaining)

        for word in remaining.split():
            letters = _NON_LETTER_RE.sub("", word)
            n = len(letters)
            if n == 0:
                continue
            if n <= 4:
                total += 1
            elif n <= 8:
                total += _MEDIUM_WORD_TOKENS
            else:
                total += math.ceil(n / 4)

        if include_overhead:
            total += STRUCTURAL_OVERHEAD
        return total

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------

    def record(self, text: str, actual_tokens: int) -> None:
        """Feed back the real token count for *text*.

        The ratio is taken against the uncalibrated estimate so that an
        active calibration does not feed on itself.
        """
        if actual_tokens <= 0 or not text:
            return
        raw = self._raw(text)
        if raw <= 0:
            return
        ratio = actual_tokens / raw

        if abs(ratio - 1.0) > _DRIFT_LOG_THRESHOLD:
            logger.debug(
                "Token estimate off by %.0f%% (estimated %d, actual %d)",
                abs(ratio - 1.0) * 100,
                math.ceil(raw),
                actual_tokens,
            )

        with self._lock:
            self._samples.append(ratio)
            self._factor = self._compute_factor()

    def _mean_in_range(self) -> float | None:
        if len(self._samples) < self.min_samples:
            return None
        mean = sum(self._samples) / len(self._samples)
        if self.min_ratio <= mean <= self.max_ratio:
            return mean
        return None

    def _compute_factor(self) -> float:
        mean = self._mean_in_range()
        return 1.0 if mean is None else mean

    @property
    def calibration(self) -> Calibration:
        with self._lock:
            return Calibration(
                factor=self._factor,
                samples=len(self._samples),
                active=self._mean_in_range() is not None,
            )

    def reset_calibration(self) -> None:
        with self._lock:
            self._samples.clear()
            self._factor = 1.0


# ------------------------------------------------------------------
# Shared default instance
# ------------------------------------------------------------------

_default: TokenEstimator | None = None
_default_lock = threading.Lock()


def default_estimator() -> TokenEstimator:
    """Return the process-wide estimator used when none is injected."""
    global _default
    with _default_lock:
        if _default is None:
            _default = TokenEstimator()
        return _default


def estimate_tokens(text: str) -> int:
    """Shortcut for ``default_estimator().estimate(text)``."""
    return default_estimator().estimate(text)
