"""Context budget manager — fit conversation turns into a token budget.

Pruning only triggers once the estimated history exceeds
``max_tokens × summarization_threshold``.  When it does, turns are split into:

  system  — kept when ``preserve_system`` is set
  recent  — the last ``preserve_recent`` non-system turns, always kept
  older   — everything else, reducible

Older turns are summarized into one synthetic turn when a summarizer is
available, otherwise (or when summarizing fails) truncated newest-first.
Nothing in here raises on a budget problem: an impossible budget yields a
result flagged ``budget_exhausted``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from contextsmith.estimator import TokenEstimator, default_estimator
from contextsmith.history.models import ConversationTurn

logger = logging.getLogger(__name__)

Summarizer = Callable[[Sequence[ConversationTurn]], str]

SUMMARY_PREFIX = "[Previous conversation summary]\n"
TRUNCATION_SUFFIX = "\n[...truncated]"

_MIN_OLDER_FOR_SUMMARY = 3
_MIN_TRUNCATION_TOKENS = 100
_CHARS_PER_TOKEN = 4

_FENCE_RE = re.compile(r"```[^\n]*\n[\s\S]*?```")
_MAX_FENCE_LINES = 20
_FENCE_HEAD = 5
_FENCE_TAIL = 4

_SUMMARY_PROMPT = """\
Summarize the following conversation concisely. Preserve:
- key decisions and the reasons given
- file names, components and endpoints that were created or changed
- requirements and constraints stated by the user
- errors that were hit and how they were fixed

Keep it under {max_words} words. Do not include code.

Conversation:
{transcript}

Summary:"""

_TURN_EXCERPT_CHARS = 2000


@dataclass
class PruningConfig:
    """Budget and preservation rules for one prune() call."""

    max_tokens: int = 32_000
    reserve_tokens: int = 4_000
    preserve_recent: int = 4
    preserve_system: bool = True
    summarization_threshold: float = 0.8

    @classmethod
    def from_config(cls, cfg) -> PruningConfig:
        """Build from a ``PruningCfg`` section."""
        return cls(
            max_tokens=cfg.max_tokens,
            reserve_tokens=cfg.reserve_tokens,
            preserve_recent=cfg.preserve_recent,
            preserve_system=cfg.preserve_system,
            summarization_threshold=cfg.summarization_threshold,
        )

    @property
    def trigger_tokens(self) -> float:
        return self.max_tokens * self.summarization_threshold


@dataclass
class PruningResult:
    """Reduced turns plus accounting.

    Attributes:
        turns: Turns to send, system turns first, then chronological order.
        pruned_count: Input turns that no longer appear in any form.
        summarized_count: Input turns folded into the synthetic summary turn.
        budget_exhausted: System + recent turns alone used up the budget, so
            every older turn was dropped.
    """

    turns: list[ConversationTurn]
    pruned_count: int
    summarized_count: int
    original_tokens: int
    final_tokens: int
    compression_ratio: float
    budget_exhausted: bool = False


# ------------------------------------------------------------------
# Code fence compression
# ------------------------------------------------------------------


def compress_code_blocks(content: str) -> str:
    """Shorten fenced code blocks longer than 20 lines.

    A long block keeps its opening fence line, its first 5 and last 4 body
    lines, and an ``... (N lines omitted) ...`` marker in between.
    """

    def _shorten(m: re.Match[str]) -> str:
        lines = m.group(0).split("\n")
        if len(lines) <= _MAX_FENCE_LINES:
            return m.group(0)
        opening, body, closing = lines[0], lines[1:-1], lines[-1]
        omitted = len(body) - _FENCE_HEAD - _FENCE_TAIL
        return "\n".join(
            [opening]
            + body[:_FENCE_HEAD]
            + [f"// ... ({omitted} lines omitted) ..."]
            + body[-_FENCE_TAIL:]
            + [closing]
        )

    return _FENCE_RE.sub(_shorten, content)


def _compress_turn(turn: ConversationTurn) -> ConversationTurn:
    compressed = compress_code_blocks(turn.content)
    if compressed == turn.content:
        return turn
    return turn.with_content(compressed)


def summary_prompt(turns: Sequence[ConversationTurn], max_words: int = 300) -> str:
    """Build the prompt a summarizer model receives for *turns*."""
    transcript = "\n\n".join(
        f"[{t.role}]: {t.content[:_TURN_EXCERPT_CHARS]}" for t in turns
    )
    return _SUMMARY_PROMPT.format(max_words=max_words, transcript=transcript)


# ------------------------------------------------------------------
# Pruner
# ------------------------------------------------------------------


class ContextPruner:
    """Summarize-or-truncate history into a token budget."""

    def __init__(self, estimator: TokenEstimator | None = None) -> None:
        self._estimator = estimator or default_estimator()

    def count(self, turn: ConversationTurn) -> int:
        if turn.token_count is not None:
            return turn.token_count
        return self._estimator.estimate(turn.content)

    def total_tokens(self, turns: Sequence[ConversationTurn]) -> int:
        return sum(self.count(t) for t in turns)

    def needs_pruning(
        self,
        turns: Sequence[ConversationTurn],
        config: PruningConfig | None = None,
    ) -> bool:
        config = config or PruningConfig()
        return self.total_tokens(turns) > config.trigger_tokens

    def prune(
        self,
        turns: Sequence[ConversationTurn],
        config: PruningConfig | None = None,
        summarizer: Summarizer | None = None,
    ) -> PruningResult:
        """Reduce *turns* to fit *config*; never raises on budget problems."""
        config = config or PruningConfig()
        original = self.total_tokens(turns)

        if original <= config.trigger_tokens:
            return PruningResult(
                turns=list(turns),
                pruned_count=0,
                summarized_count=0,
                original_tokens=original,
                final_tokens=original,
                compression_ratio=1.0,
            )

        system = [t for t in turns if t.role == "system"] if config.preserve_system else []
        conversation = [t for t in turns if t.role != "system"]
        keep = config.preserve_recent
        recent = conversation[len(conversation) - keep:] if keep > 0 else []
        older = conversation[: len(conversation) - len(recent)]

        available = config.max_tokens - config.reserve_tokens - self.total_tokens(system + recent)

        summarized = 0
        exhausted = False
        if available <= 0:
            logger.warning(
                "Context budget exhausted by %d system + %d recent turns; dropping %d older turns",
                len(system),
                len(recent),
                len(older),
            )
            kept_older: list[ConversationTurn] = []
            exhausted = True
        else:
            kept_older = self._summarize(older, available, summarizer)
            if kept_older:
                summarized = len(older)
            else:
                kept_older = self._truncate(older, available)

        result_turns = [_compress_turn(t) for t in system + kept_older + recent]
        final = self.total_tokens(result_turns)
        # A truncated turn still counts as kept.
        kept_from_input = len(system) + len(recent) + (0 if summarized else len(kept_older))
        pruned = len(turns) - kept_from_input - summarized

        return PruningResult(
            turns=result_turns,
            pruned_count=pruned,
            summarized_count=summarized,
            original_tokens=original,
            final_tokens=final,
            compression_ratio=original / max(1, final),
            budget_exhausted=exhausted,
        )

    # ------------------------------------------------------------------
    # Reduction paths
    # ------------------------------------------------------------------

    def _summarize(
        self,
        older: list[ConversationTurn],
        available: int,
        summarizer: Summarizer | None,
    ) -> list[ConversationTurn]:
        """Return ``[summary_turn]`` or ``[]`` when summarizing is not possible."""
        if summarizer is None or len(older) < _MIN_OLDER_FOR_SUMMARY:
            return []
        try:
            summary = summarizer(older)
        except Exception:
            logger.warning(
                "Summarizer failed for %d turns; falling back to truncation",
                len(older),
                exc_info=True,
            )
            return []

        if not summary or not summary.strip():
            logger.info("Summarizer returned no text; falling back to truncation")
            return []

        content = SUMMARY_PREFIX + summary.strip()
        turn = ConversationTurn("assistant", content, self._estimator.estimate(content))
        if turn.token_count > available:
            logger.info(
                "Summary (%d tokens) exceeds remaining budget (%d); truncating instead",
                turn.token_count,
                available,
            )
            return []
        return [turn]

    def _truncate(self, older: list[ConversationTurn], available: int) -> list[ConversationTurn]:
        """Keep whole turns newest-first, then at most one truncated turn."""
        kept: list[ConversationTurn] = []
        remaining = available
        for turn in reversed(older):
            tokens = self.count(turn)
            if tokens <= remaining:
                kept.append(turn)
                remaining -= tokens
                continue
            if remaining > _MIN_TRUNCATION_TOKENS:
                cut = self._cut_to_fit(turn.content, remaining)
                if cut is not None:
                    kept.append(turn.with_content(cut))
            break
        kept.reverse()
        return kept

    def _cut_to_fit(self, content: str, budget: int) -> str | None:
        """A prefix of *content* plus the truncation marker that fits *budget*, or None."""
        n = min(len(content), budget * _CHARS_PER_TOKEN)
        while n > 0:
            cut = content[:n] + TRUNCATION_SUFFIX
            tokens = self._estimator.estimate(cut)
            if tokens <= budget:
                return cut
            # Shrink in proportion to the overshoot; always by at least one char.
            n = min(n - 1, n * budget // tokens)
        return None
