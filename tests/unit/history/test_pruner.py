"""Tests for ContextPruner."""

from __future__ import annotations

import pytest

from contextsmith.config import PruningCfg
from contextsmith.history.models import ConversationTurn
from contextsmith.history.pruner import (
    SUMMARY_PREFIX,
    TRUNCATION_SUFFIX,
    ContextPruner,
    PruningConfig,
    compress_code_blocks,
    summary_prompt,
)


def _turn(role: str, tokens: int, label: str = "") -> ConversationTurn:
    return ConversationTurn(role, f"{label or role} " + "word " * 40, token_count=tokens)


def _history(n: int, tokens: int = 100) -> list[ConversationTurn]:
    turns = [ConversationTurn("system", "You build React apps.", token_count=20)]
    for i in range(n):
        turns.append(_turn("user" if i % 2 == 0 else "assistant", tokens, f"turn-{i}"))
    return turns


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


def test_turn_rejects_unknown_role():
    with pytest.raises(ValueError, match="role"):
        ConversationTurn("tool", "x")


def test_with_content_drops_cached_count():
    turn = ConversationTurn("user", "a", token_count=3)
    assert turn.with_content("b").token_count is None


# ---------------------------------------------------------------------------
# Under the trigger
# ---------------------------------------------------------------------------


def test_under_threshold_returns_input_unchanged(estimator):
    pruner = ContextPruner(estimator)
    turns = _history(4)
    result = pruner.prune(turns, PruningConfig(max_tokens=10_000))

    assert result.turns == turns
    assert result.pruned_count == 0
    assert result.summarized_count == 0
    assert result.compression_ratio == 1.0
    assert result.budget_exhausted is False


def test_needs_pruning_uses_threshold(estimator):
    pruner = ContextPruner(estimator)
    turns = _history(4)  # 20 + 400 tokens
    assert not pruner.needs_pruning(turns, PruningConfig(max_tokens=600, summarization_threshold=0.8))
    assert pruner.needs_pruning(turns, PruningConfig(max_tokens=500, summarization_threshold=0.8))


def test_cached_token_count_wins_over_estimate(estimator):
    pruner = ContextPruner(estimator)
    assert pruner.count(ConversationTurn("user", "x" * 1000, token_count=1)) == 1


# ---------------------------------------------------------------------------
# Truncation path
# ---------------------------------------------------------------------------


def test_truncation_keeps_system_and_recent(estimator):
    pruner = ContextPruner(estimator)
    turns = _history(10)
    config = PruningConfig(max_tokens=700, reserve_tokens=100, preserve_recent=4)

    result = pruner.prune(turns, config)

    assert result.turns[0].role == "system"
    assert result.turns[-4:] == turns[-4:]
    assert result.summarized_count == 0
    assert result.pruned_count > 0
    assert result.final_tokens < result.original_tokens


def test_truncation_keeps_newest_older_turns_first(estimator):
    pruner = ContextPruner(estimator)
    turns = _history(10)
    # 700 - 100 reserve - 20 system - 400 recent = 180 → one whole older turn
    config = PruningConfig(max_tokens=700, reserve_tokens=100, preserve_recent=4)

    result = pruner.prune(turns, config)

    kept_older = result.turns[1:-4]
    assert kept_older[-1] == turns[6]
    assert turns[1] not in result.turns


def test_partial_turn_is_truncated_when_room_remains(estimator):
    pruner = ContextPruner(estimator)
    turns = [ConversationTurn("system", "sys", token_count=10)]
    turns += [ConversationTurn("user", "older " * 400, token_count=500)]
    turns += [ConversationTurn("assistant", "recent", token_count=50)]
    config = PruningConfig(max_tokens=400, reserve_tokens=0, preserve_recent=1)

    result = pruner.prune(turns, config)

    assert len(result.turns) == 3
    assert result.turns[1].content.endswith(TRUNCATION_SUFFIX)
    assert result.pruned_count == 0


def test_truncated_turn_fits_budget_for_dense_text(estimator):
    pruner = ContextPruner(estimator)
    turns = [ConversationTurn("system", "sys", token_count=10)]
    turns += [ConversationTurn("user", "{}();" * 800, token_count=3000)]
    turns += [ConversationTurn("assistant", "recent", token_count=50)]
    config = PruningConfig(max_tokens=400, reserve_tokens=0, preserve_recent=1)

    result = pruner.prune(turns, config)

    truncated = result.turns[1].content
    assert truncated.endswith(TRUNCATION_SUFFIX)
    assert estimator.estimate(truncated) <= 340
    assert result.final_tokens <= 400


def test_budget_exhausted_drops_all_older(estimator):
    pruner = ContextPruner(estimator)
    turns = _history(6, tokens=300)
    config = PruningConfig(max_tokens=1000, reserve_tokens=200, preserve_recent=4)

    result = pruner.prune(turns, config)

    assert result.budget_exhausted is True
    assert [t.role for t in result.turns][0] == "system"
    assert len(result.turns) == 5
    assert result.pruned_count == 2


def test_preserve_system_false_drops_system(estimator):
    pruner = ContextPruner(estimator)
    turns = _history(10)
    config = PruningConfig(max_tokens=700, reserve_tokens=100, preserve_recent=2, preserve_system=False)

    result = pruner.prune(turns, config)
    assert all(t.role != "system" for t in result.turns)


# ---------------------------------------------------------------------------
# Summarization path
# ---------------------------------------------------------------------------


def test_summarizer_replaces_older_turns(estimator):
    pruner = ContextPruner(estimator)
    turns = _history(10)
    config = PruningConfig(max_tokens=700, reserve_tokens=100, preserve_recent=4)
    seen = []

    def summarizer(older):
        seen.extend(older)
        return "User asked for a todo app; we chose React and Tailwind."

    result = pruner.prune(turns, config, summarizer)

    assert len(seen) == 6
    assert result.summarized_count == 6
    assert result.pruned_count == 0
    assert result.turns[1].content.startswith(SUMMARY_PREFIX)
    assert result.turns[-4:] == turns[-4:]


def test_summarizer_failure_falls_back_to_truncation(estimator):
    pruner = ContextPruner(estimator)
    turns = _history(10)
    config = PruningConfig(max_tokens=700, reserve_tokens=100, preserve_recent=4)

    def broken(_older):
        raise RuntimeError("model down")

    result = pruner.prune(turns, config, broken)

    assert result.summarized_count == 0
    assert not any(t.content.startswith(SUMMARY_PREFIX) for t in result.turns)
    assert result.turns[-4:] == turns[-4:]


def test_blank_summary_falls_back_to_truncation(estimator):
    pruner = ContextPruner(estimator)
    result = pruner.prune(
        _history(10),
        PruningConfig(max_tokens=700, reserve_tokens=100, preserve_recent=4),
        lambda _older: "   ",
    )
    assert result.summarized_count == 0


def test_summarizer_skipped_for_few_older_turns(estimator):
    pruner = ContextPruner(estimator)
    calls = []
    pruner.prune(
        _history(6),
        PruningConfig(max_tokens=500, reserve_tokens=0, preserve_recent=4),
        lambda older: calls.append(older) or "summary",
    )
    assert calls == []


# ---------------------------------------------------------------------------
# Code fence compression
# ---------------------------------------------------------------------------


def test_long_code_block_is_compressed():
    body = "\n".join(f"line {i}" for i in range(30))
    content = f"Here:\n```tsx\n{body}\n```\nDone."

    out = compress_code_blocks(content)

    assert "line 0" in out
    assert "line 4" in out
    assert "line 5" not in out
    assert "line 29" in out
    assert "(21 lines omitted)" in out
    assert out.startswith("Here:\n```tsx")
    assert out.endswith("```\nDone.")


def test_short_code_block_untouched():
    content = "```py\nprint('hi')\n```"
    assert compress_code_blocks(content) == content


def test_summary_prompt_includes_roles_and_limit():
    turns = [ConversationTurn("user", "Add login"), ConversationTurn("assistant", "Added it")]
    prompt = summary_prompt(turns, max_words=120)
    assert "[user]: Add login" in prompt
    assert "under 120 words" in prompt


def test_pruning_config_from_config():
    cfg = PruningConfig.from_config(PruningCfg(max_tokens=9000, preserve_recent=2))
    assert cfg.max_tokens == 9000
    assert cfg.preserve_recent == 2
    assert cfg.trigger_tokens == pytest.approx(7200)
