"""Conversation summarizer — condense older turns via LiteLLM.

Passed to ContextPruner.prune() as its ``summarizer``.  Failure is non-fatal:
an empty string is returned and the pruner falls back to truncation.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import litellm

from contextsmith.history.models import ConversationTurn
from contextsmith.history.pruner import summary_prompt

logger = logging.getLogger(__name__)

_DEFAULT_MODEL = "openai/gpt-4o-mini"
_DEFAULT_MAX_TOKENS = 500


class ConversationSummarizer:
    """Summarize a run of conversation turns with a small model.

    Args:
        model:      LiteLLM model string for summary generation.
        max_tokens: Maximum tokens in the generated summary.
    """

    def __init__(
        self,
        model: str = _DEFAULT_MODEL,
        max_tokens: int = _DEFAULT_MAX_TOKENS,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens

    @classmethod
    def from_config(cls, cfg) -> ConversationSummarizer:
        """Build from a ``GenerationCfg`` section, using its ``summary_model``."""
        return cls(model=cfg.summary_model)

    def __call__(self, turns: Sequence[ConversationTurn]) -> str:
        return self.summarize(turns)

    def summarize(self, turns: Sequence[ConversationTurn]) -> str:
        """Return a summary of *turns*, or "" if generation fails."""
        if not turns:
            return ""
        prompt = summary_prompt(turns, max_words=int(self._max_tokens * 0.75))
        try:
            response = litellm.completion(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self._max_tokens,
                temperature=0.0,
            )
            return (response.choices[0].message.content or "").strip()
        except Exception:
            logger.warning("Summary generation with %s failed", self._model, exc_info=True)
            return ""
