"""LiteLLM client wrapper: completions, batch embeddings, API key validation.

Every model and embedding call made by contextsmith routes through this module.
The engine itself only sees the executor / provider interfaces; this is the
default implementation of them.
"""

from __future__ import annotations

import logging
import os
import warnings

import litellm

from contextsmith.errors import GenerationError
from contextsmith.estimator import TokenEstimator, default_estimator

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "google": "GOOGLE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
    "lm_studio": None,
}

# Models that cost noticeably more per embedded token than the default.
_EXPENSIVE_EMBEDDING_MODELS: frozenset[str] = frozenset(
    ["openai/text-embedding-3-large", "openai/text-embedding-ada-002"]
)

_MIN_COMPLETION_TOKENS = 256
_MAX_TEMPERATURE = 2.0


def provider_of(model: str) -> str:
    """Return the LiteLLM provider prefix of *model* ('openai' when absent)."""
    return model.split("/")[0].lower() if "/" in model else "openai"


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return  # No key required (e.g. ollama)

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 2048,
    temperature: float = 0.0,
    num_retries: int = 1,
):
    """Call litellm.completion() and return the raw response object.

    Transient-error retries are left mostly to SmartRetryEngine, so
    *num_retries* defaults low.
    """
    return litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
    )


def embed_batch(
    model: str,
    texts: list[str],
    dimensions: int | None = None,
    timeout: float | None = None,
) -> list[list[float]]:
    """Embed *texts* with one litellm.embedding() call; vectors keep input order."""
    kwargs: dict = {"model": model, "input": texts}
    if dimensions is not None:
        kwargs["dimensions"] = dimensions
    if timeout is not None:
        kwargs["timeout"] = timeout
    response = litellm.embedding(**kwargs)
    return [list(item["embedding"]) for item in response.data]


def warn_if_expensive(model: str) -> None:
    """Emit a UserWarning when *model* is a high-cost embedding model."""
    if model in _EXPENSIVE_EMBEDDING_MODELS:
        warnings.warn(
            f"Embedding model '{model}' is a high-cost model; every reindex embeds "
            "the whole project. Consider openai/text-embedding-3-small.",
            UserWarning,
            stacklevel=3,
        )


def get_context_window(model: str) -> int:
    """Return the context window size for *model* in tokens.

    Uses litellm.get_model_info() with a hardcoded fallback table for common models.
    Returns 8192 if the model is unknown.
    """
    try:
        info = litellm.get_model_info(model)
        return info.get("max_input_tokens") or info.get("max_tokens") or 8192
    except Exception:
        logger.debug("No litellm model info for %s; using fallback table", model)

    _FALLBACK: dict[str, int] = {
        "openai/gpt-4o": 128_000,
        "openai/gpt-4o-mini": 128_000,
        "openai/gpt-4-turbo": 128_000,
        "openai/gpt-3.5-turbo": 16_384,
        "anthropic/claude-3-5-sonnet-20241022": 200_000,
        "anthropic/claude-3-5-haiku-20241022": 200_000,
    }
    return _FALLBACK.get(model, 8_192)


# ------------------------------------------------------------------
# Default generation executor
# ------------------------------------------------------------------


class LiteLLMExecutor:
    """Generation executor backed by litellm.completion().

    Matches the executor interface the retry engine drives:
    ``executor(prompt, system_prompt, context, temperature_offset, token_limit_offset)``.
    Reported prompt usage is fed back into *estimator* for calibration.

    Args:
        model: LiteLLM model string.
        max_tokens: Base completion token limit before offsets.
        temperature: Base sampling temperature before offsets.
        estimator: Estimator to calibrate; defaults to the shared one.
    """

    def __init__(
        self,
        model: str = "openai/gpt-4o",
        max_tokens: int = 4096,
        temperature: float = 0.2,
        *,
        estimator: TokenEstimator | None = None,
        num_retries: int = 1,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.num_retries = num_retries
        self._estimator = estimator or default_estimator()

    @classmethod
    def from_config(cls, cfg, estimator: TokenEstimator | None = None) -> LiteLLMExecutor:
        """Build from a ``GenerationCfg`` section."""
        return cls(
            model=cfg.model,
            max_tokens=cfg.max_tokens,
            temperature=cfg.temperature,
            estimator=estimator,
        )

    def __call__(
        self,
        prompt: str,
        system_prompt: str | None = None,
        context: str | None = None,
        temperature_offset: float = 0.0,
        token_limit_offset: int = 0,
    ) -> str:
        messages: list[dict] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        user_content = f"{context}\n\n{prompt}" if context else prompt
        messages.append({"role": "user", "content": user_content})

        temperature = min(_MAX_TEMPERATURE, max(0.0, self.temperature + temperature_offset))
        max_tokens = max(_MIN_COMPLETION_TOKENS, self.max_tokens + token_limit_offset)

        response = complete(
            self.model,
            messages,
            max_tokens=max_tokens,
            temperature=temperature,
            num_retries=self.num_retries,
        )
        self._record_usage(messages, response)

        text = response.choices[0].message.content or ""
        if not text.strip():
            raise GenerationError(f"Model '{self.model}' returned empty content")
        return text

    def _record_usage(self, messages: list[dict], response) -> None:
        usage = getattr(response, "usage", None)
        prompt_tokens = getattr(usage, "prompt_tokens", None) if usage is not None else None
        if isinstance(prompt_tokens, int) and prompt_tokens > 0:
            self._estimator.record("\n".join(m["content"] for m in messages), prompt_tokens)
