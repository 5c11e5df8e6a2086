"""contextsmith configuration loader.

Priority (high → low):
  1. Explicit arguments and CLI flags, applied by the caller
  2. Environment variables  (CONTEXTSMITH_GENERATION_MODEL, CONTEXTSMITH_EMBEDDING_MODEL,
     CONTEXTSMITH_SUMMARY_MODEL)
  3. Per-project contextsmith.yaml
  4. Global ~/.contextsmith/config.yaml  (model defaults and budgets; never API keys)
  5. Hardcoded defaults

API keys come from provider environment variables only.
Files are parsed with yaml.safe_load(), so YAML tags cannot construct objects.
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".contextsmith"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "contextsmith.yaml"

# Key names that look like API keys; forbidden in the global config.
# Does NOT match legitimate config keys like max_tokens, reserve_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "estimator",
        "pruning",
        "memory",
        "retrieval",
        "selection",
        "decomposition",
        "retry",
        "embedding",
        "generation",
    ]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EstimatorCfg:
    """Token estimator calibration (contextsmith.yaml: estimator:).

    Attributes:
        window: Number of recent calibration samples averaged; 0 = unbounded.
        min_samples: Samples required before calibration applies.
        min_ratio: Lowest mean actual/estimated ratio accepted.
        max_ratio: Highest mean actual/estimated ratio accepted.
    """

    window: int = 200
    min_samples: int = 10
    min_ratio: float = 0.5
    max_ratio: float = 2.0


@dataclass
class PruningCfg:
    """Conversation pruning budget (contextsmith.yaml: pruning:)."""

    max_tokens: int = 32_000
    reserve_tokens: int = 4_000
    preserve_recent: int = 4
    preserve_system: bool = True
    summarization_threshold: float = 0.8


@dataclass
class MemoryCfg:
    """Conversation memory compression (contextsmith.yaml: memory:)."""

    max_entries: int = 20
    max_tokens_per_entry: int = 200
    preserve_recent: int = 3
    max_projects: int = 100
    max_files: int = 30
    max_decisions: int = 20
    max_components: int = 50
    max_endpoints: int = 50
    max_tech: int = 30


@dataclass
class RetrievalCfg:
    """Code index and search (contextsmith.yaml: retrieval:)."""

    top_k: int = 10
    min_score: float = 0.5
    max_indices: int = 50
    block_lines: int = 50
    max_chunk_lines: int = 200
    context_tokens: int = 4_000


@dataclass
class SelectionCfg:
    """Budgeted whole-file selection (contextsmith.yaml: selection:)."""

    token_budget: int = 8_192
    high_relevance: float = 0.6
    max_elisions: int = 5


@dataclass
class DecompositionCfg:
    """Prompt decomposition (contextsmith.yaml: decomposition:)."""

    threshold: int = 8
    optimize: bool = True
    optimize_threshold: int = 15
    context_window: int = 8_192


@dataclass
class RetryCfg:
    """Smart retry and circuit breaker (contextsmith.yaml: retry:)."""

    max_attempts: int = 3
    failure_threshold: int = 3
    recovery_timeout: float = 30.0
    success_threshold: int = 2
    base_delay_ms: int = 1_000
    max_delay_ms: int = 30_000
    jitter: float = 0.3
    max_sessions: int = 200


@dataclass
class EmbeddingCfg:
    """Embedding provider (contextsmith.yaml: embedding:).

    ``dimensions`` is fixed for every provider; remote vectors of any other
    length are rejected and replaced by the hashing fallback.
    ``offline`` also keeps ContextEngine from building an LLM summarizer.
    """

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 256
    timeout: float = 5.0
    batch_size: int = 64
    max_workers: int = 4
    offline: bool = False


@dataclass
class GenerationCfg:
    """LLM generation (contextsmith.yaml: generation:)."""

    model: str = "openai/gpt-4o"
    summary_model: str = "openai/gpt-4o-mini"
    max_tokens: int = 4_096
    temperature: float = 0.2


@dataclass
class ContextsmithConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    estimator: EstimatorCfg = field(default_factory=EstimatorCfg)
    pruning: PruningCfg = field(default_factory=PruningCfg)
    memory: MemoryCfg = field(default_factory=MemoryCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    selection: SelectionCfg = field(default_factory=SelectionCfg)
    decomposition: DecompositionCfg = field(default_factory=DecompositionCfg)
    retry: RetryCfg = field(default_factory=RetryCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=5,
            )


def _validate(cfg: ContextsmithConfig) -> None:
    """Raise ConfigError for values no component can work with."""
    p = cfg.pruning
    if not 0 < p.summarization_threshold <= 1:
        raise ConfigError(
            f"pruning.summarization_threshold must be in (0, 1], got {p.summarization_threshold}"
        )
    if p.max_tokens <= 0 or p.reserve_tokens < 0 or p.preserve_recent < 0:
        raise ConfigError(
            "pruning.max_tokens must be > 0; reserve_tokens and preserve_recent must be >= 0"
        )
    if cfg.estimator.window < 0:
        raise ConfigError(f"estimator.window must be >= 0, got {cfg.estimator.window}")
    for name in ("max_entries", "max_files", "max_decisions", "max_components",
                 "max_endpoints", "max_tech", "max_projects"):
        if getattr(cfg.memory, name) < 1:
            raise ConfigError(f"memory.{name} must be >= 1")
    if cfg.retrieval.max_indices < 1 or cfg.retrieval.block_lines < 1:
        raise ConfigError("retrieval.max_indices and retrieval.block_lines must be >= 1")
    if cfg.selection.token_budget < 0:
        raise ConfigError(f"selection.token_budget must be >= 0, got {cfg.selection.token_budget}")
    if cfg.decomposition.context_window <= 0:
        raise ConfigError("decomposition.context_window must be > 0")
    if cfg.retry.max_attempts < 0:
        raise ConfigError(f"retry.max_attempts must be >= 0, got {cfg.retry.max_attempts}")
    if cfg.embedding.dimensions < 1 or cfg.embedding.timeout <= 0:
        raise ConfigError("embedding.dimensions must be >= 1 and embedding.timeout > 0")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _read_layer(path: Path, *, is_global: bool) -> dict[str, Any]:
    """Parsed YAML mapping at *path*, or {} when the file does not exist."""
    if not path.exists():
        return {}
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"'{path}' must contain a mapping, got {type(raw).__name__}")
    if is_global:
        _check_no_api_keys(raw, path)
    _warn_unknown_keys(raw, path)
    return raw


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _parse_section(raw: dict[str, Any] | None, defaults: Any, section: str) -> Any:
    """Return a copy of dataclass *defaults* with values from *raw* coerced to field types."""
    if not raw:
        return defaults
    if not isinstance(raw, dict):
        raise ConfigError(f"'{section}' must be a mapping, got {type(raw).__name__}")

    values: dict[str, Any] = {}
    for f in fields(defaults):
        current = getattr(defaults, f.name)
        if f.name not in raw:
            values[f.name] = current
            continue
        value = raw[f.name]
        try:
            if isinstance(current, bool):
                if not isinstance(value, bool):
                    raise TypeError(f"expected true or false, got {type(value).__name__}")
                values[f.name] = value
            elif isinstance(current, int):
                values[f.name] = int(value)
            elif isinstance(current, float):
                values[f.name] = float(value)
            else:
                values[f.name] = str(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{section}.{f.name}: invalid value {value!r} ({exc})") from exc

    for key in raw:
        if key not in values:
            warnings.warn(
                f"Unknown config key '{section}.{key}' — ignored.",
                UserWarning,
                stacklevel=4,
            )
    return type(defaults)(**values)


def _cfg_from_dict(data: dict[str, Any]) -> ContextsmithConfig:
    """Build a *ContextsmithConfig* from a merged raw YAML dict."""
    cfg = ContextsmithConfig()
    for f in fields(cfg):
        if f.name in data:
            setattr(cfg, f.name, _parse_section(data[f.name], getattr(cfg, f.name), f.name))
    return cfg


def _apply_env_overrides(cfg: ContextsmithConfig) -> ContextsmithConfig:
    """Apply CONTEXTSMITH_* environment variable overrides."""
    if model := os.environ.get("CONTEXTSMITH_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("CONTEXTSMITH_SUMMARY_MODEL"):
        cfg.generation.summary_model = model
    if model := os.environ.get("CONTEXTSMITH_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> ContextsmithConfig:
    """Load and return a merged *ContextsmithConfig*.

    Applies layers in order: global → per-project → env vars.

    Args:
        project_dir: Directory to search for *contextsmith.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged, validated *ContextsmithConfig*.

    Raises:
        ConfigError: If global config contains API-key-like fields, or any
            value is out of range.
    """
    layers = [
        (global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH, True),
        ((project_dir if project_dir is not None else Path.cwd()) / _PROJECT_CONFIG_NAME, False),
    ]

    merged: dict[str, Any] = {}
    for path, is_global in layers:
        merged = _deep_merge(merged, _read_layer(path, is_global=is_global))

    cfg = _cfg_from_dict(merged)
    cfg = _apply_env_overrides(cfg)
    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.contextsmith/config.yaml`` with defaults if it does not exist.

    Creates the parent directory with mode 0o700 and the file with mode 0o600.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# contextsmith global configuration: model defaults and budgets only.\n"
            "# NEVER store API keys here. Use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "\n"
            "generation:\n"
            "  model: openai/gpt-4o\n"
            "  summary_model: openai/gpt-4o-mini\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
