"""Embedding providers — remote LiteLLM, deterministic hashing, resilient wrapper.

Callers only ever see ``EmbeddingProvider.embed(texts) -> vectors`` with a
fixed dimensionality.  ResilientEmbeddingProvider tries the remote provider
under a wall-clock timeout and falls back to the hashing provider on any
error, timeout or wrong-shaped response; the fallback is logged, never raised.
"""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Protocol

from contextsmith import llm_client
from contextsmith.errors import EmbeddingUnavailableError

logger = logging.getLogger(__name__)

EMBEDDING_DIM = 256

_TOKEN_SPLIT_RE = re.compile(r"[^a-z0-9_]+")


class EmbeddingProvider(Protocol):
    """Anything that turns texts into equally sized float vectors, in order."""

    dimensions: int

    def embed(self, texts: list[str]) -> list[list[float]]: ...


# ------------------------------------------------------------------
# Deterministic fallback
# ------------------------------------------------------------------


def djb2(token: str) -> int:
    """Classic djb2 string hash, 32-bit; stable across processes."""
    h = 5381
    for ch in token:
        h = ((h << 5) + h + ord(ch)) & 0xFFFFFFFF
    return h


class HashingEmbeddingProvider:
    """Hashed bag-of-words term-frequency vectors.

    Tokens are lowercase ``[a-z0-9_]`` runs longer than one character, each
    hashed into one of *dimensions* buckets with weight ``count / total``.
    Vectors are L2-normalised.  Deterministic: the same text always yields
    the same vector.
    """

    def __init__(self, dimensions: int = EMBEDDING_DIM) -> None:
        if dimensions < 1:
            raise ValueError("dimensions must be >= 1")
        self.dimensions = dimensions

    def embed(self, texts: list[str]) -> list[list[float]]:
        return [self._vector(t) for t in texts]

    def _vector(self, text: str) -> list[float]:
        vec = [0.0] * self.dimensions
        tokens = [t for t in _TOKEN_SPLIT_RE.split(text.lower()) if len(t) > 1]
        if not tokens:
            return vec
        total = len(tokens)
        for token, count in Counter(tokens).items():
            vec[djb2(token) % self.dimensions] += count / total
        norm = math.sqrt(sum(v * v for v in vec))
        if norm > 0:
            vec = [v / norm for v in vec]
        return vec


# ------------------------------------------------------------------
# Remote provider
# ------------------------------------------------------------------


class LiteLLMEmbeddingProvider:
    """Embeddings via litellm.embedding(), batched and issued in parallel.

    Batches run on a thread pool; results are reassembled in input order.
    Any failure or a vector of the wrong length raises
    EmbeddingUnavailableError.

    Args:
        model: LiteLLM embedding model string.
        dimensions: Required vector length (passed to the provider).
        timeout: Per-request timeout in seconds.
        batch_size: Texts per request.
        max_workers: Parallel requests.
    """

    def __init__(
        self,
        model: str = "openai/text-embedding-3-small",
        dimensions: int = EMBEDDING_DIM,
        timeout: float = 5.0,
        batch_size: int = 64,
        max_workers: int = 4,
    ) -> None:
        if batch_size < 1 or max_workers < 1:
            raise ValueError("batch_size and max_workers must be >= 1")
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self.batch_size = batch_size
        self.max_workers = max_workers
        llm_client.warn_if_expensive(model)

    def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        batches = [texts[i : i + self.batch_size] for i in range(0, len(texts), self.batch_size)]
        try:
            if len(batches) == 1:
                results = [self._embed_batch(batches[0])]
            else:
                with ThreadPoolExecutor(max_workers=min(self.max_workers, len(batches))) as pool:
                    # map() yields in submission order regardless of completion order.
                    results = list(pool.map(self._embed_batch, batches))
        except EmbeddingUnavailableError:
            raise
        except Exception as exc:
            raise EmbeddingUnavailableError(f"{self.model}: {exc}") from exc
        return [vec for batch in results for vec in batch]

    def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        vectors = llm_client.embed_batch(
            self.model, batch, dimensions=self.dimensions, timeout=self.timeout
        )
        if len(vectors) != len(batch):
            raise EmbeddingUnavailableError(
                f"{self.model} returned {len(vectors)} vectors for {len(batch)} inputs"
            )
        for vec in vectors:
            if len(vec) != self.dimensions:
                raise EmbeddingUnavailableError(
                    f"{self.model} returned {len(vec)}-d vectors, expected {self.dimensions}"
                )
        return vectors


# ------------------------------------------------------------------
# Resilient wrapper
# ------------------------------------------------------------------


class ResilientEmbeddingProvider:
    """Try *primary*; on any failure or timeout, answer from *fallback*.

    The wall-clock *timeout* bounds how long a caller waits on the primary
    even if the provider ignores its own timeout; a stuck call is abandoned
    on its worker thread.
    """

    def __init__(
        self,
        primary: EmbeddingProvider | None,
        fallback: EmbeddingProvider | None = None,
        timeout: float = 5.0,
    ) -> None:
        self.fallback = fallback or HashingEmbeddingProvider()
        if primary is not None and primary.dimensions != self.fallback.dimensions:
            raise ValueError(
                f"primary ({primary.dimensions}-d) and fallback "
                f"({self.fallback.dimensions}-d) dimensions differ"
            )
        self.primary = primary
        self.dimensions = self.fallback.dimensions
        self.timeout = timeout
        self._pool: ThreadPoolExecutor | None = None
        if primary is not None:
            self._pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="embed")
        self._closed = False
        self.fallback_count = 0

    @classmethod
    def from_config(cls, cfg) -> ResilientEmbeddingProvider:
        """Build from an ``EmbeddingCfg`` section; ``offline`` skips the remote provider."""
        fallback = HashingEmbeddingProvider(cfg.dimensions)
        primary = None
        if not cfg.offline:
            primary = LiteLLMEmbeddingProvider(
                model=cfg.model,
                dimensions=cfg.dimensions,
                timeout=cfg.timeout,
                batch_size=cfg.batch_size,
                max_workers=cfg.max_workers,
            )
        return cls(primary, fallback, timeout=cfg.timeout)

    def embed(self, texts: list[str]) -> list[list[float]]:
        if self._closed:
            raise RuntimeError("embedding provider is closed")
        if not texts:
            return []
        if self.primary is not None:
            vectors = self._try_primary(texts)
            if vectors is not None:
                return vectors
        return self.fallback.embed(texts)

    def close(self) -> None:
        """Shut down the worker pool; calls still stuck on the primary are abandoned."""
        self._closed = True
        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)
            self._pool = None

    def __enter__(self) -> ResilientEmbeddingProvider:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _try_primary(self, texts: list[str]) -> list[list[float]] | None:
        future = self._pool.submit(self.primary.embed, texts)
        try:
            vectors = future.result(timeout=self.timeout)
        except FutureTimeout:
            future.cancel()
            self._note_fallback(f"timed out after {self.timeout}s", len(texts))
            return None
        except Exception as exc:
            self._note_fallback(str(exc), len(texts))
            return None

        if len(vectors) != len(texts) or any(len(v) != self.dimensions for v in vectors):
            self._note_fallback("wrong-shaped response", len(texts))
            return None
        return vectors

    def _note_fallback(self, reason: str, count: int) -> None:
        self.fallback_count += 1
        logger.warning(
            "Embedding provider unavailable (%s); using hashed fallback for %d text(s)",
            reason,
            count,
        )
